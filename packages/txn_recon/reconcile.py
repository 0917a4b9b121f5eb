"""Duplicate reconciliation between payment-app and card-statement records.

The same payment often reaches the store twice: once from the P2P app
(screenshot, ``Channel.APP``) and once as a card statement row
(``Channel.STATEMENT``). The reconciler pairs them with ``find_match`` and
merges the pair:

- the statement row is primary (it carries the settled date/amount/currency);
- the app row is flagged ``is_duplicate`` and points at the primary;
- the app row's counterparty name enriches the primary when it is more
  specific than the processor label ("BIT", "PAYBOX");
- notes are joined with ``NOTE_SEPARATOR``, never overwritten.

Writes go through ``TransactionStore.merge_pair``, which only succeeds while
both rows are unlinked. A repeated or raced merge therefore reports
``ALREADY_LINKED`` and leaves the stored state untouched.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import NamedTuple

from .config import EngineSettings, load_settings
from .logging_setup import get_logger
from .matching import DateWindow, Tolerances, find_match, merchants_match
from .models import CanonicalTransaction, Channel, MatchCandidate, TransactionStatus
from .normalizers import clean_merchant_name
from .store import TransactionStore

_logger = get_logger("txn_recon.reconcile")

NOTE_SEPARATOR = " | "

P2P_KEYWORDS: tuple[str, ...] = (
    "BIT",
    "ביט",
    "PAYBOX",
    "פייבוקס",
    "PEPPER",
    "PAY PAL",
    "PAYPAL",
    "P.P",
)
_P2P_RE = re.compile(
    r"(?<!\w)(?:" + "|".join(re.escape(k) for k in P2P_KEYWORDS) + r")(?!\w)",
    re.IGNORECASE,
)


class MergeOutcome(StrEnum):
    MERGED = "merged"
    ALREADY_LINKED = "already_linked"


class ReconcileOutcome(StrEnum):
    MERGED = "merged"
    ALREADY_LINKED = "already_linked"
    NEEDS_REVIEW = "needs_review"
    UNMATCHED = "unmatched"


@dataclass(frozen=True, slots=True)
class MergeInstruction:
    household_id: str
    primary_id: int
    duplicate_id: int
    group_id: str
    merchant_normalized: str | None
    notes: str | None
    confidence: int
    status: TransactionStatus = TransactionStatus.VERIFIED


class ReconcileResult(NamedTuple):
    outcome: ReconcileOutcome
    match: MatchCandidate | None = None
    instruction: MergeInstruction | None = None


@dataclass(slots=True)
class ReconciliationReport:
    merged: list[MergeInstruction] = field(default_factory=list)
    needs_review: list[MatchCandidate] = field(default_factory=list)
    unmatched: list[int] = field(default_factory=list)
    already_linked: int = 0

    @property
    def counts(self) -> dict[str, int]:
        return {
            "merged": len(self.merged),
            "needs_review": len(self.needs_review),
            "unmatched": len(self.unmatched),
            "already_linked": self.already_linked,
        }


# ---------------------------------------------------------------------------
# Pool selection
# ---------------------------------------------------------------------------


def is_p2p_label(merchant: str | None) -> bool:
    return merchant is not None and _P2P_RE.search(merchant) is not None


def p2p_correlate(a: str | None, b: str | None) -> bool:
    """Merchant correlation that also accepts a P2P processor label on one side."""

    if not a or not b:
        return False
    return merchants_match(a, b) or is_p2p_label(a) or is_p2p_label(b)


def opposite_channel(channel: Channel) -> Channel:
    if channel == Channel.APP:
        return Channel.STATEMENT
    if channel == Channel.STATEMENT:
        return Channel.APP
    raise ValueError(f"channel {channel!s} does not take part in duplicate reconciliation")


def eligible_pool(
    record: CanonicalTransaction, pool: Iterable[CanonicalTransaction]
) -> list[CanonicalTransaction]:
    other = opposite_channel(record.channel)
    return [
        tx
        for tx in pool
        if tx.household_id == record.household_id
        and tx.channel == other
        and not tx.is_linked
        and (record.id is None or tx.id != record.id)
    ]


def reconciliation_window(record: CanonicalTransaction, settings: EngineSettings) -> DateWindow:
    """Statement rows settle after the app payment; mirror for statement-side records."""

    window = DateWindow(settings.reconcile_days_before, settings.reconcile_days_after)
    return window if record.channel == Channel.APP else window.mirrored()


def _tolerances(settings: EngineSettings) -> Tolerances:
    return Tolerances(
        merchant_pct=settings.merchant_tolerance_pct,
        strict_pct=settings.strict_tolerance_pct,
        merchant_abs=settings.p2p_amount_tolerance,
    )


def find_duplicate(
    store: TransactionStore,
    record: CanonicalTransaction,
    *,
    settings: EngineSettings | None = None,
) -> MatchCandidate | None:
    """Best opposite-channel candidate for ``record``, or ``None``.

    Storage failures propagate from ``store`` unchanged.
    """

    cfg = settings or load_settings()
    if record.is_linked:
        return None
    window = reconciliation_window(record, cfg)
    lo, hi = window.bounds(record.date)
    pool = store.find_by_window(record.household_id, lo, hi, opposite_channel(record.channel))
    return find_match(
        record,
        eligible_pool(record, pool),
        window=window,
        correlate=p2p_correlate,
        tolerances=_tolerances(cfg),
        local_currency=cfg.local_currency,
    )


# ---------------------------------------------------------------------------
# Merge planning
# ---------------------------------------------------------------------------


def merge_notes(*parts: str | None) -> str | None:
    """Join note fragments with ``NOTE_SEPARATOR``, skipping ones already present."""

    out: list[str] = []
    for part in parts:
        if not part:
            continue
        for piece in part.split(NOTE_SEPARATOR):
            piece = piece.strip()
            if piece and piece not in out:
                out.append(piece)
    return NOTE_SEPARATOR.join(out) or None


def p2p_confidence(app_amount: Decimal, statement_amount: Decimal, day_lag: int) -> int:
    """Heuristic 70..99 score for an app/statement pair.

    ``day_lag`` is statement date minus app date.
    """

    confidence = 70
    diff = abs(app_amount - statement_amount)
    if diff == 0:
        confidence += 15
    elif diff <= 1:
        confidence += 10
    if day_lag == 0:
        confidence += 15
    elif 1 <= abs(day_lag) <= 2:
        confidence += 10
    elif 3 <= abs(day_lag) <= 5:
        confidence += 5
    return min(confidence, 99)


def _enriched_merchant(app: CanonicalTransaction) -> str | None:
    app_name = clean_merchant_name(app.merchant)
    if app_name and not is_p2p_label(app_name):
        return app_name
    return None


def plan_merge(match: MatchCandidate) -> MergeInstruction:
    record: CanonicalTransaction = match.record
    cand = match.candidate
    primary, app = (cand, record) if record.channel == Channel.APP else (record, cand)
    if primary.id is None or app.id is None:
        raise ValueError("plan_merge requires stored transactions with ids")

    return MergeInstruction(
        household_id=primary.household_id,
        primary_id=primary.id,
        duplicate_id=app.id,
        group_id=f"rc-{primary.id}-{app.id}",
        merchant_normalized=_enriched_merchant(app),
        notes=merge_notes(primary.notes, app.notes),
        confidence=p2p_confidence(app.amount, primary.amount, (primary.date - app.date).days),
    )


def apply_merge(store: TransactionStore, instruction: MergeInstruction) -> MergeOutcome:
    ok = store.merge_pair(
        instruction.household_id,
        primary_id=instruction.primary_id,
        duplicate_id=instruction.duplicate_id,
        group_id=instruction.group_id,
        merchant_normalized=instruction.merchant_normalized,
        notes=instruction.notes,
        status=instruction.status,
    )
    if not ok:
        _logger.info(
            "reconcile:already_linked primary=%s duplicate=%s",
            instruction.primary_id,
            instruction.duplicate_id,
        )
        return MergeOutcome.ALREADY_LINKED
    _logger.info(
        "reconcile:merged primary=%s duplicate=%s confidence=%d",
        instruction.primary_id,
        instruction.duplicate_id,
        instruction.confidence,
    )
    return MergeOutcome.MERGED


def reconcile_record(
    store: TransactionStore,
    record: CanonicalTransaction,
    *,
    settings: EngineSettings | None = None,
) -> ReconcileResult:
    """Find and apply a merge for one record.

    Only merchant-correlated matches are applied; amount-only matches come
    back as ``NEEDS_REVIEW``.
    """

    match = find_duplicate(store, record, settings=settings)
    if match is None:
        return ReconcileResult(ReconcileOutcome.UNMATCHED)
    if not match.merchant_correlated:
        return ReconcileResult(ReconcileOutcome.NEEDS_REVIEW, match)
    instruction = plan_merge(match)
    if apply_merge(store, instruction) is MergeOutcome.ALREADY_LINKED:
        return ReconcileResult(ReconcileOutcome.ALREADY_LINKED, match, instruction)
    return ReconcileResult(ReconcileOutcome.MERGED, match, instruction)


def reconcile_household(
    store: TransactionStore,
    household_id: str,
    date_from: date,
    date_to: date,
    *,
    settings: EngineSettings | None = None,
) -> ReconciliationReport:
    """Reconcile every unlinked app-channel record dated within the range."""

    cfg = settings or load_settings()
    report = ReconciliationReport()
    for record in store.find_by_window(household_id, date_from, date_to, Channel.APP):
        if record.is_linked:
            continue
        result = reconcile_record(store, record, settings=cfg)
        if result.outcome is ReconcileOutcome.MERGED and result.instruction is not None:
            report.merged.append(result.instruction)
        elif result.outcome is ReconcileOutcome.NEEDS_REVIEW and result.match is not None:
            report.needs_review.append(result.match)
        elif result.outcome is ReconcileOutcome.ALREADY_LINKED:
            report.already_linked += 1
        elif record.id is not None:
            report.unmatched.append(record.id)
    _logger.info(
        "reconcile:household_done household=%s merged=%d needs_review=%d unmatched=%d",
        household_id,
        len(report.merged),
        len(report.needs_review),
        len(report.unmatched),
    )
    return report


__all__ = [
    "MergeInstruction",
    "MergeOutcome",
    "NOTE_SEPARATOR",
    "P2P_KEYWORDS",
    "ReconcileOutcome",
    "ReconcileResult",
    "ReconciliationReport",
    "apply_merge",
    "eligible_pool",
    "find_duplicate",
    "is_p2p_label",
    "merge_notes",
    "opposite_channel",
    "p2p_confidence",
    "plan_merge",
    "reconcile_household",
    "reconcile_record",
    "reconciliation_window",
]
