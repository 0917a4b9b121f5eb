"""Turn notifications and statement rows into stored transactions.

``ingest_notification`` runs extraction, drops resent notifications, stores a
provisional expense and categorizes it. ``confirm_statement_row`` lets a card
statement row confirm the SMS record it corresponds to; without one, the row
is stored as a transaction of its own.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import NamedTuple

from .ai_extraction import AIFallbackExtractor
from .autocat import AutoCatTrigger, trigger_for_channel
from .categorize import CategorizeResult, Categorizer, categorize_transaction, default_categorizer
from .config import EngineSettings, load_settings
from .extraction import extract_notification
from .logging_setup import get_logger
from .models import (
    CanonicalTransaction,
    Channel,
    MergedExtraction,
    Provenance,
    RawNotification,
    TransactionStatus,
    TransactionType,
)
from .normalizers import clean_merchant_name, normalize_merchant, scripts_in
from .store import MerchantMemoryStore, TransactionStore

_logger = get_logger("txn_recon.ingest")

CHANNEL_BY_PROVENANCE: dict[Provenance, Channel] = {
    Provenance.SMS: Channel.SMS,
    Provenance.OCR: Channel.APP,
    Provenance.EMAIL: Channel.EMAIL,
    Provenance.STATEMENT: Channel.STATEMENT,
    Provenance.MANUAL: Channel.MANUAL,
}

# A statement row confirms an SMS record only at or above this score.
CONFIRMATION_MIN_SCORE = 80


class IngestStatus(StrEnum):
    REJECTED = "rejected"
    DUPLICATE = "duplicate"
    CREATED = "created"
    CONFIRMED = "confirmed"


class IngestResult(NamedTuple):
    status: IngestStatus
    transaction: CanonicalTransaction | None = None
    extraction: MergedExtraction | None = None
    categorization: CategorizeResult | None = None


def _as_utc(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def find_notification_duplicate(
    store: TransactionStore,
    candidate: CanonicalTransaction,
    received_at: datetime,
    *,
    window_hours: int = 1,
) -> CanonicalTransaction | None:
    """An already stored record for the same notification, or ``None``.

    Same channel, card ending, amount and booking date, stored no earlier
    than ``window_hours`` before ``received_at``.
    """

    since = _as_utc(received_at) - timedelta(hours=window_hours)
    for tx in store.find_by_window(
        candidate.household_id, candidate.date, candidate.date, candidate.channel
    ):
        if tx.card_ending != candidate.card_ending or tx.amount != candidate.amount:
            continue
        if tx.created_at is not None and _as_utc(tx.created_at) < since:
            continue
        return tx
    return None


def _to_transaction(
    household_id: str, extraction: MergedExtraction, channel: Channel
) -> CanonicalTransaction:
    amount, on = extraction.amount, extraction.booking_date
    if amount is None or on is None:
        raise ValueError("extraction needs an amount and a booking date to be stored")
    merchant = clean_merchant_name(extraction.merchant_name)
    return CanonicalTransaction(
        household_id=household_id,
        date=on,
        amount=amount,
        channel=channel,
        currency=extraction.currency,
        type=TransactionType.EXPENSE,
        merchant_raw=extraction.merchant_name,
        merchant_normalized=merchant,
        status=TransactionStatus.PROVISIONAL,
        provider=extraction.provider,
        card_ending=extraction.card_ending,
        notes=extraction.raw_message or None,
    )


def ingest_notification(
    store: TransactionStore,
    household_id: str,
    raw_text: str,
    *,
    skip_trigger_gate: bool = False,
    ai_extractor: AIFallbackExtractor | None = None,
    settings: EngineSettings | None = None,
    categorizer: Categorizer | None = None,
    memory: MerchantMemoryStore | None = None,
    received_at: datetime | None = None,
    provenance: Provenance = Provenance.SMS,
) -> IngestResult:
    cfg = settings or load_settings()
    arrived = received_at or datetime.now(UTC)
    notification = RawNotification(raw_text, provenance, arrived)
    extraction = extract_notification(
        notification, skip_trigger_gate, ai_extractor=ai_extractor, settings=cfg
    )
    if not extraction.is_valid or extraction.amount is None:
        _logger.info(
            "ingest:rejected household=%s confidence=%d", household_id, extraction.confidence
        )
        return IngestResult(IngestStatus.REJECTED, extraction=extraction)

    channel = CHANNEL_BY_PROVENANCE[provenance]
    candidate = _to_transaction(household_id, extraction, channel)
    existing = find_notification_duplicate(
        store, candidate, arrived, window_hours=cfg.duplicate_notification_hours
    )
    if existing is not None:
        _logger.info("ingest:duplicate household=%s existing=%s", household_id, existing.id)
        return IngestResult(IngestStatus.DUPLICATE, existing, extraction)

    stored = store.insert(candidate)
    _logger.info(
        "ingest:created household=%s id=%s channel=%s used_ai=%s",
        household_id,
        stored.id,
        channel,
        extraction.used_ai,
    )
    cat = categorizer or default_categorizer(memory, cfg)
    result = categorize_transaction(store, stored, cat, trigger_for_channel(channel))
    if result.written and stored.id is not None:
        stored = store.get(household_id, stored.id) or stored
    return IngestResult(IngestStatus.CREATED, stored, extraction, result)


# ---------------------------------------------------------------------------
# Statement confirmation
# ---------------------------------------------------------------------------


def confirmation_score(sms: CanonicalTransaction, row: CanonicalTransaction) -> int:
    """0 when the pair cannot match, else 50 plus date and card bonuses."""

    if sms.amount != row.amount or sms.currency != row.currency:
        return 0
    lag = abs((sms.date - row.date).days)
    if lag > 1:
        return 0
    if row.card_ending and sms.card_ending and row.card_ending != sms.card_ending:
        return 0
    score = 50 + (30 if lag == 0 else 20)
    if row.card_ending and row.card_ending == sms.card_ending:
        score += 15
    return score


def preferred_merchant(*names: str | None) -> str | None:
    """Merchant text to keep when two sources name the same purchase.

    Hebrew text wins over text without it; otherwise the longer one.
    """

    cleaned = [c for c in (clean_merchant_name(n) for n in names) if c]
    if not cleaned:
        return None
    return max(
        cleaned, key=lambda n: ("HEBREW" in scripts_in(n), len(normalize_merchant(n) or ""))
    )


def confirmation_candidates(
    store: TransactionStore, row: CanonicalTransaction
) -> Sequence[tuple[int, CanonicalTransaction]]:
    pool = store.find_by_window(
        row.household_id, row.date - timedelta(days=1), row.date + timedelta(days=1), Channel.SMS
    )
    scored = [
        (confirmation_score(tx, row), tx)
        for tx in pool
        if tx.status == TransactionStatus.PROVISIONAL and not tx.is_linked
    ]
    ranked = [(s, tx) for s, tx in scored if s >= CONFIRMATION_MIN_SCORE]
    ranked.sort(key=lambda p: (-p[0], abs((p[1].date - row.date).days), p[1].id or 0))
    return ranked


def confirm_statement_row(
    store: TransactionStore,
    row: CanonicalTransaction,
    *,
    categorizer: Categorizer | None = None,
    memory: MerchantMemoryStore | None = None,
    settings: EngineSettings | None = None,
) -> IngestResult:
    """Confirm a provisional SMS record with a statement row, or store the row.

    On confirmation the statement's date and amount win, the better merchant
    text is kept and the existing category is left alone.
    """

    if row.channel != Channel.STATEMENT:
        raise ValueError("confirm_statement_row expects a statement-channel row")
    cat = categorizer or default_categorizer(memory, settings)

    for score, sms in confirmation_candidates(store, row):
        if sms.id is None:
            continue
        merchant = preferred_merchant(sms.merchant, row.merchant_raw)
        if not store.confirm_transaction(
            sms.household_id,
            sms.id,
            date=row.date,
            amount=row.amount,
            merchant_normalized=merchant,
            status=TransactionStatus.CONFIRMED,
        ):
            continue
        confirmed = store.get(sms.household_id, sms.id) or replace(
            sms, date=row.date, amount=row.amount, status=TransactionStatus.CONFIRMED
        )
        _logger.info("ingest:confirmed id=%s score=%d", sms.id, score)
        result = categorize_transaction(store, confirmed, cat, AutoCatTrigger.CC_CONFIRMED)
        return IngestResult(IngestStatus.CONFIRMED, confirmed, categorization=result)

    stored = store.insert(
        replace(
            row,
            id=None,
            merchant_normalized=row.merchant_normalized or clean_merchant_name(row.merchant_raw),
            status=TransactionStatus.PENDING,
        )
    )
    _logger.info("ingest:created household=%s id=%s channel=statement", row.household_id, stored.id)
    result = categorize_transaction(store, stored, cat, AutoCatTrigger.CC_CREATED)
    return IngestResult(IngestStatus.CREATED, stored, categorization=result)


__all__ = [
    "CHANNEL_BY_PROVENANCE",
    "CONFIRMATION_MIN_SCORE",
    "IngestResult",
    "IngestStatus",
    "confirm_statement_row",
    "confirmation_candidates",
    "confirmation_score",
    "find_notification_duplicate",
    "ingest_notification",
    "preferred_merchant",
]
