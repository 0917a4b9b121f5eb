"""Link email receipts to stored transactions and enrich them.

A receipt is matched against every channel of the household within
``receipt_window_days`` of its date. Only merchant-correlated matches are
linked automatically; amount-only matches are returned for review.

Linking is a compare-and-swap on ``receipt_id``: a transaction that already
carries a receipt is never re-linked, and a lost race reports
``ALREADY_LINKED`` without touching the row.
"""

from __future__ import annotations

from dataclasses import replace
from enum import StrEnum
from typing import NamedTuple

from .autocat import AutoCatTrigger
from .categorize import CategorizeResult, Categorizer, categorize_transaction, default_categorizer
from .config import EngineSettings, load_settings
from .logging_setup import get_logger
from .matching import DateWindow, Tolerances, find_match
from .models import CanonicalTransaction, MatchCandidate, Receipt
from .normalizers import clean_merchant_name
from .store import MerchantMemoryStore, TransactionStore

_logger = get_logger("txn_recon.receipts")

RECEIPT_NOTE_PREFIX = "[Receipt]"


class ReceiptLinkOutcome(StrEnum):
    LINKED = "linked"
    ALREADY_LINKED = "already_linked"
    NEEDS_REVIEW = "needs_review"
    UNMATCHED = "unmatched"


class ReceiptLinkResult(NamedTuple):
    outcome: ReceiptLinkOutcome
    match: MatchCandidate | None = None
    categorization: CategorizeResult | None = None


def receipt_note(receipt: Receipt) -> str:
    parts = []
    if receipt.merchant_name:
        parts.append(f"Merchant: {receipt.merchant_name}")
    if receipt.items:
        names = [
            item.name if item.quantity <= 1 else f"{item.name} x{item.quantity}"
            for item in receipt.items
        ]
        parts.append("Items: " + ", ".join(names))
    return f"{RECEIPT_NOTE_PREFIX} " + " | ".join(parts) if parts else RECEIPT_NOTE_PREFIX


def _append_note(existing: str | None, note: str) -> str:
    if not existing:
        return note
    if note in existing:
        return existing
    return f"{existing}\n{note}"


def match_receipt(
    store: TransactionStore,
    receipt: Receipt,
    *,
    settings: EngineSettings | None = None,
) -> MatchCandidate | None:
    cfg = settings or load_settings()
    window = DateWindow.symmetric(cfg.receipt_window_days)
    lo, hi = window.bounds(receipt.receipt_date)
    pool = [
        tx
        for tx in store.find_by_window(receipt.household_id, lo, hi)
        if tx.receipt_id is None and not tx.is_duplicate
    ]
    return find_match(
        receipt,
        pool,
        window=window,
        tolerances=Tolerances(cfg.merchant_tolerance_pct, cfg.strict_tolerance_pct),
        local_currency=cfg.local_currency,
    )


def link_receipt(
    store: TransactionStore,
    receipt: Receipt,
    match: MatchCandidate | None,
    *,
    categorizer: Categorizer | None = None,
    memory: MerchantMemoryStore | None = None,
    settings: EngineSettings | None = None,
) -> ReceiptLinkResult:
    """Attach ``receipt`` to the matched transaction and re-check its category.

    The category is only re-evaluated when the decision table allows it for
    an ``email_enriched`` event.
    """

    if match is None:
        return ReceiptLinkResult(ReceiptLinkOutcome.UNMATCHED)
    if not match.merchant_correlated:
        _logger.info(
            "receipts:needs_review receipt=%s candidate=%s", receipt.id, match.candidate.id
        )
        return ReceiptLinkResult(ReceiptLinkOutcome.NEEDS_REVIEW, match)

    tx: CanonicalTransaction = match.candidate
    if tx.id is None:
        raise ValueError("link_receipt requires a stored transaction")

    merchant = clean_merchant_name(receipt.merchant_name)
    confidence = min((tx.category_confidence or 0) + 10, 100) if tx.category else None
    linked = store.update_link_fields(
        tx.household_id,
        tx.id,
        receipt_id=receipt.id,
        notes=_append_note(tx.notes, receipt_note(receipt)),
        merchant_normalized=merchant if merchant and not tx.merchant_normalized else None,
        category_confidence=confidence,
    )
    if not linked:
        _logger.info("receipts:already_linked receipt=%s tx=%s", receipt.id, tx.id)
        return ReceiptLinkResult(ReceiptLinkOutcome.ALREADY_LINKED, match)
    _logger.info("receipts:linked receipt=%s tx=%s", receipt.id, tx.id)

    refreshed = store.get(tx.household_id, tx.id) or tx
    if merchant:
        # categorize on the receipt's merchant text when it is the better one
        refreshed = replace(refreshed, merchant_normalized=merchant)
    cat = categorizer or default_categorizer(memory, settings)
    result = categorize_transaction(
        store,
        refreshed,
        cat,
        AutoCatTrigger.EMAIL_ENRICHED,
        new_merchant_info=receipt.merchant_name,
        previous_merchant=tx.merchant,
    )
    return ReceiptLinkResult(ReceiptLinkOutcome.LINKED, match, result)


def process_receipt(
    store: TransactionStore,
    receipt: Receipt,
    *,
    categorizer: Categorizer | None = None,
    memory: MerchantMemoryStore | None = None,
    settings: EngineSettings | None = None,
) -> ReceiptLinkResult:
    cfg = settings or load_settings()
    match = match_receipt(store, receipt, settings=cfg)
    return link_receipt(
        store, receipt, match, categorizer=categorizer, memory=memory, settings=cfg
    )


__all__ = [
    "RECEIPT_NOTE_PREFIX",
    "ReceiptLinkOutcome",
    "ReceiptLinkResult",
    "link_receipt",
    "match_receipt",
    "process_receipt",
    "receipt_note",
]
