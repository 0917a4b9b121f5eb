"""User review actions: manual categories and the merchant memory they teach."""

from __future__ import annotations

from .logging_setup import get_logger
from .models import CanonicalTransaction, CategorySource, TransactionStatus
from .normalizers import normalize_merchant
from .store import MerchantMemoryStore, TransactionStore

_logger = get_logger("txn_recon.review")


def assign_user_category(
    store: TransactionStore,
    memory: MerchantMemoryStore | None,
    household_id: str,
    transaction_id: int,
    category: str,
    *,
    remember: bool = False,
) -> CanonicalTransaction | None:
    """Set a ``user_manual`` category and mark the transaction verified.

    Returns the updated transaction, or ``None`` when it does not exist in the
    household. With ``remember`` the merchant is added to the household's
    merchant memory so later transactions reuse the category.
    """

    name = (category or "").strip()
    if not name:
        raise ValueError("category must not be blank")
    if remember and memory is None:
        raise ValueError("remember=True requires a merchant memory store")
    tx = store.get(household_id, transaction_id)
    if tx is None:
        return None

    store.set_category(
        household_id,
        transaction_id,
        category=name,
        source=CategorySource.USER_MANUAL,
        confidence=100,
        verified=True,
        only_if_not_manual=False,
    )
    store.set_status(household_id, transaction_id, TransactionStatus.VERIFIED, verified=True)
    _logger.info("review:categorized id=%s category=%s remember=%s", transaction_id, name, remember)

    if remember and memory is not None:
        key = normalize_merchant(tx.merchant)
        if key:
            memory.upsert(household_id, key, name)
        else:
            _logger.warning("review:no_merchant id=%s", transaction_id)
    return store.get(household_id, transaction_id)


def forget_merchant(memory: MerchantMemoryStore, household_id: str, merchant: str) -> bool:
    key = normalize_merchant(merchant)
    if not key:
        return False
    removed = memory.delete(household_id, key)
    _logger.info("review:forgot merchant=%s removed=%s", key, removed)
    return removed


__all__ = ["assign_user_category", "forget_merchant"]
