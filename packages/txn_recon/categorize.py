"""Category assignment gated by the auto-categorization decision table.

Categorizers are plain callables ``(transaction) -> CategoryAssignment | None``:

- ``KeywordCategorizer``: first category whose keyword occurs in the merchant
  text (source ``auto``);
- ``MemoryCategorizer``: the household's merchant memory as a prior (source
  ``rule``), falling back to a wrapped categorizer.

``categorize_pending`` drains a household's uncategorized queue as a bounded
loop: every pass excludes ids already attempted, so the eligible set strictly
shrinks, and the loop stops on the first empty pass or after ``max_passes``.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import NamedTuple

from .autocat import AutoCatDecision, AutoCatTrigger, decide, trigger_for_channel
from .config import EngineSettings, load_settings
from .logging_setup import get_logger
from .models import CanonicalTransaction, CategoryAssignment, CategorySource
from .normalizers import normalize_merchant
from .store import MerchantMemoryStore, TransactionStore

_logger = get_logger("txn_recon.categorize")

type Categorizer = Callable[[CanonicalTransaction], CategoryAssignment | None]

DEFAULT_CATEGORY_KEYWORDS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "Groceries": ("שופרסל", "רמי לוי", "ויקטורי", "יוחננוף", "shufersal", "rami levy"),
        "Restaurants": ("מסעדה", "restaurant", "פיצה", "pizza", "wolt", "וולט"),
        "Coffee": ("קפה", "cafe", "coffee", "aroma", "ארומה"),
        "Transportation": ("gett", "רב קו", "דלק", "sonol", "סונול"),
        "Subscriptions": ("spotify", "netflix", "apple", "google", "openai", "anthropic"),
        "Utilities": ("בזק", "bezeq", "חשמל", "electra", "סלקום", "cellcom", "partner"),
        "Shopping": ("amazon", "amzn", "aliexpress", "ebay", "temu", "shein"),
        "Health": ("סופר-פארם", "super-pharm", "מכבי", "כללית", "pharm"),
    }
)


class KeywordCategorizer:
    def __init__(
        self,
        keywords: Mapping[str, Sequence[str]] | None = None,
        *,
        confidence: int = 60,
    ) -> None:
        table = keywords if keywords else DEFAULT_CATEGORY_KEYWORDS
        self._rules: tuple[tuple[str, tuple[str, ...]], ...] = tuple(
            (category, tuple(k for k in (normalize_merchant(w) for w in words) if k))
            for category, words in table.items()
        )
        self._confidence = confidence

    def __call__(self, tx: CanonicalTransaction) -> CategoryAssignment | None:
        texts = [
            k for k in (normalize_merchant(t) for t in (tx.merchant_normalized, tx.merchant_raw)) if k
        ]
        for category, words in self._rules:
            if any(w in text for text in texts for w in words):
                return CategoryAssignment(category, CategorySource.AUTO, self._confidence)
        return None


class MemoryCategorizer:
    def __init__(
        self,
        memory: MerchantMemoryStore,
        fallback: Categorizer | None = None,
    ) -> None:
        self._memory = memory
        self._fallback = fallback

    def __call__(self, tx: CanonicalTransaction) -> CategoryAssignment | None:
        for text in (tx.merchant_normalized, tx.merchant_raw):
            key = normalize_merchant(text)
            if not key:
                continue
            category = self._memory.lookup(tx.household_id, key)
            if category is not None:
                return CategoryAssignment(category, CategorySource.RULE, 100)
        return self._fallback(tx) if self._fallback is not None else None


def default_categorizer(
    memory: MerchantMemoryStore | None = None,
    settings: EngineSettings | None = None,
) -> Categorizer:
    cfg = settings or load_settings()
    keyword = KeywordCategorizer(cfg.category_keywords or None)
    return MemoryCategorizer(memory, keyword) if memory is not None else keyword


class CategorizeResult(NamedTuple):
    decision: AutoCatDecision
    assignment: CategoryAssignment | None = None
    written: bool = False


def categorize_transaction(
    store: TransactionStore,
    tx: CanonicalTransaction,
    categorizer: Categorizer,
    trigger: AutoCatTrigger,
    *,
    new_merchant_info: str | None = None,
    previous_merchant: str | None = None,
) -> CategorizeResult:
    """Consult ``decide`` and, when permitted, categorize and persist ``tx``."""

    decision = decide(
        trigger, tx.category, tx.category_source, new_merchant_info, previous_merchant
    )
    if not decision.should_run or tx.id is None:
        _logger.debug(
            "categorize:skipped id=%s trigger=%s reason=%s", tx.id, trigger, decision.reason
        )
        return CategorizeResult(decision)
    assignment = categorizer(tx)
    if assignment is None:
        return CategorizeResult(decision)
    written = store.set_category(
        tx.household_id,
        tx.id,
        category=assignment.category,
        source=assignment.source,
        confidence=assignment.confidence,
        only_if_not_manual=True,
    )
    _logger.info(
        "categorize:assigned id=%s category=%s source=%s written=%s",
        tx.id,
        assignment.category,
        assignment.source,
        written,
    )
    return CategorizeResult(decision, assignment, written)


@dataclass(slots=True)
class SweepReport:
    passes: int = 0
    categorized: int = 0
    skipped: int = 0
    unresolved: int = 0
    drained: bool = False


def categorize_pending(
    store: TransactionStore,
    household_id: str,
    categorizer: Categorizer,
    *,
    batch_size: int | None = None,
    max_passes: int | None = None,
    settings: EngineSettings | None = None,
) -> SweepReport:
    """Categorize every eligible uncategorized transaction of a household.

    Safe to re-run: records already attempted in this sweep are excluded from
    later passes, and a second sweep only sees records still uncategorized.
    """

    cfg = settings or load_settings()
    size = batch_size or cfg.sweep_batch_size
    limit = max_passes or cfg.sweep_max_passes
    if size < 1 or limit < 1:
        raise ValueError("batch_size and max_passes must be positive")

    report = SweepReport()
    attempted: set[int] = set()
    remaining = store.count_uncategorized(household_id)
    while report.passes < limit:
        batch = [
            (tx.id, tx)
            for tx in store.find_uncategorized(household_id, limit=size, exclude_ids=attempted)
            if tx.id is not None and tx.id not in attempted
        ]
        if not batch:
            report.drained = True
            break
        report.passes += 1
        for tx_id, tx in batch:
            attempted.add(tx_id)
            result = categorize_transaction(
                store, tx, categorizer, trigger_for_channel(tx.channel)
            )
            if not result.decision.should_run:
                report.skipped += 1
            elif result.written:
                report.categorized += 1
            else:
                report.unresolved += 1
        _logger.info(
            "categorize:pass_done household=%s pass=%d batch=%d categorized=%d",
            household_id,
            report.passes,
            len(batch),
            report.categorized,
        )
        left = store.count_uncategorized(household_id)
        if left >= remaining and len(attempted) >= remaining:
            # every queued record was tried and the queue did not shrink
            report.drained = True
            break
        remaining = left

    if not report.drained:
        _logger.warning(
            "categorize:max_passes_reached household=%s passes=%d", household_id, report.passes
        )
    return report


__all__ = [
    "CategorizeResult",
    "Categorizer",
    "DEFAULT_CATEGORY_KEYWORDS",
    "KeywordCategorizer",
    "MemoryCategorizer",
    "SweepReport",
    "categorize_pending",
    "categorize_transaction",
    "default_categorizer",
]
