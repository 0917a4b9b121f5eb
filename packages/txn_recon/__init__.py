"""Public interface for the ``txn_recon`` package.

Re-exports the engine entry points and domain types as the stable import
surface. There is no runtime logic here, only symbol re-exports.
"""

from .autocat import AutoCatDecision, AutoCatTrigger, decide
from .categorize import (
    KeywordCategorizer,
    MemoryCategorizer,
    SweepReport,
    categorize_pending,
    categorize_transaction,
)
from .config import EngineSettings, load_settings
from .extraction import extract, extract_batch
from .ingest import IngestResult, IngestStatus, confirm_statement_row, ingest_notification
from .matching import find_match, merchants_match
from .models import (
    CanonicalTransaction,
    CategorySource,
    Channel,
    MatchCandidate,
    MergedExtraction,
    Provenance,
    Provider,
    Receipt,
    ReceiptItem,
    TransactionStatus,
)
from .receipts import link_receipt, match_receipt, process_receipt
from .reconcile import ReconciliationReport, find_duplicate, reconcile_household
from .review import assign_user_category, forget_merchant
from .store import MerchantMemoryStore, StorageError, TransactionStore

__all__ = [
    # Entry points
    "assign_user_category",
    "categorize_pending",
    "categorize_transaction",
    "confirm_statement_row",
    "decide",
    "extract",
    "extract_batch",
    "find_duplicate",
    "find_match",
    "forget_merchant",
    "ingest_notification",
    "link_receipt",
    "load_settings",
    "match_receipt",
    "merchants_match",
    "process_receipt",
    "reconcile_household",
    # Types
    "AutoCatDecision",
    "AutoCatTrigger",
    "CanonicalTransaction",
    "CategorySource",
    "Channel",
    "EngineSettings",
    "IngestResult",
    "IngestStatus",
    "KeywordCategorizer",
    "MatchCandidate",
    "MemoryCategorizer",
    "MergedExtraction",
    "MerchantMemoryStore",
    "Provenance",
    "Provider",
    "Receipt",
    "ReceiptItem",
    "ReconciliationReport",
    "StorageError",
    "SweepReport",
    "TransactionStatus",
    "TransactionStore",
]
