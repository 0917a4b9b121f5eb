"""Collaborator interfaces the engine reads and writes through.

Every call is scoped by a ``household_id`` supplied by the caller; the engine
never resolves household identity itself. Adapters raise ``StorageError`` for
any read/write failure, and the engine lets it propagate.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from datetime import date
from decimal import Decimal
from typing import Protocol

from .models import (
    CanonicalTransaction,
    CategorySource,
    Channel,
    MerchantMemoryEntry,
    TransactionStatus,
)


class StorageError(RuntimeError):
    """A transaction-store or merchant-memory operation failed."""


class TransactionStore(Protocol):
    def insert(self, tx: CanonicalTransaction) -> CanonicalTransaction: ...

    def get(self, household_id: str, transaction_id: int) -> CanonicalTransaction | None: ...

    def find_by_window(
        self,
        household_id: str,
        date_from: date,
        date_to: date,
        channel: Channel | Collection[Channel] | None = None,
    ) -> list[CanonicalTransaction]: ...

    def update_link_fields(
        self,
        household_id: str,
        transaction_id: int,
        *,
        duplicate_of: int | None = None,
        receipt_id: str | None = None,
        notes: str | None = None,
        merchant_normalized: str | None = None,
        category_confidence: int | None = None,
    ) -> bool:
        """Set ``duplicate_of`` or ``receipt_id`` only while still unset.

        Returns ``False`` when the targeted link field was already set by a
        concurrent writer; nothing is written in that case.
        """
        ...

    def merge_pair(
        self,
        household_id: str,
        *,
        primary_id: int,
        duplicate_id: int,
        group_id: str,
        merchant_normalized: str | None,
        notes: str | None,
        status: TransactionStatus,
    ) -> bool:
        """Link a pair atomically; ``False`` when either side is already linked."""
        ...

    def confirm_transaction(
        self,
        household_id: str,
        transaction_id: int,
        *,
        date: date,
        amount: Decimal,
        merchant_normalized: str | None,
        status: TransactionStatus,
    ) -> bool:
        """Apply statement facts to a still-provisional record (compare-and-swap)."""
        ...

    def set_category(
        self,
        household_id: str,
        transaction_id: int,
        *,
        category: str,
        source: CategorySource,
        confidence: int | None = None,
        verified: bool | None = None,
        only_if_not_manual: bool = True,
    ) -> bool: ...

    def set_status(
        self,
        household_id: str,
        transaction_id: int,
        status: TransactionStatus,
        *,
        verified: bool | None = None,
    ) -> bool: ...

    def find_uncategorized(
        self,
        household_id: str,
        *,
        limit: int,
        exclude_ids: Collection[int] = (),
    ) -> list[CanonicalTransaction]: ...

    def count_uncategorized(self, household_id: str) -> int: ...


class MerchantMemoryStore(Protocol):
    def upsert(
        self, household_id: str, merchant_normalized: str, category: str
    ) -> MerchantMemoryEntry: ...

    def lookup(self, household_id: str, merchant_normalized: str) -> str | None:
        """Exact lookup first, then substring match either way."""
        ...

    def delete(self, household_id: str, merchant_normalized: str) -> bool: ...

    def entries(self, household_id: str) -> Sequence[MerchantMemoryEntry]: ...


__all__ = ["MerchantMemoryStore", "StorageError", "TransactionStore"]
