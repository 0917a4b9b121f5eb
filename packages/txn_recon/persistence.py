"""SQLAlchemy adapters for the transaction store and merchant memory.

Each public method runs in its own ``db.client.session_scope`` so a call is
one database transaction. ``SQLAlchemyError`` is re-raised as
``StorageError``; compare-and-swap writes report a lost race as ``False``.
"""

from __future__ import annotations

from collections.abc import Collection, Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from db.client import session_scope
from db.models.finance import RcMerchantMemory, RcTransaction
from sqlalchemy import delete, func, literal, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .models import (
    CanonicalTransaction,
    CategorySource,
    Channel,
    MerchantMemoryEntry,
    Provider,
    TransactionStatus,
    TransactionType,
)
from .normalizers import normalize_merchant
from .store import StorageError

_logger = get_logger("txn_recon.persistence")

_OPEN_STATUSES = (TransactionStatus.PROVISIONAL.value, TransactionStatus.PENDING.value)


@contextmanager
def _storage_scope(database_url: str | None, op: str) -> Iterator[Session]:
    try:
        with session_scope(database_url=database_url) as session:
            yield session
    except SQLAlchemyError as e:
        _logger.error("persistence:failed op=%s error=%s", op, e.__class__.__name__)
        raise StorageError(f"{op} failed: {e}") from e


def _to_domain(row: RcTransaction) -> CanonicalTransaction:
    return CanonicalTransaction(
        id=row.id,
        household_id=row.household_id,
        date=row.date,
        amount=row.amount,
        currency=row.currency,
        type=TransactionType(row.type),
        channel=Channel(row.channel),
        merchant_raw=row.merchant_raw,
        merchant_normalized=row.merchant_normalized,
        category=row.category,
        category_source=CategorySource(row.category_source) if row.category_source else None,
        category_confidence=row.category_confidence,
        status=TransactionStatus(row.status),
        provider=Provider(row.provider) if row.provider else None,
        card_ending=row.card_ending,
        notes=row.notes,
        original_amount=row.original_amount,
        original_currency=row.original_currency,
        is_duplicate=row.is_duplicate,
        duplicate_of=row.duplicate_of,
        receipt_id=row.receipt_id,
        reconciliation_group_id=row.reconciliation_group_id,
        verified=row.verified,
        created_at=row.created_at,
    )


def _to_row(tx: CanonicalTransaction) -> RcTransaction:
    return RcTransaction(
        household_id=tx.household_id,
        date=tx.date,
        amount=tx.amount,
        currency=tx.currency,
        type=tx.type.value,
        channel=tx.channel.value,
        merchant_raw=tx.merchant_raw,
        merchant_normalized=tx.merchant_normalized,
        category=tx.category,
        category_source=tx.category_source.value if tx.category_source else None,
        category_confidence=tx.category_confidence,
        status=tx.status.value,
        provider=tx.provider.value if tx.provider else None,
        card_ending=tx.card_ending,
        notes=tx.notes,
        original_amount=tx.original_amount,
        original_currency=tx.original_currency,
        is_duplicate=tx.is_duplicate,
        duplicate_of=tx.duplicate_of,
        receipt_id=tx.receipt_id,
        reconciliation_group_id=tx.reconciliation_group_id,
        verified=tx.verified,
    )


def _channels(channel: Channel | Collection[Channel] | None) -> list[str] | None:
    if channel is None:
        return None
    if isinstance(channel, Channel):
        return [channel.value]
    return [Channel(c).value for c in channel]


class SqlTransactionStore:
    """``TransactionStore`` over the ``rc_transactions`` table."""

    def __init__(self, database_url: str | None = None) -> None:
        self._url = database_url

    def insert(self, tx: CanonicalTransaction) -> CanonicalTransaction:
        with _storage_scope(self._url, "insert") as s:
            row = _to_row(tx)
            s.add(row)
            s.flush()
            s.refresh(row)
            return _to_domain(row)

    def get(self, household_id: str, transaction_id: int) -> CanonicalTransaction | None:
        with _storage_scope(self._url, "get") as s:
            row = s.get(RcTransaction, transaction_id)
            if row is None or row.household_id != household_id:
                return None
            return _to_domain(row)

    def find_by_window(
        self,
        household_id: str,
        date_from: date,
        date_to: date,
        channel: Channel | Collection[Channel] | None = None,
    ) -> list[CanonicalTransaction]:
        stmt = (
            select(RcTransaction)
            .where(RcTransaction.household_id == household_id)
            .where(RcTransaction.date >= date_from, RcTransaction.date <= date_to)
            .order_by(RcTransaction.date, RcTransaction.id)
        )
        channels = _channels(channel)
        if channels is not None:
            stmt = stmt.where(RcTransaction.channel.in_(channels))
        with _storage_scope(self._url, "find_by_window") as s:
            return [_to_domain(r) for r in s.scalars(stmt)]

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
        values: dict[str, Any] = {}
        conditions = [
            RcTransaction.id == transaction_id,
            RcTransaction.household_id == household_id,
        ]
        if duplicate_of is not None:
            if duplicate_of == transaction_id:
                raise ValueError("a transaction cannot be a duplicate of itself")
            values.update(duplicate_of=duplicate_of, is_duplicate=True)
            conditions += [
                RcTransaction.duplicate_of.is_(None),
                RcTransaction.is_duplicate.is_(False),
            ]
        if receipt_id is not None:
            values["receipt_id"] = receipt_id
            conditions.append(RcTransaction.receipt_id.is_(None))
        if notes is not None:
            values["notes"] = notes
        if merchant_normalized is not None:
            values["merchant_normalized"] = merchant_normalized
        if category_confidence is not None:
            values["category_confidence"] = category_confidence
        if not values:
            raise ValueError("update_link_fields requires at least one field")

        stmt = (
            update(RcTransaction)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with _storage_scope(self._url, "update_link_fields") as s:
            return s.execute(stmt).rowcount == 1

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
        if primary_id == duplicate_id:
            raise ValueError("merge_pair requires two distinct transactions")

        primary_values: dict[str, Any] = {
            "reconciliation_group_id": group_id,
            "notes": notes,
            "status": status.value,
            "verified": True,
        }
        if merchant_normalized is not None:
            primary_values["merchant_normalized"] = merchant_normalized

        primary_stmt = (
            update(RcTransaction)
            .where(
                RcTransaction.id == primary_id,
                RcTransaction.household_id == household_id,
                RcTransaction.reconciliation_group_id.is_(None),
                RcTransaction.is_duplicate.is_(False),
            )
            .values(**primary_values)
            .execution_options(synchronize_session=False)
        )
        duplicate_stmt = (
            update(RcTransaction)
            .where(
                RcTransaction.id == duplicate_id,
                RcTransaction.household_id == household_id,
                RcTransaction.reconciliation_group_id.is_(None),
                RcTransaction.duplicate_of.is_(None),
                RcTransaction.is_duplicate.is_(False),
            )
            .values(
                is_duplicate=True,
                duplicate_of=primary_id,
                reconciliation_group_id=group_id,
                status=status.value,
                verified=True,
            )
            .execution_options(synchronize_session=False)
        )
        with _storage_scope(self._url, "merge_pair") as s:
            if s.execute(primary_stmt).rowcount != 1:
                s.rollback()
                return False
            if s.execute(duplicate_stmt).rowcount != 1:
                s.rollback()
                return False
            return True

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
        values: dict[str, Any] = {
            "date": date,
            "amount": amount,
            "status": TransactionStatus(status).value,
        }
        if merchant_normalized is not None:
            values["merchant_normalized"] = merchant_normalized
        stmt = (
            update(RcTransaction)
            .where(
                RcTransaction.id == transaction_id,
                RcTransaction.household_id == household_id,
                RcTransaction.status == TransactionStatus.PROVISIONAL.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with _storage_scope(self._url, "confirm_transaction") as s:
            return s.execute(stmt).rowcount == 1

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
    ) -> bool:
        conditions = [
            RcTransaction.id == transaction_id,
            RcTransaction.household_id == household_id,
        ]
        if only_if_not_manual:
            conditions.append(
                or_(
                    RcTransaction.category_source.is_(None),
                    RcTransaction.category_source != CategorySource.USER_MANUAL.value,
                )
            )
        values: dict[str, Any] = {
            "category": category,
            "category_source": CategorySource(source).value,
            "category_confidence": confidence,
        }
        if verified is not None:
            values["verified"] = verified
        stmt = (
            update(RcTransaction)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with _storage_scope(self._url, "set_category") as s:
            return s.execute(stmt).rowcount == 1

    def set_status(
        self,
        household_id: str,
        transaction_id: int,
        status: TransactionStatus,
        *,
        verified: bool | None = None,
    ) -> bool:
        values: dict[str, Any] = {"status": TransactionStatus(status).value}
        if verified is not None:
            values["verified"] = verified
        stmt = (
            update(RcTransaction)
            .where(
                RcTransaction.id == transaction_id,
                RcTransaction.household_id == household_id,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with _storage_scope(self._url, "set_status") as s:
            return s.execute(stmt).rowcount == 1

    def find_uncategorized(
        self,
        household_id: str,
        *,
        limit: int,
        exclude_ids: Collection[int] = (),
    ) -> list[CanonicalTransaction]:
        stmt = (
            select(RcTransaction)
            .where(*_uncategorized(household_id))
            .order_by(RcTransaction.id)
            .limit(limit)
        )
        if exclude_ids:
            stmt = stmt.where(RcTransaction.id.not_in(list(exclude_ids)))
        with _storage_scope(self._url, "find_uncategorized") as s:
            return [_to_domain(r) for r in s.scalars(stmt)]

    def count_uncategorized(self, household_id: str) -> int:
        stmt = select(func.count(RcTransaction.id)).where(*_uncategorized(household_id))
        with _storage_scope(self._url, "count_uncategorized") as s:
            return int(s.scalar(stmt) or 0)


def _uncategorized(household_id: str) -> tuple[Any, ...]:
    return (
        RcTransaction.household_id == household_id,
        RcTransaction.category.is_(None),
        RcTransaction.is_duplicate.is_(False),
        RcTransaction.status.in_(_OPEN_STATUSES),
    )


def _memory_entry(row: RcMerchantMemory) -> MerchantMemoryEntry:
    return MerchantMemoryEntry(
        household_id=row.household_id,
        merchant_normalized=row.merchant_normalized,
        category=row.category,
        confidence_score=row.confidence_score,
        correction_count=row.correction_count,
        last_used=row.last_used,
    )


def _memory_key(merchant: str) -> str:
    key = normalize_merchant(merchant)
    if not key:
        raise ValueError("merchant name must not be blank")
    return key


class SqlMerchantMemoryStore:
    """``MerchantMemoryStore`` over the ``rc_merchant_memory`` table."""

    def __init__(self, database_url: str | None = None) -> None:
        self._url = database_url

    def upsert(
        self, household_id: str, merchant_normalized: str, category: str
    ) -> MerchantMemoryEntry:
        key = _memory_key(merchant_normalized)
        now = datetime.now(UTC)
        with _storage_scope(self._url, "memory_upsert") as s:
            row = s.scalars(
                select(RcMerchantMemory).where(
                    RcMerchantMemory.household_id == household_id,
                    RcMerchantMemory.merchant_normalized == key,
                )
            ).one_or_none()
            if row is None:
                row = RcMerchantMemory(
                    household_id=household_id,
                    merchant_normalized=key,
                    category=category,
                    confidence_score=100,
                    correction_count=0,
                    last_used=now,
                )
                s.add(row)
            else:
                if row.category != category:
                    row.correction_count += 1
                row.category = category
                row.confidence_score = 100
                row.last_used = now
            s.flush()
            _logger.info(
                "merchant_memory:upsert household=%s merchant=%s category=%s",
                household_id,
                key,
                category,
            )
            return _memory_entry(row)

    def lookup(self, household_id: str, merchant_normalized: str) -> str | None:
        key = normalize_merchant(merchant_normalized)
        if not key:
            return None
        col = RcMerchantMemory.merchant_normalized
        with _storage_scope(self._url, "memory_lookup") as s:
            exact = s.scalars(
                select(RcMerchantMemory.category).where(
                    RcMerchantMemory.household_id == household_id, col == key
                )
            ).first()
            if exact is not None:
                return exact
            fuzzy = s.scalars(
                select(RcMerchantMemory.category)
                .where(
                    RcMerchantMemory.household_id == household_id,
                    or_(col.contains(key, autoescape=True), literal(key).contains(col)),
                )
                .order_by(func.length(col).desc(), RcMerchantMemory.id)
            ).first()
            return fuzzy

    def delete(self, household_id: str, merchant_normalized: str) -> bool:
        key = _memory_key(merchant_normalized)
        stmt = delete(RcMerchantMemory).where(
            RcMerchantMemory.household_id == household_id,
            RcMerchantMemory.merchant_normalized == key,
        )
        with _storage_scope(self._url, "memory_delete") as s:
            return s.execute(stmt).rowcount > 0

    def entries(self, household_id: str) -> Sequence[MerchantMemoryEntry]:
        stmt = (
            select(RcMerchantMemory)
            .where(RcMerchantMemory.household_id == household_id)
            .order_by(RcMerchantMemory.merchant_normalized)
        )
        with _storage_scope(self._url, "memory_entries") as s:
            return [_memory_entry(r) for r in s.scalars(stmt)]


__all__ = ["SqlMerchantMemoryStore", "SqlTransactionStore"]
