from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# BIGINT on Postgres; INTEGER on SQLite so the rowid autoincrements.
_PK = BigInteger().with_variant(Integer(), "sqlite")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


# ---------------------------
# Core: rc_transactions
# ---------------------------


class RcTransaction(Base):
    __tablename__ = "rc_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    household_id: Mapped[str] = mapped_column(String, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    # Magnitude; direction lives in ``type``.
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False, default="ILS")
    type: Mapped[str] = mapped_column(String, nullable=False, default="expense")
    channel: Mapped[str] = mapped_column(String, nullable=False)
    merchant_raw: Mapped[str | None] = mapped_column(Text, nullable=True)
    merchant_normalized: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    category_source: Mapped[str | None] = mapped_column(String, nullable=True)
    category_confidence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="provisional")
    provider: Mapped[str | None] = mapped_column(String, nullable=True)
    card_ending: Mapped[str | None] = mapped_column(CHAR(4), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Statement rows charged in a foreign currency keep the pre-conversion amount.
    original_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    original_currency: Mapped[str | None] = mapped_column(CHAR(3), nullable=True)
    is_duplicate: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    duplicate_of: Mapped[int | None] = mapped_column(
        _PK, ForeignKey("rc_transactions.id", ondelete="SET NULL"), nullable=True
    )
    receipt_id: Mapped[str | None] = mapped_column(String, nullable=True)
    reconciliation_group_id: Mapped[str | None] = mapped_column(String, nullable=True)
    verified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "category_source IS NULL OR category_source in ('auto','user_manual','rule')",
            name="ck_rc_tx_category_source",
        ),
        CheckConstraint(
            "status in ('provisional','pending','confirmed','verified')",
            name="ck_rc_tx_status",
        ),
        CheckConstraint(
            "channel in ('sms','app','statement','email','manual')",
            name="ck_rc_tx_channel",
        ),
        CheckConstraint("type in ('income','expense','transfer')", name="ck_rc_tx_type"),
        CheckConstraint("amount >= 0", name="ck_rc_tx_amount_magnitude"),
        Index("ix_rc_tx_household_date", "household_id", "date"),
        Index("ix_rc_tx_household_channel_date", "household_id", "channel", "date"),
    )


# ---------------------------
# rc_merchant_memory
# ---------------------------


class RcMerchantMemory(Base):
    __tablename__ = "rc_merchant_memory"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    household_id: Mapped[str] = mapped_column(String, nullable=False)
    merchant_normalized: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    confidence_score: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    correction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint(
            "household_id", "merchant_normalized", name="uq_rc_merchant_memory_merchant"
        ),
    )


__all__ = [
    "Base",
    "RcMerchantMemory",
    "RcTransaction",
]
