# ruff: noqa: I001
"""Reconciliation core tables: transactions and merchant memory.

Revision ID: 0001_rc_core
Revises: None
Create Date: 2026-10-17
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_rc_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # rc_transactions
    op.create_table(
        "rc_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("household_id", sa.String(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.CHAR(3), nullable=False, server_default=sa.text("'ILS'")),
        sa.Column("type", sa.String(), nullable=False, server_default=sa.text("'expense'")),
        sa.Column("channel", sa.String(), nullable=False),
        sa.Column("merchant_raw", sa.Text(), nullable=True),
        sa.Column("merchant_normalized", sa.Text(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("category_source", sa.String(), nullable=True),
        sa.Column("category_confidence", sa.Integer(), nullable=True),
        sa.Column(
            "status",
            sa.String(),
            nullable=False,
            server_default=sa.text("'provisional'"),
        ),
        sa.Column("provider", sa.String(), nullable=True),
        sa.Column("card_ending", sa.CHAR(4), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("original_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("original_currency", sa.CHAR(3), nullable=True),
        sa.Column(
            "is_duplicate",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("duplicate_of", sa.BigInteger(), nullable=True),
        sa.Column("receipt_id", sa.String(), nullable=True),
        sa.Column("reconciliation_group_id", sa.String(), nullable=True),
        sa.Column(
            "verified",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.ForeignKeyConstraint(
            ["duplicate_of"],
            ["rc_transactions.id"],
            name="fk_rc_tx_duplicate_of",
            ondelete="SET NULL",
        ),
        sa.CheckConstraint(
            "category_source IS NULL OR category_source in ('auto','user_manual','rule')",
            name="ck_rc_tx_category_source",
        ),
        sa.CheckConstraint(
            "status in ('provisional','pending','confirmed','verified')",
            name="ck_rc_tx_status",
        ),
        sa.CheckConstraint(
            "channel in ('sms','app','statement','email','manual')",
            name="ck_rc_tx_channel",
        ),
        sa.CheckConstraint("type in ('income','expense','transfer')", name="ck_rc_tx_type"),
        sa.CheckConstraint("amount >= 0", name="ck_rc_tx_amount_magnitude"),
    )

    op.create_index(
        "ix_rc_tx_household_date", "rc_transactions", ["household_id", "date"], unique=False
    )
    op.create_index(
        "ix_rc_tx_household_channel_date",
        "rc_transactions",
        ["household_id", "channel", "date"],
        unique=False,
    )
    # Partial index for the uncategorized sweep
    op.create_index(
        "ix_rc_tx_uncategorized",
        "rc_transactions",
        ["household_id", "id"],
        unique=False,
        postgresql_where=sa.text("category IS NULL AND is_duplicate = false"),
    )

    # rc_merchant_memory
    op.create_table(
        "rc_merchant_memory",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("household_id", sa.String(), nullable=False),
        sa.Column("merchant_normalized", sa.Text(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column(
            "confidence_score",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("100"),
        ),
        sa.Column(
            "correction_count",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("last_used", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint(
            "household_id", "merchant_normalized", name="uq_rc_merchant_memory_merchant"
        ),
    )


def downgrade() -> None:
    op.drop_table("rc_merchant_memory")
    op.drop_index("ix_rc_tx_uncategorized", table_name="rc_transactions")
    op.drop_index("ix_rc_tx_household_channel_date", table_name="rc_transactions")
    op.drop_index("ix_rc_tx_household_date", table_name="rc_transactions")
    op.drop_table("rc_transactions")
