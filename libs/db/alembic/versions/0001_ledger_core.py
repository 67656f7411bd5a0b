# ruff: noqa: I001
"""Ledger core tables: transactions, recurring series, category associations.

Revision ID: 0001_ledger_core
Revises: None
Create Date: 2026-10-18
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ledger_transactions
    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("raw_message", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("type", sa.String(length=6), nullable=False),
        sa.Column("merchant", sa.Text(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("account_last_digits", sa.String(length=8), nullable=True),
        sa.Column("balance", sa.Numeric(18, 2), nullable=True),
        sa.Column("parser_type", sa.String(), nullable=True),
        sa.Column("parser_confidence", sa.Float(), nullable=False),
        sa.Column("parse_time", sa.Float(), nullable=True),
        sa.Column("parsing_error", sa.Text(), nullable=True),
        sa.Column("auto_categorized", sa.Boolean(), nullable=False),
        sa.Column("original_currency", sa.CHAR(length=3), nullable=True),
        sa.Column("original_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("fingerprint", sa.CHAR(length=64), nullable=False),
        sa.Column("transaction_ref", sa.String(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source_account_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("type IN ('debit','credit')", name="ck_ledger_tx_type"),
        sa.CheckConstraint(
            "parser_confidence >= 0 AND parser_confidence <= 1",
            name="ck_ledger_tx_confidence",
        ),
    )
    op.create_index("ix_ledger_tx_fingerprint", "ledger_transactions", ["fingerprint"])
    op.create_index(
        "ix_ledger_tx_account_ts", "ledger_transactions", ["account_last_digits", "timestamp"]
    )
    op.create_index("ix_ledger_tx_category_ts", "ledger_transactions", ["category", "timestamp"])

    # ledger_recurring_series (rebuilt wholesale by the detector)
    op.create_table(
        "ledger_recurring_series",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("merchant", sa.Text(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("frequency_type", sa.String(length=16), nullable=False),
        sa.Column("average_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("occurrence_count", sa.Integer(), nullable=False),
        sa.Column("first_occurrence", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_occurrence", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_expected_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("median_gap_days", sa.Float(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("occurrence_count >= 2", name="ck_ledger_series_occurrences"),
        sa.CheckConstraint(
            "first_occurrence <= last_occurrence", name="ck_ledger_series_occurrence_order"
        ),
        sa.CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1",
            name="ck_ledger_series_confidence",
        ),
    )

    # ledger_category_associations
    op.create_table(
        "ledger_category_associations",
        sa.Column("merchant_key", sa.String(), primary_key=True),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("reinforcement_count", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("ledger_category_associations")
    op.drop_table("ledger_recurring_series")
    op.drop_index("ix_ledger_tx_category_ts", table_name="ledger_transactions")
    op.drop_index("ix_ledger_tx_account_ts", table_name="ledger_transactions")
    op.drop_index("ix_ledger_tx_fingerprint", table_name="ledger_transactions")
    op.drop_table("ledger_transactions")
