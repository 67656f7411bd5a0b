from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ---------------------------
# Core: ledger_transactions
# ---------------------------


class LedgerTransaction(Base):
    __tablename__ = "ledger_transactions"

    # Opaque UUID assigned by the pipeline; stable across re-parses.
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    raw_message: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # NULL only while parsing failed
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    type: Mapped[str] = mapped_column(String(6), nullable=False, default="debit")
    merchant: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String, nullable=False, default="Uncategorized")
    account_last_digits: Mapped[str | None] = mapped_column(String(8), nullable=True)
    balance: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    # Rendered provenance tag: pattern | model:<name> | model:failed | email-model:<name>
    parser_type: Mapped[str | None] = mapped_column(String, nullable=True)
    parser_confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    parse_time: Mapped[float | None] = mapped_column(Float, nullable=True)
    parsing_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_categorized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    original_currency: Mapped[str | None] = mapped_column(CHAR(3), nullable=True)
    original_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    fingerprint: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    transaction_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source_account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    # Connector the message came through: sms | email
    source: Mapped[str] = mapped_column(
        String(8), nullable=False, default="sms", server_default="sms"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("type IN ('debit','credit')", name="ck_ledger_tx_type"),
        CheckConstraint(
            "parser_confidence >= 0 AND parser_confidence <= 1",
            name="ck_ledger_tx_confidence",
        ),
        Index("ix_ledger_tx_fingerprint", "fingerprint"),
        Index("ix_ledger_tx_account_ts", "account_last_digits", "timestamp"),
        Index("ix_ledger_tx_category_ts", "category", "timestamp"),
    )


# ---------------------------
# Derived: ledger_recurring_series
# ---------------------------


class LedgerRecurringSeries(Base):
    __tablename__ = "ledger_recurring_series"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    merchant: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    frequency_type: Mapped[str] = mapped_column(String(16), nullable=False)
    average_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False)
    first_occurrence: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_occurrence: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_expected_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    median_gap_days: Mapped[float | None] = mapped_column(Float, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("occurrence_count >= 2", name="ck_ledger_series_occurrences"),
        CheckConstraint(
            "first_occurrence <= last_occurrence", name="ck_ledger_series_occurrence_order"
        ),
        CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1", name="ck_ledger_series_confidence"
        ),
    )


# ---------------------------
# Learner: ledger_category_associations
# ---------------------------


class LedgerCategoryAssociation(Base):
    __tablename__ = "ledger_category_associations"

    merchant_key: Mapped[str] = mapped_column(String, primary_key=True)
    category: Mapped[str] = mapped_column(String, nullable=False)
    reinforcement_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
