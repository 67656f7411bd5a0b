# ruff: noqa: I001
"""SQLAlchemy-backed repositories over the shared ``db`` library.

Tables are defined in ``db.models.ledger``; sessions come from
``db.client.session_scope``. Every SQLAlchemy failure is re-raised as
:class:`~.errors.StorageError`.

Datetimes are written as UTC and read back as timezone-aware UTC values, so
SQLite (which keeps no offset) and Postgres behave the same.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.ledger import LedgerCategoryAssociation, LedgerRecurringSeries, LedgerTransaction
from .errors import StorageError
from .logging_setup import get_logger
from .models import (
    CategoryAssociation,
    FrequencyType,
    MessageSource,
    ParserType,
    RecurringSeries,
    Transaction,
    TransactionType,
    utcnow,
)

_logger = get_logger("ledger_pipeline.persistence")


def _to_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _from_db_dt(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)


def _dec(v: Any) -> Decimal | None:
    if v is None:
        return None
    return v if isinstance(v, Decimal) else Decimal(str(v))


@contextmanager
def _scope(database_url: str | None, op: str) -> Iterator[Session]:
    try:
        with session_scope(database_url=database_url) as session:
            yield session
    except SQLAlchemyError as e:
        _logger.error("persistence:failed op=%s error=%s", op, e.__class__.__name__)
        raise StorageError(f"{op} failed: {e}") from e


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def transaction_to_row(t: Transaction) -> dict[str, Any]:
    return {
        "id": t.id,
        "raw_message": t.raw_message,
        "timestamp": _to_utc(t.timestamp),
        "amount": t.amount,
        "type": t.type.value,
        "merchant": t.merchant,
        "category": t.category,
        "account_last_digits": t.account_last_digits,
        "balance": t.balance,
        "parser_type": t.parser_type.render() if t.parser_type is not None else None,
        "parser_confidence": float(t.parser_confidence),
        "parse_time": t.parse_time,
        "parsing_error": t.parsing_error,
        "auto_categorized": t.auto_categorized,
        "original_currency": t.original_currency,
        "original_amount": t.original_amount,
        "fingerprint": t.fingerprint,
        "transaction_ref": t.transaction_ref,
        "received_at": _to_utc(t.received_at),
        "source_account_id": t.source_account_id,
        "source": t.source.value,
        "created_at": _to_utc(t.created_at),
    }


def transaction_from_row(row: LedgerTransaction) -> Transaction:
    """Decode one row. Raises ``ValueError`` for values outside the closed sets."""

    return Transaction(
        id=row.id,
        raw_message=row.raw_message,
        timestamp=_from_db_dt(row.timestamp),
        amount=_dec(row.amount),
        type=TransactionType(row.type),
        merchant=row.merchant or "",
        category=row.category,
        account_last_digits=row.account_last_digits,
        balance=_dec(row.balance),
        parser_type=ParserType.parse(row.parser_type),
        parser_confidence=float(row.parser_confidence or 0.0),
        parse_time=row.parse_time,
        parsing_error=row.parsing_error,
        auto_categorized=bool(row.auto_categorized),
        original_currency=row.original_currency,
        original_amount=_dec(row.original_amount),
        fingerprint=row.fingerprint,
        transaction_ref=row.transaction_ref,
        received_at=_from_db_dt(row.received_at),
        source_account_id=row.source_account_id,
        source=MessageSource(row.source or MessageSource.SMS),
        created_at=_from_db_dt(row.created_at) or utcnow(),
    )


def _series_to_row(s: RecurringSeries) -> dict[str, Any]:
    return {
        "id": s.id,
        "merchant": s.merchant,
        "category": s.category,
        "frequency_type": s.frequency_type.value,
        "average_amount": s.average_amount,
        "occurrence_count": s.occurrence_count,
        "first_occurrence": _to_utc(s.first_occurrence),
        "last_occurrence": _to_utc(s.last_occurrence),
        "next_expected_date": _to_utc(s.next_expected_date),
        "confidence_score": s.confidence_score,
        "is_active": s.is_active,
        "median_gap_days": s.median_gap_days,
        "updated_at": utcnow(),
    }


def _series_from_row(row: LedgerRecurringSeries) -> RecurringSeries:
    return RecurringSeries(
        id=row.id,
        merchant=row.merchant,
        category=row.category,
        frequency_type=FrequencyType(row.frequency_type),
        average_amount=_dec(row.average_amount) or Decimal("0"),
        occurrence_count=row.occurrence_count,
        first_occurrence=_from_db_dt(row.first_occurrence),
        last_occurrence=_from_db_dt(row.last_occurrence),
        next_expected_date=_from_db_dt(row.next_expected_date),
        confidence_score=float(row.confidence_score),
        is_active=bool(row.is_active),
        median_gap_days=row.median_gap_days,
    )


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class SqlTransactionRepository:
    def __init__(self, *, database_url: str | None = None) -> None:
        self._database_url = database_url

    def append(self, transaction: Transaction) -> None:
        with _scope(self._database_url, "append") as s:
            s.add(LedgerTransaction(**transaction_to_row(transaction)))

    def update(self, transaction: Transaction) -> None:
        values = transaction_to_row(transaction)
        tx_id = values.pop("id")
        # id, raw message, source and creation time are immutable
        values.pop("raw_message")
        values.pop("source")
        values.pop("created_at")
        with _scope(self._database_url, "update") as s:
            result = s.execute(
                update(LedgerTransaction).where(LedgerTransaction.id == tx_id).values(**values)
            )
            if result.rowcount == 0:
                raise StorageError(f"transaction {tx_id} does not exist")

    def get(self, transaction_id: str) -> Transaction | None:
        with _scope(self._database_url, "get") as s:
            row = s.get(LedgerTransaction, transaction_id)
            return transaction_from_row(row) if row is not None else None

    def delete(self, transaction_id: str) -> bool:
        with _scope(self._database_url, "delete") as s:
            result = s.execute(delete(LedgerTransaction).where(LedgerTransaction.id == transaction_id))
            return result.rowcount > 0

    def delete_by_month(self, year: int, month: int) -> int:
        start = datetime(year, month, 1, tzinfo=UTC)
        end = datetime(year + 1, 1, 1, tzinfo=UTC) if month == 12 else datetime(year, month + 1, 1, tzinfo=UTC)
        with _scope(self._database_url, "delete_by_month") as s:
            result = s.execute(
                delete(LedgerTransaction).where(
                    LedgerTransaction.timestamp >= start, LedgerTransaction.timestamp < end
                )
            )
            return result.rowcount

    def delete_all(self) -> int:
        with _scope(self._database_url, "delete_all") as s:
            return s.execute(delete(LedgerTransaction)).rowcount

    def query_all(self) -> list[Transaction]:
        """All decodable rows, oldest first; undecodable rows are logged and left out."""

        with _scope(self._database_url, "query_all") as s:
            rows = s.scalars(
                select(LedgerTransaction).order_by(LedgerTransaction.timestamp, LedgerTransaction.id)
            ).all()
            out: list[Transaction] = []
            for row in rows:
                try:
                    out.append(transaction_from_row(row))
                except ValueError as e:
                    _logger.warning("persistence:undecodable_row id=%s error=%s", row.id, e)
            return out

    def query_by_category(self, category: str, start: datetime, end: datetime) -> Decimal:
        stmt = select(func.coalesce(func.sum(LedgerTransaction.amount), 0)).where(
            LedgerTransaction.category == category,
            LedgerTransaction.type == TransactionType.DEBIT.value,
            LedgerTransaction.amount.is_not(None),
            LedgerTransaction.timestamp >= _to_utc(start),
            LedgerTransaction.timestamp < _to_utc(end),
        )
        with _scope(self._database_url, "query_by_category") as s:
            total = s.execute(stmt).scalar_one()
        return Decimal(str(total)).quantize(Decimal("0.01"))

    def query_distinct_accounts(self) -> dict[str, int]:
        stmt = (
            select(LedgerTransaction.account_last_digits, func.count())
            .where(LedgerTransaction.account_last_digits.is_not(None))
            .group_by(LedgerTransaction.account_last_digits)
        )
        with _scope(self._database_url, "query_distinct_accounts") as s:
            return {acct: int(n) for acct, n in s.execute(stmt).all()}


class SqlSeriesRepository:
    def __init__(self, *, database_url: str | None = None) -> None:
        self._database_url = database_url

    def replace_all(self, series: Iterable[RecurringSeries]) -> None:
        rows = [_series_to_row(s) for s in series]
        with _scope(self._database_url, "replace_series") as s:
            s.execute(delete(LedgerRecurringSeries))
            s.add_all(LedgerRecurringSeries(**r) for r in rows)

    def query_all(self) -> list[RecurringSeries]:
        with _scope(self._database_url, "query_series") as s:
            rows = s.scalars(
                select(LedgerRecurringSeries).order_by(
                    LedgerRecurringSeries.merchant, LedgerRecurringSeries.category
                )
            ).all()
            return [_series_from_row(r) for r in rows]

    def set_active(self, series_id: str, active: bool) -> bool:
        with _scope(self._database_url, "set_series_active") as s:
            result = s.execute(
                update(LedgerRecurringSeries)
                .where(LedgerRecurringSeries.id == series_id)
                .values(is_active=active, updated_at=utcnow())
            )
            return result.rowcount > 0


class SqlAssociationStore:
    def __init__(self, *, database_url: str | None = None) -> None:
        self._database_url = database_url

    def get(self, merchant_key: str) -> CategoryAssociation | None:
        with _scope(self._database_url, "get_association") as s:
            row = s.get(LedgerCategoryAssociation, merchant_key)
            if row is None:
                return None
            return CategoryAssociation(
                row.merchant_key,
                row.category,
                row.reinforcement_count,
                _from_db_dt(row.updated_at) or utcnow(),
            )

    def put(self, association: CategoryAssociation) -> None:
        with _scope(self._database_url, "put_association") as s:
            s.merge(
                LedgerCategoryAssociation(
                    merchant_key=association.merchant_key,
                    category=association.category,
                    reinforcement_count=association.reinforcement_count,
                    updated_at=_to_utc(association.updated_at),
                )
            )

    def delete(self, merchant_key: str) -> bool:
        with _scope(self._database_url, "delete_association") as s:
            result = s.execute(
                delete(LedgerCategoryAssociation).where(
                    LedgerCategoryAssociation.merchant_key == merchant_key
                )
            )
            return result.rowcount > 0

    def all(self) -> list[CategoryAssociation]:
        with _scope(self._database_url, "list_associations") as s:
            rows = s.scalars(
                select(LedgerCategoryAssociation).order_by(LedgerCategoryAssociation.merchant_key)
            ).all()
            return [
                CategoryAssociation(
                    r.merchant_key,
                    r.category,
                    r.reinforcement_count,
                    _from_db_dt(r.updated_at) or utcnow(),
                )
                for r in rows
            ]


__all__ = [
    "SqlAssociationStore",
    "SqlSeriesRepository",
    "SqlTransactionRepository",
    "transaction_from_row",
    "transaction_to_row",
]
