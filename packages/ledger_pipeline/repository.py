"""Storage contracts and in-memory implementations.

The pipeline talks to storage only through these protocols. The SQLAlchemy
implementations live in :mod:`.persistence`; the in-memory ones here back
tests and embedded use. Every ``query_all`` returns a snapshot list taken
under a lock, so a series rebuild reads a consistent view while ingestion
keeps appending.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from .errors import StorageError
from .models import CategoryAssociation, RecurringSeries, Transaction, TransactionType


class TransactionRepository(Protocol):
    def append(self, transaction: Transaction) -> None: ...

    def update(self, transaction: Transaction) -> None: ...

    def get(self, transaction_id: str) -> Transaction | None: ...

    def delete(self, transaction_id: str) -> bool: ...

    def delete_by_month(self, year: int, month: int) -> int: ...

    def delete_all(self) -> int: ...

    def query_all(self) -> list[Transaction]: ...

    def query_by_category(self, category: str, start: datetime, end: datetime) -> Decimal: ...

    def query_distinct_accounts(self) -> dict[str, int]: ...


class SeriesRepository(Protocol):
    def replace_all(self, series: Iterable[RecurringSeries]) -> None: ...

    def query_all(self) -> list[RecurringSeries]: ...

    def set_active(self, series_id: str, active: bool) -> bool: ...


class AssociationStore(Protocol):
    def get(self, merchant_key: str) -> CategoryAssociation | None: ...

    def put(self, association: CategoryAssociation) -> None: ...

    def delete(self, merchant_key: str) -> bool: ...

    def all(self) -> list[CategoryAssociation]: ...


def _in_month(ts: datetime, year: int, month: int) -> bool:
    return ts.year == year and ts.month == month


def _sort_key(t: Transaction) -> tuple[datetime, str]:
    return (t.timestamp, t.id)


class InMemoryTransactionRepository:
    def __init__(self, transactions: Iterable[Transaction] = ()) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, Transaction] = {}
        for t in transactions:
            self.append(t)

    def append(self, transaction: Transaction) -> None:
        with self._lock:
            if transaction.id in self._rows:
                raise StorageError(f"transaction {transaction.id} already exists")
            self._rows[transaction.id] = transaction

    def update(self, transaction: Transaction) -> None:
        with self._lock:
            if transaction.id not in self._rows:
                raise StorageError(f"transaction {transaction.id} does not exist")
            self._rows[transaction.id] = transaction

    def get(self, transaction_id: str) -> Transaction | None:
        with self._lock:
            return self._rows.get(transaction_id)

    def delete(self, transaction_id: str) -> bool:
        with self._lock:
            return self._rows.pop(transaction_id, None) is not None

    def delete_by_month(self, year: int, month: int) -> int:
        with self._lock:
            doomed = [k for k, t in self._rows.items() if _in_month(t.timestamp, year, month)]
            for k in doomed:
                del self._rows[k]
            return len(doomed)

    def delete_all(self) -> int:
        with self._lock:
            n = len(self._rows)
            self._rows.clear()
            return n

    def query_all(self) -> list[Transaction]:
        with self._lock:
            return sorted(self._rows.values(), key=_sort_key)

    def query_by_category(self, category: str, start: datetime, end: datetime) -> Decimal:
        """Sum of parsed debit amounts in ``category`` with ``start <= timestamp < end``."""

        total = Decimal("0")
        for t in self.query_all():
            if (
                t.category == category
                and t.type is TransactionType.DEBIT
                and t.amount is not None
                and start <= t.timestamp < end
            ):
                total += t.amount
        return total

    def query_distinct_accounts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for t in self.query_all():
            if t.account_last_digits:
                counts[t.account_last_digits] = counts.get(t.account_last_digits, 0) + 1
        return counts


class InMemorySeriesRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, RecurringSeries] = {}

    def replace_all(self, series: Iterable[RecurringSeries]) -> None:
        fresh = {s.id: s for s in series}
        with self._lock:
            self._rows = fresh

    def query_all(self) -> list[RecurringSeries]:
        with self._lock:
            return sorted(self._rows.values(), key=lambda s: (s.merchant, s.category))

    def set_active(self, series_id: str, active: bool) -> bool:
        with self._lock:
            current = self._rows.get(series_id)
            if current is None:
                return False
            self._rows[series_id] = replace(current, is_active=active)
            return True


class InMemoryAssociationStore:
    def __init__(self) -> None:
        self._rows: dict[str, CategoryAssociation] = {}

    def get(self, merchant_key: str) -> CategoryAssociation | None:
        return self._rows.get(merchant_key)

    def put(self, association: CategoryAssociation) -> None:
        self._rows[association.merchant_key] = association

    def delete(self, merchant_key: str) -> bool:
        return self._rows.pop(merchant_key, None) is not None

    def all(self) -> list[CategoryAssociation]:
        return sorted(self._rows.values(), key=lambda a: a.merchant_key)


__all__ = [
    "AssociationStore",
    "InMemoryAssociationStore",
    "InMemorySeriesRepository",
    "InMemoryTransactionRepository",
    "SeriesRepository",
    "TransactionRepository",
]
