"""Series builder: groups stored transactions into recurring candidates."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal

from .logging_setup import get_logger
from .models import CandidateSeries, Transaction, TransactionType

_logger = get_logger("ledger_pipeline.series")

_MIN_OCCURRENCES = 2


@dataclass(frozen=True, slots=True)
class SeriesGrouping:
    candidates: list[CandidateSeries]
    skipped_count: int


def _validated(t: Transaction) -> Transaction:
    """Return ``t`` with a timezone-aware timestamp, or raise ``ValueError``."""

    if not isinstance(t.timestamp, datetime):
        raise ValueError("timestamp is missing")
    if not isinstance(t.amount, Decimal) or not t.amount.is_finite():
        raise ValueError("amount is not a finite decimal")
    if not isinstance(t.merchant, str) or not isinstance(t.category, str):
        raise ValueError("merchant/category must be text")
    if t.timestamp.tzinfo is None:
        return replace(t, timestamp=t.timestamp.replace(tzinfo=UTC))
    return t


def group_transactions(transactions: Iterable[Transaction]) -> SeriesGrouping:
    """Group parsed debits by exact ``(merchant, category)``.

    Singleton groups are dropped. Records that cannot be read (bad timestamp,
    non-numeric amount) are left out and counted in ``skipped_count``.
    """

    groups: dict[tuple[str, str], list[Transaction]] = {}
    skipped = 0
    for t in transactions:
        if t.type is not TransactionType.DEBIT or not t.is_parsed:
            continue
        try:
            usable = _validated(t)
        except ValueError as e:
            skipped += 1
            _logger.warning("series:skipped_transaction id=%s reason=%s", t.id, e)
            continue
        groups.setdefault((usable.merchant, usable.category), []).append(usable)

    candidates = [
        CandidateSeries(merchant, category, tuple(sorted(rows, key=lambda r: (r.timestamp, r.id))))
        for (merchant, category), rows in sorted(groups.items())
        if len(rows) >= _MIN_OCCURRENCES
    ]
    return SeriesGrouping(candidates, skipped)


def build_series(transactions: Iterable[Transaction]) -> list[CandidateSeries]:
    return group_transactions(transactions).candidates


__all__ = ["SeriesGrouping", "build_series", "group_transactions"]
