"""Recurring pattern detector: builder, classifier and predictor composed.

:meth:`RecurringDetector.rebuild` recomputes every series from a snapshot of
the transaction table and replaces the stored set wholesale. Series ids are
derived from ``(merchant, category)``, so a user's "inactive" flag survives
rebuilds even though nothing is updated incrementally.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal

from .events import SERIES_REBUILT, EventBus
from .frequency import average_amount, classify
from .logging_setup import get_logger
from .models import (
    CandidateSeries,
    FrequencyType,
    RebuildSummary,
    RecurringSeries,
    ScheduleStatus,
    Transaction,
)
from .repository import SeriesRepository, TransactionRepository
from .schedule import SchedulePredictor
from .series import group_transactions
from .settings import PipelineSettings

_logger = get_logger("ledger_pipeline.detector")

_SERIES_NAMESPACE = uuid.UUID("6f1c2a52-8d0e-4c55-9a7e-3b1f0e9d4c21")


def series_id(merchant: str, category: str) -> str:
    return str(uuid.uuid5(_SERIES_NAMESPACE, f"{merchant}\x1f{category}"))


@dataclass(frozen=True, slots=True)
class SeriesStatistics:
    total: int
    active: int
    upcoming: int
    overdue: int
    total_monthly_amount: Decimal


class RecurringDetector:
    def __init__(
        self,
        transactions: TransactionRepository,
        series_store: SeriesRepository,
        *,
        settings: PipelineSettings | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._transactions = transactions
        self._series_store = series_store
        self.settings = settings or PipelineSettings()
        self._events = events
        self.predictor = SchedulePredictor(
            interval_days=self.settings.bucket_interval_days,
            upcoming_window_days=self.settings.upcoming_window_days,
        )

    def classify_candidate(self, candidate: CandidateSeries) -> RecurringSeries:
        timestamps = candidate.timestamps
        result = classify(timestamps, bands=self.settings.frequency_bands)
        last = max(timestamps)
        return RecurringSeries(
            id=series_id(candidate.merchant, candidate.category),
            merchant=candidate.merchant,
            category=candidate.category,
            frequency_type=result.frequency_type,
            average_amount=average_amount(candidate.amounts),
            occurrence_count=len(candidate.transactions),
            first_occurrence=min(timestamps),
            last_occurrence=last,
            next_expected_date=self.predictor.next_expected(last, result.frequency_type),
            confidence_score=result.confidence,
            median_gap_days=result.median_gap_days,
        )

    def detect(self, transactions: Iterable[Transaction]) -> tuple[list[RecurringSeries], int]:
        """Pure detection over ``transactions``; returns ``(series, skipped_count)``."""

        grouping = group_transactions(transactions)
        return [self.classify_candidate(c) for c in grouping.candidates], grouping.skipped_count

    def rebuild(self, *, now: datetime | None = None) -> RebuildSummary:
        now = now or datetime.now(UTC)
        snapshot = self._transactions.query_all()
        series, skipped = self.detect(snapshot)

        inactive = {s.id for s in self._series_store.query_all() if not s.is_active}
        series = [replace(s, is_active=False) if s.id in inactive else s for s in series]
        self._series_store.replace_all(series)

        overdue = len(self.predictor.overdue(series, now))
        upcoming = len(self.predictor.upcoming(series, now))
        summary = RebuildSummary(len(series), skipped, overdue, upcoming)
        _logger.info(
            "detector:rebuilt transactions=%d series=%d skipped=%d overdue=%d upcoming=%d",
            len(snapshot),
            summary.series_count,
            skipped,
            overdue,
            upcoming,
        )
        if self._events is not None:
            self._events.emit(
                SERIES_REBUILT,
                overdue_count=overdue,
                upcoming_count=upcoming,
                series_count=summary.series_count,
                skipped_count=skipped,
            )
        return summary

    def all_series(self) -> list[RecurringSeries]:
        return self._series_store.query_all()

    def upcoming(self, now: datetime) -> list[RecurringSeries]:
        return self.predictor.upcoming(self._series_store.query_all(), now)

    def overdue(self, now: datetime) -> list[RecurringSeries]:
        return self.predictor.overdue(self._series_store.query_all(), now)

    def status(self, series: RecurringSeries, now: datetime) -> ScheduleStatus:
        return self.predictor.status(series, now)

    def set_active(self, series_id: str, active: bool) -> bool:
        return self._series_store.set_active(series_id, active)

    def statistics(self, now: datetime) -> SeriesStatistics:
        series = self._series_store.query_all()
        active = [s for s in series if s.is_active]
        monthly = sum(
            (s.average_amount for s in active if s.frequency_type is FrequencyType.MONTHLY),
            Decimal("0"),
        )
        return SeriesStatistics(
            total=len(series),
            active=len(active),
            upcoming=len(self.predictor.upcoming(series, now)),
            overdue=len(self.predictor.overdue(series, now)),
            total_monthly_amount=monthly,
        )


__all__ = ["RecurringDetector", "SeriesStatistics", "series_id"]
