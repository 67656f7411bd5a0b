"""Schedule predictor: next expected date and overdue/upcoming/quiet status."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta

from .models import FrequencyType, RecurringSeries, ScheduleStatus
from .settings import DEFAULT_BUCKET_INTERVAL_DAYS


class SchedulePredictor:
    def __init__(
        self,
        *,
        interval_days: Mapping[FrequencyType, int] = DEFAULT_BUCKET_INTERVAL_DAYS,
        upcoming_window_days: int = 7,
    ) -> None:
        self._intervals = dict(interval_days)
        self.upcoming_window = timedelta(days=upcoming_window_days)

    def next_expected(self, last_occurrence: datetime, frequency: FrequencyType) -> datetime | None:
        days = self._intervals.get(frequency)
        if days is None:
            # irregular and none get no prediction
            return None
        return last_occurrence + timedelta(days=days)

    def status(self, series: RecurringSeries, now: datetime) -> ScheduleStatus:
        """Exactly one of overdue, upcoming or quiet for a fixed ``now``."""

        nxt = series.next_expected_date
        if nxt is None:
            return ScheduleStatus.QUIET
        if nxt < now:
            return ScheduleStatus.OVERDUE
        if nxt <= now + self.upcoming_window:
            return ScheduleStatus.UPCOMING
        return ScheduleStatus.QUIET

    def overdue(self, series: Iterable[RecurringSeries], now: datetime) -> list[RecurringSeries]:
        return self._with_status(series, now, ScheduleStatus.OVERDUE)

    def upcoming(self, series: Iterable[RecurringSeries], now: datetime) -> list[RecurringSeries]:
        return self._with_status(series, now, ScheduleStatus.UPCOMING)

    def _with_status(
        self, series: Iterable[RecurringSeries], now: datetime, wanted: ScheduleStatus
    ) -> list[RecurringSeries]:
        picked = [s for s in series if s.is_active and self.status(s, now) is wanted]
        picked.sort(key=lambda s: (s.next_expected_date, s.merchant))
        return picked


__all__ = ["SchedulePredictor"]
