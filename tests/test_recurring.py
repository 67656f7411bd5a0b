from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from ledger_pipeline.detector import RecurringDetector, series_id
from ledger_pipeline.events import SERIES_REBUILT, EventBus
from ledger_pipeline.frequency import IRREGULAR_CONFIDENCE_CAP, classify
from ledger_pipeline.models import (
    FrequencyType,
    ParserType,
    RecurringSeries,
    ScheduleStatus,
    Transaction,
    TransactionType,
)
from ledger_pipeline.repository import InMemorySeriesRepository, InMemoryTransactionRepository
from ledger_pipeline.schedule import SchedulePredictor
from ledger_pipeline.series import group_transactions

DAY_ONE = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


def _day(n: int) -> datetime:
    return DAY_ONE + timedelta(days=n - 1)


def _tx(
    n: int,
    merchant: str = "NETFLIX",
    amount: str = "499",
    *,
    category: str = "Entertainment",
    type: TransactionType = TransactionType.DEBIT,
) -> Transaction:
    return Transaction(
        id=f"{merchant}-{n}",
        raw_message=f"Rs.{amount} debited at {merchant}",
        timestamp=_day(n),
        amount=Decimal(amount),
        type=type,
        merchant=merchant,
        category=category,
        parser_type=ParserType.pattern(),
        parser_confidence=0.95,
    )


def _detector(transactions, **kwargs) -> tuple[RecurringDetector, InMemorySeriesRepository]:
    store = InMemorySeriesRepository()
    return RecurringDetector(InMemoryTransactionRepository(transactions), store, **kwargs), store


def test_monthly_series_is_detected_and_predicted():
    detector, store = _detector([_tx(1), _tx(31), _tx(62)])

    summary = detector.rebuild(now=_day(63))

    assert summary.series_count == 1
    (series,) = store.query_all()
    assert series.frequency_type is FrequencyType.MONTHLY
    assert series.confidence_score == pytest.approx(1 - 0.5 / 30.5)
    assert series.confidence_score > 0.95
    assert series.next_expected_date == _day(93)
    assert series.occurrence_count == 3
    assert series.first_occurrence == _day(1)
    assert series.last_occurrence == _day(62)
    assert series.average_amount == Decimal("499.00")
    assert series.frequency_label == "Monthly"


def test_irregular_series_has_capped_confidence_and_no_prediction():
    detector, store = _detector([_tx(1), _tx(10), _tx(40)])

    detector.rebuild(now=_day(41))

    (series,) = store.query_all()
    assert series.frequency_type is FrequencyType.IRREGULAR
    assert series.confidence_score <= IRREGULAR_CONFIDENCE_CAP
    assert series.next_expected_date is None
    assert series.frequency_label == "About every 20 days"
    assert detector.status(series, _day(41)) is ScheduleStatus.QUIET


def test_two_occurrences_give_full_confidence():
    result = classify([_day(1), _day(8)])
    assert result.frequency_type is FrequencyType.WEEKLY
    assert result.confidence == 1.0


@pytest.mark.parametrize(
    ("days", "expected"),
    [
        ([1, 2, 3, 4], FrequencyType.DAILY),
        ([1, 15, 29], FrequencyType.BIWEEKLY),
        ([1, 92, 183], FrequencyType.QUARTERLY),
        ([1, 366], FrequencyType.YEARLY),
        ([1, 1, 1], FrequencyType.IRREGULAR),
        ([1], FrequencyType.NONE),
    ],
)
def test_bucket_selection(days: list[int], expected: FrequencyType):
    result = classify([_day(d) for d in days])
    assert result.frequency_type is expected
    assert 0.0 <= result.confidence <= 1.0


def test_grouping_keeps_parsed_debits_and_drops_singletons():
    txs = [
        _tx(1),
        _tx(31),
        _tx(5, "SPOTIFY", "119"),
        _tx(3, "EMPLOYER", "50000", type=TransactionType.CREDIT),
        _tx(33, "EMPLOYER", "50000", type=TransactionType.CREDIT),
        _tx(2, "NETFLIX", category="Bills & Utilities"),
        Transaction(id="unparsed", raw_message="??", timestamp=_day(4), parsing_error="no matching pattern"),
    ]

    grouping = group_transactions(txs)

    assert [(c.merchant, c.category) for c in grouping.candidates] == [("NETFLIX", "Entertainment")]
    assert grouping.skipped_count == 0


def test_corrupt_records_are_skipped_and_counted():
    broken = _tx(45, amount="NaN")
    detector, _ = _detector([_tx(1), _tx(31), broken])

    summary = detector.rebuild(now=_day(50))

    assert summary.skipped_count == 1
    assert summary.series_count == 1


def test_naive_timestamps_are_read_as_utc():
    naive = Transaction(
        id="naive",
        raw_message="Rs.499 debited at NETFLIX",
        timestamp=datetime(2024, 1, 31, 9, 0),
        amount=Decimal("499"),
        merchant="NETFLIX",
        category="Entertainment",
    )
    (candidate,) = group_transactions([_tx(1), naive]).candidates
    assert all(ts.tzinfo is not None for ts in candidate.timestamps)


def test_statuses_partition_active_series():
    predictor = SchedulePredictor(upcoming_window_days=7)
    now = _day(100)

    def series(next_day: int | None, merchant: str, active: bool = True) -> RecurringSeries:
        return RecurringSeries(
            id=merchant,
            merchant=merchant,
            category="c",
            frequency_type=FrequencyType.MONTHLY if next_day else FrequencyType.IRREGULAR,
            average_amount=Decimal("1"),
            occurrence_count=2,
            first_occurrence=_day(1),
            last_occurrence=_day(50),
            next_expected_date=_day(next_day) if next_day else None,
            confidence_score=0.9,
            is_active=active,
        )

    all_series = [
        series(90, "late"),
        series(100, "today"),
        series(107, "edge"),
        series(120, "far"),
        series(None, "irregular"),
        series(95, "muted", active=False),
    ]
    overdue = predictor.overdue(all_series, now)
    upcoming = predictor.upcoming(all_series, now)

    assert [s.merchant for s in overdue] == ["late"]
    assert [s.merchant for s in upcoming] == ["today", "edge"]
    assert predictor.status(all_series[3], now) is ScheduleStatus.QUIET
    for s in all_series:
        statuses = [s in overdue, s in upcoming, predictor.status(s, now) is ScheduleStatus.QUIET]
        assert sum(statuses) <= 1


def test_rebuild_preserves_inactive_flag_and_emits_event():
    bus = EventBus()
    payloads: list[dict] = []
    bus.subscribe(SERIES_REBUILT, lambda _e, p: payloads.append(p))
    detector, store = _detector([_tx(1), _tx(31), _tx(62)], events=bus)

    detector.rebuild(now=_day(63))
    sid = series_id("NETFLIX", "Entertainment")
    assert detector.set_active(sid, False) is True

    summary = detector.rebuild(now=_day(92))

    (series,) = store.query_all()
    assert series.id == sid
    assert series.is_active is False
    assert summary.upcoming_count == 0
    assert payloads[-1] == {
        "overdue_count": 0,
        "upcoming_count": 0,
        "series_count": 1,
        "skipped_count": 0,
    }
    assert len(payloads) == 2


def test_rebuild_is_idempotent():
    detector, store = _detector([_tx(1), _tx(31), _tx(62), _tx(3, "GYM", "1500"), _tx(33, "GYM", "1500")])

    detector.rebuild(now=_day(70))
    first = store.query_all()
    detector.rebuild(now=_day(70))

    assert store.query_all() == first


def test_statistics_sum_active_monthly_amounts():
    detector, _ = _detector(
        [_tx(1), _tx(31), _tx(62), _tx(2, "GYM", "1500"), _tx(32, "GYM", "1500"), _tx(1, "PAPER", "10"), _tx(8, "PAPER", "10")]
    )
    detector.rebuild(now=_day(63))
    detector.set_active(series_id("GYM", "Entertainment"), False)

    stats = detector.statistics(_day(88))

    assert stats.total == 3
    assert stats.active == 2
    assert stats.total_monthly_amount == Decimal("499.00")
    assert stats.upcoming == 1
    assert stats.overdue == 1
