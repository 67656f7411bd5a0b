from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from ledger_pipeline.coordinator import ExtractionCoordinator
from ledger_pipeline.dedup import DeduplicationGate, merchant_similarity
from ledger_pipeline.events import SYNC_COMPLETED, TRANSACTION_INGESTED, EventBus
from ledger_pipeline.ingest import commit_candidate, sync_batch
from ledger_pipeline.models import IngestOutcome, ParserType, RawMessage
from ledger_pipeline.patterns import PatternExtractor
from ledger_pipeline.repository import InMemoryTransactionRepository
from ledger_pipeline.settings import PipelineSettings

T0 = datetime(2024, 1, 5, 10, 30, tzinfo=UTC)
AMAZON_SMS = "Rs.500 debited from A/c XX1234 at AMAZON on 05-01-2024"


class _ExplodingStrategy:
    name = "explode"
    is_fallback = False

    def provenance(self) -> ParserType:
        return ParserType.pattern()

    def try_extract(self, text: str):
        if "explode" in text.lower():
            raise RuntimeError("strategy crashed")
        return None


@pytest.fixture
def repo() -> InMemoryTransactionRepository:
    return InMemoryTransactionRepository()


@pytest.fixture
def coordinator() -> ExtractionCoordinator:
    return ExtractionCoordinator([PatternExtractor(), _ExplodingStrategy()], settings=PipelineSettings())


def _sync(messages, coordinator, repo, **kwargs):
    return sync_batch(
        messages, coordinator=coordinator, gate=DeduplicationGate(), repository=repo, **kwargs
    )


def test_same_message_with_different_whitespace_is_one_transaction(coordinator, repo):
    messages = [
        RawMessage(AMAZON_SMS, T0),
        RawMessage("  Rs.500   debited from A/c XX1234\nat AMAZON on 05-01-2024 ", T0 + timedelta(minutes=5)),
    ]

    summary = _sync(messages, coordinator, repo, concurrency=2)

    assert (summary.new_count, summary.duplicate_count, summary.failed_count) == (1, 1, 0)
    stored = repo.query_all()
    assert len(stored) == 1
    assert stored[0].raw_message == AMAZON_SMS


def test_resyncing_a_batch_adds_nothing(coordinator, repo):
    messages = [
        RawMessage(AMAZON_SMS, T0),
        RawMessage("Rs 250 paid to swiggy@upi via UPI. Ref 412345678901", T0 + timedelta(hours=2)),
        RawMessage("Meeting moved to 5pm", T0 + timedelta(hours=3)),
    ]
    first = _sync(messages, coordinator, repo)
    second = _sync(list(reversed(messages)), coordinator, repo)

    assert first.new_count == 3
    assert second.new_count == 0
    assert second.duplicate_count == 3
    assert len(repo.query_all()) == 3


def test_reworded_alert_for_same_payment_is_duplicate(coordinator, repo):
    messages = [
        RawMessage(AMAZON_SMS, T0),
        RawMessage("Your A/c XX1234 is debited with Rs 500.00 at AMAZON", T0 + timedelta(hours=1)),
    ]

    summary = _sync(messages, coordinator, repo)

    assert summary.new_count == 1
    assert summary.duplicate_count == 1


def test_same_amount_on_other_account_is_not_duplicate(coordinator, repo):
    messages = [
        RawMessage(AMAZON_SMS, T0),
        RawMessage("Rs.500 debited from A/c XX9999 at AMAZON on 05-01-2024", T0),
    ]

    summary = _sync(messages, coordinator, repo)

    assert summary.new_count == 2
    assert {t.account_last_digits for t in repo.query_all()} == {"1234", "9999"}


def test_extraction_crash_is_counted_and_does_not_stop_batch(coordinator, repo):
    messages = [
        RawMessage("please EXPLODE now", T0),
        RawMessage(AMAZON_SMS, T0 + timedelta(minutes=1)),
    ]

    summary = _sync(messages, coordinator, repo)

    assert summary.failed_count == 1
    assert summary.new_count == 1
    assert summary.total == 2


def test_unparsed_messages_are_still_stored(coordinator, repo):
    summary = _sync([RawMessage("Meeting moved to 5pm", T0)], coordinator, repo)

    assert summary.new_count == 1
    (tx,) = repo.query_all()
    assert not tx.is_parsed
    assert tx.raw_message == "Meeting moved to 5pm"


def test_events_are_emitted_per_new_transaction_and_per_batch(coordinator, repo):
    bus = EventBus()
    seen: list[tuple[str, dict]] = []
    bus.subscribe(TRANSACTION_INGESTED, lambda e, p: seen.append((e, p)))
    bus.subscribe(SYNC_COMPLETED, lambda e, p: seen.append((e, p)))

    _sync([RawMessage(AMAZON_SMS, T0), RawMessage(AMAZON_SMS, T0)], coordinator, repo, events=bus)

    assert [e for e, _ in seen] == [TRANSACTION_INGESTED, SYNC_COMPLETED]
    assert seen[0][1]["transaction"].merchant == "AMAZON"
    assert seen[1][1] == {"new_count": 1, "duplicate_count": 1, "failed_count": 0}


def test_commit_candidate_runs_the_gate(coordinator, repo):
    gate = DeduplicationGate()
    first = coordinator.extract(RawMessage(AMAZON_SMS, T0))
    again = coordinator.extract(RawMessage(AMAZON_SMS, T0))

    assert commit_candidate(first, gate=gate, repository=repo) is IngestOutcome.NEW
    assert commit_candidate(again, gate=gate, repository=repo) is IngestOutcome.DUPLICATE
    assert len(repo.query_all()) == 1


def test_gate_window_is_bounded_in_time(coordinator):
    gate = DeduplicationGate(window_days=2)
    old = coordinator.extract(RawMessage(AMAZON_SMS, T0))
    later = coordinator.extract(RawMessage("Your A/c XX1234 is debited with Rs 500.00 at AMAZON", T0 + timedelta(days=3)))

    assert gate.window_for(later, [old]) == []
    assert not gate.is_duplicate(later, gate.window_for(later, [old]))


def test_merchant_similarity():
    assert merchant_similarity("AMAZON", "amazon") == 1.0
    assert merchant_similarity("AMAZON", "") == 0.0
    assert merchant_similarity("SWIGGY", "NETFLIX") < 0.5


def test_naive_receipt_time_is_read_as_utc(coordinator, repo):
    _sync([RawMessage(AMAZON_SMS, T0)], coordinator, repo)

    summary = _sync(
        [RawMessage("Rs.700 debited from A/c XX1234 at FLIPKART on 06-01-2024", datetime(2024, 1, 6, 9, 0))],
        coordinator,
        repo,
    )

    assert (summary.new_count, summary.duplicate_count, summary.failed_count) == (1, 0, 0)
    flipkart = next(t for t in repo.query_all() if t.merchant == "FLIPKART")
    assert flipkart.timestamp == datetime(2024, 1, 6, 9, 0, tzinfo=UTC)


def test_naive_stored_timestamp_still_deduplicates(coordinator, repo):
    stored = coordinator.extract(RawMessage(AMAZON_SMS, T0))
    repo.append(replace(stored, timestamp=stored.timestamp.replace(tzinfo=None)))

    summary = _sync(
        [RawMessage("Your A/c XX1234 is debited with Rs 500.00 at AMAZON", T0 + timedelta(hours=1))],
        coordinator,
        repo,
    )

    assert summary.duplicate_count == 1


class _ExplodingGate(DeduplicationGate):
    def is_duplicate(self, candidate, existing_window) -> bool:
        if candidate.merchant == "FLIPKART":
            raise RuntimeError("gate crashed")
        return super().is_duplicate(candidate, existing_window)


def test_dedup_crash_is_counted_and_does_not_stop_batch(coordinator, repo):
    messages = [
        RawMessage("Rs.700 debited from A/c XX1234 at FLIPKART on 05-01-2024", T0),
        RawMessage(AMAZON_SMS, T0 + timedelta(minutes=1)),
    ]

    summary = sync_batch(messages, coordinator=coordinator, gate=_ExplodingGate(), repository=repo)

    assert (summary.new_count, summary.failed_count) == (1, 1)
    assert [t.merchant for t in repo.query_all()] == ["AMAZON"]
