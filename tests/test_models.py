from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from ledger_pipeline.models import (
    FrequencyType,
    ParserKind,
    ParserType,
    RecurringSeries,
    SyncSummary,
    Transaction,
)

NOW = datetime(2024, 1, 5, tzinfo=UTC)


@pytest.mark.parametrize(
    ("tag", "rendered"),
    [
        (ParserType.pattern(), "pattern"),
        (ParserType.from_model("gpt-4o-mini"), "model:gpt-4o-mini"),
        (ParserType.model_failed(), "model:failed"),
        (ParserType.email_model("gpt-4o-mini"), "email-model:gpt-4o-mini"),
    ],
)
def test_parser_type_render_and_parse(tag: ParserType, rendered: str):
    assert tag.render() == rendered
    assert str(tag) == rendered
    assert ParserType.parse(rendered) == tag


def test_parser_type_parse_edge_cases():
    assert ParserType.parse(None) is None
    assert ParserType.parse("  ") is None
    assert ParserType.parse("model").kind is ParserKind.MODEL
    with pytest.raises(ValueError):
        ParserType.parse("regex")


def test_is_parsed_requires_amount_merchant_and_no_error():
    base = Transaction(id="t", raw_message="m", timestamp=NOW, amount=Decimal("1"), merchant="X")
    assert base.is_parsed
    assert not Transaction(id="t", raw_message="m", timestamp=NOW, merchant="X").is_parsed
    assert not Transaction(id="t", raw_message="m", timestamp=NOW, amount=Decimal("1")).is_parsed
    assert not Transaction(
        id="t", raw_message="m", timestamp=NOW, amount=Decimal("1"), merchant="X", parsing_error="e"
    ).is_parsed


def test_sync_summary_total():
    assert SyncSummary(3, 2, 1).total == 6


def _series(**overrides) -> RecurringSeries:
    fields = {
        "id": "s",
        "merchant": "GYM",
        "category": "Healthcare",
        "frequency_type": FrequencyType.MONTHLY,
        "average_amount": Decimal("1500"),
        "occurrence_count": 2,
        "first_occurrence": NOW,
        "last_occurrence": NOW,
        "next_expected_date": None,
        "confidence_score": 1.0,
    }
    fields.update(overrides)
    return RecurringSeries(**fields)


def test_recurring_series_invariants():
    with pytest.raises(ValueError):
        _series(occurrence_count=1)
    with pytest.raises(ValueError):
        _series(confidence_score=1.2)
    with pytest.raises(ValueError):
        _series(first_occurrence=datetime(2024, 2, 1, tzinfo=UTC))


def test_frequency_labels():
    assert _series().frequency_label == "Monthly"
    assert _series(frequency_type=FrequencyType.BIWEEKLY).frequency_label == "Every 2 weeks"
    assert _series(frequency_type=FrequencyType.IRREGULAR).frequency_label == "Irregular"
    assert (
        _series(frequency_type=FrequencyType.IRREGULAR, median_gap_days=44.6).frequency_label
        == "About every 45 days"
    )
