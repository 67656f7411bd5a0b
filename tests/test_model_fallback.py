from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest

from ledger_pipeline.errors import ModelError, SchemaError
from ledger_pipeline.model_fallback import (
    ModelCallStats,
    ModelFallbackExtractor,
    decode_response,
    locate_json_object,
)
from ledger_pipeline.models import UPI_ACCOUNT_SENTINEL, ParserType, TransactionType
from tests.helpers.model_stub import ScriptedTransport, model_json


def _extractor(*replies, stats: ModelCallStats | None = None):
    transport = ScriptedTransport(replies)
    return ModelFallbackExtractor(transport, model_name="gpt-test", stats=stats), transport


def test_decode_accepts_prose_and_code_fences():
    raw = (
        "Sure, here it is:\n```json\n"
        '{"is_transaction": true, "amount": "1,250.50", "type": "DEBIT", '
        '"merchant": "SWIGGY {north}", "date": "2024-01-05"}\n```\nanything else?'
    )
    payload = decode_response(raw)

    assert payload is not None
    assert payload.amount == Decimal("1250.50")
    assert payload.type is TransactionType.DEBIT
    assert payload.merchant == "SWIGGY {north}"
    assert payload.txn_date.isoformat() == "2024-01-05"


def test_locate_json_object_skips_braces_in_strings():
    assert locate_json_object('x {"a": "}{"} y') == '{"a": "}{"}'
    assert locate_json_object("no object") is None


@pytest.mark.parametrize(
    "raw",
    ['{"is_transaction": false, "amount": null}', '{"amount": ""}', '{"amount": null}'],
)
def test_decode_not_a_transaction_is_none(raw: str):
    assert decode_response(raw) is None


def test_decode_empty_is_model_error():
    with pytest.raises(ModelError):
        decode_response("   ")


def test_decode_without_json_is_schema_error_with_raw_kept():
    with pytest.raises(SchemaError) as excinfo:
        decode_response("I could not find anything")
    assert excinfo.value.raw_response == "I could not find anything"
    assert excinfo.value.retryable is False


@pytest.mark.parametrize(
    "raw",
    [
        model_json(amount=100, type="transfer"),
        model_json(amount=-5, type="debit"),
        model_json(amount="abc", type="debit"),
        model_json(amount=10, type="debit", confidence=3),
        '{"amount": 10, "type": "debit",}',
        "[1, 2]",
    ],
)
def test_decode_invalid_payload_is_schema_error(raw: str):
    with pytest.raises(SchemaError):
        decode_response(raw)


def test_account_digits_are_normalized():
    assert decode_response(model_json(amount=1, type="credit", account_last_digits="XX987654")).account_last_digits == "7654"
    assert decode_response(model_json(amount=1, type="credit", account_last_digits="upi")).account_last_digits == UPI_ACCOUNT_SENTINEL
    assert decode_response(model_json(amount=1, type="credit", account_last_digits="null")).account_last_digits is None


def test_try_extract_maps_payload_to_result():
    extractor, transport = _extractor(
        model_json(
            amount=1250.5,
            type="debit",
            merchant="UPI/DR/123456789/SWIGGY",
            account_last_digits="1234",
            date="2024-01-05",
            transaction_id="412345678901",
            confidence=0.9,
        )
    )
    result = extractor.try_extract("some bank message")

    assert transport.messages == ["some bank message"]
    assert result is not None
    assert result.amount == Decimal("1250.50")
    assert result.merchant == "SWIGGY"
    assert result.timestamp == datetime(2024, 1, 5)
    assert result.transaction_ref == "412345678901"
    assert result.confidence == pytest.approx(0.9)
    assert extractor.provenance() == ParserType.from_model("gpt-test")


def test_try_extract_converts_foreign_currency():
    extractor, _ = _extractor(model_json(amount=10, type="debit", merchant="NETFLIX", currency="USD"))
    result = extractor.try_extract("USD 10 charged")

    assert result is not None
    assert result.amount == Decimal("831.20")
    assert result.original_currency == "USD"
    assert result.original_amount == Decimal("10.00")


def test_not_a_transaction_returns_none_and_counts_call():
    extractor, _ = _extractor('{"is_transaction": false, "amount": null}')
    assert extractor.try_extract("Your OTP is 1234") is None
    assert extractor.stats.call_count == 1
    assert extractor.stats.last_error is None


def test_transport_failure_is_wrapped_and_recorded():
    extractor, _ = _extractor(RuntimeError("connection reset"))
    with pytest.raises(ModelError, match="connection reset"):
        extractor.try_extract("msg")
    snap = extractor.stats.snapshot()
    assert snap.call_count == 1
    assert snap.last_error is not None and snap.last_error.startswith("ModelError:")


def test_stats_are_shared_and_resettable():
    stats = ModelCallStats()
    first, _ = _extractor(model_json(amount=1, type="debit"), stats=stats)
    second, _ = _extractor("garbage", stats=stats)

    first.try_extract("a")
    with pytest.raises(SchemaError):
        second.try_extract("b")

    assert stats.call_count == 2
    assert stats.last_error.startswith("SchemaError:")
    # A later success does not clear the last error
    first.try_extract("c")
    assert stats.call_count == 3
    assert stats.last_error.startswith("SchemaError:")

    stats.reset()
    assert stats.snapshot().call_count == 0
    assert stats.last_error is None


@pytest.mark.parametrize("excerpt", ["NONE", "none.", '"NONE"'])
def test_email_flow_stops_after_empty_excerpt(excerpt: str):
    extractor, transport = _extractor(excerpt, model_json(amount=1, type="debit"))

    assert extractor.try_extract_email("Newsletter", "Our latest offers") is None
    assert transport.calls == 1


def test_email_flow_extracts_from_excerpt():
    excerpt = "Rs.499 debited from card XX4321 at SPOTIFY"
    extractor, transport = _extractor(excerpt, model_json(amount=499, type="debit", merchant="SPOTIFY"))

    result = extractor.try_extract_email("Card alert", "<p>Dear customer,</p><p>" + excerpt + "</p>")

    assert result is not None
    assert result.merchant == "SPOTIFY"
    assert transport.calls == 2
    assert transport.messages[1] == excerpt
    assert extractor.stats.call_count == 2
    assert extractor.email_provenance().render() == "email-model:gpt-test"
