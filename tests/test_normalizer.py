from __future__ import annotations

from datetime import UTC, datetime

from ledger_pipeline.normalizer import (
    EMPTY_FINGERPRINT,
    canonicalize,
    email_content_lines,
    normalize,
    prepare_email,
    rounded_amount,
    strip_html,
)

RECEIVED = datetime(2024, 1, 5, 10, 30, tzinfo=UTC)
SMS = "Rs.500 debited from A/c XX1234 at AMAZON on 05-01-2024"


def test_canonicalize_strips_greeting_footer_and_whitespace():
    raw = f"Dear Customer,   {SMS}.\nNot you? Call 18001234 to block your card."
    assert canonicalize(raw) == SMS


def test_canonical_text_keeps_case():
    assert normalize("Rs.500 debited at AMAZON").canonical_text == "Rs.500 debited at AMAZON"


def test_fingerprint_ignores_whitespace_and_case():
    a = normalize(SMS, received_at=RECEIVED)
    b = normalize("  " + SMS.upper().replace(" ", "   ") + "\n", received_at=RECEIVED)
    assert a.fingerprint == b.fingerprint


def test_fingerprint_has_day_granularity():
    later_same_day = RECEIVED.replace(hour=23, minute=59)
    next_day = datetime(2024, 1, 6, 0, 1, tzinfo=UTC)
    base = normalize(SMS, received_at=RECEIVED).fingerprint
    assert normalize(SMS, received_at=later_same_day).fingerprint == base
    assert normalize(SMS, received_at=next_day).fingerprint != base


def test_empty_input_lands_in_empty_bucket():
    for raw in ("", "   \n\t "):
        result = normalize(raw, received_at=RECEIVED)
        assert result.canonical_text == ""
        assert result.fingerprint == EMPTY_FINGERPRINT


def test_rounded_amount_takes_first_currency_amount():
    assert rounded_amount("Rs.1,250.50 debited, Avl Bal Rs 9,000") == "1251"
    assert rounded_amount("250 INR paid") == "250"
    assert rounded_amount("no money here") is None


def test_strip_html_drops_tags_and_entities():
    html_body = "<html><style>p{}</style><p>Amount&nbsp;Rs.100</p><br>Done</html>"
    lines = [ln.strip() for ln in strip_html(html_body).splitlines() if ln.strip()]
    assert lines == ["Amount\xa0Rs.100", "Done"]


def test_email_preparation_skips_greeting_and_cuts_footer():
    body = (
        "<p>Dear Customer,</p>"
        "<p>Rs.1,250.00 has been debited from your account XX5678 at SWIGGY.</p>"
        "<p>If you did not authorize this, call us.</p>"
        "<p>Some trailing text</p>"
    )
    assert email_content_lines(body) == [
        "Rs.1,250.00 has been debited from your account XX5678 at SWIGGY."
    ]
    assert prepare_email("Transaction alert", body) == (
        "Transaction alert Rs.1,250.00 has been debited from your account XX5678 at SWIGGY."
    )


def test_prepare_email_limits_lines():
    body = "\n".join(f"line {i}" for i in range(10))
    assert prepare_email("", body, max_lines=2) == "line 0 line 1"
