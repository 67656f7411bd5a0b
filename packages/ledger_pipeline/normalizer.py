"""Message normalization and content fingerprints.

``normalize`` turns a raw SMS (or a prepared email excerpt) into a canonical
text block and a fingerprint used by the deduplication gate. Case is kept in
the canonical text; only the fingerprint payload is case-folded.

The fingerprint is a SHA-256 over a compact JSON payload of the case-folded
text, the first currency amount rounded to whole units, and the calendar day
the message was received. Day granularity lets two deliveries of the same
alert minutes apart collide.
"""

from __future__ import annotations

import hashlib
import html
import json
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

EMPTY_FINGERPRINT = hashlib.sha256(b"").hexdigest()

_WS_RE = re.compile(r"\s+")
_SMS_GREETING_RE = re.compile(r"^\s*(?:dear|hello|hi)\b[^,.:\n]{0,40}[,:]\s*", re.IGNORECASE)
_SMS_FOOTER_MARKERS: tuple[str, ...] = (
    "not you?",
    "if not done by you",
    "if not you",
    "if you did not",
    "to report fraud",
    "to block",
    "never share your",
    "do not share your",
    "t&c apply",
)
_AMOUNT_RE = re.compile(
    r"(?:rs\.?|inr|₹)\s*([\d,]+(?:\.\d{1,2})?)|([\d,]+(?:\.\d{1,2})?)\s*(?:rs\.?|inr|₹)",
    re.IGNORECASE,
)

_BLOCK_TAG_RE = re.compile(r"<(script|style)\b.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_BREAK_TAG_RE = re.compile(r"<\s*(?:br|/p|/div|/tr|/li|/h\d)\b[^>]*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_EMAIL_GREETING_RE = re.compile(r"^(?:dear|hello|hi)\b", re.IGNORECASE)
_EMAIL_FOOTER_MARKERS: tuple[str, ...] = (
    "in case",
    "if you",
    "the available",
    "available credit",
    "total credit",
    "this is an",
    "do not reply",
    "please do not",
    "warm regards",
    "regards,",
)


@dataclass(frozen=True, slots=True)
class NormalizedMessage:
    canonical_text: str
    fingerprint: str


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def canonicalize(raw: str) -> str:
    """Strip greeting and footer boilerplate and collapse whitespace."""

    text = collapse_whitespace(raw or "")
    if not text:
        return ""
    text = _SMS_GREETING_RE.sub("", text, count=1)
    lowered = text.lower()
    cut = len(text)
    for marker in _SMS_FOOTER_MARKERS:
        idx = lowered.find(marker)
        # A footer needs something in front of it, otherwise keep everything.
        if 0 < idx < cut:
            cut = idx
    return text[:cut].strip(" .-")


def rounded_amount(text: str) -> str | None:
    """First currency-tagged amount in ``text``, rounded to whole units."""

    m = _AMOUNT_RE.search(text)
    if m is None:
        return None
    raw = (m.group(1) or m.group(2) or "").replace(",", "")
    try:
        value = Decimal(raw)
    except InvalidOperation:
        return None
    return str(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_fingerprint(canonical_text: str, *, received_at: datetime | None) -> str:
    """Stable SHA-256 fingerprint over ``(text, rounded amount, day)``."""

    if not canonical_text:
        return EMPTY_FINGERPRINT
    payload = {
        "text": canonical_text.casefold(),
        "amount": rounded_amount(canonical_text),
        "day": received_at.date().isoformat() if received_at is not None else None,
    }
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def normalize(raw: str, *, received_at: datetime | None = None) -> NormalizedMessage:
    """Return the canonical text and fingerprint for ``raw``. Never raises."""

    canonical = canonicalize(raw)
    return NormalizedMessage(canonical, compute_fingerprint(canonical, received_at=received_at))


# ---------------------------------------------------------------------------
# Email preparation
# ---------------------------------------------------------------------------


def strip_html(text: str) -> str:
    """Drop scripts, styles and tags; decode entities; keep line structure."""

    if "<" not in text and "&" not in text:
        return text
    out = _BLOCK_TAG_RE.sub(" ", text)
    out = _BREAK_TAG_RE.sub("\n", out)
    out = _TAG_RE.sub(" ", out)
    return html.unescape(out)


def email_content_lines(body: str) -> list[str]:
    """Meaningful body lines: greetings skipped, stopped at the footer."""

    lines: list[str] = []
    for raw_line in strip_html(body).splitlines():
        line = collapse_whitespace(raw_line)
        if not line:
            continue
        if _EMAIL_GREETING_RE.match(line) and len(line) < 60:
            continue
        lowered = line.lower()
        if any(lowered.startswith(marker) for marker in _EMAIL_FOOTER_MARKERS):
            break
        lines.append(line)
    return lines


def prepare_email(header_block: str, body_block: str, *, max_lines: int = 3) -> str:
    """Short transaction-relevant text for pattern matching an email."""

    lines = email_content_lines(body_block)[:max_lines]
    subject = collapse_whitespace(strip_html(header_block))
    parts = [subject] if subject else []
    parts.extend(lines)
    return " ".join(parts)


__all__ = [
    "EMPTY_FINGERPRINT",
    "NormalizedMessage",
    "canonicalize",
    "collapse_whitespace",
    "compute_fingerprint",
    "email_content_lines",
    "normalize",
    "prepare_email",
    "rounded_amount",
    "strip_html",
]
