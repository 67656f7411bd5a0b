"""Remote-model fallback extraction.

This module owns prompt construction (via :mod:`.prompting`) and response
decoding. The network call itself goes through any object implementing
:class:`ModelTransport` (``submit(prompt) -> str``); see
:mod:`.openai_transport` for the OpenAI-backed one.

Failure classes
---------------
- :class:`~.errors.ModelError`: the transport raised, or returned nothing.
- :class:`~.errors.SchemaError`: a response arrived but no JSON object with
  the expected fields could be decoded from it.

A decoded payload that says "not a transaction" is a no-match (``None``),
not an error. Every transport invocation is counted on the shared
:class:`ModelCallStats` handle, together with its error if it failed.
"""

from __future__ import annotations

import json
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from . import prompting
from .currency import CurrencyConverter, normalize_code
from .errors import ModelError, SchemaError
from .logging_setup import get_logger
from .models import UPI_ACCOUNT_SENTINEL, ExtractionResult, ParserType, TransactionType
from .patterns import clean_merchant

_logger = get_logger("ledger_pipeline.model_fallback")

_DEFAULT_CONFIDENCE: float = 0.8
_EXCERPT_MAX_CHARS: int = 1200
_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)

T = TypeVar("T")


class ModelTransport(Protocol):
    def submit(self, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# Shared call statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CallStatsSnapshot:
    call_count: int
    last_error: str | None


class ModelCallStats:
    """Process-lifetime counter of model invocations and the last error seen.

    Pass one instance to every extractor that should share it. Updates take a
    lock so a count and its error are recorded together.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._call_count = 0
        self._last_error: str | None = None

    def record(self, error: str | None = None) -> None:
        with self._lock:
            self._call_count += 1
            if error is not None:
                self._last_error = error

    def snapshot(self) -> CallStatsSnapshot:
        with self._lock:
            return CallStatsSnapshot(self._call_count, self._last_error)

    @property
    def call_count(self) -> int:
        return self.snapshot().call_count

    @property
    def last_error(self) -> str | None:
        return self.snapshot().last_error

    def reset(self) -> None:
        with self._lock:
            self._call_count = 0
            self._last_error = None


# ---------------------------------------------------------------------------
# Response decoding
# ---------------------------------------------------------------------------


def _to_decimal(v: Any) -> Any:
    if v is None or isinstance(v, Decimal):
        return v
    if isinstance(v, bool):
        raise ValueError("expected a number")
    if isinstance(v, int | float):
        return Decimal(str(v))
    if isinstance(v, str):
        cleaned = re.sub(r"(?i)rs\.?|inr|₹|[,\s]", "", v)
        if not cleaned:
            return None
        try:
            return Decimal(cleaned)
        except InvalidOperation as e:
            raise ValueError(f"not a number: {v!r}") from e
    raise ValueError(f"not a number: {v!r}")


class ModelPayload(BaseModel):
    """Validated shape of the model's JSON answer."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    amount: Decimal
    type: TransactionType
    merchant: str = ""
    account_last_digits: str | None = None
    balance: Decimal | None = None
    txn_date: date | None = Field(None, alias="date")
    currency: str | None = None
    transaction_id: str | None = None
    confidence: float = _DEFAULT_CONFIDENCE

    @field_validator("amount", "balance", mode="before")
    @classmethod
    def _numbers(cls, v: Any) -> Any:
        return _to_decimal(v)

    @field_validator("amount")
    @classmethod
    def _positive(cls, v: Decimal) -> Decimal:
        if not v.is_finite() or v <= 0:
            raise ValueError("amount must be a positive number")
        return v.quantize(Decimal("0.01"))

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("merchant", mode="before")
    @classmethod
    def _merchant_text(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("account_last_digits", mode="before")
    @classmethod
    def _account(cls, v: Any) -> Any:
        if v is None:
            return None
        s = str(v).strip()
        if not s or s.lower() in {"null", "none", "n/a"}:
            return None
        if s.upper() in {"UPI", UPI_ACCOUNT_SENTINEL}:
            return UPI_ACCOUNT_SENTINEL
        digits = re.sub(r"\D", "", s)
        return digits[-4:] if digits else None

    @field_validator("txn_date", mode="before")
    @classmethod
    def _date(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return normalize_code(str(v))

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> Any:
        return _DEFAULT_CONFIDENCE if v is None else v

    @field_validator("confidence")
    @classmethod
    def _unit_interval(cls, v: float) -> float:
        if 0.0 <= v <= 1.0:
            return v
        raise ValueError("confidence must be within [0,1]")


def locate_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring, ignoring prose around it.

    Code fences are unwrapped first. Braces inside JSON strings are skipped.
    """

    fenced = _FENCE_RE.search(text)
    if fenced is not None:
        text = fenced.group(1)
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        start = text.find("{", start + 1)
    return None


def decode_response(raw: str) -> ModelPayload | None:
    """Decode a model answer into a payload, or ``None`` for "not a transaction".

    Raises
    ------
    ModelError
        When ``raw`` is empty.
    SchemaError
        When no JSON object can be located, decoded, or validated.
    """

    if raw is None or not raw.strip():
        raise ModelError("empty response from model", raw_response=raw)
    candidate = locate_json_object(raw)
    if candidate is None:
        raise SchemaError("no JSON object in model response", raw_response=raw)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise SchemaError(f"model response is not valid JSON: {e.msg}", raw_response=raw) from e
    if not isinstance(data, dict):
        raise SchemaError("model response JSON is not an object", raw_response=raw)
    if data.get("is_transaction") is False or data.get("amount") in (None, ""):
        return None
    try:
        return ModelPayload.model_validate(data)
    except ValidationError as e:
        fields = ",".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise SchemaError(
            f"model response failed validation: fields={fields or '?'}", raw_response=raw
        ) from e


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class ModelFallbackExtractor:
    """Extraction strategy backed by a remote language model.

    Parameters
    ----------
    transport:
        Object with ``submit(prompt) -> str``.
    model_name:
        Recorded in the transaction's parser provenance.
    stats:
        Shared call counter; a fresh one is created when omitted.
    converter:
        Converts foreign-currency answers into the home currency.
    """

    name = "model"
    is_fallback = True

    def __init__(
        self,
        transport: ModelTransport,
        *,
        model_name: str,
        stats: ModelCallStats | None = None,
        converter: CurrencyConverter | None = None,
    ) -> None:
        self._transport = transport
        self.model_name = model_name
        self.stats = stats if stats is not None else ModelCallStats()
        self._converter = converter or CurrencyConverter()

    def provenance(self) -> ParserType:
        return ParserType.from_model(self.model_name)

    def email_provenance(self) -> ParserType:
        return ParserType.email_model(self.model_name)

    def try_extract(self, text: str) -> ExtractionResult | None:
        prompt = prompting.build_extraction_prompt(
            text, home_currency=self._converter.home_currency
        )
        payload = self._invoke(prompt, decode_response)
        if payload is None:
            _logger.debug("model_fallback:not_a_transaction model=%s", self.model_name)
            return None
        return self._to_result(payload)

    def try_extract_email(self, header_block: str, body_block: str) -> ExtractionResult | None:
        """Two-step flow: ask for an excerpt, then extract from the excerpt.

        An empty (or ``NONE``) excerpt short-circuits without the second call.
        """

        prompt = prompting.build_excerpt_prompt(header_block, body_block)
        excerpt = self._invoke(prompt, _decode_excerpt)
        if not excerpt:
            _logger.info("model_fallback:email_no_excerpt model=%s", self.model_name)
            return None
        return self.try_extract(excerpt)

    def _invoke(self, prompt: str, decode: Callable[[str], T]) -> T:
        error: str | None = None
        try:
            try:
                raw = self._transport.submit(prompt)
            except ModelError:
                raise
            except Exception as e:  # noqa: BLE001 - transport errors are classified here
                raise ModelError(f"model transport failed: {e}") from e
            return decode(raw)
        except (ModelError, SchemaError) as e:
            error = f"{e.__class__.__name__}: {e}"
            _logger.warning(
                "model_fallback:call_failed model=%s error=%s", self.model_name, error
            )
            raise
        finally:
            self.stats.record(error)

    def _to_result(self, payload: ModelPayload) -> ExtractionResult:
        amount = payload.amount
        original_currency: str | None = None
        original_amount: Decimal | None = None
        code = payload.currency or self._converter.home_currency
        if code != self._converter.home_currency and self._converter.supports(code):
            original_currency, original_amount = code, amount
            amount = self._converter.to_home(amount, code)
        when = None
        if payload.txn_date is not None:
            when = datetime.combine(payload.txn_date, datetime.min.time())
        return ExtractionResult(
            amount=amount,
            type=payload.type,
            merchant=clean_merchant(payload.merchant),
            confidence=payload.confidence,
            account_last_digits=payload.account_last_digits,
            balance=payload.balance,
            timestamp=when,
            original_currency=original_currency,
            original_amount=original_amount,
            transaction_ref=payload.transaction_id or None,
        )


def _decode_excerpt(raw: str) -> str:
    if raw is None or not raw.strip():
        raise ModelError("empty response from model", raw_response=raw)
    fenced = _FENCE_RE.search(raw)
    text = (fenced.group(1) if fenced else raw).strip().strip('"').strip()
    if text.upper().rstrip(".") == prompting.NO_TRANSACTION:
        return ""
    return text[:_EXCERPT_MAX_CHARS]


__all__ = [
    "CallStatsSnapshot",
    "ModelCallStats",
    "ModelFallbackExtractor",
    "ModelPayload",
    "ModelTransport",
    "decode_response",
    "locate_json_object",
]
