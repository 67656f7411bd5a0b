"""OpenAI-backed implementation of the model transport contract.

Uses the Responses API. ``base_url`` lets the same client talk to
OpenAI-compatible gateways. HTTP 429 and 5xx responses are retried with a
short backoff; anything else, and exhausted retries, surface as
:class:`~.errors.ModelError`.
"""

from __future__ import annotations

import random
import time
from typing import Any

from openai import OpenAI, OpenAIError

from .errors import ModelError
from .logging_setup import get_logger

# ---- Tunables (private) ------------------------------------------------------

_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20
_TIMEOUT_SEC: float = 60.0

_logger = get_logger("ledger_pipeline.openai_transport")


def _is_retryable(exc: BaseException) -> bool:
    """True only for HTTP 429 and 5xx errors."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    idx = min(attempt_no - 1, len(_BACKOFF_SCHEDULE_SEC) - 1)
    base = _BACKOFF_SCHEDULE_SEC[idx]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


def response_text(resp: Any) -> str:
    """Text of a Responses API result.

    Prefers ``resp.output_text``; falls back to ``resp.output[0].content[0].text``.
    Returns an empty string when neither is present.
    """

    text = getattr(resp, "output_text", None)
    if isinstance(text, str) and text:
        return text
    output = getattr(resp, "output", None) or []
    if not output:
        return ""
    content = getattr(output[0], "content", None) or []
    if not content:
        return ""
    txt_obj = getattr(content[0], "text", None)
    if isinstance(txt_obj, str):
        return txt_obj
    # Some SDK versions wrap the text in an object with ``value``
    value = getattr(txt_obj, "value", None)
    return value if isinstance(value, str) else ""


class OpenAITransport:
    """``submit(prompt) -> str`` over ``OpenAI().responses.create``.

    The client is created on first use, so wiring a transport costs nothing
    while the fallback stays disabled. A client that cannot be constructed
    (for example, no API key) surfaces as :class:`~.errors.ModelError`.
    """

    def __init__(
        self,
        *,
        model: str,
        base_url: str | None = None,
        api_key: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self._base_url = base_url
        self._api_key = api_key
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            kwargs: dict[str, Any] = {"timeout": _TIMEOUT_SEC}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            if self._api_key:
                kwargs["api_key"] = self._api_key
            try:
                self._client = OpenAI(**kwargs)
            except OpenAIError as e:
                raise ModelError(f"cannot create OpenAI client: {e}") from e
        return self._client

    def submit(self, prompt: str) -> str:
        client = self.client
        attempt = 1
        while True:
            t0 = time.perf_counter()
            try:
                resp = client.responses.create(model=self.model, input=prompt)
            except Exception as e:  # noqa: BLE001 - classified below
                dt_ms = (time.perf_counter() - t0) * 1000.0
                if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                    _logger.error(
                        "openai_transport:failed model=%s attempt=%d latency_ms=%.2f error=%s",
                        self.model,
                        attempt,
                        dt_ms,
                        e.__class__.__name__,
                    )
                    raise ModelError(f"{e.__class__.__name__}: {e}") from e
                _logger.warning(
                    "openai_transport:retry model=%s attempt=%d latency_ms=%.2f error=%s",
                    self.model,
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                )
                _sleep_backoff(attempt)
                attempt += 1
                continue
            text = response_text(resp)
            _logger.info(
                "openai_transport:ok model=%s attempt=%d latency_ms=%.2f chars=%d",
                self.model,
                attempt,
                (time.perf_counter() - t0) * 1000.0,
                len(text),
            )
            if not text.strip():
                raise ModelError("empty response from model", raw_response=text)
            return text


__all__ = ["OpenAITransport", "response_text"]
