"""Synchronous event bus for UI and notification collaborators.

Handlers run on the emitting thread. A handler that raises is logged and
skipped; ingestion never fails because a listener did.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from .logging_setup import get_logger

TRANSACTION_INGESTED = "transactionIngested"
SYNC_COMPLETED = "syncCompleted"
SERIES_REBUILT = "seriesRebuilt"

type Handler = Callable[[str, dict[str, Any]], None]

_logger = get_logger("ledger_pipeline.events")


class EventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, list[Handler]] = {}

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``event``; returns an unsubscribe callable."""

        with self._lock:
            self._handlers.setdefault(event, []).append(handler)
        return lambda: self.unsubscribe(event, handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

    def emit(self, event: str, **payload: Any) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            try:
                handler(event, payload)
            except Exception:  # noqa: BLE001 - listeners must not break the pipeline
                _logger.exception("events:handler_failed event=%s", event)


__all__ = [
    "SERIES_REBUILT",
    "SYNC_COMPLETED",
    "TRANSACTION_INGESTED",
    "EventBus",
    "Handler",
]
