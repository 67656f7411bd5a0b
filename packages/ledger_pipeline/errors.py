"""Error taxonomy for the extraction pipeline and its storage seams.

``NoMatch`` is not an exception: strategies return ``None`` and the
coordinator records :data:`NO_MATCH_REASON`. Duplicates are a normal
ingestion outcome (``IngestOutcome.DUPLICATE``), not an error either.
"""

from __future__ import annotations

NO_MATCH_REASON = "no matching pattern"


class LedgerError(Exception):
    """Base class for errors raised by ``ledger_pipeline``."""


class ModelError(LedgerError):
    """Transport failure or empty response from the remote model.

    Retryable by the caller; the same prompt may succeed later.
    """

    retryable = True

    def __init__(self, message: str, *, raw_response: str | None = None) -> None:
        super().__init__(message)
        self.raw_response = raw_response


class SchemaError(LedgerError):
    """The model answered but the payload does not match the expected shape.

    Not retryable without changing the prompt or the model.
    """

    retryable = False

    def __init__(self, message: str, *, raw_response: str) -> None:
        super().__init__(message)
        self.raw_response = raw_response


class StorageError(LedgerError):
    """A repository operation failed; fatal to the current operation only."""


__all__ = [
    "NO_MATCH_REASON",
    "LedgerError",
    "ModelError",
    "SchemaError",
    "StorageError",
]
