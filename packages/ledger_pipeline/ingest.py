"""Batch ingestion: extraction, deduplication and append.

Order of work in :func:`sync_batch`:

1. Sort messages oldest first (stable) and normalize them.
2. Messages whose fingerprint is already stored are duplicates; they cost no
   extraction at all.
3. Every other distinct fingerprint is extracted once, concurrently, through
   a bounded pool, so a slow model call for one message does not hold up the
   pattern-only ones.
4. Decisions are committed sequentially in the fixed oldest-first order.
   Each decision sees every transaction committed before it, including
   earlier messages of the same batch.

A failure on one message is counted and logged; it never undoes decisions
already made for earlier messages.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import replace

from .coordinator import ExtractionCoordinator
from .dedup import DeduplicationGate
from .errors import StorageError
from .events import SYNC_COMPLETED, TRANSACTION_INGESTED, EventBus
from .logging_setup import get_logger
from .models import IngestOutcome, RawMessage, SyncSummary, Transaction
from .normalizer import normalize
from .pmap import p_map
from .repository import TransactionRepository

_logger = get_logger("ledger_pipeline.ingest")


class _AccountIndex:
    """Committed transactions bucketed by account suffix for window lookups."""

    def __init__(self, transactions: Iterable[Transaction]) -> None:
        self._by_account: dict[str | None, list[Transaction]] = {}
        self.fingerprints: set[str] = set()
        for t in transactions:
            self.add(t)

    def add(self, t: Transaction) -> None:
        self._by_account.setdefault(t.account_last_digits, []).append(t)
        if t.fingerprint:
            self.fingerprints.add(t.fingerprint)

    def same_account(self, t: Transaction) -> list[Transaction]:
        return self._by_account.get(t.account_last_digits, [])


def commit_candidate(
    candidate: Transaction,
    *,
    gate: DeduplicationGate,
    repository: TransactionRepository,
    committed: list[Transaction] | None = None,
) -> IngestOutcome:
    """Run the dedup gate for one extracted transaction and append it if new.

    ``committed`` defaults to the repository's current contents.
    """

    existing = committed if committed is not None else repository.query_all()
    window = gate.window_for(candidate, existing)
    if gate.is_duplicate(candidate, window):
        return IngestOutcome.DUPLICATE
    repository.append(candidate)
    return IngestOutcome.NEW


def sync_batch(
    messages: Iterable[RawMessage],
    *,
    coordinator: ExtractionCoordinator,
    gate: DeduplicationGate,
    repository: TransactionRepository,
    events: EventBus | None = None,
    concurrency: int | None = None,
) -> SyncSummary:
    ordered = sorted(messages, key=lambda m: m.received_at)
    prepared = [(m, normalize(m.text, received_at=m.received_at).fingerprint) for m in ordered]

    index = _AccountIndex(repository.query_all())

    # One extraction per distinct unseen fingerprint
    firsts: dict[str, RawMessage] = {}
    for m, fp in prepared:
        if fp not in index.fingerprints and fp not in firsts:
            firsts[fp] = m

    def _extract(item: tuple[str, RawMessage]) -> tuple[str, Transaction | Exception]:
        fp, message = item
        try:
            return fp, coordinator.extract(message)
        except Exception as e:  # noqa: BLE001 - counted as a failed message
            _logger.exception("sync_batch:extract_crashed fingerprint=%s", fp[:12])
            return fp, e

    workers = concurrency or coordinator.settings.sync_concurrency
    extracted = dict(p_map(list(firsts.items()), _extract, concurrency=workers))

    new_count = duplicate_count = failed_count = 0
    reused: set[str] = set()
    for position, (message, fp) in enumerate(prepared):
        if fp in index.fingerprints:
            duplicate_count += 1
            _logger.debug("sync_batch:duplicate position=%d reason=fingerprint", position)
            continue
        outcome = extracted.get(fp)
        if outcome is None or isinstance(outcome, Exception):
            failed_count += 1
            continue
        candidate = outcome
        if fp in reused:
            candidate = replace(
                outcome,
                id=str(uuid.uuid4()),
                raw_message=message.text,
                received_at=message.received_at,
                source_account_id=message.source_account_id,
            )
        reused.add(fp)

        try:
            window = gate.window_for(candidate, index.same_account(candidate))
            if gate.is_duplicate(candidate, window):
                duplicate_count += 1
                _logger.debug("sync_batch:duplicate position=%d reason=similar", position)
                continue
            repository.append(candidate)
        except StorageError:
            failed_count += 1
            _logger.error("sync_batch:append_failed position=%d id=%s", position, candidate.id)
            continue
        except Exception:  # noqa: BLE001 - counted as a failed message
            failed_count += 1
            _logger.exception("sync_batch:commit_crashed position=%d id=%s", position, candidate.id)
            continue
        index.add(candidate)
        new_count += 1
        if events is not None:
            events.emit(TRANSACTION_INGESTED, transaction=candidate)

    summary = SyncSummary(new_count, duplicate_count, failed_count)
    _logger.info(
        "sync_batch:done messages=%d new=%d duplicates=%d failed=%d",
        len(prepared),
        new_count,
        duplicate_count,
        failed_count,
    )
    if events is not None:
        events.emit(
            SYNC_COMPLETED,
            new_count=new_count,
            duplicate_count=duplicate_count,
            failed_count=failed_count,
        )
    return summary


__all__ = ["commit_candidate", "sync_batch"]
