"""Extraction coordinator: runs the strategy chain and records provenance.

Strategies are tried in order behind one interface (``try_extract``). The
first result at or above the confidence floor wins. Strategies flagged
``is_fallback`` only run while ``settings.fallback_enabled`` is set, so
flipping the setting and calling :meth:`ExtractionCoordinator.reparse` is
enough to upgrade old records.

Extraction never raises past this module. Model failures and no-match
outcomes are written into the transaction (``parsing_error``,
``parser_type``), and the record keeps its raw message.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from .errors import NO_MATCH_REASON, ModelError, SchemaError
from .learner import CategoryLearner
from .logging_setup import get_logger
from .models import (
    UNCATEGORIZED,
    EmailMessage,
    ExtractionResult,
    MessageSource,
    ParserKind,
    ParserType,
    RawMessage,
    ReparseSummary,
    Transaction,
    as_utc,
)
from .normalizer import email_content_lines, normalize, prepare_email, strip_html
from .repository import TransactionRepository
from .settings import PipelineSettings

_logger = get_logger("ledger_pipeline.coordinator")

_MODEL_NO_TRANSACTION = "model found no transaction"


@runtime_checkable
class ExtractionStrategy(Protocol):
    name: str
    is_fallback: bool

    def provenance(self) -> ParserType: ...

    def try_extract(self, text: str) -> ExtractionResult | None: ...


@runtime_checkable
class EmailExtractionStrategy(ExtractionStrategy, Protocol):
    def email_provenance(self) -> ParserType: ...

    def try_extract_email(self, header_block: str, body_block: str) -> ExtractionResult | None: ...


def _align_timestamp(extracted: datetime | None, received: datetime) -> datetime:
    """Give an extracted (naive) date the receipt timezone and, if date-only, its time."""

    if extracted is None:
        return received
    if extracted.tzinfo is None and received.tzinfo is not None:
        extracted = extracted.replace(tzinfo=received.tzinfo)
    is_date_only = (extracted.hour, extracted.minute, extracted.second) == (0, 0, 0)
    if is_date_only and extracted.date() == received.date():
        return received
    return extracted


class ExtractionCoordinator:
    """Orchestrates normalization, the strategy chain and auto-categorization.

    Parameters
    ----------
    strategies:
        Ordered extraction strategies; pattern matchers first.
    settings:
        Pipeline settings; may be swapped at runtime via :attr:`settings`.
    learner:
        Optional category learner used for suggestions only.
    repository:
        Required for :meth:`reparse` and :meth:`bulk_reparse`.
    sleep:
        Pause function used between fallback calls during bulk re-parse.
    """

    def __init__(
        self,
        strategies: Sequence[ExtractionStrategy],
        *,
        settings: PipelineSettings | None = None,
        learner: CategoryLearner | None = None,
        repository: TransactionRepository | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not strategies:
            raise ValueError("at least one extraction strategy is required")
        self._strategies = tuple(strategies)
        self.settings = settings or PipelineSettings()
        self._learner = learner
        self._repository = repository
        self._sleep = sleep

    @property
    def strategies(self) -> tuple[ExtractionStrategy, ...]:
        return self._strategies

    @strategies.setter
    def strategies(self, strategies: Sequence[ExtractionStrategy]) -> None:
        if not strategies:
            raise ValueError("at least one extraction strategy is required")
        self._strategies = tuple(strategies)

    # ---- Single-message extraction ------------------------------------------

    def extract(
        self,
        message: RawMessage | str,
        *,
        received_at: datetime | None = None,
    ) -> Transaction:
        """Build a new :class:`Transaction` for ``message``. Never raises on parse failure."""

        if isinstance(message, str):
            message = RawMessage(message, received_at or datetime.now(UTC))
        normalized = normalize(message.text, received_at=message.received_at)
        tx = Transaction(
            id=str(uuid.uuid4()),
            raw_message=message.text,
            timestamp=message.received_at,
            fingerprint=normalized.fingerprint,
            received_at=message.received_at,
            source_account_id=message.source_account_id,
        )
        return self._categorize(self._run_chain(tx, normalized.canonical_text))

    def extract_email(self, email: EmailMessage) -> Transaction:
        """Pattern matching over the prepared email text, then the model flow.

        Long bodies use the two-step model flow (excerpt, then extract).
        """

        prepared = prepare_email(email.header_block, email.body_block)
        normalized = normalize(prepared, received_at=email.received_at)
        tx = Transaction(
            id=str(uuid.uuid4()),
            raw_message=email.text,
            timestamp=email.received_at,
            fingerprint=normalized.fingerprint,
            received_at=email.received_at,
            source_account_id=email.source_account_id,
            source=MessageSource.EMAIL,
        )
        return self._categorize(self._run_chain(tx, normalized.canonical_text, email=email))

    # ---- Re-parse -------------------------------------------------------------

    def reparse(self, transaction_id: str) -> Transaction:
        """Re-run extraction for a stored transaction and persist the result.

        Only extraction-derived fields change. The record is never deleted,
        however often parsing fails.

        Raises
        ------
        KeyError
            When no transaction has ``transaction_id``.
        """

        repo = self._require_repository()
        current = repo.get(transaction_id)
        if current is None:
            raise KeyError(transaction_id)
        updated = self._reextract(current)
        repo.update(updated)
        _logger.info(
            "coordinator:reparsed id=%s parsed=%s parser=%s",
            transaction_id,
            updated.is_parsed,
            updated.parser_type.render() if updated.parser_type else None,
        )
        return updated

    def bulk_reparse(
        self,
        transaction_ids: Iterable[str] | None = None,
        *,
        cancel: threading.Event | None = None,
        on_progress: Callable[[int, int, Transaction], None] | None = None,
    ) -> ReparseSummary:
        """Sequentially re-parse many transactions.

        Defaults to every stored transaction that is not parsed. Waits
        ``settings.bulk_reparse_delay_sec`` before each model call after the
        first. ``cancel`` is checked between transactions. Storage errors stop
        the run at the transaction that failed.
        """

        repo = self._require_repository()
        if transaction_ids is None:
            ids = [t.id for t in repo.query_all() if not t.is_parsed]
        else:
            ids = list(transaction_ids)

        pacer = _FallbackPacer(self.settings.bulk_reparse_delay_sec, self._sleep)
        succeeded = failed = skipped = 0
        cancelled = False
        for index, tx_id in enumerate(ids, start=1):
            if cancel is not None and cancel.is_set():
                cancelled = True
                _logger.info(
                    "coordinator:bulk_reparse_cancelled done=%d total=%d", index - 1, len(ids)
                )
                break
            current = repo.get(tx_id)
            if current is None:
                skipped += 1
                continue
            updated = self._reextract(current, before_fallback=pacer.wait)
            repo.update(updated)
            if updated.is_parsed:
                succeeded += 1
            else:
                failed += 1
            if on_progress is not None:
                on_progress(index, len(ids), updated)

        _logger.info(
            "coordinator:bulk_reparse_done succeeded=%d failed=%d skipped=%d cancelled=%s",
            succeeded,
            failed,
            skipped,
            cancelled,
        )
        return ReparseSummary(succeeded, failed, skipped, cancelled)

    # ---- Internals ------------------------------------------------------------

    def _require_repository(self) -> TransactionRepository:
        if self._repository is None:
            raise RuntimeError("ExtractionCoordinator was built without a repository")
        return self._repository

    def _reextract(
        self, current: Transaction, *, before_fallback: Callable[[], None] | None = None
    ) -> Transaction:
        fallback_ts = as_utc(current.received_at or current.timestamp)
        email = None
        if current.source is MessageSource.EMAIL:
            header, _, body = current.raw_message.partition("\n\n")
            email = EmailMessage(header, body, fallback_ts, current.source_account_id)
            text = prepare_email(header, body)
        else:
            text = current.raw_message
        canonical = normalize(text, received_at=fallback_ts).canonical_text
        base = replace(current, timestamp=fallback_ts)
        updated = self._run_chain(base, canonical, email=email, before_fallback=before_fallback)
        return self._categorize(updated)

    def _run_chain(
        self,
        tx: Transaction,
        text: str,
        *,
        email: EmailMessage | None = None,
        before_fallback: Callable[[], None] | None = None,
    ) -> Transaction:
        received = tx.timestamp
        floor = self.settings.confidence_floor
        t0 = time.perf_counter()
        best: tuple[ExtractionResult, ParserType] | None = None
        model_error: str | None = None
        fallback_tried = False

        for strategy in self.strategies:
            if strategy.is_fallback:
                if not self.settings.fallback_enabled:
                    continue
                if before_fallback is not None:
                    before_fallback()
                fallback_tried = True
            try:
                result, provenance = self._attempt(strategy, text, email)
            except (ModelError, SchemaError) as e:
                model_error = f"{e.__class__.__name__}: {e}"
                continue
            if result is None:
                continue
            result = replace(result, timestamp=_align_timestamp(result.timestamp, received))
            if result.confidence >= floor:
                return tx.with_extraction(
                    result,
                    parser_type=provenance,
                    parse_time=time.perf_counter() - t0,
                    fallback_timestamp=received,
                )
            if best is None or result.confidence > best[0].confidence:
                best = (result, provenance)

        elapsed = time.perf_counter() - t0
        if best is not None and (not fallback_tried or best[1].kind is not ParserKind.PATTERN):
            # Nothing cleared the floor; keep the most confident answer.
            return tx.with_extraction(
                best[0], parser_type=best[1], parse_time=elapsed, fallback_timestamp=received
            )
        if fallback_tried:
            reason = model_error or _MODEL_NO_TRANSACTION
            _logger.warning("coordinator:fallback_failed id=%s reason=%s", tx.id, reason)
            return tx.with_failure(
                reason,
                parser_type=ParserType.model_failed(),
                parse_time=elapsed,
                fallback_timestamp=received,
                partial=best[0] if best is not None else None,
            )
        _logger.debug("coordinator:no_match id=%s", tx.id)
        return tx.with_failure(
            NO_MATCH_REASON, parser_type=None, parse_time=elapsed, fallback_timestamp=received
        )

    def _attempt(
        self, strategy: ExtractionStrategy, text: str, email: EmailMessage | None
    ) -> tuple[ExtractionResult | None, ParserType]:
        two_step_capable = isinstance(strategy, EmailExtractionStrategy)
        if email is not None and strategy.is_fallback and two_step_capable:
            body_chars = len(" ".join(email_content_lines(email.body_block)))
            if body_chars >= self.settings.email_two_step_min_chars:
                result = strategy.try_extract_email(email.header_block, email.body_block)
            else:
                body = " ".join(strip_html(email.body_block).split())
                result = strategy.try_extract(f"{email.header_block.strip()}\n{body}")
            return result, strategy.email_provenance()
        return strategy.try_extract(text), strategy.provenance()

    def _categorize(self, tx: Transaction) -> Transaction:
        if self._learner is None or tx.category != UNCATEGORIZED or not tx.merchant:
            return tx
        suggestion = self._learner.suggest(tx.merchant)
        if suggestion is None:
            return tx
        return replace(tx, category=suggestion, auto_categorized=True)


class _FallbackPacer:
    """Sleeps ``delay`` before every fallback call except the first."""

    def __init__(self, delay: float, sleep: Callable[[float], None]) -> None:
        self._delay = delay
        self._sleep = sleep
        self._calls = 0

    def wait(self) -> None:
        if self._calls and self._delay > 0:
            self._sleep(self._delay)
        self._calls += 1


__all__ = [
    "EmailExtractionStrategy",
    "ExtractionCoordinator",
    "ExtractionStrategy",
]
