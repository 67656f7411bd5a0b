"""Application facade over the ledger pipeline.

:class:`LedgerService` wires one transaction repository, the extraction
coordinator, the dedup gate, the category learner, the recurring detector
and an event bus, and exposes the operations a host application (the CLI,
a UI) calls. :func:`build_service` assembles one from settings, backed either
by the SQL repositories or by in-memory ones.
"""

from __future__ import annotations

import functools
import re
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal

from .coordinator import ExtractionCoordinator, ExtractionStrategy
from .currency import CurrencyConverter
from .dedup import DeduplicationGate
from .detector import RecurringDetector, SeriesStatistics
from .events import TRANSACTION_INGESTED, EventBus
from .ingest import commit_candidate, sync_batch
from .learner import CategoryLearner
from .logging_setup import get_logger
from .model_fallback import CallStatsSnapshot, ModelCallStats, ModelFallbackExtractor, ModelTransport
from .models import (
    EmailMessage,
    IngestOutcome,
    RawMessage,
    RebuildSummary,
    RecurringSeries,
    ReparseSummary,
    SyncSummary,
    Transaction,
    TransactionType,
)
from .openai_transport import OpenAITransport
from .patterns import PatternExtractor
from .repository import (
    AssociationStore,
    InMemoryAssociationStore,
    InMemorySeriesRepository,
    InMemoryTransactionRepository,
    SeriesRepository,
    TransactionRepository,
)
from .settings import PipelineSettings

_logger = get_logger("ledger_pipeline.service")

_ACCOUNT_SUFFIX_RE = re.compile(r"^\d{4}$")

# Settings baked into the strategies themselves rather than read per call
_CHAIN_SETTINGS = ("model_name", "model_base_url", "home_currency")

type StrategyFactory = Callable[[PipelineSettings], list[ExtractionStrategy]]


@dataclass(frozen=True, slots=True)
class PeriodTotals:
    debits: Decimal
    credits: Decimal
    count: int

    @property
    def net(self) -> Decimal:
        return self.credits - self.debits


@dataclass(frozen=True, slots=True)
class MerchantSpend:
    merchant: str
    total: Decimal
    count: int


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """Half-open ``[start, end)`` UTC bounds of a calendar month."""

    if not 1 <= month <= 12:
        raise ValueError(f"month must be 1..12, got {month}")
    start = datetime(year, month, 1, tzinfo=UTC)
    end = datetime(year + 1, 1, 1, tzinfo=UTC) if month == 12 else datetime(year, month + 1, 1, tzinfo=UTC)
    return start, end


def _in_range(t: Transaction, start: datetime | None, end: datetime | None) -> bool:
    if start is not None and t.timestamp < start:
        return False
    return end is None or t.timestamp < end


class LedgerService:
    """Facade the host application talks to.

    Parameters
    ----------
    transactions, series_store, associations:
        Storage backends.
    strategies:
        Extraction chain handed to the coordinator, pattern matcher first.
    settings:
        Pipeline settings; :meth:`set_fallback_enabled` swaps them at runtime.
    events:
        Event bus shared with the detector and ingestion.
    stats:
        Model call counter shared with the fallback extractor, if any.
    sleep:
        Pause function for bulk re-parse pacing.
    strategy_factory:
        Rebuilds the extraction chain from settings when the model, its
        endpoint or the home currency changes. Without one the chain is fixed.
    """

    def __init__(
        self,
        *,
        transactions: TransactionRepository,
        series_store: SeriesRepository,
        associations: AssociationStore,
        strategies: Iterable[ExtractionStrategy],
        settings: PipelineSettings | None = None,
        events: EventBus | None = None,
        stats: ModelCallStats | None = None,
        sleep: Callable[[float], None] = time.sleep,
        strategy_factory: StrategyFactory | None = None,
    ) -> None:
        self.settings = settings or PipelineSettings()
        self._strategy_factory = strategy_factory
        self.events = events or EventBus()
        self.transactions = transactions
        self.learner = CategoryLearner(associations)
        self.gate = DeduplicationGate.from_settings(self.settings)
        self.coordinator = ExtractionCoordinator(
            list(strategies),
            settings=self.settings,
            learner=self.learner,
            repository=transactions,
            sleep=sleep,
        )
        self.detector = RecurringDetector(
            transactions, series_store, settings=self.settings, events=self.events
        )
        self.stats = stats or ModelCallStats()

    # ---- Ingestion ----------------------------------------------------------

    def sync(self, messages: Iterable[RawMessage]) -> SyncSummary:
        return sync_batch(
            messages,
            coordinator=self.coordinator,
            gate=self.gate,
            repository=self.transactions,
            events=self.events,
        )

    def ingest_message(self, message: RawMessage) -> tuple[IngestOutcome, Transaction]:
        return self._commit(self.coordinator.extract(message))

    def ingest_email(self, email: EmailMessage) -> tuple[IngestOutcome, Transaction]:
        return self._commit(self.coordinator.extract_email(email))

    def _commit(self, candidate: Transaction) -> tuple[IngestOutcome, Transaction]:
        outcome = commit_candidate(candidate, gate=self.gate, repository=self.transactions)
        _logger.info(
            "service:ingested id=%s outcome=%s parsed=%s",
            candidate.id,
            outcome.value,
            candidate.is_parsed,
        )
        if outcome is IngestOutcome.NEW:
            self.events.emit(TRANSACTION_INGESTED, transaction=candidate)
        return outcome, candidate

    # ---- Re-parse and edits -------------------------------------------------

    def reparse(self, transaction_id: str) -> Transaction:
        return self.coordinator.reparse(transaction_id)

    def bulk_reparse(
        self,
        transaction_ids: Iterable[str] | None = None,
        *,
        cancel: threading.Event | None = None,
        on_progress: Callable[[int, int, Transaction], None] | None = None,
    ) -> ReparseSummary:
        return self.coordinator.bulk_reparse(transaction_ids, cancel=cancel, on_progress=on_progress)

    def edit_category(self, transaction_id: str, category: str) -> Transaction:
        """Apply a user's category choice and teach the learner.

        Raises
        ------
        KeyError
            When no transaction has ``transaction_id``.
        ValueError
            When ``category`` is blank.
        """

        category = category.strip()
        if not category:
            raise ValueError("category must not be blank")
        current = self.transactions.get(transaction_id)
        if current is None:
            raise KeyError(transaction_id)
        updated = replace(current, category=category, auto_categorized=False)
        self.transactions.update(updated)
        self.learner.record_user_edit(current.merchant, category)
        _logger.info("service:category_edited id=%s category=%s", transaction_id, category)
        return updated

    # ---- Recurring series ---------------------------------------------------

    def rebuild_series(self, *, now: datetime | None = None) -> RebuildSummary:
        return self.detector.rebuild(now=now)

    def series(self) -> list[RecurringSeries]:
        return self.detector.all_series()

    def upcoming(self, now: datetime | None = None) -> list[RecurringSeries]:
        return self.detector.upcoming(now or datetime.now(UTC))

    def overdue(self, now: datetime | None = None) -> list[RecurringSeries]:
        return self.detector.overdue(now or datetime.now(UTC))

    def set_series_active(self, series_id: str, active: bool) -> bool:
        return self.detector.set_active(series_id, active)

    def series_statistics(self, now: datetime | None = None) -> SeriesStatistics:
        return self.detector.statistics(now or datetime.now(UTC))

    # ---- Settings and model stats -------------------------------------------

    def set_fallback_enabled(self, enabled: bool) -> None:
        self.update_settings(fallback_enabled=enabled)

    def update_settings(self, **changes: object) -> PipelineSettings:
        """Replace settings and apply them to later extractions.

        The coordinator reads thresholds and the fallback switch per call. A
        change of ``model_name``, ``model_base_url`` or ``home_currency``
        rebuilds the extraction chain, so a following :meth:`reparse` uses
        the new model. Dedup and detector tunables are fixed at construction.
        """

        previous = self.settings
        merged = previous.model_dump()
        merged.update(changes)
        self.settings = PipelineSettings.model_validate(merged)
        self.coordinator.settings = self.settings
        factory = self._strategy_factory
        rebuilt = False
        if factory is not None and any(
            getattr(previous, key) != getattr(self.settings, key) for key in _CHAIN_SETTINGS
        ):
            self.coordinator.strategies = factory(self.settings)
            rebuilt = True
        _logger.info(
            "service:settings_updated keys=%s chain_rebuilt=%s",
            ",".join(sorted(changes)),
            rebuilt,
        )
        return self.settings

    def llm_stats(self) -> CallStatsSnapshot:
        return self.stats.snapshot()

    def reset_llm_stats(self) -> None:
        self.stats.reset()

    # ---- Aggregates ---------------------------------------------------------

    def spending_by_category(
        self, start: datetime | None = None, end: datetime | None = None
    ) -> dict[str, Decimal]:
        """Parsed debit totals per category over ``[start, end)``, largest first."""

        totals: dict[str, Decimal] = {}
        for t in self.transactions.query_all():
            if t.amount is None or t.type is not TransactionType.DEBIT:
                continue
            if not _in_range(t, start, end):
                continue
            totals[t.category] = totals.get(t.category, Decimal("0")) + t.amount
        return dict(sorted(totals.items(), key=lambda kv: (-kv[1], kv[0])))

    def category_total(self, category: str, start: datetime, end: datetime) -> Decimal:
        return self.transactions.query_by_category(category, start, end)

    def monthly_totals(self, year: int, month: int) -> PeriodTotals:
        start, end = month_bounds(year, month)
        debits = credits = Decimal("0")
        count = 0
        for t in self.transactions.query_all():
            if t.amount is None or not _in_range(t, start, end):
                continue
            count += 1
            if t.type is TransactionType.DEBIT:
                debits += t.amount
            else:
                credits += t.amount
        return PeriodTotals(debits, credits, count)

    def top_merchants(
        self,
        limit: int = 5,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[MerchantSpend]:
        totals: dict[str, tuple[Decimal, int]] = {}
        for t in self.transactions.query_all():
            if t.amount is None or t.type is not TransactionType.DEBIT or not t.merchant:
                continue
            if not _in_range(t, start, end):
                continue
            total, count = totals.get(t.merchant, (Decimal("0"), 0))
            totals[t.merchant] = (total + t.amount, count + 1)
        ranked = sorted(totals.items(), key=lambda kv: (-kv[1][0], kv[0]))
        return [MerchantSpend(m, total, count) for m, (total, count) in ranked[: max(limit, 0)]]

    def latest_balance(self, account_last_digits: str) -> Decimal | None:
        for t in reversed(self.transactions.query_all()):
            if t.account_last_digits == account_last_digits and t.balance is not None:
                return t.balance
        return None

    def distinct_accounts(self) -> list[str]:
        """Account suffixes seen so far; real 4-digit suffixes only."""

        return sorted(
            acct
            for acct in self.transactions.query_distinct_accounts()
            if _ACCOUNT_SUFFIX_RE.match(acct)
        )

    # ---- Destructive --------------------------------------------------------

    def delete_transaction(self, transaction_id: str) -> bool:
        deleted = self.transactions.delete(transaction_id)
        _logger.info("service:deleted id=%s found=%s", transaction_id, deleted)
        return deleted

    def delete_month(self, year: int, month: int) -> int:
        month_bounds(year, month)
        n = self.transactions.delete_by_month(year, month)
        _logger.info("service:deleted_month year=%d month=%d count=%d", year, month, n)
        return n

    def clear_all(self) -> int:
        n = self.transactions.delete_all()
        _logger.warning("service:cleared count=%d", n)
        return n


def build_strategies(
    settings: PipelineSettings,
    *,
    transport: ModelTransport | None = None,
    stats: ModelCallStats | None = None,
) -> list[ExtractionStrategy]:
    """Pattern extractor followed by the model fallback.

    The fallback is always wired; ``settings.fallback_enabled`` decides per
    call whether it runs. Without an explicit ``transport`` an
    :class:`OpenAITransport` is used.
    """

    converter = CurrencyConverter(settings.home_currency)
    if transport is None:
        transport = OpenAITransport(model=settings.model_name, base_url=settings.model_base_url)
    return [
        PatternExtractor(converter=converter),
        ModelFallbackExtractor(
            transport, model_name=settings.model_name, stats=stats, converter=converter
        ),
    ]


def build_service(
    settings: PipelineSettings | None = None,
    *,
    database_url: str | None = None,
    in_memory: bool = False,
    transport: ModelTransport | None = None,
    events: EventBus | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> LedgerService:
    """Assemble a :class:`LedgerService` backed by SQL or in-memory storage."""

    settings = settings or PipelineSettings.from_env()
    stats = ModelCallStats()
    if in_memory:
        transactions: TransactionRepository = InMemoryTransactionRepository()
        series_store: SeriesRepository = InMemorySeriesRepository()
        associations: AssociationStore = InMemoryAssociationStore()
    else:
        from .persistence import SqlAssociationStore, SqlSeriesRepository, SqlTransactionRepository

        transactions = SqlTransactionRepository(database_url=database_url)
        series_store = SqlSeriesRepository(database_url=database_url)
        associations = SqlAssociationStore(database_url=database_url)
    _logger.info(
        "service:built storage=%s fallback=%s model=%s",
        "memory" if in_memory else "sql",
        settings.fallback_enabled,
        settings.model_name,
    )
    factory = functools.partial(build_strategies, transport=transport, stats=stats)
    return LedgerService(
        transactions=transactions,
        series_store=series_store,
        associations=associations,
        strategies=factory(settings),
        settings=settings,
        events=events,
        stats=stats,
        sleep=sleep,
        strategy_factory=factory,
    )


__all__ = [
    "LedgerService",
    "MerchantSpend",
    "PeriodTotals",
    "build_service",
    "build_strategies",
    "month_bounds",
]
