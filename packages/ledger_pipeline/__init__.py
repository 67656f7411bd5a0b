"""Public interface for the ``ledger_pipeline`` package.

Symbol re-exports only; the stable import surface for host applications.
SQL repositories live in :mod:`ledger_pipeline.persistence` and are not
imported here so the core can be used without a database.
"""

from .coordinator import EmailExtractionStrategy, ExtractionCoordinator, ExtractionStrategy
from .currency import CurrencyConverter
from .dedup import DeduplicationGate
from .detector import RecurringDetector, SeriesStatistics
from .errors import NO_MATCH_REASON, LedgerError, ModelError, SchemaError, StorageError
from .events import SERIES_REBUILT, SYNC_COMPLETED, TRANSACTION_INGESTED, EventBus
from .ingest import commit_candidate, sync_batch
from .learner import CategoryLearner
from .model_fallback import ModelCallStats, ModelFallbackExtractor, ModelTransport
from .models import (
    DEFAULT_CATEGORIES,
    UNCATEGORIZED,
    UPI_ACCOUNT_SENTINEL,
    CandidateSeries,
    CategoryAssociation,
    EmailMessage,
    ExtractionResult,
    FrequencyType,
    IngestOutcome,
    MessageSource,
    ParserKind,
    ParserType,
    RawMessage,
    RebuildSummary,
    RecurringSeries,
    ReparseSummary,
    ScheduleStatus,
    SyncSummary,
    Transaction,
    TransactionType,
)
from .normalizer import normalize
from .openai_transport import OpenAITransport
from .patterns import PatternExtractor
from .repository import (
    InMemoryAssociationStore,
    InMemorySeriesRepository,
    InMemoryTransactionRepository,
)
from .schedule import SchedulePredictor
from .service import LedgerService, build_service
from .settings import PipelineSettings

__all__ = [
    # Pipeline
    "CategoryLearner",
    "CurrencyConverter",
    "DeduplicationGate",
    "EmailExtractionStrategy",
    "EventBus",
    "ExtractionCoordinator",
    "ExtractionStrategy",
    "LedgerService",
    "ModelCallStats",
    "ModelFallbackExtractor",
    "ModelTransport",
    "OpenAITransport",
    "PatternExtractor",
    "PipelineSettings",
    "RecurringDetector",
    "SchedulePredictor",
    "SeriesStatistics",
    "build_service",
    "commit_candidate",
    "normalize",
    "sync_batch",
    # Storage
    "InMemoryAssociationStore",
    "InMemorySeriesRepository",
    "InMemoryTransactionRepository",
    # Errors / events
    "NO_MATCH_REASON",
    "LedgerError",
    "ModelError",
    "SchemaError",
    "StorageError",
    "SERIES_REBUILT",
    "SYNC_COMPLETED",
    "TRANSACTION_INGESTED",
    # Models / types
    "DEFAULT_CATEGORIES",
    "UNCATEGORIZED",
    "UPI_ACCOUNT_SENTINEL",
    "CandidateSeries",
    "CategoryAssociation",
    "EmailMessage",
    "ExtractionResult",
    "FrequencyType",
    "IngestOutcome",
    "MessageSource",
    "ParserKind",
    "ParserType",
    "RawMessage",
    "RebuildSummary",
    "RecurringSeries",
    "ReparseSummary",
    "ScheduleStatus",
    "SyncSummary",
    "Transaction",
    "TransactionType",
]
