"""Data models for the extraction pipeline and the recurring detector.

Domain records are frozen, slotted dataclasses. Re-parsing and rebuilding
produce new instances via :func:`dataclasses.replace`; nothing is mutated in
place, which keeps repository snapshots safe to share across threads.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

UNCATEGORIZED = "Uncategorized"
"""Sentinel category for transactions nobody has categorized yet."""

UPI_ACCOUNT_SENTINEL = "XUPI"
"""Account code for UPI transfers that carry no card or account suffix."""

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Food & Dining",
    "Shopping",
    "Transportation",
    "Bills & Utilities",
    "Entertainment",
    "Healthcare",
    "Travel",
    "Groceries",
    "Education",
    "Salary",
    "Investment",
    "Transfer",
    "Other",
    UNCATEGORIZED,
)
"""Categories offered by the interactive picker; users may add their own."""


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(when: datetime) -> datetime:
    """Attach UTC to a naive datetime; aware values pass through unchanged."""

    return when.replace(tzinfo=UTC) if when.tzinfo is None else when


class TransactionType(StrEnum):
    DEBIT = "debit"
    CREDIT = "credit"


class MessageSource(StrEnum):
    """Connector a transaction arrived through; decides how it is re-parsed."""

    SMS = "sms"
    EMAIL = "email"


class ParserKind(StrEnum):
    PATTERN = "pattern"
    MODEL = "model"
    MODEL_FAILED = "model-failed"
    EMAIL_MODEL = "email-model"


@dataclass(frozen=True, slots=True)
class ParserType:
    """Provenance of a transaction's extracted fields.

    A closed tag set. ``render()`` produces the storage string
    (``pattern``, ``model:<name>``, ``model:failed``, ``email-model:<name>``)
    and :meth:`parse` reverses it.
    """

    kind: ParserKind
    model: str | None = None

    @classmethod
    def pattern(cls) -> ParserType:
        return cls(ParserKind.PATTERN)

    @classmethod
    def from_model(cls, model: str | None) -> ParserType:
        return cls(ParserKind.MODEL, model)

    @classmethod
    def model_failed(cls) -> ParserType:
        return cls(ParserKind.MODEL_FAILED)

    @classmethod
    def email_model(cls, model: str | None) -> ParserType:
        return cls(ParserKind.EMAIL_MODEL, model)

    def render(self) -> str:
        if self.kind is ParserKind.PATTERN:
            return "pattern"
        if self.kind is ParserKind.MODEL_FAILED:
            return "model:failed"
        prefix = "model" if self.kind is ParserKind.MODEL else "email-model"
        return f"{prefix}:{self.model}" if self.model else prefix

    @classmethod
    def parse(cls, raw: str | None) -> ParserType | None:
        if raw is None or not raw.strip():
            return None
        text = raw.strip()
        if text == "pattern":
            return cls.pattern()
        if text == "model:failed":
            return cls.model_failed()
        head, _, tail = text.partition(":")
        if head == "model":
            return cls.from_model(tail or None)
        if head == "email-model":
            return cls.email_model(tail or None)
        raise ValueError(f"unknown parser type: {raw!r}")

    def __str__(self) -> str:
        return self.render()


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawMessage:
    """One delivery from an account/email connector.

    A naive ``received_at`` is taken to be UTC.
    """

    text: str
    received_at: datetime
    source_account_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "received_at", as_utc(self.received_at))


@dataclass(frozen=True, slots=True)
class EmailMessage:
    """A transactional email split into its header and body blocks."""

    header_block: str
    body_block: str
    received_at: datetime
    source_account_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "received_at", as_utc(self.received_at))

    @property
    def text(self) -> str:
        return f"{self.header_block}\n\n{self.body_block}".strip()


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    """Structured fields recovered from one message by one strategy."""

    amount: Decimal
    type: TransactionType
    merchant: str
    confidence: float
    account_last_digits: str | None = None
    balance: Decimal | None = None
    timestamp: datetime | None = None
    original_currency: str | None = None
    original_amount: Decimal | None = None
    transaction_ref: str | None = None


@dataclass(frozen=True, slots=True)
class Transaction:
    """The atomic ledger entry.

    ``id``, ``raw_message`` and ``source`` never change after creation.
    Extraction-derived fields are replaced wholesale by
    :meth:`with_extraction` and :meth:`with_failure`.
    """

    id: str
    raw_message: str
    timestamp: datetime
    amount: Decimal | None = None
    type: TransactionType = TransactionType.DEBIT
    merchant: str = ""
    category: str = UNCATEGORIZED
    account_last_digits: str | None = None
    balance: Decimal | None = None
    parser_type: ParserType | None = None
    parser_confidence: float = 0.0
    parse_time: float | None = None
    parsing_error: str | None = None
    auto_categorized: bool = False
    original_currency: str | None = None
    original_amount: Decimal | None = None
    fingerprint: str = ""
    transaction_ref: str | None = None
    received_at: datetime | None = None
    source_account_id: str | None = None
    source: MessageSource = MessageSource.SMS
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_parsed(self) -> bool:
        return self.amount is not None and bool(self.merchant) and self.parsing_error is None

    def with_extraction(
        self,
        result: ExtractionResult,
        *,
        parser_type: ParserType,
        parse_time: float | None,
        fallback_timestamp: datetime,
    ) -> Transaction:
        return replace(
            self,
            timestamp=result.timestamp or fallback_timestamp,
            amount=result.amount,
            type=result.type,
            merchant=result.merchant,
            account_last_digits=result.account_last_digits,
            balance=result.balance,
            parser_type=parser_type,
            parser_confidence=result.confidence,
            parse_time=parse_time,
            parsing_error=None,
            original_currency=result.original_currency,
            original_amount=result.original_amount,
            transaction_ref=result.transaction_ref,
        )

    def with_failure(
        self,
        reason: str,
        *,
        parser_type: ParserType | None,
        parse_time: float | None,
        fallback_timestamp: datetime,
        partial: ExtractionResult | None = None,
    ) -> Transaction:
        """Record a failed extraction, keeping a below-floor partial result if any."""

        if partial is not None:
            base = self.with_extraction(
                partial,
                parser_type=parser_type or ParserType.pattern(),
                parse_time=parse_time,
                fallback_timestamp=fallback_timestamp,
            )
            return replace(base, parser_type=parser_type, parsing_error=reason)
        return replace(
            self,
            timestamp=fallback_timestamp,
            amount=None,
            merchant="",
            account_last_digits=None,
            balance=None,
            parser_type=parser_type,
            parser_confidence=0.0,
            parse_time=parse_time,
            parsing_error=reason,
            original_currency=None,
            original_amount=None,
            transaction_ref=None,
        )


class IngestOutcome(StrEnum):
    NEW = "new"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SyncSummary:
    new_count: int = 0
    duplicate_count: int = 0
    failed_count: int = 0

    @property
    def total(self) -> int:
        return self.new_count + self.duplicate_count + self.failed_count


@dataclass(frozen=True, slots=True)
class ReparseSummary:
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False


# ---------------------------------------------------------------------------
# Learner
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategoryAssociation:
    """Learned mapping from a normalized merchant key to a category."""

    merchant_key: str
    category: str
    reinforcement_count: int = 1
    updated_at: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Recurring series
# ---------------------------------------------------------------------------


class FrequencyType(StrEnum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    IRREGULAR = "irregular"


class ScheduleStatus(StrEnum):
    OVERDUE = "overdue"
    UPCOMING = "upcoming"
    QUIET = "quiet"


@dataclass(frozen=True, slots=True)
class CandidateSeries:
    """Transactions sharing ``(merchant, category)``, sorted oldest first."""

    merchant: str
    category: str
    transactions: tuple[Transaction, ...]

    @property
    def timestamps(self) -> list[datetime]:
        return [t.timestamp for t in self.transactions]

    @property
    def amounts(self) -> list[Decimal]:
        return [t.amount for t in self.transactions if t.amount is not None]


_LABELS: dict[FrequencyType, str] = {
    FrequencyType.DAILY: "Daily",
    FrequencyType.WEEKLY: "Weekly",
    FrequencyType.BIWEEKLY: "Every 2 weeks",
    FrequencyType.MONTHLY: "Monthly",
    FrequencyType.QUARTERLY: "Quarterly",
    FrequencyType.YEARLY: "Yearly",
}


@dataclass(frozen=True, slots=True)
class RecurringSeries:
    """Derived, rebuildable aggregate over one candidate series."""

    id: str
    merchant: str
    category: str
    frequency_type: FrequencyType
    average_amount: Decimal
    occurrence_count: int
    first_occurrence: datetime
    last_occurrence: datetime
    next_expected_date: datetime | None
    confidence_score: float
    is_active: bool = True
    median_gap_days: float | None = None

    def __post_init__(self) -> None:
        if self.occurrence_count < 2:
            raise ValueError("a recurring series needs at least two occurrences")
        if self.first_occurrence > self.last_occurrence:
            raise ValueError("first_occurrence must not be after last_occurrence")
        if not 0.0 <= self.confidence_score <= 1.0:
            raise ValueError("confidence_score must be within [0,1]")

    @property
    def frequency_label(self) -> str:
        label = _LABELS.get(self.frequency_type)
        if label is not None:
            return label
        if self.median_gap_days:
            return f"About every {round(self.median_gap_days)} days"
        return "Irregular"


@dataclass(frozen=True, slots=True)
class RebuildSummary:
    series_count: int = 0
    skipped_count: int = 0
    overdue_count: int = 0
    upcoming_count: int = 0


type Transactions = Sequence[Transaction]


__all__ = [
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
    "Transactions",
    "utcnow",
]
