"""Template-based extraction for bank and wallet alerts.

An ordered tuple of :class:`TemplateMatcher` objects, each tied to one
message family. Matchers are tried in order and the first one that yields an
amount wins; there is no voting. Confidence is a fixed constant per family.

Family regexes only need to pin the amount (and whatever else the template
fixes, such as direction or the account). Merchant, date, balance and
reference fields fall back to shared helpers that scan the whole text.

Everything here is pure: identical input gives identical output.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

from .currency import CurrencyConverter, normalize_code
from .logging_setup import get_logger
from .models import UPI_ACCOUNT_SENTINEL, ExtractionResult, ParserType, TransactionType

_logger = get_logger("ledger_pipeline.patterns")

# ---- Confidence per family (hand-tuned) -------------------------------------

_CONF_ACCOUNT: float = 0.95
_CONF_CARD: float = 0.9
_CONF_REFUND: float = 0.9
_CONF_UPI: float = 0.85
_CONF_AMOUNT_OF: float = 0.7
_CONF_LOOSE: float = 0.5

# ---- Regex building blocks --------------------------------------------------

_CUR_TOKENS = r"Rs\.?|INR|₹|US\$|USD|EUR|GBP|AED|SGD|AUD|CAD|JPY|CHF|SAR|QAR|MYR|THB|HKD|\$|€|£"
_CUR = rf"(?<![A-Za-z])(?P<currency>{_CUR_TOKENS})"
_AMOUNT = r"(?P<amount>\d[\d,]*(?:\.\d{1,2})?)"
_ACCOUNT = (
    r"(?:A/?c|Acct|Account|Card)(?:\s*(?:no\.?|number))?\s*"
    r"(?:ending\s*(?:with|in)?\s*)?[Xx*]*(?P<account>\d{3,6})\b"
)
_STOP_WORDS = (
    "on|dated|via|using|ref|upi|avl|avbl|avail|available|info|bal|txn|is|was|has|"
    "successful|successfully|completed|from|and|thru|through|with"
)
_MERCHANT = r"(?P<merchant>[A-Za-z0-9&@][^,;]*?)"
_TERM = rf"(?=\s+(?:{_STOP_WORDS})\b|[.,;](?:\s|$)|\s*$)"

_IGNORE_RE = re.compile(
    r"\b(?:otp|one[- ]time password|will be debited|is due|due on|payment request|"
    r"requested money|has requested)\b",
    re.IGNORECASE,
)

_CREDIT_WORDS_RE = re.compile(
    r"\b(?:credited|credit(?!\s*card)|received|deposited|refund(?:ed)?|cashback|reversal|reversed)\b",
    re.IGNORECASE,
)
_DEBIT_WORDS_RE = re.compile(
    r"\b(?:debited|debit(?!\s*card)|paid|sent|withdrawn|withdrawal|spent|purchase|charged)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class TemplateMatcher:
    """One message family.

    ``type`` fixes the direction for the family; ``None`` infers it from
    debit/credit keywords, and a loose match with no keyword is no match.
    """

    family: str
    regex: re.Pattern[str]
    confidence: float
    type: TransactionType | None = None

    def match(self, text: str) -> dict[str, str] | None:
        m = self.regex.search(text)
        if m is None:
            return None
        groups = {k: v for k, v in m.groupdict().items() if v}
        # Reversed "500 INR" forms use suffixed group names
        if "amount" not in groups and "amount2" in groups:
            groups["amount"] = groups.pop("amount2")
            if "currency2" in groups:
                groups["currency"] = groups.pop("currency2")
        return groups


def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


_TAIL_DEBIT_MERCHANT = rf"(?:.*?\b(?:at|to|towards|for)\s+(?:VPA\s+)?{_MERCHANT}{_TERM})?"
_TAIL_CREDIT_MERCHANT = rf"(?:.*?\b(?:from|by)\s+(?:VPA\s+)?{_MERCHANT}{_TERM})?"

DEFAULT_MATCHERS: tuple[TemplateMatcher, ...] = (
    TemplateMatcher(
        "debited_from_account",
        _compile(
            rf"{_CUR}\s*{_AMOUNT}\s+(?:has\s+been\s+|is\s+|was\s+)?debited\s+from\s+"
            rf"(?:your\s+)?(?:[\w-]+\s+){{0,3}}?{_ACCOUNT}{_TAIL_DEBIT_MERCHANT}"
        ),
        _CONF_ACCOUNT,
        TransactionType.DEBIT,
    ),
    TemplateMatcher(
        "account_debited_with",
        _compile(
            rf"{_ACCOUNT}\s+(?:is\s+|has\s+been\s+|was\s+)?debited\s+(?:with|for|by)\s+"
            rf"(?:an?\s+amount\s+of\s+)?{_CUR}\s*{_AMOUNT}{_TAIL_DEBIT_MERCHANT}"
        ),
        _CONF_ACCOUNT,
        TransactionType.DEBIT,
    ),
    TemplateMatcher(
        "credited_to_account",
        _compile(
            rf"{_CUR}\s*{_AMOUNT}\s+(?:has\s+been\s+|is\s+|was\s+)?credited\s+(?:to|in|into)\s+"
            rf"(?:your\s+)?(?:[\w-]+\s+){{0,3}}?{_ACCOUNT}{_TAIL_CREDIT_MERCHANT}"
        ),
        _CONF_ACCOUNT,
        TransactionType.CREDIT,
    ),
    TemplateMatcher(
        "account_credited_with",
        _compile(
            rf"{_ACCOUNT}\s+(?:is\s+|has\s+been\s+|was\s+)?credited\s+(?:with|for|by)\s+"
            rf"(?:an?\s+amount\s+of\s+)?{_CUR}\s*{_AMOUNT}{_TAIL_CREDIT_MERCHANT}"
        ),
        _CONF_ACCOUNT,
        TransactionType.CREDIT,
    ),
    TemplateMatcher(
        "card_spent",
        _compile(
            rf"{_CUR}\s*{_AMOUNT}\s+(?:spent|charged)\s+(?:on|using|via|at)\s+"
            rf"(?:your\s+)?(?:[\w-]+\s+){{0,4}}?{_ACCOUNT}"
        ),
        _CONF_CARD,
        TransactionType.DEBIT,
    ),
    TemplateMatcher(
        "card_used_for",
        _compile(
            rf"{_ACCOUNT}\s+has\s+been\s+used\s+for\s+(?:a\s+)?(?:transaction|purchase|payment)\s+"
            rf"(?:of\s+)?{_CUR}\s*{_AMOUNT}"
        ),
        _CONF_CARD,
        TransactionType.DEBIT,
    ),
    TemplateMatcher(
        "refund_credited",
        _compile(
            rf"\b(?:refund|cashback|reversal)\s+(?:of\s+|for\s+)?{_CUR}\s*{_AMOUNT}"
            rf"{_TAIL_CREDIT_MERCHANT}"
        ),
        _CONF_REFUND,
        TransactionType.CREDIT,
    ),
    TemplateMatcher(
        "upi_paid_to",
        _compile(
            rf"{_CUR}\s*{_AMOUNT}\s+(?:paid|sent|transferred)\s+(?:via\s+UPI\s+|through\s+UPI\s+)?"
            rf"to\s+(?:VPA\s+)?{_MERCHANT}{_TERM}"
        ),
        _CONF_UPI,
        TransactionType.DEBIT,
    ),
    TemplateMatcher(
        "upi_payment_of",
        _compile(
            rf"\bUPI\s+(?:payment|txn|transaction|transfer)\s+of\s+{_CUR}\s*{_AMOUNT}\s+"
            rf"(?:to|at)\s+(?:VPA\s+)?{_MERCHANT}{_TERM}"
        ),
        _CONF_UPI,
        TransactionType.DEBIT,
    ),
    TemplateMatcher(
        "received_from",
        _compile(
            rf"(?:received|got)\s+{_CUR}\s*{_AMOUNT}\s+from\s+(?:VPA\s+)?{_MERCHANT}{_TERM}"
        ),
        _CONF_UPI,
        TransactionType.CREDIT,
    ),
    TemplateMatcher(
        "amount_of",
        _compile(rf"\b(?:amount|amt)\s*(?:of\s*)?{_CUR}\s*{_AMOUNT}"),
        _CONF_AMOUNT_OF,
    ),
    TemplateMatcher(
        "loose_currency_amount",
        _compile(
            rf"{_CUR}\s*{_AMOUNT}|(?P<amount2>\d[\d,]*(?:\.\d{{1,2}})?)\s*"
            rf"(?P<currency2>Rs\.?|INR|₹)(?![A-Za-z])"
        ),
        _CONF_LOOSE,
    ),
)

# ---- Field helpers ----------------------------------------------------------

_ACCOUNT_RE = _compile(_ACCOUNT)
_BALANCE_RES: tuple[re.Pattern[str], ...] = (
    _compile(
        r"\b(?:avl|avbl|avail|available)\.?\s*(?:bal(?:ance)?\.?)\s*(?:is|:|-)?\s*"
        r"(?:Rs\.?|INR|₹)?\s*(?P<amount>-?\d[\d,]*(?:\.\d{1,2})?)"
    ),
    _compile(
        r"\b(?:bal(?:ance)?)\s*(?:is|:|-)?\s*(?:Rs\.?|INR|₹)\s*(?P<amount>-?\d[\d,]*(?:\.\d{1,2})?)"
    ),
)
_REF_RE = _compile(
    r"\b(?:ref(?:erence)?|utr|rrn|txn|transaction)\s*(?:id|no\.?|number)?[\s#:.-]*"
    r"(?P<ref>(?=[A-Z]*\d)[A-Z0-9]{8,})\b"
)
_INFO_MERCHANT_RE = _compile(
    r"\b(?:info|descr|description|narration|remarks)\s*[:-]\s*(?P<merchant>[^.;]+?)(?=\.(?:\s|$)|;|$)"
)
_PREPOSITION_MERCHANT_RE = _compile(rf"\b(?:at|to|towards)\s+(?:VPA\s+)?{_MERCHANT}{_TERM}")
_UPI_ID_PREFIX_RE = _compile(r"^(?:UPI|IMPS|NEFT|POS|ACH)\s*[/-]\s*(?:[A-Z]{2,4}\s*[/-]\s*)?(?:\d{6,}\s*[/-]\s*)?")
_TRAILING_REF_RE = re.compile(r"(?:[\s/*#-]+\d{6,})+$")
_REJECT_MERCHANT_RE = _compile(
    r"^(?:your|you|the|a/?c|acct|account|card|bank|rs\.?|inr|\d{1,2}:\d{2})\b|^\d"
)

KNOWN_MERCHANTS: tuple[str, ...] = (
    "AMAZON",
    "FLIPKART",
    "SWIGGY",
    "ZOMATO",
    "NETFLIX",
    "SPOTIFY",
    "HOTSTAR",
    "UBER",
    "OLA",
    "BIG BASKET",
    "BIGBASKET",
    "BLINKIT",
    "ZEPTO",
    "MYNTRA",
    "IRCTC",
    "BOOKMYSHOW",
    "AIRTEL",
    "JIO",
    "DMART",
    "PAYTM",
    "PHONEPE",
)
_KNOWN_MERCHANT_RES = tuple(
    (name, re.compile(rf"\b{re.escape(name)}\b", re.IGNORECASE)) for name in KNOWN_MERCHANTS
)

_DATE_SPECS: tuple[tuple[re.Pattern[str], tuple[str, ...]], ...] = (
    (re.compile(r"\b(\d{4}-\d{2}-\d{2})\b"), ("%Y-%m-%d",)),
    (
        re.compile(r"\b(\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4})\b"),
        ("%d-%m-%Y", "%d-%m-%y"),
    ),
    (
        re.compile(r"\b(\d{1,2}[- ]?[A-Za-z]{3}[a-z]*[- ,]*\d{2,4})\b"),
        ("%d-%b-%Y", "%d-%b-%y"),
    ),
    (
        re.compile(r"\b([A-Za-z]{3}[a-z]*\s+\d{1,2},?\s+\d{4})\b"),
        ("%b %d %Y",),
    ),
)
_TIME_RE = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?\b")


def parse_amount(raw: str | None) -> Decimal | None:
    if not raw:
        return None
    try:
        value = Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None
    if not value.is_finite() or value <= 0:
        return None
    return value.quantize(Decimal("0.01"))


def _normalize_date_token(token: str) -> str:
    t = re.sub(r"[/.\s,]+", "-", token.strip())
    t = re.sub(r"(?<=\d)(?=[A-Za-z])|(?<=[A-Za-z])(?=\d)", "-", t)
    t = re.sub(r"-+", "-", t)
    # Month names longer than three letters ("January") collapse to "Jan"
    return re.sub(r"([A-Za-z]{3})[A-Za-z]+", r"\1", t)


def find_date(text: str) -> datetime | None:
    """First parseable date in ``text`` (day first), with a time if present."""

    for regex, formats in _DATE_SPECS:
        for m in regex.finditer(text):
            token = m.group(1)
            candidates = (token,) if regex is _DATE_SPECS[0][0] else (_normalize_date_token(token),)
            for cand in candidates:
                for fmt in formats:
                    fmt_norm = fmt.replace(" ", "-")
                    try:
                        parsed = datetime.strptime(cand, fmt_norm)
                    except ValueError:
                        continue
                    return _with_time(parsed, text[m.end() :])
    return None


def _with_time(day: datetime, rest: str) -> datetime:
    m = _TIME_RE.search(rest[:40])
    if m is None:
        return day
    hour, minute, second = int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)
    return day.replace(hour=hour, minute=minute, second=second)


def find_account(text: str) -> str | None:
    m = _ACCOUNT_RE.search(text)
    if m is None:
        return None
    return m.group("account")[-4:]


def find_balance(text: str) -> Decimal | None:
    for regex in _BALANCE_RES:
        m = regex.search(text)
        if m is None:
            continue
        try:
            return Decimal(m.group("amount").replace(",", "")).quantize(Decimal("0.01"))
        except InvalidOperation:
            continue
    return None


def find_reference(text: str) -> str | None:
    m = _REF_RE.search(text)
    return m.group("ref").upper() if m else None


def clean_merchant(raw: str) -> str:
    """Strip payment-rail prefixes, trailing reference numbers and punctuation."""

    name = " ".join(raw.split())
    name = _UPI_ID_PREFIX_RE.sub("", name)
    name = _TRAILING_REF_RE.sub("", name)
    name = name.strip(" .,:;-/*#")
    return name[:80]


def find_merchant(text: str) -> str:
    """Best-effort merchant for templates that do not pin one."""

    m = _INFO_MERCHANT_RE.search(text)
    if m is not None:
        name = clean_merchant(m.group("merchant"))
        if name and not _REJECT_MERCHANT_RE.match(name):
            return name
    for m in _PREPOSITION_MERCHANT_RE.finditer(text):
        name = clean_merchant(m.group("merchant"))
        if name and not _REJECT_MERCHANT_RE.match(name):
            return name
    for name, regex in _KNOWN_MERCHANT_RES:
        if regex.search(text):
            return name
    return ""


def infer_type(text: str) -> TransactionType | None:
    """Direction from the earliest debit/credit keyword, if any."""

    credit = _CREDIT_WORDS_RE.search(text)
    debit = _DEBIT_WORDS_RE.search(text)
    if credit is None and debit is None:
        return None
    if debit is None:
        return TransactionType.CREDIT
    if credit is None:
        return TransactionType.DEBIT
    return TransactionType.CREDIT if credit.start() < debit.start() else TransactionType.DEBIT


# ---- Extractor --------------------------------------------------------------


class PatternExtractor:
    """Ordered template matching over canonical message text."""

    name = "pattern"
    is_fallback = False

    def __init__(
        self,
        matchers: Sequence[TemplateMatcher] = DEFAULT_MATCHERS,
        *,
        converter: CurrencyConverter | None = None,
    ) -> None:
        self._matchers = tuple(matchers)
        self._converter = converter or CurrencyConverter()

    @property
    def families(self) -> list[str]:
        return [m.family for m in self._matchers]

    def provenance(self) -> ParserType:
        return ParserType.pattern()

    def try_extract(self, text: str) -> ExtractionResult | None:
        if not text or _IGNORE_RE.search(text):
            return None
        for matcher in self._matchers:
            groups = matcher.match(text)
            if groups is None:
                continue
            amount = parse_amount(groups.get("amount"))
            if amount is None:
                continue
            tx_type = matcher.type or infer_type(text)
            if tx_type is None:
                continue
            _logger.debug("patterns:matched family=%s", matcher.family)
            return self._build(text, groups, amount, tx_type, matcher.confidence)
        _logger.debug("patterns:no_match chars=%d", len(text))
        return None

    def _build(
        self,
        text: str,
        groups: dict[str, str],
        amount: Decimal,
        tx_type: TransactionType,
        confidence: float,
    ) -> ExtractionResult:
        merchant = clean_merchant(groups["merchant"]) if "merchant" in groups else ""
        if not merchant or _REJECT_MERCHANT_RE.match(merchant):
            merchant = find_merchant(text)

        account = groups.get("account")
        account = account[-4:] if account else find_account(text)
        if account is None and re.search(r"\bUPI\b", text, re.IGNORECASE):
            account = UPI_ACCOUNT_SENTINEL

        original_currency: str | None = None
        original_amount: Decimal | None = None
        code = normalize_code(groups.get("currency", "INR"))
        if code != self._converter.home_currency and self._converter.supports(code):
            original_currency, original_amount = code, amount
            amount = self._converter.to_home(amount, code)

        return ExtractionResult(
            amount=amount,
            type=tx_type,
            merchant=merchant,
            confidence=confidence,
            account_last_digits=account,
            balance=find_balance(text),
            timestamp=find_date(text),
            original_currency=original_currency,
            original_amount=original_amount,
            transaction_ref=find_reference(text),
        )


__all__ = [
    "DEFAULT_MATCHERS",
    "KNOWN_MERCHANTS",
    "PatternExtractor",
    "TemplateMatcher",
    "clean_merchant",
    "find_account",
    "find_balance",
    "find_date",
    "find_merchant",
    "find_reference",
    "infer_type",
    "parse_amount",
]
