from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import update

from db.client import session_scope
from db.models.ledger import LedgerTransaction
from ledger_pipeline.errors import StorageError
from ledger_pipeline.models import (
    CategoryAssociation,
    FrequencyType,
    MessageSource,
    ParserType,
    RecurringSeries,
    Transaction,
    TransactionType,
)
from ledger_pipeline.persistence import (
    SqlAssociationStore,
    SqlSeriesRepository,
    SqlTransactionRepository,
)
from tests.helpers.db import bootstrap_sqlite_db

T0 = datetime(2024, 1, 5, 10, 30, tzinfo=UTC)


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.sqlite3")


def _tx(tx_id: str, *, when: datetime = T0, amount: str | None = "500", **kwargs) -> Transaction:
    fields = {
        "merchant": "AMAZON",
        "category": "Shopping",
        "account_last_digits": "1234",
        "parser_type": ParserType.pattern(),
        "parser_confidence": 0.95,
        "fingerprint": tx_id.ljust(64, "0"),
    }
    fields.update(kwargs)
    return Transaction(
        id=tx_id,
        raw_message=f"message {tx_id}",
        timestamp=when,
        amount=Decimal(amount) if amount is not None else None,
        **fields,
    )


def test_transaction_round_trip_keeps_every_field(db_url: str):
    repo = SqlTransactionRepository(database_url=db_url)
    ist = timezone(timedelta(hours=5, minutes=30))
    original = _tx(
        "a",
        when=datetime(2024, 1, 5, 16, 0, tzinfo=ist),
        balance=Decimal("10000.50"),
        parser_type=ParserType.from_model("gpt-test"),
        original_currency="USD",
        original_amount=Decimal("10.00"),
        transaction_ref="412345678901",
        received_at=T0,
        source_account_id="sim-1",
        source=MessageSource.EMAIL,
        auto_categorized=True,
        parse_time=0.012,
    )
    repo.append(original)

    loaded = repo.get("a")

    assert loaded is not None
    assert loaded.timestamp == original.timestamp
    assert loaded.timestamp.tzinfo is not None
    assert loaded.amount == Decimal("500.00")
    assert loaded.balance == Decimal("10000.50")
    assert loaded.parser_type == ParserType.from_model("gpt-test")
    assert loaded.original_currency == "USD"
    assert loaded.original_amount == Decimal("10.00")
    assert loaded.auto_categorized is True
    assert loaded.source_account_id == "sim-1"
    assert loaded.source is MessageSource.EMAIL
    assert loaded.received_at == T0
    assert loaded.created_at == original.created_at


def test_failed_parse_round_trips(db_url: str):
    repo = SqlTransactionRepository(database_url=db_url)
    repo.append(
        _tx("f", amount=None, merchant="", parser_type=ParserType.model_failed(), parsing_error="boom")
    )

    loaded = repo.get("f")

    assert loaded is not None
    assert loaded.amount is None
    assert loaded.parser_type == ParserType.model_failed()
    assert loaded.parsing_error == "boom"
    assert not loaded.is_parsed


def test_update_changes_extraction_fields_only(db_url: str):
    repo = SqlTransactionRepository(database_url=db_url)
    original = _tx("u")
    repo.append(original)

    edited = Transaction(
        id="u",
        raw_message="tampered",
        timestamp=T0,
        amount=Decimal("650"),
        merchant="FLIPKART",
        category="Shopping",
        fingerprint=original.fingerprint,
    )
    repo.update(edited)
    loaded = repo.get("u")

    assert loaded.amount == Decimal("650.00")
    assert loaded.merchant == "FLIPKART"
    assert loaded.raw_message == original.raw_message
    assert loaded.created_at == original.created_at


def test_update_of_missing_row_raises(db_url: str):
    repo = SqlTransactionRepository(database_url=db_url)
    with pytest.raises(StorageError):
        repo.update(_tx("ghost"))


def test_duplicate_id_is_a_storage_error(db_url: str):
    repo = SqlTransactionRepository(database_url=db_url)
    repo.append(_tx("dup"))
    with pytest.raises(StorageError):
        repo.append(_tx("dup"))


def test_query_all_orders_and_skips_undecodable_rows(db_url: str):
    repo = SqlTransactionRepository(database_url=db_url)
    repo.append(_tx("late", when=T0 + timedelta(days=1)))
    repo.append(_tx("early", when=T0 - timedelta(days=1)))
    repo.append(_tx("bad"))
    with session_scope(database_url=db_url) as s:
        s.execute(update(LedgerTransaction).where(LedgerTransaction.id == "bad").values(parser_type="regex"))

    assert [t.id for t in repo.query_all()] == ["early", "late"]


def test_category_sum_and_month_deletion(db_url: str):
    repo = SqlTransactionRepository(database_url=db_url)
    repo.append(_tx("jan-1", when=datetime(2024, 1, 1, tzinfo=UTC), amount="100.25"))
    repo.append(_tx("jan-2", when=datetime(2024, 1, 31, 23, 59, tzinfo=UTC), amount="200"))
    repo.append(_tx("jan-credit", when=datetime(2024, 1, 10, tzinfo=UTC), type=TransactionType.CREDIT))
    repo.append(_tx("jan-food", when=datetime(2024, 1, 10, tzinfo=UTC), category="Food & Dining"))
    repo.append(_tx("feb-1", when=datetime(2024, 2, 1, tzinfo=UTC), amount="999"))

    total = repo.query_by_category(
        "Shopping", datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 2, 1, tzinfo=UTC)
    )
    assert total == Decimal("300.25")

    assert repo.delete_by_month(2024, 1) == 4
    assert [t.id for t in repo.query_all()] == ["feb-1"]
    assert repo.delete("feb-1") is True
    assert repo.delete("feb-1") is False


def test_distinct_accounts_and_delete_all(db_url: str):
    repo = SqlTransactionRepository(database_url=db_url)
    repo.append(_tx("a"))
    repo.append(_tx("b", account_last_digits="5678"))
    repo.append(_tx("c", account_last_digits="5678"))
    repo.append(_tx("d", account_last_digits=None))

    assert repo.query_distinct_accounts() == {"1234": 1, "5678": 2}
    assert repo.delete_all() == 4
    assert repo.query_all() == []


def _series(sid: str, merchant: str) -> RecurringSeries:
    return RecurringSeries(
        id=sid,
        merchant=merchant,
        category="Entertainment",
        frequency_type=FrequencyType.MONTHLY,
        average_amount=Decimal("499.00"),
        occurrence_count=3,
        first_occurrence=T0,
        last_occurrence=T0 + timedelta(days=61),
        next_expected_date=T0 + timedelta(days=92),
        confidence_score=0.98,
        median_gap_days=30.5,
    )


def test_series_replace_all_and_activation(db_url: str):
    store = SqlSeriesRepository(database_url=db_url)
    store.replace_all([_series("s2", "SPOTIFY"), _series("s1", "NETFLIX")])

    assert [s.merchant for s in store.query_all()] == ["NETFLIX", "SPOTIFY"]
    assert store.set_active("s1", False) is True
    assert store.set_active("missing", False) is False
    (netflix, _) = store.query_all()
    assert netflix.is_active is False
    assert netflix.next_expected_date == T0 + timedelta(days=92)

    store.replace_all([_series("s3", "GYM")])
    assert [s.id for s in store.query_all()] == ["s3"]


def test_association_store_upserts(db_url: str):
    store = SqlAssociationStore(database_url=db_url)
    assert store.get("amazon") is None

    store.put(CategoryAssociation("amazon", "Shopping", 1, T0))
    store.put(CategoryAssociation("amazon", "Groceries", 2, T0 + timedelta(hours=1)))
    store.put(CategoryAssociation("uber", "Transportation", 1, T0))

    assoc = store.get("amazon")
    assert assoc == CategoryAssociation("amazon", "Groceries", 2, T0 + timedelta(hours=1))
    assert [a.merchant_key for a in store.all()] == ["amazon", "uber"]


def test_association_store_delete(db_url: str):
    store = SqlAssociationStore(database_url=db_url)
    store.put(CategoryAssociation("amazon", "Shopping", 1, T0))

    assert store.delete("amazon") is True
    assert store.delete("amazon") is False
    assert store.get("amazon") is None
