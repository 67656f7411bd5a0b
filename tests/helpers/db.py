"""DB helpers for tests: bootstrap a temporary SQLite DB from the ORM metadata."""

from __future__ import annotations

import os
from pathlib import Path

from db import Base
from db.client import get_engine


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create a SQLite database file with every ledger table and return the URL.

    A file-backed database lets the several connections SQLAlchemy opens
    (including from worker threads) share state; in-memory SQLite is
    per-connection.
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)
    Base.metadata.create_all(bind=engine)
    if set_default_env:
        os.environ.setdefault("LEDGER_DATABASE_URL", url)
    return url
