"""Pytest configuration for test isolation.

The pipeline reads ``LEDGER_*`` and ``DATABASE_URL`` variables, and the
``db`` client caches one engine per URL for the life of the process. Both
would leak state between tests, so an autouse fixture scrubs the environment
before each test and disposes cached engines afterwards.
"""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from db.client import dispose_engines


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Remove ledger settings, DB URLs and API keys inherited from the shell."""

    for name in list(os.environ):
        if name.startswith("LEDGER_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    yield
    dispose_engines()
