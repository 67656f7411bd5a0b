"""Merchant to category learning from explicit user edits.

Only :meth:`CategoryLearner.record_user_edit` writes. :meth:`suggest` is a
pure exact-key lookup, so auto-categorization can never reinforce its own
guesses. There is no fuzzy matching.
"""

from __future__ import annotations

import re
import threading
import unicodedata
from dataclasses import replace

from .logging_setup import get_logger
from .models import UNCATEGORIZED, CategoryAssociation, utcnow
from .repository import AssociationStore, InMemoryAssociationStore

_logger = get_logger("ledger_pipeline.learner")

# Trailing tokens carrying 4+ digits ("*12345", "-TXN88392011", "#4432 19")
_ID_SUFFIX_RE = re.compile(r"(?:[\s/*#:_-]+[a-z]*\d{4,}[a-z\d]*)+$")
_RAIL_PREFIX_RE = re.compile(r"^(?:upi|imps|neft|pos)[\s/-]+(?:\d{6,}[\s/-]+)?")


def merchant_key(merchant: str | None) -> str:
    """Normalized lookup key: NFKC, case-folded, trimmed, reference suffixes removed."""

    if not merchant:
        return ""
    s = unicodedata.normalize("NFKC", merchant)
    s = " ".join(s.split()).casefold()
    s = _RAIL_PREFIX_RE.sub("", s)
    s = _ID_SUFFIX_RE.sub("", s)
    return s.strip(" .,;:*#/-_")


class CategoryLearner:
    def __init__(self, store: AssociationStore | None = None) -> None:
        self._store = store if store is not None else InMemoryAssociationStore()
        self._lock = threading.Lock()

    def record_user_edit(self, merchant: str, category: str) -> CategoryAssociation | None:
        """Reinforce ``merchant -> category`` after a human edit.

        An edit back to ``Uncategorized`` forgets the merchant, so it is no
        longer auto-categorized. Returns the stored association, or ``None``
        when nothing is stored afterwards (no usable merchant key, a blank
        category, or a cleared one).
        """

        key = merchant_key(merchant)
        cat = (category or "").strip()
        if not key or not cat:
            return None
        if cat == UNCATEGORIZED:
            with self._lock:
                forgotten = self._store.delete(key)
            if forgotten:
                _logger.info("learner:association_cleared key=%s", key)
            return None
        with self._lock:
            current = self._store.get(key)
            if current is None:
                assoc = CategoryAssociation(key, cat, 1, utcnow())
            else:
                assoc = replace(
                    current,
                    category=cat,
                    reinforcement_count=current.reinforcement_count + 1,
                    updated_at=utcnow(),
                )
            self._store.put(assoc)
        if current is not None and current.category != cat:
            _logger.info(
                "learner:category_replaced key=%s old=%s new=%s", key, current.category, cat
            )
        return assoc

    def suggest(self, merchant: str | None) -> str | None:
        key = merchant_key(merchant)
        if not key:
            return None
        assoc = self._store.get(key)
        return assoc.category if assoc is not None else None

    def associations(self) -> list[CategoryAssociation]:
        return self._store.all()


__all__ = ["CategoryLearner", "merchant_key"]
