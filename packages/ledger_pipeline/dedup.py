"""Deduplication gate.

A candidate is compared only against transactions on the same account suffix
within a few days of it. The fingerprint decides first; when it misses (the
provider reworded the alert, say) equal amounts with similar merchant names
inside the window still count as the same transaction.
"""

from __future__ import annotations

import difflib
from collections.abc import Iterable
from datetime import timedelta

from .learner import merchant_key
from .models import Transaction, as_utc
from .settings import PipelineSettings


def merchant_similarity(a: str, b: str) -> float:
    """SequenceMatcher ratio over normalized merchant keys; empty names score 0."""

    ka, kb = merchant_key(a), merchant_key(b)
    if not ka or not kb:
        return 0.0
    return difflib.SequenceMatcher(None, ka, kb).ratio()


def _gap(a: Transaction, b: Transaction) -> timedelta:
    # naive timestamps are UTC
    return abs(as_utc(a.timestamp) - as_utc(b.timestamp))


class DeduplicationGate:
    def __init__(self, *, window_days: int = 2, similarity_threshold: float = 0.8) -> None:
        self.window = timedelta(days=window_days)
        self.similarity_threshold = similarity_threshold

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> DeduplicationGate:
        return cls(
            window_days=settings.dedup_window_days,
            similarity_threshold=settings.merchant_similarity_threshold,
        )

    def window_for(
        self, candidate: Transaction, transactions: Iterable[Transaction]
    ) -> list[Transaction]:
        """Transactions sharing the candidate's account within the time window."""

        return [
            t
            for t in transactions
            if t.id != candidate.id
            and t.account_last_digits == candidate.account_last_digits
            and _gap(t, candidate) <= self.window
        ]

    def is_duplicate(self, candidate: Transaction, existing_window: Iterable[Transaction]) -> bool:
        window = list(existing_window)
        if candidate.fingerprint and any(t.fingerprint == candidate.fingerprint for t in window):
            return True
        if candidate.amount is None:
            return False
        for t in window:
            if t.amount != candidate.amount:
                continue
            if _gap(t, candidate) > self.window:
                continue
            if merchant_similarity(t.merchant, candidate.merchant) >= self.similarity_threshold:
                return True
        return False


__all__ = ["DeduplicationGate", "merchant_similarity"]
