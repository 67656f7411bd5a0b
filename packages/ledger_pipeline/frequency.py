"""Frequency classifier.

Gaps between consecutive occurrences are measured in calendar days. The
median gap picks the bucket from inclusive day bands; regularity sets the
confidence as ``1 - MAD / median`` clamped to ``[0, 1]``, where MAD is the
mean absolute deviation of the gaps from the median.

Two occurrences give one gap, zero deviation and therefore confidence 1.0.
That optimism for short histories is accepted, not special-cased.
"""

from __future__ import annotations

import statistics
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from .models import FrequencyType
from .settings import DEFAULT_FREQUENCY_BANDS

IRREGULAR_CONFIDENCE_CAP: float = 0.4


@dataclass(frozen=True, slots=True)
class Classification:
    frequency_type: FrequencyType
    confidence: float
    median_gap_days: float | None


def gap_days(timestamps: Sequence[datetime]) -> list[int]:
    ordered = sorted(timestamps)
    return [(b.date() - a.date()).days for a, b in zip(ordered, ordered[1:])]


def bucket_for(
    median_gap: float,
    bands: Mapping[FrequencyType, tuple[float, float]] = DEFAULT_FREQUENCY_BANDS,
) -> FrequencyType:
    for bucket, (low, high) in bands.items():
        if low <= median_gap <= high:
            return bucket
    return FrequencyType.IRREGULAR


def classify(
    timestamps: Sequence[datetime],
    *,
    bands: Mapping[FrequencyType, tuple[float, float]] = DEFAULT_FREQUENCY_BANDS,
) -> Classification:
    if len(timestamps) < 2:
        return Classification(FrequencyType.NONE, 0.0, None)

    gaps = gap_days(timestamps)
    median = float(statistics.median(gaps))
    if median <= 0:
        # Same-day repeats carry no periodicity
        return Classification(FrequencyType.IRREGULAR, 0.0, median)

    bucket = bucket_for(median, bands)
    mad = statistics.fmean(abs(g - median) for g in gaps)
    confidence = min(1.0, max(0.0, 1.0 - mad / median))
    if bucket is FrequencyType.IRREGULAR:
        confidence = min(confidence, IRREGULAR_CONFIDENCE_CAP)
    return Classification(bucket, confidence, median)


def average_amount(amounts: Sequence[Decimal]) -> Decimal:
    """Arithmetic mean, to the cent."""

    if not amounts:
        raise ValueError("average_amount needs at least one amount")
    total = sum(amounts, Decimal("0"))
    return (total / len(amounts)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


__all__ = [
    "IRREGULAR_CONFIDENCE_CAP",
    "Classification",
    "average_amount",
    "bucket_for",
    "classify",
    "gap_days",
]
