"""Runtime configuration for the pipeline.

All tunables live on :class:`PipelineSettings`, a frozen pydantic model.
Construct it directly in tests, or call :meth:`PipelineSettings.from_env` in
entrypoints (the CLI loads ``.env`` first). Day bands and bucket intervals are
configuration so a deployment can match its own thresholds.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import FrequencyType

DEFAULT_FREQUENCY_BANDS: dict[FrequencyType, tuple[float, float]] = {
    FrequencyType.DAILY: (1, 2),
    FrequencyType.WEEKLY: (3, 10),
    FrequencyType.BIWEEKLY: (11, 17),
    FrequencyType.MONTHLY: (25, 35),
    FrequencyType.QUARTERLY: (80, 100),
    FrequencyType.YEARLY: (350, 380),
}

DEFAULT_BUCKET_INTERVAL_DAYS: dict[FrequencyType, int] = {
    FrequencyType.DAILY: 1,
    FrequencyType.WEEKLY: 7,
    FrequencyType.BIWEEKLY: 14,
    FrequencyType.MONTHLY: 31,
    FrequencyType.QUARTERLY: 91,
    FrequencyType.YEARLY: 365,
}

_ENV_PREFIX = "LEDGER_"


class PipelineSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    fallback_enabled: bool = False
    model_name: str = "gpt-4o-mini"
    model_base_url: str | None = None
    confidence_floor: float = Field(0.6, ge=0.0, le=1.0)
    email_two_step_min_chars: int = Field(600, ge=0)
    bulk_reparse_delay_sec: float = Field(1.0, ge=0.0)
    sync_concurrency: int = Field(4, ge=1)
    dedup_window_days: int = Field(2, ge=0)
    merchant_similarity_threshold: float = Field(0.8, ge=0.0, le=1.0)
    upcoming_window_days: int = Field(7, ge=0)
    home_currency: str = "INR"
    frequency_bands: dict[FrequencyType, tuple[float, float]] = Field(
        default_factory=lambda: dict(DEFAULT_FREQUENCY_BANDS)
    )
    bucket_interval_days: dict[FrequencyType, int] = Field(
        default_factory=lambda: dict(DEFAULT_BUCKET_INTERVAL_DAYS)
    )

    @field_validator("home_currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        code = v.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError("home_currency must be a 3-letter ISO code")
        return code

    @field_validator("frequency_bands")
    @classmethod
    def _bands_ordered(
        cls, v: dict[FrequencyType, tuple[float, float]]
    ) -> dict[FrequencyType, tuple[float, float]]:
        for bucket, (low, high) in v.items():
            if bucket in (FrequencyType.NONE, FrequencyType.IRREGULAR):
                raise ValueError(f"{bucket} cannot have a day band")
            if low <= 0 or high < low:
                raise ValueError(f"invalid band for {bucket}: [{low}, {high}]")
        return v

    @model_validator(mode="after")
    def _intervals_cover_bands(self) -> PipelineSettings:
        missing = set(self.frequency_bands) - set(self.bucket_interval_days)
        if missing:
            names = ", ".join(sorted(str(m) for m in missing))
            raise ValueError(f"bucket_interval_days missing buckets: {names}")
        return self

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> PipelineSettings:
        """Build settings from ``LEDGER_*`` variables; unset keys keep defaults."""

        env = os.environ if environ is None else environ
        fields = {
            "fallback_enabled": "FALLBACK_ENABLED",
            "model_name": "MODEL",
            "model_base_url": "MODEL_BASE_URL",
            "confidence_floor": "CONFIDENCE_FLOOR",
            "email_two_step_min_chars": "EMAIL_TWO_STEP_MIN_CHARS",
            "bulk_reparse_delay_sec": "BULK_REPARSE_DELAY_SEC",
            "sync_concurrency": "SYNC_CONCURRENCY",
            "dedup_window_days": "DEDUP_WINDOW_DAYS",
            "merchant_similarity_threshold": "MERCHANT_SIMILARITY_THRESHOLD",
            "upcoming_window_days": "UPCOMING_WINDOW_DAYS",
            "home_currency": "HOME_CURRENCY",
        }
        values: dict[str, object] = {}
        for field_name, suffix in fields.items():
            raw = env.get(_ENV_PREFIX + suffix)
            if raw is None or raw.strip() == "":
                continue
            if field_name == "fallback_enabled":
                values[field_name] = _parse_bool(raw, _ENV_PREFIX + suffix)
            else:
                # pydantic coerces numeric strings in lax mode
                values[field_name] = raw.strip()
        return cls.model_validate(values)


def _parse_bool(raw: str, name: str) -> bool:
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "on"}:
        return True
    if v in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


__all__ = [
    "DEFAULT_BUCKET_INTERVAL_DAYS",
    "DEFAULT_FREQUENCY_BANDS",
    "PipelineSettings",
]
