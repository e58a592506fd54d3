"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    """
    Read an optional string value from environment variables.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _get_csv_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """
    Read a comma-separated list; blank entries are ignored.
    """

    raw_value = _get_optional_str_env(name)
    if raw_value is None:
        return default
    items = tuple(item.strip() for item in raw_value.split(",") if item.strip())
    return items or default


@dataclass(frozen=True)
class BulkIngestionSettings:
    """
    Runtime settings for the chunked bulk ingestion pipeline.
    """

    chunk_size: int = 8000
    inter_chunk_delay_seconds: float = 1.0
    stage_max_retries: int = 2
    stage_retry_backoff_seconds: float = 0.5
    apply_max_retries: int = 0
    source_encodings: tuple[str, ...] = ("cp932", "utf-8")
    stale_job_hours: int = 6


@dataclass(frozen=True)
class StagingSettings:
    """
    Chunk staging storage and orphan sweep settings.
    """

    root_dir: str = "data/staging"
    sweep_max_age_minutes: int = 60
    sweep_interval_minutes: int = 15


@dataclass(frozen=True)
class ApplyServiceSettings:
    """
    Apply step location and limits.

    ``url`` unset means chunks are applied in-process.
    """

    url: str | None = None
    timeout_seconds: float = 120.0
    batch_size: int = 1000


@lru_cache(maxsize=1)
def get_bulk_ingestion_settings() -> BulkIngestionSettings:
    """
    Return cached bulk ingestion settings from environment variables.
    """

    return BulkIngestionSettings(
        chunk_size=max(1, _get_int_env("BULK_CHUNK_SIZE", 8000)),
        inter_chunk_delay_seconds=max(0.0, _get_float_env("BULK_INTER_CHUNK_DELAY_SECONDS", 1.0)),
        stage_max_retries=max(0, _get_int_env("BULK_STAGE_MAX_RETRIES", 2)),
        stage_retry_backoff_seconds=max(0.0, _get_float_env("BULK_STAGE_RETRY_BACKOFF_SECONDS", 0.5)),
        apply_max_retries=max(0, _get_int_env("BULK_APPLY_MAX_RETRIES", 0)),
        source_encodings=_get_csv_env("BULK_SOURCE_ENCODINGS", ("cp932", "utf-8")),
        stale_job_hours=max(1, _get_int_env("STALE_JOB_HOURS", 6)),
    )


@lru_cache(maxsize=1)
def get_staging_settings() -> StagingSettings:
    """
    Return cached staging settings from environment variables.
    """

    return StagingSettings(
        root_dir=_get_str_env("STAGING_ROOT_DIR", "data/staging"),
        sweep_max_age_minutes=max(1, _get_int_env("STAGING_SWEEP_MAX_AGE_MINUTES", 60)),
        sweep_interval_minutes=max(1, _get_int_env("STAGING_SWEEP_INTERVAL_MINUTES", 15)),
    )


@lru_cache(maxsize=1)
def get_apply_service_settings() -> ApplyServiceSettings:
    """
    Return cached apply service settings from environment variables.
    """

    return ApplyServiceSettings(
        url=_get_optional_str_env("APPLY_SERVICE_URL"),
        timeout_seconds=max(1.0, _get_float_env("APPLY_TIMEOUT_SECONDS", 120.0)),
        batch_size=max(1, _get_int_env("APPLY_BATCH_SIZE", 1000)),
    )


def scheduler_enabled() -> bool:
    return _get_bool_env("SCHEDULER_ENABLED", True)
