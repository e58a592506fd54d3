"""
app/scheduler/jobs.py

APScheduler-based housekeeping for the bulk ingestion pipeline.

Schedule
--------
  staging_sweep  every STAGING_SWEEP_INTERVAL_MINUTES; removes staged chunk
                 artifacts older than STAGING_SWEEP_MAX_AGE_MINUTES
  job_reaper     hourly; marks jobs still pending or running after
                 STALE_JOB_HOURS as failed

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it on app boot; shut it down gracefully on app shutdown.
The scheduler is wired into FastAPI via the ``lifespan`` context in main.py.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from app.config import get_bulk_ingestion_settings, get_staging_settings
from db.repositories.ingestion_job_repository import IngestionJobRepository
from db.session import SessionLocal
from ingestion.staging import ChunkStager, LocalStagingBackend

logger = logging.getLogger(__name__)


@contextmanager
def _session_scope() -> Iterator[Session]:
    """Yield a fresh session and ensure it is closed on exit."""
    session: Session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def run_staging_sweep() -> int:
    """
    Delete staged chunks left behind by jobs that crashed mid-chunk.
    """
    settings = get_staging_settings()
    stager = ChunkStager(LocalStagingBackend(settings.root_dir))
    removed = stager.sweep(timedelta(minutes=settings.sweep_max_age_minutes))
    logger.info("Scheduler: staging_sweep removed=%s", removed)
    return removed


def run_job_reaper() -> int:
    stale_hours = get_bulk_ingestion_settings().stale_job_hours
    cutoff = datetime.now(tz=timezone.utc) - timedelta(hours=stale_hours)

    with _session_scope() as db:
        try:
            reaped = IngestionJobRepository(db).fail_stale_running(
                started_before=cutoff,
                error_message=f"Job did not finish within {stale_hours}h; worker presumed lost.",
            )
            db.commit()
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            logger.warning("Scheduler: job_reaper failed: %s", exc)
            return 0

    if reaped:
        logger.warning("Scheduler: job_reaper marked stale jobs failed count=%s", reaped)
    return reaped


def build_scheduler() -> BackgroundScheduler:
    """
    Build and register all periodic jobs.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    """
    settings = get_staging_settings()
    scheduler = BackgroundScheduler(timezone="UTC")

    scheduler.add_job(
        run_staging_sweep,
        trigger="interval",
        minutes=settings.sweep_interval_minutes,
        id="staging_sweep",
        name="Staged chunk sweep",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        run_job_reaper,
        trigger="interval",
        hours=1,
        id="job_reaper",
        name="Stale ingestion job reaper",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )

    return scheduler
