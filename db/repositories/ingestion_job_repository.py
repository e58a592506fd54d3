"""
Repository for bulk ingestion job lifecycle persistence and status lookup.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.ingestion_job import IngestionJob, IngestionJobStatus, IngestionJobType


class IngestionJobRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_job(
        self,
        *,
        job_id: uuid.UUID,
        file_name: str | None = None,
        request_payload: dict[str, Any] | None = None,
        job_type: str = IngestionJobType.BULK_CSV,
    ) -> IngestionJob:
        job = IngestionJob(
            id=job_id,
            job_type=job_type,
            status=IngestionJobStatus.PENDING,
            file_name=file_name,
            request_payload=request_payload,
        )
        self._session.add(job)
        self._session.flush()
        return job

    def get_job(self, job_id: uuid.UUID) -> IngestionJob | None:
        return self._session.get(IngestionJob, job_id)

    def mark_running(self, *, job_id: uuid.UUID) -> IngestionJob | None:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.status = IngestionJobStatus.RUNNING
        job.started_at = datetime.now(timezone.utc)
        job.completed_at = None
        job.error_message = None
        return job

    def mark_finished(
        self,
        *,
        job_id: uuid.UUID,
        report: dict[str, Any],
    ) -> IngestionJob | None:
        """
        Store a terminal job report; status and totals are read from it.
        """

        job = self.get_job(job_id)
        if job is None:
            return None
        status = str(report.get("status") or IngestionJobStatus.FAILED)
        if status not in IngestionJobStatus.TERMINAL:
            raise ValueError(f"Not a terminal job status: {status}")
        job.status = status
        job.completed_at = datetime.now(timezone.utc)
        job.total_records = report.get("totalRecords")
        job.total_reconciled = report.get("totalReconciled")
        job.total_errors = report.get("totalErrors")
        job.result_payload = report
        job.error_message = None if status == IngestionJobStatus.COMPLETED else _summarize_errors(report)
        return job

    def mark_failed(
        self,
        *,
        job_id: uuid.UUID,
        error_message: str,
    ) -> IngestionJob | None:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.status = IngestionJobStatus.FAILED
        job.completed_at = datetime.now(timezone.utc)
        job.error_message = error_message
        return job

    def fail_stale_running(self, *, started_before: datetime, error_message: str) -> int:
        stmt = select(IngestionJob).where(
            IngestionJob.status.in_([IngestionJobStatus.PENDING, IngestionJobStatus.RUNNING]),
            IngestionJob.created_at < started_before,
        )
        now = datetime.now(timezone.utc)
        jobs = list(self._session.scalars(stmt).all())
        for job in jobs:
            job.status = IngestionJobStatus.FAILED
            job.completed_at = now
            job.error_message = error_message
        return len(jobs)


def _summarize_errors(report: dict[str, Any], limit: int = 5) -> str | None:
    errors: list[str] = []
    for chunk in report.get("perChunk") or []:
        if chunk.get("succeeded"):
            continue
        errors.extend(str(error) for error in chunk.get("errors") or [])
    if not errors:
        return None
    summary = "; ".join(errors[:limit])
    if len(errors) > limit:
        summary += f" (+{len(errors) - limit} more)"
    return summary
