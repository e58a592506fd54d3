"""
Service layer for bulk export ingestion: job lifecycle, streaming, preview.
"""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from collections.abc import Callable, Iterator
from dataclasses import asdict
from datetime import timedelta
from functools import lru_cache
from typing import Any, Protocol

from sqlalchemy.orm import Session

from app.config import (
    get_apply_service_settings,
    get_bulk_ingestion_settings,
    get_staging_settings,
)
from db.models.ingestion_job import IngestionJob
from db.repositories.ingestion_job_repository import IngestionJobRepository
from ingestion.apply_invoker import ApplyInvoker, HTTPApplyInvoker, InProcessApplyInvoker
from ingestion.normalizer import EmptyExportError, ExportNormalizer, RawInput
from ingestion.orchestrator import BulkIngestionOrchestrator, JobReport, JobStatus, PipelineConfig
from ingestion.progress import ProgressChannel, ProgressEvent, ProgressEventKind, format_sse
from ingestion.staging import ChunkStager, LocalStagingBackend

logger = logging.getLogger(__name__)

PREVIEW_ROW_LIMIT = 5


class IngestionTaskExecutor(Protocol):
    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        ...


class ThreadTaskExecutor:
    """
    Runs each task on its own daemon thread so a response can stream meanwhile.
    """

    def submit(self, task: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        thread = threading.Thread(target=task, args=args, kwargs=kwargs, daemon=True)
        thread.start()


def build_pipeline_config() -> PipelineConfig:
    settings = get_bulk_ingestion_settings()
    return PipelineConfig(
        chunk_size=settings.chunk_size,
        inter_chunk_delay_seconds=settings.inter_chunk_delay_seconds,
        stage_max_retries=settings.stage_max_retries,
        stage_retry_backoff_seconds=settings.stage_retry_backoff_seconds,
        apply_max_retries=settings.apply_max_retries,
        encodings=settings.source_encodings,
    )


def build_apply_invoker() -> ApplyInvoker:
    settings = get_apply_service_settings()
    if settings.url:
        return HTTPApplyInvoker(url=settings.url, timeout_seconds=settings.timeout_seconds)

    from app.services.apply_service import get_apply_service

    return InProcessApplyInvoker(get_apply_service(), timeout_seconds=settings.timeout_seconds)


class BulkIngestionService:
    """
    Starts bulk ingestion jobs and tracks them in ``ingestion_jobs``.

    Job bookkeeping is best effort: a store that cannot record a job never
    stops the job itself.
    """

    def __init__(
        self,
        *,
        stager: ChunkStager,
        invoker: ApplyInvoker,
        config_factory: Callable[[], PipelineConfig] = build_pipeline_config,
        session_factory: Callable[[], Session] | None = None,
        executor: IngestionTaskExecutor | None = None,
        sweep_max_age: timedelta = timedelta(minutes=60),
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory: Callable[[], Session] = SessionLocal
        else:
            self._session_factory = session_factory
        self._stager = stager
        self._invoker = invoker
        self._config_factory = config_factory
        self._executor = executor or ThreadTaskExecutor()
        self._sweep_max_age = sweep_max_age
        self._cancel_events: dict[uuid.UUID, threading.Event] = {}
        self._lock = threading.Lock()
        self._shutting_down = False

    def submit(self, raw: RawInput) -> JobReport:
        """
        Run a job to completion and return its report.

        Raises EmptyExportError when the upload has nothing to ingest.
        """

        job_id = uuid.uuid4()
        return self._execute(job_id, raw, None)

    def start_stream(self, raw: RawInput) -> tuple[uuid.UUID, Iterator[str]]:
        """
        Start a job in the background and return its SSE frame stream.

        The job keeps running if the consumer stops reading.
        """

        job_id = uuid.uuid4()
        channel = ProgressChannel()
        self._executor.submit(self._execute_quietly, job_id, raw, channel)
        return job_id, self._stream_frames(job_id, channel)

    def preview(self, raw: RawInput, *, limit: int = PREVIEW_ROW_LIMIT) -> dict[str, Any]:
        config = self._config_factory()
        export = ExportNormalizer(config.encodings).normalize(raw)
        sample = [asdict(row) for row in itertools.islice(export.rows(), max(0, limit))]
        return {
            "file_name": raw.file_name,
            "encoding": export.encoding,
            "encoding_fallback": export.fallback,
            "headers": list(export.fields),
            "original_header": export.original_header,
            "total_records": export.row_count,
            "rows": sample,
        }

    def get_job(self, job_id: uuid.UUID) -> IngestionJob | None:
        with self._session_factory() as db:
            return IngestionJobRepository(db).get_job(job_id)

    def active_job_ids(self) -> list[uuid.UUID]:
        with self._lock:
            return list(self._cancel_events)

    def sweep_staging(self) -> int:
        return self._stager.sweep(self._sweep_max_age)

    def shutdown(self) -> None:
        """
        Ask running jobs to stop; each finishes its current chunk first.
        """

        with self._lock:
            self._shutting_down = True
            events = list(self._cancel_events.values())
        for event in events:
            event.set()
        if events:
            logger.warning("Cancelling running bulk ingestion jobs count=%s", len(events))

    def _execute(
        self,
        job_id: uuid.UUID,
        raw: RawInput,
        channel: ProgressChannel | None,
    ) -> JobReport:
        config = self._config_factory()
        cancel_event = threading.Event()
        with self._lock:
            if self._shutting_down:
                cancel_event.set()
            self._cancel_events[job_id] = cancel_event

        self._record_job_start(job_id, raw, config)
        orchestrator = BulkIngestionOrchestrator(
            stager=self._stager,
            invoker=self._invoker,
            config=config,
        )
        try:
            report = orchestrator.run(
                job_id=job_id,
                raw=raw,
                channel=channel,
                cancel_event=cancel_event,
            )
        except EmptyExportError as exc:
            self._record_job_failure(job_id, str(exc))
            raise
        finally:
            with self._lock:
                self._cancel_events.pop(job_id, None)

        self._record_job_finish(job_id, report)
        return report

    def _execute_quietly(
        self,
        job_id: uuid.UUID,
        raw: RawInput,
        channel: ProgressChannel,
    ) -> None:
        try:
            self._execute(job_id, raw, channel)
        except EmptyExportError:
            logger.info("Bulk ingestion rejected empty export job_id=%s", job_id)
        except Exception as exc:
            logger.exception("Bulk ingestion worker crashed job_id=%s", job_id)
            channel.publish(
                ProgressEvent(
                    kind=ProgressEventKind.FAILED,
                    payload={
                        "jobId": str(job_id),
                        "status": JobStatus.FAILED,
                        "error": f"{type(exc).__name__}: {exc}",
                    },
                )
            )
            self._record_job_failure(job_id, f"{type(exc).__name__}: {exc}")
        finally:
            channel.close()

    def _stream_frames(self, job_id: uuid.UUID, channel: ProgressChannel) -> Iterator[str]:
        finished = False
        try:
            for event in channel.subscribe():
                yield format_sse(event)
                finished = event.is_terminal
        finally:
            if not finished:
                channel.detach()
                logger.info("Progress stream closed before job end job_id=%s", job_id)

    def _record_job_start(self, job_id: uuid.UUID, raw: RawInput, config: PipelineConfig) -> None:
        request_payload = {
            "file_name": raw.file_name,
            "file_size_bytes": len(raw.content),
            "declared_encoding": raw.declared_encoding,
            "chunk_size": config.chunk_size,
            "inter_chunk_delay_seconds": config.inter_chunk_delay_seconds,
        }

        def start(repository: IngestionJobRepository) -> None:
            repository.create_job(job_id=job_id, file_name=raw.file_name, request_payload=request_payload)
            repository.mark_running(job_id=job_id)

        self._persist(job_id, "start", start)

    def _record_job_finish(self, job_id: uuid.UUID, report: JobReport) -> None:
        payload = report.to_dict()
        self._persist(job_id, "finish", lambda repository: repository.mark_finished(job_id=job_id, report=payload))

    def _record_job_failure(self, job_id: uuid.UUID, error_message: str) -> None:
        self._persist(
            job_id,
            "failure",
            lambda repository: repository.mark_failed(job_id=job_id, error_message=error_message[:2000]),
        )

    def _persist(
        self,
        job_id: uuid.UUID,
        step: str,
        action: Callable[[IngestionJobRepository], Any],
    ) -> None:
        try:
            with self._session_factory() as db:
                try:
                    action(IngestionJobRepository(db))
                    db.commit()
                except Exception:
                    db.rollback()
                    raise
        except Exception:
            logger.exception("Failed to persist ingestion job state id=%s step=%s", job_id, step)


@lru_cache(maxsize=1)
def get_bulk_ingestion_service() -> BulkIngestionService:
    staging = get_staging_settings()
    return BulkIngestionService(
        stager=ChunkStager(LocalStagingBackend(staging.root_dir)),
        invoker=build_apply_invoker(),
        sweep_max_age=timedelta(minutes=staging.sweep_max_age_minutes),
    )
