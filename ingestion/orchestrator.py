"""
ingestion/orchestrator.py

Drives one bulk export through normalize → chunk → (stage → apply → discard)*.

Chunks are processed strictly in sequence order, one at a time. A chunk that
fails to stage or apply is recorded and the job moves on; nothing below this
class is allowed to abort a job once chunking has started.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from ingestion.apply_invoker import ApplyInvoker, ChunkResult
from ingestion.chunker import Chunk, split_into_chunks
from ingestion.normalizer import DEFAULT_ENCODINGS, EmptyExportError, ExportNormalizer, RawInput
from ingestion.progress import NullProgressChannel, ProgressEvent, ProgressEventKind
from ingestion.staging import ChunkStager, StagedReference, StagingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineConfig:
    """
    Per-job pipeline settings; built by the caller at job start.
    """

    chunk_size: int = 8000
    inter_chunk_delay_seconds: float = 1.0
    stage_max_retries: int = 2
    stage_retry_backoff_seconds: float = 0.5
    apply_max_retries: int = 0
    encodings: tuple[str, ...] = DEFAULT_ENCODINGS

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1.")
        if self.inter_chunk_delay_seconds < 0:
            raise ValueError("inter_chunk_delay_seconds must be >= 0.")
        if self.stage_max_retries < 0 or self.apply_max_retries < 0:
            raise ValueError("retry counts must be >= 0.")
        if not self.encodings:
            raise ValueError("at least one encoding is required.")


class JobState(str, enum.Enum):
    IDLE = "idle"
    CHUNKING = "chunking"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus:
    COMPLETED = "completed"
    PARTIAL = "failed-with-partial-success"
    FAILED = "failed"


@dataclass(frozen=True)
class ChunkOutcome:
    sequence: int
    rows: int
    result: ChunkResult

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "rows": self.rows,
            "succeeded": self.result.succeeded,
            "reconciled": self.result.reconciled_count,
            "errors": list(self.result.errors),
            "durationMs": self.result.processing_duration_ms,
        }


@dataclass
class JobAggregate:
    """
    Running fold of chunk outcomes. Counts only ever grow.
    """

    total_rows: int = 0
    total_reconciled: int = 0
    total_errors: int = 0
    total_duration_ms: int = 0
    per_chunk: list[ChunkOutcome] = field(default_factory=list)

    def record(self, outcome: ChunkOutcome) -> None:
        self.per_chunk.append(outcome)
        self.total_rows += outcome.rows
        self.total_errors += len(outcome.result.errors)
        self.total_duration_ms += outcome.result.processing_duration_ms
        if outcome.result.succeeded:
            self.total_reconciled += outcome.result.reconciled_count

    @property
    def failed_sequences(self) -> list[int]:
        return [outcome.sequence for outcome in self.per_chunk if not outcome.result.succeeded]

    @property
    def status(self) -> str:
        failed = len(self.failed_sequences)
        if failed == 0:
            return JobStatus.COMPLETED
        if failed < len(self.per_chunk):
            return JobStatus.PARTIAL
        return JobStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRows": self.total_rows,
            "totalReconciled": self.total_reconciled,
            "totalErrors": self.total_errors,
            "totalDurationMs": self.total_duration_ms,
            "perChunk": [outcome.to_dict() for outcome in self.per_chunk],
        }


@dataclass(frozen=True)
class JobReport:
    """
    Terminal summary of one job; the same shape for every outcome.
    """

    job_id: uuid.UUID | str
    total_records: int
    aggregate: JobAggregate
    processing_time_ms: int
    encoding: str | None = None
    cancelled: bool = False

    @property
    def status(self) -> str:
        return self.aggregate.status

    @property
    def state(self) -> JobState:
        return JobState.COMPLETED if self.status == JobStatus.COMPLETED else JobState.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobId": str(self.job_id),
            "status": self.status,
            "totalRecords": self.total_records,
            "totalReconciled": self.aggregate.total_reconciled,
            "totalErrors": self.aggregate.total_errors,
            "processingTimeMs": self.processing_time_ms,
            "perChunk": [outcome.to_dict() for outcome in self.aggregate.per_chunk],
        }


class ProgressPublisher(Protocol):
    def publish(self, event: ProgressEvent) -> None:
        ...


class BulkIngestionOrchestrator:
    """
    Sequential chunk pipeline with per-chunk failure isolation.
    """

    def __init__(
        self,
        *,
        stager: ChunkStager,
        invoker: ApplyInvoker,
        config: PipelineConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stager = stager
        self._invoker = invoker
        self._config = config or PipelineConfig()
        self._sleep = sleep
        self._clock = clock
        self._state = JobState.IDLE

    @property
    def config(self) -> PipelineConfig:
        return self._config

    @property
    def state(self) -> JobState:
        return self._state

    def run(
        self,
        *,
        job_id: uuid.UUID | str,
        raw: RawInput,
        channel: ProgressPublisher | None = None,
        cancel_event: threading.Event | None = None,
    ) -> JobReport:
        """
        Execute one job end to end and return its terminal report.

        Raises EmptyExportError when the upload cannot start a job; a
        ``failed`` event is published before raising.
        """

        publisher = channel or NullProgressChannel()
        started = self._clock()
        self._transition(job_id, JobState.CHUNKING)
        publisher.publish(
            ProgressEvent.status(f"Processing file: {raw.file_name}", jobId=str(job_id))
        )

        try:
            export = ExportNormalizer(self._config.encodings).normalize(raw)
        except EmptyExportError as exc:
            self._transition(job_id, JobState.FAILED)
            publisher.publish(
                ProgressEvent(
                    kind=ProgressEventKind.FAILED,
                    payload={"jobId": str(job_id), "status": JobStatus.FAILED, "error": str(exc)},
                )
            )
            raise

        chunks = split_into_chunks(export, self._config.chunk_size)
        publisher.publish(
            ProgressEvent.status(
                f"Total records: {export.row_count}",
                encoding=export.encoding,
                encodingFallback=export.fallback,
                totalRecords=export.row_count,
            )
        )
        publisher.publish(
            ProgressEvent.status(
                f"Split into {len(chunks)} chunk(s) (max {self._config.chunk_size} records per chunk)",
                totalChunks=len(chunks),
            )
        )

        aggregate = JobAggregate()
        cancelled = False
        for index, chunk in enumerate(chunks):
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                outcome = ChunkOutcome(
                    sequence=chunk.sequence,
                    rows=chunk.row_count,
                    result=ChunkResult.failure(f"chunk {chunk.sequence}: cancelled before processing"),
                )
            else:
                self._transition(job_id, JobState.PROCESSING, sequence=chunk.sequence)
                publisher.publish(
                    ProgressEvent.status(
                        f"Processing chunk {chunk.sequence}/{len(chunks)} ({chunk.row_count} records)",
                        sequence=chunk.sequence,
                    )
                )
                outcome = self._process_chunk(job_id, chunk)

            aggregate.record(outcome)
            publisher.publish(
                ProgressEvent(
                    kind=ProgressEventKind.CHUNK_COMPLETE,
                    payload={
                        "jobId": str(job_id),
                        "sequence": chunk.sequence,
                        "totalChunks": len(chunks),
                        "chunk": outcome.to_dict(),
                        "aggregate": aggregate.to_dict(),
                    },
                )
            )

            is_last = index == len(chunks) - 1
            stopping = cancel_event is not None and cancel_event.is_set()
            if not is_last and not stopping and self._config.inter_chunk_delay_seconds > 0:
                self._sleep(self._config.inter_chunk_delay_seconds)

        report = JobReport(
            job_id=job_id,
            total_records=export.row_count,
            aggregate=aggregate,
            processing_time_ms=int((self._clock() - started) * 1000),
            encoding=export.encoding,
            cancelled=cancelled,
        )
        self._transition(job_id, report.state)
        logger.info(
            "Bulk ingestion finished job_id=%s status=%s records=%s reconciled=%s errors=%s "
            "failed_chunks=%s duration_ms=%s",
            job_id,
            report.status,
            report.total_records,
            aggregate.total_reconciled,
            aggregate.total_errors,
            aggregate.failed_sequences,
            report.processing_time_ms,
        )

        terminal_kind = (
            ProgressEventKind.COMPLETE if report.status == JobStatus.COMPLETED else ProgressEventKind.FAILED
        )
        publisher.publish(ProgressEvent(kind=terminal_kind, payload=report.to_dict()))
        return report

    def _process_chunk(self, job_id: uuid.UUID | str, chunk: Chunk) -> ChunkOutcome:
        reference: StagedReference | None = None
        try:
            reference = self._stage_with_retry(job_id, chunk)
            result = self._invoke_with_retry(chunk, reference)
        except StagingError as exc:
            logger.warning(
                "Chunk staging failed job_id=%s sequence=%s error=%s", job_id, chunk.sequence, exc
            )
            result = ChunkResult.failure(f"staging failed: {exc}")
        except Exception as exc:  # noqa: BLE001
            logger.exception("Chunk processing failed job_id=%s sequence=%s", job_id, chunk.sequence)
            result = ChunkResult.failure(f"unexpected error: {type(exc).__name__}: {exc}")
        finally:
            if reference is not None:
                self._stager.discard(reference)

        if not result.succeeded:
            result = replace(
                result,
                reconciled_count=0,
                errors=tuple(f"chunk {chunk.sequence}: {error}" for error in result.errors)
                or (f"chunk {chunk.sequence}: apply step reported failure",),
            )
            logger.warning(
                "Chunk failed job_id=%s sequence=%s rows=%s errors=%s",
                job_id,
                chunk.sequence,
                chunk.row_count,
                list(result.errors),
            )
        else:
            logger.info(
                "Chunk applied job_id=%s sequence=%s rows=%s reconciled=%s row_errors=%s duration_ms=%s",
                job_id,
                chunk.sequence,
                chunk.row_count,
                result.reconciled_count,
                len(result.errors),
                result.processing_duration_ms,
            )
        return ChunkOutcome(sequence=chunk.sequence, rows=chunk.row_count, result=result)

    def _stage_with_retry(self, job_id: uuid.UUID | str, chunk: Chunk) -> StagedReference:
        attempts = self._config.stage_max_retries + 1
        for attempt in range(attempts):
            try:
                return self._stager.stage(job_id, chunk)
            except StagingError as exc:
                if attempt + 1 >= attempts:
                    raise
                backoff_seconds = self._config.stage_retry_backoff_seconds * (2**attempt)
                logger.warning(
                    "Chunk staging retry job_id=%s sequence=%s attempt=%s/%s wait_seconds=%.2f error=%s",
                    job_id,
                    chunk.sequence,
                    attempt + 1,
                    self._config.stage_max_retries,
                    backoff_seconds,
                    exc,
                )
                self._sleep(backoff_seconds)
        raise StagingError(f"chunk {chunk.sequence} was never staged")

    def _invoke_with_retry(self, chunk: Chunk, reference: StagedReference) -> ChunkResult:
        # Re-invoking is safe: the apply step upserts by business key.
        result = self._invoker.invoke(reference)
        for attempt in range(self._config.apply_max_retries):
            if result.succeeded:
                break
            logger.warning(
                "Chunk apply retry sequence=%s attempt=%s/%s errors=%s",
                chunk.sequence,
                attempt + 1,
                self._config.apply_max_retries,
                list(result.errors),
            )
            result = self._invoker.invoke(reference)
        return result

    def _transition(self, job_id: uuid.UUID | str, state: JobState, **context: Any) -> None:
        logger.debug(
            "Job state job_id=%s from=%s to=%s context=%s", job_id, self._state.value, state.value, context
        )
        self._state = state
