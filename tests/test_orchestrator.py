"""
tests/test_orchestrator.py

End-to-end pipeline behaviour with in-memory staging and a scripted apply step.

Coverage
--------
- Large export with one failing chunk (partial success, reconciled totals)
- Zero-row and empty exports
- Failure isolation for staging errors, apply failures, and invoker crashes
- Staging retry with exponential backoff
- Cooperative cancellation between chunks
- Staged artifacts are always discarded
- Progress stream ordering and terminal event
"""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from ingestion.apply_invoker import ChunkResult
from ingestion.normalizer import EmptyExportError, RawInput
from ingestion.orchestrator import (
    BulkIngestionOrchestrator,
    JobState,
    JobStatus,
    PipelineConfig,
)
from ingestion.progress import ProgressEvent, ProgressEventKind
from ingestion.staging import ChunkStager, StagedArtifactNotFoundError, StagedReference, StagingError


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class InMemoryBackend:
    def __init__(self, put_failures: dict[int, int] | None = None) -> None:
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self._put_failures = dict(put_failures or {})

    def put(self, name: str, content: bytes) -> StagedReference:
        sequence = _sequence_of(name)
        if self._put_failures.get(sequence, 0) > 0:
            self._put_failures[sequence] -= 1
            raise StagingError(f"bucket unavailable for {name}")
        self.objects[name] = content
        return StagedReference(path=name)

    def read(self, reference: StagedReference) -> bytes:
        if reference.path not in self.objects:
            raise StagedArtifactNotFoundError(reference.path)
        return self.objects[reference.path]

    def delete(self, reference: StagedReference) -> None:
        self.deleted.append(reference.path)
        self.objects.pop(reference.path, None)

    def list_stale(self, older_than: timedelta) -> list[StagedReference]:
        return []


class ScriptedInvoker:
    """Reconciles every row unless the chunk is scripted to fail."""

    def __init__(self, backend: InMemoryBackend, outcomes: dict[int, object] | None = None) -> None:
        self._backend = backend
        self._outcomes = outcomes or {}
        self.calls: list[int] = []
        self.staged_at_call: list[bool] = []

    def invoke(self, reference: StagedReference) -> ChunkResult:
        sequence = _sequence_of(reference.path)
        self.calls.append(sequence)
        self.staged_at_call.append(reference.path in self._backend.objects)
        outcome = self._outcomes.get(sequence)
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            outcome = outcome()
        if isinstance(outcome, ChunkResult):
            return outcome
        rows = self._backend.read(reference).decode("utf-8").count("\n") - 1
        return ChunkResult(succeeded=True, reconciled_count=rows, processing_duration_ms=5)


class RecordingChannel:
    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def publish(self, event: ProgressEvent) -> None:
        self.events.append(event)


def _sequence_of(name: str) -> int:
    return int(name.rsplit("chunk-", 1)[1].split(".", 1)[0])


def _export(rows: int) -> RawInput:
    lines = ["製造指示番号,代表得意先"] + [f"ORDER{i:08d},ACME" for i in range(rows)]
    return RawInput(content=("\r\n".join(lines) + "\r\n").encode("cp932"), file_name="export.csv")


def _orchestrator(
    backend: InMemoryBackend,
    invoker: ScriptedInvoker,
    sleeps: list[float],
    **config: object,
) -> BulkIngestionOrchestrator:
    return BulkIngestionOrchestrator(
        stager=ChunkStager(backend),
        invoker=invoker,
        config=PipelineConfig(**config),  # type: ignore[arg-type]
        sleep=sleeps.append,
    )


@pytest.fixture()
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture()
def sleeps() -> list[float]:
    return []


# ---------------------------------------------------------------------------
# Large export, one chunk failing
# ---------------------------------------------------------------------------


class TestPartialSuccess:
    def test_third_chunk_failure_is_isolated(self, backend: InMemoryBackend, sleeps: list[float]) -> None:
        invoker = ScriptedInvoker(
            backend,
            {3: ChunkResult(succeeded=False, errors=("connection reset",), processing_duration_ms=30_000)},
        )
        channel = RecordingChannel()

        report = _orchestrator(backend, invoker, sleeps).run(
            job_id="job-1",
            raw=_export(37125),
            channel=channel,
        )

        body = report.to_dict()
        assert body["status"] == JobStatus.PARTIAL
        assert body["totalRecords"] == 37125
        assert body["totalReconciled"] == 29125
        assert body["totalErrors"] == 1
        assert [chunk["sequence"] for chunk in body["perChunk"]] == [1, 2, 3, 4, 5]
        assert [chunk["rows"] for chunk in body["perChunk"]] == [8000, 8000, 8000, 8000, 5125]
        failed = body["perChunk"][2]
        assert failed["succeeded"] is False
        assert failed["reconciled"] == 0
        assert failed["errors"] == ["chunk 3: connection reset"]
        assert invoker.calls == [1, 2, 3, 4, 5]
        assert sleeps == [1.0, 1.0, 1.0, 1.0]
        assert backend.objects == {}

    def test_terminal_report_keys(self, backend: InMemoryBackend, sleeps: list[float]) -> None:
        report = _orchestrator(backend, ScriptedInvoker(backend), sleeps).run(job_id="j", raw=_export(3))

        assert set(report.to_dict()) == {
            "jobId",
            "status",
            "totalRecords",
            "totalReconciled",
            "totalErrors",
            "processingTimeMs",
            "perChunk",
        }
        assert set(report.to_dict()["perChunk"][0]) >= {"sequence", "rows", "reconciled", "errors", "durationMs"}

    def test_every_chunk_failing_is_failed(self, backend: InMemoryBackend, sleeps: list[float]) -> None:
        invoker = ScriptedInvoker(backend, {seq: ChunkResult.failure("down") for seq in (1, 2)})

        report = _orchestrator(backend, invoker, sleeps, chunk_size=2).run(job_id="j", raw=_export(4))

        assert report.status == JobStatus.FAILED
        assert report.aggregate.total_reconciled == 0
        assert report.aggregate.failed_sequences == [1, 2]


# ---------------------------------------------------------------------------
# Degenerate inputs
# ---------------------------------------------------------------------------


class TestDegenerateInputs:
    def test_zero_rows_complete_without_apply_calls(self, backend: InMemoryBackend, sleeps: list[float]) -> None:
        invoker = ScriptedInvoker(backend)
        channel = RecordingChannel()

        report = _orchestrator(backend, invoker, sleeps).run(job_id="j", raw=_export(0), channel=channel)

        assert report.status == JobStatus.COMPLETED
        assert report.to_dict()["perChunk"] == []
        assert report.total_records == 0
        assert invoker.calls == []
        assert channel.events[-1].kind == ProgressEventKind.COMPLETE

    def test_empty_export_raises_and_reports_failure(self, backend: InMemoryBackend, sleeps: list[float]) -> None:
        channel = RecordingChannel()

        with pytest.raises(EmptyExportError):
            _orchestrator(backend, ScriptedInvoker(backend), sleeps).run(
                job_id="j",
                raw=RawInput(content=b""),
                channel=channel,
            )

        assert channel.events[-1].kind == ProgressEventKind.FAILED
        assert channel.events[-1].payload["status"] == JobStatus.FAILED


# ---------------------------------------------------------------------------
# Failure isolation and cleanup
# ---------------------------------------------------------------------------


class TestFailureIsolation:
    def test_staging_failure_skips_apply_and_continues(self, sleeps: list[float]) -> None:
        backend = InMemoryBackend(put_failures={1: 99})
        invoker = ScriptedInvoker(backend)

        report = _orchestrator(backend, invoker, sleeps, chunk_size=2, stage_max_retries=1).run(
            job_id="j",
            raw=_export(4),
        )

        assert report.status == JobStatus.PARTIAL
        assert invoker.calls == [2]
        first = report.aggregate.per_chunk[0].result
        assert first.errors[0].startswith("chunk 1: staging failed:")

    def test_staging_retries_with_backoff(self, sleeps: list[float]) -> None:
        backend = InMemoryBackend(put_failures={1: 2})
        invoker = ScriptedInvoker(backend)

        report = _orchestrator(
            backend,
            invoker,
            sleeps,
            stage_max_retries=2,
            stage_retry_backoff_seconds=0.5,
        ).run(job_id="j", raw=_export(3))

        assert report.status == JobStatus.COMPLETED
        assert sleeps == [0.5, 1.0]
        assert invoker.calls == [1]

    def test_invoker_crash_is_contained(self, backend: InMemoryBackend, sleeps: list[float]) -> None:
        invoker = ScriptedInvoker(backend, {1: RuntimeError("boom")})

        report = _orchestrator(backend, invoker, sleeps, chunk_size=2).run(job_id="j", raw=_export(4))

        assert report.status == JobStatus.PARTIAL
        assert "unexpected error" in report.aggregate.per_chunk[0].result.errors[0]
        assert report.aggregate.total_reconciled == 2

    def test_artifacts_are_staged_during_apply_and_always_discarded(
        self, backend: InMemoryBackend, sleeps: list[float]
    ) -> None:
        invoker = ScriptedInvoker(
            backend,
            {1: ChunkResult.failure("bad"), 2: RuntimeError("boom")},
        )

        _orchestrator(backend, invoker, sleeps, chunk_size=1).run(job_id="j", raw=_export(3))

        assert invoker.staged_at_call == [True, True, True]
        assert sorted(backend.deleted) == [
            "j/chunk-00001.csv",
            "j/chunk-00002.csv",
            "j/chunk-00003.csv",
        ]
        assert backend.objects == {}

    def test_apply_retry_reinvokes_failed_chunk(self, backend: InMemoryBackend, sleeps: list[float]) -> None:
        attempts = iter([ChunkResult.failure("transient"), ChunkResult(succeeded=True, reconciled_count=3)])
        invoker = ScriptedInvoker(backend, {1: lambda: next(attempts)})

        report = _orchestrator(backend, invoker, sleeps, apply_max_retries=1).run(job_id="j", raw=_export(3))

        assert report.status == JobStatus.COMPLETED
        assert invoker.calls == [1, 1]
        assert report.aggregate.total_reconciled == 3

    def test_row_errors_on_successful_chunk_count_towards_total(
        self, backend: InMemoryBackend, sleeps: list[float]
    ) -> None:
        invoker = ScriptedInvoker(
            backend,
            {1: ChunkResult(succeeded=True, reconciled_count=2, errors=("row 3: missing production_order_number",))},
        )

        report = _orchestrator(backend, invoker, sleeps).run(job_id="j", raw=_export(3))

        assert report.status == JobStatus.COMPLETED
        assert report.to_dict()["totalErrors"] == 1
        assert report.to_dict()["totalReconciled"] == 2


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


def test_cancellation_stops_between_chunks(backend: InMemoryBackend, sleeps: list[float]) -> None:
    cancel = threading.Event()

    def second_chunk() -> ChunkResult:
        cancel.set()
        return ChunkResult(succeeded=True, reconciled_count=1)

    invoker = ScriptedInvoker(backend, {2: second_chunk})

    report = _orchestrator(backend, invoker, sleeps, chunk_size=1).run(
        job_id="j",
        raw=_export(4),
        cancel_event=cancel,
    )

    assert invoker.calls == [1, 2]
    assert report.cancelled is True
    assert report.status == JobStatus.PARTIAL
    assert report.aggregate.per_chunk[2].result.errors == ("chunk 3: cancelled before processing",)
    assert report.aggregate.per_chunk[3].result.errors == ("chunk 4: cancelled before processing",)
    assert sleeps == [1.0]


# ---------------------------------------------------------------------------
# Progress stream
# ---------------------------------------------------------------------------


def test_progress_events_are_ordered_and_end_with_terminal(backend: InMemoryBackend, sleeps: list[float]) -> None:
    channel = RecordingChannel()

    _orchestrator(backend, ScriptedInvoker(backend), sleeps, chunk_size=2).run(
        job_id="j",
        raw=_export(5),
        channel=channel,
    )

    kinds = [event.kind for event in channel.events]
    assert kinds[0] == ProgressEventKind.STATUS
    assert kinds[-1] == ProgressEventKind.COMPLETE
    assert kinds.count(ProgressEventKind.COMPLETE) + kinds.count(ProgressEventKind.FAILED) == 1
    chunk_events = [event for event in channel.events if event.kind == ProgressEventKind.CHUNK_COMPLETE]
    assert [event.payload["sequence"] for event in chunk_events] == [1, 2, 3]
    reconciled = [event.payload["aggregate"]["totalReconciled"] for event in chunk_events]
    assert reconciled == sorted(reconciled)
    assert reconciled[-1] == 5


def test_invalid_config_is_rejected() -> None:
    with pytest.raises(ValueError):
        PipelineConfig(chunk_size=0)
    with pytest.raises(ValueError):
        PipelineConfig(encodings=())


def test_state_moves_through_processing_to_terminal(backend: InMemoryBackend, sleeps: list[float]) -> None:
    seen: list[JobState] = []
    orchestrator = _orchestrator(backend, ScriptedInvoker(backend), sleeps, chunk_size=2)

    class StateChannel:
        def publish(self, event: ProgressEvent) -> None:
            seen.append(orchestrator.state)

    assert orchestrator.state is JobState.IDLE

    orchestrator.run(job_id="j", raw=_export(3), channel=StateChannel())

    assert seen[0] is JobState.CHUNKING
    assert JobState.PROCESSING in seen
    assert orchestrator.state is JobState.COMPLETED


def test_partial_job_ends_in_failed_state(backend: InMemoryBackend, sleeps: list[float]) -> None:
    invoker = ScriptedInvoker(backend, {1: ChunkResult.failure("down")})
    orchestrator = _orchestrator(backend, invoker, sleeps, chunk_size=2)

    orchestrator.run(job_id="j", raw=_export(3))

    assert orchestrator.state is JobState.FAILED
