"""
tests/test_staging.py

Filesystem staging backend and chunk stager lifecycle.
"""

from __future__ import annotations

import os
import time
import uuid
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ingestion.chunker import Chunk
from ingestion.schema import canonical_header_line
from ingestion.staging import (
    ChunkStager,
    LocalStagingBackend,
    StagedArtifactNotFoundError,
    StagedReference,
    StagingError,
)


def _chunk(sequence: int = 1) -> Chunk:
    return Chunk(sequence=sequence, header=canonical_header_line(), records=("a", "b"))


@pytest.fixture()
def backend(tmp_path: Path) -> LocalStagingBackend:
    return LocalStagingBackend(tmp_path / "staging")


# ---------------------------------------------------------------------------
# LocalStagingBackend
# ---------------------------------------------------------------------------


class TestLocalStagingBackend:
    def test_put_then_read(self, backend: LocalStagingBackend) -> None:
        reference = backend.put("job/chunk-00001.csv", b"payload")

        assert reference == StagedReference(path="job/chunk-00001.csv")
        assert backend.read(reference) == b"payload"
        assert not list(backend.root_dir.rglob("*.tmp"))

    def test_put_refuses_to_overwrite(self, backend: LocalStagingBackend) -> None:
        backend.put("job/chunk-00001.csv", b"first")

        with pytest.raises(StagingError):
            backend.put("job/chunk-00001.csv", b"second")

    def test_read_missing_artifact(self, backend: LocalStagingBackend) -> None:
        with pytest.raises(StagedArtifactNotFoundError):
            backend.read(StagedReference(path="job/missing.csv"))

    @pytest.mark.parametrize("name", ["../outside.csv", "job/../../outside.csv", ""])
    def test_names_cannot_escape_root(self, backend: LocalStagingBackend, name: str) -> None:
        with pytest.raises(StagingError):
            backend.put(name, b"x")

    def test_delete_is_idempotent_and_prunes_job_directory(self, backend: LocalStagingBackend) -> None:
        reference = backend.put("job/chunk-00001.csv", b"x")

        backend.delete(reference)
        backend.delete(reference)

        assert not (backend.root_dir / "job").exists()
        assert backend.root_dir.exists()

    def test_list_stale_uses_modification_time(self, backend: LocalStagingBackend) -> None:
        old = backend.put("old/chunk-00001.csv", b"x")
        backend.put("new/chunk-00001.csv", b"x")
        two_hours_ago = time.time() - 7200
        os.utime(backend.root_dir / old.path, (two_hours_ago, two_hours_ago))

        stale = backend.list_stale(timedelta(minutes=60))

        assert stale == [old]

    def test_list_stale_without_root(self, tmp_path: Path) -> None:
        assert LocalStagingBackend(tmp_path / "absent").list_stale(timedelta(0)) == []


# ---------------------------------------------------------------------------
# ChunkStager
# ---------------------------------------------------------------------------


class TestChunkStager:
    def test_names_are_unique_per_job_and_sequence(self) -> None:
        job_a, job_b = uuid.uuid4(), uuid.uuid4()

        names = {
            ChunkStager.artifact_name(job_a, 1),
            ChunkStager.artifact_name(job_a, 2),
            ChunkStager.artifact_name(job_b, 1),
        }

        assert len(names) == 3
        assert ChunkStager.artifact_name(job_a, 7) == f"{job_a}/chunk-00007.csv"

    def test_stage_writes_chunk_csv(self, backend: LocalStagingBackend) -> None:
        stager = ChunkStager(backend)
        job_id = uuid.uuid4()

        reference = stager.stage(job_id, _chunk(3))

        content = backend.read(reference).decode("utf-8")
        assert content == f"{canonical_header_line()}\na\nb\n"
        assert reference.path.endswith("chunk-00003.csv")

    def test_stage_wraps_unexpected_backend_errors(self) -> None:
        backend = MagicMock()
        backend.put.side_effect = OSError("disk full")

        with pytest.raises(StagingError, match="chunk 1"):
            ChunkStager(backend).stage(uuid.uuid4(), _chunk(1))

    def test_discard_never_raises(self) -> None:
        backend = MagicMock()
        backend.delete.side_effect = StagingError("permission denied")

        assert ChunkStager(backend).discard(StagedReference(path="x")) is False

    def test_discard_removes_artifact(self, backend: LocalStagingBackend) -> None:
        stager = ChunkStager(backend)
        reference = stager.stage(uuid.uuid4(), _chunk())

        assert stager.discard(reference) is True
        with pytest.raises(StagedArtifactNotFoundError):
            backend.read(reference)

    def test_sweep_removes_only_old_artifacts(self, backend: LocalStagingBackend) -> None:
        stager = ChunkStager(backend)
        old = stager.stage("crashed-job", _chunk(1))
        fresh = stager.stage("live-job", _chunk(1))
        past = time.time() - 3 * 3600
        os.utime(backend.root_dir / old.path, (past, past))

        removed = stager.sweep(timedelta(hours=1))

        assert removed == 1
        assert backend.read(fresh)
        with pytest.raises(StagedArtifactNotFoundError):
            backend.read(old)
