"""
ingestion/staging.py

Durable staging of chunk artifacts handed to the apply step.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Protocol

from ingestion.chunker import Chunk

logger = logging.getLogger(__name__)


class StagingError(RuntimeError):
    """
    Raised when a chunk artifact cannot be written, read, or removed.
    """


class StagedArtifactNotFoundError(StagingError):
    """
    Raised when a staged reference points at nothing.
    """


@dataclass(frozen=True)
class StagedReference:
    """
    Opaque handle to one staged chunk artifact.
    """

    path: str

    def __str__(self) -> str:
        return self.path


class StagingBackend(Protocol):
    """
    Object storage used to hand chunks to the apply step.
    """

    def put(self, name: str, content: bytes) -> StagedReference:
        ...

    def read(self, reference: StagedReference) -> bytes:
        ...

    def delete(self, reference: StagedReference) -> None:
        ...

    def list_stale(self, older_than: timedelta) -> list[StagedReference]:
        ...


class LocalStagingBackend:
    """
    Filesystem staging backend rooted at a directory shared with the apply step.
    """

    def __init__(self, root_dir: str | Path = "data/staging") -> None:
        self._root_dir = Path(root_dir)

    @property
    def root_dir(self) -> Path:
        return self._root_dir

    def put(self, name: str, content: bytes) -> StagedReference:
        target = self._resolve(name)
        if target.exists():
            raise StagingError(f"Staged artifact already exists: {name}")
        target.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = target.with_suffix(f"{target.suffix}.tmp")
        try:
            with tmp_path.open("wb") as handle:
                handle.write(content)
            tmp_path.replace(target)
        except OSError as exc:
            raise StagingError(f"Failed to write staged artifact: {name}") from exc
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass

        return StagedReference(path=Path(name).as_posix())

    def read(self, reference: StagedReference) -> bytes:
        target = self._resolve(reference.path)
        if not target.is_file():
            raise StagedArtifactNotFoundError(f"Staged artifact not found: {reference.path}")
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StagingError(f"Failed to read staged artifact: {reference.path}") from exc

    def delete(self, reference: StagedReference) -> None:
        target = self._resolve(reference.path)
        if not target.exists():
            return
        try:
            target.unlink()
        except OSError as exc:
            raise StagingError(f"Failed to delete staged artifact: {reference.path}") from exc
        self._prune_empty_parent(target.parent)

    def list_stale(self, older_than: timedelta) -> list[StagedReference]:
        if not self._root_dir.exists():
            return []
        cutoff = time.time() - older_than.total_seconds()
        stale: list[StagedReference] = []
        for path in sorted(self._root_dir.rglob("*")):
            if not path.is_file():
                continue
            try:
                modified_at = path.stat().st_mtime
            except OSError:
                continue
            if modified_at < cutoff:
                stale.append(StagedReference(path=path.relative_to(self._root_dir).as_posix()))
        return stale

    def _resolve(self, name: str) -> Path:
        root = self._root_dir.resolve()
        target = (root / name).resolve()
        if target == root or root not in target.parents:
            raise StagingError(f"Staged artifact name escapes staging root: {name}")
        return target

    def _prune_empty_parent(self, directory: Path) -> None:
        if directory.resolve() == self._root_dir.resolve():
            return
        try:
            directory.rmdir()
        except OSError:
            return


class ChunkStager:
    """
    Persists chunks under job-unique names and owns their cleanup.

    Staging is attempted once per call; retry policy belongs to the caller.
    """

    def __init__(self, backend: StagingBackend) -> None:
        self._backend = backend

    @staticmethod
    def artifact_name(job_id: uuid.UUID | str, sequence: int) -> str:
        return f"{job_id}/chunk-{sequence:05d}.csv"

    def stage(self, job_id: uuid.UUID | str, chunk: Chunk) -> StagedReference:
        name = self.artifact_name(job_id, chunk.sequence)
        try:
            reference = self._backend.put(name, chunk.to_csv_bytes())
        except StagingError:
            raise
        except Exception as exc:
            raise StagingError(f"Failed to stage chunk {chunk.sequence}: {exc}") from exc

        logger.info(
            "Chunk staged job_id=%s sequence=%s rows=%s reference=%s",
            job_id,
            chunk.sequence,
            chunk.row_count,
            reference,
        )
        return reference

    def discard(self, reference: StagedReference) -> bool:
        """
        Delete a staged artifact; returns False instead of raising on failure.
        """

        try:
            self._backend.delete(reference)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Staged artifact cleanup failed reference=%s error=%s", reference, exc)
            return False
        return True

    def sweep(self, max_age: timedelta) -> int:
        """
        Remove artifacts older than ``max_age`` left behind by crashed jobs.
        """

        removed = 0
        for reference in self._backend.list_stale(max_age):
            if self.discard(reference):
                removed += 1
        if removed:
            logger.info("Staging sweep removed artifacts=%s max_age=%s", removed, max_age)
        return removed
