"""
Apply step: reconciles one staged chunk into the production order store.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from functools import lru_cache

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_apply_service_settings, get_staging_settings
from app.repositories.production_order_repository import ProductionOrderRepository
from ingestion.apply_invoker import ChunkResult
from ingestion.schema import BUSINESS_KEY, CanonicalRow, parse_canonical_csv
from ingestion.staging import LocalStagingBackend, StagedReference, StagingBackend

logger = logging.getLogger(__name__)

_MAX_REASON_LENGTH = 300


class ApplyServiceError(RuntimeError):
    """
    Raised when the canonical store is unreachable; the chunk was not applied.
    """


def _is_outage(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def _reason(exc: Exception) -> str:
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        message = str(exc.orig)
    else:
        message = str(exc)
    message = " ".join(message.split())
    return message[:_MAX_REASON_LENGTH] or type(exc).__name__


class ApplyService:
    """
    Reads a staged chunk, upserts its rows, and reports a ChunkResult.

    Row-level problems are reported in ``errors`` without failing the chunk.
    """

    def __init__(
        self,
        *,
        backend: StagingBackend,
        session_factory: Callable[[], Session] | None = None,
        batch_size: int = 1000,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            self._session_factory: Callable[[], Session] = SessionLocal
        else:
            self._session_factory = session_factory
        self._backend = backend
        self._batch_size = max(1, batch_size)

    def apply(self, reference: StagedReference) -> ChunkResult:
        """
        Raises StagedArtifactNotFoundError for an unknown reference and
        ApplyServiceError when the store is unavailable.
        """

        started = time.monotonic()
        content = self._backend.read(reference)
        rows = parse_canonical_csv(content.decode("utf-8", errors="replace"))

        errors: list[str] = []
        keyed: list[tuple[int, CanonicalRow]] = []
        for row_number, row in enumerate(rows, start=1):
            if row.business_key is None:
                errors.append(f"row {row_number}: missing {BUSINESS_KEY}")
                continue
            keyed.append((row_number, row))

        reconciled = 0
        with self._session_factory() as db:
            repository = ProductionOrderRepository(db)
            for start in range(0, len(keyed), self._batch_size):
                batch = keyed[start : start + self._batch_size]
                reconciled += self._persist_batch(
                    db=db,
                    repository=repository,
                    batch=batch,
                    errors=errors,
                )

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Chunk reconciled reference=%s rows=%s reconciled=%s row_errors=%s duration_ms=%s",
            reference,
            len(rows),
            reconciled,
            len(errors),
            duration_ms,
        )
        return ChunkResult(
            succeeded=True,
            reconciled_count=reconciled,
            errors=tuple(errors),
            processing_duration_ms=duration_ms,
        )

    def _persist_batch(
        self,
        *,
        db: Session,
        repository: ProductionOrderRepository,
        batch: Sequence[tuple[int, CanonicalRow]],
        errors: list[str],
    ) -> int:
        try:
            affected = repository.upsert([row for _, row in batch], batch_size=self._batch_size)
            db.commit()
            return affected
        except SQLAlchemyError as exc:
            db.rollback()
            if _is_outage(exc):
                raise ApplyServiceError("Canonical store is unavailable.") from exc
            logger.warning(
                "Batch upsert rejected; retrying row by row rows=%s error=%s",
                len(batch),
                _reason(exc),
            )

        return self._persist_rows(db=db, repository=repository, batch=batch, errors=errors)

    def _persist_rows(
        self,
        *,
        db: Session,
        repository: ProductionOrderRepository,
        batch: Sequence[tuple[int, CanonicalRow]],
        errors: list[str],
    ) -> int:
        affected = 0
        for row_number, row in batch:
            try:
                with db.begin_nested():
                    affected += repository.upsert([row])
            except SQLAlchemyError as exc:
                if _is_outage(exc):
                    db.rollback()
                    raise ApplyServiceError("Canonical store is unavailable.") from exc
                errors.append(f"row {row_number}: {_reason(exc)}")
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise ApplyServiceError("Failed to commit reconciled rows.") from exc
        return affected


@lru_cache(maxsize=1)
def get_apply_service() -> ApplyService:
    staging = get_staging_settings()
    settings = get_apply_service_settings()
    return ApplyService(
        backend=LocalStagingBackend(staging.root_dir),
        batch_size=settings.batch_size,
    )
