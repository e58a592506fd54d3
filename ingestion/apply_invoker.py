"""
ingestion/apply_invoker.py

Boundary to the apply service that reconciles staged chunks into the store.

Invokers never raise: transport, timeout, and protocol failures are folded
into a failed ChunkResult so the orchestrator always receives a result.
"""

from __future__ import annotations

import concurrent.futures
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from ingestion.staging import StagedReference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkResult:
    """
    Outcome of applying one staged chunk.
    """

    succeeded: bool
    reconciled_count: int = 0
    errors: tuple[str, ...] = field(default_factory=tuple)
    processing_duration_ms: int = 0

    @classmethod
    def failure(cls, message: str, *, processing_duration_ms: int = 0) -> "ChunkResult":
        return cls(
            succeeded=False,
            reconciled_count=0,
            errors=(message,),
            processing_duration_ms=processing_duration_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "reconciledCount": self.reconciled_count,
            "errors": list(self.errors),
            "processingDurationMs": self.processing_duration_ms,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ChunkResult":
        """
        Build a result from the apply service's JSON body.

        Raises ValueError when the body does not follow the contract.
        """

        if not isinstance(payload, dict) or "succeeded" not in payload:
            raise ValueError("apply response is missing 'succeeded'.")
        errors = payload.get("errors") or []
        if not isinstance(errors, list):
            raise ValueError("apply response 'errors' must be a list.")
        try:
            reconciled = int(payload.get("reconciledCount") or 0)
            duration = int(payload.get("processingDurationMs") or 0)
        except (TypeError, ValueError) as exc:
            raise ValueError("apply response counts must be integers.") from exc
        if reconciled < 0 or duration < 0:
            raise ValueError("apply response counts must be non-negative.")
        return cls(
            succeeded=bool(payload["succeeded"]),
            reconciled_count=reconciled,
            errors=tuple(str(error) for error in errors),
            processing_duration_ms=duration,
        )


class ApplyInvoker(Protocol):
    def invoke(self, reference: StagedReference) -> ChunkResult:
        ...


class ChunkApplier(Protocol):
    def apply(self, reference: StagedReference) -> ChunkResult:
        ...


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class HTTPApplyInvoker:
    """
    Calls the remote apply service with a bounded timeout.
    """

    def __init__(
        self,
        *,
        url: str,
        timeout_seconds: float,
        session: requests.Session | None = None,
    ) -> None:
        self._url = url
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    def invoke(self, reference: StagedReference) -> ChunkResult:
        started = time.monotonic()
        try:
            response = self._session.post(
                self._url,
                json={"stagedReference": reference.path},
                timeout=self._timeout_seconds,
            )
        except requests.Timeout:
            logger.warning(
                "Apply invocation timed out reference=%s timeout_seconds=%s",
                reference,
                self._timeout_seconds,
            )
            return ChunkResult.failure(
                f"apply service timed out after {self._timeout_seconds:g}s",
                processing_duration_ms=_elapsed_ms(started),
            )
        except requests.RequestException as exc:
            logger.warning("Apply invocation transport error reference=%s error=%s", reference, exc)
            return ChunkResult.failure(
                f"apply service transport error: {exc}",
                processing_duration_ms=_elapsed_ms(started),
            )

        if response.status_code >= 400:
            detail = response.text[:500]
            logger.warning(
                "Apply invocation rejected reference=%s status=%s body=%r",
                reference,
                response.status_code,
                detail,
            )
            return ChunkResult.failure(
                f"apply service returned HTTP {response.status_code}: {detail}",
                processing_duration_ms=_elapsed_ms(started),
            )

        try:
            return ChunkResult.from_dict(response.json())
        except ValueError as exc:
            logger.warning("Apply invocation returned malformed body reference=%s error=%s", reference, exc)
            return ChunkResult.failure(
                f"apply service returned a malformed response: {exc}",
                processing_duration_ms=_elapsed_ms(started),
            )


class InProcessApplyInvoker:
    """
    Runs the apply step inside the current process.

    With ``timeout_seconds`` set, the call runs on a worker thread and a
    result that does not arrive in time becomes a failed ChunkResult. The
    abandoned call is left to finish on its own.
    """

    def __init__(self, applier: ChunkApplier, *, timeout_seconds: float | None = None) -> None:
        self._applier = applier
        self._timeout_seconds = timeout_seconds

    def invoke(self, reference: StagedReference) -> ChunkResult:
        started = time.monotonic()
        try:
            if self._timeout_seconds is None:
                return self._applier.apply(reference)
            return self._apply_with_timeout(reference)
        except concurrent.futures.TimeoutError:
            logger.warning(
                "In-process apply timed out reference=%s timeout_seconds=%s",
                reference,
                self._timeout_seconds,
            )
            return ChunkResult.failure(
                f"apply step timed out after {self._timeout_seconds:g}s",
                processing_duration_ms=_elapsed_ms(started),
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("In-process apply failed reference=%s", reference)
            return ChunkResult.failure(
                f"apply step failed: {type(exc).__name__}: {exc}",
                processing_duration_ms=_elapsed_ms(started),
            )

    def _apply_with_timeout(self, reference: StagedReference) -> ChunkResult:
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="apply")
        try:
            future = executor.submit(self._applier.apply, reference)
            return future.result(timeout=self._timeout_seconds)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
