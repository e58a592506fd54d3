"""
ingestion/progress.py

One-way, in-order progress stream from a running job to its caller.

The orchestrator owns the channel and publishes; a single passive subscriber
drains it. Publishing never blocks and never fails, and a subscriber going
away (``detach``) is invisible to the publisher: later events are dropped.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Iterator

logger = logging.getLogger(__name__)


class ProgressEventKind:
    STATUS = "status"
    CHUNK_COMPLETE = "chunk-complete"
    COMPLETE = "complete"
    FAILED = "failed"


_TERMINAL_KINDS = frozenset({ProgressEventKind.COMPLETE, ProgressEventKind.FAILED})


@dataclass(frozen=True)
class ProgressEvent:
    kind: str
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.kind in _TERMINAL_KINDS

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "payload": self.payload}

    @classmethod
    def status(cls, message: str, **extra: Any) -> "ProgressEvent":
        return cls(kind=ProgressEventKind.STATUS, payload={"message": message, **extra})


def format_sse(event: ProgressEvent) -> str:
    """
    Render one event as a server-sent-events ``data:`` frame.
    """

    return f"data: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"


class ProgressChannel:
    """
    Unbounded FIFO of progress events bound to one job invocation.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue[ProgressEvent | None] = queue.Queue()
        self._lock = threading.Lock()
        self._detached = False
        self._closed = False

    @property
    def detached(self) -> bool:
        return self._detached

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            if self._detached or self._closed:
                return
            self._queue.put_nowait(event)
            if event.is_terminal:
                self._closed = True
                self._queue.put_nowait(None)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put_nowait(None)

    def detach(self) -> None:
        """
        Called by the subscriber when it stops listening.
        """

        with self._lock:
            self._detached = True
        logger.info("Progress subscriber detached; job continues without listener")

    def subscribe(self, poll_interval: float = 1.0) -> Iterator[ProgressEvent]:
        """
        Yield events in publish order until the stream is closed.

        ``poll_interval`` bounds how long one wait blocks, so a detached or
        abandoned subscriber never hangs indefinitely.
        """

        while not self._detached:
            try:
                event = self._queue.get(timeout=poll_interval)
            except queue.Empty:
                continue
            if event is None:
                return
            yield event
            if event.is_terminal:
                return


class NullProgressChannel:
    """
    Channel for callers that only want the final result.
    """

    detached = False

    def publish(self, event: ProgressEvent) -> None:
        logger.debug("Progress event kind=%s", event.kind)

    def close(self) -> None:
        return

    def detach(self) -> None:
        return
