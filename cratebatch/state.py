"""Typed application state.

One loaded collection per server process. FastAPI routes receive the
singleton through ``Depends(get_state)``.
"""

from __future__ import annotations

import queue
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from cratebatch.document import CollectionDocument
from cratebatch.duplicates import DuplicateReport, find_duplicates

JOB_LOG_LINES = 200


# ---------------------------------------------------------------------------
# SSE fan-out
# ---------------------------------------------------------------------------

class ListenerList:
    """Progress subscribers, one bounded queue each.

    SSE handlers read their queue from a worker thread, hence the lock. A
    subscriber whose queue is full has stopped reading and is dropped.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queues: list[queue.Queue] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._queues)

    def add(self, maxsize: int = 50) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=maxsize)
        with self._lock:
            self._queues.append(q)
        return q

    def remove(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._queues:
                self._queues.remove(q)

    def broadcast(self, event: dict) -> None:
        with self._lock:
            alive = []
            for q in self._queues:
                try:
                    q.put_nowait(event)
                except queue.Full:
                    continue
                alive.append(q)
            self._queues = alive


# ---------------------------------------------------------------------------
# Enrichment job status
# ---------------------------------------------------------------------------

@dataclass
class JobStatus:
    """What the status endpoint reports about the current or last job."""

    mode: str | None = None
    telemetry: dict | None = None
    log: deque = field(default_factory=lambda: deque(maxlen=JOB_LOG_LINES))

    def begin(self, mode: str) -> None:
        self.mode = mode
        self.telemetry = None
        self.log.clear()

    def finish(self, telemetry: dict | None = None) -> None:
        self.mode = None
        if telemetry is not None:
            self.telemetry = telemetry

    def snapshot(self, tail: int = 50) -> dict:
        return {
            "mode": self.mode,
            "telemetry": self.telemetry,
            "log": list(self.log)[-tail:],
        }


# ---------------------------------------------------------------------------
# AppState
# ---------------------------------------------------------------------------

@dataclass
class AppState:
    """All mutable session state for the application.

    The document is only mutated on the event loop thread (routes and the
    enrichment job), so it carries no lock of its own.
    """

    document: CollectionDocument | None = None
    original_filename: str = ""

    # -- Enrichment --
    collaborator: Any = None  # overrides the configured LLMTagger when set
    job: JobStatus = field(default_factory=JobStatus)
    enrich_listeners: ListenerList = field(default_factory=ListenerList)

    # -- Caches --
    cache_lock: threading.Lock = field(default_factory=threading.Lock)
    duplicates: DuplicateReport | None = None

    @property
    def tracks(self) -> list:
        return self.document.tracks if self.document is not None else []

    def set_document(self, document: CollectionDocument, filename: str) -> None:
        self.document = document
        self.original_filename = filename
        self.job = JobStatus()
        self.invalidate_caches()

    def duplicate_report(self) -> DuplicateReport:
        with self.cache_lock:
            if self.duplicates is None:
                self.duplicates = find_duplicates(self.tracks)
            return self.duplicates

    def invalidate_caches(self) -> None:
        """Drop derived data after the tracks change."""
        with self.cache_lock:
            self.duplicates = None


_app_state: AppState | None = None


def get_state() -> AppState:
    """FastAPI dependency: the process-wide AppState."""
    global _app_state
    if _app_state is None:
        _app_state = AppState()
    return _app_state


def reset_state() -> AppState:
    """Start over with an empty AppState (tests, shutdown)."""
    global _app_state
    _app_state = AppState()
    return _app_state
