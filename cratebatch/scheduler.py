"""Reconciliation scheduler: chunked, bounded-concurrency enrichment jobs.

A job partitions its tracks into chunks, hands them to a pool of asyncio
workers that call the tagging collaborator, and merges each reply into the
document as soon as it completes (completion order, not submission order).
Chunks that fail, and ids a reply leaves out, go to a retry queue. When the
primary pass drains, the retry queue is re-chunked smaller and run at a
narrower width; year jobs also switch to the authoritative strategy. This
repeats over an explicit, capped list of escalation levels.

All merging happens on the event loop thread, so the document and the
telemetry have a single writer. Concurrency only exists in the number of
outstanding collaborator calls.

Usage::

    scheduler = ReconciliationScheduler(LLMTagger(), SchedulerProfile.preset("desktop"))
    telemetry = await scheduler.run_job(doc.work_list("missing_year"), "missing_year",
                                        on_progress=listeners.broadcast)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Protocol

from cratebatch.errors import CollaboratorUnavailable
from cratebatch.models.track import Analysis, EnrichMode

logger = logging.getLogger(__name__)

STANDARD = "standard"
AUTHORITATIVE = "authoritative"

# Upper bound on retry levels regardless of configuration
MAX_ESCALATION_CAP = 5


# ---------------------------------------------------------------------------
# Collaborator boundary
# ---------------------------------------------------------------------------

@dataclass
class BatchUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0


@dataclass
class TagRequest:
    items: list[dict]
    mode: EnrichMode
    strategy_hint: str = STANDARD


@dataclass
class TagBatchResult:
    """Raw per-item replies (``{"id": ..., "mood": ...}``) plus usage.

    Items are validated by the scheduler, not the collaborator. Ids missing
    from ``items`` count as failures for retry purposes.
    """

    items: list[dict] = field(default_factory=list)
    usage: BatchUsage = field(default_factory=BatchUsage)


class TaggingCollaborator(Protocol):
    async def tag_batch(self, request: TagRequest) -> TagBatchResult:
        ...


def track_payload(track) -> dict:
    return {
        "id": track.track_id,
        "name": track.name,
        "artist": track.artist,
        "bpm": track.bpm,
        "key": track.key,
        "comments": track.comments,
    }


# ---------------------------------------------------------------------------
# Profile / telemetry
# ---------------------------------------------------------------------------

@dataclass
class SchedulerProfile:
    chunk_size: int = 200
    concurrency: int = 2
    delay_between_requests: float = 0.0
    retry_chunk_size: int = 50
    retry_concurrency: int = 1
    max_escalation_levels: int = 2
    job_timeout: float = 0.0  # seconds, 0 = no limit

    PRESETS = {
        # One local client process batching large chunks itself
        "desktop": {"chunk_size": 200, "concurrency": 2},
        # Hosted endpoint, more requests in flight
        "hosted": {"chunk_size": 200, "concurrency": 8},
    }

    @classmethod
    def preset(cls, name: str, **overrides: Any) -> SchedulerProfile:
        values = {**cls.PRESETS.get(name, {}), **overrides}
        return cls(**values)

    @classmethod
    def from_config(cls, config: dict) -> SchedulerProfile:
        keys = (
            "chunk_size", "concurrency", "delay_between_requests", "retry_chunk_size",
            "retry_concurrency", "max_escalation_levels", "job_timeout",
        )
        overrides = {k: config[k] for k in keys if config.get(k) is not None}
        return cls.preset(config.get("scheduler_profile", "desktop"), **overrides)


@dataclass
class BatchTelemetry:
    """Cumulative job counters. Written only by the scheduler's merge step."""

    cost: float = 0.0
    input_units: int = 0
    output_units: int = 0
    items_processed: int = 0
    items_total: int = 0
    started_at: float = field(default_factory=time.time)
    items_per_minute: float = 0.0
    eta_seconds: float = 0.0
    last_chunk_latency: float = 0.0
    chunks_completed: int = 0
    chunks_failed: int = 0
    unresolved: int = 0
    levels_run: int = 0
    cancelled: bool = False
    duration: float | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class EscalationLevel:
    index: int
    chunk_size: int
    concurrency: int
    strategy_hint: str


def chunk_list(items: list, size: int) -> list[list]:
    size = max(1, size)
    return [items[i:i + size] for i in range(0, len(items), size)]


def format_log_line(label: str, size: int, latency: float, usage: BatchUsage,
                    telemetry: BatchTelemetry) -> str:
    """``[12:00:01] Batch 2/5     | 200 items | 3.20s | 410 spm  | +$0.0021 (Tot: $0.0040) | ...``"""
    now = datetime.now().strftime("%H:%M:%S")
    speed = f"{round(telemetry.items_per_minute)} spm"
    cost = f"+${usage.cost:.4f} (Tot: ${telemetry.cost:.4f})"
    cum_tokens = (telemetry.input_units + telemetry.output_units) / 1000
    tokens = (
        f"In: {usage.input_tokens / 1000:.1f}k / Out: {usage.output_tokens / 1000:.1f}k "
        f"(Cum: {cum_tokens:.1f}k)"
    )
    return (
        f"[{now}] {label:<12} | {size:<3} items | {latency:.2f}s | {speed:<8} | "
        f"{cost:<26} | {tokens}"
    )


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

@dataclass
class _Job:
    mode: EnrichMode
    telemetry: BatchTelemetry
    emit: Callable[[dict], None]
    started: float
    cancel: asyncio.Event | None
    deadline: float | None


class ReconciliationScheduler:
    """Runs enrichment jobs against one injected tagging collaborator.

    The scheduler does not know which transport backs the collaborator;
    anything with an async ``tag_batch(request)`` works.
    """

    def __init__(
        self,
        collaborator: TaggingCollaborator | None,
        profile: SchedulerProfile | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.collaborator = collaborator
        self.profile = profile or SchedulerProfile()
        self._clock = clock

    def levels(self, mode: EnrichMode | str) -> list[EscalationLevel]:
        """Primary pass plus the capped retry levels for a mode."""
        mode = EnrichMode(mode)
        p = self.profile
        levels = [EscalationLevel(0, max(1, p.chunk_size), max(1, p.concurrency), STANDARD)]
        width = max(1, min(p.retry_concurrency, p.concurrency))
        hint = AUTHORITATIVE if mode is EnrichMode.MISSING_YEAR else STANDARD
        cap = max(0, min(p.max_escalation_levels, MAX_ESCALATION_CAP))
        for k in range(1, cap + 1):
            size = max(1, p.retry_chunk_size // (2 ** (k - 1)))
            levels.append(EscalationLevel(k, size, width, hint))
        return levels

    async def run_job(
        self,
        tracks: list,
        mode: EnrichMode | str,
        *,
        on_progress: Callable[[dict], None] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> BatchTelemetry:
        """Enrich ``tracks`` and return the job's telemetry once it is terminal.

        Individual chunk failures never abort the job; items still unresolved
        after the last level are reported in ``telemetry.unresolved``. Only
        ``CollaboratorUnavailable`` is raised to the caller.
        """
        mode = EnrichMode(mode)
        if self.collaborator is None:
            raise CollaboratorUnavailable("No tagging collaborator configured")

        pending = list({t.track_id: t for t in tracks}.values())
        started = self._clock()
        job = _Job(
            mode=mode,
            telemetry=BatchTelemetry(items_total=len(pending)),
            emit=on_progress or (lambda event: None),
            started=started,
            cancel=cancel,
            deadline=started + self.profile.job_timeout if self.profile.job_timeout > 0 else None,
        )

        logger.info("Starting %s job (%d items)", mode.value, len(pending))
        job.emit({"event": "started", "mode": mode.value, "total": len(pending)})

        for level in self.levels(mode):
            if not pending or job.telemetry.cancelled:
                break
            if level.index > 0:
                logger.info(
                    "Retry level %d for %d items (chunk %d, width %d, %s)",
                    level.index, len(pending), level.chunk_size, level.concurrency,
                    level.strategy_hint,
                )
                job.emit({"event": "retry", "level": level.index, "items": len(pending)})
            job.telemetry.levels_run += 1
            pending = await self._run_level(job, pending, level)

        t = job.telemetry
        t.unresolved = len(pending)
        t.eta_seconds = 0.0
        t.duration = self._clock() - started
        logger.info(
            "Job complete: %d/%d resolved, %d unresolved, cost $%.4f%s",
            t.items_processed, t.items_total, t.unresolved, t.cost,
            " (stopped early)" if t.cancelled else "",
        )
        job.emit({"event": "done", "telemetry": t.to_dict()})
        return t

    def _should_stop(self, job: _Job) -> bool:
        if job.cancel is not None and job.cancel.is_set():
            return True
        return job.deadline is not None and self._clock() >= job.deadline

    async def _run_level(self, job: _Job, items: list, level: EscalationLevel) -> list:
        chunks = chunk_list(items, level.chunk_size)
        queue: asyncio.Queue = asyncio.Queue()
        for c in chunks:
            queue.put_nowait(c)

        retry_queue: list = []
        fatal: list[CollaboratorUnavailable] = []
        label = "Batch" if level.index == 0 else f"Retry{level.index}"
        counter = {"done": 0}
        delay = self.profile.delay_between_requests

        async def worker() -> None:
            while not queue.empty():
                if fatal:
                    return
                if self._should_stop(job):
                    job.telemetry.cancelled = True
                    return
                chunk = queue.get_nowait()
                try:
                    failed = await self._process_chunk(job, chunk, level, label, len(chunks), counter)
                except CollaboratorUnavailable as e:
                    fatal.append(e)
                    return
                retry_queue.extend(failed)
                if delay > 0 and not queue.empty():
                    await asyncio.sleep(delay)

        width = min(level.concurrency, len(chunks))
        await asyncio.gather(*(worker() for _ in range(width)))

        if fatal:
            logger.error("Tagging collaborator unavailable: %s", fatal[0])
            raise fatal[0]

        # Chunks never started because the job was stopped stay unresolved
        while not queue.empty():
            retry_queue.extend(queue.get_nowait())
        return retry_queue

    async def _process_chunk(self, job: _Job, chunk: list, level: EscalationLevel,
                             label: str, total_chunks: int, counter: dict) -> list:
        """Call the collaborator for one chunk, merge the reply, return failed tracks."""
        chunk_started = self._clock()
        request = TagRequest(
            items=[track_payload(t) for t in chunk],
            mode=job.mode,
            strategy_hint=level.strategy_hint,
        )
        try:
            result = await self.collaborator.tag_batch(request)
        except CollaboratorUnavailable:
            raise
        except Exception:
            logger.exception("%s chunk of %d items failed", label, len(chunk))
            job.telemetry.chunks_failed += 1
            return list(chunk)

        replies: dict[str, dict] = {}
        for item in result.items or []:
            if isinstance(item, dict) and item.get("id") not in (None, ""):
                replies[str(item["id"])] = item

        failed = []
        resolved_ids = []
        for track in chunk:
            raw = replies.get(track.track_id)
            if raw is None:
                failed.append(track)
                continue
            try:
                track.apply_analysis(Analysis.from_raw(raw), job.mode)
            except Exception:
                logger.exception("Could not apply reply for track %s", track.track_id)
                failed.append(track)
                continue
            resolved_ids.append(track.track_id)

        if not replies:
            logger.warning("%s chunk of %d items returned no usable items", label, len(chunk))
            job.telemetry.chunks_failed += 1

        counter["done"] += 1
        latency = self._clock() - chunk_started
        self._merge(job, result.usage, len(resolved_ids), latency)

        line = format_log_line(
            f"{label} {counter['done']}/{total_chunks}", len(chunk), latency, result.usage,
            job.telemetry,
        )
        logger.info(line)
        job.emit({
            "event": "progress",
            "level": level.index,
            "resolved_ids": resolved_ids,
            "failed": len(failed),
            "log": line,
            "telemetry": job.telemetry.to_dict(),
        })
        return failed

    def _merge(self, job: _Job, usage: BatchUsage, resolved: int, latency: float) -> None:
        t = job.telemetry
        t.cost += usage.cost
        t.input_units += usage.input_tokens
        t.output_units += usage.output_tokens
        t.items_processed += resolved
        t.chunks_completed += 1
        t.last_chunk_latency = latency

        elapsed = self._clock() - job.started
        t.items_per_minute = t.items_processed / (elapsed / 60) if elapsed > 0 else 0.0
        remaining = max(0, t.items_total - t.items_processed)
        t.eta_seconds = remaining / (t.items_per_minute / 60) if t.items_per_minute > 0 else 0.0


async def run_job(tracks, mode, collaborator, profile=None, *, on_progress=None,
                  cancel=None) -> BatchTelemetry:
    """One-shot helper around ``ReconciliationScheduler.run_job``."""
    scheduler = ReconciliationScheduler(collaborator, profile)
    return await scheduler.run_job(tracks, mode, on_progress=on_progress, cancel=cancel)
