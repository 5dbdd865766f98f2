"""Enrichment routes: track list, batch enrich, SSE progress, stop, analyze one, export."""

import asyncio
import json
import logging
import queue

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response, StreamingResponse

from cratebatch.config import load_config
from cratebatch.errors import ChunkFailure, CollaboratorUnavailable
from cratebatch.llm import LLMTagger
from cratebatch.models.common import EnrichRequest, EnrichStarted, ProgressEvent, SuccessResponse
from cratebatch.models.track import Analysis, EnrichMode, TrackRow
from cratebatch.playlist import SavedPlaylistStore, synthesize_playlists
from cratebatch.routers._helpers import (
    autosave,
    get_collaborator,
    get_saved_playlists,
    require_document,
)
from cratebatch.scheduler import ReconciliationScheduler, SchedulerProfile
from cratebatch.state import AppState, get_state
from cratebatch.tagger import tag_single_track
from cratebatch.tasks import BackgroundTaskManager, get_task_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["tagging"])

ENRICH_TASK = "enrich"
EXPORT_FILENAME = "rekordbox_enriched.xml"


# ---------------------------------------------------------------------------
# Background enrichment job
# ---------------------------------------------------------------------------


async def _enrich_job(state: AppState, scheduler: ReconciliationScheduler, tracks: list,
                      mode: EnrichMode, cancel: asyncio.Event) -> None:
    job = state.job

    def on_progress(event: dict) -> None:
        if event.get("log"):
            job.log.append(event["log"])
        state.enrich_listeners.broadcast(ProgressEvent(**event).model_dump(exclude_none=True))

    job.begin(mode.value)
    telemetry = None
    try:
        result = await scheduler.run_job(tracks, mode, on_progress=on_progress, cancel=cancel)
        telemetry = result.to_dict()
    except CollaboratorUnavailable as e:
        error = ProgressEvent(event="error", detail=str(e))
        state.enrich_listeners.broadcast(error.model_dump(exclude_none=True))
    except Exception as e:
        logger.exception("Enrichment job failed")
        error = ProgressEvent(event="error", detail=f"Enrichment failed: {e}")
        state.enrich_listeners.broadcast(error.model_dump(exclude_none=True))
    finally:
        job.finish(telemetry)
        state.invalidate_caches()
        await autosave(state)


# ---------------------------------------------------------------------------
# SSE stream helper
# ---------------------------------------------------------------------------


async def sse_stream(listeners, terminal_events=("done", "error")):
    """Async generator that bridges ListenerList queues to SSE format."""
    q = listeners.add(maxsize=100)
    try:
        while True:
            try:
                data = await asyncio.to_thread(q.get, True, 30)
            except queue.Empty:
                yield ":\n\n"  # keepalive
                continue
            yield f"data: {json.dumps(data)}\n\n"
            if data.get("event") in terminal_events:
                break
    finally:
        listeners.remove(q)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/tracks", response_model=list[TrackRow])
async def tracks(state: AppState = Depends(get_state)):
    return [t.to_row() for t in state.tracks]


@router.post("/enrich", response_model=EnrichStarted)
async def enrich(
    body: EnrichRequest,
    state: AppState = Depends(get_state),
    tasks: BackgroundTaskManager = Depends(get_task_manager),
):
    document = require_document(state)
    if tasks.is_running(ENRICH_TASK):
        raise HTTPException(status_code=409, detail="An enrichment job is already running")

    config = load_config()
    collaborator = get_collaborator(state, config)
    if isinstance(collaborator, LLMTagger) and not collaborator.available():
        raise HTTPException(status_code=503, detail="No API key configured for the tagging model")

    if body.track_ids is not None:
        work = [t for t in (document.track(tid) for tid in body.track_ids) if t is not None]
    else:
        work = document.work_list(body.mode)

    scheduler = ReconciliationScheduler(collaborator, SchedulerProfile.from_config(config))
    tasks.start(
        ENRICH_TASK,
        lambda cancel: _enrich_job(state, scheduler, work, body.mode, cancel),
    )
    return EnrichStarted(mode=body.mode, total=len(work))


@router.get("/enrich/progress")
async def enrich_progress(state: AppState = Depends(get_state)):
    return StreamingResponse(
        sse_stream(state.enrich_listeners),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/enrich/stop", response_model=SuccessResponse)
async def enrich_stop(tasks: BackgroundTaskManager = Depends(get_task_manager)):
    # Cooperative: chunks already in flight finish and merge
    return SuccessResponse(stopped=tasks.stop(ENRICH_TASK))


@router.get("/enrich/status")
async def enrich_status(
    state: AppState = Depends(get_state),
    tasks: BackgroundTaskManager = Depends(get_task_manager),
):
    return {
        "running": tasks.is_running(ENRICH_TASK),
        **state.job.snapshot(),
    }


@router.post("/tracks/{track_id}/analyze", response_model=Analysis)
async def analyze_track(track_id: str, state: AppState = Depends(get_state)):
    document = require_document(state)
    track = document.track(track_id)
    if track is None:
        raise HTTPException(status_code=404, detail="Track not found")

    collaborator = get_collaborator(state, load_config())
    try:
        analysis = await tag_single_track(track, collaborator)
    except CollaboratorUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ChunkFailure as e:
        raise HTTPException(status_code=502, detail=str(e))
    if analysis is None:
        raise HTTPException(status_code=502, detail="No analysis returned for this track")

    state.invalidate_caches()
    return analysis


@router.get("/export")
async def export(
    state: AppState = Depends(get_state),
    saved: SavedPlaylistStore = Depends(get_saved_playlists),
):
    document = require_document(state)
    config = load_config()
    synthesize_playlists(
        document,
        document.tracks,
        duplicate_ids=state.duplicate_report().ids,
        custom_playlists=await saved.list(),
        root_name=config.get("playlist_root_name") or "AI_GENERATED",
    )
    return Response(
        content=document.export(),
        media_type="application/xml",
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )
