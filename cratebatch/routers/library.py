"""Library health routes: stats, duplicate groups and search."""

from fastapi import APIRouter, Depends

from cratebatch.models.common import SearchRequest
from cratebatch.models.track import TrackRow
from cratebatch.routers._helpers import require_document
from cratebatch.search import filter_tracks
from cratebatch.state import AppState, get_state
from cratebatch.stats import calculate_library_stats

router = APIRouter(prefix="/api", tags=["library"])


@router.get("/stats")
async def stats(state: AppState = Depends(get_state)):
    require_document(state)
    return calculate_library_stats(state.tracks, state.duplicate_report())


@router.get("/duplicates")
async def duplicates(state: AppState = Depends(get_state)):
    require_document(state)
    report = state.duplicate_report()
    return {
        "duplicate_count": report.duplicate_count,
        "ids": report.ids,
        "groups": [
            {
                "fingerprint": g.fingerprint,
                "tracks": [t.to_row().model_dump() for t in g.members],
            }
            for g in report.groups
        ],
    }


@router.post("/search", response_model=list[TrackRow])
async def search(body: SearchRequest, state: AppState = Depends(get_state)):
    require_document(state)
    matches = filter_tracks(state.tracks, body, query=body.query)
    return [t.to_row() for t in matches]
