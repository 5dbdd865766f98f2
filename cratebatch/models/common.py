"""Shared request / response models used across endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field

from cratebatch.models.track import EnrichMode
from cratebatch.search import SmartFilterCriteria


class ErrorResponse(BaseModel):
    """Standard error response: {"detail": "message"}."""

    detail: str


class SuccessResponse(BaseModel):
    """Generic success response with optional fields."""

    ok: bool = True
    stopped: bool | None = None


class UploadSummary(BaseModel):
    total: int = 0
    tagged: int = 0
    untagged: int = 0
    missing_year: int = 0
    missing_genre: int = 0
    filename: str | None = None
    restored: bool | None = None


class EnrichRequest(BaseModel):
    mode: EnrichMode = EnrichMode.FULL
    track_ids: list[str] | None = None  # default: the mode's work list


class EnrichStarted(BaseModel):
    started: bool = True
    mode: EnrichMode
    total: int


class ProgressEvent(BaseModel):
    """SSE event broadcast by the enrichment job.

    Fields are a superset; each event type uses a subset.
    """

    event: str  # "started", "retry", "progress", "done", "error"

    mode: str | None = None
    total: int | None = None
    level: int | None = None
    items: int | None = None
    resolved_ids: list[str] | None = None
    failed: int | None = None
    log: str | None = None
    telemetry: dict | None = None
    detail: str | None = None


class SearchRequest(SmartFilterCriteria):
    query: str = ""


class SavedPlaylistCreate(BaseModel):
    name: str
    track_ids: list[str] = Field(default_factory=list)


class SavedPlaylistUpdate(BaseModel):
    name: str | None = None
    track_ids: list[str] | None = None


class SavedPlaylist(BaseModel):
    id: str
    name: str
    track_ids: list[str]
    created_at: str
