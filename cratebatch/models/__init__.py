"""Pydantic v2 models for CrateBatch API types."""

from cratebatch.models.common import (
    EnrichRequest,
    EnrichStarted,
    ErrorResponse,
    ProgressEvent,
    SavedPlaylist,
    SavedPlaylistCreate,
    SavedPlaylistUpdate,
    SearchRequest,
    SuccessResponse,
    UploadSummary,
)
from cratebatch.models.config import AppConfig, ConfigUpdate
from cratebatch.models.track import Analysis, EnrichMode, TrackRow

__all__ = [
    # common
    "EnrichRequest",
    "EnrichStarted",
    "ErrorResponse",
    "ProgressEvent",
    "SavedPlaylist",
    "SavedPlaylistCreate",
    "SavedPlaylistUpdate",
    "SearchRequest",
    "SuccessResponse",
    "UploadSummary",
    # config
    "AppConfig",
    "ConfigUpdate",
    # track
    "Analysis",
    "EnrichMode",
    "TrackRow",
]
