"""Shared helper functions used across multiple routers."""

import logging
import os

from fastapi import HTTPException

from cratebatch.config import tiered_models
from cratebatch.llm import LLMTagger
from cratebatch.persistence import CollectionArchive
from cratebatch.playlist import SavedPlaylistStore
from cratebatch.state import AppState

logger = logging.getLogger(__name__)

_project_root = os.path.dirname(os.path.dirname(os.path.dirname(__file__)))
OUTPUT_DIR = os.environ.get("CRATEBATCH_OUTPUT_DIR", os.path.join(_project_root, "output"))
SAVED_PLAYLISTS_PATH = os.path.join(OUTPUT_DIR, "saved_playlists.json")

archive = CollectionArchive(OUTPUT_DIR)


async def autosave(state: AppState) -> None:
    """Write the current document to output/<original>_autosave.xml."""
    if state.document is not None:
        await archive.save(state.document, state.original_filename)


def require_document(state: AppState):
    if state.document is None:
        raise HTTPException(status_code=400, detail="No collection uploaded")
    return state.document


def summary(state: AppState) -> dict:
    """Build an upload summary from the current document."""
    doc = state.document
    if doc is None:
        return {"total": 0, "tagged": 0, "untagged": 0, "missing_year": 0, "missing_genre": 0}
    total = len(doc.tracks)
    untagged = len(doc.tracks_without_analysis())
    return {
        "total": total,
        "tagged": total - untagged,
        "untagged": untagged,
        "missing_year": len(doc.tracks_missing_year()),
        "missing_genre": len(doc.tracks_missing_genre()),
        "filename": state.original_filename or None,
    }


def get_collaborator(state: AppState, config: dict):
    """The tagging collaborator for this session: an injected one, else the LLM tagger."""
    if state.collaborator is not None:
        return state.collaborator
    return LLMTagger(models=tiered_models(config), system_prompt=config.get("system_prompt"))


_saved_playlists: SavedPlaylistStore | None = None


def get_saved_playlists() -> SavedPlaylistStore:
    """FastAPI dependency for the saved playlist store."""
    global _saved_playlists
    if _saved_playlists is None:
        _saved_playlists = SavedPlaylistStore(SAVED_PLAYLISTS_PATH)
    return _saved_playlists
