"""Saved playlist routes: CRUD for user-saved track selections."""

from fastapi import APIRouter, Depends, HTTPException

from cratebatch.models.common import (
    SavedPlaylist,
    SavedPlaylistCreate,
    SavedPlaylistUpdate,
    SuccessResponse,
)
from cratebatch.playlist import SavedPlaylistStore
from cratebatch.routers._helpers import get_saved_playlists

router = APIRouter(prefix="/api", tags=["playlists"])


@router.get("/playlists", response_model=list[SavedPlaylist])
async def playlists_list(store: SavedPlaylistStore = Depends(get_saved_playlists)):
    return await store.list()


@router.post("/playlists", response_model=SavedPlaylist, status_code=201)
async def playlists_create(
    body: SavedPlaylistCreate,
    store: SavedPlaylistStore = Depends(get_saved_playlists),
):
    name = body.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name is required")
    return await store.create(name, body.track_ids)


@router.get("/playlists/{playlist_id}", response_model=SavedPlaylist)
async def playlists_get(playlist_id: str, store: SavedPlaylistStore = Depends(get_saved_playlists)):
    p = await store.get(playlist_id)
    if not p:
        raise HTTPException(status_code=404, detail="Playlist not found")
    return p


@router.put("/playlists/{playlist_id}", response_model=SavedPlaylist)
async def playlists_update(
    playlist_id: str,
    body: SavedPlaylistUpdate,
    store: SavedPlaylistStore = Depends(get_saved_playlists),
):
    p = await store.update(playlist_id, body.model_dump(exclude_none=True))
    if not p:
        raise HTTPException(status_code=404, detail="Playlist not found")
    return p


@router.delete(
    "/playlists/{playlist_id}", response_model=SuccessResponse, response_model_exclude_none=True
)
async def playlists_delete(playlist_id: str, store: SavedPlaylistStore = Depends(get_saved_playlists)):
    if await store.delete(playlist_id):
        return SuccessResponse()
    raise HTTPException(status_code=404, detail="Playlist not found")
