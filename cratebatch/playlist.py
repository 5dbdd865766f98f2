"""Saved playlist CRUD and smart playlist synthesis into the document tree."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from cratebatch.document import CollectionDocument, Node
from cratebatch.persistence import JsonStore
from cratebatch.taxonomy import UNKNOWN

logger = logging.getLogger(__name__)

DEFAULT_ROOT_NAME = "AI_GENERATED"
DUPLICATES_PLAYLIST = "[POSSIBLE DUPLICATES]"
SAVED_FOLDER = "SAVED_SEARCHES"

# (folder name, Analysis attribute)
DIMENSION_FOLDERS = (
    ("Moods", "mood"),
    ("Sub-Genres", "sub_genre"),
    ("Situations", "situation"),
)


# ---------------------------------------------------------------------------
# Node builders
# ---------------------------------------------------------------------------

def folder_node(name: str, children: list[Node]) -> Node:
    return Node(
        tag="NODE",
        attributes={"Type": "0", "Name": name, "Count": str(len(children))},
        children=children,
    )


def playlist_node(name: str, track_ids: list[str]) -> Node:
    return Node(
        tag="NODE",
        attributes={"Type": "1", "Name": name, "KeyType": "0", "Entries": str(len(track_ids))},
        children=[Node(tag="TRACK", attributes={"Key": tid}) for tid in track_ids],
    )


def group_by_dimension(tracks, attr: str) -> dict[str, list[str]]:
    """Tag value -> track ids, in track order. Unknown values are skipped."""
    groups: dict[str, list[str]] = {}
    for t in tracks:
        if t.analysis is None:
            continue
        value = getattr(t.analysis, attr)
        if value and value != UNKNOWN:
            groups.setdefault(value, []).append(t.track_id)
    return groups


def build_generated_folder(
    tracks,
    duplicate_ids=(),
    custom_playlists=(),
    root_name: str = DEFAULT_ROOT_NAME,
) -> Node:
    children = []
    for folder_name, attr in DIMENSION_FOLDERS:
        groups = group_by_dimension(tracks, attr)
        children.append(folder_node(
            folder_name,
            [playlist_node(name, groups[name]) for name in sorted(groups)],
        ))

    if custom_playlists:
        saved = [playlist_node(p["name"], list(p.get("track_ids", []))) for p in custom_playlists]
        children.append(folder_node(SAVED_FOLDER, saved))

    duplicate_ids = list(duplicate_ids)
    if duplicate_ids:
        children.insert(0, playlist_node(DUPLICATES_PLAYLIST, duplicate_ids))

    return folder_node(root_name, children)


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------

def synthesize_playlists(
    document: CollectionDocument,
    tracks=None,
    duplicate_ids=(),
    custom_playlists=(),
    root_name: str = DEFAULT_ROOT_NAME,
) -> Node:
    """Rebuild the generated playlist folder and swap it into the playlist root.

    Any existing child of the root named exactly ``root_name`` is removed
    first, so repeated calls leave one subtree reflecting only the latest
    tag distribution. The root's ``Count`` is rewritten from its children.
    """
    tracks = document.tracks if tracks is None else tracks
    generated = build_generated_folder(tracks, duplicate_ids, custom_playlists, root_name)

    root = document.playlists_root(create=True)
    root.children = [
        c for c in root.children
        if not (c.tag == "NODE" and c.get("Name") == root_name)
    ]
    root.children.append(generated)
    root.attributes["Count"] = str(len(root.elements("NODE")))

    logger.info(
        "Synthesized %s: %d folders, %d duplicates, %d saved",
        root_name, len(generated.children), len(duplicate_ids), len(custom_playlists),
    )
    return generated


# ---------------------------------------------------------------------------
# Saved playlists
# ---------------------------------------------------------------------------

def _now():
    return datetime.now(timezone.utc).isoformat()


class SavedPlaylistStore:
    """User-saved track selections, persisted as ``{id: playlist}`` JSON."""

    def __init__(self, path: str) -> None:
        self.store = JsonStore(path)

    async def list(self) -> list[dict]:
        data = await self.store.load(default={})
        return sorted(data.values(), key=lambda p: p.get("created_at", ""))

    async def get(self, playlist_id: str) -> dict | None:
        data = await self.store.load(default={})
        return data.get(playlist_id)

    async def create(self, name: str, track_ids: list[str] | None = None) -> dict:
        playlist = {
            "id": str(uuid.uuid4())[:8],
            "name": name,
            "track_ids": list(dict.fromkeys(track_ids or [])),
            "created_at": _now(),
        }

        def add(data):
            data[playlist["id"]] = playlist
            return data

        await self.store.update(add, default={})
        logger.info("Saved playlist %r (%d tracks)", name, len(playlist["track_ids"]))
        return playlist

    async def update(self, playlist_id: str, updates: dict) -> dict | None:
        result = {}

        def apply(data):
            p = data.get(playlist_id)
            if p is not None:
                if "name" in updates:
                    p["name"] = updates["name"]
                if "track_ids" in updates:
                    p["track_ids"] = list(dict.fromkeys(updates["track_ids"]))
                result["playlist"] = p
            return data

        await self.store.update(apply, default={})
        return result.get("playlist")

    async def delete(self, playlist_id: str) -> bool:
        removed = []

        def drop(data):
            if data.pop(playlist_id, None) is not None:
                removed.append(playlist_id)
            return data

        await self.store.update(drop, default={})
        return bool(removed)
