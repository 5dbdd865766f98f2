"""Playlist synthesis into the document tree, and the saved playlist store."""

import pytest

from conftest import make_collection
from cratebatch.document import parse_collection
from cratebatch.models.track import Analysis, EnrichMode
from cratebatch.playlist import (
    DUPLICATES_PLAYLIST,
    SAVED_FOLDER,
    SavedPlaylistStore,
    synthesize_playlists,
)


def _generated(doc, name="AI_GENERATED"):
    root = doc.playlists_root()
    return [c for c in root.elements("NODE") if c.get("Name") == name]


def _tag(doc, track_id, **kwargs):
    doc.track(track_id).apply_analysis(Analysis(**kwargs), EnrichMode.FULL)


def test_builds_folders_per_dimension(doc):
    _tag(doc, "3", mood="Trippy", sub_genre="Glitch Hop", situation="After Party")
    _tag(doc, "4", mood="Nostalgic", sub_genre="80s NewWave", situation="Road Trip")
    generated = synthesize_playlists(doc)

    assert generated.get("Type") == "0"
    assert [c.get("Name") for c in generated.children] == ["Moods", "Sub-Genres", "Situations"]
    moods = generated.children[0]
    assert [p.get("Name") for p in moods.children] == ["Euphoric", "Nostalgic", "Trippy"]
    assert moods.get("Count") == "3"

    trippy = moods.children[2]
    assert trippy.attributes == {"Type": "1", "Name": "Trippy", "KeyType": "0", "Entries": "1"}
    assert [t.get("Key") for t in trippy.children] == ["3"]


def test_unknown_values_are_skipped(doc):
    _tag(doc, "4", mood="Dark")
    generated = synthesize_playlists(doc)
    sub_genres = generated.children[1]
    assert [p.get("Name") for p in sub_genres.children] == ["Chicago House"]


def test_duplicates_first_saved_searches_last(doc):
    generated = synthesize_playlists(
        doc,
        duplicate_ids=["1", "2"],
        custom_playlists=[{"name": "Opening", "track_ids": ["3", "4"]}],
    )
    names = [c.get("Name") for c in generated.children]
    assert names == [DUPLICATES_PLAYLIST, "Moods", "Sub-Genres", "Situations", SAVED_FOLDER]
    assert generated.get("Count") == "5"
    dupes = generated.children[0]
    assert dupes.get("Entries") == "2"
    saved = generated.children[-1]
    assert saved.children[0].get("Name") == "Opening"
    assert saved.children[0].get("Entries") == "2"


def test_resynthesis_replaces_instead_of_merging(doc):
    synthesize_playlists(doc)
    doc.track("1").apply_analysis(Analysis(mood="Dark", sub_genre="Minimal"), EnrichMode.FULL)
    synthesize_playlists(doc)

    generated = _generated(doc)
    assert len(generated) == 1
    moods = generated[0].children[0]
    assert [p.get("Name") for p in moods.children] == ["Dark"]

    root = doc.playlists_root()
    assert root.get("Count") == "2"
    assert [c.get("Name") for c in root.elements("NODE")] == ["Favourites", "AI_GENERATED"]


def test_custom_root_name_leaves_other_subtrees(doc):
    synthesize_playlists(doc)
    synthesize_playlists(doc, root_name="CRATES")
    root = doc.playlists_root()
    assert [c.get("Name") for c in root.elements("NODE")] == ["Favourites", "AI_GENERATED", "CRATES"]
    assert root.get("Count") == "3"


def test_playlists_section_created_when_absent():
    doc = parse_collection(make_collection([("1", "Song", "Band", 200)]))
    assert doc.playlists_root() is None
    synthesize_playlists(doc)
    root = doc.playlists_root()
    assert root.get("Name") == "ROOT"
    assert root.get("Count") == "1"
    out = doc.export()
    assert '<NODE Type="0" Name="ROOT" Count="1">' in out
    assert '<NODE Type="0" Name="Moods" Count="0"/>' in out
    assert parse_collection(out).export() == out


@pytest.mark.asyncio
async def test_saved_playlist_store_crud(tmp_path):
    store = SavedPlaylistStore(str(tmp_path / "saved.json"))
    assert await store.list() == []

    first = await store.create("Warmup", ["3", "3", "4"])
    second = await store.create("Closers", ["1"])
    assert first["track_ids"] == ["3", "4"]
    assert [p["name"] for p in await store.list()] == ["Warmup", "Closers"]

    updated = await store.update(first["id"], {"name": "Openers"})
    assert updated["name"] == "Openers"
    assert (await store.get(first["id"]))["name"] == "Openers"
    assert await store.update("missing", {"name": "x"}) is None

    assert await store.delete(second["id"]) is True
    assert await store.delete(second["id"]) is False
    assert [p["id"] for p in await store.list()] == [first["id"]]
