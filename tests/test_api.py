"""HTTP API tests through the FastAPI TestClient with a stub tagging collaborator."""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from cratebatch.main import app
from cratebatch.models.track import EnrichMode
from cratebatch.playlist import SavedPlaylistStore
from cratebatch.routers._helpers import get_saved_playlists
from cratebatch.routers.tagging import _enrich_job
from cratebatch.state import AppState, get_state, reset_state

from conftest import SAMPLE_XML, EchoCollaborator


@pytest.fixture
def client(tmp_path):
    reset_state()
    store = SavedPlaylistStore(str(tmp_path / "saved_playlists.json"))
    app.dependency_overrides[get_saved_playlists] = lambda: store
    with TestClient(app) as c:
        get_state().collaborator = EchoCollaborator()
        yield c
        c.post("/api/config/reset")
    app.dependency_overrides.clear()


@pytest.fixture
def loaded(client):
    resp = client.post(
        "/api/upload", files={"file": ("collection.xml", SAMPLE_XML.encode(), "text/xml")}
    )
    assert resp.status_code == 200
    return client


def wait_for_job(client, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = client.get("/api/enrich/status").json()
        if not status["running"]:
            return status
        time.sleep(0.02)
    raise AssertionError("enrichment job did not finish")


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

def test_upload_summary(client):
    resp = client.post(
        "/api/upload", files={"file": ("collection.xml", SAMPLE_XML.encode(), "text/xml")}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 4
    assert body["tagged"] == 1
    assert body["untagged"] == 3
    assert body["missing_year"] == 2
    assert body["missing_genre"] == 2
    assert body["filename"] == "collection.xml"


def test_upload_rejects_bad_input(client):
    resp = client.post("/api/upload", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert resp.status_code == 400

    resp = client.post(
        "/api/upload", files={"file": ("broken.xml", b"<DJ_PLAYLISTS><COLLECTION>", "text/xml")}
    )
    assert resp.status_code == 400

    resp = client.post("/api/upload", files={"file": ("other.xml", b"<PLAYLISTS/>", "text/xml")})
    assert resp.status_code == 400
    assert "DJ_PLAYLISTS" in resp.json()["detail"]


def test_routes_require_a_collection(client):
    assert client.get("/api/stats").status_code == 400
    assert client.get("/api/export").status_code == 400
    assert client.post("/api/enrich", json={}).status_code == 400


def test_restore_keeps_loaded_document(loaded):
    body = loaded.get("/api/restore").json()
    assert body["restored"] is True
    assert body["total"] == 4


# ---------------------------------------------------------------------------
# Library
# ---------------------------------------------------------------------------

def test_tracks_listing(loaded):
    rows = loaded.get("/api/tracks").json()
    assert [r["id"] for r in rows] == ["1", "2", "3", "4"]
    assert rows[0]["status"] == "tagged"
    assert rows[0]["energy"] == 7
    assert rows[2]["energy"] == 5


def test_stats_and_duplicates(loaded):
    stats = loaded.get("/api/stats").json()
    assert stats["missing_data"]["total_tracks"] == 4
    assert stats["missing_data"]["duplicate_count"] == 2

    dupes = loaded.get("/api/duplicates").json()
    assert dupes["ids"] == ["1", "2"]
    assert [t["id"] for t in dupes["groups"][0]["tracks"]] == ["1", "2"]


def test_search(loaded):
    resp = loaded.post("/api/search", json={"query": "80s"})
    assert [r["id"] for r in resp.json()] == ["1", "4"]

    resp = loaded.post("/api/search", json={"min_bpm": 125})
    assert [r["id"] for r in resp.json()] == ["3", "4"]


# ---------------------------------------------------------------------------
# Saved playlists
# ---------------------------------------------------------------------------

def test_saved_playlist_crud(client):
    assert client.post("/api/playlists", json={"name": "  "}).status_code == 400

    resp = client.post("/api/playlists", json={"name": "Warmup", "track_ids": ["3", "3", "4"]})
    assert resp.status_code == 201
    created = resp.json()
    assert created["track_ids"] == ["3", "4"]

    pid = created["id"]
    assert client.get(f"/api/playlists/{pid}").json()["name"] == "Warmup"

    updated = client.put(f"/api/playlists/{pid}", json={"name": "Opening"}).json()
    assert updated["name"] == "Opening"
    assert [p["id"] for p in client.get("/api/playlists").json()] == [pid]

    assert client.delete(f"/api/playlists/{pid}").json() == {"ok": True}
    assert client.get(f"/api/playlists/{pid}").status_code == 404
    assert client.delete(f"/api/playlists/{pid}").status_code == 404


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

def test_config_update_and_reset(client):
    assert client.get("/api/config").json()["scheduler_profile"] == "desktop"

    resp = client.put("/api/config", json={"scheduler_profile": "hosted", "chunk_size": 50})
    assert resp.status_code == 200
    assert client.get("/api/config").json()["chunk_size"] == 50

    assert client.put("/api/config", json={"scheduler_profile": "laptop"}).status_code == 400

    reset = client.post("/api/config/reset").json()
    assert reset["scheduler_profile"] == "desktop"
    assert reset["chunk_size"] is None


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------

def test_enrich_full_then_export(loaded):
    resp = loaded.post("/api/enrich", json={"mode": "full"})
    assert resp.status_code == 200
    assert resp.json() == {"started": True, "mode": "full", "total": 3}

    status = wait_for_job(loaded)
    assert status["mode"] is None
    assert status["telemetry"]["items_processed"] == 3
    assert status["telemetry"]["unresolved"] == 0
    assert status["log"]

    rows = {r["id"]: r for r in loaded.get("/api/tracks").json()}
    assert rows["4"]["genre"] == "Nu Disco"
    assert rows["3"]["genre"] == "Electronic"
    assert rows["2"]["year"] == "1999"
    assert rows["1"]["year"] == "1987"

    resp = loaded.get("/api/export")
    assert resp.status_code == 200
    assert 'filename="rekordbox_enriched.xml"' in resp.headers["content-disposition"]
    xml = resp.text
    assert 'Name="AI_GENERATED"' in xml
    assert 'Name="[POSSIBLE DUPLICATES]"' in xml
    assert 'Name="Groovy"' in xml
    assert 'Name="Favourites"' in xml
    assert "<!-- exported for testing -->" in xml

    # Exporting twice keeps a single generated folder
    assert loaded.get("/api/export").text.count('Name="AI_GENERATED"') == 1


def test_enrich_selected_ids(loaded):
    resp = loaded.post("/api/enrich", json={"mode": "missing_year", "track_ids": ["3", "nope"]})
    assert resp.json()["total"] == 1
    wait_for_job(loaded)
    rows = {r["id"]: r for r in loaded.get("/api/tracks").json()}
    assert rows["3"]["year"] == "1999"
    assert rows["2"]["year"] == "0"


def test_enrich_without_api_key(loaded, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    get_state().collaborator = None

    assert loaded.post("/api/enrich", json={}).status_code == 503
    assert loaded.post("/api/tracks/4/analyze").status_code == 503


def test_analyze_one_track(loaded):
    resp = loaded.post("/api/tracks/4/analyze")
    assert resp.status_code == 200
    assert resp.json()["sub_genre"] == "Nu Disco"
    assert resp.json()["tag_string"] == "#Groovy #NuDisco #CocktailHour"

    assert loaded.post("/api/tracks/99/analyze").status_code == 404


def test_stop_without_job(client):
    assert client.post("/api/enrich/stop").json()["stopped"] is False


def test_health(client):
    assert client.get("/api/health").json() == {"ok": True}


def test_restore_after_restart(loaded):
    reset_state()
    body = loaded.get("/api/restore").json()
    assert body["restored"] is True
    assert body["filename"] == "collection.xml"
    assert len(loaded.get("/api/tracks").json()) == 4


def test_config_validation_and_effective_profile(client):
    assert client.put("/api/config", json={"chunk_size": 0}).status_code == 422
    assert client.put("/api/config", json={"max_escalation_levels": 9}).status_code == 422

    client.put("/api/config", json={"scheduler_profile": "hosted", "retry_chunk_size": 10})
    body = client.get("/api/config/scheduler").json()
    assert set(body["presets"]) == {"desktop", "hosted"}
    assert body["effective"]["concurrency"] == 8
    assert body["effective"]["retry_chunk_size"] == 10


def test_upload_rejected_while_enriching(loaded):
    get_state().collaborator = EchoCollaborator(delay=0.3)
    assert loaded.post("/api/enrich", json={"mode": "full"}).status_code == 200

    resp = loaded.post(
        "/api/upload", files={"file": ("other.xml", SAMPLE_XML.encode(), "text/xml")}
    )
    assert resp.status_code == 409

    status = wait_for_job(loaded)
    assert status["telemetry"]["items_processed"] == 3
    resp = loaded.post(
        "/api/upload", files={"file": ("other.xml", SAMPLE_XML.encode(), "text/xml")}
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_unexpected_job_failure_is_reported():
    state = AppState()
    listener = state.enrich_listeners.add()

    class BrokenScheduler:
        async def run_job(self, tracks, mode, *, on_progress=None, cancel=None):
            raise RuntimeError("merge exploded")

    await _enrich_job(state, BrokenScheduler(), [], EnrichMode.FULL, asyncio.Event())

    event = listener.get_nowait()
    assert event["event"] == "error"
    assert "merge exploded" in event["detail"]
    assert state.job.mode is None
