import hashlib

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.repositories.db import PlacementState, StateStore


@pytest.fixture
def client(tmp_path, monkeypatch):
    db = tmp_path / "state.db"
    monkeypatch.setenv("LINKARR_DB", str(db))
    with StateStore(db) as s:
        run_id = s.begin_run("/in", "/out")
        a, b = hashlib.sha256(b"a").digest(), hashlib.sha256(b"b").digest()
        s.compare_and_transition(a, PlacementState.ABSENT, PlacementState.DISCOVERED,
                                 source_path="/in/a.jpg", run_id=run_id)
        s.record_target(a, "/out/2021/03/a.jpg")
        s.compare_and_transition(a, PlacementState.DISCOVERED, PlacementState.COPIED)
        s.compare_and_transition(b, PlacementState.ABSENT, PlacementState.DISCOVERED,
                                 source_path="/in/b.jpg", run_id=run_id)
        s.finish_run(run_id, status="ok")
    return TestClient(app)


def test_summary(client):
    r = client.get("/api/summary")
    assert r.status_code == 200
    body = r.json()
    assert body["copied"] == 1
    assert body["discovered"] == 1
    assert body["cached_paths"] == 2
    assert body["runs"][0]["status"] == "ok"


def test_placement_lookup(client):
    key = hashlib.sha256(b"a").hexdigest()
    r = client.get(f"/api/placements/{key}")
    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "copied"
    assert body["source_path"] == "/in/a.jpg"
    assert body["target_path"] == "/out/2021/03/a.jpg"


@pytest.mark.parametrize("key", ["zz", "abcd", hashlib.sha256(b"never").hexdigest()])
def test_unknown_or_malformed_keys_are_404(client, key):
    assert client.get(f"/api/placements/{key}").status_code == 404


def test_runs_limit(client):
    r = client.get("/api/runs", params={"limit": 1})
    assert r.status_code == 200
    assert len(r.json()) == 1
    assert client.get("/api/runs", params={"limit": 0}).status_code == 400


def test_missing_database_is_503_and_not_created(tmp_path, monkeypatch):
    db = tmp_path / "nowhere" / "state.db"
    monkeypatch.setenv("LINKARR_DB", str(db))
    client = TestClient(app)
    assert client.get("/api/summary").status_code == 503
    assert client.get("/api/runs").status_code == 503
    assert not db.exists()
    assert not db.parent.exists()
