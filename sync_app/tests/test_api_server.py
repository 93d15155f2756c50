import gzip
import json

import pytest
from fastapi.testclient import TestClient
from tenacity import wait_none

from sync_app.src.api_server import app, get_synchronizer
from sync_app.src.data_synchronizer import DataSynchronizer
from sync_app.src.errors import AuthError

from conftest import FakeClient, activity


@pytest.fixture
def synchronizer(store, fetcher):
    client = FakeClient(
        activities=[activity("i1", "2026-02-16"), activity("i2", "2026-02-16", type_="Ride")],
        wellness=[{"id": "2026-02-16", "ctl": 45.0, "atl": 50.5, "restingHR": 48}],
    )
    return DataSynchronizer(store=store, client=client, fetcher=fetcher, list_retry_attempts=1, retry_wait=wait_none())


@pytest.fixture
def api(synchronizer):
    app.dependency_overrides[get_synchronizer] = lambda: synchronizer
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root_and_health(api):
    assert api.get("/").json()["status"] == "running"
    assert api.get("/health").json()["database"] == "connected"


def test_activities_fetch_once_then_serve_locally(api, synchronizer):
    params = {"oldest": "2026-02-01", "newest": "2026-02-17"}

    first = api.get("/activities", params=params).json()
    second = api.get("/activities", params={**params, "intervals": True}).json()

    assert [a["id"] for a in first] == ["i1"]
    assert second[0]["interval_count"] == 1
    assert synchronizer.client.list_calls.count(("activities", "2026-02-01", "2026-02-17")) == 1


def test_wellness_exposes_form(api):
    rows = api.get("/wellness", params={"oldest": "2026-02-16", "newest": "2026-02-16"}).json()

    assert rows == [{
        "date": "2026-02-16", "ctl": 45.0, "atl": 50.5, "form": -5.5,
        "resting_hr": 48, "hrv": None, "weight": None,
    }]


def test_trigger_sync_and_status(api):
    response = api.post("/sync/trigger", params={"days_back": 3650})
    assert response.status_code == 200
    assert response.json()["results"]["activities"]["created"] == 1

    status = api.get("/sync/status").json()
    assert status["last_status"]["activities"] == "success"
    assert status["records"]["crossTraining"] == 1


def test_trigger_sync_maps_auth_errors(api, synchronizer, monkeypatch):
    def rejected(oldest, newest):
        raise AuthError("Intervals.icu rejected credentials (401)", status_code=401)

    monkeypatch.setattr(synchronizer.client, "list_activities", rejected)

    assert api.post("/sync/trigger").status_code == 401


def test_export_import_round_trip(api, store):
    store.put("activities", activity("i1", "2026-02-16"))

    exported = api.get("/export")
    assert exported.headers["content-type"] == "application/gzip"
    snapshot = json.loads(gzip.decompress(exported.content))
    assert snapshot["tables"]["activities"]["count"] == 1

    store.clear("activities")
    imported = api.post("/import", content=exported.content)

    assert imported.status_code == 200
    assert imported.json()["imported"]["activities"] == 1
    assert store.keys("activities") == {"i1"}
    assert store.get_config("last_import_timestamp") == snapshot["timestamp"]


def test_import_rejects_corrupt_snapshot(api, store):
    plain = api.get("/export", params={"compressed": False}).json()
    plain["tables"]["wellness"]["count"] = 9

    response = api.post("/import", content=json.dumps(plain))

    assert response.status_code == 422
    assert "wellness" in response.json()["detail"]


def test_import_rejects_damaged_gzip_body(api, store):
    store.put("activities", activity("i1", "2026-02-16"))
    good = api.get("/export").content

    response = api.post("/import", params={"clear": True}, content=good[:10] + b"\xff" * 8 + good[18:])

    assert response.status_code == 422
    assert store.keys("activities") == {"i1"}
