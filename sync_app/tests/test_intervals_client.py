import base64

import pytest
import requests

from sync_app.src.errors import AuthError, NetworkError, NotFound, RateLimited
from sync_app.src.intervals_client import ActivityType, IntervalsActivity, IntervalsClient

from conftest import DummyResp, activity


def make_client():
    return IntervalsClient(api_key="secret", athlete_id="i123", base_url="https://intervals.test/api/v1")


def test_list_activities_sends_basic_auth_and_range(monkeypatch):
    seen = {}

    def fake_request(method, url, headers=None, params=None, json=None, timeout=None):
        seen.update(method=method, url=url, headers=headers, params=params)
        return DummyResp(json_data=[activity("i1", "2026-02-16"), {"name": "no id"}])

    monkeypatch.setattr("sync_app.src.intervals_client.requests.request", fake_request)

    result = make_client().list_activities("2026-02-01", "2026-02-17")

    assert [a.id for a in result] == ["i1"]
    assert seen["method"] == "GET"
    assert seen["url"] == "https://intervals.test/api/v1/athlete/i123/activities"
    assert seen["params"] == {"oldest": "2026-02-01", "newest": "2026-02-17"}
    token = seen["headers"]["Authorization"].split(" ", 1)[1]
    assert base64.b64decode(token).decode() == "API_KEY:secret"


@pytest.mark.parametrize(
    "status_code, error",
    [(401, AuthError), (403, AuthError), (404, NotFound), (429, RateLimited), (500, NetworkError), (418, NetworkError)],
)
def test_status_mapping(monkeypatch, status_code, error):
    monkeypatch.setattr(
        "sync_app.src.intervals_client.requests.request",
        lambda *args, **kwargs: DummyResp(status_code=status_code, headers={"Retry-After": "7"}),
    )

    with pytest.raises(error) as exc:
        make_client().get_activity_intervals("i1")

    assert exc.value.status_code == status_code
    assert "secret" not in str(exc.value)
    if error is RateLimited:
        assert exc.value.retry_after == 7.0


def test_timeout_is_network_error(monkeypatch):
    def fake_request(*args, **kwargs):
        raise requests.exceptions.Timeout("slow")

    monkeypatch.setattr("sync_app.src.intervals_client.requests.request", fake_request)

    with pytest.raises(NetworkError):
        make_client().get_athlete()


def test_non_json_body_is_network_error(monkeypatch):
    monkeypatch.setattr(
        "sync_app.src.intervals_client.requests.request",
        lambda *args, **kwargs: DummyResp(status_code=200, text="<html>maintenance</html>"),
    )

    with pytest.raises(NetworkError):
        make_client().get_activity("i1")


def test_missing_credentials_raise_auth_error():
    client = IntervalsClient(api_key=None, athlete_id="i123")

    assert not client.is_configured
    with pytest.raises(AuthError):
        client.list_wellness("2026-02-01", "2026-02-17")


def test_update_wellness_puts_one_day(monkeypatch):
    seen = {}

    def fake_request(method, url, headers=None, params=None, json=None, timeout=None):
        seen.update(method=method, url=url, json=json)
        return DummyResp(json_data=json)

    monkeypatch.setattr("sync_app.src.intervals_client.requests.request", fake_request)

    record = make_client().update_wellness("2026-02-17", {"weight": 70.2})

    assert seen["method"] == "PUT"
    assert seen["url"].endswith("/athlete/i123/wellness/2026-02-17")
    assert record == {"weight": 70.2, "id": "2026-02-17"}


def test_activity_classification():
    ride = IntervalsActivity.from_record(activity("i1", "2026-02-16", type_="VirtualRide"))
    gym = IntervalsActivity.from_record(activity("i2", "2026-02-16", type_="Other", name="Musculação - pernas"))
    other = IntervalsActivity.from_record(activity("i3", "2026-02-16", type_="Other", name="Walk"))
    run = IntervalsActivity.from_record(activity("i4", "2026-02-16", source="STRAVA"))

    assert ride.type == ActivityType.VIRTUAL_RIDE and ride.is_cross_training
    assert gym.is_cross_training
    assert not other.is_cross_training
    assert run.is_running and run.is_stub
