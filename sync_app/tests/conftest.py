import pytest

from shared.database import LocalStore
from sync_app.src.batch_fetcher import BatchFetcher
from sync_app.src.errors import NotFound
from sync_app.src.intervals_client import IntervalsActivity


class DummyResp:
    def __init__(self, status_code=200, json_data=None, text="", headers=None, content=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.headers = headers or {}
        self.content = content if content is not None else text.encode()

    def json(self):
        if self._json is None:
            raise ValueError("Invalid JSON")
        return self._json


def activity(activity_id, day, type_="Run", name="Easy run", source="GARMIN_CONNECT", **extra):
    record = {
        "id": activity_id,
        "type": type_,
        "name": name,
        "start_date_local": f"{day}T07:00:00",
        "distance": 10000.0,
        "moving_time": 3000,
        "source": source,
    }
    record.update(extra)
    return record


class FakeClient:
    """Stands in for IntervalsClient; records every call."""

    def __init__(self, activities=None, wellness=None, events=None, intervals=None, missing=(), failing=()):
        self.activities = activities or []
        self.wellness = wellness or []
        self.events = events or []
        self.intervals = intervals or {}
        self.missing = set(missing)
        self.failing = dict(failing)
        self.list_calls = []
        self.interval_calls = []
        self.is_configured = True

    def list_activities(self, oldest, newest):
        self.list_calls.append(("activities", oldest, newest))
        return [IntervalsActivity.from_record(dict(a)) for a in self.activities]

    def list_wellness(self, oldest, newest):
        self.list_calls.append(("wellness", oldest, newest))
        return [dict(w) for w in self.wellness]

    def list_events(self, oldest, newest):
        self.list_calls.append(("events", oldest, newest))
        return [dict(e) for e in self.events]

    def get_activity_intervals(self, activity_id):
        self.interval_calls.append(activity_id)
        if activity_id in self.missing:
            raise NotFound(f"/activity/{activity_id}/intervals not found upstream", status_code=404)
        if activity_id in self.failing:
            raise self.failing[activity_id]
        return self.intervals.get(activity_id, {"id": activity_id, "icu_intervals": [{"type": "WORK"}]})

    def get_athlete(self):
        self.list_calls.append(("athlete",))
        return {"id": "i1", "name": "Runner"}

    def update_wellness(self, day, fields):
        return {**fields, "id": day}

    def test_connection(self):
        return True


@pytest.fixture
def store():
    return LocalStore(database_url="sqlite://")


@pytest.fixture
def fetcher():
    async def no_sleep(_):
        return None

    return BatchFetcher(batch_size=5, delay_seconds=0, sleep=no_sleep)
