"""
Intervals.icu API client for the Marathon Tracker sync engine

A stateless translator between wire calls and typed results: no caching,
batching or retrying happens here. Every failure surfaces as one of the
errors in ``errors.py``.
"""

import base64
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Any, Optional, List

import requests

from ..config.settings import settings
from .errors import AuthError, NetworkError, NotFound, RateLimited, RemoteError


class ActivityType(str, Enum):
    RUN = "run"
    RIDE = "ride"
    VIRTUAL_RIDE = "virtual_ride"
    WEIGHT_TRAINING = "weight_training"
    OTHER = "other"
    UNKNOWN = "unknown"

    @classmethod
    def from_api(cls, value: Optional[str]) -> "ActivityType":
        if not value:
            return cls.UNKNOWN
        return _API_TYPES.get(value, cls.OTHER)


_API_TYPES = {
    "Run": ActivityType.RUN,
    "TrailRun": ActivityType.RUN,
    "VirtualRun": ActivityType.RUN,
    "Ride": ActivityType.RIDE,
    "GravelRide": ActivityType.RIDE,
    "MountainBikeRide": ActivityType.RIDE,
    "VirtualRide": ActivityType.VIRTUAL_RIDE,
    "WeightTraining": ActivityType.WEIGHT_TRAINING,
}

STRENGTH_KEYWORDS = ("strength", "gym", "weights", "musculação")


@dataclass
class IntervalsActivity:
    id: str
    type: ActivityType
    name: str = ""
    start_date_local: Optional[str] = None
    distance: Optional[float] = None  # meters
    moving_time: Optional[float] = None  # seconds
    average_speed: Optional[float] = None  # m/s
    average_heartrate: Optional[float] = None
    average_watts: Optional[float] = None
    training_load: Optional[float] = None
    source: Optional[str] = None
    intervals: List[Dict[str, Any]] = field(default_factory=list)
    raw_data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "IntervalsActivity":
        return cls(
            id=str(data["id"]),
            type=ActivityType.from_api(data.get("type")),
            name=data.get("name") or "",
            start_date_local=data.get("start_date_local"),
            distance=data.get("distance"),
            moving_time=data.get("moving_time"),
            average_speed=data.get("average_speed"),
            average_heartrate=data.get("average_heartrate"),
            average_watts=data.get("icu_average_watts", data.get("average_watts")),
            training_load=data.get("icu_training_load"),
            source=data.get("source"),
            intervals=list(data.get("intervals") or []),
            raw_data=data,
        )

    @property
    def is_stub(self) -> bool:
        # Strava-sourced activities are stubs the API will not serve in full
        return self.source == "STRAVA"

    @property
    def is_running(self) -> bool:
        return self.type == ActivityType.RUN

    @property
    def is_cross_training(self) -> bool:
        if self.type in (ActivityType.RIDE, ActivityType.VIRTUAL_RIDE, ActivityType.WEIGHT_TRAINING):
            return True
        if self.type == ActivityType.OTHER and self.raw_data.get("type") == "Other":
            name = self.name.lower()
            return any(k in name for k in STRENGTH_KEYWORDS)
        return False

    def to_record(self) -> Dict[str, Any]:
        record = dict(self.raw_data)
        record["id"] = self.raw_data.get("id", self.id)
        if self.intervals:
            record["intervals"] = self.intervals
        return record


def _as_date(value) -> str:
    return value.isoformat() if isinstance(value, date) else str(value)


class IntervalsClient:
    # resource -> (path template, is_list)
    RESOURCES = {
        "activities": ("/athlete/{athlete_id}/activities", True),
        "wellness": ("/athlete/{athlete_id}/wellness", True),
        "events": ("/athlete/{athlete_id}/events", True),
        "activity": ("/activity/{item_id}", False),
        "intervals": ("/activity/{item_id}/intervals", False),
        "athlete": ("/athlete/{athlete_id}", False),
    }

    def __init__(
        self,
        api_key: Optional[str],
        athlete_id: Optional[str],
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.api_key = api_key or ""
        self.athlete_id = athlete_id or ""
        self.base_url = (base_url or settings.intervals_api_base_url).rstrip("/")
        self.timeout = timeout or settings.request_timeout_seconds

    @classmethod
    def from_store(cls, store) -> "IntervalsClient":
        """Credentials live in the config table; settings are only a fallback."""
        return cls(
            api_key=store.get_config("intervals_api_key") or settings.intervals_api_key,
            athlete_id=store.get_config("intervals_athlete_id") or settings.intervals_athlete_id,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.athlete_id)

    def _headers(self) -> Dict[str, str]:
        if not self.is_configured:
            raise AuthError("Intervals.icu API key or athlete id not configured")
        token = base64.b64encode(f"API_KEY:{self.api_key}".encode()).decode()
        return {"Authorization": f"Basic {token}", "Accept": "application/json"}

    def _make_request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        resource: Optional[str] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        headers = self._headers()
        try:
            r = requests.request(method, url, headers=headers, params=params, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Intervals.icu {method} {path} timed out", resource=resource) from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Intervals.icu {method} {path} failed: {e.__class__.__name__}", resource=resource) from e

        if r.status_code in (401, 403):
            raise AuthError(f"Intervals.icu rejected credentials ({r.status_code})", status_code=r.status_code, resource=resource)
        if r.status_code == 404:
            raise NotFound(f"{path} not found upstream", status_code=404, resource=resource)
        if r.status_code == 429:
            retry_after = r.headers.get("Retry-After")
            raise RateLimited(
                f"Intervals.icu rate limit hit on {path}",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                status_code=429,
                resource=resource,
            )
        if r.status_code >= 400:
            raise NetworkError(f"Intervals.icu {r.status_code} on {path}", status_code=r.status_code, resource=resource)
        try:
            return r.json()
        except ValueError as e:
            raise NetworkError(f"Intervals.icu returned non-JSON body for {path}", status_code=r.status_code, resource=resource) from e

    def _path(self, resource: str, item_id: Any = None) -> str:
        try:
            template, _ = self.RESOURCES[resource]
        except KeyError:
            raise ValueError(f"Unknown Intervals.icu resource '{resource}'") from None
        return template.format(athlete_id=self.athlete_id, item_id=item_id)

    # ---------- Generic contract ----------
    def list_resources(self, resource: str, oldest, newest) -> List[Dict[str, Any]]:
        if not self.RESOURCES.get(resource, (None, False))[1]:
            raise ValueError(f"'{resource}' is not a list resource")
        params = {"oldest": _as_date(oldest), "newest": _as_date(newest)}
        data = self._make_request("GET", self._path(resource), params=params, resource=resource)
        if data is None:
            return []
        if not isinstance(data, list):
            raise RemoteError(f"Expected a list from {resource}, got {type(data).__name__}", resource=resource)
        return data

    def fetch_one(self, resource: str, item_id: Any = None) -> Dict[str, Any]:
        if self.RESOURCES.get(resource, (None, True))[1]:
            raise ValueError(f"'{resource}' is not a single-item resource")
        return self._make_request("GET", self._path(resource, item_id), resource=resource)

    # ---------- Convenience wrappers ----------
    def list_activities(self, oldest, newest) -> List[IntervalsActivity]:
        results: List[IntervalsActivity] = []
        for item in self.list_resources("activities", oldest, newest):
            try:
                results.append(IntervalsActivity.from_record(item))
            except (KeyError, TypeError) as e:
                self.logger.warning(f"⚠️ Skipping unparseable activity: {e}")
        return results

    def list_wellness(self, oldest, newest) -> List[Dict[str, Any]]:
        return self.list_resources("wellness", oldest, newest)

    def list_events(self, oldest, newest) -> List[Dict[str, Any]]:
        return self.list_resources("events", oldest, newest)

    def get_activity(self, activity_id: Any) -> Dict[str, Any]:
        return self.fetch_one("activity", activity_id)

    def get_activity_intervals(self, activity_id: Any) -> Dict[str, Any]:
        return self.fetch_one("intervals", activity_id)

    def get_athlete(self) -> Dict[str, Any]:
        return self.fetch_one("athlete")

    def update_wellness(self, day, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Replace one wellness day upstream; returns the stored record."""
        path = f"{self._path('wellness')}/{_as_date(day)}"
        body = {**fields, "id": _as_date(day)}
        return self._make_request("PUT", path, payload=body, resource="wellness")

    def test_connection(self) -> bool:
        try:
            info = self.get_athlete()
            self.logger.info(f"✅ Connected to Intervals.icu as {info.get('name', 'Unknown')}")
            return True
        except RemoteError as e:
            self.logger.error(f"❌ Intervals.icu connection test failed: {e}")
            return False
