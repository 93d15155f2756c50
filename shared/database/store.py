"""
LocalStore: table-level access to the local replica.

Records go in and come out as plain dicts (the upstream JSON shape). Each
table is addressed by its snapshot name (``activities``, ``activityDetails``,
...). Writes to one table are serialized by a per-table lock and a
multi-record upsert is committed in a single transaction, so readers see
either none or all of it.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .connection import build_engine, create_all_tables, get_db_session
from .models import (
    Activities,
    ActivityDetails,
    Analyses,
    CacheEntries,
    ConfigEntries,
    CrossTraining,
    NutritionTracking,
    ScheduledEvents,
    WellnessDays,
)


logger = logging.getLogger(__name__)


class StoreWriteError(Exception):
    """A write to one table failed; the transaction was rolled back."""

    def __init__(self, table: str, message: str) -> None:
        super().__init__(f"{table}: {message}")
        self.table = table


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _activity_columns(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "start_date_local": record.get("start_date_local"),
        "type": record.get("type"),
        "name": record.get("name"),
        "source": record.get("source"),
        "distance": record.get("distance"),
        "moving_time": record.get("moving_time"),
        "training_load": record.get("icu_training_load"),
    }


def _cross_training_columns(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "start_date_local": record.get("start_date_local"),
        "type": record.get("type"),
        "name": record.get("name"),
    }


def _analysis_columns(record: Dict[str, Any]) -> Dict[str, Any]:
    metadata = record.get("metadata") or {}
    return {"date": record.get("date") or metadata.get("date")}


def _event_columns(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "start_date_local": record.get("start_date_local"),
        "category": record.get("category"),
    }


@dataclass(frozen=True)
class TableSpec:
    name: str
    model: type
    key_field: str
    columns: Callable[[Dict[str, Any]], Dict[str, Any]] = lambda record: {}

    @property
    def key_column(self):
        return list(self.model.__table__.primary_key.columns)[0].key

    def key_of(self, record: Dict[str, Any]) -> str:
        value = record.get(self.key_field)
        if value is None or value == "":
            raise StoreWriteError(self.name, f"record without '{self.key_field}'")
        return str(value)


# Snapshot-exportable record tables; config and cache are never exported
TABLES: Dict[str, TableSpec] = {
    "activities": TableSpec("activities", Activities, "id", _activity_columns),
    "activityDetails": TableSpec(
        "activityDetails", ActivityDetails, "id", lambda r: {"fetched_at": r.get("fetchedAt")}
    ),
    "wellness": TableSpec("wellness", WellnessDays, "id"),
    "analyses": TableSpec("analyses", Analyses, "activityId", _analysis_columns),
    "crossTraining": TableSpec("crossTraining", CrossTraining, "id", _cross_training_columns),
    "events": TableSpec("events", ScheduledEvents, "id", _event_columns),
    "nutritionTracking": TableSpec("nutritionTracking", NutritionTracking, "date"),
}

EXPORTABLE_TABLES = tuple(TABLES)


def _end_of_day(newest: str) -> str:
    # "2026-02-17" must include "2026-02-17T05:43:06"
    return newest if "T" in newest else f"{newest}T23:59:59"


class LocalStore:
    """Durable, independently-addressable record tables backed by SQLAlchemy."""

    def __init__(self, engine: Optional[Engine] = None, database_url: Optional[str] = None) -> None:
        self.engine = engine or build_engine(database_url)
        create_all_tables(self.engine)
        self._locks: Dict[str, threading.Lock] = {name: threading.Lock() for name in TABLES}
        self._locks["config"] = threading.Lock()
        self._locks["cache"] = threading.Lock()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        with get_db_session(self.engine) as db:
            yield db

    def _spec(self, table: str) -> TableSpec:
        try:
            return TABLES[table]
        except KeyError:
            raise KeyError(f"Unknown table '{table}'") from None

    # ---------- Generic table access ----------
    def all(self, table: str) -> List[Dict[str, Any]]:
        spec = self._spec(table)
        with self.session() as db:
            rows = db.query(spec.model).order_by(getattr(spec.model, spec.key_column)).all()
            return [row.data for row in rows]

    def count(self, table: str) -> int:
        spec = self._spec(table)
        with self.session() as db:
            return db.query(spec.model).count()

    def get(self, table: str, key: Any) -> Optional[Dict[str, Any]]:
        spec = self._spec(table)
        with self.session() as db:
            row = db.get(spec.model, str(key))
            return row.data if row is not None else None

    def keys(self, table: str) -> set:
        spec = self._spec(table)
        column = getattr(spec.model, spec.key_column)
        with self.session() as db:
            return {k for (k,) in db.query(column).all()}

    def _upsert(self, db: Session, spec: TableSpec, records: Iterable[Dict[str, Any]]) -> int:
        # last record wins when a batch repeats a key
        by_key = {spec.key_of(record): record for record in records}
        written = 0
        for key, record in by_key.items():
            row = db.get(spec.model, key)
            if row is None:
                row = spec.model(**{spec.key_column: key})
                db.add(row)
            for column, value in spec.columns(record).items():
                setattr(row, column, value)
            row.data = dict(record)
            written += 1
        return written

    def bulk_put(self, table: str, records: Iterable[Dict[str, Any]]) -> int:
        """Upsert records by key; all-or-none."""
        spec = self._spec(table)
        records = list(records)
        if not records:
            return 0
        with self._locks[table], self.session() as db:
            try:
                written = self._upsert(db, spec, records)
                db.commit()
            except StoreWriteError:
                db.rollback()
                raise
            except Exception as e:
                db.rollback()
                raise StoreWriteError(table, str(e)) from e
        return written

    def put(self, table: str, record: Dict[str, Any]) -> None:
        self.bulk_put(table, [record])

    def delete(self, table: str, keys: Iterable[Any]) -> int:
        spec = self._spec(table)
        keys = [str(k) for k in keys]
        if not keys:
            return 0
        column = getattr(spec.model, spec.key_column)
        with self._locks[table], self.session() as db:
            removed = db.query(spec.model).filter(column.in_(keys)).delete(synchronize_session=False)
            db.commit()
        return removed

    def clear(self, table: str) -> int:
        spec = self._spec(table)
        with self._locks[table], self.session() as db:
            removed = db.query(spec.model).delete(synchronize_session=False)
            db.commit()
        return removed

    def replace_tables(self, payload: Dict[str, List[Dict[str, Any]]], clear_existing: bool = False) -> Dict[str, int]:
        """Write several tables in one transaction.

        With ``clear_existing`` every table named in ``payload`` is emptied
        first. Any failure rolls back every table and raises StoreWriteError
        naming the table that failed.
        """
        specs = [self._spec(name) for name in payload]
        counts: Dict[str, int] = {}
        with ExitStack() as stack:
            for spec in sorted(specs, key=lambda s: s.name):
                stack.enter_context(self._locks[spec.name])
            db = stack.enter_context(self.session())
            current = None
            try:
                for spec in specs:
                    current = spec.name
                    if clear_existing:
                        db.query(spec.model).delete(synchronize_session=False)
                    counts[spec.name] = self._upsert(db, spec, payload[spec.name])
                    db.flush()
                db.commit()
                logger.info(f"💾 Replaced {len(counts)} tables (clear_existing={clear_existing})")
            except StoreWriteError:
                db.rollback()
                raise
            except Exception as e:
                db.rollback()
                logger.error(f"❌ Multi-table write failed on {current}: {e}")
                raise StoreWriteError(current or "unknown", str(e)) from e
        return counts

    def stats(self) -> Dict[str, int]:
        counts = {name: self.count(name) for name in TABLES}
        with self.session() as db:
            counts["cache"] = db.query(CacheEntries).count()
        return counts

    def is_empty(self) -> bool:
        return self.count("activities") == 0 and self.count("activityDetails") == 0

    # ---------- Activities ----------
    def activities_in_range(self, oldest: str, newest: str) -> List[Dict[str, Any]]:
        return self._range(Activities, oldest, _end_of_day(newest))

    def cross_training_in_range(self, oldest: str, newest: str) -> List[Dict[str, Any]]:
        return self._range(CrossTraining, oldest, _end_of_day(newest))

    def events_in_range(self, oldest: str, newest: str) -> List[Dict[str, Any]]:
        return self._range(ScheduledEvents, oldest, _end_of_day(newest))

    def _range(self, model, oldest: str, newest: str) -> List[Dict[str, Any]]:
        with self.session() as db:
            rows = (
                db.query(model)
                .filter(model.start_date_local >= oldest, model.start_date_local <= newest)
                .order_by(model.start_date_local.asc())
                .all()
            )
            return [row.data for row in rows]

    def latest_activity_date(self) -> Optional[str]:
        with self.session() as db:
            latest = db.query(Activities).order_by(Activities.start_date_local.desc()).first()
            if latest is None or not latest.start_date_local:
                return None
            return latest.start_date_local.split("T")[0]

    def stub_activity_ids(self, source: str = "STRAVA") -> List[str]:
        with self.session() as db:
            return [k for (k,) in db.query(Activities.id).filter(Activities.source == source).all()]

    def put_activity_detail(self, activity_id: Any, details: Dict[str, Any]) -> Dict[str, Any]:
        record = {**details, "id": activity_id, "fetchedAt": _utc_now_iso()}
        self.put("activityDetails", record)
        return record

    def get_activity_detail(self, activity_id: Any) -> Optional[Dict[str, Any]]:
        return self.get("activityDetails", activity_id)

    def evict_activity(self, activity_id: Any) -> None:
        """Remove an activity everywhere it may live (remote no longer has it)."""
        for table in ("activities", "crossTraining", "activityDetails"):
            self.delete(table, [activity_id])
        logger.info(f"🗑️ Evicted activity {activity_id} from local store")

    # ---------- Wellness / events / nutrition ----------
    def wellness_in_range(self, oldest: str, newest: str) -> List[Dict[str, Any]]:
        with self.session() as db:
            rows = (
                db.query(WellnessDays)
                .filter(WellnessDays.id >= oldest, WellnessDays.id <= newest)
                .order_by(WellnessDays.id.asc())
                .all()
            )
            return [row.data for row in rows]

    def delete_events_in_range(self, oldest: str, newest: str) -> int:
        ids = [e.get("id") for e in self.events_in_range(oldest, newest)]
        return self.delete("events", ids)

    def nutrition_in_range(self, oldest: str, newest: str) -> List[Dict[str, Any]]:
        with self.session() as db:
            rows = (
                db.query(NutritionTracking)
                .filter(NutritionTracking.date >= oldest, NutritionTracking.date <= newest)
                .order_by(NutritionTracking.date.asc())
                .all()
            )
            return [row.data for row in rows]

    # ---------- Analyses ----------
    def put_analysis(self, analysis: Dict[str, Any]) -> None:
        metadata = analysis.get("metadata") or {}
        record = {"activityId": metadata.get("activityId"), "date": metadata.get("date"), **analysis}
        self.put("analyses", record)

    def all_analyses(self) -> List[Dict[str, Any]]:
        # newest first
        return sorted(self.all("analyses"), key=lambda a: a.get("date") or "", reverse=True)

    def analyses_by_date_range(self, oldest: str, newest: str) -> List[Dict[str, Any]]:
        with self.session() as db:
            rows = (
                db.query(Analyses)
                .filter(Analyses.date >= oldest, Analyses.date <= newest)
                .order_by(Analyses.date.asc())
                .all()
            )
            return [row.data for row in rows]

    # ---------- Config ----------
    def get_config(self, key: str, default: Any = None) -> Any:
        with self.session() as db:
            row = db.get(ConfigEntries, key)
            return row.value if row is not None else default

    def set_config(self, key: str, value: Any) -> None:
        with self._locks["config"], self.session() as db:
            row = db.get(ConfigEntries, key)
            if row is None:
                row = ConfigEntries(key=key)
                db.add(row)
            row.value = value
            row.updated_at = _utc_now_iso()
            db.commit()

    def delete_config(self, key: str) -> None:
        with self._locks["config"], self.session() as db:
            db.query(ConfigEntries).filter(ConfigEntries.key == key).delete()
            db.commit()

    # ---------- Cache ----------
    def get_cached(self, key: str) -> Any:
        with self._locks["cache"], self.session() as db:
            row = db.get(CacheEntries, key)
            if row is None:
                return None
            if time.time() - row.timestamp > row.ttl:
                db.delete(row)
                db.commit()
                return None
            return row.data

    def set_cached(self, key: str, data: Any, ttl_seconds: float = 300) -> None:
        with self._locks["cache"], self.session() as db:
            row = db.get(CacheEntries, key)
            if row is None:
                row = CacheEntries(key=key)
                db.add(row)
            row.data = data
            row.timestamp = time.time()
            row.ttl = ttl_seconds
            db.commit()

    def clear_cache(self) -> int:
        with self._locks["cache"], self.session() as db:
            removed = db.query(CacheEntries).delete()
            db.commit()
        return removed
