"""
DataSynchronizer decides when to trust the local store and when to ask Intervals.icu.

Features:
- Database-first reads: a date range with any stored records is answered locally
- Incremental sync appends unknown ids only; full sync upserts everything by id
- Missing intervals are fetched in delayed batches; ids gone upstream are evicted
- Wellness days and scheduled events are replaced wholesale
- Each sync step writes a summary row into `data_sync_logs`
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.database import DataSyncLog, LocalStore, test_connection
from ..config.settings import settings
from .batch_fetcher import BatchFetcher
from .errors import AuthError, NetworkError, RateLimited, RemoteError
from .intervals_client import IntervalsActivity, IntervalsClient


@dataclass
class SyncResult:
    success: bool = True
    records: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    evicted: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "records": self.records,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "evicted": self.evicted,
            "errors": self.errors,
        }


class DataSynchronizer:
    """Coordinates the Intervals.icu client, the batch fetcher and the local store."""

    def __init__(
        self,
        store: Optional[LocalStore] = None,
        client: Optional[IntervalsClient] = None,
        fetcher: Optional[BatchFetcher] = None,
        list_retry_attempts: Optional[int] = None,
        retry_wait=None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.store = store or LocalStore(database_url=settings.database_url or None)
        self.client = client or IntervalsClient.from_store(self.store)
        self.fetcher = fetcher or BatchFetcher()
        self.list_retry_attempts = list_retry_attempts or settings.list_retry_attempts
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=settings.list_retry_max_wait_seconds)

    # ---------- Connection tests ----------
    def test_connection(self) -> Dict[str, bool]:
        results: Dict[str, bool] = {"intervals": False, "database": False}
        results["intervals"] = bool(self.client.is_configured and self.client.test_connection())
        results["database"] = test_connection(self.store.engine)
        return results

    # ---------- Merge policy ----------
    @staticmethod
    def merge_policy(existing_ids: Iterable[Any], fetched: Iterable[Dict[str, Any]], full: bool = False) -> List[Dict[str, Any]]:
        """Pick the fetched records to persist.

        Incremental: only ids absent locally, so enriched local records are
        never clobbered. Full: every fetched record, upserted by id.
        """
        fetched = list(fetched)
        if full:
            return fetched
        existing = {str(i) for i in existing_ids}
        return [r for r in fetched if str(r.get("id")) not in existing]

    def _persist(self, table: str, fetched: List[Dict[str, Any]], full: bool, result: SyncResult) -> None:
        existing = self.store.keys(table)
        to_persist = self.merge_policy(existing, fetched, full)
        created = sum(1 for r in to_persist if str(r.get("id")) not in existing)
        self.store.bulk_put(table, to_persist)
        result.records += len(to_persist)
        result.created += created
        result.updated += len(to_persist) - created
        result.skipped += len(fetched) - len(to_persist)

    def _list_with_retry(self, fn: Callable[..., Any], *args: Any) -> Any:
        """List endpoints are retried on transient errors, then the failure propagates."""
        retryer = Retrying(
            stop=stop_after_attempt(max(1, self.list_retry_attempts)),
            wait=self.retry_wait,
            retry=retry_if_exception_type((NetworkError, RateLimited)),
            reraise=True,
            before_sleep=lambda state: self.logger.warning(
                f"🔁 List request failed ({state.outcome.exception()}); retry {state.attempt_number}"
            ),
        )
        return retryer(fn, *args)

    # ---------- Activities ----------
    def _sync_activity_lists(self, oldest: str, newest: str, full: bool) -> Tuple[SyncResult, SyncResult]:
        """One list call feeds both the running and the cross-training table."""
        fetched: List[IntervalsActivity] = self._list_with_retry(self.client.list_activities, oldest, newest)
        kept = [a for a in fetched if not a.is_stub]
        if len(kept) != len(fetched):
            self.logger.info(f"📊 Fetched {len(fetched)} activities, filtered out {len(fetched) - len(kept)} STRAVA stubs")

        activities = SyncResult(skipped=len(fetched) - len(kept))
        cross = SyncResult()
        self._persist("activities", [a.to_record() for a in kept if not a.is_cross_training], full, activities)
        self._persist("crossTraining", [a.to_record() for a in kept if a.is_cross_training], full, cross)
        mode = "Full" if full else "Incremental"
        self.logger.info(
            f"✅ {mode} activity sync {oldest} → {newest}: "
            f"{activities.created} new, {activities.updated} updated, {cross.records} cross training"
        )
        return activities, cross

    def get_activities(self, oldest: str, newest: str, full: bool = False) -> List[IntervalsActivity]:
        """Database-first read of the activities in range.

        Any stored record in range answers the request; there is no TTL.
        ``full`` always re-lists the range from Intervals.icu.
        """
        if not full:
            cached = self.store.activities_in_range(oldest, newest)
            if cached:
                self.logger.info(f"📊 Loaded {len(cached)} activities from database")
                return [IntervalsActivity.from_record(r) for r in cached]
            if not self.client.is_configured:
                self.logger.warning("⚠️ No activities in database and Intervals.icu not configured")
                return []
        self._sync_activity_lists(oldest, newest, full)
        return [IntervalsActivity.from_record(r) for r in self.store.activities_in_range(oldest, newest)]

    def get_cross_training(self, oldest: str, newest: str, full: bool = False) -> List[IntervalsActivity]:
        if not full:
            cached = self.store.cross_training_in_range(oldest, newest)
            if cached:
                self.logger.info(f"✅ Loaded {len(cached)} cross training activities from database")
                return [IntervalsActivity.from_record(r) for r in cached]
            if not self.client.is_configured:
                return []
        self._sync_activity_lists(oldest, newest, full)
        return [IntervalsActivity.from_record(r) for r in self.store.cross_training_in_range(oldest, newest)]

    # ---------- Intervals ----------
    def _attach_intervals(
        self,
        activities: List[IntervalsActivity],
        force: bool = False,
        on_progress: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> Tuple[List[IntervalsActivity], SyncResult]:
        result = SyncResult()
        missing = [a for a in activities if force or not a.intervals]

        to_fetch: List[IntervalsActivity] = []
        for activity in missing:
            detail = None if force else self.store.get_activity_detail(activity.id)
            if detail and isinstance(detail.get("intervals"), dict):
                activity.intervals = list(detail["intervals"].get("icu_intervals") or [])
                continue
            to_fetch.append(activity)

        if not to_fetch:
            return activities, result

        by_id = {a.id: a for a in to_fetch}
        self.logger.info(f"📥 Fetching intervals for {len(by_id)} activities")
        batch = self.fetcher.run_blocking(
            list(by_id),
            self.client.get_activity_intervals,
            fatal=(AuthError,),
            on_progress=on_progress,
        )

        for activity_id, payload in batch.succeeded.items():
            activity = by_id[activity_id]
            payload = payload or {}
            activity.intervals = list(payload.get("icu_intervals") or [])
            self.store.put_activity_detail(activity_id, {"intervals": payload})
            table = "crossTraining" if activity.is_cross_training else "activities"
            self.store.put(table, activity.to_record())
            result.records += 1

        evicted = set()
        for failure in batch.failed:
            if failure.not_found:
                # remote is the source of truth for existence
                self.store.evict_activity(failure.item_id)
                evicted.add(failure.item_id)
            else:
                result.failed += 1
                result.errors.append(f"{failure.item_id}: {failure.reason}")
        result.evicted = len(evicted)
        return [a for a in activities if a.id not in evicted], result

    def attach_missing_intervals(self, activities: List[IntervalsActivity], force: bool = False) -> List[IntervalsActivity]:
        """Attach intervals to every activity lacking them.

        Stored details are used first; the rest are fetched in batches.
        Activities that 404 are evicted and dropped from the returned list;
        other per-item failures are logged and the activity is returned
        without intervals.
        """
        attached, _ = self._attach_intervals(list(activities), force=force)
        return attached

    def sync_all_details(self, on_progress: Optional[Callable[[Dict[str, Any]], None]] = None) -> Dict[str, Any]:
        """Fetch intervals for every stored activity without a detail row."""
        have_details = self.store.keys("activityDetails")
        missing = [
            IntervalsActivity.from_record(r)
            for r in self.store.all("activities")
            if r.get("source") != "STRAVA" and str(r.get("id")) not in have_details
        ]
        self.logger.info(f"📊 Need to fetch {len(missing)} activity details")
        _, result = self._attach_intervals(missing, force=True, on_progress=on_progress)
        return result.to_dict()

    def clean_stub_activities(self) -> Dict[str, int]:
        """Remove STRAVA stub activities the API cannot serve, with their details."""
        stub_ids = self.store.stub_activity_ids()
        removed = self.store.delete("activities", stub_ids)
        details_removed = self.store.delete("activityDetails", stub_ids)
        self.logger.info(f"🧹 Removed {removed} STRAVA stubs ({details_removed} details)")
        return {"removed": removed, "details_removed": details_removed}

    # ---------- Wellness ----------
    def sync_wellness(self, oldest: str, newest: str, force_refresh: bool = False) -> List[Dict[str, Any]]:
        """Daily wellness series; each day is upserted wholesale by date."""
        if not force_refresh:
            cached = self.store.wellness_in_range(oldest, newest)
            if cached:
                self.logger.info(f"📊 Loaded {len(cached)} wellness records from database")
                return cached
            if not self.client.is_configured:
                self.logger.warning("⚠️ No wellness data in database and Intervals.icu not configured")
                return []
        records = self._list_with_retry(self.client.list_wellness, oldest, newest)
        records = [r for r in records if r.get("id")]
        self.store.bulk_put("wellness", records)
        self.logger.info(f"✅ Stored {len(records)} wellness days {oldest} → {newest}")
        return self.store.wellness_in_range(oldest, newest)

    def update_wellness(self, day: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        record = self.client.update_wellness(day, fields)
        if not record or not record.get("id"):
            record = {**fields, "id": day}
        self.store.put("wellness", record)
        return record

    # ---------- Events ----------
    def sync_events(self, oldest: str, newest: str) -> List[Dict[str, Any]]:
        """Scheduled events in range are replaced by what Intervals.icu has now."""
        events = self._list_with_retry(self.client.list_events, oldest, newest)
        self.store.delete_events_in_range(oldest, newest)
        self.store.bulk_put("events", [e for e in events if e.get("id") is not None])
        return self.store.events_in_range(oldest, newest)

    def next_planned_workout(self, today: Optional[date] = None) -> Optional[Dict[str, Any]]:
        today = today or date.today()
        events = self.store.events_in_range(today.isoformat(), (today + timedelta(days=7)).isoformat())
        workouts = [e for e in events if e.get("category") in (None, "WORKOUT") or e.get("type") == "WORKOUT"]
        workouts.sort(key=lambda e: e.get("start_date_local") or e.get("date") or "")
        return workouts[0] if workouts else None

    # ---------- Athlete ----------
    def get_athlete(self) -> Dict[str, Any]:
        cached = self.store.get_cached("intervals_athlete")
        if cached is not None:
            return cached
        info = self.client.get_athlete()
        self.store.set_cached("intervals_athlete", info, ttl_seconds=settings.athlete_cache_ttl_seconds)
        return info

    # ---------- Public sync orchestration ----------
    def sync_recent(self, days_back: Optional[int] = None, full: bool = False) -> Dict[str, Dict[str, Any]]:
        if days_back is None:
            days_back = settings.sync_lookback_days
        end_date = date.today()
        start_date = end_date - timedelta(days=days_back)
        return self.sync_all(start_date.isoformat(), end_date.isoformat(), full=full)

    def sync_all(self, oldest: str, newest: str, full: bool = False) -> Dict[str, Dict[str, Any]]:
        """Activities, cross training, intervals, wellness and events for a range.

        Per-item failures are reported in the step results. Remote failures
        on a list endpoint, and AuthError anywhere, abort the call.
        """
        self.logger.info(f"🔄 Starting {'full' if full else 'incremental'} sync {oldest} → {newest}")
        data_range = {"start": oldest, "end": newest, "full": full}
        results: Dict[str, Dict[str, Any]] = {}

        activities, cross = self._run_step(
            "activities", data_range, lambda: self._sync_activity_lists(oldest, newest, full)
        )
        results["activities"] = activities.to_dict()
        results["cross_training"] = cross.to_dict()

        stored = [IntervalsActivity.from_record(r) for r in self.store.activities_in_range(oldest, newest)]
        _, intervals = self._run_step("intervals", data_range, lambda: self._attach_intervals(stored))
        results["intervals"] = intervals.to_dict()

        wellness = self._run_step(
            "wellness", data_range,
            lambda: SyncResult(records=len(self.sync_wellness(oldest, newest, force_refresh=True))),
        )
        results["wellness"] = wellness.to_dict()

        events = self._run_step(
            "events", data_range, lambda: SyncResult(records=len(self.sync_events(oldest, newest)))
        )
        results["events"] = events.to_dict()
        return results

    def _run_step(self, sync_type: str, data_range: Dict[str, Any], step: Callable[[], Any]) -> Any:
        started = datetime.utcnow()
        try:
            outcome = step()
        except RemoteError as e:
            self.logger.error(f"❌ {sync_type} sync failed: {e}")
            self._write_log(sync_type, started, "error", SyncResult(success=False), data_range, message=str(e))
            raise
        results = outcome if isinstance(outcome, tuple) else (outcome,)
        summary = next((r for r in results if isinstance(r, SyncResult)), SyncResult())
        status = "partial" if summary.failed else "success"
        self._write_log(sync_type, started, status, summary, data_range)
        return outcome

    # ---------- Status ----------
    def get_sync_status(self) -> Dict[str, Any]:
        with self.store.session() as db:
            latest: Dict[str, Optional[DataSyncLog]] = {}
            for sync_type in ("activities", "intervals", "wellness", "events"):
                latest[sync_type] = (
                    db.query(DataSyncLog)
                    .filter(DataSyncLog.sync_type == sync_type)
                    .order_by(DataSyncLog.created_at.desc())
                    .first()
                )
            last_sync = {k: (v.completed_at.isoformat() if v and v.completed_at else None) for k, v in latest.items()}
            last_status = {k: (v.status if v else "unknown") for k, v in latest.items()}

        wellness_ids = sorted(self.store.keys("wellness"))
        return {
            "last_sync": last_sync,
            "last_status": last_status,
            "data_freshness": {
                "latest_activity_date": self.store.latest_activity_date(),
                "latest_wellness_date": wellness_ids[-1] if wellness_ids else None,
            },
            "last_import_timestamp": self.store.get_config("last_import_timestamp"),
            "records": self.store.stats(),
        }

    # ---------- Helpers ----------
    def _write_log(
        self,
        sync_type: str,
        start: datetime,
        status: str,
        result: SyncResult,
        data_range: Optional[Dict[str, Any]] = None,
        message: Optional[str] = None,
    ) -> None:
        now = datetime.utcnow()
        with self.store.session() as db:
            db.add(DataSyncLog(
                sync_type=sync_type,
                sync_date=date.today(),
                status=status,
                records_processed=result.records,
                records_updated=result.updated,
                records_created=result.created,
                records_failed=result.failed,
                records_evicted=result.evicted,
                started_at=start,
                completed_at=now,
                duration_seconds=(now - start).total_seconds(),
                message=message,
                error_details=result.errors or None,
                data_range=data_range or {},
                version=settings.version,
            ))
            db.commit()
