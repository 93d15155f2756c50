"""
FastAPI server for Marathon Tracker Sync App
Provides API endpoints for sync control, cached data and snapshot exchange
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional, Dict, Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shared.database import test_connection
from sync_app.config.settings import settings
from .data_synchronizer import DataSynchronizer
from .errors import AuthError, CorruptSnapshot, RemoteError, SnapshotError
from .intervals_client import IntervalsActivity
from .snapshot_codec import compress, decompress, export_snapshot, import_snapshot


# Pydantic models for API responses
class ActivityResponse(BaseModel):
    id: str
    name: str
    type: str
    start_date_local: Optional[str] = None
    distance: Optional[float] = None  # meters
    moving_time: Optional[float] = None  # seconds
    average_speed: Optional[float] = None  # m/s
    average_heartrate: Optional[float] = None
    average_watts: Optional[float] = None
    training_load: Optional[float] = None
    source: Optional[str] = None
    interval_count: int = 0

    @classmethod
    def from_activity(cls, activity: IntervalsActivity) -> "ActivityResponse":
        return cls(
            id=activity.id,
            name=activity.name,
            type=activity.type.value,
            start_date_local=activity.start_date_local,
            distance=activity.distance,
            moving_time=activity.moving_time,
            average_speed=activity.average_speed,
            average_heartrate=activity.average_heartrate,
            average_watts=activity.average_watts,
            training_load=activity.training_load,
            source=activity.source,
            interval_count=len(activity.intervals),
        )


class WellnessResponse(BaseModel):
    date: str
    ctl: Optional[float] = None
    atl: Optional[float] = None
    form: Optional[float] = None  # ctl - atl
    resting_hr: Optional[float] = None
    hrv: Optional[float] = None
    weight: Optional[float] = None


class SyncStatusResponse(BaseModel):
    last_sync: Dict[str, Optional[str]]
    data_freshness: Dict[str, Optional[str]]
    last_status: Dict[str, str]
    last_import_timestamp: Optional[str] = None
    records: Dict[str, int]


# FastAPI app
app = FastAPI(
    title="Marathon Tracker Sync API",
    description="Local-first replica of Intervals.icu training data",
    version=settings.version,
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger = logging.getLogger(__name__)

_synchronizer: Optional[DataSynchronizer] = None


def get_synchronizer() -> DataSynchronizer:
    global _synchronizer
    if _synchronizer is None:
        _synchronizer = DataSynchronizer()
    return _synchronizer


def _default_range(oldest: Optional[date], newest: Optional[date]) -> tuple:
    newest = newest or date.today()
    oldest = oldest or newest - timedelta(days=settings.sync_lookback_days)
    return oldest.isoformat(), newest.isoformat()


def _remote_failure(e: RemoteError) -> HTTPException:
    if isinstance(e, AuthError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Intervals.icu request failed: {e}")


@app.get("/", response_model=Dict[str, str])
async def root():
    """Root endpoint with API information"""
    return {
        "service": "Marathon Tracker Sync API",
        "version": settings.version,
        "status": "running",
        "description": "Local-first replica of Intervals.icu training data"
    }


@app.get("/health", response_model=Dict[str, str])
async def health_check(synchronizer: DataSynchronizer = Depends(get_synchronizer)):
    """Health check endpoint"""
    if not test_connection(synchronizer.store.engine):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Health check failed: database unavailable"
        )
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "database": "connected"
    }


@app.get("/sync/status", response_model=SyncStatusResponse)
async def sync_status(synchronizer: DataSynchronizer = Depends(get_synchronizer)):
    """Get current synchronization status"""
    return SyncStatusResponse(**synchronizer.get_sync_status())


# Sync handlers are plain functions: the batch fetcher runs its own event loop
@app.post("/sync/trigger")
def trigger_sync(
    days_back: Optional[int] = Query(None, description="Days back to sync"),
    full: bool = Query(False, description="Re-fetch and upsert every record in range"),
    synchronizer: DataSynchronizer = Depends(get_synchronizer),
):
    """Trigger manual data synchronization"""
    if days_back is None:
        days_back = settings.sync_lookback_days
    logger.info(f"Manual sync triggered for {days_back} days back (full={full})")
    try:
        results = synchronizer.sync_recent(days_back, full=full)
    except RemoteError as e:
        raise _remote_failure(e)
    return {
        "message": "Sync completed",
        "results": results,
        "timestamp": datetime.now().isoformat()
    }


@app.get("/activities", response_model=List[ActivityResponse])
def get_activities(
    oldest: Optional[date] = Query(None, description="Start date (YYYY-MM-DD)"),
    newest: Optional[date] = Query(None, description="End date (YYYY-MM-DD)"),
    full: bool = Query(False, description="Bypass the local store"),
    intervals: bool = Query(False, description="Attach missing intervals"),
    synchronizer: DataSynchronizer = Depends(get_synchronizer),
):
    """Activities in range, served from the local store when it has any"""
    start, end = _default_range(oldest, newest)
    try:
        activities = synchronizer.get_activities(start, end, full=full)
        if intervals:
            activities = synchronizer.attach_missing_intervals(activities)
    except RemoteError as e:
        raise _remote_failure(e)
    return [ActivityResponse.from_activity(a) for a in activities]


@app.get("/wellness", response_model=List[WellnessResponse])
def get_wellness(
    oldest: Optional[date] = Query(None, description="Start date (YYYY-MM-DD)"),
    newest: Optional[date] = Query(None, description="End date (YYYY-MM-DD)"),
    force: bool = Query(False, description="Refetch from Intervals.icu"),
    synchronizer: DataSynchronizer = Depends(get_synchronizer),
):
    start, end = _default_range(oldest, newest)
    try:
        records = synchronizer.sync_wellness(start, end, force_refresh=force)
    except RemoteError as e:
        raise _remote_failure(e)

    results = []
    for r in records:
        ctl, atl = r.get("ctl"), r.get("atl")
        results.append(WellnessResponse(
            date=r["id"],
            ctl=ctl,
            atl=atl,
            form=ctl - atl if ctl is not None and atl is not None else None,
            resting_hr=r.get("restingHR"),
            hrv=r.get("hrv"),
            weight=r.get("weight"),
        ))
    return results


@app.get("/export")
def export_database(
    compressed: bool = Query(True, description="gzip the snapshot"),
    synchronizer: DataSynchronizer = Depends(get_synchronizer),
):
    """Download the whole local store as a snapshot"""
    snapshot = export_snapshot(synchronizer.store)
    if not compressed:
        return JSONResponse(content=snapshot)
    packed = compress(snapshot)
    return Response(
        content=packed.payload,
        media_type="application/gzip",
        headers={
            "Content-Disposition": f'attachment; filename="{settings.snapshot_filename}.gz"',
            "X-Uncompressed-Size": str(packed.raw_size),
        },
    )


def _import_body(synchronizer: DataSynchronizer, body: bytes, clear: bool) -> Dict[str, Any]:
    try:
        document = decompress(body)
        counts = import_snapshot(synchronizer.store, document, clear_existing=clear)
    except CorruptSnapshot as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except SnapshotError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    synchronizer.store.set_config("last_import_timestamp", document.get("timestamp"))
    return {"message": "Import completed", "imported": counts}


@app.post("/import")
async def import_database(
    request: Request,
    clear: bool = Query(False, description="Empty the imported tables first"),
    synchronizer: DataSynchronizer = Depends(get_synchronizer),
):
    """Import a snapshot (JSON or gzip body); all-or-nothing"""
    body = await request.body()
    return await run_in_threadpool(_import_body, synchronizer, body, clear)


# Error handlers
@app.exception_handler(404)
async def not_found_handler(request, exc):
    detail = getattr(exc, "detail", None) or "Endpoint not found"
    return JSONResponse(
        status_code=404,
        content={"detail": detail}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "sync_app.src.api_server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
