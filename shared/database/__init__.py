"""
Shared database module for the Marathon Tracker sync engine
"""

from .connection import (
    Base,
    build_engine,
    get_db_session,
    test_connection,
    create_all_tables,
)

from .models import (
    Activities,
    ActivityDetails,
    WellnessDays,
    CrossTraining,
    Analyses,
    ScheduledEvents,
    NutritionTracking,
    ConfigEntries,
    CacheEntries,
    DataSyncLog,
)

from .store import LocalStore, StoreWriteError, TABLES, EXPORTABLE_TABLES

__all__ = [
    "Base",
    "build_engine",
    "get_db_session",
    "test_connection",
    "create_all_tables",
    "Activities",
    "ActivityDetails",
    "WellnessDays",
    "CrossTraining",
    "Analyses",
    "ScheduledEvents",
    "NutritionTracking",
    "ConfigEntries",
    "CacheEntries",
    "DataSyncLog",
    "LocalStore",
    "StoreWriteError",
    "TABLES",
    "EXPORTABLE_TABLES",
]
