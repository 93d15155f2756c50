"""
Database models for the Marathon Tracker local store

Every synced table keeps the full upstream record in a JSON column plus the
columns needed for range queries. Records leave the store as the JSON
document, so an export reproduces exactly what was fetched.
"""

from datetime import datetime
import uuid

from sqlalchemy import Column, String, Integer, Float, Text, DateTime, JSON, Date

from .connection import Base


class Activities(Base):
    __tablename__ = "activities"

    id = Column(String, primary_key=True)
    start_date_local = Column(String, index=True)
    type = Column(String, index=True)
    name = Column(String)
    source = Column(String, index=True)
    distance = Column(Float)
    moving_time = Column(Float)
    training_load = Column(Float)
    data = Column(JSON, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ActivityDetails(Base):
    __tablename__ = "activity_details"

    id = Column(String, primary_key=True)
    fetched_at = Column(String, index=True)
    data = Column(JSON, nullable=False)


class WellnessDays(Base):
    __tablename__ = "wellness"

    # Intervals.icu wellness ids are the calendar date (YYYY-MM-DD)
    id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CrossTraining(Base):
    __tablename__ = "cross_training"

    id = Column(String, primary_key=True)
    start_date_local = Column(String, index=True)
    type = Column(String, index=True)
    name = Column(String)
    data = Column(JSON, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Analyses(Base):
    __tablename__ = "analyses"

    activity_id = Column(String, primary_key=True)
    date = Column(String, index=True)
    data = Column(JSON, nullable=False)


class ScheduledEvents(Base):
    __tablename__ = "events"

    id = Column(String, primary_key=True)
    start_date_local = Column(String, index=True)
    category = Column(String, index=True)
    data = Column(JSON, nullable=False)


class NutritionTracking(Base):
    __tablename__ = "nutrition_tracking"

    date = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)


class ConfigEntries(Base):
    __tablename__ = "config"

    key = Column(String, primary_key=True)
    value = Column(JSON)
    updated_at = Column(String)


class CacheEntries(Base):
    __tablename__ = "cache"

    key = Column(String, primary_key=True)
    data = Column(JSON)
    timestamp = Column(Float, nullable=False)  # epoch seconds
    ttl = Column(Float, nullable=False)  # seconds


class DataSyncLog(Base):
    __tablename__ = "data_sync_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    sync_type = Column(String, nullable=False, index=True)
    sync_date = Column(Date, nullable=False)
    status = Column(String, nullable=False)
    records_processed = Column(Integer, default=0)
    records_updated = Column(Integer, default=0)
    records_created = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)
    records_evicted = Column(Integer, default=0)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime)
    duration_seconds = Column(Float)
    message = Column(Text)
    error_details = Column(JSON)
    data_range = Column(JSON)
    version = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
