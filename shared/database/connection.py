"""
Shared database connection and session management for the Marathon Tracker sync engine
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, Session
from sqlalchemy.pool import StaticPool


# Database configuration
# One local replica per installation; SQLite file unless told otherwise
DEFAULT_DATABASE_PATH = Path.home() / ".marathon_tracker" / "marathon-tracker.db"
DATABASE_URL = os.environ.get("SYNC_APP_DATABASE_URL") or f"sqlite:///{DEFAULT_DATABASE_PATH}"


def build_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Create an engine for the given URL.

    SQLite connections may be used from threadpool workers (FastAPI
    sync handlers); in-memory SQLite shares one connection across sessions.
    """
    url = database_url or DATABASE_URL
    if url.startswith("sqlite"):
        if url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=echo,
            )
        db_file = url.split("sqlite:///", 1)[-1]
        if db_file:
            Path(db_file).expanduser().parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, connect_args={"check_same_thread": False}, echo=echo)
    return create_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=echo,
    )


# Base class for all models
Base = declarative_base()


@contextmanager
def get_db_session(engine: Engine) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.
    Use for standalone database operations.
    """
    db = Session(bind=engine, autoflush=False)
    try:
        yield db
    finally:
        db.close()


def test_connection(engine: Engine) -> bool:
    """Test database connectivity"""
    try:
        from sqlalchemy import text
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


# not a pytest test
test_connection.__test__ = False


def create_all_tables(engine: Engine) -> None:
    """Create all tables defined in models"""
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
