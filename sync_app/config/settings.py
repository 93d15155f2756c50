"""
Configuration settings for SYNC APP
"""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncAppSettings(BaseSettings):
    """Configuration for the SYNC APP"""

    model_config = SettingsConfigDict(
        # Load the .env co-located with this settings.py (sync_app/config/.env)
        env_file=str(Path(__file__).resolve().parent / ".env"),
        env_prefix="SYNC_APP_",
        extra="ignore",
    )

    # Application
    app_name: str = "Marathon Tracker - Sync App"
    version: str = "1.0.0"
    debug: bool = False

    # Local store
    database_url: str = ""

    # Intervals.icu API
    # Credentials are seeded into the config table by `configure`; these are
    # only a fallback for unattended runs
    intervals_api_base_url: str = "https://intervals.icu/api/v1"
    intervals_api_key: Optional[str] = None
    intervals_athlete_id: Optional[str] = None
    request_timeout_seconds: int = 30

    # Batch fetching of per-activity sub-resources
    batch_size: int = 5
    batch_delay_seconds: float = 0.25

    # List endpoints are retried before a sync is aborted
    list_retry_attempts: int = 3
    list_retry_max_wait_seconds: int = 10

    # Sync settings
    sync_interval_hours: int = 2
    sync_lookback_days: int = 30
    athlete_cache_ttl_seconds: int = 300

    # Snapshot exchange
    bootstrap_base_url: str = ""
    snapshot_filename: str = "marathon-tracker-db.json"
    analyses_dir: str = str(Path(__file__).resolve().parents[2] / "data" / "analyses")

    # API server
    api_host: str = "127.0.0.1"
    api_port: int = 8010

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: str = "sync_app.log"
    log_max_bytes: int = 10 * 1024 * 1024  # 10MB
    log_backup_count: int = 5


# Global settings instance
settings = SyncAppSettings()


# Paths
BASE_DIR = Path(__file__).parent.parent
LOGS_DIR = BASE_DIR / "logs"
CONFIG_DIR = BASE_DIR / "config"
