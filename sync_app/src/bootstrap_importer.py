"""
First-run bootstrap from a published snapshot.

The snapshot lives at ``<base>/database/marathon-tracker-db.json.gz`` (or the
plain ``.json``); ``<base>`` is an HTTP(S) URL or a local directory. Whether
to import is a pure decision over three facts: is the local store empty, was
a snapshot found, and is it newer than the last one imported.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import requests

from shared.database import LocalStore
from ..config.settings import settings
from .errors import CorruptSnapshot, SnapshotError
from .snapshot_codec import decompress, import_snapshot, read_snapshot_file, validate_snapshot


logger = logging.getLogger(__name__)

IMPORT_MARKER_KEY = "last_import_timestamp"


class BootstrapAction(str, Enum):
    IMPORT_REPLACE = "import_replace"
    KEEP_LOCAL = "keep_local"
    NEEDS_MANUAL_SYNC = "needs_manual_sync"


def _parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def decide_bootstrap_action(
    local_empty: bool,
    remote_timestamp: Union[str, datetime, None],
    last_import: Union[str, datetime, None],
) -> BootstrapAction:
    """Map (local empty?, snapshot found?, snapshot newer?) to an action.

    ``remote_timestamp`` is None when no snapshot was reachable. A missing or
    unreadable import marker counts as "snapshot is newer".
    """
    remote = _parse_timestamp(remote_timestamp)
    if remote is None:
        return BootstrapAction.NEEDS_MANUAL_SYNC if local_empty else BootstrapAction.KEEP_LOCAL
    if local_empty:
        return BootstrapAction.IMPORT_REPLACE
    marker = _parse_timestamp(last_import)
    if marker is None or remote > marker:
        return BootstrapAction.IMPORT_REPLACE
    return BootstrapAction.KEEP_LOCAL


@dataclass
class BootstrapResult:
    action: BootstrapAction
    imported: bool = False
    source: Optional[str] = None
    remote_timestamp: Optional[str] = None
    counts: Dict[str, int] = field(default_factory=dict)
    message: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "imported": self.imported,
            "source": self.source,
            "remote_timestamp": self.remote_timestamp,
            "counts": self.counts,
            "message": self.message,
            "error": self.error,
        }


class BootstrapImporter:
    def __init__(
        self,
        store: LocalStore,
        base_url: Optional[str] = None,
        filename: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.base_url = (base_url if base_url is not None else settings.bootstrap_base_url) or ""
        self.filename = filename or settings.snapshot_filename
        self.timeout = timeout or settings.request_timeout_seconds

    @property
    def is_remote(self) -> bool:
        return self.base_url.startswith(("http://", "https://"))

    def candidates(self) -> List[str]:
        names = [f"{self.filename}.gz", self.filename]
        if self.is_remote:
            base = self.base_url.rstrip("/")
            return [f"{base}/database/{name}" for name in names]
        return [str(Path(self.base_url or ".") / "database" / name) for name in names]

    def fetch_snapshot(self) -> Optional[Tuple[str, Dict[str, Any]]]:
        """First candidate that parses and validates, as (source, document).

        Returns None if no candidate is reachable. If candidates were found
        but none of them is a valid snapshot, the last CorruptSnapshot is raised.
        """
        rejected: Optional[CorruptSnapshot] = None
        for source in self.candidates():
            try:
                if self.is_remote:
                    try:
                        r = requests.get(source, timeout=self.timeout)
                    except requests.exceptions.RequestException as e:
                        self.logger.info(f"🔍 Snapshot not reachable at {source}: {e.__class__.__name__}")
                        continue
                    if r.status_code != 200:
                        self.logger.info(f"🔍 No snapshot at {source} (HTTP {r.status_code})")
                        continue
                    document = decompress(r.content)
                else:
                    path = Path(source)
                    if not path.is_file():
                        self.logger.info(f"🔍 No snapshot at {source}")
                        continue
                    document = read_snapshot_file(path)
                validate_snapshot(document)
            except CorruptSnapshot as e:
                self.logger.warning(f"⚠️ Unusable snapshot at {source}, trying next: {e}")
                rejected = e
                continue
            return source, document
        if rejected is not None:
            raise rejected
        return None

    def run(self) -> BootstrapResult:
        local_empty = self.store.is_empty()
        last_import = self.store.get_config(IMPORT_MARKER_KEY)

        try:
            fetched = self.fetch_snapshot()
            if fetched is not None:
                source, document = fetched
                parsed = validate_snapshot(document)
        except CorruptSnapshot as e:
            action = decide_bootstrap_action(local_empty, None, last_import)
            self.logger.error(f"❌ Published snapshot is corrupt, keeping local state: {e}")
            return BootstrapResult(action=action, message="Snapshot rejected", error=str(e))

        if fetched is None:
            action = decide_bootstrap_action(local_empty, None, last_import)
            message = "No snapshot found; run a manual sync" if local_empty else "No snapshot found; keeping local data"
            self.logger.info(f"ℹ️ {message}")
            return BootstrapResult(action=action, message=message)

        remote_timestamp = str(document.get("timestamp"))
        action = decide_bootstrap_action(local_empty, parsed.timestamp, last_import)
        result = BootstrapResult(action=action, source=source, remote_timestamp=remote_timestamp)
        if action is not BootstrapAction.IMPORT_REPLACE:
            result.message = f"Local data is current (last import {last_import})"
            self.logger.info(f"ℹ️ {result.message}")
            return result

        try:
            result.counts = import_snapshot(self.store, parsed, clear_existing=True)
        except SnapshotError as e:
            self.logger.error(f"❌ Bootstrap import failed, local state unchanged: {e}")
            result.error = str(e)
            result.message = "Import failed"
            return result

        self.store.set_config(IMPORT_MARKER_KEY, remote_timestamp)
        result.imported = True
        result.message = f"Imported snapshot from {source}"
        self.logger.info(f"✅ {result.message}: {result.counts}")
        return result
