"""
Purge of coach analyses stored under the pre-bilingual schema.

Current analyses carry their user-facing text as language maps
(``{"en_US": ..., "pt_BR": ...}``). A record where any of those fields is a
bare string predates that change; if one is found the whole analyses table
is cleared and the caller reloads from the analysis files.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from shared.database import LocalStore
from .errors import ObsoleteSchema


LOCALIZED_FIELDS = ("title", "metadata.title", "metadata.activityName")

RecordMigrator = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


def _lookup(record: Dict[str, Any], dotted: str) -> Any:
    value: Any = record
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def obsolete_fields(record: Dict[str, Any]) -> List[str]:
    return [name for name in LOCALIZED_FIELDS if isinstance(_lookup(record, name), str)]


def is_obsolete_analysis(record: Dict[str, Any]) -> bool:
    return bool(obsolete_fields(record))


@dataclass
class MigrationResult:
    scanned: int = 0
    obsolete: int = 0
    migrated: int = 0
    purged: int = 0
    reload_required: bool = False
    ran: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scanned": self.scanned,
            "obsolete": self.obsolete,
            "migrated": self.migrated,
            "purged": self.purged,
            "reload_required": self.reload_required,
            "ran": self.ran,
        }


class SchemaMigrator:
    """Runs at most once per instance.

    ``record_migrator`` may convert an obsolete record to the current schema;
    returning None or raising ObsoleteSchema means it could not. Converted
    records are kept only when every obsolete record converts, otherwise the
    table is purged.
    """

    def __init__(self, store: LocalStore, record_migrator: Optional[RecordMigrator] = None) -> None:
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.record_migrator = record_migrator
        self._lock = threading.Lock()
        self._completed = False

    def run(self) -> MigrationResult:
        with self._lock:
            if self._completed:
                return MigrationResult(ran=False)
            self._completed = True
            return self._migrate()

    def _migrate(self) -> MigrationResult:
        analyses = self.store.all("analyses")
        obsolete = [a for a in analyses if is_obsolete_analysis(a)]
        result = MigrationResult(scanned=len(analyses), obsolete=len(obsolete))
        if not obsolete:
            return result

        self.logger.info(f"🔄 Detected {len(obsolete)} analyses with the old schema")
        converted = self._convert(obsolete)
        if converted is not None:
            self.store.bulk_put("analyses", converted)
            result.migrated = len(converted)
            self.logger.info(f"✅ Migrated {len(converted)} analyses in place")
            return result

        result.purged = self.store.clear("analyses")
        result.reload_required = True
        self.logger.info(f"✅ Old analyses cleared ({result.purged} records)")
        return result

    def _convert(self, records: List[Dict[str, Any]]) -> Optional[List[Dict[str, Any]]]:
        if self.record_migrator is None:
            return None
        converted = []
        for record in records:
            try:
                new = self.record_migrator(dict(record))
            except ObsoleteSchema as e:
                self.logger.warning(f"⚠️ Cannot migrate analysis {record.get('activityId')}: {e}")
                return None
            if new is None or is_obsolete_analysis(new):
                return None
            new.setdefault("activityId", record.get("activityId"))
            new.setdefault("date", record.get("date"))
            converted.append(new)
        return converted
