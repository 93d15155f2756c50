"""
Snapshot export/import for the whole local store.

A snapshot is ``{timestamp, version, tables: {name: {count, data}}}``. On
the wire it is compact JSON, optionally gzip-compressed; readers detect gzip
by its magic bytes so either form can be handed to ``decompress``.
Importing validates the whole document before touching the store and writes
every table in one transaction.
"""

from __future__ import annotations

import gzip
import json
import logging
import os
import zlib
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Union

from pydantic import BaseModel, StrictInt, ValidationError

from shared.database import EXPORTABLE_TABLES, TABLES, LocalStore, StoreWriteError
from .errors import CorruptSnapshot, SnapshotImportError


logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 5
REQUIRED_TABLES = ("activities", "activityDetails", "wellness", "analyses")
GZIP_MAGIC = b"\x1f\x8b"


class TableEnvelope(BaseModel):
    count: StrictInt
    data: List[Dict[str, Any]]


class SnapshotDocument(BaseModel):
    timestamp: datetime
    version: StrictInt
    tables: Dict[str, TableEnvelope]


@dataclass
class CompressedSnapshot:
    payload: bytes
    raw_size: int
    compressed_size: int

    @property
    def ratio(self) -> float:
        """Compressed size as a fraction of the raw JSON size."""
        return self.compressed_size / self.raw_size if self.raw_size else 0.0


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _dumps(snapshot: Dict[str, Any], indent=None) -> bytes:
    separators = None if indent else (",", ":")
    return json.dumps(snapshot, separators=separators, indent=indent, ensure_ascii=False).encode("utf-8")


# ---------- Export ----------
def export_snapshot(store: LocalStore) -> Dict[str, Any]:
    """Every exportable table; config and cache stay local."""
    tables: Dict[str, Dict[str, Any]] = {}
    for name in EXPORTABLE_TABLES:
        data = store.all(name)
        tables[name] = {"count": len(data), "data": data}
    snapshot = {"timestamp": _utc_timestamp(), "version": SNAPSHOT_VERSION, "tables": tables}
    summary = ", ".join(f"{name}={t['count']}" for name, t in tables.items())
    logger.info(f"📦 Exported snapshot v{SNAPSHOT_VERSION}: {summary}")
    return snapshot


def compress(snapshot: Dict[str, Any]) -> CompressedSnapshot:
    raw = _dumps(snapshot)
    payload = gzip.compress(raw)
    return CompressedSnapshot(payload=payload, raw_size=len(raw), compressed_size=len(payload))


def decompress(payload: Union[bytes, str]) -> Dict[str, Any]:
    """Parse a gzip or plain JSON snapshot payload."""
    try:
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        if payload[:2] == GZIP_MAGIC:
            payload = gzip.decompress(payload)
        document = json.loads(payload.decode("utf-8"))
    except (OSError, EOFError, zlib.error, ValueError) as e:
        raise CorruptSnapshot(f"Unreadable snapshot payload: {e}") from e
    if not isinstance(document, dict):
        raise CorruptSnapshot("Snapshot root must be an object")
    return document


# ---------- Validation ----------
def validate_snapshot(document: Any) -> SnapshotDocument:
    """Reject anything that cannot be imported as a whole."""
    if isinstance(document, SnapshotDocument):
        parsed = document
    else:
        if not isinstance(document, dict):
            raise CorruptSnapshot("Snapshot root must be an object")
        try:
            parsed = SnapshotDocument.model_validate(document)
        except ValidationError as e:
            first = e.errors()[0]
            loc = first.get("loc", ())
            table = loc[1] if len(loc) > 1 and loc[0] == "tables" else None
            where = ".".join(str(p) for p in loc) or "snapshot"
            raise CorruptSnapshot(f"Invalid snapshot at {where}: {first.get('msg')}", table=table) from e

    if parsed.version < 1 or parsed.version > SNAPSHOT_VERSION:
        raise CorruptSnapshot(f"Unsupported snapshot version {parsed.version} (max {SNAPSHOT_VERSION})")

    for name in REQUIRED_TABLES:
        if name not in parsed.tables:
            raise CorruptSnapshot(f"Snapshot is missing table '{name}'", table=name)

    for name, envelope in parsed.tables.items():
        if envelope.count != len(envelope.data):
            raise CorruptSnapshot(
                f"Table '{name}' declares {envelope.count} records but holds {len(envelope.data)}",
                table=name,
            )
    return parsed


# ---------- Import ----------
def import_snapshot(store: LocalStore, document: Any, clear_existing: bool = False) -> Dict[str, int]:
    """Validate, then write all tables atomically.

    With ``clear_existing`` the tables present in the snapshot end up holding
    exactly the snapshot's records. Returns the record count per table.
    """
    parsed = validate_snapshot(document)
    payload: Dict[str, List[Dict[str, Any]]] = {}
    for name, envelope in parsed.tables.items():
        if name not in TABLES:
            logger.warning(f"⚠️ Ignoring unknown snapshot table '{name}'")
            continue
        payload[name] = envelope.data

    try:
        counts = store.replace_tables(payload, clear_existing=clear_existing)
    except StoreWriteError as e:
        raise SnapshotImportError(f"Import failed writing '{e.table}'; nothing was applied: {e}", table=e.table) from e

    logger.info(f"✅ Imported snapshot from {parsed.timestamp.isoformat()}: {counts}")
    return counts


# ---------- Files ----------
def write_snapshot_file(path: Union[str, Path], snapshot: Dict[str, Any]) -> int:
    """Write ``snapshot`` to ``path``; a ``.gz`` suffix selects gzip. Returns bytes written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == ".gz":
        packed = compress(snapshot)
        data = packed.payload
        logger.info(
            f"🗜️ Compressed {format_bytes(packed.raw_size)} → {format_bytes(packed.compressed_size)} "
            f"({packed.ratio:.0%})"
        )
    else:
        data = _dumps(snapshot, indent=2)

    tmp = path.with_name(path.name + ".tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)
    return len(data)


def read_snapshot_file(path: Union[str, Path]) -> Dict[str, Any]:
    path = Path(path)
    return decompress(path.read_bytes())


# ---------- Stats ----------
def format_bytes(size: float) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} GB"


def snapshot_stats(store: LocalStore) -> Dict[str, Any]:
    """Record counts and serialized size per exportable table."""
    tables: Dict[str, Dict[str, Any]] = {}
    total = 0
    for name in EXPORTABLE_TABLES:
        data = store.all(name)
        size = len(_dumps(data))
        total += size
        tables[name] = {"count": len(data), "bytes": size, "size": format_bytes(size)}
    return {"tables": tables, "total_bytes": total, "total_size": format_bytes(total)}
