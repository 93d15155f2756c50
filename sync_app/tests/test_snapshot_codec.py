import gzip
import json

import pytest

from shared.database import LocalStore
from sync_app.src.errors import CorruptSnapshot, SnapshotImportError
from sync_app.src.snapshot_codec import (
    SNAPSHOT_VERSION,
    compress,
    decompress,
    export_snapshot,
    format_bytes,
    import_snapshot,
    read_snapshot_file,
    snapshot_stats,
    validate_snapshot,
    write_snapshot_file,
)

from conftest import activity


def seed(store):
    store.bulk_put("activities", [activity("i1", "2026-02-16"), activity("i2", "2026-02-17")])
    store.put_activity_detail("i1", {"intervals": {"icu_intervals": [{"type": "WORK"}]}})
    store.put("wellness", {"id": "2026-02-17", "ctl": 42, "atl": 48})
    store.put_analysis({"metadata": {"activityId": "i1", "date": "2026-02-16", "activityName": {"en_US": "Run"}}})
    store.set_config("intervals_api_key", "secret")


def minimal(**tables):
    doc = {
        "timestamp": "2026-02-17T10:00:00.000Z",
        "version": 4,
        "tables": {name: {"count": 0, "data": []} for name in ("activities", "activityDetails", "wellness", "analyses")},
    }
    for name, data in tables.items():
        doc["tables"][name] = {"count": len(data), "data": data}
    return doc


def test_export_shape_and_secrets(store):
    seed(store)

    snapshot = export_snapshot(store)

    assert snapshot["version"] == SNAPSHOT_VERSION
    assert snapshot["tables"]["activities"]["count"] == 2
    assert snapshot["tables"]["activityDetails"]["data"][0]["id"] == "i1"
    assert "config" not in snapshot["tables"] and "cache" not in snapshot["tables"]
    assert "secret" not in json.dumps(snapshot)


def test_compressed_round_trip_into_fresh_store(store):
    seed(store)
    snapshot = export_snapshot(store)

    packed = compress(snapshot)
    assert packed.payload[:2] == b"\x1f\x8b"
    assert packed.compressed_size < packed.raw_size
    assert decompress(packed.payload) == snapshot

    fresh = LocalStore(database_url="sqlite://")
    counts = import_snapshot(fresh, decompress(packed.payload))

    assert counts["activities"] == 2
    assert export_snapshot(fresh)["tables"] == snapshot["tables"]


def test_plain_json_is_accepted(store):
    assert decompress(json.dumps(minimal()).encode())["version"] == 4


def test_count_mismatch_names_table(store):
    doc = minimal(activities=[activity("i1", "2026-02-16")])
    doc["tables"]["activities"]["count"] = 3

    with pytest.raises(CorruptSnapshot) as exc:
        import_snapshot(store, doc)

    assert exc.value.table == "activities"
    assert store.count("activities") == 0


@pytest.mark.parametrize("mutate", [
    lambda d: d["tables"].pop("wellness"),
    lambda d: d.update(version="4"),
    lambda d: d.update(version=SNAPSHOT_VERSION + 1),
    lambda d: d.update(timestamp="yesterday"),
    lambda d: d["tables"]["analyses"].update(data="nope"),
])
def test_invalid_documents_are_rejected(mutate):
    doc = minimal()
    mutate(doc)

    with pytest.raises(CorruptSnapshot):
        validate_snapshot(doc)


def test_garbage_payload_is_corrupt():
    with pytest.raises(CorruptSnapshot):
        decompress(b"\x1f\x8b not really gzip")
    with pytest.raises(CorruptSnapshot):
        decompress(b"[1, 2]")


def test_clear_import_leaves_exactly_snapshot_ids(store):
    store.bulk_put("activities", [activity("old", "2026-01-01"), activity("i1", "2026-02-16", name="Local")])
    store.put("events", {"id": 9, "start_date_local": "2026-02-20T00:00:00"})

    import_snapshot(store, minimal(activities=[activity("i1", "2026-02-16", name="Snapshot")]), clear_existing=True)

    assert store.keys("activities") == {"i1"}
    assert store.get("activities", "i1")["name"] == "Snapshot"
    # tables absent from the snapshot are untouched
    assert store.keys("events") == {"9"}


def test_merge_import_keeps_local_records(store):
    store.put("activities", activity("old", "2026-01-01"))

    import_snapshot(store, minimal(activities=[activity("i1", "2026-02-16")]))

    assert store.keys("activities") == {"old", "i1"}


def test_failed_import_changes_nothing(store):
    store.put("wellness", {"id": "2026-02-01", "ctl": 1})
    doc = minimal(wellness=[{"id": "2026-02-16"}], analyses=[{"verdict": "no activity id"}])

    with pytest.raises(SnapshotImportError) as exc:
        import_snapshot(store, doc, clear_existing=True)

    assert exc.value.table == "analyses"
    assert store.keys("wellness") == {"2026-02-01"}


def test_files_and_stats(store, tmp_path):
    seed(store)
    snapshot = export_snapshot(store)

    gz_path = tmp_path / "db.json.gz"
    plain_path = tmp_path / "db.json"
    write_snapshot_file(gz_path, snapshot)
    write_snapshot_file(plain_path, snapshot)

    assert gzip.decompress(gz_path.read_bytes())
    assert read_snapshot_file(gz_path) == snapshot
    assert read_snapshot_file(plain_path) == snapshot

    stats = snapshot_stats(store)
    assert stats["tables"]["activities"]["count"] == 2
    assert stats["total_bytes"] > 0


def test_format_bytes():
    assert format_bytes(512) == "512 B"
    assert format_bytes(2048) == "2.00 KB"
    assert format_bytes(3 * 1024 * 1024) == "3.00 MB"


def test_damaged_deflate_stream_is_corrupt(store, tmp_path):
    seed(store)
    good = compress(export_snapshot(store)).payload
    damaged = good[:10] + b"\xff" * 8 + good[18:]

    with pytest.raises(CorruptSnapshot):
        decompress(damaged)
    with pytest.raises(CorruptSnapshot):
        decompress(good[: len(good) // 2])

    path = tmp_path / "db.json.gz"
    path.write_bytes(damaged)
    with pytest.raises(CorruptSnapshot):
        read_snapshot_file(path)
