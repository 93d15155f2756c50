import json

import pytest

from sync_app.src.analysis_loader import AnalysisLoader, validate_analysis
from sync_app.src.errors import ObsoleteSchema
from sync_app.src.schema_migrator import SchemaMigrator, is_obsolete_analysis


def analysis(activity_id, day, activity_name):
    return {
        "version": "2.0",
        "metadata": {"activityId": activity_id, "date": day, "activityName": activity_name},
        "session": {"type": "easy"},
        "analysis": {"strengths": {"en_US": [], "pt_BR": []}},
        "verdict": {"rating": "good"},
    }


BILINGUAL = {"en_US": "Easy run", "pt_BR": "Corrida leve"}


def test_is_obsolete_analysis():
    assert is_obsolete_analysis(analysis("i1", "2026-02-16", "Easy run"))
    assert is_obsolete_analysis({"title": "Plain", "metadata": {}})
    assert not is_obsolete_analysis(analysis("i1", "2026-02-16", BILINGUAL))
    assert not is_obsolete_analysis({"metadata": None})


def test_legacy_analysis_purges_table(store):
    store.put_analysis(analysis("i1", "2026-02-16", "Easy run"))
    store.put_analysis(analysis("i2", "2026-02-17", BILINGUAL))

    result = SchemaMigrator(store).run()

    assert result.reload_required
    assert result.purged == 2
    assert store.count("analyses") == 0


def test_current_schema_is_left_alone(store):
    store.put_analysis(analysis("i2", "2026-02-17", BILINGUAL))

    result = SchemaMigrator(store).run()

    assert not result.reload_required
    assert store.count("analyses") == 1


def test_runs_once_per_instance(store):
    migrator = SchemaMigrator(store)
    migrator.run()
    store.put_analysis(analysis("i1", "2026-02-16", "Easy run"))

    second = migrator.run()

    assert not second.ran
    assert store.count("analyses") == 1


def test_record_migrator_converts_in_place(store):
    store.put_analysis(analysis("i1", "2026-02-16", "Easy run"))

    def to_bilingual(record):
        name = record["metadata"]["activityName"]
        record["metadata"] = {**record["metadata"], "activityName": {"en_US": name, "pt_BR": name}}
        return record

    result = SchemaMigrator(store, record_migrator=to_bilingual).run()

    assert result.migrated == 1 and not result.reload_required
    assert store.get("analyses", "i1")["metadata"]["activityName"]["en_US"] == "Easy run"


def test_record_migrator_that_gives_up_falls_back_to_purge(store):
    store.put_analysis(analysis("i1", "2026-02-16", "Easy run"))

    def refuse(record):
        raise ObsoleteSchema("cannot translate", activity_id=record.get("activityId"))

    result = SchemaMigrator(store, record_migrator=refuse).run()

    assert result.reload_required
    assert store.count("analyses") == 0


def test_loader_reloads_valid_files(store, tmp_path):
    (tmp_path / "2026-02-17-easy.json").write_text(json.dumps(analysis("i2", "2026-02-17", BILINGUAL)))
    (tmp_path / "2026-02-16-old.json").write_text(json.dumps(analysis("i1", "2026-02-16", "Easy run")))
    (tmp_path / "broken.json").write_text(json.dumps({"metadata": {"activityId": "x"}}))

    loaded = AnalysisLoader(store, directory=tmp_path).load_directory()

    assert loaded["loaded"] == 1
    assert len(loaded["errors"]) == 2
    assert store.keys("analyses") == {"i2"}


def test_validate_analysis_reports_obsolete_field():
    with pytest.raises(ObsoleteSchema) as exc:
        validate_analysis(analysis("i1", "2026-02-16", "Easy run"))

    assert exc.value.field == "metadata.activityName"
    assert exc.value.activity_id == "i1"


@pytest.mark.parametrize("metadata", ["i1", ["i1"], 7])
def test_validate_analysis_requires_metadata_object(metadata):
    record = analysis("i1", "2026-02-16", BILINGUAL)
    record["metadata"] = metadata

    with pytest.raises(ValueError, match="metadata must be an object"):
        validate_analysis(record)


def test_loader_skips_non_object_metadata(store, tmp_path):
    bad = analysis("i1", "2026-02-16", BILINGUAL)
    bad["metadata"] = "i1"
    (tmp_path / "2026-02-16-bad.json").write_text(json.dumps(bad))
    (tmp_path / "2026-02-17-easy.json").write_text(json.dumps(analysis("i2", "2026-02-17", BILINGUAL)))

    loaded = AnalysisLoader(store, directory=tmp_path).load_directory()

    assert loaded["loaded"] == 1
    assert loaded["errors"] == ["2026-02-16-bad.json: metadata must be an object"]
    assert store.keys("analyses") == {"i2"}
