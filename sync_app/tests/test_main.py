from typer.testing import CliRunner

from sync_app.src import main


runner = CliRunner()


class RecordingSynchronizer:
    calls = []

    def __init__(self, store=None):
        self.store = store

    def test_connection(self):
        return {"intervals": True, "database": True}

    def sync_all(self, oldest, newest, full=False):
        self.calls.append((oldest, newest, full))
        return {"activities": {"success": True, "records": 0, "errors": []}}


def patch_cli(monkeypatch, store):
    RecordingSynchronizer.calls = []
    monkeypatch.setattr(main, "setup_logging", lambda: None)
    monkeypatch.setattr(main, "_store", lambda: store)
    monkeypatch.setattr(main, "DataSynchronizer", RecordingSynchronizer)


def test_sync_passes_explicit_range(monkeypatch, store):
    patch_cli(monkeypatch, store)

    result = runner.invoke(main.app, ["sync", "--oldest", "2026-02-01", "--newest", "2026-02-17", "--full"])

    assert result.exit_code == 0
    assert RecordingSynchronizer.calls == [("2026-02-01", "2026-02-17", True)]


def test_sync_days_back_counts_from_newest(monkeypatch, store):
    patch_cli(monkeypatch, store)

    result = runner.invoke(main.app, ["sync", "--newest", "2026-02-17", "--days", "7"])

    assert result.exit_code == 0
    assert RecordingSynchronizer.calls == [("2026-02-10", "2026-02-17", False)]


def test_sync_rejects_malformed_dates(monkeypatch, store):
    patch_cli(monkeypatch, store)

    for option in ("--oldest", "--newest"):
        result = runner.invoke(main.app, ["sync", option, "17/02/2026"])

        assert result.exit_code == 2
        assert not isinstance(result.exception, ValueError)
    assert RecordingSynchronizer.calls == []
