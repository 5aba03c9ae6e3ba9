from __future__ import annotations

import json

from pathlib import Path
from unittest.mock import patch

from typer.testing import CliRunner

from fieldsync.cli_app import app
from fieldsync.models import CompositeKey, ValueRecord
from fieldsync.store import FieldStore

runner = CliRunner()


def _seed(db_path: Path) -> None:
    store = FieldStore(db_path)
    try:
        done = store.upsert_record(
            ValueRecord(key=CompositeKey("ou-1", "2024Q1", "de-1", "HllvX50cXC0"), value="42")
        )
        store.mark_synced(done.local_id, done.rev)
        store.upsert_record(
            ValueRecord(key=CompositeKey("ou-1", "2024Q1", "de-2", "HllvX50cXC0"), value="7")
        )
    finally:
        store.close()


def test_root_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for name in ("status", "pending", "retry", "reset", "show", "config"):
        assert name in result.stdout


def test_status_and_pending(tmp_path: Path) -> None:
    db_path = tmp_path / "fieldsync.sqlite"
    _seed(db_path)

    status = runner.invoke(app, ["status", "--db-path", str(db_path)])
    pending = runner.invoke(app, ["pending", "--db-path", str(db_path)])

    assert status.exit_code == 0
    assert "total=2 synced=1 unsynced=1" in status.stdout
    assert "Last retry: never" in status.stdout
    assert pending.exit_code == 0
    assert "de-2" in pending.stdout
    assert "de-1/" not in pending.stdout


def test_show_marks_pending_rows(tmp_path: Path) -> None:
    db_path = tmp_path / "fieldsync.sqlite"
    _seed(db_path)

    result = runner.invoke(
        app, ["show", "--source", "ou-1", "--period", "2024Q1", "--db-path", str(db_path)]
    )

    assert result.exit_code == 0
    assert "de-1/HllvX50cXC0 = '42' synced" in result.stdout
    assert "de-2/HllvX50cXC0 = '7' pending" in result.stdout


def test_reset_deletes_context_rows(tmp_path: Path) -> None:
    db_path = tmp_path / "fieldsync.sqlite"
    _seed(db_path)

    result = runner.invoke(
        app, ["reset", "--source", "ou-1", "--period", "2024Q1", "--db-path", str(db_path)]
    )

    assert result.exit_code == 0
    assert "Removed 2 rows" in result.stdout


def test_retry_without_endpoint_exits_nonzero(tmp_path: Path) -> None:
    result = runner.invoke(app, ["retry", "--db-path", str(tmp_path / "fieldsync.sqlite")])

    assert result.exit_code == 1
    assert "No submit endpoint configured" in result.stdout


def test_retry_posts_pending_rows(tmp_path: Path) -> None:
    db_path = tmp_path / "fieldsync.sqlite"
    _seed(db_path)

    with patch("fieldsync.http_client.post_json", return_value=(200, {"success": True})) as post:
        result = runner.invoke(
            app,
            ["retry", "--db-path", str(db_path), "--endpoint", "http://127.0.0.1:9/api/values"],
        )

    assert result.exit_code == 0
    assert "Retried 1 rows: succeeded=1 failed=0" in result.stdout
    assert post.call_args.args[0] == "http://127.0.0.1:9/api/values"
    store = FieldStore(db_path)
    try:
        assert store.counts()["unsynced"] == 0
        assert store.get_retry_state()["last_succeeded"] == 1
    finally:
        store.close()


def test_config_sets_and_unsets_keys(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"

    result = runner.invoke(
        app,
        ["config", "--set", "endpoint=https://example.org/api", "--set", "retry_interval_s=60"],
    )

    assert result.exit_code == 0
    assert "- endpoint: https://example.org/api" in result.stdout
    assert "- retry_interval_s: 60" in result.stdout
    assert json.loads(config_path.read_text()) == {
        "endpoint": "https://example.org/api",
        "retry_interval_s": 60,
    }

    cleared = runner.invoke(app, ["config", "--set", "retry_interval_s="])

    assert cleared.exit_code == 0
    assert "- retry_interval_s: 300" in cleared.stdout
    assert json.loads(config_path.read_text()) == {"endpoint": "https://example.org/api"}


def test_config_rejects_bad_updates(tmp_path: Path) -> None:
    unknown = runner.invoke(app, ["config", "--set", "colour=blue"])
    bad_int = runner.invoke(app, ["config", "--set", "retry_interval_s=soon"])
    bad_bool = runner.invoke(app, ["config", "--set", "retry_enabled=maybe"])

    assert unknown.exit_code == 1
    assert "Unknown config key: colour" in unknown.stdout
    assert bad_int.exit_code == 1
    assert "retry_interval_s must be int" in bad_int.stdout
    assert bad_bool.exit_code == 1
    assert not (tmp_path / "config.json").exists()


def test_config_reports_corrupt_file(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text("{not-json}")

    result = runner.invoke(app, ["config"])

    assert result.exit_code == 1
    assert "invalid config json" in result.stdout
