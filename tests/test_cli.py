"""Tests for the command line interface."""

import json

import pytest
from typer.testing import CliRunner

from therapy_scheduler.cli import app
from therapy_scheduler.exporter import load_snapshot, save_snapshot
from therapy_scheduler.models import AvailabilityTemplate, BilingualText, SessionStatus, TemplateSlot
from therapy_scheduler.utils import parse_time

runner = CliRunner()


@pytest.fixture
def snapshot_file(store, tmp_path):
    path = tmp_path / "snapshot.json"
    save_snapshot(store, path)
    return path


@pytest.fixture
def config_dir(tmp_path):
    path = tmp_path / "config"
    path.mkdir()
    return path


@pytest.fixture
def request_file(tmp_path):
    path = tmp_path / "request.json"
    path.write_text(
        json.dumps(
            {
                "demand_ref": "D1",
                "start_date": "2025-01-06",
                "end_date": "2025-01-26",
                "total_sessions": 6,
                "sessions_per_week": 2,
                "session_duration": 60,
            }
        ),
        encoding="utf-8",
    )
    return path


class TestGenerateCommand:
    """Tests for the generate command."""

    def test_preview(self, snapshot_file, request_file, config_dir):
        result = runner.invoke(app, ["generate", str(snapshot_file), str(request_file), "--config-dir", str(config_dir)])
        assert result.exit_code == 0
        assert "Generated sessions: 6" in result.output
        assert load_snapshot(snapshot_file).query("session") == []

    def test_save_and_export(self, snapshot_file, request_file, config_dir, tmp_path):
        output = tmp_path / "result"
        result = runner.invoke(
            app,
            [
                "generate", str(snapshot_file), str(request_file),
                "--save", "-o", str(output), "--config-dir", str(config_dir),
            ],
        )
        assert result.exit_code == 0
        assert len(load_snapshot(snapshot_file).query("session")) == 6
        exported = json.loads((tmp_path / "result.json").read_text(encoding="utf-8"))
        assert exported["demand_ref"] == "D1"
        assert len(exported["generated_sessions"]) == 6

    def test_missing_snapshot(self, request_file, tmp_path):
        result = runner.invoke(app, ["generate", str(tmp_path / "nope.json"), str(request_file)])
        assert result.exit_code == 1
        assert "File not found" in result.output


class TestCheckCommand:
    """Tests for the check command."""

    def test_free_slot(self, snapshot_file, config_dir):
        result = runner.invoke(
            app,
            ["check", str(snapshot_file), "-t", "T1", "-d", "2025-01-06", "-s", "09:00", "--config-dir", str(config_dir)],
        )
        assert result.exit_code == 0
        assert "No conflicts" in result.output

    def test_conflict_exits_with_error(self, snapshot_file, config_dir):
        result = runner.invoke(
            app,
            ["check", str(snapshot_file), "-t", "T1", "-d", "2025-01-07", "-s", "09:00", "--config-dir", str(config_dir)],
        )
        assert result.exit_code == 1
        assert "No conflicts" not in result.output

    def test_invalid_time(self, snapshot_file, config_dir):
        result = runner.invoke(
            app,
            ["check", str(snapshot_file), "-t", "T1", "-d", "2025-01-06", "-s", "9am", "--config-dir", str(config_dir)],
        )
        assert result.exit_code == 1
        assert "Invalid start time" in result.output


class TestOtherCommands:
    """Tests for bulk, metrics, optimize and apply-template."""

    @pytest.fixture
    def booked_snapshot(self, store, make_session, monday, tmp_path):
        store.upsert("session", make_session("S1", monday, "09:00", "10:00"))
        path = tmp_path / "booked.json"
        save_snapshot(store, path)
        return path

    def test_bulk_cancel(self, booked_snapshot, config_dir):
        result = runner.invoke(
            app,
            ["bulk", str(booked_snapshot), "cancel", "S1", "missing", "--save", "--config-dir", str(config_dir)],
        )
        assert result.exit_code == 0
        assert "Succeeded: 1" in result.output
        assert "Failed: 1" in result.output
        assert load_snapshot(booked_snapshot).get("session", "S1").status == SessionStatus.CANCELLED

    def test_metrics(self, booked_snapshot, config_dir, tmp_path):
        output = tmp_path / "metrics.json"
        result = runner.invoke(
            app,
            [
                "metrics", str(booked_snapshot), "--from", "2025-01-06", "--to", "2025-01-12",
                "-o", str(output), "--config-dir", str(config_dir),
            ],
        )
        assert result.exit_code == 0
        assert "Performance Targets" in result.output
        assert json.loads(output.read_text(encoding="utf-8"))["total_sessions"] == 1

    def test_optimize(self, booked_snapshot, config_dir):
        result = runner.invoke(
            app,
            ["optimize", str(booked_snapshot), "--from", "2025-01-06", "--to", "2025-01-12", "--config-dir", str(config_dir)],
        )
        assert result.exit_code == 0
        assert "Sessions considered: 1" in result.output

    def test_apply_template(self, store, config_dir, tmp_path):
        store.upsert(
            "template",
            AvailabilityTemplate(
                id="tpl",
                name=BilingualText("Tuesday afternoons"),
                slots=[TemplateSlot(1, parse_time("13:00"), parse_time("15:00"))],
            ),
        )
        path = tmp_path / "templated.json"
        save_snapshot(store, path)

        result = runner.invoke(
            app,
            ["apply-template", str(path), "tpl", "T1", "--from", "2025-01-06", "-w", "3", "--save", "--config-dir", str(config_dir)],
        )
        assert result.exit_code == 0
        assert "Windows created: 3" in result.output
        assert len(load_snapshot(path).windows_for("T1")) == 6

    def test_unknown_template(self, snapshot_file, config_dir):
        result = runner.invoke(
            app,
            ["apply-template", str(snapshot_file), "nope", "T1", "--from", "2025-01-06", "--config-dir", str(config_dir)],
        )
        assert result.exit_code == 1
        assert "not found" in result.output
