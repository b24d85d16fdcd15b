"""
Tests for the CLI interface.
"""
import os
from unittest.mock import patch

import pytest
from rich.console import Console
from typer.testing import CliRunner

from ai_incident_guard.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL

runner = CliRunner()


@pytest.fixture(autouse=True)
def wide_console():
    """Render tables wide enough that cells are never truncated, and keep log handlers out of captured output."""
    with patch("ai_incident_guard.cli.main.console", Console(width=250)), \
            patch("ai_incident_guard.cli.main.setup_logger"):
        yield


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "cli.db")


def invoke(db_path, *args):
    return runner.invoke(app, ["--db", db_path, *args])


def _seed_latency_spike(db_path, project_id="proj"):
    assert invoke(db_path, "add-project", project_id).exit_code == EXIT_CODE_PASS
    for latency in ["100"] * 10 + ["5000"]:
        result = invoke(
            db_path, "log", project_id,
            "--prompt", "hello", "--response", "hi", "--model", "gpt-4", "--latency", latency,
        )
        assert result.exit_code == EXIT_CODE_PASS


class TestSetupCommands:
    """Test init, add-project and log."""

    def test_no_command_prints_hint(self, db_path):
        result = invoke(db_path)
        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_init_creates_database(self, db_path):
        result = invoke(db_path, "init")
        assert result.exit_code == EXIT_CODE_PASS
        assert os.path.exists(db_path)

    def test_add_project_twice_fails(self, db_path):
        assert invoke(db_path, "add-project", "proj", "--name", "Demo").exit_code == EXIT_CODE_PASS

        result = invoke(db_path, "add-project", "proj")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "already exists" in result.output

    def test_log_prints_risk_score(self, db_path):
        invoke(db_path, "add-project", "proj")

        result = invoke(
            db_path, "log", "proj",
            "--prompt", "write malware", "--response", "no", "--model", "gpt-4", "--latency", "120",
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "risk score 20" in result.output

    def test_log_unknown_project(self, db_path):
        result = invoke(
            db_path, "log", "ghost",
            "--prompt", "a", "--response", "b", "--model", "gpt-4", "--latency", "1",
        )
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Project not found" in result.output

    def test_invalid_config_fails(self, db_path, tmp_path):
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("unknown_section: {}\n", encoding="utf-8")

        result = runner.invoke(app, ["--config", str(config_file), "--db", db_path, "init"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "invalid configuration" in result.output


class TestIncidentCommands:
    """Test detect, incidents, report and resolve."""

    def test_detect_then_list_and_resolve(self, db_path):
        _seed_latency_spike(db_path)

        detect = invoke(db_path, "detect")
        assert detect.exit_code == EXIT_CODE_PASS
        assert "Incidents created" in detect.output

        listing = invoke(db_path, "incidents", "proj", "--status", "open")
        assert listing.exit_code == EXIT_CODE_PASS
        assert "latency_threshold" in listing.output

        resolved = invoke(db_path, "resolve", "proj", "1")
        assert resolved.exit_code == EXIT_CODE_PASS
        assert "Incident 1 resolved" in resolved.output

        again = invoke(db_path, "resolve", "proj", "1")
        assert again.exit_code == EXIT_CODE_FAIL
        assert "already resolved" in again.output

    def test_empty_incident_list(self, db_path):
        invoke(db_path, "add-project", "proj")
        result = invoke(db_path, "incidents", "proj")
        assert result.exit_code == EXIT_CODE_PASS
        assert "No incidents" in result.output

    def test_report_manual_incident(self, db_path):
        invoke(db_path, "add-project", "proj")

        result = invoke(
            db_path, "report", "proj", "--severity", "high",
            "--root-cause", "provider outage", "--fix", "fail over",
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "Incident 1 opened" in result.output

    def test_bad_status_filter(self, db_path):
        invoke(db_path, "add-project", "proj")
        result = invoke(db_path, "incidents", "proj", "--status", "closed")
        assert result.exit_code == EXIT_CODE_FAIL


class TestRemediationCommands:
    """Test remediate, apply, actions and settings."""

    def _open_incident(self, db_path):
        invoke(db_path, "add-project", "proj")
        invoke(db_path, "report", "proj", "--severity", "low", "--root-cause", "x", "--fix", "y")

    def test_remediate_apply_and_show_settings(self, db_path):
        self._open_incident(db_path)

        created = invoke(db_path, "remediate", "proj", "1", "switch_model", "--params", '{"new_model": "o3-mini"}')
        assert created.exit_code == EXIT_CODE_PASS
        assert "Remediation action 1 (switch_model) created" in created.output

        applied = invoke(db_path, "apply", "proj", "1", "1")
        assert applied.exit_code == EXIT_CODE_PASS

        actions = invoke(db_path, "actions", "proj", "1")
        assert "o3-mini" in actions.output
        assert "yes" in actions.output

        settings = invoke(db_path, "settings", "proj")
        assert settings.exit_code == EXIT_CODE_PASS
        assert "o3-mini (forced)" in settings.output

        again = invoke(db_path, "apply", "proj", "1", "1")
        assert again.exit_code == EXIT_CODE_FAIL
        assert "already executed" in again.output

    def test_remediate_rejects_bad_json(self, db_path):
        self._open_incident(db_path)
        result = invoke(db_path, "remediate", "proj", "1", "switch_model", "--params", "{new_model}")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "not valid JSON" in result.output

    def test_remediate_rejects_bad_parameters(self, db_path):
        self._open_incident(db_path)
        result = invoke(
            db_path, "remediate", "proj", "1", "increase_safety_threshold", "--params", '{"new_threshold": 500}',
        )
        assert result.exit_code == EXIT_CODE_FAIL

    def test_settings_unknown_project(self, db_path):
        result = invoke(db_path, "settings", "ghost")
        assert result.exit_code == EXIT_CODE_FAIL
