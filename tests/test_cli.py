"""Tests for the clientpulse CLI (typer commands against a temp data dir)."""

import json
import re

import pytest
from typer.testing import CliRunner

from clientpulse import __version__
from clientpulse.cli.commands import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("CLIENTPULSE_DATA_DIR", str(tmp_path))
    return tmp_path


def _add_client(name="Ada", email="ada@example.com") -> str:
    result = runner.invoke(app, ["client", "add", name, email])
    assert result.exit_code == 0, result.output
    return re.search(r"\((c_[0-9a-f]+)\)", result.output).group(1)


def _store(data_dir) -> dict:
    return json.loads((data_dir / "store.json").read_text(encoding="utf-8"))


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_onboard_writes_config(data_dir):
    result = runner.invoke(app, ["onboard"])
    assert result.exit_code == 0
    assert (data_dir / "config.json").exists()


def test_client_add_and_list(data_dir):
    client_id = _add_client()

    result = runner.invoke(app, ["client", "list"])
    assert result.exit_code == 0
    assert client_id in result.output
    assert _store(data_dir)["clients"][0]["email"] == "ada@example.com"


def test_reminder_add_list_cancel(data_dir):
    client_id = _add_client()

    result = runner.invoke(
        app, ["reminder", "add", client_id, "2099-01-01T09:00:00Z", "Renewal call", "-r", "weekly"]
    )
    assert result.exit_code == 0, result.output
    reminder = _store(data_dir)["reminders"][0]
    assert reminder["repeat"] == "weekly"
    assert reminder["status"] == "scheduled"

    listed = runner.invoke(app, ["reminder", "list"])
    assert reminder["id"] in listed.output

    cancelled = runner.invoke(app, ["reminder", "cancel", reminder["id"]])
    assert cancelled.exit_code == 0
    assert _store(data_dir)["reminders"][0]["status"] == "cancelled"

    again = runner.invoke(app, ["reminder", "cancel", reminder["id"]])
    assert again.exit_code == 1
    assert "Error" in again.output


def test_reminder_add_in_past_fails(data_dir):
    client_id = _add_client()

    result = runner.invoke(app, ["reminder", "add", client_id, "2000-01-01T00:00:00Z", "late"])

    assert result.exit_code == 1
    assert "future" in result.output
    assert _store(data_dir)["reminders"] == []


def test_run_now_delivers_via_console(data_dir):
    client_id = _add_client()
    runner.invoke(app, ["reminder", "add", client_id, "2099-01-01T09:00:00Z", "Hello"])
    reminder_id = _store(data_dir)["reminders"][0]["id"]

    result = runner.invoke(app, ["reminder", "run-now", reminder_id])

    assert result.exit_code == 0, result.output
    stored = _store(data_dir)["reminders"][0]
    assert stored["status"] == "sent"
    assert stored["last_sent_at"] is not None

    logs = runner.invoke(app, ["logs"])
    assert logs.exit_code == 0
    assert "Send" in logs.output


def test_run_now_unknown_id():
    result = runner.invoke(app, ["reminder", "run-now", "r_missing"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_status():
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "console" in result.output
