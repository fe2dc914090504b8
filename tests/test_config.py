"""Tests for config schema defaults, env overrides and the JSON loader."""

import json

import pytest
from pydantic import ValidationError

from clientpulse.config.loader import load_config, save_config
from clientpulse.config.schema import Config
from clientpulse.utils.helpers import get_data_path, get_store_path


class TestConfigDefaults:
    def test_scheduler_defaults(self):
        cfg = Config().scheduler
        assert cfg.poll_interval_s == 20
        assert cfg.due_window_s == 60
        assert cfg.horizon_s == 24 * 60 * 60
        assert cfg.deliver_missed is True

    def test_reminder_defaults(self):
        cfg = Config().reminders
        assert cfg.past_tolerance_s == 60
        assert cfg.max_ahead_days is None
        assert cfg.strict_repeat is False
        assert cfg.timezone == "UTC"

    def test_console_transport_by_default(self):
        assert Config().active_transport == "console"

    def test_webhook_needs_url(self):
        config = Config.model_validate({"mail": {"webhook": {"enabled": True}}})
        assert config.active_transport == "console"

    def test_rejects_non_positive_poll_interval(self):
        with pytest.raises(ValidationError):
            Config.model_validate({"scheduler": {"poll_interval_s": 0}})


class TestEnvOverrides:
    def test_nested_env_var(self, monkeypatch):
        monkeypatch.setenv("CLIENTPULSE_SCHEDULER__POLL_INTERVAL_S", "5")
        monkeypatch.setenv("CLIENTPULSE_REMINDERS__STRICT_REPEAT", "true")

        config = Config()
        assert config.scheduler.poll_interval_s == 5
        assert config.reminders.strict_repeat is True


class TestLoader:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.json")
        assert config.storage.backend == "json"

    def test_round_trip(self, tmp_path):
        path = tmp_path / "config.json"
        config = Config.model_validate({"reminders": {"max_ahead_days": 90}})

        save_config(config, path)
        loaded = load_config(path)

        assert loaded.reminders.max_ahead_days == 90
        assert json.loads(path.read_text(encoding="utf-8"))["reminders"]["max_ahead_days"] == 90

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{broken", encoding="utf-8")

        assert load_config(path).scheduler.poll_interval_s == 20


class TestPaths:
    def test_data_dir_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CLIENTPULSE_DATA_DIR", str(tmp_path / "data"))

        assert get_data_path() == tmp_path / "data"
        assert get_store_path() == tmp_path / "data" / "store.json"
        assert (tmp_path / "data").is_dir()

    def test_explicit_store_path(self, tmp_path):
        path = get_store_path(str(tmp_path / "x" / "store.json"))
        assert path.parent.is_dir()
