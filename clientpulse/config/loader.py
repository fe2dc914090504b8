"""Configuration loading utilities."""

import json
from pathlib import Path

from loguru import logger

from clientpulse.config.schema import Config
from clientpulse.utils.helpers import get_data_path


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return get_data_path() / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Environment variables (CLIENTPULSE_*) still apply on top of missing keys.
    A corrupt file falls back to defaults with a warning.
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Config(**data)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            logger.warning("Using default configuration.")

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Save configuration to file."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json")
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
