"""Utility functions for clientpulse."""

import os
from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """Get the clientpulse data directory (~/.clientpulse or CLIENTPULSE_DATA_DIR)."""
    override = (os.environ.get("CLIENTPULSE_DATA_DIR") or "").strip() or None
    return ensure_dir(Path(override) if override else Path.home() / ".clientpulse")


def get_store_path(path: str | None = None) -> Path:
    """
    Get the path of the JSON reminder store.

    Args:
        path: Optional explicit file path. Defaults to <data dir>/store.json.

    Returns:
        Expanded path whose parent directory exists.
    """
    if path:
        store = Path(path).expanduser()
    else:
        store = get_data_path() / "store.json"
    ensure_dir(store.parent)
    return store
