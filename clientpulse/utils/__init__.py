"""Utility functions for clientpulse."""

from clientpulse.utils.helpers import ensure_dir, get_data_path

__all__ = ["ensure_dir", "get_data_path"]
