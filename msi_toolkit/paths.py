"""Path utilities for locating download and log directories."""
from __future__ import annotations

import tempfile
from pathlib import Path


def get_temp_directory() -> Path:
    return Path(tempfile.gettempdir())


def get_downloads_directory(configured: str = "") -> Path:
    """Directory that receives downloaded packages when no output path is given."""
    if configured.strip():
        return Path(configured.strip())
    return get_temp_directory()


def get_log_directory(configured: str = "") -> Path:
    if configured.strip():
        return Path(configured.strip())
    return get_temp_directory()
