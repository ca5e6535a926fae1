"""User-configurable settings persisted locally."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from msi_toolkit.constants import IMMUTABLE_CONFIG


SETTINGS_DIRNAME = ".msi_toolkit"
SETTINGS_FILENAME = "settings.json"

DISPLAY_MODES = tuple(IMMUTABLE_CONFIG.msiexec.display_flags)


def default_settings_path() -> Path:
    return Path.home() / SETTINGS_DIRNAME / SETTINGS_FILENAME


@dataclass
class UserSettings:
    display_mode: str = IMMUTABLE_CONFIG.msiexec.default_display_mode
    log_option: str = IMMUTABLE_CONFIG.msiexec.default_log_option
    log_dir: str = ""
    download_dir: str = ""
    release_timeout_ms: int = IMMUTABLE_CONFIG.release_poll.timeout_ms
    checksum_algorithm: str = "sha256"

    def to_dict(self) -> dict[str, Any]:
        return {
            "display_mode": self.display_mode,
            "log_option": self.log_option,
            "log_dir": self.log_dir,
            "download_dir": self.download_dir,
            "release_timeout_ms": self.release_timeout_ms,
            "checksum_algorithm": self.checksum_algorithm,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserSettings":
        defaults = cls()

        def _get(key: str, fallback: str) -> str:
            value = data.get(key)
            if value is None:
                return fallback
            return str(value)

        display_mode = _get("display_mode", defaults.display_mode).strip().lower()
        if display_mode not in DISPLAY_MODES:
            display_mode = defaults.display_mode
        try:
            release_timeout_ms = int(data.get("release_timeout_ms", defaults.release_timeout_ms))
        except (TypeError, ValueError):
            release_timeout_ms = defaults.release_timeout_ms

        return cls(
            display_mode=display_mode,
            log_option=_get("log_option", defaults.log_option).strip() or defaults.log_option,
            log_dir=_get("log_dir", ""),
            download_dir=_get("download_dir", ""),
            release_timeout_ms=max(release_timeout_ms, 0),
            checksum_algorithm=_get("checksum_algorithm", defaults.checksum_algorithm).strip().lower()
            or defaults.checksum_algorithm,
        )


class SettingsStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or default_settings_path()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> UserSettings:
        if not self._path.exists():
            return UserSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return UserSettings()
        if not isinstance(data, dict):
            return UserSettings()
        return UserSettings.from_dict(data)

    def save(self, settings: UserSettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(settings.to_dict(), indent=2, sort_keys=True)
        self._path.write_text(payload, encoding="utf-8")
