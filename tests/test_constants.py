"""Regression checks for immutable msiexec data and persisted settings."""
from __future__ import annotations

import uuid
from pathlib import Path

from msi_toolkit.constants import IMMUTABLE_CONFIG, describe_exit_code
from msi_toolkit.guids import format_guid, parse_guid
from msi_toolkit.user_settings import SettingsStore, UserSettings


def test_msiexec_verbs() -> None:
    msiexec = IMMUTABLE_CONFIG.msiexec
    assert (msiexec.install_verb, msiexec.repair_verb, msiexec.uninstall_verb) == ("/i", "/fa", "/x")
    assert msiexec.display_flags == {"quiet": "/quiet", "passive": "/passive", "full": ""}
    assert msiexec.default_log_option == "!*vx"


def test_release_poll_defaults() -> None:
    assert IMMUTABLE_CONFIG.release_poll.timeout_ms == 100
    assert IMMUTABLE_CONFIG.release_poll.interval_ms == 10


def test_uninstall_roots() -> None:
    roots = IMMUTABLE_CONFIG.uninstall_roots
    assert [root.hive for root in roots] == ["HKLM", "HKLM", "HKU"]
    assert "Wow6432Node" in roots[1].path
    assert roots[2].per_user


def test_exit_code_descriptions() -> None:
    assert "restart" in describe_exit_code(3010)
    assert describe_exit_code(1618).startswith("Another installation")
    assert describe_exit_code(42) == "Unknown msiexec exit code."


def test_parse_guid_forms() -> None:
    expected = uuid.UUID("e1724abc-a8d6-4d88-bbed-2e077c9ae6d2")
    assert parse_guid("{E1724ABC-A8D6-4D88-BBED-2E077C9AE6D2}") == expected
    assert parse_guid("e1724abc-a8d6-4d88-bbed-2e077c9ae6d2") == expected
    assert parse_guid(expected) is expected
    assert parse_guid("{E1724ABC-A8D6-4D88-BBED-2E077C9AE6D2") is None
    assert parse_guid("E1724ABCA8D64D88BBED2E077C9AE6D2") is None
    assert parse_guid("Notepad++") is None
    assert parse_guid(None) is None
    assert format_guid(expected) == "{E1724ABC-A8D6-4D88-BBED-2E077C9AE6D2}"


def test_settings_round_trip(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json")
    settings = UserSettings(display_mode="passive", log_dir=str(tmp_path / "logs"), release_timeout_ms=250)
    store.save(settings)
    assert store.load() == settings


def test_settings_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    assert SettingsStore(path).load() == UserSettings()
    path.write_text("[]", encoding="utf-8")
    assert SettingsStore(path).load() == UserSettings()


def test_settings_sanitize_values() -> None:
    settings = UserSettings.from_dict(
        {"display_mode": "Loud", "log_option": "  ", "release_timeout_ms": "soon", "checksum_algorithm": "SHA512"}
    )
    assert settings.display_mode == "quiet"
    assert settings.log_option == "!*vx"
    assert settings.release_timeout_ms == 100
    assert settings.checksum_algorithm == "sha512"
