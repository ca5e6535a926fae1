"""Immutable settings for the Windows Installer automation layer."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class RegistryRoot:
    hive: str
    path: str
    per_user: bool = False


@dataclass(frozen=True)
class MsiexecSetting:
    executable: str
    install_verb: str
    repair_verb: str
    uninstall_verb: str
    display_flags: Dict[str, str]
    default_display_mode: str
    default_log_option: str


@dataclass(frozen=True)
class ReleasePollSetting:
    timeout_ms: int
    interval_ms: int


@dataclass(frozen=True)
class ImmutableConfig:
    uninstall_roots: Tuple[RegistryRoot, ...]
    msiexec: MsiexecSetting
    release_poll: ReleasePollSetting
    exit_codes: Dict[int, str]


UNINSTALL_SUBKEY = r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"

UNINSTALL_ROOTS: Tuple[RegistryRoot, ...] = (
    RegistryRoot(hive="HKLM", path=UNINSTALL_SUBKEY),
    RegistryRoot(hive="HKLM", path=r"SOFTWARE\Wow6432Node\Microsoft\Windows\CurrentVersion\Uninstall"),
    RegistryRoot(hive="HKU", path=r"Software\Microsoft\Windows\CurrentVersion\Uninstall", per_user=True),
)

MSIEXEC = MsiexecSetting(
    executable="msiexec.exe",
    install_verb="/i",
    repair_verb="/fa",
    uninstall_verb="/x",
    display_flags={"quiet": "/quiet", "passive": "/passive", "full": ""},
    default_display_mode="quiet",
    # everything, verbose, extra debugging, flush each line
    default_log_option="!*vx",
)

RELEASE_POLL = ReleasePollSetting(timeout_ms=100, interval_ms=10)

EXIT_CODE_PRODUCT_NOT_INSTALLED = 1605

MSIEXEC_EXIT_CODES: Dict[int, str] = {
    0: "The action completed successfully.",
    1602: "The user cancelled installation.",
    1603: "A fatal error occurred during installation.",
    1605: "This action is only valid for products that are currently installed.",
    1618: "Another installation is already in progress.",
    1619: "This installation package could not be opened.",
    1638: "Another version of this product is already installed.",
    1641: "The installer has initiated a restart.",
    3010: "A restart is required to complete the install.",
}

IMMUTABLE_CONFIG = ImmutableConfig(
    uninstall_roots=UNINSTALL_ROOTS,
    msiexec=MSIEXEC,
    release_poll=RELEASE_POLL,
    exit_codes=MSIEXEC_EXIT_CODES,
)


def describe_exit_code(code: int) -> str:
    return IMMUTABLE_CONFIG.exit_codes.get(code, "Unknown msiexec exit code.")
