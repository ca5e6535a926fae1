"""Installed program lookup over the registry uninstall keys."""
from __future__ import annotations

import fnmatch
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Iterator, Mapping, Protocol

from msi_toolkit.constants import IMMUTABLE_CONFIG, RegistryRoot
from msi_toolkit.errors import ProgramNotFoundError
from msi_toolkit.guids import parse_guid

try:  # Windows-only dependency, optional for non-Windows hosts
    import winreg  # type: ignore
except ImportError:  # pragma: no cover - not available on Linux runners
    winreg = None  # type: ignore

try:  # Windows-only dependency, optional for non-Windows hosts
    import win32security  # type: ignore
except ImportError:  # pragma: no cover - not available on Linux runners
    win32security = None  # type: ignore

logger = logging.getLogger(__name__)

_WILDCARD_CHARS = set("*?[")
_VERSION_PATTERN = re.compile(r"^\d+(?:\.\d+){1,3}$")
_INSTALL_DATE_FORMATS = ("%x", "%m/%d/%Y", "%d/%m/%Y", "%Y-%m-%d")


@dataclass(frozen=True)
class UninstallKey:
    path: str
    name: str
    values: Mapping[str, object]
    sid: str | None = None


class UninstallKeySource(Protocol):
    def iter_keys(self) -> Iterable[UninstallKey]:  # pragma: no cover - protocol
        ...


@dataclass(frozen=True)
class InstalledProgramInfo:
    display_name: str
    product_code: uuid.UUID | None
    publisher: str
    display_version: str
    version: tuple[int, ...] | None
    version_major: int | None
    version_minor: int | None
    install_date: date | None
    estimated_size: int | None
    size: str
    install_location: str
    install_source: str
    uninstall_string: str
    modify_path: str
    comments: str
    contact: str
    help_link: str
    help_telephone: str
    url_info_about: str
    url_update_info: str
    readme: str
    language: int | None
    windows_installer: bool
    key: str
    user: str | None = None

    @classmethod
    def from_key(cls, key: UninstallKey, *, user: str | None = None) -> "InstalledProgramInfo":
        values = key.values
        display_version = _text(values.get("DisplayVersion"))
        return cls(
            display_name=_text(values.get("DisplayName")),
            product_code=parse_guid(key.name),
            publisher=_text(values.get("Publisher")),
            display_version=display_version,
            version=_parse_version(display_version, values.get("Version")),
            version_major=_int_or_none(values.get("VersionMajor")),
            version_minor=_int_or_none(values.get("VersionMinor")),
            install_date=_parse_install_date(values.get("InstallDate")),
            estimated_size=_int_or_none(values.get("EstimatedSize")),
            size=_text(values.get("Size")),
            install_location=_text(values.get("InstallLocation")),
            install_source=_text(values.get("InstallSource")),
            uninstall_string=_text(values.get("UninstallString")),
            modify_path=_text(values.get("ModifyPath")),
            comments=_text(values.get("Comments")),
            contact=_text(values.get("Contact")),
            help_link=_text(values.get("HelpLink")),
            help_telephone=_text(values.get("HelpTelephone")),
            url_info_about=_text(values.get("URLInfoAbout")),
            url_update_info=_text(values.get("URLUpdateInfo")),
            readme=_text(values.get("Readme")),
            language=_int_or_none(values.get("Language")),
            windows_installer=_int_or_none(values.get("WindowsInstaller")) == 1,
            key=key.path,
            user=user,
        )


class WinregUninstallSource:
    """Walks the machine, WOW64 and per-user uninstall keys with winreg."""

    def __init__(self, roots: Iterable[RegistryRoot] | None = None) -> None:
        if winreg is None:
            raise RuntimeError("winreg not available on this platform")
        self._roots = tuple(roots) if roots is not None else IMMUTABLE_CONFIG.uninstall_roots

    def iter_keys(self) -> Iterator[UninstallKey]:
        for root in self._roots:
            if root.per_user:
                for sid in self._user_sids():
                    yield from self._iter_root(winreg.HKEY_USERS, "HKU", f"{sid}\\{root.path}", sid=sid)
            else:
                yield from self._iter_root(winreg.HKEY_LOCAL_MACHINE, root.hive, root.path)

    def _user_sids(self) -> list[str]:
        sids: list[str] = []
        with winreg.OpenKey(winreg.HKEY_USERS, "") as users:  # type: ignore[arg-type]
            for name in _enum_subkeys(users):
                if name.endswith("_Classes"):
                    continue
                sids.append(name)
        return sids

    def _iter_root(self, hive: object, hive_name: str, path: str, *, sid: str | None = None) -> Iterator[UninstallKey]:
        access = winreg.KEY_READ | getattr(winreg, "KEY_WOW64_64KEY", 0)
        try:
            root = winreg.OpenKey(hive, path, 0, access)  # type: ignore[arg-type]
        except OSError:
            return
        with root:
            for sub_name in _enum_subkeys(root):
                try:
                    with winreg.OpenKey(root, sub_name) as subkey:
                        values = _read_values(subkey)
                except OSError:
                    continue
                yield UninstallKey(path=f"{hive_name}\\{path}\\{sub_name}", name=sub_name, values=values, sid=sid)


def _enum_subkeys(key: object) -> Iterator[str]:
    index = 0
    while True:
        try:
            name = winreg.EnumKey(key, index)  # type: ignore[arg-type]
        except OSError:
            break
        index += 1
        yield name


def _read_values(key: object) -> dict[str, object]:
    values: dict[str, object] = {}
    index = 0
    while True:
        try:
            name, data, _ = winreg.EnumValue(key, index)  # type: ignore[arg-type]
        except OSError:
            break
        index += 1
        values[name] = data
    return values


def translate_sid(sid: str) -> str:
    """Account name for ``sid`` as ``DOMAIN\\user``, or the SID itself."""
    if win32security is None:
        return sid
    try:
        name, domain, _ = win32security.LookupAccountSid(None, win32security.ConvertStringSidToSid(sid))
    except Exception as exc:
        logger.debug("Unable to translate %s: %s", sid, exc)
        return sid
    return f"{domain}\\{name}" if domain else name


class InstalledProgramService:
    def __init__(
        self,
        *,
        source: UninstallKeySource | None = None,
        sid_translator=translate_sid,
    ) -> None:
        self._source = source
        self._translate_sid = sid_translator

    def get_programs(self, name: str | None = None, *, ignore_missing: bool = False) -> list[InstalledProgramInfo]:
        source = self._source or WinregUninstallSource()
        programs: list[InstalledProgramInfo] = []
        for key in source.iter_keys():
            if not _is_listed(key.values):
                continue
            info = InstalledProgramInfo.from_key(key, user=self._user_for(key))
            if name and not _name_matches(info.display_name, name):
                continue
            programs.append(info)
        programs.sort(key=lambda program: program.display_name.lower())
        if name and not programs and not _has_wildcards(name):
            if ignore_missing:
                logger.debug('Installed program "%s" not found', name)
            else:
                raise ProgramNotFoundError(name)
        return programs

    def _user_for(self, key: UninstallKey) -> str | None:
        if not key.sid:
            return None
        return self._translate_sid(key.sid)


def list_installed_programs(
    name: str | None = None,
    *,
    ignore_missing: bool = False,
    source: UninstallKeySource | None = None,
) -> list[InstalledProgramInfo]:
    return InstalledProgramService(source=source).get_programs(name, ignore_missing=ignore_missing)


def _is_listed(values: Mapping[str, object]) -> bool:
    if not _text(values.get("DisplayName")):
        return False
    if "ParentKeyName" in values:
        return False
    # Presence alone hides the entry, a SystemComponent of 0 included.
    if "SystemComponent" in values:
        return False
    return True


def _has_wildcards(pattern: str) -> bool:
    return any(char in _WILDCARD_CHARS for char in pattern)


def _name_matches(display_name: str, pattern: str) -> bool:
    return fnmatch.fnmatchcase(display_name.lower(), pattern.lower())


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value)


def _int_or_none(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _version_tuple(value: str | None) -> tuple[int, ...] | None:
    if not value:
        return None
    cleaned = value.strip()
    if not _VERSION_PATTERN.match(cleaned):
        return None
    return tuple(int(part) for part in cleaned.split("."))


def _unpack_version(value: int) -> tuple[int, int, int]:
    return (value >> 24) & 0xFF, (value >> 16) & 0xFF, value & 0xFFFF


def _parse_version(display_version: str, raw_version: object) -> tuple[int, ...] | None:
    parsed = _version_tuple(display_version)
    if parsed:
        return parsed
    if isinstance(raw_version, int) and not isinstance(raw_version, bool):
        return _unpack_version(raw_version)
    if isinstance(raw_version, str):
        return _version_tuple(raw_version)
    return None


def _parse_install_date(value: object) -> date | None:
    text = _text(value).strip()
    if not text:
        return None
    if re.fullmatch(r"\d{8}", text):
        try:
            return datetime.strptime(text, "%Y%m%d").date()
        except ValueError:
            return None
    for fmt in _INSTALL_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None
