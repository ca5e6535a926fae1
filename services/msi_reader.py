"""Read product metadata and internal tables from MSI packages."""
from __future__ import annotations

import fnmatch
import gc
import glob
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

from msi_toolkit.constants import IMMUTABLE_CONFIG
from msi_toolkit.errors import InvalidMsiError, ResourceReleaseTimeout, WindowsInstallerError
from msi_toolkit.guids import parse_guid
from msi_toolkit.paths import get_downloads_directory
from msi_toolkit.retry import wait_until
from msi_toolkit.user_settings import UserSettings
from services.downloads import Downloader, UrlDownloader, resolve_download_path

logger = logging.getLogger(__name__)

MSI_OPEN_READ_ONLY = 0
MSI_COLUMN_INFO_NAMES = 0
ALWAYS_READ_TABLES = ("Property", "Feature")
BINARY_PLACEHOLDER = "[Binary Data]"


@dataclass(frozen=True)
class MsiRecord:
    """One row of an MSI table, every column as a string."""

    table: str
    values: Mapping[str, str]

    def __getitem__(self, column: str) -> str:
        return self.values[column]

    def get(self, column: str, default: str | None = None) -> str | None:
        return self.values.get(column, default)


@dataclass(frozen=True)
class MsiFeature:
    feature: str
    parent: str
    title: str
    description: str
    display: int | None
    level: int | None
    directory: str
    attributes: int | None

    @classmethod
    def from_record(cls, record: MsiRecord) -> "MsiFeature":
        return cls(
            feature=record.get("Feature", "") or "",
            parent=record.get("Feature_Parent", "") or "",
            title=record.get("Title", "") or "",
            description=record.get("Description", "") or "",
            display=_parse_int(record.get("Display")),
            level=_parse_int(record.get("Level")),
            directory=record.get("Directory_", "") or "",
            attributes=_parse_int(record.get("Attributes")),
        )


@dataclass
class MsiInfo:
    path: Path
    manufacturer: str | None = None
    product_name: str | None = None
    product_version: str | None = None
    product_code: uuid.UUID | None = None
    product_language: int | None = None
    table_names: list[str] = field(default_factory=list)
    tables: dict[str, list[MsiRecord]] = field(default_factory=dict)

    @property
    def properties(self) -> dict[str, str]:
        return {
            record.get("Property", "") or "": record.get("Value", "") or ""
            for record in self.tables.get("Property", [])
        }

    @property
    def features(self) -> list[MsiFeature]:
        return [MsiFeature.from_record(record) for record in self.tables.get("Feature", [])]


@dataclass
class MsiReadResult:
    path: Path
    info: MsiInfo | None = None
    error: Exception | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def _create_installer() -> Any:
    try:
        import win32com.client

        return win32com.client.Dispatch("WindowsInstaller.Installer")
    except ImportError as exc:
        raise WindowsInstallerError(
            "win32com is required to read MSI packages. Install with: pip install pywin32"
        ) from exc
    except Exception as exc:
        raise WindowsInstallerError(f"Failed to create Windows Installer object: {exc}") from exc


def _can_open_shared(path: Path) -> bool:
    try:
        with path.open("rb"):
            return True
    except OSError:
        return False


def expand_msi_paths(pattern: str | Path) -> list[Path]:
    """Concrete files matching ``pattern``, sorted. Literal paths pass through."""
    text = str(pattern)
    if glob.has_magic(text):
        return [Path(match) for match in sorted(glob.glob(text)) if Path(match).is_file()]
    candidate = Path(text)
    return [candidate] if candidate.exists() else []


class MsiReader:
    def __init__(
        self,
        *,
        installer_factory: Callable[[], Any] | None = None,
        settings: UserSettings | None = None,
        downloader: Downloader | None = None,
        lock_probe: Callable[[Path], bool] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._installer_factory = installer_factory or _create_installer
        self._settings = settings or UserSettings()
        self._downloader = downloader or UrlDownloader()
        self._lock_probe = lock_probe or _can_open_shared
        self._clock = clock
        self._sleep = sleep

    def read(self, path: Path | str, include_tables: Iterable[str] = ()) -> MsiInfo:
        msi_path = Path(path)
        if not msi_path.is_file():
            raise InvalidMsiError(msi_path, "file not found")
        patterns = tuple(include_tables)
        try:
            table_names, tables = self._read_database(msi_path, patterns)
        finally:
            self._release(msi_path)
        info = _build_info(msi_path, table_names, tables)
        logger.debug(
            "Read %s: %s %s (%s), %d tables",
            msi_path,
            info.product_name,
            info.product_version,
            info.product_code,
            len(table_names),
        )
        return info

    def read_paths(self, pattern: str | Path, include_tables: Iterable[str] = ()) -> list[MsiReadResult]:
        paths = expand_msi_paths(pattern)
        if not paths:
            raise FileNotFoundError(f"No MSI files match {pattern}")
        patterns = tuple(include_tables)
        results: list[MsiReadResult] = []
        for msi_path in paths:
            try:
                results.append(MsiReadResult(msi_path, info=self.read(msi_path, patterns)))
            except InvalidMsiError as exc:
                logger.error("%s", exc)
                results.append(MsiReadResult(msi_path, error=exc))
        return results

    def read_url(
        self,
        url: str,
        output_path: Path | str | None = None,
        include_tables: Iterable[str] = (),
    ) -> MsiInfo:
        default_dir = get_downloads_directory(self._settings.download_dir)
        destination = resolve_download_path(url, output_path, default_dir)
        self._downloader.download(url, destination)
        return self.read(destination, include_tables)

    def _read_database(
        self, msi_path: Path, patterns: Sequence[str]
    ) -> tuple[list[str], dict[str, list[MsiRecord]]]:
        installer = self._installer_factory()
        try:
            database = installer.OpenDatabase(str(msi_path), MSI_OPEN_READ_ONLY)
        except Exception as exc:
            raise InvalidMsiError(msi_path, exc) from exc

        try:
            table_names = [record["Name"] for record in _read_table(database, "_Tables")]
            tables: dict[str, list[MsiRecord]] = {}
            for name in table_names:
                if _should_read(name, patterns):
                    tables[name] = _read_table(database, name)
                else:
                    tables[name] = []
        except Exception as exc:
            raise InvalidMsiError(msi_path, exc) from exc
        return table_names, tables

    def _release(self, msi_path: Path) -> None:
        # COM drops the database handle once the last Python reference is
        # collected; the file lock clears some time after that.
        gc.collect()
        timeout = self._settings.release_timeout_ms / 1000.0
        try:
            wait_until(
                lambda: self._lock_probe(msi_path),
                timeout=timeout,
                interval=IMMUTABLE_CONFIG.release_poll.interval_ms / 1000.0,
                clock=self._clock,
                sleep=self._sleep,
            )
        except ResourceReleaseTimeout as exc:
            logger.warning("%s still locked after reading: %s", msi_path, exc)


def _should_read(table: str, patterns: Sequence[str]) -> bool:
    if table in ALWAYS_READ_TABLES:
        return True
    return any(fnmatch.fnmatchcase(table, pattern) for pattern in patterns)


def _read_table(database: Any, table: str) -> list[MsiRecord]:
    view = database.OpenView(f"SELECT * FROM `{table}`")
    try:
        view.Execute()
        column_info = view.ColumnInfo(MSI_COLUMN_INFO_NAMES)
        columns = [column_info.StringData(index) for index in range(1, column_info.FieldCount + 1)]
        rows: list[MsiRecord] = []
        while True:
            record = view.Fetch()
            if record is None:
                break
            values = {column: _field_text(record, index) for index, column in enumerate(columns, start=1)}
            rows.append(MsiRecord(table, values))
        return rows
    finally:
        view.Close()


def _field_text(record: Any, index: int) -> str:
    try:
        value = record.StringData(index)
    except Exception:
        # stream columns cannot be read as text
        return BINARY_PLACEHOLDER
    if value is None:
        return ""
    return str(value)


def _build_info(msi_path: Path, table_names: list[str], tables: dict[str, list[MsiRecord]]) -> MsiInfo:
    info = MsiInfo(path=msi_path, table_names=table_names, tables=tables)
    properties = info.properties
    info.manufacturer = properties.get("Manufacturer")
    info.product_name = properties.get("ProductName")
    info.product_version = properties.get("ProductVersion")
    info.product_code = parse_guid(properties.get("ProductCode"))
    info.product_language = _parse_int(properties.get("ProductLanguage"))
    return info


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None
