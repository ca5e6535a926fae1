from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Sequence

import pytest

from msi_toolkit.logging_utils import reset_logging
from msi_toolkit.user_settings import UserSettings
from services.installed_programs import InstalledProgramService, UninstallKey
from services.installer import CommandExecutionResult, InstallerService
from services.msi_reader import MsiReader

TEST_PRODUCT_CODE = "{E1724ABC-A8D6-4D88-BBED-2E077C9AE6D2}"
TEST_PRODUCT_NAME = "Carbon Test Installer"
UNINSTALL_PATH = r"HKLM\SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"


class FakeRecord:
    def __init__(self, fields: Sequence[object]) -> None:
        self._fields = list(fields)

    @property
    def FieldCount(self) -> int:
        return len(self._fields)

    def StringData(self, index: int) -> str:
        value = self._fields[index - 1]
        if isinstance(value, bytes):
            raise RuntimeError("field is a stream")
        return str(value)


class FakeView:
    def __init__(self, columns: Sequence[str], rows: Sequence[Sequence[object]]) -> None:
        self._columns = list(columns)
        self._rows = [list(row) for row in rows]
        self._cursor = 0
        self.executed = False
        self.closed = False

    def Execute(self) -> None:
        self.executed = True
        self._cursor = 0

    def ColumnInfo(self, kind: int) -> FakeRecord:
        assert kind == 0
        return FakeRecord(self._columns)

    def Fetch(self) -> FakeRecord | None:
        if self._cursor >= len(self._rows):
            return None
        row = self._rows[self._cursor]
        self._cursor += 1
        return FakeRecord(row)

    def Close(self) -> None:
        self.closed = True


class FakeDatabase:
    QUERY = re.compile(r"^SELECT \* FROM `([^`]+)`$")

    def __init__(self, tables: dict[str, tuple[Sequence[str], Sequence[Sequence[object]]]]) -> None:
        self._tables = dict(tables)
        self.views: list[FakeView] = []
        self.queries: list[str] = []

    def OpenView(self, query: str) -> FakeView:
        self.queries.append(query)
        match = self.QUERY.match(query)
        assert match, query
        table = match.group(1)
        if table == "_Tables":
            view = FakeView(["Name"], [[name] for name in self._tables])
        else:
            columns, rows = self._tables[table]
            view = FakeView(columns, rows)
        self.views.append(view)
        return view


class FakeInstaller:
    """Stands in for the WindowsInstaller.Installer COM object."""

    def __init__(self) -> None:
        self.databases: dict[str, FakeDatabase] = {}
        self.opened: list[tuple[str, int]] = []

    def register(self, path: Path, tables: dict[str, tuple[Sequence[str], Sequence[Sequence[object]]]]) -> FakeDatabase:
        database = FakeDatabase(tables)
        self.databases[str(path)] = database
        return database

    def OpenDatabase(self, path: str, mode: int) -> FakeDatabase:
        self.opened.append((path, mode))
        try:
            return self.databases[path]
        except KeyError:
            raise RuntimeError("OpenDatabase, DatabasePath, OpenMode: 0x80004005") from None


def msi_tables(
    *,
    product_name: str = TEST_PRODUCT_NAME,
    product_code: str = TEST_PRODUCT_CODE,
    product_version: str = "1.0.0",
    manufacturer: str = "Carbon",
    product_language: str = "1033",
) -> dict[str, tuple[list[str], list[list[object]]]]:
    return {
        "Property": (
            ["Property", "Value"],
            [
                ["Manufacturer", manufacturer],
                ["ProductCode", product_code],
                ["ProductLanguage", product_language],
                ["ProductName", product_name],
                ["ProductVersion", product_version],
                ["UpgradeCode", "{0A5C2C1E-3D2B-4E5B-9F1A-1234567890AB}"],
            ],
        ),
        "Feature": (
            ["Feature", "Feature_Parent", "Title", "Description", "Display", "Level", "Directory_", "Attributes"],
            [["ProductFeature", "", "Carbon Test", "Everything", 1, 1, "INSTALLFOLDER", 0]],
        ),
        "File": (
            ["File", "Component_", "FileName", "FileSize", "Version", "Language", "Attributes", "Sequence"],
            [
                ["file1", "comp1", "one.txt", 12, "", "", 512, 1],
                ["file2", "comp1", "two.txt", 34, "", "", 512, 2],
            ],
        ),
        "Binary": (["Name", "Data"], [["Icon", b"\x00\x01"]]),
        "Component": (["Component", "ComponentId", "Directory_", "Attributes", "Condition", "KeyPath"], []),
    }


@dataclass
class FakeUninstallSource:
    keys: list[UninstallKey] = field(default_factory=list)

    def add(self, name: str, sid: str | None = None, **values: object) -> UninstallKey:
        path = f"HKU\\{sid}\\Uninstall\\{name}" if sid else f"{UNINSTALL_PATH}\\{name}"
        key = UninstallKey(path=path, name=name, values=dict(values), sid=sid)
        self.keys.append(key)
        return key

    def iter_keys(self) -> Iterable[UninstallKey]:
        return list(self.keys)


class FakeRunner:
    """Records msiexec command lines and simulates their effect."""

    LOG_PATH = re.compile(r'/l\S* "([^"]+)"')
    INSTALL_TARGET = re.compile(r' /i "([^"]+)"')

    def __init__(self, source: FakeUninstallSource | None = None, *, returncode: int = 0) -> None:
        self.source = source
        self.returncode = returncode
        self.commands: list[str] = []
        # MSI path -> (product code, display name) registered by a successful /i
        self.install_on_success: dict[str, tuple[str, str]] = {}

    def run(self, command: str) -> CommandExecutionResult:
        self.commands.append(command)
        match = self.LOG_PATH.search(command)
        if match:
            log_path = Path(match.group(1))
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_path.write_text("=== Verbose logging started ===", encoding="utf-8")
        target = self.INSTALL_TARGET.search(command)
        if self.returncode == 0 and self.source is not None and target:
            product = self.install_on_success.get(target.group(1))
            if product and not any(key.name == product[0] for key in self.source.keys):
                self.source.add(product[0], DisplayName=product[1], DisplayVersion="1.0.0")
        return CommandExecutionResult(command, self.returncode, "", "")


class FakeDownloader:
    def __init__(self, payload: bytes = b"MSI payload", *, on_download=None) -> None:
        self.payload = payload
        self.calls: list[tuple[str, Path]] = []
        self._on_download = on_download

    def download(self, url: str, destination: Path) -> Path:
        self.calls.append((url, destination))
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.payload)
        if self._on_download:
            self._on_download(destination)
        return destination


@pytest.fixture(autouse=True)
def _clean_logging() -> Iterator[None]:
    yield
    reset_logging()


@pytest.fixture()
def com() -> FakeInstaller:
    return FakeInstaller()


@pytest.fixture()
def settings(tmp_path: Path) -> UserSettings:
    return UserSettings(log_dir=str(tmp_path / "logs"), download_dir=str(tmp_path / "downloads"))


@pytest.fixture()
def reader(com: FakeInstaller, settings: UserSettings) -> MsiReader:
    return MsiReader(installer_factory=lambda: com, settings=settings, lock_probe=lambda path: True)


@pytest.fixture()
def test_msi(tmp_path: Path, com: FakeInstaller) -> Path:
    path = tmp_path / "test.msi"
    path.write_bytes(b"\xd0\xcf\x11\xe0 fake compound file")
    com.register(path, msi_tables())
    return path


@pytest.fixture()
def uninstall_source() -> FakeUninstallSource:
    return FakeUninstallSource()


@pytest.fixture()
def programs(uninstall_source: FakeUninstallSource) -> InstalledProgramService:
    return InstalledProgramService(source=uninstall_source, sid_translator=lambda sid: sid)


@pytest.fixture()
def runner(uninstall_source: FakeUninstallSource, tmp_path: Path) -> FakeRunner:
    fake = FakeRunner(uninstall_source)
    fake.install_on_success[str(tmp_path / "test.msi")] = (TEST_PRODUCT_CODE, TEST_PRODUCT_NAME)
    return fake


@pytest.fixture()
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture()
def service(
    reader: MsiReader,
    programs: InstalledProgramService,
    runner: FakeRunner,
    downloader: FakeDownloader,
    settings: UserSettings,
) -> InstallerService:
    return InstallerService(
        reader=reader,
        programs=programs,
        runner=runner,
        downloader=downloader,
        settings=settings,
    )
