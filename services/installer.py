"""MSI installation orchestration."""
from __future__ import annotations

import glob
import logging
import subprocess
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Protocol, Sequence

from msi_toolkit.constants import EXIT_CODE_PRODUCT_NOT_INSTALLED, IMMUTABLE_CONFIG, describe_exit_code
from msi_toolkit.errors import ChecksumMismatchError, InstallerExecutionError, InvalidMsiError
from msi_toolkit.guids import format_guid, parse_guid
from msi_toolkit.paths import get_downloads_directory, get_log_directory
from msi_toolkit.user_settings import UserSettings
from services.downloads import (
    Downloader,
    UrlDownloader,
    checksums_match,
    file_checksum,
    resolve_download_path,
    sanitize_filename,
)
from services.installed_programs import InstalledProgramInfo, InstalledProgramService
from services.msi_reader import MsiReader, expand_msi_paths

logger = logging.getLogger(__name__)

ACTION_SKIP = "skip"
ACTION_INSTALL = "install"
ACTION_REPAIR = "repair"
ACTION_UNINSTALL = "uninstall"


@dataclass
class CommandExecutionResult:
    command: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


class CommandRunner(Protocol):
    def run(self, command: str) -> CommandExecutionResult:  # pragma: no cover - protocol
        ...


class SubprocessRunner:
    """Runs a Windows command line and blocks until it exits."""

    def run(self, command: str) -> CommandExecutionResult:
        completed = subprocess.run(command, capture_output=True, text=True, check=False)
        return CommandExecutionResult(command, completed.returncode, completed.stdout, completed.stderr)


@dataclass(frozen=True)
class MsiDownload:
    url: str
    checksum: str
    product_name: str
    product_code: uuid.UUID
    checksum_algorithm: str | None = None

    def __post_init__(self) -> None:
        code = parse_guid(self.product_code)
        if code is None:
            raise ValueError(f"Invalid product code: {self.product_code}")
        object.__setattr__(self, "product_code", code)


@dataclass
class InstallOptions:
    force: bool = False
    display_mode: str | None = None
    log_option: str | None = None
    log_path: Path | str | None = None
    argument_list: Sequence[str] = ()
    output_path: Path | str | None = None
    dry_run: bool = False


@dataclass
class InstallResult:
    target: str
    action: str
    success: bool
    message: str
    product_name: str | None = None
    product_code: uuid.UUID | None = None
    exit_code: int | None = None
    log_path: Path | None = None
    command: list[str] = field(default_factory=list)
    error: Exception | None = None


class InstallerService:
    def __init__(
        self,
        *,
        reader: MsiReader | None = None,
        programs: InstalledProgramService | None = None,
        runner: CommandRunner | None = None,
        downloader: Downloader | None = None,
        settings: UserSettings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._settings = settings or UserSettings()
        self._downloader = downloader or UrlDownloader()
        self._reader = reader or MsiReader(settings=self._settings, downloader=self._downloader)
        self._programs = programs or InstalledProgramService()
        self._runner = runner or SubprocessRunner()
        self._clock = clock

    def find_installed(self, product_name: str | None, product_code: uuid.UUID | None) -> InstalledProgramInfo | None:
        if not product_name or product_code is None:
            return None
        for program in self._programs.get_programs(glob.escape(product_name), ignore_missing=True):
            if program.product_code == product_code:
                return program
        return None

    def decide(self, product_name: str | None, product_code: uuid.UUID | None, *, force: bool = False) -> str:
        if self.find_installed(product_name, product_code) is None:
            return ACTION_INSTALL
        return ACTION_REPAIR if force else ACTION_SKIP

    def install_paths(
        self,
        pattern: str | Path,
        options: InstallOptions | None = None,
        *,
        progress_callback: Callable[[int, int, str], None] | None = None,
    ) -> list[InstallResult]:
        options = options or InstallOptions()
        paths = expand_msi_paths(pattern)
        if not paths:
            raise FileNotFoundError(f"No MSI files match {pattern}")
        results: list[InstallResult] = []
        total = len(paths)
        for index, path in enumerate(paths, start=1):
            results.append(self._install_path(path, options))
            if progress_callback:
                progress_callback(index, total, str(path))
        return results

    def install_from_url(self, download: MsiDownload, options: InstallOptions | None = None) -> InstallResult:
        options = options or InstallOptions()
        action = self.decide(download.product_name, download.product_code, force=options.force)
        if action == ACTION_SKIP:
            return self._skipped(download.url, download.product_name, download.product_code)

        default_dir = get_downloads_directory(self._settings.download_dir)
        destination = resolve_download_path(download.url, options.output_path, default_dir)
        self._downloader.download(download.url, destination)
        algorithm = download.checksum_algorithm or self._settings.checksum_algorithm
        actual = file_checksum(destination, algorithm)
        if not checksums_match(download.checksum, actual):
            raise ChecksumMismatchError(destination, download.checksum, actual, algorithm)
        logger.debug("%s checksum verified (%s)", destination, algorithm)

        result = self._execute(
            download.url,
            action,
            destination,
            download.product_name,
            download.product_code,
            options,
        )
        if options.output_path is None:
            destination.unlink(missing_ok=True)
        return result

    def uninstall(self, product_code: uuid.UUID | str, options: InstallOptions | None = None) -> InstallResult:
        options = options or InstallOptions()
        code = parse_guid(product_code)
        if code is None:
            raise ValueError(f"Invalid product code: {product_code}")
        target = format_guid(code)
        log_path, custom_log = self._log_path_for(target, options)
        command = self._build_command(IMMUTABLE_CONFIG.msiexec.uninstall_verb, target, options, log_path)
        if options.dry_run:
            logger.info("DRY RUN %s", " ".join(command))
            return InstallResult(
                target,
                ACTION_UNINSTALL,
                True,
                "Uninstall skipped (dry run)",
                product_code=code,
                log_path=log_path,
                command=command,
            )
        logger.info("Uninstalling %s: %s", target, " ".join(command))
        completed = self._runner.run(" ".join(command))
        if completed.returncode == EXIT_CODE_PRODUCT_NOT_INSTALLED:
            self._discard_log(log_path, custom_log)
            return InstallResult(
                target,
                ACTION_SKIP,
                True,
                "Product not installed",
                product_code=code,
                exit_code=completed.returncode,
                command=command,
            )
        self._check_exit_code(completed.returncode, log_path, command)
        self._discard_log(log_path, custom_log)
        return InstallResult(
            target,
            ACTION_UNINSTALL,
            True,
            "Uninstall completed",
            product_code=code,
            exit_code=completed.returncode,
            log_path=log_path if custom_log else None,
            command=command,
        )

    def _install_path(self, path: Path, options: InstallOptions) -> InstallResult:
        try:
            info = self._reader.read(path)
        except InvalidMsiError as exc:
            logger.error("%s", exc)
            return InstallResult(str(path), ACTION_INSTALL, False, str(exc), error=exc)

        action = self.decide(info.product_name, info.product_code, force=options.force)
        if action == ACTION_SKIP:
            return self._skipped(str(path), info.product_name, info.product_code)
        try:
            return self._execute(str(path), action, path, info.product_name, info.product_code, options)
        except InstallerExecutionError as exc:
            logger.error("%s %s: %s", action.capitalize(), path, exc)
            return InstallResult(
                str(path),
                action,
                False,
                str(exc),
                product_name=info.product_name,
                product_code=info.product_code,
                exit_code=exc.exit_code,
                log_path=exc.log_path,
                command=exc.command,
                error=exc,
            )

    def _skipped(self, target: str, product_name: str | None, product_code: uuid.UUID | None) -> InstallResult:
        logger.info("%s (%s) is already installed", product_name, product_code)
        return InstallResult(
            target,
            ACTION_SKIP,
            True,
            "Already installed",
            product_name=product_name,
            product_code=product_code,
        )

    def _execute(
        self,
        target: str,
        action: str,
        msi_path: Path,
        product_name: str | None,
        product_code: uuid.UUID | None,
        options: InstallOptions,
    ) -> InstallResult:
        verb = IMMUTABLE_CONFIG.msiexec.repair_verb if action == ACTION_REPAIR else IMMUTABLE_CONFIG.msiexec.install_verb
        log_path, custom_log = self._log_path_for(msi_path.stem, options)
        command = self._build_command(verb, f'"{msi_path}"', options, log_path)
        command_line = " ".join(command)
        if options.dry_run:
            logger.info("DRY RUN %s", command_line)
            return InstallResult(
                target,
                action,
                True,
                f"{action.capitalize()} skipped (dry run)",
                product_name=product_name,
                product_code=product_code,
                log_path=log_path,
                command=command,
            )

        logger.info("%s %s: %s", "Repairing" if action == ACTION_REPAIR else "Installing", product_name or msi_path, command_line)
        completed = self._runner.run(command_line)
        self._check_exit_code(completed.returncode, log_path, command)
        self._discard_log(log_path, custom_log)
        return InstallResult(
            target,
            action,
            True,
            f"{action.capitalize()} completed",
            product_name=product_name,
            product_code=product_code,
            exit_code=completed.returncode,
            log_path=log_path if custom_log else None,
            command=command,
        )

    def _build_command(self, verb: str, target: str, options: InstallOptions, log_path: Path) -> list[str]:
        msiexec = IMMUTABLE_CONFIG.msiexec
        display_mode = (options.display_mode or self._settings.display_mode).strip().lower()
        if display_mode not in msiexec.display_flags:
            raise ValueError(f"Unknown display mode: {display_mode}")
        log_option = options.log_option or self._settings.log_option
        command = [msiexec.executable, verb, target]
        flag = msiexec.display_flags[display_mode]
        if flag:
            command.append(flag)
        command.extend([f"/l{log_option}", f'"{log_path}"'])
        command.extend(options.argument_list)
        return command

    def _log_path_for(self, name: str, options: InstallOptions) -> tuple[Path, bool]:
        if options.log_path is not None and str(options.log_path):
            return Path(options.log_path), True
        stamp = self._clock().strftime("%Y%m%d%H%M%S")
        log_dir = get_log_directory(self._settings.log_dir)
        return log_dir / f"{sanitize_filename(name)}.{stamp}.log", False

    def _check_exit_code(self, returncode: int, log_path: Path, command: list[str]) -> None:
        if returncode == 0:
            return
        raise InstallerExecutionError(
            returncode,
            log_path,
            command=command,
            description=describe_exit_code(returncode),
        )

    def _discard_log(self, log_path: Path, custom_log: bool) -> None:
        if custom_log:
            return
        try:
            log_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.debug("Unable to delete %s: %s", log_path, exc)
