"""Error taxonomy shared by the reader, the program lookup and the installer."""
from __future__ import annotations

from pathlib import Path
from typing import Sequence


class MsiToolkitError(RuntimeError):
    pass


class WindowsInstallerError(MsiToolkitError):
    """The Windows Installer COM object could not be created."""


class InvalidMsiError(MsiToolkitError):
    def __init__(self, path: Path | str, reason: str | BaseException = "") -> None:
        self.path = Path(path)
        detail = f": {reason}" if str(reason) else ""
        super().__init__(f'"{self.path}" is not a valid MSI package{detail}')


class ProgramNotFoundError(MsiToolkitError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'Installed program "{name}" not found')


class ChecksumMismatchError(MsiToolkitError):
    def __init__(self, path: Path | str, expected: str, actual: str, algorithm: str = "sha256") -> None:
        self.path = Path(path)
        self.expected = expected
        self.actual = actual
        self.algorithm = algorithm
        super().__init__(
            f'Checksum mismatch for "{self.path}": {algorithm} is "{actual}" but expected "{expected}"'
        )


class InstallerExecutionError(MsiToolkitError):
    def __init__(
        self,
        exit_code: int,
        log_path: Path | str | None,
        *,
        command: Sequence[str] = (),
        description: str = "",
    ) -> None:
        self.exit_code = exit_code
        self.log_path = Path(log_path) if log_path else None
        self.command = list(command)
        message = f"msiexec failed with exit code {exit_code}"
        if description:
            message = f"{message} ({description})"
        if self.log_path:
            message = f'{message}; see "{self.log_path}"'
        super().__init__(message)


class ResourceReleaseTimeout(MsiToolkitError):
    def __init__(self, attempts: int, elapsed: float) -> None:
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(f"Resource not released after {attempts} attempts ({elapsed * 1000:.0f} ms)")
