"""Package download and checksum helpers."""
from __future__ import annotations

import hashlib
import logging
import re
import time
import urllib.parse
import urllib.request
from pathlib import Path
from typing import Callable, Protocol

logger = logging.getLogger(__name__)

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


class Downloader(Protocol):
    def download(self, url: str, destination: Path) -> Path:  # pragma: no cover - protocol
        ...


class UrlDownloader:
    """Blocking HTTP(S) download backed by urllib."""

    def __init__(self, *, status_callback: Callable[[str], None] | None = None) -> None:
        self._status_callback = status_callback

    def download(self, url: str, destination: Path) -> Path:
        logger.info("Downloading %s to %s", url, destination)
        final_url = _download_file_with_final_url(url, destination, status_callback=self._status_callback)
        if final_url != url:
            logger.debug("Download of %s redirected to %s", url, final_url)
        return destination


def _download_file_with_final_url(
    url: str,
    destination: Path,
    *,
    status_callback: Callable[[str], None] | None = None,
) -> str:
    request = urllib.request.Request(url, headers={"User-Agent": "Mozilla/5.0"})
    destination.parent.mkdir(parents=True, exist_ok=True)
    with urllib.request.urlopen(request, timeout=60) as response, destination.open("wb") as handle:
        final_url = response.geturl()
        last_time = time.monotonic()
        last_bytes = 0
        downloaded = 0
        while True:
            chunk = response.read(256 * 1024)
            if not chunk:
                break
            handle.write(chunk)
            downloaded += len(chunk)
            now = time.monotonic()
            if status_callback and now - last_time >= 1.0:
                speed = (downloaded - last_bytes) / max(now - last_time, 0.001)
                status_callback(f"Downloading ({_format_speed(speed)})")
                last_time = now
                last_bytes = downloaded
    return final_url


def _format_speed(value: float) -> str:
    units = ["B/s", "KB/s", "MB/s", "GB/s"]
    speed = float(value)
    for unit in units:
        if speed < 1024 or unit == units[-1]:
            return f"{speed:.1f} {unit}"
        speed /= 1024
    return f"{speed:.1f} GB/s"


def sanitize_filename(value: str) -> str:
    cleaned = _INVALID_FILENAME_CHARS.sub("_", value.strip())
    return cleaned or "download"


def filename_from_url(url: str) -> str:
    """Local filename for ``url``.

    Uses the last path segment; a URL without one maps to the whole URL with
    invalid filename characters replaced.
    """
    parsed = urllib.parse.urlparse(url)
    name = urllib.parse.unquote(Path(parsed.path).name)
    if name:
        return sanitize_filename(name)
    return sanitize_filename(url)


def resolve_download_path(url: str, output_path: Path | str | None, default_dir: Path) -> Path:
    """Where a download of ``url`` should land.

    ``output_path`` may name an existing directory (the URL's filename is
    appended) or a file path. Without one, ``default_dir`` is used.
    """
    if output_path is None or str(output_path) == "":
        return default_dir / filename_from_url(url)
    target = Path(output_path)
    if target.is_dir():
        return target / filename_from_url(url)
    return target


def file_checksum(path: Path, algorithm: str = "sha256") -> str:
    try:
        digest = hashlib.new(algorithm)
    except ValueError as exc:
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}") from exc
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest().upper()


def checksums_match(expected: str, actual: str) -> bool:
    return expected.strip().lower() == actual.strip().lower()
