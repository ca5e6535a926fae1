"""Root logger setup shared by the command line entrypoint."""
from __future__ import annotations

import logging
from pathlib import Path

_CONFIGURED_ATTR = "_msi_toolkit_configured"
_HANDLERS_ATTR = "_msi_toolkit_handlers"
_PATH_ATTR = "_msi_toolkit_log_path"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
FALLBACK_LOG_NAME = "msi-toolkit.log"


def configure_logging(
    log_path: str | Path | None = None,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str | None:
    """Attach file and console handlers to the root logger.

    Only the first call adds handlers; later calls just update the level. If
    ``log_path`` cannot be opened, ``msi-toolkit.log`` in the working
    directory is used instead.

    Returns the file actually written to, or None for console-only logging.
    """
    root = logging.getLogger()
    root.setLevel(level)
    if getattr(root, _CONFIGURED_ATTR, False):
        return getattr(root, _PATH_ATTR, None)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = []
    chosen_path: str | None = None

    if log_path:
        file_handler, chosen_path = _open_file_handler(Path(log_path))
        handlers.append(file_handler)
    if also_console or not handlers:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    setattr(root, _CONFIGURED_ATTR, True)
    setattr(root, _HANDLERS_ATTR, handlers)
    setattr(root, _PATH_ATTR, chosen_path)
    logging.getLogger(__name__).debug("Logging initialized (requested=%s, actual=%s)", log_path, chosen_path)
    return chosen_path


def reset_logging() -> None:
    """Detach and close the handlers added by configure_logging."""
    root = logging.getLogger()
    for handler in getattr(root, _HANDLERS_ATTR, []):
        root.removeHandler(handler)
        handler.close()
    for attr in (_CONFIGURED_ATTR, _HANDLERS_ATTR, _PATH_ATTR):
        if hasattr(root, attr):
            delattr(root, attr)


def _open_file_handler(path: Path) -> tuple[logging.Handler, str]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(path, encoding="utf-8"), str(path)
    except OSError:
        fallback = Path.cwd() / FALLBACK_LOG_NAME
        return logging.FileHandler(fallback, encoding="utf-8"), str(fallback)
