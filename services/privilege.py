"""Admin privilege helpers for Windows."""
from __future__ import annotations

import ctypes
import logging
import sys

logger = logging.getLogger(__name__)


def is_admin() -> bool:
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    except AttributeError:
        return False


def relaunch_as_admin() -> bool:
    if not sys.platform.startswith("win"):
        return False
    if getattr(sys, "frozen", False):
        executable = sys.executable
        params = " ".join(f'"{arg}"' for arg in sys.argv[1:])
    else:
        executable = sys.executable
        params = " ".join(f'"{arg}"' for arg in sys.argv)
    result = ctypes.windll.shell32.ShellExecuteW(None, "runas", executable, params, None, 1)
    return result > 32


def ensure_admin(*, elevate: bool = False) -> bool:
    """Return True when the current process may continue.

    Without ``elevate`` a non-admin process continues with a warning, since
    msiexec can still prompt for consent itself. With ``elevate`` the command
    is relaunched elevated and the current process should stop.
    """
    if not sys.platform.startswith("win"):
        return True
    if is_admin():
        return True
    if not elevate:
        logger.warning("Not running as administrator; msiexec may prompt for elevation")
        return True
    if relaunch_as_admin():
        logger.info("Relaunched elevated")
    else:
        logger.error("Unable to relaunch as administrator")
    return False
