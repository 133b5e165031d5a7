"""Host facts recorded in run reports and consulted by remediation guards."""
from __future__ import annotations

import getpass
import logging
import os
import platform
import sys
from functools import lru_cache
from typing import Dict, Tuple

from .commands import run_command_graceful

logger = logging.getLogger(__name__)

CSRUTIL_BINARY = "/usr/bin/csrutil"


@lru_cache(maxsize=1)
def get_macos_version() -> Tuple[int, int, int]:
    """Product version as (major, minor, patch); all zeros off macOS."""
    release = platform.mac_ver()[0]
    numbers = []
    for part in release.split(".")[:3] if release else []:
        if not part.isdigit():
            return (0, 0, 0)
        numbers.append(int(part))
    numbers += [0] * (3 - len(numbers))
    return tuple(numbers)  # type: ignore[return-value]


def is_macos() -> bool:
    return sys.platform == "darwin"


def is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


@lru_cache(maxsize=1)
def is_sip_enabled() -> bool:
    """Whether System Integrity Protection is on.

    Off macOS there is nothing to protect. On macOS an unreadable or
    ambiguous ``csrutil`` answer counts as enabled, only an explicit
    "disabled" turns the guard off.
    """
    if not is_macos():
        return False
    status = run_command_graceful([CSRUTIL_BINARY, "status"], timeout=5).stdout.lower()
    if "status: disabled" not in status:
        return True
    logger.warning("System Integrity Protection is disabled on this host")
    return False


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.getenv("USER", "unknown")


def get_system_info() -> Dict[str, str]:
    """Host metadata attached to every run report."""
    release = platform.mac_ver()[0]
    return {
        "os": f"macOS {release}" if release else f"{platform.system()} {platform.release()}",
        "arch": platform.machine(),
        "hostname": platform.node(),
        "python": platform.python_version(),
        "user": _current_user(),
        "elevated": "yes" if is_root() else "no",
    }


def clear_cached_info() -> None:
    get_macos_version.cache_clear()
    is_sip_enabled.cache_clear()
