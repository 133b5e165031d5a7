"""Dependency injection container for OS interactions.

The real implementation wraps actual system calls (subprocess, psutil,
os.chflags), while tests inject :class:`MockOSInterface`.

Usage:
    # Production code
    container = get_container()
    processes = container.os.list_processes()

    # Test code
    mock_os = MockOSInterface()
    mock_os.mock_process(4242, "/private/tmp/p --daemon")
    container = DependencyContainer(os_interface=mock_os)
"""
from __future__ import annotations

import fnmatch
import glob as _glob
import logging
import os
import plistlib
import pwd
import shutil
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import psutil

from ..utils.commands import (
    CommandExecutionError,
    CommandResult,
    defaults_write_command,
    run_command,
)
from .interfaces import FileStat, OSInterface, ProcessInfo

logger = logging.getLogger(__name__)

# Global container instance (singleton pattern)
_container: Optional["DependencyContainer"] = None

_UF_IMMUTABLE = getattr(stat, "UF_IMMUTABLE", 0x2)


def plist_target(path: Path) -> str:
    """``defaults`` addresses a plist file by its path without extension."""
    text = str(path)
    return text[: -len(".plist")] if text.endswith(".plist") else text


def _owner_of(path: Path) -> Tuple[int, int]:
    st = os.stat(path)
    return st.st_uid, st.st_gid


def _hand_to_owner(created: Path, anchor: Path) -> None:
    """Give files root just created under ``anchor`` to the owner of ``anchor``.

    ``defaults`` run as root leaves a new plist (and any folders it had to
    make) owned by root, which the user's own preference daemon cannot update.
    """
    uid, gid = _owner_of(anchor)
    if uid == 0:
        return
    paths = [created] + [parent for parent in created.parents if anchor in parent.parents]
    for path in paths:
        os.chown(path, uid, gid, follow_symlinks=False)
    logger.info("Handed %s to uid %d", created, uid)


class RealOSInterface:
    """Production implementation of OSInterface."""

    def run_command(
        self,
        args: Sequence[str],
        timeout: float = 30.0,
        check: bool = False,
    ) -> CommandResult:
        try:
            return run_command(args, timeout=timeout, check=check)
        except FileNotFoundError:
            return CommandResult(
                stdout="",
                stderr=f"Command not found: {args[0]}",
                returncode=-1,
                command=list(args),
            )
        except CommandExecutionError:
            raise
        except OSError as exc:
            logger.error("OS error running %s: %s", args[0], exc)
            return CommandResult(stdout="", stderr=str(exc), returncode=-1, command=list(args))

    def read_file_bytes(self, path: Path) -> Optional[bytes]:
        try:
            return path.read_bytes()
        except OSError as exc:
            logger.debug("Cannot read file %s: %s", path, exc)
            return None

    def file_exists(self, path: Path) -> bool:
        return os.path.lexists(path)

    def stat_path(self, path: Path) -> Optional[FileStat]:
        try:
            st = os.lstat(path)
        except FileNotFoundError:
            return None
        return FileStat(
            mode=stat.S_IMODE(st.st_mode),
            is_dir=stat.S_ISDIR(st.st_mode),
            immutable=bool(getattr(st, "st_flags", 0) & _UF_IMMUTABLE),
        )

    def glob(self, pattern: str) -> List[Path]:
        return [Path(p) for p in sorted(_glob.glob(pattern))]

    def list_directory(self, path: Path) -> List[Path]:
        try:
            return sorted(path.iterdir())
        except FileNotFoundError:
            return []

    def list_processes(self) -> List[ProcessInfo]:
        processes = []
        for proc in psutil.process_iter(["pid", "name", "cmdline"]):
            info = proc.info
            cmdline = " ".join(info.get("cmdline") or []) or (info.get("name") or "")
            processes.append(ProcessInfo(pid=info["pid"], name=info.get("name") or "", cmdline=cmdline))
        return processes

    def current_pid(self) -> int:
        return os.getpid()

    def account_exists(self, username: str) -> bool:
        try:
            pwd.getpwnam(username)
        except KeyError:
            return False
        return True

    def kill_process(self, pid: int) -> bool:
        try:
            psutil.Process(pid).kill()
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied as exc:
            raise PermissionError(f"access denied killing pid {pid}") from exc
        return True

    def delete_path(self, path: Path) -> bool:
        if not os.path.lexists(path):
            return False
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
        return True

    def set_immutable(self, path: Path) -> bool:
        if not hasattr(os, "chflags"):
            raise OSError(f"file flags are not supported on this platform: {path}")
        flags = os.lstat(path).st_flags
        if flags & _UF_IMMUTABLE:
            return False
        os.chflags(path, flags | _UF_IMMUTABLE, follow_symlinks=False)
        return True

    def chmod(self, path: Path, mode: int, recursive: bool = False) -> None:
        if recursive and path.is_dir() and not path.is_symlink():
            # Children first: a restrictive mode on a directory would stop the walk
            for root, dirs, files in os.walk(path, topdown=False):
                for name in dirs + files:
                    child = os.path.join(root, name)
                    if not os.path.islink(child):
                        os.chmod(child, mode)
        os.chmod(path, mode)

    def write_preference(self, plist: Path, key: str, value: Any) -> None:
        created = not os.path.lexists(plist)
        anchor = next((parent for parent in plist.parents if os.path.isdir(parent)), None)
        self.run_command(defaults_write_command(plist_target(plist), key, value), check=True)
        if created and anchor is not None and os.geteuid() == 0:
            _hand_to_owner(plist, anchor)


class MockOSInterface:
    """In-memory implementation of OSInterface for testing.

    Configure state with the ``mock_*`` methods. Mutating calls update that
    state, so a second query observes the effect of a remediation. Every
    mutation is appended to ``actions``.

    Example:
        mock = MockOSInterface()
        mock.mock_file(Path("/tmp/GmaNi4v50ekNZSI"), b"payload")
        container = DependencyContainer(os_interface=mock)
    """

    def __init__(self) -> None:
        self._command_responses: Dict[tuple, CommandResult] = {}
        self._files: Dict[Path, bytes] = {}
        self._stats: Dict[Path, FileStat] = {}
        self._unreadable: Set[Path] = set()
        self._directories: Dict[Path, List[Path]] = {}
        self._processes: Dict[int, ProcessInfo] = {}
        self._accounts: Set[str] = set()
        self._failures: Dict[Tuple[str, Any], BaseException] = {}
        self._pid = 1
        self.actions: List[Tuple[str, Any]] = []
        self._default_command_response = CommandResult(
            stdout="", stderr="Command not mocked", returncode=1
        )

    # -- configuration -----------------------------------------------------

    def mock_command_response(self, args: Sequence[str], response: CommandResult) -> None:
        self._command_responses[tuple(args)] = response

    def mock_file(
        self,
        path: Path,
        content: bytes = b"",
        *,
        mode: int = 0o644,
        immutable: bool = False,
        readable: bool = True,
    ) -> None:
        self._files[path] = content
        self._stats[path] = FileStat(mode=mode, is_dir=False, immutable=immutable)
        if not readable:
            self._unreadable.add(path)

    def mock_plist(self, path: Path, data: Dict[str, Any], **kwargs: Any) -> None:
        self.mock_file(path, plistlib.dumps(data), **kwargs)

    def mock_directory(self, path: Path, contents: Optional[List[Path]] = None, *, mode: int = 0o755) -> None:
        self._stats[path] = FileStat(mode=mode, is_dir=True, immutable=False)
        self._directories[path] = list(contents or [])

    def mock_process(self, pid: int, cmdline: str, name: Optional[str] = None) -> None:
        self._processes[pid] = ProcessInfo(pid=pid, name=name or cmdline.split(" ")[0], cmdline=cmdline)

    def mock_account(self, username: str) -> None:
        self._accounts.add(username)

    def mock_failure(self, operation: str, target: Any, exc: BaseException) -> None:
        """Make ``operation`` (e.g. "delete", "stat") raise for ``target``."""
        self._failures[(operation, target)] = exc

    def _maybe_fail(self, operation: str, target: Any) -> None:
        exc = self._failures.get((operation, target))
        if exc is not None:
            raise exc

    # -- read side ---------------------------------------------------------

    def run_command(
        self,
        args: Sequence[str],
        timeout: float = 30.0,
        check: bool = False,
    ) -> CommandResult:
        self._maybe_fail("command", args[0])
        key = tuple(args)
        response = self._command_responses.get(key)
        if response is None:
            # Prefix matching for commands with variable arguments
            for cmd_key, candidate in self._command_responses.items():
                if tuple(args[: len(cmd_key)]) == cmd_key:
                    response = candidate
                    break
        response = response or self._default_command_response
        if check and response.returncode != 0:
            raise CommandExecutionError(args, response.stdout, response.stderr, response.returncode)
        return response

    def read_file_bytes(self, path: Path) -> Optional[bytes]:
        if path in self._unreadable:
            return None
        return self._files.get(path)

    def file_exists(self, path: Path) -> bool:
        return path in self._stats

    def stat_path(self, path: Path) -> Optional[FileStat]:
        self._maybe_fail("stat", path)
        return self._stats.get(path)

    def glob(self, pattern: str) -> List[Path]:
        return sorted(p for p in self._stats if fnmatch.fnmatchcase(str(p), pattern))

    def list_directory(self, path: Path) -> List[Path]:
        self._maybe_fail("list", path)
        return list(self._directories.get(path, []))

    def list_processes(self) -> List[ProcessInfo]:
        self._maybe_fail("processes", None)
        return list(self._processes.values())

    def current_pid(self) -> int:
        return self._pid

    def account_exists(self, username: str) -> bool:
        self._maybe_fail("account", username)
        return username in self._accounts

    # -- write side --------------------------------------------------------

    def kill_process(self, pid: int) -> bool:
        self._maybe_fail("kill", pid)
        self.actions.append(("kill", pid))
        return self._processes.pop(pid, None) is not None

    def delete_path(self, path: Path) -> bool:
        self._maybe_fail("delete", path)
        self.actions.append(("delete", path))
        if path not in self._stats:
            return False
        doomed = [p for p in self._stats if p == path or path in p.parents]
        for p in doomed:
            self._stats.pop(p, None)
            self._files.pop(p, None)
            self._directories.pop(p, None)
        return True

    def set_immutable(self, path: Path) -> bool:
        self._maybe_fail("lock", path)
        current = self._stats.get(path)
        if current is None:
            raise FileNotFoundError(str(path))
        self.actions.append(("lock", path))
        if current.immutable:
            return False
        self._stats[path] = FileStat(mode=current.mode, is_dir=current.is_dir, immutable=True)
        return True

    def chmod(self, path: Path, mode: int, recursive: bool = False) -> None:
        self._maybe_fail("chmod", path)
        if path not in self._stats:
            raise FileNotFoundError(str(path))
        self.actions.append(("chmod", path, mode))
        targets = [p for p in self._stats if p == path or (recursive and path in p.parents)]
        for p in targets:
            current = self._stats[p]
            self._stats[p] = FileStat(mode=mode, is_dir=current.is_dir, immutable=current.immutable)

    def write_preference(self, plist: Path, key: str, value: Any) -> None:
        self._maybe_fail("write_preference", plist)
        self.actions.append(("write_preference", plist, key, value))
        current = self._files.get(plist)
        data = plistlib.loads(current) if current else {}
        data[key] = list(value) if isinstance(value, tuple) else value
        self.mock_plist(plist, data)


@dataclass
class DependencyContainer:
    """Container for all injectable dependencies.

    Attributes:
        os_interface: Implementation of OSInterface to use
    """

    os_interface: OSInterface

    @property
    def os(self) -> OSInterface:
        """Shorthand accessor for OS interface."""
        return self.os_interface


def get_container() -> DependencyContainer:
    """Get the global dependency container, creating it on first use."""
    global _container
    if _container is None:
        _container = DependencyContainer(os_interface=RealOSInterface())
    return _container


def set_container(container: DependencyContainer) -> None:
    """Set the global dependency container (used by tests)."""
    global _container
    _container = container


def reset_container() -> None:
    """Reset the global container so the next get_container() recreates it."""
    global _container
    _container = None
