"""Abstract interfaces separating the engine from the host.

Architecture:
┌─────────────────────────────────────────────────────────────────┐
│                     EVIDENCE LAYER                               │
│  - Providers query system state through OSInterface             │
│  - NO side effects (read-only)                                   │
└─────────────────────────────────────────────────────────────────┘
                              │
                              ▼
┌─────────────────────────────────────────────────────────────────┐
│                     EVALUATION LAYER                             │
│  - Pure comparison of evidence against expectations             │
└─────────────────────────────────────────────────────────────────┘
                              │
                              ▼
┌─────────────────────────────────────────────────────────────────┐
│                   REMEDIATION LAYER                              │
│  - Mutates host state through OSInterface                       │
│  - Every action passes a PolicyGuard first                       │
└─────────────────────────────────────────────────────────────────┘
                              │
                              ▼
┌─────────────────────────────────────────────────────────────────┐
│                     REPORT SINKS                                 │
│  - Receive one immutable RunReport per run                      │
└─────────────────────────────────────────────────────────────────┘
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, List, Optional, Protocol, Sequence

from ..utils.commands import CommandResult

if TYPE_CHECKING:
    from ..types import RemediationKind, RunReport


@dataclass(frozen=True)
class ProcessInfo:
    """A snapshot of one running process."""

    pid: int
    name: str
    cmdline: str


@dataclass(frozen=True)
class FileStat:
    """The subset of stat(2) the engine cares about."""

    mode: int  # permission bits only
    is_dir: bool
    immutable: bool  # user-immutable flag (chflags uchg)


class OSInterface(Protocol):
    """Protocol defining all OS-level interactions.

    This abstraction allows complete mocking of OS interactions for testing.
    Providers only call the read methods; the remediation executor is the
    only caller of the mutating ones.
    """

    # -- read side ---------------------------------------------------------

    def run_command(
        self,
        args: Sequence[str],
        timeout: float = 30.0,
        check: bool = False,
    ) -> CommandResult:
        """Execute a command and return results.

        Never raises for missing binaries or timeouts; those come back as
        a result with ``returncode == -1`` (and ``timed_out`` set).
        ``check=True`` raises CommandExecutionError on a non-zero exit.
        """
        ...

    def read_file_bytes(self, path: Path) -> Optional[bytes]:
        """Read file contents, or None if unreadable."""
        ...

    def file_exists(self, path: Path) -> bool:
        ...

    def stat_path(self, path: Path) -> Optional[FileStat]:
        """Stat a path, or None if it does not exist.

        Raises:
            OSError: if the path exists but cannot be inspected
        """
        ...

    def glob(self, pattern: str) -> List[Path]:
        """Expand a glob; an absent parent directory yields no matches."""
        ...

    def list_directory(self, path: Path) -> List[Path]:
        """Entries of a directory; a missing directory yields none.

        Raises:
            OSError: if the directory exists but cannot be listed
        """
        ...

    def list_processes(self) -> List[ProcessInfo]:
        ...

    def current_pid(self) -> int:
        ...

    def account_exists(self, username: str) -> bool:
        """Whether a real account is registered under this name."""
        ...

    # -- write side --------------------------------------------------------

    def kill_process(self, pid: int) -> bool:
        """Kill a process; False when it was already gone."""
        ...

    def delete_path(self, path: Path) -> bool:
        """Remove a file or directory tree; False when it was already absent."""
        ...

    def set_immutable(self, path: Path) -> bool:
        """Set the user-immutable flag; False when it was already set."""
        ...

    def chmod(self, path: Path, mode: int, recursive: bool = False) -> None:
        ...

    def write_preference(self, plist: Path, key: str, value: Any) -> None:
        """Write one key of a preference plist (``defaults write``)."""
        ...


class PolicyGuard(Protocol):
    """Host-level veto over remediation actions."""

    def allows(self, action: "RemediationKind", target: str) -> bool:
        ...

    def reason(self, action: "RemediationKind", target: str) -> str:
        """Human-readable explanation for a veto."""
        ...


class ReportSink(Protocol):
    """Consumer of one run report per invocation."""

    def submit(self, report: "RunReport") -> None:
        ...
