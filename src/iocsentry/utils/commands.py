"""Subprocess helpers for the macOS tools the engine shells out to.

Only ``log``, ``defaults`` and ``csrutil`` are ever invoked. Commands run
without a shell and with a fixed C locale so their output parses the same
on every host.
"""
from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10
_LOG_QUERY_TIMEOUT = 60

DEFAULTS_BINARY = "/usr/bin/defaults"
LOG_BINARY = "/usr/bin/log"

# Unified log queries scan days of events
SLOW_COMMANDS: Dict[str, float] = {
    LOG_BINARY: _LOG_QUERY_TIMEOUT,
}

_TIMEOUT_HINTS: Dict[str, str] = {
    LOG_BINARY: (
        "Unified log queries over long windows can be slow. "
        "Narrow the 'window' argument or raise the provider timeout."
    ),
}


def _quote(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(arg) for arg in command)


class CommandExecutionError(RuntimeError):
    """A command ran but exited non-zero."""

    def __init__(self, command: Sequence[str], stdout: str, stderr: str, returncode: int) -> None:
        detail = stderr.strip() or stdout.strip() or "no output"
        super().__init__(f"{_quote(command)} exited with status {returncode}: {detail}")
        self.command = list(command)
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode


@dataclass(slots=True)
class CommandResult:
    """Captured output of one command."""

    stdout: str
    stderr: str
    returncode: int
    timed_out: bool = False
    elapsed_time: float = 0.0
    command: Sequence[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def get_suggested_timeout(command: Sequence[str]) -> float:
    """Deadline for a command, longer for known slow tools."""
    if not command:
        return _DEFAULT_TIMEOUT
    return SLOW_COMMANDS.get(command[0], _DEFAULT_TIMEOUT)


def get_timeout_suggestion(command: Sequence[str]) -> str:
    return _TIMEOUT_HINTS.get(command[0], "") if command else ""


def _command_env() -> Dict[str, str]:
    env = dict(os.environ)
    env["LC_ALL"] = "C"
    return env


def run_command(
    command: Sequence[str],
    *,
    timeout: float | None = None,
    check: bool = False,
) -> CommandResult:
    """Run ``command`` and capture its output.

    A command still running at ``timeout`` is killed and reported as a result
    with ``timed_out`` set.

    Args:
        command: Executable path followed by its arguments.
        timeout: Seconds to wait. None picks a per-command default.
        check: Raise CommandExecutionError on a non-zero exit or a timeout.

    Raises:
        FileNotFoundError: if the executable does not exist.
        CommandExecutionError: when ``check`` is set and the command fails.
    """
    if not command:
        raise ValueError("Command cannot be empty")
    if timeout is None:
        timeout = get_suggested_timeout(command)

    started = time.perf_counter()
    logger.debug("exec (timeout=%gs): %s", timeout, _quote(command))
    try:
        completed = subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
            env=_command_env(),
        )
    except subprocess.TimeoutExpired:
        logger.warning("%s timed out after %gs", command[0], timeout)
        message = f"{command[0]} did not finish within {timeout:g}s"
        hint = get_timeout_suggestion(command)
        result = CommandResult(
            stdout="",
            stderr=f"{message}. {hint}" if hint else message,
            returncode=-1,
            timed_out=True,
            elapsed_time=time.perf_counter() - started,
            command=list(command),
        )
    else:
        result = CommandResult(
            stdout=completed.stdout.strip(),
            stderr=completed.stderr.strip(),
            returncode=completed.returncode,
            elapsed_time=time.perf_counter() - started,
            command=list(command),
        )
        logger.debug("%s -> %d in %.2fs", command[0], result.returncode, result.elapsed_time)

    if check and result.returncode != 0:
        raise CommandExecutionError(command, result.stdout, result.stderr, result.returncode)
    return result


def run_command_graceful(command: Sequence[str], *, timeout: float | None = None) -> CommandResult:
    """Like :func:`run_command` but a missing binary or OS error is a failed result."""
    try:
        return run_command(command, timeout=timeout)
    except OSError as exc:
        logger.debug("%s unavailable: %s", command[0], exc)
        return CommandResult(stdout="", stderr=str(exc), returncode=-1, command=list(command))


def log_show_command(predicate: str, window: str) -> List[str]:
    """Build a unified log query emitting one JSON object per line."""
    return [
        LOG_BINARY,
        "show",
        "--predicate",
        predicate,
        "--info",
        "--last",
        window,
        "--style",
        "ndjson",
    ]


def defaults_write_command(target: str, key: str, value: Any) -> List[str]:
    """Build a ``defaults write`` invocation with an explicit type flag.

    ``target`` may be a domain or an absolute plist path without extension.
    """
    cmd = [DEFAULTS_BINARY, "write", target, key]
    if isinstance(value, bool):
        cmd.extend(["-bool", "YES" if value else "NO"])
    elif isinstance(value, int):
        cmd.extend(["-int", str(value)])
    elif isinstance(value, float):
        cmd.extend(["-float", repr(value)])
    elif isinstance(value, (list, tuple)):
        cmd.append("-array")
        cmd.extend(str(item) for item in value)
    else:
        cmd.extend(["-string", str(value)])
    return cmd
