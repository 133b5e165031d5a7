"""iocsentry - console output."""
from __future__ import annotations

import os
import shutil
import sys
from typing import IO, Iterable, Optional

from .types import (
    IndicatorDefinition,
    OutcomeStatus,
    ReportEntry,
    Severity,
    VerdictStatus,
)

# ═════════════════════════════════════════════════════════════════════════════
# ANSI Color & Style Codes
# ═════════════════════════════════════════════════════════════════════════════


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"

    BRIGHT_BLACK = "\033[90m"
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"

    @staticmethod
    def rgb(r: int, g: int, b: int) -> str:
        """24-bit RGB foreground color."""
        return f"\033[38;2;{r};{g};{b}m"


class Theme:
    """Theme colors."""

    ACCENT = Colors.rgb(97, 86, 140)
    SUCCESS = Colors.rgb(107, 158, 120)
    WARNING = Colors.rgb(201, 168, 87)
    ERROR = Colors.rgb(184, 90, 90)
    INFO = Colors.rgb(90, 122, 158)

    CRITICAL = Colors.rgb(199, 90, 90)
    HIGH = Colors.rgb(201, 138, 87)
    MEDIUM = Colors.rgb(201, 168, 87)
    LOW = Colors.rgb(90, 138, 199)
    INFO_SEV = Colors.rgb(97, 86, 140)

    TEXT = Colors.rgb(242, 242, 242)
    TEXT_DIM = Colors.rgb(129, 139, 140)
    TEXT_MUTED = Colors.rgb(90, 99, 102)
    BORDER = Colors.rgb(71, 84, 89)

    @staticmethod
    def severity_color(severity: Severity) -> str:
        return {
            Severity.CRITICAL: Theme.CRITICAL,
            Severity.HIGH: Theme.HIGH,
            Severity.MEDIUM: Theme.MEDIUM,
            Severity.LOW: Theme.LOW,
            Severity.INFO: Theme.INFO_SEV,
        }.get(severity, Theme.TEXT)

    @staticmethod
    def verdict_color(status: VerdictStatus) -> str:
        return {
            VerdictStatus.CLEAN: Theme.SUCCESS,
            VerdictStatus.VIOLATED: Theme.ERROR,
            VerdictStatus.UNKNOWN: Theme.WARNING,
        }.get(status, Theme.TEXT)

    @staticmethod
    def outcome_color(status: OutcomeStatus) -> str:
        return {
            OutcomeStatus.APPLIED: Theme.SUCCESS,
            OutcomeStatus.WOULD_APPLY: Theme.INFO,
            OutcomeStatus.SKIPPED: Theme.TEXT_MUTED,
            OutcomeStatus.FAILED: Theme.CRITICAL,
        }.get(status, Theme.TEXT)


# ═════════════════════════════════════════════════════════════════════════════
# Terminal Utilities
# ═════════════════════════════════════════════════════════════════════════════


def supports_color(stream: Optional[IO[str]] = None) -> bool:
    """Check if terminal supports color output."""
    if os.getenv("NO_COLOR"):
        return False
    if os.getenv("FORCE_COLOR"):
        return True
    stream = stream or sys.stdout
    return hasattr(stream, "isatty") and stream.isatty()


def get_terminal_width() -> int:
    """Get terminal width, default 80."""
    try:
        return shutil.get_terminal_size().columns
    except (OSError, ValueError):
        return 80


class Icons:
    """Unicode icons for CLI output."""

    CLEAN = "✓"
    VIOLATED = "✗"
    UNKNOWN = "?"
    ARROW = "→"
    BULLET = "•"
    DIAMOND = "◆"

    BOX_TL = "╭"
    BOX_TR = "╮"
    BOX_BL = "╰"
    BOX_BR = "╯"
    BOX_H = "─"
    BOX_V = "│"

    @staticmethod
    def verdict_icon(status: VerdictStatus) -> str:
        return {
            VerdictStatus.CLEAN: Icons.CLEAN,
            VerdictStatus.VIOLATED: Icons.VIOLATED,
            VerdictStatus.UNKNOWN: Icons.UNKNOWN,
        }.get(status, Icons.BULLET)


BANNER = """
╭──────────────────────────────────────────────────────────────────╮
│  iocsentry - indicator scan & remediation                        │
╰──────────────────────────────────────────────────────────────────╯"""


# ═════════════════════════════════════════════════════════════════════════════
# Console
# ═════════════════════════════════════════════════════════════════════════════


class Console:
    """Pretty console output."""

    def __init__(self, color: bool | None = None, stream: Optional[IO[str]] = None):
        self.stream = stream or sys.stdout
        self.use_color = color if color is not None else supports_color(self.stream)
        self.width = get_terminal_width()

    def _c(self, text: str, color: str) -> str:
        """Colorize text if colors enabled."""
        if self.use_color:
            return f"{color}{text}{Colors.RESET}"
        return text

    def _print(self, text: str = "") -> None:
        print(text, file=self.stream)

    def banner(self) -> None:
        for line in BANNER.strip("\n").split("\n"):
            self._print(self._c(line, Theme.ACCENT))

    def subheader(self, text: str) -> None:
        """Print a subsection header."""
        self._print()
        self._print(f"  {self._c(Icons.DIAMOND, Theme.ACCENT)} {self._c(text, Colors.BOLD)}")
        self._print(f"  {self._c(Icons.BOX_H * (len(text) + 2), Theme.TEXT_MUTED)}")

    def info(self, key: str, value: str) -> None:
        """Print key-value info."""
        self._print(f"    {self._c(key + ':', Theme.TEXT_DIM)} {value}")

    def success(self, message: str) -> None:
        self._print(f"  {self._c(Icons.CLEAN, Theme.SUCCESS)} {message}")

    def error(self, message: str) -> None:
        self._print(f"  {self._c(Icons.VIOLATED, Theme.ERROR)} {message}")

    def warning(self, message: str) -> None:
        self._print(f"  {self._c('!', Theme.WARNING)} {message}")

    def dim(self, message: str) -> None:
        self._print(f"  {self._c(message, Theme.TEXT_MUTED)}")

    def blank(self) -> None:
        self._print()

    def entry_result(self, entry: ReportEntry, show_details: bool = False) -> None:
        """Print one (indicator, scope) result line with its remediation."""
        status = entry.verdict.status
        icon = self._c(Icons.verdict_icon(status), Theme.verdict_color(status))
        severity = self._c(f"[{entry.severity.value}]", Theme.severity_color(entry.severity))
        scope = self._c(entry.scope.label, Theme.TEXT_DIM)
        self._print(f"  {icon} {severity} {entry.indicator_id} {scope}")

        if entry.verdict.reason:
            self._print(f"     {self._c(Icons.ARROW + ' ' + entry.verdict.reason, Theme.TEXT_DIM)}")
        if entry.outcome is not None:
            outcome = entry.outcome
            label = outcome.status.value.replace("_", " ")
            line = f"{Icons.BULLET} {outcome.action.value}: {label}"
            if outcome.reason:
                line += f" ({outcome.reason})"
            self._print(f"     {self._c(line, Theme.outcome_color(outcome.status))}")
            if show_details and outcome.targets:
                for target in outcome.targets[:10]:
                    self._print(f"       {self._c('- ' + target, Theme.TEXT_DIM)}")
                if len(outcome.targets) > 10:
                    self._print(f"       {self._c(f'... and {len(outcome.targets) - 10} more', Theme.TEXT_MUTED)}")

    def summary_box(self, stats: dict[str, int], exit_code: int) -> None:
        """Print a summary statistics box."""
        width = 50
        rows = [
            ("Evaluations", stats.get("total", 0), Theme.TEXT),
            ("Clean", stats.get("clean", 0), Theme.SUCCESS),
            ("Violated", stats.get("violated", 0), Theme.ERROR),
            ("Unknown", stats.get("unknown", 0), Theme.WARNING),
            ("Remediated", stats.get("applied", 0), Theme.SUCCESS),
            ("Would apply", stats.get("would_apply", 0), Theme.INFO),
            ("Skipped", stats.get("skipped", 0), Theme.TEXT_MUTED),
            ("Failed", stats.get("failed", 0), Theme.CRITICAL),
            ("Unremediated", stats.get("unremediated", 0), Theme.ERROR),
        ]
        def border(text: str) -> str:
            return self._c(text, Theme.BORDER)

        self._print()
        self._print(f"  {border(Icons.BOX_TL + Icons.BOX_H * width + Icons.BOX_TR)}")
        self._print(f"  {border(Icons.BOX_V)}{self._c('RUN SUMMARY'.center(width), Colors.BOLD)}{border(Icons.BOX_V)}")
        for label, value, color in rows:
            text = f"  {label + ':':<16}{value:>5}".ljust(width)
            if value:
                text = self._c(text, color)
            self._print(f"  {border(Icons.BOX_V)}{text}{border(Icons.BOX_V)}")
        footer = f"  Exit code: {exit_code}".ljust(width)
        self._print(f"  {border(Icons.BOX_V)}{footer}{border(Icons.BOX_V)}")
        self._print(f"  {border(Icons.BOX_BL + Icons.BOX_H * width + Icons.BOX_BR)}")

    def indicator_list(self, definitions: Iterable[IndicatorDefinition]) -> None:
        """Print the loaded indicator definitions (``--list``)."""
        for definition in definitions:
            severity = self._c(f"[{definition.severity.value}]", Theme.severity_color(definition.severity))
            self._print(f"  {severity} {definition.id} ({definition.scope.value}, {definition.provider_kind.value})")
            self._print(
                f"     {self._c(Icons.ARROW, Theme.TEXT_DIM)} {definition.expectation.describe()}; "
                f"fix: {definition.remediation.describe()}"
            )
            if definition.description:
                self._print(f"     {self._c(definition.description, Theme.TEXT_MUTED)}")
