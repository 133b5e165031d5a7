"""Report rendering and report sinks."""
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import IO, Iterable, Optional

from .core.interfaces import ReportSink
from .types import (
    OutcomeStatus,
    ReportEntry,
    RunReport,
    Severity,
    VerdictStatus,
)

logger = logging.getLogger(__name__)

_HEADER_LINE = "═" * 70

FORMATS = ("text", "json")

# ANSI color codes for terminal output
_COLORS = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "red": "\033[91m",
    "green": "\033[92m",
    "yellow": "\033[93m",
    "blue": "\033[94m",
    "cyan": "\033[96m",
    "gray": "\033[90m",
}

_SEVERITY_COLORS = {
    Severity.CRITICAL: _COLORS["bold"] + _COLORS["red"],
    Severity.HIGH: _COLORS["red"],
    Severity.MEDIUM: _COLORS["yellow"],
    Severity.LOW: _COLORS["blue"],
    Severity.INFO: _COLORS["cyan"],
}

_VERDICT_COLORS = {
    VerdictStatus.CLEAN: _COLORS["green"],
    VerdictStatus.VIOLATED: _COLORS["red"],
    VerdictStatus.UNKNOWN: _COLORS["yellow"],
}

_OUTCOME_COLORS = {
    OutcomeStatus.APPLIED: _COLORS["green"],
    OutcomeStatus.WOULD_APPLY: _COLORS["cyan"],
    OutcomeStatus.SKIPPED: _COLORS["gray"],
    OutcomeStatus.FAILED: _COLORS["bold"] + _COLORS["red"],
}

_SEVERITY_ORDER = {
    Severity.CRITICAL: 5,
    Severity.HIGH: 4,
    Severity.MEDIUM: 3,
    Severity.LOW: 2,
    Severity.INFO: 1,
}


def _colorize(text: str, color: str) -> str:
    """Wrap text with ANSI color codes."""
    return f"{color}{text}{_COLORS['reset']}"


def _format_entry(entry: ReportEntry, use_color: bool) -> list[str]:
    severity = entry.severity.value
    verdict = entry.verdict.status.value.upper()
    if use_color:
        severity = _colorize(severity, _SEVERITY_COLORS.get(entry.severity, ""))
        verdict = _colorize(verdict, _VERDICT_COLORS.get(entry.verdict.status, ""))

    lines = [f"[{severity}] {entry.indicator_id} ({entry.scope.label}) - {verdict}"]
    if entry.description:
        lines.append(f"  → {entry.description}")
    if entry.verdict.reason:
        lines.append(f"  → {entry.verdict.reason}")
    if entry.outcome is not None:
        outcome = entry.outcome.status.value.upper()
        if use_color:
            outcome = _colorize(outcome, _OUTCOME_COLORS.get(entry.outcome.status, ""))
        line = f"  → Remediation ({entry.outcome.action.value}): {outcome}"
        if entry.outcome.reason:
            line += f" - {entry.outcome.reason}"
        lines.append(line)
        if entry.outcome.targets:
            lines.append(f"    Targets: {', '.join(entry.outcome.targets)}")
    return lines


def format_text_report(
    report: RunReport,
    *,
    verbose: bool = False,
    min_severity: Severity | None = None,
    color: bool | None = None,
) -> str:
    """Generate a human-readable text report.

    Clean entries are listed only when ``verbose`` is set.

    Args:
        color: Enable ANSI colors. None = auto-detect TTY.
    """
    use_color = color if color is not None else sys.stdout.isatty()
    min_value = _SEVERITY_ORDER.get(min_severity, 0) if min_severity else 0

    title = "iocsentry Report" + (" (dry run)" if report.dry_run else "")
    lines = [
        f"╔{_HEADER_LINE}╗",
        f"║ {title} - {report.started_at.strftime('%Y-%m-%d %H:%M')}".ljust(71) + "║",
        f"╚{_HEADER_LINE}╝",
        "",
    ]
    if report.system_info:
        lines.append("System: " + ", ".join(f"{key}: {value}" for key, value in report.system_info.items()))
        lines.append("")

    shown = 0
    for entry in report.entries:
        if _SEVERITY_ORDER.get(entry.severity, 0) < min_value:
            continue
        if not verbose and entry.verdict.status is VerdictStatus.CLEAN:
            continue
        lines.extend(_format_entry(entry, use_color))
        lines.append("")
        shown += 1
    if not shown:
        lines.append("No findings for selected criteria.")
        lines.append("")

    summary = report.summary()
    lines.extend(
        [
            "Summary:",
            f"  Total evaluations: {summary['total']}",
            f"  Clean: {summary['clean']}  Violated: {summary['violated']}  Unknown: {summary['unknown']}",
            f"  Remediations - Applied: {summary['applied']}, Would apply: {summary['would_apply']}, "
            f"Skipped: {summary['skipped']}, Failed: {summary['failed']}, Unremediated: {summary['unremediated']}",
            f"  Exit code: {report.exit_code()}",
        ]
    )
    return "\n".join(lines).strip() + "\n"


def format_json_report(report: RunReport) -> str:
    """Generate a JSON report; entries keep evaluation order."""
    return json.dumps(report.to_dict(), indent=2, sort_keys=True)


def render(report: RunReport, fmt: str = "text", **kwargs) -> str:
    if fmt == "json":
        return format_json_report(report)
    if fmt == "text":
        return format_text_report(report, **kwargs)
    raise ValueError(f"unknown report format {fmt!r}")


def write_report(output_path: Path, content: str) -> None:
    """Persist report content to the specified path."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(content, encoding="utf-8")


class LoggingReportSink:
    """Log the summary and every non-clean entry."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self.log = log or logger

    def submit(self, report: RunReport) -> None:
        for entry in report.entries:
            if entry.verdict.status is VerdictStatus.CLEAN:
                continue
            outcome = entry.outcome.status.value if entry.outcome else "none"
            self.log.info(
                "%s [%s]: %s (%s), remediation=%s",
                entry.indicator_id,
                entry.scope.label,
                entry.verdict.status.value,
                entry.verdict.reason,
                outcome,
            )
        self.log.info("Run finished: %s, exit code %d", report.summary(), report.exit_code())


class StreamReportSink:
    """Render the report to a stream (stdout by default)."""

    def __init__(
        self,
        fmt: str = "text",
        stream: Optional[IO[str]] = None,
        *,
        verbose: bool = False,
        color: bool | None = None,
    ) -> None:
        if fmt not in FORMATS:
            raise ValueError(f"unknown report format {fmt!r}")
        self.fmt = fmt
        self.stream = stream
        self.verbose = verbose
        self.color = color

    def submit(self, report: RunReport) -> None:
        stream = self.stream or sys.stdout
        if self.fmt == "json":
            stream.write(format_json_report(report) + "\n")
        else:
            stream.write(format_text_report(report, verbose=self.verbose, color=self.color))
        stream.flush()


class FileReportSink:
    """Write the report to a file; format follows the suffix unless given."""

    def __init__(self, path: Path, fmt: Optional[str] = None, *, verbose: bool = True) -> None:
        self.path = Path(path).expanduser()
        self.fmt = fmt or ("json" if self.path.suffix.lower() == ".json" else "text")
        if self.fmt not in FORMATS:
            raise ValueError(f"unknown report format {self.fmt!r}")
        self.verbose = verbose

    def submit(self, report: RunReport) -> None:
        if self.fmt == "json":
            content = format_json_report(report) + "\n"
        else:
            content = format_text_report(report, verbose=self.verbose, color=False)
        write_report(self.path, content)
        logger.info("Report written to %s", self.path)


class CompositeReportSink:
    """Fan a report out to several sinks; one failing sink does not stop the rest."""

    def __init__(self, sinks: Iterable[ReportSink]) -> None:
        self.sinks = tuple(sinks)

    def submit(self, report: RunReport) -> None:
        for sink in self.sinks:
            try:
                sink.submit(report)
            except Exception:  # noqa: BLE001
                logger.exception("Report sink %s failed", type(sink).__name__)
