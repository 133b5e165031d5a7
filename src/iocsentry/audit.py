"""iocsentry - main entry point."""
from __future__ import annotations

import argparse
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from . import __version__
from .cli import Console
from .config import EngineSettings, default_config_path
from .core.injection import get_container
from .core.interfaces import OSInterface, PolicyGuard, ReportSink
from .errors import ConfigError
from .orchestrator import RunOrchestrator
from .policy import CompositePolicy, ProtectedPathPolicy, SystemIntegrityPolicy
from .registry import IndicatorRegistry
from .reporting import FileReportSink, LoggingReportSink, StreamReportSink
from .types import EXIT_CONFIG_ERROR, RunReport, VerdictStatus
from .utils.system_info import get_system_info

_LOG_DIR = Path.home() / "Library" / "Logs" / "iocsentry"

# Verbosity levels
VERBOSITY_QUIET = 0      # Only errors and summary
VERBOSITY_NORMAL = 1     # Findings
VERBOSITY_VERBOSE = 2    # Include clean results


def configure_logging(level: int = logging.INFO, log_dir: Optional[Path] = None) -> None:
    """Configure logging for the application.

    Logs are written to ~/Library/Logs/iocsentry/iocsentry.log with
    automatic rotation at 5MB and 3 backup files retained. When the log
    directory cannot be created only the console handler is installed.
    """
    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handlers: List[logging.Handler] = []

    log_dir = log_dir or _LOG_DIR
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        # Rotating file handler: 5MB max, keep 3 backups
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / "iocsentry.log",
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=3,
            encoding="utf-8",
        )
    except OSError as exc:
        print(f"iocsentry: file logging disabled ({exc})", file=sys.stderr)
    else:
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)
    handlers.append(console_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="iocsentry",
        description="iocsentry - scan for indicators of compromise and remediate them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --dry-run                  Report what would be fixed, change nothing
  %(prog)s --scope user:alice         Evaluate only alice's home
  %(prog)s --format json -o out.json  Write a JSON report
  %(prog)s --config my.yaml --list    Show the loaded indicators

Exit codes: 0 clean/remediated, 1 unremediated violations,
2 inconclusive evaluations, 3 failed remediations, 4 configuration error.
""",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="Indicator configuration (YAML or JSON; default: bundled CVE-2024-44133 set)",
    )
    parser.add_argument(
        "--scope",
        type=str,
        help="Restrict evaluation to 'system', 'user' or 'user:<name>'",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Evaluate and report, but do not change anything",
    )
    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Report output format",
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        help="Write report to file instead of stdout",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        default=None,
        help="Collect evidence concurrently",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Per-provider timeout in seconds",
    )
    parser.add_argument(
        "--no-sip-guard",
        action="store_true",
        help="Do not veto remediations on SIP-protected paths",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Increase output verbosity (-v includes clean results)",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Minimal output (only the report)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List the configured indicators and exit",
    )
    args = parser.parse_args(argv)
    if args.timeout is not None and args.timeout <= 0:
        parser.error("--timeout must be positive")
    return args


def build_policy(settings: EngineSettings, sip_guard: bool = True) -> PolicyGuard:
    guards: List[PolicyGuard] = []
    if settings.enforce_sip and sip_guard:
        guards.append(SystemIntegrityPolicy())
    if settings.protected_paths:
        guards.append(ProtectedPathPolicy(settings.protected_paths))
    return CompositePolicy(guards)


def run(
    config_path: Optional[Path] = None,
    scope_filter: Optional[str] = None,
    dry_run: bool = False,
    *,
    sinks: Sequence[ReportSink] = (),
    os_interface: Optional[OSInterface] = None,
    policy_guard: Optional[PolicyGuard] = None,
    parallel: Optional[bool] = None,
    timeout: Optional[float] = None,
    sip_guard: bool = True,
) -> int:
    """Load the configuration, execute one run and return its exit code.

    A configuration error aborts before anything is evaluated.
    """
    logger = logging.getLogger(__name__)
    report = execute(
        config_path,
        scope_filter,
        dry_run,
        sinks=sinks,
        os_interface=os_interface,
        policy_guard=policy_guard,
        parallel=parallel,
        timeout=timeout,
        sip_guard=sip_guard,
    )
    if report is None:
        return EXIT_CONFIG_ERROR
    code = report.exit_code()
    logger.info("Exit code %d", code)
    return code


def execute(
    config_path: Optional[Path] = None,
    scope_filter: Optional[str] = None,
    dry_run: bool = False,
    *,
    sinks: Sequence[ReportSink] = (),
    os_interface: Optional[OSInterface] = None,
    policy_guard: Optional[PolicyGuard] = None,
    parallel: Optional[bool] = None,
    timeout: Optional[float] = None,
    sip_guard: bool = True,
) -> Optional[RunReport]:
    """Like :func:`run` but return the report (None on a config error)."""
    logger = logging.getLogger(__name__)
    path = Path(config_path) if config_path else default_config_path()
    try:
        registry = IndicatorRegistry.load(path)
        settings = registry.settings.with_overrides(parallel=parallel, provider_timeout=timeout)
        orchestrator = RunOrchestrator(
            registry,
            os_interface or get_container().os,
            settings=settings,
            policy_guard=policy_guard or build_policy(settings, sip_guard),
            dry_run=dry_run,
            scope_filter=scope_filter,
            system_info=get_system_info(),
        )
    except (ConfigError, ValueError) as exc:
        logger.error("Configuration error in %s: %s", path, exc)
        return None
    return orchestrator.run([LoggingReportSink(), *sinks])


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(level=logging.DEBUG if args.debug else logging.INFO)
    logger = logging.getLogger(__name__)

    if args.quiet:
        verbosity = VERBOSITY_QUIET
    elif args.verbose >= 1:
        verbosity = VERBOSITY_VERBOSE
    else:
        verbosity = VERBOSITY_NORMAL
    # JSON to stdout should only print the report
    if args.format == "json" and not args.output:
        verbosity = VERBOSITY_QUIET

    console = Console()

    if args.list:
        try:
            registry = IndicatorRegistry.load(args.config or default_config_path())
        except ConfigError as exc:
            console.error(f"Configuration error: {exc}")
            return EXIT_CONFIG_ERROR
        console.indicator_list(registry)
        return 0

    if verbosity > VERBOSITY_QUIET:
        console.banner()
        console.subheader("Run")
        console.info("Config", str(args.config or default_config_path()))
        console.info("Scope", args.scope or "all")
        console.info("Mode", "dry run" if args.dry_run else "remediate")

    sinks: List[ReportSink] = []
    if args.output:
        sinks.append(FileReportSink(args.output, args.format, verbose=True))
    elif verbosity == VERBOSITY_QUIET:
        sinks.append(StreamReportSink(args.format, verbose=args.verbose >= 1))

    report = execute(
        args.config,
        args.scope,
        args.dry_run,
        sinks=sinks,
        parallel=args.parallel,
        timeout=args.timeout,
        sip_guard=not args.no_sip_guard,
    )
    if report is None:
        console.error("Configuration error; see the log for details")
        return EXIT_CONFIG_ERROR

    if verbosity > VERBOSITY_QUIET:
        console.subheader("Results")
        shown = 0
        for entry in report.entries:
            if verbosity < VERBOSITY_VERBOSE and entry.verdict.status is VerdictStatus.CLEAN:
                continue
            console.entry_result(entry, show_details=verbosity >= VERBOSITY_VERBOSE)
            shown += 1
        if not shown:
            console.success("No indicators of compromise found")
        console.summary_box(report.summary(), report.exit_code())
        if args.output:
            console.dim(f"Report written to {args.output}")

    code = report.exit_code()
    logger.info("Exit code %d", code)
    return code


if __name__ == "__main__":
    sys.exit(main())
