"""Utility helpers for the IOC engine."""
from __future__ import annotations

from .commands import (
    CommandExecutionError,
    CommandResult,
    defaults_write_command,
    get_suggested_timeout,
    log_show_command,
    run_command,
    run_command_graceful,
)
from .parsers import (
    format_mode,
    load_plist_bytes,
    missing_values,
    parse_defaults_bool,
    parse_mode,
    parse_ndjson_events,
    values_equal,
)
from .system_info import (
    clear_cached_info,
    get_macos_version,
    get_system_info,
    is_macos,
    is_root,
    is_sip_enabled,
)

__all__ = [
    # Commands
    "CommandExecutionError",
    "CommandResult",
    "defaults_write_command",
    "get_suggested_timeout",
    "log_show_command",
    "run_command",
    "run_command_graceful",
    # Parsers
    "format_mode",
    "load_plist_bytes",
    "missing_values",
    "parse_defaults_bool",
    "parse_mode",
    "parse_ndjson_events",
    "values_equal",
    # System info
    "clear_cached_info",
    "get_macos_version",
    "get_system_info",
    "is_macos",
    "is_root",
    "is_sip_enabled",
]
