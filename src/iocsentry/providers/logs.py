"""Unified log evidence."""
from __future__ import annotations

import re
from typing import Any, Mapping

from ..errors import ConfigError
from ..types import Evidence, IndicatorDefinition, ProviderKind, ScopeContext
from ..utils.commands import get_suggested_timeout, log_show_command
from ..utils.parsers import parse_ndjson_events
from .base import EvidenceProvider

_WINDOW_PATTERN = re.compile(r"^\d+[smhd]$")
DEFAULT_WINDOW = "24h"
DEFAULT_SAMPLE_SIZE = 5


class LogPatternProvider(EvidenceProvider):
    """Count unified log events matching a predicate in a recent window.

    Observed value is ``{"count": n, "sample": [...]}`` with up to
    ``sample_size`` event messages. Any problem running ``log show``
    (missing binary, error exit, timeout) is a query failure.
    """

    kind = ProviderKind.LOG_PATTERN
    shared_source = True
    required_args = ("predicate",)
    optional_args = ("window", "sample_size")

    @classmethod
    def validate_args(cls, args: Mapping[str, Any], indicator_id: str) -> None:
        super().validate_args(args, indicator_id)
        window = str(args.get("window", DEFAULT_WINDOW))
        if not _WINDOW_PATTERN.match(window):
            raise ConfigError(
                f"window must look like '24h', '30m', '2d' or '90s', got {window!r}",
                indicator_id=indicator_id,
            )
        sample_size = args.get("sample_size", DEFAULT_SAMPLE_SIZE)
        if not isinstance(sample_size, int) or isinstance(sample_size, bool) or sample_size < 0:
            raise ConfigError("sample_size must be a non-negative integer", indicator_id=indicator_id)

    def query(self, definition: IndicatorDefinition, scope: ScopeContext) -> Evidence:
        command = log_show_command(
            str(definition.arg("predicate")),
            str(definition.arg("window", DEFAULT_WINDOW)),
        )
        # Bounded by the collector's deadline so no ``log show`` outlives its query
        timeout = self.deadline_for(definition, get_suggested_timeout(command))
        result = self.os.run_command(command, timeout=timeout)

        if result.timed_out:
            return Evidence.failed(f"log query timed out after {timeout:g}s", timed_out=True)
        if result.returncode < 0:
            reason = (result.stderr or "").strip() or "log could not be started"
            return Evidence.failed(f"log unavailable: {reason}", source_unavailable=True)
        if result.returncode != 0:
            reason = (result.stderr or "").strip() or f"log exited with code {result.returncode}"
            return Evidence.failed(f"log query failed: {reason}", returncode=result.returncode)

        events = parse_ndjson_events(result.stdout)
        if not events:
            return Evidence.absent()
        sample_size = int(definition.arg("sample_size", DEFAULT_SAMPLE_SIZE))
        sample = [str(event.get("eventMessage", "")) for event in events[:sample_size]]
        return Evidence.found({"count": len(events), "sample": sample})
