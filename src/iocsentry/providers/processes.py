"""Process table evidence."""
from __future__ import annotations

from typing import Any, Mapping

from ..types import Evidence, IndicatorDefinition, ProviderKind, ScopeContext
from .base import EvidenceProvider, compile_matcher


class ProcessPatternProvider(EvidenceProvider):
    """Match live process command lines, like ``pgrep -f``.

    Observed value is the sorted list of matching pids. The engine's own
    process is never reported, since its command line may contain the
    pattern (e.g. when passed on the command line).
    """

    kind = ProviderKind.PROCESS_PATTERN
    required_args = ("pattern",)
    optional_args = ("regex",)

    @classmethod
    def validate_args(cls, args: Mapping[str, Any], indicator_id: str) -> None:
        super().validate_args(args, indicator_id)
        compile_matcher(str(args["pattern"]), bool(args.get("regex", False)), indicator_id)

    def query(self, definition: IndicatorDefinition, scope: ScopeContext) -> Evidence:
        match = compile_matcher(str(definition.arg("pattern")), bool(definition.arg("regex", False)))
        own_pid = self.os.current_pid()
        matches = [
            proc
            for proc in self.os.list_processes()
            if proc.pid != own_pid and match(proc.cmdline)
        ]
        if not matches:
            return Evidence.absent()
        pids = sorted(proc.pid for proc in matches)
        return Evidence.found(
            pids,
            targets=pids,
            commands={str(proc.pid): proc.cmdline for proc in matches},
        )
