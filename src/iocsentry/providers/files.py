"""Filesystem evidence: existence, attributes and content."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Mapping

from ..errors import ConfigError, ProviderQueryFailure
from ..types import Evidence, IndicatorDefinition, ProviderKind, ScopeContext
from ..utils.parsers import format_mode
from .base import EvidenceProvider, compile_matcher, resolve_paths

logger = logging.getLogger(__name__)

FILE_ATTRIBUTES = ("path", "mode", "immutable")
_DEFAULT_MAX_BYTES = 5 * 1024 * 1024


class FileExistenceProvider(EvidenceProvider):
    """Report whether a path (or glob) exists.

    With the default ``attribute: path`` the observed value is the matched
    path (or list of paths). ``attribute: mode`` observes the octal
    permission string and ``attribute: immutable`` the user-immutable flag
    as ``"true"``/``"false"``; when several paths match with differing
    attribute values the observed value is the sorted list of them.
    """

    kind = ProviderKind.FILE_EXISTENCE
    required_args = ("path",)
    optional_args = ("attribute",)

    @classmethod
    def validate_args(cls, args: Mapping[str, Any], indicator_id: str) -> None:
        super().validate_args(args, indicator_id)
        attribute = args.get("attribute", "path")
        if attribute not in FILE_ATTRIBUTES:
            raise ConfigError(
                f"attribute must be one of {', '.join(FILE_ATTRIBUTES)}, got {attribute!r}",
                indicator_id=indicator_id,
            )

    def query(self, definition: IndicatorDefinition, scope: ScopeContext) -> Evidence:
        paths = resolve_paths(self.os, str(definition.arg("path")), scope)
        if not paths:
            return Evidence.absent()

        targets = [str(p) for p in paths]
        attribute = definition.arg("attribute", "path")
        if attribute == "path":
            return Evidence.found(targets[0] if len(targets) == 1 else targets, targets=targets)

        observed = []
        for path in paths:
            try:
                st = self.os.stat_path(path)
            except OSError as exc:
                raise ProviderQueryFailure(f"cannot stat {path}: {exc}") from exc
            if st is None:
                continue  # vanished between glob and stat
            if attribute == "mode":
                observed.append(format_mode(st.mode))
            else:
                observed.append("true" if st.immutable else "false")

        if not observed:
            return Evidence.absent()
        distinct = sorted(set(observed))
        value = distinct[0] if len(distinct) == 1 else distinct
        return Evidence.found(value, targets=targets, per_path=dict(zip(targets, observed)))


class FileContentPatternProvider(EvidenceProvider):
    """Look for a substring or regex inside existing files.

    Absent when no file matches the path; query failed when a file exists
    but cannot be read. Directories are ignored.
    """

    kind = ProviderKind.FILE_CONTENT_PATTERN
    required_args = ("path", "pattern")
    optional_args = ("regex", "max_bytes")

    @classmethod
    def validate_args(cls, args: Mapping[str, Any], indicator_id: str) -> None:
        super().validate_args(args, indicator_id)
        compile_matcher(str(args["pattern"]), bool(args.get("regex", False)), indicator_id)
        max_bytes = args.get("max_bytes", _DEFAULT_MAX_BYTES)
        if not isinstance(max_bytes, int) or isinstance(max_bytes, bool) or max_bytes <= 0:
            raise ConfigError("max_bytes must be a positive integer", indicator_id=indicator_id)

    def query(self, definition: IndicatorDefinition, scope: ScopeContext) -> Evidence:
        match = compile_matcher(str(definition.arg("pattern")), bool(definition.arg("regex", False)))
        max_bytes = int(definition.arg("max_bytes", _DEFAULT_MAX_BYTES))

        unreadable: List[str] = []
        for path in resolve_paths(self.os, str(definition.arg("path")), scope):
            st = self._stat(path)
            if st is not None and st.is_dir:
                continue
            data = self.os.read_file_bytes(path)
            if data is None:
                unreadable.append(str(path))
                continue
            snippet = match(data[:max_bytes].decode("utf-8", errors="replace"))
            if snippet is not None:
                return Evidence.found(snippet, targets=[str(path)], path=str(path))

        if unreadable:
            return Evidence.failed(f"cannot read {', '.join(unreadable)}", unreadable=unreadable)
        return Evidence.absent()

    def _stat(self, path: Path):
        try:
            return self.os.stat_path(path)
        except OSError as exc:
            logger.debug("Cannot stat %s: %s", path, exc)
            return None
