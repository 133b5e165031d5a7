"""Preference domain evidence read from plist files."""
from __future__ import annotations

from pathlib import Path

from ..types import Evidence, IndicatorDefinition, ProviderKind, Scope, ScopeContext
from ..utils.parsers import load_plist_bytes
from .base import EvidenceProvider, expand_path

SYSTEM_PREFERENCES = Path("/Library/Preferences")


def preference_plist(definition: IndicatorDefinition, scope: ScopeContext) -> Path:
    """Locate the plist backing a preference domain in this scope.

    An explicit ``path`` argument wins; otherwise per-user scopes use
    ``~/Library/Preferences/<domain>.plist`` and the system scope uses
    ``/Library/Preferences/<domain>.plist``.
    """
    explicit = definition.arg("path")
    if explicit:
        return Path(expand_path(str(explicit), scope))
    filename = f"{definition.arg('domain')}.plist"
    if scope.kind is Scope.PER_USER and scope.home is not None:
        return scope.home / "Library" / "Preferences" / filename
    return SYSTEM_PREFERENCES / filename


class PreferenceKeyProvider(EvidenceProvider):
    """Read one key of a preference domain.

    A missing plist or key is Absent; an unreadable or corrupt plist is a
    query failure. Array values are returned as lists.
    """

    kind = ProviderKind.PREFERENCE_KEY
    required_args = ("domain", "key")
    optional_args = ("path",)

    def query(self, definition: IndicatorDefinition, scope: ScopeContext) -> Evidence:
        plist = preference_plist(definition, scope)
        if not self.os.file_exists(plist):
            return Evidence.absent(plist=str(plist))

        data = self.os.read_file_bytes(plist)
        if data is None:
            return Evidence.failed(f"cannot read {plist}", plist=str(plist))
        try:
            preferences = load_plist_bytes(data)
        except ValueError as exc:
            return Evidence.failed(f"{plist}: {exc}", plist=str(plist))

        key = str(definition.arg("key"))
        if key not in preferences:
            return Evidence.absent(plist=str(plist))
        value = preferences[key]
        if isinstance(value, tuple):
            value = list(value)
        return Evidence.found(value, targets=[str(plist)], plist=str(plist))
