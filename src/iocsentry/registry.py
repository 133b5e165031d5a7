"""Indicator registry: declarative IOC definitions loaded once at startup.

Configuration shape (YAML or JSON)::

    settings:
      provider_timeout: 20
    indicators:
      - id: proc-1
        scope: system
        provider: process_pattern
        args: {pattern: /private/tmp/p}
        expect: must_not_exist
        remediation: kill
      - id: pref-1
        scope: user
        provider: preference_key
        args: {domain: com.apple.MediaToolbox, key: AllowedCPC}
        expect: {must_equal: "0x3"}
        remediation: {reset_preference: "0x3"}

Everything is validated eagerly so that a bad entry aborts startup instead
of surfacing halfway through a run.
"""
from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Type, TypeVar, Union

from .config import EngineSettings, parse_settings, read_config_file
from .errors import ConfigError, IndicatorNotFound
from .providers import ProviderRegistry, load_providers
from .types import (
    Expectation,
    ExpectationKind,
    IndicatorDefinition,
    ProviderKind,
    Remediation,
    RemediationKind,
    Scope,
    Severity,
)
from .utils.parsers import parse_mode

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

Source = Union[str, Path, Mapping[str, Any], List[Any]]

_TOP_LEVEL_KEYS = {"settings", "indicators"}
_RECORD_KEYS = {"id", "scope", "provider", "args", "expect", "remediation", "description", "severity"}

_SCOPE_ALIASES = {
    "system": Scope.SYSTEM_WIDE,
    "systemwide": Scope.SYSTEM_WIDE,
    "user": Scope.PER_USER,
    "peruser": Scope.PER_USER,
}


def _normalize(text: str) -> str:
    return text.replace("_", "").replace("-", "").replace(" ", "").lower()


def _parse_enum(enum_cls: Type[E], raw: Any, what: str, indicator_id: str) -> E:
    if isinstance(raw, enum_cls):
        return raw
    if isinstance(raw, str):
        wanted = _normalize(raw)
        for member in enum_cls:
            if _normalize(member.value) == wanted or _normalize(member.name) == wanted:
                return member
    choices = ", ".join(member.value for member in enum_cls)
    raise ConfigError(f"unknown {what} {raw!r} (expected one of: {choices})", indicator_id=indicator_id)


def _single_entry(raw: Mapping[str, Any], what: str, indicator_id: str) -> Tuple[str, Any]:
    if len(raw) != 1:
        raise ConfigError(f"{what} mapping must have exactly one key, got {sorted(raw)}", indicator_id=indicator_id)
    return next(iter(raw.items()))


def parse_expectation(raw: Any, indicator_id: str) -> Expectation:
    if isinstance(raw, Expectation):
        return raw
    if isinstance(raw, str):
        kind = _parse_enum(ExpectationKind, raw, "expectation", indicator_id)
        if kind is not ExpectationKind.MUST_NOT_EXIST:
            raise ConfigError(f"expectation '{kind.value}' needs a value", indicator_id=indicator_id)
        return Expectation.must_not_exist()
    if not isinstance(raw, Mapping):
        raise ConfigError("'expect' must be a string or a mapping", indicator_id=indicator_id)

    name, value = _single_entry(raw, "expect", indicator_id)
    kind = _parse_enum(ExpectationKind, name, "expectation", indicator_id)
    if kind is ExpectationKind.MUST_NOT_EXIST:
        if value not in (True, None):
            raise ConfigError("must_not_exist takes no value", indicator_id=indicator_id)
        return Expectation.must_not_exist()
    if kind is ExpectationKind.MUST_EQUAL:
        if value is None:
            raise ConfigError("must_equal needs a value", indicator_id=indicator_id)
        return Expectation.must_equal(value)
    if not isinstance(value, list) or not value:
        raise ConfigError("must_contain_all needs a non-empty list", indicator_id=indicator_id)
    return Expectation.must_contain_all(value)


def parse_remediation(raw: Any, indicator_id: str) -> Remediation:
    if raw is None:
        return Remediation.none()
    if isinstance(raw, Remediation):
        return raw
    if isinstance(raw, str):
        name, value = raw, None
    elif isinstance(raw, Mapping):
        name, value = _single_entry(raw, "remediation", indicator_id)
    else:
        raise ConfigError("'remediation' must be a string or a mapping", indicator_id=indicator_id)

    kind = _parse_enum(RemediationKind, name, "remediation", indicator_id)
    if kind is RemediationKind.RESET_PREFERENCE:
        if value is None:
            raise ConfigError("reset_preference needs a value", indicator_id=indicator_id)
        return Remediation.reset_preference(value)
    if kind is RemediationKind.RESTORE_PERMISSIONS:
        recursive = False
        if isinstance(value, Mapping):
            recursive = bool(value.get("recursive", False))
            value = value.get("mode")
        if value is None:
            raise ConfigError("restore_permissions needs a mode", indicator_id=indicator_id)
        try:
            mode = parse_mode(value)
        except ValueError as exc:
            raise ConfigError(str(exc), indicator_id=indicator_id) from exc
        return Remediation.restore_permissions(mode, recursive=recursive)
    if value not in (None, True):
        raise ConfigError(f"remediation '{kind.value}' takes no value", indicator_id=indicator_id)
    return Remediation(kind)


def parse_indicator(record: Any, position: int) -> IndicatorDefinition:
    """Build and validate one IndicatorDefinition from a config record."""
    if not isinstance(record, Mapping):
        raise ConfigError(f"indicator #{position} must be a mapping")
    indicator_id = record.get("id")
    if not isinstance(indicator_id, str) or not indicator_id.strip():
        raise ConfigError(f"indicator #{position} needs a non-empty string 'id'")
    indicator_id = indicator_id.strip()

    unknown = sorted(set(record) - _RECORD_KEYS)
    if unknown:
        raise ConfigError(f"unknown field(s): {', '.join(unknown)}", indicator_id=indicator_id)
    for required in ("scope", "provider", "expect"):
        if required not in record:
            raise ConfigError(f"missing required field '{required}'", indicator_id=indicator_id)

    raw_scope = record["scope"]
    scope = _SCOPE_ALIASES.get(_normalize(raw_scope)) if isinstance(raw_scope, str) else None
    if scope is None:
        scope = _parse_enum(Scope, raw_scope, "scope", indicator_id)
    kind = _parse_enum(ProviderKind, record["provider"], "provider", indicator_id)

    args = record.get("args") or {}
    if not isinstance(args, Mapping):
        raise ConfigError("'args' must be a mapping", indicator_id=indicator_id)
    ProviderRegistry.get(kind).validate_args(args, indicator_id)

    severity = _parse_enum(Severity, str(record.get("severity", "MEDIUM")).upper(), "severity", indicator_id)

    return IndicatorDefinition(
        id=indicator_id,
        scope=scope,
        provider_kind=kind,
        provider_args=dict(args),
        expectation=parse_expectation(record["expect"], indicator_id),
        remediation=parse_remediation(record.get("remediation"), indicator_id),
        description=str(record.get("description", "")),
        severity=severity,
    )


class IndicatorRegistry:
    """Read-only, ordered set of indicator definitions.

    There is no mutation API; a configuration change means loading a new
    registry.
    """

    def __init__(
        self,
        definitions: Iterable[IndicatorDefinition],
        settings: Optional[EngineSettings] = None,
    ) -> None:
        by_id: Dict[str, IndicatorDefinition] = {}
        for definition in definitions:
            if definition.id in by_id:
                raise ConfigError("duplicate indicator id", indicator_id=definition.id)
            by_id[definition.id] = definition
        self._by_id = by_id
        self._definitions = tuple(by_id.values())
        self.settings = settings or EngineSettings()

    @classmethod
    def load(cls, source: Source) -> "IndicatorRegistry":
        """Load definitions from a file path or parsed data.

        Raises:
            ConfigError: on any invalid entry
        """
        load_providers()
        data = read_config_file(Path(source)) if isinstance(source, (str, Path)) else source

        settings_raw: Any = None
        if isinstance(data, Mapping):
            unknown = sorted(set(data) - _TOP_LEVEL_KEYS)
            if unknown:
                raise ConfigError(f"unknown top-level key(s): {', '.join(unknown)}")
            settings_raw = data.get("settings")
            records = data.get("indicators")
        else:
            records = data
        if not isinstance(records, list):
            raise ConfigError("configuration must contain a list of indicators")

        registry = cls(
            (parse_indicator(record, position) for position, record in enumerate(records, start=1)),
            settings=parse_settings(settings_raw),
        )
        logger.info("Loaded %d indicator definitions", len(registry))
        return registry

    def lookup(self, indicator_id: str) -> IndicatorDefinition:
        try:
            return self._by_id[indicator_id]
        except KeyError:
            raise IndicatorNotFound(indicator_id) from None

    def by_scope(self, scope: Scope) -> Tuple[IndicatorDefinition, ...]:
        return tuple(d for d in self._definitions if d.scope is scope)

    @property
    def definitions(self) -> Tuple[IndicatorDefinition, ...]:
        return self._definitions

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(self._by_id)

    def __iter__(self) -> Iterator[IndicatorDefinition]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, indicator_id: object) -> bool:
        return indicator_id in self._by_id
