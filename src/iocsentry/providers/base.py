"""Base classes and utilities for evidence providers."""
from __future__ import annotations

import abc
import logging
import re
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, Iterable, Mapping, Optional, Tuple, Type

from ..core.interfaces import OSInterface
from ..errors import ConfigError, ProviderQueryFailure
from ..types import Evidence, IndicatorDefinition, ProviderKind, Scope, ScopeContext

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry mapping each provider kind to its implementation."""

    _registry: ClassVar[Dict[ProviderKind, Type["EvidenceProvider"]]] = {}

    @classmethod
    def register(cls, provider_cls: Type["EvidenceProvider"]) -> None:
        kind = provider_cls.kind
        if kind is None:
            raise ValueError(f"Evidence provider {provider_cls.__name__} must define a kind")
        existing = cls._registry.get(kind)
        if existing is not None and existing.__qualname__ != provider_cls.__qualname__:
            raise ValueError(f"Duplicate provider registered for kind: {kind.value}")
        cls._registry[kind] = provider_cls
        logger.debug("Registered evidence provider: %s", kind.value)

    @classmethod
    def get(cls, kind: ProviderKind) -> Type["EvidenceProvider"]:
        try:
            return cls._registry[kind]
        except KeyError:
            raise ConfigError(f"no provider implements '{kind.value}'") from None

    @classmethod
    def get_all(cls) -> Iterable[Type["EvidenceProvider"]]:
        return cls._registry.values()

    @classmethod
    def clear(cls) -> None:
        cls._registry.clear()


class EvidenceProviderMeta(abc.ABCMeta):
    """Metaclass that auto-registers concrete providers."""

    def __new__(mcls, name: str, bases: Tuple[type, ...], namespace: Dict[str, Any]):
        cls = super().__new__(mcls, name, bases, namespace)
        if getattr(cls, "auto_register", True) and not getattr(cls, "__abstractmethods__", None):
            ProviderRegistry.register(cls)
        return cls


class EvidenceProvider(metaclass=EvidenceProviderMeta):
    """Read-only source of evidence for one provider kind.

    Subclasses declare ``kind``, the arguments they require and accept, and
    implement :meth:`query`. A provider never mutates host state.
    """

    auto_register: ClassVar[bool] = True
    kind: ClassVar[Optional[ProviderKind]] = None
    required_args: ClassVar[Tuple[str, ...]] = ()
    optional_args: ClassVar[Tuple[str, ...]] = ()

    # Every indicator of this kind queries one host-wide subsystem, so an
    # outage of that subsystem may short-circuit the whole kind
    shared_source: ClassVar[bool] = False

    # Accepted by every provider, consumed by the evidence collector
    _COMMON_ARGS = ("timeout",)

    def __init__(self, os_interface: OSInterface, query_timeout: Optional[float] = None) -> None:
        self.os = os_interface
        # Deadline the collector enforces when an indicator sets no ``timeout``
        self.query_timeout = query_timeout

    def deadline_for(self, definition: IndicatorDefinition, fallback: float) -> float:
        """Seconds a subprocess started for ``definition`` may run."""
        raw = definition.arg("timeout", self.query_timeout)
        try:
            return float(raw) if raw is not None else fallback
        except (TypeError, ValueError):
            return fallback

    @classmethod
    def validate_args(cls, args: Mapping[str, Any], indicator_id: str) -> None:
        """Check provider arguments at load time.

        Raises:
            ConfigError: on missing or unknown arguments
        """
        missing = [name for name in cls.required_args if args.get(name) in (None, "")]
        if missing:
            raise ConfigError(
                f"{cls.kind.value} requires argument(s): {', '.join(missing)}",
                indicator_id=indicator_id,
            )
        known = set(cls.required_args) | set(cls.optional_args) | set(cls._COMMON_ARGS)
        unknown = sorted(set(args) - known)
        if unknown:
            raise ConfigError(
                f"{cls.kind.value} does not accept argument(s): {', '.join(unknown)}",
                indicator_id=indicator_id,
            )

    @abc.abstractmethod
    def query(self, definition: IndicatorDefinition, scope: ScopeContext) -> Evidence:
        """Report the current state relevant to ``definition`` in ``scope``."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(kind={self.kind.value if self.kind else None!r})"


def compile_matcher(pattern: str, use_regex: bool, indicator_id: str = "") -> Callable[[str], Optional[str]]:
    """Return a function giving the matched text, or None, for a pattern.

    Raises:
        ConfigError: if ``use_regex`` is set and the pattern does not compile
    """
    if use_regex:
        try:
            compiled = re.compile(pattern)
        except re.error as exc:
            raise ConfigError(f"invalid regex {pattern!r}: {exc}", indicator_id=indicator_id) from exc

        def match(text: str) -> Optional[str]:
            found = compiled.search(text)
            return found.group(0) if found else None

        return match

    def contains(text: str) -> Optional[str]:
        return pattern if pattern in text else None

    return contains


def expand_path(template: str, scope: ScopeContext) -> str:
    """Resolve ``~`` and ``{home}`` against the scope.

    Per-user scopes substitute their home directory. The system scope has
    no home, so a home-relative path there is a query failure.
    """
    needs_home = template.startswith("~") or "{home}" in template
    if not needs_home:
        return template
    if scope.kind is not Scope.PER_USER or scope.home is None:
        raise ProviderQueryFailure(f"path {template!r} needs a user home but scope is {scope.label}")
    home = str(scope.home)
    if template.startswith("~/") or template == "~":
        template = home + template[1:]
    return template.replace("{home}", home)


def resolve_paths(os_interface: OSInterface, template: str, scope: ScopeContext) -> list[Path]:
    """Expand a (possibly glob) path template to the paths that exist."""
    pattern = expand_path(template, scope)
    if any(ch in pattern for ch in "*?["):
        return os_interface.glob(pattern)
    path = Path(pattern)
    return [path] if os_interface.file_exists(path) else []
