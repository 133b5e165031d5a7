"""Core types for indicator evaluation - no external dependencies."""
from __future__ import annotations

import datetime as dt
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from .errors import ConfigError

# Exit codes, highest applicable wins
EXIT_OK = 0
EXIT_UNREMEDIATED = 1
EXIT_UNKNOWN = 2
EXIT_FAILED = 3
EXIT_CONFIG_ERROR = 4


class Severity(str, Enum):
    """Severity levels for indicators."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"


class Scope(str, Enum):
    """Where an indicator is evaluated."""

    SYSTEM_WIDE = "system"
    PER_USER = "user"


class ProviderKind(str, Enum):
    """Closed set of evidence sources."""

    PROCESS_PATTERN = "process_pattern"
    FILE_EXISTENCE = "file_existence"
    PREFERENCE_KEY = "preference_key"
    LOG_PATTERN = "log_pattern"
    FILE_CONTENT_PATTERN = "file_content_pattern"


class ExpectationKind(str, Enum):
    MUST_NOT_EXIST = "must_not_exist"
    MUST_EQUAL = "must_equal"
    MUST_CONTAIN_ALL = "must_contain_all"


class RemediationKind(str, Enum):
    NONE = "none"
    KILL = "kill"
    DELETE = "delete"
    RESET_PREFERENCE = "reset_preference"
    LOCK = "lock"
    RESTORE_PERMISSIONS = "restore_permissions"


_FILE_PROVIDERS = frozenset({ProviderKind.FILE_EXISTENCE, ProviderKind.FILE_CONTENT_PATTERN})

# Which provider kinds produce evidence a remediation can act on
COMPATIBLE_PROVIDERS: Dict[RemediationKind, FrozenSet[ProviderKind]] = {
    RemediationKind.NONE: frozenset(ProviderKind),
    RemediationKind.KILL: frozenset({ProviderKind.PROCESS_PATTERN}),
    RemediationKind.DELETE: _FILE_PROVIDERS,
    RemediationKind.RESET_PREFERENCE: frozenset({ProviderKind.PREFERENCE_KEY}),
    RemediationKind.LOCK: _FILE_PROVIDERS,
    RemediationKind.RESTORE_PERMISSIONS: _FILE_PROVIDERS,
}


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


@dataclass(frozen=True, slots=True)
class Expectation:
    """Expected state of the observed value."""

    kind: ExpectationKind
    value: Any = None
    values: Tuple[Any, ...] = ()

    @classmethod
    def must_not_exist(cls) -> "Expectation":
        return cls(ExpectationKind.MUST_NOT_EXIST)

    @classmethod
    def must_equal(cls, value: Any) -> "Expectation":
        return cls(ExpectationKind.MUST_EQUAL, value=_freeze(value))

    @classmethod
    def must_contain_all(cls, values: Iterable[Any]) -> "Expectation":
        return cls(ExpectationKind.MUST_CONTAIN_ALL, values=tuple(values))

    def describe(self) -> str:
        if self.kind is ExpectationKind.MUST_EQUAL:
            return f"must equal {self.value!r}"
        if self.kind is ExpectationKind.MUST_CONTAIN_ALL:
            return f"must contain all of {list(self.values)!r}"
        return "must not exist"


@dataclass(frozen=True, slots=True)
class Remediation:
    """Fix applied when an indicator is violated."""

    kind: RemediationKind = RemediationKind.NONE
    value: Any = None  # preference value for RESET_PREFERENCE
    mode: Optional[int] = None  # permission bits for RESTORE_PERMISSIONS
    recursive: bool = False

    @classmethod
    def none(cls) -> "Remediation":
        return cls()

    @classmethod
    def kill(cls) -> "Remediation":
        return cls(RemediationKind.KILL)

    @classmethod
    def delete(cls) -> "Remediation":
        return cls(RemediationKind.DELETE)

    @classmethod
    def lock(cls) -> "Remediation":
        return cls(RemediationKind.LOCK)

    @classmethod
    def reset_preference(cls, value: Any) -> "Remediation":
        return cls(RemediationKind.RESET_PREFERENCE, value=_freeze(value))

    @classmethod
    def restore_permissions(cls, mode: int, recursive: bool = False) -> "Remediation":
        return cls(RemediationKind.RESTORE_PERMISSIONS, mode=mode, recursive=recursive)

    @property
    def is_actionable(self) -> bool:
        return self.kind is not RemediationKind.NONE

    def describe(self) -> str:
        if self.kind is RemediationKind.RESET_PREFERENCE:
            return f"reset preference to {self.value!r}"
        if self.kind is RemediationKind.RESTORE_PERMISSIONS:
            suffix = " (recursive)" if self.recursive else ""
            return f"restore permissions {self.mode:04o}{suffix}"
        return self.kind.value


@dataclass(frozen=True, slots=True)
class IndicatorDefinition:
    """A declarative IOC: where to look, what to expect, how to fix."""

    id: str
    scope: Scope
    provider_kind: ProviderKind
    provider_args: Mapping[str, Any]
    expectation: Expectation
    remediation: Remediation = field(default_factory=Remediation.none)
    description: str = ""
    severity: Severity = Severity.MEDIUM

    def __post_init__(self) -> None:
        if not self.id:
            raise ConfigError("indicator id must not be empty")
        allowed = COMPATIBLE_PROVIDERS[self.remediation.kind]
        if self.provider_kind not in allowed:
            raise ConfigError(
                f"remediation '{self.remediation.kind.value}' cannot act on "
                f"'{self.provider_kind.value}' evidence",
                indicator_id=self.id,
            )
        object.__setattr__(self, "provider_args", MappingProxyType(dict(self.provider_args)))

    def __hash__(self) -> int:
        return hash(self.id)

    def arg(self, name: str, default: Any = None) -> Any:
        return self.provider_args.get(name, default)


@dataclass(frozen=True, slots=True)
class ScopeContext:
    """Resolved evaluation context, system-wide or one user's home."""

    kind: Scope
    username: Optional[str] = None
    home: Optional[Path] = None

    @classmethod
    def system(cls) -> "ScopeContext":
        return cls(Scope.SYSTEM_WIDE)

    @classmethod
    def for_user(cls, username: str, home: Path) -> "ScopeContext":
        return cls(Scope.PER_USER, username=username, home=Path(home))

    @property
    def label(self) -> str:
        if self.kind is Scope.SYSTEM_WIDE:
            return "system"
        return f"user:{self.username}"


@dataclass(frozen=True, slots=True)
class Evidence:
    """Answer from a provider; says nothing about pass or fail."""

    present: bool
    value: Any = None
    query_failed: bool = False
    reason: str = ""
    targets: Tuple[str, ...] = ()
    details: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def found(cls, value: Any, targets: Iterable[Any] = (), **details: Any) -> "Evidence":
        return cls(True, value=value, targets=tuple(str(t) for t in targets), details=details)

    @classmethod
    def absent(cls, **details: Any) -> "Evidence":
        return cls(False, details=details)

    @classmethod
    def failed(cls, reason: str, **details: Any) -> "Evidence":
        return cls(False, query_failed=True, reason=reason, details=details)


class VerdictStatus(str, Enum):
    CLEAN = "clean"
    VIOLATED = "violated"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class Verdict:
    status: VerdictStatus
    observed: Any = None
    reason: str = ""
    targets: Tuple[str, ...] = ()

    @classmethod
    def clean(cls, observed: Any = None) -> "Verdict":
        return cls(VerdictStatus.CLEAN, observed=observed)

    @classmethod
    def violated(cls, observed: Any, reason: str = "", targets: Iterable[str] = ()) -> "Verdict":
        return cls(VerdictStatus.VIOLATED, observed=observed, reason=reason, targets=tuple(targets))

    @classmethod
    def unknown(cls, reason: str) -> "Verdict":
        return cls(VerdictStatus.UNKNOWN, reason=reason)

    @property
    def is_violated(self) -> bool:
        return self.status is VerdictStatus.VIOLATED


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"
    WOULD_APPLY = "would_apply"


@dataclass(frozen=True, slots=True)
class RemediationOutcome:
    status: OutcomeStatus
    action: RemediationKind
    targets: Tuple[str, ...] = ()
    reason: str = ""

    @classmethod
    def applied(cls, action: RemediationKind, targets: Iterable[str] = (), reason: str = "") -> "RemediationOutcome":
        return cls(OutcomeStatus.APPLIED, action, tuple(targets), reason)

    @classmethod
    def skipped(cls, action: RemediationKind, reason: str, targets: Iterable[str] = ()) -> "RemediationOutcome":
        return cls(OutcomeStatus.SKIPPED, action, tuple(targets), reason)

    @classmethod
    def failed(cls, action: RemediationKind, cause: str, targets: Iterable[str] = ()) -> "RemediationOutcome":
        return cls(OutcomeStatus.FAILED, action, tuple(targets), cause)

    @classmethod
    def would_apply(cls, action: RemediationKind, targets: Iterable[str] = ()) -> "RemediationOutcome":
        return cls(OutcomeStatus.WOULD_APPLY, action, tuple(targets), "dry run")


@dataclass(frozen=True, slots=True)
class ReportEntry:
    """One (indicator, scope) result."""

    indicator_id: str
    scope: ScopeContext
    verdict: Verdict
    outcome: Optional[RemediationOutcome] = None
    severity: Severity = Severity.MEDIUM
    description: str = ""

    @property
    def unremediated(self) -> bool:
        return self.verdict.is_violated and self.outcome is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "indicator": self.indicator_id,
            "scope": self.scope.label,
            "home": str(self.scope.home) if self.scope.home else None,
            "severity": self.severity.value,
            "description": self.description,
            "verdict": self.verdict.status.value,
            "observed": _jsonable(self.verdict.observed),
            "reason": self.verdict.reason,
            "outcome": None
            if self.outcome is None
            else {
                "status": self.outcome.status.value,
                "action": self.outcome.action.value,
                "targets": list(self.outcome.targets),
                "reason": self.outcome.reason,
            },
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    return str(value)


@dataclass(frozen=True)
class RunReport:
    """Ordered, immutable record of one engine run."""

    entries: Tuple[ReportEntry, ...]
    started_at: dt.datetime
    finished_at: dt.datetime
    dry_run: bool = False
    system_info: Mapping[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @property
    def verdicts(self) -> Tuple[Verdict, ...]:
        return tuple(entry.verdict for entry in self.entries)

    def summary(self) -> Dict[str, int]:
        verdicts: Counter[str] = Counter(e.verdict.status.value for e in self.entries)
        outcomes: Counter[str] = Counter(e.outcome.status.value for e in self.entries if e.outcome)
        data = {"total": len(self.entries)}
        data.update({status.value: verdicts.get(status.value, 0) for status in VerdictStatus})
        data.update({status.value: outcomes.get(status.value, 0) for status in OutcomeStatus})
        data["unremediated"] = sum(1 for e in self.entries if e.unremediated)
        return data

    def exit_code(self) -> int:
        summary = self.summary()
        if summary[OutcomeStatus.FAILED.value]:
            return EXIT_FAILED
        if summary[VerdictStatus.UNKNOWN.value]:
            return EXIT_UNKNOWN
        if summary["unremediated"]:
            return EXIT_UNREMEDIATED
        return EXIT_OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.replace(microsecond=0).isoformat(),
            "finished_at": self.finished_at.replace(microsecond=0).isoformat(),
            "dry_run": self.dry_run,
            "system": _jsonable(dict(self.system_info)),
            "entries": [entry.to_dict() for entry in self.entries],
            "summary": self.summary(),
            "exit_code": self.exit_code(),
        }
