"""Exception taxonomy for the IOC engine.

Only :class:`ConfigError` is fatal to a run. Everything raised while querying
or remediating a single indicator is captured and recorded in the report.
"""
from __future__ import annotations


class IocSentryError(Exception):
    """Base class for all engine errors."""


class ConfigError(IocSentryError):
    """Raised when indicator definitions or settings are invalid.

    Always raised before any scope is touched.
    """

    def __init__(self, message: str, *, indicator_id: str | None = None) -> None:
        if indicator_id:
            message = f"indicator '{indicator_id}': {message}"
        super().__init__(message)
        self.indicator_id = indicator_id


class IndicatorNotFound(IocSentryError, LookupError):
    """Raised by registry lookups for an unknown indicator id."""

    def __init__(self, indicator_id: str) -> None:
        super().__init__(f"No indicator registered with id '{indicator_id}'")
        self.indicator_id = indicator_id


class ProviderQueryFailure(IocSentryError):
    """Raised by a provider that cannot determine the current state."""


class RemediationFailure(IocSentryError):
    """Raised when a remediation action could not be carried out."""

    def __init__(self, message: str, *, target: str | None = None) -> None:
        super().__init__(message)
        self.target = target


class PolicyVeto(IocSentryError):
    """Raised when a policy guard forbids an action on a target."""

    def __init__(self, action: str, target: str, reason: str) -> None:
        super().__init__(f"{action} on {target} vetoed: {reason}")
        self.action = action
        self.target = target
        self.reason = reason


class InvalidStateTransition(IocSentryError, RuntimeError):
    """Raised when the run state machine is driven backwards."""
