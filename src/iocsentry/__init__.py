"""iocsentry - declarative indicator-of-compromise scan and remediation."""
from __future__ import annotations

__version__ = "1.0.0"

from .errors import (
    ConfigError,
    IndicatorNotFound,
    InvalidStateTransition,
    IocSentryError,
    PolicyVeto,
    ProviderQueryFailure,
    RemediationFailure,
)
from .evaluator import evaluate
from .orchestrator import RunOrchestrator, RunState
from .registry import IndicatorRegistry
from .remediation import RemediationExecutor
from .types import (
    Evidence,
    Expectation,
    IndicatorDefinition,
    ProviderKind,
    Remediation,
    RemediationKind,
    RemediationOutcome,
    ReportEntry,
    RunReport,
    Scope,
    ScopeContext,
    Severity,
    Verdict,
)

__all__ = [
    "__version__",
    "ConfigError",
    "Evidence",
    "Expectation",
    "IndicatorDefinition",
    "IndicatorNotFound",
    "IndicatorRegistry",
    "InvalidStateTransition",
    "IocSentryError",
    "PolicyVeto",
    "ProviderKind",
    "ProviderQueryFailure",
    "Remediation",
    "RemediationExecutor",
    "RemediationFailure",
    "RemediationKind",
    "RemediationOutcome",
    "ReportEntry",
    "RunOrchestrator",
    "RunReport",
    "RunState",
    "Scope",
    "ScopeContext",
    "Severity",
    "Verdict",
    "evaluate",
]
