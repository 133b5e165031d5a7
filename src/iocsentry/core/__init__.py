"""Core architectural components for iocSentry.

This module provides:
- Strict layer separation (evidence, evaluation, remediation, reporting)
- Dependency injection for OS interactions
- Circuit breakers for unreliable evidence sources
- Timeout-bounded, fault-isolated evidence collection
"""

from .interfaces import (
    FileStat,
    OSInterface,
    PolicyGuard,
    ProcessInfo,
    ReportSink,
)
from .injection import (
    DependencyContainer,
    MockOSInterface,
    RealOSInterface,
    get_container,
    reset_container,
    set_container,
)
from .circuit_breaker import CircuitBreaker, CircuitState
from .resilience import CollectorConfig, EvidenceCollector, call_with_timeout

__all__ = [
    # Interfaces
    "FileStat",
    "OSInterface",
    "PolicyGuard",
    "ProcessInfo",
    "ReportSink",
    # Dependency Injection
    "DependencyContainer",
    "MockOSInterface",
    "RealOSInterface",
    "get_container",
    "reset_container",
    "set_container",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitState",
    # Resilience
    "CollectorConfig",
    "EvidenceCollector",
    "call_with_timeout",
]
