"""Resilient evidence collection.

Key principles:

1. No single provider failure can abort the run
2. Errors are captured as query-failed evidence, not propagated
3. Every provider call is bounded by a timeout
4. A circuit breaker stops querying a shared evidence source (the unified
   log) once it is down. Failures of one indicator never short-circuit another.

Usage:
    collector = EvidenceCollector(providers, CollectorConfig(provider_timeout=10))
    evidence = collector.collect(definition, scope)
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from ..errors import ProviderQueryFailure
from ..types import Evidence, IndicatorDefinition, ProviderKind, ScopeContext
from .circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CollectorConfig:
    """Configuration for evidence collection."""

    # Default timeout for one provider call (seconds)
    provider_timeout: float = 30.0

    # Whether to query providers concurrently
    parallel: bool = False

    # Maximum parallel workers
    max_workers: int = 4

    # Whether to use circuit breaker
    use_circuit_breaker: bool = True

    # Consecutive outages before a shared source is short-circuited
    circuit_failure_threshold: int = 3


def call_with_timeout(func: Callable[..., T], timeout: float, *args: Any, **kwargs: Any) -> T:
    """Run ``func`` in a worker thread and wait at most ``timeout`` seconds.

    Raises:
        concurrent.futures.TimeoutError: when the deadline passes. The worker
            thread is abandoned, not killed.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="provider")
    future = executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


class EvidenceCollector:
    """Queries providers with timeouts, circuit breaking and fault isolation."""

    def __init__(
        self,
        providers: Mapping[ProviderKind, Any],
        config: Optional[CollectorConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.providers = providers
        self.config = config or CollectorConfig()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=self.config.circuit_failure_threshold
        )

    def _timeout_for(self, definition: IndicatorDefinition) -> float:
        try:
            return float(definition.arg("timeout", self.config.provider_timeout))
        except (TypeError, ValueError):
            return self.config.provider_timeout

    def collect(self, definition: IndicatorDefinition, scope: ScopeContext) -> Evidence:
        """Query the indicator's provider. Never raises."""
        circuit_id = definition.provider_kind.value
        provider = self.providers.get(definition.provider_kind)
        if provider is None:
            return Evidence.failed(f"no provider registered for '{circuit_id}'")

        guarded = self.config.use_circuit_breaker and getattr(provider, "shared_source", False)
        if guarded and not self.circuit_breaker.can_execute(circuit_id):
            logger.debug("Circuit %s open, skipping %s", circuit_id, definition.id)
            return Evidence.failed(
                f"{circuit_id} queries disabled after repeated outages",
                circuit_open=True,
            )

        timeout = self._timeout_for(definition)
        start = time.perf_counter()
        timed_out = False
        try:
            evidence = call_with_timeout(provider.query, timeout, definition, scope)
            if not isinstance(evidence, Evidence):
                evidence = Evidence.failed(
                    f"provider returned {type(evidence).__name__} instead of Evidence"
                )
        except FuturesTimeout:
            timed_out = True
            logger.warning(
                "Provider %s timed out after %.1fs for %s [%s]",
                circuit_id,
                timeout,
                definition.id,
                scope.label,
            )
            evidence = Evidence.failed(f"query timed out after {timeout:g}s", timed_out=True)
        except ProviderQueryFailure as exc:
            evidence = Evidence.failed(str(exc))
        except Exception as exc:  # noqa: BLE001 - providers must never abort a run
            logger.exception("Provider %s raised for %s [%s]", circuit_id, definition.id, scope.label)
            evidence = Evidence.failed(
                f"{type(exc).__name__}: {exc}", exception_type=type(exc).__name__
            )

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            "[%s] %s %s - %.1fms",
            "FAILED" if evidence.query_failed else ("PRESENT" if evidence.present else "ABSENT"),
            definition.id,
            scope.label,
            elapsed_ms,
        )

        if guarded:
            # An error specific to this indicator (bad predicate) still proves the source answers
            timed_out = timed_out or bool(evidence.details.get("timed_out"))
            if timed_out or evidence.details.get("source_unavailable"):
                self.circuit_breaker.record_failure(circuit_id, is_timeout=timed_out)
            else:
                self.circuit_breaker.record_success(circuit_id)
        return evidence

    def collect_all(
        self, pairs: Sequence[Tuple[IndicatorDefinition, ScopeContext]]
    ) -> List[Evidence]:
        """Collect evidence for every pair, preserving order."""
        if self.config.parallel and len(pairs) > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                return list(executor.map(lambda pair: self.collect(*pair), pairs))
        return [self.collect(definition, scope) for definition, scope in pairs]
