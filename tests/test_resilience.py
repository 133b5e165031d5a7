"""Unit tests for resilient evidence collection."""
from __future__ import annotations

import time
import unittest
from concurrent.futures import TimeoutError as FuturesTimeout

from iocsentry.core.circuit_breaker import CircuitBreaker
from iocsentry.core.resilience import CollectorConfig, EvidenceCollector, call_with_timeout
from iocsentry.errors import ProviderQueryFailure
from iocsentry.types import Evidence, ProviderKind, ScopeContext

from conftest import make_definition

SCOPE = ScopeContext.system()


class StubProvider:
    """Provider double returning a fixed answer, raising, or stalling."""

    def __init__(
        self,
        evidence: Evidence | None = None,
        exc: BaseException | None = None,
        delay: float = 0,
    ) -> None:
        self.evidence = evidence or Evidence.absent()
        self.exc = exc
        self.delay = delay
        self.calls = 0

    def query(self, definition, scope):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        return self.evidence


def collector_for(provider, **config) -> EvidenceCollector:
    return EvidenceCollector({ProviderKind.FILE_EXISTENCE: provider}, CollectorConfig(**config))


class TestCallWithTimeout(unittest.TestCase):
    def test_returns_result(self) -> None:
        self.assertEqual(call_with_timeout(lambda x: x * 2, 1.0, 21), 42)

    def test_raises_on_deadline(self) -> None:
        with self.assertRaises(FuturesTimeout):
            call_with_timeout(time.sleep, 0.05, 0.5)

    def test_propagates_exceptions(self) -> None:
        def boom() -> None:
            raise KeyError("x")

        with self.assertRaises(KeyError):
            call_with_timeout(boom, 1.0)


class TestEvidenceCollector(unittest.TestCase):
    """collect() never raises."""

    def test_passes_evidence_through(self) -> None:
        found = Evidence.found("/tmp/x", targets=["/tmp/x"])
        evidence = collector_for(StubProvider(found)).collect(make_definition(), SCOPE)
        self.assertIs(evidence, found)

    def test_query_failure_becomes_failed_evidence(self) -> None:
        provider = StubProvider(exc=ProviderQueryFailure("needs a user home"))
        evidence = collector_for(provider).collect(make_definition(), SCOPE)
        self.assertTrue(evidence.query_failed)
        self.assertEqual(evidence.reason, "needs a user home")

    def test_unexpected_exception_captured(self) -> None:
        provider = StubProvider(exc=RuntimeError("Simulated provider failure"))
        evidence = collector_for(provider).collect(make_definition(), SCOPE)
        self.assertTrue(evidence.query_failed)
        self.assertIn("RuntimeError", evidence.reason)
        self.assertEqual(evidence.details["exception_type"], "RuntimeError")

    def test_timeout(self) -> None:
        provider = StubProvider(delay=0.5)
        evidence = collector_for(provider, provider_timeout=0.05).collect(make_definition(), SCOPE)
        self.assertTrue(evidence.query_failed)
        self.assertTrue(evidence.details["timed_out"])

    def test_per_indicator_timeout_argument(self) -> None:
        provider = StubProvider(delay=0.2)
        definition = make_definition(args={"path": "/tmp/x", "timeout": 2})
        evidence = collector_for(provider, provider_timeout=0.01).collect(definition, SCOPE)
        self.assertFalse(evidence.query_failed)

    def test_wrong_return_type(self) -> None:
        provider = StubProvider()
        provider.evidence = "present"  # type: ignore[assignment]
        evidence = collector_for(provider).collect(make_definition(), SCOPE)
        self.assertTrue(evidence.query_failed)
        self.assertIn("instead of Evidence", evidence.reason)

    def test_missing_provider(self) -> None:
        collector = EvidenceCollector({})
        evidence = collector.collect(make_definition(), SCOPE)
        self.assertTrue(evidence.query_failed)

    def test_collect_all_preserves_order(self) -> None:
        definitions = [make_definition(f"ind-{n}", args={"path": f"/tmp/{n}"}) for n in range(6)]

        class PathEcho:
            def query(self, definition, scope):
                time.sleep(0.01 * (6 - int(definition.id[-1])))
                return Evidence.found(definition.arg("path"))

        collector = EvidenceCollector(
            {ProviderKind.FILE_EXISTENCE: PathEcho()},
            CollectorConfig(parallel=True, max_workers=6),
        )
        results = collector.collect_all([(d, SCOPE) for d in definitions])

        self.assertEqual([e.value for e in results], [f"/tmp/{n}" for n in range(6)])


class SharedSourceProvider(StubProvider):
    """Stub standing in for a provider backed by one host-wide subsystem."""

    shared_source = True


class TestCollectorCircuitBreaker(unittest.TestCase):
    def test_open_circuit_skips_shared_source(self) -> None:
        provider = SharedSourceProvider(Evidence.failed("log unavailable", source_unavailable=True))
        collector = collector_for(provider, circuit_failure_threshold=2)

        results = [collector.collect(make_definition(), SCOPE) for _ in range(4)]

        self.assertEqual(provider.calls, 2)
        self.assertTrue(all(e.query_failed for e in results))
        self.assertTrue(results[3].details["circuit_open"])

    def test_timeouts_trip_shared_source(self) -> None:
        provider = SharedSourceProvider(delay=0.2)
        collector = collector_for(provider, provider_timeout=0.02, circuit_failure_threshold=2)

        results = [collector.collect(make_definition(), SCOPE) for _ in range(3)]

        self.assertEqual(provider.calls, 2)
        self.assertTrue(results[2].details["circuit_open"])

    def test_indicator_specific_failures_do_not_trip(self) -> None:
        provider = SharedSourceProvider(Evidence.failed("log query failed: Bad predicate", returncode=64))
        collector = collector_for(provider, circuit_failure_threshold=1)
        for _ in range(3):
            collector.collect(make_definition(), SCOPE)
        self.assertEqual(provider.calls, 3)

    def test_per_indicator_providers_never_short_circuit(self) -> None:
        provider = StubProvider(Evidence.failed("cannot read", source_unavailable=True))
        collector = collector_for(provider, circuit_failure_threshold=1)
        results = [collector.collect(make_definition(), SCOPE) for _ in range(3)]
        self.assertEqual(provider.calls, 3)
        self.assertFalse(any(e.details.get("circuit_open") for e in results))

    def test_success_keeps_circuit_closed(self) -> None:
        provider = SharedSourceProvider(Evidence.absent())
        collector = collector_for(provider, circuit_failure_threshold=1)
        for _ in range(3):
            collector.collect(make_definition(), SCOPE)
        self.assertEqual(provider.calls, 3)

    def test_breaker_can_be_disabled(self) -> None:
        provider = SharedSourceProvider(Evidence.failed("log unavailable", source_unavailable=True))
        collector = collector_for(provider, use_circuit_breaker=False, circuit_failure_threshold=1)
        for _ in range(3):
            collector.collect(make_definition(), SCOPE)
        self.assertEqual(provider.calls, 3)

    def test_injected_breaker_is_used(self) -> None:
        breaker = CircuitBreaker(failure_threshold=1)
        breaker.record_failure(ProviderKind.FILE_EXISTENCE.value)
        provider = SharedSourceProvider()

        evidence = EvidenceCollector({ProviderKind.FILE_EXISTENCE: provider}, circuit_breaker=breaker).collect(
            make_definition(), SCOPE
        )

        self.assertTrue(evidence.query_failed)
        self.assertEqual(provider.calls, 0)


if __name__ == "__main__":
    unittest.main()
