"""Circuit breaker for evidence providers.

One circuit exists per provider kind. A host without a working unified log
would otherwise make every LogPattern indicator wait out its full query
timeout, so after ``failure_threshold`` consecutive failed queries the
circuit opens and further queries of that kind are refused until
``reset_timeout`` seconds have passed. The next query is then a trial: it
closes the circuit on success and reopens it on failure.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitStats:
    """Counters and state for one provider kind."""

    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    total_failures: int = 0
    total_timeouts: int = 0
    last_failure_time: Optional[float] = None

    def cooled_down(self, reset_timeout: float, now: float) -> bool:
        return (
            self.state is CircuitState.OPEN
            and self.last_failure_time is not None
            and now - self.last_failure_time >= reset_timeout
        )


@dataclass
class CircuitBreaker:
    """Thread-safe registry of circuits keyed by provider kind."""

    failure_threshold: int = 3
    reset_timeout: float = 60.0

    _circuits: Dict[str, CircuitStats] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def _circuit(self, kind: str) -> CircuitStats:
        # Caller holds the lock
        circuit = self._circuits.setdefault(kind, CircuitStats())
        if circuit.cooled_down(self.reset_timeout, time.monotonic()):
            circuit.state = CircuitState.HALF_OPEN
            logger.debug("Circuit %s allows a trial query", kind)
        return circuit

    def get_state(self, kind: str) -> CircuitState:
        with self._lock:
            return self._circuit(kind).state

    def can_execute(self, kind: str) -> bool:
        return self.get_state(kind) is not CircuitState.OPEN

    def record_success(self, kind: str) -> None:
        with self._lock:
            circuit = self._circuit(kind)
            circuit.consecutive_failures = 0
            if circuit.state is CircuitState.HALF_OPEN:
                circuit.state = CircuitState.CLOSED
                logger.info("%s queries recovered, circuit closed", kind)

    def record_failure(self, kind: str, is_timeout: bool = False) -> None:
        with self._lock:
            circuit = self._circuit(kind)
            circuit.consecutive_failures += 1
            circuit.total_failures += 1
            circuit.total_timeouts += int(is_timeout)
            circuit.last_failure_time = time.monotonic()

            trial_failed = circuit.state is CircuitState.HALF_OPEN
            tripped = (
                circuit.state is CircuitState.CLOSED
                and circuit.consecutive_failures >= self.failure_threshold
            )
            if trial_failed or tripped:
                circuit.state = CircuitState.OPEN
                logger.warning(
                    "%s queries disabled for %gs after %d consecutive failures",
                    kind,
                    self.reset_timeout,
                    circuit.consecutive_failures,
                )

    def get_stats(self, kind: str) -> CircuitStats:
        with self._lock:
            return self._circuit(kind)

    def reset_all(self) -> None:
        with self._lock:
            self._circuits.clear()
