"""
Per-provider circuit breaker for remote provisioning APIs.

A provider whose API keeps failing is short-circuited: further calls are
rejected with ``CircuitOpenError`` (a ``BackendError``), which the
orchestrator turns into a mock VM like any other backend failure, without
waiting for the provider's request timeout.
"""

from __future__ import annotations

import enum
import threading
import time
from typing import Any, Callable

from prometheus_client import Counter, Gauge

from chromevm.domain.errors import BackendError


CIRCUIT_STATE = Gauge(
    "chromevm_circuit_breaker_state",
    "Circuit breaker state per provider (0=closed, 1=open, 2=half_open)",
    ["name"],
)

CIRCUIT_TRIPS = Counter(
    "chromevm_circuit_breaker_trips_total",
    "Number of times a provider circuit breaker tripped to OPEN",
    ["name"],
)


class CircuitState(enum.Enum):
    CLOSED = 0
    OPEN = 1
    HALF_OPEN = 2


class CircuitOpenError(BackendError):
    """The provider's circuit is open; the call was not attempted."""

    def __init__(self, name: str, retry_after: float) -> None:
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit '{name}' is OPEN (retry after {retry_after:.0f}s)")


def counts_as_failure(exc: BaseException) -> bool:
    """Client errors (4xx) say nothing about the provider's health."""
    if isinstance(exc, BackendError) and exc.status_code is not None:
        return exc.status_code >= 500
    return True


class CircuitBreaker:
    """
    Thread-safe circuit breaker guarding one remote provider.

    CLOSED lets calls through and counts consecutive failures; reaching
    ``failure_threshold`` opens the circuit. While OPEN every call is
    rejected until ``recovery_timeout`` seconds have passed, after which a
    HALF_OPEN trial call decides between CLOSED and OPEN again.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0

        CIRCUIT_STATE.labels(name=name).set(CircuitState.CLOSED.value)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state()

    @property
    def healthy(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def failures(self) -> int:
        """Consecutive failures recorded since the last success."""
        return self._failures

    def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Run *func* unless the circuit is open.

        Raises:
            CircuitOpenError: If the circuit is OPEN
        """
        with self._lock:
            if self._current_state() == CircuitState.OPEN:
                remaining = self.recovery_timeout - (time.monotonic() - self._opened_at)
                raise CircuitOpenError(self.name, max(0.0, remaining))

        # No lock held while the request is in flight
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            if counts_as_failure(e):
                self._on_failure()
            raise

        self._on_success()
        return result

    def reset(self) -> None:
        """Close the circuit and forget past failures."""
        with self._lock:
            self._failures = 0
            self._opened_at = 0.0
            self._set_state(CircuitState.CLOSED)

    # ------------------------------------------------------------------
    # State changes (all called with _lock held)
    # ------------------------------------------------------------------

    def _current_state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and time.monotonic() - self._opened_at >= self.recovery_timeout
        ):
            self._set_state(CircuitState.HALF_OPEN)
        return self._state

    def _set_state(self, state: CircuitState) -> None:
        if state == CircuitState.OPEN and self._state != CircuitState.OPEN:
            CIRCUIT_TRIPS.labels(name=self.name).inc()
            self._opened_at = time.monotonic()
        self._state = state
        CIRCUIT_STATE.labels(name=self.name).set(state.value)

    def _on_success(self) -> None:
        with self._lock:
            self._failures = 0
            if self._state == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.CLOSED)

    def _on_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
                self._set_state(CircuitState.OPEN)
