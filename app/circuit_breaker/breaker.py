import time
import threading
from typing import Callable

from app.errors import CircuitOpenError
from app.models.health import CircuitBreakerState


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    States:
      CLOSED    -> all requests pass through; failures are counted
      OPEN      -> requests rejected until recovery_timeout has elapsed
                   since the last failure
      HALF_OPEN -> recovery timeout elapsed; probes pass through until
                   either success_threshold successes close the circuit
                   or a single failure reopens it

    The OPEN -> HALF_OPEN transition is lazy: it happens inside is_open().
    Every read-modify-write runs under one lock so concurrent callers never
    interleave an increment with its threshold comparison.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        recovery_timeout: float = 30.0,
        success_threshold: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._success_threshold = success_threshold
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitBreakerState.CLOSED
        self._failures = 0
        self._success_count = 0
        self._last_failure_time: float | None = None

    @property
    def state(self) -> CircuitBreakerState:
        with self._lock:
            return self._state

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    @property
    def success_count(self) -> int:
        with self._lock:
            return self._success_count

    def is_open(self) -> bool:
        """
        True while the circuit rejects calls.
        Side effect: transitions OPEN -> HALF_OPEN once the recovery timeout elapses.
        """
        with self._lock:
            if self._state != CircuitBreakerState.OPEN:
                return False
            elapsed = self._clock() - (self._last_failure_time or 0.0)
            if elapsed >= self._recovery_timeout:
                self._state = CircuitBreakerState.HALF_OPEN
                self._success_count = 0
                return False
            return True

    def check(self) -> None:
        """Raise CircuitOpenError when the circuit is open."""
        if self.is_open():
            raise CircuitOpenError(self.name)

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitBreakerState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self._success_threshold:
                    self._state = CircuitBreakerState.CLOSED
                    self._failures = 0
                    self._success_count = 0
            elif self._state == CircuitBreakerState.CLOSED:
                self._failures = 0

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitBreakerState.HALF_OPEN:
                # Probe failed, reopen without waiting for the threshold
                self._state = CircuitBreakerState.OPEN
                self._success_count = 0
            elif self._failures >= self._failure_threshold:
                self._state = CircuitBreakerState.OPEN

    def reset(self) -> None:
        """Reset to CLOSED with zeroed counters (operator / testing hook)."""
        with self._lock:
            self._state = CircuitBreakerState.CLOSED
            self._failures = 0
            self._success_count = 0
            self._last_failure_time = None

    def inject_failures(self, count: int) -> None:
        """Record *count* synthetic failures. Intended for demos and integration tests."""
        for _ in range(count):
            self.record_failure()

    @property
    def status_snapshot(self) -> dict:
        """Thread-safe snapshot for the status endpoints."""
        with self._lock:
            now = self._clock()
            recovery_remaining = None
            if self._state == CircuitBreakerState.OPEN and self._last_failure_time is not None:
                elapsed = now - self._last_failure_time
                recovery_remaining = max(0.0, self._recovery_timeout - elapsed)

            last_failure = None
            if self._last_failure_time is not None:
                last_failure = f"{now - self._last_failure_time:.1f}s ago"

            return {
                "state": self._state,
                "failures": self._failures,
                "success_count": self._success_count,
                "last_failure_at": last_failure,
                "recovery_remaining_seconds": recovery_remaining,
            }
