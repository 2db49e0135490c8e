"""Circuit breaker state machine, driven by a controllable clock."""

import random
import threading

from app.circuit_breaker.breaker import CircuitBreaker
from app.circuit_breaker.registry import CircuitBreakerRegistry
from app.errors import CircuitOpenError
from app.models.health import CircuitBreakerState

import pytest


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _breaker(clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker("stripe", failure_threshold=3, recovery_timeout=30.0, success_threshold=2, clock=clock)


def test_three_failures_open_the_circuit():
    cb = _breaker(FakeClock())
    cb.record_failure()
    cb.record_failure()
    assert cb.state == CircuitBreakerState.CLOSED
    assert not cb.is_open()

    cb.record_failure()
    assert cb.state == CircuitBreakerState.OPEN
    assert cb.is_open()


def test_open_moves_to_half_open_after_recovery_timeout():
    clock = FakeClock()
    cb = _breaker(clock)
    cb.inject_failures(3)

    clock.advance(29.9)
    assert cb.is_open()

    clock.advance(0.1)
    assert not cb.is_open()
    assert cb.state == CircuitBreakerState.HALF_OPEN
    assert cb.success_count == 0


def test_two_successes_close_from_half_open():
    clock = FakeClock()
    cb = _breaker(clock)
    cb.inject_failures(3)
    clock.advance(30)
    cb.is_open()

    cb.record_success()
    assert cb.state == CircuitBreakerState.HALF_OPEN
    cb.record_success()
    assert cb.state == CircuitBreakerState.CLOSED
    assert cb.failures == 0
    assert cb.success_count == 0


def test_single_failure_in_half_open_reopens():
    clock = FakeClock()
    cb = _breaker(clock)
    cb.inject_failures(3)
    clock.advance(30)
    assert not cb.is_open()

    cb.record_success()
    cb.record_failure()
    assert cb.state == CircuitBreakerState.OPEN
    assert cb.is_open()

    # The recovery timer restarts from the probe failure
    clock.advance(29)
    assert cb.is_open()
    clock.advance(1)
    assert not cb.is_open()


def test_success_while_closed_resets_failures():
    cb = _breaker(FakeClock())
    cb.record_failure()
    cb.record_failure()
    cb.record_success()
    assert cb.failures == 0

    cb.record_failure()
    cb.record_failure()
    assert cb.state == CircuitBreakerState.CLOSED


def test_check_raises_when_open():
    cb = _breaker(FakeClock())
    cb.check()
    cb.inject_failures(3)
    with pytest.raises(CircuitOpenError) as exc_info:
        cb.check()
    assert exc_info.value.name == "stripe"


def test_status_snapshot_reports_recovery_remaining():
    clock = FakeClock()
    cb = _breaker(clock)
    cb.inject_failures(3)
    clock.advance(10)

    snap = cb.status_snapshot
    assert snap["state"] == CircuitBreakerState.OPEN
    assert snap["failures"] == 3
    assert snap["recovery_remaining_seconds"] == pytest.approx(20.0)
    assert snap["last_failure_at"] == "10.0s ago"


def test_reset_closes_and_clears_counters():
    cb = _breaker(FakeClock())
    cb.inject_failures(5)
    cb.reset()
    snap = cb.status_snapshot
    assert snap["state"] == CircuitBreakerState.CLOSED
    assert snap["failures"] == 0
    assert snap["last_failure_at"] is None


def test_registry_creates_breakers_lazily_from_settings(settings):
    registry = CircuitBreakerRegistry(settings)
    assert registry.all_names() == []

    cb = registry.get("adyen")
    assert registry.get("adyen") is cb
    assert registry.all_names() == ["adyen"]

    cb.inject_failures(settings.CB_FAILURE_THRESHOLD)
    assert registry.is_open("adyen")


def test_circuit_breaker_thread_safety():
    """50 threads call record_failure/record_success concurrently; state must stay consistent."""
    cb = CircuitBreaker("ThreadSafePSP", failure_threshold=1000)

    errors: list[Exception] = []
    failures_recorded = 0
    counter_lock = threading.Lock()

    def worker() -> None:
        nonlocal failures_recorded
        try:
            for _ in range(20):
                cb.record_failure()
                with counter_lock:
                    failures_recorded += 1
        except Exception as exc:  # pragma: no cover
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == [], f"Exceptions raised in threads: {errors}"
    # No increment lost to interleaving
    assert cb.failures == failures_recorded == 1000
    assert cb.state == CircuitBreakerState.OPEN


def test_mixed_concurrent_calls_leave_valid_state():
    cb = CircuitBreaker("MixedPSP")

    def worker() -> None:
        if random.random() < 0.5:
            cb.record_failure()
        else:
            cb.record_success()

    threads = [threading.Thread(target=worker) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    snap = cb.status_snapshot
    assert snap["state"] in set(CircuitBreakerState)
    assert snap["failures"] >= 0
