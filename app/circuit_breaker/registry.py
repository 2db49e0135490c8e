import threading

from app.circuit_breaker.breaker import CircuitBreaker
from app.config import Settings


class CircuitBreakerRegistry:
    """
    Stores one CircuitBreaker per endpoint key (PSP name or backend endpoint name).
    Breakers are created lazily on first lookup and live for the process lifetime.
    """

    def __init__(self, settings: Settings):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._settings = settings
        self._lock = threading.Lock()

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name=name,
                    failure_threshold=self._settings.CB_FAILURE_THRESHOLD,
                    recovery_timeout=self._settings.CB_RECOVERY_TIMEOUT_SECONDS,
                    success_threshold=self._settings.CB_HALF_OPEN_SUCCESS_THRESHOLD,
                )
                self._breakers[name] = breaker
            return breaker

    def is_open(self, name: str) -> bool:
        return self.get(name).is_open()

    def all_names(self) -> list[str]:
        with self._lock:
            return list(self._breakers.keys())
