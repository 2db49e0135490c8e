import threading
from datetime import datetime, timezone
from typing import Optional

from app.models.health import HealthStatus, ServiceHealth


class HealthTracker:
    """
    Observational health per service name.
    latency above degraded_latency_ms marks a successful call as DEGRADED.
    """

    def __init__(self, degraded_latency_ms: float = 1000.0):
        self._lock = threading.Lock()
        self._degraded_latency_ms = degraded_latency_ms
        self._health: dict[str, ServiceHealth] = {}

    def record_success(self, name: str, latency_ms: float, region: Optional[str] = None) -> ServiceHealth:
        status = HealthStatus.DEGRADED if latency_ms > self._degraded_latency_ms else HealthStatus.HEALTHY
        health = ServiceHealth(
            service_name=name,
            status=status,
            latency_ms=round(latency_ms, 2),
            last_check_at=datetime.now(timezone.utc),
            consecutive_failures=0,
            region=region,
        )
        with self._lock:
            self._health[name] = health
        return health

    def record_failure(self, name: str, latency_ms: Optional[float] = None, region: Optional[str] = None) -> ServiceHealth:
        with self._lock:
            previous = self._health.get(name)
            health = ServiceHealth(
                service_name=name,
                status=HealthStatus.DOWN,
                latency_ms=round(latency_ms, 2) if latency_ms is not None else None,
                last_check_at=datetime.now(timezone.utc),
                consecutive_failures=(previous.consecutive_failures if previous else 0) + 1,
                region=region,
            )
            self._health[name] = health
        return health

    def get(self, name: str) -> Optional[ServiceHealth]:
        with self._lock:
            return self._health.get(name)

    def snapshot(self) -> dict[str, ServiceHealth]:
        with self._lock:
            return dict(self._health)
