from pydantic import BaseModel
from enum import Enum
from datetime import datetime
from typing import Optional


class CircuitBreakerState(str, Enum):
    CLOSED = "closed"       # healthy, passing calls through
    OPEN = "open"           # tripped, rejecting all calls
    HALF_OPEN = "half_open" # recovery timeout elapsed, probing


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


class ServiceHealth(BaseModel):
    service_name: str
    status: HealthStatus
    latency_ms: Optional[float] = None
    last_check_at: datetime
    consecutive_failures: int = 0
    region: Optional[str] = None


class BreakerStatusResponse(BaseModel):
    name: str
    state: CircuitBreakerState
    failures: int
    success_count: int
    last_failure_at: Optional[str] = None
    recovery_remaining_seconds: Optional[float] = None


class PSPStatusResponse(BreakerStatusResponse):
    health: Optional[ServiceHealth] = None

