from pydantic import BaseModel
from typing import Dict


class PSPStats(BaseModel):
    psp: str
    attempt_count: int
    success_count: int
    failure_count: int
    requires_action_count: int
    total_volume: int
    failures_by_category: Dict[str, int]
    avg_latency_ms: float


class StatsResponse(BaseModel):
    total_payments: int
    total_approved: int
    total_declined: int
    total_volume: int
    overall_approval_rate: float
    retried_payments: int
    emergency_transactions: int
    per_psp: Dict[str, PSPStats]
    uptime_seconds: float
