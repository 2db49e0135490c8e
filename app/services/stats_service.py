import time
import threading
from collections import defaultdict

from app.models.payment import ChargeResponse, OrchestrationResult
from app.models.stats import PSPStats, StatsResponse


class StatsService:
    """
    In-memory accumulator for payment statistics.
    All mutations are protected by a Lock for thread-safety.

    Trade-off: data is lost on restart. In production, this would
    be backed by Redis or a time-series database.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._started_at = time.monotonic()

        self._total_payments = 0
        self._total_approved = 0
        self._total_declined = 0
        self._total_volume = 0
        self._retried_payments = 0
        self._emergency_transactions = 0

        # per-PSP stats keyed by PSP name
        self._per_psp: dict[str, dict] = defaultdict(lambda: {
            "count": 0,
            "success": 0,
            "failure": 0,
            "requires_action": 0,
            "volume": 0,
            "by_category": defaultdict(int),
            "latency_sum": 0.0,
        })

    def record_attempt(self, psp: str, response: ChargeResponse) -> None:
        """Called by OrchestrationEngine after each individual PSP attempt."""
        with self._lock:
            p = self._per_psp[psp]
            p["count"] += 1
            p["latency_sum"] += response.latency_ms

            if response.success:
                p["success"] += 1
                p["volume"] += response.amount
            elif response.requires_action is not None:
                p["requires_action"] += 1
            else:
                p["failure"] += 1
                category = response.failure_category.value if response.failure_category else "unknown"
                p["by_category"][category] += 1

    def record_payment(self, result: OrchestrationResult) -> None:
        """Called once per payment with the final outcome."""
        with self._lock:
            self._total_payments += 1
            if len(result.attempts) > 1:
                self._retried_payments += 1
            if result.response.success:
                self._total_approved += 1
                self._total_volume += result.response.amount
            else:
                self._total_declined += 1

    def record_emergency(self) -> None:
        """Called by the transport each time the emergency direct-PSP path charges."""
        with self._lock:
            self._emergency_transactions += 1

    def snapshot(self) -> StatsResponse:
        with self._lock:
            uptime = time.monotonic() - self._started_at
            approval_rate = (
                self._total_approved / self._total_payments
                if self._total_payments > 0
                else 0.0
            )

            per_psp = {}
            for name, p in self._per_psp.items():
                avg_latency = p["latency_sum"] / p["count"] if p["count"] > 0 else 0.0
                per_psp[name] = PSPStats(
                    psp=name,
                    attempt_count=p["count"],
                    success_count=p["success"],
                    failure_count=p["failure"],
                    requires_action_count=p["requires_action"],
                    total_volume=p["volume"],
                    failures_by_category=dict(p["by_category"]),
                    avg_latency_ms=round(avg_latency, 2),
                )

            return StatsResponse(
                total_payments=self._total_payments,
                total_approved=self._total_approved,
                total_declined=self._total_declined,
                total_volume=self._total_volume,
                overall_approval_rate=round(approval_rate, 4),
                retried_payments=self._retried_payments,
                emergency_transactions=self._emergency_transactions,
                per_psp=per_psp,
                uptime_seconds=round(uptime, 2),
            )
