import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

from app.circuit_breaker.registry import CircuitBreakerRegistry
from app.config import Settings
from app.engine.retry import RetryResolver
from app.engine.routing import RoutingSelector
from app.errors import NoRouteAvailable, ValidationError, VaultError
from app.models.health import HealthStatus, ServiceHealth
from app.models.payment import (
    NON_RETRYABLE_CATEGORIES,
    Attempt,
    ChargeRequest,
    ChargeResponse,
    FailureCategory,
    OrchestrationResult,
    PaymentContext,
    PSPCredentials,
)
from app.processors.base import PSPAdapter
from app.services.config_store import ConfigStore
from app.services.health_service import HealthTracker
from app.services.stats_service import StatsService

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str, PSPCredentials, bool], PSPAdapter]

# Errors that mean "this PSP call did not complete", classified as processing_error
_TRANSPORT_ERRORS = (httpx.HTTPError, asyncio.TimeoutError, VaultError, OSError)


class OrchestrationEngine:
    """
    Drives the attempt loop for one payment.

    Outcome routing per attempt:
      success              -> record_success, return
      requires_action      -> return, the customer must act first
      terminal category    -> record_failure, return
      other failure        -> record_failure, ask RetryResolver for a target
      transport error      -> treated as processing_error; no target -> re-raise
      DecryptionError /
      ValidationError      -> propagate at once, no breaker change, no failover

    Each attempt is sent with idempotency key "{base}_{attempt_number}".
    """

    def __init__(
        self,
        config_store: ConfigStore,
        breakers: CircuitBreakerRegistry,
        stats: StatsService,
        settings: Settings,
        adapter_factory: AdapterFactory,
        health: Optional[HealthTracker] = None,
        routing: Optional[RoutingSelector] = None,
        retry: Optional[RetryResolver] = None,
    ):
        self._config = config_store
        self._breakers = breakers
        self._stats = stats
        self._settings = settings
        self._adapter_factory = adapter_factory
        self._health = health or HealthTracker()
        self.routing = routing or RoutingSelector(config_store, breakers)
        self.retry = retry or RetryResolver(config_store, breakers)

    def _build_adapter(self, psp: str) -> PSPAdapter:
        credentials = self._config.credentials(psp)
        if credentials is None:
            raise ValidationError(f"No credentials configured for {psp}")
        return self._adapter_factory(psp, credentials, False)

    async def execute_payment(self, request: ChargeRequest, context: PaymentContext) -> OrchestrationResult:
        tag = f"[PAY {request.idempotency_key}]"
        psp = self.routing.select_psp(request.amount, context.currency, context.card_brand)
        if psp is None:
            raise NoRouteAvailable(f"No active route for {request.amount} {context.currency}")

        logger.info(f"{tag} Processing {request.amount} {context.currency} | initial PSP: {psp}")
        start = time.monotonic()
        attempts: list[Attempt] = []
        attempt_number = 0
        max_attempts = self._settings.MAX_PAYMENT_ATTEMPTS

        while attempt_number < max_attempts:
            breaker = self._breakers.get(psp)
            adapter = self._build_adapter(psp)
            attempt_request = request.model_copy(
                update={"idempotency_key": f"{request.idempotency_key}_{attempt_number}"}
            )

            attempt_start = time.monotonic()
            try:
                response = await asyncio.wait_for(
                    adapter.charge(attempt_request),
                    timeout=self._settings.PSP_TIMEOUT_SECONDS,
                )
            except _TRANSPORT_ERRORS as err:
                breaker.record_failure()
                response = ChargeResponse(
                    success=False,
                    status="failed",
                    amount=request.amount,
                    currency=request.currency,
                    failure_code=type(err).__name__,
                    failure_message=str(err) or "PSP call did not complete",
                    failure_category=FailureCategory.PROCESSING_ERROR,
                    latency_ms=round((time.monotonic() - attempt_start) * 1000, 2),
                )
                attempts.append(Attempt(psp=psp, response=response))
                self._stats.record_attempt(psp, response)
                logger.warning(
                    f"{tag} [{psp}] attempt={attempt_number} transport error: {type(err).__name__}: {err}"
                )

                target = self.retry.get_retry_psp(psp, FailureCategory.PROCESSING_ERROR, attempt_number)
                if target is None:
                    logger.error(f"{tag} [{psp}] No failover target after transport error")
                    raise
                logger.info(f"{tag} Failing over {psp} -> {target}")
                psp = target
                attempt_number += 1
                continue

            attempts.append(Attempt(psp=psp, response=response))
            self._stats.record_attempt(psp, response)
            logger.info(
                f"{tag} [{psp}] attempt={attempt_number} success={response.success} "
                f"status={response.status} category={response.failure_category} "
                f"latency={response.latency_ms:.1f}ms"
            )

            if response.success:
                breaker.record_success()
                return self._finish(tag, psp, response, attempts, start)

            if response.requires_action is not None:
                logger.info(f"{tag} [{psp}] Requires customer action ({response.requires_action.type})")
                return self._finish(tag, psp, response, attempts, start)

            category = response.failure_category or FailureCategory.UNKNOWN
            breaker.record_failure()

            if category in NON_RETRYABLE_CATEGORIES:
                logger.warning(f"{tag} [{psp}] Terminal decline ({category.value}), NOT retrying")
                return self._finish(tag, psp, response, attempts, start)

            target = self.retry.get_retry_psp(psp, category, attempt_number, response.failure_code)
            if target is None:
                logger.info(f"{tag} [{psp}] No retry rule for {category.value}")
                return self._finish(tag, psp, response, attempts, start)

            logger.info(f"{tag} Failing over {psp} -> {target} after {category.value}")
            psp = target
            attempt_number += 1

        last = attempts[-1]
        logger.warning(f"{tag} Attempt budget exhausted after {len(attempts)} attempt(s)")
        return self._finish(tag, last.psp, last.response, attempts, start)

    def _finish(
        self,
        tag: str,
        psp: str,
        response: ChargeResponse,
        attempts: list[Attempt],
        start: float,
    ) -> OrchestrationResult:
        result = OrchestrationResult(response=response, psp=psp, attempts=attempts)
        self._stats.record_payment(result)
        total_latency_ms = (time.monotonic() - start) * 1000
        outcome = "APPROVED" if response.success else "NOT APPROVED"
        logger.info(
            f"{tag} {outcome} via {psp} after {len(attempts)} attempt(s) | total latency={total_latency_ms:.1f}ms"
        )
        return result

    async def check_all_health(self) -> dict[str, ServiceHealth]:
        """Ping every configured PSP, feed its breaker and store a ServiceHealth snapshot."""
        results: dict[str, ServiceHealth] = {}
        for psp in self._config.psps():
            breaker = self._breakers.get(psp)
            try:
                adapter = self._build_adapter(psp)
            except ValidationError as err:
                logger.warning(f"[HEALTH] [{psp}] Cannot build adapter: {err}")
                health = self._health.record_failure(psp)
            else:
                healthy, latency_ms = await adapter.health_check()
                if healthy:
                    breaker.record_success()
                    health = self._health.record_success(psp, latency_ms)
                else:
                    breaker.record_failure()
                    health = self._health.record_failure(psp, latency_ms)

            self._config.record_health(psp, health)
            results[psp] = health
            log = logger.info if health.status != HealthStatus.DOWN else logger.warning
            log(f"[HEALTH] [{psp}] {health.status.value} latency={health.latency_ms}ms")
        return results
