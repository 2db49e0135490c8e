"""
ResilientTransport: the client-side path towards the orchestration backend.

Calls walk an ordered list of endpoints (primary backend, reactor fallback,
...).  Only the primary endpoint has a circuit breaker that is fed by calls;
while it is open the walk starts at the second endpoint.  Every endpoint gets
a ServiceHealth entry scored from the latency of its last call.

When every endpoint fails and the call carries an emergency charge, the charge
is sent straight to the configured emergency PSP through a degraded adapter
backed by the vault, and a PendingSyncTransaction is queued so the backend can
reconcile it once it is reachable again.
"""

import asyncio
import contextlib
import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from app.circuit_breaker.registry import CircuitBreakerRegistry
from app.config import Settings
from app.engine.orchestrator import AdapterFactory
from app.errors import AllEndpointsUnavailable, CircuitOpenError, ValidationError, VaultError
from app.models.health import BreakerStatusResponse
from app.models.payment import ChargeRequest
from app.models.transport import (
    EmergencyResult,
    EndpointStatusResponse,
    FailoverEndpoint,
    FetchOptions,
    PendingSyncTransaction,
    SyncResult,
    TransportStatusResponse,
)
from app.services.config_store import ConfigStore
from app.services.health_service import HealthTracker
from app.services.stats_service import StatsService
from app.transport.pending import PendingSyncQueue
from app.vault.base import parse_response_body

logger = logging.getLogger(__name__)

CONFIRM_PATH = "/confirm-payment"
SYNC_PATH = "/transactions/sync"

# Conditions that move the walk on to the next endpoint
_ENDPOINT_ERRORS = (httpx.TransportError, asyncio.TimeoutError, OSError)


class _ServerError(Exception):
    def __init__(self, status: int):
        super().__init__(f"HTTP {status}")
        self.status = status


class ResilientTransport:
    def __init__(
        self,
        endpoints: list[FailoverEndpoint],
        http: httpx.AsyncClient,
        settings: Settings,
        breakers: CircuitBreakerRegistry,
        health: HealthTracker,
        config_store: ConfigStore,
        adapter_factory: AdapterFactory,
        stats: Optional[StatsService] = None,
        pending: Optional[PendingSyncQueue] = None,
    ):
        self.endpoints = list(endpoints)
        self._http = http
        self._settings = settings
        self._breakers = breakers
        self._health = health
        self._config = config_store
        self._adapter_factory = adapter_factory
        self._stats = stats
        self.pending = pending or PendingSyncQueue()
        self.emergency_psp = settings.EMERGENCY_PSP
        self._health_task: Optional[asyncio.Task] = None

    @property
    def primary(self) -> Optional[FailoverEndpoint]:
        return self.endpoints[0] if self.endpoints else None

    def _ordered_endpoints(self) -> list[FailoverEndpoint]:
        primary = self.primary
        if primary is None:
            return []
        try:
            self._breakers.get(primary.name).check()
        except CircuitOpenError as err:
            logger.warning(f"[TRANSPORT] {err}, starting at next endpoint")
            return self.endpoints[1:]
        return list(self.endpoints)

    async def _call(self, endpoint: FailoverEndpoint, path: str, options: FetchOptions) -> httpx.Response:
        headers = {"Content-Type": "application/json", **options.headers}
        return await asyncio.wait_for(
            self._http.request(
                options.method,
                f"{endpoint.url.rstrip('/')}{path}",
                headers=headers,
                json=options.body,
            ),
            timeout=self._settings.TRANSPORT_TIMEOUT_SECONDS,
        )

    async def resilient_fetch(self, path: str, options: Optional[FetchOptions] = None) -> dict[str, Any]:
        """
        Send *path* to the first endpoint that answers without a 5xx.

        4xx answers come from a reachable endpoint: they count as endpoint
        success and are raised to the caller as httpx.HTTPStatusError.
        """
        options = options or FetchOptions()
        attempted: list[str] = []
        last_error: Optional[str] = None

        for endpoint in self._ordered_endpoints():
            attempted.append(endpoint.name)
            is_primary = endpoint is self.primary
            start = time.monotonic()
            try:
                response = await self._call(endpoint, path, options)
                if response.status_code >= 500:
                    raise _ServerError(response.status_code)
            except (_ServerError, *_ENDPOINT_ERRORS) as err:
                latency_ms = (time.monotonic() - start) * 1000
                last_error = f"{endpoint.name}: {type(err).__name__}: {err}"
                self._health.record_failure(endpoint.name, latency_ms, endpoint.region)
                if is_primary:
                    self._breakers.get(endpoint.name).record_failure()
                logger.warning(f"[TRANSPORT] {options.method} {path} via {endpoint.name} failed: {err}")
                continue

            latency_ms = (time.monotonic() - start) * 1000
            self._health.record_success(endpoint.name, latency_ms, endpoint.region)
            if is_primary:
                self._breakers.get(endpoint.name).record_success()
            logger.info(
                f"[TRANSPORT] {options.method} {path} via {endpoint.name} -> {response.status_code} "
                f"({latency_ms:.1f}ms)"
            )
            response.raise_for_status()
            data = parse_response_body(response)
            return data if isinstance(data, dict) else {"data": data}

        if options.emergency_charge is not None and self.emergency_psp:
            try:
                return await self._emergency_charge(path, options)
            except _ENDPOINT_ERRORS + (httpx.HTTPError, VaultError) as err:
                attempted.append(f"emergency:{self.emergency_psp}")
                raise AllEndpointsUnavailable(attempted, f"{type(err).__name__}: {err}") from err

        logger.error(f"[TRANSPORT] All endpoints failed for {path}: {attempted}")
        raise AllEndpointsUnavailable(attempted, last_error)

    async def _emergency_charge(self, path: str, options: FetchOptions) -> dict[str, Any]:
        psp = self.emergency_psp
        charge: ChargeRequest = options.emergency_charge  # type: ignore[assignment]
        credentials = self._config.credentials(psp)
        if credentials is None:
            raise ValidationError(f"No credentials configured for emergency PSP {psp}")

        logger.warning(f"[TRANSPORT] EMERGENCY path: charging {charge.amount} {charge.currency} directly on {psp}")
        adapter = self._adapter_factory(psp, credentials, True)
        payment = await asyncio.wait_for(adapter.charge(charge), timeout=self._settings.PSP_TIMEOUT_SECONDS)

        record = PendingSyncTransaction(
            id=f"pending_{secrets.token_hex(8)}",
            session_id=options.session_id,
            route=path,
            payload={
                "psp": psp,
                "idempotency_key": charge.idempotency_key,
                "token": charge.token,
                "request": options.body,
                "payment": payment.model_dump(mode="json", exclude={"raw_response"}),
            },
            timestamp=datetime.now(timezone.utc),
        )
        self.pending.append(record)
        if self._stats is not None:
            self._stats.record_emergency()

        return EmergencyResult(psp=psp, pending_sync_id=record.id, payment=payment).model_dump(mode="json")

    async def confirm_payment(
        self,
        session_id: str,
        client_secret: str,
        token_id: str,
        emergency_charge: Optional[ChargeRequest] = None,
    ) -> dict[str, Any]:
        """Confirm a checkout session with a session-scoped bearer."""
        return await self.resilient_fetch(
            CONFIRM_PATH,
            FetchOptions(
                method="POST",
                headers={"Authorization": f"Bearer {client_secret}"},
                body={"session_id": session_id, "token_id": token_id},
                session_id=session_id,
                emergency_charge=emergency_charge,
            ),
        )

    async def sync_pending_transactions(self) -> SyncResult:
        """Replay queued emergency transactions to the backend, oldest first."""
        reconciled: list[str] = []
        for item in self.pending.snapshot():
            try:
                await self.resilient_fetch(
                    SYNC_PATH,
                    FetchOptions(
                        method="POST",
                        body={
                            "id": item.id,
                            "session_id": item.session_id,
                            "route": item.route,
                            "payload": item.payload,
                            "timestamp": item.timestamp.isoformat(),
                        },
                        session_id=item.session_id,
                    ),
                )
            except AllEndpointsUnavailable as err:
                logger.warning(f"[TRANSPORT] Sync stopped, backend unreachable: {err}")
                break
            except httpx.HTTPStatusError as err:
                logger.error(f"[TRANSPORT] Sync of {item.id} rejected with {err.response.status_code}")
                continue
            reconciled.append(item.id)

        removed = self.pending.remove(reconciled)
        remaining = len(self.pending)
        logger.info(f"[TRANSPORT] Synced {removed} pending transaction(s), {remaining} remaining")
        return SyncResult(synced=removed, remaining=remaining)

    # --- Background health checks ---

    async def check_endpoints(self) -> None:
        for endpoint in self.endpoints:
            start = time.monotonic()
            try:
                response = await self._call(
                    endpoint, self._settings.TRANSPORT_HEALTH_PATH, FetchOptions(method="GET")
                )
                if response.status_code >= 500:
                    raise _ServerError(response.status_code)
            except (_ServerError, *_ENDPOINT_ERRORS) as err:
                self._health.record_failure(endpoint.name, (time.monotonic() - start) * 1000, endpoint.region)
                logger.warning(f"[TRANSPORT] Health check {endpoint.name} failed: {err}")
            else:
                self._health.record_success(endpoint.name, (time.monotonic() - start) * 1000, endpoint.region)

    async def _health_loop(self) -> None:
        while True:
            try:
                await self.check_endpoints()
            except Exception:
                logger.exception("[TRANSPORT] Health check round failed")
            await asyncio.sleep(self._settings.TRANSPORT_HEALTH_INTERVAL_SECONDS)

    def start_health_checks(self) -> None:
        if self._health_task is None or self._health_task.done():
            self._health_task = asyncio.create_task(self._health_loop())
            logger.info(
                f"[TRANSPORT] Health checks every {self._settings.TRANSPORT_HEALTH_INTERVAL_SECONDS}s "
                f"on {[e.name for e in self.endpoints]}"
            )

    async def stop_health_checks(self) -> None:
        task, self._health_task = self._health_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def status(self) -> TransportStatusResponse:
        endpoints = []
        for endpoint in self.endpoints:
            breaker = self._breakers.get(endpoint.name)
            endpoints.append(
                EndpointStatusResponse(
                    endpoint=endpoint,
                    breaker=BreakerStatusResponse(name=endpoint.name, **breaker.status_snapshot),
                    health=self._health.get(endpoint.name),
                )
            )
        return TransportStatusResponse(
            endpoints=endpoints,
            emergency_psp=self.emergency_psp,
            pending_sync=len(self.pending),
        )
