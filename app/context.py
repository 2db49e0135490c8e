import json
import logging
from typing import Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from app.circuit_breaker.registry import CircuitBreakerRegistry
from app.config import Settings
from app.engine.orchestrator import OrchestrationEngine
from app.errors import ValidationError
from app.models.transport import FailoverEndpoint
from app.processors.registry import PSPAdapterFactory
from app.services.config_store import DEFAULT_ROUTING, ConfigStore, InMemoryConfigStore
from app.services.health_service import HealthTracker
from app.services.stats_service import StatsService
from app.transport.resilient import ResilientTransport
from app.vault.factory import create_vault
from app.vault.store import TokenStore

logger = logging.getLogger(__name__)


def parse_endpoints(raw: str) -> list[FailoverEndpoint]:
    try:
        return [FailoverEndpoint.model_validate(item) for item in json.loads(raw or "[]")]
    except (json.JSONDecodeError, TypeError, PydanticValidationError) as err:
        raise ValidationError(f"Invalid TRANSPORT_ENDPOINTS_JSON: {err}") from err


def load_config_store(settings: Settings) -> ConfigStore:
    if settings.ROUTING_CONFIG_PATH:
        return InMemoryConfigStore.from_file(settings.ROUTING_CONFIG_PATH, settings.CREDENTIALS_ENCRYPTION_KEY)
    logger.info("ROUTING_CONFIG_PATH not set, using default sandbox routing")
    return InMemoryConfigStore.from_dict(DEFAULT_ROUTING, settings.CREDENTIALS_ENCRYPTION_KEY)


class OrchestrationContext:
    """
    Everything one process needs, built once at startup and torn down at
    shutdown. PSP breakers and endpoint breakers live in separate registries
    so a PSP and an endpoint may share a name.
    """

    def __init__(
        self,
        settings: Settings,
        http: Optional[httpx.AsyncClient] = None,
        config_store: Optional[ConfigStore] = None,
        token_store: Optional[TokenStore] = None,
        endpoints: Optional[list[FailoverEndpoint]] = None,
    ):
        self.settings = settings
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient()

        self.config_store = config_store or load_config_store(settings)
        self.psp_breakers = CircuitBreakerRegistry(settings)
        self.endpoint_breakers = CircuitBreakerRegistry(settings)
        self.health = HealthTracker(settings.TRANSPORT_DEGRADED_LATENCY_MS)
        self.stats = StatsService()

        self.vault = create_vault(settings, self.http, token_store)
        self.adapters = PSPAdapterFactory(self.vault, self.http, settings)

        self.engine = OrchestrationEngine(
            config_store=self.config_store,
            breakers=self.psp_breakers,
            stats=self.stats,
            settings=settings,
            adapter_factory=self.adapters,
            health=self.health,
        )
        self.transport = ResilientTransport(
            endpoints=endpoints if endpoints is not None else parse_endpoints(settings.TRANSPORT_ENDPOINTS_JSON),
            http=self.http,
            settings=settings,
            breakers=self.endpoint_breakers,
            health=self.health,
            config_store=self.config_store,
            adapter_factory=self.adapters,
            stats=self.stats,
        )

        # Pre-register breakers so the status endpoints work before any traffic
        for psp in self.config_store.psps():
            self.psp_breakers.get(psp)
        for endpoint in self.transport.endpoints:
            self.endpoint_breakers.get(endpoint.name)

    async def startup(self) -> None:
        if self.settings.TRANSPORT_HEALTH_CHECKS_ENABLED and self.transport.endpoints:
            self.transport.start_health_checks()
        logger.info(
            f"PSPs loaded: {self.config_store.psps()} | vault={self.vault.name} | "
            f"CB threshold={self.settings.CB_FAILURE_THRESHOLD} failures / "
            f"recovery={self.settings.CB_RECOVERY_TIMEOUT_SECONDS}s / "
            f"half-open successes={self.settings.CB_HALF_OPEN_SUCCESS_THRESHOLD} | "
            f"endpoints={[e.name for e in self.transport.endpoints]} | emergency_psp={self.transport.emergency_psp}"
        )

    async def shutdown(self) -> None:
        await self.transport.stop_health_checks()
        if len(self.transport.pending) and self.transport.endpoints:
            logger.info(f"Flushing {len(self.transport.pending)} pending transaction(s) before shutdown")
            await self.transport.sync_pending_transactions()
        if len(self.transport.pending):
            logger.warning(f"{len(self.transport.pending)} pending transaction(s) could not be synced")
        if self._owns_http:
            await self.http.aclose()
