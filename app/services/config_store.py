import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from app.errors import ValidationError
from app.models.health import ServiceHealth
from app.models.payment import PSPCredentials
from app.models.rules import RetryRule, TrafficRule
from app.vault.crypto import decrypt_credentials

logger = logging.getLogger(__name__)

# Used when no ROUTING_CONFIG_PATH is configured: two sandboxed PSPs with a 75/25 split
DEFAULT_ROUTING: dict[str, Any] = {
    "traffic_rules": [
        {"psp": "stripe", "weight": 75},
        {"psp": "adyen", "weight": 25},
    ],
    "retry_rules": [
        {
            "source_psp": "stripe",
            "target_psp": "adyen",
            "failure_categories": ["processing_error", "unknown", "rate_limit", "card_declined"],
            "max_retries": 2,
        },
        {
            "source_psp": "adyen",
            "target_psp": "stripe",
            "failure_categories": ["processing_error", "unknown", "rate_limit"],
            "max_retries": 2,
        },
    ],
    "credentials": {
        "stripe": {"environment": "test"},
        "adyen": {"environment": "test"},
    },
}


class ConfigStore(ABC):
    """
    Narrow data-access contract for routing configuration.
    Rules and credentials are read-only to the engine; health snapshots are
    the only thing it writes back.
    """

    @abstractmethod
    def traffic_rules(self) -> list[TrafficRule]: ...

    @abstractmethod
    def retry_rules(self) -> list[RetryRule]: ...

    @abstractmethod
    def credentials(self, psp: str) -> Optional[PSPCredentials]: ...

    @abstractmethod
    def psps(self) -> list[str]:
        """PSPs that have credentials configured."""

    @abstractmethod
    def record_health(self, psp: str, health: ServiceHealth) -> None: ...

    @abstractmethod
    def health_snapshots(self) -> dict[str, ServiceHealth]: ...


class InMemoryConfigStore(ConfigStore):
    """
    Process-local configuration. All mutations are protected by a Lock.

    Credentials may be given as dicts or as encrypted "v1:..." strings, which
    are decrypted once at load time with the credentials key.
    """

    def __init__(
        self,
        traffic_rules: Optional[list[TrafficRule]] = None,
        retry_rules: Optional[list[RetryRule]] = None,
        credentials: Optional[dict[str, PSPCredentials]] = None,
    ):
        self._lock = threading.Lock()
        self._traffic_rules = list(traffic_rules or [])
        self._retry_rules = list(retry_rules or [])
        self._credentials = dict(credentials or {})
        self._health: dict[str, ServiceHealth] = {}

    @classmethod
    def from_dict(cls, data: dict[str, Any], credentials_key: Optional[str] = None) -> "InMemoryConfigStore":
        credentials: dict[str, PSPCredentials] = {}
        for psp, raw in (data.get("credentials") or {}).items():
            if isinstance(raw, str):
                raw = decrypt_credentials(raw, credentials_key)
            if raw is None:
                continue
            credentials[psp] = PSPCredentials.model_validate(raw)

        return cls(
            traffic_rules=[TrafficRule.model_validate(r) for r in data.get("traffic_rules", [])],
            retry_rules=[RetryRule.model_validate(r) for r in data.get("retry_rules", [])],
            credentials=credentials,
        )

    @classmethod
    def from_file(cls, path: str, credentials_key: Optional[str] = None) -> "InMemoryConfigStore":
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as err:
            raise ValidationError(f"Cannot load routing config {path}: {err}") from err
        store = cls.from_dict(data, credentials_key)
        logger.info(
            f"Routing config loaded from {path}: {len(store._traffic_rules)} traffic rules, "
            f"{len(store._retry_rules)} retry rules, PSPs={store.psps()}"
        )
        return store

    def traffic_rules(self) -> list[TrafficRule]:
        with self._lock:
            return list(self._traffic_rules)

    def retry_rules(self) -> list[RetryRule]:
        with self._lock:
            return list(self._retry_rules)

    def credentials(self, psp: str) -> Optional[PSPCredentials]:
        with self._lock:
            return self._credentials.get(psp)

    def psps(self) -> list[str]:
        with self._lock:
            return list(self._credentials.keys())

    def record_health(self, psp: str, health: ServiceHealth) -> None:
        with self._lock:
            self._health[psp] = health

    def health_snapshots(self) -> dict[str, ServiceHealth]:
        with self._lock:
            return dict(self._health)
