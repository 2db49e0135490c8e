from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Circuit Breaker (per PSP and per backend endpoint)
    CB_FAILURE_THRESHOLD: int = Field(default=3, ge=1)
    CB_RECOVERY_TIMEOUT_SECONDS: float = 30.0
    CB_HALF_OPEN_SUCCESS_THRESHOLD: int = Field(default=2, ge=1)

    # Orchestration
    MAX_PAYMENT_ATTEMPTS: int = Field(default=3, ge=1)
    PSP_TIMEOUT_SECONDS: float = 30.0

    # Exponential backoff for PSP 5xx responses
    BACKOFF_BASE_SECONDS: float = 1.0
    BACKOFF_MAX_SECONDS: float = 8.0
    PSP_HTTP_MAX_RETRIES: int = Field(default=3, ge=1)

    # Routing configuration (JSON file with traffic/retry rules and credentials)
    ROUTING_CONFIG_PATH: Optional[str] = None

    # Vault
    VAULT_PROVIDER: Literal["direct", "basis_theory"] = "direct"
    VAULT_MASTER_KEY: str = ""
    VAULT_KEY_ID: str = "dev"
    VAULT_ELEMENTS_URL: str = ""
    CREDENTIALS_ENCRYPTION_KEY: str = ""
    BT_PUBLIC_KEY: str = ""
    BT_PRIVATE_KEY: str = ""
    BT_API_URL: str = "https://api.basistheory.com"
    BT_PROXY_URL: str = "https://api.basistheory.com/proxy"
    VAULT_HTTP_TIMEOUT_SECONDS: float = 30.0

    # Resilient transport (client path towards the orchestration backend)
    TRANSPORT_ENDPOINTS_JSON: str = "[]"
    TRANSPORT_TIMEOUT_SECONDS: float = 5.0
    TRANSPORT_DEGRADED_LATENCY_MS: float = 1000.0
    TRANSPORT_HEALTH_PATH: str = "/health"
    TRANSPORT_HEALTH_INTERVAL_SECONDS: float = 30.0
    TRANSPORT_HEALTH_CHECKS_ENABLED: bool = False
    EMERGENCY_PSP: Optional[str] = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
