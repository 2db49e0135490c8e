import httpx

from app.config import Settings
from app.errors import ValidationError
from app.models.payment import PSPCredentials
from app.processors.adyen import AdyenAdapter
from app.processors.base import PSPAdapter
from app.processors.sandbox import SandboxAdapter, SandboxLedger
from app.processors.stripe import StripeAdapter
from app.vault.base import VaultProvider

_LIVE_ADAPTERS: dict[str, type[PSPAdapter]] = {
    "stripe": StripeAdapter,
    "adyen": AdyenAdapter,
}

SUPPORTED_PSPS = frozenset(_LIVE_ADAPTERS) | {"sandbox"}


class PSPAdapterFactory:
    """
    Builds a fresh adapter per attempt.

    Credentials in the "test" environment (and the "sandbox" PSP itself) get a
    SandboxAdapter named after the requested PSP; live credentials get the
    real wire adapter.
    """

    def __init__(self, vault: VaultProvider, http: httpx.AsyncClient, settings: Settings):
        self._vault = vault
        self._http = http
        self._settings = settings
        self.ledger = SandboxLedger()

    def __call__(self, psp: str, credentials: PSPCredentials, degraded: bool = False) -> PSPAdapter:
        return self.create(psp, credentials, degraded)

    def create(self, psp: str, credentials: PSPCredentials, degraded: bool = False) -> PSPAdapter:
        if psp not in SUPPORTED_PSPS:
            raise ValidationError(f"Unknown PSP: {psp}")

        if psp == "sandbox" or credentials.environment == "test":
            return SandboxAdapter(
                name=psp,
                credentials=credentials,
                vault=self._vault,
                http=self._http,
                settings=self._settings,
                ledger=self.ledger,
                degraded=degraded,
            )

        if not credentials.api_key:
            raise ValidationError(f"Missing api_key for {psp}")
        return _LIVE_ADAPTERS[psp](credentials, self._vault, self._http, self._settings, degraded)
