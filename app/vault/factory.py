import logging
from typing import Optional

import httpx

from app.config import Settings
from app.errors import ValidationError
from app.vault.base import VaultProvider
from app.vault.basis_theory import BasisTheoryVault
from app.vault.crypto import EnvelopeCipher
from app.vault.direct import DirectVault
from app.vault.store import InMemoryTokenStore, TokenStore

logger = logging.getLogger(__name__)


def create_vault(
    settings: Settings,
    http: httpx.AsyncClient,
    token_store: Optional[TokenStore] = None,
) -> VaultProvider:
    """Build the single vault provider selected by VAULT_PROVIDER."""
    if settings.VAULT_PROVIDER == "direct":
        vault: VaultProvider = DirectVault(
            cipher=EnvelopeCipher(settings.VAULT_MASTER_KEY, settings.VAULT_KEY_ID),
            store=token_store or InMemoryTokenStore(),
            http=http,
            timeout_seconds=settings.VAULT_HTTP_TIMEOUT_SECONDS,
            elements_url=settings.VAULT_ELEMENTS_URL,
        )
    elif settings.VAULT_PROVIDER == "basis_theory":
        if not settings.BT_PRIVATE_KEY:
            raise ValidationError("BT_PRIVATE_KEY is required for the basis_theory vault")
        vault = BasisTheoryVault(
            http=http,
            public_key=settings.BT_PUBLIC_KEY,
            private_key=settings.BT_PRIVATE_KEY,
            api_url=settings.BT_API_URL,
            proxy_url=settings.BT_PROXY_URL,
            timeout_seconds=settings.VAULT_HTTP_TIMEOUT_SECONDS,
        )
    else:
        raise ValidationError(f"Unknown vault provider: {settings.VAULT_PROVIDER}")

    logger.info(f"Vault provider: {vault.name}")
    return vault
