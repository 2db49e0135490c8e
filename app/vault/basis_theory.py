import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from app.errors import VaultError
from app.models.vault import ProxyRequest, ProxyResponse, PublicConfig, Token
from app.vault.base import VaultProvider, encode_body, normalize_brand, normalize_token_id, parse_response_body
from app.vault.placeholders import basis_theory_expressions, substitute

logger = logging.getLogger(__name__)


class BasisTheoryVault(VaultProvider):
    """
    Third-party tokenization. Cards are captured by the vendor's elements and
    never reach this process; PSP requests go through the vendor proxy, which
    resolves the token expressions server-side.
    """

    name = "basis_theory"

    def __init__(
        self,
        http: httpx.AsyncClient,
        public_key: str,
        private_key: str,
        api_url: str = "https://api.basistheory.com",
        proxy_url: str = "https://api.basistheory.com/proxy",
        timeout_seconds: float = 30.0,
    ):
        super().__init__(http, timeout_seconds)
        self._public_key = public_key
        self._private_key = private_key
        self._api_url = api_url.rstrip("/")
        self._proxy_url = proxy_url

    def _api_headers(self) -> dict[str, str]:
        return {"BT-API-KEY": self._private_key, "Content-Type": "application/json"}

    def public_config(self) -> PublicConfig:
        return PublicConfig(provider="basis_theory", public_key=self._public_key)

    async def get_token(self, token_id: str) -> Optional[Token]:
        token_id = normalize_token_id(token_id)
        try:
            response = await self._http.get(
                f"{self._api_url}/tokens/{token_id}",
                headers=self._api_headers(),
                timeout=self._timeout,
            )
        except httpx.HTTPError as err:
            raise VaultError(f"Basis Theory token lookup failed: {err}") from err

        if response.status_code == 404:
            return None
        if response.is_error:
            raise VaultError(f"Basis Theory token lookup returned {response.status_code}")
        return _to_token(token_id, parse_response_body(response))

    async def delete_token(self, token_id: str) -> None:
        token_id = normalize_token_id(token_id)
        try:
            response = await self._http.delete(
                f"{self._api_url}/tokens/{token_id}",
                headers=self._api_headers(),
                timeout=self._timeout,
            )
        except httpx.HTTPError as err:
            raise VaultError(f"Basis Theory token delete failed: {err}") from err

        # Already gone is fine
        if response.is_error and response.status_code != 404:
            raise VaultError(f"Basis Theory token delete returned {response.status_code}")
        logger.info(f"[VAULT basis_theory] Token {token_id} deleted")

    async def forward(self, request: ProxyRequest) -> ProxyResponse:
        token_id = normalize_token_id(request.token_id)
        body = substitute(request.body, basis_theory_expressions(token_id))
        content, content_type = encode_body(body, request.form_encoded)

        headers = {
            "BT-API-KEY": self._private_key,
            "BT-PROXY-URL": request.destination,
            "BT-PROXY-METHOD": request.method,
            "Content-Type": content_type,
        }
        for key, value in request.headers.items():
            headers[f"BT-PROXY-HEADER-{key}"] = value

        response = await self._send("POST", self._proxy_url, headers, content, request.timeout)
        logger.info(
            f"[VAULT basis_theory] proxy {request.method} {request.destination} -> {response.status} "
            f"({response.latency_ms:.1f}ms)"
        )
        return response


def _to_token(token_id: str, data: dict[str, Any]) -> Token:
    details = (data.get("enrichments") or {}).get("card_details") or {}
    metadata = data.get("metadata") or {}
    return Token(
        id=token_id,
        fingerprint=data.get("fingerprint") or "",
        brand=normalize_brand(details.get("brand")),
        last4=details.get("last4") or "",
        exp_month=int(details.get("expiration_month") or 0),
        exp_year=int(details.get("expiration_year") or 0),
        cardholder_name=metadata.get("cardholder_name"),
        created_at=data.get("created_at") or datetime.now(timezone.utc),
        expires_at=data.get("expires_at"),
    )
