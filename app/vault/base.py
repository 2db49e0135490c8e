import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

import httpx

from app.errors import VaultError
from app.models.vault import (
    CardBrand,
    CardData,
    CreateTokenOptions,
    ProxyRequest,
    ProxyResponse,
    PublicConfig,
    Token,
)

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "tok_"


def normalize_token_id(token_id: str) -> str:
    """Accept 'tok_xxx' or bare 'xxx'; always return the prefixed form."""
    token_id = token_id.strip()
    return token_id if token_id.startswith(TOKEN_PREFIX) else f"{TOKEN_PREFIX}{token_id}"


_BRAND_ALIASES = {
    "visa": CardBrand.VISA,
    "mastercard": CardBrand.MASTERCARD,
    "master card": CardBrand.MASTERCARD,
    "amex": CardBrand.AMEX,
    "american express": CardBrand.AMEX,
    "american-express": CardBrand.AMEX,
    "discover": CardBrand.DISCOVER,
    "diners": CardBrand.DINERS,
    "diners club": CardBrand.DINERS,
    "diners-club": CardBrand.DINERS,
    "jcb": CardBrand.JCB,
    "unionpay": CardBrand.UNIONPAY,
    "union pay": CardBrand.UNIONPAY,
}


def normalize_brand(brand: Optional[str]) -> CardBrand:
    if not brand:
        return CardBrand.UNKNOWN
    return _BRAND_ALIASES.get(brand.strip().lower(), CardBrand.UNKNOWN)


def detect_brand(pan: str) -> CardBrand:
    """Best-effort brand detection from the leading digits of a PAN."""
    if pan.startswith("4"):
        return CardBrand.VISA
    if pan[:2] in {"34", "37"}:
        return CardBrand.AMEX
    if pan[:2] in {"36", "38"} or pan[:3] in {"300", "301", "302", "303", "304", "305"}:
        return CardBrand.DINERS
    if pan.startswith("35"):
        return CardBrand.JCB
    if pan.startswith("62"):
        return CardBrand.UNIONPAY
    if pan.startswith("6011") or pan.startswith("65") or pan[:3] in {"644", "645", "646", "647", "648", "649"}:
        return CardBrand.DISCOVER
    if pan[:2] in {"51", "52", "53", "54", "55"} or 2221 <= int(pan[:4] or 0) <= 2720:
        return CardBrand.MASTERCARD
    return CardBrand.UNKNOWN


def encode_form_data(data: dict[str, Any], prefix: str = "") -> str:
    """Bracket-notation form encoding (a[b][c]=v) as used by Stripe."""
    pairs: list[str] = []
    for key, value in data.items():
        if value is None:
            continue
        encoded_key = f"{prefix}[{key}]" if prefix else key
        if isinstance(value, dict):
            nested = encode_form_data(value, encoded_key)
            if nested:
                pairs.append(nested)
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                item_key = f"{encoded_key}[{index}]"
                if isinstance(item, dict):
                    pairs.append(encode_form_data(item, item_key))
                else:
                    pairs.append(f"{item_key}={quote(_form_scalar(item), safe='')}")
        else:
            pairs.append(f"{encoded_key}={quote(_form_scalar(value), safe='')}")
    return "&".join(p for p in pairs if p)


def _form_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def encode_body(body: Any, form_encoded: bool) -> tuple[Optional[str], str]:
    """Serialize a structured body; returns (content, content_type)."""
    if form_encoded:
        return (encode_form_data(body) if body else ""), "application/x-www-form-urlencoded"
    return (json.dumps(body) if body is not None else None), "application/json"


def parse_response_body(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {"body": response.text}


class VaultProvider(ABC):
    """
    Card vault capability shared by every provider.

    Providers form a closed set selected once at startup:
      direct        -> encrypted-at-rest store; the process can decrypt
      basis_theory  -> third-party tokenization; card data never reaches us
    """

    name: str

    def __init__(self, http: httpx.AsyncClient, timeout_seconds: float = 30.0):
        self._http = http
        self._timeout = timeout_seconds

    @abstractmethod
    def public_config(self) -> PublicConfig:
        """Configuration handed to the browser SDK for card capture."""

    @abstractmethod
    async def get_token(self, token_id: str) -> Optional[Token]:
        """Token metadata without sensitive data. Unknown tokens return None."""

    @abstractmethod
    async def delete_token(self, token_id: str) -> None:
        """Revoke a token. Idempotent."""

    @abstractmethod
    async def forward(self, request: ProxyRequest) -> ProxyResponse:
        """Send a PSP request, resolving card markers for request.token_id."""

    async def validate_token(self, token_id: str) -> bool:
        token = await self.get_token(token_id)
        if token is None:
            return False
        if token.expires_at is not None and token.expires_at < datetime.now(timezone.utc):
            return False
        return True

    async def create_token(self, card: CardData, options: CreateTokenOptions) -> Token:
        raise VaultError(f"{self.name} vault tokenizes client-side; create_token is not available")

    async def get_decrypted_card(self, token_id: str) -> Optional[CardData]:
        raise VaultError(f"{self.name} vault never exposes decrypted card data")

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        content: Optional[str],
        timeout: Optional[float],
    ) -> ProxyResponse:
        start = time.monotonic()
        response = await self._http.request(
            method,
            url,
            headers=headers,
            content=content,
            timeout=timeout if timeout is not None else self._timeout,
        )
        latency_ms = (time.monotonic() - start) * 1000
        return ProxyResponse(
            status=response.status_code,
            headers=dict(response.headers),
            data=parse_response_body(response),
            latency_ms=round(latency_ms, 2),
        )
