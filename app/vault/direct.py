import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from app.errors import VaultError
from app.models.vault import (
    CardData,
    CreateTokenOptions,
    ProxyRequest,
    ProxyResponse,
    PublicConfig,
    Token,
    TokenRecord,
)
from app.vault.base import TOKEN_PREFIX, VaultProvider, detect_brand, encode_body, normalize_token_id
from app.vault.crypto import EnvelopeCipher, build_aad
from app.vault.placeholders import expiry_year_forms, substitute_card_data
from app.vault.store import TokenStore

logger = logging.getLogger(__name__)


class DirectVault(VaultProvider):
    """
    Encrypted-at-rest vault. Card data is sealed with AES-256-GCM and the
    envelope is bound to its token id and session via AAD.

    forward() decrypts on demand, substitutes card markers in the PSP body and
    sends the request from this process. Decrypted cards are never cached.
    """

    name = "direct"

    def __init__(
        self,
        cipher: EnvelopeCipher,
        store: TokenStore,
        http: httpx.AsyncClient,
        timeout_seconds: float = 30.0,
        elements_url: str = "",
    ):
        super().__init__(http, timeout_seconds)
        self._cipher = cipher
        self._store = store
        self._elements_url = elements_url

    def public_config(self) -> PublicConfig:
        return PublicConfig(
            provider="direct",
            public_key=self._cipher.key_id or "",
            elements_url=self._elements_url or None,
        )

    async def create_token(self, card: CardData, options: CreateTokenOptions) -> Token:
        token_id = f"{TOKEN_PREFIX}{secrets.token_hex(16)}"
        aad = build_aad(token_id, options.session_id)
        envelope = self._cipher.encrypt_json(
            {
                "pan": card.number,
                "exp_month": card.exp_month,
                "exp_year": card.exp_year,
                "cvc": card.cvc,
                "cardholder_name": card.cardholder_name,
            },
            aad,
        )

        now = datetime.now(timezone.utc)
        year4, _ = expiry_year_forms(card.exp_year)
        record = TokenRecord(
            id=secrets.token_hex(8),
            tenant_id=options.tenant_id,
            vault_token_id=token_id,
            fingerprint=self._cipher.fingerprint(card.number),
            encrypted_card_data=envelope,
            encryption_aad=aad,
            card_brand=detect_brand(card.number),
            card_last4=card.number[-4:],
            card_exp_month=int(card.exp_month),
            card_exp_year=int(year4),
            card_holder_name=card.cardholder_name,
            session_id=options.session_id,
            expires_at=now + timedelta(seconds=options.expires_in) if options.expires_in else None,
            created_at=now,
        )
        self._store.save(record)
        logger.info(f"[VAULT direct] Token created {token_id} brand={record.card_brand.value} last4={record.card_last4}")
        return _to_token(record)

    async def get_token(self, token_id: str) -> Optional[Token]:
        record = self._store.get(normalize_token_id(token_id))
        return _to_token(record) if record else None

    async def delete_token(self, token_id: str) -> None:
        token_id = normalize_token_id(token_id)
        if self._store.deactivate(token_id):
            logger.info(f"[VAULT direct] Token {token_id} deactivated")

    async def get_decrypted_card(self, token_id: str) -> Optional[CardData]:
        record = self._store.get(normalize_token_id(token_id))
        if record is None or record.encrypted_card_data is None:
            return None

        # AAD is rebuilt from the record, so an envelope moved onto another row fails the tag check
        aad = build_aad(record.vault_token_id, record.session_id)
        payload = self._cipher.decrypt_json(record.encrypted_card_data, aad)
        return CardData(
            number=payload["pan"],
            exp_month=str(payload["exp_month"]),
            exp_year=str(payload["exp_year"]),
            cvc=payload["cvc"],
            cardholder_name=payload.get("cardholder_name"),
        )

    async def forward(self, request: ProxyRequest) -> ProxyResponse:
        card = await self.get_decrypted_card(request.token_id)
        if card is None:
            raise VaultError(f"Token not found: {normalize_token_id(request.token_id)}")

        body = substitute_card_data(request.body, card)
        content, content_type = encode_body(body, request.form_encoded)
        headers = {"Content-Type": content_type, **request.headers}

        response = await self._send(request.method, request.destination, headers, content, request.timeout)
        logger.info(
            f"[VAULT direct] {request.method} {request.destination} -> {response.status} "
            f"({response.latency_ms:.1f}ms)"
        )
        return response


def _to_token(record: TokenRecord) -> Token:
    return Token(
        id=record.vault_token_id,
        fingerprint=record.fingerprint,
        brand=record.card_brand,
        last4=record.card_last4,
        exp_month=record.card_exp_month,
        exp_year=record.card_exp_year,
        cardholder_name=record.card_holder_name,
        created_at=record.created_at,
        expires_at=record.expires_at,
    )
