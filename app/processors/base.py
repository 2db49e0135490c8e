import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx

from app.config import Settings
from app.engine.backoff import parse_retry_after, wait_before_retry
from app.errors import VaultError
from app.models.payment import (
    CaptureRequest,
    CaptureResponse,
    ChargeRequest,
    ChargeResponse,
    FailureCategory,
    PSPCredentials,
    RefundRequest,
    RefundResponse,
)
from app.models.vault import ProxyResponse
from app.vault.base import VaultProvider, encode_body, parse_response_body

logger = logging.getLogger(__name__)


# Keyword table applied to the lower-cased PSP code and message, first hit wins
_CATEGORY_KEYWORDS: list[tuple[tuple[str, ...], FailureCategory]] = [
    (("insufficient",), FailureCategory.INSUFFICIENT_FUNDS),
    (("expired",), FailureCategory.EXPIRED_CARD),
    (("cvc", "cvv"), FailureCategory.INVALID_CVC),
    (("fraud", "stolen"), FailureCategory.FRAUD_SUSPECTED),
    (("declined", "decline"), FailureCategory.CARD_DECLINED),
    (("incorrect_number", "invalid_number", "invalid card", "invalid_card"), FailureCategory.INVALID_CARD),
    (("rate_limit", "rate limit", "too many"), FailureCategory.RATE_LIMIT),
    (("authentication", "3ds"), FailureCategory.AUTHENTICATION_REQUIRED),
    (("processing",), FailureCategory.PROCESSING_ERROR),
]


def normalize_failure_category(code: Optional[str], message: Optional[str] = None) -> FailureCategory:
    """Map a PSP-specific failure code/message onto the canonical category set."""
    haystack = f"{(code or '').lower()} {(message or '').lower()}"
    for keywords, category in _CATEGORY_KEYWORDS:
        if any(k in haystack for k in keywords):
            return category
    return FailureCategory.UNKNOWN


def category_for_status(status: int) -> Optional[FailureCategory]:
    """HTTP status codes that classify a failure on their own."""
    if status == 429:
        return FailureCategory.RATE_LIMIT
    if status >= 500:
        return FailureCategory.PROCESSING_ERROR
    return None


class PSPAdapter(ABC):
    """
    Maps canonical charge/capture/refund requests onto one PSP's wire format.

    Requests that carry card data go through the vault's forward(), built from
    card markers only, so the adapter never handles raw card numbers.
    Card-less calls (capture, refund, health) go straight to the PSP.

    degraded=True is the emergency profile: metadata, descriptions, receipts
    and 3DS data are dropped to keep the request minimal.
    """

    name: str

    def __init__(
        self,
        credentials: PSPCredentials,
        vault: VaultProvider,
        http: httpx.AsyncClient,
        settings: Settings,
        degraded: bool = False,
    ):
        self.credentials = credentials
        self._vault = vault
        self._http = http
        self._settings = settings
        self.degraded = degraded

    @abstractmethod
    async def charge(self, request: ChargeRequest) -> ChargeResponse:
        """
        Charge a vaulted card.
        PSP declines are encoded in the response; transport errors propagate.
        """

    @abstractmethod
    async def capture(self, request: CaptureRequest) -> CaptureResponse: ...

    @abstractmethod
    async def refund(self, request: RefundRequest) -> RefundResponse: ...

    @abstractmethod
    async def _ping(self) -> bool:
        """Cheap authenticated call; True when the PSP answered normally."""

    async def health_check(self) -> tuple[bool, float]:
        """Returns (healthy, latency_ms). Never raises for transport errors."""
        start = time.monotonic()
        try:
            healthy = await self._ping()
        except (httpx.HTTPError, VaultError, OSError) as err:
            logger.warning(f"[{self.name}] Health check failed: {type(err).__name__}: {err}")
            healthy = False
        return healthy, round((time.monotonic() - start) * 1000, 2)

    async def _with_retry(self, call: Callable[[], Awaitable[ProxyResponse]]) -> ProxyResponse:
        """
        Run *call*, retrying network errors and 5xx responses with exponential
        backoff (or the server's Retry-After). 4xx responses are returned
        immediately. After the last attempt a 5xx response is returned as-is;
        a network error is re-raised.
        """
        max_retries = max(1, self._settings.PSP_HTTP_MAX_RETRIES)
        response: Optional[ProxyResponse] = None
        for attempt in range(max_retries):
            retry_after = None
            try:
                response = await call()
            except httpx.TransportError as err:
                if attempt == max_retries - 1:
                    raise
                logger.warning(f"[{self.name}] Transport error ({type(err).__name__}), retry #{attempt + 1}")
            else:
                if response.status < 500:
                    return response
                if attempt == max_retries - 1:
                    break
                logger.warning(f"[{self.name}] Server error {response.status}, retry #{attempt + 1}")
                retry_after = parse_retry_after(response.headers.get("retry-after"))

            await wait_before_retry(attempt, self._settings, retry_after)
        return response  # type: ignore[return-value]

    async def _direct(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Any = None,
        form_encoded: bool = False,
    ) -> ProxyResponse:
        """Card-less request sent straight to the PSP."""
        content, content_type = encode_body(body, form_encoded)
        start = time.monotonic()
        response = await self._http.request(
            method,
            url,
            headers={"Content-Type": content_type, **headers},
            content=content,
            timeout=self._settings.PSP_TIMEOUT_SECONDS,
        )
        return ProxyResponse(
            status=response.status_code,
            headers=dict(response.headers),
            data=parse_response_body(response),
            latency_ms=round((time.monotonic() - start) * 1000, 2),
        )
