from typing import Any

from app.models.payment import (
    CaptureRequest,
    CaptureResponse,
    ChargeRequest,
    ChargeResponse,
    FailureCategory,
    RefundRequest,
    RefundResponse,
    RequiredAction,
)
from app.models.vault import ProxyRequest
from app.processors.base import PSPAdapter, category_for_status, normalize_failure_category
from app.vault.placeholders import build_card_payload

# Adyen refusalReasonCode -> canonical category
_REFUSAL_CATEGORIES = {
    "2": FailureCategory.CARD_DECLINED,
    "3": FailureCategory.CARD_DECLINED,
    "4": FailureCategory.CARD_DECLINED,
    "5": FailureCategory.CARD_DECLINED,
    "6": FailureCategory.EXPIRED_CARD,
    "7": FailureCategory.INVALID_CARD,
    "8": FailureCategory.INVALID_CARD,
    "12": FailureCategory.INSUFFICIENT_FUNDS,
    "14": FailureCategory.FRAUD_SUSPECTED,
    "15": FailureCategory.INVALID_CVC,
    "20": FailureCategory.FRAUD_SUSPECTED,
    "24": FailureCategory.INVALID_CVC,
    "38": FailureCategory.AUTHENTICATION_REQUIRED,
}

_ACTION_CODES = {"RedirectShopper", "ChallengeShopper", "IdentifyShopper"}


def refusal_category(code: str, reason: str = "") -> FailureCategory:
    return _REFUSAL_CATEGORIES.get(code) or normalize_failure_category(code, reason)


class AdyenAdapter(PSPAdapter):
    """Checkout API v71, JSON."""

    name = "adyen"

    @property
    def base_url(self) -> str:
        if self.credentials.environment == "live":
            prefix = getattr(self.credentials, "live_url_prefix", None) or (self.credentials.api_key or "")[:8]
            return f"https://{prefix}-checkout-live.adyenpayments.com/checkout/v71"
        return "https://checkout-test.adyen.com/v71"

    @property
    def merchant_account(self) -> str:
        return self.credentials.merchant_account or self.credentials.merchant_id or ""

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {"X-API-Key": self.credentials.api_key or ""}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def build_charge_payload(self, request: ChargeRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "merchantAccount": self.merchant_account,
            "amount": {"value": request.amount, "currency": request.currency.upper()},
            "reference": request.idempotency_key,
            "paymentMethod": build_card_payload("adyen", include_holder_name=not self.degraded),
            "shopperInteraction": "Ecommerce",
        }
        if not request.capture:
            payload["captureDelayHours"] = -1
        if self.degraded:
            return payload

        if request.customer_email:
            payload["shopperEmail"] = request.customer_email
        if request.metadata:
            payload["metadata"] = request.metadata
        if request.description:
            payload["shopperStatement"] = request.description[:22]
        if request.threeds:
            payload["mpiData"] = {
                "cavv": request.threeds.cavv,
                "eci": request.threeds.eci,
                "dsTransID": request.threeds.ds_transaction_id,
                "threeDSVersion": request.threeds.version,
            }
        return payload

    async def charge(self, request: ChargeRequest) -> ChargeResponse:
        proxy_request = ProxyRequest(
            destination=f"{self.base_url}/payments",
            method="POST",
            headers=self._headers(request.idempotency_key),
            body=self.build_charge_payload(request),
            token_id=request.token,
            timeout=self._settings.PSP_TIMEOUT_SECONDS,
        )
        response = await self._with_retry(lambda: self._vault.forward(proxy_request))
        data = response.data if isinstance(response.data, dict) else {}
        result_code = data.get("resultCode", "")

        if not response.ok or result_code in ("Error", "Refused", "Cancelled"):
            code = str(data.get("refusalReasonCode") or data.get("errorCode") or "unknown")
            message = data.get("refusalReason") or data.get("message") or "Payment failed"
            category = category_for_status(response.status) if not response.ok else None
            return ChargeResponse(
                success=False,
                transaction_id=data.get("pspReference", ""),
                status="failed",
                amount=request.amount,
                currency=request.currency,
                failure_code=code,
                failure_message=message,
                failure_category=category or refusal_category(code, message),
                raw_response=data,
                latency_ms=response.latency_ms,
            )

        if result_code in _ACTION_CODES:
            action = data.get("action") or {}
            return ChargeResponse(
                success=False,
                transaction_id=data.get("pspReference", ""),
                status="pending",
                amount=request.amount,
                currency=request.currency,
                requires_action=RequiredAction(type="3ds_challenge", url=action.get("url")),
                raw_response=data,
                latency_ms=response.latency_ms,
            )

        if result_code == "Authorised":
            status = "captured" if request.capture else "authorized"
        elif result_code in ("Pending", "Received"):
            status = "pending"
        else:
            return ChargeResponse(
                success=False,
                transaction_id=data.get("pspReference", ""),
                status="failed",
                amount=request.amount,
                currency=request.currency,
                failure_code=result_code or "unknown",
                failure_message=f"Unexpected resultCode {result_code!r}",
                failure_category=FailureCategory.UNKNOWN,
                raw_response=data,
                latency_ms=response.latency_ms,
            )

        return ChargeResponse(
            success=True,
            transaction_id=data.get("pspReference", ""),
            status=status,
            amount=(data.get("amount") or {}).get("value", request.amount),
            currency=request.currency,
            raw_response=data,
            latency_ms=response.latency_ms,
        )

    async def capture(self, request: CaptureRequest) -> CaptureResponse:
        payload: dict[str, Any] = {"merchantAccount": self.merchant_account}
        if request.amount:
            payload["amount"] = {"value": request.amount, "currency": (request.currency or "USD").upper()}

        response = await self._with_retry(
            lambda: self._direct(
                "POST",
                f"{self.base_url}/payments/{request.transaction_id}/captures",
                self._headers(request.idempotency_key),
                payload,
            )
        )
        data = response.data if isinstance(response.data, dict) else {}
        if not response.ok:
            return CaptureResponse(
                success=False,
                transaction_id=request.transaction_id,
                amount=request.amount or 0,
                status="failed",
                failure_message=data.get("message", "Capture failed"),
                raw_response=data,
            )
        return CaptureResponse(
            success=True,
            transaction_id=data.get("paymentPspReference", request.transaction_id),
            amount=(data.get("amount") or {}).get("value", request.amount or 0),
            status="captured",
            raw_response=data,
        )

    async def refund(self, request: RefundRequest) -> RefundResponse:
        payload: dict[str, Any] = {
            "merchantAccount": self.merchant_account,
            "reference": request.idempotency_key,
        }
        if request.amount:
            payload["amount"] = {"value": request.amount, "currency": (request.currency or "USD").upper()}

        response = await self._with_retry(
            lambda: self._direct(
                "POST",
                f"{self.base_url}/payments/{request.transaction_id}/refunds",
                self._headers(request.idempotency_key),
                payload,
            )
        )
        data = response.data if isinstance(response.data, dict) else {}
        if not response.ok:
            return RefundResponse(
                success=False,
                amount=request.amount or 0,
                status="failed",
                failure_message=data.get("message", "Refund failed"),
                raw_response=data,
            )
        # Adyen refunds are asynchronous; "received" means queued
        return RefundResponse(
            success=True,
            refund_id=data.get("pspReference", ""),
            amount=(data.get("amount") or {}).get("value", request.amount or 0),
            status="pending" if data.get("status") == "received" else "succeeded",
            raw_response=data,
        )

    async def _ping(self) -> bool:
        response = await self._direct(
            "POST",
            f"{self.base_url}/paymentMethods",
            self._headers(),
            {"merchantAccount": self.merchant_account},
        )
        return response.ok
