from typing import Any

from app.models.payment import (
    CaptureRequest,
    CaptureResponse,
    ChargeRequest,
    ChargeResponse,
    ChargeStatus,
    RefundRequest,
    RefundResponse,
    RequiredAction,
)
from app.models.vault import ProxyRequest
from app.processors.base import PSPAdapter, category_for_status, normalize_failure_category
from app.vault.placeholders import build_card_payload

_BASE_URL = "https://api.stripe.com/v1"
_API_VERSION = "2024-12-18.acacia"

_STATUS_MAP: dict[str, ChargeStatus] = {
    "succeeded": "captured",
    "requires_capture": "authorized",
    "requires_action": "pending",
    "requires_payment_method": "failed",
    "processing": "pending",
}


class StripeAdapter(PSPAdapter):
    """PaymentIntents API, form-encoded, confirmed in a single call."""

    name = "stripe"

    def _headers(self, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.credentials.api_key or ''}",
            "Stripe-Version": _API_VERSION,
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def build_charge_params(self, request: ChargeRequest) -> dict[str, Any]:
        params: dict[str, Any] = {
            "amount": request.amount,
            "currency": request.currency.lower(),
            "confirm": True,
            "payment_method_data": {
                "type": "card",
                "card": build_card_payload("stripe", include_holder_name=False),
            },
            "capture_method": "automatic" if request.capture else "manual",
        }
        if self.degraded:
            return params

        if request.metadata:
            params["metadata"] = request.metadata
        if request.customer_email:
            params["receipt_email"] = request.customer_email
        if request.description:
            params["description"] = request.description
        if request.threeds:
            params["payment_method_options"] = {
                "card": {
                    "three_d_secure": {
                        "cryptogram": request.threeds.cavv,
                        "electronic_commerce_indicator": request.threeds.eci,
                        "transaction_id": request.threeds.ds_transaction_id,
                        "version": request.threeds.version,
                    }
                }
            }
        return params

    async def charge(self, request: ChargeRequest) -> ChargeResponse:
        proxy_request = ProxyRequest(
            destination=f"{_BASE_URL}/payment_intents",
            method="POST",
            headers=self._headers(request.idempotency_key),
            body=self.build_charge_params(request),
            token_id=request.token,
            timeout=self._settings.PSP_TIMEOUT_SECONDS,
            form_encoded=True,
        )
        response = await self._with_retry(lambda: self._vault.forward(proxy_request))
        data = response.data if isinstance(response.data, dict) else {}

        if not response.ok:
            error = data.get("error") or {}
            code = error.get("decline_code") or error.get("code") or "unknown_error"
            message = error.get("message") or "Payment failed"
            return ChargeResponse(
                success=False,
                transaction_id=(error.get("payment_intent") or {}).get("id", ""),
                status="failed",
                amount=request.amount,
                currency=request.currency,
                failure_code=code,
                failure_message=message,
                failure_category=category_for_status(response.status) or normalize_failure_category(code, message),
                raw_response=data,
                latency_ms=response.latency_ms,
            )

        if data.get("status") == "requires_action":
            next_action = data.get("next_action") or {}
            url = (next_action.get("redirect_to_url") or {}).get("url") or (
                next_action.get("use_stripe_sdk") or {}
            ).get("stripe_js")
            return ChargeResponse(
                success=False,
                transaction_id=data.get("id", ""),
                status="pending",
                amount=request.amount,
                currency=request.currency,
                requires_action=RequiredAction(type="3ds_challenge", url=url),
                raw_response=data,
                latency_ms=response.latency_ms,
            )

        status = _STATUS_MAP.get(data.get("status", ""), "failed")
        # "processing" counts as accepted; the final outcome arrives asynchronously
        success = status in ("authorized", "captured", "pending")
        return ChargeResponse(
            success=success,
            transaction_id=data.get("id", ""),
            status=status,
            amount=data.get("amount", request.amount),
            currency=str(data.get("currency", request.currency)).upper(),
            failure_code=None if success else data.get("status"),
            failure_category=None if success else normalize_failure_category(data.get("status")),
            raw_response=data,
            latency_ms=response.latency_ms,
        )

    async def capture(self, request: CaptureRequest) -> CaptureResponse:
        params = {"amount_to_capture": request.amount} if request.amount else {}
        response = await self._with_retry(
            lambda: self._direct(
                "POST",
                f"{_BASE_URL}/payment_intents/{request.transaction_id}/capture",
                self._headers(request.idempotency_key),
                params,
                form_encoded=True,
            )
        )
        data = response.data if isinstance(response.data, dict) else {}
        if not response.ok:
            return CaptureResponse(
                success=False,
                transaction_id=request.transaction_id,
                amount=request.amount or 0,
                status="failed",
                failure_message=(data.get("error") or {}).get("message", "Capture failed"),
                raw_response=data,
            )
        return CaptureResponse(
            success=True,
            transaction_id=data.get("id", request.transaction_id),
            amount=data.get("amount_received", request.amount or 0),
            status="captured",
            raw_response=data,
        )

    async def refund(self, request: RefundRequest) -> RefundResponse:
        params: dict[str, Any] = {"payment_intent": request.transaction_id}
        if request.amount:
            params["amount"] = request.amount
        if request.reason:
            params["reason"] = request.reason

        response = await self._with_retry(
            lambda: self._direct(
                "POST",
                f"{_BASE_URL}/refunds",
                self._headers(request.idempotency_key),
                params,
                form_encoded=True,
            )
        )
        data = response.data if isinstance(response.data, dict) else {}
        if not response.ok:
            return RefundResponse(
                success=False,
                amount=request.amount or 0,
                status="failed",
                failure_message=(data.get("error") or {}).get("message", "Refund failed"),
                raw_response=data,
            )
        return RefundResponse(
            success=True,
            refund_id=data.get("id", ""),
            amount=data.get("amount", request.amount or 0),
            status="succeeded" if data.get("status") == "succeeded" else "pending",
            raw_response=data,
        )

    async def _ping(self) -> bool:
        response = await self._direct("GET", f"{_BASE_URL}/balance", self._headers())
        return response.ok
