"""
SandboxAdapter: in-process PSP used for credentials in the test environment.

The outcome of a charge is chosen deterministically by the card's last four
digits, following the well-known PSP test card numbers.  Cards not in the
table are approved.  Captures and refunds are checked against a shared
SandboxLedger so partial captures and over-refunds behave like a real PSP.
"""

import asyncio
import random
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from app.config import Settings
from app.models.payment import (
    CaptureRequest,
    CaptureResponse,
    ChargeRequest,
    ChargeResponse,
    FailureCategory,
    PSPCredentials,
    RefundRequest,
    RefundResponse,
    RequiredAction,
)
from app.processors.base import PSPAdapter
from app.vault.base import VaultProvider

TEST_TOKEN_PREFIX = "tok_test_"

# last4 -> (failure_code, message, category)
DECLINE_CARDS: dict[str, tuple[str, str, FailureCategory]] = {
    "0002": ("card_declined", "Your card was declined.", FailureCategory.CARD_DECLINED),
    "9995": ("insufficient_funds", "Your card has insufficient funds.", FailureCategory.INSUFFICIENT_FUNDS),
    "9987": ("lost_card", "Your card has been reported lost.", FailureCategory.CARD_DECLINED),
    "9979": ("stolen_card", "Your card has been reported stolen.", FailureCategory.FRAUD_SUSPECTED),
    "0069": ("expired_card", "Your card has expired.", FailureCategory.EXPIRED_CARD),
    "0127": ("incorrect_cvc", "Your card's security code is incorrect.", FailureCategory.INVALID_CVC),
    "0119": ("processing_error", "An error occurred while processing your card.", FailureCategory.PROCESSING_ERROR),
    "4241": ("incorrect_number", "Your card number is incorrect.", FailureCategory.INVALID_CARD),
    "0019": ("highest_risk", "This payment was flagged as high risk.", FailureCategory.FRAUD_SUSPECTED),
    "4954": ("elevated_risk", "This payment requires review.", FailureCategory.FRAUD_SUSPECTED),
}

# last4 -> 3DS version requested
THREEDS_CARDS: dict[str, str] = {
    "3220": "2.1.0",
    "3063": "2.2.0",
}


@dataclass
class _LedgerEntry:
    amount: int
    currency: str
    captured: int = 0
    refunded: int = 0


class SandboxLedger:
    """Charges seen by sandbox adapters. All mutations are protected by a Lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[str, _LedgerEntry] = {}

    def record_charge(self, transaction_id: str, amount: int, currency: str, captured: bool) -> None:
        with self._lock:
            self._entries[transaction_id] = _LedgerEntry(amount, currency, captured=amount if captured else 0)

    def capture(self, transaction_id: str, amount: Optional[int]) -> tuple[bool, int, str]:
        """Returns (ok, captured_amount, error_message)."""
        with self._lock:
            entry = self._entries.get(transaction_id)
            if entry is None:
                return False, 0, "No such payment"
            if entry.captured:
                return False, entry.captured, "Payment already captured"
            to_capture = amount or entry.amount
            if to_capture > entry.amount:
                return False, 0, "Capture amount exceeds authorized amount"
            entry.captured = to_capture
            return True, to_capture, ""

    def refund(self, transaction_id: str, amount: Optional[int]) -> tuple[bool, int, str]:
        """Returns (ok, refunded_amount, error_message)."""
        with self._lock:
            entry = self._entries.get(transaction_id)
            if entry is None:
                return False, 0, "No such payment"
            remaining = entry.captured - entry.refunded
            to_refund = amount or remaining
            if to_refund <= 0 or to_refund > remaining:
                return False, 0, "Refund amount exceeds captured amount"
            entry.refunded += to_refund
            return True, to_refund, ""


class SandboxAdapter(PSPAdapter):
    """
    Args:
        name:          PSP name the adapter stands in for (keeps stats and
                       breakers keyed by the real PSP).
        ledger:        Shared capture/refund bookkeeping.
        latency_range: (min_seconds, max_seconds) simulated network delay.
    """

    def __init__(
        self,
        name: str,
        credentials: PSPCredentials,
        vault: VaultProvider,
        http: httpx.AsyncClient,
        settings: Settings,
        ledger: SandboxLedger,
        degraded: bool = False,
        latency_range: tuple[float, float] = (0.005, 0.02),
    ):
        super().__init__(credentials, vault, http, settings, degraded)
        self.name = name
        self._ledger = ledger
        self._latency_range = latency_range

    async def _card_last4(self, token_id: str) -> Optional[str]:
        if token_id.startswith(TEST_TOKEN_PREFIX):
            return token_id[len(TEST_TOKEN_PREFIX):][-4:]
        token = await self._vault.get_token(token_id)
        return token.last4 if token else None

    async def charge(self, request: ChargeRequest) -> ChargeResponse:
        start = time.monotonic()
        await asyncio.sleep(random.uniform(*self._latency_range))
        last4 = await self._card_last4(request.token)
        elapsed_ms = round((time.monotonic() - start) * 1000, 2)
        transaction_id = f"{self.name}_test_{secrets.token_hex(8)}"

        if last4 is None:
            return ChargeResponse(
                success=False,
                status="failed",
                amount=request.amount,
                currency=request.currency,
                failure_code="token_not_found",
                failure_message="No such token",
                failure_category=FailureCategory.INVALID_CARD,
                raw_response={"error": "token_not_found"},
                latency_ms=elapsed_ms,
            )

        declined = DECLINE_CARDS.get(last4)
        if declined:
            code, message, category = declined
            return ChargeResponse(
                success=False,
                transaction_id=transaction_id,
                status="failed",
                amount=request.amount,
                currency=request.currency,
                failure_code=code,
                failure_message=message,
                failure_category=category,
                raw_response={"code": code, "message": message},
                latency_ms=elapsed_ms,
            )

        version = THREEDS_CARDS.get(last4)
        if version and request.threeds is None and not self.degraded:
            return ChargeResponse(
                success=False,
                transaction_id=transaction_id,
                status="pending",
                amount=request.amount,
                currency=request.currency,
                requires_action=RequiredAction(
                    type="3ds_challenge",
                    url=f"https://sandbox.invalid/3ds/{transaction_id}",
                ),
                raw_response={"code": "3ds_required", "version": version},
                latency_ms=elapsed_ms,
            )

        self._ledger.record_charge(transaction_id, request.amount, request.currency, request.capture)
        return ChargeResponse(
            success=True,
            transaction_id=transaction_id,
            status="captured" if request.capture else "authorized",
            amount=request.amount,
            currency=request.currency,
            raw_response={"code": "00", "message": "Approved"},
            latency_ms=elapsed_ms,
        )

    async def capture(self, request: CaptureRequest) -> CaptureResponse:
        ok, amount, error = self._ledger.capture(request.transaction_id, request.amount)
        return CaptureResponse(
            success=ok,
            transaction_id=request.transaction_id,
            amount=amount,
            status="captured" if ok else "failed",
            failure_message=error or None,
        )

    async def refund(self, request: RefundRequest) -> RefundResponse:
        ok, amount, error = self._ledger.refund(request.transaction_id, request.amount)
        return RefundResponse(
            success=ok,
            refund_id=f"re_test_{secrets.token_hex(8)}" if ok else "",
            amount=amount,
            status="succeeded" if ok else "failed",
            failure_message=error or None,
        )

    async def _ping(self) -> bool:
        return True
