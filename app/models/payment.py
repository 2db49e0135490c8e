from pydantic import BaseModel, Field, field_validator
from enum import Enum
from typing import Literal, Optional


class FailureCategory(str, Enum):
    CARD_DECLINED = "card_declined"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    EXPIRED_CARD = "expired_card"
    INVALID_CARD = "invalid_card"
    INVALID_CVC = "invalid_cvc"
    FRAUD_SUSPECTED = "fraud_suspected"
    PROCESSING_ERROR = "processing_error"
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION_REQUIRED = "authentication_required"
    UNKNOWN = "unknown"


# Buyer-side declines: another processor will give the same answer.
NON_RETRYABLE_CATEGORIES = frozenset({
    FailureCategory.INSUFFICIENT_FUNDS,
    FailureCategory.EXPIRED_CARD,
    FailureCategory.INVALID_CARD,
    FailureCategory.INVALID_CVC,
    FailureCategory.FRAUD_SUSPECTED,
})


ChargeStatus = Literal["authorized", "captured", "failed", "pending"]


class PSPCredentials(BaseModel):
    environment: Literal["test", "live"] = "test"
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    merchant_id: Optional[str] = None
    merchant_account: Optional[str] = None
    public_key: Optional[str] = None
    webhook_secret: Optional[str] = None

    model_config = {"extra": "allow"}


class ThreeDSData(BaseModel):
    cavv: str
    eci: str
    ds_transaction_id: str
    version: str


class RequiredAction(BaseModel):
    type: Literal["redirect", "3ds_challenge"]
    url: Optional[str] = None


class ChargeRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Amount in minor units")
    currency: str = Field(..., min_length=3, max_length=3)
    token: str = Field(..., min_length=1, description="Vault token id")
    capture: bool = True
    idempotency_key: str = Field(..., min_length=1, max_length=128)
    metadata: dict[str, str] = Field(default_factory=dict)
    customer_email: Optional[str] = None
    description: Optional[str] = None
    threeds: Optional[ThreeDSData] = None


class ChargeResponse(BaseModel):
    success: bool
    transaction_id: str = ""
    status: ChargeStatus
    amount: int
    currency: str
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    failure_category: Optional[FailureCategory] = None
    requires_action: Optional[RequiredAction] = None
    raw_response: dict = Field(default_factory=dict)
    latency_ms: float = 0.0


class CaptureRequest(BaseModel):
    transaction_id: str
    amount: Optional[int] = None
    currency: Optional[str] = None
    idempotency_key: Optional[str] = None


class CaptureResponse(BaseModel):
    success: bool
    transaction_id: str
    amount: int = 0
    status: Literal["captured", "failed"]
    failure_message: Optional[str] = None
    raw_response: dict = Field(default_factory=dict)


class RefundRequest(BaseModel):
    transaction_id: str
    amount: Optional[int] = None  # partial refund when set
    currency: Optional[str] = None
    reason: Optional[str] = None
    idempotency_key: str


class RefundResponse(BaseModel):
    success: bool
    refund_id: str = ""
    amount: int = 0
    status: Literal["pending", "succeeded", "failed"]
    failure_message: Optional[str] = None
    raw_response: dict = Field(default_factory=dict)


class PaymentContext(BaseModel):
    currency: str
    card_brand: Optional[str] = None


class Attempt(BaseModel):
    psp: str
    response: ChargeResponse


class OrchestrationResult(BaseModel):
    response: ChargeResponse
    psp: str
    attempts: list[Attempt] = Field(default_factory=list)


class PaymentRequest(BaseModel):
    """Body of POST /payments."""

    amount: int = Field(..., gt=0, le=100_000_000)
    currency: str = Field(..., pattern=r"^[A-Za-z]{3}$")
    token_id: str = Field(..., min_length=1, max_length=128)
    card_brand: Optional[str] = None
    capture: bool = True
    idempotency_key: str = Field(
        ...,
        min_length=1,
        max_length=64,
        pattern=r"^[\w\-]+$",
        description="Client-supplied idempotency key (alphanumeric, hyphens, underscores)",
    )
    metadata: dict[str, str] = Field(default_factory=dict)
    customer_email: Optional[str] = None
    description: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    def to_charge(self) -> ChargeRequest:
        return ChargeRequest(
            amount=self.amount,
            currency=self.currency,
            token=self.token_id,
            capture=self.capture,
            idempotency_key=self.idempotency_key,
            metadata=self.metadata,
            customer_email=self.customer_email,
            description=self.description,
        )

    def to_context(self) -> PaymentContext:
        return PaymentContext(currency=self.currency, card_brand=self.card_brand)
