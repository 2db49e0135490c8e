from pydantic import BaseModel, Field, field_validator
from enum import Enum
from datetime import datetime, timezone
from typing import Any, Literal, Optional


class CardBrand(str, Enum):
    VISA = "visa"
    MASTERCARD = "mastercard"
    AMEX = "amex"
    DISCOVER = "discover"
    DINERS = "diners"
    JCB = "jcb"
    UNIONPAY = "unionpay"
    UNKNOWN = "unknown"


class CardData(BaseModel):
    """Decrypted card. Only the direct vault ever builds one."""

    number: str = Field(..., pattern=r"^\d{12,19}$")
    exp_month: str = Field(..., pattern=r"^\d{1,2}$")
    exp_year: str = Field(..., pattern=r"^(\d{2}|\d{4})$")  # YY or YYYY
    cvc: str = Field(..., pattern=r"^\d{3,4}$")
    cardholder_name: Optional[str] = None

    @field_validator("number", mode="before")
    @classmethod
    def strip_spaces(cls, v: Any) -> Any:
        if isinstance(v, str):
            return "".join(v.split())
        return v

    def __repr__(self) -> str:
        return f"CardData(last4={self.number[-4:]!r})"

    __str__ = __repr__


class Token(BaseModel):
    """Non-sensitive projection of a vaulted card."""

    id: str
    fingerprint: str
    brand: CardBrand = CardBrand.UNKNOWN
    last4: str = ""
    exp_month: int = 0
    exp_year: int = 0
    cardholder_name: Optional[str] = None
    created_at: datetime
    expires_at: Optional[datetime] = None

    @field_validator("created_at", "expires_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Provider payloads may omit the offset
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class EncryptedCardEnvelope(BaseModel):
    version: Literal[1] = 1
    iv: str
    ciphertext: str
    auth_tag: str
    key_id: Optional[str] = None


class TokenRecord(BaseModel):
    """Row of the direct vault's token table."""

    id: str
    tenant_id: Optional[str] = None
    vault_token_id: str
    fingerprint: str
    encrypted_card_data: Optional[EncryptedCardEnvelope] = None
    encryption_aad: Optional[str] = None
    card_brand: CardBrand = CardBrand.UNKNOWN
    card_last4: str = ""
    card_exp_month: int = 0
    card_exp_year: int = 0
    card_holder_name: Optional[str] = None
    session_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    created_at: datetime


class CreateTokenOptions(BaseModel):
    tenant_id: Optional[str] = None
    session_id: Optional[str] = None
    expires_in: Optional[int] = Field(None, gt=0, description="Seconds until expiry")
    metadata: dict[str, str] = Field(default_factory=dict)


class ProxyRequest(BaseModel):
    destination: str
    method: Literal["GET", "POST", "PUT", "DELETE", "PATCH"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    token_id: str
    timeout: Optional[float] = None  # seconds
    form_encoded: bool = False


class ProxyResponse(BaseModel):
    status: int
    headers: dict[str, str] = Field(default_factory=dict)
    data: Any = None
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class PublicConfig(BaseModel):
    provider: Literal["direct", "basis_theory"]
    public_key: str = ""
    elements_url: Optional[str] = None
    options: dict[str, Any] = Field(default_factory=dict)


class CreateTokenRequest(BaseModel):
    """Body of POST /tokens."""

    card: CardData
    tenant_id: Optional[str] = None
    session_id: Optional[str] = None
    expires_in: Optional[int] = Field(None, gt=0)
