from pydantic import BaseModel, Field, field_validator
from enum import Enum
from datetime import datetime
from typing import Any, Optional

import httpx

from app.models.health import BreakerStatusResponse, ServiceHealth
from app.models.payment import ChargeRequest, ChargeResponse


class EndpointKind(str, Enum):
    PRIMARY_BACKEND = "primary_backend"
    REACTOR_FALLBACK = "reactor_fallback"
    DIRECT_PSP = "direct_psp"


class FailoverEndpoint(BaseModel):
    name: str
    kind: EndpointKind
    url: str
    region: Optional[str] = None

    @field_validator("url")
    @classmethod
    def absolute_http_url(cls, v: str) -> str:
        try:
            url = httpx.URL(v)
        except httpx.InvalidURL as err:
            raise ValueError(f"invalid endpoint url: {err}") from err
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError("endpoint url must be an absolute http(s) URL")
        return v


class FetchOptions(BaseModel):
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    session_id: Optional[str] = None
    # Charge to run directly on the emergency PSP when every endpoint is down
    emergency_charge: Optional[ChargeRequest] = None


class PendingSyncTransaction(BaseModel):
    id: str
    session_id: Optional[str] = None
    route: str
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class EmergencyResult(BaseModel):
    """Returned by the transport when a charge went through the emergency path."""

    fallback_mode: bool = True
    requires_sync: bool = True
    psp: str
    pending_sync_id: str
    payment: ChargeResponse


class SyncResult(BaseModel):
    synced: int
    remaining: int


class EndpointStatusResponse(BaseModel):
    endpoint: FailoverEndpoint
    breaker: BreakerStatusResponse
    health: Optional[ServiceHealth] = None


class TransportStatusResponse(BaseModel):
    endpoints: list[EndpointStatusResponse]
    emergency_psp: Optional[str] = None
    pending_sync: int
