"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from proofport_gateway.domain.models import BundleKind

# Names the storefront used before the bundle kinds were settled
BUNDLE_ALIASES = {"hotel": BundleKind.LODGING.value}


class TripMetadata(BaseModel):
    """Trip details handed to reservation providers and echoed back"""

    origin: str = Field(..., min_length=1, description="Origin airport or city")
    destination: str = Field(..., min_length=1, description="Destination airport or city")
    departure_date: date
    return_date: Optional[date] = None
    passengers: int = Field(1, ge=1, le=9)
    visa_type: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self) -> "TripMetadata":
        if self.return_date is not None and self.return_date < self.departure_date:
            raise ValueError("return_date must not be before departure_date")
        return self


class DeviceSignalSchema(BaseModel):
    visitor_id: str
    confidence: float


class PurchaserSignals(BaseModel):
    """Signals about the purchaser consumed by the risk gate"""

    email: str = Field(..., min_length=3)
    amount: float = Field(..., ge=0, description="Order total in the purchase currency")
    country: Optional[str] = None
    ip: Optional[str] = None
    device: Optional[DeviceSignalSchema] = None


class OrderCreateRequest(BaseModel):
    """Request body for POST /v1/orders"""

    owner: str = Field(..., min_length=1, description="Purchaser identifier")
    bundle: List[BundleKind] = Field(..., min_length=1)
    trip: TripMetadata
    signals: PurchaserSignals
    ttl_days: Optional[int] = Field(None, ge=1, le=90, description="Validity window in days")

    @field_validator("bundle", mode="before")
    @classmethod
    def normalize_bundle(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        normalized = []
        for item in value:
            if isinstance(item, str):
                item = item.strip().lower()
                item = BUNDLE_ALIASES.get(item, item)
            if item not in normalized:
                normalized.append(item)
        return normalized


class RiskSchema(BaseModel):
    score: float
    level: str
    reasons: List[str]
    block: bool
    device_id: str


class OrderResponse(BaseModel):
    """Order as returned by every /v1/orders endpoint"""

    order_id: str
    owner: str
    status: str
    bundle: List[str]
    confirmations: Dict[str, str]
    created_at: datetime
    expires_at: datetime
    risk: RiskSchema
    trip: Dict[str, Any]
    cancel_reason: Optional[str] = None
    extension_count: int = 0
    time_left_seconds: int
    expired: bool
    failed_kinds: List[str] = []


class ExtendRequest(BaseModel):
    """Request body for POST /v1/orders/{order_id}/extend"""

    added_days: int = Field(..., ge=1, le=90)


class ExtendResponse(OrderResponse):
    renewed_kinds: List[str] = []
    unrenewed_kinds: List[str] = []


class CancelRequest(BaseModel):
    """Request body for POST /v1/orders/{order_id}/cancel"""

    reason: str = Field("customer_request", min_length=1)


class OrderListResponse(BaseModel):
    """Response for GET /v1/orders"""

    owner: str
    orders: List[OrderResponse]
    total_orders: int


class SweepFailureSchema(BaseModel):
    order_id: str
    error: str


class SweepResponse(BaseModel):
    """Response for POST /v1/orders/auto-cancel"""

    cancelled_count: int
    failures: List[SweepFailureSchema]
