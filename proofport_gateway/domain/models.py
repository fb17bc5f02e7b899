"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional


class BundleKind(str, Enum):
    """Product kinds that can be held for an order"""

    FLIGHT = "flight"
    LODGING = "lodging"
    INSURANCE = "insurance"

    def __str__(self) -> str:
        return self.value


class OrderStatus(str, Enum):
    """Order lifecycle states; expired and cancelled are terminal"""

    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.ACTIVE


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class DeviceSignal:
    """Device fingerprint produced by the device-signal provider"""

    visitor_id: str
    confidence: float


@dataclass
class RiskSignals:
    """Everything the risk evaluator looks at for one purchase attempt"""

    email: str
    amount: Any
    device: Optional[DeviceSignal] = None
    country: Optional[str] = None
    ip: Optional[str] = None
    trip_metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RiskAssessment:
    """Output of risk evaluation, recorded on the order for audit"""

    score: float
    level: RiskLevel
    reasons: List[str]
    block: bool
    device_id: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level.value,
            "reasons": list(self.reasons),
            "block": self.block,
            "device_id": self.device_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RiskAssessment":
        return cls(
            score=data["score"],
            level=RiskLevel(data["level"]),
            reasons=list(data.get("reasons", [])),
            block=data["block"],
            device_id=data.get("device_id", "unknown"),
        )


@dataclass(frozen=True)
class ValidityWindow:
    created_at: datetime
    expires_at: datetime


@dataclass
class Order:
    """Purchased document bundle as recorded in the ledger"""

    id: uuid.UUID
    owner: str
    bundle: FrozenSet[BundleKind]
    confirmations: Dict[BundleKind, str]
    window: ValidityWindow
    status: OrderStatus
    risk: RiskAssessment
    metadata: Dict[str, Any]
    cancel_reason: Optional[str] = None
    extension_count: int = 0
    expiry_warning_sent_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def created_at(self) -> datetime:
        return self.window.created_at

    @property
    def expires_at(self) -> datetime:
        return self.window.expires_at


@dataclass
class Transition:
    """Result of a guarded status change; applied is False for idempotent no-ops"""

    order: Order
    applied: bool


@dataclass
class Renewal:
    """Ledger side of an extension: the updated order and the confirmations it replaced"""

    order: Order
    superseded: Dict[BundleKind, str] = field(default_factory=dict)


@dataclass
class HoldAcquisition:
    """Per-kind outcome of a hold acquisition or extension"""

    confirmations: Dict[BundleKind, str] = field(default_factory=dict)
    failures: Dict[BundleKind, str] = field(default_factory=dict)

    @property
    def failed_kinds(self) -> List[BundleKind]:
        return sorted(self.failures, key=lambda k: k.value)

    @property
    def complete(self) -> bool:
        return not self.failures


@dataclass
class OrderRequest:
    """Purchase request handed to the order submission flow"""

    owner: str
    bundle: FrozenSet[BundleKind]
    trip_metadata: Dict[str, Any]
    signals: RiskSignals
    ttl_days: int


@dataclass
class SubmissionResult:
    order: Order
    failed_kinds: List[BundleKind] = field(default_factory=list)


@dataclass
class ExtensionResult:
    order: Order
    renewed_kinds: List[BundleKind] = field(default_factory=list)
    unrenewed_kinds: List[BundleKind] = field(default_factory=list)


@dataclass
class SweepFailure:
    order_id: uuid.UUID
    error: str


@dataclass
class SweepReport:
    cancelled_count: int = 0
    failures: List[SweepFailure] = field(default_factory=list)
