"""Order state machine rules - pure decisions, no persistence"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, Mapping, Optional

from proofport_gateway.domain.exceptions import InvalidOrderData
from proofport_gateway.domain.models import BundleKind, OrderStatus, ValidityWindow


class TransitionDecision(str, Enum):
    APPLY = "apply"
    NOOP = "noop"
    INVALID = "invalid"


# target status -> {current status: decision}
_TRANSITIONS: Dict[OrderStatus, Dict[OrderStatus, TransitionDecision]] = {
    OrderStatus.EXPIRED: {
        OrderStatus.ACTIVE: TransitionDecision.APPLY,
        OrderStatus.EXPIRED: TransitionDecision.NOOP,
        OrderStatus.CANCELLED: TransitionDecision.INVALID,
    },
    OrderStatus.CANCELLED: {
        OrderStatus.ACTIVE: TransitionDecision.APPLY,
        OrderStatus.CANCELLED: TransitionDecision.NOOP,
        OrderStatus.EXPIRED: TransitionDecision.INVALID,
    },
}


def decide_transition(current: OrderStatus, target: OrderStatus) -> TransitionDecision:
    """
    Decide how a status change request applies to an order.

    Terminal states never transition again; repeating the transition that
    produced the current state is an idempotent no-op.
    """
    if target not in _TRANSITIONS:
        return TransitionDecision.INVALID
    return _TRANSITIONS[target][current]


def can_extend(current: OrderStatus) -> bool:
    return current is OrderStatus.ACTIVE


def extended_expiry(expires_at: datetime, now: datetime, added_days: int) -> datetime:
    """New expiry for an extension: counted from the later of now and the current expiry"""
    if added_days < 0:
        raise InvalidOrderData("added_days must not be negative")
    return max(now, expires_at) + timedelta(days=added_days)


def initial_window(now: datetime, ttl_days: int, max_days: Optional[int] = None) -> ValidityWindow:
    if ttl_days <= 0:
        raise InvalidOrderData("ttl_days must be positive")
    if max_days is not None and ttl_days > max_days:
        raise InvalidOrderData(f"ttl_days must not exceed {max_days}")
    return ValidityWindow(created_at=now, expires_at=now + timedelta(days=ttl_days))


def validate_new_order(
    bundle: Iterable[BundleKind],
    confirmations: Mapping[BundleKind, str],
    window: ValidityWindow,
) -> None:
    """Check the invariants an order must satisfy before it is written"""
    bundle = set(bundle)
    if not bundle:
        raise InvalidOrderData("bundle must not be empty")
    stray = set(confirmations) - bundle
    if stray:
        raise InvalidOrderData(f"confirmations for kinds outside the bundle: {sorted(k.value for k in stray)}")
    if window.expires_at <= window.created_at:
        raise InvalidOrderData("expires_at must be after created_at")
