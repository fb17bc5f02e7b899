"""Order submission, extension and cancellation flows"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from proofport_gateway.config import settings
from proofport_gateway.domain.exceptions import (
    InvalidOrderData,
    InvalidOrderState,
    OrderNotFound,
    PersistenceFailure,
    ProviderFailure,
    RiskBlocked,
)
from proofport_gateway.domain.lifecycle import can_extend, extended_expiry, initial_window
from proofport_gateway.domain.models import (
    ExtensionResult,
    OrderRequest,
    SubmissionResult,
    Transition,
    ValidityWindow,
)
from proofport_gateway.domain.scoring import RiskPolicy, evaluate_risk
from proofport_gateway.infrastructure.database.repositories import OrderLedger
from proofport_gateway.infrastructure.observability.metrics import extension_counter, record_submission
from proofport_gateway.services.holds import HoldCoordinator
from proofport_gateway.utils.date_utils import utc_now

logger = logging.getLogger(__name__)


async def submit_order(
    ledger: OrderLedger,
    coordinator: HoldCoordinator,
    request: OrderRequest,
    now: Optional[datetime] = None,
    policy: Optional[RiskPolicy] = None,
    require_full_bundle: Optional[bool] = None,
) -> SubmissionResult:
    """
    Risk gate -> hold acquisition -> ledger write.

    Flow:
    1. Evaluate risk; a blocking assessment raises RiskBlocked before any provider is called
    2. Acquire holds for every bundle kind in parallel
    3. Reject with ProviderFailure when nothing was confirmed, or when the
       bundle is partial and a full bundle is required (acquired holds are released)
    4. Persist the active order; a failed write releases the holds again

    Returns the order plus the kinds that could not be confirmed.
    """
    now = now or utc_now()
    if require_full_bundle is None:
        require_full_bundle = settings.require_full_bundle

    assessment = evaluate_risk(request.signals, now, policy)
    if assessment.block:
        record_submission("blocked", assessment.level.value)
        logger.warning(
            "Order blocked by risk gate",
            extra={"owner": request.owner, "risk_score": assessment.score, "reasons": assessment.reasons},
        )
        raise RiskBlocked(assessment)

    window = initial_window(now, request.ttl_days, max_days=settings.max_ttl_days)
    acquisition = await coordinator.acquire(request.bundle, request.trip_metadata, hold_until=window.expires_at)

    if not acquisition.confirmations or (require_full_bundle and not acquisition.complete):
        await coordinator.release(acquisition.confirmations)
        record_submission("provider_failure", assessment.level.value)
        raise ProviderFailure(acquisition.failed_kinds)

    try:
        order = ledger.create(
            owner=request.owner,
            bundle=request.bundle,
            risk=assessment,
            window=window,
            confirmations=acquisition.confirmations,
            metadata=request.trip_metadata,
        )
    except PersistenceFailure:
        await coordinator.release(acquisition.confirmations)
        raise

    record_submission("created" if acquisition.complete else "partial", assessment.level.value)
    return SubmissionResult(order=order, failed_kinds=acquisition.failed_kinds)


async def extend_order(
    ledger: OrderLedger,
    coordinator: HoldCoordinator,
    order_id: uuid.UUID,
    added_days: int,
    now: Optional[datetime] = None,
) -> ExtensionResult:
    """
    Extend an active order's validity window by added_days.

    Renewable holds are replaced by successor confirmations before the
    ledger write. Afterwards exactly the confirmations the ledger displaced
    under its row lock are released, so a concurrent extension of the same
    order never leaves a successor hold orphaned. If the order left the
    active state in the meantime the successors are released and
    InvalidOrderState propagates.
    """
    now = now or utc_now()
    if added_days > settings.max_ttl_days:
        raise InvalidOrderData(f"added_days must not exceed {settings.max_ttl_days}")
    order = ledger.get(order_id)
    if not can_extend(order.status):
        raise InvalidOrderState(order_id, order.status, "extend")

    new_window = ValidityWindow(order.created_at, extended_expiry(order.expires_at, now, added_days))
    renewal = await coordinator.extend(order.confirmations, order.metadata, new_window)

    try:
        recorded = ledger.extend(order_id, added_days, now=now, confirmations=renewal.confirmations)
    except (InvalidOrderState, OrderNotFound, PersistenceFailure):
        await coordinator.release(renewal.confirmations)
        raise

    updated = recorded.order
    await coordinator.release(recorded.superseded)
    extension_counter.inc()

    renewed = sorted(renewal.confirmations, key=lambda k: k.value)
    unrenewed = sorted(set(order.confirmations) - set(renewal.confirmations), key=lambda k: k.value)
    logger.info(
        "Order extended",
        extra={
            "order_id": str(order_id),
            "expires_at": updated.expires_at.isoformat(),
            "renewed_kinds": [k.value for k in renewed],
            "unrenewed_kinds": [k.value for k in unrenewed],
        },
    )
    return ExtensionResult(order=updated, renewed_kinds=renewed, unrenewed_kinds=unrenewed)


async def cancel_order(
    ledger: OrderLedger,
    coordinator: HoldCoordinator,
    order_id: uuid.UUID,
    reason: str,
    now: Optional[datetime] = None,
) -> Transition:
    """Cancel an active order on request and release its holds; repeat calls are no-ops"""
    transition = ledger.cancel(order_id, reason, now=now)
    if transition.applied:
        await coordinator.release(transition.order.confirmations)
        logger.info("Order cancelled", extra={"order_id": str(order_id), "reason": reason})
    else:
        logger.info("Order already cancelled", extra={"order_id": str(order_id)})
    return transition
