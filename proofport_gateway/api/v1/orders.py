"""/v1/orders - submit, inspect, extend and cancel travel document orders"""

import time
import uuid
import logging
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, BackgroundTasks, Query, Request
from sqlalchemy.orm import Session

from proofport_gateway.api.v1.schemas import (
    CancelRequest,
    ExtendRequest,
    ExtendResponse,
    OrderCreateRequest,
    OrderListResponse,
    OrderResponse,
    RiskSchema,
)
from proofport_gateway.api.dependencies import get_hold_coordinator, get_notification_client, get_request_id
from proofport_gateway.config import settings
from proofport_gateway.infrastructure.database.session import get_db
from proofport_gateway.infrastructure.database.repositories import OrderLedger
from proofport_gateway.infrastructure.clients.notifier import NotificationClient
from proofport_gateway.domain.exceptions import (
    InvalidOrderData,
    InvalidOrderState,
    OrderNotFound,
    PersistenceFailure,
    ProviderFailure,
    RiskBlocked,
)
from proofport_gateway.domain.models import DeviceSignal, Order, OrderRequest, RiskSignals
from proofport_gateway.infrastructure.observability.logging import log_order_outcome
from proofport_gateway.services.holds import HoldCoordinator
from proofport_gateway.services.orders import cancel_order, extend_order, submit_order
from proofport_gateway.utils.date_utils import utc_now

router = APIRouter()


def order_to_response(order: Order, now: datetime, **extra) -> dict:
    time_left = max(0, int((order.expires_at - now).total_seconds()))
    return dict(
        order_id=str(order.id),
        owner=order.owner,
        status=order.status.value,
        bundle=sorted(k.value for k in order.bundle),
        confirmations={k.value: v for k, v in order.confirmations.items()},
        created_at=order.created_at,
        expires_at=order.expires_at,
        risk=RiskSchema(**order.risk.to_dict()),
        trip=order.metadata,
        cancel_reason=order.cancel_reason,
        extension_count=order.extension_count,
        time_left_seconds=time_left,
        expired=order.expires_at < now,
        **extra,
    )


def parse_order_id(order_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(order_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid order ID format")


def _build_order_request(body: OrderCreateRequest) -> OrderRequest:
    trip = body.trip.model_dump(mode="json", exclude_none=True)
    device = body.signals.device
    return OrderRequest(
        owner=body.owner,
        bundle=frozenset(body.bundle),
        trip_metadata=trip,
        signals=RiskSignals(
            email=body.signals.email,
            amount=body.signals.amount,
            device=DeviceSignal(visitor_id=device.visitor_id, confidence=device.confidence) if device else None,
            country=body.signals.country,
            ip=body.signals.ip,
            trip_metadata=trip,
        ),
        ttl_days=body.ttl_days or settings.default_ttl_days,
    )


@router.post("/orders", response_model=OrderResponse, status_code=201)
async def create_order(
    request_body: OrderCreateRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    coordinator: HoldCoordinator = Depends(get_hold_coordinator),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """
    Submit a purchase for a proof-of-travel bundle.

    Flow:
    1. Risk gate (403 with reasons when blocked)
    2. Acquire holds for each bundle kind in parallel
    3. Persist the active order (partial bundles list their failed kinds)
    4. Send the order summary in the background
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        result = await submit_order(OrderLedger(db), coordinator, _build_order_request(request_body))

    except RiskBlocked as e:
        duration_ms = (time.time() - start_time) * 1000
        log_order_outcome(
            request_id, request_body.owner, "blocked", e.assessment.level.value, e.assessment.score, [], duration_ms
        )
        raise HTTPException(status_code=403, detail={"error": "risk_blocked", "reasons": e.reasons})

    except ProviderFailure as e:
        logging.error(f"Reservation providers failed: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=502, detail={"error": "provider_failure", "failed_kinds": e.failed_kinds})

    except InvalidOrderData as e:
        raise HTTPException(status_code=422, detail=str(e))

    except PersistenceFailure as e:
        logging.error(f"Order store error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Order store unavailable")

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    order = result.order
    failed_kinds = [k.value for k in result.failed_kinds]
    background_tasks.add_task(notifier.send_order_summary, order)

    duration_ms = (time.time() - start_time) * 1000
    log_order_outcome(
        request_id,
        order.owner,
        "partial" if failed_kinds else "created",
        order.risk.level.value,
        order.risk.score,
        failed_kinds,
        duration_ms,
        order_id=str(order.id),
    )

    return OrderResponse(**order_to_response(order, utc_now(), failed_kinds=failed_kinds))


@router.get("/orders", response_model=OrderListResponse)
def list_orders(
    owner: str = Query(..., min_length=1, description="Purchaser identifier"),
    db: Session = Depends(get_db),
):
    """Order history for a purchaser, newest first, with time left on each validity window"""
    try:
        orders = OrderLedger(db).list_by_owner(owner)
    except PersistenceFailure as e:
        logging.error(f"Order store error: {e}")
        raise HTTPException(status_code=503, detail="Order store unavailable")

    now = utc_now()
    return OrderListResponse(
        owner=owner,
        orders=[OrderResponse(**order_to_response(o, now)) for o in orders],
        total_orders=len(orders),
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(order_id: str, db: Session = Depends(get_db)):
    order_uuid = parse_order_id(order_id)
    try:
        order = OrderLedger(db).get(order_uuid)
    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")
    except PersistenceFailure as e:
        logging.error(f"Order store error: {e}")
        raise HTTPException(status_code=503, detail="Order store unavailable")

    return OrderResponse(**order_to_response(order, utc_now()))


@router.post("/orders/{order_id}/extend", response_model=ExtendResponse)
async def extend(
    order_id: str,
    request_body: ExtendRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Session = Depends(get_db),
    coordinator: HoldCoordinator = Depends(get_hold_coordinator),
    notifier: NotificationClient = Depends(get_notification_client),
):
    """
    Extend an active order's validity window.

    The new expiry is counted from the current expiry (or from now, if that
    has already passed). Renewable holds are replaced by successor
    confirmations.
    """
    order_uuid = parse_order_id(order_id)
    request_id = get_request_id(request)

    try:
        result = await extend_order(OrderLedger(db), coordinator, order_uuid, request_body.added_days)

    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")

    except InvalidOrderData as e:
        raise HTTPException(status_code=422, detail=str(e))

    except InvalidOrderState as e:
        raise HTTPException(status_code=409, detail=str(e))

    except PersistenceFailure as e:
        logging.error(f"Order store error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Order store unavailable")

    except Exception as e:
        db.rollback()
        logging.error(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    background_tasks.add_task(notifier.send_extension_summary, result.order)

    return ExtendResponse(
        **order_to_response(result.order, utc_now()),
        renewed_kinds=[k.value for k in result.renewed_kinds],
        unrenewed_kinds=[k.value for k in result.unrenewed_kinds],
    )


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel(
    order_id: str,
    request_body: CancelRequest,
    db: Session = Depends(get_db),
    coordinator: HoldCoordinator = Depends(get_hold_coordinator),
):
    """Cancel an active order and release its holds; cancelling twice is harmless"""
    order_uuid = parse_order_id(order_id)

    try:
        transition = await cancel_order(OrderLedger(db), coordinator, order_uuid, request_body.reason)
    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")
    except InvalidOrderState as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceFailure as e:
        logging.error(f"Order store error: {e}")
        raise HTTPException(status_code=503, detail="Order store unavailable")

    return OrderResponse(**order_to_response(transition.order, utc_now()))
