"""POST /v1/orders/auto-cancel - run one expiry sweep on demand"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from proofport_gateway.api.v1.schemas import SweepFailureSchema, SweepResponse
from proofport_gateway.api.dependencies import get_hold_coordinator
from proofport_gateway.domain.exceptions import PersistenceFailure
from proofport_gateway.infrastructure.database.session import get_db
from proofport_gateway.infrastructure.database.repositories import OrderLedger
from proofport_gateway.services.holds import HoldCoordinator
from proofport_gateway.services.sweeper import run_expiry_sweep

router = APIRouter()


@router.post("/orders/auto-cancel", response_model=SweepResponse)
async def auto_cancel(
    db: Session = Depends(get_db),
    coordinator: HoldCoordinator = Depends(get_hold_coordinator),
):
    """
    Cancel every active order past its expiry, releasing provider holds.

    Intended for an external cron; safe to call repeatedly.
    """
    try:
        report = await run_expiry_sweep(OrderLedger(db), coordinator)
    except PersistenceFailure as e:
        logging.error(f"Expiry sweep aborted: {e}")
        raise HTTPException(status_code=503, detail="Order store unavailable")

    return SweepResponse(
        cancelled_count=report.cancelled_count,
        failures=[SweepFailureSchema(order_id=str(f.order_id), error=f.error) for f in report.failures],
    )
