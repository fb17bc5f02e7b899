"""Expiry sweep - cancels active orders whose validity window has passed"""

import logging
from datetime import datetime
from typing import Optional

from proofport_gateway.domain.exceptions import DomainException
from proofport_gateway.domain.models import SweepFailure, SweepReport
from proofport_gateway.infrastructure.database.repositories import OrderLedger
from proofport_gateway.infrastructure.observability.metrics import sweep_cancelled_counter, sweep_failure_counter
from proofport_gateway.services.holds import HoldCoordinator
from proofport_gateway.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

EXPIRED_REASON = "expired"


async def run_expiry_sweep(
    ledger: OrderLedger,
    coordinator: HoldCoordinator,
    now: Optional[datetime] = None,
) -> SweepReport:
    """
    Run one sweep over orders past their expiry.

    For every candidate the order is cancelled first; the cancel re-checks
    the expiry under the row lock, so an order extended after the candidate
    snapshot stays active, is not counted, and keeps its holds. Only when
    the cancel applies are the holds it read under the lock released,
    best-effort: a release failure is logged and never undoes the cancel.
    Per-order failures are collected in the report; a rerun picks up the
    same candidates again.
    """
    now = now or utc_now()
    report = SweepReport()

    candidates = ledger.list_past_expiry(now)
    logger.info("Expiry sweep started", extra={"candidates": len(candidates), "as_of": now.isoformat()})

    for order in candidates:
        try:
            transition = ledger.cancel(order.id, EXPIRED_REASON, now=now, expired_before=now)
            if not transition.applied:
                logger.info("Order no longer past expiry, skipped", extra={"order_id": str(order.id)})
                continue

            report.cancelled_count += 1
            sweep_cancelled_counter.inc()

            failed_kinds = await coordinator.release(transition.order.confirmations)
            if failed_kinds:
                logger.warning(
                    "Expired order holds not fully released",
                    extra={"order_id": str(order.id), "failed_kinds": [k.value for k in failed_kinds]},
                )

        except DomainException as e:
            sweep_failure_counter.inc()
            report.failures.append(SweepFailure(order_id=order.id, error=str(e)))
            logger.error(f"Expiry sweep failed for order: {e}", extra={"order_id": str(order.id)})

    logger.info(
        "Expiry sweep completed",
        extra={"cancelled_count": report.cancelled_count, "failure_count": len(report.failures)},
    )
    return report
