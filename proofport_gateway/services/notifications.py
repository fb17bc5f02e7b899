"""Expiry warning pass over orders that are about to lapse"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from proofport_gateway.config import settings
from proofport_gateway.infrastructure.clients.notifier import NotificationClient
from proofport_gateway.infrastructure.database.repositories import OrderLedger
from proofport_gateway.utils.date_utils import utc_now

logger = logging.getLogger(__name__)


async def send_expiry_warnings(
    ledger: OrderLedger,
    notifier: NotificationClient,
    now: Optional[datetime] = None,
    within: Optional[timedelta] = None,
) -> int:
    """
    Warn owners of active orders expiring within the window.

    Orders already past expiry are left to the sweep. Each order is warned
    once per validity window: extending it clears the marker. Returns the
    number of warnings delivered.
    """
    now = now or utc_now()
    if within is None:
        within = timedelta(hours=settings.expiry_warning_hours)

    sent = 0
    for order in ledger.list_expiring(within, now=now):
        if order.expires_at <= now or order.expiry_warning_sent_at is not None:
            continue
        if await notifier.send_expiry_warning(order):
            ledger.mark_expiry_warning_sent(order.id, now=now)
            sent += 1

    logger.info("Expiry warnings dispatched", extra={"sent": sent})
    return sent
