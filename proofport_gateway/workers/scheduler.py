"""Background jobs: the periodic expiry sweep and expiry warnings, run on an APScheduler loop"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from proofport_gateway.config import settings
from proofport_gateway.domain.exceptions import PersistenceFailure
from proofport_gateway.infrastructure.clients.notifier import NotificationClient
from proofport_gateway.infrastructure.database.repositories import OrderLedger
from proofport_gateway.infrastructure.database.session import SessionLocal
from proofport_gateway.services.holds import build_hold_coordinator
from proofport_gateway.services.notifications import send_expiry_warnings
from proofport_gateway.services.sweeper import run_expiry_sweep

logger = logging.getLogger(__name__)


async def sweep_expired_orders() -> None:
    with SessionLocal() as db:
        try:
            report = await run_expiry_sweep(OrderLedger(db), build_hold_coordinator())
        except PersistenceFailure as e:
            # Next interval retries from scratch
            logger.error(f"Expiry sweep aborted: {e}")
            return
        logger.info("Scheduled sweep finished", extra={"cancelled_count": report.cancelled_count})


async def warn_expiring_orders() -> None:
    with SessionLocal() as db:
        try:
            await send_expiry_warnings(OrderLedger(db), NotificationClient())
        except PersistenceFailure as e:
            logger.error(f"Expiry warning pass aborted: {e}")


def get_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    scheduler.add_job(sweep_expired_orders, "interval", minutes=settings.sweep_interval_minutes)
    scheduler.add_job(warn_expiring_orders, "interval", minutes=settings.warning_interval_minutes)
    return scheduler
