"""Unit tests for the background sweep and warning jobs"""

from datetime import datetime, timedelta, timezone
from sqlalchemy.orm import sessionmaker
from proofport_gateway.domain.models import OrderStatus
from proofport_gateway.workers import scheduler


def test_scheduler_registers_interval_jobs():
    jobs = scheduler.get_scheduler().get_jobs()

    assert {job.func for job in jobs} == {scheduler.sweep_expired_orders, scheduler.warn_expiring_orders}


async def test_sweep_job_uses_own_session(monkeypatch, db, ledger, coordinator, make_order):
    """Test the scheduled sweep opens a session, cancels lapsed orders and closes it"""
    lapsed = make_order(created_at=datetime.now(timezone.utc) - timedelta(days=5), ttl_days=1)
    monkeypatch.setattr(scheduler, "SessionLocal", sessionmaker(bind=db.get_bind()))
    monkeypatch.setattr(scheduler, "build_hold_coordinator", lambda: coordinator)

    await scheduler.sweep_expired_orders()

    assert ledger.get(lapsed.id).status == OrderStatus.CANCELLED


async def test_warning_job_delivers_through_notifier(monkeypatch, db, ledger, notifier, make_order):
    order = make_order(created_at=datetime.now(timezone.utc) - timedelta(hours=12), ttl_days=1)
    monkeypatch.setattr(scheduler, "SessionLocal", sessionmaker(bind=db.get_bind()))
    monkeypatch.setattr(scheduler, "NotificationClient", lambda: notifier)

    await scheduler.warn_expiring_orders()

    assert notifier.events == [("EXPIRY_WARNING", order.id)]
    assert ledger.get(order.id).expiry_warning_sent_at is not None
