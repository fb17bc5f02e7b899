"""Unit tests for the expiry sweep"""

from datetime import timedelta
from proofport_gateway.domain.exceptions import PersistenceFailure
from proofport_gateway.domain.models import BundleKind, OrderStatus
from proofport_gateway.services.sweeper import EXPIRED_REASON, run_expiry_sweep


class FlakyLedger:
    """Ledger wrapper whose cancel fails for selected orders"""

    def __init__(self, ledger, failing_ids):
        self._ledger = ledger
        self.failing_ids = set(failing_ids)

    def __getattr__(self, name):
        return getattr(self._ledger, name)

    def cancel(self, order_id, reason, now=None, expired_before=None):
        if order_id in self.failing_ids:
            raise PersistenceFailure("database unavailable")
        return self._ledger.cancel(order_id, reason, now=now, expired_before=expired_before)


class ExtendingLedger:
    """Ledger wrapper that extends every candidate right after the sweep snapshots them"""

    def __init__(self, ledger, added_days):
        self._ledger = ledger
        self.added_days = added_days

    def __getattr__(self, name):
        return getattr(self._ledger, name)

    def list_past_expiry(self, as_of):
        candidates = self._ledger.list_past_expiry(as_of)
        for order in candidates:
            self._ledger.extend(order.id, self.added_days, now=as_of)
        return candidates


async def test_sweep_cancels_past_expiry_orders(ledger, coordinator, providers, make_order, now):
    """Test lapsed orders are cancelled with reason 'expired' and their holds released"""
    lapsed = make_order(ttl_days=1)
    current = make_order(ttl_days=10)

    report = await run_expiry_sweep(ledger, coordinator, now=now + timedelta(days=2))

    assert report.cancelled_count == 1
    assert report.failures == []
    swept = ledger.get(lapsed.id)
    assert swept.status == OrderStatus.CANCELLED
    assert swept.cancel_reason == EXPIRED_REASON
    assert providers[BundleKind.FLIGHT].cancelled == ["FLIGHT-SEED"]
    assert ledger.get(current.id).status == OrderStatus.ACTIVE


async def test_sweep_rerun_is_noop(ledger, coordinator, make_order, now):
    make_order(ttl_days=1)
    later = now + timedelta(days=2)

    assert (await run_expiry_sweep(ledger, coordinator, now=later)).cancelled_count == 1
    assert (await run_expiry_sweep(ledger, coordinator, now=later)).cancelled_count == 0


async def test_sweep_cancels_even_when_release_fails(ledger, coordinator, providers, make_order, now):
    """Test a provider refusing to release does not keep the order active"""
    order = make_order(ttl_days=1)
    providers[BundleKind.FLIGHT].cancel_fails = True

    report = await run_expiry_sweep(ledger, coordinator, now=now + timedelta(days=2))

    assert report.cancelled_count == 1
    assert ledger.get(order.id).status == OrderStatus.CANCELLED
    assert providers[BundleKind.LODGING].cancelled == ["LODGING-SEED"]


async def test_sweep_nothing_due(ledger, coordinator, make_order, now):
    make_order(ttl_days=7)

    report = await run_expiry_sweep(ledger, coordinator, now=now)

    assert report.cancelled_count == 0
    assert report.failures == []


async def test_sweep_collects_per_order_failures(ledger, coordinator, providers, make_order, now):
    """Test one failing order is reported while the rest of the sweep proceeds"""
    broken = make_order(ttl_days=1)
    healthy = make_order(ttl_days=1)
    flaky = FlakyLedger(ledger, {broken.id})

    report = await run_expiry_sweep(flaky, coordinator, now=now + timedelta(days=2))

    assert report.cancelled_count == 1
    assert [f.order_id for f in report.failures] == [broken.id]
    assert "database unavailable" in report.failures[0].error
    assert ledger.get(healthy.id).status == OrderStatus.CANCELLED
    assert ledger.get(broken.id).status == OrderStatus.ACTIVE
    assert providers[BundleKind.FLIGHT].cancelled == ["FLIGHT-SEED"]


async def test_sweep_keeps_holds_of_order_extended_after_snapshot(ledger, coordinator, providers, make_order, now):
    """Test an order extended between snapshot and cancel stays active with every hold intact"""
    order = make_order(bundle=(BundleKind.FLIGHT, BundleKind.INSURANCE), ttl_days=1)
    racing = ExtendingLedger(ledger, added_days=7)

    report = await run_expiry_sweep(racing, coordinator, now=now + timedelta(days=2))

    assert report.cancelled_count == 0
    assert report.failures == []
    current = ledger.get(order.id)
    assert current.status == OrderStatus.ACTIVE
    assert current.confirmations == {BundleKind.FLIGHT: "FLIGHT-SEED", BundleKind.INSURANCE: "INSURANCE-SEED"}
    assert providers[BundleKind.FLIGHT].cancelled == []
    assert providers[BundleKind.INSURANCE].cancelled == []
