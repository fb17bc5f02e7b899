"""Unit tests for the notification client and the expiry warning pass"""

import asyncio
import json
import httpx
import pytest
from datetime import timedelta
from proofport_gateway.infrastructure.clients.notifier import NotificationClient
from proofport_gateway.services.notifications import send_expiry_warnings

WEBHOOK_URL = "https://notify.test/events"


def recording_transport(statuses):
    """MockTransport answering with the given status codes in turn, recording request bodies"""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        status = statuses[min(len(calls), len(statuses)) - 1]
        return httpx.Response(status, json={})

    return httpx.MockTransport(handler), calls


async def test_send_event_retries_then_succeeds():
    """Test 5xx responses are retried until the webhook accepts the event"""
    transport, calls = recording_transport([503, 502, 200])
    client = NotificationClient(WEBHOOK_URL, max_retries=5, backoff_base=0, transport=transport)

    await client.send_event({"event": "ORDER_SUMMARY"})

    assert len(calls) == 3


async def test_send_event_gives_up_after_max_retries():
    transport, calls = recording_transport([500])
    client = NotificationClient(WEBHOOK_URL, max_retries=3, backoff_base=0, transport=transport)

    with pytest.raises(httpx.HTTPStatusError):
        await client.send_event({"event": "ORDER_SUMMARY"})

    assert len(calls) == 3


async def test_send_event_backoff_doubles_from_base(monkeypatch):
    """Test the delay between attempts is backoff_base doubled per failed attempt"""
    delays = []

    async def record_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", record_sleep)
    transport, calls = recording_transport([500])
    client = NotificationClient(WEBHOOK_URL, max_retries=4, backoff_base=0.5, transport=transport)

    with pytest.raises(httpx.HTTPStatusError):
        await client.send_event({"event": "ORDER_SUMMARY"})

    assert len(calls) == 4
    assert delays == [0.5, 1.0, 2.0]


async def test_order_summary_payload(make_order):
    """Test summary carries the event name, confirmations and expiry"""
    transport, calls = recording_transport([200])
    client = NotificationClient(WEBHOOK_URL, max_retries=1, backoff_base=0, transport=transport)
    order = make_order()

    assert await client.send_order_summary(order) is True

    body = json.loads(calls[0].content)
    assert body["event"] == "ORDER_SUMMARY"
    assert body["order_id"] == str(order.id)
    assert body["confirmations"]["flight"] == "FLIGHT-SEED"
    assert body["expires_at"] == order.expires_at.isoformat()


async def test_dispatch_failure_reported_not_raised(make_order):
    transport, _ = recording_transport([500])
    client = NotificationClient(WEBHOOK_URL, max_retries=2, backoff_base=0, transport=transport)

    assert await client.send_expiry_warning(make_order()) is False


async def test_expiry_warnings_sent_once(ledger, notifier, make_order, now):
    """Test only orders inside the warning window are warned, and only once"""
    soon = make_order(ttl_days=1)
    make_order(ttl_days=10)

    sent = await send_expiry_warnings(ledger, notifier, now=now, within=timedelta(hours=36))
    assert sent == 1
    assert notifier.events == [("EXPIRY_WARNING", soon.id)]
    assert ledger.get(soon.id).expiry_warning_sent_at == now

    again = await send_expiry_warnings(ledger, notifier, now=now, within=timedelta(hours=36))
    assert again == 0
    assert len(notifier.events) == 1


async def test_expiry_warning_rearmed_by_extension(ledger, notifier, make_order, now):
    order = make_order(ttl_days=1)
    await send_expiry_warnings(ledger, notifier, now=now, within=timedelta(hours=36))

    ledger.extend(order.id, 1, now=now)
    later = now + timedelta(days=1)

    assert await send_expiry_warnings(ledger, notifier, now=later, within=timedelta(hours=36)) == 1
    assert len(notifier.events) == 2


async def test_expiry_warning_skips_lapsed_and_undelivered(ledger, notifier, make_order, now):
    """Test lapsed orders are left to the sweep and failed deliveries stay unmarked"""
    lapsed = make_order(ttl_days=1, created_at=now - timedelta(days=2))
    pending = make_order(ttl_days=1)
    notifier.deliver = False

    sent = await send_expiry_warnings(ledger, notifier, now=now, within=timedelta(hours=36))

    assert sent == 0
    assert notifier.events == [("EXPIRY_WARNING", pending.id)]
    assert ledger.get(pending.id).expiry_warning_sent_at is None
    assert ledger.get(lapsed.id).expiry_warning_sent_at is None
