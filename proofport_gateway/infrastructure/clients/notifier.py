"""Notification webhook client with exponential backoff retry logic"""

import httpx
import asyncio
import logging
from typing import Dict, Any
from proofport_gateway.config import settings
from proofport_gateway.domain.models import Order
from proofport_gateway.infrastructure.observability.metrics import (
    notification_latency_histogram,
    notification_failure_counter,
)

logger = logging.getLogger(__name__)


def order_payload(order: Order) -> Dict[str, Any]:
    return {
        "order_id": str(order.id),
        "owner": order.owner,
        "bundle": sorted(k.value for k in order.bundle),
        "confirmations": {k.value: v for k, v in order.confirmations.items()},
        "expires_at": order.expires_at.isoformat(),
        "trip": order.metadata,
    }


class NotificationClient:
    """Client for handing order notifications to the delivery service"""

    def __init__(
        self,
        webhook_url: str | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.max_retries = max_retries if max_retries is not None else settings.notification_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.notification_backoff_base
        self.transport = transport

    async def send_event(self, payload: Dict[str, Any]) -> None:
        """
        Deliver one notification event with retry logic.

        Retry strategy:
        - Up to max_retries attempts in total; the last error propagates
        - Sleeps backoff_base * 2**(attempt - 1) seconds between attempts
        - Retries on 4xx/5xx responses and network failures
        - Tracks latency histogram and failure counter

        Args:
            payload: Event data to send to the delivery service
        """
        attempt = 0
        async with httpx.AsyncClient(transport=self.transport) as client:
            while attempt < self.max_retries:
                try:
                    with notification_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=payload,
                            timeout=10.0,
                        )
                        response.raise_for_status()
                        return  # Success

                except (httpx.HTTPStatusError, httpx.RequestError):
                    attempt += 1
                    notification_failure_counter.inc()

                    if attempt >= self.max_retries:
                        # Out of attempts
                        raise

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)

    async def _dispatch(self, event: str, order: Order, **extra: Any) -> bool:
        """Fire-and-forget wrapper: delivery failures are logged and reported as False"""
        payload = {"event": event, **order_payload(order), **extra}
        try:
            await self.send_event(payload)
        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            logger.error(
                f"Notification delivery failed: {e}",
                extra={"event": event, "order_id": str(order.id)},
            )
            return False
        return True

    async def send_order_summary(self, order: Order) -> bool:
        return await self._dispatch("ORDER_SUMMARY", order)

    async def send_extension_summary(self, order: Order) -> bool:
        return await self._dispatch("EXTENSION_SUMMARY", order, extension_count=order.extension_count)

    async def send_expiry_warning(self, order: Order) -> bool:
        return await self._dispatch("EXPIRY_WARNING", order)
