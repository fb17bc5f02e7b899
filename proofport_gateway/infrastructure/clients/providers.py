"""Reservation provider HTTP clients for flight, lodging and insurance holds"""

import httpx
from typing import Any, Dict, Mapping, Optional
from proofport_gateway.domain.models import BundleKind
from proofport_gateway.domain.exceptions import ProviderError
from proofport_gateway.config import settings
from proofport_gateway.infrastructure.observability.metrics import provider_latency_histogram

# Cancelling a hold the provider no longer knows about is not a failure
ALREADY_VOID_STATUSES = {404, 410}


class HttpReservationProvider:
    """
    Stateless client for one reservation provider.

    Holds are requested with POST {base_url}/holds and voided with
    POST {base_url}/holds/{confirmation_id}/cancel. Credentials are plain
    configuration passed in at construction.
    """

    def __init__(
        self,
        kind: BundleKind,
        base_url: str,
        api_key: str = "",
        supports_extension: bool = True,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.kind = kind
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.supports_extension = supports_extension
        self.timeout = timeout or settings.provider_timeout_seconds
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, headers=self._headers(), transport=self.transport)

    async def request_hold(self, trip_metadata: Mapping[str, Any], predecessor: Optional[str] = None) -> str:
        """
        Place a hold and return the provider's confirmation identifier.

        `predecessor` tags the new hold as the successor of an existing
        confirmation when extending an order.

        Raises:
            ProviderError: On timeout, HTTP errors, or invalid response
        """
        payload: Dict[str, Any] = {"kind": self.kind.value, "trip": dict(trip_metadata)}
        if predecessor:
            payload["predecessor"] = predecessor

        async with self._client() as client:
            try:
                with provider_latency_histogram.labels(kind=self.kind.value).time():
                    response = await client.post(f"{self.base_url}/holds", json=payload)
                response.raise_for_status()
                confirmation_id = response.json()["confirmation_id"]
                if not isinstance(confirmation_id, str) or not confirmation_id:
                    raise ValueError("empty confirmation_id")
                return confirmation_id

            except httpx.TimeoutException as e:
                raise ProviderError(self.kind, f"timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise ProviderError(self.kind, f"HTTP {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise ProviderError(self.kind, f"request failed: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise ProviderError(self.kind, f"invalid hold response: {e}") from e

    async def cancel_hold(self, confirmation_id: str) -> None:
        """
        Void a hold. A hold the provider reports as unknown or gone counts as cancelled.

        Raises:
            ProviderError: On timeout or any other HTTP/network failure
        """
        async with self._client() as client:
            try:
                response = await client.post(f"{self.base_url}/holds/{confirmation_id}/cancel")
                if response.status_code in ALREADY_VOID_STATUSES:
                    return
                response.raise_for_status()

            except httpx.TimeoutException as e:
                raise ProviderError(self.kind, f"timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise ProviderError(self.kind, f"HTTP {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise ProviderError(self.kind, f"request failed: {e}") from e


def build_providers(config=None) -> Dict[BundleKind, HttpReservationProvider]:
    """One provider per bundle kind, configured from settings"""
    config = config or settings
    timeout = config.provider_timeout_seconds
    return {
        BundleKind.FLIGHT: HttpReservationProvider(
            BundleKind.FLIGHT,
            config.flight_provider_url,
            config.flight_provider_api_key,
            supports_extension=True,
            timeout=timeout,
        ),
        BundleKind.LODGING: HttpReservationProvider(
            BundleKind.LODGING,
            config.lodging_provider_url,
            config.lodging_provider_api_key,
            supports_extension=True,
            timeout=timeout,
        ),
        # Insurance certificates are issued for the trip, not held
        BundleKind.INSURANCE: HttpReservationProvider(
            BundleKind.INSURANCE,
            config.insurance_provider_url,
            config.insurance_provider_api_key,
            supports_extension=False,
            timeout=timeout,
        ),
    }
