"""Hold coordinator - obtains, renews and releases provider holds for a bundle"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from proofport_gateway.config import settings
from proofport_gateway.domain.exceptions import ProviderError
from proofport_gateway.domain.models import BundleKind, HoldAcquisition, ValidityWindow
from proofport_gateway.infrastructure.clients.providers import build_providers
from proofport_gateway.infrastructure.observability.metrics import provider_failure_counter

logger = logging.getLogger(__name__)

# (kind, confirmation id or None, failure message or None)
_Outcome = Tuple[BundleKind, Optional[str], Optional[str]]


class HoldCoordinator:
    """
    Talks to one reservation provider per bundle kind.

    Provider calls for different kinds run concurrently and each is bounded
    by `timeout`. A kind that errors or times out is reported as failed;
    it never aborts the other kinds and is never replaced by a made-up
    confirmation.
    """

    def __init__(self, providers: Mapping[BundleKind, Any], timeout: float | None = None):
        self.providers = dict(providers)
        self.timeout = timeout or settings.provider_timeout_seconds

    async def _request(
        self,
        kind: BundleKind,
        trip_metadata: Mapping[str, Any],
        operation: str,
        predecessor: Optional[str] = None,
    ) -> _Outcome:
        provider = self.providers.get(kind)
        if provider is None:
            return kind, None, "no provider configured"
        try:
            confirmation = await asyncio.wait_for(
                provider.request_hold(trip_metadata, predecessor=predecessor),
                timeout=self.timeout,
            )
            return kind, confirmation, None
        except asyncio.TimeoutError:
            error = f"timeout after {self.timeout}s"
        except ProviderError as e:
            error = str(e)
        except Exception as e:
            provider_failure_counter.labels(kind=kind.value, operation=operation).inc()
            logger.error(
                f"Hold {operation} raised unexpectedly: {e!r}",
                extra={"kind": kind.value, "predecessor": predecessor},
                exc_info=True,
            )
            return kind, None, f"unexpected error: {e!r}"

        provider_failure_counter.labels(kind=kind.value, operation=operation).inc()
        logger.warning(
            f"Hold {operation} failed: {error}",
            extra={"kind": kind.value, "predecessor": predecessor},
        )
        return kind, None, error

    @staticmethod
    def _collect(outcomes: Iterable[_Outcome]) -> HoldAcquisition:
        result = HoldAcquisition()
        for kind, confirmation, error in outcomes:
            if confirmation is not None:
                result.confirmations[kind] = confirmation
            else:
                result.failures[kind] = error or "unknown failure"
        return result

    async def acquire(
        self,
        bundle: Iterable[BundleKind],
        trip_metadata: Mapping[str, Any],
        hold_until: Optional[datetime] = None,
    ) -> HoldAcquisition:
        """Request a hold for every kind in the bundle; returns confirmed and failed kinds"""
        trip = dict(trip_metadata)
        if hold_until is not None:
            trip["hold_until"] = hold_until.isoformat()

        kinds = sorted(set(bundle), key=lambda k: k.value)
        outcomes = await asyncio.gather(*(self._request(kind, trip, "acquire") for kind in kinds))
        return self._collect(outcomes)

    async def extend(
        self,
        confirmations: Mapping[BundleKind, str],
        trip_metadata: Mapping[str, Any],
        new_window: ValidityWindow,
    ) -> HoldAcquisition:
        """
        Obtain successor holds covering the new window.

        Only kinds whose provider supports extension are renewed; each gets
        a fresh confirmation tagged with its predecessor. The old holds are
        left untouched for the caller to release once the successors are
        recorded. Kinds that cannot be extended appear in neither map.
        """
        trip = dict(trip_metadata)
        trip["hold_until"] = new_window.expires_at.isoformat()

        renewable = [
            (kind, confirmation)
            for kind, confirmation in sorted(confirmations.items(), key=lambda item: item[0].value)
            if getattr(self.providers.get(kind), "supports_extension", False)
        ]
        outcomes = await asyncio.gather(
            *(self._request(kind, trip, "extend", predecessor=confirmation) for kind, confirmation in renewable)
        )
        return self._collect(outcomes)

    async def _cancel(self, kind: BundleKind, confirmation: str) -> Optional[BundleKind]:
        provider = self.providers.get(kind)
        if provider is None:
            error = "no provider configured"
        else:
            try:
                await asyncio.wait_for(provider.cancel_hold(confirmation), timeout=self.timeout)
                return None
            except asyncio.TimeoutError:
                error = f"timeout after {self.timeout}s"
            except ProviderError as e:
                error = str(e)
            except Exception as e:
                provider_failure_counter.labels(kind=kind.value, operation="release").inc()
                logger.error(
                    f"Hold release raised unexpectedly: {e!r}",
                    extra={"kind": kind.value, "confirmation_id": confirmation},
                    exc_info=True,
                )
                return kind

        provider_failure_counter.labels(kind=kind.value, operation="release").inc()
        logger.warning(
            f"Hold release failed: {error}",
            extra={"kind": kind.value, "confirmation_id": confirmation},
        )
        return kind

    async def release(self, confirmations: Mapping[BundleKind, str]) -> List[BundleKind]:
        """Best-effort cancellation of every held confirmation; returns the kinds that failed"""
        if not confirmations:
            return []
        results = await asyncio.gather(
            *(self._cancel(kind, confirmation) for kind, confirmation in confirmations.items())
        )
        return sorted((kind for kind in results if kind is not None), key=lambda k: k.value)


def build_hold_coordinator(config=None) -> HoldCoordinator:
    config = config or settings
    return HoldCoordinator(build_providers(config), timeout=config.provider_timeout_seconds)

