"""Pytest fixtures for testing"""

import asyncio
import pytest
from datetime import date, datetime, timedelta, timezone
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from proofport_gateway.api.main import create_app
from proofport_gateway.api.dependencies import get_hold_coordinator, get_notification_client
from proofport_gateway.domain.exceptions import ProviderError
from proofport_gateway.domain.models import (
    BundleKind,
    DeviceSignal,
    RiskAssessment,
    RiskLevel,
    RiskSignals,
    ValidityWindow,
)
from proofport_gateway.infrastructure.database.models import Base
from proofport_gateway.infrastructure.database.repositories import OrderLedger
from proofport_gateway.infrastructure.database.session import get_db
from proofport_gateway.services.holds import HoldCoordinator


# Test database: one shared in-memory connection
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeProvider:
    """In-memory reservation provider that records every call"""

    def __init__(self, kind: BundleKind, fail=False, delay=0.0, supports_extension=True, cancel_fails=False):
        self.kind = kind
        self.fail = fail
        self.delay = delay
        self.supports_extension = supports_extension
        self.cancel_fails = cancel_fails
        self.requests = []
        self.cancelled = []

    async def request_hold(self, trip_metadata, predecessor=None):
        self.requests.append((dict(trip_metadata), predecessor))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ProviderError(self.kind, "provider unavailable")
        return f"{self.kind.value.upper()}-{len(self.requests):04d}"

    async def cancel_hold(self, confirmation_id):
        if self.cancel_fails:
            raise ProviderError(self.kind, "cancel rejected")
        self.cancelled.append(confirmation_id)


class FakeNotifier:
    """Notification client double that records events instead of posting them"""

    def __init__(self, deliver=True):
        self.deliver = deliver
        self.events = []

    async def _record(self, event, order):
        self.events.append((event, order.id))
        return self.deliver

    async def send_order_summary(self, order):
        return await self._record("ORDER_SUMMARY", order)

    async def send_extension_summary(self, order):
        return await self._record("EXTENSION_SUMMARY", order)

    async def send_expiry_warning(self, order):
        return await self._record("EXPIRY_WARNING", order)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def ledger(db: Session) -> OrderLedger:
    return OrderLedger(db)


@pytest.fixture
def fake_provider():
    """The FakeProvider class, for tests that build their own providers"""
    return FakeProvider


@pytest.fixture
def providers() -> dict:
    return {
        BundleKind.FLIGHT: FakeProvider(BundleKind.FLIGHT),
        BundleKind.LODGING: FakeProvider(BundleKind.LODGING),
        BundleKind.INSURANCE: FakeProvider(BundleKind.INSURANCE, supports_extension=False),
    }


@pytest.fixture
def coordinator(providers: dict) -> HoldCoordinator:
    return HoldCoordinator(providers, timeout=1.0)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def client(db: Session, coordinator: HoldCoordinator, notifier: FakeNotifier) -> TestClient:
    """Create FastAPI test client with test database and fake collaborators"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_hold_coordinator] = lambda: coordinator
    app.dependency_overrides[get_notification_client] = lambda: notifier
    return TestClient(app)


@pytest.fixture
def low_risk() -> RiskAssessment:
    return RiskAssessment(score=0.0, level=RiskLevel.LOW, reasons=[], block=False, device_id="visitor-1")


@pytest.fixture
def clean_signals(now: datetime) -> RiskSignals:
    """Purchaser signals that fire no risk checks"""
    return RiskSignals(
        email="jane.doe@example.com",
        amount=27.0,
        device=DeviceSignal(visitor_id="visitor-1", confidence=0.95),
        country="US",
        ip="203.0.113.5",
        trip_metadata={"origin": "LHR", "destination": "JFK", "departure_date": (now.date() + timedelta(days=30)).isoformat()},
    )


@pytest.fixture
def make_order(ledger: OrderLedger, low_risk: RiskAssessment, now: datetime):
    """Factory writing an active order straight into the ledger"""

    def _make(
        owner="user-1",
        bundle=(BundleKind.FLIGHT, BundleKind.LODGING),
        confirmations=None,
        created_at=None,
        ttl_days=7,
    ):
        created_at = created_at or now
        if confirmations is None:
            confirmations = {kind: f"{kind.value.upper()}-SEED" for kind in bundle}
        return ledger.create(
            owner=owner,
            bundle=bundle,
            risk=low_risk,
            window=ValidityWindow(created_at, created_at + timedelta(days=ttl_days)),
            confirmations=confirmations,
            metadata={"origin": "LHR", "destination": "JFK", "departure_date": "2026-04-01"},
        )

    return _make


@pytest.fixture
def order_payload() -> dict:
    """Low-risk purchase request body for POST /v1/orders"""
    return {
        "owner": "user-42",
        "bundle": ["flight", "hotel"],
        "trip": {
            "origin": "LHR",
            "destination": "JFK",
            "departure_date": (date.today() + timedelta(days=30)).isoformat(),
            "passengers": 1,
            "visa_type": "tourist",
        },
        "signals": {
            "email": "jane.doe@example.com",
            "amount": 27.0,
            "country": "US",
            "ip": "203.0.113.5",
            "device": {"visitor_id": "visitor-1", "confidence": 0.95},
        },
        "ttl_days": 7,
    }
