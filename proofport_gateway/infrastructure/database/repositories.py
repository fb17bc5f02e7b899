"""Order ledger - system of record for travel orders and their status transitions"""

import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from proofport_gateway.domain.exceptions import (
    DomainException,
    InvalidOrderState,
    OrderNotFound,
    PersistenceFailure,
    RiskBlocked,
)
from proofport_gateway.domain.lifecycle import (
    TransitionDecision,
    can_extend,
    decide_transition,
    extended_expiry,
    validate_new_order,
)
from proofport_gateway.domain.models import (
    BundleKind,
    Order,
    OrderStatus,
    Renewal,
    RiskAssessment,
    Transition,
    ValidityWindow,
)
from proofport_gateway.infrastructure.database.models import TravelOrder
from proofport_gateway.utils.date_utils import ensure_utc, utc_now


def _to_domain(row: TravelOrder) -> Order:
    return Order(
        id=row.id,
        owner=row.owner,
        bundle=frozenset(BundleKind(k) for k in row.bundle),
        confirmations={BundleKind(k): v for k, v in (row.confirmations or {}).items()},
        window=ValidityWindow(
            created_at=ensure_utc(row.created_at),
            expires_at=ensure_utc(row.expires_at),
        ),
        status=OrderStatus(row.status),
        risk=RiskAssessment.from_dict(row.risk),
        metadata=dict(row.trip_metadata or {}),
        cancel_reason=row.cancel_reason,
        extension_count=row.extension_count or 0,
        expiry_warning_sent_at=ensure_utc(row.expiry_warning_sent_at) if row.expiry_warning_sent_at else None,
        updated_at=ensure_utc(row.updated_at) if row.updated_at else None,
    )


def _confirmations_json(confirmations: Mapping[BundleKind, str]) -> Dict[str, str]:
    return {BundleKind(k).value: v for k, v in confirmations.items()}


class OrderLedger:
    """
    Owns order records and every status change applied to them.

    Each mutating call runs in its own transaction: the order row is
    selected FOR UPDATE, the transition is decided against the locked
    state, and the result is committed before returning. Concurrent
    operations on one order therefore serialize, while different orders
    never contend. Store errors roll back and surface as PersistenceFailure.
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except DomainException:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceFailure(f"Order store error: {e}") from e

    def _lock(self, order_id: uuid.UUID) -> TravelOrder:
        row = self.db.execute(
            select(TravelOrder)
            .where(TravelOrder.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise OrderNotFound(order_id)
        return row

    def _query(self, stmt) -> List[Order]:
        try:
            return [_to_domain(row) for row in self.db.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceFailure(f"Order store error: {e}") from e

    def create(
        self,
        owner: str,
        bundle: Iterable[BundleKind],
        risk: RiskAssessment,
        window: ValidityWindow,
        confirmations: Mapping[BundleKind, str],
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Order:
        """Persist a new active order; written in full or not at all"""
        if risk.block:
            raise RiskBlocked(risk)

        bundle = frozenset(BundleKind(k) for k in bundle)
        window = ValidityWindow(ensure_utc(window.created_at), ensure_utc(window.expires_at))
        validate_new_order(bundle, confirmations, window)

        row = TravelOrder(
            id=uuid.uuid4(),
            owner=owner,
            bundle=sorted(k.value for k in bundle),
            confirmations=_confirmations_json(confirmations),
            status=OrderStatus.ACTIVE.value,
            created_at=window.created_at,
            expires_at=window.expires_at,
            risk=risk.to_dict(),
            trip_metadata=dict(metadata or {}),
            extension_count=0,
            updated_at=window.created_at,
        )
        with self._transaction():
            self.db.add(row)
            self.db.flush()
            order = _to_domain(row)
        return order

    def get(self, order_id: uuid.UUID) -> Order:
        try:
            row = self.db.get(TravelOrder, order_id, populate_existing=True)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceFailure(f"Order store error: {e}") from e
        if row is None:
            raise OrderNotFound(order_id)
        return _to_domain(row)

    def extend(
        self,
        order_id: uuid.UUID,
        added_days: int,
        now: Optional[datetime] = None,
        confirmations: Optional[Mapping[BundleKind, str]] = None,
    ) -> Renewal:
        """
        Push the validity window forward by added_days.

        The new expiry is counted from the later of now and the current
        expiry. Replacement confirmations, when given, are merged over the
        existing ones; the confirmations they displace are read under the
        row lock and returned as `superseded`. Clears any expiry warning so
        a new one can be sent.
        """
        now = ensure_utc(now or utc_now())
        with self._transaction():
            row = self._lock(order_id)
            status = OrderStatus(row.status)
            if not can_extend(status):
                raise InvalidOrderState(order_id, status, "extend")

            row.expires_at = extended_expiry(ensure_utc(row.expires_at), now, added_days)
            superseded: Dict[BundleKind, str] = {}
            if confirmations:
                current = dict(row.confirmations or {})
                bundle = set(row.bundle)
                replacements = {k: v for k, v in _confirmations_json(confirmations).items() if k in bundle}
                for kind, confirmation in replacements.items():
                    previous = current.get(kind)
                    if previous and previous != confirmation:
                        superseded[BundleKind(kind)] = previous
                current.update(replacements)
                row.confirmations = current
            row.extension_count = (row.extension_count or 0) + 1
            row.expiry_warning_sent_at = None
            row.updated_at = now
            self.db.flush()
            renewal = Renewal(order=_to_domain(row), superseded=superseded)
        return renewal

    def _transition(
        self,
        order_id: uuid.UUID,
        target: OrderStatus,
        operation: str,
        now: Optional[datetime],
        reason: Optional[str] = None,
        expired_before: Optional[datetime] = None,
    ) -> Transition:
        now = ensure_utc(now or utc_now())
        with self._transaction():
            row = self._lock(order_id)
            status = OrderStatus(row.status)
            decision = decide_transition(status, target)

            if decision is TransitionDecision.INVALID:
                raise InvalidOrderState(order_id, status, operation)

            applied = decision is TransitionDecision.APPLY
            if applied and expired_before is not None:
                # Re-check under the lock: an extension may have landed since the caller's snapshot
                applied = ensure_utc(row.expires_at) < ensure_utc(expired_before)

            if applied:
                row.status = target.value
                if reason is not None:
                    row.cancel_reason = reason
                row.updated_at = now
                self.db.flush()
            transition = Transition(order=_to_domain(row), applied=applied)
        return transition

    def expire(self, order_id: uuid.UUID, now: Optional[datetime] = None) -> Transition:
        """active -> expired; no-op when already expired, InvalidOrderState when cancelled"""
        return self._transition(order_id, OrderStatus.EXPIRED, "expire", now)

    def cancel(
        self,
        order_id: uuid.UUID,
        reason: str,
        now: Optional[datetime] = None,
        expired_before: Optional[datetime] = None,
    ) -> Transition:
        """
        active -> cancelled; no-op when already cancelled, InvalidOrderState when expired.

        With expired_before set the cancel only applies if the order's
        expiry, read under the row lock, is still earlier than that instant.
        """
        return self._transition(order_id, OrderStatus.CANCELLED, "cancel", now, reason, expired_before)

    def mark_expiry_warning_sent(self, order_id: uuid.UUID, now: Optional[datetime] = None) -> Order:
        now = ensure_utc(now or utc_now())
        with self._transaction():
            row = self._lock(order_id)
            if OrderStatus(row.status) is OrderStatus.ACTIVE:
                row.expiry_warning_sent_at = now
                self.db.flush()
            order = _to_domain(row)
        return order

    def list_active(self) -> List[Order]:
        return self._query(
            select(TravelOrder)
            .where(TravelOrder.status == OrderStatus.ACTIVE.value)
            .order_by(TravelOrder.expires_at)
        )

    def list_expiring(self, within: timedelta, now: Optional[datetime] = None) -> List[Order]:
        """Active orders whose expiry is at most `within` away from now"""
        now = ensure_utc(now or utc_now())
        return self._query(
            select(TravelOrder)
            .where(TravelOrder.status == OrderStatus.ACTIVE.value)
            .where(TravelOrder.expires_at <= now + within)
            .order_by(TravelOrder.expires_at)
        )

    def list_past_expiry(self, as_of: datetime) -> List[Order]:
        """Active orders whose expiry is strictly before as_of - the sweeper's candidates"""
        return self._query(
            select(TravelOrder)
            .where(TravelOrder.status == OrderStatus.ACTIVE.value)
            .where(TravelOrder.expires_at < ensure_utc(as_of))
            .order_by(TravelOrder.expires_at)
        )

    def list_by_owner(self, owner: str, limit: int = 50) -> List[Order]:
        """Most recent orders for one purchaser, any status"""
        return self._query(
            select(TravelOrder)
            .where(TravelOrder.owner == owner)
            .order_by(TravelOrder.created_at.desc())
            .limit(limit)
        )
