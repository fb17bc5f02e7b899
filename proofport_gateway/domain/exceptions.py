"""Domain-specific exceptions"""

from typing import Iterable


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class RiskBlocked(DomainException):
    """Risk assessment blocked the purchase; no order is created"""

    def __init__(self, assessment):
        self.assessment = assessment
        self.reasons = list(assessment.reasons)
        super().__init__(f"Purchase blocked by risk gate (score={assessment.score})")


class ProviderError(DomainException):
    """A single reservation provider call failed or timed out"""

    def __init__(self, kind: str, message: str):
        self.kind = kind
        super().__init__(f"{kind} provider error: {message}")


class ProviderFailure(DomainException):
    """Holds could not be acquired for the bundle; no order is created"""

    def __init__(self, failed_kinds: Iterable):
        self.failed_kinds = sorted(getattr(k, "value", k) for k in failed_kinds)
        super().__init__(f"Reservation providers failed for: {', '.join(self.failed_kinds)}")


class OrderNotFound(DomainException):
    """Operation referenced an unknown order id"""

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class InvalidOrderState(DomainException):
    """Operation is not legal for the order's current status"""

    def __init__(self, order_id, status, operation: str):
        self.order_id = order_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} order {order_id} in status {status}")


class InvalidOrderData(DomainException):
    """Order fields violate a ledger invariant"""

    pass


class PersistenceFailure(DomainException):
    """Order store is unreachable or rejected the write"""

    pass
