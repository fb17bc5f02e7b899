"""Dependency injection for FastAPI endpoints"""

from fastapi import Request
from proofport_gateway.infrastructure.clients.notifier import NotificationClient
from proofport_gateway.services.holds import HoldCoordinator, build_hold_coordinator


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_hold_coordinator() -> HoldCoordinator:
    """Provide hold coordinator wired to the configured reservation providers"""
    return build_hold_coordinator()


def get_notification_client() -> NotificationClient:
    """Provide notification webhook client instance"""
    return NotificationClient()
