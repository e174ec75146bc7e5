"""
Shared FastAPI dependencies for application-scoped objects.

The connection registry and the Web Push provider are created once in the
application lifespan and stored on ``app.state``; these dependencies hand
them to route handlers so tests can swap them via ``dependency_overrides``.
"""

from typing import Optional

from fastapi import Depends
from fastapi.requests import HTTPConnection
from sqlalchemy.orm import Session

from nextlevel.src.config.settings import AppSettings
from nextlevel.src.db.database import get_db
from nextlevel.src.services.notification_dispatcher import NotificationDispatcher
from nextlevel.src.services.push_provider import WebPushProvider
from nextlevel.src.utils.connection_registry import ConnectionRegistry


def build_push_provider(settings: AppSettings) -> Optional[WebPushProvider]:
    """Web Push provider for the configured VAPID keys, or None when push is off."""
    if not settings.vapid_configured:
        return None
    return WebPushProvider(
        vapid_private_key=settings.vapid_private_key,
        vapid_claims=settings.vapid_claims,
        ttl=settings.push_ttl_seconds,
        urgency=settings.push_urgency,
    )


def get_connection_registry(connection: HTTPConnection) -> ConnectionRegistry:
    return connection.app.state.connection_registry


def get_push_provider(connection: HTTPConnection) -> Optional[WebPushProvider]:
    return getattr(connection.app.state, "push_provider", None)


def get_notification_dispatcher(
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_connection_registry),
    push_provider: Optional[WebPushProvider] = Depends(get_push_provider),
) -> NotificationDispatcher:
    """Create a NotificationDispatcher bound to the request's DB session."""
    return NotificationDispatcher(db=db, registry=registry, push_provider=push_provider)
