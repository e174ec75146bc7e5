"""
Service layer for business logic.

This module exports the notification services for use in API endpoints.
"""

from nextlevel.src.services.exceptions import (
    ServiceError,
    NotFoundError,
    ValidationError,
    RecipientNotFoundError,
    NotificationPersistenceError,
)
from nextlevel.src.services.notification_service import NotificationService
from nextlevel.src.services.push_subscription_service import PushSubscriptionService
from nextlevel.src.services.push_provider import PushResult, PushStatus, WebPushProvider
from nextlevel.src.services.user_directory import DeliveryPreferences, UserDirectory
from nextlevel.src.services.notification_dispatcher import (
    DeliveryOutcome,
    DeliveryStatus,
    DispatchResult,
    NotificationDispatcher,
)

__all__ = [
    "ServiceError",
    "NotFoundError",
    "ValidationError",
    "RecipientNotFoundError",
    "NotificationPersistenceError",
    "NotificationService",
    "PushSubscriptionService",
    "PushResult",
    "PushStatus",
    "WebPushProvider",
    "DeliveryPreferences",
    "UserDirectory",
    "DeliveryOutcome",
    "DeliveryStatus",
    "DispatchResult",
    "NotificationDispatcher",
]
