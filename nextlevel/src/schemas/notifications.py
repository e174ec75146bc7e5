"""
Pydantic schemas for notification API request/response validation.

Provides data validation and serialization for:
- Notification history (list, detail, unread count, stats)
- Coach-created notifications and their delivery outcome
- Push subscription management (subscribe, list, diagnostics)
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from nextlevel.src.models.notification import (
    MESSAGE_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    Notification,
    NotificationType,
)
from nextlevel.src.utils.notification_routing import compute_action, compute_route


# ============================================================================
# Notification History Schemas
# ============================================================================


class NotificationActionResponse(BaseModel):
    """Quick-action button for a notification."""

    label: str
    route: str


class NotificationResponse(BaseModel):
    """
    Response schema for a single notification.

    ``route`` and ``action`` are computed for the requesting viewer's role.
    """

    guid: str = Field(..., description="Notification GUID (ntf_xxx)")
    type: str = Field(..., description="Notification type")
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime
    route: str = Field(..., description="UI destination path for this viewer")
    action: Optional[NotificationActionResponse] = None

    @field_serializer("read_at", "created_at")
    @classmethod
    def serialize_datetime_utc(cls, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return v.isoformat() + "Z" if v else None

    @classmethod
    def from_model(cls, notification: Notification, role: Any) -> "NotificationResponse":
        data = notification.data or {}
        action = compute_action(notification.type, data, role)
        return cls(
            guid=notification.guid,
            type=notification.type,
            title=notification.title,
            message=notification.message,
            data=data,
            is_read=bool(notification.is_read),
            read_at=notification.read_at,
            created_at=notification.created_at,
            route=compute_route(notification.type, data, role),
            action=NotificationActionResponse(**action.to_dict()) if action else None,
        )


class NotificationListResponse(BaseModel):
    """Response schema for paginated notification list."""

    items: List[NotificationResponse]
    total: int = Field(..., ge=0, description="Total notifications matching filter")
    unread_count: int = Field(..., ge=0)
    limit: int
    offset: int


class UnreadCountResponse(BaseModel):
    """Response schema for unread notification count."""

    unread_count: int = Field(..., ge=0, description="Number of unread notifications")


class MarkAllReadResponse(BaseModel):
    updated_count: int = Field(..., ge=0, description="Notifications newly marked as read")


class NotificationStatsResponse(BaseModel):
    """Response schema for notification stats."""

    total_count: int = Field(..., ge=0, description="Total notifications")
    unread_count: int = Field(..., ge=0, description="Unread notifications")
    this_week_count: int = Field(..., ge=0, description="Notifications in the last 7 days")
    by_type: Dict[str, int] = Field(default_factory=dict, description="Unread notifications per type")


class NotificationRouteResponse(BaseModel):
    route: str
    action: Optional[NotificationActionResponse] = None


# ============================================================================
# Notification Creation Schemas
# ============================================================================


class NotificationCreate(BaseModel):
    """
    Schema for a coach sending a notification to one of their clients.

    Required:
        user_guid: Recipient user GUID (usr_xxx)
        type: Notification type
        title: Short title (truncated to 200 chars)
        message: Body text (truncated to 1000 chars)
    """

    user_guid: str = Field(..., description="Recipient user GUID (usr_xxx)")
    type: NotificationType
    title: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    data: Optional[Dict[str, Any]] = None

    @field_validator("title")
    @classmethod
    def truncate_title(cls, v: str) -> str:
        return v[:TITLE_MAX_LENGTH]

    @field_validator("message")
    @classmethod
    def truncate_message(cls, v: str) -> str:
        return v[:MESSAGE_MAX_LENGTH]

    model_config = {
        "json_schema_extra": {
            "example": {
                "user_guid": "usr_01hgw2bbg0000000000000001",
                "type": "LESSON_SCHEDULED",
                "title": "Lesson booked",
                "message": "Your lesson on Friday at 10:00 is confirmed.",
                "data": {"eventId": "evt_42"},
            }
        }
    }


class DeliveryOutcomeResponse(BaseModel):
    """How a freshly created notification reached (or did not reach) its recipient."""

    status: str = Field(..., description="delivered, queued or failed")
    channel: str = Field(..., description="live, web_push or none")
    reason: Optional[str] = None
    live_channels: int = 0
    push_sent: int = 0


class NotificationCreateResponse(BaseModel):
    notification: NotificationResponse
    delivery: DeliveryOutcomeResponse


# ============================================================================
# Push Subscription Schemas
# ============================================================================


class PushSubscriptionCreate(BaseModel):
    """
    Schema for creating a push subscription.

    Required:
        endpoint: Push service endpoint URL (must be HTTPS)
        p256dh_key: Base64url-encoded ECDH public key
        auth_key: Base64url-encoded auth secret
    """

    endpoint: str = Field(..., max_length=1024, description="Push service endpoint URL (must be HTTPS)")
    p256dh_key: str = Field(..., min_length=1, max_length=255, description="Base64url-encoded ECDH public key")
    auth_key: str = Field(..., min_length=1, max_length=255, description="Base64url-encoded auth secret")

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint_https(cls, v: str) -> str:
        """Ensure endpoint uses HTTPS."""
        if not v.startswith("https://"):
            raise ValueError("Push subscription endpoint must use HTTPS")
        return v

    model_config = {
        "json_schema_extra": {
            "example": {
                "endpoint": "https://fcm.googleapis.com/fcm/send/abc123...",
                "p256dh_key": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0...",
                "auth_key": "tBHItJI5svbpC7htUH8g...",
            }
        }
    }


class PushSubscriptionRemove(BaseModel):
    """Schema for removing a push subscription by endpoint."""

    endpoint: str = Field(..., description="The push service endpoint URL to unsubscribe")


class PushSubscriptionResponse(BaseModel):
    """Response schema for a push subscription."""

    guid: str = Field(..., description="Subscription GUID (sub_xxx)")
    endpoint: str
    user_agent: Optional[str] = None
    created_at: datetime
    last_used_at: Optional[datetime] = None

    @field_serializer("created_at", "last_used_at")
    @classmethod
    def serialize_datetime_utc(cls, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return v.isoformat() + "Z" if v else None

    model_config = {"from_attributes": True}


class PushSubscriptionListResponse(BaseModel):
    push_enabled: bool = Field(..., description="User-level push preference")
    subscriptions: List[PushSubscriptionResponse] = Field(default_factory=list)


class PushTestResponse(BaseModel):
    sent: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    removed: int = Field(..., ge=0)


class PushDiagnosticsResponse(BaseModel):
    """Push troubleshooting report for the current user."""

    push_notifications_enabled: bool
    message_notifications_enabled: bool
    subscription_count: int = Field(..., ge=0)
    vapid_configured: bool
    live_channels: int = Field(..., ge=0)
    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class VapidKeyResponse(BaseModel):
    """Response schema for VAPID public key."""

    vapid_public_key: str = Field(..., description="Base64url-encoded VAPID public key")
