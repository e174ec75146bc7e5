"""
Pydantic schemas for API request/response validation and notification payloads.
"""

from nextlevel.src.schemas.notification_payloads import (
    NotificationPayload,
    parse_payload,
    payload_to_data,
)
from nextlevel.src.schemas.live import LiveEventType, envelope

__all__ = [
    "NotificationPayload",
    "parse_payload",
    "payload_to_data",
    "LiveEventType",
    "envelope",
]
