"""
Live channel envelopes and status schemas.

Every message pushed over SSE or WebSocket is a JSON object
``{"type": <LiveEventType>, "data": {...}}``.
"""

import enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class LiveEventType(str, enum.Enum):
    CONNECTION_ESTABLISHED = "connection_established"
    UNREAD_COUNT = "unread_count"
    NEW_MESSAGE = "new_message"
    CONVERSATION_UPDATE = "conversation_update"
    NOTIFICATION = "notification"
    HEARTBEAT = "heartbeat"


def envelope(event_type: LiveEventType, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a live envelope."""
    return {"type": event_type.value, "data": data or {}}


def connection_established(transport: str, user_guid: Optional[str] = None) -> Dict[str, Any]:
    data = {"message": f"{transport.upper()} connected successfully"}
    if user_guid:
        data["userId"] = user_guid
    return envelope(LiveEventType.CONNECTION_ESTABLISHED, data)


def unread_count(count: int) -> Dict[str, Any]:
    return envelope(LiveEventType.UNREAD_COUNT, {"count": count})


class LiveClientCommand(BaseModel):
    """Message sent by a WebSocket client (subscribe/unsubscribe to a conversation)."""

    action: str = Field(..., pattern="^(subscribe|unsubscribe)$")
    conversation_id: str = Field(..., alias="conversationId", min_length=1)

    model_config = {"populate_by_name": True}


class LiveStatusResponse(BaseModel):
    """Live channel counts, for the current user and the whole process."""

    user_channels: int = Field(..., ge=0)
    total_channels: int = Field(..., ge=0)
    active_users: int = Field(..., ge=0)
    kinds: List[str] = Field(default_factory=list, description="Transports open for the current user")
