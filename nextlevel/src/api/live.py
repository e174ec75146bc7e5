"""
Live channel endpoints.

Two transports feed the same ConnectionRegistry:
- GET /api/live/stream: Server-Sent Events, one-way server to browser
- WS /api/live/ws: WebSocket, additionally accepts ping and conversation
  subscribe/unsubscribe commands

Both send ``connection_established`` followed by the current unread count,
then every envelope the dispatcher publishes for the user.
"""

import asyncio
import json
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from nextlevel.src.config.settings import get_settings
from nextlevel.src.db.database import get_db
from nextlevel.src.dependencies import get_connection_registry
from nextlevel.src.middleware.auth import (
    AuthContext,
    get_session_factory,
    get_websocket_auth_context,
    require_auth,
)
from nextlevel.src.schemas.live import (
    LiveClientCommand,
    LiveEventType,
    LiveStatusResponse,
    connection_established,
    envelope,
    unread_count,
)
from nextlevel.src.services.notification_service import NotificationService
from nextlevel.src.utils.connection_registry import (
    ConnectionRegistry,
    SSESender,
    WebSocketSender,
)
from nextlevel.src.utils.logging_config import get_logger


logger = get_logger("realtime")

router = APIRouter(
    prefix="/live",
    tags=["Live"],
)

# Close code sent to WebSocket clients without a valid session
WS_CLOSE_UNAUTHENTICATED = 4001


# ============================================================================
# Server-Sent Events
# ============================================================================


@router.get(
    "/stream",
    summary="Open a Server-Sent Events notification stream",
    response_class=StreamingResponse,
)
async def live_stream(
    request: Request,
    slot: Optional[str] = Query(default=None, max_length=100, description="Tab/device key"),
    ctx: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    """
    Stream live envelopes as ``data:`` frames.

    Authentication is resolved before anything is registered, so an
    anonymous request gets a plain 401. Reusing a ``slot`` replaces the
    previous stream opened with that key.
    """
    settings = get_settings()
    initial_count = NotificationService(db=db).get_unread_count(ctx.user_id)

    # Opening frames are queued before the channel is registered
    sender = SSESender(queue_size=settings.live_queue_size)
    await sender.send(json.dumps(connection_established("sse", ctx.user_guid)))
    await sender.send(json.dumps(unread_count(initial_count)))
    await registry.register(ctx.user_id, sender, slot=slot)

    logger.info(
        "SSE stream opened",
        extra={"user_id": ctx.user_id, "slot": slot, "user_channels": registry.count(ctx.user_id)},
    )

    async def event_stream():
        try:
            async for frame in sender.stream(settings.live_heartbeat_seconds):
                yield frame
        finally:
            registry.unregister(ctx.user_id, sender)
            logger.info("SSE stream closed", extra={"user_id": ctx.user_id})

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# ============================================================================
# WebSocket
# ============================================================================


async def _handle_client_text(
    data: str,
    sender: WebSocketSender,
    registry: ConnectionRegistry,
    websocket: WebSocket,
) -> None:
    if data == "ping":
        await websocket.send_text("pong")
        return

    try:
        command = LiveClientCommand.model_validate_json(data)
    except PydanticValidationError:
        logger.debug("Ignoring unrecognized WebSocket message")
        return

    if command.action == "subscribe":
        registry.subscribe_conversation(command.conversation_id, sender)
    else:
        registry.unsubscribe_conversation(command.conversation_id, sender)


@router.websocket("/ws")
async def live_websocket(
    websocket: WebSocket,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    """
    WebSocket live channel.

    Client messages:
        "ping" -> "pong"
        {"action": "subscribe", "conversationId": "42"}
        {"action": "unsubscribe", "conversationId": "42"}

    Unauthenticated clients are closed with code 4001 before registration.
    """
    await websocket.accept()

    ctx = await get_websocket_auth_context(websocket, session_factory=session_factory)
    if not ctx:
        await websocket.close(code=WS_CLOSE_UNAUTHENTICATED, reason="Authentication required")
        return

    db = session_factory()
    try:
        initial_count = NotificationService(db=db).get_unread_count(ctx.user_id)
    finally:
        db.close()

    settings = get_settings()
    sender = WebSocketSender(websocket)
    await registry.register(ctx.user_id, sender)
    logger.info(
        "WebSocket connected",
        extra={"user_id": ctx.user_id, "user_channels": registry.count(ctx.user_id)},
    )

    try:
        await websocket.send_text(json.dumps(connection_established("websocket", ctx.user_guid)))
        await websocket.send_text(json.dumps(unread_count(initial_count)))

        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=settings.live_heartbeat_seconds,
                )
                await _handle_client_text(data, sender, registry, websocket)
            except asyncio.TimeoutError:
                try:
                    await websocket.send_text(json.dumps(envelope(LiveEventType.HEARTBEAT)))
                except Exception:
                    break
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected", extra={"user_id": ctx.user_id})
    finally:
        registry.unregister(ctx.user_id, sender)


# ============================================================================
# Status
# ============================================================================


@router.get(
    "/status",
    response_model=LiveStatusResponse,
    summary="Live channel status",
)
async def live_status(
    ctx: AuthContext = Depends(require_auth),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    """Channel counts for the current user and the whole process."""
    return LiveStatusResponse(
        user_channels=registry.count(ctx.user_id),
        total_channels=registry.count(),
        active_users=len(registry.active_user_ids()),
        kinds=sorted({c.kind.value for c in registry.connections(ctx.user_id)}),
    )
