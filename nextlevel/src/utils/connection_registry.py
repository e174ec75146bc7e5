"""
Connection registry for live notification channels.

Keeps track of every open live channel (Server-Sent Events stream or
WebSocket) per user so the backend can push envelopes to whoever is online.
The registry lives in process memory: one instance is created in the
application lifespan and handed to request handlers through a dependency.

Delivery is best-effort and self-healing. A channel that fails to accept a
message is evicted and closed; callers only learn whether at least one
channel took the message.

Usage:
    registry = ConnectionRegistry()

    sender = SSESender(queue_size=100)
    await registry.register(user_id, sender, slot="tab-1")
    try:
        async for frame in sender.stream(heartbeat_seconds=25):
            yield frame
    finally:
        registry.unregister(user_id, sender)

    await registry.deliver(user_id, {"type": "unread_count", "data": {"count": 3}})
"""

import asyncio
import enum
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Set

from fastapi import WebSocket

from nextlevel.src.utils.logging_config import get_logger

logger = get_logger("realtime")


class ChannelKind(str, enum.Enum):
    """Transport of a live channel."""
    SSE = "sse"
    WEBSOCKET = "websocket"


class ChannelClosedError(Exception):
    """Raised by a sender that can no longer accept messages."""
    pass


class LiveSender:
    """
    Base class for live channel handles.

    Subclasses implement ``send`` (raise on failure) and ``close``.
    Instances are hashable by identity so they can key the registry.
    """

    kind: ChannelKind

    def __init__(self):
        self.closed = False

    async def send(self, text: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        self.closed = True


class WebSocketSender(LiveSender):
    """Live channel backed by an accepted Starlette WebSocket."""

    kind = ChannelKind.WEBSOCKET

    def __init__(self, websocket: WebSocket):
        super().__init__()
        self.websocket = websocket

    async def send(self, text: str) -> None:
        if self.closed:
            raise ChannelClosedError("WebSocket already closed")
        await self.websocket.send_text(text)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            # Peer already gone; nothing left to release
            logger.debug(f"WebSocket close failed: {e}")


class SSESender(LiveSender):
    """
    Live channel backed by a bounded queue drained by a streaming response.

    A full queue means the client stopped reading; that counts as a failed
    send so the registry evicts the stream.
    """

    kind = ChannelKind.SSE

    def __init__(self, queue_size: int = 100):
        super().__init__()
        self.queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue(maxsize=queue_size)

    async def send(self, text: str) -> None:
        if self.closed:
            raise ChannelClosedError("SSE stream already closed")
        try:
            self.queue.put_nowait(text)
        except asyncio.QueueFull as e:
            raise ChannelClosedError("SSE stream buffer full") from e

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Wake the consumer; drop buffered frames if there is no room left
        while True:
            try:
                self.queue.put_nowait(None)
                return
            except asyncio.QueueFull:
                self.queue.get_nowait()

    async def stream(self, heartbeat_seconds: float) -> AsyncIterator[str]:
        """
        Yield encoded SSE frames until the sender is closed.

        A comment line is emitted after ``heartbeat_seconds`` of silence to
        keep proxies from timing the stream out.
        """
        while True:
            try:
                text = await asyncio.wait_for(self.queue.get(), timeout=heartbeat_seconds)
            except asyncio.TimeoutError:
                if self.closed:
                    return
                yield ": keep-alive\n\n"
                continue
            if text is None:
                return
            yield format_sse(text)


def format_sse(text: str) -> str:
    """Encode a JSON payload as a single SSE ``data:`` frame."""
    lines = text.splitlines() or [""]
    return "".join(f"data: {line}\n" for line in lines) + "\n"


@dataclass
class LiveConnection:
    """One registered live channel."""
    user_id: int
    sender: LiveSender
    kind: ChannelKind
    slot: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


class ConnectionRegistry:
    """
    Index of live channels per user.

    A user may hold any number of channels at once (several tabs, a
    WebSocket and an SSE stream, several devices). A new channel replaces
    an older one only when both claim the same transport slot: same kind
    and same non-empty ``slot`` key, or, with ``single_sse_per_user``, any
    SSE stream of that user.

    WebSocket channels may additionally subscribe to conversations to
    receive conversation-scoped updates.
    """

    def __init__(self, single_sse_per_user: bool = False):
        self.single_sse_per_user = single_sse_per_user
        self._connections: Dict[int, Dict[LiveSender, LiveConnection]] = {}
        self._conversations: Dict[str, Set[LiveSender]] = {}
        self._lock = asyncio.Lock()

    # ========================================================================
    # Registration
    # ========================================================================

    async def register(
        self,
        user_id: int,
        sender: LiveSender,
        slot: Optional[str] = None,
    ) -> LiveConnection:
        """
        Register an open channel for a user.

        Channels occupying the same transport slot are closed and evicted
        first. Never fails.

        Args:
            user_id: Internal user ID
            sender: Channel handle
            slot: Optional client-supplied tab/device key

        Returns:
            The LiveConnection record
        """
        connection = LiveConnection(user_id=user_id, sender=sender, kind=sender.kind, slot=slot)

        async with self._lock:
            user_connections = self._connections.setdefault(user_id, {})
            replaced = [
                existing.sender
                for existing in user_connections.values()
                if self._same_slot(existing, connection)
            ]
            for old_sender in replaced:
                self._remove(user_id, old_sender)
            self._connections.setdefault(user_id, {})[sender] = connection

        for old_sender in replaced:
            await self._close_quietly(old_sender)

        logger.debug(
            "Live channel registered",
            extra={
                "user_id": user_id,
                "kind": connection.kind.value,
                "slot": slot,
                "replaced": len(replaced),
                "user_channels": self.count(user_id),
            },
        )
        return connection

    def unregister(self, user_id: int, sender: LiveSender) -> bool:
        """
        Remove a channel. No-op if it is not registered.

        Synchronous so it can run in ``finally`` blocks and exception handlers.

        Returns:
            True if the channel was registered
        """
        removed = self._remove(user_id, sender)
        if removed:
            logger.debug(
                "Live channel unregistered",
                extra={"user_id": user_id, "user_channels": self.count(user_id)},
            )
        return removed

    def _same_slot(self, existing: LiveConnection, new: LiveConnection) -> bool:
        if existing.kind != new.kind:
            return False
        if new.slot and existing.slot == new.slot:
            return True
        return self.single_sse_per_user and new.kind == ChannelKind.SSE

    def _remove(self, user_id: int, sender: LiveSender) -> bool:
        user_connections = self._connections.get(user_id)
        if not user_connections or sender not in user_connections:
            return False

        del user_connections[sender]
        if not user_connections:
            del self._connections[user_id]

        for conversation_id in list(self._conversations):
            members = self._conversations[conversation_id]
            members.discard(sender)
            if not members:
                del self._conversations[conversation_id]
        return True

    async def _close_quietly(self, sender: LiveSender) -> None:
        try:
            await sender.close()
        except Exception as e:
            logger.debug(f"Failed to close live channel: {e}")

    # ========================================================================
    # Delivery
    # ========================================================================

    async def deliver(self, user_id: int, message: Dict[str, Any]) -> bool:
        """
        Send a message to every channel of a user.

        Args:
            user_id: Recipient user ID
            message: JSON-serializable envelope

        Returns:
            True if at least one channel accepted the message
        """
        senders = list(self._connections.get(user_id, {}))
        if not senders:
            return False
        return await self._send_all(senders, _encode(message)) > 0

    async def deliver_to_many(self, user_ids: Iterable[int], message: Dict[str, Any]) -> int:
        """
        Send a message to several users.

        Returns:
            Number of distinct users reached
        """
        text = _encode(message)
        reached = 0
        for user_id in dict.fromkeys(user_ids):
            senders = list(self._connections.get(user_id, {}))
            if senders and await self._send_all(senders, text) > 0:
                reached += 1
        return reached

    async def broadcast_all(self, message: Dict[str, Any]) -> int:
        """
        Send a message to every registered channel.

        Returns:
            Number of channels reached
        """
        senders = [
            sender
            for user_connections in list(self._connections.values())
            for sender in list(user_connections)
        ]
        if not senders:
            return 0
        return await self._send_all(senders, _encode(message))

    async def _send_all(self, senders: List[LiveSender], text: str) -> int:
        delivered = 0
        failed: List[LiveSender] = []

        for sender in senders:
            try:
                await sender.send(text)
                delivered += 1
            except Exception as e:
                logger.debug(f"Failed to send to live channel: {e}")
                failed.append(sender)

        for sender in failed:
            connection = self._find(sender)
            if connection is not None:
                self._remove(connection.user_id, sender)
                logger.info(
                    "Evicted dead live channel",
                    extra={"user_id": connection.user_id, "kind": connection.kind.value},
                )
            await self._close_quietly(sender)

        return delivered

    def _find(self, sender: LiveSender) -> Optional[LiveConnection]:
        for user_connections in self._connections.values():
            connection = user_connections.get(sender)
            if connection is not None:
                return connection
        return None

    # ========================================================================
    # Conversation subscriptions
    # ========================================================================

    def subscribe_conversation(self, conversation_id: str, sender: LiveSender) -> bool:
        """
        Subscribe a registered channel to a conversation.

        Returns:
            False if the channel is not registered
        """
        if self._find(sender) is None:
            return False
        self._conversations.setdefault(str(conversation_id), set()).add(sender)
        return True

    def unsubscribe_conversation(self, conversation_id: str, sender: LiveSender) -> None:
        members = self._conversations.get(str(conversation_id))
        if members is None:
            return
        members.discard(sender)
        if not members:
            del self._conversations[str(conversation_id)]

    async def deliver_to_conversation(
        self,
        conversation_id: str,
        message: Dict[str, Any],
        exclude_user_ids: Iterable[int] = (),
    ) -> bool:
        """
        Send a message to every channel subscribed to a conversation.

        Channels owned by ``exclude_user_ids`` are skipped (they were
        already reached directly).
        """
        excluded = set(exclude_user_ids)
        senders = []
        for sender in list(self._conversations.get(str(conversation_id), ())):
            connection = self._find(sender)
            if connection is not None and connection.user_id not in excluded:
                senders.append(sender)
        if not senders:
            return False
        return await self._send_all(senders, _encode(message)) > 0

    def conversation_subscriber_count(self, conversation_id: str) -> int:
        return len(self._conversations.get(str(conversation_id), ()))

    # ========================================================================
    # Introspection / shutdown
    # ========================================================================

    def count(self, user_id: Optional[int] = None) -> int:
        """Number of channels for one user, or for everyone when user_id is None."""
        if user_id is not None:
            return len(self._connections.get(user_id, {}))
        return sum(len(c) for c in self._connections.values())

    def has_live_channel(self, user_id: int) -> bool:
        return bool(self._connections.get(user_id))

    def active_user_ids(self) -> List[int]:
        return list(self._connections)

    def connections(self, user_id: int) -> List[LiveConnection]:
        return list(self._connections.get(user_id, {}).values())

    async def close_all(self) -> int:
        """
        Close and forget every channel (application shutdown).

        Returns:
            Number of channels closed
        """
        async with self._lock:
            senders = [s for c in self._connections.values() for s in c]
            self._connections.clear()
            self._conversations.clear()

        for sender in senders:
            await self._close_quietly(sender)

        if senders:
            logger.info(f"Closed {len(senders)} live channels on shutdown")
        return len(senders)


def _encode(message: Dict[str, Any]) -> str:
    return json.dumps(message, default=str)
