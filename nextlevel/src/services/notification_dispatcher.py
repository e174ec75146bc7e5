"""
Notification dispatcher: the single entry point for sending notifications.

Orchestrates the full notification flow:
1. Resolve the recipient (unknown or inactive -> RecipientNotFoundError)
2. Persist the Notification row (the durable record)
3. Push a live envelope to every open channel of the recipient
4. If nobody is online, fall back to Web Push (when the user allows it)

Only steps 1 and 2 can fail the call. Live and push delivery are
best-effort; their result is reported in DispatchResult.outcome.
"""

import asyncio
import enum
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from nextlevel.src.models.notification import Notification, NotificationType
from nextlevel.src.models.user import User
from nextlevel.src.schemas import live as live_events
from nextlevel.src.schemas.live import LiveEventType
from nextlevel.src.schemas.notification_payloads import (
    ClientJoinRequestPayload,
    LessonPayload,
    MessagePayload,
    NotificationPayload,
    ProgramPayload,
    TimeSwapPayload,
    VideoSubmissionPayload,
    parse_payload,
    payload_to_data,
)
from nextlevel.src.schemas.notifications import NotificationResponse
from nextlevel.src.services.exceptions import (
    NotificationPersistenceError,
    RecipientNotFoundError,
    ValidationError,
)
from nextlevel.src.services.notification_service import NotificationService
from nextlevel.src.services.push_provider import PushStatus, WebPushProvider, build_push_payload
from nextlevel.src.services.push_subscription_service import PushSubscriptionService
from nextlevel.src.services.user_directory import UserDirectory
from nextlevel.src.utils.connection_registry import ConnectionRegistry
from nextlevel.src.utils.logging_config import get_logger
from nextlevel.src.utils.notification_routing import (
    DeliveryChannel,
    compute_route,
    delivery_channel,
)


logger = get_logger("services")
push_logger = get_logger("push")


# ============================================================================
# Dispatch outcome
# ============================================================================


class DeliveryStatus(str, enum.Enum):
    """
    - DELIVERED: at least one live channel or push subscription accepted it
    - QUEUED: stored only; the client picks it up by polling
    - FAILED: a delivery was attempted and nothing accepted it
    """
    DELIVERED = "delivered"
    QUEUED = "queued"
    FAILED = "failed"


@dataclass(frozen=True)
class DeliveryOutcome:
    status: DeliveryStatus
    channel: DeliveryChannel
    live_channels: int = 0
    push_sent: int = 0
    push_failed: int = 0
    push_removed: int = 0
    reason: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED


@dataclass(frozen=True)
class DispatchResult:
    notification: Notification
    outcome: DeliveryOutcome


# ============================================================================
# Dispatcher
# ============================================================================


class NotificationDispatcher:
    """
    Creates notifications and delivers them over live channels or Web Push.

    Args:
        db: SQLAlchemy session used for the notification store
        registry: Live channel registry of this process
        push_provider: Web Push provider, or None when VAPID is not configured
    """

    def __init__(
        self,
        db: Session,
        registry: ConnectionRegistry,
        push_provider: Optional[WebPushProvider] = None,
    ):
        self.db = db
        self.registry = registry
        self.push_provider = push_provider
        self.notifications = NotificationService(db)
        self.subscriptions = PushSubscriptionService(db)
        self.users = UserDirectory(db)

    async def dispatch(
        self,
        recipient_id: int,
        notification_type: Union[NotificationType, str],
        title: str,
        message: str,
        payload: Union[NotificationPayload, Mapping[str, Any], None] = None,
    ) -> DispatchResult:
        """
        Persist a notification and deliver it.

        Args:
            recipient_id: Internal user ID of the recipient
            notification_type: One of NotificationType
            title: Short title (truncated to 200 chars)
            message: Body text (truncated to 1000 chars)
            payload: Typed payload or raw JSON map with navigation identifiers

        Returns:
            DispatchResult with the stored notification and delivery outcome

        Raises:
            ValidationError: Unknown notification type
            RecipientNotFoundError: Recipient unknown or inactive (nothing stored)
            NotificationPersistenceError: The row could not be written
        """
        ntype = NotificationType.coerce(notification_type)
        if ntype is None:
            raise ValidationError(f"Unknown notification type: {notification_type}", field="type")

        recipient = self.users.find_user(recipient_id)
        if recipient is None:
            logger.warning(
                "Notification recipient not found",
                extra={"user_id": recipient_id, "type": ntype.value},
            )
            raise RecipientNotFoundError(recipient_id)

        data = payload_to_data(payload)

        try:
            notification = self.notifications.create(
                user_id=recipient.id,
                notification_type=ntype,
                title=title,
                message=message,
                data=data,
            )
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to persist notification: {e}",
                extra={"user_id": recipient.id, "type": ntype.value},
            )
            raise NotificationPersistenceError("Failed to store notification", user_id=recipient.id) from e

        outcome = await self._deliver(recipient, notification, ntype, data)

        logger.info(
            "Notification dispatched",
            extra={
                "guid": notification.guid,
                "user_id": recipient.id,
                "type": ntype.value,
                "status": outcome.status.value,
                "channel": outcome.channel.value,
                "live_channels": outcome.live_channels,
                "push_sent": outcome.push_sent,
            },
        )
        return DispatchResult(notification=notification, outcome=outcome)

    async def try_dispatch(
        self,
        recipient_id: int,
        notification_type: Union[NotificationType, str],
        title: str,
        message: str,
        payload: Union[NotificationPayload, Mapping[str, Any], None] = None,
    ) -> Optional[DispatchResult]:
        """
        dispatch() for system-generated events: a vanished recipient is
        logged and skipped instead of failing the triggering operation.
        """
        try:
            return await self.dispatch(recipient_id, notification_type, title, message, payload)
        except RecipientNotFoundError:
            logger.info(
                "Skipped notification for missing recipient",
                extra={"user_id": recipient_id},
            )
            return None

    # ========================================================================
    # Delivery
    # ========================================================================

    async def _deliver(
        self,
        recipient: User,
        notification: Notification,
        ntype: NotificationType,
        data: Dict[str, Any],
    ) -> DeliveryOutcome:
        live_error: Optional[str] = None
        try:
            live_channels = await self._deliver_live(recipient, notification, ntype, data)
        except Exception as e:
            # Registry delivery does not raise; this guards envelope building
            logger.exception(
                "Live delivery raised",
                extra={"guid": notification.guid, "user_id": recipient.id},
            )
            live_channels = 0
            live_error = f"live delivery error: {e}"

        preferences = self.users.get_preferences(recipient)
        push_allowed = (
            preferences.allows_push(ntype)
            and self.push_provider is not None
            and self.push_provider.configured
        )
        channel = delivery_channel(live_channels > 0, push_allowed)

        if channel is DeliveryChannel.LIVE:
            return DeliveryOutcome(DeliveryStatus.DELIVERED, channel, live_channels=live_channels)

        if channel is DeliveryChannel.NONE:
            if live_error:
                return DeliveryOutcome(DeliveryStatus.FAILED, channel, reason=live_error)
            if not preferences.allows_push(ntype):
                reason = "recipient offline; push disabled by user"
            else:
                reason = "recipient offline; web push not configured"
            return DeliveryOutcome(DeliveryStatus.QUEUED, channel, reason=reason)

        return await self._deliver_push(recipient, notification, ntype, data)

    async def _deliver_live(
        self,
        recipient: User,
        notification: Notification,
        ntype: NotificationType,
        data: Dict[str, Any],
    ) -> int:
        if not self.registry.has_live_channel(recipient.id):
            return 0

        serialized = NotificationResponse.from_model(notification, recipient.role).model_dump(mode="json")
        if ntype is NotificationType.MESSAGE:
            typed = parse_payload(ntype, data)
            envelope = live_events.envelope(
                LiveEventType.NEW_MESSAGE,
                {"notification": serialized, "conversationId": typed.conversation_id},
            )
        else:
            envelope = live_events.envelope(LiveEventType.NOTIFICATION, {"notification": serialized})

        if not await self.registry.deliver(recipient.id, envelope):
            return 0

        reached = self.registry.count(recipient.id)
        try:
            await self.publish_unread_count(recipient.id)
        except SQLAlchemyError as e:
            # Live delivery already succeeded
            logger.warning(
                f"Failed to publish unread count: {e}",
                extra={"guid": notification.guid, "user_id": recipient.id},
            )
            self.db.rollback()
        return reached

    async def _deliver_push(
        self,
        recipient: User,
        notification: Notification,
        ntype: NotificationType,
        data: Dict[str, Any],
    ) -> DeliveryOutcome:
        subscriptions = self.subscriptions.list_by_user(recipient.id)
        if not subscriptions:
            return DeliveryOutcome(
                DeliveryStatus.QUEUED,
                DeliveryChannel.WEB_PUSH,
                reason="recipient offline; no push subscriptions",
            )

        push_payload = build_push_payload(
            title=notification.title,
            body=notification.message,
            url=compute_route(ntype, data, recipient.role),
            notification_guid=notification.guid,
            notification_type=ntype.value,
            data=data,
        )

        loop = asyncio.get_running_loop()
        sent = failed = removed = 0

        for sub in subscriptions:
            endpoint_short = sub.endpoint[:60] if sub.endpoint else "?"
            try:
                result = await loop.run_in_executor(None, self.push_provider.send, sub, push_payload)
            except Exception as e:
                # Provider.send does not raise; treat executor failures like a provider error
                result = None
                push_logger.warning(
                    f"Push send raised: {e}",
                    extra={"subscription_guid": sub.guid, "user_id": recipient.id},
                )

            if result is not None and result.status is PushStatus.SUCCESS:
                self.subscriptions.update_last_used(sub)
                sent += 1
                push_logger.debug(
                    "Push delivered",
                    extra={
                        "subscription_guid": sub.guid,
                        "user_id": recipient.id,
                        "type": ntype.value,
                        "endpoint": endpoint_short,
                    },
                )
            elif result is not None and result.status is PushStatus.GONE:
                self.subscriptions.remove_invalid(sub)
                removed += 1
            else:
                failed += 1
                if result is not None:
                    push_logger.warning(
                        f"Push delivery failed: {result.error}",
                        extra={
                            "subscription_guid": sub.guid,
                            "user_id": recipient.id,
                            "type": ntype.value,
                            "status_code": result.status_code,
                            "endpoint": endpoint_short,
                        },
                    )

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            push_logger.error(f"Failed to record push results: {e}", extra={"user_id": recipient.id})

        if removed > 0 or failed > 0:
            push_logger.info(
                "Push delivery summary",
                extra={
                    "user_id": recipient.id,
                    "type": ntype.value,
                    "total": len(subscriptions),
                    "success": sent,
                    "failed": failed,
                    "removed": removed,
                },
            )

        if sent > 0:
            return DeliveryOutcome(
                DeliveryStatus.DELIVERED,
                DeliveryChannel.WEB_PUSH,
                push_sent=sent,
                push_failed=failed,
                push_removed=removed,
            )
        return DeliveryOutcome(
            DeliveryStatus.FAILED,
            DeliveryChannel.WEB_PUSH,
            push_failed=failed,
            push_removed=removed,
            reason=f"no push subscription accepted the message ({failed} failed, {removed} removed)",
        )

    # ========================================================================
    # Live updates without a notification row
    # ========================================================================

    async def publish_unread_count(self, user_id: int) -> bool:
        """Push the current unread count to the user's live channels."""
        if not self.registry.has_live_channel(user_id):
            return False
        count = self.notifications.get_unread_count(user_id)
        return await self.registry.deliver(user_id, live_events.unread_count(count))

    async def publish_conversation_update(
        self,
        conversation_id: str,
        user_ids: Iterable[int],
        data: Dict[str, Any],
    ) -> int:
        """
        Tell conversation participants that a conversation changed
        (new last message, read receipts). Live only, nothing stored.

        Every channel of a participant gets the update once. Channels of
        other users that subscribed to the conversation over WebSocket
        get it too.

        Returns:
            Number of participants reached
        """
        participants = list(dict.fromkeys(user_ids))
        message = live_events.envelope(
            LiveEventType.CONVERSATION_UPDATE,
            {**data, "conversationId": str(conversation_id)},
        )
        reached = await self.registry.deliver_to_many(participants, message)
        await self.registry.deliver_to_conversation(
            conversation_id, message, exclude_user_ids=participants
        )
        return reached

    # ========================================================================
    # Domain triggers
    # ========================================================================

    async def notify_new_message(
        self,
        recipient_id: int,
        sender_name: str,
        conversation_id: str,
        message_id: Optional[str] = None,
        preview: str = "",
    ) -> Optional[DispatchResult]:
        text = preview if len(preview) <= 100 else preview[:97] + "..."
        return await self.try_dispatch(
            recipient_id,
            NotificationType.MESSAGE,
            f"New message from {sender_name}",
            text or "You have a new message",
            MessagePayload(
                conversation_id=conversation_id,
                message_id=message_id,
                sender_name=sender_name,
            ),
        )

    async def notify_client_join_request(
        self,
        coach_id: int,
        client_name: str,
        client_id: Optional[str] = None,
        client_user_id: Optional[str] = None,
    ) -> Optional[DispatchResult]:
        return await self.try_dispatch(
            coach_id,
            NotificationType.CLIENT_JOIN_REQUEST,
            "New Athlete Join Request",
            f"{client_name} wants to join your coaching program",
            ClientJoinRequestPayload(
                client_id=client_id,
                client_user_id=client_user_id,
                client_name=client_name,
            ),
        )

    async def notify_lesson_scheduled(
        self,
        client_id: int,
        coach_name: str,
        when: str,
        event_id: Optional[str] = None,
    ) -> Optional[DispatchResult]:
        return await self.try_dispatch(
            client_id,
            NotificationType.LESSON_SCHEDULED,
            "New Lesson Scheduled",
            f"{coach_name} scheduled a lesson for {when}",
            LessonPayload(event_id=event_id),
        )

    async def notify_lesson_cancelled(
        self,
        user_id: int,
        cancelled_by: str,
        when: str,
        event_id: Optional[str] = None,
    ) -> Optional[DispatchResult]:
        return await self.try_dispatch(
            user_id,
            NotificationType.LESSON_CANCELLED,
            "Lesson Cancelled",
            f"{cancelled_by} cancelled the lesson on {when}",
            LessonPayload(event_id=event_id),
        )

    async def notify_schedule_request(
        self,
        coach_id: int,
        client_name: str,
        when: str,
        event_id: Optional[str] = None,
    ) -> Optional[DispatchResult]:
        return await self.try_dispatch(
            coach_id,
            NotificationType.SCHEDULE_REQUEST,
            "New Schedule Request",
            f"{client_name} requested a lesson for {when}",
            LessonPayload(event_id=event_id),
        )

    async def notify_workout_assigned(
        self,
        client_id: int,
        workout_name: str,
        program_id: Optional[str] = None,
        drill_id: Optional[str] = None,
    ) -> Optional[DispatchResult]:
        return await self.try_dispatch(
            client_id,
            NotificationType.WORKOUT_ASSIGNED,
            "New Workout Assigned",
            f"Your coach assigned you \"{workout_name}\"",
            ProgramPayload(program_id=program_id, drill_id=drill_id),
        )

    async def notify_program_assigned(
        self,
        client_id: int,
        program_name: str,
        program_id: Optional[str] = None,
    ) -> Optional[DispatchResult]:
        return await self.try_dispatch(
            client_id,
            NotificationType.PROGRAM_ASSIGNED,
            "New Program Assigned",
            f"You have been assigned the program \"{program_name}\"",
            ProgramPayload(program_id=program_id),
        )

    async def notify_video_submission(
        self,
        coach_id: int,
        client_name: str,
        video_submission_id: Optional[str] = None,
    ) -> Optional[DispatchResult]:
        return await self.try_dispatch(
            coach_id,
            NotificationType.VIDEO_SUBMISSION,
            f"New video submission from {client_name}",
            f"{client_name} submitted a video for review",
            VideoSubmissionPayload(video_submission_id=video_submission_id),
        )

    async def notify_time_swap_request(
        self,
        recipient_id: int,
        requester_name: str,
        swap_request_id: Optional[str] = None,
        target_name: Optional[str] = None,
    ) -> Optional[DispatchResult]:
        return await self.try_dispatch(
            recipient_id,
            NotificationType.TIME_SWAP_REQUEST,
            "New Swap Request",
            f"{requester_name} wants to swap lesson times with you",
            TimeSwapPayload(
                swap_request_id=swap_request_id,
                requester_name=requester_name,
                target_name=target_name,
            ),
        )
