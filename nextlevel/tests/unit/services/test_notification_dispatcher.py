"""
Unit tests for NotificationDispatcher.

Tests the dispatch flow: recipient lookup, persistence, live delivery,
Web Push fallback with subscription cleanup, and the delivery outcome.
The push provider is a MagicMock; live channels are real registry entries.
"""

import json
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from nextlevel.src.models.notification import Notification, NotificationType
from nextlevel.src.models.push_subscription import PushSubscription
from nextlevel.src.schemas.notification_payloads import MessagePayload
from nextlevel.src.services.exceptions import (
    NotificationPersistenceError,
    RecipientNotFoundError,
    ValidationError,
)
from nextlevel.src.services.notification_dispatcher import (
    DeliveryStatus,
    NotificationDispatcher,
)
from nextlevel.src.services.push_provider import PushResult, PushStatus
from nextlevel.src.utils.connection_registry import SSESender
from nextlevel.src.utils.notification_routing import DeliveryChannel


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def push_provider():
    """Configured push provider mock; every send succeeds by default."""
    provider = MagicMock()
    provider.configured = True
    provider.send.return_value = PushResult(PushStatus.SUCCESS, status_code=201)
    return provider


@pytest.fixture
def dispatcher(test_db_session, registry, push_provider):
    return NotificationDispatcher(
        db=test_db_session,
        registry=registry,
        push_provider=push_provider,
    )


def _drain(sender: SSESender):
    frames = []
    while not sender.queue.empty():
        frames.append(json.loads(sender.queue.get_nowait()))
    return frames


# ============================================================================
# Test: recipient and persistence
# ============================================================================


class TestDispatchValidation:
    """Failure modes that abort dispatch."""

    @pytest.mark.asyncio
    async def test_unknown_recipient(self, dispatcher, test_db_session, push_provider):
        with pytest.raises(RecipientNotFoundError):
            await dispatcher.dispatch(9999, NotificationType.SYSTEM, "Hello", "World")

        assert test_db_session.query(Notification).count() == 0
        push_provider.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_inactive_recipient(self, dispatcher, create_user, test_db_session):
        user = create_user(is_active=False)

        with pytest.raises(RecipientNotFoundError):
            await dispatcher.dispatch(user.id, "SYSTEM", "Hello", "World")

        assert test_db_session.query(Notification).count() == 0

    @pytest.mark.asyncio
    async def test_unknown_type(self, dispatcher, test_client_user):
        with pytest.raises(ValidationError):
            await dispatcher.dispatch(test_client_user.id, "BIRTHDAY", "Hello", "World")

    @pytest.mark.asyncio
    async def test_persistence_failure_propagates(self, dispatcher, test_client_user, push_provider, mocker):
        mocker.patch.object(
            dispatcher.notifications,
            "create",
            side_effect=OperationalError("INSERT", {}, Exception("disk full")),
        )

        with pytest.raises(NotificationPersistenceError):
            await dispatcher.dispatch(test_client_user.id, "SYSTEM", "Hello", "World")

        push_provider.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_try_dispatch_skips_missing_recipient(self, dispatcher):
        assert await dispatcher.try_dispatch(9999, "SYSTEM", "Hello", "World") is None


# ============================================================================
# Test: live delivery
# ============================================================================


class TestLiveDelivery:
    """Recipient has at least one open live channel."""

    @pytest.mark.asyncio
    async def test_message_over_sse(self, dispatcher, registry, test_client_user, push_provider):
        """A MESSAGE reaches the open SSE stream as new_message and is stored unread."""
        sender = SSESender()
        await registry.register(test_client_user.id, sender)

        result = await dispatcher.dispatch(
            test_client_user.id,
            NotificationType.MESSAGE,
            "New message from Coach",
            "Great session today",
            {"conversationId": "c1"},
        )

        frames = _drain(sender)
        assert frames[0]["type"] == "new_message"
        assert frames[0]["data"]["conversationId"] == "c1"
        assert frames[0]["data"]["notification"]["guid"] == result.notification.guid
        assert frames[0]["data"]["notification"]["route"] == "/client-messages?conversation=c1"
        assert frames[1] == {"type": "unread_count", "data": {"count": 1}}

        stored = result.notification
        assert stored.type == "MESSAGE"
        assert stored.data == {"conversationId": "c1"}
        assert stored.is_read is False

        assert result.outcome.status is DeliveryStatus.DELIVERED
        assert result.outcome.channel is DeliveryChannel.LIVE
        assert result.outcome.live_channels == 1
        push_provider.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_other_types_use_notification_envelope(
        self, dispatcher, registry, recording_sender, test_coach
    ):
        sender = recording_sender()
        await registry.register(test_coach.id, sender)

        await dispatcher.dispatch(
            test_coach.id,
            NotificationType.CLIENT_JOIN_REQUEST,
            "New Athlete Join Request",
            "Alex wants to join",
            {"clientId": "k1"},
        )

        assert sender.sent[0]["type"] == "notification"
        notification = sender.sent[0]["data"]["notification"]
        assert notification["route"] == "/clients?client=k1"
        assert notification["action"] == {"label": "View Client", "route": "/clients?client=k1"}

    @pytest.mark.asyncio
    async def test_all_channels_reached(self, dispatcher, registry, recording_sender, test_client_user):
        senders = [recording_sender(), recording_sender("sse")]
        for s in senders:
            await registry.register(test_client_user.id, s)

        result = await dispatcher.dispatch(test_client_user.id, "SYSTEM", "Hi", "There")

        assert result.outcome.live_channels == 2
        assert all(s.sent[0]["type"] == "notification" for s in senders)

    @pytest.mark.asyncio
    async def test_unread_count_failure_keeps_live_delivery(
        self, dispatcher, registry, recording_sender, create_subscription, test_client_user, push_provider, mocker
    ):
        sender = recording_sender()
        await registry.register(test_client_user.id, sender)
        create_subscription(test_client_user)
        mocker.patch.object(
            dispatcher.notifications,
            "get_unread_count",
            side_effect=OperationalError("SELECT count", {}, Exception("database is locked")),
        )

        result = await dispatcher.dispatch(test_client_user.id, "SYSTEM", "Hi", "There")

        assert [frame["type"] for frame in sender.sent] == ["notification"]
        assert result.outcome.status is DeliveryStatus.DELIVERED
        assert result.outcome.channel is DeliveryChannel.LIVE
        assert result.outcome.live_channels == 1
        push_provider.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_dead_live_channel_falls_back_to_push(
        self, dispatcher, registry, recording_sender, create_subscription, test_client_user, push_provider
    ):
        await registry.register(test_client_user.id, recording_sender(fail=True))
        create_subscription(test_client_user)

        result = await dispatcher.dispatch(test_client_user.id, "SYSTEM", "Hi", "There")

        assert registry.count(test_client_user.id) == 0
        assert result.outcome.channel is DeliveryChannel.WEB_PUSH
        assert result.outcome.status is DeliveryStatus.DELIVERED
        push_provider.send.assert_called_once()


# ============================================================================
# Test: Web Push fallback
# ============================================================================


class TestPushFallback:
    """Recipient has no live channel."""

    @pytest.mark.asyncio
    async def test_push_sent_once(
        self, dispatcher, registry, create_subscription, test_client_user, push_provider
    ):
        """Zero live channels and one subscription: exactly one push, no live delivery."""
        create_subscription(test_client_user)

        result = await dispatcher.dispatch(
            test_client_user.id,
            NotificationType.MESSAGE,
            "New message from Coach",
            "Great session today",
            MessagePayload(conversation_id="c1"),
        )

        assert push_provider.send.call_count == 1
        assert registry.count() == 0
        _, payload = push_provider.send.call_args.args
        assert payload["data"]["url"] == "/client-messages?conversation=c1"
        assert payload["data"]["notification_guid"] == result.notification.guid
        assert result.outcome.status is DeliveryStatus.DELIVERED
        assert result.outcome.channel is DeliveryChannel.WEB_PUSH
        assert result.outcome.push_sent == 1

    @pytest.mark.asyncio
    async def test_gone_subscription_removed_others_unaffected(
        self, dispatcher, create_subscription, test_db_session, test_client_user, push_provider
    ):
        gone = create_subscription(test_client_user, endpoint="https://push.example.com/gone")
        healthy = create_subscription(test_client_user, endpoint="https://push.example.com/ok")
        gone_id, healthy_id = gone.id, healthy.id

        def _send(sub, payload):
            if sub.endpoint.endswith("/gone"):
                return PushResult(PushStatus.GONE, status_code=410)
            return PushResult(PushStatus.SUCCESS, status_code=201)

        push_provider.send.side_effect = _send

        result = await dispatcher.dispatch(test_client_user.id, "SYSTEM", "Hi", "There")

        remaining = test_db_session.query(PushSubscription).all()
        assert [s.id for s in remaining] == [healthy_id]
        assert gone_id not in [s.id for s in remaining]
        assert remaining[0].last_used_at is not None
        assert push_provider.send.call_count == 2
        assert result.outcome.status is DeliveryStatus.DELIVERED
        assert result.outcome.push_sent == 1
        assert result.outcome.push_removed == 1

    @pytest.mark.asyncio
    async def test_error_on_one_subscription_does_not_stop_others(
        self, dispatcher, create_subscription, test_db_session, test_client_user, push_provider
    ):
        create_subscription(test_client_user)
        create_subscription(test_client_user)
        push_provider.send.side_effect = [
            PushResult(PushStatus.ERROR, status_code=500, error="boom"),
            PushResult(PushStatus.SUCCESS, status_code=201),
        ]

        result = await dispatcher.dispatch(test_client_user.id, "SYSTEM", "Hi", "There")

        assert push_provider.send.call_count == 2
        assert test_db_session.query(PushSubscription).count() == 2
        assert result.outcome.push_sent == 1
        assert result.outcome.push_failed == 1
        assert result.outcome.delivered

    @pytest.mark.asyncio
    async def test_all_push_attempts_fail(
        self, dispatcher, create_subscription, test_client_user, push_provider
    ):
        create_subscription(test_client_user)
        push_provider.send.return_value = PushResult(PushStatus.ERROR, status_code=500, error="boom")

        result = await dispatcher.dispatch(test_client_user.id, "SYSTEM", "Hi", "There")

        assert result.outcome.status is DeliveryStatus.FAILED
        assert "no push subscription accepted" in result.outcome.reason
        # The notification is stored regardless
        assert result.notification.id is not None

    @pytest.mark.asyncio
    async def test_no_subscriptions_is_queued(self, dispatcher, test_client_user, push_provider):
        result = await dispatcher.dispatch(test_client_user.id, "SYSTEM", "Hi", "There")

        assert result.outcome.status is DeliveryStatus.QUEUED
        assert result.outcome.reason == "recipient offline; no push subscriptions"
        push_provider.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_push_disabled_by_user(
        self, dispatcher, create_user, create_subscription, push_provider
    ):
        user = create_user(push_notifications=False)
        create_subscription(user)

        result = await dispatcher.dispatch(user.id, "SYSTEM", "Hi", "There")

        assert result.outcome.status is DeliveryStatus.QUEUED
        assert result.outcome.channel is DeliveryChannel.NONE
        assert result.outcome.reason == "recipient offline; push disabled by user"
        push_provider.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_message_notifications_disabled_only_affects_messages(
        self, dispatcher, create_user, create_subscription, push_provider
    ):
        user = create_user(message_notifications=False)
        create_subscription(user)

        message_result = await dispatcher.dispatch(user.id, "MESSAGE", "Hi", "There")
        lesson_result = await dispatcher.dispatch(user.id, "LESSON_SCHEDULED", "Lesson", "Friday")

        assert message_result.outcome.status is DeliveryStatus.QUEUED
        assert lesson_result.outcome.status is DeliveryStatus.DELIVERED
        assert push_provider.send.call_count == 1

    @pytest.mark.asyncio
    async def test_push_not_configured(self, test_db_session, registry, create_subscription, test_client_user):
        create_subscription(test_client_user)
        dispatcher = NotificationDispatcher(db=test_db_session, registry=registry, push_provider=None)

        result = await dispatcher.dispatch(test_client_user.id, "SYSTEM", "Hi", "There")

        assert result.outcome.status is DeliveryStatus.QUEUED
        assert result.outcome.reason == "recipient offline; web push not configured"


# ============================================================================
# Test: live updates and triggers
# ============================================================================


class TestLiveUpdates:

    @pytest.mark.asyncio
    async def test_publish_unread_count(
        self, dispatcher, registry, recording_sender, create_notification, test_client_user
    ):
        sender = recording_sender()
        await registry.register(test_client_user.id, sender)
        create_notification(test_client_user)
        create_notification(test_client_user)

        assert await dispatcher.publish_unread_count(test_client_user.id) is True
        assert sender.sent == [{"type": "unread_count", "data": {"count": 2}}]

    @pytest.mark.asyncio
    async def test_publish_unread_count_offline(self, dispatcher, test_client_user):
        assert await dispatcher.publish_unread_count(test_client_user.id) is False

    @pytest.mark.asyncio
    async def test_publish_conversation_update(
        self, dispatcher, registry, recording_sender, test_client_user, test_coach
    ):
        sender = recording_sender()
        await registry.register(test_coach.id, sender)

        reached = await dispatcher.publish_conversation_update(
            "c1", [test_client_user.id, test_coach.id], {"lastMessage": "See you Friday"}
        )

        assert reached == 1
        assert sender.sent == [
            {"type": "conversation_update", "data": {"lastMessage": "See you Friday", "conversationId": "c1"}}
        ]

    @pytest.mark.asyncio
    async def test_conversation_update_reaches_subscribers_once(
        self, dispatcher, registry, recording_sender, test_client_user, test_coach
    ):
        participant = recording_sender()
        watcher = recording_sender()
        unrelated = recording_sender()
        await registry.register(test_coach.id, participant)
        await registry.register(test_client_user.id, watcher)
        await registry.register(test_client_user.id, unrelated)
        registry.subscribe_conversation("c1", participant)
        registry.subscribe_conversation("c1", watcher)

        reached = await dispatcher.publish_conversation_update("c1", [test_coach.id], {})

        expected = {"type": "conversation_update", "data": {"conversationId": "c1"}}
        assert reached == 1
        assert participant.sent == [expected]
        assert watcher.sent == [expected]
        assert unrelated.sent == []


class TestTriggers:
    """Domain helpers build the right type, title and payload."""

    @pytest.mark.asyncio
    async def test_notify_new_message(self, dispatcher, test_client_user):
        result = await dispatcher.notify_new_message(
            test_client_user.id, "Coach Carter", conversation_id="c1", preview="x" * 150
        )

        assert result.notification.type == "MESSAGE"
        assert result.notification.title == "New message from Coach Carter"
        assert len(result.notification.message) == 100
        assert result.notification.data == {"conversationId": "c1", "senderName": "Coach Carter"}

    @pytest.mark.asyncio
    async def test_notify_client_join_request(self, dispatcher, test_coach):
        result = await dispatcher.notify_client_join_request(
            test_coach.id, "Alex Athlete", client_id="k1"
        )

        assert result.notification.type == "CLIENT_JOIN_REQUEST"
        assert result.notification.title == "New Athlete Join Request"
        assert result.notification.data["clientId"] == "k1"

    @pytest.mark.asyncio
    async def test_notify_lesson_scheduled(self, dispatcher, test_client_user):
        result = await dispatcher.notify_lesson_scheduled(
            test_client_user.id, "Coach Carter", "Friday 10:00", event_id="e1"
        )

        assert result.notification.type == "LESSON_SCHEDULED"
        assert result.notification.data == {"eventId": "e1"}

    @pytest.mark.asyncio
    async def test_notify_video_submission(self, dispatcher, test_coach):
        result = await dispatcher.notify_video_submission(
            test_coach.id, "Alex Athlete", video_submission_id="v1"
        )

        assert result.notification.title == "New video submission from Alex Athlete"

    @pytest.mark.asyncio
    async def test_trigger_for_missing_user_returns_none(self, dispatcher):
        assert await dispatcher.notify_time_swap_request(9999, "Sam") is None
