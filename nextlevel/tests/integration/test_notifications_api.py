"""
Integration tests for the notifications API.

Tests the REST endpoints end to end through the FastAPI test client:
- Session cookie authentication
- Notification history, read state and per-viewer routes
- Coach-created notifications and the reported delivery outcome
- Push subscription management and diagnostics
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from nextlevel.src.models import Notification, PushSubscription, UserRole
from nextlevel.src.services.push_provider import PushResult, PushStatus


# ============================================================================
# Test: authentication
# ============================================================================


class TestAuthentication:

    @pytest.mark.parametrize("method,path", [
        ("get", "/api/notifications"),
        ("get", "/api/notifications/unread-count"),
        ("get", "/api/notifications/stats"),
        ("post", "/api/notifications/mark-all-read"),
        ("get", "/api/notifications/push/subscriptions"),
        ("get", "/api/live/status"),
    ])
    def test_requires_session(self, test_client, method, path):
        response = getattr(test_client, method)(path)

        assert response.status_code == 401

    def test_stale_session(self, test_client, create_user, auth_headers, test_db_session):
        user = create_user()
        headers = auth_headers(user)
        test_db_session.delete(user)
        test_db_session.commit()

        response = test_client.get("/api/notifications", headers=headers)

        assert response.status_code == 401

    def test_router_shares_app_limiter(self, test_client):
        from nextlevel.src.api import notifications

        assert notifications.limiter is test_client.app.state.limiter

    def test_deactivated_user(self, test_client, create_user, auth_headers):
        user = create_user(is_active=False)

        response = test_client.get("/api/notifications", headers=auth_headers(user))

        assert response.status_code == 403


# ============================================================================
# Test: history and read state
# ============================================================================


class TestNotificationHistory:

    def test_list_notifications(self, test_client, auth_headers, create_notification, test_client_user):
        create_notification(test_client_user, notification_type="MESSAGE", data={"conversationId": "c1"})
        create_notification(test_client_user, notification_type="SYSTEM", is_read=True)

        response = test_client.get("/api/notifications", headers=auth_headers(test_client_user))

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["unread_count"] == 1
        routes = {item["type"]: item["route"] for item in body["items"]}
        assert routes["MESSAGE"] == "/client-messages?conversation=c1"
        assert routes["SYSTEM"] == "/client-dashboard"

    def test_list_filters(self, test_client, auth_headers, create_notification, test_client_user):
        create_notification(test_client_user, notification_type="MESSAGE")
        create_notification(test_client_user, notification_type="SYSTEM", is_read=True)

        unread = test_client.get(
            "/api/notifications?unread_only=true", headers=auth_headers(test_client_user)
        ).json()
        systems = test_client.get(
            "/api/notifications?type=SYSTEM", headers=auth_headers(test_client_user)
        ).json()

        assert [i["type"] for i in unread["items"]] == ["MESSAGE"]
        assert [i["type"] for i in systems["items"]] == ["SYSTEM"]

    def test_list_rejects_unknown_type(self, test_client, auth_headers, test_client_user):
        response = test_client.get("/api/notifications?type=BIRTHDAY", headers=auth_headers(test_client_user))

        assert response.status_code == 422

    def test_only_own_notifications(
        self, test_client, auth_headers, create_notification, test_client_user, test_coach
    ):
        create_notification(test_coach)

        body = test_client.get("/api/notifications", headers=auth_headers(test_client_user)).json()

        assert body["total"] == 0
        assert body["items"] == []

    def test_unread_count_and_stats(self, test_client, auth_headers, create_notification, test_client_user):
        create_notification(test_client_user, notification_type="MESSAGE")
        create_notification(test_client_user, notification_type="MESSAGE")
        create_notification(test_client_user, notification_type="SYSTEM", is_read=True)
        headers = auth_headers(test_client_user)

        count = test_client.get("/api/notifications/unread-count", headers=headers).json()
        stats = test_client.get("/api/notifications/stats", headers=headers).json()

        assert count == {"unread_count": 2}
        assert stats["total_count"] == 3
        assert stats["unread_count"] == 2
        assert stats["by_type"] == {"MESSAGE": 2}

    def test_mark_read_is_idempotent(self, test_client, auth_headers, create_notification, test_client_user):
        notification = create_notification(test_client_user)
        headers = auth_headers(test_client_user)

        first = test_client.post(f"/api/notifications/{notification.guid}/read", headers=headers)
        second = test_client.post(f"/api/notifications/{notification.guid}/read", headers=headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert first.json()["is_read"] is True
        assert second.json()["read_at"] == first.json()["read_at"]
        assert test_client.get("/api/notifications/unread-count", headers=headers).json()["unread_count"] == 0

    def test_mark_read_foreign_notification(
        self, test_client, auth_headers, create_notification, test_client_user, test_coach
    ):
        notification = create_notification(test_coach)

        response = test_client.post(
            f"/api/notifications/{notification.guid}/read", headers=auth_headers(test_client_user)
        )

        assert response.status_code == 404

    def test_mark_read_unknown_guid(self, test_client, auth_headers, test_client_user):
        response = test_client.post("/api/notifications/not-a-guid/read", headers=auth_headers(test_client_user))

        assert response.status_code == 404

    def test_mark_all_read(self, test_client, auth_headers, create_notification, test_client_user):
        create_notification(test_client_user)
        create_notification(test_client_user)
        headers = auth_headers(test_client_user)

        first = test_client.post("/api/notifications/mark-all-read", headers=headers)
        second = test_client.post("/api/notifications/mark-all-read", headers=headers)

        assert first.json() == {"updated_count": 2}
        assert second.json() == {"updated_count": 0}

    def test_mark_read_publishes_unread_count(
        self, test_client, app_registry, recording_sender, auth_headers, create_notification, test_client_user
    ):
        notification = create_notification(test_client_user)
        create_notification(test_client_user)
        sender = recording_sender()
        test_client.portal.call(app_registry.register, test_client_user.id, sender)

        test_client.post(
            f"/api/notifications/{notification.guid}/read", headers=auth_headers(test_client_user)
        )

        assert sender.sent == [{"type": "unread_count", "data": {"count": 1}}]

    @pytest.mark.parametrize("role,expected_route,expected_action", [
        (UserRole.COACH, "/clients?client=k1", {"label": "View Client", "route": "/clients?client=k1"}),
        (UserRole.CLIENT, "/client-dashboard", None),
    ])
    def test_route_per_viewer_role(
        self,
        test_client,
        auth_headers,
        create_user,
        create_notification,
        role,
        expected_route,
        expected_action,
    ):
        viewer = create_user(role=role)
        notification = create_notification(
            viewer, notification_type="CLIENT_JOIN_REQUEST", data={"clientId": "k1"}
        )

        response = test_client.get(
            f"/api/notifications/{notification.guid}/route", headers=auth_headers(viewer)
        )

        assert response.status_code == 200
        assert response.json() == {"route": expected_route, "action": expected_action}


# ============================================================================
# Test: coach-created notifications
# ============================================================================


class TestCreateNotification:

    def _body(self, user, **overrides):
        body = {
            "user_guid": user.guid,
            "type": "MESSAGE",
            "title": "New message from Coach Carter",
            "message": "Great session today",
            "data": {"conversationId": "c1"},
        }
        body.update(overrides)
        return body

    def test_coach_creates_for_offline_client(
        self, test_client, auth_headers, test_coach, test_client_user, test_db_session
    ):
        response = test_client.post(
            "/api/notifications",
            json=self._body(test_client_user),
            headers=auth_headers(test_coach),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["notification"]["route"] == "/client-messages?conversation=c1"
        assert body["delivery"]["status"] == "queued"
        assert body["delivery"]["reason"] == "recipient offline; web push not configured"

        stored = test_db_session.query(Notification).filter_by(user_id=test_client_user.id).one()
        assert stored.guid == body["notification"]["guid"]
        assert stored.is_read is False

    def test_client_cannot_create(self, test_client, auth_headers, create_user, test_client_user):
        other_client = create_user()

        response = test_client.post(
            "/api/notifications",
            json=self._body(other_client),
            headers=auth_headers(test_client_user),
        )

        assert response.status_code == 403

    def test_coach_recipient_not_allowed(self, test_client, auth_headers, create_user, test_coach):
        other_coach = create_user(role=UserRole.COACH)

        response = test_client.post(
            "/api/notifications",
            json=self._body(other_coach),
            headers=auth_headers(test_coach),
        )

        assert response.status_code == 404

    @pytest.mark.parametrize("guid", ["usr_00000000000000000000000000", "garbage"])
    def test_unknown_recipient(self, test_client, auth_headers, test_coach, test_db_session, guid):
        response = test_client.post(
            "/api/notifications",
            json={"user_guid": guid, "type": "SYSTEM", "title": "Hi", "message": "There"},
            headers=auth_headers(test_coach),
        )

        assert response.status_code == 404
        assert test_db_session.query(Notification).count() == 0

    def test_invalid_type(self, test_client, auth_headers, test_coach, test_client_user):
        response = test_client.post(
            "/api/notifications",
            json=self._body(test_client_user, type="BIRTHDAY"),
            headers=auth_headers(test_coach),
        )

        assert response.status_code == 422

    def test_live_recipient(
        self, test_client, app_registry, recording_sender, auth_headers, test_coach, test_client_user
    ):
        sender = recording_sender()
        test_client.portal.call(app_registry.register, test_client_user.id, sender)

        response = test_client.post(
            "/api/notifications",
            json=self._body(test_client_user),
            headers=auth_headers(test_coach),
        )

        assert response.json()["delivery"] == {
            "status": "delivered",
            "channel": "live",
            "reason": None,
            "live_channels": 1,
            "push_sent": 0,
        }
        assert [frame["type"] for frame in sender.sent] == ["new_message", "unread_count"]
        assert sender.sent[0]["data"]["conversationId"] == "c1"


# ============================================================================
# Test: push subscriptions
# ============================================================================


class TestPushSubscriptions:

    SUBSCRIPTION = {
        "endpoint": "https://push.example.com/device-1",
        "p256dh_key": "test-p256dh",
        "auth_key": "test-auth",
    }

    def test_subscribe_list_unsubscribe(self, test_client, auth_headers, test_client_user, test_db_session):
        headers = {**auth_headers(test_client_user), "User-Agent": "Firefox/130"}

        created = test_client.post("/api/notifications/push/subscribe", json=self.SUBSCRIPTION, headers=headers)
        again = test_client.post("/api/notifications/push/subscribe", json=self.SUBSCRIPTION, headers=headers)

        assert created.status_code == 201
        assert created.json()["guid"].startswith("sub_")
        assert created.json()["user_agent"] == "Firefox/130"
        assert again.json()["guid"] == created.json()["guid"]

        listing = test_client.get("/api/notifications/push/subscriptions", headers=headers).json()
        assert listing["push_enabled"] is True
        assert [s["endpoint"] for s in listing["subscriptions"]] == [self.SUBSCRIPTION["endpoint"]]

        removed = test_client.request(
            "DELETE",
            "/api/notifications/push/subscribe",
            json={"endpoint": self.SUBSCRIPTION["endpoint"]},
            headers=headers,
        )
        assert removed.status_code == 204
        assert test_db_session.query(PushSubscription).count() == 0

        missing = test_client.request(
            "DELETE",
            "/api/notifications/push/subscribe",
            json={"endpoint": self.SUBSCRIPTION["endpoint"]},
            headers=headers,
        )
        assert missing.status_code == 404

    def test_subscribe_requires_https(self, test_client, auth_headers, test_client_user):
        response = test_client.post(
            "/api/notifications/push/subscribe",
            json={**self.SUBSCRIPTION, "endpoint": "http://push.example.com/device-1"},
            headers=auth_headers(test_client_user),
        )

        assert response.status_code == 422

    def test_remove_by_guid(self, test_client, auth_headers, create_subscription, test_client_user, test_coach):
        sub = create_subscription(test_client_user)

        foreign = test_client.delete(
            f"/api/notifications/push/subscriptions/{sub.guid}", headers=auth_headers(test_coach)
        )
        own = test_client.delete(
            f"/api/notifications/push/subscriptions/{sub.guid}", headers=auth_headers(test_client_user)
        )

        assert foreign.status_code == 404
        assert own.status_code == 204

    def test_vapid_key_not_configured(self, test_client):
        response = test_client.get("/api/notifications/push/vapid-key")

        assert response.status_code == 503

    def test_test_push_not_configured(self, test_client, auth_headers, test_client_user):
        response = test_client.post("/api/notifications/push/test", headers=auth_headers(test_client_user))

        assert response.status_code == 503

    def test_test_push_sends_off_event_loop(
        self, test_client, auth_headers, create_subscription, test_db_session, test_client_user
    ):
        from nextlevel.src.dependencies import get_push_provider

        gone = create_subscription(test_client_user, endpoint="https://push.example.com/gone")
        create_subscription(test_client_user, endpoint="https://push.example.com/ok")
        gone_id = gone.id
        on_event_loop = []

        def _send(sub, payload):
            try:
                asyncio.get_running_loop()
                on_event_loop.append(True)
            except RuntimeError:
                on_event_loop.append(False)
            if sub.endpoint.endswith("/gone"):
                return PushResult(PushStatus.GONE, status_code=410)
            return PushResult(PushStatus.SUCCESS, status_code=201)

        provider = MagicMock()
        provider.configured = True
        provider.send.side_effect = _send
        test_client.app.dependency_overrides[get_push_provider] = lambda: provider

        response = test_client.post("/api/notifications/push/test", headers=auth_headers(test_client_user))

        assert response.status_code == 200
        assert response.json() == {"sent": 1, "failed": 0, "removed": 1}
        assert on_event_loop == [False, False]
        assert gone_id not in [s.id for s in test_db_session.query(PushSubscription).all()]

    def test_diagnose(self, test_client, auth_headers, create_user):
        user = create_user(push_notifications=False)

        body = test_client.get("/api/notifications/push/diagnose", headers=auth_headers(user)).json()

        assert body["push_notifications_enabled"] is False
        assert body["message_notifications_enabled"] is True
        assert body["subscription_count"] == 0
        assert body["vapid_configured"] is False
        assert body["live_channels"] == 0
        assert "No push subscriptions found" in body["issues"]
        assert "Push notifications are disabled in user settings" in body["issues"]
        assert "VAPID keys are not configured on the server" in body["issues"]
