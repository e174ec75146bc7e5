"""
Unit tests for PushSubscriptionService.
"""

import pytest

from nextlevel.src.models.push_subscription import PushSubscription
from nextlevel.src.services.exceptions import NotFoundError
from nextlevel.src.services.push_subscription_service import PushSubscriptionService


@pytest.fixture
def subscription_service(test_db_session):
    return PushSubscriptionService(db=test_db_session)


class TestUpsert:
    """Tests for PushSubscriptionService.upsert."""

    def test_creates_subscription(self, subscription_service, test_client_user):
        sub = subscription_service.upsert(
            user_id=test_client_user.id,
            endpoint="https://push.example.com/a",
            p256dh_key="p256",
            auth_key="auth",
            user_agent="Firefox",
        )

        assert sub.guid.startswith("sub_")
        assert sub.user_agent == "Firefox"
        assert subscription_service.count_by_user(test_client_user.id) == 1

    def test_same_endpoint_refreshes_keys(self, subscription_service, test_client_user):
        first = subscription_service.upsert(
            test_client_user.id, "https://push.example.com/a", "old-p256", "old-auth"
        )
        second = subscription_service.upsert(
            test_client_user.id, "https://push.example.com/a", "new-p256", "new-auth"
        )

        assert first.id == second.id
        assert second.p256dh_key == "new-p256"
        assert second.auth_key == "new-auth"
        assert subscription_service.count_by_user(test_client_user.id) == 1

    def test_same_endpoint_for_two_users(self, subscription_service, test_client_user, test_coach):
        subscription_service.upsert(test_client_user.id, "https://push.example.com/shared", "k", "a")
        subscription_service.upsert(test_coach.id, "https://push.example.com/shared", "k", "a")

        assert subscription_service.count_by_user(test_client_user.id) == 1
        assert subscription_service.count_by_user(test_coach.id) == 1


class TestRemoval:
    """Tests for the removal operations."""

    def test_remove_by_endpoint(self, subscription_service, create_subscription, test_client_user):
        create_subscription(test_client_user, endpoint="https://push.example.com/x")

        assert subscription_service.remove_by_endpoint(test_client_user.id, "https://push.example.com/x")
        assert subscription_service.list_by_user(test_client_user.id) == []

    def test_remove_by_endpoint_wrong_user(
        self, subscription_service, create_subscription, test_client_user, test_coach
    ):
        create_subscription(test_client_user, endpoint="https://push.example.com/x")

        with pytest.raises(NotFoundError):
            subscription_service.remove_by_endpoint(test_coach.id, "https://push.example.com/x")

    def test_remove_by_guid(self, subscription_service, create_subscription, test_client_user):
        sub = create_subscription(test_client_user)

        assert subscription_service.remove_by_guid(test_client_user.id, sub.guid)
        assert subscription_service.count_by_user(test_client_user.id) == 0

    @pytest.mark.parametrize("guid", ["not-a-guid", "sub_00000000000000000000000000"])
    def test_remove_by_unknown_guid(self, subscription_service, test_client_user, guid):
        with pytest.raises(NotFoundError):
            subscription_service.remove_by_guid(test_client_user.id, guid)

    def test_remove_invalid_waits_for_commit(
        self, subscription_service, create_subscription, test_db_session, test_client_user
    ):
        gone = create_subscription(test_client_user)
        kept = create_subscription(test_client_user)

        subscription_service.remove_invalid(gone)
        test_db_session.commit()

        remaining = test_db_session.query(PushSubscription).all()
        assert [s.id for s in remaining] == [kept.id]

    def test_update_last_used(self, subscription_service, create_subscription, test_db_session, test_client_user):
        sub = create_subscription(test_client_user)
        assert sub.last_used_at is None

        subscription_service.update_last_used(sub)
        test_db_session.commit()
        test_db_session.refresh(sub)

        assert sub.last_used_at is not None
