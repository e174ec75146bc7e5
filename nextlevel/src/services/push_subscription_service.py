"""
Push subscription service for managing Web Push subscriptions.

Provides business logic for subscribing, unsubscribing, listing,
and cleaning up push notification subscriptions.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from nextlevel.src.models.push_subscription import PushSubscription
from nextlevel.src.services.exceptions import NotFoundError
from nextlevel.src.utils.logging_config import get_logger


logger = get_logger("services")


class PushSubscriptionService:
    """
    Service for managing Web Push subscriptions.

    Handles subscription lifecycle:
    - Upsert on (user, endpoint)
    - Remove (by endpoint or GUID, scoped to the owning user)
    - List (by user)
    - Remove invalid (404/410) subscriptions reported by the push service
    """

    def __init__(self, db: Session):
        self.db = db

    def upsert(
        self,
        user_id: int,
        endpoint: str,
        p256dh_key: str,
        auth_key: str,
        user_agent: Optional[str] = None,
    ) -> PushSubscription:
        """
        Create or refresh a push subscription.

        The browser re-sends its subscription on every page load; a known
        (user, endpoint) pair only gets its keys and user agent refreshed.

        Args:
            user_id: Owning user's internal ID
            endpoint: Push service endpoint URL
            p256dh_key: ECDH public key (Base64url)
            auth_key: Auth secret (Base64url)
            user_agent: Browser user agent, if known

        Returns:
            Created or updated PushSubscription
        """
        existing = (
            self.db.query(PushSubscription)
            .filter(
                PushSubscription.user_id == user_id,
                PushSubscription.endpoint == endpoint,
            )
            .first()
        )

        if existing:
            existing.p256dh_key = p256dh_key
            existing.auth_key = auth_key
            if user_agent:
                existing.user_agent = user_agent[:500]
            existing.updated_at = datetime.utcnow()
            self.db.commit()
            self.db.refresh(existing)
            logger.info(
                "Updated push subscription",
                extra={"endpoint_prefix": endpoint[:60], "user_id": user_id},
            )
            return existing

        subscription = PushSubscription(
            user_id=user_id,
            endpoint=endpoint,
            p256dh_key=p256dh_key,
            auth_key=auth_key,
            user_agent=user_agent[:500] if user_agent else None,
        )
        self.db.add(subscription)
        self.db.commit()
        self.db.refresh(subscription)
        logger.info(
            "Created push subscription",
            extra={"guid": subscription.guid, "user_id": user_id},
        )
        return subscription

    def list_by_user(self, user_id: int) -> List[PushSubscription]:
        """
        List all push subscriptions for a user, newest first.
        """
        return (
            self.db.query(PushSubscription)
            .filter(PushSubscription.user_id == user_id)
            .order_by(PushSubscription.created_at.desc(), PushSubscription.id.desc())
            .all()
        )

    def count_by_user(self, user_id: int) -> int:
        return (
            self.db.query(PushSubscription)
            .filter(PushSubscription.user_id == user_id)
            .count()
        )

    def remove_by_endpoint(self, user_id: int, endpoint: str) -> bool:
        """
        Remove a push subscription by endpoint for a specific user.

        Raises:
            NotFoundError: If no subscription matches endpoint + user
        """
        subscription = (
            self.db.query(PushSubscription)
            .filter(
                PushSubscription.endpoint == endpoint,
                PushSubscription.user_id == user_id,
            )
            .first()
        )

        if not subscription:
            raise NotFoundError("PushSubscription", endpoint[:60])

        self.delete(subscription)
        logger.info(
            "Removed push subscription",
            extra={"endpoint_prefix": endpoint[:60], "user_id": user_id},
        )
        return True

    def remove_by_guid(self, user_id: int, guid: str) -> bool:
        """
        Remove a push subscription by its GUID (e.g. a lost device).

        Raises:
            NotFoundError: If no subscription matches guid + user
        """
        try:
            sub_uuid = PushSubscription.parse_guid(guid)
        except ValueError:
            raise NotFoundError("PushSubscription", guid)

        subscription = (
            self.db.query(PushSubscription)
            .filter(
                PushSubscription.uuid == sub_uuid,
                PushSubscription.user_id == user_id,
            )
            .first()
        )

        if not subscription:
            raise NotFoundError("PushSubscription", guid)

        self.delete(subscription)
        logger.info(
            "Removed push subscription by GUID",
            extra={"guid": guid, "user_id": user_id},
        )
        return True

    def delete(self, subscription: PushSubscription) -> None:
        self.db.delete(subscription)
        self.db.commit()

    def remove_invalid(self, subscription: PushSubscription) -> None:
        """
        Remove a subscription the push service reported as gone (404/410).

        Flushed with the caller's transaction; the dispatcher commits once
        after the whole fan-out.
        """
        logger.info(
            "Removing invalid push subscription",
            extra={
                "guid": subscription.guid,
                "user_id": subscription.user_id,
                "endpoint_prefix": (subscription.endpoint or "?")[:60],
            },
        )
        self.db.delete(subscription)

    def update_last_used(self, subscription: PushSubscription) -> None:
        """
        Stamp last_used_at after a successful push delivery (committed by the caller).
        """
        subscription.last_used_at = datetime.utcnow()
