"""
Notification service: the durable notification store.

Provides business logic for:
- Creating notification records (used by the notification dispatcher only)
- Listing a user's notifications with pagination and filters
- Unread counts and stats (the polling path for offline clients)
- Idempotent read-state updates

This service never talks to live channels or push services; see
NotificationDispatcher for delivery.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from nextlevel.src.models.notification import (
    MESSAGE_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    Notification,
    NotificationType,
)
from nextlevel.src.services.exceptions import NotFoundError
from nextlevel.src.utils.logging_config import get_logger


logger = get_logger("services")


class NotificationService:
    """
    Service for notification persistence and read state.

    All queries are scoped to the owning user; a notification that belongs
    to someone else is reported as not found.
    """

    def __init__(self, db: Session):
        """
        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    # ========================================================================
    # Creation
    # ========================================================================

    def create(
        self,
        user_id: int,
        notification_type: Any,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        """
        Persist a new unread notification.

        Title and message are truncated to the column limits. Database
        errors propagate to the caller after the session is rolled back.

        Returns:
            The committed Notification
        """
        type_value = (
            notification_type.value
            if isinstance(notification_type, NotificationType)
            else str(notification_type)
        )
        notification = Notification(
            user_id=user_id,
            type=type_value,
            title=(title or "")[:TITLE_MAX_LENGTH],
            message=(message or "")[:MESSAGE_MAX_LENGTH],
            data=data or {},
            is_read=False,
        )
        self.db.add(notification)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(notification)

        logger.info(
            "Notification created",
            extra={
                "guid": notification.guid,
                "user_id": user_id,
                "type": type_value,
            },
        )
        return notification

    # ========================================================================
    # Queries
    # ========================================================================

    def get_by_guid(self, guid: str, user_id: int) -> Notification:
        """
        Get a notification owned by ``user_id``.

        Raises:
            NotFoundError: If the GUID is malformed, unknown, or owned by someone else
        """
        try:
            notification_uuid = Notification.parse_guid(guid)
        except ValueError:
            raise NotFoundError("Notification", guid)

        notification = (
            self.db.query(Notification)
            .filter(
                Notification.uuid == notification_uuid,
                Notification.user_id == user_id,
            )
            .first()
        )
        if not notification:
            raise NotFoundError("Notification", guid)
        return notification

    def list_notifications(
        self,
        user_id: int,
        limit: int = 20,
        offset: int = 0,
        unread_only: bool = False,
        notification_type: Optional[str] = None,
    ) -> Tuple[List[Notification], int]:
        """
        List notifications for a user, newest first.

        Args:
            user_id: User's internal ID
            limit: Maximum results
            offset: Number to skip
            unread_only: If True, only return unread notifications
            notification_type: Optional type filter

        Returns:
            Tuple of (notifications list, total count)
        """
        query = self.db.query(Notification).filter(Notification.user_id == user_id)

        if unread_only:
            query = query.filter(Notification.is_read.is_(False))

        if notification_type:
            query = query.filter(Notification.type == notification_type)

        total = query.count()

        notifications = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return notifications, total

    def list_unread(self, user_id: int, limit: int = 50) -> List[Notification]:
        notifications, _ = self.list_notifications(user_id, limit=limit, unread_only=True)
        return notifications

    def get_unread_count(self, user_id: int) -> int:
        """
        Count unread notifications for a user.

        Pure read; this is what polling clients call.
        """
        return (
            self.db.query(func.count(Notification.id))
            .filter(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
            .scalar()
        )

    def get_stats(self, user_id: int) -> Dict[str, Any]:
        """
        Notification stats for the header badge and notification page.

        Returns:
            Dict with total_count, unread_count, this_week_count, by_type
            (unread count per notification type)
        """
        total_count = (
            self.db.query(func.count(Notification.id))
            .filter(Notification.user_id == user_id)
            .scalar()
        )

        seven_days_ago = datetime.utcnow() - timedelta(days=7)
        this_week_count = (
            self.db.query(func.count(Notification.id))
            .filter(
                Notification.user_id == user_id,
                Notification.created_at >= seven_days_ago,
            )
            .scalar()
        )

        by_type_rows = (
            self.db.query(Notification.type, func.count(Notification.id))
            .filter(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
            .group_by(Notification.type)
            .all()
        )
        by_type = {ntype: count for ntype, count in by_type_rows}

        return {
            "total_count": total_count,
            "unread_count": sum(by_type.values()),
            "this_week_count": this_week_count,
            "by_type": by_type,
        }

    # ========================================================================
    # Read state
    # ========================================================================

    def mark_as_read(self, guid: str, user_id: int) -> Notification:
        """
        Mark a notification as read (idempotent).

        ``read_at`` keeps the time of the first read.

        Raises:
            NotFoundError: If not found or owned by a different user
        """
        notification = self.get_by_guid(guid, user_id)

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.utcnow()
            self.db.commit()
            self.db.refresh(notification)

        return notification

    def mark_all_as_read(self, user_id: int) -> int:
        """
        Mark all unread notifications as read for a user.

        Returns:
            Number of notifications that were marked as read
        """
        updated = (
            self.db.query(Notification)
            .filter(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
            .update(
                {"is_read": True, "read_at": datetime.utcnow()},
                synchronize_session="fetch",
            )
        )
        self.db.commit()

        if updated:
            logger.info(
                "Marked all notifications as read",
                extra={"user_id": user_id, "count": updated},
            )
        return updated
