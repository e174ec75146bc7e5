"""
Notification model for in-app notification history.

A Notification row is the durable record of an event addressed to one
user. It exists whether or not the event ever reached the user over a live
channel or Web Push; the notification panel and the unread badge read from
this table.
"""

import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB

from nextlevel.src.models import Base
from nextlevel.src.models.mixins import GuidMixin


TITLE_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 1000


class NotificationType(str, enum.Enum):
    """
    Closed set of notification kinds.

    Stored as the plain string value so rows written by newer releases
    (with types this code does not know yet) still load.
    """
    MESSAGE = "MESSAGE"
    CLIENT_JOIN_REQUEST = "CLIENT_JOIN_REQUEST"
    LESSON_SCHEDULED = "LESSON_SCHEDULED"
    LESSON_CANCELLED = "LESSON_CANCELLED"
    SCHEDULE_REQUEST = "SCHEDULE_REQUEST"
    WORKOUT_ASSIGNED = "WORKOUT_ASSIGNED"
    WORKOUT_COMPLETED = "WORKOUT_COMPLETED"
    PROGRAM_ASSIGNED = "PROGRAM_ASSIGNED"
    PROGRESS_UPDATE = "PROGRESS_UPDATE"
    VIDEO_SUBMISSION = "VIDEO_SUBMISSION"
    TIME_SWAP_REQUEST = "TIME_SWAP_REQUEST"
    SYSTEM = "SYSTEM"

    @classmethod
    def coerce(cls, value):
        """Return the enum member for ``value``, or None if it is unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return None


class Notification(Base, GuidMixin):
    """
    Notification event sent to a user.

    Attributes:
        type: NotificationType value
        title: Short notification title (max 200 chars)
        message: Notification body text (max 1000 chars)
        data: JSON payload with the identifiers the UI needs for navigation
        is_read: Read flag, the only mutable state besides read_at
        read_at: Timestamp of the first mark-as-read (null = unread)

    Lifecycle:
        Created by the notification dispatcher, regardless of delivery
        outcome. Only the read state changes afterwards; rows are never
        deleted by the notification subsystem.

    Relationships:
        user: Recipient User (many-to-one)
    """

    __tablename__ = "notifications"
    GUID_PREFIX = "ntf"

    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    type = Column(String(40), nullable=False)
    title = Column(String(TITLE_MAX_LENGTH), nullable=False)
    message = Column(String(MESSAGE_MAX_LENGTH), nullable=False)
    data = Column(JSONB().with_variant(JSON(), "sqlite"), nullable=True)

    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    user = relationship("User", back_populates="notifications")

    __table_args__ = (
        Index("ix_notifications_user_unread", "user_id", "is_read"),
    )

    @property
    def notification_type(self):
        """Typed view of ``type``; None for values this release does not know."""
        return NotificationType.coerce(self.type)

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, user_id={self.user_id}, type='{self.type}', is_read={self.is_read})>"
