"""
User and UserSettings models.

Users are coaches or clients of the platform. Account management lives in
the wider application; the notification subsystem only needs identity,
role (to pick the right UI routes) and the delivery preferences stored in
UserSettings.
"""

import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship

from nextlevel.src.models import Base
from nextlevel.src.models.mixins import GuidMixin


class UserRole(enum.Enum):
    """
    Role of a user, which is also the viewer role for notification routing.

    - COACH: Manages clients, programs, schedule and video reviews
    - CLIENT: Trains with a coach, sees the client-side areas of the app
    """
    COACH = "COACH"
    CLIENT = "CLIENT"


class User(Base, GuidMixin):
    """
    Platform user.

    Attributes:
        id: Primary key (internal, never exposed)
        uuid: UUIDv7 for external identification (inherited from GuidMixin)
        guid: GUID string property (usr_xxx, inherited from GuidMixin)
        email: Login email (unique)
        name: Display name used in notification texts
        role: COACH or CLIENT
        is_active: Inactive users cannot receive notifications

    Relationships:
        settings: Delivery preferences (one-to-one, optional)
        notifications: Notification history (one-to-many)
        push_subscriptions: Registered Web Push endpoints (one-to-many)
    """

    __tablename__ = "users"
    GUID_PREFIX = "usr"

    id = Column(Integer, primary_key=True, autoincrement=True)

    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    role = Column(
        Enum(UserRole, name="user_role", create_constraint=True),
        nullable=False,
        default=UserRole.CLIENT,
    )
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    settings = relationship(
        "UserSettings",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    notifications = relationship(
        "Notification",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    push_subscriptions = relationship(
        "PushSubscription",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role={self.role.value if self.role else None})>"


class UserSettings(Base):
    """
    Per-user delivery preferences.

    A user without a settings row gets the column defaults (everything on).

    Attributes:
        push_notifications: Master switch for Web Push delivery
        message_notifications: Web Push for chat messages specifically
        email_notifications: Reserved for the e-mail channel (not delivered here)
    """

    __tablename__ = "user_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    push_notifications = Column(Boolean, nullable=False, default=True)
    message_notifications = Column(Boolean, nullable=False, default=True)
    email_notifications = Column(Boolean, nullable=False, default=True)

    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    user = relationship("User", back_populates="settings")
