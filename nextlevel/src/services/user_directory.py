"""
User lookups needed by the notification subsystem.

Resolves recipients and their delivery preferences. A user without a
UserSettings row is treated as having every preference enabled.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from nextlevel.src.models.notification import NotificationType
from nextlevel.src.models.user import User, UserSettings
from nextlevel.src.services.exceptions import NotFoundError


@dataclass(frozen=True)
class DeliveryPreferences:
    push_notifications: bool = True
    message_notifications: bool = True
    email_notifications: bool = True

    def allows_push(self, notification_type) -> bool:
        """Web Push allowed for this type? Messages also need message_notifications."""
        if not self.push_notifications:
            return False
        if NotificationType.coerce(notification_type) is NotificationType.MESSAGE:
            return self.message_notifications
        return True


class UserDirectory:
    def __init__(self, db: Session):
        self.db = db

    def find_user(self, user_id: int, active_only: bool = True) -> Optional[User]:
        """Return the user, or None if unknown (or inactive when active_only)."""
        query = self.db.query(User).filter(User.id == user_id)
        if active_only:
            query = query.filter(User.is_active.is_(True))
        return query.first()

    def get_by_guid(self, guid: str, active_only: bool = True) -> User:
        """
        Raises:
            NotFoundError: If the GUID is malformed or no matching user exists
        """
        try:
            user_uuid = User.parse_guid(guid)
        except ValueError:
            raise NotFoundError("User", guid)

        query = self.db.query(User).filter(User.uuid == user_uuid)
        if active_only:
            query = query.filter(User.is_active.is_(True))
        user = query.first()
        if not user:
            raise NotFoundError("User", guid)
        return user

    def get_preferences(self, user: User) -> DeliveryPreferences:
        settings: Optional[UserSettings] = user.settings
        if settings is None:
            return DeliveryPreferences()
        return DeliveryPreferences(
            push_notifications=bool(settings.push_notifications),
            message_notifications=bool(settings.message_notifications),
            email_notifications=bool(settings.email_notifications),
        )
