"""
SQLAlchemy models for the NextLevel backend.

This module provides the declarative base class and imports all models
to ensure they are registered with SQLAlchemy's metadata.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()


# Import all models here so they are registered with Base.metadata
# This is required for Alembic autogenerate to detect models
from nextlevel.src.models.user import User, UserRole, UserSettings
from nextlevel.src.models.notification import Notification, NotificationType
from nextlevel.src.models.push_subscription import PushSubscription

__all__ = [
    "Base",
    "User",
    "UserRole",
    "UserSettings",
    "Notification",
    "NotificationType",
    "PushSubscription",
]
