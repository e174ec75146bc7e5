"""
PushSubscription model for Web Push notification subscriptions.

Stores the push service endpoint and encryption keys needed to deliver
push notifications to a specific user's device/browser.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from nextlevel.src.models import Base
from nextlevel.src.models.mixins import GuidMixin


class PushSubscription(Base, GuidMixin):
    """
    Web Push subscription for a specific user on a specific device/browser.

    Attributes:
        endpoint: Push service URL
        p256dh_key: ECDH public key for payload encryption (Base64url)
        auth_key: Auth secret for message authentication (Base64url)
        user_agent: Browser user agent captured at subscribe time
        last_used_at: Timestamp of last successful push delivery

    Lifecycle:
        Upserted on (user_id, endpoint) when the browser subscribes.
        Removed when the user unsubscribes or the push service answers
        404/410 for the endpoint.
    """

    __tablename__ = "push_subscriptions"
    GUID_PREFIX = "sub"

    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    endpoint = Column(String(1024), nullable=False)
    p256dh_key = Column(String(255), nullable=False)
    auth_key = Column(String(255), nullable=False)

    user_agent = Column(String(500), nullable=True)

    last_used_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    user = relationship("User", back_populates="push_subscriptions")

    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", name="uq_push_subscriptions_user_endpoint"),
    )
