"""
Web Push provider.

Thin wrapper around pywebpush that signs requests with the server's VAPID
key and classifies the push service's answer:

- SUCCESS: message accepted by the push service
- GONE: endpoint expired or unknown (404/410), the subscription must be removed
- ERROR: anything else (network failure, 4xx/5xx, bad keys); the subscription is kept
"""

import enum
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pywebpush import WebPushException, webpush

from nextlevel.src.models.push_subscription import PushSubscription
from nextlevel.src.utils.logging_config import get_logger


logger = get_logger("push")

GONE_STATUS_CODES = (404, 410)


class PushStatus(str, enum.Enum):
    SUCCESS = "success"
    GONE = "gone"
    ERROR = "error"


@dataclass(frozen=True)
class PushResult:
    status: PushStatus
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is PushStatus.SUCCESS


class PushGoneError(Exception):
    """Raised when push service returns 404/410 (subscription invalid)."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        super().__init__(f"Push subscription gone: {endpoint[:60]}")


class PushDeliveryError(Exception):
    """Raised when push delivery fails."""
    pass


class WebPushProvider:
    """
    Sends Web Push messages with VAPID authentication.

    Args:
        vapid_private_key: Base64url-encoded VAPID private key
        vapid_claims: VAPID claims (e.g., {"sub": "mailto:coach@nextlevel.app"})
        ttl: Seconds the push service should keep an undelivered message
        urgency: Web Push Urgency header value
    """

    def __init__(
        self,
        vapid_private_key: str,
        vapid_claims: Dict[str, str],
        ttl: int = 86400,
        urgency: str = "high",
    ):
        self.vapid_private_key = vapid_private_key
        self.vapid_claims = vapid_claims
        self.ttl = ttl
        self.urgency = urgency

    @property
    def configured(self) -> bool:
        return bool(self.vapid_private_key and self.vapid_claims.get("sub"))

    def send(self, subscription: PushSubscription, payload: Dict[str, Any]) -> PushResult:
        """
        Deliver a payload to one subscription. Never raises.
        """
        try:
            self._send_push(subscription, json.dumps(payload, default=str))
        except PushGoneError:
            return PushResult(PushStatus.GONE, status_code=410)
        except PushDeliveryError as e:
            response = getattr(e.__cause__, "response", None)
            return PushResult(
                PushStatus.ERROR,
                status_code=getattr(response, "status_code", None),
                error=str(e),
            )
        return PushResult(PushStatus.SUCCESS, status_code=201)

    def _send_push(self, subscription: PushSubscription, payload_json: str) -> None:
        """
        Send a push notification to a single subscription via pywebpush.

        Raises:
            PushGoneError: If the push service answered 404 or 410
            PushDeliveryError: If delivery failed for other reasons
        """
        subscription_info = {
            "endpoint": subscription.endpoint,
            "keys": {
                "p256dh": subscription.p256dh_key,
                "auth": subscription.auth_key,
            },
        }

        try:
            webpush(
                subscription_info=subscription_info,
                data=payload_json,
                vapid_private_key=self.vapid_private_key,
                vapid_claims=dict(self.vapid_claims),
                ttl=self.ttl,
                headers={"Urgency": self.urgency},
            )
        except WebPushException as e:
            if e.response is not None and e.response.status_code in GONE_STATUS_CODES:
                raise PushGoneError(subscription.endpoint) from e
            raise PushDeliveryError(str(e)) from e
        except Exception as e:
            raise PushDeliveryError(str(e)) from e


def build_push_payload(
    title: str,
    body: str,
    url: str,
    notification_guid: Optional[str] = None,
    notification_type: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Payload consumed by the service worker's push handler.
    """
    return {
        "title": title,
        "body": body,
        "icon": "/icons/icon-192x192.png",
        "badge": "/icons/badge-72x72.png",
        "tag": notification_guid or notification_type or "nextlevel",
        "data": {
            **(data or {}),
            "url": url,
            "type": notification_type,
            "notification_guid": notification_guid,
        },
    }
