"""
Notification routing: where a notification leads in the UI.

Pure functions shared by the notification API, the live envelopes and the
Web Push payloads:

- compute_route: destination path for a notification and viewer role
- compute_action: optional quick-action button (label + path)
- delivery_channel: which transport the dispatcher should use

Routes are computed for the coach UI first; for a client viewer the path
prefix is rewritten to the client area, keeping the query string. Coach-only
areas (client list, video review queue) have no client page and collapse to
the client dashboard.

None of these functions raise.
"""

import enum
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote

from nextlevel.src.models.notification import NotificationType
from nextlevel.src.models.user import UserRole
from nextlevel.src.schemas.notification_payloads import parse_payload


DEFAULT_ROUTE = "/dashboard"
CLIENT_DEFAULT_ROUTE = "/client-dashboard"

CLIENT_PATH_REWRITES = {
    "/messages": "/client-messages",
    "/schedule": "/client-schedule",
    "/time-swap": "/client-schedule",
    "/programs": "/client-program",
    "/notifications": "/client-notifications",
    "/dashboard": CLIENT_DEFAULT_ROUTE,
}

# Coach-only areas without a client-facing page
COACH_ONLY_PATHS = frozenset({"/clients", "/videos"})

_LESSON_TYPES = (
    NotificationType.LESSON_SCHEDULED,
    NotificationType.LESSON_CANCELLED,
    NotificationType.SCHEDULE_REQUEST,
)
_PROGRAM_TYPES = (
    NotificationType.WORKOUT_ASSIGNED,
    NotificationType.WORKOUT_COMPLETED,
    NotificationType.PROGRAM_ASSIGNED,
)


@dataclass(frozen=True)
class NotificationAction:
    """Quick-action button rendered next to a notification."""
    label: str
    route: str

    def to_dict(self) -> dict:
        return {"label": self.label, "route": self.route}


class DeliveryChannel(str, enum.Enum):
    """Transport chosen by the dispatcher for a single notification."""
    LIVE = "live"
    WEB_PUSH = "web_push"
    NONE = "none"


def _param(value: Any) -> str:
    return quote(str(value), safe="")


def _coerce_role(role: Any) -> UserRole:
    if isinstance(role, UserRole):
        return role
    try:
        return UserRole(str(role).upper())
    except ValueError:
        return UserRole.COACH


def _coach_route(ntype: Optional[NotificationType], payload: Any) -> str:
    if ntype is NotificationType.MESSAGE:
        if payload.conversation_id:
            return f"/messages?conversation={_param(payload.conversation_id)}"
        if payload.message_id:
            return f"/messages?message={_param(payload.message_id)}"
        return "/messages"

    if ntype is NotificationType.CLIENT_JOIN_REQUEST:
        if payload.client_id:
            return f"/clients?client={_param(payload.client_id)}"
        if payload.client_user_id:
            return f"/clients?user={_param(payload.client_user_id)}"
        return "/clients"

    if ntype in _LESSON_TYPES:
        if payload.event_id:
            return f"/schedule?event={_param(payload.event_id)}"
        return "/schedule"

    if ntype in _PROGRAM_TYPES:
        if payload.program_id:
            return f"/programs?program={_param(payload.program_id)}"
        if payload.drill_id:
            return f"/programs?drill={_param(payload.drill_id)}"
        return "/programs"

    if ntype is NotificationType.PROGRESS_UPDATE:
        if payload.program_id:
            return f"/programs?program={_param(payload.program_id)}&tab=progress"
        return "/programs"

    if ntype is NotificationType.VIDEO_SUBMISSION:
        if payload.video_submission_id:
            return f"/videos?submission={_param(payload.video_submission_id)}"
        return "/videos"

    if ntype is NotificationType.TIME_SWAP_REQUEST:
        if payload.swap_request_id:
            return f"/time-swap?request={_param(payload.swap_request_id)}"
        return "/time-swap"

    return DEFAULT_ROUTE


def _coach_action(ntype: Optional[NotificationType], payload: Any) -> Optional[NotificationAction]:
    if ntype is NotificationType.CLIENT_JOIN_REQUEST:
        if payload.client_id or payload.client_user_id:
            return NotificationAction("View Client", _coach_route(ntype, payload))
        return NotificationAction("View Clients", "/clients")

    if ntype is NotificationType.MESSAGE:
        # Only a conversation is specific enough for the detail button
        if payload.conversation_id:
            return NotificationAction(
                "View Message", f"/messages?conversation={_param(payload.conversation_id)}"
            )
        return NotificationAction("View Messages", "/messages")

    if ntype in _LESSON_TYPES:
        if payload.event_id:
            return NotificationAction("View Lesson", _coach_route(ntype, payload))
        return NotificationAction("View Schedule", "/schedule")

    if ntype in _PROGRAM_TYPES:
        if payload.program_id:
            return NotificationAction(
                "View Program", f"/programs?program={_param(payload.program_id)}"
            )
        return NotificationAction("View Programs", "/programs")

    if ntype is NotificationType.VIDEO_SUBMISSION:
        if payload.video_submission_id:
            return NotificationAction("View Video", _coach_route(ntype, payload))
        return NotificationAction("View Videos", "/videos")

    if ntype is NotificationType.TIME_SWAP_REQUEST:
        if payload.swap_request_id:
            return NotificationAction("View Swap", _coach_route(ntype, payload))
        return NotificationAction("View Swaps", "/time-swap")

    return None


def rewrite_for_role(path: str, role: Any) -> str:
    """
    Rewrite a coach path for the given viewer role.

    Only the path prefix changes; the query string is carried over as is.

    Example:
        >>> rewrite_for_role("/messages?conversation=c1", UserRole.CLIENT)
        '/client-messages?conversation=c1'
    """
    if _coerce_role(role) is not UserRole.CLIENT:
        return path

    base, sep, query = path.partition("?")
    if base in COACH_ONLY_PATHS:
        return CLIENT_DEFAULT_ROUTE

    target = CLIENT_PATH_REWRITES.get(base)
    if target is None:
        return path
    return f"{target}{sep}{query}"


def compute_route(notification_type: Any, payload: Any = None, role: Any = UserRole.COACH) -> str:
    """
    Destination path for a notification.

    Args:
        notification_type: NotificationType or its string value (unknown values allowed)
        payload: Typed payload or raw JSON map (may be None)
        role: Viewer role (UserRole or "COACH"/"CLIENT")

    Returns:
        Non-empty path; "/dashboard" (or "/client-dashboard") for unknown types
    """
    ntype = NotificationType.coerce(notification_type)
    typed = parse_payload(ntype, payload)
    return rewrite_for_role(_coach_route(ntype, typed), role)


def compute_action(
    notification_type: Any,
    payload: Any = None,
    role: Any = UserRole.COACH,
) -> Optional[NotificationAction]:
    """
    Quick action for a notification, or None when the type has none.

    Clients get no action for coach-only destinations.
    """
    ntype = NotificationType.coerce(notification_type)
    action = _coach_action(ntype, parse_payload(ntype, payload))
    if action is None:
        return None

    if _coerce_role(role) is UserRole.CLIENT:
        if action.route.partition("?")[0] in COACH_ONLY_PATHS:
            return None
        return NotificationAction(action.label, rewrite_for_role(action.route, UserRole.CLIENT))
    return action


def delivery_channel(has_live_channel: bool, push_allowed: bool) -> DeliveryChannel:
    """
    Transport for a notification given the recipient's current state.

    Live channels win; Web Push is the fallback for offline recipients.
    """
    if has_live_channel:
        return DeliveryChannel.LIVE
    if push_allowed:
        return DeliveryChannel.WEB_PUSH
    return DeliveryChannel.NONE
