"""
Notifications API endpoints.

Provides endpoints for:
- Notification history (list, unread count, stats, per-viewer routes)
- Read state (mark one, mark all), with live unread-count updates
- Coach-created notifications for their clients
- Push subscription management (subscribe, unsubscribe, list)
- Web Push utilities (VAPID public key, test push, diagnostics)
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from nextlevel.src.db.database import get_db
from nextlevel.src.dependencies import (
    get_connection_registry,
    get_notification_dispatcher,
    get_push_provider,
)
from nextlevel.src.middleware.auth import AuthContext, require_auth, require_coach
from nextlevel.src.models.notification import NotificationType
from nextlevel.src.models.user import UserRole
from nextlevel.src.schemas.notifications import (
    DeliveryOutcomeResponse,
    MarkAllReadResponse,
    NotificationActionResponse,
    NotificationCreate,
    NotificationCreateResponse,
    NotificationListResponse,
    NotificationResponse,
    NotificationRouteResponse,
    NotificationStatsResponse,
    PushDiagnosticsResponse,
    PushSubscriptionCreate,
    PushSubscriptionListResponse,
    PushSubscriptionRemove,
    PushSubscriptionResponse,
    PushTestResponse,
    UnreadCountResponse,
    VapidKeyResponse,
)
from nextlevel.src.services.exceptions import NotFoundError
from nextlevel.src.services.notification_dispatcher import NotificationDispatcher
from nextlevel.src.services.notification_service import NotificationService
from nextlevel.src.services.push_provider import PushStatus, WebPushProvider, build_push_payload
from nextlevel.src.services.push_subscription_service import PushSubscriptionService
from nextlevel.src.services.user_directory import UserDirectory
from nextlevel.src.config.settings import get_settings
from nextlevel.src.main import limiter
from nextlevel.src.utils.connection_registry import ConnectionRegistry
from nextlevel.src.utils.logging_config import get_logger
from nextlevel.src.utils.notification_routing import compute_action, compute_route


logger = get_logger("api")


router = APIRouter(
    prefix="/notifications",
    tags=["Notifications"],
)


# ============================================================================
# Dependencies
# ============================================================================


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    """Create NotificationService instance with database session."""
    return NotificationService(db=db)


def get_push_subscription_service(db: Session = Depends(get_db)) -> PushSubscriptionService:
    """Create PushSubscriptionService instance with database session."""
    return PushSubscriptionService(db=db)


def get_user_directory(db: Session = Depends(get_db)) -> UserDirectory:
    return UserDirectory(db=db)


# ============================================================================
# Notification History Endpoints
# ============================================================================


@router.get(
    "",
    response_model=NotificationListResponse,
    summary="List notifications",
)
@limiter.limit("60/minute")
async def list_notifications(
    request: Request,
    limit: int = Query(default=20, ge=1, le=50),
    offset: int = Query(default=0, ge=0),
    unread_only: bool = Query(default=False),
    type: Optional[NotificationType] = Query(default=None, description="Filter by type"),
    ctx: AuthContext = Depends(require_auth),
    service: NotificationService = Depends(get_notification_service),
):
    """
    Returns the authenticated user's notifications, newest first, each with
    the destination route and quick action for the user's role.
    """
    notifications, total = service.list_notifications(
        user_id=ctx.user_id,
        limit=limit,
        offset=offset,
        unread_only=unread_only,
        notification_type=type.value if type else None,
    )
    return NotificationListResponse(
        items=[NotificationResponse.from_model(n, ctx.role) for n in notifications],
        total=total,
        unread_count=service.get_unread_count(ctx.user_id),
        limit=limit,
        offset=offset,
    )


@router.get(
    "/unread-count",
    response_model=UnreadCountResponse,
    summary="Get unread notification count",
)
@limiter.limit("120/minute")
async def get_unread_count(
    request: Request,
    ctx: AuthContext = Depends(require_auth),
    service: NotificationService = Depends(get_notification_service),
):
    """
    Returns the count of unread notifications for the notification bell badge.

    Clients without a live channel poll this endpoint.
    """
    return UnreadCountResponse(unread_count=service.get_unread_count(ctx.user_id))


@router.get(
    "/stats",
    response_model=NotificationStatsResponse,
    summary="Get notification stats",
)
@limiter.limit("60/minute")
async def get_notification_stats(
    request: Request,
    ctx: AuthContext = Depends(require_auth),
    service: NotificationService = Depends(get_notification_service),
):
    """
    Returns total, unread and this-week counts plus unread counts per type.
    """
    return NotificationStatsResponse(**service.get_stats(ctx.user_id))


@router.post(
    "/mark-all-read",
    response_model=MarkAllReadResponse,
    summary="Mark all notifications as read",
)
@limiter.limit("30/minute")
async def mark_all_notifications_read(
    request: Request,
    ctx: AuthContext = Depends(require_auth),
    service: NotificationService = Depends(get_notification_service),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Mark all unread notifications as read for the authenticated user.

    Idempotent: calling when everything is already read returns 0.
    """
    updated_count = service.mark_all_as_read(ctx.user_id)
    if updated_count:
        await dispatcher.publish_unread_count(ctx.user_id)
    return MarkAllReadResponse(updated_count=updated_count)


@router.post(
    "/{guid}/read",
    response_model=NotificationResponse,
    summary="Mark a notification as read",
)
@limiter.limit("60/minute")
async def mark_notification_read(
    request: Request,
    guid: str,
    ctx: AuthContext = Depends(require_auth),
    service: NotificationService = Depends(get_notification_service),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Mark a single notification as read. Idempotent.
    """
    try:
        was_unread = not service.get_by_guid(guid, ctx.user_id).is_read
        notification = service.mark_as_read(guid, ctx.user_id)
    except NotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        ) from err

    if was_unread:
        await dispatcher.publish_unread_count(ctx.user_id)
    return NotificationResponse.from_model(notification, ctx.role)


@router.get(
    "/{guid}/route",
    response_model=NotificationRouteResponse,
    summary="Get the destination of a notification",
)
@limiter.limit("60/minute")
async def get_notification_route(
    request: Request,
    guid: str,
    ctx: AuthContext = Depends(require_auth),
    service: NotificationService = Depends(get_notification_service),
):
    """
    Returns the UI route and quick action of a notification for the current viewer.
    """
    try:
        notification = service.get_by_guid(guid, ctx.user_id)
    except NotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        ) from err

    action = compute_action(notification.type, notification.data, ctx.role)
    return NotificationRouteResponse(
        route=compute_route(notification.type, notification.data, ctx.role),
        action=NotificationActionResponse(**action.to_dict()) if action else None,
    )


# ============================================================================
# Notification Creation
# ============================================================================


@router.post(
    "",
    response_model=NotificationCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a notification to a client",
)
@limiter.limit("30/minute")
async def create_notification(
    request: Request,
    body: NotificationCreate,
    ctx: AuthContext = Depends(require_coach),
    users: UserDirectory = Depends(get_user_directory),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Coach-only: store a notification for one of the platform's clients and
    deliver it live or by Web Push.

    The response reports how the notification was delivered; a recipient
    that is offline without push still gets the stored notification.
    """
    try:
        recipient = users.get_by_guid(body.user_guid)
    except NotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Recipient not found",
        ) from err

    if recipient.role != UserRole.CLIENT:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Recipient not found",
        )

    result = await dispatcher.dispatch(
        recipient_id=recipient.id,
        notification_type=body.type,
        title=body.title,
        message=body.message,
        payload=body.data,
    )

    logger.info(
        "Coach notification sent",
        extra={
            "coach_id": ctx.user_id,
            "recipient_id": recipient.id,
            "type": body.type.value,
            "status": result.outcome.status.value,
        },
    )

    outcome = result.outcome
    return NotificationCreateResponse(
        notification=NotificationResponse.from_model(result.notification, recipient.role),
        delivery=DeliveryOutcomeResponse(
            status=outcome.status.value,
            channel=outcome.channel.value,
            reason=outcome.reason,
            live_channels=outcome.live_channels,
            push_sent=outcome.push_sent,
        ),
    )


# ============================================================================
# Push Subscription Endpoints
# ============================================================================


@router.post(
    "/push/subscribe",
    response_model=PushSubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a push subscription",
)
@limiter.limit("10/minute")
async def create_push_subscription(
    request: Request,
    body: PushSubscriptionCreate,
    ctx: AuthContext = Depends(require_auth),
    service: PushSubscriptionService = Depends(get_push_subscription_service),
):
    """
    Register (or refresh) a Web Push subscription for the current device.
    """
    subscription = service.upsert(
        user_id=ctx.user_id,
        endpoint=body.endpoint,
        p256dh_key=body.p256dh_key,
        auth_key=body.auth_key,
        user_agent=request.headers.get("user-agent"),
    )
    return PushSubscriptionResponse.model_validate(subscription)


@router.delete(
    "/push/subscribe",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a push subscription",
)
@limiter.limit("10/minute")
async def remove_push_subscription(
    request: Request,
    body: PushSubscriptionRemove,
    ctx: AuthContext = Depends(require_auth),
    service: PushSubscriptionService = Depends(get_push_subscription_service),
):
    """
    Remove the push subscription matching the given endpoint for the authenticated user.
    """
    try:
        service.remove_by_endpoint(user_id=ctx.user_id, endpoint=body.endpoint)
    except NotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Subscription not found",
        ) from err


@router.delete(
    "/push/subscriptions/{guid}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a push subscription by GUID",
)
@limiter.limit("10/minute")
async def remove_push_subscription_by_guid(
    request: Request,
    guid: str,
    ctx: AuthContext = Depends(require_auth),
    service: PushSubscriptionService = Depends(get_push_subscription_service),
):
    """
    Remove a subscription of another device (e.g. a lost phone) by its GUID.
    """
    try:
        service.remove_by_guid(user_id=ctx.user_id, guid=guid)
    except NotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Subscription not found",
        ) from err


@router.get(
    "/push/subscriptions",
    response_model=PushSubscriptionListResponse,
    summary="List push subscriptions",
)
@limiter.limit("30/minute")
async def list_push_subscriptions(
    request: Request,
    ctx: AuthContext = Depends(require_auth),
    service: PushSubscriptionService = Depends(get_push_subscription_service),
    users: UserDirectory = Depends(get_user_directory),
):
    """
    Returns the user's push preference and registered devices.
    """
    user = users.find_user(ctx.user_id)
    preferences = users.get_preferences(user)
    return PushSubscriptionListResponse(
        push_enabled=preferences.push_notifications,
        subscriptions=[
            PushSubscriptionResponse.model_validate(s)
            for s in service.list_by_user(ctx.user_id)
        ],
    )


@router.get(
    "/push/vapid-key",
    response_model=VapidKeyResponse,
    summary="Get VAPID public key",
)
async def get_vapid_public_key():
    """
    Returns the server's VAPID public key for the browser's PushManager.subscribe().
    """
    settings = get_settings()
    if not settings.vapid_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Push notifications are not configured on this server",
        )
    return VapidKeyResponse(vapid_public_key=settings.vapid_public_key)


@router.post(
    "/push/test",
    response_model=PushTestResponse,
    summary="Send a test push to all of the user's devices",
)
@limiter.limit("5/minute")
async def send_test_push(
    request: Request,
    ctx: AuthContext = Depends(require_auth),
    service: PushSubscriptionService = Depends(get_push_subscription_service),
    push_provider: Optional[WebPushProvider] = Depends(get_push_provider),
):
    """
    Send a test push to every registered device. Devices the push service
    reports as gone are removed. Nothing is stored as a notification.
    """
    if push_provider is None or not push_provider.configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Push notifications are not configured on this server",
        )

    subscriptions = service.list_by_user(ctx.user_id)
    if not subscriptions:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No push subscriptions registered",
        )

    payload = build_push_payload(
        title="Test Notification",
        body="Push notifications are working on this device",
        url=compute_route(NotificationType.SYSTEM, None, ctx.role),
        notification_type=NotificationType.SYSTEM.value,
    )

    loop = asyncio.get_running_loop()
    sent = failed = removed = 0
    for sub in subscriptions:
        result = await loop.run_in_executor(None, push_provider.send, sub, payload)
        if result.status is PushStatus.SUCCESS:
            service.update_last_used(sub)
            sent += 1
        elif result.status is PushStatus.GONE:
            service.remove_invalid(sub)
            removed += 1
        else:
            failed += 1
    service.db.commit()

    return PushTestResponse(sent=sent, failed=failed, removed=removed)


@router.get(
    "/push/diagnose",
    response_model=PushDiagnosticsResponse,
    summary="Diagnose push notification setup",
)
@limiter.limit("10/minute")
async def diagnose_push(
    request: Request,
    ctx: AuthContext = Depends(require_auth),
    service: PushSubscriptionService = Depends(get_push_subscription_service),
    users: UserDirectory = Depends(get_user_directory),
    registry: ConnectionRegistry = Depends(get_connection_registry),
):
    """
    Explains why a user might not be receiving push notifications.
    """
    user = users.find_user(ctx.user_id)
    preferences = users.get_preferences(user)
    subscription_count = service.count_by_user(ctx.user_id)
    vapid_configured = get_settings().vapid_configured

    issues = []
    recommendations = []

    if not preferences.push_notifications:
        issues.append("Push notifications are disabled in user settings")
        recommendations.append("Enable push notifications in your settings")
    if not preferences.message_notifications:
        issues.append("Message notifications are disabled in user settings")
        recommendations.append("Enable message notifications in your settings")
    if subscription_count == 0:
        issues.append("No push subscriptions found")
        recommendations.append("Allow notifications in your browser and re-open the app")
    if not vapid_configured:
        issues.append("VAPID keys are not configured on the server")
        recommendations.append("Contact support: server push configuration is missing")

    return PushDiagnosticsResponse(
        push_notifications_enabled=preferences.push_notifications,
        message_notifications_enabled=preferences.message_notifications,
        subscription_count=subscription_count,
        vapid_configured=vapid_configured,
        live_channels=registry.count(ctx.user_id),
        issues=issues,
        recommendations=recommendations,
    )
