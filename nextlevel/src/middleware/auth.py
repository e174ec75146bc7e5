"""
Authentication dependencies for API routes and live channels.

Provides:
- AuthContext: Dataclass describing the authenticated user
- get_auth_context / require_auth: FastAPI dependencies for HTTP routes
- require_coach: Dependency restricting a route to coaches
- get_websocket_auth_context: Authentication for WebSocket endpoints

Login itself happens in the main web application, which stores the user's
GUID in the signed session cookie (``request.session["user_guid"]``).
This module only resolves that session to an active user.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from nextlevel.src.db.database import SessionLocal, get_db
from nextlevel.src.models.user import User, UserRole
from nextlevel.src.utils.logging_config import get_logger


logger = get_logger("api")


@dataclass
class AuthContext:
    """
    The authenticated user of a request.

    Attributes:
        user_id: Internal user ID for database queries
        user_guid: User's external GUID (usr_xxx) for API responses
        role: COACH or CLIENT, used for notification routing
        email: User's email address

    Usage:
        @router.get("/items")
        async def list_items(ctx: AuthContext = Depends(require_auth)):
            return service.list_items(user_id=ctx.user_id)
    """

    user_id: int
    user_guid: str
    role: UserRole
    email: Optional[str] = None

    @property
    def is_coach(self) -> bool:
        return self.role == UserRole.COACH


def _unauthorized(detail: str = "Authentication required") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _context_for(user: User) -> AuthContext:
    return AuthContext(
        user_id=user.id,
        user_guid=user.guid,
        role=user.role,
        email=user.email,
    )


def _lookup_session_user(db: Session, user_guid: str) -> Optional[User]:
    try:
        user_uuid = User.parse_guid(user_guid)
    except ValueError:
        return None
    return db.query(User).filter(User.uuid == user_uuid).first()


async def get_auth_context(
    request: Request,
    db: Session = Depends(get_db),
) -> AuthContext:
    """
    FastAPI dependency resolving the session cookie to an AuthContext.

    Raises:
        HTTPException 401: If not authenticated or the session is stale
        HTTPException 403: If the user is deactivated
    """
    session = request.session if "session" in request.scope else {}
    user_guid = session.get("user_guid")
    if not user_guid:
        raise _unauthorized()

    user = _lookup_session_user(db, user_guid)
    if not user:
        raise _unauthorized("Session expired or invalid")

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    return _context_for(user)


async def require_auth(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """
    FastAPI dependency that requires authentication.

    Semantic wrapper around get_auth_context, which already raises 401.
    """
    return ctx


async def require_coach(ctx: AuthContext = Depends(require_auth)) -> AuthContext:
    """
    Raises:
        HTTPException 403: If the user is not a coach
    """
    if not ctx.is_coach:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only coaches can perform this action",
        )
    return ctx


def get_session_factory() -> Callable[[], Session]:
    """
    Session factory for endpoints that must not hold a DB session for their
    whole lifetime (WebSockets). Overridden in tests.
    """
    return SessionLocal


async def get_websocket_auth_context(
    websocket,
    session_factory: Callable[[], Session] = SessionLocal,
) -> Optional[AuthContext]:
    """
    Resolve a WebSocket's session cookie using a short-lived DB session.

    Returns:
        AuthContext if authenticated and active, None otherwise

    Usage:
        await websocket.accept()
        ctx = await get_websocket_auth_context(websocket)
        if not ctx:
            await websocket.close(code=4001, reason="Authentication required")
            return
    """
    session = websocket.session if "session" in websocket.scope else {}
    user_guid = session.get("user_guid")
    if not user_guid:
        return None

    db = session_factory()
    try:
        user = _lookup_session_user(db, user_guid)
        if not user or not user.is_active:
            return None
        # Capture values before the session closes
        return _context_for(user)
    finally:
        db.close()
