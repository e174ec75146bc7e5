"""
Middleware components for the NextLevel backend.

This module provides:
- AuthContext: Dataclass representing the authenticated user
- get_auth_context / require_auth: FastAPI dependencies for authentication
- require_coach: FastAPI dependency restricting a route to coaches
- get_websocket_auth_context: Authentication for WebSocket endpoints
"""

from nextlevel.src.middleware.auth import (
    AuthContext,
    get_auth_context,
    get_session_factory,
    get_websocket_auth_context,
    require_auth,
    require_coach,
)

__all__ = [
    "AuthContext",
    "get_auth_context",
    "get_session_factory",
    "get_websocket_auth_context",
    "require_auth",
    "require_coach",
]
