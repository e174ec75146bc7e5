"""
FastAPI application entry point for the NextLevel notifications backend.

This module initializes the FastAPI application with:
- Application state (connection registry, Web Push provider)
- Session, CORS and rate limiting middleware
- Exception handlers for consistent error responses
- Logging configuration

Environment Variables:
    NEXTLEVEL_DB_URL: Database URL
    NEXTLEVEL_ENV: Environment (production/development, default: development)
    NEXTLEVEL_LOG_LEVEL: Log level (DEBUG/INFO/WARNING/ERROR/CRITICAL, default: INFO)
    See config/settings.py for session, VAPID, live channel and rate limit settings.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from nextlevel.src.config.settings import get_settings
from nextlevel.src.db.database import dispose_engine
from nextlevel.src.dependencies import build_push_provider
from nextlevel.src.services.exceptions import (
    NotificationPersistenceError,
    RecipientNotFoundError,
)
from nextlevel.src.utils.connection_registry import ConnectionRegistry
from nextlevel.src.utils.logging_config import get_logger, init_logging


APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    - Startup: create the connection registry and Web Push provider
    - Shutdown: close every open live channel and dispose the DB engine
    """
    logger = get_logger("api")
    logger.info("Starting NextLevel notifications backend")

    settings = get_settings()
    app.state.connection_registry = ConnectionRegistry(
        single_sse_per_user=settings.live_single_sse_per_user,
    )
    app.state.push_provider = build_push_provider(settings)
    if app.state.push_provider is None:
        logger.warning("VAPID keys not configured; Web Push delivery disabled")

    logger.info("NextLevel notifications backend started")

    yield

    logger.info("Shutting down NextLevel notifications backend")
    await app.state.connection_registry.close_all()
    dispose_engine()


# Initialize logging before creating app
init_logging()

settings = get_settings()

# Shared rate limiter, imported by the API modules
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.rate_limit_enabled,
)

app = FastAPI(
    title="NextLevel Notifications API",
    description="Notification history, live updates (SSE/WebSocket) and Web Push "
                "delivery for the NextLevel Coaching platform.",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret_key,
    session_cookie=settings.session_cookie_name,
    max_age=settings.session_max_age,
    same_site="lax",
    https_only=settings.session_https_only,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers


@app.exception_handler(ValidationError)
async def validation_exception_handler(
    request: Request, exc: ValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors raised outside request parsing."""
    logger = get_logger("api")
    logger.warning(
        "Validation error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "errors": exc.errors(),
        }
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": "Request validation failed",
            "details": exc.errors(include_url=False),
        }
    )


@app.exception_handler(RecipientNotFoundError)
async def recipient_not_found_handler(
    request: Request, exc: RecipientNotFoundError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={
            "error": "Recipient Not Found",
            "message": "The notification recipient does not exist or is inactive.",
        }
    )


@app.exception_handler(NotificationPersistenceError)
async def persistence_exception_handler(
    request: Request, exc: NotificationPersistenceError
) -> JSONResponse:
    logger = get_logger("db")
    logger.error(
        "Notification persistence failed",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error": str(exc.__cause__ or exc),
        }
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Database Error",
            "message": "The notification could not be stored. Please try again later.",
        }
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(
    request: Request, exc: SQLAlchemyError
) -> JSONResponse:
    """Handle SQLAlchemy database errors."""
    logger = get_logger("db")
    logger.error(
        "Database error",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error": str(exc),
        }
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Database Error",
            "message": "An error occurred while accessing the database. "
                      "Please try again later.",
        }
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    logger = get_logger("api")
    logger.error(
        "Unhandled exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error": str(exc),
        },
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred. Please try again later.",
        }
    )


# Health check endpoint


@app.get("/health", tags=["Health"])
async def health_check() -> Dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "nextlevel-notifications",
        "version": APP_VERSION,
    }


# API routers (imported after the limiter exists)
from nextlevel.src.api import live, notifications

app.include_router(notifications.router, prefix="/api")
app.include_router(live.router, prefix="/api")


@app.get("/", tags=["Root"])
async def root() -> Dict[str, str]:
    """Root endpoint with API information."""
    return {
        "message": "NextLevel Notifications API",
        "version": APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
        "openapi": "/openapi.json",
    }
