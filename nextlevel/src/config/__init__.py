"""
Configuration module for the NextLevel backend.

Provides centralized, environment-driven settings for:
- Session signing and CORS
- Web Push (VAPID keys, TTL, urgency)
- Live channels (heartbeat, buffering, SSE policy)
- Rate limiting
"""

from nextlevel.src.config.settings import AppSettings, get_settings

__all__ = [
    "AppSettings",
    "get_settings",
]
