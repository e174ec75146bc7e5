"""
Utility modules for the NextLevel backend.

This package contains shared utilities used across the application:
- connection_registry: Live channel (SSE/WebSocket) registry
- notification_routing: Notification to UI route mapping
- logging_config: Logger setup
"""
