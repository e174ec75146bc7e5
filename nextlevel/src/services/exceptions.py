"""
Custom exceptions for service layer.

Provides specific exception types for business logic errors
that can be translated to appropriate HTTP responses.
"""

from typing import Any, Optional


class ServiceError(Exception):
    """Base exception for service layer errors."""
    pass


class NotFoundError(ServiceError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class ValidationError(ServiceError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class RecipientNotFoundError(NotFoundError):
    """
    Raised when a notification is addressed to a user that does not exist
    or is no longer active. Nothing is persisted in that case.
    """

    def __init__(self, user_id: Any):
        super().__init__("Recipient", user_id)
        self.user_id = user_id


class NotificationPersistenceError(ServiceError):
    """
    Raised when the notification row could not be written.

    The only failure the dispatcher lets escape once the recipient is known;
    delivery problems never surface as exceptions.
    """

    def __init__(self, message: str, user_id: Optional[int] = None):
        self.message = message
        self.user_id = user_id
        super().__init__(message)
