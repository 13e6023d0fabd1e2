"""
Error types raised by the notification engine.
"""

from typing import Optional


class NotificationError(Exception):
    """Base class for notification engine errors."""

    pass


class ValidationError(NotificationError):
    """Raised when a trigger, settings value or request is invalid."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(NotificationError):
    """Raised when a trigger or history entry does not exist."""

    pass


class StorageError(NotificationError):
    """Raised when the store is unreachable or a write fails."""

    def __init__(self, message: str, operation: str = "unknown"):
        super().__init__(message)
        self.operation = operation


class TransportError(NotificationError):
    """Raised when a message could not be delivered."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
