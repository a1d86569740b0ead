"""
Notification Errors

Error taxonomy shared by the service, repositories and HTTP layer.
Each error carries the HTTP status the API answers with.
"""

from typing import Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class NotificationError(Exception):
    """Base class for all notification errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Notification request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(NotificationError):
    """Bad field length, enum value or id format. Rejected before persistence."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid notification data"


class StateTransitionError(ValidationError):
    """The requested transition is not allowed from the current status."""

    status_code = status.HTTP_409_CONFLICT
    default_message = "Invalid status transition"


class NotFoundError(NotificationError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Notification not found"


class AuthorizationError(NotificationError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not authorized to access this notification"


class PersistenceError(NotificationError):
    """
    The store is unavailable or rejected the write.

    The message is always generic; the underlying error is logged
    where it is caught and never returned to the caller.
    """

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Notification store unavailable"


async def notification_exception_handler(
    request: Request,
    exc: NotificationError
) -> JSONResponse:
    """Render a NotificationError as a JSON error response."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message}
    )
