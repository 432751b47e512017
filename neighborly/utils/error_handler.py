"""Error taxonomy for messaging operations and the HTTP error handler."""

from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse
from loguru import logger


class MessagingError(Exception):
    """Base class for failures raised by the messaging services."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class ValidationError(MessagingError):
    """Local input was rejected before any backend call was made."""

    status_code = 422


class TransientBackendError(MessagingError):
    """A store write, blob upload or subscription delivery failed.

    Callers report these to the user and leave local state as it was
    before the attempt.  Nothing retries automatically.
    """

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class NotFoundError(MessagingError):
    """A conversation or user document that a write depends on is missing."""

    status_code = status.HTTP_404_NOT_FOUND


class AuthenticationRequired(MessagingError):
    """The operation needs a resolved, signed-in user."""

    status_code = status.HTTP_401_UNAUTHORIZED


class NotParticipantError(MessagingError):
    """The acting user is not one of the conversation's participants."""

    status_code = status.HTTP_403_FORBIDDEN


async def http_exception_handler(request: Request, exc: MessagingError) -> JSONResponse:
    """Convert a MessagingError into a JSON response with a matching status."""
    if exc.status_code >= 500:
        logger.error("{} on {}: {}", type(exc).__name__, request.url.path, exc)
    else:
        logger.info("{} on {}: {}", type(exc).__name__, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )
