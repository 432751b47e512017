"""Enumerations used across models."""

from enum import Enum


class MessageKind(str, Enum):
    """Kind of payload a chat message carries.

    Stored under the ``type`` key.  ``TEXT`` messages carry ``text``;
    ``IMAGE`` messages carry an ``imageUrl`` pointing at blob storage.
    """

    TEXT = "text"
    IMAGE = "image"


class AuthState(str, Enum):
    """Resolution state of the signed-in session."""

    UNRESOLVED = "unresolved"
    SIGNED_OUT = "signed_out"
    SIGNED_IN = "signed_in"


class NotificationLevel(str, Enum):
    """Severity of a transient user-visible notification."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
