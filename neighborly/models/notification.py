"""Transient user-visible notification."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from .enums import NotificationLevel


class Notification(BaseModel):
    level: NotificationLevel
    message: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
