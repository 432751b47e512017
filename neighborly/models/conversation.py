"""Model representing a two-participant conversation document."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .chat_message import ChatMessage


class Conversation(BaseModel):
    """A persistent thread between exactly two users.

    ``participants`` and ``user_names`` are aligned index by index so
    the display name of a participant can be looked up by position.
    The ``last_message*`` fields summarise the tail of ``messages`` for
    list display and are always written together with the append.
    ``last_message_seen_by`` feeds the list unread flag and the badge;
    ``last_read`` records when each participant last read the thread.
    """

    id: str = Field(..., description="Document identifier of the conversation.")
    participants: List[str] = Field(default_factory=list)
    user_names: List[Optional[str]] = Field(default_factory=list, alias="userNames")
    user_photos: List[Optional[str]] = Field(default_factory=list, alias="userPhotos")
    photo_url: Optional[str] = Field(default=None, alias="photoURL")
    last_message: str = Field(default="", alias="lastMessage")
    last_message_time: Optional[datetime] = Field(default=None, alias="lastMessageTime")
    last_message_from: Optional[str] = Field(default=None, alias="lastMessageFrom")
    last_message_seen_by: List[str] = Field(default_factory=list, alias="lastMessageSeenBy")
    last_read: Dict[str, datetime] = Field(default_factory=dict, alias="lastRead")
    messages: List[ChatMessage] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "Conversation":
        payload = dict(data)
        payload["id"] = doc_id
        # Stored documents sometimes carry explicit nulls for list fields
        for key in ("participants", "userNames", "userPhotos", "lastMessageSeenBy", "messages"):
            if payload.get(key) is None:
                payload.pop(key, None)
        if payload.get("lastMessage") is None:
            payload.pop("lastMessage", None)
        if payload.get("lastRead") is None:
            payload.pop("lastRead", None)
        return cls.model_validate(payload)

    def other_participant(self, viewer_id: str) -> str | None:
        """Return the participant that is not ``viewer_id``."""
        for participant in self.participants:
            if participant != viewer_id:
                return participant
        return None

    def display_name_for(self, participant_id: str) -> str | None:
        return self._aligned(self.user_names, participant_id)

    def photo_for(self, participant_id: str) -> str | None:
        """Avatar of a participant, falling back to the creation-time ``photoURL``."""
        return self._aligned(self.user_photos, participant_id) or self.photo_url or None

    def _aligned(self, values: List[Optional[str]], participant_id: str) -> str | None:
        try:
            index = self.participants.index(participant_id)
        except ValueError:
            return None
        if index >= len(values):
            return None
        return values[index] or None

    def is_unread_for(self, viewer_id: str) -> bool:
        return viewer_id not in self.last_message_seen_by

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants
