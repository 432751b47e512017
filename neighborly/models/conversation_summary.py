"""Derived list-row representation of a conversation for one viewer."""

from datetime import datetime

from pydantic import BaseModel


class ConversationListItem(BaseModel):
    """A conversation as it appears in the viewer's message list.

    Never stored; recomputed from every snapshot.
    """

    id: str
    other_user_id: str
    other_user_name: str
    photo_url: str | None = None
    last_message: str = ""
    last_message_time: datetime | None = None
    last_message_from: str | None = None
    is_unread: bool

    @property
    def preview(self) -> str:
        return self.last_message or "Start a conversation"
