"""Response models for the messaging API."""

from typing import List, Optional

from pydantic import BaseModel, Field

from .chat_message import ChatMessage
from .conversation import Conversation
from .user_profile import UserProfile


class SendMessageResponse(BaseModel):
    """Outcome of a send attempt.

    ``sent`` is false when the submission was blank and ignored.
    """

    sent: bool
    message: Optional[ChatMessage] = None


class StartConversationResponse(BaseModel):
    conversation_id: str
    created: bool = Field(..., description="False when an existing conversation was reused.")


class UnreadCountResponse(BaseModel):
    count: int = Field(..., ge=0)
    badge: Optional[int] = Field(
        default=None,
        description="The count to render on the badge, or null when there is nothing to show.",
    )


class ConversationDetail(BaseModel):
    """A conversation opened by one participant."""

    conversation: Conversation
    other_user: Optional[UserProfile] = None
    messages: List[ChatMessage] = Field(default_factory=list)


class MarkSeenResponse(BaseModel):
    marked: List[str] = Field(default_factory=list)
