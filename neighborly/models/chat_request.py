"""Request models for the messaging API."""

from pydantic import BaseModel, Field


class SendMessageRequest(BaseModel):
    """Text message submitted by the composer.

    Length is checked by the service against ``MAX_MESSAGE_LENGTH`` after
    trimming.  Whitespace-only text is accepted here and ignored by the service,
    mirroring a composer that silently drops blank submissions.
    """

    text: str = Field(
        ...,
        description="The message text.  Leading and trailing whitespace is trimmed before sending.",
    )


class StartConversationRequest(BaseModel):
    """Request to open a conversation with another user."""

    other_user_id: str = Field(
        ...,
        min_length=1,
        description="Identifier of the user to message.  An existing conversation with them is reused.",
    )
