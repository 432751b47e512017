"""Models representing chat messages."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import MessageKind


class ChatMessage(BaseModel):
    """A single message inside a conversation's ``messages`` sequence.

    ``sender_name`` and ``sender_photo`` are copied from the sender's
    profile when the message is sent and are never refreshed afterwards,
    so history keeps showing the name the sender had at the time.
    ``timestamp`` is the sender's local clock and is for display only;
    the position in the sequence is the authoritative order.  ``read``
    drives in-thread receipts and is the only field that changes after
    the message is appended.
    """

    kind: MessageKind = Field(default=MessageKind.TEXT, alias="type")
    text: str = ""
    image_url: str | None = Field(default=None, alias="imageUrl")
    sender: str
    sender_name: str | None = Field(default=None, alias="senderName")
    sender_photo: str | None = Field(default=None, alias="senderPhoto")
    timestamp: datetime | None = None
    read: bool = False

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _infer_legacy_kind(cls, data: Any) -> Any:
        """Older text messages were stored without a ``type`` key."""
        if not isinstance(data, dict):
            return data
        if "type" in data or "kind" in data:
            return data
        data = dict(data)
        data["type"] = MessageKind.IMAGE if data.get("imageUrl") or data.get("image_url") else MessageKind.TEXT
        return data

    @model_validator(mode="after")
    def _check_payload(self) -> "ChatMessage":
        if self.kind == MessageKind.IMAGE and not self.image_url:
            raise ValueError("Image messages require an imageUrl")
        return self

    @property
    def is_image(self) -> bool:
        return self.kind == MessageKind.IMAGE

    def to_document(self) -> dict[str, Any]:
        """Return the stored representation using the document field names."""
        payload = self.model_dump(by_alias=True, mode="python")
        payload["type"] = self.kind.value
        if self.kind == MessageKind.TEXT:
            payload.pop("imageUrl", None)
        else:
            payload.pop("text", None)
        return payload
