"""Conversation reads and writes shared by the messaging components.

The ConversationService owns every interaction with the document store
and the blob store: the subscription criteria for a user's
conversations, finding or creating the conversation between two users,
the atomic send path and the read-marker writes.  It raises the typed
errors from :mod:`neighborly.utils.error_handler`; components and
controllers decide how those reach the user.
"""

from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from pathlib import PurePosixPath
import re
from typing import Any, Callable, Iterable

import pydantic
from loguru import logger

from ..config.app_config import get_app_config
from ..config.store_config import StoreConfig, get_store_config
from ..models.chat_message import ChatMessage
from ..models.conversation import Conversation
from ..models.enums import MessageKind
from ..models.user_profile import UserProfile
from ..store import create_blob_store, create_document_store
from ..store.blob_store import BlobStore, ProgressListener
from ..store.document_store import (
    SERVER_TIMESTAMP,
    ArrayUnion,
    DocumentListener,
    DocumentSnapshot,
    DocumentStore,
    ErrorListener,
    FieldFilter,
    OrderBy,
    SnapshotListener,
    Subscription,
)
from ..utils.error_handler import (
    MessagingError,
    NotFoundError,
    NotParticipantError,
    TransientBackendError,
    ValidationError,
)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationService:
    """Store-facing operations on two-participant conversations.

    ``clock`` is the client clock.  It stamps ``Message.timestamp`` and
    namespaces upload paths; every field used for ordering across
    clients is written with the store's server timestamp instead.
    """

    def __init__(
        self,
        store: DocumentStore,
        blob_store: BlobStore,
        store_config: StoreConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.blob_store = blob_store
        self.store_config = store_config or get_store_config()
        self._clock = clock or _utcnow

    @property
    def chats(self) -> str:
        return self.store_config.chats_collection

    @property
    def users(self) -> str:
        return self.store_config.users_collection

    # ------------------------------------------------------------------
    # Reads and subscriptions

    def subscribe_conversations(
        self,
        user_id: str,
        on_snapshot: SnapshotListener,
        on_error: ErrorListener | None = None,
    ) -> Subscription:
        """Live query of every conversation ``user_id`` takes part in, newest first."""
        return self.store.subscribe_to_collection(
            self.chats,
            [FieldFilter("participants", "array_contains", user_id)],
            OrderBy("lastMessageTime", descending=True),
            on_snapshot,
            on_error,
        )

    def subscribe_conversation(
        self,
        conversation_id: str,
        on_snapshot: DocumentListener,
        on_error: ErrorListener | None = None,
    ) -> Subscription:
        return self.store.subscribe_to_document(self.chats, conversation_id, on_snapshot, on_error)

    def get_user_profile(self, user_id: str) -> UserProfile | None:
        snapshot = self._read(self.users, user_id)
        if not snapshot.exists:
            return None
        try:
            return UserProfile.model_validate({**snapshot.data, "uid": user_id})
        except pydantic.ValidationError as exc:
            logger.warning("Ignoring malformed user record {}: {}", user_id, exc)
            return None

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        """Return the conversation, or None when it is missing or unreadable."""
        return self.conversation_from_snapshot(self._read(self.chats, conversation_id))

    @staticmethod
    def conversation_from_snapshot(snapshot: DocumentSnapshot) -> Conversation | None:
        if not snapshot.exists:
            return None
        try:
            return Conversation.from_document(snapshot.id, snapshot.data)
        except pydantic.ValidationError as exc:
            logger.warning("Ignoring malformed conversation {}: {}", snapshot.id, exc)
            return None

    # ------------------------------------------------------------------
    # Conversation lifecycle

    def start_conversation(self, current: UserProfile, other_user_id: str) -> tuple[Conversation, bool]:
        """Return the conversation between ``current`` and another user.

        An existing conversation with exactly this pair is reused; a new
        one is only created when none exists.  The boolean is True when
        a conversation was created.
        """
        if other_user_id == current.uid:
            raise ValidationError("You cannot start a conversation with yourself")
        other = self.get_user_profile(other_user_id)
        if other is None:
            raise NotFoundError(f"User {other_user_id} does not exist")

        try:
            candidates = self.store.query(
                self.chats, [FieldFilter("participants", "array_contains", current.uid)]
            )
        except MessagingError:
            raise
        except Exception as exc:
            logger.exception("Failed to look up conversations for {}", current.uid)
            raise TransientBackendError("Unable to start conversation") from exc

        for snapshot in candidates:
            participants = (snapshot.data or {}).get("participants") or []
            if other_user_id in participants:
                existing = self.conversation_from_snapshot(snapshot)
                if existing is not None:
                    logger.info("Reusing conversation {} between {} and {}", existing.id, current.uid, other_user_id)
                    return existing, False

        document = {
            "participants": [current.uid, other.uid],
            "userNames": [current.display_name, other.display_name],
            "userPhotos": [current.photo_url or "", other.photo_url or ""],
            "photoURL": other.photo_url or "",
            "lastMessage": "",
            "lastMessageTime": SERVER_TIMESTAMP,
            "lastMessageSeenBy": [],
            "lastRead": {},
            "messages": [],
            "createdAt": SERVER_TIMESTAMP,
        }
        try:
            conversation_id = self.store.add_document(self.chats, document)
        except Exception as exc:
            logger.exception("Failed to create conversation between {} and {}", current.uid, other_user_id)
            raise TransientBackendError("Unable to start conversation") from exc
        logger.info("Created conversation {} between {} and {}", conversation_id, current.uid, other_user_id)
        created = self.get_conversation(conversation_id)
        if created is None:
            raise TransientBackendError("Conversation was not readable after creation")
        return created, True

    # ------------------------------------------------------------------
    # Sending

    def send_text(self, conversation_id: str, sender: UserProfile, text: str) -> ChatMessage | None:
        """Append a text message; blank text is ignored and returns None."""
        trimmed = text.strip()
        if not trimmed:
            logger.debug("Ignoring blank message for conversation {}", conversation_id)
            return None
        if len(trimmed) > self.store_config.max_message_length:
            raise ValidationError(
                f"Messages are limited to {self.store_config.max_message_length} characters"
            )
        self._require_participant(conversation_id, sender.uid)
        message = ChatMessage(
            kind=MessageKind.TEXT,
            text=trimmed,
            sender=sender.uid,
            sender_name=sender.display_name,
            sender_photo=sender.photo_url,
            timestamp=self._clock(),
            read=False,
        )
        self._append_message(conversation_id, sender, message, summary=trimmed)
        return message

    def validate_image(self, content_type: str | None, size: int) -> None:
        """Reject uploads that are not images or exceed the size limit."""
        if not content_type or not content_type.lower().startswith("image/"):
            raise ValidationError("Please upload only images")
        if size <= 0:
            raise ValidationError("The selected image is empty")
        if size > self.store_config.max_image_bytes:
            limit_mb = self.store_config.max_image_bytes / (1024 * 1024)
            raise ValidationError(f"Images must be smaller than {limit_mb:g} MB")

    def send_image(
        self,
        conversation_id: str,
        sender: UserProfile,
        filename: str,
        content_type: str | None,
        data: bytes,
        on_progress: ProgressListener | None = None,
    ) -> ChatMessage:
        """Upload an image and append a message referencing it.

        Nothing is appended unless the upload completes.
        """
        self.validate_image(content_type, len(data))
        self._require_participant(conversation_id, sender.uid)

        path = self.image_path(conversation_id, filename)
        try:
            download_url = self.blob_store.upload_blob(path, data, content_type, on_progress)
        except MessagingError:
            raise
        except Exception as exc:
            logger.exception("Image upload failed for conversation {}", conversation_id)
            raise TransientBackendError("Failed to upload image") from exc

        message = ChatMessage(
            kind=MessageKind.IMAGE,
            image_url=download_url,
            sender=sender.uid,
            sender_name=sender.display_name,
            sender_photo=sender.photo_url,
            timestamp=self._clock(),
            read=False,
        )
        self._append_message(
            conversation_id, sender, message, summary=self.store_config.image_placeholder_text
        )
        return message

    def image_path(self, conversation_id: str, filename: str) -> str:
        """Per-conversation, time-namespaced storage path for an upload."""
        name = PurePosixPath(filename.replace("\\", "/")).name if filename else ""
        safe_name = _UNSAFE_FILENAME_CHARS.sub("_", name).strip("._") or "image"
        millis = int(self._clock().timestamp() * 1000)
        return f"{self.store_config.chat_image_prefix}/{conversation_id}/{millis}-{safe_name}"

    def _append_message(
        self,
        conversation_id: str,
        sender: UserProfile,
        message: ChatMessage,
        summary: str,
    ) -> None:
        summary_fields: dict[str, Any] = {
            "lastMessage": summary,
            "lastMessageTime": SERVER_TIMESTAMP,
            "lastMessageFrom": sender.uid,
            "lastMessageSeenBy": [sender.uid],
            f"lastRead.{sender.uid}": SERVER_TIMESTAMP,
        }
        try:
            self.store.append_and_merge_atomic(
                self.chats, conversation_id, "messages", message.to_document(), summary_fields
            )
        except MessagingError:
            raise
        except Exception as exc:
            logger.exception("Failed to append message to conversation {}", conversation_id)
            raise TransientBackendError("Failed to send message") from exc
        logger.info(
            "Appended {} message from {} to conversation {}",
            message.kind.value,
            sender.uid,
            conversation_id,
        )

    # ------------------------------------------------------------------
    # Read markers

    def mark_seen(self, conversation_id: str, viewer_id: str) -> None:
        """Record that ``viewer_id`` has read the conversation up to now.

        Adds the viewer to ``lastMessageSeenBy``, stamps
        ``lastRead.<viewer>`` with server time and flips ``read`` on
        the other participant's messages, all in one transaction.
        """

        def _update(data: dict[str, Any]) -> dict[str, Any]:
            if viewer_id not in (data.get("participants") or []):
                raise NotParticipantError(
                    f"User {viewer_id} is not a participant of conversation {conversation_id}"
                )
            updates: dict[str, Any] = {
                "lastMessageSeenBy": ArrayUnion(viewer_id),
                f"lastRead.{viewer_id}": SERVER_TIMESTAMP,
            }
            messages = data.get("messages") or []
            if any(self._is_unread_incoming(item, viewer_id) for item in messages):
                updates["messages"] = [
                    {**item, "read": True} if self._is_unread_incoming(item, viewer_id) else item
                    for item in messages
                ]
            return updates

        try:
            self.store.run_transaction(self.chats, conversation_id, _update)
        except MessagingError:
            raise
        except Exception as exc:
            logger.exception("Failed to mark conversation {} as seen", conversation_id)
            raise TransientBackendError("Failed to update read state") from exc
        logger.debug("Marked conversation {} seen by {}", conversation_id, viewer_id)

    def mark_all_seen(self, viewer_id: str, conversation_ids: Iterable[str]) -> list[str]:
        """Mark several conversations seen; returns the ids that were written.

        Stops at the first failure and re-raises it.
        """
        marked: list[str] = []
        for conversation_id in conversation_ids:
            self.mark_seen(conversation_id, viewer_id)
            marked.append(conversation_id)
        return marked

    @staticmethod
    def _is_unread_incoming(item: Any, viewer_id: str) -> bool:
        return isinstance(item, dict) and item.get("sender") != viewer_id and not item.get("read")

    # ------------------------------------------------------------------
    # Helpers

    def _read(self, collection: str, doc_id: str) -> DocumentSnapshot:
        try:
            return self.store.get_document(collection, doc_id)
        except MessagingError:
            raise
        except Exception as exc:
            logger.exception("Failed to read {}/{}", collection, doc_id)
            raise TransientBackendError("Failed to load data") from exc

    def _require_participant(self, conversation_id: str, user_id: str) -> None:
        snapshot = self._read(self.chats, conversation_id)
        if not snapshot.exists:
            raise NotFoundError(f"Conversation {conversation_id} does not exist")
        if user_id not in (snapshot.data.get("participants") or []):
            raise NotParticipantError(
                f"User {user_id} is not a participant of conversation {conversation_id}"
            )


@lru_cache()
def get_conversation_service() -> ConversationService:
    """Dependency injector for ConversationService instances.

    FastAPI calls this function to obtain a singleton service wired to
    the configured document and blob stores.
    """
    store_config = get_store_config()
    return ConversationService(
        store=create_document_store(get_app_config()),
        blob_store=create_blob_store(store_config),
        store_config=store_config,
    )
