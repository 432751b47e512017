"""State of one open conversation: history, composer and read markers.

Failures never leave this module as exceptions.  They are logged,
shown through the :class:`Notifier` and the local state is put back
to what it was before the attempt: a failed send keeps the draft, a
failed upload resets the progress to idle.
"""

from __future__ import annotations

import itertools
from functools import partial
from typing import TYPE_CHECKING, Callable, Dict

from loguru import logger

from ..models.chat_message import ChatMessage
from ..models.conversation import Conversation
from ..models.enums import AuthState
from ..models.user_profile import UserProfile
from ..store.document_store import DocumentSnapshot, Subscription
from ..utils.error_handler import MessagingError, ValidationError
from .auth_context import AuthContext
from .notification_service import Notifier

if TYPE_CHECKING:
    from .conversation_service import ConversationService

TimelineListener = Callable[["ConversationTimeline"], None]


class ConversationTimeline:
    def __init__(
        self,
        service: "ConversationService",
        auth: AuthContext,
        conversation_id: str | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._service = service
        self._auth = auth
        self._notifier = notifier or Notifier()
        self._conversation_id = conversation_id
        self._viewer_id: str | None = None
        self._subscription: Subscription | None = None
        self._auth_subscription: Subscription | None = None
        self._listener_ids = itertools.count(1)
        self._listeners: Dict[int, TimelineListener] = {}

        self.conversation: Conversation | None = None
        self.other_user: UserProfile | None = None
        self.loading = True
        self.not_found = False

        self.draft = ""
        self.sending = False
        self.is_uploading = False
        self.upload_progress = 0.0

    # ------------------------------------------------------------------
    # Lifecycle

    def start(self) -> "ConversationTimeline":
        if self._auth_subscription is None:
            self._auth_subscription = self._auth.add_listener(self._on_auth_change)
        return self

    def stop(self) -> None:
        if self._auth_subscription is not None:
            self._auth_subscription.unsubscribe()
            self._auth_subscription = None
        self._unsubscribe()

    def __enter__(self) -> "ConversationTimeline":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def focus(self, conversation_id: str) -> None:
        """Switch to another conversation, re-subscribing if the id changed."""
        if conversation_id == self._conversation_id and self._subscription is not None:
            return
        self._conversation_id = conversation_id
        self._reload()

    # ------------------------------------------------------------------
    # State

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def messages(self) -> list[ChatMessage]:
        """Messages in the order they were appended."""
        return list(self.conversation.messages) if self.conversation else []

    def is_own_message(self, message: ChatMessage) -> bool:
        return message.sender == self._viewer_id

    def add_listener(self, callback: TimelineListener) -> Subscription:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = callback
        return Subscription(partial(self._listeners.pop, listener_id, None))

    # ------------------------------------------------------------------
    # Composer

    def set_draft(self, text: str) -> None:
        self.draft = text

    def send_text(self) -> bool:
        """Send the draft.  Returns True when a message was appended."""
        if not self.draft.strip() or self.sending:
            return False
        sender = self._auth.user
        conversation_id = self._conversation_id
        if sender is None or conversation_id is None:
            logger.debug("Send deferred: no signed-in user or conversation")
            return False

        self.sending = True
        self._publish()
        try:
            self._service.send_text(conversation_id, sender, self.draft)
        except MessagingError as exc:
            logger.warning("Sending to {} failed: {}", conversation_id, exc)
            self._notifier.error("Failed to send message")
            return False
        else:
            self.draft = ""
            return True
        finally:
            self.sending = False
            self._publish()

    def send_image(self, filename: str, content_type: str | None, data: bytes) -> bool:
        """Upload and send one image.  Returns True when a message was appended."""
        sender = self._auth.user
        conversation_id = self._conversation_id
        if sender is None or conversation_id is None or self.is_uploading:
            return False
        try:
            self._service.validate_image(content_type, len(data))
        except ValidationError as exc:
            self._notifier.error(str(exc))
            return False

        self.is_uploading = True
        self.upload_progress = 0.0
        self._publish()
        try:
            self._service.send_image(
                conversation_id,
                sender,
                filename,
                content_type,
                data,
                on_progress=self._on_upload_progress,
            )
        except MessagingError as exc:
            logger.warning("Image upload to {} failed: {}", conversation_id, exc)
            self._notifier.error("Failed to upload image")
            return False
        else:
            return True
        finally:
            self.is_uploading = False
            self.upload_progress = 0.0
            self._publish()

    def _on_upload_progress(self, transferred: int, total: int) -> None:
        self.upload_progress = 100.0 if total <= 0 else min(100.0, transferred * 100.0 / total)
        self._publish()

    # ------------------------------------------------------------------
    # Loading and subscription

    def _on_auth_change(self, auth: AuthContext) -> None:
        if auth.state == AuthState.SIGNED_IN and auth.user_id == self._viewer_id and self._subscription:
            return
        self._reload()

    def _reload(self) -> None:
        self._unsubscribe()
        self.conversation = None
        self.other_user = None
        self.not_found = False
        self._viewer_id = self._auth.user_id

        if self._auth.state == AuthState.UNRESOLVED:
            self.loading = True
            return
        if self._auth.state == AuthState.SIGNED_OUT or self._conversation_id is None:
            self.loading = False
            self._publish()
            return
        self._open(self._conversation_id, self._viewer_id)

    def _open(self, conversation_id: str, viewer_id: str) -> None:
        self.loading = True
        try:
            conversation = self._service.get_conversation(conversation_id)
            if conversation is None or not conversation.has_participant(viewer_id):
                logger.info("Conversation {} not available to {}", conversation_id, viewer_id)
                self.not_found = True
                return
            other_id = conversation.other_participant(viewer_id)
            self.other_user = self._service.get_user_profile(other_id) if other_id else None
            self.conversation = conversation
        except MessagingError as exc:
            logger.warning("Loading conversation {} failed: {}", conversation_id, exc)
            self._notifier.error("Error loading chat")
            return
        finally:
            self.loading = False
            self._publish()

        try:
            self._service.mark_seen(conversation_id, viewer_id)
        except MessagingError as exc:
            logger.warning("Marking conversation {} seen failed: {}", conversation_id, exc)
            self._notifier.error("Failed to update read status")

        self._subscription = self._service.subscribe_conversation(
            conversation_id,
            partial(self._on_snapshot, conversation_id),
            self._on_error,
        )

    def _on_snapshot(self, conversation_id: str, snapshot: DocumentSnapshot) -> None:
        if conversation_id != self._conversation_id:
            return
        conversation = self._service.conversation_from_snapshot(snapshot)
        if conversation is None:
            self.conversation = None
            self.not_found = True
        else:
            self.conversation = conversation
            self.not_found = False
        self._publish()

    def _on_error(self, exc: Exception) -> None:
        logger.error("Conversation timeline delivery failed: {}", exc)
        self._notifier.error("Error loading chat")

    def _publish(self) -> None:
        for callback in list(self._listeners.values()):
            callback(self)

    def _unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
