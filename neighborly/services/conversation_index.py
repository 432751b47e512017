"""Live, recency-ordered list of the signed-in user's conversations."""

from __future__ import annotations

import itertools
from functools import partial
from typing import TYPE_CHECKING, Callable, Dict, Iterable

import pydantic
from loguru import logger

from ..models.conversation import Conversation
from ..models.conversation_summary import ConversationListItem
from ..models.enums import AuthState
from ..store.document_store import DocumentSnapshot, Subscription
from ..utils.error_handler import MessagingError
from .auth_context import AuthContext
from .notification_service import Notifier

if TYPE_CHECKING:
    from .conversation_service import ConversationService

IndexListener = Callable[[list[ConversationListItem]], None]


def summarise_conversation(snapshot: DocumentSnapshot, viewer_id: str) -> ConversationListItem | None:
    """Project one conversation document into a list row for ``viewer_id``.

    Returns None for records the list cannot display: missing
    participants or display names, no identifiable other participant,
    or data that does not validate.
    """
    data = snapshot.data
    if not data or not data.get("participants") or not data.get("userNames"):
        logger.warning("Skipping conversation {} without participants or names", snapshot.id)
        return None
    try:
        conversation = Conversation.from_document(snapshot.id, data)
    except pydantic.ValidationError as exc:
        logger.warning("Skipping malformed conversation {}: {}", snapshot.id, exc)
        return None

    other_id = conversation.other_participant(viewer_id)
    other_name = conversation.display_name_for(other_id) if other_id else None
    if other_id is None or not other_name:
        logger.warning("Skipping conversation {} with no displayable partner", snapshot.id)
        return None

    return ConversationListItem(
        id=conversation.id,
        other_user_id=other_id,
        other_user_name=other_name,
        photo_url=conversation.photo_for(other_id),
        last_message=conversation.last_message,
        last_message_time=conversation.last_message_time,
        last_message_from=conversation.last_message_from,
        is_unread=conversation.is_unread_for(viewer_id),
    )


def project_conversations(snapshots: Iterable[DocumentSnapshot], viewer_id: str) -> list[ConversationListItem]:
    items = (summarise_conversation(snapshot, viewer_id) for snapshot in snapshots)
    return [item for item in items if item is not None]


class ConversationIndex:
    """Projects the viewer's conversation subscription into list rows.

    The index subscribes only once the session is resolved and signed
    in, re-subscribes when the signed-in user changes, and publishes an
    empty, final list for a signed-out session.  It never writes to the
    store on its own; :meth:`mark_all_seen` is the explicit action that
    clears unread rows.
    """

    def __init__(
        self,
        service: "ConversationService",
        auth: AuthContext,
        notifier: Notifier | None = None,
    ) -> None:
        self._service = service
        self._auth = auth
        self._notifier = notifier or Notifier()
        self._conversations: list[ConversationListItem] = []
        self._loading = True
        self._viewer_id: str | None = None
        self._subscription: Subscription | None = None
        self._auth_subscription: Subscription | None = None
        self._listener_ids = itertools.count(1)
        self._listeners: Dict[int, IndexListener] = {}

    # ------------------------------------------------------------------
    # Lifecycle

    def start(self) -> "ConversationIndex":
        if self._auth_subscription is None:
            self._auth_subscription = self._auth.add_listener(self._on_auth_change)
        return self

    def stop(self) -> None:
        if self._auth_subscription is not None:
            self._auth_subscription.unsubscribe()
            self._auth_subscription = None
        self._unsubscribe()

    def __enter__(self) -> "ConversationIndex":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # State

    @property
    def conversations(self) -> list[ConversationListItem]:
        return list(self._conversations)

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def viewer_id(self) -> str | None:
        return self._viewer_id

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None and self._subscription.active

    @property
    def unread_conversations(self) -> list[ConversationListItem]:
        return [item for item in self._conversations if item.is_unread]

    def add_listener(self, callback: IndexListener) -> Subscription:
        """Register ``callback`` for every new list; called at once if data is loaded."""
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = callback
        if not self._loading:
            callback(self.conversations)
        return Subscription(partial(self._listeners.pop, listener_id, None))

    # ------------------------------------------------------------------
    # Actions

    def mark_all_seen(self) -> list[str]:
        """Mark every currently unread conversation as seen by the viewer."""
        viewer_id = self._viewer_id
        if viewer_id is None:
            return []
        pending = [item.id for item in self.unread_conversations]
        if not pending:
            return []
        try:
            return self._service.mark_all_seen(viewer_id, pending)
        except MessagingError as exc:
            logger.warning("Failed to mark conversations seen for {}: {}", viewer_id, exc)
            self._notifier.error("Failed to update conversations")
            return []

    # ------------------------------------------------------------------
    # Subscription handling

    def _on_auth_change(self, auth: AuthContext) -> None:
        if auth.state == AuthState.UNRESOLVED:
            self._unsubscribe()
            self._viewer_id = None
            self._loading = True
            self._conversations = []
            return
        if auth.state == AuthState.SIGNED_OUT:
            self._unsubscribe()
            self._viewer_id = None
            self._loading = False
            self._publish([])
            return

        viewer_id = auth.user_id
        if viewer_id == self._viewer_id and self.subscribed:
            return
        self._unsubscribe()
        self._viewer_id = viewer_id
        self._loading = True
        self._conversations = []
        logger.debug("Subscribing conversation index for {}", viewer_id)
        self._subscription = self._service.subscribe_conversations(
            viewer_id,
            partial(self._on_snapshot, viewer_id),
            self._on_error,
        )

    def _on_snapshot(self, viewer_id: str, snapshots: list[DocumentSnapshot]) -> None:
        if viewer_id != self._viewer_id:
            return
        self._loading = False
        self._publish(project_conversations(snapshots, viewer_id))

    def _on_error(self, exc: Exception) -> None:
        logger.error("Conversation index delivery failed: {}", exc)
        self._notifier.error("Error loading conversations")

    def _publish(self, items: list[ConversationListItem]) -> None:
        self._conversations = items
        for callback in list(self._listeners.values()):
            callback(list(items))

    def _unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
