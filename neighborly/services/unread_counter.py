"""Navigation badge count derived from the conversation index."""

from __future__ import annotations

import itertools
from functools import partial
from typing import Callable, Dict, Iterable

from loguru import logger

from ..models.conversation_summary import ConversationListItem
from ..store.document_store import Subscription
from .conversation_index import ConversationIndex

CountListener = Callable[[int], None]


def counts_toward_badge(item: ConversationListItem, viewer_id: str) -> bool:
    """Unseen by the viewer, sent by someone else, and not an empty conversation."""
    return item.is_unread and item.last_message_from != viewer_id and bool(item.last_message)


def count_unread(items: Iterable[ConversationListItem], viewer_id: str) -> int:
    return sum(1 for item in items if counts_toward_badge(item, viewer_id))


class UnreadCounter:
    """Reduces the index feed to a single badge number.

    Shares the index's subscription instead of opening its own.  The
    counter does not own the index: :meth:`stop` only detaches from it.
    """

    def __init__(self, index: ConversationIndex) -> None:
        self._index = index
        self._count = 0
        self._feed: Subscription | None = None
        self._listener_ids = itertools.count(1)
        self._listeners: Dict[int, CountListener] = {}

    def start(self) -> "UnreadCounter":
        self._index.start()
        if self._feed is None:
            self._feed = self._index.add_listener(self._on_conversations)
        return self

    def stop(self) -> None:
        if self._feed is not None:
            self._feed.unsubscribe()
            self._feed = None

    def __enter__(self) -> "UnreadCounter":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    @property
    def count(self) -> int:
        return self._count

    @property
    def badge(self) -> int | None:
        """Number to render on the badge; None hides it."""
        return self._count or None

    def add_listener(self, callback: CountListener) -> Subscription:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = callback
        return Subscription(partial(self._listeners.pop, listener_id, None))

    def enter_message_list(self, mark_seen: bool = True) -> None:
        """Clear the badge as the user opens the message list.

        The local count drops to zero immediately.  When ``mark_seen``
        is set the index then writes the seen markers; whatever the
        next snapshot says replaces the local value.
        """
        logger.debug("Resetting unread badge for {}", self._index.viewer_id)
        self._set_count(0)
        if mark_seen:
            self._index.mark_all_seen()

    def _on_conversations(self, items: list[ConversationListItem]) -> None:
        viewer_id = self._index.viewer_id
        self._set_count(count_unread(items, viewer_id) if viewer_id else 0)

    def _set_count(self, value: int) -> None:
        self._count = value
        for callback in list(self._listeners.values()):
            callback(value)
