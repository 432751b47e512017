"""User-visible transient notifications (toasts).

Every notification is also written to the log so failures reported to
users can be traced server side.
"""

from __future__ import annotations

import itertools
from collections import deque
from functools import partial
from typing import Callable, Deque, Dict

from loguru import logger

from ..models.enums import NotificationLevel
from ..models.notification import Notification
from ..store.document_store import Subscription

NotificationListener = Callable[[Notification], None]


class Notifier:
    """Collects recent notifications and fans them out to listeners."""

    def __init__(self, history_size: int = 50) -> None:
        self._history: Deque[Notification] = deque(maxlen=history_size)
        self._listener_ids = itertools.count(1)
        self._listeners: Dict[int, NotificationListener] = {}

    def notify(self, level: NotificationLevel, message: str) -> Notification:
        notification = Notification(level=level, message=message)
        logger.log(level.value.upper(), "Notification: {}", message)
        self._history.append(notification)
        for callback in list(self._listeners.values()):
            callback(notification)
        return notification

    def error(self, message: str) -> Notification:
        return self.notify(NotificationLevel.ERROR, message)

    @property
    def history(self) -> list[Notification]:
        return list(self._history)

    @property
    def latest(self) -> Notification | None:
        return self._history[-1] if self._history else None

    def add_listener(self, callback: NotificationListener) -> Subscription:
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = callback
        return Subscription(partial(self._listeners.pop, listener_id, None))
