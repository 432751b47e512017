"""Explicit session state handed to every messaging component.

Components never read a global "current user".  They receive an
:class:`AuthContext` and react to its changes: while the session is
``UNRESOLVED`` they wait, when it is ``SIGNED_OUT`` they show an empty
result, and when it is ``SIGNED_IN`` they subscribe for that user.
"""

from __future__ import annotations

import itertools
from functools import partial
from typing import Callable, Dict

from loguru import logger

from ..models.enums import AuthState
from ..models.user_profile import UserProfile
from ..store.document_store import Subscription

AuthListener = Callable[["AuthContext"], None]


class AuthContext:
    def __init__(self) -> None:
        self._state = AuthState.UNRESOLVED
        self._user: UserProfile | None = None
        self._listener_ids = itertools.count(1)
        self._listeners: Dict[int, AuthListener] = {}

    @classmethod
    def signed_in(cls, user: UserProfile) -> "AuthContext":
        context = cls()
        context.resolve(user)
        return context

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def user(self) -> UserProfile | None:
        return self._user

    @property
    def user_id(self) -> str | None:
        return self._user.uid if self._user else None

    def resolve(self, user: UserProfile | None) -> None:
        """Record the outcome of sign-in: a profile, or None for signed out."""
        state = AuthState.SIGNED_IN if user is not None else AuthState.SIGNED_OUT
        if state == self._state and user == self._user:
            return
        self._state = state
        self._user = user
        logger.debug("Auth state changed to {} (user={})", state.value, self.user_id)
        self._notify()

    def sign_out(self) -> None:
        self.resolve(None)

    def add_listener(self, callback: AuthListener) -> Subscription:
        """Register ``callback`` and call it right away with the current state."""
        listener_id = next(self._listener_ids)
        self._listeners[listener_id] = callback
        callback(self)
        return Subscription(partial(self._listeners.pop, listener_id, None))

    def _notify(self) -> None:
        for callback in list(self._listeners.values()):
            callback(self)
