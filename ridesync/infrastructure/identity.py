"""
Identity provider contract.

The ride session only ever reads the signed-in user id; sign-in flows and
token refresh belong to the auth service.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)

AuthListener = Callable[[Optional[str]], None]


class IdentityProvider(ABC):
    @abstractmethod
    def current_user_id(self) -> Optional[str]: ...

    @abstractmethod
    def on_auth_changed(self, listener: AuthListener) -> Callable[[], None]:
        """Register *listener*; returns the unsubscribe handle."""


class StaticIdentityProvider(IdentityProvider):
    """Identity known up front (request header, test fixture)."""

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id
        self._listeners: list[AuthListener] = []

    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def on_auth_changed(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def sign_in(self, user_id: str) -> None:
        self._set(user_id)

    def sign_out(self) -> None:
        self._set(None)

    def _set(self, user_id: Optional[str]) -> None:
        if user_id == self._user_id:
            return
        self._user_id = user_id
        for listener in list(self._listeners):
            try:
                listener(user_id)
            except Exception:
                logger.exception("Auth listener raised")
