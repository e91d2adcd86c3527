"""Session state and identity change notifications."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

_logger = logging.getLogger(__name__)

IdentityCallback = Callable[[str | None], None]


class Session(BaseModel):
    """Authenticated session handed over by the login flow.

    Parameters
    ----------
    user_id : str
        The authenticated user's ID. Bookmarks are scoped to it.
    access_token : str
        Bearer token sent on REST calls. Token refresh belongs to the
        login flow, which hands the new session to
        :meth:`SessionHolder.set_session`.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_default=True,
        str_strip_whitespace=True,
    )

    user_id: str = Field(..., min_length=1)
    access_token: str


class SessionProvider(Protocol):
    """Source of the current identity.

    Implemented by whatever owns login/logout. Callbacks fire on the
    event loop thread.
    """

    def get_current_identity(self) -> str | None: ...

    def get_session(self) -> Session | None: ...

    def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]: ...


class SessionHolder:
    """In-memory :class:`SessionProvider`.

    The login flow calls :meth:`set_session` after sign-in (or token
    refresh) and :meth:`clear` on sign-out.
    """

    def __init__(self, session: Session | None = None) -> None:
        self._session = session
        self._callbacks: list[IdentityCallback] = []

    def get_session(self) -> Session | None:
        return self._session

    def get_current_identity(self) -> str | None:
        session = self._session
        return session.user_id if session is not None else None

    def on_identity_change(self, callback: IdentityCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    def set_session(self, session: Session | None) -> None:
        """Replace the session; callbacks fire only when the identity changes."""
        previous = self.get_current_identity()
        self._session = session
        current = self.get_current_identity()
        if previous == current:
            return
        _logger.debug("Identity changed from %s to %s", previous, current)
        for callback in list(self._callbacks):
            callback(current)

    def clear(self) -> None:
        """Sign out."""
        self.set_session(None)
