"""High-level async client for live-synced bookmarks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from pymarks._client import mutations as _mutations
from pymarks._client.feed import ChangeFeedSubscriber
from pymarks._mqtt import ChangeFeed, MqttChangeFeed
from pymarks._transport import RecordBackend, RestBackend
from pymarks.config import MarksConfig
from pymarks.exceptions import FetchError, MarksError, MutationError
from pymarks.models.bookmark import Bookmark
from pymarks.notify import LoggingNotifier, Notifier, Severity
from pymarks.session import SessionProvider
from pymarks.state.events import SubscriptionStatus
from pymarks.state.store import RecordStore, Snapshot

_logger = logging.getLogger(__name__)

LOAD_FAILED_MESSAGE = "Failed to load bookmarks"


class BookmarkClient:
    """Async client keeping the signed-in user's bookmarks in sync.

    Usage::

        sessions = SessionHolder(Session(user_id=..., access_token=...))
        async with BookmarkClient(config, sessions=sessions) as client:
            client.add_listener(render)
            await client.add_bookmark("Docs", "https://docs.python.org")

    A :class:`RecordStore` and its :class:`ChangeFeedSubscriber` exist only
    while an identity is signed in. On sign-out or a switch of user the old
    pair is fully torn down before the next one is built.
    """

    def __init__(
        self,
        config: MarksConfig,
        *,
        sessions: SessionProvider,
        notifier: Notifier | None = None,
        session: aiohttp.ClientSession | None = None,
        backend: RecordBackend | None = None,
        feed: ChangeFeed | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._sessions = sessions
        self._notifier: Notifier = notifier or LoggingNotifier()
        self._external_session = session is not None
        self._http_session = session
        self._backend = backend
        self._feed = feed
        self._sleep = sleep
        self._loop: asyncio.AbstractEventLoop | None = None

        self._identity: str | None = None
        self._store: RecordStore | None = None
        self._subscriber: ChangeFeedSubscriber | None = None
        self._load_task: asyncio.Task[None] | None = None
        self._remove_identity_listener: Callable[[], None] | None = None
        self._listeners: list[Callable[[Snapshot], None]] = []
        self._status_listeners: list[Callable[[SubscriptionStatus], None]] = []

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> BookmarkClient:
        self._loop = asyncio.get_running_loop()
        if self._backend is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._backend = RestBackend(
                self._config,
                self._http_session,
                access_token=self._access_token,
            )
        if self._feed is None and self._config.realtime_enabled:
            self._feed = MqttChangeFeed(
                self._config,
                loop=self._loop,
                session=self._sessions.get_session,
                logger=_logger,
            )
        self._remove_identity_listener = self._sessions.on_identity_change(self._on_identity_change)
        self._activate(self._sessions.get_current_identity())
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._remove_identity_listener is not None:
            self._remove_identity_listener()
            self._remove_identity_listener = None
        self._deactivate()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._loop = None

    # ------------------------------------------------------------------
    # Identity glue
    # ------------------------------------------------------------------

    def _access_token(self) -> str | None:
        session = self._sessions.get_session()
        return session.access_token if session is not None else None

    def _on_identity_change(self, identity: str | None) -> None:
        if identity == self._identity:
            return
        _logger.debug("Switching bookmark scope from %s to %s", self._identity, identity)
        self._deactivate()
        self._activate(identity)

    def _activate(self, identity: str | None) -> None:
        if identity is None:
            return
        store = RecordStore(self._require_backend(), owner_id=identity)
        store.add_listener(self._emit_snapshot)
        self._identity = identity
        self._store = store

        if self._feed is not None:
            self._subscriber = ChangeFeedSubscriber(
                feed=self._feed,
                store=store,
                notifier=self._notifier,
                table=self._config.table,
                max_retries=self._config.max_retries,
                backoff_step=self._config.retry_backoff_step,
                sleep=self._sleep,
                on_status=self._emit_status,
            )
            self._subscriber.start()

        loop = self._loop or asyncio.get_running_loop()
        self._load_task = loop.create_task(self._initial_load(store), name=f"pymarks-load-{identity}")

    def _deactivate(self) -> None:
        load_task = self._load_task
        self._load_task = None
        if load_task is not None and not load_task.done():
            load_task.cancel()
        subscriber = self._subscriber
        self._subscriber = None
        if subscriber is not None:
            subscriber.close()
        store = self._store
        self._store = None
        if store is not None:
            store.close()
        self._identity = None

    async def _initial_load(self, store: RecordStore) -> None:
        try:
            await store.load(store.owner_id)
        except FetchError as exc:
            _logger.warning("Initial bookmark load failed: %s", exc)
            if not store.closed:
                self._notifier.notify(LOAD_FAILED_MESSAGE, Severity.ERROR)

    def _emit_snapshot(self, snapshot: Snapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                _logger.debug("Bookmark listener failed", exc_info=True)

    def _emit_status(self, status: SubscriptionStatus) -> None:
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                _logger.debug("Status listener failed", exc_info=True)

    def _require_backend(self) -> RecordBackend:
        if self._backend is None:
            raise MarksError("Client not initialized. Use 'async with BookmarkClient(...) as client:'")
        return self._backend

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def identity(self) -> str | None:
        """Owner the current store is scoped to."""
        return self._identity

    @property
    def store(self) -> RecordStore | None:
        return self._store

    @property
    def subscriber(self) -> ChangeFeedSubscriber | None:
        return self._subscriber

    @property
    def status(self) -> SubscriptionStatus:
        """Live feed status; ``closed`` when signed out or realtime is off."""
        if self._subscriber is None:
            return SubscriptionStatus.CLOSED
        return self._subscriber.status

    @property
    def is_live(self) -> bool:
        return self.status == SubscriptionStatus.LIVE

    def snapshot(self) -> tuple[Bookmark, ...]:
        """Current bookmarks, newest first. Empty when signed out."""
        if self._store is None:
            return ()
        return self._store.snapshot()

    def add_listener(self, listener: Callable[[Snapshot], None]) -> Callable[[], None]:
        """Call *listener* with every new snapshot, across identity switches."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def add_status_listener(self, listener: Callable[[SubscriptionStatus], None]) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def _remove() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return _remove

    async def wait_loaded(self) -> None:
        """Wait for the initial load of the current identity to finish."""
        task = self._load_task
        if task is not None:
            await asyncio.shield(task)

    async def refresh(self) -> Snapshot:
        """Re-fetch the snapshot (manual-refresh consistency path).

        Raises
        ------
        FetchError
            Nobody is signed in or the fetch failed.
        """
        store = self._store
        if store is None:
            raise FetchError("No authenticated identity to load bookmarks for")
        return await store.load(self._identity)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add_bookmark(self, title: str, url: str) -> bool:
        """Create a bookmark. The list updates when the feed echoes it back.

        Returns ``False`` if the single attempt failed; the notifier has
        already been told why.
        """
        try:
            await _mutations.add_bookmark(self, title=title, url=url)
        except MutationError:
            return False
        return True

    async def delete_bookmark(self, record_id: str) -> bool:
        """Delete a bookmark. Returns ``False`` if the single attempt failed."""
        try:
            await _mutations.delete_bookmark(self, record_id=record_id)
        except MutationError:
            return False
        return True
