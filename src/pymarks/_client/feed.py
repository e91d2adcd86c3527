"""Live change feed subscription for :class:`pymarks.client.BookmarkClient`.

Owns:
- the subscription state machine (idle, connecting, live, errored, closed)
- linear reconnect backoff with a retry ceiling
- reconciliation of feed events into the record store
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from pymarks._mqtt import ChangeFeed, FeedHandle
from pymarks._redact import redact_for_log
from pymarks.exceptions import FeedConnectionError, ScopeMismatchError
from pymarks.models.bookmark import Bookmark
from pymarks.notify import Notifier, Severity
from pymarks.state.events import (
    FeedEvent,
    FeedStatus,
    RecordDeleted,
    RecordInserted,
    StatusChanged,
    SubscriptionStatus,
)
from pymarks.state.policy import backoff_delay, is_connection_failure, should_retry
from pymarks.state.store import RecordStore

_logger = logging.getLogger(__name__)

LIVE_SYNC_UNAVAILABLE = "Realtime sync unavailable, changes will appear on refresh"


class ChangeFeedSubscriber:
    """Keeps one owner's :class:`RecordStore` in step with the change feed.

    Transport callbacks only enqueue typed events. A single consumer task
    applies them in arrival order, so reconciliation never interleaves.
    Every event carries the serial of the handle that produced it and events
    from a released handle are dropped.
    """

    def __init__(
        self,
        *,
        feed: ChangeFeed,
        store: RecordStore,
        notifier: Notifier,
        table: str = "bookmarks",
        max_retries: int = 3,
        backoff_step: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_status: Callable[[SubscriptionStatus], None] | None = None,
    ) -> None:
        self._feed = feed
        self._store = store
        self._identity = store.owner_id
        self._notifier = notifier
        self._table = table
        self._max_retries = max_retries
        self._backoff_step = backoff_step
        self._sleep = sleep
        self._on_status = on_status

        self._status = SubscriptionStatus.IDLE
        self._attempt = 0
        self._serial = 0
        self._handle: FeedHandle | None = None
        self._current_serial: int | None = None
        self._queue: asyncio.Queue[FeedEvent] = asyncio.Queue()
        self._consumer: asyncio.Task[None] | None = None
        self._retry_task: asyncio.Task[None] | None = None
        self._unavailable_notified = False

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def status(self) -> SubscriptionStatus:
        return self._status

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def handle(self) -> FeedHandle | None:
        return self._handle

    @property
    def is_live(self) -> bool:
        return self._status == SubscriptionStatus.LIVE

    def _set_status(self, status: SubscriptionStatus) -> None:
        if status == self._status:
            return
        _logger.debug("Feed %s -> %s owner=%s attempt=%d", self._status, status, self._identity, self._attempt)
        self._status = status
        if self._on_status is not None:
            try:
                self._on_status(status)
            except Exception:
                _logger.debug("on_status callback failed", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Open the first subscription. Must be called on the event loop."""
        if self._status != SubscriptionStatus.IDLE:
            return
        self._consumer = asyncio.get_running_loop().create_task(
            self._consume(),
            name=f"pymarks-feed-{self._identity}",
        )
        self._subscribe()

    def close(self) -> None:
        """Tear down: cancel any pending retry and release the handle.

        This is the only cancellation path. Safe to call more than once.
        """
        self._set_status(SubscriptionStatus.CLOSED)
        retry = self._retry_task
        self._retry_task = None
        if retry is not None and not retry.done():
            retry.cancel()
        self._release_handle()
        consumer = self._consumer
        self._consumer = None
        if consumer is not None and not consumer.done():
            consumer.cancel()

    async def join(self) -> None:
        """Wait until every queued event has been reconciled."""
        await self._queue.join()

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def _release_handle(self) -> None:
        handle = self._handle
        self._handle = None
        self._current_serial = None
        if handle is None:
            return
        _logger.debug("Releasing feed handle %s", handle.name)
        try:
            self._feed.unsubscribe(handle)
        except Exception:
            _logger.debug("Feed unsubscribe failed handle=%s", handle.name, exc_info=True)

    def _subscribe(self) -> None:
        # The previous handle is gone before the new one exists, so no event
        # can be attributed to a stale subscription.
        self._release_handle()
        self._serial += 1
        serial = self._serial
        name = f"{self._table}_realtime_{self._attempt}_{serial}"
        self._current_serial = serial
        self._set_status(SubscriptionStatus.CONNECTING)

        def on_insert(row: dict[str, Any]) -> None:
            self._post(RecordInserted(handle_serial=serial, row=row))

        def on_delete(old_row: dict[str, Any]) -> None:
            record_id = old_row.get("id")
            if record_id is None or isinstance(record_id, bool):
                _logger.debug("Delete event without id dropped row=%s", redact_for_log(old_row))
                return
            self._post(RecordDeleted(handle_serial=serial, record_id=str(record_id)))

        def on_status(status: FeedStatus, detail: str = "") -> None:
            self._post(StatusChanged(handle_serial=serial, status=status, detail=detail))

        try:
            self._handle = self._feed.subscribe_changes(
                self._table,
                owner_id=self._identity,
                name=name,
                on_insert=on_insert,
                on_delete=on_delete,
                on_status=on_status,
            )
        except Exception as exc:
            _logger.debug("Feed subscribe failed handle=%s", name, exc_info=True)
            on_status(FeedStatus.CHANNEL_ERROR, str(exc))

    def _post(self, event: FeedEvent) -> None:
        if self._status == SubscriptionStatus.CLOSED:
            return
        self._queue.put_nowait(event)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self._dispatch(event)
            except Exception:
                _logger.warning("Failed to reconcile feed event %s", type(event).__name__, exc_info=True)
            finally:
                self._queue.task_done()

    def _dispatch(self, event: FeedEvent) -> None:
        if self._status == SubscriptionStatus.CLOSED:
            return
        if event.handle_serial != self._current_serial:
            _logger.debug("Dropping %s from stale handle serial=%d", type(event).__name__, event.handle_serial)
            return
        if isinstance(event, StatusChanged):
            self._on_transport_status(event)
        elif isinstance(event, RecordInserted):
            self._reconcile_insert(event.row)
        else:
            # No ownership check: an unknown id is already a no-op.
            self._store.apply_delete(event.record_id)

    def _reconcile_insert(self, row: dict[str, Any]) -> None:
        try:
            record = Bookmark.model_validate(row)
        except ValidationError:
            _logger.debug("Invalid insert event dropped row=%s", redact_for_log(row), exc_info=True)
            return
        if record.owner_id != self._identity:
            _logger.debug("%s", ScopeMismatchError(expected=self._identity, received=record.owner_id))
            return
        self._store.apply_insert(record)

    def _on_transport_status(self, event: StatusChanged) -> None:
        if event.status == FeedStatus.SUBSCRIBED:
            if self._status == SubscriptionStatus.CONNECTING:
                self._attempt = 0
                self._set_status(SubscriptionStatus.LIVE)
                _logger.debug("Realtime subscription active owner=%s", self._identity)
            return

        if not is_connection_failure(event.status):
            return
        if self._status not in (SubscriptionStatus.CONNECTING, SubscriptionStatus.LIVE):
            return

        handle_name = self._handle.name if self._handle is not None else ""
        self._release_handle()
        self._attempt += 1
        self._set_status(SubscriptionStatus.ERRORED)
        error = FeedConnectionError(
            f"Realtime {event.status.value} (attempt {self._attempt}) {event.detail}".rstrip(),
            attempt=self._attempt,
            handle=handle_name,
        )
        _logger.warning("%s", error)

        if should_retry(self._attempt, max_retries=self._max_retries):
            delay = backoff_delay(self._attempt, step_seconds=self._backoff_step)
            self._retry_task = asyncio.get_running_loop().create_task(self._retry_after(delay))
            return
        self._give_up()

    async def _retry_after(self, delay: float) -> None:
        _logger.debug("Reconnecting in %.1fs owner=%s attempt=%d", delay, self._identity, self._attempt)
        await self._sleep(delay)
        self._retry_task = None
        if self._status == SubscriptionStatus.ERRORED:
            self._subscribe()

    def _give_up(self) -> None:
        self._set_status(SubscriptionStatus.CLOSED)
        if self._unavailable_notified:
            return
        self._unavailable_notified = True
        _logger.warning("Realtime sync unavailable owner=%s after %d attempts", self._identity, self._attempt)
        self._notifier.notify(LIVE_SYNC_UNAVAILABLE, Severity.INFO)
