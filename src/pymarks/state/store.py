"""Deterministic in-memory bookmark store.

This is the only component allowed to change the bookmark collection.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from pydantic import ValidationError

from pymarks._transport import RecordBackend
from pymarks.exceptions import FetchError, MarksTransportError, ScopeMismatchError
from pymarks.models.bookmark import Bookmark

_logger = logging.getLogger(__name__)

Snapshot = tuple[Bookmark, ...]
Listener = Callable[[Snapshot], None]


def _newest_first(records: list[Bookmark]) -> list[Bookmark]:
    ordered = sorted(records, key=lambda record: record.created_at, reverse=True)
    seen: set[str] = set()
    unique: list[Bookmark] = []
    for record in ordered:
        if record.id in seen:
            continue
        seen.add(record.id)
        unique.append(record)
    return unique


class RecordStore:
    """Ordered bookmark collection for one owner.

    Invariants: ids are unique and records are sorted by ``created_at``
    descending. ``apply_insert`` and ``apply_delete`` are idempotent, so the
    same event delivered twice (by the feed and by an overlapping
    subscription, or racing the snapshot load) leaves the same collection.

    ``load`` replaces the collection. Events applied while a load is in
    flight are also buffered and replayed on top of the fetched rows, which
    makes the result independent of whether the snapshot or the event
    completes first.
    """

    def __init__(self, backend: RecordBackend, *, owner_id: str) -> None:
        self._backend = backend
        self._owner_id = owner_id
        self._records: list[Bookmark] = []
        self._ids: set[str] = set()
        self._listeners: list[Listener] = []
        self._loads_in_flight = 0
        # Inserted records and deleted ids, in arrival order.
        self._replay: list[Bookmark | str] = []
        self._closed = False

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def loading(self) -> bool:
        return self._loads_in_flight > 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._ids

    def snapshot(self) -> Snapshot:
        """Current records, newest first."""
        return tuple(self._records)

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call *listener* with the new snapshot after every change."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _emit(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                _logger.debug("Bookmark listener failed", exc_info=True)

    def _replace(self, records: list[Bookmark]) -> None:
        self._records = records
        self._ids = {record.id for record in records}

    async def load(self, identity: str | None) -> Snapshot:
        """Fetch all bookmarks owned by *identity* and replace the collection.

        Raises
        ------
        FetchError
            The identity is absent or foreign, the backing call failed, or a
            row did not validate. The collection is left empty.
        """
        if self._closed:
            raise FetchError("Record store is closed", owner_id=identity)
        if not identity:
            raise FetchError("No authenticated identity to load bookmarks for")
        if identity != self._owner_id:
            raise FetchError(
                f"Record store for {self._owner_id!r} cannot load bookmarks of {identity!r}",
                owner_id=identity,
            )

        self._loads_in_flight += 1
        try:
            try:
                rows = await self._backend.fetch_records(identity)
                fetched = [Bookmark.model_validate(row) for row in rows]
            except MarksTransportError as exc:
                self._fail_load()
                raise FetchError(f"Failed to load bookmarks: {exc}", owner_id=identity) from exc
            except ValidationError as exc:
                self._fail_load()
                raise FetchError(f"Backing store returned an invalid bookmark: {exc}", owner_id=identity) from exc
        finally:
            self._loads_in_flight -= 1

        if self._closed:
            _logger.debug("Discarding snapshot for closed store owner=%s", identity)
            return ()

        foreign = [record.id for record in fetched if record.owner_id != self._owner_id]
        if foreign:
            _logger.debug("Dropping %d foreign rows from snapshot owner=%s", len(foreign), identity)
            fetched = [record for record in fetched if record.owner_id == self._owner_id]

        self._replace(_newest_first(fetched))
        replay = list(self._replay)
        if not self._loads_in_flight:
            self._replay.clear()
        for entry in replay:
            if isinstance(entry, Bookmark):
                self._insert(entry)
            else:
                self._delete(entry)
        _logger.debug(
            "Loaded %d bookmarks owner=%s (replayed %d events)",
            len(self._records),
            identity,
            len(replay),
        )
        self._emit()
        return self.snapshot()

    def _fail_load(self) -> None:
        if self._loads_in_flight <= 1:
            self._replay.clear()
        had_records = bool(self._records)
        self._replace([])
        if had_records:
            self._emit()

    def _insert(self, record: Bookmark) -> bool:
        if record.id in self._ids:
            return False
        # Ties go in front of existing records, so a new record is prepended.
        index = next(
            (i for i, existing in enumerate(self._records) if existing.created_at <= record.created_at),
            len(self._records),
        )
        self._records.insert(index, record)
        self._ids.add(record.id)
        return True

    def _delete(self, record_id: str) -> bool:
        if record_id not in self._ids:
            return False
        self._records = [record for record in self._records if record.id != record_id]
        self._ids.discard(record_id)
        return True

    def apply_insert(self, record: Bookmark) -> bool:
        """Insert *record* unless its id is already present.

        Returns ``True`` when the collection changed.
        """
        if self._closed:
            return False
        if record.owner_id != self._owner_id:
            raise ScopeMismatchError(expected=self._owner_id, received=record.owner_id)
        if self._loads_in_flight:
            self._replay.append(record)
        if not self._insert(record):
            _logger.debug("Duplicate insert ignored id=%s", record.id)
            return False
        self._emit()
        return True

    def apply_delete(self, record_id: str) -> bool:
        """Remove the record with *record_id* if present.

        Returns ``True`` for a confirmed delete and ``False`` when the id was
        unknown (late or duplicate event, or a record never observed).
        """
        if self._closed:
            return False
        if self._loads_in_flight:
            self._replay.append(record_id)
        if not self._delete(record_id):
            _logger.debug("Delete for unknown id ignored id=%s", record_id)
            return False
        self._emit()
        return True

    def close(self) -> None:
        """Clear the collection and detach listeners. Irreversible."""
        if self._closed:
            return
        self._closed = True
        self._replay.clear()
        had_records = bool(self._records)
        self._replace([])
        if had_records:
            self._emit()
        self._listeners.clear()
