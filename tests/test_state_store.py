from __future__ import annotations

import asyncio

import pytest
from marks_fakes import OTHER_OWNER, OWNER, FakeBackend, ids, make_bookmark, make_row, settle, transport_error

from pymarks.exceptions import FetchError, ScopeMismatchError
from pymarks.state.store import RecordStore


def _store(rows: list[dict] | None = None) -> tuple[RecordStore, FakeBackend]:
    backend = FakeBackend(rows)
    return RecordStore(backend, owner_id=OWNER), backend


def test_insert_is_idempotent() -> None:
    store, _ = _store()
    record = make_bookmark("a")

    assert store.apply_insert(record) is True
    once = store.snapshot()
    assert store.apply_insert(record) is False

    assert store.snapshot() == once
    assert ids(store.snapshot()) == ["a"]


def test_delete_is_idempotent_and_unknown_id_is_noop() -> None:
    store, _ = _store()
    store.apply_insert(make_bookmark("a"))
    store.apply_insert(make_bookmark("b", minutes=1))

    assert store.apply_delete("a") is True
    assert store.apply_delete("a") is False
    assert store.apply_delete("never-seen") is False
    assert ids(store.snapshot()) == ["b"]


@pytest.mark.parametrize(
    "minutes",
    [
        [0, 1, 2, 3],
        [3, 2, 1, 0],
        [2, 0, 3, 1],
        [1, 1, 0, 2],
    ],
)
def test_snapshot_sorted_newest_first_for_any_insert_order(minutes: list[int]) -> None:
    store, _ = _store()
    for index, minute in enumerate(minutes):
        store.apply_insert(make_bookmark(f"r{index}", minutes=minute))

    created = [record.created_at for record in store.snapshot()]
    assert created == sorted(created, reverse=True)
    assert len(set(ids(store.snapshot()))) == len(minutes)


def test_new_record_with_equal_timestamp_is_prepended() -> None:
    store, _ = _store()
    store.apply_insert(make_bookmark("old", minutes=5))
    store.apply_insert(make_bookmark("new", minutes=5))

    assert ids(store.snapshot()) == ["new", "old"]


def test_insert_for_other_owner_is_rejected() -> None:
    store, _ = _store()

    with pytest.raises(ScopeMismatchError):
        store.apply_insert(make_bookmark("x", owner=OTHER_OWNER))
    assert store.snapshot() == ()


@pytest.mark.asyncio
async def test_load_replaces_collection_sorted_and_scoped() -> None:
    store, _ = _store(
        [
            make_row("1", minutes=0),
            make_row("3", minutes=10),
            make_row("2", minutes=5),
            make_row("z", owner=OTHER_OWNER, minutes=20),
        ]
    )
    store.apply_insert(make_bookmark("stale", minutes=1))

    snapshot = await store.load(OWNER)

    assert ids(snapshot) == ["3", "2", "1"]
    assert ids(store.snapshot()) == ["3", "2", "1"]


@pytest.mark.asyncio
async def test_race_insert_arrives_before_load_resolves() -> None:
    store, backend = _store([make_row("1", minutes=0)])
    backend.fetch_gate = asyncio.Event()

    load = asyncio.create_task(store.load(OWNER))
    await settle()
    assert store.loading

    store.apply_insert(make_bookmark("2", minutes=5))
    backend.fetch_gate.set()
    await load

    assert ids(store.snapshot()) == ["2", "1"]


@pytest.mark.asyncio
async def test_race_load_resolves_before_insert_arrives() -> None:
    store, _ = _store([make_row("1", minutes=0)])

    await store.load(OWNER)
    store.apply_insert(make_bookmark("2", minutes=5))

    assert ids(store.snapshot()) == ["2", "1"]


@pytest.mark.asyncio
async def test_delete_racing_ahead_of_load_is_replayed() -> None:
    store, backend = _store([make_row("1", minutes=0), make_row("2", minutes=1)])
    backend.fetch_gate = asyncio.Event()

    load = asyncio.create_task(store.load(OWNER))
    await settle()
    # Not held yet, so this is a no-op now but must win over the stale snapshot.
    assert store.apply_delete("2") is False
    backend.fetch_gate.set()
    await load

    assert ids(store.snapshot()) == ["1"]


@pytest.mark.asyncio
async def test_duplicate_delivery_during_load_is_absorbed() -> None:
    store, backend = _store([make_row("1", minutes=0), make_row("2", minutes=5)])
    backend.fetch_gate = asyncio.Event()

    load = asyncio.create_task(store.load(OWNER))
    await settle()
    store.apply_insert(make_bookmark("2", minutes=5))
    store.apply_insert(make_bookmark("2", minutes=5))
    backend.fetch_gate.set()
    await load

    assert ids(store.snapshot()) == ["2", "1"]


@pytest.mark.asyncio
async def test_load_failure_raises_fetch_error_and_leaves_store_empty() -> None:
    store, backend = _store([make_row("1")])
    store.apply_insert(make_bookmark("0"))
    backend.fetch_error = transport_error()

    with pytest.raises(FetchError):
        await store.load(OWNER)

    assert store.snapshot() == ()
    assert not store.loading


@pytest.mark.asyncio
async def test_load_with_invalid_row_raises_fetch_error() -> None:
    bad = make_row("1")
    bad["url"] = "ftp://example.com/file"
    store, _ = _store([bad])

    with pytest.raises(FetchError):
        await store.load(OWNER)
    assert store.snapshot() == ()


@pytest.mark.asyncio
@pytest.mark.parametrize("identity", [None, "", OTHER_OWNER])
async def test_load_rejects_absent_or_foreign_identity(identity: str | None) -> None:
    store, backend = _store([make_row("1")])

    with pytest.raises(FetchError):
        await store.load(identity)
    assert backend.fetch_calls == []


@pytest.mark.asyncio
async def test_listeners_receive_every_change() -> None:
    store, _ = _store([make_row("1")])
    seen: list[list[str]] = []
    remove = store.add_listener(lambda snapshot: seen.append(ids(snapshot)))

    await store.load(OWNER)
    store.apply_insert(make_bookmark("2", minutes=3))
    store.apply_insert(make_bookmark("2", minutes=3))
    store.apply_delete("1")
    store.apply_delete("1")
    remove()
    store.apply_delete("2")

    assert seen == [["1"], ["2", "1"], ["2"]]


def test_failing_listener_does_not_break_reconciliation() -> None:
    store, _ = _store()

    def _boom(_snapshot: object) -> None:
        raise RuntimeError("render failed")

    store.add_listener(_boom)
    assert store.apply_insert(make_bookmark("a")) is True
    assert ids(store.snapshot()) == ["a"]


@pytest.mark.asyncio
async def test_closed_store_is_cleared_and_ignores_late_results() -> None:
    store, backend = _store([make_row("1")])
    store.apply_insert(make_bookmark("a"))
    seen: list[int] = []
    store.add_listener(lambda snapshot: seen.append(len(snapshot)))
    backend.fetch_gate = asyncio.Event()

    load = asyncio.create_task(store.load(OWNER))
    await settle()
    store.close()
    backend.fetch_gate.set()
    result = await load

    assert result == ()
    assert store.snapshot() == ()
    assert store.apply_insert(make_bookmark("b")) is False
    assert seen == [0]
    with pytest.raises(FetchError):
        await store.load(OWNER)
