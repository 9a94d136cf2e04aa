"""
Room store write semantics: paths, deletes, server timestamps, push keys.
"""
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import room_doc
from tunesync.services import room_store as room_store_module
from tunesync.services.room_store import (
    ABORT,
    RedisRoomStore,
    RoomExistsError,
    RoomNotFoundError,
    StoreWriteError,
)
from tunesync.services.state_tree import (
    SERVER_TIMESTAMP,
    get_in,
    new_push_key,
    resolve_server_values,
    set_in,
)


def test_set_in_creates_intermediate_nodes():
    doc = set_in({}, "playbackState/isPlaying", True)
    assert doc == {"playbackState": {"isPlaying": True}}


def test_set_in_none_deletes_and_leaves_original_untouched():
    original = {"skipVotes": {"a": "s1", "b": "s1"}}
    doc = set_in(original, "skipVotes/a", None)
    assert doc == {"skipVotes": {"b": "s1"}}
    assert original == {"skipVotes": {"a": "s1", "b": "s1"}}


def test_set_in_deleting_missing_path_is_noop():
    assert set_in({"a": 1}, "b/c", None) == {"a": 1}


def test_set_in_appends_to_list_at_its_length():
    doc = set_in({"queue": [{"id": "1"}]}, "queue/1", {"id": "2"})
    assert doc["queue"] == [{"id": "1"}, {"id": "2"}]


def test_get_in_walks_maps_and_lists():
    doc = {"queue": [{"id": "1"}], "playbackState": {"currentTime": 3}}
    assert get_in(doc, "queue/0/id") == "1"
    assert get_in(doc, "playbackState/currentTime") == 3
    assert get_in(doc, "playbackState/missing") is None
    assert get_in(doc, "queue/5") is None


def test_server_timestamp_never_goes_backwards():
    resolved = resolve_server_values({"lastUpdated": SERVER_TIMESTAMP}, {"lastUpdated": 5000}, 4000)
    assert resolved == {"lastUpdated": 5000}
    resolved = resolve_server_values({"lastUpdated": SERVER_TIMESTAMP}, {"lastUpdated": 5000}, 6000)
    assert resolved == {"lastUpdated": 6000}


def test_push_keys_sort_in_creation_order():
    keys = [new_push_key(1000) for _ in range(5)] + [new_push_key(999)]
    assert keys == sorted(keys)
    assert len(set(keys)) == len(keys)


async def test_transact_missing_room_raises(store):
    with pytest.raises(RoomNotFoundError):
        await store.transact("nope", lambda doc: doc)


async def test_transact_abort_writes_nothing(store):
    store.docs["r1"] = room_doc()
    assert await store.transact("r1", lambda doc: ABORT) is None
    assert store.writes == 0


async def test_create_refuses_existing_room(store, clock):
    created = await store.create("r1", room_doc(last_updated=SERVER_TIMESTAMP))
    assert created["playbackState"]["lastUpdated"] == clock.now
    with pytest.raises(RoomExistsError):
        await store.create("r1", room_doc())


async def test_update_merges_paths(store, clock):
    store.docs["r1"] = room_doc()
    clock.advance(3)
    assert await store.update("r1", {
        "playbackState/isPlaying": False,
        "playbackState/lastUpdated": SERVER_TIMESTAMP,
    })
    state = store.docs["r1"]["playbackState"]
    assert state == {"isPlaying": False, "currentTime": 0.0, "lastUpdated": clock.now}


async def test_update_with_failed_expectation_is_skipped(store):
    store.docs["r1"] = room_doc()
    ok = await store.update("r1", {"name": "renamed"}, expect=("createdBy", "someone-else"))
    assert ok is False
    assert store.docs["r1"]["name"] == "Test room"


async def test_push_uses_keys_on_maps_and_appends_on_lists(store):
    store.docs["r1"] = room_doc(queue={})
    key = await store.push("r1", "messages", {"text": "hi"})
    assert store.docs["r1"]["messages"] == {key: {"text": "hi"}}

    store.docs["r1"]["queue"] = [{"id": "1"}]
    await store.push("r1", "queue", {"id": "2"})
    assert [s["id"] for s in store.docs["r1"]["queue"]] == ["1", "2"]


async def test_get_path(store):
    store.docs["r1"] = room_doc()
    assert await store.get_path("r1", "createdBy") == "creator-uid"
    with pytest.raises(RoomNotFoundError):
        await store.get_path("missing", "createdBy")


async def test_write_failure_surfaces_as_store_error(store):
    store.docs["r1"] = room_doc()
    store.fail_writes = True
    with pytest.raises(StoreWriteError):
        await store.set("r1", "name", "x")


async def test_subscribe_yields_current_then_changes(store):
    store.docs["r1"] = room_doc()
    feed = store.subscribe("r1")
    first = await feed.__anext__()
    assert first["name"] == "Test room"

    await store.set("r1", "name", "Renamed")
    second = await feed.__anext__()
    assert second["name"] == "Renamed"

    await store.delete("r1")
    assert await feed.__anext__() is None
    await feed.aclose()


class TimeOnlyRedis:
    def __init__(self, seconds, micros, fail=False):
        self.reply = (seconds, micros)
        self.fail = fail

    async def time(self):
        if self.fail:
            raise RedisConnectionError("connection refused")
        return self.reply


async def test_redis_store_uses_server_time(monkeypatch):
    # local clock runs 4.5s behind the Redis server
    monkeypatch.setattr(room_store_module.time, "time", lambda: 1_700_000_000.0)
    store = RedisRoomStore(TimeOnlyRedis(1_700_000_004, 500_000), ttl_s=60)

    assert await store.server_now_ms() == 1_700_000_004_500
    assert store.now_ms() == 1_700_000_004_500


async def test_redis_time_failure_is_a_store_error():
    store = RedisRoomStore(TimeOnlyRedis(0, 0, fail=True), ttl_s=60)
    with pytest.raises(StoreWriteError):
        await store.server_now_ms()
