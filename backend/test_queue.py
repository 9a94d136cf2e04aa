"""
Queue codec and queue mutations: both stored encodings, permissions, shuffle.
"""
import random
from collections import Counter
from itertools import permutations

import pytest

from conftest import room_doc, song_doc
from tunesync.models.song import Song
from tunesync.services.queue_ops import (
    QueueSnapshot,
    append_raw,
    permutation_by_ids,
    shuffle_items,
)
from tunesync.services.queue_service import (
    AppendOutcome,
    InvalidQueueOrderError,
    NotRoomCreatorError,
    QueuePermissionError,
    QueueService,
    build_song,
)


def keyed(*songs):
    return {f"-k{i}": song for i, song in enumerate(songs)}


def ids(raw):
    return [item["id"] for item in QueueSnapshot.decode(raw).items]


# ───────────── codec ─────────────

def test_decode_map_keeps_insertion_order():
    raw = keyed(song_doc("a"), song_doc("b"), song_doc("c"))
    snapshot = QueueSnapshot.decode(raw)
    assert snapshot.is_keyed
    assert [s.id for s in snapshot.songs()] == ["a", "b", "c"]
    assert snapshot.encode() == raw


def test_decode_skips_holes():
    assert ids([song_doc("a"), None, song_doc("b")]) == ["a", "b"]
    assert ids(None) == []


def test_pop_head_preserves_encoding():
    head, rest = QueueSnapshot.decode([song_doc("a"), song_doc("b")]).pop_head()
    assert head["id"] == "a"
    assert rest.encode() == [song_doc("b")]

    head, rest = QueueSnapshot.decode(keyed(song_doc("a"), song_doc("b"))).pop_head()
    assert head["id"] == "a"
    assert rest.encode() == {"-k1": song_doc("b")}


@pytest.mark.parametrize("encode", [list, lambda items: keyed(*items)])
def test_remove_by_id_drops_exactly_one(encode):
    raw = encode([song_doc("a"), song_doc("b"), song_doc("c")])
    removed, rest = QueueSnapshot.decode(raw).remove("b")
    assert removed["id"] == "b"
    assert ids(rest.encode()) == ["a", "c"]
    assert type(rest.encode()) is type(raw)


@pytest.mark.parametrize("encode", [list, lambda items: keyed(*items)])
def test_remove_missing_id_is_noop(encode):
    raw = encode([song_doc("a"), song_doc("b")])
    removed, rest = QueueSnapshot.decode(raw).remove("zzz")
    assert removed is None
    assert rest.encode() == raw


def test_append_raw_on_missing_or_empty_queue_makes_an_array():
    assert append_raw(None, song_doc("a"), "-k9") == [song_doc("a")]
    assert append_raw({}, song_doc("a"), "-k9") == [song_doc("a")]
    assert append_raw([], song_doc("a"), "-k9") == [song_doc("a")]


def test_append_raw_keeps_the_stored_encoding():
    assert ids(append_raw([song_doc("a")], song_doc("b"), "-k9")) == ["a", "b"]
    appended = append_raw(keyed(song_doc("a")), song_doc("b"), "-k9")
    assert appended == {"-k0": song_doc("a"), "-k9": song_doc("b")}


def test_permutation_by_ids():
    items = [song_doc("a"), song_doc("b"), song_doc("c")]
    assert [i["id"] for i in permutation_by_ids(items, ["c", "a", "b"])] == ["c", "a", "b"]
    with pytest.raises(ValueError):
        permutation_by_ids(items, ["a", "b"])
    with pytest.raises(ValueError):
        permutation_by_ids(items, ["a", "b", "x"])


def test_shuffle_keeps_the_multiset():
    items = [song_doc(str(i)) for i in range(8)] + [song_doc("0")]
    rng = random.Random(7)
    for _ in range(50):
        shuffled = shuffle_items(items, rng)
        assert Counter(s["id"] for s in shuffled) == Counter(s["id"] for s in items)


def test_shuffle_is_uniform():
    items = ["a", "b", "c"]
    rng = random.Random(1234)
    trials = 6000
    counts = Counter(tuple(shuffle_items(items, rng)) for _ in range(trials))
    assert set(counts) == set(permutations(items))
    expected = trials / 6
    for count in counts.values():
        assert abs(count - expected) < expected * 0.15


# ───────────── store-level mutations ─────────────

async def test_append_to_idle_room_starts_playing(store, creator, clock):
    store.docs["r1"] = room_doc(queue={}, is_playing=False)
    song = build_song(creator, clock.now, "vid-a", "Song A")
    outcome = await QueueService(store).append("r1", creator, song)

    doc = store.docs["r1"]
    assert outcome == AppendOutcome.PLAYING
    assert doc["currentlyPlaying"]["id"] == song.id
    assert doc["queue"] == {}
    assert doc["playbackState"] == {"isPlaying": True, "currentTime": 0, "lastUpdated": clock.now}


async def test_append_while_playing_queues_at_the_tail(store, listener, clock):
    store.docs["r1"] = room_doc(current=song_doc("now"), queue=keyed(song_doc("a")))
    song = build_song(listener, clock.now, "vid-b", "Song B")
    outcome = await QueueService(store).append("r1", listener, song)

    queue = store.docs["r1"]["queue"]
    assert outcome == AppendOutcome.QUEUED
    assert isinstance(queue, dict)
    assert ids(queue) == ["a", song.id]
    assert store.docs["r1"]["currentlyPlaying"]["id"] == "now"


async def test_append_to_missing_queue_creates_array(store, listener, clock):
    doc = room_doc(current=song_doc("now"))
    del doc["queue"]
    store.docs["r1"] = doc
    song = build_song(listener, clock.now, "vid-b", "Song B")
    await QueueService(store).append("r1", listener, song)
    assert store.docs["r1"]["queue"] == [song.to_store()]


def test_built_song_carries_the_adder(listener, clock):
    song = build_song(listener, clock.now, "vid", "Title", duration=212.0)
    assert song.id.startswith(str(clock.now))
    assert song.added_by == "listener-uid"
    assert song.added_by_name == "Listener"
    assert song.added_by_anonymous is True
    assert song.duration == 212.0


async def test_member_removes_own_song(store, listener):
    store.docs["r1"] = room_doc(
        current=song_doc("now"),
        queue=keyed(song_doc("a"), song_doc("b", added_by="listener-uid")),
    )
    removed = await QueueService(store).remove("r1", listener, "b")
    assert removed.id == "b"
    assert ids(store.docs["r1"]["queue"]) == ["a"]


async def test_member_cannot_remove_others_song(store, listener):
    store.docs["r1"] = room_doc(current=song_doc("now"), queue=[song_doc("a")])
    with pytest.raises(QueuePermissionError):
        await QueueService(store).remove("r1", listener, "a")
    assert ids(store.docs["r1"]["queue"]) == ["a"]


async def test_creator_removes_any_song(store, creator):
    store.docs["r1"] = room_doc(queue=[song_doc("a", added_by="listener-uid"), song_doc("b")])
    removed = await QueueService(store).remove("r1", creator, "a")
    assert isinstance(removed, Song)
    assert store.docs["r1"]["queue"] == [song_doc("b")]


async def test_remove_absent_song_is_noop(store, creator):
    store.docs["r1"] = room_doc(queue=[song_doc("a")])
    assert await QueueService(store).remove("r1", creator, "nope") is None
    assert store.writes == 0


async def test_reorder_is_creator_only(store, creator, listener):
    store.docs["r1"] = room_doc(queue=[song_doc("a"), song_doc("b")])
    service = QueueService(store)
    with pytest.raises(NotRoomCreatorError):
        await service.reorder("r1", listener, [Song.model_validate(song_doc("b"))])

    await service.reorder("r1", creator, [Song.model_validate(song_doc("b")), Song.model_validate(song_doc("a"))])
    assert ids(store.docs["r1"]["queue"]) == ["b", "a"]


async def test_reorder_by_ids_writes_an_array(store, creator):
    store.docs["r1"] = room_doc(queue=keyed(song_doc("a"), song_doc("b"), song_doc("c")))
    songs = await QueueService(store).reorder_by_ids("r1", creator, ["c", "b", "a"])
    assert [s.id for s in songs] == ["c", "b", "a"]
    assert isinstance(store.docs["r1"]["queue"], list)
    assert ids(store.docs["r1"]["queue"]) == ["c", "b", "a"]


async def test_reorder_by_ids_rejects_non_permutation(store, creator):
    store.docs["r1"] = room_doc(queue=[song_doc("a"), song_doc("b")])
    with pytest.raises(InvalidQueueOrderError):
        await QueueService(store).reorder_by_ids("r1", creator, ["a", "x"])


async def test_shuffle_needs_two_songs(store, creator):
    store.docs["r1"] = room_doc(queue=[song_doc("a")])
    assert not await QueueService(store).shuffle("r1", creator)
    assert store.writes == 0


async def test_shuffle_writes_an_array_of_the_same_songs(store, creator):
    store.docs["r1"] = room_doc(queue=keyed(*(song_doc(str(i)) for i in range(6))))
    assert await QueueService(store).shuffle("r1", creator, random.Random(3))
    queue = store.docs["r1"]["queue"]
    assert isinstance(queue, list)
    assert sorted(ids(queue)) == [str(i) for i in range(6)]


async def test_shuffle_is_creator_only(store, listener):
    store.docs["r1"] = room_doc(queue=[song_doc("a"), song_doc("b")])
    with pytest.raises(NotRoomCreatorError):
        await QueueService(store).shuffle("r1", listener)
