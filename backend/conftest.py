"""
Shared fixtures: an in-process room store, a scripted player and a clock
the tests move by hand.
"""
import asyncio
import copy

import pytest

from tunesync.models.user import Identity
from tunesync.services.media_player import PlayerState
from tunesync.services.room_store import ABORT, RoomStore, StoreWriteError

START_MS = 1_700_000_000_000


class FakeClock:
    def __init__(self, start_ms: float = START_MS):
        self.now = start_ms

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds * 1000


class MemoryRoomStore(RoomStore):
    """Dict-backed store; every write is published to subscriber queues."""

    def __init__(self, clock=None):
        self.clock = clock
        self.docs = {}
        self.writes = 0
        self.fail_writes = False
        self._subscribers = {}

    def now_ms(self) -> int:
        if self.clock is None:
            return super().now_ms()
        return int(self.clock())

    async def get(self, room_id):
        doc = self.docs.get(room_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def delete(self, room_id):
        self.docs.pop(room_id, None)
        self._publish(room_id, None)

    async def _atomic(self, room_id, apply):
        if self.fail_writes:
            raise StoreWriteError("store offline")
        new_doc = apply(copy.deepcopy(self.docs.get(room_id)))
        if new_doc is ABORT:
            return None
        self.docs[room_id] = copy.deepcopy(new_doc)
        self.writes += 1
        self._publish(room_id, new_doc)
        return new_doc

    def _publish(self, room_id, doc):
        for queue in self._subscribers.get(room_id, []):
            queue.put_nowait(copy.deepcopy(doc))

    async def subscribe(self, room_id):
        queue = asyncio.Queue()
        self._subscribers.setdefault(room_id, []).append(queue)
        try:
            yield await self.get(room_id)
            while True:
                yield await queue.get()
        finally:
            self._subscribers[room_id].remove(queue)


class FakePlayer:
    """Records player calls; ``fail`` makes every call raise."""

    def __init__(self, current_time=0.0, duration=0.0, state=PlayerState.UNSTARTED):
        self.current_time = current_time
        self.duration = duration
        self.state = state
        self.volume = None
        self.fail = False
        self.calls = []

    def _check(self):
        if self.fail:
            raise RuntimeError("player not responding")

    async def load_video(self, video_id):
        self._check()
        self.calls.append(("load", video_id))
        self.current_time = 0.0
        self.state = PlayerState.CUED

    async def get_current_time(self):
        self._check()
        return self.current_time

    async def get_duration(self):
        self._check()
        return self.duration

    async def get_player_state(self):
        self._check()
        return self.state

    async def play_video(self):
        self._check()
        self.calls.append(("play",))
        self.state = PlayerState.PLAYING

    async def pause_video(self):
        self._check()
        self.calls.append(("pause",))
        self.state = PlayerState.PAUSED

    async def stop_video(self):
        self._check()
        self.calls.append(("stop",))
        self.state = PlayerState.UNSTARTED

    async def seek_to(self, seconds, allow_seek_ahead=True):
        self._check()
        self.calls.append(("seek", seconds))
        self.current_time = seconds

    async def set_volume(self, volume):
        self._check()
        self.calls.append(("volume", volume))
        self.volume = volume

    def transport_calls(self):
        return [c for c in self.calls if c[0] in ("play", "pause", "seek")]


def song_doc(song_id, video_id=None, added_by="creator-uid", duration=None):
    doc = {
        "id": song_id,
        "videoId": video_id or f"vid-{song_id}",
        "title": f"Song {song_id}",
        "thumbnail": "",
        "channelTitle": "Channel",
        "addedBy": added_by,
        "addedByName": added_by,
        "addedByAnonymous": False,
    }
    if duration is not None:
        doc["duration"] = duration
    return doc


def room_doc(current=None, queue=None, is_playing=True, current_time=0.0, last_updated=START_MS, **extra):
    doc = {
        "name": "Test room",
        "createdBy": "creator-uid",
        "participants": 0,
        "queue": queue if queue is not None else [],
        "playbackState": {
            "isPlaying": is_playing,
            "currentTime": current_time,
            "lastUpdated": last_updated,
        },
        "allowOthersToListen": True,
    }
    if current is not None:
        doc["currentlyPlaying"] = current
    doc.update(extra)
    return doc


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryRoomStore(clock)


@pytest.fixture
def player():
    return FakePlayer()


@pytest.fixture
def creator():
    return Identity(uid="creator-uid", display_name="Creator")


@pytest.fixture
def listener():
    return Identity(uid="listener-uid", display_name="Listener", is_anonymous=True)


@pytest.fixture
def other_listener():
    return Identity(uid="other-uid", display_name="Other")
