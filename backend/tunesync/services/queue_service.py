"""
Queue mutations against the shared store.

Each mutation is a single store transaction, so permission checks and the
write see the same version of the room. Creator-only operations raise
``NotRoomCreatorError``; removing someone else's song as a non-creator
raises ``QueuePermissionError``.
"""
import logging
import random
import secrets
from enum import Enum
from typing import List, Optional, Sequence

from tunesync.models.song import Song
from tunesync.models.user import Identity
from tunesync.services.queue_ops import (
    QueueSnapshot,
    append_raw,
    permutation_by_ids,
    shuffle_items,
)
from tunesync.services.room_store import ABORT, RoomStore
from tunesync.services.state_tree import SERVER_TIMESTAMP, new_push_key

logger = logging.getLogger(__name__)


class NotRoomCreatorError(Exception):
    pass


class QueuePermissionError(Exception):
    pass


class InvalidQueueOrderError(ValueError):
    pass


class AppendOutcome(str, Enum):
    PLAYING = "playing"
    QUEUED = "queued"


def new_song_id(now_ms: int) -> str:
    return f"{now_ms}{secrets.token_hex(2)}"


def build_song(
    identity: Identity,
    now_ms: int,
    video_id: str,
    title: str,
    thumbnail: str = "",
    channel_title: str = "",
    duration: Optional[float] = None,
) -> Song:
    return Song(
        id=new_song_id(now_ms),
        video_id=video_id,
        title=title,
        thumbnail=thumbnail,
        channel_title=channel_title,
        added_by=identity.uid,
        added_by_name=identity.display_name,
        added_by_anonymous=identity.is_anonymous,
        duration=duration,
    )


def _require_creator(doc: dict, identity: Identity, action: str):
    if doc.get("createdBy") != identity.uid:
        logger.warning(f"{identity.uid} tried to {action} without being the room creator")
        raise NotRoomCreatorError(f"Only the room creator can {action}")


class QueueService:
    def __init__(self, store: RoomStore):
        self.store = store

    async def append(self, room_id: str, identity: Identity, song: Song) -> AppendOutcome:
        """Play ``song`` straight away if the room is idle, else queue it at the tail."""
        song_doc = song.to_store()
        key = new_push_key(self.store.now_ms())
        outcome = AppendOutcome.QUEUED

        def fn(doc):
            nonlocal outcome
            if not doc.get("currentlyPlaying"):
                outcome = AppendOutcome.PLAYING
                doc["currentlyPlaying"] = song_doc
                doc["playbackState"] = {"isPlaying": True, "currentTime": 0, "lastUpdated": SERVER_TIMESTAMP}
                doc.pop("skipVotes", None)
            else:
                outcome = AppendOutcome.QUEUED
                doc["queue"] = append_raw(doc.get("queue"), song_doc, key)
            return doc

        await self.store.transact(room_id, fn)
        logger.info(f"Added {song.video_id} to {room_id} ({outcome.value})")
        return outcome

    async def remove(self, room_id: str, identity: Identity, song_id: str) -> Optional[Song]:
        """Remove by id. Anyone may remove their own songs, the creator any song."""
        removed: Optional[dict] = None

        def fn(doc):
            nonlocal removed
            removed = None
            snapshot = QueueSnapshot.decode(doc.get("queue"))
            target = snapshot.find(song_id)
            if target is None:
                return ABORT
            if doc.get("createdBy") != identity.uid and target.get("addedBy") != identity.uid:
                raise QueuePermissionError("You can only remove songs you added")
            removed, rest = snapshot.remove(song_id)
            doc["queue"] = rest.encode()
            return doc

        await self.store.transact(room_id, fn)
        if removed is None:
            return None
        logger.info(f"Removed {song_id} from {room_id}")
        return Song.model_validate(removed)

    async def reorder(self, room_id: str, identity: Identity, new_queue: Sequence[Song]):
        """Replace the queue with a caller-built permutation of it."""
        items = [song.to_store() for song in new_queue]

        def fn(doc):
            _require_creator(doc, identity, "reorder the queue")
            doc["queue"] = items
            return doc

        await self.store.transact(room_id, fn)
        logger.info(f"Queue reordered in {room_id}")

    async def reorder_by_ids(self, room_id: str, identity: Identity, song_ids: Sequence[str]) -> List[Song]:
        reordered: List[dict] = []

        def fn(doc):
            nonlocal reordered
            _require_creator(doc, identity, "reorder the queue")
            snapshot = QueueSnapshot.decode(doc.get("queue"))
            try:
                reordered = permutation_by_ids(snapshot.items, song_ids)
            except ValueError as e:
                raise InvalidQueueOrderError(str(e)) from e
            doc["queue"] = reordered
            return doc

        await self.store.transact(room_id, fn)
        logger.info(f"Queue reordered in {room_id}")
        return [Song.model_validate(item) for item in reordered]

    async def shuffle(self, room_id: str, identity: Identity, rng: random.Random | None = None) -> bool:
        """Shuffle the whole queue; False when there are fewer than two songs."""
        def fn(doc):
            _require_creator(doc, identity, "shuffle the queue")
            snapshot = QueueSnapshot.decode(doc.get("queue"))
            if len(snapshot) < 2:
                return ABORT
            doc["queue"] = shuffle_items(snapshot.items, rng)
            return doc

        shuffled = await self.store.transact(room_id, fn) is not None
        if shuffled:
            logger.info(f"Queue shuffled in {room_id}")
        return shuffled
