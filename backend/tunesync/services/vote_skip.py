"""
Vote-skip aggregation.

Votes live in the room document as ``skipVotes/{uid} = <song id>`` so every
client sees every vote; a vote only counts while the song it names is the
one playing. Each session keeps a ``SkipVoteTally`` scoped to the current
song and only the creator's session acts on a quorum.
"""
import logging
from typing import Iterable, Optional

from tunesync.core.config import settings
from tunesync.models.room import Room
from tunesync.models.song import Song
from tunesync.services.room_store import ABORT, RoomStore
from tunesync.services.state_tree import set_in

logger = logging.getLogger(__name__)


class NoSongPlayingError(Exception):
    pass


class SkipVoteTally:
    def __init__(self, threshold: int | None = None):
        self.threshold = threshold if threshold is not None else settings.VOTE_SKIP_THRESHOLD
        self._song_key: Optional[tuple[str, str]] = None
        self._voters: set[str] = set()

    @property
    def voters(self) -> frozenset[str]:
        return frozenset(self._voters)

    @property
    def count(self) -> int:
        return len(self._voters)

    def track_song(self, song: Optional[Song]) -> bool:
        """Clear the tally when the playing song changes; True if it did."""
        key = song.identity() if song is not None else None
        if key == self._song_key:
            return False
        self._song_key = key
        self._voters.clear()
        return True

    def toggle(self, uid: str) -> bool:
        """Flip ``uid``'s vote. Returns True when the vote is now cast."""
        if self._song_key is None:
            return False
        if uid in self._voters:
            self._voters.discard(uid)
            return False
        self._voters.add(uid)
        return True

    def observe(self, voters: Iterable[str]):
        self._voters = set(voters)

    def reset(self):
        self._voters.clear()

    def has_quorum(self) -> bool:
        return self._song_key is not None and len(self._voters) >= self.threshold


async def toggle_skip_vote(store: RoomStore, room_id: str, uid: str) -> Room:
    """Toggle ``uid``'s vote against the current song; returns the new room view.

    Raises NoSongPlayingError when nothing is playing.
    """
    def fn(doc):
        room = Room.from_snapshot(room_id, doc)
        if room.currently_playing is None:
            return ABORT
        song_id = room.currently_playing.id
        if room.skip_votes.get(uid) == song_id:
            return set_in(doc, f"skipVotes/{uid}", None)
        return set_in(doc, f"skipVotes/{uid}", song_id)

    committed = await store.transact(room_id, fn)
    if committed is None:
        raise NoSongPlayingError(f"No song is playing in room {room_id}")
    room = Room.from_snapshot(room_id, committed)
    logger.info(f"Skip votes in {room_id}: {len(room.skip_voters())}")
    return room
