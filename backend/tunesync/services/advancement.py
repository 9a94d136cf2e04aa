"""
Song advancement, run by the room creator only.

Every trigger (end-of-song backstop, player "ended", persistent player
errors, vote-skip quorum, explicit skip) funnels into ``Advancer.advance``.
Two guards keep one elapsed song from popping two queue entries:

  - an in-flight flag per advancer, for triggers racing inside one client
  - a conditional write keyed on the id of the song being replaced, for
    anything else (a duplicate trigger arriving after the first commit finds
    a different current song and aborts)
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from tunesync.models.room import Room
from tunesync.models.song import Song
from tunesync.services.queue_ops import QueueSnapshot
from tunesync.services.room_store import ABORT, RoomNotFoundError, RoomStore, StoreWriteError
from tunesync.services.state_tree import SERVER_TIMESTAMP

logger = logging.getLogger(__name__)


class PlaybackPhase(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"


class AdvanceReason(str, Enum):
    END_OF_SONG = "end_of_song"
    PLAYER_ENDED = "player_ended"
    PLAYER_ERROR = "player_error"
    VOTE_SKIP = "vote_skip"
    SKIP_COMMAND = "skip_command"


@dataclass
class AdvanceResult:
    previous_song_id: Optional[str]
    now_playing: Optional[Song]
    reason: AdvanceReason
    room: Optional[Room] = None

    @property
    def phase(self) -> PlaybackPhase:
        return PlaybackPhase.PLAYING if self.now_playing is not None else PlaybackPhase.IDLE


def phase_of(room: Optional[Room]) -> PlaybackPhase:
    if room is None or room.currently_playing is None:
        return PlaybackPhase.IDLE
    return PlaybackPhase.PLAYING


def advance_doc(doc: Dict[str, Any], expected_song_id: Optional[str]):
    """Pop the queue head into ``currentlyPlaying``, or go idle.

    Aborts when the playing song is no longer ``expected_song_id``. The queue
    keeps its stored encoding.
    """
    current = doc.get("currentlyPlaying")
    current_id = current.get("id") if isinstance(current, dict) else None
    if current_id != expected_song_id:
        return ABORT

    head, rest = QueueSnapshot.decode(doc.get("queue")).pop_head()
    if head is not None:
        doc["currentlyPlaying"] = head
        doc["queue"] = rest.encode()
        doc["playbackState"] = {"isPlaying": True, "currentTime": 0, "lastUpdated": SERVER_TIMESTAMP}
    else:
        doc.pop("currentlyPlaying", None)
        doc["playbackState"] = {"isPlaying": False, "currentTime": 0, "lastUpdated": SERVER_TIMESTAMP}
    doc.pop("skipVotes", None)
    return doc


class Advancer:
    def __init__(self, store: RoomStore, room_id: str):
        self.store = store
        self.room_id = room_id
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def advance(self, expected_song_id: Optional[str], reason: AdvanceReason) -> Optional[AdvanceResult]:
        """Advance past ``expected_song_id``.

        Returns None when another trigger got there first, or when the write
        failed; a failed write leaves the room as it was and the next trigger
        retries.
        """
        if self._in_flight:
            logger.info(f"Advance already in flight for {self.room_id}, ignoring {reason.value}")
            return None

        self._in_flight = True
        try:
            committed = await self.store.transact(
                self.room_id, lambda doc: advance_doc(doc, expected_song_id)
            )
        except StoreWriteError as e:
            logger.error(f"Advance write failed for {self.room_id}: {e}")
            return None
        except RoomNotFoundError:
            logger.warning(f"Advance on missing room {self.room_id}")
            return None
        finally:
            self._in_flight = False

        if committed is None:
            logger.warning(
                f"Advance lost race in {self.room_id}: {expected_song_id} is no longer playing"
            )
            return None

        room = Room.from_snapshot(self.room_id, committed)
        result = AdvanceResult(
            previous_song_id=expected_song_id,
            now_playing=room.currently_playing,
            reason=reason,
            room=room,
        )
        if result.now_playing is not None:
            logger.info(f"Room {self.room_id} advanced ({reason.value}) to {result.now_playing.video_id}")
        else:
            logger.info(f"Room {self.room_id} queue empty ({reason.value}), now idle")
        return result
