from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from tunesync.models.song import Song
from tunesync.models.user import Participant


class PlaybackState(BaseModel):
    """Authoritative transport state.

    ``current_time`` (seconds) is only valid as of ``last_updated`` (store
    time, ms); see ``playback_clock.expected_position``.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_playing: bool = False
    current_time: float = 0.0
    last_updated: float = 0.0


class Room(BaseModel):
    """Normalized view of a ``rooms/{id}`` snapshot.

    The queue is always a list here, whatever encoding the store holds.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str = ""
    created_by: str
    participants: int = 0
    participants_list: Dict[str, Participant] = Field(default_factory=dict)
    queue: List[Song] = Field(default_factory=list)
    currently_playing: Optional[Song] = None
    playback_state: PlaybackState = Field(default_factory=PlaybackState)
    allow_others_to_listen: bool = True
    is_private: bool = False
    # uid -> id of the song the vote was cast against
    skip_votes: Dict[str, str] = Field(default_factory=dict)

    @field_validator("queue", mode="before")
    @classmethod
    def normalize_queue(cls, v: Any) -> List[Any]:
        if v is None:
            return []
        if isinstance(v, dict):
            # push-appended items come back as a keyed map; keep store order
            return list(v.values())
        return [item for item in v if item is not None]

    @classmethod
    def from_snapshot(cls, room_id: str, raw: Dict[str, Any]) -> "Room":
        return cls.model_validate({**raw, "id": room_id})

    def is_creator(self, uid: str) -> bool:
        return self.created_by == uid

    def can_listen(self, uid: str) -> bool:
        return self.is_creator(uid) or self.allow_others_to_listen

    def skip_voters(self) -> set[str]:
        """Voters whose vote targets the song currently playing."""
        if self.currently_playing is None:
            return set()
        song_id = self.currently_playing.id
        return {uid for uid, voted_for in self.skip_votes.items() if voted_for == song_id}

    def online_participants(self, now_ms: float, window_s: float = 300.0) -> List[Participant]:
        return [p for p in self.participants_list.values() if p.is_online(now_ms, window_s)]
