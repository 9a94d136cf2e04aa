from typing import Optional

from tunesync.models.room import PlaybackState


def expected_position(playback_state: Optional[PlaybackState], now_ms: float) -> Optional[float]:
    """Where the room's timeline is at ``now_ms``, in seconds.

    Not clamped to the song duration; callers must cope with a position past
    the end (the advancement logic deals with that).
    """
    if playback_state is None:
        return None
    elapsed = (now_ms - playback_state.last_updated) / 1000 if playback_state.is_playing else 0.0
    return playback_state.current_time + elapsed


def room_position(room, now_ms: float) -> Optional[float]:
    """``expected_position`` for a room, None when nothing is loaded."""
    if room is None or room.currently_playing is None:
        return None
    return expected_position(room.playback_state, now_ms)
