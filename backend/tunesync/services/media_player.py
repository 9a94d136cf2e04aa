from enum import IntEnum
from typing import Protocol


class PlayerState(IntEnum):
    UNSTARTED = -1
    ENDED = 0
    PLAYING = 1
    PAUSED = 2
    BUFFERING = 3
    CUED = 5


# missing video, bad parameter, HTML5 failure, embedding disallowed
UNPLAYABLE_ERROR_CODES = frozenset({2, 5, 100, 101, 150})


def is_unplayable(error_code: int) -> bool:
    return error_code in UNPLAYABLE_ERROR_CODES


class MediaPlayer(Protocol):
    """Local video player a client session drives.

    The session loads the room's current video, stops the player when
    there is nothing this client may play, and otherwise only adjusts
    position and play/pause. Event callbacks flow the other way: the host calls
    ``RoomSession.on_player_ready`` / ``on_player_state_change`` /
    ``on_player_error``.
    """

    async def load_video(self, video_id: str) -> None:
        """Replace the loaded video; reconciliation decides play/pause and position."""
        ...

    async def get_current_time(self) -> float: ...

    async def get_duration(self) -> float: ...

    async def get_player_state(self) -> PlayerState: ...

    async def play_video(self) -> None: ...

    async def pause_video(self) -> None: ...

    async def stop_video(self) -> None: ...

    async def seek_to(self, seconds: float, allow_seek_ahead: bool = True) -> None: ...

    async def set_volume(self, volume: int) -> None: ...
