from typing import Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tunesync.models.room import PlaybackState, Room


class RoomCreate(BaseModel):
    name: str = Field(min_length=1, max_length=60)
    is_private: bool = Field(default=False, alias="isPrivate")
    allow_others_to_listen: bool = Field(default=True, alias="allowOthersToListen")

    model_config = {"populate_by_name": True}


class RoomCreated(BaseModel):
    id: str
    name: str


class RoomState(BaseModel):
    """Room snapshot plus what it means for the caller."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    room: Room
    is_creator: bool
    can_listen: bool
    expected_position: Optional[float] = None  # seconds, None when nothing was ever played
    online_count: int


class SeekRequest(BaseModel):
    seconds: float = Field(ge=0)


class ListenPermissionRequest(BaseModel):
    allow_others_to_listen: bool = Field(alias="allowOthersToListen")

    model_config = {"populate_by_name": True}


class PlaybackResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    playback_state: PlaybackState
