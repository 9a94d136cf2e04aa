from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tunesync.models.song import Song


class QueueAddRequest(BaseModel):
    """Request to add a song, in the shape the search endpoint returns."""
    video_id: str = Field(alias="videoId")
    title: str
    channel_title: str = Field(default="", alias="channelTitle")
    thumbnail_url: str = Field(default="", alias="thumbnailUrl")
    duration: Optional[float] = None  # seconds

    model_config = {"populate_by_name": True}


class QueueAddResponse(BaseModel):
    song: Song
    status: str  # "playing" when it went straight to the player, else "queued"


class QueueReorderRequest(BaseModel):
    song_ids: List[str] = Field(alias="songIds")

    model_config = {"populate_by_name": True}


class QueueListResponse(BaseModel):
    """Full queue state for a room."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    now_playing: Optional[Song] = None
    queue: List[Song]


class VoteSkipResponse(BaseModel):
    """Response after toggling a vote-skip."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    voted: bool
    vote_count: int
    threshold: int
    quorum_reached: bool


class AdvanceResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    advanced: bool
    now_playing: Optional[Song] = None
