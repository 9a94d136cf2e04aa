from typing import Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Song(BaseModel):
    """A queued or playing video.

    Identity for queue operations is ``id``; the same ``video_id`` may sit in
    the queue several times.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    video_id: str
    title: str
    thumbnail: str = ""
    channel_title: str = ""
    added_by: str
    added_by_name: str = ""
    added_by_anonymous: bool = False
    duration: Optional[float] = None

    def identity(self) -> tuple[str, str]:
        return (self.id, self.video_id)

    def to_store(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
