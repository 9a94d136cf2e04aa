from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class SearchResultResponse(BaseModel):
    """A search candidate; everything needed to build a Song."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    video_id: str
    title: str
    channel_title: str = ""
    thumbnail_url: str = ""
    duration: float | None = None
