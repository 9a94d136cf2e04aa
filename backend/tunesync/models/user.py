from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Identity(BaseModel):
    """Who the caller is, as handed over by the identity provider."""
    uid: str
    display_name: str
    is_anonymous: bool = False


class Participant(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    display_name: str = ""
    is_anonymous: bool = False
    last_active: float = 0  # server time, ms

    def is_online(self, now_ms: float, window_s: float = 300.0) -> bool:
        return now_ms - self.last_active < window_s * 1000
