from typing import List, Union
from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "TuneSync"
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = "changeme_in_production"
    # 60 minutes * 24 hours * 8 days = 8 days
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 8
    LOG_LEVEL: str = "INFO"

    REDIS_URL: str = "redis://localhost:6379/0"
    # Rooms nobody touches for 10 hours fall out of Redis
    ROOM_KEY_TTL_S: int = 3600 * 10

    # Playback sync tunables (seconds unless noted)
    SYNC_DRIFT_THRESHOLD_S: float = 5.0
    SYNC_MIN_INTERVAL_S: float = 1.0
    SEEK_DEBOUNCE_S: float = 2.0
    TICK_INTERVAL_S: float = 1.0
    PLAYER_ERROR_THRESHOLD: int = 3
    VOTE_SKIP_THRESHOLD: int = 2

    HEARTBEAT_INTERVAL_S: float = 30.0
    STORE_RESUBSCRIBE_DELAY_S: float = 1.0
    PRESENCE_ONLINE_WINDOW_S: float = 300.0

    SEARCH_MAX_RESULTS: int = 20
    SEARCH_TIMEOUT_S: float = 15.0

    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str] | str:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env")

settings = Settings()
