from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "chat"

    # Redis cache + event bus; unset disables both
    REDIS_URL: Optional[str] = None

    # Identity (tokens are issued elsewhere)
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    # Message cache
    RECENT_MESSAGES_LIMIT: int = 50
    RECENT_MESSAGES_TTL_SECONDS: int = 86400
    UNREAD_TTL_SECONDS: int = 86400 * 7
    LAST_READ_TTL_SECONDS: int = 86400 * 7
    CACHE_TIMEOUT_SECONDS: float = 0.05

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    LAST_MESSAGE_PREVIEW_LENGTH: int = 200

    # Realtime
    BROADCAST_SHARDS: int = 64
    EVENTS_CHANNEL: str = "conversation-events"
    PRESENCE_TTL_SECONDS: int = 60
    PRESENCE_HEARTBEAT_SECONDS: int = 30

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
