import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

from .constants import LESSON_CHAT_THRESHOLD_SECONDS, VOICE_PRACTICE_THRESHOLD_SECONDS


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="LINGO_DATABASE_URL")
    database_pool_size: int = Field(10, alias="LINGO_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="LINGO_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="LINGO_DATABASE_ECHO")
    persistence_mode: Literal["database", "memory"] = Field(
        "database",
        alias="LINGO_PERSISTENCE_MODE",
    )
    progress_timezone: str = Field("UTC", alias="LINGO_PROGRESS_TIMEZONE")
    lesson_session_threshold_seconds: int = Field(
        LESSON_CHAT_THRESHOLD_SECONDS,
        alias="LINGO_LESSON_SESSION_THRESHOLD_SECONDS",
        gt=0,
    )
    voice_session_threshold_seconds: int = Field(
        VOICE_PRACTICE_THRESHOLD_SECONDS,
        alias="LINGO_VOICE_SESSION_THRESHOLD_SECONDS",
        gt=0,
    )
    local_cache_path: Optional[str] = Field(None, alias="LINGO_LOCAL_CACHE_PATH")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
