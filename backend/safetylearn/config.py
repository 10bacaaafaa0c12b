import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="SAFETYLEARN_DATABASE_URL")
    database_pool_size: int = Field(10, alias="SAFETYLEARN_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="SAFETYLEARN_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="SAFETYLEARN_DATABASE_ECHO")
    persistence_mode: Literal["database", "memory"] = Field(
        "database",
        alias="SAFETYLEARN_PERSISTENCE_MODE",
    )
    supabase_url: str = Field("https://your-project.supabase.co", alias="SAFETYLEARN_SUPABASE_URL")
    supabase_anon_key: Optional[str] = Field(None, alias="SAFETYLEARN_SUPABASE_ANON_KEY")
    auth_timeout_seconds: float = Field(10.0, alias="SAFETYLEARN_AUTH_TIMEOUT_SECONDS")
    auth_propagation_delay: float = Field(0.1, ge=0.0, alias="SAFETYLEARN_AUTH_PROPAGATION_DELAY")
    lesson_points: int = Field(100, ge=0, alias="SAFETYLEARN_LESSON_POINTS")

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
