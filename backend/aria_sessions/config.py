import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    environment: Literal["development", "production", "test"] = Field("development", alias="ARIA_ENVIRONMENT")
    database_url: Optional[str] = Field(None, alias="ARIA_DATABASE_URL")
    database_pool_size: int = Field(10, alias="ARIA_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="ARIA_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="ARIA_DATABASE_ECHO")
    storage_dir: Path = Field(Path("data/profiles"), alias="ARIA_STORAGE_DIR")
    cors_origins: str = Field("*", alias="ARIA_CORS_ORIGINS")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
