"""
Configuration for the sketchboard service.

Values come from environment variables or a ``.env`` file in the working
directory, falling back to the defaults below.
"""
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).parent.resolve()


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "Sketchboard"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Storage
    DATABASE_URL: str = "sqlite:///./sketchboard.db"

    # Front-end assets
    STATIC_DIR: Path = PACKAGE_DIR / "static"
    INDEX_PATH: Path = PACKAGE_DIR / "index.html"

    # Live updates
    SSE_QUEUE_SIZE: int = Field(100, ge=1)
    SSE_KEEPALIVE_SECONDS: float = Field(15.0, gt=0)

    # Upper bound on waiting for open responses once shutdown starts
    SHUTDOWN_GRACE_SECONDS: int = Field(5, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
