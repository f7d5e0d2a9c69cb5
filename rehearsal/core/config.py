from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from enum import Enum
from pathlib import Path


class EnvironmentType(str, Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


class Settings(BaseSettings):
    # Basic Settings
    APP_NAME: str = "Interview Rehearsal"
    ENVIRONMENT: EnvironmentType = EnvironmentType.DEVELOPMENT
    DEBUG: bool = True
    API_PREFIX: str = "/api"

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "DEBUG"

    # Local storage
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    STORAGE_DIR: Path | None = None
    SESSIONS_DIR: Path | None = None
    PLAYBACK_DIR: Path | None = None
    STORAGE_CAPACITY_BYTES: int = 1024 ** 3

    # Remote collaborator
    LOAD_TIMEOUT_SECONDS: float = 30.0
    REMOTE_WRITE_TIMEOUT_SECONDS: float = 10.0

    # Media
    FFMPEG_BINARY: str = "ffmpeg"
    FFPROBE_BINARY: str = "ffprobe"
    CONVERSION_TIMEOUT_SECONDS: float = 300.0
    PLAYBACK_HANDLE_LIMIT: int = 8

    # Reconciliation
    RECONCILE_POSITIONAL_FALLBACK: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra='ignore'
    )

    @model_validator(mode="after")
    def _derive_data_dirs(self) -> "Settings":
        # Sub-directories follow DATA_DIR unless set explicitly
        if self.STORAGE_DIR is None:
            self.STORAGE_DIR = self.DATA_DIR / "videos"
        if self.SESSIONS_DIR is None:
            self.SESSIONS_DIR = self.DATA_DIR / "sessions"
        if self.PLAYBACK_DIR is None:
            self.PLAYBACK_DIR = self.DATA_DIR / "playback"
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
