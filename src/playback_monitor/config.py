from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

# Application version
VERSION = "0.3.0"


class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables.
    Utilizes pydantic-settings for robust validation and type-casting.
    """

    # Server Configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8086
    LOG_LEVEL: str = "info"
    RELOAD: bool = False
    ROOT_PATH: str = ""
    DOCS_URL: str = "/docs"
    REDOC_URL: str = "/redoc"
    OPENAPI_URL: str = "/openapi.json"

    # API Authentication
    API_TOKEN: Optional[str] = None

    # Session timers (seconds)
    METRICS_TICK_INTERVAL: float = 1.0
    LIVE_POLL_INTERVAL: float = 5.0
    # Native playback path: how often and how many times the element's
    # duration is sampled after metadata loads
    NATIVE_DURATION_SAMPLE_INTERVAL: float = 0.5
    NATIVE_DURATION_SAMPLE_COUNT: int = 6
    # How long load() waits for the manifest (or metadata) before giving up
    LOAD_TIMEOUT: float = 30.0

    # HTMLMediaElement.HAVE_FUTURE_DATA; a stall only closes at or above it
    STALL_RESUME_READY_STATE: int = 3

    # History bounds
    ERROR_HISTORY_LIMIT: int = 50
    QUALITY_HISTORY_LIMIT: int = 100
    SEGMENT_HISTORY_LIMIT: int = 100
    EVENT_HISTORY_LIMIT: int = 100

    # Remote sessions that receive no signals for this long are destroyed
    SESSION_IDLE_TIMEOUT: int = 300
    CLEANUP_INTERVAL: int = 30

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="",  # No prefix, read directly from .env
        extra="ignore"  # Ignore extra environment variables from container
    )


# Global settings instance
settings = Settings()
