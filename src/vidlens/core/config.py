from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Backend
    api_base_url: str = "http://localhost:8000"
    api_token: str | None = None
    request_timeout_seconds: float = 30.0
    upload_timeout_seconds: float = 600.0

    # Polling cadences
    job_status_poll_seconds: float = 5.0
    job_logs_poll_seconds: float = 3.0
    stream_status_poll_seconds: float = 5.0
    stream_logs_poll_seconds: float = 10.0

    # Player
    player_library_module: str = "ivs_player"
    player_soft_timeout_seconds: float = 5.0
    player_retry_delay_seconds: float = 0.5

    # URL normalization
    default_region: str = "us-west-2"

    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
