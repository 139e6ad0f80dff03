"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Habit Bingo Backend"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "sqlite:///./habitbingo.db"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    oracle_timeout_seconds: float = 60.0
    oracle_max_output_tokens: int = 2000
    oracle_network_retries: int = 1
    pipeline_correction_retries: int = 1
    patch_followup_limit: int = 3
    board_size_default: int = 3
    board_goal_cell_cap: int = 4
    shuffle_history_limit: int = 3
    similarity_threshold: float = 0.55
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "habitbingo"
    scheduler_enabled: bool = False
    scheduler_timezone: str = "UTC"
    daily_refresh_hour: int = 5
    daily_refresh_minute: int = 0
    events_enabled: bool = True
    events_provider: str = "noop"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
