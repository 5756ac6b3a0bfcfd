"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Liftor Plan Engine"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://liftor@localhost:5432/liftor"
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "liftor-plan-engine"

    scheduler_enabled: bool = False
    scheduler_timezone: str = "UTC"
    queue_poll_seconds: int = 15
    stuck_sweep_seconds: int = 60
    worker_batch_size: int = 1
    jobs_run_on_startup: bool = False

    job_lease_seconds: int = 180
    job_heartbeat_seconds: int = 30
    job_stuck_after_seconds: int = 300
    job_max_retries: int = 3
    job_retention_days: int = 7
    max_redos_per_day: int = 2
    verification_enabled: bool = True
    verification_provider: str | None = None

    deepseek_api_key: str | None = None
    deepseek_base_url: str = "https://api.deepseek.com/v1"
    deepseek_model: str = "deepseek-chat"
    deepseek_timeout_seconds: float = 600.0
    gemini_api_key: str | None = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    gemini_model: str = "gemini-1.5-flash"
    gemini_timeout_seconds: float = 60.0
    toolkit_url: str | None = None
    toolkit_timeout_seconds: float = 45.0
    completion_temperature: float = 0.6
    completion_max_tokens: int = 8192

    trend_min_history: int = 4
    trend_checkin_window: int = 7
    estimate_history_limit: int = 20

    notifications_enabled: bool = False
    notifications_provider: str = "noop"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
