"""Pydantic Settings — loads configuration from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "extra": "ignore"}

    api_key: str

    redis_url: str = "redis://localhost:6379"
    result_ttl_seconds: int = 3600
    channel_retention_seconds: float = 300.0
    log_level: str = "INFO"

    # Render engine
    browser_headless: bool = True
    browser_channel: str = ""
    browser_max_sessions: int = 1

    # Capture executor
    navigation_timeout_seconds: float = 30.0
    selector_timeout_seconds: float = 10.0
    interaction_timeout_seconds: float = 5.0
    interaction_settle_ms: int = 100
    section_settle_ms: int = 500

    # Scheduler
    scheduler_enabled: bool = True
    scheduler_max_concurrent: int = 5
    scheduler_retry_attempts: int = 3
    scheduler_retry_delay_ms: int = 5000
    scheduler_retry_backoff: float = 1.0
    scheduler_retry_max_delay_ms: int = 300_000

    # Notifications
    allowed_webhook_hosts: str = ""
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from: str = ""
    smtp_start_tls: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
