"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (worker heartbeat, readiness, optional lock backend)
    redis_url: str = "redis://localhost:6379/0"

    # Fernet key(s) for connection credentials; "new,old" while rotating
    encryption_key: str = ""

    # Shared secrets
    cron_secret: str = ""  # Bearer token for POST /jobs/ingest
    admin_api_token: str = ""  # Bearer token for replay / lookup / resync

    # Sentry
    sentry_dsn: str = ""

    # Upstream write policy (connection-level values override these)
    write_cap_per_minute: int = 50
    max_retry_attempts: int = 5
    retry_backoff_ms: int = 1000
    max_retry_backoff_ms: int = 60000
    upstream_timeout_seconds: float = 30.0
    rate_limit_window_seconds: float = 60.0
    rate_limit_backend: str = "redis"  # redis, memory

    # Worker
    worker_batch_size: int = 25
    worker_concurrency: int = 10
    worker_max_duration_seconds: int = 300
    lock_timeout_ms: int = 300000
    lock_backend: str = "database"  # database, redis
    stale_processing_seconds: int = 900
    ingest_worker_enabled: bool = False
    ingest_poll_interval_seconds: int = 60

    # Webhook ingress
    webhook_max_age_seconds: int = 300
    webhook_max_future_skew_seconds: int = 30

    # External APIs
    webflow_api_base: str = "https://api.webflow.com/v2"
    smartsuite_api_base: str = "https://app.smartsuite.com/api/v1"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
