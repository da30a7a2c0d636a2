"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # MongoDB
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "jobqueue"
    mongodb_jobs_collection: str = "jobs"
    mongodb_server_selection_timeout_ms: int = 5000

    # Queue Configuration
    queue_name: str = "default"
    default_lease_duration_seconds: int = 30
    default_max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 300.0

    # Reaper Configuration
    reaper_interval_seconds: int = 10
    purge_retention_seconds: int | None = None

    # Observability
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "jobqueue"
    prometheus_port: int = 9090
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
