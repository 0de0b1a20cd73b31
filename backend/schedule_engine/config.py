"""
Application configuration using Pydantic settings.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Scheduling
    daily_capacity_hours: float = 8.0
    max_cascade_iterations: int = 10000
    default_task_span_days: int = 7
    default_include_weekends: bool = False

    # Logging
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    enable_file_logging: bool = False
    log_max_bytes: int = 10485760  # 10MB
    log_backup_count: int = 5

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
