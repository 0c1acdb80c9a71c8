"""
Configuration module for the time-series query gateway.
All settings are loaded from environment variables (or a .env file) once at startup.
"""
from typing import Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Runtime
    host: str = "0.0.0.0"
    port: int = 8080
    request_timeout_seconds: float = 10.0
    shutdown_grace_seconds: float = 10.0

    # Interceptors
    cache_size: int = 1000
    rate_limit: float = 5.0
    rate_limit_burst: int = 10

    # Database
    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "timeseries"
    db_user: str = "postgres"
    db_password: str = ""
    db_sslmode: str = "disable"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout_seconds: int = 30
    db_create_hypertable: bool = True

    # Ingestion
    upstream_url: str = "https://api.example.com/timeseries"
    upstream_timeout_seconds: float = 30.0
    ingestion_interval_seconds: float = 300.0
    ingestion_fetch_timeout_seconds: float = 120.0

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def sqlalchemy_url(self) -> str:
        """Connection URL, either given verbatim or assembled from the db_* fields."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+psycopg2://{quote_plus(self.db_user)}:{quote_plus(self.db_password)}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}?sslmode={self.db_sslmode}"
        )


# Global settings instance
settings = Settings()
