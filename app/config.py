"""Application configuration."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="FrontDesk Queue", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Persistence collaborator
    store_backend: str = Field(
        default="http",
        alias="STORE_BACKEND",
        description="'http' for the clinic API, 'memory' for a local in-process store",
    )
    store_api_url: str = Field(default="http://localhost:5000/api", alias="STORE_API_URL")
    store_api_token: str | None = Field(default=None, alias="STORE_API_TOKEN")
    store_timeout_seconds: float = Field(default=10.0, alias="STORE_TIMEOUT_SECONDS")

    # Queue
    sync_interval_seconds: float = Field(default=30.0, alias="SYNC_INTERVAL_SECONDS")
    clinic_timezone: str = Field(default="UTC", alias="CLINIC_TIMEZONE")
    ticket_allocation_retries: int = Field(default=3, alias="TICKET_ALLOCATION_RETRIES")
    reorder_failure_warning_threshold: int = Field(
        default=3,
        alias="REORDER_FAILURE_WARNING_THRESHOLD",
        description="Failed reorder attempts before a provisional order is reported",
    )

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def uses_memory_store(self) -> bool:
        """Check if the in-process store is configured."""
        return self.store_backend.lower() == "memory"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
