"""Tests for application settings."""

from app.config import Settings


def test_defaults() -> None:
    """Test queue defaults without any environment."""
    settings = Settings(_env_file=None)

    assert settings.sync_interval_seconds == 30.0
    assert settings.ticket_allocation_retries == 3
    assert settings.reorder_failure_warning_threshold == 3
    assert settings.store_backend == "http"
    assert not settings.uses_memory_store


def test_cors_origins_split() -> None:
    """Test comma-separated origins are split and trimmed."""
    settings = Settings(_env_file=None, CORS_ORIGINS="http://desk-1:3000, http://desk-2:3000,")

    assert settings.cors_origins == ["http://desk-1:3000", "http://desk-2:3000"]


def test_memory_backend_and_environment() -> None:
    """Test backend and environment flags."""
    settings = Settings(_env_file=None, STORE_BACKEND="Memory", ENVIRONMENT="Production")

    assert settings.uses_memory_store
    assert settings.is_production
