"""Unit tests for configuration management."""

import os
from collections.abc import Generator

import pytest
from pydantic import ValidationError

from invoice_ingest.shared.config import Settings, get_settings


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before and after test."""
    original_env = dict(os.environ)
    env_vars = [k for k in os.environ if k.startswith("APP_")]
    for var in env_vars:
        del os.environ[var]
    yield
    os.environ.clear()
    os.environ.update(original_env)


def test_settings_defaults(clean_env: None) -> None:
    """Test that settings have correct default values."""
    settings = Settings(_env_file=None)

    assert settings.environment == "development"
    assert settings.log_level == "INFO"
    assert settings.service_name == "invoice-ingest"
    assert settings.service_version == "0.1.0"
    assert settings.extraction_provider == "gemini"
    assert settings.gemini_model == "gemini-2.5-flash"
    assert settings.max_upload_bytes == 10 * 1024 * 1024


def test_accounting_defaults(clean_env: None) -> None:
    """Odoo payload defaults: USD currency, NET 30 DAYS terms, one-hour attachment TTL."""
    settings = Settings(_env_file=None)

    assert settings.odoo_webhook_url == ""
    assert settings.odoo_currency == "USD"
    assert settings.default_payment_terms == "NET 30 DAYS"
    assert settings.attachment_ttl_seconds == 3600
    assert settings.pending_queue_max == 1000
    assert settings.storage_prefix == "odoo/"


def test_settings_from_env_vars(clean_env: None) -> None:
    """Test that settings can be overridden via environment variables."""
    os.environ["APP_ENVIRONMENT"] = "production"
    os.environ["APP_LOG_LEVEL"] = "ERROR"
    os.environ["APP_ODOO_WEBHOOK_URL"] = "https://odoo.example.com/hook"
    os.environ["APP_EXTRACTION_PROVIDER"] = "openai"

    settings = Settings(_env_file=None)

    assert settings.environment == "production"
    assert settings.log_level == "ERROR"
    assert settings.odoo_webhook_url == "https://odoo.example.com/hook"
    assert settings.extraction_provider == "openai"


def test_settings_case_insensitive(clean_env: None) -> None:
    """Test that environment variables are case insensitive."""
    os.environ["app_log_level"] = "DEBUG"

    settings = Settings(_env_file=None)

    assert settings.log_level == "DEBUG"


def test_unknown_provider_rejected(clean_env: None) -> None:
    """Only registered provider names are accepted."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, extraction_provider="tesseract")


def test_get_settings_factory(clean_env: None) -> None:
    """Test that factory function returns Settings instance."""
    settings = get_settings()

    assert isinstance(settings, Settings)
