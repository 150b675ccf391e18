"""Shared configuration management for the invoice ingestion service.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="invoice-ingest",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Upload validation
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum accepted upload size in bytes",
    )

    # Extraction provider configuration
    extraction_provider: Literal["gemini", "openai"] = Field(
        default="gemini",
        description="Extraction provider: gemini (Generative Language API), openai (cloud API)",
    )
    extraction_timeout_seconds: float = Field(
        default=120.0,
        description="HTTP timeout for a single extraction call (LLMs can be slow)",
    )

    # Gemini configuration (for extraction_provider="gemini")
    gemini_api_key: str = Field(
        default="",
        description="Gemini API key (use env var APP_GEMINI_API_KEY)",
    )
    gemini_model: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model used for document extraction",
    )
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Generative Language API base URL",
    )

    # OpenAI configuration (for extraction_provider="openai")
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model used for document extraction",
    )

    # Storage configuration (S3-compatible object storage)
    storage_enabled: bool = Field(
        default=False,
        description="Store split invoice PDFs in S3-compatible storage",
    )
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var APP_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var APP_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="invoices",
        description="Bucket holding invoice attachments",
    )
    storage_secure: bool = Field(
        default=False,
        description="Use HTTPS for storage connections",
    )
    storage_prefix: str = Field(
        default="odoo/",
        description="Object key prefix for invoice attachments",
    )
    storage_public_base_url: str = Field(
        default="",
        description="Public base URL for attachments (falls back to endpoint/bucket URL)",
    )

    # In-process attachment cache (used when object storage is disabled)
    attachment_ttl_seconds: int = Field(
        default=3600,
        description="How long cached attachment PDFs stay retrievable",
    )
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Externally reachable base URL of this service (for cached attachment links)",
    )
    pending_queue_max: int = Field(
        default=1000,
        ge=1,
        description="Extracted invoices kept for polling; the oldest are dropped beyond this",
    )

    # Accounting webhook (Odoo)
    odoo_webhook_url: str = Field(
        default="",
        description="Odoo bill-creation webhook URL (use env var APP_ODOO_WEBHOOK_URL)",
    )
    odoo_api_key: str = Field(
        default="",
        description="Optional API key sent as X-API-Key",
    )
    odoo_currency: str = Field(
        default="USD",
        description="Currency code forced on outgoing invoices",
    )
    default_payment_terms: str = Field(
        default="NET 30 DAYS",
        description="Payment terms used when the invoice states none",
    )
    webhook_timeout_seconds: float = Field(
        default=60.0,
        description="HTTP timeout for the accounting webhook",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
