"""Shared configuration management for the back-office engine.

Based on Pydantic Settings v2:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'BACKOFFICE_'.
    Example: BACKOFFICE_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="BACKOFFICE_",
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
        default="contractor-backoffice",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Document defaults
    default_tax_rate: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Tax rate in percent applied to new documents (6 = 6%)",
    )
    default_payment_terms: str = Field(
        default="Net 30",
        description="Payment terms printed on new invoices",
    )
    invoice_due_days: int = Field(
        default=30,
        ge=0,
        description="Days from conversion until an invoice is due when no date is given",
    )
    estimate_valid_days: int = Field(
        default=30,
        ge=1,
        description="Days a new or duplicated estimate stays valid",
    )

    # Numbering
    number_min_digits: int = Field(
        default=4,
        ge=1,
        description="Minimum zero-padded width of document number suffixes",
    )
    number_allocation_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts to allocate a document number before giving up on conflicts",
    )
    write_conflict_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts to clear a conversion link when the source changes concurrently",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
