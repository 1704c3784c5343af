"""Application configuration using Pydantic Settings.

Environment Variable Strategy:
- Every field has a development default so tests and local runs need no .env
- Matching tolerances can be tuned per deployment without code changes
- Invalid tolerances fail at load time, before any matching pass runs
"""

from decimal import Decimal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    database_url: str = "sqlite+aiosqlite:///./transfers.db"

    # App settings
    environment: str = Field(
        default="development", validation_alias=AliasChoices("ENVIRONMENT", "ENV")
    )
    debug: bool = False
    base_currency: str = "USD"

    # Automatic matching: same-currency legs must be equal, cross-currency legs
    # may differ by up to auto_match_tolerance.
    auto_match_max_days: int = Field(default=7, ge=0)
    auto_match_tolerance: Decimal = Decimal("0.05")
    auto_match_min_confidence: float = Field(default=0.4, ge=0, le=1)
    preview_match_tolerance: Decimal = Decimal("0.01")

    # Manual matching suggestions
    manual_match_max_days: int = Field(default=8, ge=0)
    manual_match_tolerance: Decimal = Decimal("0.12")
    manual_match_confidence_cap: float = Field(default=0.85, ge=0, le=1)

    # Exchange rate collaborator
    fx_api_base_url: str = "https://api.exchangerate-api.com/v4/latest"
    fx_cache_ttl_seconds: int = Field(default=3600, ge=0)
    fx_stale_ttl_seconds: int = Field(default=86_400, ge=0)
    fx_request_timeout_seconds: float = 5.0

    @field_validator(
        "auto_match_tolerance",
        "preview_match_tolerance",
        "manual_match_tolerance",
    )
    @classmethod
    def _fraction_in_range(cls, value: Decimal) -> Decimal:
        if value < 0 or value > 1:
            raise ValueError("tolerance must be a fraction between 0 and 1")
        return value

    @field_validator("base_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return value.strip().upper()


settings = Settings()
