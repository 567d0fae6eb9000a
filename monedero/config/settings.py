"""
Configuration Management for Monedero

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

import warnings
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    rates_sheet_name: str = Field(
        default="ExchangeRates",
        description="Name of the sheet holding the append-only rate log"
    )
    expenses_sheet_name: str = Field(
        default="Expenses",
        description="Name of the sheet for expenses"
    )
    budgets_sheet_name: str = Field(
        default="Budgets",
        description="Name of the sheet for budgets"
    )
    insights_sheet_name: str = Field(
        default="Insights",
        description="Name of the sheet caching AI insights"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=2048,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Model temperature"
    )


class RateSourceSettings(BaseSettings):
    """Upstream rate providers and rate cache tuning."""

    model_config = SettingsConfigDict(
        env_prefix="RATES_",
        extra="ignore"
    )

    # Upstream endpoints
    p2p_url: str = Field(
        default="https://p2p.binance.com/bapi/c2c/v2/friendly/c2c/adv/search",
        description="Binance P2P advert search endpoint"
    )
    official_url: str = Field(
        default="https://api.dolarvzla.com/public/exchange-rate",
        description="Primary official rate provider (needs an API key)"
    )
    official_fallback_url: str = Field(
        default="https://ve.dolarapi.com/v1/dolares/oficial",
        description="Public official rate endpoint, USD only"
    )
    crypto_url: str = Field(
        default="https://api.coingecko.com/api/v3/simple/price",
        description="CoinGecko simple price endpoint"
    )
    official_api_key: Optional[str] = Field(
        default=None,
        description="Bearer token for the primary official provider"
    )

    # P2P advert search
    p2p_asset: str = "USDT"
    p2p_fiat: str = "VES"
    p2p_trade_type: str = "SELL"
    p2p_top_n: int = Field(
        default=5,
        ge=1,
        le=20,
        description="How many top adverts to average"
    )

    # Staleness thresholds per upstream group (minutes)
    p2p_threshold_minutes: int = Field(default=30, ge=1)
    official_threshold_minutes: int = Field(default=1440, ge=1)
    crypto_threshold_minutes: int = Field(default=10, ge=1)

    lookback_hours: int = Field(
        default=24,
        ge=1,
        description="Window scanned for a recent rate before refetching"
    )
    volatility_lookback_days: int = Field(
        default=7,
        ge=1,
        description="Distance back in time for the rate volatility comparison"
    )
    eur_usd_ratio: Decimal = Field(
        default=Decimal("1.08"),
        gt=0,
        description="Approximate EUR/USD ratio used when EUR data is missing"
    )

    @property
    def has_official_api_key(self) -> bool:
        return bool(self.official_api_key)


class AdvisorSettings(BaseSettings):
    """Financial advisor (heuristics + AI insight) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ADVISOR_",
        extra="ignore"
    )

    insight_ttl_hours: int = Field(
        default=24,
        ge=1,
        description="How long a generated insight stays fresh"
    )
    friction_threshold: Decimal = Field(
        default=Decimal("0.10"),
        ge=0,
        le=1,
        description="Unbudgeted ratio above which friction is flagged"
    )
    top_categories_limit: int = Field(default=5, ge=1, le=20)
    default_locale: str = Field(
        default="es",
        description="Locale used when the caller does not pass one"
    )

    @field_validator('default_locale')
    @classmethod
    def validate_locale(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("es", "en"):
            raise ValueError(f"Unsupported locale: {v}")
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Logging
    debug_mode: bool = Field(
        default=False,
        description="Log at DEBUG level instead of INFO"
    )

    # Backfill
    backfill_max_concurrency: int = Field(
        default=1,
        ge=1,
        le=20,
        description="Expenses processed in parallel during backfill (1 = sequential)"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration.
    # Rate and advisor settings have defaults for everything and always load.

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def rates(self) -> RateSourceSettings:
        return RateSourceSettings()

    @property
    def advisor(self) -> AdvisorSettings:
        return AdvisorSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus a
    "<setting_name>_error" entry for each failure.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("google_sheets", "gemini", "rates", "advisor", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
