"""Configuration package."""

from monedero.config.settings import (
    AdvisorSettings,
    AppSettings,
    GeminiSettings,
    GoogleSheetsSettings,
    RateSourceSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AdvisorSettings",
    "AppSettings",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "RateSourceSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
