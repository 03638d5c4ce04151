"""Configuration package."""

from qa_engine.config.settings import (
    AppSettings,
    BudgetPeriod,
    BudgetSettings,
    CacheSettings,
    GeminiSettings,
    GoogleSheetsSettings,
    ResilienceSettings,
    SearchSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "BudgetPeriod",
    "BudgetSettings",
    "CacheSettings",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "ResilienceSettings",
    "SearchSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
