"""Configuration package."""

from expense_ledger.config.settings import (
    AppSettings,
    CurrencySettings,
    OcrSettings,
    OllamaSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "CurrencySettings",
    "OcrSettings",
    "OllamaSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
