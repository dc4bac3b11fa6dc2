"""Configuration package."""

from expense_bot.config.settings import (
    AppSettings,
    GeminiSettings,
    GoogleSheetsSettings,
    RateLimitSettings,
    RecoverySettings,
    Settings,
    TelegramSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GeminiSettings",
    "GoogleSheetsSettings",
    "RateLimitSettings",
    "RecoverySettings",
    "Settings",
    "TelegramSettings",
    "get_settings",
    "validate_all_settings",
]
