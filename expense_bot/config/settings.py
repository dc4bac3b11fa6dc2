"""
Configuration Management for Expense Bot

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every tunable of the bot core (rate windows, recovery backoff, conversation
timeouts, collaborator timeouts) lives in one place so operators can see
what the service depends on and so the values are validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TelegramSettings(BaseSettings):
    """Telegram transport configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TELEGRAM_",
        extra="ignore"
    )

    users_file: str = Field(
        default="users.json",
        description="JSON file listing the users whose bots are loaded at startup"
    )
    poll_interval: float = Field(
        default=1.0,
        ge=0.0,
        le=30.0,
        description="Seconds between long-polling requests"
    )
    poll_timeout: int = Field(
        default=10,
        ge=1,
        le=60,
        description="Long-polling timeout in seconds"
    )
    read_timeout: float = Field(
        default=20.0,
        ge=1.0,
        description="HTTP read timeout for Bot API requests"
    )
    connect_timeout: float = Field(
        default=10.0,
        ge=1.0,
        description="HTTP connect timeout for Bot API requests"
    )


class GeminiSettings(BaseSettings):
    """Gemini vision model configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: SecretStr = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use for receipt extraction"
    )
    max_tokens: int = Field(
        default=2048,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )


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
    projects_sheet_name: str = Field(
        default="Projects",
        description="Name of the sheet for projects"
    )
    transactions_sheet_name: str = Field(
        default="Transactions",
        description="Name of the sheet for expense and income transactions"
    )
    categories_sheet_name: str = Field(
        default="Categories",
        description="Name of the sheet for user categories"
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
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class RateLimitSettings(BaseSettings):
    """Per-user sliding window limits."""

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        extra="ignore"
    )

    message_limit: int = Field(
        default=20,
        ge=0,
        description="Text messages allowed per window"
    )
    message_window_ms: int = Field(
        default=60_000,
        gt=0,
        description="Text message window length in milliseconds"
    )
    photo_limit: int = Field(
        default=5,
        ge=0,
        description="Receipt photos allowed per window"
    )
    photo_window_ms: int = Field(
        default=60_000,
        gt=0,
        description="Photo window length in milliseconds"
    )
    photo_min_interval_ms: int = Field(
        default=10_000,
        gt=0,
        description="Minimum spacing between two accepted photos"
    )
    prune_threshold: int = Field(
        default=1000,
        ge=1,
        description="Table size above which fully expired keys are pruned inline"
    )


class RecoverySettings(BaseSettings):
    """Transport restart policy."""

    model_config = SettingsConfigDict(
        env_prefix="RECOVERY_",
        extra="ignore"
    )

    base_delay_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="Delay before the first restart attempt"
    )
    max_delay_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Upper bound for the restart backoff"
    )
    max_failures: int = Field(
        default=5,
        ge=1,
        description="Consecutive failed restarts before a session is marked inactive"
    )
    failure_window_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Rolling window in which failed restarts are counted"
    )


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

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|sheets)$",
        description="Finance store backend: 'memory' or 'sheets'"
    )

    # Conversations
    cancel_token: str = Field(
        default="/cancel",
        min_length=1,
        description="In-band token that abandons any guided dialog"
    )
    conversation_timeout_minutes: int = Field(
        default=60,
        ge=1,
        description="Idle minutes after which a guided dialog expires"
    )

    # Collaborators and lifecycle
    collaborator_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Upper bound for any single extraction or storage call"
    )
    shutdown_grace_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="How long shutdown waits for in-flight events"
    )
    error_log_dedup_seconds: int = Field(
        default=60,
        ge=0,
        description="Identical errors from one user inside this window are logged once"
    )
    default_currency: str = Field(
        default="$",
        min_length=1,
        max_length=20,
        description="Currency shown for general (project-less) transactions"
    )

    @property
    def conversation_timeout_seconds(self) -> float:
        """Get the conversation idle timeout in seconds."""
        return self.conversation_timeout_minutes * 60.0


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def telegram(self) -> TelegramSettings:
        return TelegramSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def rate_limit(self) -> RateLimitSettings:
        return RateLimitSettings()

    @property
    def recovery(self) -> RecoverySettings:
        return RecoverySettings()

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


def validate_all_settings(names: Optional[list[str]] = None) -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus a
    "<name>_error" entry holding the message for each failure.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()
    names = names or ["telegram", "gemini", "google_sheets", "rate_limit", "recovery", "app"]

    for name in names:
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
