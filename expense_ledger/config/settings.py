"""
Configuration Management for Expense Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OllamaSettings(BaseSettings):
    """Local LLM (Ollama) configuration used for receipt extraction."""

    model_config = SettingsConfigDict(
        env_prefix="OLLAMA_",
        extra="ignore"
    )

    host: str = Field(
        default="http://localhost:11434",
        description="Base URL of the Ollama HTTP API"
    )
    model: str = Field(
        default="",
        description="Installed model to use (e.g. llama3.1:8b). Empty means not configured."
    )
    request_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Timeout for a single generate call"
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for transient transport failures"
    )
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Sampling temperature (0 keeps extraction reproducible)"
    )

    @field_validator('host')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.model.strip())


class OcrSettings(BaseSettings):
    """Tesseract OCR configuration."""

    model_config = SettingsConfigDict(
        env_prefix="OCR_",
        extra="ignore"
    )

    language: str = Field(
        default="eng",
        description="Tesseract language pack(s), e.g. 'eng' or 'eng+ind'"
    )
    tesseract_cmd: Optional[str] = Field(
        default=None,
        description="Path to the tesseract binary if it is not on PATH"
    )


class CurrencySettings(BaseSettings):
    """Exchange rate source and cache configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CURRENCY_",
        extra="ignore"
    )

    rates_url: str = Field(
        default="https://api.frankfurter.app/latest",
        description="Frankfurter-compatible endpoint returning latest rates"
    )
    cache_ttl_seconds: int = Field(
        default=6 * 60 * 60,
        ge=0,
        description="How long a fetched rate table stays fresh"
    )
    fetch_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound for fetching a rate table"
    )
    default_base_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Base currency used until the user picks one"
    )

    @field_validator('default_base_currency')
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.strip().upper()


class StorageSettings(BaseSettings):
    """Database and blob storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        extra="ignore"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./expenses.db",
        description="SQLAlchemy async database URL"
    )
    blob_dir: str = Field(
        default="./data/blobs",
        description="Directory where receipt images are stored"
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

    # File upload limits
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum upload file size in MB"
    )
    supported_content_types: str = Field(
        default="image/jpeg,image/png,image/webp,image/heic",
        description="Comma-separated list of accepted image content types"
    )

    @property
    def supported_content_types_list(self) -> list[str]:
        """Get supported content types as a list."""
        return [t.strip().lower() for t in self.supported_content_types.split(",") if t.strip()]

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def ollama(self) -> OllamaSettings:
        return OllamaSettings()

    @property
    def ocr(self) -> OcrSettings:
        return OcrSettings()

    @property
    def currency(self) -> CurrencySettings:
        return CurrencySettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

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


def validate_all_settings() -> dict[str, object]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus "<name>_error" entries.
    Useful for startup checks. An empty Ollama model is reported as
    "ollama_configured": False rather than as an error, since capture
    still works without it (every expense goes to review).
    """
    results: dict[str, object] = {}

    settings = get_settings()

    sections = {
        "ollama": lambda: settings.ollama,
        "ocr": lambda: settings.ocr,
        "currency": lambda: settings.currency,
        "storage": lambda: settings.storage,
        "app": lambda: settings.app,
    }

    for name, load in sections.items():
        try:
            section = load()
            results[name] = True
            if name == "ollama":
                results["ollama_configured"] = section.is_configured
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
