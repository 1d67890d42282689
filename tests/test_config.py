"""
Tests for environment-driven configuration.
"""

import pytest

from expense_ledger.config import (
    AppSettings,
    CurrencySettings,
    OllamaSettings,
    get_settings,
    validate_all_settings,
)


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestOllamaSettings:
    """Tests for LLM backend settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("OLLAMA_MODEL", raising=False)
        monkeypatch.delenv("OLLAMA_HOST", raising=False)
        settings = OllamaSettings()
        assert settings.host == "http://localhost:11434"
        assert settings.is_configured is False
        assert settings.temperature == 0.0

    def test_from_environment(self, monkeypatch):
        """Test env vars are read with the OLLAMA_ prefix."""
        monkeypatch.setenv("OLLAMA_HOST", "http://gpu-box:11434/")
        monkeypatch.setenv("OLLAMA_MODEL", "llama3.1:8b")
        settings = OllamaSettings()
        assert settings.host == "http://gpu-box:11434"
        assert settings.is_configured is True

    def test_blank_model_not_configured(self):
        assert OllamaSettings(model="   ").is_configured is False


class TestOtherSettings:
    """Tests for currency and app settings."""

    def test_base_currency_uppercased(self):
        assert CurrencySettings(default_base_currency="eur").default_base_currency == "EUR"

    def test_content_types_list(self):
        settings = AppSettings(supported_content_types="image/PNG, image/jpeg ,")
        assert settings.supported_content_types_list == ["image/png", "image/jpeg"]

    def test_upload_size_bytes(self):
        assert AppSettings(max_upload_size_mb=2).max_upload_size_bytes == 2 * 1024 * 1024


class TestValidateAllSettings:
    """Tests for the startup check."""

    def test_reports_unconfigured_model(self, monkeypatch):
        monkeypatch.delenv("OLLAMA_MODEL", raising=False)
        results = validate_all_settings()
        assert results["ollama"] is True
        assert results["ollama_configured"] is False
        assert results["storage"] is True

    def test_reports_invalid_section(self, monkeypatch):
        """Test a bad value is reported rather than raised."""
        monkeypatch.setenv("OLLAMA_MAX_RETRIES", "0")
        results = validate_all_settings()
        assert results["ollama"] is False
        assert "ollama_error" in results
