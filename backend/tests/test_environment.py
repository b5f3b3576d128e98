"""
Test Suite: Settings Loading
============================

Tests:
- Environment variables win over defaults
- Production refuses to start without its secrets
- Unknown ENVIRONMENT values fall back to development
"""

import pytest

from utils.environment import load_settings

ENV_VARS = ["ENVIRONMENT", "HOTMART_SECRET", "ADMIN_API_KEY", "CORS_ORIGINS", "MONGO_URL", "DB_NAME"]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # A .env that does not exist, so the developer's backend/.env is never read
    return tmp_path / "missing.env"


class TestLoadSettings:

    def test_reads_environment(self, monkeypatch, clean_env):
        monkeypatch.setenv("HOTMART_SECRET", "hot")
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")

        settings = load_settings(clean_env)

        assert settings.environment == "development"
        assert settings.hotmart_secret == "hot"
        assert settings.cors_origins == ["https://a.example", "https://b.example"]

    def test_invalid_environment_defaults_to_development(self, monkeypatch, clean_env):
        monkeypatch.setenv("ENVIRONMENT", "staging")
        assert load_settings(clean_env).environment == "development"

    def test_development_tolerates_missing_secrets(self, clean_env):
        settings = load_settings(clean_env)

        assert settings.hotmart_secret is None
        assert settings.describe()["HOTMART_SECRET"] == "missing"

    def test_production_requires_secrets(self, monkeypatch, clean_env):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("HOTMART_SECRET", "hot")

        with pytest.raises(ValueError) as exc_info:
            load_settings(clean_env)

        assert "ADMIN_API_KEY" in str(exc_info.value)
        assert "HOTMART_SECRET" not in str(exc_info.value)

    def test_production_with_secrets(self, monkeypatch, clean_env):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("HOTMART_SECRET", "hot")
        monkeypatch.setenv("ADMIN_API_KEY", "admin")

        settings = load_settings(clean_env)

        assert settings.is_production()
