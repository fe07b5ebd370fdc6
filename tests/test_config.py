"""Tests for settings and engine configuration."""

import pytest

from obligation_ledger.config import EngineConfig, Settings


class TestSettings:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://ledger@localhost/ledger")
        monkeypatch.setenv("DATABASE_ECHO", "TRUE")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings.from_env()

        assert settings.database_url == "postgresql://ledger@localhost/ledger"
        assert settings.database_echo is True
        assert settings.log_level == "DEBUG"

    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_URL", "DATABASE_ECHO", "LOG_LEVEL", "DEFAULT_PAYMENT_METHOD"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setattr("obligation_ledger.config.load_dotenv", lambda: False)

        settings = Settings.from_env()

        assert settings.database_url.startswith("sqlite")
        assert settings.database_echo is False
        assert settings.log_level == "INFO"
        assert settings.default_payment_method == "ach"


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.currency == "USD"
        assert config.sweep_kinds == ("rent",)
        assert config.aging_buckets == (30, 60, 90)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"currency": "DOLLARS"},
            {"sweep_kinds": ()},
            {"sweep_kinds": ("utility",)},
            {"interest_days_in_year": 364},
            {"aging_buckets": (60, 30)},
            {"aging_buckets": (0, 30)},
            {"aging_buckets": ()},
        ],
    )
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValueError):
            EngineConfig(**kwargs)

    def test_immutable(self):
        config = EngineConfig()
        with pytest.raises(AttributeError):
            config.currency = "EUR"
