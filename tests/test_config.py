"""Tests for application settings."""

from decimal import Decimal

import pydantic
import pytest

from forwarder.config import Settings


class TestSettings:
    """Tests for settings loading and helpers."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.slippage_tolerance == Decimal("0.05")
        assert settings.ignore_threshold == Decimal("0.02")
        assert settings.payment_window_minutes == 30
        assert settings.wallet_dir == "./wal"
        assert settings.min_forward_lamports == 10_000_000

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SLIPPAGE_TOLERANCE", "0.1")
        monkeypatch.setenv("PAYMENT_WINDOW_MINUTES", "5")

        settings = Settings(_env_file=None)

        assert settings.slippage_tolerance == Decimal("0.1")
        assert settings.payment_window_minutes == 5

    def test_frozen(self, settings):
        with pytest.raises(pydantic.ValidationError):
            settings.slippage_tolerance = Decimal("0.5")

    def test_safe_dict_redacts_secrets(self):
        settings = Settings(
            _env_file=None,
            database_url="postgresql+asyncpg://user:hunter2@db/forwarder",
            master_key="key",
            webhook_secret="secret",
        )

        safe = settings.get_safe_dict()

        assert "hunter2" not in str(safe)
        assert safe["database_url"] == "postgresql+asyncpg://user:***@db/forwarder"
        assert safe["keys"]["encrypted"] is True
        assert safe["webhook_secret"] == "***"

    def test_is_production(self):
        assert Settings(_env_file=None, environment="Production").is_production
        assert not Settings(_env_file=None, environment="test").is_production
