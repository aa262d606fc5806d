import json
import logging
from decimal import Decimal

import pytest

from pension.config import Settings
from pension.logging_config import StructuredFormatter, configure_logging, reset_logging
from pension.service import PensionService


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("PENSION_MONTHLY_INTEREST_RATE", "PENSION_SCHEDULER_ENABLED", "PENSION_LOG_JSON"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert settings.monthly_interest_rate == Decimal("0.05")
        assert settings.eligibility_threshold == Decimal("100000")
        assert settings.benefit_rate == Decimal("0.1")
        assert settings.scheduler_enabled is True
        assert settings.log_json is False

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PENSION_MONTHLY_INTEREST_RATE", "0.02")
        monkeypatch.setenv("PENSION_ELIGIBILITY_THRESHOLD", "50000")
        monkeypatch.setenv("PENSION_SCHEDULER_ENABLED", "false")
        monkeypatch.setenv("PENSION_SCHEDULER_TICK_SECONDS", "5")
        monkeypatch.setenv("PENSION_LOG_JSON", "1")

        settings = Settings.from_env()

        assert settings.monthly_interest_rate == Decimal("0.02")
        assert settings.eligibility_threshold == Decimal("50000")
        assert settings.scheduler_enabled is False
        assert settings.scheduler_tick_seconds == 5
        assert settings.log_json is True

    def test_negative_rate_rejected(self, monkeypatch):
        monkeypatch.setenv("PENSION_MONTHLY_INTEREST_RATE", "-0.1")

        with pytest.raises(ValueError):
            Settings.from_env()

    def test_tick_interval_bounded_to_a_minute(self):
        """Test tick intervals above one minute are rejected."""
        with pytest.raises(ValueError):
            Settings(scheduler_tick_seconds=300)

        assert Settings(scheduler_tick_seconds=60).scheduler_tick_seconds == 60

    def test_service_uses_settings(self):
        service = PensionService(settings=Settings(
            monthly_interest_rate=Decimal("0.01"),
            eligibility_threshold=Decimal("10"),
            benefit_rate=Decimal("0.5"),
        ))

        assert service.interest.monthly_rate == Decimal("0.01")
        assert service.benefits.threshold == Decimal("10")
        assert service.benefits.rate == Decimal("0.5")


class TestLogging:
    def test_structured_formatter_serializes_extras(self):
        record = logging.LogRecord("pension.test", logging.INFO, __file__, 1, "accrued %s", ("interest",), None)
        record.amount = Decimal("12.50")

        payload = json.loads(StructuredFormatter().format(record))

        assert payload["message"] == "accrued interest"
        assert payload["level"] == "INFO"
        assert payload["amount"] == "12.50"

    def test_configure_logging_is_idempotent(self):
        reset_logging()
        handler = logging.NullHandler()
        try:
            root = configure_logging("DEBUG", json_format=True, handler=handler)
            configure_logging("INFO", handler=logging.NullHandler())

            assert root.handlers == [handler]
            assert root.level == logging.DEBUG
            assert isinstance(handler.formatter, StructuredFormatter)
        finally:
            reset_logging()
