"""Tests for environment-driven settings."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from transfer_recon.config import Settings


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.auto_match_max_days == 7
    assert settings.auto_match_tolerance == Decimal("0.05")
    assert settings.manual_match_max_days == 8
    assert settings.manual_match_tolerance == Decimal("0.12")
    assert settings.base_currency == "USD"


def test_env_override(monkeypatch):
    monkeypatch.setenv("AUTO_MATCH_MAX_DAYS", "3")
    monkeypatch.setenv("BASE_CURRENCY", " eur ")
    monkeypatch.setenv("ENV", "production")

    settings = Settings(_env_file=None)

    assert settings.auto_match_max_days == 3
    assert settings.base_currency == "EUR"
    assert settings.environment == "production"


@pytest.mark.parametrize("field", ["auto_match_tolerance", "manual_match_tolerance", "preview_match_tolerance"])
def test_tolerance_out_of_range_rejected(field):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: Decimal("1.5")})


def test_negative_day_window_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, auto_match_max_days=-1)
