"""Tests for datetime helpers, configuration defaults and log masking."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from app.config import LLMSettings, ProviderSettings
from app.logging import mask_secrets
from app.utils.datetime import add_months, ensure_utc, same_month


def test_add_months_clamps_day():
    start = datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc)

    assert add_months(start, 1) == datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc)
    assert add_months(start, 12) == datetime(2025, 1, 31, 12, 0, tzinfo=timezone.utc)
    assert add_months(datetime(2024, 11, 15, tzinfo=timezone.utc), 3).month == 2


def test_ensure_utc_handles_naive_and_offset_values():
    naive = datetime(2024, 5, 1, 8, 0)
    shifted = datetime(2024, 5, 1, 8, 0, tzinfo=timezone(timedelta(hours=8)))

    assert ensure_utc(None) is None
    assert ensure_utc(naive).tzinfo is timezone.utc
    assert ensure_utc(shifted).hour == 0


def test_same_month_compares_year_and_month():
    base = datetime(2024, 3, 10, tzinfo=timezone.utc)

    assert same_month(base, datetime(2024, 3, 31, 23, 59))
    assert not same_month(base, datetime(2025, 3, 10, tzinfo=timezone.utc))
    assert not same_month(base, datetime(2024, 4, 1, tzinfo=timezone.utc))


def test_provider_settings_normalize_values():
    settings = ProviderSettings(api_key="   ", base_url="https://api.test/v1/")

    assert settings.api_key is None
    assert settings.api_key_value() == ""
    assert settings.base_url == "https://api.test/v1"


def test_llm_settings_lookup():
    settings = LLMSettings()

    assert settings.provider("openai").base_url == "https://api.openai.com/v1"
    assert settings.provider("custom") is None


def test_mask_secrets_hides_credentials():
    event = mask_secrets(None, "info", {"event": "x", "api_key": "sk-123", "Authorization": "Bearer t", "model": "m"})

    assert event == {"event": "x", "api_key": "***", "Authorization": "***", "model": "m"}
