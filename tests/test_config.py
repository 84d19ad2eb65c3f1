from __future__ import annotations

import logging

import pytest

from btc_prices.config import get_settings, load_settings, reset_settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "BTC_PRICE_CACHE_TTL_SECONDS",
        "COINGECKO_API_KEY",
        "COINGECKO_BASE_URL",
        "COINGECKO_SKIPPABLE_STATUSES",
        "ALLOWED_ORIGINS",
        "LOG_LEVEL",
        "LOG_DIR",
        "LOG_MAX_BYTES",
        "LOG_BACKUP_COUNT",
    ):
        monkeypatch.delenv(key, raising=False)

    settings = load_settings()

    assert settings.cache_ttl_seconds == 900
    assert settings.coingecko_base_url == "https://api.coingecko.com/api/v3"
    assert settings.coingecko_api_key == ""
    assert settings.coingecko_skippable_statuses == frozenset({401})
    assert settings.historical_window_days == 14
    assert settings.allowed_origins == []
    assert settings.log_level == logging.INFO
    assert settings.log_max_bytes == 10 * 1024 * 1024
    assert settings.log_backup_count == 5
    assert settings.log_dir.endswith("logs")


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BTC_PRICE_CACHE_TTL_SECONDS", "60")
    monkeypatch.setenv("COINGECKO_BASE_URL", "https://pro-api.coingecko.com/api/v3/")
    monkeypatch.setenv("COINGECKO_SKIPPABLE_STATUSES", "401, 429")
    monkeypatch.setenv("ALLOWED_ORIGINS", "http://localhost:3000, https://calc.example")
    monkeypatch.setenv("PRICE_VERBOSE_LOGS", "true")

    settings = load_settings()

    assert settings.cache_ttl_seconds == 60
    assert settings.coingecko_base_url == "https://pro-api.coingecko.com/api/v3"
    assert settings.coingecko_skippable_statuses == frozenset({401, 429})
    assert settings.allowed_origins == ["http://localhost:3000", "https://calc.example"]
    assert settings.verbose_logs is True


@pytest.mark.parametrize(
    "key,value",
    [
        ("BTC_PRICE_CACHE_TTL_SECONDS", "fifteen"),
        ("BTC_PRICE_CACHE_TTL_SECONDS", "-5"),
        ("HISTORICAL_WINDOW_DAYS", "0"),
        ("UPSTREAM_TIMEOUT_SECONDS", "0"),
        ("UPSTREAM_TIMEOUT_SECONDS", "nan"),
        ("LOG_LEVEL", "LOUD"),
        ("LOG_MAX_BYTES", "0"),
        ("COINGECKO_SKIPPABLE_STATUSES", "401,unauthorized"),
    ],
)
def test_invalid_values_fail_fast(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    monkeypatch.setenv(key, value)

    with pytest.raises(ValueError, match=key):
        load_settings()


def test_get_settings_is_cached_until_reset(monkeypatch: pytest.MonkeyPatch) -> None:
    reset_settings()
    monkeypatch.setenv("BTC_PRICE_CACHE_TTL_SECONDS", "120")
    first = get_settings()
    monkeypatch.setenv("BTC_PRICE_CACHE_TTL_SECONDS", "240")
    assert get_settings() is first

    reset_settings()
    assert get_settings().cache_ttl_seconds == 240
    reset_settings()


def test_empty_skippable_statuses_disables_fallthrough(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COINGECKO_SKIPPABLE_STATUSES", "")

    assert load_settings().coingecko_skippable_statuses == frozenset()


def test_log_settings_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_MAX_BYTES", "2048")
    monkeypatch.setenv("LOG_BACKUP_COUNT", "2")

    settings = load_settings()

    assert settings.log_level == logging.DEBUG
    assert settings.log_dir == str(tmp_path)
    assert settings.log_max_bytes == 2048
    assert settings.log_backup_count == 2
