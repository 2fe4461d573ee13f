from __future__ import annotations

import pytest

from app.core.config import Settings, load_settings

_ENV_VARS = (
    "APP_ENV",
    "LOG_LEVEL",
    "LOG_JSON",
    "PORT",
    "DATABASE_URL",
    "REDIS_URL",
    "STORAGE_ROOT",
    "PAYMENT_GATEWAY_SECRET",
    "BATCH_GRACE_DAYS",
    "EXPIRING_SOON_DAYS",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults_run_in_memory(clean_env: pytest.MonkeyPatch) -> None:
    settings = load_settings()
    assert (settings.app_env, settings.log_level, settings.port) == ("dev", "info", 8000)
    assert settings.log_json is False
    assert settings.database_url is None and settings.redis_url is None
    assert settings.storage_root is None
    assert settings.payment_gateway_secret == ""
    assert (settings.batch_grace_days, settings.expiring_soon_days) == (30, 30)


def test_values_are_trimmed_and_lowercased(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("APP_ENV", "  PROD ")
    clean_env.setenv("LOG_LEVEL", "Warning")
    clean_env.setenv("LOG_JSON", "1")
    clean_env.setenv("STORAGE_ROOT", " /srv/students ")
    clean_env.setenv("PAYMENT_GATEWAY_SECRET", "whsec")
    settings = load_settings()
    assert settings.is_prod and not settings.is_dev
    assert settings.log_level == "warning"
    assert settings.log_json is True
    assert settings.storage_root == "/srv/students"
    assert settings.payment_gateway_secret == "whsec"


@pytest.mark.parametrize(
    ("name", "raw", "message"),
    [
        ("APP_ENV", "staging", "APP_ENV must be"),
        ("APP_ENV", "", "APP_ENV must be"),
        ("LOG_LEVEL", "verbose", "LOG_LEVEL must be"),
        ("LOG_JSON", "yes", "LOG_JSON must be"),
        ("PORT", "http", "PORT must be an integer"),
        ("BATCH_GRACE_DAYS", "soon", "BATCH_GRACE_DAYS must be an integer"),
        ("BATCH_GRACE_DAYS", "-1", "BATCH_GRACE_DAYS must be >= 0"),
        ("EXPIRING_SOON_DAYS", "0", "EXPIRING_SOON_DAYS must be >= 1"),
    ],
)
def test_bad_values_are_rejected(
    clean_env: pytest.MonkeyPatch, name: str, raw: str, message: str
) -> None:
    clean_env.setenv(name, raw)
    with pytest.raises(ValueError, match=message):
        load_settings()


def test_enrollment_windows_from_env(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("BATCH_GRACE_DAYS", " 0 ")
    clean_env.setenv("EXPIRING_SOON_DAYS", "14")
    settings = load_settings()
    assert settings.batch_grace_days == 0
    assert settings.expiring_soon_days == 14


def test_blank_urls_mean_unset(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("DATABASE_URL", "   ")
    clean_env.setenv("REDIS_URL", "")
    settings = load_settings()
    assert settings.database_url is None
    assert settings.redis_url is None


def test_settings_are_frozen() -> None:
    settings = Settings(  # type: ignore[arg-type]
        app_env="test",
        log_level="info",
        log_json=False,
        port=8000,
        database_url=None,
        redis_url=None,
    )
    assert settings.is_test
    with pytest.raises(AttributeError):
        settings.batch_grace_days = 0  # type: ignore[misc]
