import pytest
from pydantic import ValidationError

from config import PaytmConfig, Settings
from logger import configure_logging

from conftest import MERCHANT_KEY


def make_settings(**overrides):
    return Settings(paytm=PaytmConfig(mid="DECOR0001", merchant_key=MERCHANT_KEY), **overrides)


def test_log_level_is_normalised():
    assert make_settings().log_level == "INFO"
    assert make_settings(log_level="debug").log_level == "DEBUG"


def test_unknown_log_level_is_rejected():
    with pytest.raises(ValidationError):
        make_settings(log_level="verbose")


def test_from_env_rejects_bad_log_level(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    with pytest.raises(ValidationError):
        Settings.from_env()


def test_from_env_picks_production_urls(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("LOG_LEVEL", "warning")
    settings = Settings.from_env()
    assert settings.log_level == "WARNING"
    assert settings.paytm.transaction_url == "https://securegw.paytm.in/theia/processTransaction"


def test_configure_logging_accepts_every_level():
    for level in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        configure_logging(level)
    configure_logging("INFO")
