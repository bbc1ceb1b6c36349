import pytest

from src.infrastructure.config import AppSettings, ChillPayConfig


def test_gateway_config_from_env(monkeypatch):
    monkeypatch.setenv("CHILLPAY_MERCHANT_CODE", " M030000 ")
    monkeypatch.setenv("CHILLPAY_API_KEY", "key")
    monkeypatch.setenv("CHILLPAY_MD5_SECRET", "secret\n")
    monkeypatch.setenv("CHILLPAY_API_ENDPOINT", "https://sandbox.chillpay.test/api/v2/Payment/")
    monkeypatch.setenv("CHILLPAY_TIMEOUT_SECONDS", "5")

    config = ChillPayConfig.from_env()

    assert config.merchant_code == "M030000"
    assert config.md5_secret == "secret"
    assert config.timeout_seconds == 5.0
    assert config.currency == "764"
    assert config.is_complete()


def test_gateway_config_incomplete_without_secret(monkeypatch):
    monkeypatch.setenv("CHILLPAY_MERCHANT_CODE", "M030000")
    monkeypatch.setenv("CHILLPAY_API_KEY", "key")
    monkeypatch.setenv("CHILLPAY_MD5_SECRET", "   ")
    monkeypatch.setenv("CHILLPAY_API_ENDPOINT", "https://sandbox.chillpay.test/")

    config = ChillPayConfig.from_env()

    assert not config.is_complete()


def test_app_settings_defaults(monkeypatch):
    monkeypatch.delenv("REDIRECT_STATUS_MODE", raising=False)
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://tickets.example.test/")

    settings = AppSettings.from_env()

    assert settings.public_base_url == "https://tickets.example.test"
    assert settings.redirect_writes_status is False


def test_app_settings_write_mode(monkeypatch):
    monkeypatch.setenv("REDIRECT_STATUS_MODE", "WRITE")
    assert AppSettings.from_env().redirect_writes_status is True


def test_app_settings_rejects_unknown_mode(monkeypatch):
    monkeypatch.setenv("REDIRECT_STATUS_MODE", "sometimes")
    with pytest.raises(ValueError):
        AppSettings.from_env()
