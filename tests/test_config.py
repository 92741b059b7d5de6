import pytest
from pydantic import ValidationError

from conexx_hub.core.config import ASAAS_PRODUCTION_URL, ASAAS_SANDBOX_URL, Settings

STRONG_SECRET = "x" * 48


def _settings(**overrides) -> Settings:
    values = {"secret_key": "test-secret-key", "database_url": "sqlite://"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_asaas_base_url_follows_environment():
    assert _settings().asaas_base_url == ASAAS_SANDBOX_URL
    assert _settings(asaas_environment=" Production ").asaas_base_url == ASAAS_PRODUCTION_URL
    assert _settings(asaas_api_url="https://mock.asaas.local/api/v3/").asaas_base_url == (
        "https://mock.asaas.local/api/v3"
    )


def test_unknown_asaas_environment_is_rejected():
    with pytest.raises(ValidationError):
        _settings(asaas_environment="staging")


def test_cors_origins_accept_csv_and_json():
    assert _settings(cors_origins="https://app.conexxhub.com.br, https://admin.conexxhub.com.br").cors_origins == [
        "https://app.conexxhub.com.br",
        "https://admin.conexxhub.com.br",
    ]
    assert _settings(cors_origins='["https://app.conexxhub.com.br"]').cors_origins == [
        "https://app.conexxhub.com.br"
    ]
    assert _settings(cors_origins="").cors_origins == []


def test_blank_optional_secrets_become_none():
    settings = _settings(asaas_api_key="  ", asaas_webhook_token="")
    assert settings.asaas_api_key is None
    assert settings.asaas_webhook_token is None


def test_production_requires_strong_secret():
    with pytest.raises(ValidationError, match="SECRET_KEY"):
        _settings(env="production", secret_key="change_me", cors_origins="https://app.conexxhub.com.br")


def test_production_rejects_wildcard_cors():
    with pytest.raises(ValidationError, match="CORS_ORIGINS"):
        _settings(env="prod", secret_key=STRONG_SECRET, cors_origins="*")


def test_production_requires_asaas_key_for_asaas_provider():
    with pytest.raises(ValidationError, match="ASAAS_API_KEY"):
        _settings(
            env="production",
            secret_key=STRONG_SECRET,
            cors_origins="https://app.conexxhub.com.br",
            payment_provider_default="asaas",
        )

    settings = _settings(
        env="production",
        secret_key=STRONG_SECRET,
        cors_origins="https://app.conexxhub.com.br",
        payment_provider_default="ASAAS",
        asaas_api_key="$aact_live_key",
        asaas_environment="production",
    )
    assert settings.payment_provider_default == "asaas"
