import pytest
from pydantic import ValidationError

from app.core.config import SecurityConfigError, load_settings, validate_algorithm, validate_token_expire_minutes

ENV = {
    "SECRET_KEY": "Env-Secret-Key-For-Testing-0123456789!",
    "TOKEN_ISSUER": "svc",
    "TOKEN_AUDIENCE": "hls",
    "AUTH_USER": "alice",
    "AUTH_HEADER_VALUE": "let-me-in",
}


@pytest.fixture
def env(monkeypatch):
    for name in [
        "ALGORITHM", "ACCESS_TOKEN_EXPIRE_MINUTES", "AUTH_HEADER_KEY", "KEY_DIR", "CORS_ALLOW_ORIGINS",
        "METRICS_ENABLED", "METRICS_USER", "METRICS_PASSWORD",
    ]:
        monkeypatch.delenv(name, raising=False)
    for name, value in ENV.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_load_settings_defaults(env):
    settings = load_settings()
    assert settings.algorithm == "HS256"
    assert settings.token_expire_minutes == 10
    assert settings.auth_header_key == "X-Auth-Key"
    assert settings.default_key_name == "stream.key"
    assert settings.cors_allow_origins == []


def test_load_settings_overrides(env):
    env.setenv("ALGORITHM", "HS512")
    env.setenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30")
    env.setenv("CORS_ALLOW_ORIGINS", "https://a.example, https://b.example")
    settings = load_settings()
    assert settings.algorithm == "HS512"
    assert settings.token_expire_minutes == 30
    assert settings.cors_allow_origins == ["https://a.example", "https://b.example"]


def test_settings_are_immutable(env):
    settings = load_settings()
    with pytest.raises(ValidationError):
        settings.issuer = "other"


@pytest.mark.parametrize("name", sorted(ENV))
def test_required_settings(env, name):
    env.delenv(name)
    with pytest.raises(SecurityConfigError):
        load_settings()


def test_short_secret_rejected(env):
    env.setenv("SECRET_KEY", "short")
    with pytest.raises(SecurityConfigError):
        load_settings()


@pytest.mark.parametrize("algorithm", ["RS256", "none", "HS1"])
def test_only_hmac_algorithms(algorithm):
    with pytest.raises(SecurityConfigError):
        validate_algorithm(algorithm)


@pytest.mark.parametrize("value", ["abc", "0", "-5"])
def test_invalid_expiry(value):
    with pytest.raises(SecurityConfigError):
        validate_token_expire_minutes(value)


def test_metrics_settings(env):
    settings = load_settings()
    assert settings.metrics_enabled is True
    assert settings.metrics_user is None

    env.setenv("METRICS_ENABLED", "false")
    env.setenv("METRICS_USER", "prom")
    env.setenv("METRICS_PASSWORD", "scrape")
    settings = load_settings()
    assert settings.metrics_enabled is False
    assert (settings.metrics_user, settings.metrics_password) == ("prom", "scrape")
