from pathlib import Path

import pytest

from oacoder.constants import DEFAULT_CREDENTIAL_PATH, DEFAULT_PORT_RANGE
from oacoder.env import Settings, is_truthy, parse_port_range, validate_env

_ENV_KEYS = (
    "OACODER_API_BASE_URL",
    "OACODER_CLIENT_ID",
    "OACODER_OAUTH_SCOPE",
    "OACODER_CALLBACK_HOST",
    "OACODER_CALLBACK_PORTS",
    "OACODER_AUTH_TIMEOUT",
    "OACODER_REQUEST_TIMEOUT",
    "OACODER_SHUTDOWN_GRACE",
    "OACODER_USAGE_MAX_ATTEMPTS",
    "OACODER_USAGE_RETRY_DELAY",
    "OACODER_CREDENTIAL_PATH",
    "OACODER_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_settings_defaults() -> None:
    settings = Settings.from_env()

    assert settings.api_base_url == "https://your-domain.com/api"
    assert settings.client_id == "oa-coder-desktop"
    assert settings.scope == "profile"
    assert settings.callback_host == "127.0.0.1"
    assert settings.port_range == DEFAULT_PORT_RANGE == (8000, 8020)
    assert settings.auth_timeout_seconds == 600
    assert settings.request_timeout_seconds == 10.0
    assert settings.usage_max_attempts == 3
    assert settings.credential_path == DEFAULT_CREDENTIAL_PATH
    assert settings.debug is False


def test_settings_read_overrides(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("OACODER_API_BASE_URL", "https://auth.example.com/api/")
    monkeypatch.setenv("OACODER_CLIENT_ID", "desktop-dev")
    monkeypatch.setenv("OACODER_CALLBACK_PORTS", "9100-9105")
    monkeypatch.setenv("OACODER_AUTH_TIMEOUT", "120")
    monkeypatch.setenv("OACODER_REQUEST_TIMEOUT", "2.5")
    monkeypatch.setenv("OACODER_USAGE_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("OACODER_CREDENTIAL_PATH", str(tmp_path / "creds.json"))
    monkeypatch.setenv("OACODER_DEBUG", "yes")

    settings = Settings.from_env()

    assert settings.api_base_url == "https://auth.example.com/api"
    assert settings.client_id == "desktop-dev"
    assert settings.port_range == (9100, 9105)
    assert settings.auth_timeout_seconds == 120
    assert settings.request_timeout_seconds == 2.5
    assert settings.usage_max_attempts == 5
    assert settings.credential_path == Path(tmp_path / "creds.json")
    assert settings.debug is True


def test_settings_reject_non_numeric(monkeypatch) -> None:
    monkeypatch.setenv("OACODER_AUTH_TIMEOUT", "ten minutes")

    with pytest.raises(RuntimeError, match="OACODER_AUTH_TIMEOUT must be a numeric value"):
        Settings.from_env()


def test_settings_accept_fractional_auth_timeout(monkeypatch) -> None:
    monkeypatch.setenv("OACODER_AUTH_TIMEOUT", "0.5")

    assert Settings.from_env().auth_timeout_seconds == 0.5


def test_settings_reject_non_integer_attempts(monkeypatch) -> None:
    monkeypatch.setenv("OACODER_USAGE_MAX_ATTEMPTS", "2.5")

    with pytest.raises(RuntimeError, match="OACODER_USAGE_MAX_ATTEMPTS must be an integer"):
        Settings.from_env()


def test_parse_port_range() -> None:
    assert parse_port_range("8000-8020") == (8000, 8020)
    assert parse_port_range(" 9000 ") == (9000, 9000)


@pytest.mark.parametrize("raw", ["8020-8000", "abc", "0-10", "8000-70000"])
def test_parse_port_range_rejects_invalid(raw: str) -> None:
    with pytest.raises(RuntimeError, match="Invalid port range"):
        parse_port_range(raw)


def test_validate_env_accepts_defaults() -> None:
    validate_env()


def test_validate_env_rejects_bad_url(monkeypatch) -> None:
    monkeypatch.setenv("OACODER_API_BASE_URL", "ftp://example.com")

    with pytest.raises(RuntimeError, match="OACODER_API_BASE_URL"):
        validate_env()


def test_validate_env_rejects_empty_client_id(monkeypatch) -> None:
    monkeypatch.setenv("OACODER_CLIENT_ID", "  ")

    with pytest.raises(RuntimeError, match="OACODER_CLIENT_ID"):
        validate_env()


@pytest.mark.parametrize("host", ["127.0.0.1", "localhost", "::1"])
def test_validate_env_accepts_loopback_callback_host(monkeypatch, host: str) -> None:
    monkeypatch.setenv("OACODER_CALLBACK_HOST", host)

    validate_env()


@pytest.mark.parametrize("host", ["0.0.0.0", "192.168.1.20", "::", "example.com"])
def test_validate_env_rejects_non_loopback_callback_host(monkeypatch, host: str) -> None:
    monkeypatch.setenv("OACODER_CALLBACK_HOST", host)

    with pytest.raises(RuntimeError, match="OACODER_CALLBACK_HOST must be a loopback address"):
        validate_env()


def test_validate_env_rejects_zero_usage_attempts(monkeypatch) -> None:
    monkeypatch.setenv("OACODER_USAGE_MAX_ATTEMPTS", "0")

    with pytest.raises(RuntimeError, match="at least 1"):
        validate_env()


def test_is_truthy() -> None:
    assert is_truthy("1")
    assert is_truthy(" True ")
    assert not is_truthy("0")
    assert not is_truthy(None)
