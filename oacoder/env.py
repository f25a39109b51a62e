from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

from auth.urls import LOOPBACK_HOSTS

from .constants import (
    DEFAULT_API_BASE_URL,
    DEFAULT_AUTH_TIMEOUT_SECONDS,
    DEFAULT_CALLBACK_HOST,
    DEFAULT_CLIENT_ID,
    DEFAULT_CREDENTIAL_PATH,
    DEFAULT_PORT_RANGE,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_SCOPE,
    DEFAULT_SHUTDOWN_GRACE_SECONDS,
    DEFAULT_USAGE_MAX_ATTEMPTS,
    DEFAULT_USAGE_RETRY_DELAY_SECONDS,
    HTTP_LOGGER,
    LOGGER,
)


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a numeric value.")


def parse_port_range(raw: str) -> tuple[int, int]:
    """Parse ``"8000-8020"`` (or a single ``"8000"``) into an inclusive range."""
    low_text, sep, high_text = raw.strip().partition("-")
    try:
        low = int(low_text)
        high = int(high_text) if sep else low
    except ValueError:
        raise RuntimeError(f"Invalid port range {raw!r}; expected LOW-HIGH.")
    if not 1 <= low <= high <= 65535:
        raise RuntimeError(f"Invalid port range {raw!r}; expected 1 <= LOW <= HIGH <= 65535.")
    return low, high


@dataclass
class Settings:
    api_base_url: str = DEFAULT_API_BASE_URL
    client_id: str = DEFAULT_CLIENT_ID
    scope: str = DEFAULT_SCOPE
    callback_host: str = DEFAULT_CALLBACK_HOST
    port_range: tuple[int, int] = DEFAULT_PORT_RANGE
    auth_timeout_seconds: float = DEFAULT_AUTH_TIMEOUT_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS
    usage_max_attempts: int = DEFAULT_USAGE_MAX_ATTEMPTS
    usage_retry_delay_seconds: float = DEFAULT_USAGE_RETRY_DELAY_SECONDS
    credential_path: Path = DEFAULT_CREDENTIAL_PATH
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        ports = os.getenv("OACODER_CALLBACK_PORTS", "").strip()
        credential_path = os.getenv("OACODER_CREDENTIAL_PATH", "").strip()
        return cls(
            api_base_url=os.getenv("OACODER_API_BASE_URL", DEFAULT_API_BASE_URL).strip().rstrip("/"),
            client_id=os.getenv("OACODER_CLIENT_ID", DEFAULT_CLIENT_ID).strip(),
            scope=os.getenv("OACODER_OAUTH_SCOPE", DEFAULT_SCOPE).strip(),
            callback_host=os.getenv("OACODER_CALLBACK_HOST", DEFAULT_CALLBACK_HOST).strip(),
            port_range=parse_port_range(ports) if ports else DEFAULT_PORT_RANGE,
            auth_timeout_seconds=_get_env_float(
                "OACODER_AUTH_TIMEOUT", DEFAULT_AUTH_TIMEOUT_SECONDS
            ),
            request_timeout_seconds=_get_env_float(
                "OACODER_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            shutdown_grace_seconds=_get_env_float(
                "OACODER_SHUTDOWN_GRACE", DEFAULT_SHUTDOWN_GRACE_SECONDS
            ),
            usage_max_attempts=_get_env_int("OACODER_USAGE_MAX_ATTEMPTS", DEFAULT_USAGE_MAX_ATTEMPTS),
            usage_retry_delay_seconds=_get_env_float(
                "OACODER_USAGE_RETRY_DELAY", DEFAULT_USAGE_RETRY_DELAY_SECONDS
            ),
            credential_path=Path(credential_path).expanduser()
            if credential_path
            else DEFAULT_CREDENTIAL_PATH,
            debug=is_truthy(os.getenv("OACODER_DEBUG")),
        )


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    base_url = os.getenv("OACODER_API_BASE_URL", DEFAULT_API_BASE_URL).strip()
    parsed = urlparse(base_url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise RuntimeError(
            "OACODER_API_BASE_URL must be a valid HTTP(S) URL (for example: "
            "https://api.example.com)."
        )
    if parsed.scheme == "http" and parsed.hostname not in {"localhost", "127.0.0.1"}:
        LOGGER.warning(
            "OACODER_API_BASE_URL uses plain HTTP; bearer tokens will travel unencrypted."
        )

    if not os.getenv("OACODER_CLIENT_ID", DEFAULT_CLIENT_ID).strip():
        raise RuntimeError("OACODER_CLIENT_ID must not be empty.")

    callback_host = os.getenv("OACODER_CALLBACK_HOST", DEFAULT_CALLBACK_HOST).strip()
    if callback_host not in LOOPBACK_HOSTS:
        raise RuntimeError(
            "OACODER_CALLBACK_HOST must be a loopback address "
            f"({', '.join(sorted(LOOPBACK_HOSTS))})."
        )

    ports = os.getenv("OACODER_CALLBACK_PORTS", "").strip()
    if ports:
        parse_port_range(ports)

    if _get_env_int("OACODER_USAGE_MAX_ATTEMPTS", DEFAULT_USAGE_MAX_ATTEMPTS) < 1:
        raise RuntimeError("OACODER_USAGE_MAX_ATTEMPTS must be at least 1.")


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("OACODER_DEBUG", "0"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
        HTTP_LOGGER.setLevel(logging.INFO)
    return debug_enabled
