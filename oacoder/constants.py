from __future__ import annotations

import logging
from pathlib import Path

LOGGER = logging.getLogger("oacoder.auth")
SECURITY_LOGGER = logging.getLogger("oacoder.security")
HTTP_LOGGER = logging.getLogger("oacoder.http")

APP_VERSION = "0.1.0"

DEFAULT_API_BASE_URL = "https://your-domain.com/api"
DEFAULT_CLIENT_ID = "oa-coder-desktop"
DEFAULT_SCOPE = "profile"

DEFAULT_CALLBACK_HOST = "127.0.0.1"
DEFAULT_CALLBACK_PATH = "/callback"
DEFAULT_PORT_RANGE = (8000, 8020)

DEFAULT_AUTH_TIMEOUT_SECONDS = 600
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0
DEFAULT_SHUTDOWN_GRACE_SECONDS = 5.0

DEFAULT_USAGE_MAX_ATTEMPTS = 3
DEFAULT_USAGE_RETRY_DELAY_SECONDS = 1.0

DEFAULT_CREDENTIAL_PATH = Path.home() / ".oa-coder-auth.json"
