from __future__ import annotations

import httpx

from oacoder.constants import DEFAULT_REQUEST_TIMEOUT_SECONDS
from oacoder.http import build_http_client, send

from .errors import NetworkTimeoutError
from .urls import join_url

HEALTH_PATH = "/health"
USAGE_PATH = "/usage"


class ApiClient:
    """Backend calls relative to the configured API base URL.

    Every call carries the client timeout; transport failures surface as
    NetworkTimeoutError.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        debug: bool = False,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._own_client = client is None
        self._client = client or build_http_client(timeout=timeout, debug=debug)

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        token: str | None = None,
        **kwargs,
    ) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return await send(
            self._client,
            method,
            join_url(self.base_url, endpoint),
            headers=headers,
            **kwargs,
        )

    async def check_health(self) -> bool:
        try:
            response = await self.request("GET", HEALTH_PATH)
        except (NetworkTimeoutError, httpx.HTTPError):
            return False
        return response.is_success

    async def aclose(self) -> None:
        if self._own_client:
            await self._client.aclose()
