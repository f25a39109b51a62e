from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx

from auth.errors import NetworkTimeoutError

from .constants import DEFAULT_REQUEST_TIMEOUT_SECONDS, HTTP_LOGGER, LOGGER

T = TypeVar("T")


class RetryPolicy:
    """Fixed-delay retry loop shared by every best-effort backend call."""

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        delay_seconds: float = 1.0,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        sleep=asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._max_attempts = max(1, max_attempts)
        self._delay_seconds = max(0.0, delay_seconds)
        self._retry_on = retry_on
        self._sleep = sleep
        self._logger = logger or LOGGER

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def run(self, operation: Callable[[], Awaitable[T]], *, label: str = "request") -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await operation()
            except self._retry_on as error:
                if attempt >= self._max_attempts:
                    self._logger.warning(
                        "%s failed after %s attempts: %s", label, attempt, error
                    )
                    raise
                self._logger.info(
                    "%s attempt %s/%s failed (%s), retrying in %ss",
                    label,
                    attempt,
                    self._max_attempts,
                    error,
                    self._delay_seconds,
                )
                await self._sleep(self._delay_seconds)
                continue

            if attempt > 1:
                self._logger.info("%s succeeded on attempt %s", label, attempt)
            return result


def translate_transport_error(
    error: httpx.TransportError,
    url: str,
    *,
    timeout: float | None = None,
) -> NetworkTimeoutError:
    if isinstance(error, httpx.TimeoutException) and not isinstance(error, httpx.ConnectTimeout):
        return NetworkTimeoutError(url, timed_out=True, timeout=timeout)
    return NetworkTimeoutError(url, timed_out=False, timeout=timeout)


def friendly_error_message(status_code: int) -> str:
    if status_code == 400:
        return "The identity provider rejected the request."
    if status_code == 401:
        return "Authentication failed. Your session may have expired."
    if status_code == 403:
        return "You don't have permission to perform this action."
    if status_code == 404:
        return "The requested endpoint was not found on the backend."
    if status_code == 429:
        return "Too many requests. Please wait a moment and try again."
    if status_code >= 500:
        return "The backend is experiencing issues. Please try again later."
    return f"Backend request failed with status {status_code}."


def extract_error_text(response: httpx.Response) -> str:
    """Best human-readable error text from an OAuth2-style error body."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        for key in ("error_description", "error", "message", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()

    text = response.text.strip()
    if text and len(text) <= 200 and not text.startswith("<"):
        return text
    return friendly_error_message(response.status_code)


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs,
) -> httpx.Response:
    try:
        return await client.request(method, url, **kwargs)
    except httpx.TransportError as error:
        timeout = client.timeout.read if client.timeout else None
        raise translate_transport_error(error, url, timeout=timeout) from error


def build_http_client(
    *,
    timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    debug: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    async def log_request(request: httpx.Request) -> None:
        if not debug:
            return
        HTTP_LOGGER.info("Backend request %s %s", request.method, request.url.copy_with(query=None))

    async def log_response(response: httpx.Response) -> None:
        if not debug:
            return
        HTTP_LOGGER.info(
            "Backend response %s %s -> %s",
            response.request.method,
            response.request.url.copy_with(query=None),
            response.status_code,
        )
        if response.status_code >= 400:
            body = await response.aread()
            text = body.decode("utf-8", errors="replace")
            if len(text) > 1000:
                text = text[:1000] + "...<truncated>"
            HTTP_LOGGER.warning("Backend error body: %s", text)

    return httpx.AsyncClient(
        timeout=timeout,
        transport=transport,
        event_hooks={"request": [log_request], "response": [log_response]},
    )
