from __future__ import annotations

import asyncio

import httpx

from oacoder.constants import (
    DEFAULT_USAGE_MAX_ATTEMPTS,
    DEFAULT_USAGE_RETRY_DELAY_SECONDS,
    LOGGER,
)
from oacoder.http import RetryPolicy

from .api import USAGE_PATH, ApiClient
from .errors import NetworkTimeoutError, UsageFetchError
from .models import AuthState, UsageInfo


class RetryingUsageFetcher:
    """Best-effort usage lookup; never raises to the caller."""

    def __init__(self, api: ApiClient, *, sleep=asyncio.sleep) -> None:
        self._api = api
        self._sleep = sleep

    async def fetch_with_retry(
        self,
        state: AuthState,
        *,
        max_attempts: int = DEFAULT_USAGE_MAX_ATTEMPTS,
        delay: float = DEFAULT_USAGE_RETRY_DELAY_SECONDS,
    ) -> UsageInfo | None:
        if not state.is_authenticated or not state.session_token:
            LOGGER.info("Cannot fetch usage info - not authenticated")
            return None
        token = state.session_token

        if not await self._api.check_health():
            LOGGER.warning("Backend health check failed; skipping usage fetch")
            return None

        policy = RetryPolicy(
            max_attempts=max_attempts,
            delay_seconds=delay,
            retry_on=(UsageFetchError, NetworkTimeoutError, httpx.HTTPError),
            sleep=self._sleep,
        )
        try:
            return await policy.run(lambda: self._fetch_usage(token), label="Usage fetch")
        except (UsageFetchError, NetworkTimeoutError, httpx.HTTPError):
            return None

    async def _fetch_usage(self, token: str) -> UsageInfo:
        response = await self._api.request("GET", USAGE_PATH, token=token)
        if not response.is_success:
            raise UsageFetchError(f"Usage request failed with status {response.status_code}")

        try:
            payload = response.json()
        except ValueError as error:
            raise UsageFetchError("Usage response was not valid JSON") from error
        if not isinstance(payload, dict):
            raise UsageFetchError("Usage response was not a JSON object")

        usage = UsageInfo.from_payload(payload)
        LOGGER.info(
            "Usage info received: %s of %s requests remaining",
            usage.requests_remaining,
            usage.total_requests,
        )
        return usage
