from __future__ import annotations

import secrets

import httpx

from oacoder.constants import DEFAULT_REQUEST_TIMEOUT_SECONDS, LOGGER
from oacoder.http import build_http_client, extract_error_text, send

from .errors import IntrospectionError, TokenExchangeError, UserInfoError
from .models import TokenResponse, UserProfile
from .urls import append_query_params, is_loopback_redirect_uri, join_url

AUTHORIZE_PATH = "/oauth2/authorize"
TOKEN_PATH = "/oauth2/token"
USERINFO_PATH = "/oauth2/userinfo"
INTROSPECT_PATH = "/oauth2/introspect"


def generate_state() -> str:
    """Opaque CSRF value for one authorization attempt (256 bits)."""
    return secrets.token_urlsafe(32)


def build_authorization_url(
    authorize_url: str,
    *,
    client_id: str,
    redirect_uri: str,
    state: str,
    scope: str,
) -> str:
    if not is_loopback_redirect_uri(redirect_uri):
        raise ValueError(f"redirect_uri must point at a loopback listener: {redirect_uri}")

    query = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "state": state,
        "scope": scope,
    }
    return append_query_params(authorize_url, query)


class OAuth2Client:
    """Stateless calls against the provider's OAuth2 endpoints."""

    def __init__(
        self,
        *,
        base_url: str,
        client_id: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        debug: bool = False,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self._own_client = client is None
        self._client = client or build_http_client(timeout=timeout, debug=debug)

    @property
    def authorize_url(self) -> str:
        return join_url(self.base_url, AUTHORIZE_PATH)

    def build_authorization_url(self, *, redirect_uri: str, state: str, scope: str) -> str:
        return build_authorization_url(
            self.authorize_url,
            client_id=self.client_id,
            redirect_uri=redirect_uri,
            state=state,
            scope=scope,
        )

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenResponse:
        if not code:
            raise TokenExchangeError("Authorization code is required")

        url = join_url(self.base_url, TOKEN_PATH)
        response = await send(
            self._client,
            "POST",
            url,
            data={
                "grant_type": "authorization_code",
                "client_id": self.client_id,
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
        if not response.is_success:
            detail = extract_error_text(response)
            LOGGER.warning("Token exchange failed with status %s: %s", response.status_code, detail)
            raise TokenExchangeError(detail, status_code=response.status_code)

        try:
            token = TokenResponse.from_payload(response.json())
        except (ValueError, AttributeError) as error:
            raise TokenExchangeError(f"malformed token response ({error})") from error

        LOGGER.info(
            "Token exchange successful (refresh token %s)",
            "present" if token.refresh_token else "absent",
        )
        return token

    async def fetch_user_info(self, access_token: str) -> UserProfile:
        url = join_url(self.base_url, USERINFO_PATH)
        response = await send(
            self._client,
            "GET",
            url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if not response.is_success:
            detail = extract_error_text(response)
            LOGGER.warning("User info request failed with status %s: %s", response.status_code, detail)
            raise UserInfoError(f"Failed to get user information: {detail}")

        try:
            payload = response.json()
        except ValueError as error:
            raise UserInfoError("Failed to get user information: malformed response") from error
        if not isinstance(payload, dict):
            raise UserInfoError("Failed to get user information: malformed response")

        return UserProfile.from_userinfo(payload)

    async def introspect(self, token: str) -> bool:
        """Return whether the provider reports ``token`` as active."""
        url = join_url(self.base_url, INTROSPECT_PATH)
        response = await send(self._client, "POST", url, data={"token": token})
        if not response.is_success:
            raise IntrospectionError(
                f"Token introspection failed with status {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError as error:
            raise IntrospectionError("Token introspection returned a malformed body") from error
        if not isinstance(payload, dict):
            raise IntrospectionError("Token introspection returned a malformed body")

        return payload.get("active") is True

    async def aclose(self) -> None:
        if self._own_client:
            await self._client.aclose()
