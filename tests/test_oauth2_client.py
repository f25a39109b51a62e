import string
import urllib.parse

import httpx
import pytest

from auth.errors import (
    IntrospectionError,
    NetworkTimeoutError,
    TokenExchangeError,
    UserInfoError,
)
from auth.oauth2_client import OAuth2Client, build_authorization_url, generate_state

BASE_URL = "https://api.example.com"
TOKEN_URL = f"{BASE_URL}/oauth2/token"
USERINFO_URL = f"{BASE_URL}/oauth2/userinfo"
INTROSPECT_URL = f"{BASE_URL}/oauth2/introspect"
REDIRECT_URI = "http://127.0.0.1:8000/callback"


def _client() -> OAuth2Client:
    return OAuth2Client(base_url=BASE_URL, client_id="oa-coder-desktop")


def _form(request: httpx.Request) -> dict[str, str]:
    return {
        key: values[0]
        for key, values in urllib.parse.parse_qs(request.content.decode()).items()
    }


def test_state_is_url_safe_and_long() -> None:
    state = generate_state()
    allowed = set(string.ascii_letters + string.digits + "-_")

    assert len(state) >= 43
    assert all(char in allowed for char in state)


def test_state_is_fresh_each_time() -> None:
    assert len({generate_state() for _ in range(50)}) == 50


def test_build_authorization_url_contains_required_params() -> None:
    url = _client().build_authorization_url(
        redirect_uri=REDIRECT_URI,
        state="state123",
        scope="profile",
    )

    parsed = urllib.parse.urlparse(url)
    query = urllib.parse.parse_qs(parsed.query)

    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == f"{BASE_URL}/oauth2/authorize"
    assert query["client_id"] == ["oa-coder-desktop"]
    assert query["redirect_uri"] == [REDIRECT_URI]
    assert query["response_type"] == ["code"]
    assert query["state"] == ["state123"]
    assert query["scope"] == ["profile"]


def test_build_authorization_url_is_deterministic() -> None:
    kwargs = dict(client_id="c", redirect_uri=REDIRECT_URI, state="s", scope="profile")

    assert build_authorization_url(f"{BASE_URL}/oauth2/authorize", **kwargs) == build_authorization_url(
        f"{BASE_URL}/oauth2/authorize", **kwargs
    )


def test_build_authorization_url_rejects_remote_redirect() -> None:
    with pytest.raises(ValueError):
        _client().build_authorization_url(
            redirect_uri="https://evil.example.com/callback",
            state="s",
            scope="profile",
        )


@pytest.mark.asyncio
async def test_exchange_code_success(httpx_mock) -> None:
    httpx_mock.add_response(
        url=TOKEN_URL,
        method="POST",
        json={"access_token": "T1", "refresh_token": "R1", "token_type": "bearer"},
    )
    client = _client()

    token = await client.exchange_code("abc123", REDIRECT_URI)
    await client.aclose()

    assert token.access_token == "T1"
    assert token.refresh_token == "R1"
    form = _form(httpx_mock.get_request())
    assert form == {
        "grant_type": "authorization_code",
        "client_id": "oa-coder-desktop",
        "code": "abc123",
        "redirect_uri": REDIRECT_URI,
    }


@pytest.mark.asyncio
async def test_exchange_code_without_refresh_token(httpx_mock) -> None:
    httpx_mock.add_response(url=TOKEN_URL, method="POST", json={"access_token": "T1"})
    client = _client()

    token = await client.exchange_code("abc123", REDIRECT_URI)
    await client.aclose()

    assert token.refresh_token is None


@pytest.mark.asyncio
async def test_exchange_code_carries_provider_message(httpx_mock) -> None:
    httpx_mock.add_response(
        url=TOKEN_URL,
        method="POST",
        status_code=400,
        json={"error": "invalid_grant", "error_description": "Code expired"},
    )
    client = _client()

    with pytest.raises(TokenExchangeError) as excinfo:
        await client.exchange_code("stale", REDIRECT_URI)
    await client.aclose()

    assert excinfo.value.provider_message == "Code expired"
    assert excinfo.value.status_code == 400
    assert excinfo.value.message == "Token exchange failed: Code expired"


@pytest.mark.asyncio
async def test_exchange_code_malformed_body(httpx_mock) -> None:
    httpx_mock.add_response(url=TOKEN_URL, method="POST", json={"token_type": "bearer"})
    client = _client()

    with pytest.raises(TokenExchangeError, match="malformed token response"):
        await client.exchange_code("abc123", REDIRECT_URI)
    await client.aclose()


@pytest.mark.asyncio
async def test_exchange_code_requires_code() -> None:
    client = _client()

    with pytest.raises(TokenExchangeError, match="Authorization code is required"):
        await client.exchange_code("", REDIRECT_URI)
    await client.aclose()


@pytest.mark.asyncio
async def test_fetch_user_info_maps_fields(httpx_mock, user_payload) -> None:
    httpx_mock.add_response(url=USERINFO_URL, method="GET", json=user_payload)
    client = _client()

    user = await client.fetch_user_info("T1")
    await client.aclose()

    assert httpx_mock.get_request().headers["Authorization"] == "Bearer T1"
    assert user.id == "u1"
    assert user.name == "Ann"
    assert user.email == "ann@example.com"
    assert user.first_name == "Ann"
    assert user.last_name == "Lee"
    assert user.picture_url == "https://cdn.example.com/ann.png"


@pytest.mark.asyncio
async def test_fetch_user_info_prefers_id_over_sub(httpx_mock) -> None:
    httpx_mock.add_response(url=USERINFO_URL, method="GET", json={"id": 7, "sub": "u1"})
    client = _client()

    user = await client.fetch_user_info("T1")
    await client.aclose()

    assert user.id == "7"


@pytest.mark.asyncio
async def test_fetch_user_info_error(httpx_mock) -> None:
    httpx_mock.add_response(url=USERINFO_URL, method="GET", status_code=401, json={"error": "invalid_token"})
    client = _client()

    with pytest.raises(UserInfoError, match="Failed to get user information"):
        await client.fetch_user_info("bad")
    await client.aclose()


@pytest.mark.asyncio
async def test_introspect_active(httpx_mock) -> None:
    httpx_mock.add_response(url=INTROSPECT_URL, method="POST", json={"active": True})
    client = _client()

    assert await client.introspect("T1") is True
    await client.aclose()

    assert _form(httpx_mock.get_request()) == {"token": "T1"}


@pytest.mark.asyncio
async def test_introspect_inactive(httpx_mock) -> None:
    httpx_mock.add_response(url=INTROSPECT_URL, method="POST", json={"active": False})
    client = _client()

    assert await client.introspect("T1") is False
    await client.aclose()


@pytest.mark.asyncio
async def test_introspect_error_status(httpx_mock) -> None:
    httpx_mock.add_response(url=INTROSPECT_URL, method="POST", status_code=503, text="down")
    client = _client()

    with pytest.raises(IntrospectionError):
        await client.introspect("T1")
    await client.aclose()


@pytest.mark.asyncio
async def test_read_timeout_is_reported_as_slow_request(httpx_mock) -> None:
    httpx_mock.add_exception(httpx.ReadTimeout("timed out"), url=TOKEN_URL)
    client = _client()

    with pytest.raises(NetworkTimeoutError) as excinfo:
        await client.exchange_code("abc123", REDIRECT_URI)
    await client.aclose()

    assert excinfo.value.timed_out is True
    assert "took too long" in excinfo.value.message


@pytest.mark.asyncio
async def test_connect_error_is_reported_as_unreachable(httpx_mock) -> None:
    httpx_mock.add_exception(httpx.ConnectError("refused"), url=USERINFO_URL)
    client = _client()

    with pytest.raises(NetworkTimeoutError) as excinfo:
        await client.fetch_user_info("T1")
    await client.aclose()

    assert excinfo.value.timed_out is False
    assert "unreachable" in excinfo.value.message
