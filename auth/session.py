from __future__ import annotations

import asyncio
import webbrowser
from typing import Callable

import httpx

from oacoder.constants import (
    DEFAULT_AUTH_TIMEOUT_SECONDS,
    DEFAULT_SCOPE,
    DEFAULT_USAGE_MAX_ATTEMPTS,
    DEFAULT_USAGE_RETRY_DELAY_SECONDS,
    LOGGER,
    SECURITY_LOGGER,
)
from oacoder.http import RetryPolicy

from .api import ApiClient
from .callback_server import CallbackServer
from .credential_store import CredentialStore
from .errors import (
    AuthError,
    AuthTimeoutError,
    CsrfViolationError,
    IntrospectionError,
    NetworkTimeoutError,
    ProviderDeclinedError,
    UserInfoError,
)
from .models import (
    AuthPhase,
    AuthState,
    CallbackCode,
    CallbackProviderError,
    CallbackResult,
    PersistedCredential,
    UsageInfo,
    UserProfile,
)
from .notifier import (
    AUTH_ERROR,
    AUTH_SIGNED_OUT,
    AUTH_STATUS_CHANGED,
    AUTH_SUCCESS,
    USAGE_UPDATED,
    LoggingNotifier,
    Notifier,
)
from .oauth2_client import OAuth2Client, generate_state
from .usage import RetryingUsageFetcher


class AuthSession:
    """Owns the authentication state of one desktop process.

    Lifecycle: ``SIGNED_OUT -> AUTHENTICATING -> SIGNED_IN`` through
    :meth:`initiate` and the browser redirect, back to ``SIGNED_OUT`` on
    sign-out, provider refusal, CSRF mismatch, exchange failure or timeout.
    ``is_authenticating`` is the only concurrency guard: it is checked and
    raised in :meth:`initiate` with no await in between, and lowered on
    every exit path of the pending flow.

    Public coroutines never raise protocol errors. Failures reach the UI
    through the notifier and the method returns the resulting phase.
    """

    def __init__(
        self,
        *,
        oauth_client: OAuth2Client,
        api: ApiClient,
        credential_store: CredentialStore,
        notifier: Notifier | None = None,
        usage_fetcher: RetryingUsageFetcher | None = None,
        server_factory: Callable[[], CallbackServer] = CallbackServer,
        open_browser: Callable[[str], object] = webbrowser.open,
        scope: str = DEFAULT_SCOPE,
        auth_timeout: float = DEFAULT_AUTH_TIMEOUT_SECONDS,
        usage_max_attempts: int = DEFAULT_USAGE_MAX_ATTEMPTS,
        usage_retry_delay: float = DEFAULT_USAGE_RETRY_DELAY_SECONDS,
        startup_retry: RetryPolicy | None = None,
    ) -> None:
        self._oauth = oauth_client
        self._api = api
        self._store = credential_store
        self._notifier = notifier or LoggingNotifier()
        self._usage = usage_fetcher or RetryingUsageFetcher(api)
        self._server_factory = server_factory
        self._open_browser = open_browser
        self._scope = scope
        self._auth_timeout = auth_timeout
        self._usage_max_attempts = usage_max_attempts
        self._usage_retry_delay = usage_retry_delay
        self._startup_retry = startup_retry or RetryPolicy(retry_on=(NetworkTimeoutError,))

        self._state = AuthState()
        self._server: CallbackServer | None = None
        self._flow_task: asyncio.Task | None = None
        self._validation: asyncio.Event | None = None

    # -- read-only view ----------------------------------------------------------

    @property
    def phase(self) -> AuthPhase:
        return self._state.phase

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    @property
    def is_authenticating(self) -> bool:
        return self._state.is_authenticating

    @property
    def user(self) -> UserProfile | None:
        return self._state.user

    @property
    def session_token(self) -> str | None:
        return self._state.session_token

    @property
    def server(self) -> CallbackServer | None:
        return self._server

    def snapshot(self) -> dict:
        return {
            "isAuthenticated": self._state.is_authenticated,
            "isAuthenticating": self._state.is_authenticating,
            "user": self._state.user.to_payload() if self._state.user else None,
        }

    def status_line(self) -> str:
        if self._state.is_authenticated and self._state.user:
            return "Signed in | "
        if self._state.is_authenticating:
            return "Authenticating... | "
        return "Not signed in | "

    # -- interactive flow --------------------------------------------------------

    async def initiate(self) -> str | None:
        """Start a browser sign-in and return the authorization URL opened.

        Returns ``None`` when no new attempt was started (one is already
        pending, the user is already signed in, or start-up failed). While a
        stored credential is being revalidated the call waits for that check
        first, so "already signed in" is only reported for a validated token.
        """
        validation = self._validation
        if validation is not None and not validation.is_set():
            LOGGER.info("Waiting for stored session validation")
            await validation.wait()

        if self._state.is_authenticating:
            LOGGER.info("Authentication already in progress")
            return None
        if self._state.phase is AuthPhase.SIGNED_IN:
            user = self._state.user
            LOGGER.info("User is already authenticated: %s", user.display_name if user else "unknown")
            self._emit(
                AUTH_SUCCESS,
                {
                    "user": user.to_payload() if user else None,
                    "message": "You are already signed in!",
                },
            )
            return None

        self._state.is_authenticating = True
        self._emit_status()

        try:
            await self._release_server()
            server = self._server_factory()
            self._server = server
            port = await server.start()

            csrf_state = generate_state()
            self._state.pending_csrf_state = csrf_state
            url = self._oauth.build_authorization_url(
                redirect_uri=server.redirect_uri,
                state=csrf_state,
                scope=self._scope,
            )
            LOGGER.info("Opening browser for authentication; callback on %s", server.redirect_uri)
            if self._open_browser(url) is False:
                LOGGER.warning("Could not open a browser; visit %s to sign in", url)
        except Exception as error:
            LOGGER.error("Failed to initiate authentication: %s", error)
            await self._release_server()
            self._end_attempt()
            self._emit_status()
            self._emit(AUTH_ERROR, {"message": f"Failed to start authentication: {error}"})
            return None

        self._emit_status(
            message=f"Authentication server running on port {port}. "
            "Complete sign-in in your browser."
        )
        self._flow_task = asyncio.create_task(self._run_flow(server))
        return url

    async def wait(self) -> AuthPhase:
        """Wait for the pending flow (if any) to settle."""
        task = self._flow_task
        if task is not None:
            await asyncio.wait({task})
        return self._state.phase

    async def _run_flow(self, server: CallbackServer) -> AuthPhase:
        try:
            try:
                result = await server.wait_for_result(self._auth_timeout)
            except asyncio.TimeoutError:
                await self._handle_timeout(server)
                return self._state.phase
            await self._complete(result, server.redirect_uri)
        except AuthError as error:
            self._fail(error)
        except asyncio.CancelledError:
            LOGGER.info("Pending authentication cancelled")
            raise
        except Exception as error:
            LOGGER.exception("Unexpected error during authentication")
            self._fail(AuthError(f"Authentication failed: {error}"))
        finally:
            if self._state.is_authenticating:
                self._end_attempt()
                self._emit_status()
        return self._state.phase

    async def _handle_timeout(self, server: CallbackServer) -> None:
        LOGGER.warning("Authentication timeout - closing local server")
        await server.stop()
        if self._server is server:
            self._server = None
        self._end_attempt()
        self._emit_status()
        self._emit(AUTH_ERROR, {"message": AuthTimeoutError().message})

    async def _complete(self, result: CallbackResult, redirect_uri: str) -> None:
        if isinstance(result, CallbackProviderError):
            raise ProviderDeclinedError(result.error, result.description)
        if not isinstance(result, CallbackCode):
            raise AuthError("No authorization code received")

        expected = self._state.pending_csrf_state
        if expected is None or result.state != expected:
            raise CsrfViolationError()
        self._state.pending_csrf_state = None

        token = await self._oauth.exchange_code(result.code, redirect_uri)
        user = await self._oauth.fetch_user_info(token.access_token)

        self._state.is_authenticated = True
        self._state.session_token = token.access_token
        self._state.refresh_token = token.refresh_token
        self._state.user = user
        self._state.is_authenticating = False
        LOGGER.info("Authentication successful for user: %s", user.display_name)

        await self._persist()
        self._emit_status()
        await self._refresh_usage()
        self._emit(
            AUTH_SUCCESS,
            {"user": user.to_payload(), "message": "Successfully authenticated with OAuth2!"},
        )

    def _fail(self, error: AuthError) -> None:
        self._end_attempt()
        if isinstance(error, CsrfViolationError):
            SECURITY_LOGGER.warning("Rejected authentication callback: %s", error.message)
        else:
            LOGGER.error("Authentication failed: %s", error.message)
        self._emit_status()
        self._emit(AUTH_ERROR, {"message": error.message, "error": type(error).__name__})

    def _end_attempt(self) -> None:
        self._state.is_authenticating = False
        self._state.pending_csrf_state = None

    # -- start-up revalidation ---------------------------------------------------

    async def load_persisted(self) -> AuthPhase:
        """Restore a saved credential if the provider still reports it active.

        Any introspection failure is treated as an invalid token: the
        credential is discarded silently and the session stays signed out.
        """
        if self._state.is_authenticating or self._state.is_authenticated:
            return self._state.phase

        validation = asyncio.Event()
        self._validation = validation
        try:
            return await self._restore(await self._store.load())
        finally:
            validation.set()

    async def _restore(self, credential: PersistedCredential | None) -> AuthPhase:
        if credential is None or not credential.is_authenticated:
            return self._state.phase

        token = credential.session_token
        self._state.session_token = token
        self._state.refresh_token = credential.refresh_token
        self._state.user = credential.user
        self._state.is_authenticated = True
        LOGGER.info("Authentication state loaded; validating stored token")

        try:
            active = await self._startup_retry.run(
                lambda: self._oauth.introspect(token), label="Token introspection"
            )
        except (IntrospectionError, NetworkTimeoutError, httpx.HTTPError) as error:
            LOGGER.warning("Stored token validation failed: %s", error)
            active = False

        if self._state.session_token != token:
            return self._state.phase

        if not active:
            LOGGER.info("Stored token is invalid, clearing auth state")
            await self._clear_credentials()
            self._emit_status()
            return self._state.phase

        try:
            user = await self._oauth.fetch_user_info(token)
        except (UserInfoError, NetworkTimeoutError) as error:
            LOGGER.warning("Could not refresh user profile, keeping stored one: %s", error)
        else:
            if self._state.session_token == token:
                self._state.user = user
                await self._persist()

        LOGGER.info("Stored token is valid")
        self._emit_status()
        await self._refresh_usage()
        return self._state.phase

    # -- sign-out and teardown ---------------------------------------------------

    async def sign_out(self) -> None:
        LOGGER.info("Signing out...")
        await self._cancel_flow()
        await self._clear_credentials()
        LOGGER.info("Authentication state cleared")
        self._emit_status()
        self._emit(AUTH_SIGNED_OUT)

    async def close(self) -> None:
        await self._cancel_flow()
        await self._release_server()
        self._end_attempt()
        await self._oauth.aclose()
        await self._api.aclose()

    async def _cancel_flow(self) -> None:
        task = self._flow_task
        self._flow_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.wait({task})

    async def _release_server(self) -> None:
        server = self._server
        self._server = None
        if server is not None:
            await server.stop()

    async def _clear_credentials(self) -> None:
        await self._release_server()
        self._state.reset()
        try:
            await self._store.clear()
        except OSError as error:
            LOGGER.error("Failed to remove credential file: %s", error)

    async def _persist(self) -> None:
        if not self._state.session_token:
            return
        credential = PersistedCredential(
            session_token=self._state.session_token,
            refresh_token=self._state.refresh_token,
            user=self._state.user,
            is_authenticated=self._state.is_authenticated,
        )
        try:
            await self._store.save(credential)
        except OSError as error:
            LOGGER.error("Failed to save authentication state: %s", error)

    # -- backend calls for collaborators -----------------------------------------

    async def request(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        """Authenticated backend request; raises NetworkTimeoutError on transport failure."""
        return await self._api.request(method, endpoint, token=self._state.session_token, **kwargs)

    async def fetch_usage(self) -> UsageInfo | None:
        return await self._refresh_usage()

    async def _refresh_usage(self) -> UsageInfo | None:
        usage = await self._usage.fetch_with_retry(
            self._state,
            max_attempts=self._usage_max_attempts,
            delay=self._usage_retry_delay,
        )
        if usage is not None:
            self._emit(USAGE_UPDATED, usage.to_payload())
        return usage

    # -- notifications -----------------------------------------------------------

    def _emit_status(self, *, message: str | None = None) -> None:
        payload = self.snapshot()
        if message:
            payload["message"] = message
        self._emit(AUTH_STATUS_CHANGED, payload)

    def _emit(self, event: str, payload: dict | None = None) -> None:
        try:
            self._notifier.notify(event, payload)
        except Exception:
            LOGGER.exception("Notifier failed to deliver %s", event)
