from __future__ import annotations

import argparse
import asyncio
import sys

from auth.api import ApiClient
from auth.callback_server import CallbackServer
from auth.credential_store import FileCredentialStore
from auth.models import AuthPhase
from auth.notifier import LoggingNotifier, Notifier
from auth.oauth2_client import OAuth2Client
from auth.session import AuthSession
from auth.usage import RetryingUsageFetcher
from oacoder.constants import APP_VERSION, LOGGER
from oacoder.env import Settings, load_env, setup_logging, validate_env

ACTIONS = ("login", "logout", "status")


def create_session(settings: Settings, *, notifier: Notifier | None = None) -> AuthSession:
    """Wire the one AuthSession this process uses."""

    def server_factory() -> CallbackServer:
        return CallbackServer(
            host=settings.callback_host,
            port_range=settings.port_range,
            shutdown_grace_seconds=settings.shutdown_grace_seconds,
        )

    oauth_client = OAuth2Client(
        base_url=settings.api_base_url,
        client_id=settings.client_id,
        timeout=settings.request_timeout_seconds,
        debug=settings.debug,
    )
    api = ApiClient(
        settings.api_base_url,
        timeout=settings.request_timeout_seconds,
        debug=settings.debug,
    )
    return AuthSession(
        oauth_client=oauth_client,
        api=api,
        credential_store=FileCredentialStore(settings.credential_path),
        notifier=notifier or LoggingNotifier(),
        usage_fetcher=RetryingUsageFetcher(api),
        server_factory=server_factory,
        scope=settings.scope,
        auth_timeout=settings.auth_timeout_seconds,
        usage_max_attempts=settings.usage_max_attempts,
        usage_retry_delay=settings.usage_retry_delay_seconds,
    )


async def run(action: str, session: AuthSession) -> int:
    try:
        await session.load_persisted()

        if action == "login":
            if await session.initiate() is not None:
                print("Complete sign-in in your browser...")
            phase = await session.wait()
            if phase is not AuthPhase.SIGNED_IN:
                print("Sign-in did not complete.")
                return 1
        elif action == "logout":
            await session.sign_out()

        line = session.status_line().rstrip(" |")
        user = session.user
        if user is not None:
            line += f": {user.display_name}"
            if user.email:
                line += f" <{user.email}>"
        print(line)
        return 0
    finally:
        await session.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="authctl", description="Desktop OAuth2 sign-in.")
    parser.add_argument("action", nargs="?", default="status", choices=ACTIONS)
    parser.add_argument("--version", action="version", version=APP_VERSION)
    args = parser.parse_args(argv)

    load_env()
    setup_logging()
    validate_env()
    settings = Settings.from_env()
    LOGGER.info("Using API base URL %s", settings.api_base_url)

    session = create_session(settings)
    return asyncio.run(run(args.action, session))


if __name__ == "__main__":
    sys.exit(main())
