from __future__ import annotations

import asyncio
import socket
from collections.abc import Mapping

import uvicorn
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import HTMLResponse, Response
from starlette.routing import Route

from oacoder.constants import (
    DEFAULT_CALLBACK_HOST,
    DEFAULT_CALLBACK_PATH,
    DEFAULT_PORT_RANGE,
    DEFAULT_SHUTDOWN_GRACE_SECONDS,
    LOGGER,
)

from .errors import BindError, CallbackHandlerError, PortExhaustionError
from .models import CallbackCode, CallbackMalformed, CallbackProviderError, CallbackResult
from .pages import render_callback_page, server_error_page
from .urls import LOOPBACK_HOSTS

_STARTUP_POLL_SECONDS = 0.01


def _address_family(host: str) -> socket.AddressFamily:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


def find_available_port(low: int, high: int, host: str = DEFAULT_CALLBACK_HOST) -> int:
    """Return the first port in ``[low, high]`` that binds on ``host``.

    The probe socket is released immediately, so another process may take
    the port before the real bind; callers treat that as a BindError and
    move on to the next port.
    """
    if low > high:
        raise ValueError(f"Invalid port range {low}-{high}")

    for port in range(low, high + 1):
        with socket.socket(_address_family(host), socket.SOCK_STREAM) as probe:
            try:
                probe.bind((host, port))
            except OSError:
                continue
        LOGGER.info("Found available port: %s", port)
        return port

    raise PortExhaustionError(low, high)


def parse_callback(params: Mapping[str, str]) -> CallbackResult:
    error = params.get("error")
    if error:
        return CallbackProviderError(error=error, description=params.get("error_description") or None)

    code = params.get("code")
    if code:
        return CallbackCode(code=code, state=params.get("state"))

    return CallbackMalformed()


def _bind_socket(host: str, port: int) -> socket.socket:
    sock = socket.socket(_address_family(host), socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
    except OSError as error:
        sock.close()
        raise BindError(port, str(error)) from error
    return sock


class CallbackServer:
    """Ephemeral loopback HTTP listener for a single OAuth2 redirect.

    The first request on the callback path resolves ``result``; later
    requests get the same kind of page but are otherwise ignored. After
    answering, the server stops itself once the grace period has passed.
    """

    def __init__(
        self,
        *,
        host: str = DEFAULT_CALLBACK_HOST,
        port_range: tuple[int, int] = DEFAULT_PORT_RANGE,
        path: str = DEFAULT_CALLBACK_PATH,
        shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS,
    ) -> None:
        if host not in LOOPBACK_HOSTS:
            raise ValueError(f"Callback host must be a loopback address, got {host!r}")
        self.host = host
        self.port_range = port_range
        self.path = path
        self.shutdown_grace_seconds = shutdown_grace_seconds

        self._port: int | None = None
        self._result: asyncio.Future[CallbackResult] | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None
        self._stopping: asyncio.Future | None = None
        self._shutdown_handle: asyncio.TimerHandle | None = None
        self._stop_task: asyncio.Task | None = None
        self.app = Starlette(routes=[Route(self.path, self._handle_callback, methods=["GET"])])

    @property
    def port(self) -> int | None:
        return self._port

    @property
    def redirect_uri(self) -> str:
        if self._port is None:
            raise RuntimeError("Callback server has not been started.")
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{self._port}{self.path}"

    @property
    def result(self) -> asyncio.Future[CallbackResult]:
        if self._result is None:
            raise RuntimeError("Callback server has not been started.")
        return self._result

    @property
    def is_running(self) -> bool:
        return self._serve_task is not None and self._stopping is None

    async def start(self) -> int:
        if self._serve_task is not None:
            raise RuntimeError("Callback server already started; create a new instance.")

        low, high = self.port_range
        port = find_available_port(low, high, self.host)
        while True:
            try:
                sock = _bind_socket(self.host, port)
                break
            except BindError as error:
                LOGGER.warning("%s; trying the next port", error.message)
                if port >= high:
                    raise PortExhaustionError(low, high) from error
                port = find_available_port(port + 1, high, self.host)

        self._port = port
        self._result = asyncio.get_running_loop().create_future()

        config = uvicorn.Config(
            self.app,
            lifespan="off",
            log_config=None,
            log_level="warning",
            access_log=False,
            timeout_graceful_shutdown=2,
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._serve_task.done():
                sock.close()
                error = None if self._serve_task.cancelled() else self._serve_task.exception()
                raise BindError(port, str(error or "server exited during startup"))
            await asyncio.sleep(_STARTUP_POLL_SECONDS)

        LOGGER.info("Local authentication server started on %s", self.redirect_uri)
        return port

    async def wait_for_result(self, timeout: float | None) -> CallbackResult:
        return await asyncio.wait_for(asyncio.shield(self.result), timeout)

    async def stop(self) -> None:
        if self._serve_task is None:
            return
        if self._stopping is None:
            self._stopping = asyncio.ensure_future(self._shutdown())
        await asyncio.shield(self._stopping)

    async def _shutdown(self) -> None:
        if self._shutdown_handle is not None:
            self._shutdown_handle.cancel()
            self._shutdown_handle = None

        if self._server is None or self._serve_task is None:
            return
        self._server.should_exit = True
        try:
            await self._serve_task
        except Exception as error:
            LOGGER.warning("Callback server on port %s exited with error: %s", self._port, error)
        LOGGER.info("Local authentication server on port %s stopped", self._port)

    # -- request handling ------------------------------------------------------

    async def _handle_callback(self, request: Request) -> Response:
        try:
            result = parse_callback(request.query_params)
            page = render_callback_page(result)
        except Exception:
            LOGGER.exception("Error handling authentication callback")
            if self._result is not None and not self._result.done():
                self._result.set_exception(CallbackHandlerError())
            return HTMLResponse(
                server_error_page(),
                status_code=500,
                background=BackgroundTask(self._schedule_shutdown),
            )

        if self._stopping is not None or self._result is None or self._result.done():
            LOGGER.info("Ignoring repeated callback on port %s", self._port)
            return HTMLResponse(page)

        if isinstance(result, CallbackCode):
            LOGGER.info("Authorization code received (%s...)", result.code[:6])
        elif isinstance(result, CallbackProviderError):
            LOGGER.warning("Provider returned error: %s %s", result.error, result.description or "")
        else:
            LOGGER.warning("Callback carried neither a code nor an error")

        self._result.set_result(result)
        return HTMLResponse(page, background=BackgroundTask(self._schedule_shutdown))

    async def _schedule_shutdown(self) -> None:
        if self._shutdown_handle is not None or self._stopping is not None:
            return
        loop = asyncio.get_running_loop()
        self._shutdown_handle = loop.call_later(self.shutdown_grace_seconds, self._begin_stop)

    def _begin_stop(self) -> None:
        self._shutdown_handle = None
        self._stop_task = asyncio.ensure_future(self.stop())
