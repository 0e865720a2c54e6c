"""Interactive OAuth flow using an ephemeral local callback listener."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
import sys
import webbrowser
from typing import Awaitable, Callable, Iterator

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse
from starlette.routing import Route

from .credentials import CredentialStore, classify
from .errors import AUTH_DENIED, CONFIG_ERROR, CREDENTIAL_MISSING, INTERNAL_ERROR, REAUTH_REQUIRED, BloggerMcpError
from .google_auth import AuthSession
from .logging import get_logger
from .models import TokenSet

__all__ = [
    "CALLBACK_PATH",
    "CallbackListener",
    "obtain_credentials",
]

CALLBACK_PATH = "/auth/google/callback"

SUCCESS_PAGE = "<h2>Authentication complete.<br>You can close this browser window.</h2>"
FAILURE_PAGE = "<h2>Authentication failed. Please try again.</h2>"
DENIED_PAGE = "<h2>Authorization was not granted. Please restart the sign-in.</h2>"


class _CallbackServer(uvicorn.Server):
    """uvicorn server that leaves the host process' signal handlers alone."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    def install_signal_handlers(self) -> None:  # pragma: no cover - older uvicorn
        return None


class CallbackListener:
    """Runs one authorization attempt and resolves with the exchanged tokens.

    Only one attempt may be in flight per listener.
    """

    def __init__(
        self,
        session: AuthSession,
        store: CredentialStore,
        *,
        host: str = "localhost",
        port: int = 0,
        open_browser: bool = True,
        browser: Callable[[str], object] = webbrowser.open,
        logger: logging.Logger | None = None,
    ) -> None:
        self._session = session
        self._store = store
        self._host = host
        self._requested_port = port
        self._open_browser = open_browser
        self._browser = browser
        self._logger = logger or get_logger(__name__)
        self._port: int | None = None
        self._outcome: asyncio.Future[TokenSet] | None = None

    @property
    def port(self) -> int | None:
        return self._port

    @property
    def redirect_uri(self) -> str | None:
        if self._port is None:
            return None
        return f"http://{self._host}:{self._port}{CALLBACK_PATH}"

    async def run(self) -> TokenSet:
        if self._outcome is not None and not self._outcome.done():
            raise BloggerMcpError(INTERNAL_ERROR, "An authorization attempt is already in progress")

        sock = self._bind()
        self._outcome = asyncio.get_running_loop().create_future()
        self._port = sock.getsockname()[1]
        self._session.redirect_uri = self.redirect_uri

        server = _CallbackServer(
            uvicorn.Config(
                self._build_app(),
                log_level="warning",
                log_config=None,
                lifespan="off",
                access_log=False,
            )
        )
        serve_task = asyncio.create_task(server.serve(sockets=[sock]))
        try:
            await self._wait_started(server, serve_task)
            self._announce(self._session.build_authorization_url())
            done, _pending = await asyncio.wait({self._outcome, serve_task}, return_when=asyncio.FIRST_COMPLETED)
            if self._outcome not in done:
                raise BloggerMcpError(INTERNAL_ERROR, "Authorization callback listener stopped unexpectedly")
            return self._outcome.result()
        finally:
            server.should_exit = True
            with contextlib.suppress(Exception):
                await serve_task
            sock.close()
            self._logger.info("auth.listener.closed", extra={"context": {"port": self._port}})

    def _bind(self) -> socket.socket:
        bind_host = "127.0.0.1" if self._host == "localhost" else self._host
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((bind_host, self._requested_port))
        except OSError as exc:
            sock.close()
            raise BloggerMcpError(
                CONFIG_ERROR,
                f"Cannot listen for the authorization callback on {bind_host}:{self._requested_port}: {exc}",
                details={"host": bind_host, "port": self._requested_port},
            ) from exc
        sock.set_inheritable(True)
        return sock

    async def _wait_started(self, server: uvicorn.Server, serve_task: asyncio.Task[None]) -> None:
        while not server.started:
            if serve_task.done():
                serve_task.result()
                raise BloggerMcpError(INTERNAL_ERROR, "Authorization callback listener failed to start")
            await asyncio.sleep(0.01)

    def _announce(self, url: str) -> None:
        self._logger.info("auth.flow.started", extra={"context": {"redirect_uri": self.redirect_uri}})
        # stdout belongs to the stdio transport
        print(f"Open this URL in your browser to authorize access: {url}", file=sys.stderr, flush=True)
        if not self._open_browser:
            return
        try:
            self._browser(url)
        except webbrowser.Error as exc:
            self._logger.warning("auth.browser.unavailable", extra={"context": {"error": str(exc)}})

    def _build_app(self) -> Starlette:
        return Starlette(routes=[Route(CALLBACK_PATH, endpoint=self._handle_callback, methods=["GET"])])

    async def _handle_callback(self, request: Request) -> HTMLResponse:
        outcome = self._outcome
        if outcome is None or outcome.done():
            return HTMLResponse(FAILURE_PAGE, status_code=409)

        code = request.query_params.get("code")
        if not code:
            reason = request.query_params.get("error") or "missing_code"
            self._logger.warning("auth.flow.denied", extra={"context": {"reason": reason}})
            outcome.set_exception(
                BloggerMcpError(
                    AUTH_DENIED,
                    f"Authorization was not granted: {reason}",
                    details={"reason": reason},
                )
            )
            return HTMLResponse(DENIED_PAGE, status_code=400)

        try:
            tokens = await self._session.exchange_code(code)
        except Exception as exc:
            self._logger.error("auth.flow.exchange_failed", extra={"context": {"error": str(exc)}})
            if not outcome.done():
                outcome.set_exception(exc)
            return HTMLResponse(FAILURE_PAGE, status_code=500)

        saved = self._store.save(tokens)
        if not saved.ok:
            self._logger.warning("auth.flow.persist_failed", extra={"context": {"path": str(self._store.path)}})
        if not outcome.done():
            outcome.set_result(tokens)
        return HTMLResponse(SUCCESS_PAGE)


async def obtain_credentials(
    session: AuthSession,
    store: CredentialStore,
    flow: Callable[[], Awaitable[TokenSet]],
    *,
    logger: logging.Logger | None = None,
) -> TokenSet:
    """Load, refresh, or interactively acquire tokens and install them in ``session``."""

    log = logger or get_logger(__name__)
    tokens = store.load()
    status = classify(tokens)
    log.info("auth.tokens.status", extra={"context": {"status": status}})

    if status == "missing":
        tokens = await flow()
    elif status == "expired" or (status == "needs_refresh" and tokens is not None and tokens.refresh_token):
        session.set_credentials(tokens)
        try:
            tokens = await session.refresh()
        except BloggerMcpError as exc:
            if exc.code != REAUTH_REQUIRED:
                raise
            log.warning("auth.refresh.reauthenticating", extra={"context": {"error": exc.message}})
            tokens = await flow()
        else:
            store.save(tokens)

    if tokens is None or not tokens.access_token:
        raise BloggerMcpError(CREDENTIAL_MISSING, "Authentication flow did not produce an access token")
    session.set_credentials(tokens)
    return tokens
