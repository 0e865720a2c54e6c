"""HTTP and SSE transport implementation."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, Mapping

import uvicorn
from fastmcp.server.http import (
    SseServerTransport,
    StreamableHTTPASGIApp,
    StreamableHTTPSessionManager,
    create_base_app,
)
from fastmcp.utilities.logging import temporary_log_level
from mcp.server.lowlevel import Server
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import BaseRoute, Mount, Route

from ..logging import get_logger

logger = get_logger(__name__)

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


@dataclass(slots=True)
class HttpTransportConfig:
    """Configuration for the HTTP/SSE transport layer."""

    host: str
    port: int
    http_path: str
    sse_path: str
    metrics_path: str
    enable_metrics: bool
    enable_http: bool
    enable_sse: bool
    log_level: str | None = None


def describe_routes(config: HttpTransportConfig) -> Mapping[str, str]:
    """Return a mapping of logical endpoints to their configured paths."""

    routes: dict[str, str] = {}
    if config.enable_http:
        routes["http"] = _normalise_path(config.http_path)
    if config.enable_sse:
        routes["sse"] = _normalise_path(config.sse_path)
    if config.enable_metrics:
        routes["metrics"] = _normalise_path(config.metrics_path)
    return routes


async def serve_http(
    server: Server,
    config: HttpTransportConfig,
    *,
    metrics: Callable[[], str] | None = None,
) -> None:
    """Serve streamable HTTP, SSE, and metrics routes with uvicorn."""

    if not (config.enable_http or config.enable_sse or config.enable_metrics):
        logger.info("transport.http.skip_all_disabled")
        return

    context = {
        "host": config.host,
        "port": config.port,
        "routes": dict(describe_routes(config)),
    }
    app = build_http_app(server, config, metrics=metrics)
    uvicorn_config = uvicorn.Config(
        app,
        host=config.host,
        port=config.port,
        timeout_graceful_shutdown=0,
        lifespan="on",
        log_config=None,
    )
    server_instance = uvicorn.Server(uvicorn_config)

    logger.info("transport.http.start", extra={"context": context})
    try:
        with temporary_log_level(level=config.log_level):
            await server_instance.serve()
    except KeyboardInterrupt:
        logger.info("transport.http.interrupted", extra={"context": context})
        raise
    except Exception:
        logger.exception("transport.http.failed", extra={"context": context})
        raise
    else:
        logger.info("transport.http.stop", extra={"context": context})


def build_http_app(
    server: Server,
    config: HttpTransportConfig,
    *,
    metrics: Callable[[], str] | None = None,
) -> Starlette:
    """Create a Starlette application exposing streamable HTTP, SSE, and metrics."""

    routes: list[BaseRoute] = []
    session_manager: StreamableHTTPSessionManager | None = None

    http_path = _normalise_path(config.http_path)
    sse_path = _normalise_path(config.sse_path)

    if config.enable_http:
        session_manager = StreamableHTTPSessionManager(
            app=server,
            event_store=None,
            json_response=False,
            stateless=False,
        )
        routes.append(
            Route(
                http_path,
                endpoint=StreamableHTTPASGIApp(session_manager),
                methods=["GET", "POST", "DELETE"],
            )
        )

    if config.enable_sse:
        routes.extend(_build_sse_routes(server, sse_path, _derive_message_path(sse_path)))

    if config.enable_metrics and metrics is not None:
        routes.append(_build_metrics_route(_normalise_path(config.metrics_path), metrics))

    @asynccontextmanager
    async def lifespan(_app):
        if session_manager is not None:
            async with session_manager.run():
                yield
        else:
            yield

    app = create_base_app(routes=routes, middleware=[], debug=False, lifespan=lifespan)
    app.state.mcp_server = server
    app.state.path = http_path if config.enable_http else sse_path
    return app


def _build_sse_routes(server: Server, sse_path: str, message_path: str) -> list[BaseRoute]:
    sse_transport = SseServerTransport(message_path)

    async def handle_sse(scope, receive, send):
        async with sse_transport.connect_sse(scope, receive, send) as streams:
            await server.run(
                streams[0],
                streams[1],
                server.create_initialization_options(),
            )
        return Response()

    async def sse_endpoint(request: Request) -> Response:
        return await handle_sse(request.scope, request.receive, request._send)  # type: ignore[attr-defined]

    return [
        Route(sse_path, endpoint=sse_endpoint, methods=["GET"]),
        Mount(message_path, app=sse_transport.handle_post_message),
    ]


def _build_metrics_route(path: str, metrics: Callable[[], str]) -> Route:
    async def metrics_endpoint(_request: Request) -> Response:
        try:
            body = metrics()
        except Exception:
            logger.exception("transport.http.metrics_failed")
            return PlainTextResponse("metrics unavailable\n", status_code=500)
        return Response(body, media_type=PROMETHEUS_CONTENT_TYPE)

    return Route(path, endpoint=metrics_endpoint, methods=["GET"])


def _normalise_path(path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/")
    return path


def _derive_message_path(sse_path: str) -> str:
    if sse_path == "/":
        return "/messages/"
    return f"{sse_path}/messages/"

