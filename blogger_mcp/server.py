"""Server entrypoint: credential bootstrap, registries, and transports."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

import httpx
from mcp.server.lowlevel import Server

from . import __version__
from .auth_flow import CallbackListener, obtain_credentials
from .blogger import BloggerService, resolve_blog_id
from .config import Config, ConfigError, load_client_secrets, load_config
from .credentials import BlogIdCache, CredentialStore
from .dispatch import Dispatcher, build_protocol_server
from .errors import BloggerMcpError
from .google_auth import AuthSession
from .lifecycle import Lifecycle
from .logging import configure_logging, get_logger
from .metrics import collect_stats, format_prometheus
from .models import ClientSecrets, TokenSet
from .registry import PromptRegistry, Registry, ResourceRegistry, ToolRegistry
from .tools import (
    BloggerContext,
    register_blogger_prompts,
    register_blogger_resources,
    register_blogger_tools,
    register_stats_resource,
)
from .transports import HttpTransportConfig, serve_http, serve_stdio

LOGGER = get_logger(__name__)

SERVER_NAME = "blogger-mcp"

Flow = Callable[[], Awaitable[TokenSet]]


@dataclass(slots=True)
class AppState:
    config: Config
    client: httpx.AsyncClient
    session: AuthSession
    service: BloggerService
    dispatcher: Dispatcher
    protocol: Server
    started_at: float

    @property
    def registries(self) -> dict[str, Registry]:
        return {
            "tool": self.dispatcher.tools,
            "resource": self.dispatcher.resources,
            "prompt": self.dispatcher.prompts,
        }

    def render_metrics(self) -> str:
        return format_prometheus(collect_stats(self.registries), time.monotonic() - self.started_at)


def build_dispatcher(ctx: BloggerContext) -> Dispatcher:
    """Create the three registries and register every Blogger operation."""

    tools = ToolRegistry(logger=get_logger("registry.tool"))
    resources = ResourceRegistry(logger=get_logger("registry.resource"))
    prompts = PromptRegistry(logger=get_logger("registry.prompt"))

    register_blogger_tools(tools, ctx)
    register_blogger_resources(resources, ctx)
    register_blogger_prompts(prompts)
    register_stats_resource(resources, {"tool": tools, "resource": resources, "prompt": prompts})
    return Dispatcher(tools, resources, prompts)


async def initialize_app(
    config: Config,
    secrets: ClientSecrets,
    *,
    client: httpx.AsyncClient | None = None,
    flow: Flow | None = None,
) -> AppState:
    """Obtain credentials, resolve the blog id, and assemble the protocol server."""

    http_client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))
    try:
        session = AuthSession(secrets, config.scopes, client=http_client, logger=get_logger("auth"))
        store = CredentialStore(config.token_file, logger=get_logger("credentials"))
        if flow is None:
            listener = CallbackListener(
                session,
                store,
                host=config.callback_host,
                port=config.callback_port,
                open_browser=config.open_browser,
                logger=get_logger("auth.flow"),
            )
            flow = listener.run
        await obtain_credentials(session, store, flow, logger=get_logger("auth"))

        service = BloggerService(session, client=http_client, logger=get_logger("blogger"))
        cache = BlogIdCache(config.blog_id_cache_file)
        blog_id = await resolve_blog_id(service, cache, blog_url=config.blog_url, blog_id=config.blog_id)
        LOGGER.info("Blog resolved", extra={"context": {"blog_id": blog_id, "blog_url": config.blog_url}})

        ctx = BloggerContext(
            service=service,
            session=session,
            store=store,
            blog_id=blog_id,
            batch_delay=config.batch_delay.total_seconds(),
        )
        dispatcher = build_dispatcher(ctx)
    except BaseException:
        if client is None:
            await http_client.aclose()
        raise

    return AppState(
        config=config,
        client=http_client,
        session=session,
        service=service,
        dispatcher=dispatcher,
        protocol=build_protocol_server(dispatcher, name=SERVER_NAME, version=__version__),
        started_at=time.monotonic(),
    )


async def run_transports(state: AppState) -> None:
    config = state.config
    jobs: list[Awaitable[Any]] = []
    if config.enable_stdio:
        jobs.append(serve_stdio(state.protocol))
    else:
        LOGGER.info("Stdio transport disabled")

    if config.enable_http or config.enable_sse or config.enable_metrics:
        http_config = HttpTransportConfig(
            host=config.http_host,
            port=config.http_port,
            http_path=config.http_path,
            sse_path=config.sse_path,
            metrics_path=config.metrics_path,
            enable_metrics=config.enable_metrics,
            enable_http=config.enable_http,
            enable_sse=config.enable_sse,
            log_level=config.log_level,
        )
        jobs.append(serve_http(state.protocol, http_config, metrics=state.render_metrics))
    else:
        LOGGER.info("HTTP/SSE transports disabled")

    if jobs:
        await asyncio.gather(*jobs)


async def shutdown_app(state: AppState) -> None:
    await state.service.aclose()
    await state.session.aclose()
    await state.client.aclose()
    LOGGER.info("Shutdown complete")


def build_lifecycle(config: Config, secrets: ClientSecrets, *, flow: Flow | None = None) -> Lifecycle[AppState]:
    async def _init() -> AppState:
        return await initialize_app(config, secrets, flow=flow)

    return Lifecycle(SERVER_NAME, init=_init, start=run_transports, stop=shutdown_app, logger=get_logger("lifecycle"))


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entrypoint for running the Blogger MCP server."""

    configure_logging()
    try:
        config = load_config(argv)
        secrets = load_client_secrets(config.client_secret_path)
    except ConfigError as exc:
        LOGGER.error("Invalid configuration", extra={"context": {"error": str(exc)}})
        raise SystemExit(1) from exc

    configure_logging(config.log_level)
    LOGGER.info(
        "Configuration loaded",
        extra={
            "context": {
                "token_file": str(config.token_file),
                "blog_url": config.blog_url,
                "blog_id": config.blog_id,
                "enable_stdio": config.enable_stdio,
                "enable_http": config.enable_http,
                "enable_sse": config.enable_sse,
                "enable_metrics": config.enable_metrics,
            }
        },
    )

    lifecycle = build_lifecycle(config, secrets)
    try:
        asyncio.run(lifecycle.run())
    except BloggerMcpError as exc:
        LOGGER.error(
            "Server failed",
            exc_info=exc,
            extra={"context": exc.to_dict()},
        )
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        LOGGER.info("Interrupted", extra={"context": {"state": lifecycle.state.value}})
    except Exception as exc:
        LOGGER.exception("Server failed", extra={"context": {"error": str(exc), "state": lifecycle.state.value}})
        raise SystemExit(1) from exc


if __name__ == "__main__":  # pragma: no cover - manual invocation only
    main()
