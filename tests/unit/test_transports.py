from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import pytest

from blogger_mcp.transports.http import HttpTransportConfig, build_http_app, describe_routes, serve_http
from blogger_mcp.transports.stdio import serve_stdio


def _http_config(**overrides: Any) -> HttpTransportConfig:
    values: dict[str, Any] = {
        "host": "127.0.0.1",
        "port": 0,
        "http_path": "/mcp",
        "sse_path": "/sse",
        "metrics_path": "/metrics",
        "enable_metrics": False,
        "enable_http": True,
        "enable_sse": False,
    }
    values.update(overrides)
    return HttpTransportConfig(**values)


class _DummyServer:
    name = "dummy"

    def __init__(self) -> None:
        self.runs: list[tuple[Any, Any, Any]] = []

    def create_initialization_options(self) -> str:
        return "init-options"

    async def run(self, read_stream: Any, write_stream: Any, options: Any) -> None:
        self.runs.append((read_stream, write_stream, options))


def test_describe_routes_respects_toggles() -> None:
    routes = describe_routes(_http_config(enable_http=False, enable_sse=True, enable_metrics=True, metrics_path="stats/"))

    assert "http" not in routes
    assert routes["sse"] == "/sse"
    assert routes["metrics"] == "/stats"


def test_build_http_app_registers_enabled_routes() -> None:
    app = build_http_app(
        _DummyServer(),  # type: ignore[arg-type]
        _http_config(enable_sse=True, enable_metrics=True),
        metrics=lambda: "",
    )

    paths = {getattr(route, "path", None) for route in app.routes}
    assert {"/mcp", "/sse", "/sse/messages", "/metrics"} <= paths
    assert app.state.path == "/mcp"


@pytest.mark.asyncio
async def test_serve_http_invokes_uvicorn(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    class DummyConfig:  # mimics uvicorn.Config signature
        def __init__(self, app, host, port, **kwargs):
            captured["app"] = app
            captured["host"] = host
            captured["port"] = port
            captured["kwargs"] = kwargs

    class DummyUvicorn:
        def __init__(self, config):
            captured["config"] = config

        async def serve(self) -> None:
            captured["served"] = True

    monkeypatch.setattr("blogger_mcp.transports.http.uvicorn.Config", DummyConfig)
    monkeypatch.setattr("blogger_mcp.transports.http.uvicorn.Server", DummyUvicorn)

    await serve_http(_DummyServer(), _http_config(port=8123))  # type: ignore[arg-type]

    assert captured["served"] is True
    assert captured["host"] == "127.0.0.1"
    assert captured["port"] == 8123
    assert captured["kwargs"]["lifespan"] == "on"


@pytest.mark.asyncio
async def test_serve_http_skips_when_everything_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail(*_args: Any, **_kwargs: Any) -> None:
        raise AssertionError("uvicorn should not be configured")

    monkeypatch.setattr("blogger_mcp.transports.http.uvicorn.Config", fail)

    await serve_http(_DummyServer(), _http_config(enable_http=False))  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_serve_stdio_runs_server_on_stdio_streams(monkeypatch: pytest.MonkeyPatch) -> None:
    @asynccontextmanager
    async def fake_stdio_server():
        yield ("reader", "writer")

    monkeypatch.setattr("blogger_mcp.transports.stdio.stdio_server", fake_stdio_server)
    server = _DummyServer()

    await serve_stdio(server)  # type: ignore[arg-type]

    assert server.runs == [("reader", "writer", "init-options")]
