from __future__ import annotations

import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import httpx
import pytest

from blogger_mcp import load_config
from blogger_mcp.credentials import CredentialStore
from blogger_mcp.models import ClientSecrets, TokenSet, now_ms
from blogger_mcp.server import AppState, initialize_app, shutdown_app
from blogger_mcp.transports.http import HttpTransportConfig, build_http_app

BLOG_URL = "https://example.blogspot.com"


def _parse_sse_json(body: str) -> dict[str, object]:
    for line in body.splitlines():
        if line.startswith("data: "):
            return json.loads(line[6:])
    raise AssertionError(f"No data line found in SSE payload: {body!r}")


def _blogger_api(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/blogs/byurl"):
        return httpx.Response(200, json={"id": "blog-9", "name": "Example"})
    if request.method == "POST" and request.url.path.endswith("/blogs/blog-9/posts/"):
        title = json.loads(request.content)["title"]
        return httpx.Response(200, json={"id": "p1", "url": "https://example.blogspot.com/p1", "title": title})
    return httpx.Response(404, json={"error": {"code": 404, "message": "Not Found"}})


async def _no_interactive_flow() -> TokenSet:
    raise AssertionError("stored tokens should be used")


@asynccontextmanager
async def _app_state(tmp_path: Path) -> AsyncIterator[AppState]:
    argv = [
        "--client-secret-path",
        str(tmp_path / "client_secret.json"),
        "--blog-url",
        BLOG_URL,
        "--token-file",
        str(tmp_path / "tokens.json"),
        "--blog-id-cache-file",
        str(tmp_path / "blog_id_cache.json"),
        "--enable-http",
        "true",
        "--enable-metrics",
        "true",
    ]
    config = load_config(argv=argv, environ={})
    CredentialStore(config.token_file).save(
        TokenSet(access_token="stored", refresh_token="rt", expiry_date=now_ms() + 3_600_000)
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(_blogger_api))
    state = await initialize_app(
        config,
        ClientSecrets(client_id="cid", client_secret="cs"),
        client=client,
        flow=_no_interactive_flow,
    )
    try:
        yield state
    finally:
        await shutdown_app(state)


@asynccontextmanager
async def _http_test_client(state: AppState) -> AsyncIterator[tuple[httpx.AsyncClient, HttpTransportConfig]]:
    config = state.config
    http_config = HttpTransportConfig(
        host="127.0.0.1",
        port=0,
        http_path=config.http_path,
        sse_path=config.sse_path,
        metrics_path=config.metrics_path,
        enable_metrics=config.enable_metrics,
        enable_http=config.enable_http,
        enable_sse=config.enable_sse,
    )
    app = build_http_app(state.protocol, http_config, metrics=state.render_metrics)
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client, http_config


@pytest.mark.asyncio
async def test_startup_resolves_and_caches_blog_id(tmp_path: Path) -> None:
    async with _app_state(tmp_path) as state:
        result = await state.dispatcher.call_tool("blog-post", {"title": "Hello", "content": "<p>hi</p>"})

        assert result["isError"] is False
        assert result["content"][0]["text"] == (
            "Post created successfully!\nURL: https://example.blogspot.com/p1\nTitle: Hello"
        )
        assert [tool["name"] for tool in state.dispatcher.list_tools()] == [
            "blog-post",
            "blog-batch-post",
            "blog-list-posts",
            "blog-update-post",
            "blog-delete-post",
        ]

    cache = json.loads((tmp_path / "blog_id_cache.json").read_text(encoding="utf-8"))
    assert cache[BLOG_URL] == "blog-9"


@pytest.mark.asyncio
async def test_http_initialize_and_call_tool(tmp_path: Path) -> None:
    async with _app_state(tmp_path) as state, _http_test_client(state) as (client, config):
        base_headers = {"Accept": "application/json, text/event-stream"}
        init_payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "initialize",
            "params": {
                "protocolVersion": "2025-06-18",
                "capabilities": {},
                "clientInfo": {"name": "test-client", "version": "0.0.0"},
            },
        }
        init_response = await client.post(config.http_path, json=init_payload, headers=base_headers)
        assert init_response.status_code == 200
        session_id = init_response.headers["mcp-session-id"]
        init_event = _parse_sse_json(init_response.text)
        assert init_event["result"]["serverInfo"]["name"] == "blogger-mcp"

        call_headers = dict(base_headers)
        call_headers.update({"Content-Type": "application/json", "mcp-session-id": session_id})
        call_payload = {
            "jsonrpc": "2.0",
            "id": 2,
            "method": "tools/call",
            "params": {"name": "blog-post", "arguments": {"title": "Over HTTP", "content": "body"}},
        }
        call_response = await client.post(config.http_path, json=call_payload, headers=call_headers)
        assert call_response.status_code == 200
        call_event = _parse_sse_json(call_response.text)
        assert call_event["id"] == 2
        assert call_event["result"]["isError"] is False
        assert "Title: Over HTTP" in call_event["result"]["content"][0]["text"]

        metrics = await client.get(config.metrics_path)
        assert metrics.status_code == 200
        assert metrics.headers["content-type"].startswith("text/plain")
        assert 'blogger_mcp_operations_total{kind="tool",name="blog-post"} 1' in metrics.text
        assert "blogger_mcp_uptime_seconds" in metrics.text


@pytest.mark.asyncio
async def test_server_stats_resource_reports_tool_usage(tmp_path: Path) -> None:
    async with _app_state(tmp_path) as state:
        await state.dispatcher.call_tool("blog-delete-post", {"postId": "missing"})
        read = await state.dispatcher.read_resource("blogger://server/stats")

    stats = json.loads(read["contents"][0]["text"])
    assert stats["tool"]["operations"]["blog-delete-post"]["usageCount"] == 1
    assert stats["tool"]["summary"]["total"] == 5
