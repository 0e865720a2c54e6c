from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

import httpx
import pytest

from blogger_mcp.blogger import BLOGGER_API_BASE, BloggerService, resolve_blog_id
from blogger_mcp.credentials import BlogIdCache
from blogger_mcp.errors import CREDENTIAL_MISSING, REMOTE_ERROR, BloggerMcpError
from blogger_mcp.google_auth import AuthSession
from blogger_mcp.models import BlogPost, ClientSecrets, PostListOptions, TokenSet


class _Sleeper:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


def _service(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    token: str | None = "access-1",
) -> tuple[BloggerService, list[httpx.Request], _Sleeper]:
    seen: list[httpx.Request] = []

    def recorder(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    session = AuthSession(ClientSecrets(client_id="id", client_secret="secret"), client=client)
    if token:
        session.set_credentials(TokenSet(access_token=token))
    sleeper = _Sleeper()
    return BloggerService(session, client=client, sleep=sleeper), seen, sleeper


@pytest.mark.asyncio
async def test_create_post_sends_draft_flag_and_bearer_token() -> None:
    service, seen, _ = _service(
        lambda _r: httpx.Response(200, json={"id": "p1", "url": "https://blog/p1", "title": "Hello"})
    )

    created = await service.create_post("b1", BlogPost(title="Hello", content="<p>x</p>", labels=["a"]))

    request = seen[0]
    assert created["url"] == "https://blog/p1"
    assert request.method == "POST"
    assert request.url.path == "/blogger/v3/blogs/b1/posts/"
    assert request.url.params["isDraft"] == "true"
    assert request.url.params["fetchBody"] == "true"
    assert request.headers["Authorization"] == "Bearer access-1"
    assert json.loads(request.content) == {"title": "Hello", "content": "<p>x</p>", "labels": ["a"]}


@pytest.mark.asyncio
async def test_published_posts_omit_draft_flag() -> None:
    service, seen, _ = _service(lambda _r: httpx.Response(200, json={"id": "p2"}))

    await service.schedule_post("b1", BlogPost(title="Later", content="c"), "2030-01-01T00:00:00Z")

    assert "isDraft" not in seen[0].url.params
    assert json.loads(seen[0].content)["published"] == "2030-01-01T00:00:00Z"


@pytest.mark.asyncio
async def test_save_draft_forces_draft_flag() -> None:
    service, seen, _ = _service(lambda _r: httpx.Response(200, json={"id": "d1", "status": "DRAFT"}))

    saved = await service.save_draft("b1", BlogPost(title="Wip", content="c", is_draft=False))

    assert saved["id"] == "d1"
    assert seen[0].method == "POST"
    assert seen[0].url.params["isDraft"] == "true"
    assert json.loads(seen[0].content)["title"] == "Wip"


@pytest.mark.asyncio
async def test_list_update_delete_hit_expected_endpoints() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "DELETE":
            return httpx.Response(204)
        if request.method == "PUT":
            return httpx.Response(200, json={"id": "p1", "url": "https://blog/p1", "title": "New"})
        return httpx.Response(200, json={"items": [{"id": "p1"}], "nextPageToken": "next"})

    service, seen, _ = _service(handler)

    page = await service.list_posts("b1", PostListOptions(status="draft", max_results=5, fetch_bodies=False))
    updated = await service.update_post("b1", "p1", BlogPost(title="New", content="c"))
    deleted = await service.delete_post("b1", "p1")

    assert page["nextPageToken"] == "next"
    assert dict(seen[0].url.params) == {"status": "draft", "maxResults": "5", "fetchBodies": "false"}
    assert seen[1].method == "PUT"
    assert json.loads(seen[1].content)["id"] == "p1"
    assert updated["title"] == "New"
    assert deleted is True
    assert seen[2].url.path == "/blogger/v3/blogs/b1/posts/p1"


@pytest.mark.asyncio
async def test_remote_errors_carry_the_api_message() -> None:
    service, _, _ = _service(
        lambda _r: httpx.Response(403, json={"error": {"code": 403, "message": "We're sorry, but you don't have permission"}})
    )

    with pytest.raises(BloggerMcpError) as excinfo:
        await service.get_blog("b1")

    assert excinfo.value.code == REMOTE_ERROR
    assert excinfo.value.message == "We're sorry, but you don't have permission"
    assert excinfo.value.details["status"] == 403


@pytest.mark.asyncio
async def test_calls_without_token_fail_before_network() -> None:
    service, seen, _ = _service(lambda _r: httpx.Response(200, json={}), token=None)

    with pytest.raises(BloggerMcpError) as excinfo:
        await service.list_blogs()

    assert excinfo.value.code == CREDENTIAL_MISSING
    assert seen == []


@pytest.mark.asyncio
async def test_batch_isolates_failures_and_spaces_requests() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        title = json.loads(request.content)["title"]
        if title == "B":
            return httpx.Response(400, json={"error": {"message": "Invalid content"}})
        return httpx.Response(200, json={"id": f"id-{title}", "url": f"https://blog/{title}"})

    service, seen, sleeper = _service(handler)
    posts = [BlogPost(title=title, content="c") for title in ("A", "B", "C")]

    results = await service.batch_create_posts("b1", posts, delay=0.25)

    assert [(result.title, result.success) for result in results] == [("A", True), ("B", False), ("C", True)]
    assert sum(result.success for result in results) == 2
    assert results[1].error == "Invalid content"
    assert results[2].to_dict() == {"success": True, "title": "C", "postId": "id-C", "url": "https://blog/C"}
    assert len(seen) == 3
    assert sleeper.calls == [0.25, 0.25]


@pytest.mark.asyncio
async def test_retry_api_call_backs_off_exponentially() -> None:
    service, _, sleeper = _service(lambda _r: httpx.Response(200))
    attempts = {"n": 0}

    async def flaky() -> str:
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise BloggerMcpError(REMOTE_ERROR, "rate limited")
        return "done"

    assert await service.retry_api_call(flaky) == "done"
    assert sleeper.calls == [1.0, 2.0]

    async def always_failing() -> str:
        raise BloggerMcpError(REMOTE_ERROR, "down")

    with pytest.raises(BloggerMcpError):
        await service.retry_api_call(always_failing, max_retries=2)


@pytest.mark.asyncio
async def test_resolve_blog_id_prefers_config_then_cache_then_lookup(tmp_path: Path) -> None:
    service, seen, _ = _service(lambda _r: httpx.Response(200, json={"id": "looked-up"}))
    cache = BlogIdCache(tmp_path / "cache.json")

    assert await resolve_blog_id(service, cache, blog_url="https://x.blogspot.com", blog_id="configured") == "configured"
    assert seen == []

    assert await resolve_blog_id(service, cache, blog_url="https://x.blogspot.com", blog_id=None) == "looked-up"
    assert seen[0].url == httpx.URL(f"{BLOGGER_API_BASE}/blogs/byurl", params={"url": "https://x.blogspot.com"})
    assert cache.load("https://x.blogspot.com") == "looked-up"

    assert await resolve_blog_id(service, cache, blog_url="https://x.blogspot.com", blog_id=None) == "looked-up"
    assert len(seen) == 1
    assert await resolve_blog_id(service, cache, blog_url=None, blog_id=None) is None
