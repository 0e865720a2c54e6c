"""Thin async client for the Blogger v3 REST API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence, TypeVar

import httpx

from .credentials import BlogIdCache
from .errors import CREDENTIAL_MISSING, REMOTE_ERROR, BloggerMcpError
from .google_auth import AuthSession
from .logging import get_logger
from .models import BatchPostResult, BlogPost, PostListOptions

__all__ = [
    "BLOGGER_API_BASE",
    "DEFAULT_BATCH_DELAY",
    "BloggerService",
    "resolve_blog_id",
]

BLOGGER_API_BASE = "https://www.googleapis.com/blogger/v3"
DEFAULT_BATCH_DELAY = 1.0

T = TypeVar("T")


class BloggerService:
    """Blog and post operations for the account held by an :class:`AuthSession`."""

    def __init__(
        self,
        session: AuthSession,
        *,
        client: httpx.AsyncClient | None = None,
        base_url: str = BLOGGER_API_BASE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._session = session
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        self._owns_client = client is None
        self._base_url = base_url.rstrip("/")
        self._sleep = sleep
        self._logger = logger or get_logger(__name__)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def list_blogs(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/users/self/blogs", action="list blogs")
        return list(data.get("items") or [])

    async def get_blog(self, blog_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/blogs/{blog_id}", action="get blog")

    async def get_blog_by_url(self, blog_url: str) -> dict[str, Any]:
        return await self._request("GET", "/blogs/byurl", params={"url": blog_url}, action="get blog by url")

    async def get_blog_id_by_url(self, blog_url: str) -> str:
        info = await self.get_blog_by_url(blog_url)
        blog_id = info.get("id") if info else None
        if not blog_id:
            raise BloggerMcpError(
                REMOTE_ERROR,
                "Could not find a blog id for the blog URL",
                details={"blog_url": blog_url},
            )
        return str(blog_id)

    async def list_posts(self, blog_id: str, options: PostListOptions | None = None) -> dict[str, Any]:
        params = (options or PostListOptions()).to_params()
        return await self._request("GET", f"/blogs/{blog_id}/posts", params=params, action="list posts")

    async def get_post(self, blog_id: str, post_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/blogs/{blog_id}/posts/{post_id}", action="get post")

    async def create_post(self, blog_id: str, post: BlogPost) -> dict[str, Any]:
        params: dict[str, Any] = {"fetchBody": "true", "fetchImages": "true"}
        if post.is_draft:
            params["isDraft"] = "true"
        data = await self._request(
            "POST",
            f"/blogs/{blog_id}/posts/",
            params=params,
            json=post.to_resource(),
            action="create post",
        )
        self._logger.info("blogger.post.created", extra={"context": {"url": data.get("url"), "draft": post.is_draft}})
        return data

    async def update_post(self, blog_id: str, post_id: str, post: BlogPost) -> dict[str, Any]:
        resource = {"id": post_id, **post.to_resource()}
        data = await self._request(
            "PUT",
            f"/blogs/{blog_id}/posts/{post_id}",
            json=resource,
            action="update post",
        )
        self._logger.info("blogger.post.updated", extra={"context": {"url": data.get("url")}})
        return data

    async def delete_post(self, blog_id: str, post_id: str) -> bool:
        await self._request("DELETE", f"/blogs/{blog_id}/posts/{post_id}", action="delete post")
        self._logger.info("blogger.post.deleted", extra={"context": {"post_id": post_id}})
        return True

    async def save_draft(self, blog_id: str, post: BlogPost) -> dict[str, Any]:
        post.is_draft = True
        return await self.create_post(blog_id, post)

    async def schedule_post(self, blog_id: str, post: BlogPost, publish_at: str) -> dict[str, Any]:
        """Create a post whose ``published`` timestamp (RFC 3339) lies in the future."""

        post.published = publish_at
        post.is_draft = False
        return await self.create_post(blog_id, post)

    async def batch_create_posts(
        self,
        blog_id: str,
        posts: Sequence[BlogPost],
        *,
        delay: float = DEFAULT_BATCH_DELAY,
    ) -> list[BatchPostResult]:
        """Create posts one at a time; a failing post does not stop the rest."""

        results: list[BatchPostResult] = []
        for index, post in enumerate(posts):
            if index and delay > 0:
                await self._sleep(delay)
            try:
                created = await self.create_post(blog_id, post)
            except Exception as exc:
                message = exc.message if isinstance(exc, BloggerMcpError) else str(exc)
                results.append(BatchPostResult(success=False, title=post.title, error=message))
                continue
            results.append(
                BatchPostResult(
                    success=True,
                    title=post.title,
                    post_id=_optional_str(created.get("id")),
                    url=_optional_str(created.get("url")),
                )
            )
        return results

    async def retry_api_call(self, call: Callable[[], Awaitable[T]], *, max_retries: int = 3) -> T:
        """Retry ``call`` with exponential backoff (1s, 2s, 4s, ...)."""

        attempt = 0
        while True:
            try:
                return await call()
            except BloggerMcpError:
                attempt += 1
                if attempt >= max_retries:
                    raise
                delay = float(2 ** (attempt - 1))
                self._logger.info("blogger.retry", extra={"context": {"attempt": attempt, "delay": delay}})
                await self._sleep(delay)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        action: str,
    ) -> dict[str, Any]:
        token = self._session.access_token
        if not token:
            raise BloggerMcpError(CREDENTIAL_MISSING, "No credential available. Complete the Google sign-in first.")
        try:
            response = await self._client.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            self._logger.error("blogger.request.failed", extra={"context": {"action": action, "error": str(exc)}})
            raise BloggerMcpError(REMOTE_ERROR, f"Failed to {action}: {exc}") from exc

        if not response.is_success:
            message = _api_error_message(response)
            self._logger.error(
                "blogger.request.rejected",
                extra={"context": {"action": action, "status": response.status_code, "message": message}},
            )
            raise BloggerMcpError(
                REMOTE_ERROR,
                message,
                details={"status": response.status_code, "action": action},
            )
        if response.status_code == 204 or not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise BloggerMcpError(REMOTE_ERROR, f"Failed to {action}: invalid JSON response") from exc
        return payload if isinstance(payload, dict) else {"items": payload}


def _api_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text or f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return str(body.get("error_description") or error)
    return f"HTTP {response.status_code}"


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


async def resolve_blog_id(
    service: BloggerService,
    cache: BlogIdCache,
    *,
    blog_url: str | None,
    blog_id: str | None,
) -> str | None:
    """Return the configured id, else a cached id for ``blog_url``, else look it up."""

    if blog_id:
        return blog_id
    if not blog_url:
        return None
    cached = cache.load(blog_url)
    if cached:
        return cached
    resolved = await service.get_blog_id_by_url(blog_url)
    cache.save(blog_url, resolved)
    return resolved
