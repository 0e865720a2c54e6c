"""Blogger tools, resources, and prompts registered on the operation registries."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping

from .blogger import DEFAULT_BATCH_DELAY, BloggerService
from .credentials import CredentialStore, classify
from .errors import CONFIG_ERROR, CREDENTIAL_MISSING, REAUTH_REQUIRED, VALIDATION_ERROR, BloggerMcpError
from .google_auth import AuthSession
from .models import (
    BlogPost,
    ExecutionContext,
    PostListOptions,
    PromptArgument,
    PromptConfig,
    ResourceConfig,
    ResourceRequest,
    ToolConfig,
)
from .registry import PromptRegistry, Registry, ResourceRegistry, ToolRegistry

__all__ = [
    "NO_BLOG_ID_MESSAGE",
    "NO_CREDENTIAL_MESSAGE",
    "SERVICE_NAME",
    "BloggerContext",
    "register_blogger_prompts",
    "register_blogger_resources",
    "register_blogger_tools",
    "register_stats_resource",
    "text_result",
]

SERVICE_NAME = "blogger"

NO_CREDENTIAL_MESSAGE = "No credential: the authentication token is missing. Complete the Google sign-in first."
NO_BLOG_ID_MESSAGE = "No blog id configured on the server (set BLOG_ID or BLOG_URL)."

_POST_ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "description": "Post title."},
        "content": {"type": "string", "description": "Post body (HTML)."},
        "labels": {"type": "array", "items": {"type": "string"}, "description": "Labels to attach."},
        "isDraft": {"type": "boolean", "description": "Save as a draft (default: true)."},
    },
    "required": ["title", "content"],
}

BLOG_POST_SCHEMA: dict[str, Any] = dict(_POST_ITEM_SCHEMA)

BLOG_BATCH_POST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "posts": {
            "type": "array",
            "items": _POST_ITEM_SCHEMA,
            "description": "Posts to create, in order.",
        },
    },
    "required": ["posts"],
}

BLOG_LIST_POSTS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "status": {"type": "string", "enum": ["draft", "live", "scheduled"], "description": "Post status filter."},
        "labels": {"type": "string", "description": "Comma-separated label filter."},
        "maxResults": {"type": "integer", "minimum": 1, "maximum": 500, "description": "Page size."},
        "pageToken": {"type": "string", "description": "Continuation token from a previous call."},
    },
}

BLOG_UPDATE_POST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "postId": {"type": "string", "minLength": 1, "description": "Identifier of the post to update."},
        "title": {"type": "string", "description": "New title."},
        "content": {"type": "string", "description": "New body (HTML)."},
        "labels": {"type": "array", "items": {"type": "string"}, "description": "Replacement labels."},
    },
    "required": ["postId", "title", "content"],
}

BLOG_DELETE_POST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "postId": {"type": "string", "minLength": 1, "description": "Identifier of the post to delete."},
    },
    "required": ["postId"],
}


@dataclass(slots=True)
class BloggerContext:
    """Collaborators shared by the Blogger handlers."""

    service: BloggerService
    session: AuthSession
    store: CredentialStore
    blog_id: str | None
    batch_delay: float = DEFAULT_BATCH_DELAY


def text_result(text: str, *, is_error: bool = False) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


async def _authorize(ctx: BloggerContext) -> dict[str, Any] | None:
    """Install persisted tokens; return an error envelope when calls cannot proceed."""

    tokens = ctx.store.load()
    if tokens is None or not tokens.access_token:
        return text_result(NO_CREDENTIAL_MESSAGE, is_error=True)
    ctx.session.set_credentials(tokens)

    status = classify(tokens)
    if status == "missing":
        return text_result(NO_CREDENTIAL_MESSAGE, is_error=True)
    if status == "expired" or (status == "needs_refresh" and tokens.refresh_token):
        try:
            refreshed = await ctx.session.refresh()
        except BloggerMcpError as exc:
            if exc.code != REAUTH_REQUIRED:
                raise
            return text_result(f"Re-authentication required: {exc.message}", is_error=True)
        ctx.store.save(refreshed)

    if not ctx.blog_id:
        return text_result(NO_BLOG_ID_MESSAGE, is_error=True)
    return None


def register_blogger_tools(tools: ToolRegistry, ctx: BloggerContext) -> None:
    async def blog_post(params: dict[str, Any], _context: ExecutionContext) -> dict[str, Any]:
        blocked = await _authorize(ctx)
        if blocked is not None:
            return blocked
        post = BlogPost.from_arguments(params)
        try:
            created = await ctx.service.create_post(ctx.blog_id, post)
        except BloggerMcpError as exc:
            return text_result(f"Failed to create post: {exc.message}", is_error=True)
        return text_result(f"Post created successfully!\nURL: {created.get('url')}\nTitle: {created.get('title')}")

    async def blog_batch_post(params: dict[str, Any], _context: ExecutionContext) -> dict[str, Any]:
        blocked = await _authorize(ctx)
        if blocked is not None:
            return blocked
        posts = [BlogPost.from_arguments(item) for item in params["posts"]]
        try:
            results = await ctx.service.batch_create_posts(ctx.blog_id, posts, delay=ctx.batch_delay)
        except BloggerMcpError as exc:
            return text_result(f"Batch posting failed: {exc.message}", is_error=True)
        success_count = sum(1 for result in results if result.success)
        fail_count = len(results) - success_count
        return {
            "content": [
                {
                    "type": "text",
                    "text": f"Batch posting finished: {success_count} succeeded, {fail_count} failed",
                },
                {
                    "type": "text",
                    "text": json.dumps([result.to_dict() for result in results], indent=2, ensure_ascii=False),
                },
            ],
            "isError": fail_count > 0,
        }

    async def blog_list_posts(params: dict[str, Any], _context: ExecutionContext) -> dict[str, Any]:
        blocked = await _authorize(ctx)
        if blocked is not None:
            return blocked
        options = PostListOptions(
            status=params.get("status"),
            labels=params.get("labels"),
            max_results=params.get("maxResults"),
            page_token=params.get("pageToken"),
            fetch_bodies=False,
        )
        try:
            page = await ctx.service.list_posts(ctx.blog_id, options)
        except BloggerMcpError as exc:
            return text_result(f"Failed to list posts: {exc.message}", is_error=True)
        posts = [
            {
                "id": item.get("id"),
                "title": item.get("title"),
                "url": item.get("url"),
                "status": item.get("status"),
                "published": item.get("published"),
                "labels": item.get("labels") or [],
            }
            for item in page.get("items") or []
        ]
        summary: dict[str, Any] = {"posts": posts}
        if page.get("nextPageToken"):
            summary["nextPageToken"] = page["nextPageToken"]
        return {
            "content": [
                {"type": "text", "text": f"Found {len(posts)} posts"},
                {"type": "text", "text": json.dumps(summary, indent=2, ensure_ascii=False)},
            ],
            "isError": False,
        }

    async def blog_update_post(params: dict[str, Any], _context: ExecutionContext) -> dict[str, Any]:
        blocked = await _authorize(ctx)
        if blocked is not None:
            return blocked
        post = BlogPost(
            title=params["title"],
            content=params["content"],
            labels=list(params.get("labels") or []),
            is_draft=False,
        )
        try:
            updated = await ctx.service.update_post(ctx.blog_id, params["postId"], post)
        except BloggerMcpError as exc:
            return text_result(f"Failed to update post: {exc.message}", is_error=True)
        return text_result(f"Post updated successfully!\nURL: {updated.get('url')}\nTitle: {updated.get('title')}")

    async def blog_delete_post(params: dict[str, Any], _context: ExecutionContext) -> dict[str, Any]:
        blocked = await _authorize(ctx)
        if blocked is not None:
            return blocked
        try:
            await ctx.service.delete_post(ctx.blog_id, params["postId"])
        except BloggerMcpError as exc:
            return text_result(f"Failed to delete post: {exc.message}", is_error=True)
        return text_result(f"Post {params['postId']} deleted")

    tools.register(
        ToolConfig(
            name="blog-post",
            description="Create a new post on the configured Blogger blog.",
            input_schema=BLOG_POST_SCHEMA,
            handler=blog_post,
            service=SERVICE_NAME,
        )
    )
    tools.register(
        ToolConfig(
            name="blog-batch-post",
            description="Create several posts on the configured Blogger blog, one after another.",
            input_schema=BLOG_BATCH_POST_SCHEMA,
            handler=blog_batch_post,
            service=SERVICE_NAME,
        )
    )
    tools.register(
        ToolConfig(
            name="blog-list-posts",
            description="List posts on the configured Blogger blog.",
            input_schema=BLOG_LIST_POSTS_SCHEMA,
            handler=blog_list_posts,
            service=SERVICE_NAME,
        )
    )
    tools.register(
        ToolConfig(
            name="blog-update-post",
            description="Replace the title, content, and labels of an existing post.",
            input_schema=BLOG_UPDATE_POST_SCHEMA,
            handler=blog_update_post,
            service=SERVICE_NAME,
        )
    )
    tools.register(
        ToolConfig(
            name="blog-delete-post",
            description="Delete a post from the configured Blogger blog.",
            input_schema=BLOG_DELETE_POST_SCHEMA,
            handler=blog_delete_post,
            service=SERVICE_NAME,
        )
    )


async def _require_blog(ctx: BloggerContext) -> str:
    tokens = ctx.store.load()
    if classify(tokens) == "missing":
        raise BloggerMcpError(CREDENTIAL_MISSING, NO_CREDENTIAL_MESSAGE)
    ctx.session.set_credentials(tokens)
    if not ctx.blog_id:
        raise BloggerMcpError(CONFIG_ERROR, NO_BLOG_ID_MESSAGE)
    return ctx.blog_id


def register_blogger_resources(resources: ResourceRegistry, ctx: BloggerContext) -> None:
    async def blog_info(_request: ResourceRequest, _context: ExecutionContext) -> str:
        blog_id = await _require_blog(ctx)
        return json.dumps(await ctx.service.get_blog(blog_id), indent=2, ensure_ascii=False)

    async def post_by_id(request: ResourceRequest, _context: ExecutionContext) -> str:
        post_id = request.params.get("post_id")
        if not post_id:
            raise BloggerMcpError(VALIDATION_ERROR, "A post id is required: blogger://posts/{post_id}")
        blog_id = await _require_blog(ctx)
        post = await ctx.service.get_post(blog_id, post_id)
        return json.dumps(post, indent=2, ensure_ascii=False)

    resources.register(
        ResourceConfig(
            name="blog-info",
            uri="blogger://blog",
            description="Metadata of the configured blog.",
            mime_type="application/json",
            handler=blog_info,
            service=SERVICE_NAME,
        )
    )
    resources.register(
        ResourceConfig(
            name="post-by-id",
            uri="blogger://posts/{post_id}",
            description="A single post, addressed by post id.",
            mime_type="application/json",
            handler=post_by_id,
            service=SERVICE_NAME,
        )
    )


def register_stats_resource(resources: ResourceRegistry, registries: Mapping[str, Registry]) -> None:
    async def server_stats(_request: ResourceRequest, _context: ExecutionContext) -> str:
        payload = {
            kind: {
                "summary": registry.manager_stats(),
                "operations": {name: stats.to_dict() for name, stats in registry.stats_all().items()},
            }
            for kind, registry in registries.items()
        }
        return json.dumps(payload, indent=2)

    resources.register(
        ResourceConfig(
            name="server-stats",
            uri="blogger://server/stats",
            description="Usage and error counters of every registered operation.",
            mime_type="application/json",
            handler=server_stats,
        )
    )


def register_blogger_prompts(prompts: PromptRegistry) -> None:
    async def draft_post(params: dict[str, Any], _context: ExecutionContext) -> dict[str, Any]:
        lines = [f"Write a blog post about: {params['topic']}."]
        if params.get("tone"):
            lines.append(f"Use a {params['tone']} tone.")
        if params.get("labels"):
            lines.append(f"It will be published with the labels: {params['labels']}.")
        lines.append(
            "Return a title on the first line, then the body as HTML suitable for the blog-post tool."
        )
        return {
            "messages": [
                {"role": "user", "content": {"type": "text", "text": " ".join(lines)}},
            ]
        }

    prompts.register(
        PromptConfig(
            name="blog-post-draft",
            description="Draft a Blogger post ready to be published with blog-post.",
            arguments=[
                PromptArgument(name="topic", description="What the post is about.", required=True, type="string"),
                PromptArgument(name="tone", description="Writing tone, e.g. casual or formal.", type="string"),
                PromptArgument(name="labels", description="Comma-separated labels.", type="string"),
            ],
            handler=draft_post,
            service=SERVICE_NAME,
        )
    )
