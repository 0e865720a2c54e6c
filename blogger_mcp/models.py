"""Domain models for tokens, blog posts, and registry bookkeeping."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Literal, Mapping, Sequence

TokenStatus = Literal["valid", "needs_refresh", "expired", "missing"]
PromptArgumentType = Literal["string", "number", "boolean", "array"]

_TOKEN_FIELDS = ("access_token", "refresh_token", "expiry_date", "scope", "token_type")


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""

    return int(time.time() * 1000)


@dataclass(slots=True)
class TokenSet:
    """OAuth credentials as persisted in the token file."""

    access_token: str | None = None
    refresh_token: str | None = None
    expiry_date: int | None = None
    scope: str | None = None
    token_type: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, issued_at_ms: int | None = None) -> "TokenSet":
        expiry = data.get("expiry_date")
        if expiry is None and data.get("expires_in") is not None:
            base = issued_at_ms if issued_at_ms is not None else now_ms()
            expiry = base + int(float(data["expires_in"]) * 1000)
        return cls(
            access_token=_optional_str(data.get("access_token")),
            refresh_token=_optional_str(data.get("refresh_token")),
            expiry_date=int(expiry) if expiry not in (None, "") else None,
            scope=_optional_str(data.get("scope")),
            token_type=_optional_str(data.get("token_type")),
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for name in _TOKEN_FIELDS:
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        return payload


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


@dataclass(slots=True)
class ClientSecrets:
    """OAuth client identity read from the Google client secret file."""

    client_id: str
    client_secret: str
    auth_uri: str = "https://accounts.google.com/o/oauth2/v2/auth"
    token_uri: str = "https://oauth2.googleapis.com/token"


@dataclass(slots=True)
class BlogPost:
    title: str
    content: str
    labels: list[str] = field(default_factory=list)
    is_draft: bool = True
    published: str | None = None
    additional_fields: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_arguments(cls, data: Mapping[str, Any]) -> "BlogPost":
        """Build a post from tool arguments, defaulting ``isDraft`` to true."""

        is_draft = data.get("isDraft")
        return cls(
            title=str(data["title"]),
            content=str(data["content"]),
            labels=[str(label) for label in data.get("labels") or []],
            is_draft=True if is_draft is None else bool(is_draft),
        )

    def to_resource(self) -> dict[str, Any]:
        resource: dict[str, Any] = {
            "title": self.title,
            "content": self.content,
            "labels": list(self.labels),
        }
        if self.published:
            resource["published"] = self.published
        resource.update(self.additional_fields)
        return resource


@dataclass(slots=True)
class BatchPostResult:
    success: bool
    title: str
    post_id: str | None = None
    url: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "title": self.title}
        if self.post_id is not None:
            payload["postId"] = self.post_id
        if self.url is not None:
            payload["url"] = self.url
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class PostListOptions:
    view: Literal["ADMIN", "AUTHOR", "READER"] | None = None
    start_date: str | None = None
    end_date: str | None = None
    labels: str | None = None
    max_results: int | None = None
    page_token: str | None = None
    status: Literal["draft", "live", "scheduled"] | None = None
    fetch_bodies: bool | None = None
    fetch_images: bool | None = None

    def to_params(self) -> dict[str, Any]:
        mapping = {
            "view": self.view,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "labels": self.labels,
            "maxResults": self.max_results,
            "pageToken": self.page_token,
            "status": self.status,
            "fetchBodies": self.fetch_bodies,
            "fetchImages": self.fetch_images,
        }
        params: dict[str, Any] = {}
        for key, value in mapping.items():
            if value is None:
                continue
            params[key] = str(value).lower() if isinstance(value, bool) else value
        return params


# --- registry variants -------------------------------------------------------


@dataclass(slots=True)
class ExecutionContext:
    """Per-call context handed to every registered handler."""

    kind: str
    operation_name: str
    request_id: str
    user_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ResourceRequest:
    """Input passed to resource handlers: the requested URI and template params."""

    uri: str
    params: dict[str, str] = field(default_factory=dict)


ToolHandler = Callable[[dict[str, Any], ExecutionContext], Awaitable[dict[str, Any]]]
ResourceHandler = Callable[[ResourceRequest, ExecutionContext], Awaitable[Any]]
PromptHandler = Callable[[dict[str, Any], ExecutionContext], Awaitable[dict[str, Any]]]


@dataclass(slots=True)
class ToolConfig:
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler
    service: str | None = None

    kind = "tool"

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


@dataclass(slots=True)
class ResourceConfig:
    name: str
    uri: str
    handler: ResourceHandler
    description: str = ""
    mime_type: str | None = None
    service: str | None = None

    kind = "resource"

    @property
    def is_template(self) -> bool:
        return "{" in self.uri or "*" in self.uri

    def describe(self) -> dict[str, Any]:
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }


@dataclass(slots=True)
class PromptArgument:
    name: str
    description: str = ""
    required: bool = False
    type: PromptArgumentType | None = None

    def describe(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "required": self.required}


@dataclass(slots=True)
class PromptConfig:
    name: str
    handler: PromptHandler
    description: str = ""
    arguments: Sequence[PromptArgument] = ()
    service: str | None = None

    kind = "prompt"

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [argument.describe() for argument in self.arguments],
        }


OperationConfig = ToolConfig | ResourceConfig | PromptConfig


@dataclass(slots=True)
class RegistryEntry:
    """Registered operation plus its runtime counters."""

    config: OperationConfig
    registered_at: datetime
    last_used: datetime | None = None
    usage_count: int = 0
    error_count: int = 0
    last_duration_ms: float | None = None


@dataclass(slots=True, frozen=True)
class OperationStats:
    name: str
    success: bool
    usage_count: int
    error_count: int
    registered_at: datetime
    last_used: datetime | None
    last_duration_ms: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "success": self.success,
            "usageCount": self.usage_count,
            "errorCount": self.error_count,
            "registeredAt": self.registered_at.isoformat(),
            "lastUsed": self.last_used.isoformat() if self.last_used else None,
            "lastDurationMs": self.last_duration_ms,
        }
