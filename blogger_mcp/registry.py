"""Generic registration and execution engine for tools, resources, and prompts.

A single :class:`Registry` holds the shared lifecycle (register, execute,
statistics, removal). What differs between the three operation kinds is
captured by a :class:`RegistryStrategy`: how a configuration is checked, how
a lookup key resolves to an entry, how input is validated, and how the
handler's return value is wrapped for the protocol.
"""

from __future__ import annotations

import base64
import inspect
import logging
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping
from urllib.parse import urlsplit
from uuid import uuid4

from .errors import (
    ALREADY_REGISTERED,
    NOT_FOUND,
    VALIDATION_ERROR,
    BloggerMcpError,
    Outcome,
    normalize_error,
)
from .logging import get_logger
from .models import (
    ExecutionContext,
    OperationConfig,
    OperationStats,
    PromptArgument,
    PromptConfig,
    RegistryEntry,
    ResourceConfig,
    ResourceRequest,
    ToolConfig,
)
from .validation import (
    check_input_schema,
    match_uri_template,
    validate_input,
    validate_name,
    validate_prompt_arguments,
    validate_uri_or_template,
)

__all__ = [
    "PromptRegistry",
    "Registry",
    "RegistryStrategy",
    "ResourceRegistry",
    "ToolRegistry",
]

Resolved = tuple[RegistryEntry, dict[str, str]]


@dataclass(slots=True, frozen=True)
class RegistryStrategy:
    kind: str
    validate_config: Callable[[Any], None]
    resolve: Callable[["Registry", str], Resolved | None]
    prepare_input: Callable[[Any, str, Any, dict[str, str]], Any]
    wrap_result: Callable[[Any, str, Any], Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Registry:
    """Name-keyed operation registry with usage accounting."""

    def __init__(
        self,
        strategy: RegistryStrategy,
        *,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._strategy = strategy
        self._entries: dict[str, RegistryEntry] = {}
        self._logger = logger or get_logger(__name__)
        self._clock = clock

    @property
    def kind(self) -> str:
        return self._strategy.kind

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def entries(self) -> Iterator[RegistryEntry]:
        return iter(list(self._entries.values()))

    def register(self, config: OperationConfig) -> RegistryEntry:
        self._strategy.validate_config(config)
        if config.name in self._entries:
            raise BloggerMcpError(
                ALREADY_REGISTERED,
                f"{self._label} '{config.name}' is already registered",
                details={"kind": self.kind, "name": config.name},
            )
        entry = RegistryEntry(config=config, registered_at=self._clock())
        self._entries[config.name] = entry
        self._logger.info(
            f"registry.{self.kind}.registered",
            extra={"context": {"name": config.name, "service": config.service}},
        )
        return entry

    def unregister(self, name: str) -> bool:
        removed = self._entries.pop(name, None) is not None
        if removed:
            self._logger.info(f"registry.{self.kind}.unregistered", extra={"context": {"name": name}})
        else:
            self._logger.warning(f"registry.{self.kind}.unregister_missing", extra={"context": {"name": name}})
        return removed

    def get(self, name: str) -> OperationConfig | None:
        entry = self._entries.get(name)
        return entry.config if entry else None

    def has(self, name: str) -> bool:
        return name in self._entries

    def names(self) -> list[str]:
        return list(self._entries)

    def list(self) -> list[dict[str, Any]]:
        """Public metadata of every entry, in registration order."""

        return [entry.config.describe() for entry in self._entries.values()]

    def by_service(self, service: str) -> list[OperationConfig]:
        return [entry.config for entry in self._entries.values() if entry.config.service == service]

    async def execute(
        self,
        key: str,
        payload: Any = None,
        *,
        request_id: str | None = None,
        user_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Any:
        """Run the handler registered under ``key`` and return its wrapped result.

        Raises a :class:`BloggerMcpError` for unknown keys, invalid input,
        and handler failures. Counters are updated before anything is raised.
        """

        resolved = self._strategy.resolve(self, key)
        if resolved is None:
            raise BloggerMcpError(
                NOT_FOUND,
                f"{self._label} '{key}' not found",
                details={"kind": self.kind, "name": key},
            )
        entry, params = resolved
        config = entry.config

        entry.usage_count += 1
        entry.last_used = self._clock()
        context = ExecutionContext(
            kind=self.kind,
            operation_name=config.name,
            request_id=request_id or f"{self.kind}-{uuid4().hex}",
            user_id=user_id,
            metadata=dict(metadata or {}),
        )
        started = time.perf_counter()
        try:
            validated = self._strategy.prepare_input(config, key, payload, params)
            self._logger.debug(
                f"registry.{self.kind}.execute",
                extra={"context": {"name": config.name, "request_id": context.request_id}},
            )
            result = config.handler(validated, context)
            if inspect.isawaitable(result):
                result = await result
            return self._strategy.wrap_result(config, key, result)
        except Exception as exc:
            entry.error_count += 1
            error = normalize_error(exc)
            self._logger.error(
                f"registry.{self.kind}.failed",
                extra={
                    "context": {
                        "name": config.name,
                        "request_id": context.request_id,
                        "code": error.code,
                        "message": error.message,
                    }
                },
            )
            if error is exc:
                raise
            raise error from exc
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            entry.last_duration_ms = elapsed_ms
            self._logger.debug(
                f"registry.{self.kind}.duration",
                extra={"context": {"name": config.name, "elapsed_ms": round(elapsed_ms, 3)}},
            )

    async def try_execute(self, key: str, payload: Any = None, **kwargs: Any) -> Outcome[Any]:
        """Like :meth:`execute` but reports failures as an :class:`Outcome`."""

        try:
            return Outcome.success(await self.execute(key, payload, **kwargs))
        except BloggerMcpError as exc:
            return Outcome.failure(exc)

    def stats(self, name: str) -> OperationStats | None:
        entry = self._entries.get(name)
        if entry is None:
            return None
        return _entry_stats(entry)

    def stats_all(self) -> dict[str, OperationStats]:
        return {name: _entry_stats(entry) for name, entry in self._entries.items()}

    def manager_stats(self) -> dict[str, Any]:
        by_service: Counter[str] = Counter()
        total_executions = 0
        total_errors = 0
        for entry in self._entries.values():
            total_executions += entry.usage_count
            total_errors += entry.error_count
            by_service[entry.config.service or "default"] += 1
        return {
            "total": len(self._entries),
            "totalExecutions": total_executions,
            "totalErrors": total_errors,
            "byService": dict(by_service),
        }

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        self._logger.info(f"registry.{self.kind}.cleared", extra={"context": {"count": count}})
        return count

    def _find_by_name(self, name: str) -> RegistryEntry | None:
        return self._entries.get(name)

    @property
    def _label(self) -> str:
        return self.kind.capitalize()


def _entry_stats(entry: RegistryEntry) -> OperationStats:
    return OperationStats(
        name=entry.config.name,
        success=entry.error_count == 0 or entry.usage_count > entry.error_count,
        usage_count=entry.usage_count,
        error_count=entry.error_count,
        registered_at=entry.registered_at,
        last_used=entry.last_used,
        last_duration_ms=entry.last_duration_ms,
    )


def _require_handler(kind: str, handler: Any) -> None:
    if handler is None:
        raise BloggerMcpError(VALIDATION_ERROR, "Required field 'handler' is missing", details={"fields": ["handler"]})
    if not callable(handler):
        raise BloggerMcpError(
            VALIDATION_ERROR,
            f"{kind.capitalize()} handler must be a function",
            details={"fields": ["handler"]},
        )


def _require_type(kind: str, config: Any, expected: type) -> None:
    if not isinstance(config, expected):
        raise BloggerMcpError(
            VALIDATION_ERROR,
            f"{kind.capitalize()} configuration must be a {expected.__name__}",
        )


# --- tools -------------------------------------------------------------------


def _validate_tool_config(config: Any) -> None:
    _require_type("tool", config, ToolConfig)
    validate_name("tool", config.name)
    if not isinstance(config.description, str) or not config.description.strip():
        raise BloggerMcpError(
            VALIDATION_ERROR,
            "Required field 'description' is missing",
            details={"fields": ["description"]},
        )
    if config.input_schema is None:
        raise BloggerMcpError(
            VALIDATION_ERROR,
            "Required field 'inputSchema' is missing",
            details={"fields": ["inputSchema"]},
        )
    check_input_schema(config.input_schema)
    _require_handler("tool", config.handler)


def _resolve_by_name(registry: Registry, key: str) -> Resolved | None:
    entry = registry._find_by_name(key)
    return (entry, {}) if entry else None


def _prepare_tool_input(config: ToolConfig, _key: str, payload: Any, _params: dict[str, str]) -> Any:
    return validate_input(config.input_schema, payload)


def _passthrough(_config: Any, _key: str, result: Any) -> Any:
    return result


class ToolRegistry(Registry):
    """Callable operations validated against a JSON Schema."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(
            RegistryStrategy(
                kind="tool",
                validate_config=_validate_tool_config,
                resolve=_resolve_by_name,
                prepare_input=_prepare_tool_input,
                wrap_result=_passthrough,
            ),
            **kwargs,
        )


# --- resources ---------------------------------------------------------------


def _validate_resource_config(config: Any) -> None:
    _require_type("resource", config, ResourceConfig)
    validate_name("resource", config.name)
    if config.uri is None:
        raise BloggerMcpError(VALIDATION_ERROR, "Required field 'uri' is missing", details={"fields": ["uri"]})
    validate_uri_or_template(config.uri)
    _require_handler("resource", config.handler)


def _resolve_resource(registry: Registry, uri: str) -> Resolved | None:
    entries = list(registry.entries())
    for entry in entries:
        if entry.config.uri == uri:
            return entry, {}

    for entry in entries:
        if not entry.config.is_template:
            continue
        params = match_uri_template(entry.config.uri, uri)
        if params is not None:
            return entry, params

    name = _last_path_segment(uri)
    if name:
        entry = registry._find_by_name(name)
        if entry is not None:
            return entry, {}
    return None


def _last_path_segment(uri: str) -> str | None:
    try:
        parts = urlsplit(uri)
    except ValueError:
        return None
    # for custom schemes the host may be the only segment
    segments = [segment for segment in parts.path.split("/") if segment]
    if segments:
        return segments[-1]
    return parts.netloc or None


def _prepare_resource_input(_config: ResourceConfig, key: str, _payload: Any, params: dict[str, str]) -> ResourceRequest:
    return ResourceRequest(uri=key, params=dict(params))


def _wrap_resource_result(config: ResourceConfig, key: str, result: Any) -> dict[str, Any]:
    if isinstance(result, Mapping) and "contents" in result:
        return dict(result)
    if isinstance(result, str):
        content: dict[str, Any] = {"uri": key, "text": result}
    elif isinstance(result, (bytes, bytearray)):
        content = {"uri": key, "blob": base64.b64encode(bytes(result)).decode("ascii")}
    elif isinstance(result, list):
        return {"contents": list(result)}
    else:
        raise BloggerMcpError(
            VALIDATION_ERROR,
            f"Resource '{config.name}' returned an unsupported result type",
            details={"type": type(result).__name__},
        )
    if config.mime_type:
        content["mimeType"] = config.mime_type
    return {"contents": [content]}


class ResourceRegistry(Registry):
    """URI-addressed readable resources, including URI templates."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(
            RegistryStrategy(
                kind="resource",
                validate_config=_validate_resource_config,
                resolve=_resolve_resource,
                prepare_input=_prepare_resource_input,
                wrap_result=_wrap_resource_result,
            ),
            **kwargs,
        )

    def list_templates(self) -> list[dict[str, Any]]:
        return [entry.config.describe() for entry in self.entries() if entry.config.is_template]

    def list_concrete(self) -> list[dict[str, Any]]:
        return [entry.config.describe() for entry in self.entries() if not entry.config.is_template]


# --- prompts -----------------------------------------------------------------


def _validate_prompt_config(config: Any) -> None:
    _require_type("prompt", config, PromptConfig)
    validate_name("prompt", config.name)
    _require_handler("prompt", config.handler)
    arguments = config.arguments
    if not isinstance(arguments, (list, tuple)) or not all(isinstance(arg, PromptArgument) for arg in arguments):
        raise BloggerMcpError(
            VALIDATION_ERROR,
            "Prompt arguments must be a list of PromptArgument",
            details={"fields": ["arguments"]},
        )
    config.arguments = tuple(arguments)


def _prepare_prompt_input(config: PromptConfig, _key: str, payload: Any, _params: dict[str, str]) -> dict[str, Any]:
    return validate_prompt_arguments(config.arguments, payload)


def _wrap_prompt_result(config: PromptConfig, _key: str, result: Any) -> dict[str, Any]:
    if isinstance(result, Mapping):
        messages = result.get("messages")
        description = result.get("description") or config.description
    else:
        messages = result
        description = config.description
    if not isinstance(messages, list):
        raise BloggerMcpError(VALIDATION_ERROR, f"Prompt '{config.name}' must return a list of messages")
    return {"description": description, "messages": messages}


class PromptRegistry(Registry):
    """Argument-driven templates producing conversational messages."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(
            RegistryStrategy(
                kind="prompt",
                validate_config=_validate_prompt_config,
                resolve=_resolve_by_name,
                prepare_input=_prepare_prompt_input,
                wrap_result=_wrap_prompt_result,
            ),
            **kwargs,
        )
