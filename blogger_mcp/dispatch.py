"""Protocol-facing façade over the tool, resource, and prompt registries."""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Iterable, Mapping

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.shared.exceptions import McpError

from .errors import NOT_FOUND, VALIDATION_ERROR, BloggerMcpError, normalize_error
from .logging import get_logger
from .registry import PromptRegistry, ResourceRegistry, ToolRegistry

__all__ = [
    "RESOURCE_NOT_FOUND",
    "Dispatcher",
    "build_protocol_server",
    "to_mcp_error",
]

# MCP reserves -32002 for unknown resource URIs
RESOURCE_NOT_FOUND = -32002


def to_mcp_error(error: BloggerMcpError, *, resource: bool = False) -> McpError:
    if error.code == NOT_FOUND:
        code = RESOURCE_NOT_FOUND if resource else types.INVALID_PARAMS
    elif error.code == VALIDATION_ERROR:
        code = types.INVALID_PARAMS
    else:
        code = types.INTERNAL_ERROR
    return McpError(types.ErrorData(code=code, message=f"[{error.code}] {error.message}", data=error.to_dict()))


def _error_envelope(error: BloggerMcpError) -> dict[str, Any]:
    return {
        "content": [{"type": "text", "text": f"[{error.code}] {error.message}"}],
        "isError": True,
    }


def _tool_envelope(result: Any) -> dict[str, Any]:
    """Coerce a tool handler's return value into a ``{content, isError}`` envelope."""

    if isinstance(result, Mapping) and "content" in result:
        return {"content": list(result["content"]), "isError": bool(result.get("isError", False))}
    if isinstance(result, str):
        text = result
    else:
        text = json.dumps(result, indent=2, ensure_ascii=False, default=str)
    return {"content": [{"type": "text", "text": text}], "isError": False}


class Dispatcher:
    """Maps list/call/read/get requests onto the registries."""

    def __init__(
        self,
        tools: ToolRegistry,
        resources: ResourceRegistry,
        prompts: PromptRegistry,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.tools = tools
        self.resources = resources
        self.prompts = prompts
        self._logger = logger or get_logger(__name__)

    def list_tools(self) -> list[dict[str, Any]]:
        return self.tools.list()

    async def call_tool(self, name: str, arguments: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Execute a tool; failures come back as error envelopes, never as exceptions."""

        try:
            outcome = await self.tools.try_execute(name, dict(arguments or {}))
        except Exception as exc:
            outcome_error = normalize_error(exc)
            self._logger.exception("dispatch.tool.unexpected", extra={"context": {"name": name}})
            return _error_envelope(outcome_error)
        if not outcome.ok:
            return _error_envelope(outcome.error)
        try:
            return _tool_envelope(outcome.value)
        except (TypeError, ValueError) as exc:
            return _error_envelope(normalize_error(exc))

    def list_resources(self) -> list[dict[str, Any]]:
        return self.resources.list_concrete()

    def list_resource_templates(self) -> list[dict[str, Any]]:
        return self.resources.list_templates()

    async def read_resource(self, uri: str) -> dict[str, Any]:
        try:
            return await self.resources.execute(uri)
        except BloggerMcpError as exc:
            raise to_mcp_error(exc, resource=True) from exc

    def list_prompts(self) -> list[dict[str, Any]]:
        return self.prompts.list()

    async def get_prompt(self, name: str, arguments: Mapping[str, Any] | None = None) -> dict[str, Any]:
        try:
            return await self.prompts.execute(name, dict(arguments or {}))
        except BloggerMcpError as exc:
            raise to_mcp_error(exc) from exc


def _read_contents(contents: Iterable[Mapping[str, Any]]) -> list[ReadResourceContents]:
    converted: list[ReadResourceContents] = []
    for item in contents:
        mime_type = item.get("mimeType")
        if "blob" in item:
            converted.append(ReadResourceContents(content=base64.b64decode(item["blob"]), mime_type=mime_type))
        else:
            converted.append(ReadResourceContents(content=str(item.get("text", "")), mime_type=mime_type))
    return converted


def build_protocol_server(dispatcher: Dispatcher, *, name: str = "blogger-mcp", version: str | None = None) -> Server:
    """Wire ``dispatcher`` into a low-level MCP server usable by every transport."""

    server: Server = Server(name, version=version)

    @server.list_tools()
    async def _list_tools() -> list[types.Tool]:
        return [types.Tool.model_validate(item) for item in dispatcher.list_tools()]

    # input is validated by the registry so failures can become error envelopes
    @server.call_tool(validate_input=False)
    async def _call_tool(tool_name: str, arguments: dict[str, Any] | None) -> types.CallToolResult:
        return types.CallToolResult.model_validate(await dispatcher.call_tool(tool_name, arguments))

    @server.list_resources()
    async def _list_resources() -> list[types.Resource]:
        return [types.Resource.model_validate(item) for item in dispatcher.list_resources()]

    @server.list_resource_templates()
    async def _list_resource_templates() -> list[types.ResourceTemplate]:
        return [
            types.ResourceTemplate(
                uriTemplate=item["uri"],
                name=item["name"],
                description=item.get("description") or None,
                mimeType=item.get("mimeType"),
            )
            for item in dispatcher.list_resource_templates()
        ]

    @server.read_resource()
    async def _read_resource(uri: Any) -> list[ReadResourceContents]:
        result = await dispatcher.read_resource(str(uri))
        return _read_contents(result["contents"])

    @server.list_prompts()
    async def _list_prompts() -> list[types.Prompt]:
        return [types.Prompt.model_validate(item) for item in dispatcher.list_prompts()]

    @server.get_prompt()
    async def _get_prompt(prompt_name: str, arguments: dict[str, str] | None) -> types.GetPromptResult:
        return types.GetPromptResult.model_validate(await dispatcher.get_prompt(prompt_name, arguments))

    return server
