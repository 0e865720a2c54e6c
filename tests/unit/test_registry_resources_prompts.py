from __future__ import annotations

import base64
from typing import Any

import pytest

from blogger_mcp.errors import NOT_FOUND, VALIDATION_ERROR, BloggerMcpError
from blogger_mcp.models import ExecutionContext, PromptArgument, PromptConfig, ResourceConfig, ResourceRequest
from blogger_mcp.registry import PromptRegistry, ResourceRegistry


async def _describe(request: ResourceRequest, _ctx: ExecutionContext) -> str:
    return f"{request.uri}|{sorted(request.params.items())}"


def _resource(name: str, uri: str, handler: Any = _describe, **kwargs: Any) -> ResourceConfig:
    return ResourceConfig(name=name, uri=uri, handler=handler, **kwargs)


@pytest.mark.parametrize("uri", ["no-scheme", "blogger://posts/{id", "blogger://{a}/{a}", "blogger://{1bad}"])
def test_invalid_resource_uris_are_rejected(uri: str) -> None:
    registry = ResourceRegistry()

    with pytest.raises(BloggerMcpError) as excinfo:
        registry.register(_resource("res", uri))

    assert excinfo.value.code == VALIDATION_ERROR


@pytest.mark.asyncio
async def test_exact_uri_is_preferred_over_template() -> None:
    registry = ResourceRegistry()
    registry.register(_resource("by-id", "blogger://posts/{post_id}"))
    registry.register(_resource("latest", "blogger://posts/latest", handler=lambda _r, _c: "latest!"))

    exact = await registry.execute("blogger://posts/latest")
    templated = await registry.execute("blogger://posts/42")

    assert exact["contents"][0]["text"] == "latest!"
    assert templated["contents"][0]["text"] == "blogger://posts/42|[('post_id', '42')]"
    assert templated["contents"][0]["uri"] == "blogger://posts/42"


@pytest.mark.asyncio
async def test_wildcard_template_and_name_fallback() -> None:
    registry = ResourceRegistry()
    registry.register(_resource("files", "file:///data/*"))
    registry.register(_resource("stats", "blogger://server/stats", handler=lambda _r, _c: "ok"))

    wildcard = await registry.execute("file:///data/a/b.txt")
    by_name = await registry.execute("other://anything/stats")

    assert wildcard["contents"][0]["text"].startswith("file:///data/a/b.txt")
    assert by_name["contents"][0]["text"] == "ok"


@pytest.mark.asyncio
async def test_unknown_resource_raises_not_found() -> None:
    registry = ResourceRegistry()
    registry.register(_resource("by-id", "blogger://posts/{post_id}"))

    with pytest.raises(BloggerMcpError) as excinfo:
        await registry.execute("blogger://posts/1/comments")

    assert excinfo.value.code == NOT_FOUND


@pytest.mark.asyncio
async def test_resource_results_are_wrapped_by_type() -> None:
    registry = ResourceRegistry()
    registry.register(_resource("text", "mem://text", handler=lambda _r, _c: "hello", mime_type="text/plain"))
    registry.register(_resource("blob", "mem://blob", handler=lambda _r, _c: b"\x00\x01"))
    registry.register(
        _resource("raw", "mem://raw", handler=lambda _r, _c: {"contents": [{"uri": "mem://raw", "text": "as-is"}]})
    )
    registry.register(_resource("bad", "mem://bad", handler=lambda _r, _c: 42))

    text = await registry.execute("mem://text")
    blob = await registry.execute("mem://blob")
    raw = await registry.execute("mem://raw")

    assert text == {"contents": [{"uri": "mem://text", "text": "hello", "mimeType": "text/plain"}]}
    assert base64.b64decode(blob["contents"][0]["blob"]) == b"\x00\x01"
    assert raw == {"contents": [{"uri": "mem://raw", "text": "as-is"}]}
    with pytest.raises(BloggerMcpError) as excinfo:
        await registry.execute("mem://bad")
    assert excinfo.value.code == VALIDATION_ERROR
    assert registry.stats("bad").error_count == 1


def test_templates_and_concrete_resources_are_listed_separately() -> None:
    registry = ResourceRegistry()
    registry.register(_resource("blog", "blogger://blog", description="Blog"))
    registry.register(_resource("post", "blogger://posts/{post_id}"))

    assert [item["uri"] for item in registry.list_concrete()] == ["blogger://blog"]
    assert [item["uri"] for item in registry.list_templates()] == ["blogger://posts/{post_id}"]
    assert len(registry.list()) == 2


async def _greet(params: dict[str, Any], _ctx: ExecutionContext) -> dict[str, Any]:
    return {"messages": [{"role": "user", "content": {"type": "text", "text": f"Hello {params['who']}"}}]}


def _prompt(**overrides: Any) -> PromptConfig:
    values: dict[str, Any] = {
        "name": "greet",
        "description": "Say hello",
        "handler": _greet,
        "arguments": [
            PromptArgument(name="who", required=True, type="string"),
            PromptArgument(name="times", type="number"),
        ],
    }
    values.update(overrides)
    return PromptConfig(**values)


def test_prompt_arguments_must_be_declared_properly() -> None:
    registry = PromptRegistry()

    with pytest.raises(BloggerMcpError) as excinfo:
        registry.register(_prompt(arguments=[{"name": "who"}]))

    assert excinfo.value.code == VALIDATION_ERROR

    for arguments in (None, "who", PromptArgument(name="who")):
        with pytest.raises(BloggerMcpError) as excinfo:
            registry.register(_prompt(arguments=arguments))
        assert excinfo.value.code == VALIDATION_ERROR
        assert excinfo.value.details == {"fields": ["arguments"]}

    assert registry.names() == []


def test_prompt_arguments_are_kept_as_a_tuple() -> None:
    registry = PromptRegistry()

    registry.register(_prompt(arguments=[PromptArgument(name="who", required=True)]))

    assert registry.get("greet").arguments == (PromptArgument(name="who", required=True),)
    assert registry.list()[0]["arguments"] == [{"name": "who", "description": "", "required": True}]


def test_prompt_listing_describes_arguments() -> None:
    registry = PromptRegistry()
    registry.register(_prompt())

    assert registry.list() == [
        {
            "name": "greet",
            "description": "Say hello",
            "arguments": [
                {"name": "who", "description": "", "required": True},
                {"name": "times", "description": "", "required": False},
            ],
        }
    ]


@pytest.mark.asyncio
async def test_prompt_execution_validates_arguments() -> None:
    registry = PromptRegistry()
    registry.register(_prompt())

    result = await registry.execute("greet", {"who": "Ada"})
    assert result["description"] == "Say hello"
    assert result["messages"][0]["content"]["text"] == "Hello Ada"

    with pytest.raises(BloggerMcpError) as missing:
        await registry.execute("greet", {})
    assert missing.value.details == {"fields": ["who"]}

    with pytest.raises(BloggerMcpError) as wrong_type:
        await registry.execute("greet", {"who": "Ada", "times": True})
    assert wrong_type.value.message == "Argument 'times' must be a number"

    assert registry.stats("greet").usage_count == 3
    assert registry.stats("greet").error_count == 2


@pytest.mark.asyncio
async def test_prompt_returning_non_list_messages_fails() -> None:
    registry = PromptRegistry()
    registry.register(_prompt(name="broken", handler=lambda _p, _c: {"messages": "nope"}))

    with pytest.raises(BloggerMcpError) as excinfo:
        await registry.execute("broken", {"who": "x"})

    assert excinfo.value.code == VALIDATION_ERROR
