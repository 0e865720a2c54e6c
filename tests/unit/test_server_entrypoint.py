from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from blogger_mcp import load_config, server
from blogger_mcp.config import ConfigError
from blogger_mcp.errors import REMOTE_ERROR, BloggerMcpError
from blogger_mcp.lifecycle import LifecycleState


def _write_secrets(tmp_path: Path) -> Path:
    path = tmp_path / "client_secret.json"
    path.write_text(json.dumps({"installed": {"client_id": "cid", "client_secret": "cs"}}), encoding="utf-8")
    return path


def _argv(tmp_path: Path, secrets: Path, *extra: str) -> list[str]:
    return [
        "--client-secret-path",
        str(secrets),
        "--blog-id",
        "b1",
        "--token-file",
        str(tmp_path / "tokens.json"),
        "--blog-id-cache-file",
        str(tmp_path / "cache.json"),
        *extra,
    ]


def test_main_exits_when_configuration_is_invalid(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(_argv: Any) -> None:
        raise ConfigError("client_secret_path is required")

    monkeypatch.setattr(server, "load_config", broken)

    with pytest.raises(SystemExit) as excinfo:
        server.main([])

    assert excinfo.value.code == 1


def test_main_exits_when_client_secrets_are_missing(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        server.main(_argv(tmp_path, tmp_path / "absent.json"))

    assert excinfo.value.code == 1


def test_main_exits_when_startup_fails(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    class FailingLifecycle:
        async def run(self) -> None:
            raise BloggerMcpError(REMOTE_ERROR, "Blog not found")

    captured: dict[str, Any] = {}

    def fake_build(config, secrets, **_kwargs):
        captured["config"] = config
        captured["secrets"] = secrets
        return FailingLifecycle()

    monkeypatch.setattr(server, "build_lifecycle", fake_build)

    with pytest.raises(SystemExit) as excinfo:
        server.main(_argv(tmp_path, _write_secrets(tmp_path)))

    assert excinfo.value.code == 1
    assert captured["config"].blog_id == "b1"
    assert captured["secrets"].client_id == "cid"


@pytest.mark.asyncio
async def test_run_transports_starts_enabled_transports(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[Any] = []

    async def fake_stdio(protocol) -> None:
        calls.append(("stdio", protocol))

    async def fake_http(protocol, http_config, *, metrics=None) -> None:
        calls.append(("http", protocol, http_config.port, http_config.enable_metrics, metrics))

    monkeypatch.setattr(server, "serve_stdio", fake_stdio)
    monkeypatch.setattr(server, "serve_http", fake_http)

    config = load_config(
        argv=_argv(
            tmp_path,
            _write_secrets(tmp_path),
            "--enable-http",
            "true",
            "--enable-metrics",
            "true",
            "--http-port",
            "9100",
        ),
        environ={},
    )

    class State:
        protocol = object()

        def render_metrics(self) -> str:
            return ""

    state = State()
    state.config = config  # type: ignore[attr-defined]

    await server.run_transports(state)  # type: ignore[arg-type]

    assert calls[0] == ("stdio", state.protocol)
    assert calls[1][:4] == ("http", state.protocol, 9100, True)
    assert calls[1][4]() == ""


@pytest.mark.asyncio
async def test_run_transports_with_everything_disabled(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def fail(*_args: Any, **_kwargs: Any) -> None:
        raise AssertionError("no transport should start")

    monkeypatch.setattr(server, "serve_stdio", fail)
    monkeypatch.setattr(server, "serve_http", fail)

    config = load_config(argv=_argv(tmp_path, _write_secrets(tmp_path), "--enable-stdio", "false"), environ={})

    class State:
        protocol = object()

    state = State()
    state.config = config  # type: ignore[attr-defined]

    await server.run_transports(state)  # type: ignore[arg-type]


@pytest.mark.parametrize("error", [OSError(98, "Address already in use"), ValueError("bad token file")])
def test_main_exits_on_unstructured_startup_errors(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, error: Exception
) -> None:
    class FailingLifecycle:
        state = LifecycleState.FAILED

        async def run(self) -> None:
            raise error

    monkeypatch.setattr(server, "build_lifecycle", lambda *_args, **_kwargs: FailingLifecycle())

    with pytest.raises(SystemExit) as excinfo:
        server.main(_argv(tmp_path, _write_secrets(tmp_path)))

    assert excinfo.value.code == 1
    assert excinfo.value.__cause__ is error
