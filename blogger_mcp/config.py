"""Configuration loading utilities for the Blogger MCP server."""

from __future__ import annotations

import argparse
import json
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Sequence

from .google_auth import BLOGGER_SCOPE
from .models import ClientSecrets

ENV_PREFIX = "BLOGGER_MCP_"

BOOL_TRUE = {"1", "true", "t", "yes", "y", "on"}
BOOL_FALSE = {"0", "false", "f", "no", "n", "off"}

DEFAULT_TOKEN_FILE = "./.blogger-tokens.json"
DEFAULT_BLOG_ID_CACHE_FILE = "./.blog_id_cache.json"
DEFAULT_CALLBACK_HOST = "localhost"
DEFAULT_CALLBACK_PORT = 0
DEFAULT_BATCH_DELAY = "1s"
DEFAULT_HTTP_HOST = "127.0.0.1"
DEFAULT_HTTP_PORT = 8765
DEFAULT_HTTP_PATH = "/mcp"
DEFAULT_SSE_PATH = "/sse"
DEFAULT_METRICS_PATH = "/metrics"
DEFAULT_LOG_LEVEL = "INFO"

T_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600}
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

ENV_FIELD_MAP = {
    "config_file": f"{ENV_PREFIX}CONFIG_FILE",
    "client_secret_path": f"{ENV_PREFIX}CLIENT_SECRET_PATH",
    "blog_url": f"{ENV_PREFIX}BLOG_URL",
    "blog_id": f"{ENV_PREFIX}BLOG_ID",
    "token_file": f"{ENV_PREFIX}TOKEN_FILE",
    "blog_id_cache_file": f"{ENV_PREFIX}BLOG_ID_CACHE_FILE",
    "scopes": f"{ENV_PREFIX}SCOPES",
    "callback_host": f"{ENV_PREFIX}CALLBACK_HOST",
    "callback_port": f"{ENV_PREFIX}CALLBACK_PORT",
    "open_browser": f"{ENV_PREFIX}OPEN_BROWSER",
    "batch_delay": f"{ENV_PREFIX}BATCH_DELAY",
    "enable_stdio": f"{ENV_PREFIX}ENABLE_STDIO",
    "enable_http": f"{ENV_PREFIX}ENABLE_HTTP",
    "enable_sse": f"{ENV_PREFIX}ENABLE_SSE",
    "enable_metrics": f"{ENV_PREFIX}ENABLE_METRICS",
    "http_host": f"{ENV_PREFIX}HTTP_HOST",
    "http_port": f"{ENV_PREFIX}HTTP_PORT",
    "http_path": f"{ENV_PREFIX}HTTP_PATH",
    "sse_path": f"{ENV_PREFIX}SSE_PATH",
    "metrics_path": f"{ENV_PREFIX}METRICS_PATH",
    "log_level": f"{ENV_PREFIX}LOG_LEVEL",
}

# Unprefixed names understood for compatibility with existing deployments.
# A prefixed variable always wins over its alias.
LEGACY_ENV_ALIASES = {
    "client_secret_path": "GOOGLE_CLIENT_SECRET_PATH",
    "blog_url": "BLOG_URL",
    "blog_id": "BLOG_ID",
    "callback_port": "PORT",
}

DEFAULT_VALUES: dict[str, Any] = {
    "config_file": None,
    "client_secret_path": None,
    "blog_url": None,
    "blog_id": None,
    "token_file": DEFAULT_TOKEN_FILE,
    "blog_id_cache_file": DEFAULT_BLOG_ID_CACHE_FILE,
    "scopes": BLOGGER_SCOPE,
    "callback_host": DEFAULT_CALLBACK_HOST,
    "callback_port": DEFAULT_CALLBACK_PORT,
    "open_browser": True,
    "batch_delay": DEFAULT_BATCH_DELAY,
    "enable_stdio": True,
    "enable_http": False,
    "enable_sse": False,
    "enable_metrics": False,
    "http_host": DEFAULT_HTTP_HOST,
    "http_port": DEFAULT_HTTP_PORT,
    "http_path": DEFAULT_HTTP_PATH,
    "sse_path": DEFAULT_SSE_PATH,
    "metrics_path": DEFAULT_METRICS_PATH,
    "log_level": DEFAULT_LOG_LEVEL,
}


class ConfigError(ValueError):
    """Raised when configuration values are invalid."""


@dataclass(slots=True)
class Config:
    """Configuration model for the Blogger MCP server."""

    client_secret_path: Path
    blog_url: str | None
    blog_id: str | None
    token_file: Path
    blog_id_cache_file: Path
    scopes: tuple[str, ...]
    callback_host: str
    callback_port: int
    open_browser: bool
    batch_delay: timedelta
    enable_stdio: bool
    enable_http: bool
    enable_sse: bool
    enable_metrics: bool
    http_host: str
    http_port: int
    http_path: str
    sse_path: str
    metrics_path: str
    log_level: str
    config_file: Path | None = None


def load_config(
    argv: Sequence[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from CLI arguments, environment variables, and optional file."""

    parser = _build_arg_parser()
    parsed = parser.parse_args(argv)
    cli_values = {k: v for k, v in vars(parsed).items() if v is not None}

    env_values = _extract_env_values(os.environ if environ is None else environ)

    config_path_value = cli_values.get("config_file") or env_values.get("config_file")
    file_values = _load_config_file(config_path_value)

    merged: dict[str, Any] = {}
    _merge_layer(merged, DEFAULT_VALUES)
    _merge_layer(merged, file_values)
    _merge_layer(merged, env_values)
    _merge_layer(merged, cli_values)

    config = _normalize_values(merged, config_path_value)

    _maybe_write_config_file(config)
    return config


def load_client_secrets(path: str | Path) -> ClientSecrets:
    """Read a Google OAuth client file (``installed`` or ``web`` application)."""

    secret_path = Path(path)
    try:
        data = json.loads(secret_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Client secret file not found: {secret_path}") from exc
    except OSError as exc:
        raise ConfigError(f"Client secret file could not be read: {secret_path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Client secret file is not valid JSON: {secret_path}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Client secret file must contain a JSON object")

    section = data.get("installed") or data.get("web") or data
    if not isinstance(section, dict):
        raise ConfigError("Client secret file must contain an 'installed' or 'web' object")
    client_id = section.get("client_id")
    client_secret = section.get("client_secret")
    if not client_id or not client_secret:
        raise ConfigError(f"Client secret file is missing client_id or client_secret: {secret_path}")

    secrets = ClientSecrets(client_id=str(client_id), client_secret=str(client_secret))
    if section.get("auth_uri"):
        secrets.auth_uri = str(section["auth_uri"])
    if section.get("token_uri"):
        secrets.token_uri = str(section["token_uri"])
    return secrets


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blogger-mcp",
        description="Blogger MCP server configuration flags.",
        add_help=False,
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("-h", "--help", action="help", help="Show this help message and exit.")
    parser.add_argument(
        "--config-file",
        dest="config_file",
        metavar="PATH",
        help="Path to a JSON configuration file. Default: none.",
    )
    parser.add_argument(
        "--client-secret-path",
        dest="client_secret_path",
        metavar="PATH",
        help="Google OAuth client secret JSON file (required).",
    )
    parser.add_argument(
        "--blog-url",
        dest="blog_url",
        metavar="URL",
        help="URL of the blog to manage; its id is resolved and cached on first start.",
    )
    parser.add_argument(
        "--blog-id",
        dest="blog_id",
        metavar="ID",
        help="Blog id to manage; takes precedence over --blog-url.",
    )
    parser.add_argument(
        "--token-file",
        dest="token_file",
        metavar="PATH",
        help=f"Where OAuth tokens are persisted (default: {DEFAULT_TOKEN_FILE}).",
    )
    parser.add_argument(
        "--blog-id-cache-file",
        dest="blog_id_cache_file",
        metavar="PATH",
        help=f"Cache of the blog id resolved from the blog URL (default: {DEFAULT_BLOG_ID_CACHE_FILE}).",
    )
    parser.add_argument(
        "--scopes",
        dest="scopes",
        metavar="LIST",
        help="Comma-separated OAuth scopes (default: the Blogger scope).",
    )

    parser.add_argument(
        "--callback-host",
        dest="callback_host",
        metavar="HOST",
        help=f"Host used in the OAuth redirect URI (default: {DEFAULT_CALLBACK_HOST}).",
    )
    parser.add_argument(
        "--callback-port",
        dest="callback_port",
        metavar="PORT",
        help="Port of the OAuth callback listener (default: 0, an ephemeral port).",
    )
    parser.add_argument(
        "--open-browser",
        dest="open_browser",
        metavar="BOOL",
        help="Open the consent page in a browser during sign-in (default: true).",
    )
    parser.add_argument(
        "--batch-delay",
        dest="batch_delay",
        metavar="DURATION",
        help=f"Pause between posts of a batch (default: {DEFAULT_BATCH_DELAY}).",
    )

    parser.add_argument(
        "--enable-stdio",
        dest="enable_stdio",
        metavar="BOOL",
        help="Enable the MCP stdio transport (default: true).",
    )
    parser.add_argument(
        "--enable-http",
        dest="enable_http",
        metavar="BOOL",
        help="Enable the MCP streamable HTTP endpoint (default: false).",
    )
    parser.add_argument(
        "--enable-sse",
        dest="enable_sse",
        metavar="BOOL",
        help="Enable the MCP SSE stream (default: false).",
    )
    parser.add_argument(
        "--enable-metrics",
        dest="enable_metrics",
        metavar="BOOL",
        help="Expose Prometheus metrics at /metrics (requires --enable-http true; default: false).",
    )
    parser.add_argument(
        "--http-host",
        dest="http_host",
        metavar="HOST",
        help=f"HTTP listener host (default: {DEFAULT_HTTP_HOST}).",
    )
    parser.add_argument(
        "--http-port",
        dest="http_port",
        metavar="PORT",
        help=f"HTTP listener port (default: {DEFAULT_HTTP_PORT}).",
    )
    parser.add_argument(
        "--http-path",
        dest="http_path",
        metavar="PATH",
        help=f"HTTP RPC path for MCP requests (default: {DEFAULT_HTTP_PATH}).",
    )
    parser.add_argument(
        "--sse-path",
        dest="sse_path",
        metavar="PATH",
        help=f"SSE stream path for MCP events (default: {DEFAULT_SSE_PATH}).",
    )
    parser.add_argument(
        "--metrics-path",
        dest="metrics_path",
        metavar="PATH",
        help=f"Metrics endpoint path (default: {DEFAULT_METRICS_PATH}).",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        metavar="LEVEL",
        help=f"Log level (default: {DEFAULT_LOG_LEVEL}).",
    )

    return parser


def _extract_env_values(env: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field, alias in LEGACY_ENV_ALIASES.items():
        if env.get(alias):
            values[field] = env[alias]
    for field, env_name in ENV_FIELD_MAP.items():
        if env_name in env:
            values[field] = env[env_name]
    return values


def _load_config_file(path_value: str | Path | None) -> dict[str, Any]:
    if not path_value:
        return {}
    path = _parse_path(path_value, field="config_file")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file is not valid JSON: {path}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a JSON object")
    result: dict[str, Any] = {k: v for k, v in data.items() if k in DEFAULT_VALUES}
    result["config_file"] = str(path)
    return result


def _merge_layer(base: MutableMapping[str, Any], overrides: Mapping[str, Any]) -> None:
    for key, value in overrides.items():
        if value is None:
            continue
        base[key] = value


def _normalize_values(values: Mapping[str, Any], config_path_value: str | Path | None) -> Config:
    client_secret_value = values.get("client_secret_path")
    if not client_secret_value:
        raise ConfigError(
            "client_secret_path is required (set --client-secret-path or "
            f"{ENV_FIELD_MAP['client_secret_path']} / {LEGACY_ENV_ALIASES['client_secret_path']})"
        )
    client_secret_path = _parse_path(client_secret_value, field="client_secret_path")

    blog_url = _optional_text(values.get("blog_url"))
    blog_id = _optional_text(values.get("blog_id"))
    if not blog_url and not blog_id:
        raise ConfigError(
            f"blog_url or blog_id is required (set {ENV_FIELD_MAP['blog_url']} / "
            f"{LEGACY_ENV_ALIASES['blog_url']} or {ENV_FIELD_MAP['blog_id']})"
        )

    token_file = _parse_path(values["token_file"], field="token_file")
    blog_id_cache_file = _parse_path(values["blog_id_cache_file"], field="blog_id_cache_file")
    scopes = _parse_scopes(values.get("scopes", DEFAULT_VALUES["scopes"]))

    callback_host = str(values.get("callback_host", DEFAULT_VALUES["callback_host"])).strip()
    if not callback_host:
        raise ConfigError("callback_host may not be empty")
    callback_port = _parse_int(values.get("callback_port", DEFAULT_VALUES["callback_port"]), field="callback_port", minimum=0, maximum=65535)
    open_browser = _parse_bool(values.get("open_browser"), default=DEFAULT_VALUES["open_browser"])
    batch_delay = _parse_duration(values.get("batch_delay", DEFAULT_VALUES["batch_delay"]), default_unit="s", field="batch_delay")

    enable_stdio = _parse_bool(values.get("enable_stdio"), default=DEFAULT_VALUES["enable_stdio"])
    enable_http = _parse_bool(values.get("enable_http"), default=DEFAULT_VALUES["enable_http"])
    enable_sse = _parse_bool(values.get("enable_sse"), default=DEFAULT_VALUES["enable_sse"])
    enable_metrics = _parse_bool(values.get("enable_metrics"), default=DEFAULT_VALUES["enable_metrics"])
    if enable_metrics and not enable_http:
        raise ConfigError("enable_metrics requires enable_http to be true")

    http_host = str(values.get("http_host", DEFAULT_VALUES["http_host"]))
    http_port = _parse_int(values.get("http_port", DEFAULT_VALUES["http_port"]), field="http_port", minimum=0, maximum=65535)
    http_path = str(values.get("http_path", DEFAULT_VALUES["http_path"]))
    sse_path = str(values.get("sse_path", DEFAULT_VALUES["sse_path"]))
    metrics_path = str(values.get("metrics_path", DEFAULT_VALUES["metrics_path"]))
    if http_path == sse_path:
        raise ConfigError("http_path and sse_path must be distinct")

    log_level = str(values.get("log_level", DEFAULT_VALUES["log_level"])).strip().upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of: {', '.join(sorted(LOG_LEVELS))}")

    config_file_path = _parse_optional_path(config_path_value, field="config_file")

    return Config(
        client_secret_path=client_secret_path,
        blog_url=blog_url,
        blog_id=blog_id,
        token_file=token_file,
        blog_id_cache_file=blog_id_cache_file,
        scopes=scopes,
        callback_host=callback_host,
        callback_port=callback_port,
        open_browser=open_browser,
        batch_delay=batch_delay,
        enable_stdio=enable_stdio,
        enable_http=enable_http,
        enable_sse=enable_sse,
        enable_metrics=enable_metrics,
        http_host=http_host,
        http_port=http_port,
        http_path=http_path,
        sse_path=sse_path,
        metrics_path=metrics_path,
        log_level=log_level,
        config_file=config_file_path,
    )


def _maybe_write_config_file(config: Config) -> None:
    path = config.config_file
    if path is None:
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        return

    payload = _serialize_config(config)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def _serialize_config(config: Config) -> dict[str, Any]:
    return {
        "config_file": str(config.config_file) if config.config_file else None,
        "client_secret_path": str(config.client_secret_path),
        "blog_url": config.blog_url,
        "blog_id": config.blog_id,
        "token_file": str(config.token_file),
        "blog_id_cache_file": str(config.blog_id_cache_file),
        "scopes": ",".join(config.scopes),
        "callback_host": config.callback_host,
        "callback_port": config.callback_port,
        "open_browser": config.open_browser,
        "batch_delay": _format_duration(config.batch_delay, preferred_unit="s"),
        "enable_stdio": config.enable_stdio,
        "enable_http": config.enable_http,
        "enable_sse": config.enable_sse,
        "enable_metrics": config.enable_metrics,
        "http_host": config.http_host,
        "http_port": config.http_port,
        "http_path": config.http_path,
        "sse_path": config.sse_path,
        "metrics_path": config.metrics_path,
        "log_level": config.log_level,
    }


def _format_duration(duration: timedelta, *, preferred_unit: str) -> str:
    total_seconds = duration.total_seconds()
    factor = T_DURATION_UNITS.get(preferred_unit, 1)
    if total_seconds.is_integer() and int(total_seconds) % factor == 0:
        return f"{int(total_seconds) // factor}{preferred_unit}"
    return f"{total_seconds:g}s"


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_scopes(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, Sequence):
        items = [str(item) for item in value]
    else:
        raise ConfigError(f"Invalid scopes: {value!r}")
    scopes = tuple(item.strip() for item in items if item.strip())
    if not scopes:
        raise ConfigError("scopes may not be empty")
    return scopes


def _parse_bool(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in BOOL_TRUE:
            return True
        if lowered in BOOL_FALSE:
            return False
    raise ConfigError(f"Invalid boolean value: {value!r}")


def _parse_int(value: Any, *, field: str, minimum: int | None = None, maximum: int | None = None) -> int:
    try:
        if isinstance(value, (int, float)):
            int_value = int(value)
        else:
            int_value = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid integer for {field}: {value!r}") from exc

    if minimum is not None and int_value < minimum:
        raise ConfigError(f"{field} must be >= {minimum}")
    if maximum is not None and int_value > maximum:
        raise ConfigError(f"{field} must be <= {maximum}")
    return int_value


def _parse_duration(value: Any, *, default_unit: str, field: str) -> timedelta:
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration for {field}: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
        if seconds < 0:
            raise ConfigError(f"{field} must be non-negative")
        return timedelta(seconds=seconds)
    if not isinstance(value, str):
        raise ConfigError(f"Invalid duration for {field}: {value!r}")

    stripped = value.strip()
    if not stripped:
        raise ConfigError(f"{field} may not be empty")

    unit = default_unit
    suffix = stripped[-1]
    number_part = stripped
    if suffix.lower() in T_DURATION_UNITS:
        unit = suffix.lower()
        number_part = stripped[:-1]
    try:
        amount = float(number_part)
    except ValueError as exc:
        raise ConfigError(f"{field} must be a non-negative number optionally suffixed with s, m, or h") from exc
    if amount < 0:
        raise ConfigError(f"{field} must be non-negative")
    return timedelta(seconds=amount * T_DURATION_UNITS[unit])


def _parse_path(value: Any, *, field: str) -> Path:
    if isinstance(value, Path):
        return value.expanduser().resolve()
    if not isinstance(value, str):
        raise ConfigError(f"Invalid path for {field}: {value!r}")
    stripped = value.strip()
    if not stripped:
        raise ConfigError(f"{field} may not be empty")
    return Path(stripped).expanduser().resolve()


def _parse_optional_path(value: Any, *, field: str) -> Path | None:
    if value in (None, ""):
        return None
    return _parse_path(value, field=field)
