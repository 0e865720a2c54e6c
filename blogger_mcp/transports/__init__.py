"""Transport wiring for the Blogger MCP server."""

from __future__ import annotations

from .http import HttpTransportConfig, build_http_app, serve_http
from .stdio import serve_stdio

__all__ = [
    "HttpTransportConfig",
    "build_http_app",
    "serve_http",
    "serve_stdio",
]
