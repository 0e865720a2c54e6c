"""Minimal stdio transport wiring."""

from __future__ import annotations

from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from ..logging import get_logger

logger = get_logger(__name__)


async def serve_stdio(server: Server) -> None:
    """Serve ``server`` over stdin/stdout until the client disconnects."""

    context = {"server": server.name}
    logger.info("transport.stdio.start", extra={"context": context})
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    except KeyboardInterrupt:
        logger.info("transport.stdio.interrupted", extra={"context": context})
        raise
    except Exception:
        logger.exception("transport.stdio.failed", extra={"context": context})
        raise
    else:
        logger.info("transport.stdio.stop", extra={"context": context})
