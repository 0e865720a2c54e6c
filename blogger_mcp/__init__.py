"""Blogger MCP server package."""

__version__ = "0.1.0"

from .config import Config, load_config  # noqa: E402
from .logging import configure_logging  # noqa: E402

__all__ = [
    "Config",
    "__version__",
    "configure_logging",
    "load_config",
]
