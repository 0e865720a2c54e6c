"""Prometheus rendering of registry usage counters."""

from __future__ import annotations

from typing import Mapping

from .models import OperationStats
from .registry import Registry

__all__ = ["collect_stats", "format_prometheus"]


def collect_stats(registries: Mapping[str, Registry]) -> dict[str, dict[str, OperationStats]]:
    """Snapshot ``stats_all()`` of every registry, keyed by operation kind."""

    return {kind: registry.stats_all() for kind, registry in registries.items()}


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def format_prometheus(
    stats_by_kind: Mapping[str, Mapping[str, OperationStats]],
    uptime_seconds: float,
) -> str:
    """Render metrics using Prometheus exposition format (text, version 0.0.4)."""

    lines: list[str] = []

    lines.append("# HELP blogger_mcp_operations_total Executions attempted per registered operation.")
    lines.append("# TYPE blogger_mcp_operations_total counter")
    for kind in sorted(stats_by_kind):
        for name in sorted(stats_by_kind[kind]):
            stats = stats_by_kind[kind][name]
            lines.append(f'blogger_mcp_operations_total{{kind="{kind}",name="{_escape(name)}"}} {stats.usage_count}')

    lines.append("# HELP blogger_mcp_errors_total Failed executions per registered operation.")
    lines.append("# TYPE blogger_mcp_errors_total counter")
    for kind in sorted(stats_by_kind):
        for name in sorted(stats_by_kind[kind]):
            stats = stats_by_kind[kind][name]
            lines.append(f'blogger_mcp_errors_total{{kind="{kind}",name="{_escape(name)}"}} {stats.error_count}')

    lines.append("# HELP blogger_mcp_registered Registered operations per kind.")
    lines.append("# TYPE blogger_mcp_registered gauge")
    for kind in sorted(stats_by_kind):
        lines.append(f'blogger_mcp_registered{{kind="{kind}"}} {len(stats_by_kind[kind])}')

    lines.append("# HELP blogger_mcp_uptime_seconds Server uptime in seconds.")
    lines.append("# TYPE blogger_mcp_uptime_seconds gauge")
    lines.append(f"blogger_mcp_uptime_seconds {uptime_seconds:.6f}")

    return "\n".join(lines) + "\n"
