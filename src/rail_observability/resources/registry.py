"""MCP resource registry.

Resources are addressable by URI and can be fetched by the MCP client on demand.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from rail_observability.core.config import RailConfig
from rail_observability.core.parsing import read_log_file
from rail_observability.core.writer import CATEGORIES
from rail_observability.tools.rails import entry_to_dict

TAIL_ENTRIES = 50


def _base_dir() -> Path:
    """Return the resolved base directory for log resources."""
    return RailConfig().base_dir().resolve()


def _safe_resolve(path: str) -> Path:
    """Resolve a path under the configured base directory."""
    base = _base_dir()
    p = Path(path).expanduser()
    if not p.is_absolute():
        p = base / p
    p = p.resolve()
    if base not in p.parents and p != base:
        raise ValueError("Path escapes base dir")
    return p


def _resolve_component_log(category: str, component: str) -> Path:
    if category not in CATEGORIES:
        allowed = ", ".join(CATEGORIES)
        raise ValueError(f"Unknown category '{category}'. Allowed: {allowed}.")
    ext = RailConfig().paths.log_extension
    resolved = _safe_resolve(f"{category}/{component}{ext}")
    if not resolved.is_file():
        raise FileNotFoundError(f"File not found: {resolved}")
    return resolved


def _tail(path: Path, count: int) -> dict[str, Any]:
    entries, error = read_log_file(path)
    return {
        "path": str(path),
        "entries": [entry_to_dict(e) for e in entries[-count:]],
        "parse_error": str(error) if error else None,
    }


def register_resources(mcp: FastMCP) -> None:
    """Register resource handlers on the MCP server."""

    @mcp.resource("rails://help")
    def help_resource() -> str:
        """Return a short list of available resource URIs."""
        return (
            "Resources:\n"
            "- rails://help\n"
            "- rails://health-ranges\n"
            f"- rails://log/{{category}}/{{component}} (last {TAIL_ENTRIES} entries; "
            f"category one of: {', '.join(CATEGORIES)})\n"
            f"\nBase directory: {_base_dir()}\n"
        )

    @mcp.resource("rails://health-ranges")
    def health_ranges() -> list[dict[str, Any]]:
        """Return the health bands used to label normalized scores."""
        return [r.model_dump() for r in RailConfig().health.ranges]

    @mcp.resource("rails://log/{category}/{component}")
    async def tail_log(category: str, component: str) -> dict[str, Any]:
        """Return the most recent entries of a component's log."""
        p = _resolve_component_log(category, component)
        return await asyncio.to_thread(_tail, p, TAIL_ENTRIES)
