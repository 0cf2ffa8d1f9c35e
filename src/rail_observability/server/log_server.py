"""MCP server entrypoint (stdio transport).

This module wires together:
- Tools: read and analyze rail output (log reading, health, correlation)
- Resources: addressable data blobs (health bands, component log tails)

Run locally (stdio):
    python -m rail_observability.server.log_server
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping, Sequence
from typing import Any

from mcp.server.fastmcp import FastMCP

from rail_observability.resources.registry import register_resources
from rail_observability.tools.rails import (
    assess_logs_impl,
    component_health_impl,
    correlate_rails_impl,
    read_log_impl,
)

LOGGER = logging.getLogger(__name__)

LOG_LEVEL_ENV = "RAIL_OBS_LOG_LEVEL"


def configure_logging() -> None:
    """Configure a reasonable default logging setup.

    The MCP client typically captures stderr; keeping logs concise makes them easier to consume.
    """
    level_name = os.getenv(LOG_LEVEL_ENV, "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


mcp = FastMCP("rail-observability", json_response=True)

register_resources(mcp)


@mcp.tool()
def read_log(
    log_path: str,
    levels: Sequence[str] | None = None,
    context_id: str | None = None,
    limit: int | None = None,
    include_context: bool = False,
) -> dict[str, Any]:
    """Return parsed entries from a logging-rail file.

    Parameters
    ----------
    log_path:
        Path to a component log (e.g., ~/.rail-observability/system/backup.log).
    levels:
        Filter by level names (e.g., ["failure", "error"]). Case-insensitive.
    context_id:
        Only return entries from one run.
    limit:
        Maximum number of entries returned, newest last (hard-capped in the implementation).
    include_context:
        Whether to include the captured system context for full-context entries.

    Returns
    -------
    dict:
        {"count": int, "entries": list[dict], "parse_error": str | None}
    """
    return read_log_impl(
        log_path=log_path,
        levels=levels,
        context_id=context_id,
        limit=limit,
        include_context=include_context,
    )


@mcp.tool()
def component_health(
    log_path: str,
    expected_impacts: Mapping[str, int] | None = None,
    latest_only: bool = True,
) -> dict[str, Any]:
    """Summarize a component's health and flag expected-vs-actual gaps.

    Parameters
    ----------
    log_path:
        Path to a component log.
    expected_impacts:
        Map of check name to the health delta it should produce when healthy.
    latest_only:
        When true, only the most recent run (last context id) is analyzed.
    """
    return component_health_impl(
        log_path=log_path,
        expected_impacts=expected_impacts,
        latest_only=latest_only,
    )


@mcp.tool()
def assess_logs(base_dir: str | None = None) -> dict[str, Any]:
    """Assess every component log under the base directory.

    Returns overall health, critical issues, warnings, recommendations and
    cross-component patterns.
    """
    return assess_logs_impl(base_dir=base_dir)


@mcp.tool()
def correlate_rails(log_path: str, debug_path: str) -> dict[str, Any]:
    """Join a log file and a debug file on their shared context ids.

    Returns per-context entry counts and the divergences the debugging rail
    recorded for each run.
    """
    return correlate_rails_impl(log_path=log_path, debug_path=debug_path)


def main(argv: Sequence[str] | None = None) -> None:
    """Start the MCP server over stdio."""
    configure_logging()
    LOGGER.debug("Starting MCP server (transport=stdio)")
    _ = argv or sys.argv[1:]
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
