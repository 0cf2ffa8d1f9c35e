"""MCP tool implementations.

This module contains the *implementation* behind the exposed MCP tools.
Keep this layer thin: validate inputs, translate them into core calls, and
return JSON-serializable data structures.
"""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from dataclasses import asdict
from pathlib import Path
from typing import Any

from rail_observability.core.analysis import (
    analyze_component,
    assess_system,
    correlate_rails,
    discover_log_files,
    latest_run,
)
from rail_observability.core.config import RailConfig
from rail_observability.core.formatting import format_timestamp
from rail_observability.core.models import InspectionEntry, LogEntry, LogLevel
from rail_observability.core.parsing import read_debug_file, read_log_file

DEFAULT_LIMIT = 200
HARD_LIMIT = 5000
LIMIT_ENV = "RAIL_OBS_MCP_LIMIT"
ALL_LEVELS = [lvl.value for lvl in LogLevel]


def _resolve_limit(limit: int | None) -> int:
    if limit is None:
        env = os.getenv(LIMIT_ENV)
        if env:
            try:
                limit = int(env)
            except ValueError as exc:
                raise ValueError(f"{LIMIT_ENV} must be an integer") from exc
        else:
            limit = DEFAULT_LIMIT
    if limit <= 0:
        raise ValueError("limit must be > 0")
    return min(limit, HARD_LIMIT)


def _parse_levels(levels: Sequence[str] | None) -> set[LogLevel] | None:
    """Parse user-supplied level names into LogLevel enums."""
    if not levels:
        return None
    out: set[LogLevel] = set()
    for s in levels:
        name = s.strip().upper()
        if not name:
            continue
        try:
            out.add(LogLevel(name))
        except ValueError as e:
            valid = ", ".join(ALL_LEVELS)
            raise ValueError(
                f"Unknown log level '{s}'. Valid values: {valid}. "
                "Tip: levels is case-insensitive (e.g., 'failure', 'CHECK')."
            ) from e
    return out or None


def entry_to_dict(entry: LogEntry, *, include_context: bool = False) -> dict[str, Any]:
    """Convert a LogEntry into a JSON-serializable dict."""
    d: dict[str, Any] = {
        "timestamp": format_timestamp(entry.timestamp),
        "level": entry.level.value,
        "component": entry.component,
        "actor": entry.actor,
        "context_id": entry.context_id,
        "event": entry.event,
        "details": entry.details,
        "health": {
            "raw": entry.raw_health,
            "normalized": entry.normalized_health,
            "delta": entry.health_impact,
        },
        "line_no": entry.line_no,
    }
    if include_context and entry.context is not None:
        d["context"] = asdict(entry.context)
    if entry.interactions is not None:
        d["interactions"] = asdict(entry.interactions)
    if entry.metadata is not None:
        d["metadata"] = asdict(entry.metadata)
    return d


def debug_entry_to_dict(entry: InspectionEntry) -> dict[str, Any]:
    return {
        "timestamp": format_timestamp(entry.timestamp),
        "type": entry.type.value,
        "component": entry.component,
        "context_id": entry.context_id,
        "label": entry.label,
        "call_site": entry.call_site,
        "data": entry.data,
        "line_no": entry.line_no,
    }


def read_log_impl(
    *,
    log_path: str,
    levels: Sequence[str] | None = None,
    context_id: str | None = None,
    limit: int | None = None,
    include_context: bool = False,
) -> dict[str, Any]:
    """Implementation for the `read_log` MCP tool.

    Returns the last `limit` matching entries; a parse error is reported
    alongside whatever was parsed before it.
    """
    limit = _resolve_limit(limit)
    wanted = _parse_levels(levels)
    entries, error = read_log_file(log_path)

    matched = [
        e
        for e in entries
        if (wanted is None or e.level in wanted) and (context_id is None or e.context_id == context_id)
    ]
    matched = matched[-limit:]
    return {
        "count": len(matched),
        "entries": [entry_to_dict(e, include_context=include_context) for e in matched],
        "parse_error": str(error) if error else None,
    }


def component_health_impl(
    *,
    log_path: str,
    expected_impacts: Mapping[str, int] | None = None,
    latest_only: bool = True,
) -> dict[str, Any]:
    """Implementation for the `component_health` MCP tool."""
    entries, error = read_log_file(log_path)
    if latest_only:
        entries = latest_run(entries)
    name = entries[0].component if entries else Path(log_path).stem
    health = analyze_component(name, entries, expected_impacts)
    return {
        "component": health.name,
        "entries": len(health.entries),
        "final_health": health.final_health,
        "successes": health.success_count,
        "failures": health.failure_count,
        "errors": health.error_count,
        "checks": health.check_count,
        "operations": health.operation_count,
        "warnings": health.warning_count,
        "divergences": [asdict(d) for d in health.divergences],
        "parse_error": str(error) if error else None,
    }


def assess_logs_impl(*, base_dir: str | None = None) -> dict[str, Any]:
    """Implementation for the `assess_logs` MCP tool."""
    base = Path(base_dir) if base_dir else RailConfig().base_dir()
    components = {}
    parse_errors: dict[str, str] = {}
    for name, path in discover_log_files(base).items():
        entries, error = read_log_file(path)
        if error is not None:
            parse_errors[name] = str(error)
        components[name] = analyze_component(name, latest_run(entries))

    assessment = assess_system(components)
    return {
        "base_dir": str(base),
        "components": {
            name: {"final_health": c.final_health, "entries": len(c.entries)}
            for name, c in sorted(assessment.components.items())
        },
        "total_entries": assessment.total_entries,
        "overall_health": assessment.overall_health,
        "critical_issues": assessment.critical_issues,
        "warnings": assessment.warnings,
        "recommendations": assessment.recommendations,
        "patterns": assessment.patterns,
        "cross_component": assessment.cross_component,
        "parse_errors": parse_errors,
    }


def correlate_rails_impl(*, log_path: str, debug_path: str) -> dict[str, Any]:
    """Implementation for the `correlate_rails` MCP tool."""
    logs, log_error = read_log_file(log_path)
    debugs, debug_error = read_debug_file(debug_path)
    correlations, orphans = correlate_rails(logs, debugs)

    return {
        "contexts": [
            {
                "context_id": c.context_id,
                "component": c.component,
                "log_entries": len(c.log_entries),
                "debug_entries": len(c.debug_entries),
                "final_health": c.log_entries[-1].normalized_health if c.log_entries else None,
                "divergences": [debug_entry_to_dict(e) for e in c.divergences],
            }
            for c in correlations.values()
            if c.debug_entries
        ],
        "uncorrelated_contexts": sorted(cid for cid, c in correlations.items() if not c.debug_entries),
        "orphan_debug_entries": len(orphans),
        "parse_errors": [str(e) for e in (log_error, debug_error) if e is not None],
    }
