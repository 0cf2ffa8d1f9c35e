"""Text block format shared by the writers and the parsers.

Log entry layout::

    [<iso timestamp>] <LEVEL> <component>
      ACTOR: user@host:pid
      CONTEXT_ID: <id>
      CONTEXT:            (full-context levels only)
        <key>: <json>
      EVENT: <description>
      DETAILS:
        <key>: <json>
        <key>: |          (multi-line strings, body indented six spaces)
          ...
      INTERACTIONS:       (only when populated)
        <key>: <json>
      METADATA:           (only when populated)
        <key>: <json>
      HEALTH: raw=<int> normalized=<int>% delta=<signed int> (<indicator>)
    ---

Keys made of anything but word characters, `.` and `-` are written as JSON
strings. Strings that cannot survive as a `|` block body fall back to JSON.

Debug entries use the same bracketed header followed by `| actor | context id`,
then LABEL, CALL SITE and a STATE section.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import asdict, fields
from datetime import datetime
from typing import Any

from .config import HealthRange
from .health import health_indicator
from .models import InspectionEntry, Interactions, LogEntry, Metadata, SystemContext

ENTRY_SEPARATOR = "---"
SECTION_INDENT = "  "
FIELD_INDENT = "    "
BLOCK_INDENT = "      "
BLOCK_MARKER = "|"
SESSION_PREFIX = "# "

ACTOR_KEY = "ACTOR"
CONTEXT_ID_KEY = "CONTEXT_ID"
CONTEXT_HEADER = "CONTEXT"
EVENT_KEY = "EVENT"
DETAILS_HEADER = "DETAILS"
INTERACTIONS_HEADER = "INTERACTIONS"
METADATA_HEADER = "METADATA"
HEALTH_KEY = "HEALTH"
LABEL_KEY = "LABEL"
CALL_SITE_KEY = "CALL SITE"
STATE_HEADER = "STATE"

HEADER_RE = re.compile(r"^\[(?P<ts>[^\]]+)\] (?P<level>[A-Z_]+) (?P<component>\S+)$")
DEBUG_HEADER_RE = re.compile(
    r"^\[(?P<ts>[^\]]+)\] (?P<type>[A-Z_]+) (?P<component>\S+) \| (?P<actor>.*?) \| (?P<ctx>\S+)$"
)
HEALTH_RE = re.compile(
    r"^HEALTH: raw=(?P<raw>-?\d+) normalized=(?P<norm>-?\d+)% delta=(?P<delta>[+-]?\d+)(?: \(.*\))?$"
)


def format_timestamp(ts: datetime) -> str:
    return ts.isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    """Inverse of `format_timestamp`. Raises ValueError on bad input."""
    return datetime.fromisoformat(value.strip())


# Characters str.splitlines() breaks on that json.dumps leaves raw, plus lone
# surrogates, which cannot be written as UTF-8.
_RAW_UNSAFE_RE = re.compile("[\x85\u2028\u2029\ud800-\udfff]")
# Anything that would split or corrupt a `|` block body.
_BLOCK_UNSAFE_RE = re.compile("[\r\x0b\x0c\x1c-\x1e\x85\u2028\u2029\ud800-\udfff]")
SIMPLE_KEY_RE = re.compile(r"^[\w.\-]+$")


def _escape_raw(text: str) -> str:
    return _RAW_UNSAFE_RE.sub(lambda m: f"\\u{ord(m.group()):04x}", text)


def encode_value(value: Any) -> str:
    return _escape_raw(json.dumps(value, ensure_ascii=False, default=str))


def decode_value(text: str) -> Any:
    """Decode a JSON field value; hand-edited plain text comes back as a string."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def format_delta(delta: int) -> str:
    return f"+{delta}" if delta > 0 else str(delta)


def _single_line(text: str) -> str:
    return " ".join(text.splitlines())


def encode_key(key: Any) -> str:
    """Write simple keys bare; anything else as a JSON string."""
    key = str(key)
    if SIMPLE_KEY_RE.match(key):
        return key
    return _escape_raw(json.dumps(key, ensure_ascii=False))


def _blockable(value: Any) -> bool:
    return isinstance(value, str) and "\n" in value and _BLOCK_UNSAFE_RE.search(value) is None


def _write_fields(lines: list[str], data: Mapping[str, Any], *, blocks: bool = False) -> None:
    for raw_key, value in data.items():
        key = encode_key(raw_key)
        if blocks and _blockable(value):
            lines.append(f"{FIELD_INDENT}{key}: {BLOCK_MARKER}")
            lines.extend(f"{BLOCK_INDENT}{part}" for part in value.split("\n"))
        else:
            lines.append(f"{FIELD_INDENT}{key}: {encode_value(value)}")


def context_fields(ctx: SystemContext) -> dict[str, Any]:
    return {
        "user": ctx.user,
        "host": ctx.host,
        "pid": ctx.pid,
        "cwd": ctx.cwd,
        "shell": asdict(ctx.shell),
        "sudoers": asdict(ctx.sudoers),
        "system": asdict(ctx.system),
        "environment": dict(ctx.environment),
    }


def interaction_fields(interactions: Interactions) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if interactions.concurrent:
        out["concurrent"] = list(interactions.concurrent)
    if interactions.dependencies:
        out["dependencies"] = dict(interactions.dependencies)
    if interactions.state_changes:
        out["state_changes"] = dict(interactions.state_changes)
    return out


def metadata_fields(metadata: Metadata) -> dict[str, Any]:
    """Only the populated metadata fields."""
    return {f.name: getattr(metadata, f.name) for f in fields(metadata) if getattr(metadata, f.name)}


def format_entry(entry: LogEntry, ranges: Sequence[HealthRange] = ()) -> str:
    """Render a LogEntry as a text block terminated by the separator line."""
    lines = [
        f"[{format_timestamp(entry.timestamp)}] {entry.level.value} {entry.component}",
        f"{SECTION_INDENT}{ACTOR_KEY}: {entry.actor}",
        f"{SECTION_INDENT}{CONTEXT_ID_KEY}: {entry.context_id}",
    ]

    if entry.context is not None:
        lines.append(f"{SECTION_INDENT}{CONTEXT_HEADER}:")
        _write_fields(lines, context_fields(entry.context))

    lines.append(f"{SECTION_INDENT}{EVENT_KEY}: {_single_line(entry.event)}")

    if entry.details:
        lines.append(f"{SECTION_INDENT}{DETAILS_HEADER}:")
        _write_fields(lines, entry.details, blocks=True)

    if entry.interactions is not None and not entry.interactions.is_empty():
        lines.append(f"{SECTION_INDENT}{INTERACTIONS_HEADER}:")
        _write_fields(lines, interaction_fields(entry.interactions))

    if entry.metadata is not None:
        populated = metadata_fields(entry.metadata)
        if populated:
            lines.append(f"{SECTION_INDENT}{METADATA_HEADER}:")
            _write_fields(lines, populated)

    health = (
        f"{SECTION_INDENT}{HEALTH_KEY}: raw={entry.raw_health} "
        f"normalized={entry.normalized_health}% delta={format_delta(entry.health_impact)}"
    )
    if ranges:
        health += f" ({health_indicator(entry.normalized_health, ranges)})"
    lines.append(health)
    lines.append(ENTRY_SEPARATOR)
    return "\n".join(lines) + "\n"


def format_session_header(*, component: str, context_id: str, pid: int, started: datetime) -> str:
    lines = [
        "debug session",
        f"component: {component}",
        f"context_id: {context_id}",
        f"pid: {pid}",
        f"started: {format_timestamp(started)}",
    ]
    return "".join(f"{SESSION_PREFIX}{line}\n" for line in lines)


def format_inspection(entry: InspectionEntry) -> str:
    lines = [
        f"[{format_timestamp(entry.timestamp)}] {entry.type.value} {entry.component}"
        f" | {entry.actor} | {entry.context_id}",
        f"{SECTION_INDENT}{LABEL_KEY}: {_single_line(entry.label)}",
        f"{SECTION_INDENT}{CALL_SITE_KEY}: {entry.call_site}",
    ]
    if entry.data:
        lines.append(f"{SECTION_INDENT}{STATE_HEADER}:")
        _write_fields(lines, entry.data, blocks=True)
    lines.append(ENTRY_SEPARATOR)
    return "\n".join(lines) + "\n"
