"""Readers that rebuild entries from the rails' text files.

Both readers are line-oriented state machines: a bracketed header opens an
entry, section lines fill it, and the separator line closes it. When a line
cannot be understood the readers stop and report where; everything parsed
before that point is still returned.
"""

from __future__ import annotations

import json
import re
from collections.abc import AsyncIterator, Callable, Iterable
from pathlib import Path
from typing import Any, Generic, NamedTuple, TypeVar

import aiofiles

from .formatting import (
    ACTOR_KEY,
    BLOCK_INDENT,
    BLOCK_MARKER,
    CALL_SITE_KEY,
    CONTEXT_HEADER,
    CONTEXT_ID_KEY,
    DEBUG_HEADER_RE,
    DETAILS_HEADER,
    ENTRY_SEPARATOR,
    EVENT_KEY,
    FIELD_INDENT,
    HEADER_RE,
    HEALTH_RE,
    INTERACTIONS_HEADER,
    LABEL_KEY,
    METADATA_HEADER,
    SECTION_INDENT,
    SESSION_PREFIX,
    STATE_HEADER,
    decode_value,
    parse_timestamp,
)
from .models import (
    InspectionEntry,
    InspectionType,
    Interactions,
    LogEntry,
    LogLevel,
    Metadata,
    ShellContext,
    SudoersContext,
    SystemContext,
    SystemMetrics,
)

T = TypeVar("T")

_KEY_DECODER = json.JSONDecoder()


class LogParseError(ValueError):
    """A rail file stopped making sense at `line_no`."""

    def __init__(self, message: str, line_no: int, path: Path | None = None) -> None:
        self.reason = message
        self.line_no = line_no
        self.path = path
        where = f"{path}:{line_no}" if path is not None else f"line {line_no}"
        super().__init__(f"{where}: {message}")


class ParseResult(NamedTuple, Generic[T]):
    """Entries parsed so far, and the error that stopped parsing (if any)."""

    entries: list[T]
    error: LogParseError | None


class _EntryParser(Generic[T]):
    """Shared state machine; subclasses define the header and the keys."""

    header_re: re.Pattern[str]
    sections: frozenset[str] = frozenset()
    block_sections: frozenset[str] = frozenset()

    def __init__(self) -> None:
        self._open_line: int | None = None
        self._section: str | None = None
        self._block_key: str | None = None
        self._block_lines: list[str] = []

    @property
    def in_entry(self) -> bool:
        return self._open_line is not None

    def feed(self, line_no: int, line: str) -> T | None:
        """Consume one line (without newline); return an entry when one closes."""
        if not self.in_entry:
            if not line.strip() or line.startswith(SESSION_PREFIX):
                return None
            m = self.header_re.match(line)
            if m is None:
                raise LogParseError("content outside of an entry", line_no)
            self._reset()
            self._open_line = line_no
            self._start(m, line_no)
            return None

        if self._block_key is not None:
            if line.startswith(BLOCK_INDENT) or line == "":
                self._block_lines.append(line[len(BLOCK_INDENT) :])
                return None
            self._end_block()

        if line == ENTRY_SEPARATOR:
            entry = self._build(self._open_line)
            self._open_line = None
            return entry

        if not line.strip():
            return None

        if self.header_re.match(line):
            raise LogParseError(
                f"entry opened at line {self._open_line} was never closed", line_no
            )

        if line.startswith(FIELD_INDENT) and not line[len(FIELD_INDENT)].isspace():
            self._field_line(line_no, line[len(FIELD_INDENT) :])
        elif line.startswith(SECTION_INDENT) and not line[len(SECTION_INDENT)].isspace():
            self._section_line(line_no, line[len(SECTION_INDENT) :])
        else:
            raise LogParseError(f"unrecognized line {line!r}", line_no)
        return None

    def finish(self, last_line_no: int) -> None:
        """Raise if the input ended inside an entry."""
        if self.in_entry:
            raise LogParseError(
                f"truncated entry starting at line {self._open_line} (missing {ENTRY_SEPARATOR!r})",
                last_line_no,
            )

    def _reset(self) -> None:
        self._section = None
        self._block_key = None
        self._block_lines = []

    def _end_block(self) -> None:
        self._store(self._section, self._block_key, "\n".join(self._block_lines))
        self._block_key = None
        self._block_lines = []

    def _field_line(self, line_no: int, text: str) -> None:
        if self._section is None:
            raise LogParseError("field outside of a section", line_no)
        if text.startswith('"'):
            try:
                key, end = _KEY_DECODER.raw_decode(text)
            except json.JSONDecodeError as exc:
                raise LogParseError(f"malformed field key {text!r} in {self._section}", line_no) from exc
            sep, raw = text[end : end + 2], text[end + 2 :]
            if sep != ": " or not isinstance(key, str):
                raise LogParseError(f"malformed field {text!r} in {self._section}", line_no)
        else:
            key, sep, raw = text.partition(": ")
            if not sep:
                raise LogParseError(f"malformed field {text!r} in {self._section}", line_no)
        if raw == BLOCK_MARKER and self._section in self.block_sections:
            self._block_key = key
            self._block_lines = []
            return
        self._store(self._section, key, decode_value(raw))

    def _section_line(self, line_no: int, text: str) -> None:
        if text.endswith(":") and text[:-1] in self.sections:
            self._section = text[:-1]
            return
        self._section = None
        key, _, value = text.partition(":")
        if not self._key_line(line_no, key, value[1:] if value.startswith(" ") else value):
            raise LogParseError(f"unknown section {key!r}", line_no)

    def _start(self, m: re.Match[str], line_no: int) -> None:
        raise NotImplementedError

    def _key_line(self, line_no: int, key: str, value: str) -> bool:
        raise NotImplementedError

    def _store(self, section: str | None, key: str, value: Any) -> None:
        raise NotImplementedError

    def _build(self, line_no: int) -> T:
        raise NotImplementedError


class LogEntryParser(_EntryParser[LogEntry]):
    """State machine for logging-rail files."""

    header_re = HEADER_RE
    sections = frozenset({CONTEXT_HEADER, DETAILS_HEADER, INTERACTIONS_HEADER, METADATA_HEADER})
    block_sections = frozenset({DETAILS_HEADER})

    def _start(self, m: re.Match[str], line_no: int) -> None:
        try:
            self._timestamp = parse_timestamp(m.group("ts"))
        except ValueError as exc:
            raise LogParseError(f"bad timestamp {m.group('ts')!r}", line_no) from exc
        try:
            self._level = LogLevel(m.group("level"))
        except ValueError as exc:
            raise LogParseError(f"unknown level {m.group('level')!r}", line_no) from exc
        self._component = m.group("component")
        self._actor: str | None = None
        self._context_id: str | None = None
        self._event: str | None = None
        self._health: tuple[int, int, int] | None = None
        self._values: dict[str, dict[str, Any]] = {name: {} for name in self.sections}

    def _key_line(self, line_no: int, key: str, value: str) -> bool:
        if key == ACTOR_KEY:
            self._actor = value
        elif key == CONTEXT_ID_KEY:
            self._context_id = value
        elif key == EVENT_KEY:
            self._event = value
        elif key == "HEALTH":
            m = HEALTH_RE.match(f"{key}:{' ' if value else ''}{value}")
            if m is None:
                raise LogParseError(f"malformed HEALTH line {value!r}", line_no)
            self._health = (int(m.group("raw")), int(m.group("norm")), int(m.group("delta")))
        else:
            return False
        return True

    def _store(self, section: str | None, key: str, value: Any) -> None:
        self._values[section][key] = value

    def _build(self, line_no: int) -> LogEntry:
        missing = [
            name
            for name, val in (
                (ACTOR_KEY, self._actor),
                (CONTEXT_ID_KEY, self._context_id),
                (EVENT_KEY, self._event),
                ("HEALTH", self._health),
            )
            if val is None
        ]
        if missing:
            raise LogParseError(f"entry is missing {', '.join(missing)}", line_no)

        try:
            context = _build_context(self._values[CONTEXT_HEADER])
            interactions = _build_interactions(self._values[INTERACTIONS_HEADER])
            metadata = Metadata(**self._values[METADATA_HEADER]) if self._values[METADATA_HEADER] else None
        except (KeyError, TypeError, ValueError) as exc:
            raise LogParseError(f"malformed section: {exc}", line_no) from exc

        raw, normalized, delta = self._health
        return LogEntry(
            timestamp=self._timestamp,
            level=self._level,
            component=self._component,
            actor=self._actor,
            context_id=self._context_id,
            event=self._event,
            raw_health=raw,
            normalized_health=normalized,
            health_impact=delta,
            details=self._values[DETAILS_HEADER],
            context=context,
            interactions=interactions,
            metadata=metadata,
            line_no=line_no,
        )


def _build_context(values: dict[str, Any]) -> SystemContext | None:
    if not values:
        return None
    return SystemContext(
        user=values["user"],
        host=values["host"],
        pid=int(values["pid"]),
        cwd=values["cwd"],
        shell=ShellContext(**values.get("shell", {})),
        sudoers=SudoersContext(**values.get("sudoers", {})),
        system=SystemMetrics(**values.get("system", {})),
        environment=dict(values.get("environment", {})),
    )


def _build_interactions(values: dict[str, Any]) -> Interactions | None:
    if not values:
        return None
    return Interactions(
        concurrent=list(values.get("concurrent", [])),
        dependencies=dict(values.get("dependencies", {})),
        state_changes=dict(values.get("state_changes", {})),
    )


class InspectionEntryParser(_EntryParser[InspectionEntry]):
    """State machine for debugging-rail files."""

    header_re = DEBUG_HEADER_RE
    sections = frozenset({STATE_HEADER})
    block_sections = frozenset({STATE_HEADER})

    def _start(self, m: re.Match[str], line_no: int) -> None:
        try:
            self._timestamp = parse_timestamp(m.group("ts"))
        except ValueError as exc:
            raise LogParseError(f"bad timestamp {m.group('ts')!r}", line_no) from exc
        try:
            self._type = InspectionType(m.group("type"))
        except ValueError as exc:
            raise LogParseError(f"unknown entry type {m.group('type')!r}", line_no) from exc
        self._component = m.group("component")
        self._actor = m.group("actor")
        self._context_id = m.group("ctx")
        self._label: str | None = None
        self._call_site: str | None = None
        self._data: dict[str, Any] = {}

    def _key_line(self, line_no: int, key: str, value: str) -> bool:
        if key == LABEL_KEY:
            self._label = value
        elif key == CALL_SITE_KEY:
            self._call_site = value
        else:
            return False
        return True

    def _store(self, section: str | None, key: str, value: Any) -> None:
        self._data[key] = value

    def _build(self, line_no: int) -> InspectionEntry:
        if self._label is None:
            raise LogParseError(f"entry is missing {LABEL_KEY}", line_no)
        return InspectionEntry(
            timestamp=self._timestamp,
            type=self._type,
            component=self._component,
            actor=self._actor,
            context_id=self._context_id,
            label=self._label,
            call_site=self._call_site or "",
            data=self._data,
            line_no=line_no,
        )


def _parse_lines(
    lines: Iterable[str],
    parser: _EntryParser[T],
    path: Path | None,
) -> ParseResult[T]:
    entries: list[T] = []
    line_no = 0
    try:
        for line_no, line in enumerate(lines, start=1):
            entry = parser.feed(line_no, line.rstrip("\r\n"))
            if entry is not None:
                entries.append(entry)
        parser.finish(line_no)
    except LogParseError as exc:
        return ParseResult(entries, LogParseError(exc.reason, exc.line_no, path))
    return ParseResult(entries, None)


def _read(path: str | Path, factory: Callable[[], _EntryParser[T]]) -> ParseResult[T]:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Log file not found: {p}")
    with open(p, encoding="utf-8", errors="replace") as f:
        return _parse_lines(f, factory(), p)


async def _iter(path: str | Path, factory: Callable[[], _EntryParser[T]]) -> AsyncIterator[T]:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Log file not found: {p}")
    parser = factory()
    line_no = 0
    try:
        async with aiofiles.open(p, encoding="utf-8", errors="replace") as f:
            async for line in f:
                line_no += 1
                entry = parser.feed(line_no, line.rstrip("\r\n"))
                if entry is not None:
                    yield entry
        parser.finish(line_no)
    except LogParseError as exc:
        raise LogParseError(exc.reason, exc.line_no, p) from None


def parse_log_text(text: str) -> ParseResult[LogEntry]:
    return _parse_lines(text.splitlines(), LogEntryParser(), None)


def read_log_file(path: str | Path) -> ParseResult[LogEntry]:
    """Parse a logging-rail file; partial results survive a malformed entry."""
    return _read(path, LogEntryParser)


def read_debug_file(path: str | Path) -> ParseResult[InspectionEntry]:
    """Parse a debugging-rail file; partial results survive a malformed entry."""
    return _read(path, InspectionEntryParser)


async def iter_log_entries(path: str | Path) -> AsyncIterator[LogEntry]:
    """Yield entries as they are parsed; raise LogParseError where parsing stops."""
    async for entry in _iter(path, LogEntryParser):
        yield entry


async def iter_debug_entries(path: str | Path) -> AsyncIterator[InspectionEntry]:
    async for entry in _iter(path, InspectionEntryParser):
        yield entry
