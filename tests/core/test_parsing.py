from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from rail_observability.core.logger import Logger
from rail_observability.core.models import LogLevel
from rail_observability.core.parsing import (
    LogParseError,
    iter_log_entries,
    parse_log_text,
    read_debug_file,
    read_log_file,
)

HAND_WRITTEN = """\
[2026-10-19T12:00:00.123456+00:00] OPERATION build
  ACTOR: alice@box:4242
  CONTEXT_ID: build-4242-1760875200123456789
  CONTEXT:
    user: "alice"
    host: "box"
    pid: 4242
    cwd: "/home/alice"
    shell: {"type": "bash", "interactive": false, "login": false}
    sudoers: {"installed": false, "valid": false, "permissions": "unknown"}
    system: {"load": "0.10, 0.20, 0.30", "memory": "unknown", "disk": "unknown"}
    environment: {"EDITOR": "vim"}
  EVENT: Starting operation: make
  DETAILS:
    command: "make all"
    output: |
      line one
      line two
  INTERACTIONS:
    concurrent: ["indexer"]
  METADATA:
    operation_type: "build"
  HEALTH: raw=10 normalized=50% delta=+10 (❤️ Average - mixed results)
---
"""


def _write_entries(logger: Logger, n: int) -> None:
    for i in range(n):
        logger.check(f"step {i}", True, 1, {"i": i})


def test_parse_hand_written_entry() -> None:
    entries, error = parse_log_text(HAND_WRITTEN)

    assert error is None
    (entry,) = entries
    assert entry.level is LogLevel.OPERATION
    assert entry.component == "build"
    assert entry.actor == "alice@box:4242"
    assert entry.context_id == "build-4242-1760875200123456789"
    assert entry.event == "Starting operation: make"
    assert entry.details == {"command": "make all", "output": "line one\nline two"}
    assert entry.context.shell.type == "bash"
    assert entry.context.environment == {"EDITOR": "vim"}
    assert entry.interactions.concurrent == ["indexer"]
    assert entry.metadata.operation_type == "build"
    assert (entry.raw_health, entry.normalized_health, entry.health_impact) == (10, 50, 10)
    assert entry.line_no == 1


def test_malformed_final_entry_keeps_earlier_entries(make_logger: Callable[..., Logger]) -> None:
    logger = make_logger()
    _write_entries(logger, 4)
    with open(logger.log_file, "a", encoding="utf-8") as f:
        f.write("[2026-10-19T12:00:00.000000+00:00] CHECK backup\n  ACTOR: alice@box:4242\n")

    entries, error = read_log_file(logger.log_file)

    assert len(entries) == 4
    assert isinstance(error, LogParseError)
    assert "truncated entry" in str(error)
    assert error.path == logger.log_file


def test_garbage_line_stops_parsing(make_logger: Callable[..., Logger]) -> None:
    logger = make_logger()
    _write_entries(logger, 2)
    line_count = len(logger.log_file.read_text(encoding="utf-8").splitlines())
    with open(logger.log_file, "a", encoding="utf-8") as f:
        f.write("this is not an entry\n")
    _write_entries(logger, 1)

    entries, error = read_log_file(logger.log_file)

    assert len(entries) == 2
    assert error is not None
    assert error.line_no == line_count + 1
    assert "content outside of an entry" in error.reason


def test_unclosed_entry_before_next_header() -> None:
    text = HAND_WRITTEN.replace("---\n", "") + HAND_WRITTEN

    entries, error = parse_log_text(text)

    assert entries == []
    assert error is not None
    assert "never closed" in error.reason


@pytest.mark.parametrize(
    ("needle", "replacement", "reason"),
    [
        ("] OPERATION build", "] EXPLODE build", "unknown level"),
        ("2026-10-19T12:00:00.123456+00:00", "yesterday", "bad timestamp"),
        ("  HEALTH: raw=10", "  HEALTH: raw=ten", "malformed HEALTH"),
        ("  ACTOR: alice@box:4242\n", "", "missing ACTOR"),
        ("  INTERACTIONS:", "  BOGUS:", "unknown section"),
        ("    command: ", '    "command" ', "malformed field"),
        ("    command: ", '    "comm\\and: ', "malformed field key"),
    ],
)
def test_malformed_entries_report_reason(needle: str, replacement: str, reason: str) -> None:
    entries, error = parse_log_text(HAND_WRITTEN.replace(needle, replacement))

    assert entries == []
    assert error is not None
    assert reason in error.reason


def test_quoted_keys_are_decoded() -> None:
    text = HAND_WRITTEN.replace("    command: ", '    " padded": 1\n    "a: b": ')

    entries, error = parse_log_text(text)

    assert error is None
    assert entries[0].details[" padded"] == 1
    assert entries[0].details["a: b"] == "make all"


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        read_log_file(tmp_path / "missing.log")
    with pytest.raises(FileNotFoundError):
        read_debug_file(tmp_path / "missing.debug")


def test_empty_file_has_no_entries(tmp_path: Path) -> None:
    path = tmp_path / "empty.log"
    path.write_text("", encoding="utf-8")

    assert read_log_file(path) == ([], None)


@pytest.mark.asyncio
async def test_iter_log_entries_streams(make_logger: Callable[..., Logger]) -> None:
    logger = make_logger()
    _write_entries(logger, 3)

    events = [e.event async for e in iter_log_entries(logger.log_file)]

    assert events == ["Checking: step 0", "Checking: step 1", "Checking: step 2"]


@pytest.mark.asyncio
async def test_iter_log_entries_raises_after_partial(make_logger: Callable[..., Logger]) -> None:
    logger = make_logger()
    _write_entries(logger, 2)
    with open(logger.log_file, "a", encoding="utf-8") as f:
        f.write("[2026-10-19T12:00:00.000000+00:00] CHECK backup\n")

    seen = []
    with pytest.raises(LogParseError) as excinfo:
        async for entry in iter_log_entries(logger.log_file):
            seen.append(entry)

    assert len(seen) == 2
    assert excinfo.value.path == logger.log_file
