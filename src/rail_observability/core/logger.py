"""Logging rail: the health-scored event API.

A `Logger` belongs to one logical unit of work (a command invocation, a
script run). Health accumulates monotonically within the instance, so reusing
one across unrelated units gives meaningless scores. Instances are not
thread-safe; wrap with `SynchronizedLogger` when one must be shared.

Event methods never raise for internal failures (context probes, file
writes, rotation); they return the `LogEntry` they built so callers and tests
can inspect it.
"""

from __future__ import annotations

import functools
import logging
import os
import subprocess
import threading
import time
import traceback
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .config import LoadedConfig, RailConfig, load_config
from .context import ContextCapturer, actor
from .formatting import format_entry
from .health import HealthScorer
from .models import Interactions, LogEntry, LogLevel, Metadata
from .writer import LogRouter

LOGGER = logging.getLogger(__name__)

COMMAND_NOT_FOUND_EXIT = 127
COMMAND_TIMEOUT_EXIT = 124


def make_context_id(component: str, pid: int | None = None, ns: int | None = None) -> str:
    """`<component>-<pid>-<creation time in ns>`."""
    pid = os.getpid() if pid is None else pid
    ns = time.time_ns() if ns is None else ns
    return f"{component}-{pid}-{ns}"


def validate_component(component: str) -> str:
    name = component.strip()
    if not name or any(ch.isspace() for ch in name) or "/" in name or name in (".", ".."):
        raise ValueError(f"Invalid component name: {component!r}")
    return name


@dataclass(frozen=True, slots=True)
class CommandResult:
    command: str
    args: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    duration: float  # seconds

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Logger:
    """Per-component logging session."""

    def __init__(
        self,
        component: str,
        config: RailConfig | None = None,
        *,
        base_dir: Path | None = None,
        capturer: ContextCapturer | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.component = validate_component(component)
        self.config = config or RailConfig()
        self._capturer = capturer or ContextCapturer(self.config.context_capture)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._health = HealthScorer()

        # Identity is memoized once; it does not change within a process.
        self.username = self._capturer.user
        self.hostname = self._capturer.host
        self.pid = self._capturer.pid
        self.actor = actor(self.username, self.hostname, self.pid)

        self.context_id = make_context_id(self.component, self.pid)
        self._router = LogRouter(self.config, base_dir=base_dir)
        self.log_file = self._router.resolve_path(self.component)

    @classmethod
    def from_config_file(
        cls,
        component: str,
        path: str | Path | None = None,
        **kwargs: Any,
    ) -> Logger:
        """Build a Logger from a JSONC config, recording any degradation."""
        loaded = load_config(path)
        logger = cls(component, loaded.config, **kwargs)
        if loaded.degraded:
            logger.record_config_degradation(loaded)
        return logger

    # -- health ---------------------------------------------------------------

    def declare_health_total(self, total: int) -> None:
        """Declare the total possible health; call once before any event."""
        self._health.declare_total(total)

    @property
    def health(self) -> int:
        """Normalized health (-100..100)."""
        return self._health.normalized

    @property
    def raw_health(self) -> int:
        return self._health.raw

    @property
    def health_total(self) -> int:
        return self._health.total

    # -- core -----------------------------------------------------------------

    def _log(
        self,
        level: LogLevel,
        event: str,
        health_impact: int,
        details: Mapping[str, Any] | None,
        *,
        metadata: Metadata | None = None,
        interactions: Interactions | None = None,
    ) -> LogEntry:
        context = None
        if self.config.behavior.wants_full_context(level):
            context = self._capturer.capture()

        normalized = self._health.apply(health_impact)
        entry = LogEntry(
            timestamp=self._clock(),
            level=level,
            component=self.component,
            actor=self.actor,
            context_id=self.context_id,
            event=event,
            raw_health=self._health.raw,
            normalized_health=normalized,
            health_impact=health_impact,
            details=dict(details or {}),
            context=context,
            interactions=interactions,
            metadata=metadata,
        )

        try:
            text = format_entry(entry, self.config.health.ranges)
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Failed to format %s entry for %s: %s", level.value, self.component, exc)
            return entry
        self._router.append(self.log_file, text)
        return entry

    # -- public events --------------------------------------------------------

    def operation(
        self,
        command: str,
        health_impact: int,
        *args: str,
        interactions: Interactions | None = None,
    ) -> LogEntry:
        full_command = " ".join([command, *args]) if args else command
        event = self.config.messages.event_op_start.format(command=command)
        return self._log(
            LogLevel.OPERATION,
            event,
            health_impact,
            {"command": full_command},
            interactions=interactions,
        )

    def success(
        self,
        event: str,
        health_impact: int,
        details: Mapping[str, Any] | None = None,
        *,
        interactions: Interactions | None = None,
    ) -> LogEntry:
        return self._log(LogLevel.SUCCESS, event, health_impact, details, interactions=interactions)

    def failure(
        self,
        event: str,
        reason: str,
        health_impact: int,
        details: Mapping[str, Any] | None = None,
        *,
        interactions: Interactions | None = None,
    ) -> LogEntry:
        merged = {**(details or {}), "reason": reason}
        return self._log(LogLevel.FAILURE, event, health_impact, merged, interactions=interactions)

    def error(
        self,
        event: str,
        err: BaseException,
        health_impact: int,
        *,
        interactions: Interactions | None = None,
    ) -> LogEntry:
        """Log an exception with its traceback (or the current stack if it has none)."""
        if err.__traceback__ is not None:
            stack = "".join(traceback.format_exception(type(err), err, err.__traceback__))
        else:
            stack = "".join(traceback.format_stack(limit=self.config.behavior.stack_depth)[:-1])
        details = {
            "error": str(err),
            "error_type": type(err).__name__,
            "stack_trace": stack.rstrip("\n"),
        }
        return self._log(LogLevel.ERROR, event, health_impact, details, interactions=interactions)

    def check(
        self,
        what: str,
        result: bool,
        health_impact: int,
        details: Mapping[str, Any] | None = None,
        *,
        interactions: Interactions | None = None,
    ) -> LogEntry:
        event = self.config.messages.event_check.format(what=what)
        merged = {**(details or {}), "result": result}
        return self._log(LogLevel.CHECK, event, health_impact, merged, interactions=interactions)

    def snapshot_state(self, label: str, health_impact: int = 0) -> LogEntry:
        event = self.config.messages.event_snapshot.format(label=label)
        return self._log(LogLevel.CONTEXT, event, health_impact, None)

    def debug(
        self,
        event: str,
        health_impact: int,
        internal_state: Mapping[str, Any] | None = None,
        *,
        interactions: Interactions | None = None,
    ) -> LogEntry:
        return self._log(LogLevel.DEBUG, event, health_impact, internal_state, interactions=interactions)

    def success_with_metadata(
        self,
        event: str,
        health_impact: int,
        details: Mapping[str, Any] | None,
        metadata: Metadata,
    ) -> LogEntry:
        return self._log(LogLevel.SUCCESS, event, health_impact, details, metadata=metadata)

    def failure_with_metadata(
        self,
        event: str,
        reason: str,
        health_impact: int,
        details: Mapping[str, Any] | None,
        metadata: Metadata,
    ) -> LogEntry:
        merged = {**(details or {}), "reason": reason}
        return self._log(LogLevel.FAILURE, event, health_impact, merged, metadata=metadata)

    def check_with_metadata(
        self,
        what: str,
        result: bool,
        health_impact: int,
        details: Mapping[str, Any] | None,
        metadata: Metadata,
    ) -> LogEntry:
        event = self.config.messages.event_check.format(what=what)
        merged = {**(details or {}), "result": result}
        return self._log(LogLevel.CHECK, event, health_impact, merged, metadata=metadata)

    def record_config_degradation(self, loaded: LoadedConfig) -> LogEntry:
        """Log the configuration fallback as a FAILURE sized to what was lost."""
        event = self.config.messages.event_config_degraded.format(tier=loaded.tier.value)
        details = {
            "tier": loaded.tier.value,
            "source": str(loaded.source) if loaded.source else None,
        }
        reason = "; ".join(loaded.problems) or loaded.tier.value
        return self.failure(event, reason, loaded.health_cost, details)

    # -- orchestration --------------------------------------------------------

    def log_command(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        timeout: float | None = None,
        cwd: str | Path | None = None,
    ) -> CommandResult:
        """Run an external command, logging OPERATION then SUCCESS or FAILURE.

        Blocks until the child exits (or `timeout` seconds pass).
        """
        impacts = self.config.health_impacts
        messages = self.config.messages
        args = tuple(args)
        self.operation(command, impacts.cmd_operation, *args)

        start = time.perf_counter()
        try:
            proc = subprocess.run(
                [command, *args],
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
                cwd=cwd,
                check=False,
            )
            exit_code, stdout, stderr = proc.returncode, proc.stdout, proc.stderr
        except FileNotFoundError as exc:
            exit_code, stdout, stderr = COMMAND_NOT_FOUND_EXIT, "", str(exc)
        except subprocess.TimeoutExpired as exc:
            exit_code = COMMAND_TIMEOUT_EXIT
            stdout = _as_text(exc.stdout)
            stderr = _as_text(exc.stderr) or f"timed out after {timeout}s"
        except OSError as exc:
            exit_code, stdout, stderr = COMMAND_NOT_FOUND_EXIT, "", str(exc)
        duration = time.perf_counter() - start

        result = CommandResult(
            command=command,
            args=args,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
        )
        details = {
            "command": " ".join([command, *args]),
            "exit_code": exit_code,
            "duration": f"{duration * 1000:.0f}ms",
            "stdout": stdout,
            "stderr": stderr,
        }
        if result.ok:
            self.success(messages.event_cmd_success.format(command=command), impacts.cmd_success, details)
        else:
            self.failure(
                messages.event_cmd_failed.format(command=command),
                f"exit code: {exit_code}",
                impacts.cmd_failure,
                details,
            )
        return result


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class SynchronizedLogger:
    """Serializes every call on a shared Logger through one mutex."""

    def __init__(self, logger: Logger) -> None:
        self._logger = logger
        self._lock = threading.Lock()

    @property
    def logger(self) -> Logger:
        return self._logger

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._logger, name)
        if not callable(attr):
            return attr

        @functools.wraps(attr)
        def locked(*args: Any, **kwargs: Any) -> Any:
            with self._lock:
                return attr(*args, **kwargs)

        return locked
