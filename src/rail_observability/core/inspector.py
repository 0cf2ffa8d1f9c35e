"""Debugging rail: expected-vs-actual state inspection.

An `Inspector` never talks to a `Logger`. The two are tied together only by
the correlation id passed in at construction, which both write verbatim into
their files.

Inspectors start disabled, and a disabled Inspector does nothing, so
instrumentation can stay in production code at near-zero cost.
"""

from __future__ import annotations

import gc
import logging
import os
import platform
import sys
import threading
import traceback
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import FrameType
from typing import IO, Any

import psutil

from .config import RailConfig
from .context import ContextCapturer, actor
from .formatting import context_fields, format_inspection, format_session_header
from .logger import make_context_id, validate_component
from .models import InspectionEntry, InspectionType

LOGGER = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024


def _seconds(value: timedelta | float) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _caller_frame() -> FrameType | None:
    """First frame outside this module."""
    frame = sys._getframe(1)
    while frame is not None and frame.f_code.co_filename == __file__:
        frame = frame.f_back
    return frame


def _call_site(frame: FrameType | None) -> str:
    if frame is None:
        return "unknown"
    return f"{Path(frame.f_code.co_filename).name}:{frame.f_lineno} in {frame.f_code.co_name}"


class Inspector:
    """Per-component debug session sharing a Logger's correlation id."""

    def __init__(
        self,
        component: str,
        context_id: str | None = None,
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
        self.pid = self._capturer.pid
        self.actor = actor(self._capturer.user, self._capturer.host, self.pid)
        self.context_id = context_id or make_context_id(self.component, self.pid)
        self.started = self._clock()

        base = Path(base_dir) if base_dir is not None else self.config.base_dir()
        self.component_dir = base / self.config.paths.debug_subdir / self.component
        self.output_path: Path | None = None
        self._out: IO[str] | None = None

    # -- lifecycle ------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._out is not None

    def enable(self) -> bool:
        """Open this run's debug file. Returns False (and stays disabled) on failure."""
        if self._out is not None:
            return True
        stamp = self.started.strftime("%Y%m%dT%H%M%S")
        path = self.component_dir / f"{stamp}-{self.pid}{self.config.paths.debug_extension}"
        try:
            self.component_dir.mkdir(parents=True, exist_ok=True)
            out = open(path, "a", encoding="utf-8", errors="backslashreplace")
        except OSError as exc:
            LOGGER.warning("Failed to open debug file %s: %s", path, exc)
            return False
        self._out = out
        self.output_path = path
        self._emit(
            format_session_header(
                component=self.component,
                context_id=self.context_id,
                pid=self.pid,
                started=self.started,
            )
        )
        return True

    def disable(self) -> None:
        out, self._out = self._out, None
        if out is not None:
            try:
                out.close()
            except OSError as exc:
                LOGGER.warning("Failed to close debug file %s: %s", self.output_path, exc)

    def close(self) -> None:
        self.disable()

    def __enter__(self) -> Inspector:
        self.enable()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- writing --------------------------------------------------------------

    def _emit(self, text: str) -> None:
        if self._out is None:
            return
        try:
            self._out.write(text)
            self._out.flush()
        except (OSError, UnicodeError) as exc:
            LOGGER.warning("Failed to write debug file %s: %s", self.output_path, exc)

    def _write(
        self,
        entry_type: InspectionType,
        label: str,
        data: Mapping[str, Any],
    ) -> InspectionEntry | None:
        if self._out is None:
            return None
        entry = InspectionEntry(
            timestamp=self._clock(),
            type=entry_type,
            component=self.component,
            actor=self.actor,
            context_id=self.context_id,
            label=label,
            call_site=_call_site(_caller_frame()),
            data=dict(data),
        )
        try:
            text = format_inspection(entry)
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Failed to format %s entry for %s: %s", entry_type.value, self.component, exc)
            return entry
        self._emit(text)
        return entry

    # -- comparisons ----------------------------------------------------------

    def expected_state(
        self,
        label: str,
        expected: Any,
        actual: Any,
        details: Mapping[str, Any] | None = None,
    ) -> InspectionEntry | None:
        """EXPECTED_STATE when `expected == actual`, otherwise DIVERGENCE."""
        if not self.enabled:
            return None
        matches = bool(expected == actual)
        data = {**(details or {}), "expected": expected, "actual": actual, "matches": matches}
        entry_type = InspectionType.EXPECTED_STATE if matches else InspectionType.DIVERGENCE
        return self._write(entry_type, label, data)

    def timing(
        self,
        label: str,
        actual: timedelta | float,
        maximum: timedelta | float,
    ) -> InspectionEntry | None:
        """TIMING when `actual <= maximum`, otherwise SLOW_TIMING. Floats are seconds."""
        if not self.enabled:
            return None
        actual_s = _seconds(actual)
        max_s = _seconds(maximum)
        within = actual_s <= max_s
        data = {
            "duration_ms": round(actual_s * 1000, 3),
            "max_ms": round(max_s * 1000, 3),
            "variance_ms": round((actual_s - max_s) * 1000, 3),
            "within_limit": within,
        }
        entry_type = InspectionType.TIMING if within else InspectionType.SLOW_TIMING
        return self._write(entry_type, label, data)

    def counter(self, label: str, expected: int, actual: int) -> InspectionEntry | None:
        if not self.enabled:
            return None
        matches = expected == actual
        data = {
            "expected": expected,
            "count": actual,
            "variance": actual - expected,
            "matches": matches,
        }
        entry_type = InspectionType.COUNTER if matches else InspectionType.COUNT_DIVERGENCE
        return self._write(entry_type, label, data)

    def flow(self, label: str, expected_path: str | None, actual_path: str) -> InspectionEntry | None:
        """FLOW when the branch taken is the expected one (or none was expected)."""
        if not self.enabled:
            return None
        data: dict[str, Any] = {"branch_taken": actual_path}
        entry_type = InspectionType.FLOW
        if expected_path:
            matches = expected_path == actual_path
            data["expected_branch"] = expected_path
            data["matches_expected"] = matches
            if not matches:
                entry_type = InspectionType.UNEXPECTED_FLOW
        return self._write(entry_type, label, data)

    # -- captures -------------------------------------------------------------

    def conditional_snapshot(
        self,
        label: str,
        condition: bool,
        details: Mapping[str, Any] | None = None,
    ) -> InspectionEntry | None:
        """Write only when `condition` holds."""
        if not condition or not self.enabled:
            return None
        return self._write(InspectionType.CONDITIONAL, label, {**(details or {}), "condition_met": True})

    def snapshot(self, label: str, details: Mapping[str, Any] | None = None) -> InspectionEntry | None:
        if not self.enabled:
            return None
        return self._write(InspectionType.SNAPSHOT, label, details or {})

    def checkpoint(self, label: str, details: Mapping[str, Any] | None = None) -> InspectionEntry | None:
        if not self.enabled:
            return None
        return self._write(InspectionType.CHECKPOINT, label, details or {})

    def call_stack(self, label: str, depth: int = 0) -> InspectionEntry | None:
        """Record the caller's stack, innermost frame first."""
        if not self.enabled:
            return None
        if depth <= 0:
            depth = self.config.debugging.default_stack_depth
        summary = traceback.extract_stack(_caller_frame(), limit=depth)
        frames = [f"{fs.name} ({Path(fs.filename).name}:{fs.lineno})" for fs in reversed(summary)]
        return self._write(
            InspectionType.CALLSTACK,
            label,
            {"depth": len(frames), "stack": " <- ".join(frames)},
        )

    def memory(self, label: str, details: Mapping[str, Any] | None = None) -> InspectionEntry | None:
        if not self.enabled:
            return None
        data: dict[str, Any] = {
            "gc_counts": list(gc.get_count()),
            "threads": threading.active_count(),
        }
        try:
            proc = psutil.Process()
            mem = proc.memory_info()
            data["rss_mb"] = round(mem.rss / _BYTES_PER_MB, 2)
            data["vms_mb"] = round(mem.vms / _BYTES_PER_MB, 2)
            data["num_threads"] = proc.num_threads()
        except (psutil.Error, OSError) as exc:
            LOGGER.debug("Process memory probe failed: %s", exc)
            data["rss_mb"] = self.config.context_capture.unknown_value
        data.update(details or {})
        return self._write(InspectionType.MEMORY, label, data)

    def system_context(self, label: str) -> InspectionEntry | None:
        if not self.enabled:
            return None
        data = context_fields(self._capturer.capture())
        data["home"] = os.getenv("HOME", self.config.context_capture.unknown_value)
        data["python_version"] = platform.python_version()
        data["cpu_count"] = os.cpu_count()
        return self._write(InspectionType.SYSTEM_CONTEXT, label, data)
