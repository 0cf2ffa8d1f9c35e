"""Dual-rail observability core.

The logging rail (`Logger`) and the debugging rail (`Inspector`) write
independently; they are correlated after the fact through a shared context id.
"""

from __future__ import annotations

from .config import DegradationTier, LoadedConfig, RailConfig, load_config
from .context import ContextCapturer
from .health import HealthScorer
from .inspector import Inspector
from .logger import CommandResult, Logger, SynchronizedLogger
from .models import (
    InspectionEntry,
    InspectionType,
    Interactions,
    LogEntry,
    LogLevel,
    Metadata,
    SystemContext,
)
from .parsing import (
    LogParseError,
    ParseResult,
    iter_debug_entries,
    iter_log_entries,
    read_debug_file,
    read_log_file,
)
from .writer import LogRouter

__all__ = [
    "CommandResult",
    "ContextCapturer",
    "DegradationTier",
    "HealthScorer",
    "InspectionEntry",
    "InspectionType",
    "Inspector",
    "Interactions",
    "LoadedConfig",
    "LogEntry",
    "LogLevel",
    "LogParseError",
    "LogRouter",
    "Logger",
    "Metadata",
    "ParseResult",
    "RailConfig",
    "SynchronizedLogger",
    "SystemContext",
    "iter_debug_entries",
    "iter_log_entries",
    "load_config",
    "read_debug_file",
    "read_log_file",
]
