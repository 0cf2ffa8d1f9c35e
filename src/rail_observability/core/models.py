"""Core data models for both observability rails."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

UNKNOWN = "unknown"


class LogLevel(str, Enum):
    """Entry types written by the logging rail."""

    OPERATION = "OPERATION"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    ERROR = "ERROR"
    CHECK = "CHECK"
    CONTEXT = "CONTEXT"
    DEBUG = "DEBUG"


class InspectionType(str, Enum):
    """Entry types written by the debugging rail."""

    SNAPSHOT = "SNAPSHOT"
    EXPECTED_STATE = "EXPECTED_STATE"
    DIVERGENCE = "DIVERGENCE"
    CONDITIONAL = "CONDITIONAL"
    TIMING = "TIMING"
    SLOW_TIMING = "SLOW_TIMING"
    COUNTER = "COUNTER"
    COUNT_DIVERGENCE = "COUNT_DIVERGENCE"
    FLOW = "FLOW"
    UNEXPECTED_FLOW = "UNEXPECTED_FLOW"
    CALLSTACK = "CALLSTACK"
    CHECKPOINT = "CHECKPOINT"
    MEMORY = "MEMORY"
    SYSTEM_CONTEXT = "SYSTEM_CONTEXT"


@dataclass(frozen=True, slots=True)
class ShellContext:
    type: str = UNKNOWN
    interactive: bool = False
    login: bool = False

    def describe(self) -> str:
        """Return e.g. 'bash (interactive, non-login)'."""
        interactive = "interactive" if self.interactive else "non-interactive"
        login = "login" if self.login else "non-login"
        return f"{self.type} ({interactive}, {login})"


@dataclass(frozen=True, slots=True)
class SudoersContext:
    installed: bool = False
    valid: bool = False
    permissions: str = UNKNOWN


@dataclass(frozen=True, slots=True)
class SystemMetrics:
    load: str = UNKNOWN
    memory: str = UNKNOWN
    disk: str = UNKNOWN


@dataclass(frozen=True, slots=True)
class SystemContext:
    """Environment snapshot taken at the moment of a full-context entry."""

    user: str
    host: str
    pid: int
    cwd: str
    shell: ShellContext = field(default_factory=ShellContext)
    sudoers: SudoersContext = field(default_factory=SudoersContext)
    system: SystemMetrics = field(default_factory=SystemMetrics)
    environment: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Interactions:
    """Concurrency, dependency and mutation tracking (rarely populated)."""

    concurrent: list[str] = field(default_factory=list)
    dependencies: dict[str, str] = field(default_factory=dict)
    state_changes: dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.concurrent or self.dependencies or self.state_changes)


@dataclass(frozen=True, slots=True)
class Metadata:
    """Semantic routing hints consumed by automated remediation."""

    operation_type: str = ""
    operation_subtype: str = ""
    error_type: str = ""
    error_details: dict[str, Any] = field(default_factory=dict)
    recovery_hint: str = ""
    recovery_strategy: str = ""
    recovery_params: dict[str, Any] = field(default_factory=dict)
    expected: dict[str, Any] = field(default_factory=dict)
    actual: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class LogEntry:
    """One logged moment, as written by a Logger and read back by the parser."""

    timestamp: datetime
    level: LogLevel
    component: str
    actor: str  # user@host:pid
    context_id: str
    event: str
    raw_health: int
    normalized_health: int
    health_impact: int
    details: dict[str, Any] = field(default_factory=dict)
    context: SystemContext | None = None  # None for lightweight levels
    interactions: Interactions | None = None
    metadata: Metadata | None = None
    line_no: int | None = None  # header line, set by the parser


@dataclass(frozen=True, slots=True)
class InspectionEntry:
    """One debugging-rail record."""

    timestamp: datetime
    type: InspectionType
    component: str
    actor: str
    context_id: str
    label: str
    call_site: str
    data: dict[str, Any] = field(default_factory=dict)
    line_no: int | None = None
