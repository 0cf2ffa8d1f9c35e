"""Rail configuration: pydantic sections loaded from a JSONC file.

Configuration is built once (usually at process start) and passed into
`Logger` and `Inspector`. Loading never fails: a missing or broken file falls
back to defaults through the tiers described by `DegradationTier`.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from . import jsonc
from .models import UNKNOWN, LogLevel

LOGGER = logging.getLogger(__name__)

CONFIG_ENV = "RAIL_OBS_CONFIG"
BASE_DIR_ENV = "RAIL_OBS_BASE_DIR"
DEFAULT_BASE_DIRNAME = ".rail-observability"
DEFAULT_CONFIG_FILENAME = "config.jsonc"


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class PathsConfig(_Section):
    base_dir: str = DEFAULT_BASE_DIRNAME  # relative values resolve under $HOME
    debug_subdir: str = "debug"
    log_extension: str = ".log"
    debug_extension: str = ".debug"


class RotationConfig(_Section):
    enabled: bool = True
    max_size_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    max_files: int = Field(default=5, ge=1)


class RoutingConfig(_Section):
    commands: list[str] = ["validate", "test", "status", "diagnose"]
    libraries: list[str] = [
        "operations",
        "sudoers",
        "environment",
        "display",
        "logging",
        "debugging",
    ]
    scripts: list[str] = ["build"]


class ContextCaptureConfig(_Section):
    sudoers_path: str = "/etc/sudoers.d/90-rail-safe-operations"
    sudoers_valid_perms: int = 0o440
    proc_loadavg: str = "/proc/loadavg"
    proc_meminfo: str = "/proc/meminfo"
    framework_env_prefix: str = "RAIL_"
    unknown_value: str = UNKNOWN


DEFAULT_FULL_CONTEXT: dict[LogLevel, bool] = {
    LogLevel.OPERATION: True,
    LogLevel.SUCCESS: False,
    LogLevel.FAILURE: True,
    LogLevel.ERROR: True,
    LogLevel.CHECK: False,
    LogLevel.CONTEXT: True,
    LogLevel.DEBUG: True,
}


class BehaviorConfig(_Section):
    # Merged over DEFAULT_FULL_CONTEXT; levels not listed keep their default.
    full_context: dict[LogLevel, bool] = Field(default_factory=dict)
    stack_depth: int = Field(default=32, ge=1)

    def wants_full_context(self, level: LogLevel) -> bool:
        if level in self.full_context:
            return self.full_context[level]
        return DEFAULT_FULL_CONTEXT[level]


class MessagesConfig(_Section):
    event_op_start: str = "Starting operation: {command}"
    event_check: str = "Checking: {what}"
    event_snapshot: str = "System state snapshot: {label}"
    event_cmd_failed: str = "Command failed: {command}"
    event_cmd_success: str = "Command completed: {command}"
    event_config_degraded: str = "Configuration degraded: {tier}"

    # Placeholder each template is formatted with.
    PLACEHOLDERS: ClassVar[dict[str, str]] = {
        "event_op_start": "command",
        "event_check": "what",
        "event_snapshot": "label",
        "event_cmd_failed": "command",
        "event_cmd_success": "command",
        "event_config_degraded": "tier",
    }

    @field_validator("*")
    @classmethod
    def _check_template(cls, v: str, info: ValidationInfo) -> str:
        placeholder = cls.PLACEHOLDERS[info.field_name]
        try:
            v.format(**{placeholder: "x"})
        except (KeyError, IndexError, ValueError, AttributeError) as exc:
            raise ValueError(f"template may only use {{{placeholder}}}: {exc!r}") from exc
        return v


class HealthImpactsConfig(_Section):
    cmd_operation: int = 0
    cmd_success: int = 10
    cmd_failure: int = -10


class HealthRange(_Section):
    threshold: int
    indicator: str
    label: str


DEFAULT_HEALTH_RANGES: tuple[tuple[int, str, str], ...] = (
    (90, "💚", "Excellent - all systems healthy"),
    (80, "💙", "Very Good - minor issues only"),
    (70, "💛", "Good - some concerns"),
    (60, "🧡", "Above Average - noticeable issues"),
    (50, "❤️", "Average - mixed results"),
    (40, "🤍", "Below Average - attention needed"),
    (30, "💔", "Fair - significant problems"),
    (20, "🩹", "Poor - major issues"),
    (10, "⚠️", "Warning - critical attention needed"),
    (1, "☠️", "Critical - near failure"),
    (0, "⚫", "Neutral - balanced state"),
    (-9, "🔴", "Slight Negative - minor damage"),
    (-19, "🟠", "Negative - noticeable degradation"),
    (-29, "🟡", "Declining - system weakening"),
    (-39, "🟢", "Degraded - significant damage"),
    (-49, "🔵", "Damaged - major problems"),
    (-59, "🟣", "Severe - critical damage"),
    (-69, "🟤", "Critical - near failure"),
    (-79, "⚫", "Failing - barely functional"),
    (-89, "⬛", "Near Death - almost gone"),
    (-100, "💀", "Dead - complete failure"),
)


class HealthConfig(_Section):
    ranges: list[HealthRange] = Field(
        default_factory=lambda: [
            HealthRange(threshold=t, indicator=i, label=lbl) for t, i, lbl in DEFAULT_HEALTH_RANGES
        ]
    )


class DebuggingConfig(_Section):
    default_stack_depth: int = Field(default=10, ge=1)


class RailConfig(_Section):
    """Top-level configuration shared by both rails."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    rotation: RotationConfig = Field(default_factory=RotationConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    context_capture: ContextCaptureConfig = Field(default_factory=ContextCaptureConfig)
    behavior: BehaviorConfig = Field(default_factory=BehaviorConfig)
    messages: MessagesConfig = Field(default_factory=MessagesConfig)
    health_impacts: HealthImpactsConfig = Field(default_factory=HealthImpactsConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    debugging: DebuggingConfig = Field(default_factory=DebuggingConfig)

    def base_dir(self, home: Path | None = None) -> Path:
        """Resolve the output root. RAIL_OBS_BASE_DIR wins over the file value."""
        raw = os.getenv(BASE_DIR_ENV) or self.paths.base_dir
        p = Path(raw).expanduser()
        if not p.is_absolute():
            p = (home or Path.home()) / p
        return p


class DegradationTier(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    DEFAULTS_MISSING = "defaults-missing"
    DEFAULTS_INVALID = "defaults-invalid"


# Health cost of each tier, sized to how much configuration was lost.
TIER_HEALTH_COST: dict[DegradationTier, int] = {
    DegradationTier.FULL: 0,
    DegradationTier.PARTIAL: -7,
    DegradationTier.DEFAULTS_MISSING: -3,
    DegradationTier.DEFAULTS_INVALID: -13,
}


@dataclass(frozen=True, slots=True)
class LoadedConfig:
    """Result of `load_config`: the config plus how it was obtained."""

    config: RailConfig
    tier: DegradationTier
    source: Path | None
    problems: list[str] = field(default_factory=list)

    @property
    def health_cost(self) -> int:
        return TIER_HEALTH_COST[self.tier]

    @property
    def degraded(self) -> bool:
        return self.tier is not DegradationTier.FULL


def default_config_path(home: Path | None = None) -> Path:
    env = os.getenv(CONFIG_ENV)
    if env:
        return Path(env).expanduser()
    return (home or Path.home()) / DEFAULT_BASE_DIRNAME / DEFAULT_CONFIG_FILENAME


def _validate_sections(data: dict) -> tuple[RailConfig, list[str]]:
    """Validate each section independently; invalid sections fall back to defaults."""
    problems: list[str] = []
    kept: dict[str, BaseModel] = {}
    for name, info in RailConfig.model_fields.items():
        if name not in data:
            continue
        try:
            kept[name] = info.annotation.model_validate(data[name])
        except ValidationError as exc:
            problems.append(f"{name}: {exc.error_count()} invalid value(s)")
            LOGGER.warning("Config section %r invalid, using defaults: %s", name, exc)
    return RailConfig(**kept), problems


def load_config(path: str | Path | None = None) -> LoadedConfig:
    """Load configuration, degrading to defaults instead of failing."""
    p = Path(path) if path is not None else default_config_path()

    if not p.is_file():
        LOGGER.debug("No config file at %s; using defaults", p)
        return LoadedConfig(
            config=RailConfig(),
            tier=DegradationTier.DEFAULTS_MISSING,
            source=None,
            problems=[f"config file not found: {p}"],
        )

    try:
        data = jsonc.load(p)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        LOGGER.warning("Unreadable config %s, using defaults: %s", p, exc)
        return LoadedConfig(
            config=RailConfig(),
            tier=DegradationTier.DEFAULTS_INVALID,
            source=p,
            problems=[f"unreadable config: {exc}"],
        )

    if not isinstance(data, dict):
        return LoadedConfig(
            config=RailConfig(),
            tier=DegradationTier.DEFAULTS_INVALID,
            source=p,
            problems=["config root must be a JSON object"],
        )

    config, problems = _validate_sections(data)
    tier = DegradationTier.PARTIAL if problems else DegradationTier.FULL
    return LoadedConfig(config=config, tier=tier, source=p, problems=problems)
