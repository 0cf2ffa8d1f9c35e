"""Post-hoc analysis over parsed rail output.

Turns logging-rail entries into per-component health summaries, compares
expected check impacts against actual ones, and aligns the two rails by
correlation id.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import RailConfig
from .models import InspectionEntry, InspectionType, LogEntry, LogLevel
from .writer import CATEGORIES

HEALTH_CRITICAL = -30
HEALTH_DEGRADED = 0
HEALTH_WARNING = 50
WARNING_COUNT_THRESHOLD = 5

# Debug entry types that signal reality differed from expectation.
DIVERGENT_TYPES = frozenset(
    {
        InspectionType.DIVERGENCE,
        InspectionType.SLOW_TIMING,
        InspectionType.COUNT_DIVERGENCE,
        InspectionType.UNEXPECTED_FLOW,
    }
)


@dataclass(frozen=True, slots=True)
class HealthDivergence:
    check_name: str
    expected: int
    actual: int
    gap: int
    severity: str
    pattern: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ComponentHealth:
    name: str
    entries: list[LogEntry]
    final_health: int = 0
    success_count: int = 0
    failure_count: int = 0
    error_count: int = 0
    check_count: int = 0
    operation_count: int = 0
    warning_count: int = 0  # checks that came back with a negative impact
    divergences: list[HealthDivergence] = field(default_factory=list)


@dataclass(slots=True)
class SystemAssessment:
    components: dict[str, ComponentHealth]
    total_entries: int = 0
    overall_health: int = 0
    critical_issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    patterns: dict[str, int] = field(default_factory=dict)
    cross_component: dict[str, list[str]] = field(default_factory=dict)


@dataclass(slots=True)
class RailCorrelation:
    context_id: str
    component: str
    log_entries: list[LogEntry] = field(default_factory=list)
    debug_entries: list[InspectionEntry] = field(default_factory=list)

    @property
    def divergences(self) -> list[InspectionEntry]:
        return [e for e in self.debug_entries if e.type in DIVERGENT_TYPES]


def _severity(gap: int) -> str:
    g = abs(gap)
    if g >= 20:
        return "critical"
    if g >= 10:
        return "high"
    if g >= 5:
        return "medium"
    return "low"


def _pattern(expected: int, actual: int) -> str:
    if actual == 0 and expected > 0:
        return "complete-failure"
    if 0 < actual < expected:
        return "partial-success"
    if actual < 0 and expected > 0:
        return "unexpected-failure"
    if actual > expected:
        return "over-performance"
    return "unknown"


def _check_name(event: str, template: str) -> str:
    """Undo `template.format(what=...)` for `event`; unmatched events pass through."""
    prefix, sep, suffix = template.partition("{what}")
    if not sep:
        return event
    prefix = prefix.replace("{{", "{").replace("}}", "}")
    suffix = suffix.replace("{{", "{").replace("}}", "}")
    if len(event) >= len(prefix) + len(suffix) and event.startswith(prefix) and event.endswith(suffix):
        return event[len(prefix) : len(event) - len(suffix)]
    return event


def latest_run(entries: Sequence[LogEntry]) -> list[LogEntry]:
    """Entries belonging to the last context id seen in the file."""
    if not entries:
        return []
    last = entries[-1].context_id
    return [e for e in entries if e.context_id == last]


def analyze_component(
    name: str,
    entries: Sequence[LogEntry],
    expected_impacts: Mapping[str, int] | None = None,
    *,
    check_template: str | None = None,
) -> ComponentHealth:
    """Summarize one component's entries and flag expected-vs-actual gaps.

    Check names are recovered from events with `check_template`, which
    defaults to the stock `messages.event_check`.
    """
    template = check_template or RailConfig().messages.event_check
    health = ComponentHealth(name=name, entries=list(entries))
    if entries:
        health.final_health = entries[-1].normalized_health
    expected_impacts = expected_impacts or {}

    for entry in entries:
        level = entry.level
        if level is LogLevel.CHECK:
            health.check_count += 1
            if entry.health_impact > 0:
                health.success_count += 1
            elif entry.health_impact < 0:
                health.warning_count += 1
        elif level is LogLevel.OPERATION:
            health.operation_count += 1
        elif level is LogLevel.ERROR:
            health.error_count += 1
            health.failure_count += 1
        elif level is LogLevel.SUCCESS:
            health.check_count += 1
            health.success_count += 1
        elif level is LogLevel.FAILURE:
            health.check_count += 1
            health.failure_count += 1

        if level not in (LogLevel.CHECK, LogLevel.SUCCESS, LogLevel.FAILURE) or not entry.event:
            continue
        name_ = _check_name(entry.event, template)
        if name_ not in expected_impacts:
            continue
        expected = expected_impacts[name_]
        actual = entry.health_impact
        if actual == expected or (actual <= 0 and expected <= 0):
            continue
        meta: dict[str, Any] = {}
        if entry.metadata is not None:
            meta = {
                "operation_type": entry.metadata.operation_type,
                "operation_subtype": entry.metadata.operation_subtype,
                "error_type": entry.metadata.error_type,
                "recovery_hint": entry.metadata.recovery_hint,
                "recovery_strategy": entry.metadata.recovery_strategy,
                "recovery_params": entry.metadata.recovery_params,
            }
        gap = actual - expected
        health.divergences.append(
            HealthDivergence(
                check_name=name_,
                expected=expected,
                actual=actual,
                gap=gap,
                severity=_severity(gap),
                pattern=_pattern(expected, actual),
                metadata=meta,
            )
        )
    return health


def assess_system(components: Mapping[str, ComponentHealth]) -> SystemAssessment:
    assessment = SystemAssessment(components=dict(components))
    if not components:
        return assessment

    total = 0
    for name, comp in sorted(components.items()):
        assessment.total_entries += len(comp.entries)
        total += comp.final_health

        if comp.final_health < HEALTH_CRITICAL:
            assessment.critical_issues.append(
                f"{name}: critical health ({comp.final_health}) - multiple failures detected"
            )
        elif comp.final_health < HEALTH_DEGRADED:
            assessment.warnings.append(f"{name}: negative health ({comp.final_health}) - system degradation")

        if comp.failure_count > comp.success_count:
            assessment.critical_issues.append(
                f"{name}: failure rate exceeds success rate "
                f"({comp.failure_count} failures vs {comp.success_count} successes)"
            )
        if comp.warning_count > WARNING_COUNT_THRESHOLD:
            assessment.warnings.append(
                f"{name}: multiple warnings ({comp.warning_count}) - potential instability"
            )

    assessment.overall_health = int(total / len(components))

    if assessment.critical_issues:
        assessment.recommendations.append("Review the failing components' FAILURE and ERROR entries first")
    if assessment.overall_health < HEALTH_DEGRADED:
        assessment.recommendations.append("System health is negative - review component logs for failure patterns")
    elif assessment.overall_health < HEALTH_WARNING:
        assessment.recommendations.append("System health is degraded - check configuration and recent changes")

    assessment.patterns = identify_patterns(assessment)
    assessment.cross_component = correlate_across_components(components)
    return assessment


def identify_patterns(assessment: SystemAssessment) -> dict[str, int]:
    patterns: Counter[str] = Counter()
    for issue in assessment.critical_issues:
        text = issue.lower()
        if "permission" in text or "denied" in text:
            patterns["permission_error"] += 1
        if "not found" in text or "missing" in text:
            patterns["missing_resource"] += 1
        if "failure rate exceeds" in text:
            patterns["high_failure_rate"] += 1
        if "critical health" in text:
            patterns["critical_health"] += 1
    for warning in assessment.warnings:
        text = warning.lower()
        if "negative health" in text:
            patterns["health_degradation"] += 1
        if "multiple warnings" in text:
            patterns["warning_accumulation"] += 1
    return dict(patterns)


def correlate_across_components(components: Mapping[str, ComponentHealth]) -> dict[str, list[str]]:
    out: dict[str, list[str]] = defaultdict(list)
    for name, comp in sorted(components.items()):
        if comp.final_health < HEALTH_CRITICAL:
            out["critical_health"].append(name)
        elif comp.final_health < HEALTH_DEGRADED:
            out["degraded_health"].append(name)
        if comp.failure_count > comp.success_count:
            out["high_failure_rate"].append(name)
        if comp.warning_count > WARNING_COUNT_THRESHOLD:
            out["warning_accumulation"].append(name)
    return dict(out)


def correlate_rails(
    log_entries: Iterable[LogEntry],
    debug_entries: Iterable[InspectionEntry],
) -> tuple[dict[str, RailCorrelation], list[InspectionEntry]]:
    """Join both rails on exact correlation id.

    Returns the per-context correlations (each side in timestamp order) and
    the debug entries whose context id never appears in the logs.
    """
    out: dict[str, RailCorrelation] = {}
    for entry in log_entries:
        corr = out.get(entry.context_id)
        if corr is None:
            corr = out[entry.context_id] = RailCorrelation(entry.context_id, entry.component)
        corr.log_entries.append(entry)

    orphans: list[InspectionEntry] = []
    for entry in debug_entries:
        corr = out.get(entry.context_id)
        if corr is None:
            orphans.append(entry)
        else:
            corr.debug_entries.append(entry)

    for corr in out.values():
        corr.log_entries.sort(key=lambda e: e.timestamp)
        corr.debug_entries.sort(key=lambda e: e.timestamp)
    return out, orphans


def discover_log_files(base_dir: str | Path, extension: str = ".log") -> dict[str, Path]:
    """Map component name -> current log file under the category directories."""
    base = Path(base_dir)
    found: dict[str, Path] = {}
    for category in CATEGORIES:
        directory = base / category
        if not directory.is_dir():
            continue
        for path in sorted(directory.glob(f"*{extension}")):
            if path.is_file():
                found[path.name[: -len(extension)]] = path
    return found
