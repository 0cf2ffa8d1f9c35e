from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

from rail_observability.core.analysis import (
    ComponentHealth,
    analyze_component,
    assess_system,
    correlate_rails,
    discover_log_files,
    latest_run,
)
from rail_observability.core.config import MessagesConfig, RailConfig
from rail_observability.core.logger import Logger
from rail_observability.core.models import InspectionEntry, InspectionType, LogEntry, LogLevel, Metadata
from rail_observability.core.parsing import read_log_file

T0 = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _entry(level: LogLevel, event: str, impact: int, *, ctx: str = "svc-1-1", final: int = 0, offset: int = 0) -> LogEntry:
    return LogEntry(
        timestamp=T0 + timedelta(seconds=offset),
        level=level,
        component="svc",
        actor="alice@box:1",
        context_id=ctx,
        event=event,
        raw_health=final,
        normalized_health=final,
        health_impact=impact,
    )


def _debug(ctx: str, entry_type: InspectionType, label: str, offset: int = 0) -> InspectionEntry:
    return InspectionEntry(
        timestamp=T0 + timedelta(seconds=offset),
        type=entry_type,
        component="svc",
        actor="alice@box:1",
        context_id=ctx,
        label=label,
        call_site="svc.py:1 in run",
    )


def test_analyze_component_counts_and_divergences(make_logger: Callable[..., Logger]) -> None:
    logger = make_logger("svc")
    logger.operation("deploy", 0)
    logger.check("disk", True, 10)
    logger.check("network", False, 0)
    logger.check("cpu", True, 5)
    logger.check_with_metadata(
        "packages",
        False,
        -10,
        None,
        Metadata(operation_type="apt", recovery_hint="unlock dpkg"),
    )
    logger.failure("restart", "timeout", -20)
    entries, _ = read_log_file(logger.log_file)

    health = analyze_component(
        "svc",
        entries,
        {"disk": 10, "network": 10, "cpu": 20, "packages": 5, "restart": -20},
    )

    assert health.operation_count == 1
    assert health.check_count == 5
    assert health.success_count == 2
    assert health.warning_count == 1
    assert health.failure_count == 1
    assert health.final_health == logger.health

    by_name = {d.check_name: d for d in health.divergences}
    assert set(by_name) == {"network", "cpu", "packages"}
    assert by_name["network"].pattern == "complete-failure"
    assert by_name["network"].severity == "high"
    assert by_name["cpu"].pattern == "partial-success"
    assert by_name["cpu"].gap == -15
    assert by_name["packages"].pattern == "unexpected-failure"
    assert by_name["packages"].severity == "high"
    assert by_name["packages"].metadata["recovery_hint"] == "unlock dpkg"


def test_over_performance_and_low_severity() -> None:
    health = analyze_component("svc", [_entry(LogLevel.CHECK, "Checking: cache", 12)], {"cache": 10})

    (div,) = health.divergences
    assert div.pattern == "over-performance"
    assert div.severity == "low"


def test_check_names_follow_configured_template(make_logger: Callable[..., Logger]) -> None:
    config = RailConfig(messages=MessagesConfig(event_check="Verify {what}!"))
    logger = make_logger("svc", config)
    logger.check("disk", False, 0)
    entries, _ = read_log_file(logger.log_file)

    assert entries[0].event == "Verify disk!"
    stock = analyze_component("svc", entries, {"disk": 10})
    assert stock.divergences == []

    health = analyze_component("svc", entries, {"disk": 10}, check_template=config.messages.event_check)

    (div,) = health.divergences
    assert div.check_name == "disk"
    assert div.pattern == "complete-failure"


def test_check_name_passes_through_foreign_events() -> None:
    health = analyze_component("svc", [_entry(LogLevel.SUCCESS, "cache", 0)], {"cache": 10})

    (div,) = health.divergences
    assert div.check_name == "cache"


def test_assess_system_flags_critical_components() -> None:
    failing = ComponentHealth("db", [], final_health=-50, failure_count=4, success_count=1)
    wobbly = ComponentHealth("cache", [], final_health=-5, warning_count=6, success_count=2)
    fine = ComponentHealth("web", [], final_health=85, success_count=9)

    result = assess_system({"db": failing, "cache": wobbly, "web": fine})

    assert result.overall_health == 10
    assert any(i.startswith("db: critical health") for i in result.critical_issues)
    assert any("failure rate exceeds" in i for i in result.critical_issues)
    assert any(w.startswith("cache: negative health") for w in result.warnings)
    assert any("multiple warnings" in w for w in result.warnings)
    assert result.patterns["critical_health"] == 1
    assert result.patterns["warning_accumulation"] == 1
    assert result.cross_component["critical_health"] == ["db"]
    assert result.cross_component["degraded_health"] == ["cache"]
    assert result.recommendations


def test_assess_system_empty() -> None:
    result = assess_system({})

    assert result.overall_health == 0
    assert result.critical_issues == []


def test_correlate_rails_orders_and_reports_orphans() -> None:
    logs = [
        _entry(LogLevel.SUCCESS, "b", 1, offset=2),
        _entry(LogLevel.OPERATION, "a", 0, offset=1),
        _entry(LogLevel.SUCCESS, "other", 1, ctx="svc-2-2"),
    ]
    debugs = [
        _debug("svc-1-1", InspectionType.SLOW_TIMING, "copy", offset=3),
        _debug("svc-1-1", InspectionType.CHECKPOINT, "start", offset=0),
        _debug("svc-9-9", InspectionType.SNAPSHOT, "stray"),
    ]

    correlations, orphans = correlate_rails(logs, debugs)

    corr = correlations["svc-1-1"]
    assert [e.event for e in corr.log_entries] == ["a", "b"]
    assert [e.label for e in corr.debug_entries] == ["start", "copy"]
    assert [e.label for e in corr.divergences] == ["copy"]
    assert correlations["svc-2-2"].debug_entries == []
    assert [e.label for e in orphans] == ["stray"]


def test_latest_run_keeps_last_context() -> None:
    entries = [
        _entry(LogLevel.SUCCESS, "old", 1, ctx="svc-1-1"),
        _entry(LogLevel.SUCCESS, "new", 1, ctx="svc-1-2"),
    ]

    assert [e.event for e in latest_run(entries)] == ["new"]
    assert latest_run([]) == []


def test_discover_log_files(make_logger: Callable[..., Logger], base_dir: Path) -> None:
    make_logger("build").success("ok", 1)
    make_logger("backup").success("ok", 1)
    (base_dir / "system" / "backup.log.1").write_text("", encoding="utf-8")

    found = discover_log_files(base_dir)

    assert found == {
        "build": base_dir / "scripts" / "build.log",
        "backup": base_dir / "system" / "backup.log",
    }
