from __future__ import annotations

import logging

import pytest

from rail_observability.core.config import HealthConfig
from rail_observability.core.health import HealthScorer, health_bar, health_indicator, normalize


def test_normalize_without_total_clamps_raw() -> None:
    assert normalize(42, 0) == 42
    assert normalize(150, 0) == 100
    assert normalize(-250, 0) == -100


@pytest.mark.parametrize(
    ("raw", "total", "expected"),
    [
        (7, 20, 35),
        (1, 8, 13),  # 12.5 rounds away from zero
        (-1, 8, -13),
        (30, 40, 75),
        (300, 100, 100),
        (-300, 100, -100),
    ],
)
def test_normalize_with_total(raw: int, total: int, expected: int) -> None:
    assert normalize(raw, total) == expected


def test_scorer_keeps_exact_raw_sum() -> None:
    scorer = HealthScorer()
    for delta in (10, -3, 250, -400):
        scorer.apply(delta)

    assert scorer.raw == -143
    assert scorer.normalized == -100


def test_scorer_uses_declared_total() -> None:
    scorer = HealthScorer()
    scorer.declare_total(40)

    assert scorer.apply(10) == 25
    assert scorer.apply(5) == 38
    assert scorer.raw == 15


def test_negative_total_is_ignored(caplog: pytest.LogCaptureFixture) -> None:
    scorer = HealthScorer()
    with caplog.at_level(logging.WARNING):
        scorer.declare_total(-10)

    assert scorer.total == 0
    assert scorer.apply(12) == 12
    assert "negative health total" in caplog.text


def test_health_indicator_bands() -> None:
    ranges = HealthConfig().ranges

    assert health_indicator(95, ranges).startswith("💚 Excellent")
    assert health_indicator(0, ranges) == "⚫ Neutral - balanced state"
    assert health_indicator(-5, ranges).startswith("🔴 Slight Negative")
    assert health_indicator(-100, ranges).startswith("💀 Dead")
    assert health_indicator(50, []) == "? Unknown"


def test_health_bar_scales_range() -> None:
    bar = health_bar(0, width=10)

    assert bar == "[█████░░░░░] (50/100)"
    assert health_bar(100, width=4).startswith("[████]")
