"""Session health scoring and its human-readable rendering."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from fractions import Fraction

from .config import HealthRange

LOGGER = logging.getLogger(__name__)

HEALTH_MIN = -100
HEALTH_MAX = 100
BAR_WIDTH = 40


def clamp_health(value: int) -> int:
    return max(HEALTH_MIN, min(HEALTH_MAX, value))


def _round_half_away(value: Fraction) -> int:
    if value >= 0:
        return int(value + Fraction(1, 2))
    return -int(-value + Fraction(1, 2))


def normalize(raw: int, total: int) -> int:
    """Percentage of `total` represented by `raw`, clamped to -100..100.

    With no declared total (`total <= 0`) the raw score is clamped directly.
    """
    if total <= 0:
        return clamp_health(raw)
    return clamp_health(_round_half_away(Fraction(raw * 100, total)))


class HealthScorer:
    """Running signed score for one logging session.

    Deltas are stored exactly as given; only the percentage is clamped.
    Not thread-safe: `apply` is a read-modify-write.
    """

    def __init__(self) -> None:
        self._raw = 0
        self._total = 0
        self._normalized = 0

    @property
    def raw(self) -> int:
        return self._raw

    @property
    def total(self) -> int:
        return self._total

    @property
    def normalized(self) -> int:
        return self._normalized

    def declare_total(self, total: int) -> None:
        """Set the normalization denominator (last write wins)."""
        if total < 0:
            LOGGER.warning("Ignoring negative health total %d; treating as undeclared", total)
            total = 0
        self._total = total
        self._normalized = normalize(self._raw, self._total)

    def apply(self, delta: int) -> int:
        """Add `delta` and return the new normalized health."""
        self._raw += delta
        self._normalized = normalize(self._raw, self._total)
        return self._normalized


def _sorted_ranges(ranges: Sequence[HealthRange]) -> list[HealthRange]:
    return sorted(ranges, key=lambda r: r.threshold, reverse=True)


def health_range(normalized: int, ranges: Sequence[HealthRange]) -> HealthRange | None:
    """Return the first band whose threshold is <= normalized."""
    for band in _sorted_ranges(ranges):
        if normalized >= band.threshold:
            return band
    return None


def health_indicator(normalized: int, ranges: Sequence[HealthRange]) -> str:
    """Return '<indicator> <label>' for a normalized score."""
    band = health_range(normalized, ranges)
    if band is None:
        return "? Unknown"
    return f"{band.indicator} {band.label}"


def health_bar(normalized: int, width: int = BAR_WIDTH) -> str:
    """ASCII-ish bar over the -100..100 range rescaled to 0..100."""
    scaled = (clamp_health(normalized) + 100) // 2
    filled = scaled * width // 100
    return f"[{'█' * filled}{'░' * (width - filled)}] ({scaled}/100)"
