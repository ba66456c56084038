"""Rounding and summary-statistic helpers shared by every metric."""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence


def round1(value: float) -> float:
    """Round half up to one decimal so identical inputs always give identical output."""
    return math.floor(value * 10 + 0.5) / 10


def round1_or_none(value: Optional[float]) -> Optional[float]:
    return None if value is None else round1(value)


def mean_or_none(values: Sequence[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


@dataclass(frozen=True)
class Stats:
    avg: Optional[float] = None
    median: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None

    def to_dict(self, unit: str = "") -> Dict[str, Optional[float]]:
        suffix = f"_{unit}" if unit else ""
        return {
            f"avg{suffix}": self.avg,
            f"median{suffix}": self.median,
            f"min{suffix}": self.min,
            f"max{suffix}": self.max,
        }


def calculate_stats(values: Iterable[float]) -> Stats:
    """avg/median/min/max rounded to one decimal; all None for empty input."""
    data: List[float] = [float(v) for v in values if v is not None]
    if not data:
        return Stats()
    return Stats(
        avg=round1(sum(data) / len(data)),
        median=round1(statistics.median(data)),
        min=round1(min(data)),
        max=round1(max(data)),
    )


__all__ = ["round1", "round1_or_none", "mean_or_none", "Stats", "calculate_stats"]
