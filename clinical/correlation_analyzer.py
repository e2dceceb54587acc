"""
CCAS — Correlation Analyzer

Pairwise Pearson correlation between every parameter's time series.

Alignment: each sample of series A is paired with the nearest-in-time sample
of series B inside a ±CORRELATION_WINDOW_DAYS window (ties go to the earlier
B sample).  Pairs with fewer than CORRELATION_MIN_POINTS aligned samples, or
with zero variance on either side, are excluded.  Output is filtered to
|r| > CORRELATION_MIN_ABS and sorted by |r| descending.
"""

import bisect
import logging
import math
from dataclasses import asdict, dataclass
from datetime import timedelta
from itertools import combinations
from typing import Dict, List, Optional, Tuple

import numpy as np

from config import (
    CLINICALLY_MEANINGFUL_PAIRS,
    CORRELATION_MIN_ABS,
    CORRELATION_MIN_POINTS,
    CORRELATION_STRENGTH_TIERS,
    CORRELATION_STRONG_ABS,
    CORRELATION_WINDOW_DAYS,
)
from features.statistics_engine import approximate_p_value, t_statistic
from features.time_series import TimeSeries, canonical_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorrelationResult:
    parameter1: str
    parameter2: str
    correlation_coefficient: float
    strength: str
    direction: str                 # positive | negative
    clinical_significance: str     # high | moderate | low
    data_points: int
    p_value: float

    def to_dict(self) -> dict:
        return asdict(self)


def pair_key(param1: str, param2: str) -> str:
    """Order-independent lookup key for a parameter pair."""
    return "_".join(sorted((canonical_name(param1), canonical_name(param2))))


def correlation_strength(coefficient: float) -> str:
    magnitude = abs(coefficient)
    for floor, label in CORRELATION_STRENGTH_TIERS:
        if magnitude >= floor:
            return label
    return "very_weak"


def clinical_significance(param1: str, param2: str, coefficient: float) -> str:
    """Named-pair lookup first, then a magnitude fallback."""
    pair = CLINICALLY_MEANINGFUL_PAIRS.get(pair_key(param1, param2))
    if pair is not None:
        threshold = pair["threshold"]
        meets = coefficient >= threshold if threshold > 0 else coefficient <= threshold
        if meets:
            return pair["significance"]

    magnitude = abs(coefficient)
    if magnitude >= 0.7:
        return "high"
    if magnitude >= 0.5:
        return "moderate"
    return "low"


class CorrelationAnalyzer:
    """Cross-parameter correlation over time-aligned samples."""

    def __init__(
        self,
        window_days: float = CORRELATION_WINDOW_DAYS,
        min_points: int = CORRELATION_MIN_POINTS,
        min_abs: float = CORRELATION_MIN_ABS,
    ):
        self.window = timedelta(days=window_days)
        self.min_points = min_points
        self.min_abs = min_abs
        logger.info(
            "CorrelationAnalyzer initialized (window=%sd, min_points=%d, |r|>%.2f)",
            window_days, min_points, min_abs,
        )

    def analyze(self, series: Dict[str, TimeSeries]) -> List[CorrelationResult]:
        eligible = {
            name: ts for name, ts in series.items() if len(ts) >= self.min_points
        }
        results = []
        for name_a, name_b in combinations(sorted(eligible), 2):
            result = self.correlate(eligible[name_a], eligible[name_b])
            if result is not None and abs(result.correlation_coefficient) > self.min_abs:
                results.append(result)

        results.sort(key=lambda r: abs(r.correlation_coefficient), reverse=True)
        logger.info(
            "Correlation analysis: %d parameters, %d significant pairs",
            len(eligible), len(results),
        )
        return results

    def correlate(self, series_a: TimeSeries, series_b: TimeSeries) -> Optional[CorrelationResult]:
        """Correlate two series, or None if the pair is not analyzable."""
        pairs = self.align(series_a, series_b)
        if len(pairs) < self.min_points:
            logger.debug(
                "Pair %s/%s excluded: %d aligned samples",
                series_a.parameter, series_b.parameter, len(pairs),
            )
            return None

        coefficient = self.pearson([a for a, _ in pairs], [b for _, b in pairs])
        if coefficient is None:
            return None

        n = len(pairs)
        return CorrelationResult(
            parameter1=series_a.parameter,
            parameter2=series_b.parameter,
            correlation_coefficient=coefficient,
            strength=correlation_strength(coefficient),
            direction="positive" if coefficient > 0 else "negative",
            clinical_significance=clinical_significance(
                series_a.parameter, series_b.parameter, coefficient
            ),
            data_points=n,
            p_value=approximate_p_value(t_statistic(coefficient, n)),
        )

    def align(self, series_a: TimeSeries, series_b: TimeSeries) -> List[Tuple[float, float]]:
        """Pair each A sample with the nearest B sample inside the window."""
        b_times = series_b.timestamps
        b_values = series_b.values
        pairs = []
        for ts, value in series_a.points:
            idx = bisect.bisect_left(b_times, ts)
            best = None
            best_gap = None
            # only neighbours around the insertion point can be nearest
            for candidate in (idx - 1, idx):
                if 0 <= candidate < len(b_times):
                    gap = abs(b_times[candidate] - ts)
                    if gap <= self.window and (best_gap is None or gap < best_gap):
                        best, best_gap = candidate, gap
            if best is not None:
                pairs.append((value, b_values[best]))
        return pairs

    @staticmethod
    def pearson(x: List[float], y: List[float]) -> Optional[float]:
        """Pearson r, or None when either side has zero variance."""
        xs = np.asarray(x, dtype=float)
        ys = np.asarray(y, dtype=float)
        if np.ptp(xs) == 0 or np.ptp(ys) == 0:
            return None

        dx = xs - xs.mean()
        dy = ys - ys.mean()
        denominator = math.sqrt(float((dx * dx).sum()) * float((dy * dy).sum()))
        if denominator == 0:
            return None

        coefficient = float((dx * dy).sum()) / denominator
        return max(-1.0, min(1.0, coefficient))

    @staticmethod
    def summarize(results: List[CorrelationResult]) -> dict:
        return {
            "total_correlations": len(results),
            "strong_correlations": sum(
                1 for r in results if abs(r.correlation_coefficient) > CORRELATION_STRONG_ABS
            ),
            "clinically_significant": sum(
                1 for r in results if r.clinical_significance == "high"
            ),
        }
