"""
CCAS — Statistics Engine

Computes per-parameter trend statistics over a single TimeSeries:
  • Descriptive statistics (mean, median, std, coefficient of variation)
  • Ordinary least-squares regression against the sample index
  • Pearson r, r², and a coarse p-value lookup
  • Trend consistency and volatility
  • Data-quality rating (points × time span)

Known approximation: regression uses x = point index, not elapsed time, so
irregular sampling intervals are treated as evenly spaced.  The p-value is a
lookup keyed on |t| thresholds and must be read as a rough significance
heuristic, never as a certified statistical test.
"""

import logging
import math
from dataclasses import asdict, dataclass
from typing import List, Optional, Sequence

import numpy as np

from config import (
    DATA_QUALITY_DEFAULT,
    DATA_QUALITY_TIERS,
    MIN_TREND_POINTS,
    P_VALUE_FLOOR,
    P_VALUE_TABLE,
)
from features.time_series import TimeSeries

logger = logging.getLogger(__name__)


def approximate_p_value(t_stat: float) -> float:
    """Map |t| onto the fixed significance table."""
    t_abs = abs(t_stat)
    for threshold, p_value in P_VALUE_TABLE:
        if t_abs > threshold:
            return p_value
    return P_VALUE_FLOOR


def t_statistic(r: float, n: int) -> float:
    r_squared = r * r
    if n <= 2:
        return 0.0
    if r_squared >= 1.0:
        return math.inf
    return abs(r) * math.sqrt((n - 2) / (1.0 - r_squared))


@dataclass(frozen=True)
class TrendStatistics:
    """Derived fresh every run; never mutated."""

    parameter: str
    data_points: int
    mean: float
    median: float
    std_deviation: float
    coefficient_of_variation: float
    slope: float
    intercept: float
    correlation: float
    r_squared: float
    p_value: float
    trend_consistency: float
    volatility_score: float

    def to_dict(self) -> dict:
        return asdict(self)


class StatisticsEngine:
    """
    Stateless trend-statistics calculator.

    `compute` returns None (the insufficient-data sentinel) when fewer than
    MIN_TREND_POINTS valid values are available; callers skip the parameter.
    """

    def __init__(self, min_points: int = MIN_TREND_POINTS):
        self.min_points = min_points
        logger.info("StatisticsEngine initialized (min_points=%d)", min_points)

    # ── public API ────────────────────────────────────────────

    def compute(self, series: TimeSeries) -> Optional[TrendStatistics]:
        """Compute TrendStatistics for one parameter's series."""
        values = [v for v in series.values if v is not None and not math.isnan(v)]
        parameter = series.parameter
        if len(values) < self.min_points:
            logger.debug(
                "Skipping %s: %d points (< %d)", parameter, len(values), self.min_points,
            )
            return None
        return self.compute_values(values, parameter)

    def compute_values(self, values: Sequence[float], parameter: str) -> Optional[TrendStatistics]:
        if len(values) < self.min_points:
            return None

        y = np.asarray(values, dtype=float)
        n = len(y)
        x = np.arange(n, dtype=float)

        mean = float(y.mean())
        median = float(np.sort(y)[n // 2])
        std_deviation = float(np.sqrt(((y - mean) ** 2).sum() / n))
        coefficient_of_variation = std_deviation / mean if mean != 0 else 0.0

        sum_x = float(x.sum())
        sum_y = float(y.sum())
        sum_xy = float((x * y).sum())
        sum_xx = float((x * x).sum())
        sum_yy = float((y * y).sum())

        slope_den = n * sum_xx - sum_x * sum_x
        slope = (n * sum_xy - sum_x * sum_y) / slope_den
        intercept = (sum_y - slope * sum_x) / n

        r_den = math.sqrt(max(slope_den * (n * sum_yy - sum_y * sum_y), 0.0))
        correlation = (n * sum_xy - sum_x * sum_y) / r_den if r_den > 0 else 0.0
        correlation = max(-1.0, min(1.0, correlation))
        r_squared = correlation * correlation

        p_value = approximate_p_value(t_statistic(correlation, n))

        return TrendStatistics(
            parameter=parameter,
            data_points=n,
            mean=mean,
            median=median,
            std_deviation=std_deviation,
            coefficient_of_variation=coefficient_of_variation,
            slope=slope,
            intercept=intercept,
            correlation=correlation,
            r_squared=r_squared,
            p_value=p_value,
            trend_consistency=self.trend_consistency(values),
            volatility_score=self.volatility_score(values),
        )

    # ── derived metrics ───────────────────────────────────────

    @staticmethod
    def trend_consistency(values: Sequence[float]) -> float:
        """Fraction of consecutive deltas whose direction matches last − first."""
        if len(values) < MIN_TREND_POINTS:
            return 0.0
        overall_up = values[-1] > values[0]
        consistent = sum(
            1 for prev, cur in zip(values, values[1:]) if (cur > prev) == overall_up
        )
        return consistent / (len(values) - 1)

    @staticmethod
    def volatility_score(values: Sequence[float]) -> float:
        """Mean absolute deviation normalized by the mean."""
        if len(values) < MIN_TREND_POINTS:
            return 0.0
        y = np.asarray(values, dtype=float)
        mean = float(y.mean())
        if mean == 0:
            return 0.0
        return float(np.abs(y - mean).mean()) / mean

    @staticmethod
    def simple_trend(values: Sequence[float]) -> dict:
        """Least-squares slope against index, for quick per-parameter summaries."""
        n = len(values)
        if n < 2:
            return {"slope": 0.0, "confidence": 0.0}
        x = np.arange(n, dtype=float)
        y = np.asarray(values, dtype=float)
        denominator = float(((x - x.mean()) ** 2).sum())
        slope = float(((x - x.mean()) * (y - y.mean())).sum()) / denominator if denominator else 0.0
        return {"slope": slope, "confidence": min(n / 5, 1.0)}

    # ── data quality ──────────────────────────────────────────

    def assess_data_quality(self, series: TimeSeries) -> dict:
        points = len(series)
        span = series.span_days

        rating, confidence = DATA_QUALITY_DEFAULT
        for min_points, min_span, tier_rating, tier_confidence in DATA_QUALITY_TIERS:
            if points >= min_points and span >= min_span:
                rating, confidence = tier_rating, tier_confidence
                break

        return {
            "quality_rating": rating,
            "confidence_level": confidence,
            "data_points": points,
            "time_span_days": round(span),
            "recommendations": self._quality_recommendations(rating, points, span),
        }

    @staticmethod
    def _quality_recommendations(rating: str, points: int, span: float) -> List[str]:
        recommendations = []
        if points < 5:
            recommendations.append("Collect more data points for better trend analysis")
        if span < 90:
            recommendations.append("Extend monitoring period for more reliable trends")
        if rating == "poor":
            recommendations.append("Current data insufficient for clinical decision making")
        return recommendations
