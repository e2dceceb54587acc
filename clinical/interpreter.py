"""
CCAS — Clinical Interpreter

Maps (parameter name, TrendStatistics) onto a qualitative clinical judgment:
category, trend direction, magnitude, significance, concern level, and a
linear time-to-concern projection.  Purely a function of its inputs plus the
static threshold tables in config.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from config import (
    CLINICAL_THRESHOLDS,
    MAGNITUDE_HIGH,
    MAGNITUDE_MODERATE,
    PARAMETER_CATEGORIES,
    SIGNIFICANCE_CORRELATION_LOW,
    SIGNIFICANCE_P_HIGH,
    SIGNIFICANCE_P_MODERATE,
    TIME_TO_CONCERN_MAX_MONTHS,
    TIME_TO_CONCERN_MIN_SLOPE,
    TREND_DEADBAND,
)
from features.statistics_engine import TrendStatistics
from features.time_series import canonical_name

logger = logging.getLogger(__name__)

INTERPRETATION_TEMPLATES = {
    "glucose_metabolism": {
        "increasing": {
            "high": "Significant upward trend in glucose levels suggesting developing insulin resistance or diabetes progression.",
            "moderate": "Moderate increase in glucose levels that warrants monitoring and potential intervention.",
            "low": "Mild upward trend in glucose levels, continue monitoring.",
        },
        "decreasing": {
            "high": "Significant improvement in glucose control, indicating successful management.",
            "moderate": "Moderate improvement in glucose levels.",
            "low": "Slight improvement in glucose control.",
        },
        "stable": {
            "high": "Glucose levels stable but may be consistently elevated.",
            "moderate": "Glucose levels relatively stable.",
            "low": "Glucose levels stable within acceptable range.",
        },
    },
    "lipid_metabolism": {
        "increasing": {
            "high": "Significant worsening of lipid profile, increased cardiovascular risk.",
            "moderate": "Moderate increase in lipid levels requiring attention.",
            "low": "Slight increase in lipid levels.",
        },
        "decreasing": {
            "high": "Excellent improvement in lipid profile, reduced cardiovascular risk.",
            "moderate": "Good improvement in lipid levels.",
            "low": "Mild improvement in lipid profile.",
        },
    },
    "default": {
        "increasing": {
            "high": "Significant upward trend in {name} requiring clinical attention.",
            "moderate": "Moderate increase in {name} levels.",
            "low": "Mild upward trend in {name}.",
        },
        "decreasing": {
            "high": "Significant improvement in {name} levels.",
            "moderate": "Moderate improvement in {name}.",
            "low": "Slight improvement in {name}.",
        },
        "stable": {
            "high": "{name} levels stable but may require optimization.",
            "moderate": "{name} levels relatively stable.",
            "low": "{name} levels stable within normal range.",
        },
    },
}


@dataclass(frozen=True)
class TimeToConcern:
    months: int
    target_value: float
    direction: str                 # "above_normal" | "below_normal"


@dataclass(frozen=True)
class ClinicalInterpretation:
    parameter: str
    parameter_type: str
    trend_direction: str           # increasing | decreasing | stable
    magnitude: str                 # mild | moderate | high
    significance: str              # minimal | low | moderate | high
    concern_level: str             # low | moderate | high
    is_abnormal: bool
    current_value: float
    reference_range: dict
    interpretation: str
    time_to_concern: Optional[TimeToConcern] = None

    def to_dict(self) -> dict:
        return asdict(self)


class ClinicalInterpreter:
    """Stateless trend → clinical-judgment mapper."""

    def __init__(self, thresholds: Optional[dict] = None):
        self.thresholds = thresholds or CLINICAL_THRESHOLDS
        logger.info("ClinicalInterpreter initialized (%d categories)", len(self.thresholds))

    def interpret(self, parameter: str, stats: TrendStatistics) -> ClinicalInterpretation:
        category = self.classify(parameter)
        thresholds = self.thresholds_for(category)

        direction = self.trend_direction(stats.slope)
        magnitude = self.trend_magnitude(stats.slope)
        significance = self.assess_significance(stats, magnitude, thresholds)
        abnormal = self.is_abnormal(stats.mean, thresholds)
        concern = self.concern_level(significance, abnormal)

        return ClinicalInterpretation(
            parameter=parameter,
            parameter_type=category,
            trend_direction=direction,
            magnitude=magnitude,
            significance=significance,
            concern_level=concern,
            is_abnormal=abnormal,
            current_value=stats.mean,
            reference_range=dict(thresholds["normal_range"]),
            interpretation=self.describe(parameter, category, direction, significance),
            time_to_concern=self.time_to_concern(stats, thresholds),
        )

    # ── step 1: classification ────────────────────────────────

    @staticmethod
    def classify(parameter: str) -> str:
        return PARAMETER_CATEGORIES.get(canonical_name(parameter), "default")

    def thresholds_for(self, category: str) -> dict:
        if category not in self.thresholds:
            logger.debug("No threshold entry for %s, using default", category)
            return self.thresholds["default"]
        return self.thresholds[category]

    # ── steps 2-5: qualitative judgment ───────────────────────

    @staticmethod
    def trend_direction(slope: float) -> str:
        if slope > TREND_DEADBAND:
            return "increasing"
        if slope < -TREND_DEADBAND:
            return "decreasing"
        return "stable"

    @staticmethod
    def trend_magnitude(slope: float) -> str:
        if abs(slope) > MAGNITUDE_HIGH:
            return "high"
        if abs(slope) > MAGNITUDE_MODERATE:
            return "moderate"
        return "mild"

    @staticmethod
    def assess_significance(stats: TrendStatistics, magnitude: str, thresholds: dict) -> str:
        slope = abs(stats.slope)
        if (
            stats.p_value < SIGNIFICANCE_P_HIGH
            and magnitude == "high"
            and slope > thresholds["critical_slope"]
        ):
            return "high"
        if (
            stats.p_value < SIGNIFICANCE_P_MODERATE
            and magnitude != "mild"
            and slope > thresholds["concerning_slope"]
        ):
            return "moderate"
        if stats.correlation > SIGNIFICANCE_CORRELATION_LOW:
            return "low"
        return "minimal"

    @staticmethod
    def is_abnormal(value: float, thresholds: dict) -> bool:
        normal = thresholds["normal_range"]
        return value < normal["min"] or value > normal["max"]

    @staticmethod
    def concern_level(significance: str, abnormal: bool) -> str:
        if significance == "high" or abnormal:
            return "high"
        if significance == "moderate":
            return "moderate"
        return "low"

    # ── step 6: time-to-concern ───────────────────────────────

    @staticmethod
    def time_to_concern(stats: TrendStatistics, thresholds: dict) -> Optional[TimeToConcern]:
        slope = stats.slope
        if abs(slope) < TIME_TO_CONCERN_MIN_SLOPE:
            return None

        normal = thresholds["normal_range"]
        target = normal["max"] if slope > 0 else normal["min"]
        months = abs((target - stats.mean) / slope)
        if months > TIME_TO_CONCERN_MAX_MONTHS:
            return None

        return TimeToConcern(
            months=int(round(months)),
            target_value=target,
            direction="above_normal" if slope > 0 else "below_normal",
        )

    # ── narrative ─────────────────────────────────────────────

    @staticmethod
    def describe(parameter: str, category: str, direction: str, significance: str) -> str:
        templates = INTERPRETATION_TEMPLATES.get(category, INTERPRETATION_TEMPLATES["default"])
        by_direction = templates.get(direction) or templates.get("stable") or INTERPRETATION_TEMPLATES["default"][direction]
        text = by_direction.get(significance, by_direction["low"])
        return text.format(name=parameter)
