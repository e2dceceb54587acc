"""
CCAS — Pattern Detector

Evaluates a fixed catalogue of named clinical rule-sets:

  metabolic_syndrome              latest values, ≥3 of ≥3 available criteria
  diabetic_progression            glucose / HbA1c interpretations
  cardiovascular_risk             latest lipid + blood-pressure values
  kidney_decline                  creatinine / GFR trends and latest values
  metabolic_syndrome_progression  per-timestamp criteria score, first vs last
  cardio_metabolic_interaction    weighted latest-value score

Every rule-set is returned whether or not it fired; an undetected pattern is
a reportable result in its own right.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from config import (
    CARDIO_METABOLIC_DETECT_SCORE,
    CARDIO_METABOLIC_WEIGHTS,
    CARDIOVASCULAR_RISK_CRITERIA,
    CARDIOVASCULAR_RISK_MIN_MET,
    CARDIOVASCULAR_RISK_WEIGHT,
    DIABETES_RISK_TIERS,
    DIABETIC_PROGRESSION_A1C_MEAN,
    DIABETIC_PROGRESSION_DETECT_SCORE,
    DIABETIC_PROGRESSION_GLUCOSE_MEAN,
    KIDNEY_CREATININE_HIGH,
    KIDNEY_GFR_LOW,
    METABOLIC_SYNDROME_CRITERIA,
    METABOLIC_SYNDROME_MIN_MET,
    METABOLIC_SYNDROME_WEIGHT,
    PATTERN_RISK_HIGH,
    PATTERN_RISK_MODERATE,
    PROGRESSION_MIN_TIMEPOINTS,
    PROGRESSION_PARAMETERS,
)
from clinical.correlation_analyzer import CorrelationResult
from clinical.interpreter import ClinicalInterpretation
from features.statistics_engine import StatisticsEngine
from features.time_series import TimeSeries

logger = logging.getLogger(__name__)

GLUCOSE_ALIASES = ("glucose", "fasting_glucose", "blood_glucose")
A1C_ALIASES = ("hba1c", "hemoglobin_a1c", "a1c")
CREATININE_ALIASES = ("creatinine",)
GFR_ALIASES = ("gfr", "egfr")
INTERACTION_ALIASES = {
    "glucose": GLUCOSE_ALIASES,
    "ldl": ("ldl", "ldl_cholesterol"),
    "hdl": ("hdl", "hdl_cholesterol"),
}


@dataclass
class ClinicalPattern:
    pattern_name: str
    detected: bool
    confidence: float
    risk_score: float
    clinical_significance: str
    criteria_met: int
    total_criteria: int
    description: str
    details: dict = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


# ── lookup helpers ────────────────────────────────────────────

def find_series(series: Dict[str, TimeSeries], aliases: Iterable[str]) -> Optional[TimeSeries]:
    for alias in aliases:
        if alias in series:
            return series[alias]
    return None


def latest_value(series: Dict[str, TimeSeries], aliases: Iterable[str]) -> Optional[float]:
    found = find_series(series, aliases)
    return found.latest if found is not None else None


def find_interpretation(
    interpretations: Dict[str, ClinicalInterpretation], aliases: Iterable[str],
) -> Optional[ClinicalInterpretation]:
    """Exact alias match first, then any parameter whose name contains an alias."""
    aliases = tuple(aliases)
    for alias in aliases:
        if alias in interpretations:
            return interpretations[alias]
    for name in sorted(interpretations):
        if any(alias in name for alias in aliases):
            return interpretations[name]
    return None


def _meets(value: float, threshold: float, inverse: bool) -> bool:
    return value < threshold if inverse else value >= threshold


def _tiered_significance(met: int) -> str:
    if met >= 3:
        return "high"
    if met >= 2:
        return "moderate"
    return "low"


class PatternDetector:
    """Rule-set evaluation over extracted series and per-parameter interpretations."""

    def __init__(self):
        logger.info("PatternDetector initialized")

    def detect(
        self,
        series: Dict[str, TimeSeries],
        interpretations: Dict[str, ClinicalInterpretation],
    ) -> List[ClinicalPattern]:
        patterns = [
            self.metabolic_syndrome(series),
            self.diabetic_progression(interpretations),
            self.cardiovascular_risk(series),
            self.kidney_decline(series, interpretations),
            self.metabolic_syndrome_progression(series),
            self.cardio_metabolic_interaction(series),
        ]
        logger.info(
            "Pattern detection: %d rule-sets evaluated, %d detected",
            len(patterns), sum(1 for p in patterns if p.detected),
        )
        return patterns

    # ── threshold-count rule-sets ─────────────────────────────

    def _count_criteria(
        self, series: Dict[str, TimeSeries], criteria: dict,
    ) -> Tuple[int, int, dict]:
        details = {}
        for name, (aliases, threshold, inverse) in criteria.items():
            value = latest_value(series, aliases)
            details[name] = {
                "threshold": threshold,
                "inverse": inverse,
                "value": value,
                "met": value is not None and _meets(value, threshold, inverse),
            }
        met = sum(1 for c in details.values() if c["met"])
        available = sum(1 for c in details.values() if c["value"] is not None)
        return met, available, details

    def metabolic_syndrome(self, series: Dict[str, TimeSeries]) -> ClinicalPattern:
        met, available, details = self._count_criteria(series, METABOLIC_SYNDROME_CRITERIA)
        detected = met >= METABOLIC_SYNDROME_MIN_MET and available >= METABOLIC_SYNDROME_MIN_MET

        recommendations = []
        if met >= METABOLIC_SYNDROME_MIN_MET:
            recommendations += [
                "Immediate lifestyle intervention recommended",
                "Consider metabolic syndrome evaluation",
                "Cardiovascular risk assessment indicated",
            ]
        if details["glucose"]["met"]:
            recommendations.append("Diabetes screening and glucose management")
        if details["triglycerides"]["met"]:
            recommendations.append("Lipid management and dietary intervention")
        if details["hdl"]["met"]:
            recommendations.append("Exercise program to improve HDL cholesterol")

        return ClinicalPattern(
            pattern_name="metabolic_syndrome",
            detected=detected,
            confidence=met / available if available else 0.0,
            risk_score=met * METABOLIC_SYNDROME_WEIGHT,
            clinical_significance=_tiered_significance(met),
            criteria_met=met,
            total_criteria=available,
            description=f"{met} of {available} metabolic syndrome criteria met",
            details=details,
            recommendations=recommendations,
        )

    def cardiovascular_risk(self, series: Dict[str, TimeSeries]) -> ClinicalPattern:
        met, available, details = self._count_criteria(series, CARDIOVASCULAR_RISK_CRITERIA)
        detected = met >= CARDIOVASCULAR_RISK_MIN_MET and available >= CARDIOVASCULAR_RISK_MIN_MET

        recommendations = []
        if detected:
            recommendations += [
                "Consider statin therapy evaluation",
                "Cardiovascular risk calculator assessment",
            ]
        if details["blood_pressure"]["met"]:
            recommendations.append("Monitor blood pressure regularly")
        if details["ldl"]["met"] or details["total_cholesterol"]["met"]:
            recommendations.append("Lipid management and dietary intervention")

        return ClinicalPattern(
            pattern_name="cardiovascular_risk",
            detected=detected,
            confidence=met / available if available else 0.0,
            risk_score=min(met * CARDIOVASCULAR_RISK_WEIGHT, 1.0),
            clinical_significance=_tiered_significance(met),
            criteria_met=met,
            total_criteria=available,
            description=(
                f"{met} of {available} cardiovascular risk criteria met"
                if available else "Cardiovascular risk analysis pending: no lipid data"
            ),
            details=details,
            recommendations=recommendations,
        )

    # ── trend-driven rule-sets ────────────────────────────────

    def diabetic_progression(
        self, interpretations: Dict[str, ClinicalInterpretation],
    ) -> ClinicalPattern:
        glucose = find_interpretation(interpretations, GLUCOSE_ALIASES)
        a1c = find_interpretation(interpretations, A1C_ALIASES)

        components = {}
        for key, interp in (("glucose_trend", glucose), ("a1c_trend", a1c)):
            components[key] = None if interp is None else {
                "direction": interp.trend_direction,
                "significance": interp.significance,
                "current_value": interp.current_value,
            }

        glucose_up = glucose is not None and glucose.trend_direction == "increasing"
        a1c_up = a1c is not None and a1c.trend_direction == "increasing"

        risk = 0.0
        met = 0
        for hit, weight in (
            (glucose_up, 0.3),
            (a1c_up, 0.3),
            (glucose is not None and glucose.current_value > DIABETIC_PROGRESSION_GLUCOSE_MEAN, 0.2),
            (a1c is not None and a1c.current_value > DIABETIC_PROGRESSION_A1C_MEAN, 0.2),
        ):
            if hit:
                risk += weight
                met += 1
        risk = round(risk, 10)

        rising = []
        if glucose_up:
            rising.append("rising glucose levels")
        if a1c_up:
            rising.append("increasing HbA1c")
        description = (
            f"Diabetic progression pattern indicated by {' and '.join(rising)}"
            if rising else "No clear diabetic progression pattern detected"
        )

        if risk >= PATTERN_RISK_HIGH:
            recommendations = [
                "Urgent diabetes evaluation recommended",
                "Consider immediate lifestyle intervention",
                "Endocrinology referral may be indicated",
            ]
        elif risk >= PATTERN_RISK_MODERATE:
            recommendations = [
                "Diabetes screening recommended",
                "Lifestyle modification counseling",
                "More frequent glucose monitoring",
            ]
        else:
            recommendations = []

        return ClinicalPattern(
            pattern_name="diabetic_progression",
            detected=risk >= DIABETIC_PROGRESSION_DETECT_SCORE,
            confidence=risk,
            risk_score=risk,
            clinical_significance=(
                "high" if risk >= PATTERN_RISK_HIGH
                else "moderate" if risk >= PATTERN_RISK_MODERATE else "low"
            ),
            criteria_met=met,
            total_criteria=4,
            description=description,
            details={"components": components},
            recommendations=recommendations,
        )

    def kidney_decline(
        self,
        series: Dict[str, TimeSeries],
        interpretations: Dict[str, ClinicalInterpretation],
    ) -> ClinicalPattern:
        creatinine = find_interpretation(interpretations, CREATININE_ALIASES)
        gfr = find_interpretation(interpretations, GFR_ALIASES)
        latest_creatinine = latest_value(series, CREATININE_ALIASES)
        latest_gfr = latest_value(series, GFR_ALIASES)

        details = {
            "creatinine_increasing": {
                "available": creatinine is not None,
                "met": creatinine is not None and creatinine.trend_direction == "increasing",
            },
            "gfr_decreasing": {
                "available": gfr is not None,
                "met": gfr is not None and gfr.trend_direction == "decreasing",
            },
            "abnormal_latest": {
                "available": latest_creatinine is not None or latest_gfr is not None,
                "met": (
                    (latest_creatinine is not None and latest_creatinine > KIDNEY_CREATININE_HIGH)
                    or (latest_gfr is not None and latest_gfr < KIDNEY_GFR_LOW)
                ),
                "latest_creatinine": latest_creatinine,
                "latest_gfr": latest_gfr,
            },
        }
        met = sum(1 for c in details.values() if c["met"])
        available = sum(1 for c in details.values() if c["available"])
        detected = met >= 2

        if not available:
            description = "Kidney function analysis pending: no creatinine or GFR data"
        elif detected:
            description = f"Declining kidney function: {met} of 3 criteria met"
        else:
            description = f"No clear kidney decline pattern ({met} of {available} criteria met)"

        return ClinicalPattern(
            pattern_name="kidney_decline",
            detected=detected,
            confidence=met / available if available else 0.0,
            risk_score=met / 3,
            clinical_significance=_tiered_significance(met),
            criteria_met=met,
            total_criteria=available,
            description=description,
            details=details,
            recommendations=[
                "Nephrology referral may be indicated",
                "Monitor renal function every 3 months",
                "Review medications for renal dosing",
            ] if detected else [],
        )

    # ── progression-sensitive rule-set ────────────────────────

    @staticmethod
    def joint_timepoints(series: Dict[str, TimeSeries], parameters=PROGRESSION_PARAMETERS) -> List[dict]:
        """Group the given parameters' samples by exact timestamp."""
        groups = {}
        for param in parameters:
            if param not in series:
                continue
            for ts, value in series[param].points:
                group = groups.setdefault(ts, {p: None for p in parameters})
                group[param] = value
        return [dict(groups[ts], timestamp=ts) for ts in sorted(groups)]

    @staticmethod
    def criteria_score(timepoint: dict) -> int:
        score = 0
        for aliases, threshold, inverse in (
            METABOLIC_SYNDROME_CRITERIA["glucose"],
            METABOLIC_SYNDROME_CRITERIA["triglycerides"],
            METABOLIC_SYNDROME_CRITERIA["hdl"],
        ):
            value = timepoint.get(aliases[0])
            if value is not None and _meets(value, threshold, inverse):
                score += 1
        return score

    def metabolic_syndrome_progression(self, series: Dict[str, TimeSeries]) -> ClinicalPattern:
        timepoints = self.joint_timepoints(series)
        total = len(PROGRESSION_PARAMETERS)

        if len(timepoints) < PROGRESSION_MIN_TIMEPOINTS:
            return ClinicalPattern(
                pattern_name="metabolic_syndrome_progression",
                detected=False,
                confidence=0.0,
                risk_score=0.0,
                clinical_significance="low",
                criteria_met=0,
                total_criteria=total,
                description="Insufficient time points for progression analysis",
                details={"reason": "insufficient", "time_points": len(timepoints)},
            )

        progression = [
            {"timestamp": tp["timestamp"].isoformat(), "score": self.criteria_score(tp), "total_possible": total}
            for tp in timepoints
        ]
        initial = progression[0]["score"]
        final = progression[-1]["score"]
        change = final - initial
        trend = "worsening" if change > 0 else "improving" if change < 0 else "stable"
        detected = trend == "worsening"

        return ClinicalPattern(
            pattern_name="metabolic_syndrome_progression",
            detected=detected,
            confidence=0.8 if detected else 0.2,
            risk_score=final / total,
            clinical_significance="high" if detected else "low",
            criteria_met=final,
            total_criteria=total,
            description=(
                "Progressive metabolic syndrome development detected over time"
                if detected else "No clear metabolic syndrome progression pattern"
            ),
            details={
                "trend": trend,
                "initial_score": initial,
                "final_score": final,
                "score_change": change,
                "velocity": change / len(progression),
                "progression_data": progression,
            },
            recommendations=[
                "Urgent metabolic intervention required",
                "Consider medication for diabetes prevention",
                "Intensive lifestyle modification program",
                "Regular monitoring every 3 months",
            ] if detected else [],
        )

    # ── weighted multi-system rule-set ────────────────────────

    def cardio_metabolic_interaction(self, series: Dict[str, TimeSeries]) -> ClinicalPattern:
        total_weight = 0.0
        met_weight = 0.0
        met = 0
        details = {}
        for param, threshold, inverse, weight in CARDIO_METABOLIC_WEIGHTS:
            value = latest_value(series, INTERACTION_ALIASES.get(param, (param,)))
            hit = value is not None and _meets(value, threshold, inverse)
            details[param] = {"value": value, "threshold": threshold, "weight": weight, "met": hit}
            total_weight += weight
            if hit:
                met_weight += weight
                met += 1

        score = met_weight / total_weight if total_weight else 0.0
        detected = score >= CARDIO_METABOLIC_DETECT_SCORE
        return ClinicalPattern(
            pattern_name="cardio_metabolic_interaction",
            detected=detected,
            confidence=score,
            risk_score=score,
            clinical_significance="high" if detected else "moderate",
            criteria_met=met,
            total_criteria=len(CARDIO_METABOLIC_WEIGHTS),
            description=(
                "Significant cardio-metabolic system interaction detected"
                if detected else "Limited cardio-metabolic interaction"
            ),
            details={"interaction_score": score, "criteria": details},
            recommendations=[
                "Comprehensive cardiovascular risk assessment",
                "Metabolic syndrome management",
                "Integrated cardio-metabolic care team",
            ] if detected else [],
        )

    # ── risk trajectory ───────────────────────────────────────

    @staticmethod
    def diabetes_risk_trajectory(series: Dict[str, TimeSeries]) -> dict:
        glucose = find_series(series, GLUCOSE_ALIASES)
        latest = glucose.latest if glucose is not None else None

        current_risk = 0.0
        if latest is not None:
            for floor, risk in DIABETES_RISK_TIERS:
                if latest >= floor:
                    current_risk = risk
                    break

        trend = StatisticsEngine.simple_trend(glucose.values if glucose is not None else [])
        projected = min(current_risk + trend["slope"] * 0.1, 1.0)
        urgency = "high" if current_risk > 0.6 else "moderate" if current_risk > 0.3 else "low"

        if current_risk > 0.6:
            recommendations = ["Immediate medical intervention required"]
        elif current_risk > 0.3:
            recommendations = ["Intensive lifestyle modification"]
        else:
            recommendations = ["Regular monitoring recommended"]

        return {
            "trajectory_name": "diabetes_risk",
            "current_risk": current_risk,
            "projected_5_year": projected,
            "trend_direction": "increasing" if trend["slope"] > 0 else "stable_or_decreasing",
            "urgency": urgency,
            "time_to_intervention": "0-3 months" if urgency == "high" else "3-12 months",
            "recommendations": recommendations,
        }

    # ── aggregate views ───────────────────────────────────────

    def advanced_patterns(self, patterns: List[ClinicalPattern], series: Dict[str, TimeSeries]) -> dict:
        """Temporal, multi-system and trajectory view over the evaluated catalogue."""
        by_name = {p.pattern_name: p for p in patterns}
        progression = by_name.get("metabolic_syndrome_progression")
        interaction = by_name.get("cardio_metabolic_interaction")
        progressive = [
            by_name[name].to_dict() for name in ("diabetic_progression", "kidney_decline")
            if name in by_name and by_name[name].detected
        ]
        trajectory = self.diabetes_risk_trajectory(series)

        groups = {
            "temporal_evolution": {
                "detected_patterns": [progression.to_dict()] if progression and progression.detected else [],
                "velocity_of_change": progression.details.get("velocity", 0.0) if progression else 0.0,
            },
            "multi_system_interactions": {
                "detected_patterns": [interaction.to_dict()] if interaction and interaction.detected else [],
            },
            "progressive_patterns": {
                "detected_patterns": progressive,
                "intervention_urgency": "Prompt intervention" if progressive else "Routine monitoring",
            },
            "risk_trajectories": {
                "risk_trajectories": [trajectory],
                "composite_risk": {"level": trajectory["urgency"]},
                "time_to_intervention": trajectory["time_to_intervention"],
            },
        }

        detected = [p for g in groups.values() for p in g.get("detected_patterns", [])]
        count = len(detected)

        recommendations = []
        if groups["temporal_evolution"]["detected_patterns"]:
            recommendations.append("Temporal pattern evolution detected - enhanced monitoring required")
        if groups["multi_system_interactions"]["detected_patterns"]:
            recommendations.append("Multi-system interactions require coordinated care approach")

        return dict(
            groups,
            pattern_count=count,
            overall_assessment={
                "complexity_score": count,
                "risk_level": "high" if count >= 3 else "moderate" if count >= 1 else "low",
                "clinical_urgency": "urgent" if count >= 3 else "moderate" if count >= 1 else "routine",
            },
            confidence=sum(p["confidence"] for p in detected) / count if count else 0.0,
            clinical_recommendations=recommendations,
        )

    @staticmethod
    def summarize(patterns: List[ClinicalPattern], correlations: List[CorrelationResult]) -> dict:
        highest = None
        for pattern in patterns:
            if highest is None or pattern.risk_score > highest.risk_score:
                highest = pattern

        significant = sum(
            1 for c in correlations
            if c.clinical_significance == "high" or abs(c.correlation_coefficient) > 0.6
        )

        top_risk = highest.risk_score if highest is not None else 0.0
        if top_risk >= PATTERN_RISK_HIGH:
            overall = "high"
        elif top_risk >= PATTERN_RISK_MODERATE or significant > 2:
            overall = "moderate"
        else:
            overall = "low"

        return {
            "significant_relationships": significant,
            "clinical_patterns_detected": sum(1 for p in patterns if p.detected),
            "strongest_correlation": correlations[0].to_dict() if correlations else None,
            "highest_risk_pattern": highest.to_dict() if highest is not None else None,
            "overall_risk_assessment": overall,
        }
