"""
CCAS — Clinical Feature Engine

Runs the analysis pipeline over one PatientContext:

  1. TimeSeriesExtractor   raw lab records → per-parameter series
  2. StatisticsEngine      per-parameter TrendStatistics + data quality
  3. ClinicalInterpreter   per-parameter clinical judgment
  4. CorrelationAnalyzer   cross-parameter relationships
  5. PatternDetector       rule-set catalogue, advanced patterns
  6. Consultant            specialist opinions (stub or LLM)
  7. Synthesizer           prioritized recommendations

Results are written to engineered_features["enhanced_clinical"] and
engineered_features["metadata"]["clinical_analysis"].  A stage that raises
is recorded as {"status": "failed", "error": ...} and the run continues
with empty inputs for the stages after it.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from config import ENGINE_VERSION, SPECIALISTS
from clinical.correlation_analyzer import CorrelationAnalyzer
from clinical.interpreter import ClinicalInterpreter
from clinical.pattern_detector import PatternDetector
from consultation.consultant import NarrativeConsultant, StubConsultant
from consultation.prompt_builder import PromptBuilder
from consultation.recommendation_synthesizer import RecommendationSynthesizer
from features.statistics_engine import StatisticsEngine
from features.time_series import TimeSeriesExtractor

logger = logging.getLogger(__name__)

NO_TRENDS_CONFIDENCE = 0.1


def stage_failure(error: Exception) -> dict:
    return {"status": "failed", "error": str(error)}


def _stored_or_computed(stored_trends: dict, key: str, computed):
    """A stored trend value wins unless it is missing or null."""
    stored = stored_trends.get(key)
    return computed if stored is None else stored


class ClinicalFeatureEngine:
    """
    Stateless apart from its collaborators; one instance may serve many
    assessments because every run works on its own context argument.
    """

    def __init__(
        self,
        consultant: Optional[NarrativeConsultant] = None,
        specialists=SPECIALISTS,
    ):
        self.extractor = TimeSeriesExtractor()
        self.statistics = StatisticsEngine()
        self.interpreter = ClinicalInterpreter()
        self.correlations = CorrelationAnalyzer()
        self.patterns = PatternDetector()
        self.prompt_builder = PromptBuilder()
        self.synthesizer = RecommendationSynthesizer()
        self.consultant = consultant or StubConsultant()
        self.specialists = tuple(specialists)
        logger.info(
            "ClinicalFeatureEngine initialized (version=%s, consultant=%s)",
            ENGINE_VERSION, type(self.consultant).__name__,
        )

    # ── public API ────────────────────────────────────────────

    def extract_clinical_features(self, context) -> dict:
        """Run every stage and write the results into the context."""
        t0 = time.perf_counter()
        lab_results = context.raw_data.get("lab_results") or {}
        stored_trends = context.engineered_features.get("trends") or {}

        series = self._run_stage("extraction", lambda: self.extractor.extract(lab_results), {})

        statistical = self._run_stage(
            "statistical_analysis", lambda: self.analyze_trends(series, stored_trends), None,
        )
        stats_ok = isinstance(statistical, dict) and "status" not in statistical
        interpretations = statistical.pop("_interpretations") if stats_ok else {}

        relationships = self._run_stage(
            "parameter_relationships",
            lambda: self.analyze_relationships(series, interpretations),
            None,
        )
        rel_ok = isinstance(relationships, dict) and "status" not in relationships
        detected = relationships.pop("_patterns") if rel_ok else []
        correlations = relationships.pop("_correlations") if rel_ok else []
        opinions = (
            relationships.get("specialist_consultation", {}).get("specialist_opinions", {})
            if rel_ok else {}
        )

        advanced = self._run_stage(
            "advanced_patterns", lambda: self.patterns.advanced_patterns(detected, series), None,
        )
        recommendations = self._run_stage(
            "recommendations",
            lambda: self.synthesizer.synthesize(
                opinions, interpretations.values(), detected, correlations,
            ),
            None,
        )

        features = {
            "statistical_analysis": statistical,
            "parameter_relationships": relationships,
            "advanced_patterns": advanced,
            "recommendations": recommendations,
        }
        analysis_meta = {
            "engine_version": ENGINE_VERSION,
            "analysis_timestamp": datetime.now(timezone.utc).isoformat(),
            "confidence_score": self.overall_confidence(statistical if stats_ok else {}),
            "clinical_significance": self.clinical_significance(statistical if stats_ok else {}),
        }

        for key, value in features.items():
            context.add_engineered_feature("enhanced_clinical", key, value)
        context.add_engineered_feature("metadata", "clinical_analysis", analysis_meta)

        elapsed = (time.perf_counter() - t0) * 1000
        logger.info(
            "Clinical features extracted for %s: %d parameters, confidence=%.2f (%.0f ms)",
            context.case_id, len(series), analysis_meta["confidence_score"], elapsed,
        )
        return dict(features, analysis_metadata=analysis_meta)

    # ── stage 1: per-parameter statistics ─────────────────────

    def analyze_trends(self, series: Dict, stored_trends: Optional[dict] = None) -> dict:
        """Per-parameter statistics, interpretation and data quality."""
        stored_trends = stored_trends or {}
        enhanced = {}
        interpretations = {}

        for name in sorted(series):
            ts = series[name]
            stats = self.statistics.compute(ts)
            if stats is None:
                continue
            interp = self.interpreter.interpret(name, stats)
            interpretations[name] = interp

            enhanced[name] = {
                "linear_regression": {
                    "slope": _stored_or_computed(stored_trends, f"{name}_slope", stats.slope),
                    "correlation": _stored_or_computed(
                        stored_trends, f"{name}_correlation", stats.correlation,
                    ),
                    "r_squared": stats.r_squared,
                    "p_value": stats.p_value,
                },
                "enhanced_statistics": dict(stats.to_dict(), parameter_analyzed=name),
                "clinical_interpretation": interp.to_dict(),
                "time_series": ts.to_dict()["points"],
                "data_quality": self.statistics.assess_data_quality(ts),
            }

        return {
            "enhanced_trends": enhanced,
            "summary": {
                "parameters_analyzed": len(enhanced),
                "parameters_skipped": len(series) - len(enhanced),
                "significant_trends": sum(1 for i in interpretations.values() if i.significance == "high"),
                "concerning_trends": sum(1 for i in interpretations.values() if i.concern_level == "high"),
            },
            "_interpretations": interpretations,
        }

    # ── stage 2: relationships, patterns, consultation ────────

    def analyze_relationships(self, series: Dict, interpretations: Dict) -> dict:
        correlations = self.correlations.analyze(series)
        patterns = self.patterns.detect(series, interpretations)
        by_name = {p.pattern_name: p for p in patterns}
        summary_patterns = [
            by_name[name] for name in
            ("metabolic_syndrome", "diabetic_progression", "cardiovascular_risk", "kidney_decline")
        ]

        consultation = self.consult_specialists(series, interpretations, patterns)

        relationships = {
            "correlations": {
                "correlations": [c.to_dict() for c in correlations],
                "summary": self.correlations.summarize(correlations),
            },
            "clinical_patterns": {
                "detected_patterns": [p.to_dict() for p in summary_patterns],
                "pattern_count": len(summary_patterns),
                "highest_risk_pattern": max(summary_patterns, key=lambda p: p.risk_score).to_dict(),
            },
            "metabolic_analysis": by_name["metabolic_syndrome"].to_dict(),
            "cardiovascular_risk": by_name["cardiovascular_risk"].to_dict(),
            "kidney_function_analysis": by_name["kidney_decline"].to_dict(),
            "diabetes_risk": self.patterns.diabetes_risk_trajectory(series),
            "specialist_consultation": consultation,
            "summary": self.patterns.summarize(summary_patterns, correlations),
            "_patterns": patterns,
            "_correlations": correlations,
        }
        logger.info(
            "Multi-parameter analysis complete: %d significant relationships",
            relationships["summary"]["significant_relationships"],
        )
        return relationships

    def consult_specialists(self, series: Dict, interpretations: Dict, patterns: list) -> dict:
        summary = self.prompt_builder.build_summary(series, interpretations, patterns)
        opinions = self.consultant.consult_panel(summary, self.specialists)
        synthesized = self.synthesizer.synthesize(opinions)
        return {
            "specialist_opinions": opinions,
            "synthesized_recommendations": synthesized,
            "ai_confidence": synthesized["ai_confidence"],
            "consultation_timestamp": datetime.now(timezone.utc).isoformat(),
            "clinical_urgency": synthesized["clinical_urgency"],
            "disclaimer": self.prompt_builder.get_safety_disclaimer(),
        }

    # ── metadata ──────────────────────────────────────────────

    @staticmethod
    def overall_confidence(statistical: dict) -> float:
        trends = statistical.get("enhanced_trends") or {}
        if not trends:
            return NO_TRENDS_CONFIDENCE
        scores = [t.get("data_quality", {}).get("confidence_level", 0.3) for t in trends.values()]
        return sum(scores) / len(scores)

    @staticmethod
    def clinical_significance(statistical: dict) -> str:
        levels = [
            t["clinical_interpretation"]["significance"]
            for t in (statistical.get("enhanced_trends") or {}).values()
        ]
        if "high" in levels:
            return "high"
        if "moderate" in levels:
            return "moderate"
        return "low"

    # ── helpers ───────────────────────────────────────────────

    @staticmethod
    def _run_stage(name: str, fn: Callable[[], object], default):
        try:
            return fn()
        except Exception as e:
            logger.exception("Feature stage %s failed", name)
            return stage_failure(e) if default is None else default
