"""
CCAS — Prompt Builder for Specialist Consultation

Builds the clinical summary shared by every specialist and one deterministic
prompt per specialist.  Each prompt asks for a single JSON object with the
fields in OPINION_FIELDS so the consultant can validate the reply.

Safety guardrails:
  • Specialists are told they support, not replace, the treating clinician
  • A disclaimer is attached to every synthesized output
"""

import json
import logging
from typing import Dict, List, Optional

from clinical.interpreter import ClinicalInterpretation
from features.statistics_engine import StatisticsEngine
from features.time_series import TimeSeries

logger = logging.getLogger(__name__)

SAFETY_DISCLAIMER = (
    "DISCLAIMER: Specialist opinions in this assessment are AI-generated and "
    "should support, not replace, clinical judgment. All clinical decisions "
    "must be made by qualified healthcare professionals."
)

OPINION_FIELDS = (
    "primary_assessment",
    "risk_level",
    "immediate_recommendations",
    "long_term_plan",
    "follow_up_timeline",
    "referrals",
    "confidence",
    "clinical_reasoning",
)

SYSTEM_PROMPT = """You are a medical specialist contributing to a virtual case conference.

STRICT RULES:
1. Base your assessment ONLY on the laboratory data provided.
2. State uncertainty explicitly when the data is sparse.
3. Your opinion supports, and never replaces, the treating clinician.
4. Reply with ONE JSON object and nothing else (no prose, no markdown).

The JSON object must contain exactly these fields:
{
  "primary_assessment": "...",
  "risk_level": "Low | Moderate | High | Critical",
  "immediate_recommendations": ["...", "..."],
  "long_term_plan": "...",
  "follow_up_timeline": "...",
  "referrals": ["..."],
  "confidence": 1-10,
  "clinical_reasoning": "..."
}"""

SPECIALIST_PROFILES = {
    "endocrinologist": {
        "title": "an experienced endocrinologist",
        "focus": [
            "Glucose metabolism and diabetes risk",
            "Thyroid function assessment",
            "Metabolic syndrome evaluation",
            "Hormonal imbalances",
            "Insulin resistance patterns",
        ],
    },
    "cardiologist": {
        "title": "a cardiologist",
        "focus": [
            "Cardiovascular risk assessment",
            "Lipid disorders",
            "Metabolic-cardiovascular connections",
        ],
    },
    "internist": {
        "title": "an internist",
        "focus": [
            "Overall health assessment",
            "Multi-system interactions",
            "Coordination of care",
        ],
    },
    "preventive_medicine": {
        "title": "a preventive medicine specialist",
        "focus": [
            "Prevention strategies",
            "Lifestyle interventions",
            "Risk reduction",
            "Screening recommendations",
        ],
    },
}

CONCERNING_RISE = ("glucose", "triglycerides", "ldl")


def describe_time_span(days: int) -> str:
    if days < 30:
        return f"{days} days"
    if days < 365:
        return f"{round(days / 30)} months"
    return f"{round(days / 365)} years"


class PromptBuilder:
    """Deterministic summary and prompt construction."""

    def __init__(self):
        logger.info("PromptBuilder initialized")

    # ── clinical summary ──────────────────────────────────────

    def build_summary(
        self,
        series: Dict[str, TimeSeries],
        interpretations: Optional[Dict[str, ClinicalInterpretation]] = None,
        patterns: Optional[list] = None,
    ) -> dict:
        """
        Condense the pipeline's outputs into the summary every specialist sees.

        Returns
        -------
        dict with keys: patient_data, analysis_summary
        """
        latest = {name: ts.latest for name, ts in sorted(series.items())}
        trends = {
            name: StatisticsEngine.simple_trend(ts.values)
            for name, ts in sorted(series.items()) if len(ts) >= 2
        }

        timestamps = sorted({ts for s in series.values() for ts in s.timestamps})
        if len(timestamps) < 2:
            span = "Single time point"
        else:
            span = describe_time_span(round((timestamps[-1] - timestamps[0]).total_seconds() / 86400))

        interpretations = interpretations or {}
        return {
            "patient_data": {
                "latest_lab_values": latest,
                "parameter_trends": trends,
                "clinical_timeline": {
                    "visits": [ts.isoformat() for ts in timestamps],
                    "summary": f"{len(timestamps)} lab results over {span}",
                },
                "time_span": span,
            },
            "analysis_summary": {
                "enhanced_trends": {
                    name: {
                        "direction": interp.trend_direction,
                        "significance": interp.significance,
                        "concern_level": interp.concern_level,
                    }
                    for name, interp in sorted(interpretations.items())
                },
                "detected_patterns": [
                    p.pattern_name for p in (patterns or []) if p.detected
                ],
                "risk_factors": self.risk_factors(latest),
                "concerning_trends": self.concerning_trends(trends),
            },
        }

    @staticmethod
    def risk_factors(latest: Dict[str, float]) -> List[str]:
        factors = []
        if latest.get("glucose", 0) >= 100:
            factors.append("Elevated glucose")
        if latest.get("triglycerides", 0) >= 150:
            factors.append("Elevated triglycerides")
        if "hdl" in latest and latest["hdl"] < 40:
            factors.append("Low HDL cholesterol")
        if latest.get("ldl", 0) >= 130:
            factors.append("Elevated LDL cholesterol")
        return factors

    @staticmethod
    def concerning_trends(trends: Dict[str, dict]) -> List[str]:
        concerning = []
        for name, trend in trends.items():
            if trend["slope"] > 0 and name in CONCERNING_RISE:
                concerning.append(f"{name} increasing trend")
            if trend["slope"] < 0 and name == "hdl":
                concerning.append("HDL decreasing trend")
        return concerning

    # ── specialist prompts ────────────────────────────────────

    def build(self, specialist: str, summary: dict) -> dict:
        """
        Build the prompt payload for one specialist.

        Returns
        -------
        dict with keys: system_prompt, user_prompt, metadata
        """
        profile = SPECIALIST_PROFILES.get(specialist, SPECIALIST_PROFILES["internist"])
        user_prompt = self._build_user_prompt(profile, summary)
        logger.debug("Prompt built for %s (%d chars)", specialist, len(user_prompt))
        return {
            "system_prompt": SYSTEM_PROMPT,
            "user_prompt": user_prompt,
            "metadata": {"specialist": specialist, "promptLength": len(user_prompt)},
        }

    @staticmethod
    def _build_user_prompt(profile: dict, summary: dict) -> str:
        patient = summary.get("patient_data", {})
        analysis = summary.get("analysis_summary", {})
        sections = [
            f"You are {profile['title']} reviewing a patient's laboratory results. "
            "Provide your clinical assessment and recommendations."
        ]

        sections.append(
            "LATEST LAB VALUES:\n"
            + json.dumps(patient.get("latest_lab_values", {}), indent=2, sort_keys=True)
        )
        sections.append(
            "PARAMETER TRENDS (slope per sample):\n"
            + json.dumps(patient.get("parameter_trends", {}), indent=2, sort_keys=True)
        )
        sections.append(
            f"TIMELINE: {patient.get('clinical_timeline', {}).get('summary', 'N/A')}"
        )

        findings = analysis.get("risk_factors", []) + analysis.get("concerning_trends", [])
        if findings:
            sections.append("FINDINGS:\n" + "\n".join(f"  • {f}" for f in findings))
        if analysis.get("detected_patterns"):
            sections.append("DETECTED PATTERNS: " + ", ".join(analysis["detected_patterns"]))

        sections.append(
            "FOCUS AREAS:\n"
            + "\n".join(f"  {i}. {area}" for i, area in enumerate(profile["focus"], 1))
        )
        sections.append("Respond with the JSON object described in your instructions.")
        return "\n\n".join(sections)

    @staticmethod
    def get_safety_disclaimer() -> str:
        return SAFETY_DISCLAIMER
