"""
CCAS — Recommendation Synthesizer

Merges specialist opinions, per-parameter interpretations, cross-parameter
correlations and detected patterns into one structured recommendation set:
  • deduplicated, priority-bucketed recommendation list
  • overall risk label (maximum severity across every contributor)
  • most urgent follow-up interval
  • consensus themes and a monitoring plan
"""

import logging
from typing import Dict, Iterable, List, Optional

from config import (
    CONSENSUS_THEMES,
    DEFAULT_FOLLOW_UP,
    MAX_PRIMARY_RECOMMENDATIONS,
    PATTERN_RISK_HIGH,
    PATTERN_RISK_MODERATE,
    PRIORITY_KEYWORDS,
    RISK_LEVEL_ORDER,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 5

CORRELATION_RISK_LABELS = {"high": "High", "moderate": "Moderate"}
TREND_VERBS = {"increasing": "rising", "decreasing": "falling", "stable": "persistently abnormal"}


class RecommendationSynthesizer:
    """
    Stateless aggregator; the result depends only on its inputs, never on
    which consultant implementation produced the opinions.
    """

    def __init__(self, max_primary: int = MAX_PRIMARY_RECOMMENDATIONS):
        self.max_primary = max_primary
        logger.info("RecommendationSynthesizer initialized")

    def synthesize(
        self,
        opinions: Dict[str, dict],
        interpretations: Optional[Iterable] = None,
        patterns: Optional[Iterable] = None,
        correlations: Optional[Iterable] = None,
    ) -> dict:
        """
        Parameters
        ----------
        opinions : dict
            specialist → structured opinion.
        interpretations : iterable of ClinicalInterpretation, optional
        patterns : iterable of ClinicalPattern, optional
        correlations : iterable of CorrelationResult, optional
            Only pairs of high or moderate clinical significance contribute.
        """
        interpretations = list(interpretations or [])
        patterns = list(patterns or [])
        correlations = [
            c for c in correlations or []
            if c.clinical_significance in CORRELATION_RISK_LABELS
        ]

        recommendations, referrals, risk_labels, timelines = [], [], [], []
        for opinion in opinions.values():
            recommendations.extend(opinion.get("immediate_recommendations") or [])
            referrals.extend(opinion.get("referrals") or [])
            if opinion.get("risk_level"):
                risk_labels.append(opinion["risk_level"])
            if opinion.get("follow_up_timeline"):
                timelines.append(opinion["follow_up_timeline"])

        for pattern in patterns:
            recommendations.extend(pattern.recommendations)
            if pattern.risk_score >= PATTERN_RISK_HIGH:
                risk_labels.append("High")
            elif pattern.risk_score >= PATTERN_RISK_MODERATE:
                risk_labels.append("Moderate")

        for interp in interpretations:
            risk_labels.append(interp.concern_level)
            recommendations.extend(self.interpretation_recommendations(interp))

        for correlation in correlations:
            risk_labels.append(CORRELATION_RISK_LABELS[correlation.clinical_significance])
            recommendations.append(self.correlation_recommendation(correlation))

        prioritized = self.prioritize(recommendations)
        follow_up = self.follow_up(timelines)
        result = {
            "primary_recommendations": prioritized[: self.max_primary],
            "all_recommendations": prioritized,
            "specialist_referrals": self._unique(referrals),
            "overall_risk_assessment": self.overall_risk(risk_labels),
            "recommended_follow_up": follow_up,
            "clinical_urgency": self.clinical_urgency(opinions),
            "ai_confidence": self.mean_confidence(opinions),
            "consensus_items": self.consensus_items(opinions),
            "monitoring_plan": self.monitoring_plan(opinions, follow_up),
        }
        logger.info(
            "Synthesized %d recommendations from %d opinions, %d patterns, %d correlations (risk=%s)",
            len(prioritized), len(opinions), len(patterns), len(correlations),
            result["overall_risk_assessment"],
        )
        return result

    # ── per-source recommendations ────────────────────────────

    @staticmethod
    def interpretation_recommendations(interp) -> List[str]:
        recs = []
        if interp.concern_level == "high":
            verb = TREND_VERBS.get(interp.trend_direction, interp.trend_direction)
            recs.append(f"Urgent clinical review of {verb} {interp.parameter}")
        if interp.time_to_concern is not None:
            side = "above" if interp.time_to_concern.direction == "above_normal" else "below"
            recs.append(
                f"Monitor {interp.parameter}: projected {side} normal range "
                f"in about {interp.time_to_concern.months} months"
            )
        return recs

    @staticmethod
    def correlation_recommendation(correlation) -> str:
        return (
            f"Monitor {correlation.parameter1} and {correlation.parameter2} together "
            f"({correlation.strength.replace('_', ' ')} {correlation.direction} correlation)"
        )

    # ── ordering ──────────────────────────────────────────────

    @staticmethod
    def priority_bucket(text: str) -> int:
        lowered = text.lower()
        for index, keyword in enumerate(PRIORITY_KEYWORDS):
            if keyword in lowered:
                return index
        return len(PRIORITY_KEYWORDS)

    def prioritize(self, recommendations: Iterable[str]) -> List[str]:
        """Case-insensitive dedup (first wins), then stable sort by bucket."""
        unique = self._unique(recommendations, key=str.lower)
        return sorted(unique, key=self.priority_bucket)

    # ── risk & follow-up ──────────────────────────────────────

    @staticmethod
    def overall_risk(labels: Iterable[str]) -> str:
        lowered = [str(label).lower() for label in labels]
        for level in RISK_LEVEL_ORDER[:-1]:
            if any(level.lower() in label for label in lowered):
                return level
        return RISK_LEVEL_ORDER[-1]

    @staticmethod
    def follow_up(timelines: Iterable[str]) -> str:
        timelines = [str(t) for t in timelines]
        for timeline in timelines:
            lowered = timeline.lower()
            if "week" in lowered or "immediate" in lowered:
                return timeline
        for timeline in timelines:
            if "month" in timeline.lower():
                return timeline
        return DEFAULT_FOLLOW_UP

    @staticmethod
    def clinical_urgency(opinions: Dict[str, dict]) -> str:
        levels = [str(o.get("risk_level") or "Moderate").lower() for o in opinions.values()]
        for level in ("critical", "high", "moderate"):
            if any(level in label for label in levels):
                return level
        return "low"

    @staticmethod
    def mean_confidence(opinions: Dict[str, dict]) -> float:
        scores = []
        for opinion in opinions.values():
            score = opinion.get("confidence") or DEFAULT_CONFIDENCE
            if isinstance(score, (int, float)) and score > 0:
                scores.append(float(score))
        return sum(scores) / len(scores) if scores else float(DEFAULT_CONFIDENCE)

    # ── consensus & monitoring ────────────────────────────────

    @staticmethod
    def consensus_items(opinions: Dict[str, dict]) -> List[str]:
        """Themes raised by at least two specialists."""
        items = []
        for theme, keywords in CONSENSUS_THEMES.items():
            supporters = 0
            for opinion in opinions.values():
                text = " ".join(
                    list(opinion.get("immediate_recommendations") or [])
                    + list(opinion.get("referrals") or [])
                    + [str(opinion.get("long_term_plan") or "")]
                ).lower()
                if any(keyword in text for keyword in keywords):
                    supporters += 1
            if supporters >= 2:
                items.append(theme)
        return items

    @staticmethod
    def monitoring_plan(opinions: Dict[str, dict], follow_up: str) -> dict:
        return {
            "follow_up": follow_up,
            "specialist_plans": {
                specialist: opinion.get("long_term_plan")
                for specialist, opinion in opinions.items()
                if opinion.get("long_term_plan")
            },
        }

    @staticmethod
    def _unique(items: Iterable[str], key=None) -> List[str]:
        seen = set()
        unique = []
        for item in items:
            marker = key(item) if key else item
            if marker not in seen:
                seen.add(marker)
                unique.append(item)
        return unique
