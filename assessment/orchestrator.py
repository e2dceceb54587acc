"""
CCAS — Orchestrator

Drives one assessment through three phases:

  1. Context generation   DataRetriever → ClinicalFeatureEngine → stored
                          trends → legacy indicators
  2. Case conference      one structured opinion per requested specialty
  3. Synthesis            counts, findings, recommendations, next steps

Active contexts live in an injected CaseStore (TTL cache); the orchestrator
itself holds no per-patient state.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from config import (
    ABNORMAL_VALUE_RANGES,
    CONDITION_SPECIALTIES,
    DEFAULT_SPECIALTY,
    LAB_TYPE_SPECIALTIES,
    TREND_DEADBAND,
)
from assessment.case_store import CaseStore
from assessment.data_retriever import DataRetriever, DocumentStore
from assessment.patient_context import PatientContext
from clinical.feature_engine import ClinicalFeatureEngine, stage_failure
from consultation.consultant import NarrativeConsultant, StubConsultant
from features.time_series import LabRecord, TimeSeriesExtractor

logger = logging.getLogger(__name__)

# specialty label → consultant persona
SPECIALTY_PERSONAS = {
    "endocrinology": "endocrinologist",
    "cardiology": "cardiologist",
    "internal medicine": "internist",
    "preventive medicine": "preventive_medicine",
}

# (lab-type keywords, parameter names, moderate above, high above)
LEGACY_RISK_RULES = (
    (("glucose", "diabetes"), ("glucose", "random_glucose"), 140, 200),
    (("kidney", "creatinine"), ("creatinine",), 1.2, 1.5),
    (("lipid", "cholesterol"), ("total_cholesterol",), 200, 240),
)


def detect_specialties(lab_types: Iterable[str], conditions: Iterable) -> List[str]:
    """Map lab-type names and documented conditions onto consulting specialties."""
    specialties: List[str] = []

    def add(specialty):
        if specialty not in specialties:
            specialties.append(specialty)

    for lab_type in lab_types:
        lowered = str(lab_type).lower()
        for keywords, specialty in LAB_TYPE_SPECIALTIES:
            if any(k in lowered for k in keywords):
                add(specialty)

    for condition in conditions:
        name = condition.get("name", "") if isinstance(condition, dict) else condition
        text = str(name).lower()
        for keywords, specialty in CONDITION_SPECIALTIES:
            if any(k in text for k in keywords):
                add(specialty)

    return specialties or [DEFAULT_SPECIALTY]


class Orchestrator:
    """Assessment workflow over injected retrieval, analysis and storage."""

    def __init__(
        self,
        store: DocumentStore,
        case_store: Optional[CaseStore] = None,
        consultant: Optional[NarrativeConsultant] = None,
        feature_engine: Optional[ClinicalFeatureEngine] = None,
    ):
        self.consultant = consultant or StubConsultant()
        self.retriever = DataRetriever(store)
        self.feature_engine = feature_engine or ClinicalFeatureEngine(self.consultant)
        self.case_store = case_store if case_store is not None else CaseStore()
        self.extractor = TimeSeriesExtractor()
        logger.info("Orchestrator initialized")

    # ── public API ────────────────────────────────────────────

    def start_assessment(
        self,
        patient_id: str,
        specialties: Iterable[str] = (),
        time_period: Optional[dict] = None,
    ) -> dict:
        specialties = list(specialties)
        t0 = time.perf_counter()
        logger.info(
            "Starting assessment for %s (specialties: %s)",
            patient_id, ", ".join(specialties) or "none",
        )

        context = self.phase_one_context_generation(patient_id, time_period)
        self.case_store.put(context.case_id, context)

        if specialties:
            self.phase_two_case_conference(context, specialties)
        summary = self.phase_three_synthesis(context)

        logger.info(
            "Assessment %s completed in %.0f ms",
            context.case_id, (time.perf_counter() - t0) * 1000,
        )
        return {
            "success": True,
            "case_id": context.case_id,
            "summary": summary,
            "context": context.to_dict(),
        }

    def quick_assessment(self, patient_id: str, time_period: Optional[dict] = None) -> dict:
        """Assessment with specialties detected from the patient's own data."""
        probe = self.retriever.create_patient_context(patient_id, time_period)
        specialties = detect_specialties(
            probe.raw_data.get("lab_results", {}).keys(),
            probe.raw_data.get("conditions", []),
        )
        logger.info("Auto-detected specialties for %s: %s", patient_id, ", ".join(specialties))

        result = self.start_assessment(patient_id, specialties, time_period)
        result["detected_specialties"] = specialties
        result["message"] = f"Quick assessment completed with {len(specialties)} specialties"
        return result

    def get_assessment_status(self, case_id: str) -> Optional[dict]:
        context = self.case_store.get(case_id)
        return context.get_summary() if context is not None else None

    def get_assessment_context(self, case_id: str) -> Optional[dict]:
        context = self.case_store.get(case_id)
        return context.to_dict() if context is not None else None

    def get_active_assessments(self) -> List[str]:
        return self.case_store.keys()

    # ── phase 1 ───────────────────────────────────────────────

    def phase_one_context_generation(self, patient_id: str, time_period: Optional[dict] = None) -> PatientContext:
        context = self.retriever.create_patient_context(patient_id, time_period)

        # stored trends first so the engine can prefer them over recomputed slopes
        self._guarded(context, "trend_enrichment", lambda: self.retriever.enrich_with_trend_analysis(context))
        self._guarded(context, "clinical_features", lambda: self.feature_engine.extract_clinical_features(context))
        self._guarded(context, "risk_scores", lambda: self.calculate_risk_scores(context))
        self._guarded(context, "abnormal_findings", lambda: self.identify_abnormal_values(context))
        self._guarded(context, "trend_patterns", lambda: self.detect_trend_patterns(context))

        context.set_analysis_stage("context_ready")
        summary = context.get_summary()
        logger.info(
            "Context %s ready: %d data types, %d feature types",
            context.case_id, len(summary["data_types"]), len(summary["feature_types"]),
        )
        return context

    def _latest_records(self, context: PatientContext) -> Dict[str, LabRecord]:
        latest = {}
        for lab_type, results in (context.raw_data.get("lab_results") or {}).items():
            records = self.extractor.extract_records(results, lab_type)
            if records:
                latest[lab_type] = records[-1]
        return latest

    def calculate_risk_scores(self, context: PatientContext):
        for lab_type, record in self._latest_records(context).items():
            lowered = lab_type.lower()
            score = "normal"
            for keywords, params, moderate, high in LEGACY_RISK_RULES:
                if any(k in lowered for k in keywords):
                    value = next((record.values[p] for p in params if p in record.values), None)
                    if value is not None and value > high:
                        score = "high"
                    elif value is not None and value > moderate:
                        score = "moderate"
                    break
            context.add_engineered_feature("risk_scores", f"{lab_type}_risk", score)

    def identify_abnormal_values(self, context: PatientContext):
        findings = []
        for lab_type, record in self._latest_records(context).items():
            for parameter, value in record.values.items():
                bounds = ABNORMAL_VALUE_RANGES.get(parameter)
                if bounds and (value < bounds["min"] or value > bounds["max"]):
                    findings.append({
                        "labType": lab_type,
                        "parameter": parameter,
                        "value": value,
                        "date": record.timestamp.isoformat(),
                    })
        context.add_engineered_feature("clinical_indicators", "abnormal_findings", findings)

    @staticmethod
    def detect_trend_patterns(context: PatientContext):
        patterns = {"trending_up": [], "trending_down": [], "stable": [], "fluctuating": []}
        for key, value in (context.engineered_features.get("trends") or {}).items():
            if not key.endswith("_slope") or not isinstance(value, (int, float)):
                continue
            lab_type = key[: -len("_slope")]
            if value > TREND_DEADBAND:
                patterns["trending_up"].append(lab_type)
            elif value < -TREND_DEADBAND:
                patterns["trending_down"].append(lab_type)
            else:
                patterns["stable"].append(lab_type)
        context.add_engineered_feature("temporal_patterns", "trend_patterns", patterns)

    # ── phase 2 ───────────────────────────────────────────────

    def phase_two_case_conference(self, context: PatientContext, specialties: List[str]):
        context.set_analysis_stage("virtual_conference")
        consultation = (
            context.engineered_features.get("enhanced_clinical", {})
            .get("parameter_relationships", {})
            .get("specialist_consultation", {})
        )
        panel = consultation.get("specialist_opinions", {}) if isinstance(consultation, dict) else {}

        for specialty in specialties:
            context.set_agent_active(specialty)
            persona = SPECIALTY_PERSONAS.get(specialty.lower(), "internist")
            opinion = panel.get(persona)
            if opinion is None:
                opinion = self.consultant.consult(persona, {})
            context.add_agent_opinion(specialty, "initial_opinion", dict(opinion, specialty=specialty))
            context.set_agent_completed(specialty)

        context.increment_collaboration_round()
        logger.info("Case conference completed with %d specialists", len(specialties))

    # ── phase 3 ───────────────────────────────────────────────

    def phase_three_synthesis(self, context: PatientContext) -> dict:
        context.set_analysis_stage("synthesis")
        opinions = context.get_agent_opinions("initial_opinion")
        features = context.engineered_features
        abnormal = (features.get("clinical_indicators") or {}).get("abnormal_findings", [])
        risk_scores = features.get("risk_scores") or {}
        raw = context.raw_data

        summary = {
            "case_id": context.case_id,
            "patient_id": context.patient_id,
            "assessment_date": datetime.now(timezone.utc).isoformat(),
            "data_summary": {
                "lab_types": len(raw.get("lab_results") or {}),
                "medical_records": len(raw.get("reports") or []),
                "conditions": len(raw.get("conditions") or []),
                "medications": len(raw.get("medications") or []),
            },
            "clinical_findings": {
                "abnormal_findings_count": len(abnormal),
                "risk_assessments": risk_scores,
                "specialist_consultations": len(opinions),
                "clinical_analysis": (features.get("metadata") or {}).get("clinical_analysis"),
            },
            "recommendations": self._recommendations(abnormal, opinions, features),
            "next_steps": self._next_steps(risk_scores),
        }
        context.set_analysis_stage("completed")
        return summary

    @staticmethod
    def _recommendations(abnormal: list, opinions: dict, features: dict) -> List[str]:
        recommendations = []
        if abnormal:
            recommendations.append("Review abnormal lab values with primary care physician")
        for opinion in opinions.values():
            content = opinion.get("content") or {}
            recommendations.extend(content.get("immediate_recommendations") or [])
        synthesized = (features.get("enhanced_clinical") or {}).get("recommendations") or {}
        recommendations.extend(synthesized.get("primary_recommendations") or [])

        seen = set()
        unique = []
        for text in recommendations:
            if text.lower() not in seen:
                seen.add(text.lower())
                unique.append(text)
        return unique

    @staticmethod
    def _next_steps(risk_scores: dict) -> List[str]:
        steps = []
        if any(v == "high" for v in risk_scores.values()):
            steps.append("Schedule follow-up for high-risk conditions")
        steps.append("Continue regular monitoring")
        steps.append("Update medical records with new findings")
        return steps

    # ── helpers ───────────────────────────────────────────────

    @staticmethod
    def _guarded(context: PatientContext, stage: str, fn):
        try:
            fn()
        except Exception as e:
            logger.exception("Assessment stage %s failed for %s", stage, context.case_id)
            context.add_engineered_feature("stage_errors", stage, stage_failure(e))
