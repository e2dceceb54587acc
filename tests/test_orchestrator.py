import pytest

from assessment.case_store import CaseStore
from assessment.data_retriever import InMemoryDocumentStore
from assessment.orchestrator import Orchestrator, detect_specialties
from clinical.feature_engine import ClinicalFeatureEngine
from conftest import metabolic_patient


@pytest.fixture
def orchestrator(store, consultant):
    return Orchestrator(store, case_store=CaseStore(), consultant=consultant)


def _strip_volatile(value):
    """Drop wall-clock and id fields so two runs can be compared."""
    volatile = {"timestamp", "analysis_timestamp", "consultation_timestamp", "assessment_date",
                "case_id", "created_at", "last_updated"}
    if isinstance(value, dict):
        return {k: _strip_volatile(v) for k, v in value.items() if k not in volatile}
    if isinstance(value, list):
        return [_strip_volatile(v) for v in value]
    return value


def test_full_assessment(orchestrator):
    result = orchestrator.start_assessment("PAT-META", ["Endocrinology", "Cardiology"])

    assert result["success"]
    summary = result["summary"]
    assert summary["patient_id"] == "PAT-META"
    assert summary["data_summary"]["lab_types"] == 3
    assert summary["clinical_findings"]["specialist_consultations"] == 2
    assert summary["clinical_findings"]["clinical_analysis"]["clinical_significance"] == "high"
    assert summary["recommendations"]

    context = result["context"]
    assert context["metadata"]["analysis_stage"] == "completed"
    assert context["metadata"]["completed_agents"] == ["Endocrinology", "Cardiology"]
    assert context["metadata"]["collaboration_rounds"] == 1
    opinion = context["agent_opinions"]["Endocrinology"]["initial_opinion"]["content"]
    assert opinion["specialist"] == "endocrinologist"
    assert opinion["specialty"] == "Endocrinology"


def test_enhanced_clinical_features(orchestrator):
    context = orchestrator.start_assessment("PAT-META")["context"]
    enhanced = context["engineered_features"]["enhanced_clinical"]

    trends = enhanced["statistical_analysis"]["enhanced_trends"]
    assert set(trends) == {"glucose", "hba1c", "triglycerides", "hdl", "systolic_bp"}
    assert trends["glucose"]["clinical_interpretation"]["trend_direction"] == "increasing"

    relationships = enhanced["parameter_relationships"]
    assert relationships["metabolic_analysis"]["detected"]
    assert relationships["correlations"]["summary"]["total_correlations"] > 0
    assert relationships["specialist_consultation"]["disclaimer"].startswith("DISCLAIMER")
    assert "_patterns" not in relationships

    assert enhanced["advanced_patterns"]["pattern_count"] >= 1
    assert enhanced["recommendations"]["overall_risk_assessment"] == "High"


def test_legacy_indicators(orchestrator):
    features = orchestrator.start_assessment("PAT-META")["context"]["engineered_features"]

    # latest glucose 130: above 140 only for moderate
    assert features["risk_scores"]["Glucose Panel_risk"] == "normal"
    assert features["risk_scores"]["Lipid Panel_risk"] == "normal"
    assert features["clinical_indicators"]["abnormal_findings"] == []
    assert features["temporal_patterns"]["trend_patterns"]["trending_up"] == ["Glucose Panel"]
    assert features["trends"]["Glucose Panel_slope"] == 11.8


def test_abnormal_findings_and_high_risk():
    patient = {
        "lab_results": [
            {"labReportType": "Glucose Panel", "createdAt": "2025-01-01T00:00:00Z",
             "normalizedValues": {"glucose": 150}},
            {"labReportType": "Glucose Panel", "createdAt": "2025-03-01T00:00:00Z",
             "normalizedValues": {"glucose": 210}},
        ],
    }
    orchestrator = Orchestrator(InMemoryDocumentStore({"PAT-HI": patient}))
    summary = orchestrator.start_assessment("PAT-HI")["summary"]

    assert summary["clinical_findings"]["risk_assessments"] == {"Glucose Panel_risk": "high"}
    assert summary["clinical_findings"]["abnormal_findings_count"] == 1
    assert summary["recommendations"][0] == "Review abnormal lab values with primary care physician"
    assert summary["next_steps"][0] == "Schedule follow-up for high-risk conditions"


def test_malformed_timestamp_does_not_empty_analysis(consultant):
    patient = metabolic_patient()
    patient["lab_results"].append({
        "labReportType": "Glucose Panel",
        "createdAt": {"seconds": "abc"},
        "normalizedValues": {"glucose": 300},
    })
    orchestrator = Orchestrator(InMemoryDocumentStore({"PAT-META": patient}), consultant=consultant)
    enhanced = orchestrator.start_assessment("PAT-META")["context"]["engineered_features"]["enhanced_clinical"]

    assert enhanced["statistical_analysis"]["summary"]["parameters_analyzed"] == 5
    glucose = enhanced["statistical_analysis"]["enhanced_trends"]["glucose"]
    assert glucose["enhanced_statistics"]["data_points"] == 4


def test_empty_patient_completes(orchestrator):
    result = orchestrator.start_assessment("PAT-NOBODY", ["Internal Medicine"])

    assert result["success"]
    analysis = result["summary"]["clinical_findings"]["clinical_analysis"]
    assert analysis["confidence_score"] == 0.1
    assert analysis["clinical_significance"] == "low"
    assert result["context"]["metadata"]["analysis_stage"] == "completed"


def test_failing_engine_stage_is_recorded(store, consultant):
    class BrokenEngine(ClinicalFeatureEngine):
        def analyze_relationships(self, series, interpretations):
            raise RuntimeError("boom")

    orchestrator = Orchestrator(store, consultant=consultant, feature_engine=BrokenEngine(consultant))
    result = orchestrator.start_assessment("PAT-META", ["Cardiology"])

    enhanced = result["context"]["engineered_features"]["enhanced_clinical"]
    assert enhanced["parameter_relationships"] == {"status": "failed", "error": "boom"}
    assert enhanced["statistical_analysis"]["summary"]["parameters_analyzed"] == 5
    # consultation falls back to a direct opinion when the panel never ran
    opinion = result["context"]["agent_opinions"]["Cardiology"]["initial_opinion"]["content"]
    assert opinion["specialist"] == "cardiologist"


def test_repeated_runs_are_identical(orchestrator):
    first = orchestrator.start_assessment("PAT-META", ["Endocrinology"])
    second = orchestrator.start_assessment("PAT-META", ["Endocrinology"])

    assert first["case_id"] != second["case_id"]
    assert _strip_volatile(first["summary"]) == _strip_volatile(second["summary"])
    assert _strip_volatile(first["context"]["engineered_features"]) == \
        _strip_volatile(second["context"]["engineered_features"])


def test_status_and_active_assessments(orchestrator):
    case_id = orchestrator.start_assessment("PAT-META")["case_id"]

    assert case_id in orchestrator.get_active_assessments()
    assert orchestrator.get_assessment_status(case_id)["stage"] == "completed"
    assert orchestrator.get_assessment_context(case_id)["patient_id"] == "PAT-META"
    assert orchestrator.get_assessment_status("CCAS-MISSING") is None


def test_quick_assessment_detects_specialties(orchestrator):
    result = orchestrator.quick_assessment("PAT-META")

    assert result["detected_specialties"] == ["Endocrinology", "Cardiology"]
    assert result["message"] == "Quick assessment completed with 2 specialties"
    assert result["summary"]["clinical_findings"]["specialist_consultations"] == 2


@pytest.mark.parametrize("lab_types, conditions, expected", [
    (["Glucose Panel"], [], ["Endocrinology"]),
    (["Kidney Function Test"], [{"name": "Hypertension"}], ["Nephrology", "Cardiology"]),
    ([], ["Thyroid disorder"], ["Endocrinology"]),
    (["Vital Signs"], [], ["Internal Medicine"]),
])
def test_detect_specialties(lab_types, conditions, expected):
    assert detect_specialties(lab_types, conditions) == expected
