import pytest

from assessment.patient_context import PatientContext
from clinical.feature_engine import ClinicalFeatureEngine
from conftest import make_series


@pytest.fixture
def engine(consultant):
    return ClinicalFeatureEngine(consultant)


def test_stored_trend_overrides_computed_slope(engine):
    series = {"glucose": make_series("glucose", [100, 110, 120, 130])}
    trends = engine.analyze_trends(series, {"glucose_slope": 3.0, "glucose_correlation": 0.5})

    regression = trends["enhanced_trends"]["glucose"]["linear_regression"]
    assert regression["slope"] == 3.0
    assert regression["correlation"] == 0.5


def test_null_stored_trend_falls_back_to_computed(engine):
    series = {"glucose": make_series("glucose", [100, 110, 120, 130])}
    trends = engine.analyze_trends(series, {"glucose_slope": None, "glucose_correlation": None})

    regression = trends["enhanced_trends"]["glucose"]["linear_regression"]
    assert regression["slope"] == pytest.approx(10.0)
    assert regression["correlation"] == pytest.approx(1.0)


def test_correlations_reach_recommendations(engine, store):
    context = PatientContext("PAT-META")
    context.raw_data["lab_results"] = store.fetch_lab_results("PAT-META")
    features = engine.extract_clinical_features(context)

    relationships = features["parameter_relationships"]
    assert "_correlations" not in relationships
    recommendations = features["recommendations"]["all_recommendations"]
    assert any(rec.endswith("correlation)") for rec in recommendations)
