import json
import re
from datetime import datetime

import numpy as np

from assessment.patient_context import PatientContext, generate_case_id, to_jsonable


def test_case_id_format_and_uniqueness():
    ids = {generate_case_id() for _ in range(200)}
    assert len(ids) == 200
    assert all(re.fullmatch(r"CCAS-[0-9A-Z]+-[0-9A-Z]{5}", i) for i in ids)


def test_fresh_context_is_valid():
    context = PatientContext("PAT-1")
    assert context.metadata["analysis_stage"] == "initialized"
    assert context.time_period["start"] is None
    assert context.validate() == {"is_valid": True, "errors": []}


def test_missing_patient_id_invalid():
    result = PatientContext("").validate()
    assert not result["is_valid"]
    assert "Patient ID is required" in result["errors"]


def test_add_raw_data_appends_lists_and_merges_dicts():
    context = PatientContext("PAT-1")
    context.add_raw_data("reports", [{"a": 1}])
    context.add_raw_data("reports", {"b": 2})
    context.add_raw_data("lab_results", {"Glucose Panel": []})
    context.add_raw_data("lab_results", {"Lipid Panel": []})

    assert context.raw_data["reports"] == [{"a": 1}, {"b": 2}]
    assert set(context.raw_data["lab_results"]) == {"Glucose Panel", "Lipid Panel"}


def test_engineered_feature_last_write_wins():
    context = PatientContext("PAT-1")
    context.add_engineered_feature("risk_scores", "Glucose Panel_risk", "moderate")
    context.add_engineered_feature("risk_scores", "Glucose Panel_risk", "high")
    context.add_engineered_feature("new_category", "k", 1)

    assert context.engineered_features["risk_scores"] == {"Glucose Panel_risk": "high"}
    assert context.engineered_features["new_category"] == {"k": 1}


def test_agent_lifecycle():
    context = PatientContext("PAT-1")
    context.set_agent_active("Endocrinology")
    context.add_agent_opinion("Endocrinology", "initial_opinion", {"confidence": 8})
    assert context.metadata["active_agents"] == ["Endocrinology"]

    context.set_agent_completed("Endocrinology")
    context.increment_collaboration_round()

    assert context.metadata["active_agents"] == []
    assert context.are_agents_completed(["Endocrinology"])
    assert not context.are_agents_completed(["Endocrinology", "Cardiology"])
    assert context.agent_opinions["Endocrinology"]["status"] == "completed"
    assert context.get_agent_opinions()["Endocrinology"]["confidence"] == 8
    assert context.get_summary()["collaboration_rounds"] == 1


def test_summary_lists_populated_categories_only():
    context = PatientContext("PAT-1")
    context.add_raw_data("conditions", [{"name": "Prediabetes"}])
    context.add_engineered_feature("trends", "x_slope", 1.0)

    summary = context.get_summary()
    assert summary["data_types"] == ["conditions"]
    assert summary["feature_types"] == ["trends"]


def test_snapshot_round_trip():
    context = PatientContext("PAT-1", {"start": "2025-01-01", "end": "2025-06-01"})
    context.add_raw_data("lab_results", {"Glucose Panel": [{"timestamp": "2025-01-01", "normalizedValues": {"glucose": 100}}]})
    context.add_engineered_feature("trends", "Glucose Panel_slope", 1.5)
    context.add_agent_opinion("Cardiology", "initial_opinion", {"confidence": 7})
    context.set_analysis_stage("completed")

    restored = PatientContext.from_json(context.to_json())
    assert restored.to_dict() == context.to_dict()
    assert restored.case_id == context.case_id


def test_to_jsonable_handles_numpy_datetime_and_nan():
    value = {
        "when": datetime(2025, 1, 1),
        "n": np.float64(1.5),
        "i": np.int64(3),
        "bad": float("nan"),
        "tuple": (1, 2),
    }
    converted = to_jsonable(value)
    assert converted == {"when": "2025-01-01T00:00:00", "n": 1.5, "i": 3, "bad": None, "tuple": [1, 2]}
    json.dumps(converted)
