import json

from assessment.data_retriever import (
    DataRetriever,
    InMemoryDocumentStore,
    JsonDocumentStore,
    within_period,
)
from conftest import metabolic_patient


class FailingStore(InMemoryDocumentStore):
    def fetch_conditions(self, patient_id):
        raise ConnectionError("store unavailable")


def test_lab_results_grouped_by_type(store):
    grouped = store.fetch_lab_results("PAT-META")
    assert set(grouped) == {"Glucose Panel", "Lipid Panel", "Vital Signs"}
    assert len(grouped["Glucose Panel"]) == 4
    assert grouped["Glucose Panel"][0]["normalizedValues"]["glucose"] == 95


def test_time_period_filter(store):
    period = {"start": "2025-01-15T00:00:00Z", "end": "2025-03-15T00:00:00Z"}
    grouped = store.fetch_lab_results("PAT-META", period)
    # visits on Jan 31 and Mar 2 fall inside
    assert len(grouped["Glucose Panel"]) == 2


def test_within_period_edges():
    record = {"createdAt": "2025-02-01T00:00:00Z"}
    assert within_period(record, None)
    assert within_period(record, {"start": None, "end": None})
    assert within_period(record, {"start": "2025-02-01T00:00:00Z"})
    assert not within_period(record, {"end": "2025-01-31T00:00:00Z"})
    assert not within_period({}, {"start": "2025-01-01"})


def test_unknown_patient_yields_empty_context(store):
    context = DataRetriever(store).create_patient_context("PAT-NOBODY")

    assert context.metadata["analysis_stage"] == "data_loaded"
    assert context.raw_data["lab_results"] == {}
    assert context.raw_data["demographics"] == {}
    assert context.validate()["is_valid"]


def test_context_populated(store):
    context = DataRetriever(store).create_patient_context("PAT-META")

    assert context.raw_data["demographics"]["userId"] == "PAT-META"
    assert set(context.raw_data["lab_results"]) == {"Glucose Panel", "Lipid Panel", "Vital Signs"}
    assert context.raw_data["conditions"] == [{"name": "Prediabetes", "status": "active"}]
    assert context.raw_data["reports"][0]["source"] == "medical_records"
    assert context.metadata["analysis_stage"] == "data_loaded"


def test_failing_category_is_empty_not_fatal():
    store = FailingStore({"PAT-META": metabolic_patient()})
    context = DataRetriever(store).create_patient_context("PAT-META")

    assert context.raw_data["conditions"] == []
    assert len(context.raw_data["lab_results"]) == 3


def test_trend_enrichment(store):
    retriever = DataRetriever(store)
    context = retriever.create_patient_context("PAT-META")

    assert retriever.enrich_with_trend_analysis(context) == 1
    trends = context.engineered_features["trends"]
    assert trends["Glucose Panel_slope"] == 11.8
    assert trends["Glucose Panel_trend_direction"] == "increasing"
    assert context.engineered_features["temporal_patterns"]["Glucose Panel_predictions"] == {"nextValue": 142}


def test_json_store_loads_lazily(tmp_path):
    path = tmp_path / "patients.json"
    path.write_text(json.dumps({"PAT-META": metabolic_patient()}))
    store = JsonDocumentStore(path)

    assert store.patient_ids() == ["PAT-META"]
    assert len(store.fetch_lab_results("PAT-META")["Lipid Panel"]) == 4


def test_json_store_missing_file(tmp_path):
    store = JsonDocumentStore(tmp_path / "absent.json")
    assert store.patient_ids() == []
    assert store.fetch_conditions("PAT-META") == []
