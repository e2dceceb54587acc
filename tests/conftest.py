"""Shared fixtures: a four-visit metabolic-progression patient and helpers."""

from datetime import datetime, timedelta

import pytest

from assessment.data_retriever import InMemoryDocumentStore
from consultation.consultant import StubConsultant
from features.time_series import TimeSeries

START = datetime(2025, 1, 1, 8, 0)
VISITS = [START + timedelta(days=30 * i) for i in range(4)]

# glucose and lipids worsen together; HDL falls
METABOLIC_VALUES = {
    "glucose": [95, 105, 118, 130],
    "hba1c": [5.5, 5.8, 6.1, 6.4],
    "triglycerides": [140, 160, 180, 200],
    "hdl": [45, 42, 38, 35],
    "systolic_bp": [125, 130, 135, 140],
}


def make_series(name, values, start=START, interval_days=30):
    points = tuple(
        (start + timedelta(days=interval_days * i), float(v)) for i, v in enumerate(values)
    )
    return TimeSeries(name, points)


def _record(lab_type, when, values):
    return {
        "id": f"{lab_type}-{when:%Y%m%d}",
        "labReportType": lab_type,
        "createdAt": when.isoformat() + "Z",
        "normalizedValues": values,
    }


def metabolic_patient():
    lab_results = []
    for i, when in enumerate(VISITS):
        lab_results.append(_record("Glucose Panel", when, {
            "glucose": METABOLIC_VALUES["glucose"][i],
            "hba1c": METABOLIC_VALUES["hba1c"][i],
        }))
        lab_results.append(_record("Lipid Panel", when, {
            "triglycerides": METABOLIC_VALUES["triglycerides"][i],
            "hdl": METABOLIC_VALUES["hdl"][i],
        }))
        lab_results.append(_record("Vital Signs", when, {
            "systolic_bp": METABOLIC_VALUES["systolic_bp"][i],
        }))
    return {
        "demographics": {"age": 54, "sex": "female"},
        "lab_results": lab_results,
        "medical_records": [{"title": "Annual physical", "createdAt": VISITS[0].isoformat()}],
        "documents": [],
        "conditions": [{"name": "Prediabetes", "status": "active"}],
        "medications": [{"name": "Metformin", "dose": "500 mg"}],
        "trend_analysis": {
            "Glucose Panel": {
                "linearTrend": {"slope": 11.8, "correlation": 0.99, "trendDirection": "increasing"},
                "predictions": {"nextValue": 142},
            },
        },
    }


@pytest.fixture
def metabolic_series():
    return {name: make_series(name, values) for name, values in METABOLIC_VALUES.items()}


@pytest.fixture
def store():
    return InMemoryDocumentStore({"PAT-META": metabolic_patient()})


@pytest.fixture
def consultant():
    return StubConsultant()
