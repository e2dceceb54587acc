"""
CCAS — Data Retriever

Populates a PatientContext from a DocumentStore.

The six per-category reads fan out on a thread pool; each writes only its own
future.  All reads complete before anything is merged into the context, and
the merge happens on the calling thread, so feature engineering never sees a
half-populated case file.  A failing read is logged and yields an empty
result: "no data for category X" is a normal outcome, not an error.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from config import PATIENT_DATA_PATH, RETRIEVAL_MAX_WORKERS
from assessment.patient_context import PatientContext
from features.time_series import parse_timestamp

logger = logging.getLogger(__name__)


# ── store interface ───────────────────────────────────────────

class DocumentStore(ABC):
    """Query interface over the patient document database."""

    @abstractmethod
    def fetch_demographics(self, patient_id: str) -> dict: ...

    @abstractmethod
    def fetch_lab_results(self, patient_id: str, time_period: Optional[dict] = None) -> Dict[str, List[dict]]: ...

    @abstractmethod
    def fetch_medical_records(self, patient_id: str, time_period: Optional[dict] = None) -> List[dict]: ...

    @abstractmethod
    def fetch_documents(self, patient_id: str, time_period: Optional[dict] = None) -> List[dict]: ...

    @abstractmethod
    def fetch_conditions(self, patient_id: str) -> List[dict]: ...

    @abstractmethod
    def fetch_medications(self, patient_id: str) -> List[dict]: ...

    @abstractmethod
    def fetch_existing_trends(self, patient_id: str) -> Dict[str, dict]: ...


def within_period(record: dict, time_period: Optional[dict]) -> bool:
    """True if the record's createdAt/timestamp lies inside [start, end]."""
    if not time_period:
        return True
    start = parse_timestamp(time_period.get("start"))
    end = parse_timestamp(time_period.get("end"))
    if start is None and end is None:
        return True

    raw = record.get("createdAt", record.get("timestamp"))
    when = parse_timestamp(raw)
    if when is None:
        return False
    if start is not None and when < start:
        return False
    if end is not None and when > end:
        return False
    return True


class InMemoryDocumentStore(DocumentStore):
    """
    Dict-backed store.  Layout per patient id:

        {
          "demographics": {...},
          "lab_results": [{"labReportType": ..., "createdAt": ..., "normalizedValues": {...}}, ...],
          "medical_records": [...], "documents": [...],
          "conditions": [...], "medications": [...],
          "trend_analysis": {labType: {"linearTrend": {...}, "predictions": {...}}}
        }
    """

    def __init__(self, patients: Optional[Dict[str, dict]] = None):
        self.patients = patients or {}
        logger.info("InMemoryDocumentStore initialized (%d patients)", len(self.patients))

    def _patient(self, patient_id: str) -> dict:
        return self.patients.get(patient_id) or {}

    def patient_ids(self) -> List[str]:
        return sorted(self.patients)

    def fetch_demographics(self, patient_id: str) -> dict:
        demographics = self._patient(patient_id).get("demographics")
        if demographics is None:
            logger.warning("No demographics found for %s", patient_id)
            return {}
        return dict(demographics, userId=patient_id)

    def fetch_lab_results(self, patient_id: str, time_period: Optional[dict] = None) -> Dict[str, List[dict]]:
        grouped: Dict[str, List[dict]] = {}
        for raw in self._patient(patient_id).get("lab_results", []):
            if not within_period(raw, time_period):
                continue
            lab_type = raw.get("labReportType") or "Unknown"
            grouped.setdefault(lab_type, []).append({
                "id": raw.get("id"),
                "timestamp": raw.get("createdAt", raw.get("timestamp")),
                "labReportType": lab_type,
                "extractedData": raw.get("extractedData") or {},
                "normalizedValues": raw.get("normalizedValues") or {},
                "processingDate": raw.get("processingDate"),
            })
        logger.debug("Found lab results for %d test types (%s)", len(grouped), patient_id)
        return grouped

    def fetch_medical_records(self, patient_id: str, time_period: Optional[dict] = None) -> List[dict]:
        return [
            dict(r, source="medical_records")
            for r in self._patient(patient_id).get("medical_records", [])
            if within_period(r, time_period)
        ]

    def fetch_documents(self, patient_id: str, time_period: Optional[dict] = None) -> List[dict]:
        return [
            dict(d, type="uploaded_document")
            for d in self._patient(patient_id).get("documents", [])
            if within_period(d, time_period)
        ]

    def fetch_conditions(self, patient_id: str) -> List[dict]:
        return list(self._patient(patient_id).get("conditions", []))

    def fetch_medications(self, patient_id: str) -> List[dict]:
        return list(self._patient(patient_id).get("medications", []))

    def fetch_existing_trends(self, patient_id: str) -> Dict[str, dict]:
        return dict(self._patient(patient_id).get("trend_analysis", {}))


class JsonDocumentStore(InMemoryDocumentStore):
    """Reads the patient JSON file written by `main.py generate`."""

    def __init__(self, path: Path = PATIENT_DATA_PATH):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._loaded = False
        super().__init__({})

    def _patient(self, patient_id: str) -> dict:
        with self._lock:
            if not self._loaded:
                self.patients = self._load()
                self._loaded = True
        return super()._patient(patient_id)

    def patient_ids(self) -> List[str]:
        self._patient("")
        return super().patient_ids()

    def _load(self) -> Dict[str, dict]:
        if not self.path.exists():
            logger.warning("Patient data file not found: %s", self.path)
            return {}
        with open(self.path) as f:
            data = json.load(f)
        logger.info("Loaded %d patients from %s", len(data), self.path)
        return data


# ── retriever ─────────────────────────────────────────────────

class DataRetriever:
    """Builds and enriches PatientContext instances from a DocumentStore."""

    def __init__(self, store: DocumentStore, max_workers: int = RETRIEVAL_MAX_WORKERS):
        self.store = store
        self.max_workers = max_workers
        logger.info("DataRetriever initialized (%s, workers=%d)", type(store).__name__, max_workers)

    def create_patient_context(self, patient_id: str, time_period: Optional[dict] = None) -> PatientContext:
        context = PatientContext(patient_id, time_period)
        context.set_analysis_stage("data_retrieval")

        fetches = {
            "demographics": (lambda: self.store.fetch_demographics(patient_id), {}),
            "lab_results": (lambda: self.store.fetch_lab_results(patient_id, time_period), {}),
            "medical_records": (lambda: self.store.fetch_medical_records(patient_id, time_period), []),
            "documents": (lambda: self.store.fetch_documents(patient_id, time_period), []),
            "conditions": (lambda: self.store.fetch_conditions(patient_id), []),
            "medications": (lambda: self.store.fetch_medications(patient_id), []),
        }

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="ccas-fetch") as pool:
            futures = {
                name: pool.submit(self._safe_fetch, name, fn, default)
                for name, (fn, default) in fetches.items()
            }
            # leaving the pool joins every read before the merge below
        results = {name: future.result() for name, future in futures.items()}

        context.add_raw_data("demographics", results["demographics"])
        context.add_raw_data("lab_results", results["lab_results"])
        context.add_raw_data("reports", results["medical_records"])
        context.add_raw_data("conditions", results["conditions"])
        context.add_raw_data("medications", results["medications"])
        if results["documents"]:
            context.add_raw_data("reports", results["documents"])

        context.set_analysis_stage("data_loaded")
        logger.info(
            "Patient context %s created: %d lab types, %d conditions, %d records",
            context.case_id, len(results["lab_results"]),
            len(results["conditions"]), len(results["medical_records"]),
        )
        return context

    def enrich_with_trend_analysis(self, context: PatientContext) -> int:
        """Copy stored trend analyses into the context. Returns lab types enriched."""
        trends = self._safe_fetch(
            "trend_analysis", lambda: self.store.fetch_existing_trends(context.patient_id), {},
        )
        for lab_type, data in trends.items():
            linear = data.get("linearTrend")
            if linear:
                context.add_engineered_feature("trends", f"{lab_type}_slope", linear.get("slope"))
                context.add_engineered_feature("trends", f"{lab_type}_correlation", linear.get("correlation"))
                context.add_engineered_feature("trends", f"{lab_type}_trend_direction", linear.get("trendDirection"))
            if data.get("predictions"):
                context.add_engineered_feature("temporal_patterns", f"{lab_type}_predictions", data["predictions"])
        logger.info("Enriched context with trend analysis for %d lab types", len(trends))
        return len(trends)

    @staticmethod
    def _safe_fetch(name: str, fn: Callable[[], Any], default: Any) -> Any:
        try:
            result = fn()
        except Exception as e:
            logger.error("Error fetching %s: %s", name, e)
            return default
        return default if result is None else result
