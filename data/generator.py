"""
CCAS — Synthetic Lab History Generator

Generates realistic longitudinal lab histories for a handful of patients,
in the same document layout the DocumentStore reads (labReportType,
createdAt, normalizedValues, plus conditions and stored trend analyses).

Each patient follows a clinical *profile*: a per-visit drift applied to a
baseline, plus Gaussian noise, so that the analysis pipeline has real
trends, correlations and patterns to find.
"""

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from config import (
    NUM_PATIENTS,
    PATIENT_DATA_PATH,
    VISIT_INTERVAL_DAYS,
    VISITS_PER_PATIENT,
)

logger = logging.getLogger(__name__)

# lab panel → parameter → (baseline, noise std)
PANELS = {
    "Glucose Panel": {
        "glucose": (92, 3),
        "hba1c": (5.4, 0.05),
    },
    "Lipid Panel": {
        "total_cholesterol": (185, 5),
        "ldl": (110, 4),
        "hdl": (52, 1.5),
        "triglycerides": (130, 6),
    },
    "Kidney Function Test": {
        "creatinine": (0.9, 0.03),
        "egfr": (92, 2),
    },
    "Vital Signs": {
        "systolic_bp": (122, 2),
        "diastolic_bp": (78, 2),
    },
}

# profile → parameter → drift per visit
PROFILES = {
    "metabolic_progression": {
        "glucose": 6.0, "hba1c": 0.12, "triglycerides": 14.0,
        "hdl": -2.2, "systolic_bp": 3.0,
    },
    "cardiovascular": {
        "total_cholesterol": 11.0, "ldl": 9.0, "hdl": -1.8, "systolic_bp": 3.5,
    },
    "kidney_decline": {
        "creatinine": 0.12, "egfr": -6.0, "systolic_bp": 2.0,
    },
    "stable": {},
}

PROFILE_CONDITIONS = {
    "metabolic_progression": [{"name": "Prediabetes", "status": "active"}],
    "cardiovascular": [{"name": "Hypertension", "status": "active"}],
    "kidney_decline": [{"name": "Chronic kidney disease stage 2", "status": "active"}],
    "stable": [],
}

PROFILE_MEDICATIONS = {
    "metabolic_progression": [{"name": "Metformin", "dose": "500 mg"}],
    "cardiovascular": [{"name": "Atorvastatin", "dose": "20 mg"}],
    "kidney_decline": [{"name": "Lisinopril", "dose": "10 mg"}],
    "stable": [],
}


class LabHistoryGenerator:
    """
    Generates synthetic patient documents keyed by patient id.

    Patients cycle through the profiles in order, so even a small run covers
    every clinical pattern the pipeline knows about.
    """

    def __init__(
        self,
        num_patients: int = NUM_PATIENTS,
        visits_per_patient: int = VISITS_PER_PATIENT,
        interval_days: int = VISIT_INTERVAL_DAYS,
        seed: Optional[int] = 42,
    ):
        self.num_patients = num_patients
        self.visits_per_patient = visits_per_patient
        self.interval_days = interval_days
        self.rng = np.random.default_rng(seed)
        logger.info(
            "LabHistoryGenerator initialized: patients=%d, visits_each=%d, interval=%dd",
            num_patients, visits_per_patient, interval_days,
        )

    # ── public API ────────────────────────────────────────────

    def generate(self) -> Dict[str, dict]:
        """Generate documents for every patient."""
        profiles = list(PROFILES)
        patients = {}
        for i in range(self.num_patients):
            patient_id = f"PAT-{uuid.UUID(int=int(self.rng.integers(0, 2**63))).hex[:8].upper()}"
            profile = profiles[i % len(profiles)]
            patients[patient_id] = self.generate_patient(patient_id, profile)
            logger.debug("Generated %s (%s)", patient_id, profile)

        logger.info("Generated lab histories for %d patients", len(patients))
        return patients

    def generate_patient(self, patient_id: str, profile: str) -> dict:
        drift = PROFILES[profile]
        start = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)
        lab_results = []
        panel_values: Dict[str, List[List[float]]] = {panel: [] for panel in PANELS}

        for visit in range(self.visits_per_patient):
            visit_time = start + timedelta(days=self.interval_days * visit)
            for panel, params in PANELS.items():
                values = {}
                for param, (base, noise) in params.items():
                    value = base + drift.get(param, 0.0) * visit + self.rng.normal(0, noise)
                    values[param] = round(float(max(value, 0.0)), 2)
                panel_values[panel].append(list(values.values()))
                lab_results.append({
                    "id": uuid.UUID(int=int(self.rng.integers(0, 2**63))).hex[:12],
                    "labReportType": panel,
                    # one blood draw per visit, so panels share a timestamp
                    "createdAt": visit_time.isoformat(),
                    "normalizedValues": values,
                })

        return {
            "demographics": {
                "age": int(self.rng.integers(38, 72)),
                "sex": str(self.rng.choice(["female", "male"])),
                "profile": profile,
            },
            "lab_results": lab_results,
            "medical_records": [{
                "title": "Annual physical",
                "createdAt": start.isoformat(),
                "summary": f"Baseline visit ({profile.replace('_', ' ')})",
            }],
            "documents": [],
            "conditions": PROFILE_CONDITIONS[profile],
            "medications": PROFILE_MEDICATIONS[profile],
            "trend_analysis": {
                panel: self.stored_trend(rows) for panel, rows in panel_values.items()
            },
        }

    def save_json(self, patients: Dict[str, dict], path: Optional[Path] = None) -> str:
        """Persist patient documents to JSON."""
        path = Path(path or PATIENT_DATA_PATH)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(patients, f, indent=2)
        logger.info("Patient data saved to %s", path)
        return str(path)

    # ── internals ─────────────────────────────────────────────

    @staticmethod
    def stored_trend(rows: List[List[float]]) -> dict:
        """Panel-level linear trend on the first parameter, as a lab system stores it."""
        y = np.array([r[0] for r in rows], dtype=float)
        if len(y) < 2 or np.ptp(y) == 0:
            return {}
        x = np.arange(len(y), dtype=float)
        slope, intercept = np.polyfit(x, y, 1)
        correlation = float(np.corrcoef(x, y)[0, 1])
        if slope > 0.1:
            direction = "increasing"
        elif slope < -0.1:
            direction = "decreasing"
        else:
            direction = "stable"
        return {
            "linearTrend": {
                "slope": round(float(slope), 4),
                "correlation": round(correlation, 4),
                "trendDirection": direction,
            },
            "predictions": {
                "nextValue": round(float(slope * len(y) + intercept), 2),
            },
        }
