"""
CCAS — Centralized Configuration

All magic numbers, clinical thresholds, lookup tables, and service settings
for the Collaborative Clinical Assessment System live here.  Every module
imports from this single source of truth.
"""

import logging
import os
from pathlib import Path

# ─────────────────────────────────────────────
# Paths
# ─────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent
DATA_DIR = BASE_DIR / "data"
PATIENT_DATA_PATH = Path(os.environ.get("CCAS_PATIENT_DATA", DATA_DIR / "patients.json"))
ASSESSMENT_OUTPUT_DIR = DATA_DIR / "assessments"

# ─────────────────────────────────────────────
# Logging
# ─────────────────────────────────────────────
LOG_LEVEL = logging.INFO
LOG_FORMAT = "%(asctime)s | %(name)-32s | %(levelname)-8s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# ─────────────────────────────────────────────
# Time-series extraction
# ─────────────────────────────────────────────
# Raw records name their value map and timestamp inconsistently across
# sources; the first present key wins.
VALUE_FIELD_VARIANTS = (
    "normalizedValues",
    "normalized_values",
    "extractedData",
    "extracted_data",
    "values",
)
TIMESTAMP_FIELD_VARIANTS = (
    "timestamp",
    "createdAt",
    "created_at",
    "date",
    "processingDate",
)
EPOCH_MILLIS_CUTOFF = 1e11         # numeric timestamps above this are ms

# ─────────────────────────────────────────────
# Statistics engine
# ─────────────────────────────────────────────
MIN_TREND_POINTS = 3

# |t| threshold → approximate p-value (coarse heuristic, not a distribution)
P_VALUE_TABLE = (
    (2.5, 0.01),
    (2.0, 0.05),
    (1.5, 0.1),
)
P_VALUE_FLOOR = 0.2

# (min points, min span days, rating, confidence)
DATA_QUALITY_TIERS = (
    (5, 90, "excellent", 0.9),
    (4, 60, "good", 0.75),
    (3, 30, "fair", 0.6),
)
DATA_QUALITY_DEFAULT = ("poor", 0.3)

# ─────────────────────────────────────────────
# Clinical interpretation
# ─────────────────────────────────────────────
TREND_DEADBAND = 0.1               # |slope| at or below → "stable"
MAGNITUDE_HIGH = 1.0
MAGNITUDE_MODERATE = 0.5
SIGNIFICANCE_P_HIGH = 0.05
SIGNIFICANCE_P_MODERATE = 0.1
SIGNIFICANCE_CORRELATION_LOW = 0.5
TIME_TO_CONCERN_MIN_SLOPE = 0.01
TIME_TO_CONCERN_MAX_MONTHS = 60

CLINICAL_THRESHOLDS = {
    "glucose_metabolism": {
        "normal_range": {"min": 70, "max": 140},
        "concerning_slope": 5,     # mg/dL per sample
        "critical_slope": 10,
        "target_value": 100,
    },
    "lipid_metabolism": {
        "normal_range": {"min": 100, "max": 200},
        "concerning_slope": 10,
        "critical_slope": 20,
        "target_value": 150,
    },
    "kidney_function": {
        "normal_range": {"min": 0.6, "max": 1.2},
        "concerning_slope": 0.1,
        "critical_slope": 0.2,
        "target_value": 0.9,
    },
    "liver_function": {
        "normal_range": {"min": 10, "max": 40},
        "concerning_slope": 5,
        "critical_slope": 10,
        "target_value": 25,
    },
    "hematology": {
        "normal_range": {"min": 12, "max": 16},
        "concerning_slope": 0.5,
        "critical_slope": 1.0,
        "target_value": 14,
    },
    "thyroid_function": {
        "normal_range": {"min": 0.5, "max": 5.0},
        "concerning_slope": 0.5,
        "critical_slope": 1.0,
        "target_value": 2.5,
    },
    "default": {
        "normal_range": {"min": 0, "max": 100},
        "concerning_slope": 1,
        "critical_slope": 2,
        "target_value": 50,
    },
}

PARAMETER_CATEGORIES = {
    # Glucose metabolism
    "glucose": "glucose_metabolism",
    "blood_glucose": "glucose_metabolism",
    "fasting_glucose": "glucose_metabolism",
    "random_glucose": "glucose_metabolism",
    "hemoglobin_a1c": "glucose_metabolism",
    "hba1c": "glucose_metabolism",
    # Lipid metabolism
    "total_cholesterol": "lipid_metabolism",
    "ldl": "lipid_metabolism",
    "ldl_cholesterol": "lipid_metabolism",
    "hdl": "lipid_metabolism",
    "hdl_cholesterol": "lipid_metabolism",
    "triglycerides": "lipid_metabolism",
    # Kidney function
    "creatinine": "kidney_function",
    "blood_urea_nitrogen": "kidney_function",
    "bun": "kidney_function",
    "gfr": "kidney_function",
    "egfr": "kidney_function",
    # Liver function
    "alt": "liver_function",
    "ast": "liver_function",
    "bilirubin": "liver_function",
    # Hematology
    "hemoglobin": "hematology",
    "hematocrit": "hematology",
    "white_blood_cell": "hematology",
    "white_blood_cells": "hematology",
    "platelet_count": "hematology",
    "platelets": "hematology",
    # Thyroid
    "tsh": "thyroid_function",
    "t3": "thyroid_function",
    "t4": "thyroid_function",
}

# ─────────────────────────────────────────────
# Correlation analysis
# ─────────────────────────────────────────────
CORRELATION_WINDOW_DAYS = 7
CORRELATION_MIN_POINTS = 3
CORRELATION_MIN_ABS = 0.3
CORRELATION_STRONG_ABS = 0.7

CORRELATION_STRENGTH_TIERS = (
    (0.8, "very_strong"),
    (0.6, "strong"),
    (0.4, "moderate"),
    (0.2, "weak"),
)

# Keys are the two canonical names sorted alphabetically and joined by "_".
# A negative threshold means the coefficient must be at or below it.
CLINICALLY_MEANINGFUL_PAIRS = {
    # Glucose metabolism
    "glucose_hba1c": {"threshold": 0.6, "significance": "high"},
    "glucose_hemoglobin_a1c": {"threshold": 0.6, "significance": "high"},
    "glucose_triglycerides": {"threshold": 0.5, "significance": "high"},
    "glucose_hdl": {"threshold": -0.4, "significance": "moderate"},
    # Cardiovascular risk
    "ldl_total_cholesterol": {"threshold": 0.8, "significance": "high"},
    "hdl_triglycerides": {"threshold": -0.5, "significance": "moderate"},
    # Kidney function
    "creatinine_gfr": {"threshold": -0.7, "significance": "high"},
    "creatinine_glucose": {"threshold": 0.4, "significance": "moderate"},
    # Liver function
    "alt_ast": {"threshold": 0.7, "significance": "high"},
    # Metabolic syndrome
    "blood_pressure_glucose": {"threshold": 0.4, "significance": "moderate"},
    "glucose_systolic_bp": {"threshold": 0.4, "significance": "moderate"},
    "triglycerides_waist_circumference": {"threshold": 0.5, "significance": "high"},
}

# ─────────────────────────────────────────────
# Pattern detection
# ─────────────────────────────────────────────
# criterion → (aliases, threshold, inverse)
METABOLIC_SYNDROME_CRITERIA = {
    "glucose": (("glucose", "fasting_glucose", "blood_glucose"), 100, False),
    "triglycerides": (("triglycerides",), 150, False),
    "hdl": (("hdl", "hdl_cholesterol"), 40, True),
    "blood_pressure": (("systolic_bp", "systolic_blood_pressure", "blood_pressure"), 130, False),
}
METABOLIC_SYNDROME_MIN_MET = 3
METABOLIC_SYNDROME_WEIGHT = 0.25

CARDIOVASCULAR_RISK_CRITERIA = {
    "ldl": (("ldl", "ldl_cholesterol"), 130, False),
    "total_cholesterol": (("total_cholesterol",), 200, False),
    "hdl": (("hdl", "hdl_cholesterol"), 40, True),
    "blood_pressure": (("systolic_bp", "systolic_blood_pressure", "blood_pressure"), 130, False),
}
CARDIOVASCULAR_RISK_MIN_MET = 2
CARDIOVASCULAR_RISK_WEIGHT = 0.25

# (parameter, threshold, inverse, weight)
CARDIO_METABOLIC_WEIGHTS = (
    ("glucose", 100, False, 0.25),
    ("ldl", 130, False, 0.2),
    ("hdl", 40, True, 0.25),
    ("triglycerides", 150, False, 0.3),
)
CARDIO_METABOLIC_DETECT_SCORE = 0.6

PROGRESSION_PARAMETERS = ("glucose", "triglycerides", "hdl")
PROGRESSION_MIN_TIMEPOINTS = 3

DIABETIC_PROGRESSION_GLUCOSE_MEAN = 100
DIABETIC_PROGRESSION_A1C_MEAN = 5.7
DIABETIC_PROGRESSION_DETECT_SCORE = 0.4

KIDNEY_CREATININE_HIGH = 1.2
KIDNEY_GFR_LOW = 60

# latest glucose → current diabetes risk
DIABETES_RISK_TIERS = (
    (126, 0.8),
    (100, 0.4),
    (90, 0.1),
)

PATTERN_RISK_HIGH = 0.6
PATTERN_RISK_MODERATE = 0.4

# ─────────────────────────────────────────────
# Recommendation synthesis
# ─────────────────────────────────────────────
PRIORITY_KEYWORDS = ("immediate", "urgent", "intensive", "consider", "monitor")
RISK_LEVEL_ORDER = ("Critical", "High", "Moderate", "Low")
DEFAULT_FOLLOW_UP = "3-6 months"
MAX_PRIMARY_RECOMMENDATIONS = 5

# theme → keywords; a theme counts as consensus when >= 2 specialists hit it
CONSENSUS_THEMES = {
    "Lifestyle intervention": ("lifestyle", "exercise", "weight", "diet", "nutrition"),
    "Regular monitoring": ("monitor", "follow-up", "reassessment", "panel"),
    "Medication review": ("metformin", "statin", "medication"),
    "Risk factor modification": ("risk", "prevention", "modifiable"),
    "Specialist coordination": ("coordinate", "referral", "consultation"),
}

# ─────────────────────────────────────────────
# Specialist consultation (narrative generation)
# ─────────────────────────────────────────────
SPECIALISTS = ("endocrinologist", "cardiologist", "internist", "preventive_medicine")
CONSULT_LLM_MODEL = "gemini-2.0-flash"
CONSULT_LLM_MAX_ATTEMPTS = 2       # one try + at most one retry
CONSULT_LLM_TIMEOUT_SEC = 10
CONSULT_LLM_RETRY_BACKOFF_SEC = 1.0
CONSULT_MAX_OUTPUT_TOKENS = 800
GEMINI_API_KEY_ENV = "GEMINI_API_KEY"

# ─────────────────────────────────────────────
# Orchestration
# ─────────────────────────────────────────────
CASE_STORE_TTL_SEC = 60 * 60       # active assessments kept for one hour
CASE_STORE_MAX_ENTRIES = 500
RETRIEVAL_MAX_WORKERS = 6
ENGINE_VERSION = "2.0_hybrid"

# lab-type / condition keyword → specialty (quick assessment)
LAB_TYPE_SPECIALTIES = (
    (("glucose", "diabetes", "hba1c"), "Endocrinology"),
    (("kidney", "creatinine", "urea"), "Nephrology"),
    (("lipid", "cholesterol", "cardiac"), "Cardiology"),
    (("liver", "hepatic", "alt", "ast"), "Gastroenterology"),
    (("blood", "hemoglobin", "hematology"), "Hematology"),
)
CONDITION_SPECIALTIES = (
    (("diabetes", "thyroid"), "Endocrinology"),
    (("heart", "cardiac", "hypertension"), "Cardiology"),
    (("kidney", "renal"), "Nephrology"),
)
DEFAULT_SPECIALTY = "Internal Medicine"

# Legacy abnormal-value ranges for latest-result screening
ABNORMAL_VALUE_RANGES = {
    "glucose": {"min": 70, "max": 140},
    "creatinine": {"min": 0.6, "max": 1.2},
    "total_cholesterol": {"min": 100, "max": 200},
    "hemoglobin": {"min": 12, "max": 16},
    "white_blood_cells": {"min": 4000, "max": 11000},
}

# ─────────────────────────────────────────────
# Synthetic data generation
# ─────────────────────────────────────────────
NUM_PATIENTS = 5
VISITS_PER_PATIENT = 6
VISIT_INTERVAL_DAYS = 30
