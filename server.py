"""
CCAS — FastAPI REST Server

Wraps the assessment Orchestrator as an HTTP API for the frontend.

Run:
    uvicorn server:app --reload --host 0.0.0.0 --port 8000
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

# ── Ensure the project root is on sys.path ────────────────────
BASE_DIR = Path(__file__).resolve().parent
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from config import ENGINE_VERSION, LOG_DATE_FORMAT, LOG_FORMAT, LOG_LEVEL, PATIENT_DATA_PATH
from assessment.data_retriever import JsonDocumentStore
from assessment.orchestrator import Orchestrator
from consultation.consultant import build_consultant

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
logger = logging.getLogger("ccas.server")

# ── App-wide singleton (built once at startup) ────────────────
_orchestrator: Optional[Orchestrator] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _orchestrator
    logger.info("Building Orchestrator over %s…", PATIENT_DATA_PATH)
    _orchestrator = Orchestrator(JsonDocumentStore(PATIENT_DATA_PATH), consultant=build_consultant())
    logger.info("✅ Orchestrator ready")

    yield  # app runs here


app = FastAPI(
    title="CCAS Clinical Trend API",
    description="Local REST API wrapping the CCAS assessment pipeline",
    version=ENGINE_VERSION,
    lifespan=lifespan,
)

# ── CORS — allow localhost frontend ───────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3001",
        "http://localhost:4173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_orchestrator() -> Orchestrator:
    if _orchestrator is None:
        raise HTTPException(503, detail="Orchestrator not ready.")
    return _orchestrator


# ══════════════════════════════════════════════════════════════
# Pydantic schemas
# ══════════════════════════════════════════════════════════════

class TimePeriod(BaseModel):
    start: Optional[str] = Field(None, examples=["2025-01-01T00:00:00Z"])
    end: Optional[str] = Field(None, examples=["2025-12-31T23:59:59Z"])


class AssessmentRequest(BaseModel):
    patientId: str = Field(..., min_length=1, examples=["PAT-A1B2C3D4"])
    specialties: List[str] = Field(default_factory=list, examples=[["Endocrinology", "Cardiology"]])
    timePeriod: Optional[TimePeriod] = None


class QuickAssessmentRequest(BaseModel):
    patientId: str = Field(..., min_length=1, examples=["PAT-A1B2C3D4"])
    timePeriod: Optional[TimePeriod] = None


def _period(p: Optional[TimePeriod]) -> Optional[dict]:
    return p.model_dump() if p is not None else None


# ══════════════════════════════════════════════════════════════
# Routes
# ══════════════════════════════════════════════════════════════

@app.get("/", tags=["Health"])
def health():
    return {
        "status": "ok",
        "orchestrator_ready": _orchestrator is not None,
        "engine_version": ENGINE_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ── 1. Start assessment ───────────────────────────────────────
@app.post("/assessments", tags=["Assessments"])
def start_assessment(payload: AssessmentRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Run a full assessment with the requested specialties."""
    try:
        return orchestrator.start_assessment(
            payload.patientId, payload.specialties, _period(payload.timePeriod),
        )
    except Exception as e:
        logger.error("Assessment error for %s: %s", payload.patientId, e)
        raise HTTPException(500, detail=f"Assessment failed: {str(e)}")


# ── 2. Quick assessment ───────────────────────────────────────
@app.post("/assessments/quick", tags=["Assessments"])
def quick_assessment(payload: QuickAssessmentRequest, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Run an assessment with specialties detected from the patient's data."""
    try:
        return orchestrator.quick_assessment(payload.patientId, _period(payload.timePeriod))
    except Exception as e:
        logger.error("Quick assessment error for %s: %s", payload.patientId, e)
        raise HTTPException(500, detail=f"Quick assessment failed: {str(e)}")


# ── 3. Active assessments ─────────────────────────────────────
@app.get("/assessments", tags=["Assessments"])
def active_assessments(orchestrator: Orchestrator = Depends(get_orchestrator)):
    case_ids = orchestrator.get_active_assessments()
    return {"active": case_ids, "count": len(case_ids)}


# ── 4. Assessment status ──────────────────────────────────────
@app.get("/assessments/{case_id}", tags=["Assessments"])
def assessment_status(case_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    status = orchestrator.get_assessment_status(case_id)
    if status is None:
        raise HTTPException(404, detail="Case not found")
    return status


# ── 5. Full case file ─────────────────────────────────────────
@app.get("/assessments/{case_id}/context", tags=["Assessments"])
def assessment_context(case_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    context = orchestrator.get_assessment_context(case_id)
    if context is None:
        raise HTTPException(404, detail="Case not found")
    return context
