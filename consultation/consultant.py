"""
CCAS — Specialist Consultant

Narrow seam between the pipeline and narrative generation:

  NarrativeService      generate(prompt) -> text   (GeminiNarrativeService)
  NarrativeConsultant   consult(specialist, summary) -> structured opinion
    ├─ LLMConsultant    prompt → service → JSON validation, bounded retry
    └─ StubConsultant   deterministic canned opinions (offline / tests)

A consultant never raises into the pipeline: after CONSULT_LLM_MAX_ATTEMPTS
failed or malformed replies it returns the specialist's default opinion,
marked low_confidence=True and source="fallback".
"""

import copy
import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from google import genai
from google.genai import types

from config import (
    CONSULT_LLM_MAX_ATTEMPTS,
    CONSULT_LLM_MODEL,
    CONSULT_LLM_RETRY_BACKOFF_SEC,
    CONSULT_LLM_TIMEOUT_SEC,
    CONSULT_MAX_OUTPUT_TOKENS,
    GEMINI_API_KEY_ENV,
    SPECIALISTS,
)
from consultation.prompt_builder import OPINION_FIELDS, PromptBuilder

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)

# ── canned opinions ───────────────────────────────────────────

STUB_OPINIONS = {
    "endocrinologist": {
        "primary_assessment": "Progressive metabolic syndrome with prediabetic glucose values and concerning lipid profile",
        "risk_level": "High",
        "immediate_recommendations": [
            "Initiate intensive lifestyle intervention program",
            "Consider metformin for diabetes prevention",
            "Comprehensive diabetes risk assessment",
        ],
        "long_term_plan": "6-month structured diabetes prevention program with monthly monitoring",
        "follow_up_timeline": "2-4 weeks initial, then monthly for 6 months",
        "referrals": ["Certified Diabetes Educator", "Nutritionist"],
        "confidence": 8,
        "clinical_reasoning": "Clear progression from normal to prediabetic values with metabolic syndrome criteria met.",
    },
    "cardiologist": {
        "primary_assessment": "Elevated cardiovascular risk secondary to metabolic syndrome and dyslipidemia",
        "risk_level": "Moderate-High",
        "immediate_recommendations": [
            "Lipid management with statin consideration",
            "Blood pressure monitoring",
            "Cardiovascular risk calculator assessment",
        ],
        "long_term_plan": "Integrated cardio-metabolic risk reduction strategy",
        "follow_up_timeline": "3 months for lipid reassessment",
        "referrals": ["Lipid specialist if targets not met"],
        "confidence": 7,
        "clinical_reasoning": "Dyslipidemia pattern consistent with insulin resistance.",
    },
    "internist": {
        "primary_assessment": "Multi-system metabolic dysfunction requiring coordinated care approach",
        "risk_level": "Moderate",
        "immediate_recommendations": [
            "Coordinate care between specialists",
            "Comprehensive metabolic panel follow-up",
            "Address modifiable risk factors",
        ],
        "long_term_plan": "Integrated care coordination with regular monitoring",
        "follow_up_timeline": "Monthly initially, then quarterly",
        "referrals": ["Care coordinator", "Lifestyle medicine physician"],
        "confidence": 8,
        "clinical_reasoning": "Evidence of metabolic dysfunction requiring a multi-disciplinary approach.",
    },
    "preventive_medicine": {
        "primary_assessment": "High-yield prevention opportunity for diabetes and cardiovascular disease",
        "risk_level": "High preventive priority",
        "immediate_recommendations": [
            "Structured lifestyle intervention program",
            "Weight management consultation",
            "Exercise prescription",
        ],
        "long_term_plan": "Evidence-based diabetes prevention protocol",
        "follow_up_timeline": "Weekly for 8 weeks, then monthly",
        "referrals": ["Diabetes Prevention Program", "Exercise physiologist"],
        "confidence": 9,
        "clinical_reasoning": "Progression pattern amenable to evidence-based prevention interventions.",
    },
}

DEFAULT_OPINIONS = {
    "endocrinologist": (
        "Endocrine evaluation needed based on available data",
        ["Complete metabolic assessment", "Consider endocrine consultation"],
        "Standard monitoring protocol",
    ),
    "cardiologist": (
        "Cardiovascular risk assessment recommended",
        ["Lipid assessment", "Blood pressure monitoring"],
        "Standard cardiovascular prevention",
    ),
    "internist": (
        "Comprehensive evaluation recommended",
        ["Complete physical examination", "Laboratory follow-up"],
        "Regular monitoring",
    ),
    "preventive_medicine": (
        "Prevention opportunities available",
        ["Lifestyle assessment", "Prevention counseling"],
        "Standard prevention protocols",
    ),
}


def default_opinion(specialist: str) -> dict:
    """Deterministic fallback opinion, explicitly marked low-confidence."""
    assessment, recommendations, plan = DEFAULT_OPINIONS.get(specialist, DEFAULT_OPINIONS["internist"])
    return {
        "primary_assessment": assessment,
        "risk_level": "Moderate",
        "immediate_recommendations": list(recommendations),
        "long_term_plan": plan,
        "follow_up_timeline": "3-6 months",
        "referrals": [],
        "confidence": 5,
        "clinical_reasoning": "Standard recommendations; specialist narrative service unavailable",
        "specialist": specialist,
        "source": "fallback",
        "low_confidence": True,
    }


def parse_opinion(text: str) -> dict:
    """
    Parse a model reply into an opinion dict.

    Raises ValueError on non-JSON output or missing fields.
    """
    if not text or not text.strip():
        raise ValueError("empty response")
    match = _CODE_FENCE.match(text)
    payload = match.group(1) if match else text.strip()

    try:
        opinion = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ValueError(f"response is not JSON: {e}") from e
    if not isinstance(opinion, dict):
        raise ValueError("response is not a JSON object")

    missing = [f for f in OPINION_FIELDS if f not in opinion]
    if missing:
        raise ValueError(f"missing fields: {', '.join(missing)}")

    for list_field in ("immediate_recommendations", "referrals"):
        value = opinion[list_field]
        if isinstance(value, str):
            opinion[list_field] = [value]
        elif not isinstance(value, list):
            raise ValueError(f"{list_field} must be a list")
    try:
        opinion["confidence"] = float(opinion["confidence"])
    except (TypeError, ValueError) as e:
        raise ValueError("confidence must be numeric") from e
    return opinion


# ── narrative service ─────────────────────────────────────────

class NarrativeService(ABC):
    """External text-generation collaborator. Expected to fail intermittently."""

    @abstractmethod
    def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        ...


class GeminiNarrativeService(NarrativeService):
    """google-genai backed generation with a per-call HTTP timeout."""

    def __init__(
        self,
        api_key: str,
        model: str = CONSULT_LLM_MODEL,
        timeout_sec: float = CONSULT_LLM_TIMEOUT_SEC,
        max_output_tokens: int = CONSULT_MAX_OUTPUT_TOKENS,
    ):
        self.model = model
        self.max_output_tokens = max_output_tokens
        self.client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout_sec * 1000)),
        )
        logger.info("Gemini client ready (model=%s, timeout=%ss)", model, timeout_sec)

    def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        response = self.client.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                max_output_tokens=self.max_output_tokens,
                temperature=0.2,
                response_mime_type="application/json",
            ),
        )
        return response.text or ""


# ── consultants ───────────────────────────────────────────────

class NarrativeConsultant(ABC):
    """Produces one structured opinion per specialist. Never raises."""

    @abstractmethod
    def consult(self, specialist: str, summary: dict) -> dict:
        ...

    def consult_panel(self, summary: dict, specialists: Iterable[str] = SPECIALISTS) -> Dict[str, dict]:
        return {specialist: self.consult(specialist, summary) for specialist in specialists}


class LLMConsultant(NarrativeConsultant):
    """Prompt → NarrativeService → validated JSON, with one retry then fallback."""

    def __init__(
        self,
        service: NarrativeService,
        prompt_builder: Optional[PromptBuilder] = None,
        max_attempts: int = CONSULT_LLM_MAX_ATTEMPTS,
        backoff_sec: float = CONSULT_LLM_RETRY_BACKOFF_SEC,
    ):
        self.service = service
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.max_attempts = max_attempts
        self.backoff_sec = backoff_sec
        logger.info("LLMConsultant initialized (max_attempts=%d)", max_attempts)

    def consult(self, specialist: str, summary: dict) -> dict:
        for attempt in range(1, self.max_attempts + 1):
            try:
                t0 = time.perf_counter()
                payload = self.prompt_builder.build(specialist, summary)
                text = self.service.generate(payload["user_prompt"], payload["system_prompt"])
                opinion = parse_opinion(text)
                elapsed = (time.perf_counter() - t0) * 1000
                logger.info("%s consulted (attempt %d, %.0f ms)", specialist, attempt, elapsed)
                opinion.update(specialist=specialist, source="llm", low_confidence=False)
                return opinion
            except Exception as e:
                logger.warning(
                    "%s consultation failed (attempt %d/%d): %s",
                    specialist, attempt, self.max_attempts, str(e)[:150],
                )
                if attempt < self.max_attempts and self.backoff_sec > 0:
                    time.sleep(self.backoff_sec)

        logger.error("All %s consultation attempts failed. Using default opinion.", specialist)
        return default_opinion(specialist)


class StubConsultant(NarrativeConsultant):
    """Deterministic canned opinions; no network."""

    def __init__(self):
        logger.info("StubConsultant initialized")

    def consult(self, specialist: str, summary: dict) -> dict:
        canned = STUB_OPINIONS.get(specialist)
        if canned is None:
            logger.warning("No canned opinion for %s, using default", specialist)
            return default_opinion(specialist)
        opinion = copy.deepcopy(canned)
        opinion.update(specialist=specialist, source="stub", low_confidence=False)
        return opinion


def build_consultant() -> NarrativeConsultant:
    """Gemini-backed consultant if an API key is configured, else the stub."""
    api_key = os.environ.get(GEMINI_API_KEY_ENV, "")
    if not api_key:
        logger.info("No %s — using deterministic stub consultant.", GEMINI_API_KEY_ENV)
        return StubConsultant()
    try:
        return LLMConsultant(GeminiNarrativeService(api_key))
    except Exception as e:
        logger.error("Gemini init failed: %s. Using stub consultant.", e)
        return StubConsultant()
