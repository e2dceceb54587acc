"""
CCAS — Patient Context (case file)

The aggregate root for one assessment.  Raw observations, engineered
features, specialist opinions and process metadata live here; the pipeline
reads raw data and writes derived features back through
add_engineered_feature (last-write-wins per key).

Snapshots (to_dict / to_json) are plain JSON-safe structures; from_dict
restores a context whose snapshot is identical to the one it was built from.
"""

import copy
import json
import logging
import secrets
import time
from dataclasses import is_dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

RAW_DATA_TEMPLATE = {
    "conditions": [],
    "medications": [],
    "lab_results": {},
    "vital_signs": {},
    "reports": [],
    "demographics": {},
}

FEATURE_TEMPLATE = {
    "trends": {},
    "risk_scores": {},
    "clinical_indicators": {},
    "temporal_patterns": {},
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _base36(number: int) -> str:
    digits = []
    while True:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
        if number == 0:
            return "".join(reversed(digits))


def generate_case_id() -> str:
    """CCAS-<base36 epoch ms>-<5 random base36 chars>, upper-cased."""
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"CCAS-{stamp}-{suffix}".upper()


def to_jsonable(value: Any) -> Any:
    """Recursively convert a value into JSON-safe primitives."""
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(value.to_dict() if hasattr(value, "to_dict") else vars(value))
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, float) and (value != value or value in (float("inf"), float("-inf"))):
        return None
    return value


class PatientContext:
    """Per-assessment case file; owned by exactly one pipeline run."""

    def __init__(self, patient_id: str, time_period: Optional[dict] = None):
        self.case_id = generate_case_id()
        self.patient_id = patient_id
        self.time_period = time_period or {"start": None, "end": _now_iso()}
        self.created_at = _now_iso()
        self.last_updated = self.created_at

        self.raw_data: Dict[str, Any] = copy.deepcopy(RAW_DATA_TEMPLATE)
        self.engineered_features: Dict[str, dict] = copy.deepcopy(FEATURE_TEMPLATE)
        self.agent_opinions: Dict[str, dict] = {}
        self.metadata = {
            "analysis_stage": "initialized",
            "active_agents": [],
            "completed_agents": [],
            "collaboration_rounds": 0,
            "confidence_scores": {},
        }
        logger.debug("PatientContext %s created for %s", self.case_id, patient_id)

    def _touch(self):
        self.last_updated = _now_iso()

    # ── writers ───────────────────────────────────────────────

    def add_raw_data(self, data_type: str, data: Any):
        """Append to list categories, merge into dict categories."""
        if data_type not in self.raw_data or self.raw_data[data_type] is None:
            self.raw_data[data_type] = [] if isinstance(data, list) else {}

        slot = self.raw_data[data_type]
        if isinstance(slot, list):
            slot.extend(data if isinstance(data, list) else [data])
        elif isinstance(data, dict):
            slot.update(data)
        else:
            self.raw_data[data_type] = data
        self._touch()

    def add_engineered_feature(self, category: str, key: str, value: Any):
        self.engineered_features.setdefault(category, {})[key] = value
        self._touch()

    def add_agent_opinion(self, agent_name: str, opinion_type: str, opinion: Any):
        agent = self.agent_opinions.setdefault(agent_name, {
            "agent_id": agent_name,
            "timestamp": _now_iso(),
            "status": "active",
        })
        agent[opinion_type] = {
            "content": opinion,
            "timestamp": _now_iso(),
            "confidence": opinion.get("confidence") if isinstance(opinion, dict) else None,
        }
        self._touch()

    def set_agent_active(self, agent_name: str):
        if agent_name not in self.metadata["active_agents"]:
            self.metadata["active_agents"].append(agent_name)
        self._touch()

    def set_agent_completed(self, agent_name: str):
        self.metadata["active_agents"] = [
            a for a in self.metadata["active_agents"] if a != agent_name
        ]
        if agent_name not in self.metadata["completed_agents"]:
            self.metadata["completed_agents"].append(agent_name)
        if agent_name in self.agent_opinions:
            self.agent_opinions[agent_name]["status"] = "completed"
        self._touch()

    def set_analysis_stage(self, stage: str):
        self.metadata["analysis_stage"] = stage
        self._touch()

    def increment_collaboration_round(self):
        self.metadata["collaboration_rounds"] += 1
        self._touch()

    # ── readers ───────────────────────────────────────────────

    def get_summary(self) -> dict:
        return {
            "case_id": self.case_id,
            "patient_id": self.patient_id,
            "stage": self.metadata["analysis_stage"],
            "active_agents": list(self.metadata["active_agents"]),
            "completed_agents": list(self.metadata["completed_agents"]),
            "collaboration_rounds": self.metadata["collaboration_rounds"],
            "data_types": [k for k, v in self.raw_data.items() if v],
            "feature_types": [k for k, v in self.engineered_features.items() if v],
            "agent_count": len(self.agent_opinions),
            "last_updated": self.last_updated,
        }

    def get_agent_opinions(self, opinion_type: str = "initial_opinion") -> dict:
        return {
            name: data[opinion_type]
            for name, data in self.agent_opinions.items()
            if opinion_type in data
        }

    def are_agents_completed(self, required_agents: Iterable[str]) -> bool:
        return all(a in self.metadata["completed_agents"] for a in required_agents)

    def validate(self) -> dict:
        errors: List[str] = []
        if not self.patient_id:
            errors.append("Patient ID is required")
        if not self.case_id:
            errors.append("Case ID is required")
        for category in RAW_DATA_TEMPLATE:
            if category not in self.raw_data:
                errors.append(f"Missing raw data category: {category}")
        return {"is_valid": not errors, "errors": errors}

    # ── snapshot ──────────────────────────────────────────────

    def to_dict(self) -> dict:
        return to_jsonable({
            "case_id": self.case_id,
            "patient_id": self.patient_id,
            "time_period": self.time_period,
            "created_at": self.created_at,
            "last_updated": self.last_updated,
            "raw_data": self.raw_data,
            "engineered_features": self.engineered_features,
            "agent_opinions": self.agent_opinions,
            "metadata": self.metadata,
        })

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict) -> "PatientContext":
        context = cls(data.get("patient_id"), copy.deepcopy(data.get("time_period")))
        context.case_id = data.get("case_id", context.case_id)
        context.created_at = data.get("created_at", context.created_at)
        context.last_updated = data.get("last_updated", context.last_updated)
        if data.get("raw_data") is not None:
            context.raw_data = copy.deepcopy(data["raw_data"])
        if data.get("engineered_features") is not None:
            context.engineered_features = copy.deepcopy(data["engineered_features"])
        context.agent_opinions = copy.deepcopy(data.get("agent_opinions") or {})
        context.metadata.update(copy.deepcopy(data.get("metadata") or {}))
        return context

    @classmethod
    def from_json(cls, text: str) -> "PatientContext":
        return cls.from_dict(json.loads(text))
