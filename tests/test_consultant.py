import json

import pytest

from config import SPECIALISTS
from consultation import consultant as consultant_module
from consultation.consultant import (
    LLMConsultant,
    NarrativeService,
    StubConsultant,
    build_consultant,
    default_opinion,
    parse_opinion,
)
from consultation.prompt_builder import OPINION_FIELDS, PromptBuilder

VALID = {
    "primary_assessment": "Prediabetes with dyslipidemia",
    "risk_level": "High",
    "immediate_recommendations": ["Consider metformin"],
    "long_term_plan": "Diabetes prevention program",
    "follow_up_timeline": "3 months",
    "referrals": "Nutritionist",
    "confidence": "7",
    "clinical_reasoning": "Rising glucose and HbA1c",
}


class ScriptedService(NarrativeService):
    """Replays canned replies; an Exception instance is raised instead of returned."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []

    def generate(self, prompt, system_prompt=None):
        self.prompts.append((prompt, system_prompt))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class TestParseOpinion:
    def test_valid_reply_is_normalized(self):
        opinion = parse_opinion(json.dumps(VALID))
        assert opinion["referrals"] == ["Nutritionist"]
        assert opinion["confidence"] == 7.0

    def test_code_fence_stripped(self):
        opinion = parse_opinion("```json\n" + json.dumps(VALID) + "\n```")
        assert opinion["risk_level"] == "High"

    @pytest.mark.parametrize("text", [
        "",
        "The patient looks fine.",
        json.dumps(["not", "an", "object"]),
        json.dumps({k: v for k, v in VALID.items() if k != "risk_level"}),
        json.dumps(dict(VALID, confidence="very")),
        json.dumps(dict(VALID, immediate_recommendations=42)),
    ])
    def test_invalid_replies_raise(self, text):
        with pytest.raises(ValueError):
            parse_opinion(text)


class TestLLMConsultant:
    def test_success_marks_source(self):
        service = ScriptedService(json.dumps(VALID))
        opinion = LLMConsultant(service, backoff_sec=0).consult("endocrinologist", {})

        assert opinion["source"] == "llm"
        assert opinion["specialist"] == "endocrinologist"
        assert opinion["low_confidence"] is False
        assert len(service.prompts) == 1

    def test_retry_after_malformed_reply(self):
        service = ScriptedService("not json", json.dumps(VALID))
        opinion = LLMConsultant(service, backoff_sec=0).consult("cardiologist", {})

        assert opinion["source"] == "llm"
        assert len(service.prompts) == 2

    def test_fallback_after_exactly_two_attempts(self):
        service = ScriptedService(TimeoutError("slow"), "still not json", json.dumps(VALID))
        opinion = LLMConsultant(service, backoff_sec=0).consult("internist", {})

        assert len(service.prompts) == 2
        assert opinion == default_opinion("internist")
        assert opinion["low_confidence"] is True
        assert opinion["source"] == "fallback"

    def test_prompt_failure_falls_back(self):
        class BrokenBuilder(PromptBuilder):
            def build(self, specialist, summary):
                raise KeyError("parameters")

        service = ScriptedService(json.dumps(VALID))
        consultant = LLMConsultant(service, prompt_builder=BrokenBuilder(), backoff_sec=0)
        opinion = consultant.consult("endocrinologist", {})

        assert opinion == default_opinion("endocrinologist")
        assert service.prompts == []

    def test_prompt_is_specialist_specific(self):
        service = ScriptedService(json.dumps(VALID))
        LLMConsultant(service, backoff_sec=0).consult("cardiologist", {})
        prompt, system_prompt = service.prompts[0]

        assert "a cardiologist" in prompt
        assert "ONE JSON object" in system_prompt

    def test_panel_covers_every_specialist(self):
        service = ScriptedService(*[json.dumps(VALID)] * len(SPECIALISTS))
        panel = LLMConsultant(service, backoff_sec=0).consult_panel({}, SPECIALISTS)
        assert list(panel) == list(SPECIALISTS)


class TestStubConsultant:
    def test_deterministic(self):
        stub = StubConsultant()
        assert stub.consult("endocrinologist", {}) == stub.consult("endocrinologist", {})

    def test_opinions_have_every_field(self):
        for specialist, opinion in StubConsultant().consult_panel({}).items():
            assert all(field in opinion for field in OPINION_FIELDS)
            assert opinion["source"] == "stub"

    def test_unknown_specialist_gets_default(self):
        opinion = StubConsultant().consult("dermatologist", {})
        assert opinion["low_confidence"] is True

    def test_canned_opinions_not_shared(self):
        stub = StubConsultant()
        stub.consult("internist", {})["immediate_recommendations"].append("mutated")
        assert "mutated" not in stub.consult("internist", {})["immediate_recommendations"]


def test_build_consultant_without_key_uses_stub(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    assert isinstance(build_consultant(), StubConsultant)


def test_build_consultant_with_key_uses_llm(monkeypatch):
    created = {}

    class FakeGemini(NarrativeService):
        def __init__(self, api_key):
            created["api_key"] = api_key

        def generate(self, prompt, system_prompt=None):
            return ""

    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setattr(consultant_module, "GeminiNarrativeService", FakeGemini)

    result = build_consultant()
    assert isinstance(result, LLMConsultant)
    assert created["api_key"] == "test-key"


def test_prompt_builder_summary(metabolic_series):
    summary = PromptBuilder().build_summary(metabolic_series)
    patient = summary["patient_data"]
    analysis = summary["analysis_summary"]

    assert patient["latest_lab_values"]["glucose"] == 130.0
    assert patient["time_span"] == "3 months"
    assert patient["clinical_timeline"]["summary"] == "4 lab results over 3 months"
    assert "Elevated glucose" in analysis["risk_factors"]
    assert "Low HDL cholesterol" in analysis["risk_factors"]
    assert "HDL decreasing trend" in analysis["concerning_trends"]
