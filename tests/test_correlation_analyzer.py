from datetime import timedelta

import pytest

from clinical.correlation_analyzer import (
    CorrelationAnalyzer,
    clinical_significance,
    correlation_strength,
    pair_key,
)
from conftest import START, make_series


@pytest.fixture
def analyzer():
    return CorrelationAnalyzer()


def test_pair_key_is_order_independent():
    assert pair_key("triglycerides", "glucose") == pair_key("glucose", "triglycerides") == "glucose_triglycerides"
    assert pair_key("GFR", "Creatinine") == "creatinine_gfr"


@pytest.mark.parametrize("r, label", [
    (0.85, "very_strong"), (-0.65, "strong"), (0.45, "moderate"), (0.25, "weak"), (0.1, "very_weak"),
])
def test_strength_tiers(r, label):
    assert correlation_strength(r) == label


def test_named_pair_significance():
    assert clinical_significance("glucose", "triglycerides", 0.55) == "high"
    # negative threshold: must be at or below
    assert clinical_significance("creatinine", "gfr", -0.75) == "high"
    # named pair missed its threshold: magnitude fallback
    assert clinical_significance("creatinine", "gfr", -0.6) == "moderate"
    assert clinical_significance("alt", "vitamin_d", 0.4) == "low"


def test_metabolic_correlations(analyzer, metabolic_series):
    results = analyzer.analyze(metabolic_series)
    by_pair = {pair_key(r.parameter1, r.parameter2): r for r in results}

    glucose_tg = by_pair["glucose_triglycerides"]
    assert glucose_tg.correlation_coefficient > 0.95
    assert glucose_tg.direction == "positive"
    assert glucose_tg.clinical_significance == "high"
    assert glucose_tg.data_points == 4

    glucose_hdl = by_pair["glucose_hdl"]
    assert glucose_hdl.direction == "negative"
    assert glucose_hdl.clinical_significance == "moderate"

    magnitudes = [abs(r.correlation_coefficient) for r in results]
    assert magnitudes == sorted(magnitudes, reverse=True)
    assert all(m > 0.3 for m in magnitudes)


def test_result_is_symmetric(analyzer):
    a = make_series("glucose", [95, 105, 118, 130])
    b = make_series("triglycerides", [140, 160, 175, 200])
    assert analyzer.correlate(a, b).correlation_coefficient == pytest.approx(
        analyzer.correlate(b, a).correlation_coefficient
    )


def test_samples_outside_window_are_not_paired(analyzer):
    a = make_series("glucose", [95, 105, 118, 130])
    b = make_series("triglycerides", [140, 160, 180, 200], start=START + timedelta(days=10))
    assert analyzer.align(a, b) == []
    assert analyzer.correlate(a, b) is None


def test_nearest_sample_wins_and_ties_go_earlier(analyzer):
    a = make_series("glucose", [100], start=START + timedelta(days=3))
    b = make_series("triglycerides", [1, 2, 3], start=START, interval_days=6)
    # B at day 0 and day 6 are both 3 days away
    assert analyzer.align(a, b) == [(100.0, 1.0)]


def test_zero_variance_pair_excluded(analyzer):
    a = make_series("glucose", [100, 100, 100, 100])
    b = make_series("triglycerides", [140, 160, 180, 200])
    assert analyzer.correlate(a, b) is None


def test_short_series_skipped(analyzer):
    series = {
        "glucose": make_series("glucose", [100, 110]),
        "triglycerides": make_series("triglycerides", [150, 170]),
    }
    assert analyzer.analyze(series) == []


def test_summary_counts(analyzer, metabolic_series):
    results = analyzer.analyze(metabolic_series)
    summary = analyzer.summarize(results)
    assert summary["total_correlations"] == len(results)
    assert summary["strong_correlations"] >= 1
    assert summary["clinically_significant"] >= 1
