import math

import pytest

from conftest import make_series
from features.statistics_engine import StatisticsEngine, approximate_p_value, t_statistic


@pytest.fixture
def engine():
    return StatisticsEngine()


def test_insufficient_points_returns_none(engine):
    assert engine.compute(make_series("glucose", [100, 110])) is None


def test_perfect_linear_trend(engine):
    stats = engine.compute(make_series("glucose", [100, 110, 120, 130]))

    assert stats.data_points == 4
    assert stats.slope == pytest.approx(10.0)
    assert stats.intercept == pytest.approx(100.0)
    assert stats.correlation == pytest.approx(1.0)
    assert stats.r_squared == pytest.approx(1.0)
    assert stats.p_value == 0.01
    assert stats.trend_consistency == 1.0


def test_descriptive_statistics(engine):
    stats = engine.compute(make_series("glucose", [100, 110, 120, 130]))

    assert stats.mean == pytest.approx(115.0)
    # upper median for even counts
    assert stats.median == 120.0
    assert stats.std_deviation == pytest.approx(math.sqrt(125.0))
    assert stats.coefficient_of_variation == pytest.approx(math.sqrt(125.0) / 115.0)
    assert stats.volatility_score == pytest.approx(10.0 / 115.0)


def test_flat_series(engine):
    stats = engine.compute(make_series("glucose", [100, 100, 100]))

    assert stats.slope == 0.0
    assert stats.correlation == 0.0
    assert stats.p_value == 0.2
    assert stats.std_deviation == 0.0


def test_zero_mean_guards(engine):
    stats = engine.compute(make_series("delta", [-1, 0, 1]))
    assert stats.coefficient_of_variation == 0.0
    assert stats.volatility_score == 0.0


def test_correlation_bounded(engine):
    stats = engine.compute(make_series("noisy", [5, 1, 9, 2, 8, 3]))
    assert -1.0 <= stats.correlation <= 1.0
    assert 0.0 <= stats.r_squared <= 1.0


def test_trend_consistency_counts_matching_steps():
    # overall up; steps: +, -, +, + → 3 of 4
    assert StatisticsEngine.trend_consistency([1, 3, 2, 4, 5]) == 0.75


@pytest.mark.parametrize("t, p", [(3.0, 0.01), (2.2, 0.05), (1.7, 0.1), (1.0, 0.2), (-3.0, 0.01)])
def test_p_value_table(t, p):
    assert approximate_p_value(t) == p


def test_t_statistic_edges():
    assert t_statistic(0.9, 2) == 0.0
    assert t_statistic(1.0, 5) == math.inf
    assert t_statistic(0.6, 6) == pytest.approx(0.6 * math.sqrt(4 / 0.64))


def test_simple_trend():
    assert StatisticsEngine.simple_trend([1]) == {"slope": 0.0, "confidence": 0.0}
    trend = StatisticsEngine.simple_trend([10, 20, 30])
    assert trend["slope"] == pytest.approx(10.0)
    assert trend["confidence"] == pytest.approx(0.6)


class TestDataQuality:
    def test_excellent(self, engine):
        quality = engine.assess_data_quality(make_series("glucose", [1, 2, 3, 4, 5], interval_days=30))
        assert quality["quality_rating"] == "excellent"
        assert quality["confidence_level"] == 0.9
        assert quality["time_span_days"] == 120
        assert quality["recommendations"] == []

    def test_fair(self, engine):
        quality = engine.assess_data_quality(make_series("glucose", [1, 2, 3], interval_days=20))
        assert quality["quality_rating"] == "fair"
        assert "Extend monitoring period for more reliable trends" in quality["recommendations"]

    def test_poor(self, engine):
        quality = engine.assess_data_quality(make_series("glucose", [1, 2], interval_days=5))
        assert quality["quality_rating"] == "poor"
        assert quality["confidence_level"] == 0.3
        assert "Current data insufficient for clinical decision making" in quality["recommendations"]


def test_monotonic_rise_is_fully_consistent(engine):
    stats = engine.compute(make_series("glucose", [95, 105, 115, 125, 130, 135]))
    assert stats.slope > 0
    assert stats.trend_consistency == 1.0


def test_monotonic_fall_has_negative_slope(engine):
    stats = engine.compute(make_series("egfr", [90, 82, 75, 61, 55]))
    assert stats.slope < 0
    assert stats.trend_consistency == 1.0


def test_statistics_are_labelled_with_series_parameter(engine):
    stats = engine.compute(make_series("hba1c", [5.5, 5.8, 6.1]))
    assert stats.parameter == "hba1c"
    with pytest.raises(TypeError):
        engine.compute(make_series("hba1c", [5.5, 5.8, 6.1]), "glucose")
