"""Unit tests for league_ranking.model.summary module."""

import pytest

from league_ranking.model.comparison import BayesFactorResult, InformationCriterion, compare_dic
from league_ranking.model.core import PoissonModel
from league_ranking.model.season_predictor import SeasonReplayer
from league_ranking.model.summary import entity_summary, format_comparison


class TestEntitySummary:
    """Test per-entity posterior summaries."""

    def test_effect_columns(self, poisson_samples):
        summary = entity_summary(poisson_samples)
        assert len(summary) == 3
        for name in ("attack", "defense"):
            assert f"{name}_mean" in summary.columns
            assert (summary[f"{name}_hdi_lower"] <= summary[f"{name}_hdi_upper"]).all()
        assert summary["attack_mean"].is_monotonic_decreasing
        assert summary["attack_mean"].sum() == pytest.approx(0.0, abs=1e-10)

    def test_with_replay(self, poisson_samples):
        replay = SeasonReplayer(PoissonModel(3), poisson_samples, seed=0).replay()
        summary = entity_summary(poisson_samples, replay)
        assert summary["mean_rank"].is_monotonic_increasing
        assert "mean_points" in summary.columns


class TestFormatComparison:
    """Test the comparison report text."""

    def test_report(self):
        table = compare_dic({
            "poisson": InformationCriterion(mean_deviance=100.0, p_d=10.0),
            "negbin": InformationCriterion(mean_deviance=102.0, p_d=3.0),
        })
        bf = BayesFactorResult(prior_prob=0.5, posterior_prob=0.9, method="empirical")
        text = format_comparison(table, bf)
        assert "MODEL COMPARISON" in text
        assert "negbin" in text
        assert "Bayes factor:   9.000 (positive)" in text

    def test_report_without_bayes_factor(self):
        table = compare_dic({"poisson": InformationCriterion(mean_deviance=10.0, p_d=1.0)})
        assert "HOME ADVANTAGE" not in format_comparison(table)
