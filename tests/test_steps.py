"""Unit tests for league_ranking.model.steps module."""

import numpy as np
import pytest

from league_ranking.model.steps import MetropolisStep, SliceStep


def standard_normal(x):
    return -0.5 * float(x @ x)


def run_sweeps(step, n, tune=0, seed=0):
    rng = np.random.default_rng(seed)
    x = np.zeros(1)
    lp = standard_normal(x)
    out = np.empty(n)
    for i in range(tune + n):
        x, lp, _ = step.sweep(x, lp, standard_normal, rng, tune=i < tune)
        if i + 1 == tune:
            step.end_tuning()
        if i >= tune:
            out[i - tune] = x[0]
    return out


class TestSliceStep:
    """Test univariate slice updates."""

    def test_standard_normal_moments(self):
        draws = run_sweeps(SliceStep([0], [-np.inf], [np.inf]), 4000, tune=200)
        assert draws.mean() == pytest.approx(0.0, abs=0.15)
        assert draws.var() == pytest.approx(1.0, abs=0.2)

    def test_respects_bounds(self):
        step = SliceStep([0], [0.0], [1.0])
        rng = np.random.default_rng(1)
        x = np.array([0.5])
        for _ in range(200):
            x, _, _ = step.sweep(x, 0.0, lambda v: 0.0, rng)
            assert 0.0 < x[0] < 1.0

    def test_all_invalid_is_reported(self):
        step = SliceStep([0], [-np.inf], [np.inf])
        x, lp, n_valid = step.sweep(
            np.array([1.0]), 0.0, lambda v: -np.inf, np.random.default_rng(0)
        )
        assert n_valid == 0
        assert x[0] == 1.0
        assert lp == 0.0


class TestMetropolisStep:
    """Test random-walk updates and scale adaptation."""

    def test_standard_normal_moments(self):
        step = MetropolisStep([0], [-np.inf], [np.inf], scale=0.1, adapt_interval=25)
        draws = run_sweeps(step, 8000, tune=1000)
        assert draws.mean() == pytest.approx(0.0, abs=0.2)
        assert draws.var() == pytest.approx(1.0, abs=0.25)

    def test_scale_grows_when_acceptance_is_high(self):
        step = MetropolisStep([0], [-np.inf], [np.inf], scale=0.01, adapt_interval=10)
        before = step.log_scale.copy()
        run_sweeps(step, 10, tune=200)
        assert step.log_scale[0] > before[0]

    def test_scale_frozen_after_tuning(self):
        step = MetropolisStep([0], [-np.inf], [np.inf], adapt_interval=10)
        run_sweeps(step, 0, tune=100)
        frozen = step.log_scale.copy()
        run_sweeps(step, 200)
        np.testing.assert_array_equal(step.log_scale, frozen)

    def test_out_of_bounds_proposal_is_invalid(self):
        step = MetropolisStep([0], [0.0], [1e-12], scale=10.0)
        x, _, n_valid = step.sweep(
            np.array([5e-13]), 0.0, lambda v: 0.0, np.random.default_rng(0)
        )
        assert n_valid == 0
        assert step.acceptance_rate()[0] == 0.0
