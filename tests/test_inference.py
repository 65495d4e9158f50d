"""Unit tests for league_ranking.model.inference module."""

import logging

import numpy as np
import pytest

from league_ranking.model.comparison import dic
from league_ranking.model.core import ModelConfig, PoissonModel, get_model
from league_ranking.model.data import MatchData
from league_ranking.model.errors import (
    ConfigurationError,
    SamplerStallError,
    SamplingCancelled,
)
from league_ranking.model.inference import (
    InferenceConfig,
    ModelFitter,
    PosteriorSampleSet,
    run,
)
from league_ranking.model.season_predictor import SeasonReplayer


class StallingPoissonModel(PoissonModel):
    """Finite log density at the starting point only."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = 0

    def log_density(self, free, data):
        self.calls += 1
        if self.calls == 1:
            return super().log_density(free, data)
        return -np.inf


class NeverFinitePoissonModel(PoissonModel):
    """No starting point has a finite log density."""

    def log_density(self, free, data):
        return -np.inf


class TestInferenceConfig:
    """Test settings validation."""

    def test_defaults_are_valid(self):
        config = InferenceConfig()
        config.validate()
        assert config.n_retained_per_chain == 4000

    @pytest.mark.parametrize("overrides", [
        {"n_chains": 0},
        {"n_iter": 0},
        {"thin": 0},
        {"n_burnin": -1},
        {"n_burnin": 5000},
        {"n_iter": 100, "n_burnin": 90, "thin": 20},
        {"step": "gibbs"},
        {"seed": -3},
        {"max_stall_fraction": 1.5},
    ])
    def test_invalid_settings(self, overrides):
        with pytest.raises(ConfigurationError):
            InferenceConfig(**overrides).validate()

    def test_retained_count(self):
        config = InferenceConfig(n_iter=100, n_burnin=10, thin=7)
        assert config.n_retained_per_chain == 12


class TestRun:
    """Test the built-in multi-chain engine."""

    def test_draw_counts_and_constraint(self, small_data):
        model = get_model("A", 3)
        samples = run(model, small_data, n_chains=1, n_iter=100, n_burnin=50, thin=1, seed=11)
        assert samples.n_chains == 1
        assert samples.n_draws_per_chain == 50
        assert samples.get("attack").shape == (1, 50, 3)
        np.testing.assert_allclose(samples.get("attack").sum(axis=-1), 0.0, atol=1e-10)
        np.testing.assert_allclose(samples.get("defense").sum(axis=-1), 0.0, atol=1e-10)

    def test_thinning(self, small_data):
        samples = run(
            get_model("A", 3), small_data, n_chains=2, n_iter=100, n_burnin=10, thin=7, seed=2
        )
        assert samples.n_draws_per_chain == 12
        assert samples.n_draws == 24
        assert samples.stalled.shape == (2, 100)

    def test_reproducible_with_seed(self, small_data):
        model = get_model("B", 3)
        first = run(model, small_data, n_chains=2, n_iter=60, n_burnin=20, seed=5)
        second = run(model, small_data, n_chains=2, n_iter=60, n_burnin=20, seed=5)
        for name in first.param_names:
            np.testing.assert_array_equal(first.draws[name], second.draws[name])

    def test_chains_differ(self, small_data):
        samples = run(get_model("A", 3), small_data, n_chains=2, n_iter=60, n_burnin=20, seed=5)
        assert not np.array_equal(samples.draws["mu"][0], samples.draws["mu"][1])

    def test_parallel_matches_sequential(self, small_data):
        model = get_model("A", 3)
        sequential = run(model, small_data, n_chains=2, n_iter=40, n_burnin=10, seed=9, cores=1)
        parallel = run(model, small_data, n_chains=2, n_iter=40, n_burnin=10, seed=9, cores=2)
        for name in sequential.param_names:
            np.testing.assert_array_equal(sequential.draws[name], parallel.draws[name])

    def test_metropolis_step(self, small_data):
        samples = run(
            get_model("A", 3), small_data, n_chains=1, n_iter=200, n_burnin=100,
            seed=4, step="metropolis",
        )
        rates = samples.acceptance[0]
        assert np.all((rates >= 0) & (rates <= 1))
        assert rates.mean() > 0

    def test_negbin_dispersion_in_support(self, small_data):
        samples = run(get_model("B", 3), small_data, n_chains=1, n_iter=80, n_burnin=30, seed=8)
        for name in ("r1", "r2"):
            values = samples.flat(name)
            assert np.all((values > 0) & (values < 50))

    def test_sampled_subset(self, small_data):
        model = get_model("A", 3, sampled=["eta"])
        samples = run(model, small_data, n_chains=1, n_iter=60, n_burnin=10, seed=1)
        assert np.ptp(samples.flat("mu")) == 0
        assert np.ptp(samples.flat("attack"), axis=0).max() == 0
        assert np.ptp(samples.flat("eta")) > 0

    def test_recovers_strength_order(self, lopsided_data):
        samples = run(
            get_model("A", 3), lopsided_data, n_chains=2, n_iter=600, n_burnin=200, seed=21
        )
        attack = samples.posterior_mean()["attack"]
        assert attack[0] > attack[1] > attack[2]

    def test_entity_mismatch(self, small_data):
        with pytest.raises(ConfigurationError, match="K=4"):
            run(get_model("A", 4), small_data, n_chains=1, n_iter=20, n_burnin=5)

    def test_invalid_settings_before_sampling(self, small_data):
        model = StallingPoissonModel(3)
        with pytest.raises(ConfigurationError):
            run(model, small_data, n_chains=1, n_iter=10, n_burnin=10)
        assert model.calls == 0

    def test_stall_raises(self, small_data):
        model = StallingPoissonModel(3)
        with pytest.raises(SamplerStallError) as excinfo:
            run(model, small_data, n_chains=1, n_iter=20, n_burnin=10, seed=3)
        assert excinfo.value.stall_fractions == {0: 1.0}

    def test_stall_tolerated_below_threshold(self, small_data):
        model = StallingPoissonModel(3)
        samples = run(
            model, small_data, n_chains=1, n_iter=20, n_burnin=10, seed=3, max_stall_fraction=1.0
        )
        assert samples.stall_fraction[0] == 1.0
        assert samples.warnings

    def test_cancellation(self, small_data):
        polls = {"n": 0}

        def should_stop():
            polls["n"] += 1
            return polls["n"] > 5

        with pytest.raises(SamplingCancelled):
            run(get_model("A", 3), small_data, n_chains=2, n_iter=50, n_burnin=10,
                seed=1, should_stop=should_stop)

    def test_parallel_chain_failure_propagates(self, small_data):
        """A chain that fails in a worker process surfaces its own error."""
        with pytest.raises(ConfigurationError, match="starting point"):
            run(NeverFinitePoissonModel(3), small_data, n_chains=2, n_iter=20, n_burnin=5,
                seed=1, cores=2)

    def test_unplayed_entity_warning(self, caplog):
        data = MatchData.from_indices([0, 1], [1, 2], [1, 0], [0, 2], n_entities=4)
        with caplog.at_level(logging.WARNING, logger="league_ranking.model.inference"):
            run(get_model("A", 4), data, n_chains=1, n_iter=20, n_burnin=5, seed=0)
        assert "no matches are informed only by the prior: 3" in caplog.text


class TestPosteriorSampleSet:
    """Test accessors on the sample set."""

    def test_coordinate_access(self, poisson_samples):
        assert poisson_samples.get("attack[1]").shape == (2, 5)
        np.testing.assert_array_equal(
            poisson_samples.get("attack[1]", chain=0), poisson_samples.draws["attack"][0, :, 1]
        )
        with pytest.raises(KeyError):
            poisson_samples.get("gamma")

    def test_coordinate_names(self, poisson_samples):
        names = poisson_samples.coordinate_names
        assert names[:2] == ["mu", "eta"]
        assert "defense[2]" in names
        assert len(names) == 2 + 3 + 3

    def test_to_dataframe(self, poisson_samples):
        df = poisson_samples.to_dataframe()
        assert len(df) == 10
        assert {"chain", "draw", "attack[0]", "defense[2]"} <= set(df.columns)

    def test_inference_data_roundtrip(self, poisson_samples):
        idata = poisson_samples.to_inference_data()
        assert idata.posterior["attack"].dims == ("chain", "draw", "entity")
        restored = PosteriorSampleSet.from_inference_data(idata)
        assert restored.labels == poisson_samples.labels
        assert restored.variant == "poisson"
        np.testing.assert_allclose(restored.draws["defense"], poisson_samples.draws["defense"])


class TestModelFitter:
    """Test the fitting facade and persistence."""

    def test_save_and_load(self, small_data, tmp_path):
        config = InferenceConfig(n_chains=2, n_iter=40, n_burnin=10, seed=3, cache_dir=tmp_path)
        fitter = ModelFitter(get_model("A", 3), small_data, config)
        samples = fitter.fit_mcmc()
        path = fitter.save("test_checkpoint")
        assert (path / "trace.nc").exists()
        assert (path / "metadata.json").exists()

        loaded = ModelFitter.load("test_checkpoint", small_data, config)
        assert loaded.model.name == "poisson"
        assert loaded.samples.seed == 3
        np.testing.assert_allclose(loaded.samples.draws["attack"], samples.draws["attack"])
        np.testing.assert_array_equal(loaded.samples.stalled, samples.stalled)

    def test_save_without_samples(self, small_data, tmp_path):
        fitter = ModelFitter(get_model("A", 3), small_data, InferenceConfig(cache_dir=tmp_path))
        with pytest.raises(ValueError, match="No samples"):
            fitter.save("nothing")

    def test_load_missing_checkpoint(self, small_data, tmp_path):
        with pytest.raises(ValueError, match="Checkpoint not found"):
            ModelFitter.load("absent", small_data, InferenceConfig(cache_dir=tmp_path))

    def test_diagnostics_table(self, small_data):
        config = InferenceConfig(n_chains=2, n_iter=80, n_burnin=20, seed=6)
        fitter = ModelFitter(get_model("A", 3), small_data, config)
        fitter.fit_mcmc()
        table = fitter.diagnostics()
        assert "attack[2]" in table.index
        assert {"geweke_z", "ess", "r_hat", "insufficient_data"} <= set(table.columns)

    def test_load_restores_model_config(self, small_data, tmp_path):
        config = InferenceConfig(n_chains=1, n_iter=30, n_burnin=10, seed=2, cache_dir=tmp_path)
        model_config = ModelConfig(prior_variance=4.0, dispersion_upper=20.0)
        fitter = ModelFitter(get_model("B", 3, config=model_config), small_data, config)
        fitter.fit_mcmc()
        fitter.save("custom_priors")

        loaded = ModelFitter.load("custom_priors", small_data, config)
        assert loaded.model.name == "negbin"
        assert loaded.model.config == model_config
        assert loaded.model.layout.upper[loaded.model.layout.slices["r1"]][0] == 20.0


class TestFitPyMC:
    """Test sampling the equivalent PyMC model."""

    @pytest.fixture
    def config(self):
        return InferenceConfig(n_chains=2, n_iter=60, n_burnin=20, thin=3, seed=1, cores=1)

    @pytest.mark.parametrize("variant,effects", [
        ("A", ["attack", "defense"]),
        ("B", ["strength"]),
    ])
    def test_draws_follow_config(self, small_data, config, variant, effects):
        model = get_model(variant, 3)
        samples = ModelFitter(model, small_data, config).fit_pymc()

        assert samples.n_chains == 2
        assert samples.n_draws_per_chain == config.n_retained_per_chain == 13
        assert samples.stalled is None
        assert set(samples.param_names) == set(model.layout.param_names)
        for name in effects:
            assert samples.get(name).shape == (2, 13, 3)
            np.testing.assert_allclose(samples.get(name).sum(axis=-1), 0.0, atol=1e-6)

    @pytest.mark.parametrize("variant", ["A", "B"])
    def test_downstream_accepts_pymc_samples(self, small_data, config, variant):
        model = get_model(variant, 3)
        samples = ModelFitter(model, small_data, config).fit_pymc()

        replay = SeasonReplayer(model, samples, seed=0).replay()
        assert replay.points.shape == (samples.n_draws, 3)

        criterion = dic(model, samples, small_data)
        assert np.isfinite(criterion.dic)

    def test_sampled_subset_rejected(self, small_data, config):
        model = get_model("A", 3, sampled=["eta"])
        with pytest.raises(ConfigurationError, match="fit_mcmc"):
            ModelFitter(model, small_data, config).fit_pymc()
