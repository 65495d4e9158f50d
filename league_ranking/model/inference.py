"""
Inference machinery for league ranking models.

Supports:
- Multi-chain MCMC with the built-in coordinate-wise engine
- The same model sampled through PyMC (slice steps), for cross-checking
- Burn-in, thinning and reproducible per-chain random streams
- Stall detection and cancellation
- Saving/loading posterior samples as netCDF
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Literal

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm

from league_ranking.model.core import ModelConfig, ScoringModel, get_model
from league_ranking.model.data import MatchData
from league_ranking.model.errors import (
    ConfigurationError,
    SamplerStallError,
    SamplingCancelled,
)
from league_ranking.model.steps import STEP_METHODS, CoordinateStep

logger = logging.getLogger(__name__)

# Attempts at finding a finite starting point before giving up
MAX_INIT_ATTEMPTS = 20


@dataclass
class InferenceConfig:
    """Configuration for MCMC runs."""

    n_chains: int = 4
    n_iter: int = 5000
    n_burnin: int = 1000
    thin: int = 1
    seed: int | None = None

    # Step method: "slice" or "metropolis"
    step: Literal["slice", "metropolis"] = "slice"
    slice_width: float = 1.0
    proposal_scale: float = 0.5
    target_accept: float = 0.44
    adapt_interval: int = 50

    # Spread of chain starting points
    init_jitter: float = 1.0

    # Chains run in this many worker processes (1 = sequential)
    cores: int = 1

    # Fraction of stalled iterations above which a chain is a fatal failure
    max_stall_fraction: float = 0.05

    cache_dir: Path = Path("~/.cache/league_ranking").expanduser()

    def validate(self) -> None:
        """Raise ConfigurationError for settings that cannot produce a valid run."""
        for name in ("n_chains", "n_iter", "thin", "cores", "adapt_interval"):
            value = getattr(self, name)
            if not isinstance(value, (int, np.integer)) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if not isinstance(self.n_burnin, (int, np.integer)) or self.n_burnin < 0:
            raise ConfigurationError(f"n_burnin must be a non-negative integer, got {self.n_burnin!r}")
        if self.n_burnin >= self.n_iter:
            raise ConfigurationError(
                f"n_burnin ({self.n_burnin}) must be smaller than n_iter ({self.n_iter})"
            )
        if self.n_retained_per_chain == 0:
            raise ConfigurationError(
                f"thin={self.thin} leaves no draws from {self.n_iter - self.n_burnin} "
                "post-burn-in iterations"
            )
        if self.step not in STEP_METHODS:
            raise ConfigurationError(f"Unknown step method: {self.step!r}")
        if not 0.0 <= self.max_stall_fraction <= 1.0:
            raise ConfigurationError("max_stall_fraction must lie in [0, 1]")
        if self.seed is not None and (not isinstance(self.seed, (int, np.integer)) or self.seed < 0):
            raise ConfigurationError(f"seed must be a non-negative integer, got {self.seed!r}")

    @property
    def n_retained_per_chain(self) -> int:
        return (self.n_iter - self.n_burnin) // self.thin

    def make_step(self, model: ScoringModel) -> CoordinateStep:
        layout = model.layout
        if self.step == "slice":
            return STEP_METHODS["slice"](
                model.sampled_indices, layout.lower, layout.upper, width=self.slice_width
            )
        return STEP_METHODS["metropolis"](
            model.sampled_indices,
            layout.lower,
            layout.upper,
            scale=self.proposal_scale,
            target_accept=self.target_accept,
            adapt_interval=self.adapt_interval,
        )


@dataclass
class ChainResult:
    """Output of one completed chain."""

    chain: int
    free_draws: np.ndarray  # (n_retained, n_free)
    stalled: np.ndarray  # (n_iter,) bool
    acceptance: np.ndarray  # (n_sampled,)

    @property
    def stall_fraction(self) -> float:
        return float(self.stalled.mean())


@dataclass
class PosteriorSampleSet:
    """
    Retained draws from every chain.

    ``draws`` maps each parameter name to an array of shape
    (chain, draw) for scalars or (chain, draw, K) for entity effects.
    Derived sum-to-zero coordinates are included in the entity arrays.
    """

    variant: str
    labels: tuple[str, ...]
    draws: dict[str, np.ndarray]
    stalled: np.ndarray | None = None  # (chain, n_iter)
    acceptance: np.ndarray | None = None  # (chain, n_sampled)
    seed: int | None = None
    settings: dict = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def param_names(self) -> list[str]:
        return list(self.draws)

    @property
    def n_chains(self) -> int:
        return next(iter(self.draws.values())).shape[0]

    @property
    def n_draws_per_chain(self) -> int:
        return next(iter(self.draws.values())).shape[1]

    @property
    def n_draws(self) -> int:
        return self.n_chains * self.n_draws_per_chain

    @property
    def n_entities(self) -> int:
        return len(self.labels)

    @property
    def coordinate_names(self) -> list[str]:
        """Scalar coordinate names, e.g. ``mu``, ``attack[0]`` ... ``attack[K-1]``."""
        names = []
        for name, values in self.draws.items():
            if values.ndim == 2:
                names.append(name)
            else:
                names += [f"{name}[{i}]" for i in range(values.shape[2])]
        return names

    @property
    def stall_fraction(self) -> np.ndarray | None:
        if self.stalled is None:
            return None
        return self.stalled.mean(axis=1)

    def get(self, name: str, chain: int | None = None) -> np.ndarray:
        """
        Draws of a parameter or coordinate.

        Args:
            name: Parameter name (``"attack"``) or coordinate (``"attack[2]"``)
            chain: Restrict to one chain; otherwise the (chain, draw, ...) array
        """
        if name in self.draws:
            values = self.draws[name]
        elif name.endswith("]") and "[" in name:
            base, index = name[:-1].split("[", 1)
            if base not in self.draws:
                raise KeyError(name)
            values = self.draws[base][:, :, int(index)]
        else:
            raise KeyError(name)
        if chain is not None:
            return values[chain]
        return values

    def flat(self, name: str) -> np.ndarray:
        """Draws with chains concatenated: shape (n_draws, ...)."""
        values = self.get(name)
        return values.reshape((-1,) + values.shape[2:])

    def stacked_params(self) -> dict[str, np.ndarray]:
        """All parameters with chains concatenated, for vectorised evaluation."""
        return {name: self.flat(name) for name in self.draws}

    def params_at(self, index: int) -> dict[str, np.ndarray]:
        """Parameter vector of one draw (flat, chain-major index)."""
        return {name: self.flat(name)[index] for name in self.draws}

    def posterior_mean(self) -> dict[str, np.ndarray]:
        return {name: values.mean(axis=(0, 1)) for name, values in self.draws.items()}

    def to_dataframe(self) -> pd.DataFrame:
        """Wide table: one row per draw, one column per scalar coordinate."""
        chains, draws = np.meshgrid(
            np.arange(self.n_chains), np.arange(self.n_draws_per_chain), indexing="ij"
        )
        columns = {"chain": chains.ravel(), "draw": draws.ravel()}
        for name in self.coordinate_names:
            columns[name] = self.get(name).ravel()
        return pd.DataFrame(columns)

    def to_inference_data(self) -> az.InferenceData:
        dims = {name: ["entity"] for name, values in self.draws.items() if values.ndim == 3}
        attrs = {
            "variant": self.variant,
            "labels": json.dumps(list(self.labels)),
            "seed": -1 if self.seed is None else int(self.seed),
            "settings": json.dumps(self.settings, default=str),
        }
        if self.stalled is not None:
            attrs["stalled_iterations"] = json.dumps(
                [np.flatnonzero(row).tolist() for row in self.stalled]
            )
            attrs["n_iter"] = int(self.stalled.shape[1])
        return az.from_dict(
            posterior=self.draws,
            coords={"entity": list(self.labels)},
            dims=dims,
            attrs=attrs,
        )

    @classmethod
    def from_inference_data(
        cls,
        idata: az.InferenceData,
        variant: str | None = None,
        labels: tuple[str, ...] | None = None,
    ) -> PosteriorSampleSet:
        posterior = idata.posterior
        attrs = posterior.attrs
        variant = variant or attrs.get("variant", "")
        if labels is None:
            if "labels" in attrs:
                labels = tuple(json.loads(attrs["labels"]))
            else:
                labels = tuple(str(v) for v in posterior.coords["entity"].values)

        draws = {
            name: np.asarray(posterior[name].values)
            for name in posterior.data_vars
            if not name.endswith("_free")
        }

        stalled = None
        if "stalled_iterations" in attrs:
            rows = json.loads(attrs["stalled_iterations"])
            stalled = np.zeros((len(rows), int(attrs["n_iter"])), dtype=bool)
            for chain, iterations in enumerate(rows):
                stalled[chain, iterations] = True

        seed = int(attrs.get("seed", -1))
        settings = json.loads(attrs["settings"]) if "settings" in attrs else {}
        return cls(
            variant=variant,
            labels=tuple(labels),
            draws=draws,
            stalled=stalled,
            seed=None if seed < 0 else seed,
            settings=settings,
        )


def _starting_point(
    model: ScoringModel,
    data: MatchData,
    rng: np.random.Generator,
    jitter: float,
) -> tuple[np.ndarray, float]:
    for _ in range(MAX_INIT_ATTEMPTS):
        x = model.initial_point(data, rng, jitter)
        lp = model.log_density(x, data)
        if np.isfinite(lp):
            return x, lp
    raise ConfigurationError(
        f"Could not find a starting point with finite log density in {MAX_INIT_ATTEMPTS} attempts"
    )


def run_chain(
    model: ScoringModel,
    data: MatchData,
    config: InferenceConfig,
    chain: int,
    seed_sequence: np.random.SeedSequence,
    should_stop: Callable[[], bool] | None = None,
) -> ChainResult:
    """
    Run one chain to completion.

    The chain owns its random stream, its state vector and its step method;
    nothing mutable is shared with other chains. Raises SamplingCancelled if
    ``should_stop`` returns True, in which case no partial result escapes.
    """
    rng = np.random.default_rng(seed_sequence)

    def log_density(free):
        return model.log_density(free, data)

    x, lp = _starting_point(model, data, rng, config.init_jitter)
    step = config.make_step(model)

    n_keep = config.n_retained_per_chain
    free_draws = np.empty((n_keep, model.layout.n_free))
    stalled = np.zeros(config.n_iter, dtype=bool)
    kept = 0

    for it in range(config.n_iter):
        if should_stop is not None and should_stop():
            raise SamplingCancelled(f"Chain {chain} cancelled at iteration {it}")

        tune = it < config.n_burnin
        x, lp, n_valid = step.sweep(x, lp, log_density, rng, tune=tune)
        stalled[it] = n_valid == 0

        if it + 1 == config.n_burnin:
            step.end_tuning()

        post = it - config.n_burnin + 1
        if post > 0 and post % config.thin == 0 and kept < n_keep:
            free_draws[kept] = x
            kept += 1

    return ChainResult(
        chain=chain,
        free_draws=free_draws,
        stalled=stalled,
        acceptance=step.acceptance_rate(),
    )


def _run_chain_task(args) -> ChainResult:
    return run_chain(*args)


def _assemble(
    model: ScoringModel,
    data: MatchData,
    config: InferenceConfig,
    seed: int,
    results: list[ChainResult],
) -> PosteriorSampleSet:
    results = sorted(results, key=lambda r: r.chain)
    free = np.stack([r.free_draws for r in results])
    draws = model.layout.expand(free)
    stalled = np.stack([r.stalled for r in results])

    sample_set = PosteriorSampleSet(
        variant=model.name,
        labels=data.labels,
        draws=draws,
        stalled=stalled,
        acceptance=np.stack([r.acceptance for r in results]),
        seed=seed,
        settings={
            k: v for k, v in asdict(config).items() if k not in ("cache_dir", "seed")
        },
    )

    fractions = {r.chain: r.stall_fraction for r in results}
    for chain, fraction in fractions.items():
        if fraction > 0:
            message = f"Chain {chain}: {fraction:.1%} of iterations stalled"
            sample_set.warnings.append(message)
            logger.warning(message)

    failed = {c: f for c, f in fractions.items() if f > config.max_stall_fraction}
    if failed:
        raise SamplerStallError(
            "Stall rate above {:.1%} in chain(s) {}; check priors, data and step settings".format(
                config.max_stall_fraction, sorted(failed)
            ),
            stall_fractions=failed,
        )
    return sample_set


def run(
    model: ScoringModel,
    data: MatchData,
    n_chains: int = 4,
    n_iter: int = 5000,
    n_burnin: int = 1000,
    thin: int = 1,
    seed: int | None = None,
    should_stop: Callable[[], bool] | None = None,
    **options,
) -> PosteriorSampleSet:
    """
    Draw posterior samples with the built-in engine.

    Args:
        model: Model variant (see ``get_model``)
        data: Encoded matches
        n_chains: Independent chains
        n_iter: Iterations per chain, burn-in included
        n_burnin: Iterations discarded at the start of each chain
        thin: Keep every ``thin``-th post-burn-in iteration
        seed: Top-level seed; per-chain streams are spawned from it
        should_stop: Polled between iterations (or between finished chains
            when running in parallel); returning True cancels the run
        **options: Other InferenceConfig fields (step, cores, ...)

    Returns:
        PosteriorSampleSet with n_chains × floor((n_iter - n_burnin) / thin) draws

    Raises:
        ConfigurationError: invalid settings, before any sampling
        SamplerStallError: a chain stalled in too many iterations
        SamplingCancelled: the run was aborted; no partial result is returned
    """
    config = InferenceConfig(
        n_chains=n_chains, n_iter=n_iter, n_burnin=n_burnin, thin=thin, seed=seed, **options
    )
    return sample(model, data, config, should_stop=should_stop)


def sample(
    model: ScoringModel,
    data: MatchData,
    config: InferenceConfig,
    should_stop: Callable[[], bool] | None = None,
) -> PosteriorSampleSet:
    """``run`` driven by an InferenceConfig."""
    config.validate()
    if model.n_entities != data.n_entities:
        raise ConfigurationError(
            f"Model has K={model.n_entities} entities but data has {data.n_entities}"
        )

    if data.unplayed_entities:
        logger.warning(
            "Entities with no matches are informed only by the prior: %s",
            ", ".join(data.unplayed_entities),
        )

    seed = config.seed
    if seed is None:
        seed = int(np.random.SeedSequence().entropy % (2**32))
    children = np.random.SeedSequence(seed).spawn(config.n_chains)

    logger.info(
        "Sampling %s model: %d chains x %d iterations (%d burn-in, thin %d), seed %d",
        model.name, config.n_chains, config.n_iter, config.n_burnin, config.thin, seed,
    )

    if config.cores == 1 or config.n_chains == 1:
        try:
            results = [
                run_chain(model, data, config, chain, children[chain], should_stop)
                for chain in range(config.n_chains)
            ]
        except KeyboardInterrupt:
            raise SamplingCancelled("Sampling interrupted; discarding partial chains") from None
    else:
        results = _run_parallel(model, data, config, children, should_stop)

    return _assemble(model, data, config, seed, results)


def _run_parallel(model, data, config, children, should_stop) -> list[ChainResult]:
    tasks = [(model, data, config, chain, children[chain]) for chain in range(config.n_chains)]
    with ProcessPoolExecutor(max_workers=min(config.cores, config.n_chains)) as executor:
        try:
            futures = [executor.submit(_run_chain_task, task) for task in tasks]
            results = []
            for future in futures:
                results.append(future.result())
                if should_stop is not None and should_stop():
                    raise SamplingCancelled("Sampling cancelled; discarding completed chains")
        except KeyboardInterrupt:
            executor.shutdown(wait=False, cancel_futures=True)
            raise SamplingCancelled("Sampling interrupted; discarding partial chains") from None
        except Exception:
            # Pending chains are not started once one has failed or been cancelled
            executor.shutdown(wait=False, cancel_futures=True)
            raise
    return results


class ModelFitter:
    """
    Fits a model variant to match data.

    Usage:
        fitter = ModelFitter(model, data, config)

        # Built-in coordinate-wise sampler
        samples = fitter.fit_mcmc()

        # Same model through PyMC
        samples = fitter.fit_pymc()

        # Save/load for persistence
        fitter.save("premier_league_poisson")
        fitter = ModelFitter.load("premier_league_poisson", data, config)
    """

    def __init__(
        self,
        model: ScoringModel,
        data: MatchData,
        config: InferenceConfig | None = None,
    ):
        self.model = model
        self.data = data
        self.config = config or InferenceConfig()
        self.samples: PosteriorSampleSet | None = None
        self._last_fit_time: datetime | None = None
        self._fit_method: str | None = None

    def fit_mcmc(self, should_stop: Callable[[], bool] | None = None) -> PosteriorSampleSet:
        """Sample with the built-in engine."""
        self.samples = sample(self.model, self.data, self.config, should_stop=should_stop)
        self._last_fit_time = datetime.now()
        self._fit_method = "mcmc"
        return self.samples

    def fit_pymc(self, progressbar: bool = False, **kwargs) -> PosteriorSampleSet:
        """
        Sample the equivalent PyMC model with slice steps.

        Burn-in iterations become PyMC tuning iterations (discarded), and
        the remaining draws are thinned the same way as the built-in engine.
        PyMC does not report per-iteration stalls, so ``stalled`` is None.
        Every free coordinate is sampled; a model built with a ``sampled``
        subset is rejected with ConfigurationError.

        Args:
            progressbar: Show PyMC's progress bar
            **kwargs: Additional arguments to pm.sample()
        """
        config = self.config
        config.validate()
        if len(self.model.sampled_indices) != self.model.layout.n_free:
            raise ConfigurationError(
                "fit_pymc samples every parameter; use fit_mcmc for a model with a sampled subset"
            )
        seed = config.seed if config.seed is not None else int(
            np.random.SeedSequence().entropy % (2**32)
        )

        pm_model = self.model.build_pymc(self.data)
        with pm_model:
            trace = pm.sample(
                draws=config.n_iter - config.n_burnin,
                tune=config.n_burnin,
                chains=config.n_chains,
                cores=config.cores,
                step=pm.Slice(),
                random_seed=seed,
                progressbar=progressbar,
                compute_convergence_checks=False,
                **kwargs,
            )

        posterior = trace.posterior.isel(draw=slice(config.thin - 1, None, config.thin))
        posterior = posterior.isel(draw=slice(0, config.n_retained_per_chain))
        draws = {
            name: np.asarray(posterior[name].values)
            for name in self.model.layout.param_names
        }

        self.samples = PosteriorSampleSet(
            variant=self.model.name,
            labels=self.data.labels,
            draws=draws,
            seed=seed,
            settings={"backend": "pymc", "n_iter": config.n_iter, "n_burnin": config.n_burnin,
                      "thin": config.thin, "n_chains": config.n_chains},
        )
        self._last_fit_time = datetime.now()
        self._fit_method = "pymc"
        return self.samples

    def save(self, name: str) -> Path:
        """
        Save the posterior samples to the cache directory.

        Returns:
            Path to the checkpoint directory
        """
        if self.samples is None:
            raise ValueError("No samples available. Run inference first.")

        checkpoint_dir = self.config.cache_dir / name
        checkpoint_dir.mkdir(parents=True, exist_ok=True)

        self.samples.to_inference_data().to_netcdf(checkpoint_dir / "trace.nc")
        metadata = {
            "variant": self.model.name,
            "model_config": asdict(self.model.config),
            "labels": list(self.data.labels),
            "fit_method": self._fit_method,
            "last_fit_time": self._last_fit_time.isoformat() if self._last_fit_time else None,
        }
        with open(checkpoint_dir / "metadata.json", "w") as f:
            json.dump(metadata, f, indent=2)

        logger.info("Saved checkpoint to %s", checkpoint_dir)
        return checkpoint_dir

    @classmethod
    def load(
        cls,
        name: str,
        data: MatchData,
        config: InferenceConfig | None = None,
    ) -> ModelFitter:
        """
        Load a previously saved checkpoint.

        Args:
            name: Checkpoint name
            data: The matches the checkpoint was fitted to
            config: Inference settings (its cache_dir locates the checkpoint)
        """
        config = config or InferenceConfig()
        checkpoint_dir = config.cache_dir / name
        if not checkpoint_dir.exists():
            raise ValueError(f"Checkpoint not found: {checkpoint_dir}")

        with open(checkpoint_dir / "metadata.json") as f:
            metadata = json.load(f)
        if tuple(metadata["labels"]) != data.labels:
            raise ConfigurationError("Checkpoint entity labels do not match the data")

        model_config = None
        if metadata.get("model_config"):
            model_config = ModelConfig(**metadata["model_config"])
        model = get_model(metadata["variant"], data.n_entities, config=model_config)
        fitter = cls(model, data, config)
        fitter.samples = PosteriorSampleSet.from_inference_data(
            az.from_netcdf(checkpoint_dir / "trace.nc")
        )
        fitter._fit_method = metadata.get("fit_method")
        if metadata.get("last_fit_time"):
            fitter._last_fit_time = datetime.fromisoformat(metadata["last_fit_time"])

        logger.info("Loaded checkpoint from %s", checkpoint_dir)
        return fitter

    def diagnostics(self) -> pd.DataFrame:
        """Per-coordinate convergence table (see diagnostics.diagnostics_table)."""
        from league_ranking.model.diagnostics import diagnostics_table

        if self.samples is None:
            raise ValueError("No samples available. Run inference first.")
        return diagnostics_table(self.samples)
