"""
Model definitions for paired-match count data.

Two fixed likelihood variants share one interface:

    Variant A (Poisson, attack/defence):
        log(λ1) = μ + η + attack[home] + defense[away]
        log(λ2) = μ + attack[away] + defense[home]
        home_count ~ Poisson(λ1), away_count ~ Poisson(λ2)

    Variant B (negative binomial, single strength):
        log(λ1) = μ + η + strength[home] - strength[away]
        log(λ2) = μ + strength[away] - strength[home]
        home_count ~ NegBin(r1, r1 / (r1 + λ1)), away_count ~ NegBin(r2, r2 / (r2 + λ2))

Entity effects are identified by a sum-to-zero constraint. Only the first
K-1 coordinates of each constrained group are parameters; the last one is
computed as minus their sum every time the group is read.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal

import numpy as np
import pymc as pm
import pytensor.tensor as pt
from scipy.special import gammaln, xlogy

from league_ranking.model.data import MatchData
from league_ranking.model.errors import ConfigurationError, IdentifiabilityError

# Log-rates are capped at this value before counts are drawn (exp(20) is about 4.9e8)
MAX_LOG_RATE = 20.0


@dataclass
class ModelConfig:
    """Configuration for the scoring models."""

    # Diffuse Normal prior on intercept, home advantage and free entity effects
    prior_mean: float = 0.0
    prior_variance: float = 1e4

    # Uniform(0, upper) prior on negative-binomial dispersion
    dispersion_upper: float = 50.0

    @property
    def prior_sd(self) -> float:
        return float(np.sqrt(self.prior_variance))


class SumToZeroBlock:
    """
    A group of K entity effects constrained to sum to zero.

    The block owns K-1 free coordinates. The K-th is never stored; ``expand``
    derives it from the others on every call.
    """

    def __init__(self, name: str, size: int):
        if size < 2:
            raise ConfigurationError(f"{name}: a sum-to-zero block needs at least 2 entries")
        self.name = name
        self.size = size

    @property
    def n_free(self) -> int:
        return self.size - 1

    @property
    def coordinate_names(self) -> list[str]:
        return [f"{self.name}[{i}]" for i in range(self.size)]

    @property
    def free_names(self) -> list[str]:
        return self.coordinate_names[:-1]

    @property
    def derived_name(self) -> str:
        return self.coordinate_names[-1]

    def expand(self, free: np.ndarray) -> np.ndarray:
        """Append the derived coordinate; works over any leading axes."""
        free = np.asarray(free, dtype=float)
        derived = -free.sum(axis=-1, keepdims=True)
        return np.concatenate([free, derived], axis=-1)

    def __repr__(self) -> str:
        return f"SumToZeroBlock({self.name!r}, size={self.size})"


@dataclass(frozen=True)
class ScalarParameter:
    """A scalar parameter with either a Normal or a Uniform prior."""

    name: str
    prior: Literal["normal", "uniform"] = "normal"
    lower: float = -np.inf
    upper: float = np.inf


class ParameterLayout:
    """
    Ordered mapping between the flat vector of free coordinates and named
    parameters.

    Scalars occupy one slot each, blocks occupy K-1 slots. ``expand`` turns a
    free vector (or a stack of them) into the full named parameter set,
    including derived coordinates.
    """

    def __init__(self, entries: Iterable[ScalarParameter | SumToZeroBlock]):
        self.entries = list(entries)
        self.slices: dict[str, slice] = {}
        lower, upper, normal = [], [], []
        offset = 0

        for entry in self.entries:
            if isinstance(entry, SumToZeroBlock):
                width = entry.n_free
                lower += [-np.inf] * width
                upper += [np.inf] * width
                normal += [True] * width
            else:
                width = 1
                lower.append(entry.lower)
                upper.append(entry.upper)
                normal.append(entry.prior == "normal")
            self.slices[entry.name] = slice(offset, offset + width)
            offset += width

        self.n_free = offset
        self.lower = np.asarray(lower, dtype=float)
        self.upper = np.asarray(upper, dtype=float)
        self.normal_mask = np.asarray(normal, dtype=bool)

    @property
    def blocks(self) -> list[SumToZeroBlock]:
        return [e for e in self.entries if isinstance(e, SumToZeroBlock)]

    @property
    def param_names(self) -> list[str]:
        return [e.name for e in self.entries]

    @property
    def free_names(self) -> list[str]:
        names = []
        for entry in self.entries:
            if isinstance(entry, SumToZeroBlock):
                names += entry.free_names
            else:
                names.append(entry.name)
        return names

    @property
    def derived_names(self) -> list[str]:
        return [block.derived_name for block in self.blocks]

    @property
    def coordinate_names(self) -> list[str]:
        """Every scalar coordinate, free and derived, in layout order."""
        names = []
        for entry in self.entries:
            if isinstance(entry, SumToZeroBlock):
                names += entry.coordinate_names
            else:
                names.append(entry.name)
        return names

    def shape_of(self, name: str) -> tuple[int, ...]:
        for entry in self.entries:
            if entry.name == name:
                return (entry.size,) if isinstance(entry, SumToZeroBlock) else ()
        raise KeyError(name)

    def expand(self, free: np.ndarray) -> dict[str, np.ndarray]:
        """
        Map free coordinates to named parameters.

        Args:
            free: Array of shape (..., n_free)

        Returns:
            Dict of name -> array of shape (...) for scalars or (..., K) for blocks
        """
        free = np.asarray(free, dtype=float)
        if free.shape[-1] != self.n_free:
            raise ConfigurationError(
                f"Expected {self.n_free} free coordinates, got {free.shape[-1]}"
            )
        params = {}
        for entry in self.entries:
            values = free[..., self.slices[entry.name]]
            if isinstance(entry, SumToZeroBlock):
                params[entry.name] = entry.expand(values)
            else:
                params[entry.name] = values[..., 0]
        return params

    def flatten(self, params: dict[str, np.ndarray]) -> np.ndarray:
        """Inverse of ``expand``; derived coordinates are dropped."""
        parts = []
        for entry in self.entries:
            values = np.asarray(params[entry.name], dtype=float)
            if isinstance(entry, SumToZeroBlock):
                parts.append(values[..., :-1])
            else:
                parts.append(values[..., None])
        return np.concatenate(parts, axis=-1)

    def resolve(self, names: Iterable[str]) -> np.ndarray:
        """
        Indices into the free vector for the given parameter or coordinate names.

        A block name selects all of its free coordinates. Naming a derived
        coordinate raises IdentifiabilityError.
        """
        free_names = self.free_names
        derived = set(self.derived_names)
        indices: list[int] = []
        for name in names:
            if name in derived:
                raise IdentifiabilityError(
                    f"{name} is determined by the sum-to-zero constraint and cannot be "
                    "sampled independently"
                )
            if name in self.slices:
                indices += list(range(self.n_free))[self.slices[name]]
            elif name in free_names:
                indices.append(free_names.index(name))
            else:
                raise ConfigurationError(f"Unknown parameter: {name}")
        return np.asarray(sorted(set(indices)), dtype=int)


def _col(x) -> np.ndarray:
    """Add a trailing axis so per-draw scalars broadcast against per-match arrays."""
    return np.asarray(x, dtype=float)[..., None]


def _capped_rate(log_rate: np.ndarray) -> np.ndarray:
    return np.exp(np.minimum(log_rate, MAX_LOG_RATE))


def poisson_logpmf(y: np.ndarray, log_rate: np.ndarray) -> np.ndarray:
    return y * log_rate - np.exp(log_rate) - gammaln(y + 1)


def negbin_logpmf(y: np.ndarray, log_rate: np.ndarray, r: np.ndarray) -> np.ndarray:
    """NB(r, p) log mass with p = r / (r + λ); mean λ, variance λ + λ²/r."""
    rate = np.exp(log_rate)
    log_total = np.log(r + rate)
    return (
        gammaln(y + r)
        - gammaln(r)
        - gammaln(y + 1)
        + r * (np.log(r) - log_total)
        + xlogy(y, rate)
        - y * log_total
    )


class ScoringModel:
    """
    Shared interface of the two likelihood variants.

    Subclasses define the parameter layout, the linear predictors, the
    count distribution and the equivalent PyMC model. The sampler only
    ever talks to ``log_density`` and ``layout``.
    """

    name: str = ""

    def __init__(
        self,
        n_entities: int,
        config: ModelConfig | None = None,
        sampled: Iterable[str] | None = None,
    ):
        if n_entities < 2:
            raise ConfigurationError(f"At least two entities are required, got K={n_entities}")
        self.n_entities = int(n_entities)
        self.config = config or ModelConfig()
        if self.config.prior_variance <= 0:
            raise ConfigurationError("prior_variance must be positive")
        if self.config.dispersion_upper <= 0:
            raise ConfigurationError("dispersion_upper must be positive")
        self.layout = self._build_layout()

        # Coordinates the sampler updates; the rest stay at their starting values
        if sampled is None:
            self.sampled_indices = np.arange(self.layout.n_free)
        else:
            self.sampled_indices = self.layout.resolve(sampled)
            if self.sampled_indices.size == 0:
                raise ConfigurationError("No parameters selected for sampling")

    def _build_layout(self) -> ParameterLayout:
        raise NotImplementedError

    # === Densities ===

    def log_prior(self, free: np.ndarray) -> float:
        free = np.asarray(free, dtype=float)
        layout = self.layout
        if np.any(free <= layout.lower) or np.any(free >= layout.upper):
            return -np.inf

        var = self.config.prior_variance
        normal = free[layout.normal_mask] - self.config.prior_mean
        lp = -0.5 * normal.size * np.log(2 * np.pi * var) - 0.5 * np.sum(normal**2) / var

        uniform = ~layout.normal_mask
        lp -= np.sum(np.log(layout.upper[uniform] - layout.lower[uniform]))
        return float(lp)

    def pointwise_log_likelihood(
        self, params: dict[str, np.ndarray], data: MatchData
    ) -> np.ndarray:
        """Log-likelihood of each match (home and away counts); shape (..., N)."""
        raise NotImplementedError

    def log_likelihood(self, params: dict[str, np.ndarray], data: MatchData) -> np.ndarray:
        return self.pointwise_log_likelihood(params, data).sum(axis=-1)

    def log_density(self, free: np.ndarray, data: MatchData) -> float:
        """Unnormalised log posterior of the free coordinates."""
        lp = self.log_prior(free)
        if not np.isfinite(lp):
            return -np.inf
        with np.errstate(over="ignore", invalid="ignore"):
            ll = float(self.log_likelihood(self.layout.expand(free), data))
        if np.isnan(ll):
            return -np.inf
        return lp + ll

    def deviance(self, params: dict[str, np.ndarray], data: MatchData) -> np.ndarray:
        return -2.0 * self.log_likelihood(params, data)

    # === Generative side ===

    def linear_predictors(
        self,
        params: dict[str, np.ndarray],
        home_idx: np.ndarray,
        away_idx: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Return (log λ1, log λ2) for each pairing."""
        raise NotImplementedError

    def simulate(
        self,
        params: dict[str, np.ndarray],
        home_idx: np.ndarray,
        away_idx: np.ndarray,
        rng: np.random.Generator,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Draw (home_count, away_count) for each pairing; log-rates are capped at MAX_LOG_RATE."""
        raise NotImplementedError

    def count_capped(
        self,
        params: dict[str, np.ndarray],
        home_idx: np.ndarray,
        away_idx: np.ndarray,
    ) -> np.ndarray:
        """
        Number of pairings whose home or away log-rate exceeds MAX_LOG_RATE.

        Such rates are capped by ``simulate``. They arise when an entity has
        few or no matches and its effects are held only by the diffuse prior.
        """
        log_home, log_away = self.linear_predictors(params, home_idx, away_idx)
        return (log_home > MAX_LOG_RATE).sum(axis=-1) + (log_away > MAX_LOG_RATE).sum(axis=-1)

    def initial_point(
        self, data: MatchData, rng: np.random.Generator, jitter: float = 1.0
    ) -> np.ndarray:
        """
        Dispersed starting point for a chain.

        Entity effects and home advantage start at N(0, jitter²) scaled down
        to the log-rate scale; the intercept starts near log of the mean count.
        """
        layout = self.layout
        free = rng.normal(0.0, 0.25 * jitter, size=layout.n_free)
        counts = np.concatenate([data.home_count, data.away_count])
        mu_slice = layout.slices["mu"]
        free[mu_slice] = np.log(max(counts.mean(), 0.1)) + rng.normal(0.0, 0.1 * jitter)
        return free

    def build_pymc(self, data: MatchData) -> pm.Model:
        """Equivalent PyMC model; sum-to-zero groups are Deterministics."""
        raise NotImplementedError

    def _pymc_sum_to_zero(self, name: str, sigma: float) -> pt.TensorVariable:
        free = pm.Normal(
            f"{name}_free",
            mu=self.config.prior_mean,
            sigma=sigma,
            shape=self.n_entities - 1,
        )
        return pm.Deterministic(
            name, pt.concatenate([free, -free.sum(keepdims=True)]), dims="entity"
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n_entities={self.n_entities})"


class PoissonModel(ScoringModel):
    """
    Variant A: equidispersed counts with separate attack and defence effects.

    Parameters: mu, eta, attack[K], defense[K].
    """

    name = "poisson"

    def _build_layout(self) -> ParameterLayout:
        return ParameterLayout([
            ScalarParameter("mu"),
            ScalarParameter("eta"),
            SumToZeroBlock("attack", self.n_entities),
            SumToZeroBlock("defense", self.n_entities),
        ])

    def linear_predictors(self, params, home_idx, away_idx):
        base = _col(params["mu"])
        attack = np.asarray(params["attack"], dtype=float)
        defense = np.asarray(params["defense"], dtype=float)
        log_home = base + _col(params["eta"]) + attack[..., home_idx] + defense[..., away_idx]
        log_away = base + attack[..., away_idx] + defense[..., home_idx]
        return log_home, log_away

    def pointwise_log_likelihood(self, params, data):
        log_home, log_away = self.linear_predictors(params, data.home_idx, data.away_idx)
        return poisson_logpmf(data.home_count, log_home) + poisson_logpmf(
            data.away_count, log_away
        )

    def simulate(self, params, home_idx, away_idx, rng):
        log_home, log_away = self.linear_predictors(params, home_idx, away_idx)
        return rng.poisson(_capped_rate(log_home)), rng.poisson(_capped_rate(log_away))

    def build_pymc(self, data: MatchData) -> pm.Model:
        sigma = self.config.prior_sd
        coords = {"entity": list(data.labels), "match": np.arange(data.n_matches)}

        with pm.Model(coords=coords) as model:
            home_idx = pm.Data("home_idx", data.home_idx, dims="match")
            away_idx = pm.Data("away_idx", data.away_idx, dims="match")

            mu = pm.Normal("mu", mu=self.config.prior_mean, sigma=sigma)
            eta = pm.Normal("eta", mu=self.config.prior_mean, sigma=sigma)
            attack = self._pymc_sum_to_zero("attack", sigma)
            defense = self._pymc_sum_to_zero("defense", sigma)

            log_home = mu + eta + attack[home_idx] + defense[away_idx]
            log_away = mu + attack[away_idx] + defense[home_idx]

            pm.Poisson("home_count", mu=pt.exp(log_home), observed=data.home_count, dims="match")
            pm.Poisson("away_count", mu=pt.exp(log_away), observed=data.away_count, dims="match")

        return model


class NegativeBinomialModel(ScoringModel):
    """
    Variant B: overdispersed counts with a single strength per entity.

    Parameters: mu, eta, strength[K], r1, r2. Reduces to variant-B-Poisson
    as r → ∞.
    """

    name = "negbin"

    def _build_layout(self) -> ParameterLayout:
        upper = self.config.dispersion_upper
        return ParameterLayout([
            ScalarParameter("mu"),
            ScalarParameter("eta"),
            SumToZeroBlock("strength", self.n_entities),
            ScalarParameter("r1", prior="uniform", lower=0.0, upper=upper),
            ScalarParameter("r2", prior="uniform", lower=0.0, upper=upper),
        ])

    def linear_predictors(self, params, home_idx, away_idx):
        base = _col(params["mu"])
        strength = np.asarray(params["strength"], dtype=float)
        diff = strength[..., home_idx] - strength[..., away_idx]
        return base + _col(params["eta"]) + diff, base - diff

    def pointwise_log_likelihood(self, params, data):
        log_home, log_away = self.linear_predictors(params, data.home_idx, data.away_idx)
        return negbin_logpmf(data.home_count, log_home, _col(params["r1"])) + negbin_logpmf(
            data.away_count, log_away, _col(params["r2"])
        )

    def simulate(self, params, home_idx, away_idx, rng):
        log_home, log_away = self.linear_predictors(params, home_idx, away_idx)
        r1, r2 = _col(params["r1"]), _col(params["r2"])
        home_rate, away_rate = _capped_rate(log_home), _capped_rate(log_away)
        home = rng.negative_binomial(r1, r1 / (r1 + home_rate))
        away = rng.negative_binomial(r2, r2 / (r2 + away_rate))
        return home, away

    def initial_point(self, data, rng, jitter=1.0):
        free = super().initial_point(data, rng, jitter)
        upper = self.config.dispersion_upper
        for name in ("r1", "r2"):
            free[self.layout.slices[name]] = rng.uniform(0.1 * upper, 0.5 * upper)
        return free

    def build_pymc(self, data: MatchData) -> pm.Model:
        sigma = self.config.prior_sd
        upper = self.config.dispersion_upper
        coords = {"entity": list(data.labels), "match": np.arange(data.n_matches)}

        with pm.Model(coords=coords) as model:
            home_idx = pm.Data("home_idx", data.home_idx, dims="match")
            away_idx = pm.Data("away_idx", data.away_idx, dims="match")

            mu = pm.Normal("mu", mu=self.config.prior_mean, sigma=sigma)
            eta = pm.Normal("eta", mu=self.config.prior_mean, sigma=sigma)
            strength = self._pymc_sum_to_zero("strength", sigma)
            r1 = pm.Uniform("r1", lower=0.0, upper=upper)
            r2 = pm.Uniform("r2", lower=0.0, upper=upper)

            diff = strength[home_idx] - strength[away_idx]
            home_rate = pt.exp(mu + eta + diff)
            away_rate = pt.exp(mu - diff)

            # PyMC's (mu, alpha) parameterisation: variance = mu + mu**2 / alpha
            pm.NegativeBinomial(
                "home_count", mu=home_rate, alpha=r1, observed=data.home_count, dims="match"
            )
            pm.NegativeBinomial(
                "away_count", mu=away_rate, alpha=r2, observed=data.away_count, dims="match"
            )

        return model


MODEL_VARIANTS: dict[str, type[ScoringModel]] = {
    "A": PoissonModel,
    "poisson": PoissonModel,
    "B": NegativeBinomialModel,
    "negbin": NegativeBinomialModel,
}


def get_model(
    variant: str,
    n_entities: int,
    config: ModelConfig | None = None,
    sampled: Iterable[str] | None = None,
) -> ScoringModel:
    """
    Construct a model variant by name ("A"/"poisson" or "B"/"negbin").

    Args:
        variant: Variant name
        n_entities: Number of entities K
        config: Prior configuration
        sampled: Optional subset of parameter or coordinate names to update.
            Naming a derived coordinate such as ``attack[K-1]`` raises
            IdentifiabilityError.
    """
    try:
        cls = MODEL_VARIANTS[variant]
    except KeyError:
        raise ConfigurationError(
            f"Unknown model variant: {variant!r} (choose from {sorted(MODEL_VARIANTS)})"
        ) from None
    return cls(n_entities, config=config, sampled=sampled)
