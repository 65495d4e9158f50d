"""
Model comparison and hypothesis testing.

- Deviance information criterion (DIC = mean deviance + effective number
  of parameters), with both components exposed
- Bayes factor for the sign of a scalar parameter (e.g. home advantage)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Mapping

import numpy as np
import pandas as pd
from scipy import stats

from league_ranking.model.core import ModelConfig, ScoringModel
from league_ranking.model.data import MatchData
from league_ranking.model.inference import PosteriorSampleSet

logger = logging.getLogger(__name__)

# Draws evaluated per vectorised deviance batch
DEVIANCE_BATCH = 500


@dataclass(frozen=True)
class InformationCriterion:
    """DIC and its two components; lower DIC is preferred."""

    mean_deviance: float
    p_d: float
    method: str = "variance"
    variant: str = ""

    @property
    def dic(self) -> float:
        return self.mean_deviance + self.p_d

    @classmethod
    def from_deviance(
        cls,
        deviance: np.ndarray,
        deviance_at_mean: float | None = None,
        method: Literal["variance", "plugin"] = "variance",
        variant: str = "",
    ) -> InformationCriterion:
        """
        Build from per-draw deviances.

        ``method="variance"`` uses pD = var(D) / 2; ``method="plugin"`` uses
        pD = mean(D) - D(posterior mean) and needs ``deviance_at_mean``.
        """
        deviance = np.asarray(deviance, dtype=float)
        mean_deviance = float(deviance.mean())
        if method == "variance":
            p_d = float(deviance.var(ddof=1) / 2) if deviance.size > 1 else 0.0
        elif method == "plugin":
            if deviance_at_mean is None:
                raise ValueError("plugin pD needs the deviance at the posterior mean")
            p_d = mean_deviance - float(deviance_at_mean)
        else:
            raise ValueError(f"Unknown pD method: {method!r}")
        return cls(mean_deviance=mean_deviance, p_d=p_d, method=method, variant=variant)


def deviance_draws(
    model: ScoringModel,
    samples: PosteriorSampleSet,
    data: MatchData,
) -> np.ndarray:
    """-2 × log-likelihood of the observed matches for every retained draw."""
    params = samples.stacked_params()
    n = samples.n_draws
    out = np.empty(n)
    for start in range(0, n, DEVIANCE_BATCH):
        stop = min(start + DEVIANCE_BATCH, n)
        batch = {name: values[start:stop] for name, values in params.items()}
        out[start:stop] = model.deviance(batch, data)
    return out


def dic(
    model: ScoringModel,
    samples: PosteriorSampleSet,
    data: MatchData,
    method: Literal["variance", "plugin"] = "variance",
) -> InformationCriterion:
    """
    Deviance information criterion of a fitted variant.

    Args:
        model: The variant the samples came from
        samples: Posterior draws
        data: Observed matches
        method: How to estimate the effective number of parameters
    """
    deviance = deviance_draws(model, samples, data)
    at_mean = None
    if method == "plugin":
        at_mean = float(model.deviance(samples.posterior_mean(), data))
    criterion = InformationCriterion.from_deviance(
        deviance, deviance_at_mean=at_mean, method=method, variant=model.name
    )
    logger.info(
        "%s: mean deviance %.2f, pD %.2f, DIC %.2f",
        model.name, criterion.mean_deviance, criterion.p_d, criterion.dic,
    )
    return criterion


def compare_dic(criteria: Mapping[str, InformationCriterion]) -> pd.DataFrame:
    """
    Rank variants by DIC.

    ``rank_by_deviance`` is the ranking on fit alone, so a complexity
    penalty that reverses the order is visible.
    """
    df = pd.DataFrame({
        name: {
            "mean_deviance": c.mean_deviance,
            "p_d": c.p_d,
            "dic": c.dic,
        }
        for name, c in criteria.items()
    }).T
    df.index.name = "model"
    df["rank_by_deviance"] = df["mean_deviance"].rank(method="min").astype(int)
    df["rank"] = df["dic"].rank(method="min").astype(int)
    df = df.sort_values("dic")
    df["delta_dic"] = df["dic"] - df["dic"].min()
    return df


@dataclass(frozen=True)
class NormalMarginal:
    """A Normal distribution given by mean and variance."""

    mean: float
    variance: float

    def __post_init__(self):
        if self.variance <= 0:
            raise ValueError("variance must be positive")

    @property
    def sd(self) -> float:
        return float(np.sqrt(self.variance))

    def prob_nonnegative(self) -> float:
        return float(stats.norm.sf(0.0, loc=self.mean, scale=self.sd))


@dataclass(frozen=True)
class BayesFactorResult:
    """Bayes factor for H1: θ ≥ 0 against H0: θ < 0."""

    prior_prob: float
    posterior_prob: float
    method: str

    @property
    def prior_odds(self) -> float:
        return _odds(self.prior_prob)

    @property
    def posterior_odds(self) -> float:
        return _odds(self.posterior_prob)

    @property
    def bayes_factor(self) -> float:
        return self.posterior_odds / self.prior_odds

    @property
    def log10_bayes_factor(self) -> float:
        return float(np.log10(self.bayes_factor))

    def interpretation(self) -> str:
        """Kass & Raftery (1995) evidence categories for H1."""
        bf = self.bayes_factor
        if not np.isfinite(bf):
            return "decisive"
        if bf < 1:
            return "supports H0"
        if bf < 3:
            return "not worth more than a bare mention"
        if bf < 20:
            return "positive"
        if bf < 150:
            return "strong"
        return "very strong"


def _odds(p: float) -> float:
    if p >= 1.0:
        return np.inf
    return p / (1.0 - p)


def bayes_factor_sign(
    prior: NormalMarginal,
    posterior: NormalMarginal | np.ndarray,
    normal_posterior: bool = False,
) -> BayesFactorResult:
    """
    Bayes factor for θ ≥ 0 versus θ < 0.

    The closed form (Normal tail probabilities for both prior and
    posterior) is used only when ``posterior`` is a NormalMarginal. For
    posterior draws the probability is the empirical proportion of
    non-negative draws, unless ``normal_posterior=True`` explicitly asks for
    a moment-matched Normal.
    """
    prior_prob = prior.prob_nonnegative()

    if isinstance(posterior, NormalMarginal):
        return BayesFactorResult(prior_prob, posterior.prob_nonnegative(), "normal")

    draws = np.asarray(posterior, dtype=float).ravel()
    if draws.size == 0:
        raise ValueError("No posterior draws")

    if normal_posterior:
        fitted = NormalMarginal(float(draws.mean()), float(draws.var(ddof=1)))
        return BayesFactorResult(prior_prob, fitted.prob_nonnegative(), "normal-approximation")

    posterior_prob = float((draws >= 0).mean())
    if posterior_prob in (0.0, 1.0):
        logger.warning(
            "All %d posterior draws fall on one side of zero; Bayes factor is %s",
            draws.size, "infinite" if posterior_prob == 1.0 else "zero",
        )
    return BayesFactorResult(prior_prob, posterior_prob, "empirical")


def bayes_factor_home_advantage(
    samples: PosteriorSampleSet,
    config: ModelConfig | None = None,
    parameter: str = "eta",
    normal_posterior: bool = False,
) -> BayesFactorResult:
    """Bayes factor for a non-negative home advantage from a fitted sample set."""
    config = config or ModelConfig()
    prior = NormalMarginal(config.prior_mean, config.prior_variance)
    return bayes_factor_sign(prior, samples.flat(parameter), normal_posterior=normal_posterior)
