"""
Convergence diagnostics for posterior sample sets.

Includes:
- Geweke z-scores (early vs late segment of the combined chain)
- Effective sample size and split R-hat (ArviZ)
- Autocorrelation by lag
- A per-coordinate diagnostics table

Chains shorter than MIN_DRAWS give NaN and an ``insufficient_data`` flag
rather than an exception, unless ``strict=True``.
"""

from __future__ import annotations

import logging

import arviz as az
import numpy as np
import pandas as pd

from league_ranking.model.errors import InsufficientDataError
from league_ranking.model.inference import PosteriorSampleSet

logger = logging.getLogger(__name__)

MIN_DRAWS = 20
GEWEKE_THRESHOLD = 2.0
LOW_ESS = 100


def _as_chains(x: np.ndarray) -> np.ndarray:
    """Coerce draws to (chain, draw)."""
    x = np.asarray(x, dtype=float)
    if x.ndim == 1:
        return x[None, :]
    if x.ndim != 2:
        raise ValueError(f"Expected (draw,) or (chain, draw) array, got shape {x.shape}")
    return x


def _enough(n: int, what: str, strict: bool) -> bool:
    if n >= MIN_DRAWS:
        return True
    message = f"{what}: insufficient data ({n} draws, need at least {MIN_DRAWS})"
    if strict:
        raise InsufficientDataError(message)
    logger.warning(message)
    return False


def effective_sample_size(x: np.ndarray, method: str = "mean", strict: bool = False) -> float:
    """
    Effective sample size allowing for autocorrelation within each chain.

    Args:
        x: Draws, shape (draw,) or (chain, draw)
        method: ArviZ ESS method ("mean" is the classic estimate, "bulk"
            the rank-normalised one)
    """
    chains = _as_chains(x)
    if not _enough(chains.shape[1], "ESS", strict):
        return np.nan
    if np.ptp(chains) == 0:
        return float(chains.size)
    return float(az.ess(chains, method=method))


def r_hat(x: np.ndarray, strict: bool = False) -> float:
    """Split R-hat; close to 1 when chains agree."""
    chains = _as_chains(x)
    if not _enough(chains.shape[1], "R-hat", strict):
        return np.nan
    if np.ptp(chains) == 0:
        return np.nan
    return float(az.rhat(chains))


def autocorrelation(
    x: np.ndarray,
    max_lag: int | None = None,
    strict: bool = False,
) -> np.ndarray:
    """
    Autocorrelation at lags 0..max_lag, averaged over chains.

    Returns an all-NaN array when the chains are too short.
    """
    chains = _as_chains(x)
    n = chains.shape[1]
    if max_lag is None:
        max_lag = min(100, n - 1)
    max_lag = int(max_lag)
    if max_lag < 0:
        raise ValueError("max_lag must be non-negative")

    if not _enough(n, "Autocorrelation", strict) or max_lag >= n:
        return np.full(max_lag + 1, np.nan)
    if np.ptp(chains) == 0:
        return np.full(max_lag + 1, np.nan)

    acf = np.mean([az.autocorr(chain) for chain in chains], axis=0)
    return acf[: max_lag + 1]


def geweke(
    x: np.ndarray,
    first: float = 0.1,
    last: float = 0.5,
    strict: bool = False,
) -> float:
    """
    Geweke z-score comparing the means of the first and last segments.

    Chains are concatenated into one combined sequence. Each segment mean's
    variance is its sample variance over its effective sample size, so
    autocorrelation inside the segments is accounted for.

    |z| > 2 suggests the chain has not settled.
    """
    if not (0 < first < 1 and 0 < last < 1 and first + last <= 1):
        raise ValueError("first and last must be fractions with first + last <= 1")

    combined = _as_chains(x).ravel()
    n = combined.size
    if not _enough(n, "Geweke", strict):
        return np.nan

    early = combined[: int(first * n)]
    late = combined[n - int(last * n):]
    if min(early.size, late.size) < 4:
        return np.nan

    def mean_variance(segment):
        var = np.var(segment, ddof=1)
        if var == 0:
            return 0.0
        return var / float(az.ess(segment[None, :], method="mean"))

    denominator = np.sqrt(mean_variance(early) + mean_variance(late))
    if denominator == 0:
        return 0.0 if early.mean() == late.mean() else np.inf
    return float((early.mean() - late.mean()) / denominator)


def diagnostics_table(
    samples: PosteriorSampleSet,
    geweke_first: float = 0.1,
    geweke_last: float = 0.5,
) -> pd.DataFrame:
    """
    One row per scalar coordinate (derived sum-to-zero coordinates included).

    Columns: mean, sd, geweke_z, geweke_flag, ess, r_hat, insufficient_data.
    """
    insufficient = samples.n_draws_per_chain < MIN_DRAWS
    if insufficient:
        logger.warning(
            "Only %d draws per chain; diagnostics reported as insufficient data",
            samples.n_draws_per_chain,
        )

    rows = []
    for name in samples.coordinate_names:
        values = samples.get(name)
        if insufficient:
            z = ess = rhat = np.nan
        else:
            z = geweke(values, geweke_first, geweke_last)
            ess = effective_sample_size(values)
            rhat = r_hat(values)
        rows.append({
            "parameter": name,
            "mean": values.mean(),
            "sd": values.std(ddof=1) if values.size > 1 else np.nan,
            "geweke_z": z,
            "geweke_flag": bool(np.isfinite(z) and abs(z) > GEWEKE_THRESHOLD),
            "ess": ess,
            "r_hat": rhat,
            "insufficient_data": insufficient,
        })

    table = pd.DataFrame(rows).set_index("parameter")
    flagged = table.index[table["geweke_flag"]].tolist()
    if flagged:
        logger.warning("Geweke |z| > %.0f for: %s", GEWEKE_THRESHOLD, ", ".join(flagged))
    return table


def mixing_report(table: pd.DataFrame, low_ess: float = LOW_ESS) -> dict[str, list[str]]:
    """Split coordinates into well- and poorly-mixing by ESS."""
    ess = table["ess"]
    return {
        "well_mixing": ess.index[ess >= low_ess].tolist(),
        "poorly_mixing": ess.index[ess < low_ess].tolist(),
        "unknown": ess.index[ess.isna()].tolist(),
    }
