"""Per-entity and model-comparison summaries for reporting."""

from __future__ import annotations

import arviz as az
import numpy as np
import pandas as pd

from league_ranking.model.comparison import BayesFactorResult
from league_ranking.model.inference import PosteriorSampleSet
from league_ranking.model.season_predictor import ReplayResult

ENTITY_EFFECTS = ("attack", "defense", "strength")


def entity_summary(
    samples: PosteriorSampleSet,
    replay: ReplayResult | None = None,
    hdi_prob: float = 0.95,
) -> pd.DataFrame:
    """
    Posterior mean and HDI of each entity effect, plus mean rank and mean
    points when a replay is given. Sorted by mean rank if available.
    """
    df = pd.DataFrame({"team": list(samples.labels)})

    for name in ENTITY_EFFECTS:
        if name not in samples.draws:
            continue
        flat = samples.flat(name)
        intervals = np.array([az.hdi(flat[:, i], hdi_prob=hdi_prob) for i in range(flat.shape[1])])
        df[f"{name}_mean"] = flat.mean(axis=0)
        df[f"{name}_std"] = flat.std(axis=0)
        df[f"{name}_hdi_lower"] = intervals[:, 0]
        df[f"{name}_hdi_upper"] = intervals[:, 1]

    if replay is not None:
        df["mean_rank"] = replay.ranks.mean(axis=0)
        df["mean_points"] = replay.points.mean(axis=0)
        df = df.sort_values("mean_rank")
    elif "strength_mean" in df:
        df = df.sort_values("strength_mean", ascending=False)
    elif "attack_mean" in df:
        df = df.sort_values("attack_mean", ascending=False)

    return df.reset_index(drop=True)


def format_comparison(comparison: pd.DataFrame, bayes_factor: BayesFactorResult | None = None) -> str:
    """Text block for a DIC comparison table and an optional Bayes factor."""
    lines = ["=" * 70, "MODEL COMPARISON (DIC)", "=" * 70]
    lines.append(f"{'model':<12} {'mean D':>10} {'pD':>8} {'DIC':>10} {'ΔDIC':>8}")
    for name, row in comparison.iterrows():
        lines.append(
            f"{name:<12} {row['mean_deviance']:>10.2f} {row['p_d']:>8.2f} "
            f"{row['dic']:>10.2f} {row['delta_dic']:>8.2f}"
        )

    if bayes_factor is not None:
        lines.append("")
        lines.append("HOME ADVANTAGE (H1: η ≥ 0 vs H0: η < 0)")
        lines.append("-" * 70)
        lines.append(f"  Prior odds:     {bayes_factor.prior_odds:.3f}")
        lines.append(f"  Posterior odds: {bayes_factor.posterior_odds:.3f}")
        lines.append(
            f"  Bayes factor:   {bayes_factor.bayes_factor:.3f} ({bayes_factor.interpretation()})"
        )

    lines.append("=" * 70)
    return "\n".join(lines)
