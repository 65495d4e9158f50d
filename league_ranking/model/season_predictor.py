"""
Posterior-predictive replay of a full round robin.

Supports:
- Simulating every ordered pairing for each posterior draw
- Final points and ranks per draw, kept in full
- Rank probabilities and credible intervals
- Single-match outcome probabilities
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import arviz as az
import numpy as np
import pandas as pd

from league_ranking.model.core import MAX_LOG_RATE, ScoringModel
from league_ranking.model.inference import PosteriorSampleSet
from league_ranking.model.league_table import (
    DEFAULT_POINTS,
    PointsConfig,
    competition_rank,
    table_points,
)

logger = logging.getLogger(__name__)


def draw_seed(seed: int, draw_index: int) -> np.random.SeedSequence:
    """Random stream for one draw; depends only on the replay seed and the draw index."""
    return np.random.SeedSequence([int(seed), int(draw_index)])


@dataclass
class ReplayTable:
    """
    Simulated counts for every ordered pairing in one draw.

    ``home[i, j]`` and ``away[i, j]`` are the counts when i hosts j. The
    diagonal is produced by the vectorised simulation but is not a match.
    """

    home: np.ndarray  # (K, K)
    away: np.ndarray  # (K, K)
    n_capped: int = 0  # off-diagonal pairings simulated at a capped rate

    @property
    def n_entities(self) -> int:
        return self.home.shape[0]

    @property
    def off_diagonal(self) -> np.ndarray:
        return ~np.eye(self.n_entities, dtype=bool)

    def differentials(self) -> np.ndarray:
        """Home minus away count for each real pairing (diagonal set to 0)."""
        return np.where(self.off_diagonal, self.home - self.away, 0)

    def points(self, config: PointsConfig = DEFAULT_POINTS) -> np.ndarray:
        return table_points(self.home, self.away, config)


def simulate_round_robin(
    model: ScoringModel,
    params: dict[str, np.ndarray],
    rng: np.random.Generator,
) -> ReplayTable:
    """Simulate all K×K pairings for one parameter vector."""
    k = model.n_entities
    home_idx = np.repeat(np.arange(k), k)
    away_idx = np.tile(np.arange(k), k)
    home, away = model.simulate(params, home_idx, away_idx, rng)
    real = home_idx != away_idx
    n_capped = int(model.count_capped(params, home_idx[real], away_idx[real]))
    return ReplayTable(
        home=np.asarray(home).reshape(k, k),
        away=np.asarray(away).reshape(k, k),
        n_capped=n_capped,
    )


@dataclass
class ReplayResult:
    """Per-draw points and ranks from a replayed season."""

    labels: tuple[str, ...]
    points: np.ndarray  # (n_draws, K)
    ranks: np.ndarray  # (n_draws, K)
    capped: np.ndarray | None = None  # (n_draws,) pairings simulated at a capped rate

    @property
    def n_draws(self) -> int:
        return self.points.shape[0]

    @property
    def n_capped_draws(self) -> int:
        """Draws in which at least one pairing hit the log-rate cap."""
        if self.capped is None:
            return 0
        return int((self.capped > 0).sum())

    def summary(self, hdi_prob: float = 0.95) -> pd.DataFrame:
        """
        Mean and highest-density interval of points and rank per entity,
        sorted by mean rank.
        """
        rows = []
        for i, label in enumerate(self.labels):
            points_hdi = az.hdi(self.points[:, i].astype(float), hdi_prob=hdi_prob)
            rank_hdi = az.hdi(self.ranks[:, i].astype(float), hdi_prob=hdi_prob)
            rows.append({
                "team": label,
                "mean_points": self.points[:, i].mean(),
                "points_hdi_lower": points_hdi[0],
                "points_hdi_upper": points_hdi[1],
                "mean_rank": self.ranks[:, i].mean(),
                "rank_hdi_lower": rank_hdi[0],
                "rank_hdi_upper": rank_hdi[1],
            })
        return pd.DataFrame(rows).sort_values("mean_rank").reset_index(drop=True)

    def rank_probabilities(self) -> pd.DataFrame:
        """P(entity finishes with rank r) for r = 1..K."""
        k = len(self.labels)
        counts = np.stack([(self.ranks == r).mean(axis=0) for r in range(1, k + 1)], axis=1)
        probs = pd.DataFrame(
            counts,
            index=list(self.labels),
            columns=[f"P(rank {r})" for r in range(1, k + 1)],
        )
        probs["most_likely_rank"] = counts.argmax(axis=1) + 1
        return probs

    def format_summary(self, hdi_prob: float = 0.95) -> str:
        summary = self.summary(hdi_prob)
        lines = ["=" * 70, "REPLAYED STANDINGS", "=" * 70]
        for _, row in summary.iterrows():
            lines.append(
                f"{row['mean_rank']:5.2f}  {row['team']:<20} "
                f"Pts: {row['mean_points']:6.1f} "
                f"[{row['points_hdi_lower']:.0f}-{row['points_hdi_upper']:.0f}]"
            )
        lines.append("=" * 70)
        return "\n".join(lines)


@dataclass
class MatchPrediction:
    """Posterior-predictive outcome of one pairing."""

    home: str
    away: str
    home_mean: float
    away_mean: float
    home_win_prob: float
    draw_prob: float
    away_win_prob: float

    def summary(self) -> str:
        return (
            f"{self.home} vs {self.away}\n"
            f"  Expected: {self.home_mean:.2f} - {self.away_mean:.2f}\n"
            f"  Home win: {self.home_win_prob:.1%}, "
            f"Draw: {self.draw_prob:.1%}, "
            f"Away win: {self.away_win_prob:.1%}"
        )


class SeasonReplayer:
    """
    Replay a full round robin for every retained posterior draw.

    Usage:
        >>> replayer = SeasonReplayer(model, samples, seed=1)
        >>> result = replayer.replay()
        >>> print(result.summary())

    Each draw's simulation uses its own stream from ``draw_seed(seed, i)``,
    so a given draw replays identically regardless of which other draws are
    computed.
    """

    def __init__(
        self,
        model: ScoringModel,
        samples: PosteriorSampleSet,
        seed: int = 0,
        points: PointsConfig | None = None,
    ):
        if samples.n_entities != model.n_entities:
            raise ValueError(
                f"Samples have {samples.n_entities} entities, model has {model.n_entities}"
            )
        self.model = model
        self.samples = samples
        self.seed = seed
        self.points = points or DEFAULT_POINTS
        self._params = samples.stacked_params()

    def _params_at(self, index: int) -> dict[str, np.ndarray]:
        return {name: values[index] for name, values in self._params.items()}

    def replay_draw(self, index: int) -> ReplayTable:
        rng = np.random.default_rng(draw_seed(self.seed, index))
        return simulate_round_robin(self.model, self._params_at(index), rng)

    def replay(self) -> ReplayResult:
        n = self.samples.n_draws
        k = self.model.n_entities
        points = np.empty((n, k), dtype=int)
        capped = np.zeros(n, dtype=int)
        for i in range(n):
            table = self.replay_draw(i)
            points[i] = table.points(self.points)
            capped[i] = table.n_capped
        ranks = competition_rank(points)
        logger.info("Replayed %d seasons of %d entities", n, k)

        result = ReplayResult(labels=self.samples.labels, points=points, ranks=ranks, capped=capped)
        if result.n_capped_draws:
            logger.warning(
                "%d of %d draws simulated some pairings at the log-rate cap (%.0f); "
                "entities with few or no matches are poorly identified",
                result.n_capped_draws, n, MAX_LOG_RATE,
            )
        return result

    def predict_match(self, home: str, away: str) -> MatchPrediction:
        """Outcome probabilities for one pairing, one simulated match per draw."""
        labels = list(self.samples.labels)
        if home == away:
            raise ValueError("An entity cannot play itself")
        try:
            h, a = labels.index(home), labels.index(away)
        except ValueError:
            raise ValueError(f"Unknown entity in {home!r} vs {away!r}") from None

        rng = np.random.default_rng(np.random.SeedSequence([int(self.seed), h, a]))
        home_counts, away_counts = self.model.simulate(
            self._params, np.array([h]), np.array([a]), rng
        )
        home_counts, away_counts = home_counts[:, 0], away_counts[:, 0]
        return MatchPrediction(
            home=home,
            away=away,
            home_mean=float(home_counts.mean()),
            away_mean=float(away_counts.mean()),
            home_win_prob=float((home_counts > away_counts).mean()),
            draw_prob=float((home_counts == away_counts).mean()),
            away_win_prob=float((home_counts < away_counts).mean()),
        )
