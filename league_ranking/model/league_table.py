"""
League table computation.

Supports:
- Mapping a score differential to match points (3 / 1 / 0 by default)
- Summing points over a full K×K replay table, excluding self-pairings
- Competition ranking from point totals
- Observed standings from encoded match data
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from league_ranking.model.data import MatchData


@dataclass(frozen=True)
class PointsConfig:
    """Points awarded per match result."""

    win_points: int = 3
    draw_points: int = 1
    loss_points: int = 0


DEFAULT_POINTS = PointsConfig()


def match_points(
    differential: np.ndarray | int,
    config: PointsConfig = DEFAULT_POINTS,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Points to the first- and second-role entity for each differential.

    A positive differential (first scored more) gives (win, loss), zero gives
    (draw, draw), negative gives (loss, win).

    >>> match_points(np.array([2, 0, -1]))
    (array([3, 1, 0]), array([0, 1, 3]))
    """
    diff = np.sign(np.asarray(differential))
    first = np.select(
        [diff > 0, diff == 0], [config.win_points, config.draw_points], config.loss_points
    )
    second = np.select(
        [diff < 0, diff == 0], [config.win_points, config.draw_points], config.loss_points
    )
    return first, second


def table_points(
    home_counts: np.ndarray,
    away_counts: np.ndarray,
    config: PointsConfig = DEFAULT_POINTS,
) -> np.ndarray:
    """
    Total points per entity from a full round-robin table.

    ``home_counts[..., i, j]`` / ``away_counts[..., i, j]`` are the counts when
    entity i hosts entity j. Diagonal entries (i hosting i) never describe a
    real match and are excluded. Leading axes (e.g. draws) are preserved.

    Returns:
        Array of shape (..., K)
    """
    home_counts = np.asarray(home_counts)
    away_counts = np.asarray(away_counts)
    k = home_counts.shape[-1]
    if home_counts.shape[-2:] != (k, k) or away_counts.shape != home_counts.shape:
        raise ValueError("Replay tables must be square and of equal shape")

    home_pts, away_pts = match_points(home_counts - away_counts, config)
    off_diagonal = ~np.eye(k, dtype=bool)
    home_pts = np.where(off_diagonal, home_pts, 0)
    away_pts = np.where(off_diagonal, away_pts, 0)

    # Entity i earns home_pts[i, :] as host and away_pts[:, i] as visitor
    return home_pts.sum(axis=-1) + away_pts.sum(axis=-2)


def competition_rank(points: np.ndarray) -> np.ndarray:
    """
    Rank = 1 + number of entities with strictly more points.

    Tied entities share the best rank of their group and the following rank
    values are skipped (1, 2, 2, 4). Works over leading axes.
    """
    points = np.asarray(points)
    better = points[..., None, :] > points[..., :, None]
    return 1 + better.sum(axis=-1)


class LeagueTable:
    """
    Compute league standings from match results.

    Usage:
        >>> table = LeagueTable()
        >>> standings = table.compute_standings(data)
        >>> print(standings[['team', 'played', 'won', 'points']])
    """

    def __init__(self, config: PointsConfig | None = None):
        self.config = config or DEFAULT_POINTS

    def compute_standings(self, data: MatchData) -> pd.DataFrame:
        """
        Standings from observed matches.

        Returns:
            DataFrame with columns position, team, played, won, drawn, lost,
            goals_for, goals_against, goal_diff, points; sorted by points then
            goal difference then goals scored. ``position`` uses
            competition_rank on points alone, so ties share a position.
        """
        k = data.n_entities
        home_pts, away_pts = match_points(data.home_count - data.away_count, self.config)
        diff = np.sign(data.home_count - data.away_count)

        def per_entity(home_values, away_values):
            return (
                np.bincount(data.home_idx, weights=home_values, minlength=k)
                + np.bincount(data.away_idx, weights=away_values, minlength=k)
            ).astype(int)

        ones = np.ones(data.n_matches)
        df = pd.DataFrame({
            "team": list(data.labels),
            "played": per_entity(ones, ones),
            "won": per_entity(diff > 0, diff < 0),
            "drawn": per_entity(diff == 0, diff == 0),
            "lost": per_entity(diff < 0, diff > 0),
            "goals_for": per_entity(data.home_count, data.away_count),
            "goals_against": per_entity(data.away_count, data.home_count),
            "points": per_entity(home_pts, away_pts),
        })
        df["goal_diff"] = df["goals_for"] - df["goals_against"]
        df["position"] = competition_rank(df["points"].to_numpy())

        df = df.sort_values(
            by=["points", "goal_diff", "goals_for"],
            ascending=[False, False, False],
        ).reset_index(drop=True)

        columns = [
            "position", "team", "played", "won", "drawn", "lost",
            "goals_for", "goals_against", "goal_diff", "points",
        ]
        return df[columns]


def format_table(standings: pd.DataFrame) -> str:
    """Format standings as text."""
    lines = [f"{'Pos':>3}  {'Team':<20} {'P':>3} {'W':>3} {'D':>3} {'L':>3} {'GD':>4} {'Pts':>4}"]
    for _, row in standings.iterrows():
        lines.append(
            f"{row['position']:>3}  {row['team']:<20} {row['played']:>3} {row['won']:>3} "
            f"{row['drawn']:>3} {row['lost']:>3} {row['goal_diff']:>+4} {row['points']:>4}"
        )
    return "\n".join(lines)
