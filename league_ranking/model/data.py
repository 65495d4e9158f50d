"""
Match data encoding for league ranking models.

Converts paired match outcomes (home entity, away entity, home count,
away count) into the integer-indexed arrays consumed by the models and
the sampler.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from league_ranking.model.errors import ConfigurationError


@dataclass(frozen=True)
class MatchData:
    """
    Observed matches in index form.

    Attributes:
        home_idx: Entity index of the home side for each match
        away_idx: Entity index of the away side for each match
        home_count: Home count (goals, points, ...) for each match
        away_count: Away count for each match
        labels: Human-readable entity names, position = index
    """

    home_idx: np.ndarray
    away_idx: np.ndarray
    home_count: np.ndarray
    away_count: np.ndarray
    labels: tuple[str, ...]

    def __post_init__(self):
        arrays = {}
        for name in ("home_idx", "away_idx", "home_count", "away_count"):
            values = np.asarray(getattr(self, name))
            if values.ndim != 1:
                raise ConfigurationError(f"{name} must be one-dimensional")
            if values.size and not np.all(np.equal(np.mod(values, 1), 0)):
                raise ConfigurationError(f"{name} must contain integers")
            values = values.astype(np.int64)
            values.setflags(write=False)
            arrays[name] = values

        n = len(arrays["home_idx"])
        if any(len(v) != n for v in arrays.values()):
            raise ConfigurationError("Match arrays must all have the same length")
        if n == 0:
            raise ConfigurationError("At least one match record is required (N > 0)")

        k = len(self.labels)
        if k < 2:
            raise ConfigurationError(f"At least two entities are required, got K={k}")
        if len(set(self.labels)) != k:
            raise ConfigurationError("Entity labels must be unique")

        for name in ("home_idx", "away_idx"):
            idx = arrays[name]
            if idx.min() < 0 or idx.max() >= k:
                raise ConfigurationError(f"{name} contains indices outside 0..{k - 1}")

        self_pairs = np.flatnonzero(arrays["home_idx"] == arrays["away_idx"])
        if self_pairs.size:
            raise ConfigurationError(
                f"Match records pair an entity with itself at rows {self_pairs.tolist()}"
            )

        for name in ("home_count", "away_count"):
            if arrays[name].min() < 0:
                raise ConfigurationError(f"{name} must be non-negative")

        for name, values in arrays.items():
            object.__setattr__(self, name, values)
        object.__setattr__(self, "labels", tuple(str(label) for label in self.labels))

    @classmethod
    def from_indices(
        cls,
        home_idx: Sequence[int],
        away_idx: Sequence[int],
        home_count: Sequence[int],
        away_count: Sequence[int],
        labels: Sequence[str] | None = None,
        n_entities: int | None = None,
    ) -> MatchData:
        """Build from index arrays; labels default to "0".."K-1"."""
        if labels is None:
            if n_entities is None:
                n_entities = int(max(np.max(home_idx), np.max(away_idx))) + 1
            if n_entities <= 0:
                raise ConfigurationError(f"K must be positive, got {n_entities}")
            labels = [str(i) for i in range(n_entities)]
        return cls(
            home_idx=np.asarray(home_idx),
            away_idx=np.asarray(away_idx),
            home_count=np.asarray(home_count),
            away_count=np.asarray(away_count),
            labels=tuple(labels),
        )

    @property
    def n_entities(self) -> int:
        return len(self.labels)

    @property
    def n_matches(self) -> int:
        return len(self.home_idx)

    @property
    def is_full_round_robin(self) -> bool:
        """True when every ordered pair of distinct entities appears exactly once."""
        k = self.n_entities
        if self.n_matches != k * (k - 1):
            return False
        pairs = set(zip(self.home_idx.tolist(), self.away_idx.tolist()))
        return len(pairs) == k * (k - 1)

    @property
    def matches_played(self) -> np.ndarray:
        """Matches per entity over both roles."""
        k = self.n_entities
        return np.bincount(self.home_idx, minlength=k) + np.bincount(self.away_idx, minlength=k)

    @property
    def unplayed_entities(self) -> tuple[str, ...]:
        """Labels of entities that appear in no match; only the prior informs their effects."""
        return tuple(label for label, n in zip(self.labels, self.matches_played) if n == 0)

    def index_of(self, label: str) -> int:
        try:
            return self.labels.index(label)
        except ValueError:
            raise ValueError(f"Unknown entity: {label}") from None

    def to_dataframe(self) -> pd.DataFrame:
        labels = np.asarray(self.labels, dtype=object)
        return pd.DataFrame({
            "home": labels[self.home_idx],
            "away": labels[self.away_idx],
            "home_idx": self.home_idx,
            "away_idx": self.away_idx,
            "home_count": self.home_count,
            "away_count": self.away_count,
        })


class ScheduleEncoder:
    """
    Map raw match records to a MatchData.

    Usage:
        >>> encoder = ScheduleEncoder()
        >>> data = encoder.encode(matches_df)
        >>> data.labels
        ('Arsenal', 'Chelsea', 'Liverpool')

    Indices follow sorted label order unless ``labels`` is given, in which
    case the supplied order is used and unknown names are rejected.
    """

    def __init__(
        self,
        labels: Sequence[str] | None = None,
        home_col: str = "home",
        away_col: str = "away",
        home_count_col: str = "home_count",
        away_count_col: str = "away_count",
    ):
        self.labels = tuple(labels) if labels is not None else None
        self.home_col = home_col
        self.away_col = away_col
        self.home_count_col = home_count_col
        self.away_count_col = away_count_col

    def encode(self, records: pd.DataFrame | Iterable[tuple]) -> MatchData:
        """
        Encode match records.

        Args:
            records: DataFrame with home/away/count columns, or an iterable of
                (home, away, home_count, away_count) tuples

        Returns:
            MatchData with integer indices and counts
        """
        df = self._as_dataframe(records)
        if len(df) == 0:
            raise ConfigurationError("At least one match record is required (N > 0)")

        if df[[self.home_count_col, self.away_count_col]].isna().any().any():
            raise ConfigurationError("Match counts must not be missing")

        home = df[self.home_col].astype(str)
        away = df[self.away_col].astype(str)

        if self.labels is None:
            labels = tuple(sorted(set(home) | set(away)))
        else:
            labels = tuple(str(label) for label in self.labels)
            unknown = (set(home) | set(away)) - set(labels)
            if unknown:
                raise ConfigurationError(f"Unknown entities in records: {sorted(unknown)}")

        ids = {label: i for i, label in enumerate(labels)}

        return MatchData(
            home_idx=home.map(ids).to_numpy(),
            away_idx=away.map(ids).to_numpy(),
            home_count=df[self.home_count_col].to_numpy(),
            away_count=df[self.away_count_col].to_numpy(),
            labels=labels,
        )

    def _as_dataframe(self, records) -> pd.DataFrame:
        columns = [self.home_col, self.away_col, self.home_count_col, self.away_count_col]
        if isinstance(records, pd.DataFrame):
            missing = [col for col in columns if col not in records.columns]
            if missing:
                raise ConfigurationError(f"Missing required columns: {missing}")
            return records[columns]
        return pd.DataFrame(list(records), columns=columns)
