"""Shared fixtures for league_ranking tests."""

import numpy as np
import pytest

from league_ranking.model.data import MatchData
from league_ranking.model.inference import PosteriorSampleSet


def _round_robin(scores, repeats=1):
    """Double round robin in which entity i always scores scores[i]."""
    k = len(scores)
    home, away = [], []
    for _ in range(repeats):
        for i in range(k):
            for j in range(k):
                if i != j:
                    home.append(i)
                    away.append(j)
    home_count = [scores[i] for i in home]
    away_count = [scores[j] for j in away]
    return home, away, home_count, away_count


@pytest.fixture
def small_data():
    """Three entities, one double round robin."""
    home, away, hc, ac = _round_robin([3, 2, 1])
    return MatchData.from_indices(home, away, hc, ac, labels=["Ajax", "Benfica", "Celtic"])


@pytest.fixture
def lopsided_data():
    """Three entities, three double round robins, clear strength order."""
    home, away, hc, ac = _round_robin([5, 2, 1], repeats=3)
    return MatchData.from_indices(home, away, hc, ac, labels=["Ajax", "Benfica", "Celtic"])


@pytest.fixture
def poisson_samples():
    """Hand-built Poisson posterior: 2 chains x 5 draws, K=3."""
    rng = np.random.default_rng(0)
    n_chains, n_draws, k = 2, 5, 3

    def block():
        free = rng.normal(0, 0.3, size=(n_chains, n_draws, k - 1))
        return np.concatenate([free, -free.sum(axis=-1, keepdims=True)], axis=-1)

    return PosteriorSampleSet(
        variant="poisson",
        labels=("Ajax", "Benfica", "Celtic"),
        draws={
            "mu": rng.normal(0.3, 0.05, size=(n_chains, n_draws)),
            "eta": rng.normal(0.2, 0.05, size=(n_chains, n_draws)),
            "attack": block(),
            "defense": block(),
        },
        seed=0,
    )
