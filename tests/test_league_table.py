"""Unit tests for league_ranking.model.league_table module."""

import itertools

import numpy as np
import pytest

from league_ranking.model.data import MatchData
from league_ranking.model.league_table import (
    LeagueTable,
    PointsConfig,
    competition_rank,
    format_table,
    match_points,
    table_points,
)


class TestMatchPoints:
    """Test points per match result."""

    def test_all_outcomes(self):
        first, second = match_points(np.array([3, 0, -2]))
        assert first.tolist() == [3, 1, 0]
        assert second.tolist() == [0, 1, 3]

    @pytest.mark.parametrize("home,away", itertools.product(range(4), range(4)))
    def test_points_per_match(self, home, away):
        first, second = match_points(home - away)
        total = int(first) + int(second)
        if home == away:
            assert (first, second) == (1, 1)
            assert total == 2
        else:
            assert total == 3

    def test_custom_points(self):
        config = PointsConfig(win_points=2, draw_points=1, loss_points=0)
        first, second = match_points(np.array([1, 0]), config)
        assert first.tolist() == [2, 1]


class TestTablePoints:
    """Test points over a full round-robin table."""

    def test_diagonal_ignored(self):
        home = np.array([[9, 1], [2, 0]])
        away = np.array([[0, 1], [0, 5]])
        # 0 v 1 drawn 1-1, 1 v 0 won by 1 at home 2-0
        assert table_points(home, away).tolist() == [1, 4]

    def test_total_points_bounds(self):
        rng = np.random.default_rng(0)
        k = 5
        home = rng.poisson(1.5, size=(k, k))
        away = rng.poisson(1.2, size=(k, k))
        total = table_points(home, away).sum()
        n_matches = k * (k - 1)
        assert 2 * n_matches <= total <= 3 * n_matches

    def test_leading_axes(self):
        rng = np.random.default_rng(1)
        home = rng.poisson(1.5, size=(6, 4, 4))
        away = rng.poisson(1.5, size=(6, 4, 4))
        batched = table_points(home, away)
        assert batched.shape == (6, 4)
        np.testing.assert_array_equal(batched[2], table_points(home[2], away[2]))

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            table_points(np.zeros((3, 3)), np.zeros((3, 2)))


class TestCompetitionRank:
    """Test rank assignment from points."""

    def test_distinct_points(self):
        assert competition_rank(np.array([4, 9, 1])).tolist() == [2, 1, 3]

    def test_ties_share_rank(self):
        assert competition_rank(np.array([10, 7, 7, 3])).tolist() == [1, 2, 2, 4]

    def test_all_tied(self):
        assert competition_rank(np.array([5, 5, 5])).tolist() == [1, 1, 1]

    def test_monotonic(self):
        rng = np.random.default_rng(2)
        points = rng.integers(0, 30, size=(50, 6))
        ranks = competition_rank(points)
        for p, r in zip(points, ranks):
            for i, j in itertools.permutations(range(6), 2):
                if p[i] > p[j]:
                    assert r[i] < r[j]
                elif p[i] == p[j]:
                    assert r[i] == r[j]
            assert r.min() == 1


class TestLeagueTable:
    """Test observed standings."""

    def test_standings(self, small_data):
        standings = LeagueTable().compute_standings(small_data)
        assert standings["team"].tolist() == ["Ajax", "Benfica", "Celtic"]
        ajax = standings.iloc[0]
        assert ajax["played"] == 4
        assert ajax["won"] == 4
        assert ajax["points"] == 12
        assert ajax["goal_diff"] == 12 - 6
        assert standings["points"].tolist() == [12, 6, 0]
        assert standings["position"].tolist() == [1, 2, 3]

    def test_shared_position(self):
        data = MatchData.from_indices([0, 1, 2], [1, 2, 0], [1, 1, 1], [1, 1, 1], n_entities=3)
        standings = LeagueTable().compute_standings(data)
        assert standings["points"].tolist() == [2, 2, 2]
        assert standings["position"].tolist() == [1, 1, 1]

    def test_format_table(self, small_data):
        text = format_table(LeagueTable().compute_standings(small_data))
        assert "Ajax" in text
        assert text.splitlines()[0].strip().startswith("Pos")
