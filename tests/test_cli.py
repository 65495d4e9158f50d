"""Tests for the league-ranking command line."""

import pandas as pd
import pytest

from league_ranking.cli import main


@pytest.fixture
def matches_csv(tmp_path, small_data):
    path = tmp_path / "matches.csv"
    small_data.to_dataframe()[["home", "away", "home_count", "away_count"]].to_csv(
        path, index=False
    )
    return path


SHORT_RUN = ["--chains", "2", "--iter", "60", "--burnin", "20", "--seed", "1", "--quiet"]


class TestCLI:
    """Test the fit and compare commands end to end."""

    def test_fit(self, matches_csv, capsys):
        main(["fit", "--matches", str(matches_csv), "--variant", "A", *SHORT_RUN])
        out = capsys.readouterr().out
        assert "OBSERVED STANDINGS" in out
        assert "REPLAYED STANDINGS" in out
        assert "DIAGNOSTICS" in out

    def test_compare(self, matches_csv, capsys):
        main(["compare", "--matches", str(matches_csv), *SHORT_RUN])
        out = capsys.readouterr().out
        assert "MODEL COMPARISON" in out
        assert "Preferred model" in out

    def test_invalid_settings_exit_code(self, matches_csv):
        with pytest.raises(SystemExit) as excinfo:
            main(["fit", "--matches", str(matches_csv), "--iter", "10", "--burnin", "10", "--quiet"])
        assert excinfo.value.code == 2

    def test_bad_records(self, tmp_path):
        path = tmp_path / "bad.csv"
        pd.DataFrame({
            "home": ["a"], "away": ["a"], "home_count": [1], "away_count": [0],
        }).to_csv(path, index=False)
        with pytest.raises(SystemExit):
            main(["fit", "--matches", str(path), "--quiet"])

    def test_no_command(self, capsys):
        main([])
        assert "usage" in capsys.readouterr().out
