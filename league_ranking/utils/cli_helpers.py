"""CLI helper functions shared across commands."""

from __future__ import annotations

from pathlib import Path

import pandas as pd

from league_ranking.model.core import ModelConfig, ScoringModel, get_model
from league_ranking.model.data import MatchData, ScheduleEncoder
from league_ranking.model.inference import InferenceConfig, ModelFitter
from league_ranking.utils.logging import print_info, print_section, print_success, print_warning


def load_matches(
    path: Path,
    home_col: str = "home",
    away_col: str = "away",
    home_count_col: str = "home_count",
    away_count_col: str = "away_count",
    verbose: bool = True,
) -> MatchData:
    """
    Read a matches CSV and encode it.

    Args:
        path: CSV file with one row per match
        home_col, away_col: Entity name columns
        home_count_col, away_count_col: Count columns
        verbose: Print status messages

    Returns:
        Encoded MatchData
    """
    if verbose:
        print_section("LOADING DATA")

    df = pd.read_csv(path)
    encoder = ScheduleEncoder(
        home_col=home_col,
        away_col=away_col,
        home_count_col=home_count_col,
        away_count_col=away_count_col,
    )
    data = encoder.encode(df)

    if verbose:
        print_success(f"Loaded {data.n_matches} matches between {data.n_entities} entities")
        if not data.is_full_round_robin:
            print_info("Schedule is not a complete double round robin")
        if data.unplayed_entities:
            print_warning(f"No matches for: {', '.join(data.unplayed_entities)}")

    return data


def fit_variant(
    variant: str,
    data: MatchData,
    inference_config: InferenceConfig,
    model_config: ModelConfig | None = None,
    backend: str = "mcmc",
    verbose: bool = True,
) -> tuple[ScoringModel, ModelFitter]:
    """
    Build and fit one model variant.

    Returns:
        (model, fitter) tuple; the fitter holds the posterior samples
    """
    model = get_model(variant, data.n_entities, config=model_config)
    if verbose:
        print_section(f"FITTING {model.name.upper()} MODEL ({backend.upper()})")

    fitter = ModelFitter(model, data, inference_config)
    if backend == "pymc":
        samples = fitter.fit_pymc()
    else:
        samples = fitter.fit_mcmc()

    if verbose:
        print_success(f"{samples.n_chains} chains, {samples.n_draws} retained draws")
        for message in samples.warnings:
            print_warning(message)

    return model, fitter
