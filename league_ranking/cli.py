"""
Command-line interface for league ranking models.

Supports:
    league-ranking fit --matches season.csv --variant A --seed 1
    league-ranking fit --matches season.csv --variant B --save epl_negbin
    league-ranking compare --matches season.csv --seed 1
"""

from __future__ import annotations

import argparse
from pathlib import Path

import pandas as pd

from league_ranking.model.errors import (
    ConfigurationError,
    IdentifiabilityError,
    SamplerStallError,
    SamplingCancelled,
)
from league_ranking.model.inference import InferenceConfig
from league_ranking.utils.logging import (
    print_error,
    print_info,
    print_section,
    print_success,
    print_warning,
    setup_logging,
)


def _add_sampling_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--matches",
        type=Path,
        required=True,
        help="CSV with home, away, home_count, away_count columns"
    )
    parser.add_argument(
        "--chains",
        type=int,
        default=4,
        help="Number of chains (default: 4)"
    )
    parser.add_argument(
        "--iter",
        type=int,
        default=5000,
        help="Iterations per chain including burn-in (default: 5000)"
    )
    parser.add_argument(
        "--burnin",
        type=int,
        default=1000,
        help="Burn-in iterations per chain (default: 1000)"
    )
    parser.add_argument(
        "--thin",
        type=int,
        default=1,
        help="Keep every n-th post-burn-in iteration (default: 1)"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Top-level random seed"
    )
    parser.add_argument(
        "--step",
        choices=["slice", "metropolis"],
        default="slice",
        help="Coordinate update method (default: slice)"
    )
    parser.add_argument(
        "--cores",
        type=int,
        default=1,
        help="Worker processes for chains (default: 1)"
    )
    parser.add_argument(
        "--backend",
        choices=["mcmc", "pymc"],
        default="mcmc",
        help="Built-in engine or PyMC (default: mcmc)"
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Only log warnings"
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Bayesian league ranking from paired match counts"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Fit command
    fit_parser = subparsers.add_parser(
        "fit",
        help="Fit one model variant and replay the season"
    )
    _add_sampling_arguments(fit_parser)
    fit_parser.add_argument(
        "--variant",
        choices=["A", "B", "poisson", "negbin"],
        default="A",
        help="A = Poisson attack/defence, B = negative-binomial strength"
    )
    fit_parser.add_argument(
        "--replay-seed",
        type=int,
        default=0,
        help="Seed for the posterior-predictive replay (default: 0)"
    )
    fit_parser.add_argument(
        "--save",
        type=str,
        default=None,
        help="Checkpoint name to save the samples under"
    )

    # Compare command
    compare_parser = subparsers.add_parser(
        "compare",
        help="Fit both variants and compare them by DIC"
    )
    _add_sampling_arguments(compare_parser)
    compare_parser.add_argument(
        "--pd-method",
        choices=["variance", "plugin"],
        default="variance",
        help="Effective number of parameters estimate (default: variance)"
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    setup_logging(verbose=not args.quiet)

    try:
        if args.command == "fit":
            run_fit(args)
        elif args.command == "compare":
            run_compare(args)
    except (ConfigurationError, IdentifiabilityError) as e:
        print_error(f"Invalid input: {e}")
        raise SystemExit(2)
    except (SamplerStallError, SamplingCancelled) as e:
        print_error(str(e))
        raise SystemExit(1)


def _inference_config(args) -> InferenceConfig:
    return InferenceConfig(
        n_chains=args.chains,
        n_iter=args.iter,
        n_burnin=args.burnin,
        thin=args.thin,
        seed=args.seed,
        step=args.step,
        cores=args.cores,
    )


def run_fit(args):
    """Fit a variant, print the replayed standings and diagnostics."""
    from league_ranking.model.league_table import LeagueTable, format_table
    from league_ranking.model.season_predictor import SeasonReplayer
    from league_ranking.model.summary import entity_summary
    from league_ranking.model.diagnostics import mixing_report
    from league_ranking.utils.cli_helpers import fit_variant, load_matches

    data = load_matches(args.matches)

    print_section("OBSERVED STANDINGS")
    print(format_table(LeagueTable().compute_standings(data)))

    model, fitter = fit_variant(args.variant, data, _inference_config(args), backend=args.backend)
    samples = fitter.samples

    replay = SeasonReplayer(model, samples, seed=args.replay_seed).replay()
    print(f"\n{replay.format_summary()}")

    print_section("ENTITY EFFECTS")
    with pd.option_context("display.width", 120, "display.max_columns", None):
        print(entity_summary(samples, replay).round(3).to_string(index=False))

    print_section("DIAGNOSTICS")
    table = fitter.diagnostics()
    with pd.option_context("display.width", 120, "display.max_rows", None):
        print(table.round(3).to_string())

    report = mixing_report(table)
    if report["poorly_mixing"]:
        print_warning(f"Low ESS: {', '.join(report['poorly_mixing'])}")
    if table["geweke_flag"].any():
        print_warning("Some coordinates fail the Geweke check; consider a longer burn-in")
    if table["insufficient_data"].any():
        print_info("Chains too short for diagnostics")

    if args.save:
        path = fitter.save(args.save)
        print_success(f"Saved checkpoint: {path}")


def run_compare(args):
    """Fit both variants, print DIC and the home-advantage Bayes factor."""
    from league_ranking.model.comparison import bayes_factor_home_advantage, compare_dic, dic
    from league_ranking.model.summary import format_comparison
    from league_ranking.utils.cli_helpers import fit_variant, load_matches

    data = load_matches(args.matches)
    config = _inference_config(args)

    criteria = {}
    fitted = {}
    for variant in ("A", "B"):
        model, fitter = fit_variant(variant, data, config, backend=args.backend)
        criteria[model.name] = dic(model, fitter.samples, data, method=args.pd_method)
        fitted[model.name] = (model, fitter)

    comparison = compare_dic(criteria)
    best = comparison.index[0]
    bf = bayes_factor_home_advantage(fitted[best][1].samples, fitted[best][0].config)

    print(f"\n{format_comparison(comparison, bf)}")
    if (comparison["rank"] != comparison["rank_by_deviance"]).any():
        print_info("The complexity penalty reverses the ranking on mean deviance alone")
    print_success(f"Preferred model: {best}")


if __name__ == "__main__":
    main()
