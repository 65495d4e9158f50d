"""Logging setup and console formatting for the command line."""

import logging

SECTION_WIDTH = 70


def setup_logging(verbose: bool = True) -> None:
    """Route league_ranking log records to stderr; INFO when verbose, else WARNING."""
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("league_ranking").setLevel(level)
    # PyMC and PyTensor are chatty at INFO
    for name in ("pymc", "pytensor"):
        logging.getLogger(name).setLevel(logging.WARNING)


def print_section(title: str) -> None:
    print("=" * SECTION_WIDTH)
    print(title)
    print("=" * SECTION_WIDTH)


def print_success(message: str) -> None:
    print(f"✓ {message}")


def print_error(message: str) -> None:
    print(f"✗ {message}")


def print_warning(message: str) -> None:
    print(f"⚠️  {message}")


def print_info(message: str) -> None:
    print(f"ℹ  {message}")
