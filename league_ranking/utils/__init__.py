"""Shared utilities for league-ranking."""

from .logging import setup_logging, print_section, print_success, print_error, print_warning, print_info
from .cli_helpers import load_matches, fit_variant

__all__ = [
    "setup_logging",
    "print_section",
    "print_success",
    "print_error",
    "print_warning",
    "print_info",
    "load_matches",
    "fit_variant",
]
