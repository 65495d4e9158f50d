"""Exceptions raised by the league ranking model."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid data or sampler settings, detected before sampling starts."""


class IdentifiabilityError(ValueError):
    """A derived sum-to-zero coordinate was requested as a sampled parameter."""


class SamplerStallError(RuntimeError):
    """Too many iterations in which every attempted move was numerically invalid."""

    def __init__(self, message: str, stall_fractions: dict[int, float] | None = None):
        super().__init__(message)
        self.stall_fractions = stall_fractions or {}


class SamplingCancelled(RuntimeError):
    """Sampling was aborted before every chain finished. Partial chains are discarded."""


class InsufficientDataError(ValueError):
    """A diagnostic was asked for on a chain that is too short."""
