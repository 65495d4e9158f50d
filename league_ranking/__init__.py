"""
League Ranking: Bayesian log-linear models for paired match outcomes.

This package provides:
- Encoding of match records into integer-indexed count data
- Poisson (attack/defence) and negative-binomial (strength) scoring models
  with sum-to-zero identifiability constraints
- A multi-chain MCMC engine, plus a PyMC backend for the same models
- Posterior-predictive replay of a full round robin with points and ranks
- Convergence diagnostics, DIC model comparison and a home-advantage Bayes factor
"""

__version__ = "0.1.0"
