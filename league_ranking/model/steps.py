"""
Coordinate-wise step methods for the MCMC engine.

Each sweep updates the sampled free coordinates one at a time
(Metropolis-within-Gibbs or slice-within-Gibbs). Neither method needs a
closed-form full conditional, so non-conjugate coordinates (log-link
effects, negative-binomial dispersion) are handled the same way as the
rest.

The chain state is the free-coordinate vector alone. Constrained
coordinates are re-derived by ``log_density`` on every evaluation, so an
accepted update is always reflected in the derived value before the next
likelihood evaluation.
"""

from __future__ import annotations

from typing import Callable

import numpy as np

LogDensity = Callable[[np.ndarray], float]


class CoordinateStep:
    """Base class: bookkeeping for acceptance and per-sweep validity."""

    def __init__(self, indices: np.ndarray, lower: np.ndarray, upper: np.ndarray):
        self.indices = np.asarray(indices, dtype=int)
        self.lower = np.asarray(lower, dtype=float)
        self.upper = np.asarray(upper, dtype=float)
        n = len(self.indices)
        self.n_accepted = np.zeros(n, dtype=int)
        self.n_attempted = np.zeros(n, dtype=int)

    def sweep(
        self,
        x: np.ndarray,
        current_lp: float,
        log_density: LogDensity,
        rng: np.random.Generator,
        tune: bool = False,
    ) -> tuple[np.ndarray, float, int]:
        """
        Update every sampled coordinate once.

        Returns:
            (new state, its log density, number of coordinates for which at
            least one evaluated proposal had a finite log density)
        """
        n_valid = 0
        for k, j in enumerate(self.indices):
            x, current_lp, valid = self._update(k, j, x, current_lp, log_density, rng, tune)
            n_valid += int(valid)
        return x, current_lp, n_valid

    def _update(self, k, j, x, current_lp, log_density, rng, tune):
        raise NotImplementedError

    def _evaluate(self, x: np.ndarray, j: int, value: float, log_density: LogDensity):
        if not (self.lower[j] < value < self.upper[j]):
            return None, -np.inf
        proposal = x.copy()
        proposal[j] = value
        return proposal, log_density(proposal)

    def acceptance_rate(self) -> np.ndarray:
        with np.errstate(invalid="ignore", divide="ignore"):
            return np.where(self.n_attempted > 0, self.n_accepted / self.n_attempted, np.nan)

    def end_tuning(self) -> None:
        """Reset counters so reported rates cover retained iterations only."""
        self.n_accepted[:] = 0
        self.n_attempted[:] = 0


class MetropolisStep(CoordinateStep):
    """
    Random-walk Metropolis per coordinate.

    During tuning the log proposal scale of each coordinate moves toward the
    target acceptance rate every ``adapt_interval`` sweeps, with a step that
    shrinks as 1/sqrt(batch). Scales are frozen once tuning ends.
    """

    def __init__(
        self,
        indices,
        lower,
        upper,
        scale: float = 0.5,
        target_accept: float = 0.44,
        adapt_interval: int = 50,
    ):
        super().__init__(indices, lower, upper)
        self.log_scale = np.full(len(self.indices), np.log(scale))
        self.target_accept = target_accept
        self.adapt_interval = adapt_interval
        self._batch_accepted = np.zeros(len(self.indices), dtype=int)
        self._batch_sweeps = 0
        self._n_batches = 0

    def sweep(self, x, current_lp, log_density, rng, tune=False):
        x, current_lp, n_valid = super().sweep(x, current_lp, log_density, rng, tune)
        if tune:
            self._batch_sweeps += 1
            if self._batch_sweeps == self.adapt_interval:
                self._adapt()
        return x, current_lp, n_valid

    def _update(self, k, j, x, current_lp, log_density, rng, tune):
        self.n_attempted[k] += 1
        value = x[j] + np.exp(self.log_scale[k]) * rng.standard_normal()
        proposal, lp = self._evaluate(x, j, value, log_density)
        if not np.isfinite(lp):
            return x, current_lp, False
        if np.log(rng.uniform()) < lp - current_lp:
            self.n_accepted[k] += 1
            if tune:
                self._batch_accepted[k] += 1
            return proposal, lp, True
        return x, current_lp, True

    def _adapt(self) -> None:
        self._n_batches += 1
        delta = min(0.05, 1.0 / np.sqrt(self._n_batches))
        rate = self._batch_accepted / self._batch_sweeps
        self.log_scale += np.where(rate > self.target_accept, delta, -delta)
        self._batch_accepted[:] = 0
        self._batch_sweeps = 0


class SliceStep(CoordinateStep):
    """
    Univariate slice sampling with stepping out and shrinkage (Neal, 2003).

    Points outside the support or with non-finite log density lie outside
    every slice, so the interval shrinks past them. If shrinkage runs out
    without finding a point, the coordinate keeps its value; that update
    counts as invalid when no evaluation in it was finite. Widths adapt to
    the mean jump size while tuning.
    """

    def __init__(
        self,
        indices,
        lower,
        upper,
        width: float = 1.0,
        max_stepping_out: int = 50,
        max_shrink: int = 100,
    ):
        super().__init__(indices, lower, upper)
        self.width = np.full(len(self.indices), float(width))
        self.max_stepping_out = max_stepping_out
        self.max_shrink = max_shrink
        self._n_tuned = np.zeros(len(self.indices), dtype=int)

    def _update(self, k, j, x, current_lp, log_density, rng, tune):
        self.n_attempted[k] += 1
        x0 = x[j]
        w = self.width[k]
        level = current_lp - rng.exponential()
        any_finite = False

        def lp_at(value):
            nonlocal any_finite
            _, lp = self._evaluate(x, j, value, log_density)
            if np.isfinite(lp):
                any_finite = True
            return lp

        left = x0 - w * rng.uniform()
        right = left + w
        steps_left = int(rng.integers(0, self.max_stepping_out + 1))
        steps_right = self.max_stepping_out - steps_left
        while steps_left > 0 and left > self.lower[j] and lp_at(left) > level:
            left -= w
            steps_left -= 1
        while steps_right > 0 and right < self.upper[j] and lp_at(right) > level:
            right += w
            steps_right -= 1
        left = max(left, self.lower[j])
        right = min(right, self.upper[j])

        for _ in range(self.max_shrink):
            value = rng.uniform(left, right)
            proposal, lp = self._evaluate(x, j, value, log_density)
            if np.isfinite(lp):
                any_finite = True
                if lp > level:
                    self.n_accepted[k] += 1
                    if tune:
                        self._tune_width(k, abs(value - x0))
                    return proposal, lp, True
            if value < x0:
                left = value
            else:
                right = value

        return x, current_lp, any_finite

    def _tune_width(self, k: int, jump: float) -> None:
        n = self._n_tuned[k]
        self.width[k] = max((self.width[k] * n + 2.0 * jump) / (n + 1), 1e-6)
        self._n_tuned[k] = n + 1


STEP_METHODS = {
    "slice": SliceStep,
    "metropolis": MetropolisStep,
}
