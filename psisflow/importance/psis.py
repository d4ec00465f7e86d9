"""
Pareto-Smoothed Importance Sampling
====================================
Stabilizes importance weights by replacing the largest ones with the expected
order statistics of a generalized Pareto distribution (GPD) fitted to the
upper tail, and reports the fitted shape k-hat as a reliability diagnostic.

Algorithm:
1. Shift the raw log weights so the largest is 0
2. Take the top M = ceil(min(0.2 N, 3 sqrt(N))) weights as the tail
3. Fit a GPD to the tail exceedances over the cutoff (Zhang-Stephens
   empirical Bayes estimate with a weak prior pulling k towards 0.5)
4. Replace the tail by GPD quantiles at (j - 0.5) / M, truncated at the
   largest raw weight, and renormalize

Diagnostic thresholds for k-hat:
- k < 0.5        : reliable, finite variance
- 0.5 <= k < 0.7 : usable, slow convergence
- k >= 0.7       : unreliable

References:
- Vehtari, A., Simpson, D., Gelman, A., Yao, Y., Gabry, J. (2024).
  Pareto smoothed importance sampling. JMLR 25(72)
- Zhang, J., Stephens, M. A. (2009). A new and efficient estimation method
  for the generalized Pareto distribution. Technometrics 51(3)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from scipy.special import logsumexp

from psisflow.errors import InsufficientDrawsError
from psisflow.importance.weights import LogWeights

K_RELIABLE = 0.5
K_UNRELIABLE = 0.7

MIN_TAIL = 5
# Smallest N whose tail rule gives MIN_TAIL points: ceil(0.2 * 21) = 5.
MIN_DRAWS = 21

# Log weights this close together are treated as equal.
EQUAL_TOL = 1e-12

_PRIOR_BS = 3.0
_PRIOR_K_WEIGHT = 10.0
_LOG_TINY = float(np.log(np.finfo(float).tiny))


@dataclass(frozen=True)
class PSISResult:
    """Smoothed, normalized log weights aligned with the input, and k-hat."""

    smoothed_log_weights: np.ndarray
    k_hat: float
    tail_length: int
    ess: float

    def is_reliable(self, threshold: float = K_RELIABLE) -> bool:
        return bool(self.k_hat < threshold)

    @property
    def category(self) -> str:
        return pareto_k_category(self.k_hat)

    def normalized_weights(self) -> np.ndarray:
        return np.exp(self.smoothed_log_weights - logsumexp(self.smoothed_log_weights))


def pareto_k_category(k_hat: float) -> str:
    if k_hat < K_RELIABLE:
        return "good"
    if k_hat < K_UNRELIABLE:
        return "ok"
    return "bad"


def tail_length(n_draws: int) -> int:
    return int(math.ceil(min(0.2 * n_draws, 3.0 * math.sqrt(n_draws))))


def fit_generalized_pareto(exceedances: np.ndarray) -> Tuple[float, float]:
    """
    Estimate GPD shape k and scale sigma from positive exceedances.

    Returns k with the sign convention where heavier tails mean larger k.
    Degenerate input (zeros, identical values) can give NaN, which callers
    must treat as an unreliable fit.
    """
    x = np.sort(np.asarray(exceedances, dtype=float))
    n = len(x)
    if n < 2:
        raise ValueError(f"Need at least 2 exceedances, got {n}")

    with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
        m = 30 + int(np.sqrt(n))
        b = 1.0 - np.sqrt(m / (np.arange(1, m + 1, dtype=float) - 0.5))
        b = b / (_PRIOR_BS * x[int(n / 4 + 0.5) - 1]) + 1.0 / x[-1]

        k = np.mean(np.log1p(-b[:, None] * x), axis=1)
        profile = n * (np.log(-b / k) - k - 1.0)
        weights = 1.0 / np.sum(np.exp(profile - profile[:, None]), axis=1)

        keep = weights >= 10 * np.finfo(float).eps
        if not np.all(keep):
            weights = weights[keep]
            b = b[keep]
        weights = weights / np.sum(weights)

        b_post = np.sum(b * weights)
        k_post = np.mean(np.log1p(-b_post * x))
        sigma = -k_post / b_post
        k_post = (n * k_post + _PRIOR_K_WEIGHT * 0.5) / (n + _PRIOR_K_WEIGHT)

    return float(k_post), float(sigma)


def gpd_quantile(probs: np.ndarray, k: float, sigma: float) -> np.ndarray:
    probs = np.asarray(probs, dtype=float)
    if abs(k) < np.finfo(float).eps:
        return -sigma * np.log1p(-probs)
    return sigma * np.expm1(-k * np.log1p(-probs)) / k


def psis(log_weights: np.ndarray | LogWeights) -> PSISResult:
    """
    Pareto-smooth raw log importance weights.

    -inf entries (draws without a usable weight) are carried through
    unchanged and excluded from the fit. Raises InsufficientDrawsError when
    fewer than MIN_DRAWS finite weights remain. All-equal weights give
    k_hat = 0. A tail with fewer than MIN_TAIL distinct exceedances gives
    k_hat = inf.
    """
    if isinstance(log_weights, LogWeights):
        log_weights = log_weights.values
    lw = np.array(log_weights, dtype=float).ravel()
    if np.any(np.isnan(lw)) or np.any(lw == np.inf):
        raise ValueError("Log weights must not contain NaN or +inf")

    finite = np.isfinite(lw)
    n = int(finite.sum())
    if n < MIN_DRAWS:
        raise InsufficientDrawsError(n, MIN_DRAWS)

    x = lw[finite] - np.max(lw[finite])
    smoothed = np.full_like(lw, -np.inf)

    if np.ptp(x) <= EQUAL_TOL:
        smoothed[finite] = -np.log(n)
        return PSISResult(smoothed_log_weights=smoothed, k_hat=0.0, tail_length=0, ess=float(n))

    m = tail_length(n)
    cutoff = max(float(np.sort(x)[-(m + 1)]), _LOG_TINY)
    tail_idx = np.flatnonzero(x > cutoff)
    tail_idx = tail_idx[np.argsort(x[tail_idx], kind="stable")]
    n_tail = len(tail_idx)

    k_hat = np.inf
    if n_tail >= MIN_TAIL:
        exp_cutoff = np.exp(cutoff)
        k_hat, sigma = fit_generalized_pareto(np.exp(x[tail_idx]) - exp_cutoff)
        if np.isfinite(k_hat) and np.isfinite(sigma) and sigma > 0:
            probs = (np.arange(n_tail) + 0.5) / n_tail
            smooth_tail = np.log(gpd_quantile(probs, k_hat, sigma) + exp_cutoff)
            x[tail_idx] = np.minimum(smooth_tail, 0.0)
        else:
            k_hat = np.inf

    x = x - logsumexp(x)
    smoothed[finite] = x
    ess = float(min(1.0 / np.sum(np.exp(2.0 * x)), n))
    return PSISResult(smoothed_log_weights=smoothed, k_hat=float(k_hat), tail_length=n_tail, ess=ess)
