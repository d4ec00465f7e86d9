"""
Observation Models
===================
Log-likelihood of observed data given a solver output and the per-draw
auxiliary parameters.

Every model works in log space and sums pointwise log densities; nothing is
exponentiated along the way, so very small or very large solver outputs stay
representable.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping

import numpy as np
from scipy import stats

from psisflow.errors import InvalidLikelihood

LogLikelihoodFn = Callable[[Any, np.ndarray, Mapping[str, float]], float]


def gaussian_log_likelihood(
    data: np.ndarray,
    solution: np.ndarray,
    aux: Mapping[str, float],
) -> float:
    """Normal observations with mean = solution and scale = ``aux['sigma']``."""
    sigma = float(aux["sigma"])
    if sigma <= 0:
        return -np.inf
    return float(np.sum(stats.norm.logpdf(np.asarray(data, dtype=float), loc=solution, scale=sigma)))


def neg_binomial_log_likelihood(
    data: np.ndarray,
    solution: np.ndarray,
    aux: Mapping[str, float],
) -> float:
    """
    Counts with mean = solution and dispersion = ``aux['phi']``
    (variance mu + mu^2 / phi).

    A non-positive mean has zero density, so it yields -inf.
    """
    phi = float(aux["phi"])
    mu = np.asarray(solution, dtype=float)
    if phi <= 0 or np.any(mu <= 0):
        return -np.inf
    # scipy's (n, p) parameterization: n = phi, p = phi / (phi + mu)
    p = phi / (phi + mu)
    return float(np.sum(stats.nbinom.logpmf(np.asarray(data), phi, p)))


OBSERVATION_MODELS: Dict[str, LogLikelihoodFn] = {
    "gaussian": gaussian_log_likelihood,
    "neg_binomial": neg_binomial_log_likelihood,
}


def get_observation_model(name: str) -> LogLikelihoodFn:
    try:
        return OBSERVATION_MODELS[name]
    except KeyError:
        raise ValueError(
            f"Unknown observation model {name!r}; choose from {sorted(OBSERVATION_MODELS)}"
        ) from None


@dataclass(frozen=True)
class LikelihoodEvaluator:
    """Binds observed data to an observation model and checks its output."""

    log_likelihood: LogLikelihoodFn
    data: Any

    def __call__(self, solution: np.ndarray, aux: Mapping[str, float]) -> float:
        value = float(self.log_likelihood(self.data, solution, aux))
        if np.isnan(value) or value == np.inf:
            raise InvalidLikelihood(f"Observation model returned {value} (aux={dict(aux)})")
        return value
