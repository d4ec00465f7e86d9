"""
Importance Resampling
======================
Turns weighted draws into an unweighted draw set approximating the target
posterior.

Resampling never adds information: the effective sample size 1 / sum(p_i^2)
of the weights is at most N, and equals N only for uniform weights.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from psisflow.draws import DrawSet
from psisflow.importance.weights import LogWeights


@dataclass(frozen=True)
class ResampleResult:
    """Resampled draws plus the source indices they were copied from."""

    draws: DrawSet
    indices: np.ndarray
    ess: float
    replace: bool


def normalize_log_weights(log_weights: np.ndarray) -> np.ndarray:
    lw = np.asarray(log_weights, dtype=float)
    if lw.size == 0 or not np.any(np.isfinite(lw)):
        raise ValueError("Need at least one finite log weight")
    w = np.exp(lw - np.max(lw[np.isfinite(lw)]))
    return w / np.sum(w)


def effective_sample_size(probs: np.ndarray) -> float:
    probs = np.asarray(probs, dtype=float)
    return float(min(1.0 / np.sum(probs**2), probs.size))


def resample(
    draw_set: DrawSet,
    log_weights: np.ndarray | LogWeights,
    target_size: Optional[int] = None,
    rng: Optional[np.random.Generator] = None,
    replace: bool = True,
) -> ResampleResult:
    """
    Draw ``target_size`` draws (default: all of them) with probabilities
    proportional to exp(log_weights).

    ``log_weights`` is either aligned with ``draw_set`` or a LogWeights whose
    ``draw_indices`` say which draws the weights belong to.
    """
    if rng is None:
        rng = np.random.default_rng()

    if isinstance(log_weights, LogWeights):
        candidates = log_weights.draw_indices
        lw = log_weights.values
    else:
        lw = np.asarray(log_weights, dtype=float).ravel()
        candidates = np.arange(len(draw_set))
    if len(lw) != len(candidates) or len(candidates) > len(draw_set):
        raise ValueError(
            f"{len(lw)} log weights do not line up with {len(draw_set)} draws"
        )

    probs = normalize_log_weights(lw)
    size = len(draw_set) if target_size is None else int(target_size)
    if size <= 0:
        raise ValueError(f"target_size must be positive, got {size}")
    if not replace and size > np.count_nonzero(probs):
        raise ValueError(
            f"Cannot draw {size} without replacement from "
            f"{np.count_nonzero(probs)} draws with positive weight"
        )

    picks = rng.choice(len(candidates), size=size, replace=replace, p=probs)
    indices = candidates[picks]
    return ResampleResult(
        draws=draw_set.take(indices),
        indices=indices,
        ess=effective_sample_size(probs),
        replace=replace,
    )
