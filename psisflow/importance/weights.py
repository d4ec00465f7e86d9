"""
Importance Weights
===================
Log importance ratios between the high- and low-precision models,

    log w_i = log p_high(y | theta_i) - log p_low(y | theta_i),

for draws theta_i sampled from the low-precision posterior.

PRECONDITION: both models must use the same prior. The prior terms are left
out because they cancel in the ratio; if the priors differ the weights are
silently wrong. This is not checked at runtime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Tuple

import numpy as np

from psisflow.draws import DrawSet
from psisflow.errors import ExcessiveSolverFailures, InvalidLikelihood, SolverFailure
from psisflow.likelihood import LikelihoodEvaluator, LogLikelihoodFn
from psisflow.parallel import Backend, map_ordered
from psisflow.precision import PrecisionConfig
from psisflow.solvers.adapter import SolveFn, SolverAdapter, as_adapter

FailurePolicy = Literal["neg_inf", "drop"]


@dataclass(frozen=True)
class DrawFailure:
    """Why a draw has no usable weight."""

    index: int
    stage: str  # "low", "high"
    message: str


@dataclass(frozen=True)
class LogWeights:
    """
    Log weights aligned with ``draw_indices``.

    With the ``neg_inf`` policy every draw keeps its slot and failed draws
    carry -inf; with ``drop`` failed draws are left out of ``draw_indices``.
    """

    values: np.ndarray
    draw_indices: np.ndarray
    n_draws: int
    log_lik_low: np.ndarray
    log_lik_high: np.ndarray
    failures: Tuple[DrawFailure, ...] = ()
    policy: FailurePolicy = "neg_inf"

    def __len__(self) -> int:
        return len(self.values)

    @property
    def failure_fraction(self) -> float:
        return len(self.failures) / self.n_draws

    def aligned(self) -> np.ndarray:
        """Full-length vector over the original draws, -inf where a draw has no weight."""
        full = np.full(self.n_draws, -np.inf)
        full[self.draw_indices] = self.values
        return full


@dataclass(frozen=True)
class _DrawTask:
    index: int
    structural: Dict[str, float]
    aux: Dict[str, float]


@dataclass(frozen=True)
class _DrawOutcome:
    log_lik_low: float
    log_lik_high: float
    failure: Optional[DrawFailure] = None


@dataclass(frozen=True)
class _WeightWorker:
    solver: SolverAdapter
    evaluator: LikelihoodEvaluator
    low_config: PrecisionConfig
    high_config: PrecisionConfig

    def _log_lik(self, task: _DrawTask, config: PrecisionConfig) -> float:
        solution = self.solver.evaluate(task.structural, config)
        return self.evaluator(solution, task.aux)

    def __call__(self, task: _DrawTask) -> _DrawOutcome:
        outcomes: Dict[str, float] = {}
        for stage, config in (("low", self.low_config), ("high", self.high_config)):
            try:
                outcomes[stage] = self._log_lik(task, config)
            except (SolverFailure, InvalidLikelihood) as exc:
                return _DrawOutcome(np.nan, np.nan, DrawFailure(task.index, stage, str(exc)))

        if outcomes["low"] == -np.inf:
            failure = DrawFailure(task.index, "low", "low-precision log-likelihood is -inf")
            return _DrawOutcome(outcomes["low"], outcomes["high"], failure)
        return _DrawOutcome(outcomes["low"], outcomes["high"])


def compute_log_weights(
    draw_set: DrawSet,
    low_config: PrecisionConfig,
    high_config: PrecisionConfig,
    observed_data: Any,
    solver: SolverAdapter | SolveFn,
    log_likelihood: LogLikelihoodFn,
    failure_policy: FailurePolicy = "neg_inf",
    max_failure_fraction: float = 0.1,
    n_workers: int = 1,
    backend: Backend = "thread",
) -> LogWeights:
    """
    Compute per-draw log importance ratios high vs low precision.

    Draws are evaluated independently (in parallel when ``n_workers > 1``);
    the output is in draw order regardless. Failed draws are collected and
    reported together; more than ``max_failure_fraction`` of them raises
    ExcessiveSolverFailures.

    Assumes identical priors in both models (see module docstring).
    """
    worker = _WeightWorker(
        solver=as_adapter(solver),
        evaluator=LikelihoodEvaluator(log_likelihood, observed_data),
        low_config=low_config,
        high_config=high_config,
    )
    tasks = [
        _DrawTask(index=i, structural=draw.structural, aux=draw.aux)
        for i, draw in enumerate(draw_set)
    ]
    outcomes = map_ordered(worker, tasks, n_workers=n_workers, backend=backend)

    n_draws = len(draw_set)
    log_lik_low = np.array([o.log_lik_low for o in outcomes], dtype=float)
    log_lik_high = np.array([o.log_lik_high for o in outcomes], dtype=float)
    failures: List[DrawFailure] = [o.failure for o in outcomes if o.failure is not None]

    if failures:
        if len(failures) / n_draws > max_failure_fraction:
            raise ExcessiveSolverFailures(failures, n_draws, max_failure_fraction)
        logging.warning(
            "%d of %d draws failed (%s); applying '%s' policy. First: draw %d (%s): %s",
            len(failures),
            n_draws,
            ", ".join(sorted({f.stage for f in failures})),
            failure_policy,
            failures[0].index,
            failures[0].stage,
            failures[0].message,
        )

    values = log_lik_high - log_lik_low
    failed = np.zeros(n_draws, dtype=bool)
    failed[np.array([f.index for f in failures], dtype=int)] = True

    if failure_policy == "drop":
        draw_indices = np.flatnonzero(~failed)
        values = values[draw_indices]
    elif failure_policy == "neg_inf":
        draw_indices = np.arange(n_draws)
        values = np.where(failed, -np.inf, values)
    else:
        raise ValueError(f"Unknown failure policy: {failure_policy}")

    return LogWeights(
        values=values,
        draw_indices=draw_indices,
        n_draws=n_draws,
        log_lik_low=log_lik_low,
        log_lik_high=log_lik_high,
        failures=tuple(failures),
        policy=failure_policy,
    )
