"""
Precision Tuner
================
Finds a solver configuration that can serve as the high-precision reference.

A configuration is trusted for a draw when solving again at a strictly
refined configuration changes the output by less than an application-defined
bound (typically well below the measurement noise). Trust across the posterior
is established by probing every draw of interest.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from psisflow.budget import Budget
from psisflow.draws import DrawSet
from psisflow.errors import SolverFailure, TuningLimitExceeded
from psisflow.parallel import Backend, map_ordered
from psisflow.precision import PrecisionConfig, RefineFn
from psisflow.solvers.adapter import SolveFn, SolverAdapter, as_adapter


def _max_abs_difference(base: np.ndarray, fine: np.ndarray) -> float:
    if base.shape != fine.shape:
        raise SolverFailure(f"Output shape changed under refinement: {base.shape} vs {fine.shape}")
    return float(np.max(np.abs(base - fine)))


def estimate_error(
    solver: SolverAdapter | SolveFn,
    structural_params: Mapping[str, float],
    precision_config: PrecisionConfig,
    refine: RefineFn,
) -> float:
    """Max absolute elementwise change of the solution when ``refine`` is applied once."""
    adapter = as_adapter(solver)
    base = adapter.evaluate(structural_params, precision_config)
    fine = adapter.evaluate(structural_params, refine(precision_config))
    return _max_abs_difference(base, fine)


@dataclass(frozen=True)
class ProbeRound:
    """Errors of one configuration over the probed draws."""

    config: PrecisionConfig
    indices: np.ndarray
    errors: np.ndarray
    mean_seconds: float
    n_failures: int

    @property
    def max_error(self) -> float:
        return float(np.max(self.errors))


@dataclass(frozen=True)
class TuningResult:
    config: PrecisionConfig
    rounds: Tuple[ProbeRound, ...]

    @property
    def final(self) -> ProbeRound:
        return self.rounds[-1]

    @property
    def max_error(self) -> float:
        return self.final.max_error

    @property
    def n_refinements(self) -> int:
        return len(self.rounds) - 1


@dataclass(frozen=True)
class _ProbeWorker:
    solver: SolverAdapter
    config: PrecisionConfig
    refined: PrecisionConfig

    def __call__(self, structural: Dict[str, float]) -> Tuple[float, float]:
        start = time.perf_counter()
        try:
            base = self.solver.evaluate(structural, self.config)
            seconds = time.perf_counter() - start
            fine = self.solver.evaluate(structural, self.refined)
            return _max_abs_difference(base, fine), seconds
        except SolverFailure:
            return np.inf, np.nan


def probe_indices(n_draws: int, max_probe_draws: Optional[int]) -> np.ndarray:
    if max_probe_draws is None or max_probe_draws >= n_draws:
        return np.arange(n_draws)
    return np.unique(np.linspace(0, n_draws - 1, max_probe_draws).round().astype(int))


def probe_errors(
    solver: SolverAdapter | SolveFn,
    draw_set: DrawSet,
    config: PrecisionConfig,
    refine: RefineFn,
    n_workers: int = 1,
    backend: Backend = "thread",
    max_probe_draws: Optional[int] = None,
) -> ProbeRound:
    """Run the single-draw error probe over (a thinned subset of) the draws."""
    indices = probe_indices(len(draw_set), max_probe_draws)
    worker = _ProbeWorker(solver=as_adapter(solver), config=config, refined=refine(config))
    outcomes = map_ordered(
        worker,
        [draw_set[int(i)].structural for i in indices],
        n_workers=n_workers,
        backend=backend,
    )
    errors = np.array([error for error, _ in outcomes], dtype=float)
    seconds = np.array([sec for _, sec in outcomes], dtype=float)
    n_failures = int(np.sum(~np.isfinite(errors)))
    return ProbeRound(
        config=config,
        indices=indices,
        errors=errors,
        mean_seconds=float(np.nanmean(seconds)) if n_failures < len(seconds) else float("nan"),
        n_failures=n_failures,
    )


def tune_precision(
    solver: SolverAdapter | SolveFn,
    draw_set: DrawSet,
    candidate: PrecisionConfig,
    refine: RefineFn,
    error_bound: float,
    max_refinements: int = 8,
    n_workers: int = 1,
    backend: Backend = "thread",
    max_probe_draws: Optional[int] = None,
    budget: Optional[Budget] = None,
) -> TuningResult:
    """
    Tighten ``candidate`` until the max probe error over the draws is below
    ``error_bound``. A draw whose solve fails counts as an infinite error.

    Raises TuningLimitExceeded after ``max_refinements`` tightenings.
    """
    config = candidate
    rounds: List[ProbeRound] = []
    for attempt in range(max_refinements + 1):
        if budget is not None:
            budget.check("TUNE_HIGH")
        probe = probe_errors(
            solver,
            draw_set,
            config,
            refine,
            n_workers=n_workers,
            backend=backend,
            max_probe_draws=max_probe_draws,
        )
        rounds.append(probe)
        logging.info(
            "Tuning round %d at %s: max error %.3e (bound %.3e, %d failed)",
            attempt,
            config,
            probe.max_error,
            error_bound,
            probe.n_failures,
        )
        if probe.max_error < error_bound:
            return TuningResult(config=config, rounds=tuple(rounds))
        if attempt < max_refinements:
            config = refine(config)

    raise TuningLimitExceeded(rounds[-1].max_error, error_bound, rounds[-1].config, rounds)
