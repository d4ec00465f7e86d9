"""
Validation Workflow
====================
Fit with a cheap solver, validate against a trusted one, correct or refit.

One run walks the states

    FIT_LOW -> TUNE_HIGH -> COMPUTE_WEIGHTS -> CHECK_DIAGNOSTIC -> ACCEPT
                                                               `-> ESCALATE -> FIT_LOW

FIT_LOW       external sampler at the current low-precision config
TUNE_HIGH     tighten the reference config until it is accurate on every draw
COMPUTE_WEIGHTS  log p_high - log p_low per draw
CHECK_DIAGNOSTIC PSIS k-hat against the reliability threshold (0.5)
ESCALATE      raise the fidelity of the low config (external policy)
ACCEPT        resample the draws by their smoothed importance weights

PRECONDITION: the sampler's model and the reference model share the same
prior; only likelihoods enter the weights.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from psisflow.budget import Budget
from psisflow.config import WorkflowConfig
from psisflow.draws import Draw, DrawSet
from psisflow.errors import EscalationLimitExceeded
from psisflow.importance.psis import PSISResult, psis
from psisflow.importance.resample import ResampleResult, resample
from psisflow.importance.weights import LogWeights, compute_log_weights
from psisflow.likelihood import LikelihoodEvaluator, LogLikelihoodFn
from psisflow.precision import PrecisionConfig, RefineFn, make_refiner
from psisflow.rng import RNGManager
from psisflow.solvers.adapter import SolveFn, SolverAdapter, as_adapter
from psisflow.tuning import TuningResult, tune_precision

LogDensityFn = Callable[[Draw], float]
Sampler = Callable[[LogDensityFn, PrecisionConfig], DrawSet]


class Stage(str, Enum):
    FIT_LOW = "fit_low"
    TUNE_HIGH = "tune_high"
    COMPUTE_WEIGHTS = "compute_weights"
    CHECK_DIAGNOSTIC = "check_diagnostic"
    ESCALATE = "escalate"
    ACCEPT = "accept"


@dataclass(frozen=True)
class LowPrecisionDensity:
    """
    Log-likelihood closure handed to the sampler.

    The sampler adds the prior itself. SolverFailure propagates so the
    sampler decides how to treat a failed solve.
    """

    solver: SolverAdapter
    evaluator: LikelihoodEvaluator
    precision: PrecisionConfig

    def __call__(self, draw: Draw) -> float:
        return self.evaluator(self.solver.evaluate(draw.structural, self.precision), draw.aux)


@dataclass(frozen=True)
class IterationRecord:
    """Diagnostics of one pass through the loop."""

    iteration: int
    low_config: PrecisionConfig
    high_config: PrecisionConfig
    n_draws: int
    tuning_max_error: float
    tuning_refinements: int
    n_failures: int
    k_hat: float
    ess: float
    accepted: bool
    seconds: float

    def as_row(self) -> Dict[str, Any]:
        row = dataclasses.asdict(self)
        row["low_config"] = str(self.low_config)
        row["high_config"] = str(self.high_config)
        return row


@dataclass(frozen=True)
class WorkflowResult:
    resampled: ResampleResult
    k_hat: float
    low_config: PrecisionConfig
    high_config: PrecisionConfig
    low_draws: DrawSet
    log_weights: LogWeights
    psis_result: PSISResult
    tuning: TuningResult
    diagnostics: Tuple[IterationRecord, ...]

    @property
    def draws(self) -> DrawSet:
        return self.resampled.draws

    @property
    def n_escalations(self) -> int:
        return len(self.diagnostics) - 1

    def diagnostics_frame(self) -> pd.DataFrame:
        return diagnostics_frame(self.diagnostics)


def diagnostics_frame(records: List[IterationRecord] | Tuple[IterationRecord, ...]) -> pd.DataFrame:
    return pd.DataFrame([record.as_row() for record in records])


@dataclass(frozen=True)
class _Iteration:
    """Everything one pass produced, before the gate decides."""

    draws: DrawSet
    tuning: TuningResult
    log_weights: LogWeights
    psis_result: PSISResult
    record: IterationRecord


def _enter(stage: Stage, iteration: int, budget: Budget) -> None:
    budget.check(stage.value)
    logging.info("[iteration %d] %s", iteration, stage.value)


def _run_iteration(
    iteration: int,
    low: PrecisionConfig,
    high: PrecisionConfig,
    observed_data: Any,
    sampler: Sampler,
    solver: SolverAdapter,
    log_likelihood: LogLikelihoodFn,
    refine: RefineFn,
    cfg: WorkflowConfig,
    budget: Budget,
) -> _Iteration:
    start = time.perf_counter()

    _enter(Stage.FIT_LOW, iteration, budget)
    density = LowPrecisionDensity(solver, LikelihoodEvaluator(log_likelihood, observed_data), low)
    draws = sampler(density, low)
    if not isinstance(draws, DrawSet):
        raise TypeError(f"Sampler must return a DrawSet, got {type(draws).__name__}")

    _enter(Stage.TUNE_HIGH, iteration, budget)
    tuning = tune_precision(
        solver,
        draws,
        high,
        refine,
        error_bound=cfg.tuner.error_bound,
        max_refinements=cfg.tuner.max_refinements,
        n_workers=cfg.parallel.n_workers,
        backend=cfg.parallel.backend,
        max_probe_draws=cfg.tuner.max_probe_draws,
        budget=budget,
    )

    _enter(Stage.COMPUTE_WEIGHTS, iteration, budget)
    log_weights = compute_log_weights(
        draws,
        low,
        tuning.config,
        observed_data,
        solver,
        log_likelihood,
        failure_policy=cfg.weights.failure_policy,
        max_failure_fraction=cfg.weights.max_failure_fraction,
        n_workers=cfg.parallel.n_workers,
        backend=cfg.parallel.backend,
    )

    _enter(Stage.CHECK_DIAGNOSTIC, iteration, budget)
    psis_result = psis(log_weights)
    accepted = psis_result.k_hat < cfg.workflow.k_threshold
    logging.info(
        "[iteration %d] k_hat=%.3f (%s), ESS=%.1f of %d, low=%s, high=%s",
        iteration,
        psis_result.k_hat,
        psis_result.category,
        psis_result.ess,
        len(draws),
        low,
        tuning.config,
    )

    record = IterationRecord(
        iteration=iteration,
        low_config=low,
        high_config=tuning.config,
        n_draws=len(draws),
        tuning_max_error=tuning.max_error,
        tuning_refinements=tuning.n_refinements,
        n_failures=len(log_weights.failures),
        k_hat=psis_result.k_hat,
        ess=psis_result.ess,
        accepted=bool(accepted),
        seconds=time.perf_counter() - start,
    )
    return _Iteration(draws, tuning, log_weights, psis_result, record)


def run_workflow(
    initial_low_config: PrecisionConfig,
    observed_data: Any,
    sampler: Sampler,
    solver: SolverAdapter | SolveFn,
    log_likelihood: LogLikelihoodFn,
    max_escalations: Optional[int] = None,
    *,
    initial_high_config: Optional[PrecisionConfig] = None,
    escalate: Optional[RefineFn] = None,
    refine: Optional[RefineFn] = None,
    config: Optional[WorkflowConfig] = None,
    rng: Optional[np.random.Generator] = None,
    cancel_event: Optional[threading.Event] = None,
) -> WorkflowResult:
    """
    Run the fit / validate / escalate loop until the draws pass the PSIS gate.

    Args:
        initial_low_config: Cheap solver configuration for the first fit
        observed_data: Passed unchanged to ``log_likelihood``
        sampler: ``sampler(log_density, low_config) -> DrawSet``
        solver: Solve function or SolverAdapter
        log_likelihood: ``log_likelihood(data, solution, aux) -> float``
        max_escalations: Overrides ``config.workflow.max_escalations``
        initial_high_config: First reference candidate; defaults to
            ``refine(initial_low_config)``
        escalate: Policy raising the low config's fidelity; defaults to
            scaling by ``config.workflow.escalation_factors``
        refine: Refinement used by the precision tuner; defaults to scaling
            by ``config.tuner.refine_factors``
        config: Workflow settings
        rng: Generator for the final resampling
        cancel_event: Set from another thread to stop the loop

    Returns:
        WorkflowResult with the resampled draws and per-iteration diagnostics

    Raises:
        EscalationLimitExceeded: gate still failing after max_escalations
        TuningLimitExceeded: no accurate reference config found
        ExcessiveSolverFailures: too many draws failed to solve
        InsufficientDrawsError: fewer than MIN_DRAWS usable weights left for PSIS
        WorkflowCancelled: timeout or cancel_event
    """
    cfg = config or WorkflowConfig()
    limit = cfg.workflow.max_escalations if max_escalations is None else max_escalations
    refine = refine or make_refiner(cfg.tuner.refine_factors)
    escalate = escalate or make_refiner(cfg.workflow.escalation_factors)
    if rng is None:
        rng = RNGManager(cfg.resample.seed).numpy
    budget = Budget(timeout_seconds=cfg.workflow.timeout_seconds, cancel_event=cancel_event)
    adapter = as_adapter(solver)

    low = initial_low_config
    high = initial_high_config or refine(low)
    history: List[IterationRecord] = []

    iteration = 0
    while True:
        step = _run_iteration(
            iteration, low, high, observed_data, sampler, adapter, log_likelihood, refine, cfg, budget
        )
        history.append(step.record)
        high = step.tuning.config

        if step.record.accepted:
            _enter(Stage.ACCEPT, iteration, budget)
            smoothed = dataclasses.replace(step.log_weights, values=step.psis_result.smoothed_log_weights)
            resampled = resample(
                step.draws,
                smoothed,
                target_size=cfg.resample.target_size,
                rng=rng,
                replace=cfg.resample.replace,
            )
            logging.info(
                "Accepted after %d escalation(s): %d draws resampled (ESS %.1f)",
                iteration,
                len(resampled.draws),
                resampled.ess,
            )
            return WorkflowResult(
                resampled=resampled,
                k_hat=step.psis_result.k_hat,
                low_config=low,
                high_config=high,
                low_draws=step.draws,
                log_weights=step.log_weights,
                psis_result=step.psis_result,
                tuning=step.tuning,
                diagnostics=tuple(history),
            )

        if iteration >= limit:
            raise EscalationLimitExceeded(step.psis_result.k_hat, history, limit)

        _enter(Stage.ESCALATE, iteration, budget)
        escalated = escalate(low)
        if escalated == low:
            raise ValueError(f"Escalation policy left the low config unchanged ({low})")
        logging.warning(
            "k_hat=%.3f >= %.2f; escalating low config %s -> %s",
            step.psis_result.k_hat,
            cfg.workflow.k_threshold,
            low,
            escalated,
        )
        low = escalated
        iteration += 1
