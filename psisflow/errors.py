from __future__ import annotations

from typing import Any, List, Optional, Sequence


class WorkflowError(Exception):
    """Base class for errors raised by the validation workflow."""


class SolverFailure(WorkflowError):
    """The solver could not produce a result at the requested precision.

    Raised for non-convergence, an exhausted step budget or a numerical
    blow-up. Callers must treat the draw/config combination as unreliable,
    never as a zero-error result.
    """

    def __init__(self, message: str, solver: Optional[str] = None) -> None:
        super().__init__(message)
        self.solver = solver


class InsufficientDrawsError(WorkflowError):
    """Too few draws for the Pareto tail fit to mean anything."""

    def __init__(self, n_draws: int, min_draws: int) -> None:
        super().__init__(
            f"PSIS needs at least {min_draws} finite log weights, got {n_draws}"
        )
        self.n_draws = n_draws
        self.min_draws = min_draws


class EscalationLimitExceeded(WorkflowError):
    """The loop kept failing the reliability gate after every escalation."""

    def __init__(self, k_hat: float, history: Sequence[Any], max_escalations: int) -> None:
        super().__init__(
            f"k_hat={k_hat:.3f} still above threshold after "
            f"{max_escalations} escalation(s) ({len(history)} iteration(s))"
        )
        self.k_hat = k_hat
        self.history = list(history)
        self.max_escalations = max_escalations


class TuningLimitExceeded(WorkflowError):
    """The high-precision candidate never reached the error bound."""

    def __init__(self, max_error: float, error_bound: float, config: Any, history: Sequence[Any]) -> None:
        super().__init__(
            f"max error {max_error:.3e} above bound {error_bound:.3e} "
            f"after {len(history)} probe round(s) (last config {config})"
        )
        self.max_error = max_error
        self.error_bound = error_bound
        self.config = config
        self.history = list(history)


class ExcessiveSolverFailures(WorkflowError):
    """Too many draws failed to solve for the remaining weights to be trusted."""

    def __init__(self, failures: List[Any], n_draws: int, max_fraction: float) -> None:
        super().__init__(
            f"{len(failures)} of {n_draws} draws failed to solve "
            f"(allowed fraction {max_fraction:.2%})"
        )
        self.failures = list(failures)
        self.n_draws = n_draws
        self.max_fraction = max_fraction


class WorkflowCancelled(WorkflowError):
    """Raised when the wall-clock budget runs out or cancellation is requested."""


class InvalidLikelihood(WorkflowError):
    """The observation model returned NaN or +inf for a draw."""
