"""
Solver Adapter
===============
Uniform wrapper around an external solve function.

The wrapped function maps (structural parameters, precision config) to the
solution evaluated at the observation points. The adapter guarantees that a
caller either gets a finite vector of the expected size or a SolverFailure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import numpy as np

from psisflow.errors import SolverFailure
from psisflow.precision import PrecisionConfig

SolveFn = Callable[[Mapping[str, float], PrecisionConfig], Any]

# Numerical trouble raised by solve functions; anything else is a bug and propagates.
NUMERICAL_ERRORS = (ArithmeticError, np.linalg.LinAlgError)


@dataclass(frozen=True)
class SolverAdapter:
    """Stateless, deterministic wrapper; safe to call from several workers."""

    solve_fn: SolveFn
    name: Optional[str] = None
    expected_size: Optional[int] = None

    @property
    def label(self) -> str:
        return self.name or getattr(self.solve_fn, "__name__", type(self.solve_fn).__name__)

    def evaluate(self, structural_params: Mapping[str, float], precision: PrecisionConfig) -> np.ndarray:
        try:
            raw = self.solve_fn(structural_params, precision)
        except SolverFailure:
            raise
        except NUMERICAL_ERRORS as exc:
            raise SolverFailure(f"{self.label}: {type(exc).__name__}: {exc}", solver=self.label) from exc

        result = np.asarray(raw, dtype=float).ravel()
        if self.expected_size is not None and result.size != self.expected_size:
            raise SolverFailure(
                f"{self.label}: expected {self.expected_size} values, got {result.size} "
                f"at {precision}",
                solver=self.label,
            )
        if not np.all(np.isfinite(result)):
            raise SolverFailure(
                f"{self.label}: non-finite solution at {precision}", solver=self.label
            )
        return result

    __call__ = evaluate


def as_adapter(solver: SolverAdapter | SolveFn) -> SolverAdapter:
    if isinstance(solver, SolverAdapter):
        return solver
    return SolverAdapter(solve_fn=solver)
