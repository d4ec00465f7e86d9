"""
scipy.integrate.solve_ivp adapter
==================================
Builds a solve function for initial value problems whose accuracy is governed
by the ``rtol``/``atol`` controls of a PrecisionConfig, with an optional
``max_num_steps`` budget on right-hand-side evaluations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Sequence

import numpy as np
from scipy.integrate import solve_ivp

from psisflow.errors import SolverFailure
from psisflow.precision import PrecisionConfig

RhsFn = Callable[[float, np.ndarray, Mapping[str, float]], np.ndarray]
InitialFn = Callable[[Mapping[str, float]], Sequence[float]]
ObserveFn = Callable[[np.ndarray, Mapping[str, float]], np.ndarray]


class _StepBudgetExhausted(Exception):
    pass


@dataclass(frozen=True)
class IVPSolver:
    """
    Solve ``dy/dt = rhs(t, y, params)`` from ``t0`` and report the solution at
    ``t_eval``.

    Args:
        rhs: Right-hand side taking the structural parameters as third argument
        initial_state: Maps structural parameters to ``y(t0)``
        t0: Initial time
        t_eval: Observation times (all > t0)
        observe: Maps the ``(n_states, n_times)`` solution to the observed
            vector; defaults to flattening all states
        method: Any solve_ivp method name
    """

    rhs: RhsFn
    initial_state: InitialFn
    t0: float
    t_eval: Sequence[float]
    observe: Optional[ObserveFn] = None
    method: str = "RK45"

    def __call__(self, params: Mapping[str, float], precision: PrecisionConfig) -> np.ndarray:
        t_eval = np.asarray(self.t_eval, dtype=float)
        y0 = np.asarray(self.initial_state(params), dtype=float)
        max_steps = precision.get("max_num_steps")
        n_calls = 0

        def rhs(t: float, y: np.ndarray) -> np.ndarray:
            nonlocal n_calls
            n_calls += 1
            if max_steps is not None and n_calls > max_steps:
                raise _StepBudgetExhausted()
            return self.rhs(t, y, params)

        try:
            sol = solve_ivp(
                rhs,
                (self.t0, float(t_eval[-1])),
                y0,
                method=self.method,
                t_eval=t_eval,
                rtol=float(precision.get("rtol", 1e-3)),
                atol=float(precision.get("atol", 1e-6)),
            )
        except _StepBudgetExhausted:
            raise SolverFailure(
                f"step budget of {max_steps} rhs evaluations exhausted at {precision}",
                solver=self.method,
            ) from None

        if not sol.success:
            raise SolverFailure(f"solve_ivp failed at {precision}: {sol.message}", solver=self.method)
        if sol.y.shape[1] != t_eval.size:
            raise SolverFailure(
                f"solve_ivp stopped early ({sol.y.shape[1]} of {t_eval.size} points)",
                solver=self.method,
            )
        if self.observe is not None:
            return np.asarray(self.observe(sol.y, params), dtype=float)
        return sol.y.ravel()


def ivp_solver(
    rhs: RhsFn,
    initial_state: InitialFn,
    t_eval: Sequence[float],
    t0: float = 0.0,
    observe: Optional[ObserveFn] = None,
    method: str = "RK45",
) -> IVPSolver:
    return IVPSolver(
        rhs=rhs,
        initial_state=initial_state,
        t0=t0,
        t_eval=tuple(float(t) for t in t_eval),
        observe=observe,
        method=method,
    )
