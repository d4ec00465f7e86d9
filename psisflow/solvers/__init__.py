"""
Numerical Solver Interfaces
============================
The workflow treats ODE/PDE solvers as black boxes with a precision knob.

Key components:
1. SolverAdapter: uniform evaluate(params, precision) contract with
   SolverFailure on non-convergence or blow-up
2. IVPSolver: ready-made solve function over scipy's solve_ivp
"""

from psisflow.solvers.adapter import (
    SolverAdapter,
    SolveFn,
    as_adapter,
)

from psisflow.solvers.ivp import (
    IVPSolver,
    ivp_solver,
)

__all__ = [
    "SolverAdapter",
    "SolveFn",
    "as_adapter",
    "IVPSolver",
    "ivp_solver",
]
