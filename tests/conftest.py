from typing import Callable, Dict, List

import numpy as np
import pytest

from psisflow.config import WorkflowConfig
from psisflow.draws import DrawSet
from psisflow.precision import PrecisionConfig
from psisflow.solvers.ivp import ivp_solver

T_OBS = np.linspace(0.5, 5.0, 10)
# Noise-free observations of the trajectory every stub solver is trying to reproduce.
TRUTH = np.exp(-T_OBS)


def bump(theta: float) -> float:
    """Solver difficulty: zero for theta <= 0.8, rising to sqrt(10) at theta = 1."""
    return float(np.sqrt(10.0 * max(theta - 0.8, 0.0) / 0.2))


def biased_solver(params, precision):
    """Error proportional to the ``tol`` control, only for theta > 0.8."""
    return TRUTH + precision["tol"] * bump(params["theta"])


def stubborn_solver(params, precision):
    """Stays O(1) wrong for every tol above 1e-4."""
    tol = precision["tol"]
    scale = 1.0 if tol > 1e-4 else tol
    return TRUTH + scale * bump(params["theta"])


def decay_rhs(t, y, params):
    return -params["theta"] * y


decay_solver = ivp_solver(decay_rhs, lambda params: [1.0], T_OBS)


def decay_exact(theta: float) -> np.ndarray:
    return np.exp(-theta * T_OBS)


class StubSampler:
    """Stands in for MCMC: draws from a fixed distribution, one fresh seed per call."""

    def __init__(
        self,
        draw_fn: Callable[[np.random.Generator, int], Dict[str, np.ndarray]],
        n_draws: int,
        structural: List[str],
        seed: int = 0,
    ) -> None:
        self.draw_fn = draw_fn
        self.n_draws = n_draws
        self.structural = structural
        self.seed = seed
        self.calls: List[PrecisionConfig] = []

    def __call__(self, log_density, precision):
        self.calls.append(precision)
        rng = np.random.default_rng(self.seed + len(self.calls))
        columns = self.draw_fn(rng, self.n_draws)
        names = list(columns)
        draws = DrawSet(np.column_stack([columns[n] for n in names]), names, self.structural)
        assert np.isfinite(log_density(draws[0]))
        return draws


def uniform_theta(rng, n):
    return {"theta": rng.uniform(0.0, 1.0, n), "sigma": np.ones(n)}


@pytest.fixture
def uniform_draws():
    rng = np.random.default_rng(7)
    return DrawSet(
        np.column_stack([rng.uniform(0.0, 1.0, 400), np.ones(400)]),
        ["theta", "sigma"],
        structural=["theta"],
    )


@pytest.fixture
def tol_config():
    cfg = WorkflowConfig()
    cfg.tuner.refine_factors = {"tol": 0.1}
    cfg.tuner.error_bound = 1e-3
    cfg.workflow.escalation_factors = {"tol": 0.1}
    cfg.output.save_plots = False
    return cfg
