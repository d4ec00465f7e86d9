import numpy as np
import pytest

from psisflow.errors import SolverFailure
from psisflow.precision import PrecisionConfig
from psisflow.solvers import SolverAdapter, as_adapter, ivp_solver

from conftest import T_OBS, decay_exact, decay_solver

TIGHT = PrecisionConfig.of(rtol=1e-8, atol=1e-10)


def test_ivp_matches_closed_form():
    solution = as_adapter(decay_solver).evaluate({"theta": 0.7}, TIGHT)
    assert solution.shape == T_OBS.shape
    assert np.allclose(solution, decay_exact(0.7), atol=1e-7)


def test_ivp_is_deterministic():
    adapter = as_adapter(decay_solver)
    loose = PrecisionConfig.of(rtol=1e-2, atol=1e-4)
    assert np.array_equal(adapter({"theta": 1.3}, loose), adapter({"theta": 1.3}, loose))


def test_step_budget_exhaustion_is_a_failure():
    budgeted = PrecisionConfig.of(rtol=1e-10, atol=1e-12, max_num_steps=20)
    with pytest.raises(SolverFailure, match="step budget"):
        decay_solver({"theta": 1.0}, budgeted)


def test_blow_up_is_a_failure():
    # y' = y^2, y(0) = 1 escapes to infinity at t = 1
    blow_up = ivp_solver(lambda t, y, p: y**2, lambda p: [1.0], t_eval=[0.5, 2.0])
    with pytest.raises(SolverFailure):
        as_adapter(blow_up).evaluate({}, PrecisionConfig.of(rtol=1e-6, atol=1e-9, max_num_steps=50_000))


def test_observe_selects_outputs():
    def rhs(t, y, p):
        return np.array([-p["theta"] * y[0], p["theta"] * y[0]])

    solver = ivp_solver(rhs, lambda p: [1.0, 0.0], T_OBS, observe=lambda y, p: y[1])
    solution = solver({"theta": 0.5}, TIGHT)
    assert np.allclose(solution, 1.0 - np.exp(-0.5 * T_OBS), atol=1e-7)


def test_adapter_wraps_numerical_errors():
    def divide(params, precision):
        return np.array([1.0 / params["x"]])

    adapter = SolverAdapter(divide, name="divide")
    with pytest.raises(SolverFailure) as info:
        adapter.evaluate({"x": 0}, TIGHT)
    assert info.value.solver == "divide"


def test_adapter_rejects_non_finite_output():
    adapter = as_adapter(lambda params, precision: np.array([1.0, np.nan]))
    with pytest.raises(SolverFailure, match="non-finite"):
        adapter.evaluate({}, TIGHT)


def test_adapter_checks_output_size():
    adapter = SolverAdapter(lambda params, precision: np.zeros(3), expected_size=4)
    with pytest.raises(SolverFailure):
        adapter.evaluate({}, TIGHT)


def test_adapter_lets_programming_errors_through():
    adapter = as_adapter(lambda params, precision: params["missing"])
    with pytest.raises(KeyError):
        adapter.evaluate({}, TIGHT)
