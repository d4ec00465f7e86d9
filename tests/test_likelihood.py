import numpy as np
import pytest
from scipy import stats
from scipy.special import gammaln

from psisflow.errors import InvalidLikelihood
from psisflow.likelihood import (
    LikelihoodEvaluator,
    gaussian_log_likelihood,
    get_observation_model,
    neg_binomial_log_likelihood,
)


def test_gaussian_matches_scipy():
    data = np.array([0.1, -0.3, 2.0])
    solution = np.array([0.0, 0.0, 1.5])
    expected = stats.norm.logpdf(data, solution, 0.5).sum()
    assert gaussian_log_likelihood(data, solution, {"sigma": 0.5}) == pytest.approx(expected)
    assert gaussian_log_likelihood(data, solution, {"sigma": 0.0}) == -np.inf


def test_neg_binomial_mean_dispersion_form():
    counts = np.array([0, 3, 12])
    mu = np.array([0.5, 4.0, 10.0])
    phi = 2.5
    expected = np.sum(
        gammaln(counts + phi)
        - gammaln(phi)
        - gammaln(counts + 1)
        + phi * np.log(phi / (phi + mu))
        + counts * np.log(mu / (phi + mu))
    )
    assert neg_binomial_log_likelihood(counts, mu, {"phi": phi}) == pytest.approx(expected)


def test_neg_binomial_non_positive_mean():
    assert neg_binomial_log_likelihood(np.array([1]), np.array([0.0]), {"phi": 1.0}) == -np.inf
    assert neg_binomial_log_likelihood(np.array([1]), np.array([-2.0]), {"phi": 1.0}) == -np.inf


def test_neg_binomial_extreme_means_stay_finite():
    assert np.isfinite(neg_binomial_log_likelihood(np.array([0]), np.array([1e-300]), {"phi": 3.0}))
    assert np.isfinite(neg_binomial_log_likelihood(np.array([10**9]), np.array([1e9]), {"phi": 3.0}))


def test_registry_lookup():
    assert get_observation_model("gaussian") is gaussian_log_likelihood
    with pytest.raises(ValueError):
        get_observation_model("poisson")


def test_evaluator_rejects_nan():
    evaluator = LikelihoodEvaluator(lambda data, solution, aux: np.nan, data=None)
    with pytest.raises(InvalidLikelihood):
        evaluator(np.zeros(2), {})


def test_evaluator_passes_neg_inf():
    evaluator = LikelihoodEvaluator(gaussian_log_likelihood, data=np.zeros(2))
    assert evaluator(np.zeros(2), {"sigma": -1.0}) == -np.inf
