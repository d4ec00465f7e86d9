import numpy as np
import pytest
from scipy import stats
from scipy.special import logsumexp

from psisflow.errors import InsufficientDrawsError
from psisflow.importance.psis import (
    MIN_DRAWS,
    fit_generalized_pareto,
    pareto_k_category,
    psis,
    tail_length,
)


def test_tail_length_rule():
    assert tail_length(21) == 5
    assert tail_length(100) == 20
    assert tail_length(10_000) == 300


def test_equal_weights_are_perfectly_reliable():
    result = psis(np.full(100, -3.2))
    assert result.k_hat == 0.0
    assert result.ess == pytest.approx(100)
    assert np.allclose(result.smoothed_log_weights, -np.log(100))


def test_light_tail_is_reliable():
    log_weights = np.random.default_rng(0).normal(0.0, 0.1, 2000)
    result = psis(log_weights)
    assert result.k_hat < 0.5
    assert result.category == "good"
    assert result.is_reliable()


def test_heavy_tail_is_flagged():
    # log of Lomax(1) weights: tail index k = 1
    log_weights = np.log1p(np.random.default_rng(1).pareto(1.0, 2000))
    result = psis(log_weights)
    assert result.k_hat > 0.7
    assert result.category == "bad"
    assert not result.is_reliable()


def test_gpd_fit_recovers_shape():
    sample = stats.genpareto.rvs(c=0.3, scale=2.0, size=4000, random_state=2)
    k, sigma = fit_generalized_pareto(sample)
    assert k == pytest.approx(0.3, abs=0.1)
    assert sigma == pytest.approx(2.0, rel=0.2)


def test_smoothed_weights_normalized_and_aligned():
    rng = np.random.default_rng(3)
    log_weights = rng.normal(0.0, 1.0, 500)
    result = psis(log_weights)
    assert result.smoothed_log_weights.shape == log_weights.shape
    assert logsumexp(result.smoothed_log_weights) == pytest.approx(0.0, abs=1e-10)
    assert np.isclose(result.normalized_weights().sum(), 1.0)
    # the bulk keeps its order; smoothing only touches the tail
    bulk = np.argsort(log_weights)[: 500 - result.tail_length]
    assert np.allclose(
        result.smoothed_log_weights[bulk] - log_weights[bulk],
        result.smoothed_log_weights[bulk[0]] - log_weights[bulk[0]],
    )


def test_smoothing_never_exceeds_the_largest_raw_weight():
    log_weights = np.log1p(np.random.default_rng(4).pareto(0.8, 1000))
    result = psis(log_weights)
    lowest = np.argmin(log_weights)
    raw_gap = log_weights - log_weights[lowest]
    smoothed_gap = result.smoothed_log_weights - result.smoothed_log_weights[lowest]
    assert smoothed_gap.max() <= raw_gap.max() + 1e-9


def test_deterministic():
    log_weights = np.random.default_rng(5).standard_t(3, 300)
    first = psis(log_weights)
    second = psis(log_weights.copy())
    assert np.array_equal(first.smoothed_log_weights, second.smoothed_log_weights)
    assert first.k_hat == second.k_hat


def test_neg_inf_draws_carried_through():
    log_weights = np.random.default_rng(6).normal(0.0, 0.5, 200)
    log_weights[[3, 50, 199]] = -np.inf
    result = psis(log_weights)
    assert np.all(result.smoothed_log_weights[[3, 50, 199]] == -np.inf)
    assert np.sum(np.isfinite(result.smoothed_log_weights)) == 197
    assert logsumexp(result.smoothed_log_weights) == pytest.approx(0.0, abs=1e-10)
    assert result.ess <= 197


def test_too_few_draws():
    with pytest.raises(InsufficientDrawsError) as info:
        psis(np.random.default_rng(7).normal(size=MIN_DRAWS - 1))
    assert info.value.min_draws == MIN_DRAWS
    assert np.isfinite(psis(np.random.default_rng(7).normal(size=MIN_DRAWS)).k_hat)


def test_too_few_finite_draws():
    log_weights = np.zeros(50)
    log_weights[:30] = -np.inf
    with pytest.raises(InsufficientDrawsError):
        psis(log_weights)


def test_degenerate_tail_is_unreliable():
    # three outliers over a flat bulk: no tail to fit
    log_weights = np.zeros(100)
    log_weights[-3:] = [5.0, 6.0, 7.0]
    result = psis(log_weights)
    assert result.k_hat == np.inf
    assert result.category == "bad"


@pytest.mark.parametrize("bad", [np.nan, np.inf])
def test_invalid_values_rejected(bad):
    log_weights = np.zeros(50)
    log_weights[10] = bad
    with pytest.raises(ValueError):
        psis(log_weights)


def test_ess_bounded_by_draw_count():
    rng = np.random.default_rng(8)
    for scale in (0.01, 0.5, 2.0, 10.0):
        result = psis(rng.normal(0.0, scale, 300))
        assert 1.0 <= result.ess <= 300
    assert psis(rng.normal(0.0, 2.0, 300)).ess < 300


def test_categories():
    assert pareto_k_category(0.2) == "good"
    assert pareto_k_category(0.6) == "ok"
    assert pareto_k_category(0.7) == "bad"
    assert pareto_k_category(np.inf) == "bad"
