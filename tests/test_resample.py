import numpy as np
import pytest

from psisflow.draws import DrawSet
from psisflow.importance import LogWeights, effective_sample_size, normalize_log_weights, resample


def make_draws(n=100):
    return DrawSet(np.arange(n, dtype=float)[:, None], ["theta"])


def test_uniform_weights_keep_full_ess():
    draws = make_draws()
    result = resample(draws, np.zeros(100), rng=np.random.default_rng(0))
    assert result.ess == pytest.approx(100)
    assert len(result.draws) == 100


def test_ess_never_exceeds_draw_count():
    rng = np.random.default_rng(1)
    for scale in (1e-8, 0.3, 1.0, 5.0):
        probs = normalize_log_weights(rng.normal(0.0, scale, 250))
        assert effective_sample_size(probs) <= 250
    assert effective_sample_size(normalize_log_weights(rng.normal(0.0, 1.0, 250))) < 250


def test_dominant_weight_wins():
    log_weights = np.zeros(100)
    log_weights[42] = 60.0
    result = resample(make_draws(), log_weights, target_size=50, rng=np.random.default_rng(2))
    assert np.all(result.indices == 42)
    assert np.all(result.draws.column("theta") == 42.0)
    assert result.ess == pytest.approx(1.0)


def test_zero_weight_draws_never_selected():
    log_weights = np.zeros(100)
    log_weights[:50] = -np.inf
    result = resample(make_draws(), log_weights, target_size=500, rng=np.random.default_rng(3))
    assert result.indices.min() >= 50


def test_without_replacement():
    result = resample(make_draws(), np.zeros(100), target_size=60, rng=np.random.default_rng(4), replace=False)
    assert len(np.unique(result.indices)) == 60
    with pytest.raises(ValueError):
        resample(make_draws(), np.zeros(100), target_size=101, replace=False)


def test_log_weights_map_back_to_draws():
    weights = LogWeights(
        values=np.zeros(3),
        draw_indices=np.array([5, 7, 9]),
        n_draws=100,
        log_lik_low=np.zeros(100),
        log_lik_high=np.zeros(100),
        policy="drop",
    )
    result = resample(make_draws(), weights, target_size=200, rng=np.random.default_rng(5))
    assert set(result.indices) <= {5, 7, 9}


def test_resampled_draws_are_a_fresh_set():
    draws = make_draws()
    result = resample(draws, np.zeros(100), rng=np.random.default_rng(6))
    assert not np.shares_memory(result.draws.values, draws.values)
    assert result.draws.names == draws.names


def test_seeded_resampling_is_reproducible():
    log_weights = np.random.default_rng(7).normal(size=100)
    first = resample(make_draws(), log_weights, rng=np.random.default_rng(8))
    second = resample(make_draws(), log_weights, rng=np.random.default_rng(8))
    assert np.array_equal(first.indices, second.indices)


@pytest.mark.parametrize("log_weights", [np.zeros(99), np.full(100, -np.inf)])
def test_bad_weights_rejected(log_weights):
    with pytest.raises(ValueError):
        resample(make_draws(), log_weights)
