"""
Importance Sampling Validation
===============================
Checks a posterior fitted with a cheap solver against a trusted reference
solver, and corrects it when the check passes.

Key components:
1. Log weights: per-draw log-likelihood ratio high vs low precision
2. PSIS: Pareto tail smoothing of the weights and the k-hat diagnostic
3. Resampling: unweighted draws from the weighted ones

References:
- Vehtari, A., et al. (2024). Pareto smoothed importance sampling
- Timonen, J., et al. (2023). An importance sampling approach for reliable
  and efficient inference in Bayesian ordinary differential equation models
"""

from psisflow.importance.weights import (
    DrawFailure,
    LogWeights,
    compute_log_weights,
)

from psisflow.importance.psis import (
    K_RELIABLE,
    K_UNRELIABLE,
    MIN_DRAWS,
    PSISResult,
    fit_generalized_pareto,
    pareto_k_category,
    psis,
)

from psisflow.importance.resample import (
    ResampleResult,
    effective_sample_size,
    normalize_log_weights,
    resample,
)

__all__ = [
    "DrawFailure",
    "LogWeights",
    "compute_log_weights",
    "K_RELIABLE",
    "K_UNRELIABLE",
    "MIN_DRAWS",
    "PSISResult",
    "fit_generalized_pareto",
    "pareto_k_category",
    "psis",
    "ResampleResult",
    "effective_sample_size",
    "normalize_log_weights",
    "resample",
]
