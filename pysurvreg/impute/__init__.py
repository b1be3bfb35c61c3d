"""
Multiple imputation and pooling.

Public API:
    impute(dataset, m, method, max_iterations, ...) -> ImputedDatasetSet
    pool(fits) -> PooledSolution
    fit_imputed(imputed, formula, ...) -> PooledSolution

Example:
    >>> from pysurvreg.impute import impute, fit_imputed
    >>> imputed = impute(dataset, m=10, seed=1)
    >>> pooled = fit_imputed(imputed, formula)
    >>> print(pooled.summary())
"""

from pysurvreg.impute._common import ImputationParams, PooledParams
from pysurvreg.impute.solution import ImputedDatasetSet, PooledSolution
from pysurvreg.impute.solvers import fit_imputed, impute, pool

__all__ = [
    "impute",
    "pool",
    "fit_imputed",
    "ImputedDatasetSet",
    "ImputationParams",
    "PooledSolution",
    "PooledParams",
]
