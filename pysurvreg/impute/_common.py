"""
Parameter payloads for imputation and pooling results.

Each dataclass is a frozen payload carried inside a Result[P] envelope.
"""

from __future__ import annotations

from dataclasses import dataclass

from numpy.typing import NDArray

from pysurvreg.dataset.design import Dataset


@dataclass(frozen=True)
class ImputationParams:
    """Chained-equation imputation output.

    Matches the content of R's mice::mice() object.
    """

    datasets: tuple[Dataset, ...]    # (m,) completed datasets, independent chains
    visit: tuple[str, ...]           # incomplete variables in visiting order
    n_imputed: dict[str, int]        # missing entries filled per variable
    traces: dict[str, NDArray]       # variable -> (m, cycles) mean of imputed values
    rhat: dict[str, float]           # Gelman-Rubin over the second half of the traces
    converged: bool
    method: str                      # "pmm"
    m: int
    cycles: int
    donors: int
    predictors: dict[str, tuple[str, ...]]  # target -> predictor variables
    seed: int | None


@dataclass(frozen=True)
class PooledParams:
    """Rubin's-rules combination of m Cox fits.

    Matches R's mice::pool() (Barnard-Rubin degrees of freedom).
    """

    coefficients: NDArray        # (p,) Qbar, mean of the m estimates
    within: NDArray              # (p, p) Ubar, mean covariance
    between: NDArray             # (p, p) B, covariance of the estimates
    total: NDArray               # (p, p) T = Ubar + (1 + 1/m) B
    standard_errors: NDArray     # (p,) sqrt(diag(T))
    df: NDArray                  # (p,) Barnard-Rubin degrees of freedom
    riv: NDArray                 # (p,) relative increase in variance
    lambda_: NDArray             # (p,) proportion of variance due to missingness
    fmi: NDArray                 # (p,) fraction of missing information
    df_complete: float           # complete-data degrees of freedom
    m: int
    column_names: tuple[str, ...]
    n_events: int
    n_observations: int
