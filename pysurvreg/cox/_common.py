"""
Parameter payloads for Cox regression results.

Each dataclass is a frozen payload carried inside a Result[P] envelope.
"""

from __future__ import annotations

from dataclasses import dataclass

from numpy.typing import NDArray


@dataclass(frozen=True)
class CoxParams:
    """Cox proportional hazards model parameters.

    Matches the output of R's survival::coxph().
    """

    coefficients: NDArray        # (p,) log hazard ratios
    covariance: NDArray          # (p, p) inverse observed information
    standard_errors: NDArray     # (p,)
    z_statistics: NDArray        # (p,) coef / se
    p_values: NDArray            # (p,) two-sided Wald test
    hazard_ratios: NDArray       # (p,) exp(coef)
    loglik: tuple[float, float]  # (null log-lik, model log-lik)
    score_test: float            # U(0)' I(0)^-1 U(0)
    wald_test: float             # beta' I(beta) beta
    concordance: float           # Harrell's C-statistic, within strata
    n_events: int
    n_observations: int
    n_strata: int
    n_iter: int                  # Newton-Raphson steps taken
    score_norm: float            # sqrt(U' I^-1 U) at the solution
    ties: str                    # "efron" or "breslow"
    column_names: tuple[str, ...]


@dataclass(frozen=True)
class ChunkTest:
    """Joint chi-square test of a block of coefficients."""

    label: str
    statistic: float
    df: int
    p_value: float
    method: str                  # "wald", "lr" or "zph"


@dataclass(frozen=True)
class ZPHParams:
    """Proportional-hazards test parameters.

    Matches the output of R's survival::cox.zph() (Grambsch-Therneau
    scaled Schoenfeld residual test).
    """

    column_names: tuple[str, ...]
    correlation: NDArray         # (p,) cor(g(t), scaled residual)
    statistic: NDArray           # (p,) 1-df chi-square per column
    p_values: NDArray            # (p,)
    terms: tuple[ChunkTest, ...] # block test per formula term
    global_statistic: float
    global_df: int
    global_p_value: float
    transform: str               # "rank", "identity", "log" or "km"
    event_times: NDArray         # (d,) event times, ascending
    transformed_times: NDArray   # (d,) g(t)
    scaled_residuals: NDArray    # (d, p) beta + d V r
    n_events: int
