"""
Test of the proportional-hazards assumption.

Grambsch & Therneau (1994): under PH the scaled Schoenfeld residuals
have no trend in time. With Schoenfeld residuals r (d x p), the fit's
covariance V, d events and a transform g of the event times:

    xx     = g(t) - mean(g(t))
    r2     = d * r @ V                      (scaled residuals - beta)
    per column k:
        T_k = xx @ r2[:, k]
        z_k = T_k^2 / (V_kk * d * Σ xx^2)  ~ chi2(1)
    global:
        T   = xx @ r
        z   = d * T' V T / Σ xx^2          ~ chi2(p)

A block of columns J uses z_J = t_J' V_JJ^{-1} t_J / (d Σ xx^2) with
t_J = (xx @ r2)[J], which reduces to z_k for one column and to the
global statistic for all of them.

References:
    Grambsch, P. M. & Therneau, T. M. (1994). Proportional hazards tests
        and diagnostics based on weighted residuals. Biometrika, 81(3).
    R Core Team. survival::cox.zph (survival 2.x)
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pysurvreg.core.exceptions import InsufficientDataError, ValidationError
from pysurvreg.cox._common import ChunkTest, CoxParams, ZPHParams
from pysurvreg.cox._cox import PartialLikelihood

TRANSFORMS = ("rank", "identity", "log", "km")


def transform_times(
    event_times: NDArray,
    time: NDArray,
    event: NDArray,
    transform: str,
) -> NDArray:
    """Transform sorted event times.

    "km" is 1 - KM(t-), the Kaplan-Meier estimate (all data, strata
    ignored) just before each event time.
    """
    if transform == "rank":
        return stats.rankdata(event_times)
    if transform == "identity":
        return np.asarray(event_times, dtype=np.float64)
    if transform == "log":
        return np.log(event_times)
    if transform == "km":
        unique, deaths = np.unique(time[event == 1], return_counts=True)
        at_risk = np.array([np.sum(time >= t) for t in unique], dtype=np.float64)
        surv = np.cumprod(1.0 - deaths / at_risk)
        before = np.concatenate([[1.0], surv[:-1]])
        return 1.0 - before[np.searchsorted(unique, event_times)]
    raise ValidationError(
        f"transform must be one of {TRANSFORMS}, got {transform!r}"
    )


def zph_test(
    params: CoxParams,
    time: NDArray,
    event: NDArray,
    X: NDArray,
    strata: NDArray | None,
    term_slices: dict[str, tuple[int, ...]] | None,
    transform: str = "rank",
) -> ZPHParams:
    """Scaled Schoenfeld residual test for a fitted Cox model.

    Parameters
    ----------
    params : CoxParams
        The fit to check; never modified.
    time, event, X, strata
        The data the model was fitted on.
    term_slices : dict or None
        Term label -> column indices for the block tests. None tests
        each column as its own term.
    transform : str
        Time transform: "rank" (default), "identity", "log" or "km".
    """
    if transform not in TRANSFORMS:
        raise ValidationError(
            f"transform must be one of {TRANSFORMS}, got {transform!r}"
        )

    beta = params.coefficients
    V = params.covariance
    model = PartialLikelihood(time, event, X, strata, params.ties)
    event_times, resid = model.schoenfeld(beta)
    d = len(event_times)
    if d < 2:
        raise InsufficientDataError(
            f"PH test needs at least 2 events, got {d}", required=2, available=d,
        )

    g = transform_times(event_times, time, event, transform)
    xx = g - np.mean(g)
    ss = float(xx @ xx)
    if ss <= 0:
        raise InsufficientDataError(
            "PH test needs distinct transformed event times; all events "
            "happen at one time",
            required=2,
            available=1,
        )

    r2 = d * resid @ V
    test = xx @ r2
    var_diag = np.diag(V)
    z = test ** 2 / (var_diag * d * ss)
    p_values = stats.chi2.sf(z, 1)
    corr = np.array([_correlation(xx, r2[:, k]) for k in range(len(beta))])

    t_global = xx @ resid
    z_global = float(d * (t_global @ V @ t_global) / ss)
    p = len(beta)

    if term_slices is None:
        term_slices = {name: (j,) for j, name in enumerate(params.column_names)}
    terms = []
    for label, cols in term_slices.items():
        cols = list(cols)
        block = V[np.ix_(cols, cols)]
        t = test[cols]
        stat = float(t @ np.linalg.solve(block, t) / (d * ss))
        terms.append(ChunkTest(
            label=label,
            statistic=stat,
            df=len(cols),
            p_value=float(stats.chi2.sf(stat, len(cols))),
            method="zph",
        ))

    return ZPHParams(
        column_names=params.column_names,
        correlation=corr,
        statistic=z,
        p_values=p_values,
        terms=tuple(terms),
        global_statistic=z_global,
        global_df=p,
        global_p_value=float(stats.chi2.sf(z_global, p)),
        transform=transform,
        event_times=event_times,
        transformed_times=g,
        scaled_residuals=r2 + beta[None, :],
        n_events=d,
    )


def _correlation(a: NDArray, b: NDArray) -> float:
    sa = np.std(a)
    sb = np.std(b)
    if sa == 0 or sb == 0:
        return 0.0
    return float(np.mean((a - a.mean()) * (b - b.mean())) / (sa * sb))
