"""
Rubin's rules.

For m estimates Q_i with covariances U_i:

    Qbar = mean(Q_i)
    Ubar = mean(U_i)
    B    = Σ (Q_i - Qbar)(Q_i - Qbar)' / (m - 1)       (0 when m = 1)
    T    = Ubar + (1 + 1/m) B

Per coefficient, with b = diag(B), u = diag(Ubar), t = diag(T):

    riv    = (1 + 1/m) b / u
    lambda = (1 + 1/m) b / t
    df_old = (m - 1) / lambda^2
    df_obs = (v_com + 1) / (v_com + 3) * v_com * (1 - lambda)
    df     = df_old * df_obs / (df_old + df_obs)        (Barnard-Rubin)
    fmi    = (riv + 2 / (df + 3)) / (riv + 1)

Means are taken as Q_1 + mean(Q_i - Q_1), so m identical fits give
Qbar == Q_1, B == 0 and T == Ubar exactly.

References:
    Rubin, D. B. (1987). Multiple Imputation for Nonresponse in Surveys.
    Barnard, J. & Rubin, D. B. (1999). Small-sample degrees of freedom
        with multiple imputation. Biometrika, 86(4), 948-955.
    R Core Team. mice::pool
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from pysurvreg.impute._common import PooledParams


def rubin_pool(
    coefficients: NDArray,
    covariances: NDArray,
    df_complete: float,
    column_names: tuple[str, ...],
    n_events: int,
    n_observations: int,
) -> PooledParams:
    """Combine (m, p) estimates and (m, p, p) covariances."""
    m = coefficients.shape[0]

    qbar = coefficients[0] + np.mean(coefficients - coefficients[0], axis=0)
    ubar = covariances[0] + np.mean(covariances - covariances[0], axis=0)

    if m > 1:
        dev = coefficients - qbar
        between = dev.T @ dev / (m - 1)
    else:
        between = np.zeros_like(ubar)

    factor = 1.0 + 1.0 / m
    total = ubar + factor * between

    b = np.diag(between)
    u = np.diag(ubar)
    t = np.diag(total)

    riv = np.where(u > 0, factor * b / np.where(u > 0, u, 1.0), 0.0)
    lam = np.where(t > 0, factor * b / np.where(t > 0, t, 1.0), 0.0)
    df = barnard_rubin_df(lam, m, df_complete)
    fmi = np.where(np.isinf(df), 0.0, (riv + 2.0 / (df + 3.0)) / (riv + 1.0))

    return PooledParams(
        coefficients=qbar,
        within=ubar,
        between=between,
        total=total,
        standard_errors=np.sqrt(np.maximum(t, 0.0)),
        df=df,
        riv=riv,
        lambda_=lam,
        fmi=fmi,
        df_complete=float(df_complete),
        m=m,
        column_names=column_names,
        n_events=n_events,
        n_observations=n_observations,
    )


def barnard_rubin_df(lam: NDArray, m: int, df_complete: float) -> NDArray:
    """Small-sample degrees of freedom per coefficient."""
    lam = np.asarray(lam, dtype=np.float64)
    with np.errstate(divide='ignore'):
        df_old = np.where(lam > 0, (m - 1) / np.where(lam > 0, lam, 1.0) ** 2, np.inf)
    if np.isinf(df_complete):
        return df_old

    df_obs = (df_complete + 1.0) / (df_complete + 3.0) * df_complete * (1.0 - lam)
    out = np.empty_like(lam)
    finite = np.isfinite(df_old)
    out[~finite] = df_obs[~finite]
    out[finite] = df_old[finite] * df_obs[finite] / (df_old[finite] + df_obs[finite])
    return out
