"""
Predictive mean matching.

Type-1 matching (van Buuren 2018, §3.4.2): the regression of the target
on its predictors is fitted on the observed rows. Donors keep the
predictions of that fit; recipients get predictions from a bootstrap
refit, which carries parameter uncertainty into the draws. Each
recipient picks one of its ``donors`` nearest donors uniformly and takes
that donor's observed value.

A categorical target is regressed as its one-hot indicator matrix and
matched on the Euclidean distance between predicted indicator vectors,
so imputed values are always observed levels.

References:
    Little, R. J. A. (1988). Missing-data adjustments in large surveys.
        JBES, 6(3), 287-296.
    van Buuren, S. (2018). Flexible Imputation of Missing Data, 2nd ed.
    R Core Team. mice::mice.impute.pmm
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from pysurvreg.core.compute.linalg.qr import ridge_solve_cpu
from pysurvreg.core.compute.tolerances import PMM_DONORS, PMM_RIDGE


def pmm_donors(
    X_obs: NDArray,
    y_obs: NDArray,
    X_mis: NDArray,
    rng: np.random.Generator,
    donors: int = PMM_DONORS,
    ridge: float = PMM_RIDGE,
) -> NDArray:
    """Draw one donor per recipient.

    Parameters
    ----------
    X_obs : NDArray
        (n_obs, q) predictors of the observed rows, intercept included.
    y_obs : NDArray
        (n_obs,) observed values, or (n_obs, L) one-hot indicators.
    X_mis : NDArray
        (n_mis, q) predictors of the rows to fill.
    rng : numpy.random.Generator
    donors : int
        Size of the nearest-donor pool.
    ridge : float
        Ridge factor of the regressions.

    Returns
    -------
    NDArray
        (n_mis,) indices into the observed rows.
    """
    n_obs = X_obs.shape[0]
    k = min(donors, n_obs)

    coef = ridge_solve_cpu(X_obs, y_obs, ridge)
    boot = rng.integers(0, n_obs, size=n_obs)
    coef_star = ridge_solve_cpu(X_obs[boot], y_obs[boot], ridge)

    yhat_obs = X_obs @ coef
    yhat_mis = X_mis @ coef_star

    if yhat_obs.ndim == 1:
        dist = np.abs(yhat_mis[:, None] - yhat_obs[None, :])
    else:
        diff = yhat_mis[:, None, :] - yhat_obs[None, :, :]
        dist = np.einsum('ijk,ijk->ij', diff, diff)

    if k < n_obs:
        nearest = np.argpartition(dist, k - 1, axis=1)[:, :k]
    else:
        nearest = np.tile(np.arange(n_obs), (X_mis.shape[0], 1))
    pick = rng.integers(0, k, size=X_mis.shape[0])
    return nearest[np.arange(X_mis.shape[0]), pick]
