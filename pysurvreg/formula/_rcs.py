"""
Restricted cubic splines (Harrell's parameterisation).

With knots t_1 < ... < t_k the basis has k - 1 columns: x itself and,
for j = 1..k-2,

    f_j(x) = [ (x - t_j)+^3
               - (x - t_{k-1})+^3 (t_k - t_j) / (t_k - t_{k-1})
               + (x - t_k)+^3 (t_{k-1} - t_j) / (t_k - t_{k-1}) ] / (t_k - t_1)^2

Each f_j is cubic between knots and linear beyond the outer knots. The
(t_k - t_1)^2 scaling keeps the nonlinear columns on the scale of x.

References:
    Harrell, F. E. (2015). Regression Modeling Strategies, 2nd ed., §2.4.5.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from pysurvreg.core.exceptions import InsufficientDataError


def knot_quantiles(k: int) -> NDArray:
    """Quantile levels for k knots: 0.05, k-2 evenly spaced, 0.95."""
    return np.linspace(0.05, 0.95, k)


def place_knots(x: NDArray, k: int, name: str = "x") -> NDArray:
    """Knots at :func:`knot_quantiles` of the observed values.

    Raises
    ------
    InsufficientDataError
        If x has fewer than k distinct values, or the quantiles coincide.
    """
    n_distinct = len(np.unique(x))
    if n_distinct < k:
        raise InsufficientDataError(
            f"rcs({name}, {k}): needs at least {k} distinct values, "
            f"got {n_distinct}",
            required=k,
            available=n_distinct,
        )
    knots = np.quantile(x, knot_quantiles(k))
    if np.any(np.diff(knots) <= 0):
        raise InsufficientDataError(
            f"rcs({name}, {k}): quantile knots coincide ({knots}); "
            f"use fewer knots or explicit positions",
            required=k,
            available=len(np.unique(knots)),
        )
    return knots


def check_knots(knots: NDArray, name: str = "x") -> NDArray:
    """Validate explicit knot positions."""
    knots = np.asarray(knots, dtype=np.float64)
    if len(knots) < 3 or np.any(np.diff(knots) <= 0) or not np.all(np.isfinite(knots)):
        raise InsufficientDataError(
            f"rcs({name}): knots must be at least 3 finite, strictly "
            f"increasing values, got {knots}",
            required=3,
            available=len(knots),
        )
    return knots


def rcs_basis(x: NDArray, knots: NDArray) -> NDArray:
    """Evaluate the restricted cubic spline basis.

    Parameters
    ----------
    x : NDArray
        (n,) values.
    knots : NDArray
        (k,) strictly increasing knots.

    Returns
    -------
    NDArray
        (n, k - 1): x followed by the k - 2 nonlinear columns.
    """
    x = np.asarray(x, dtype=np.float64)
    k = len(knots)
    t_km1 = knots[k - 2]
    t_k = knots[k - 1]
    norm = (t_k - knots[0]) ** 2
    span = t_k - t_km1

    basis = np.empty((len(x), k - 1), dtype=np.float64)
    basis[:, 0] = x

    tail_km1 = np.maximum(x - t_km1, 0.0) ** 3
    tail_k = np.maximum(x - t_k, 0.0) ** 3
    for j in range(k - 2):
        t_j = knots[j]
        basis[:, j + 1] = (
            np.maximum(x - t_j, 0.0) ** 3
            - tail_km1 * (t_k - t_j) / span
            + tail_k * (t_km1 - t_j) / span
        ) / norm

    return basis
