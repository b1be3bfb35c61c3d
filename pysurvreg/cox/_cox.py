"""
Cox Proportional Hazards model via Newton-Raphson.

Implements Efron's and Breslow's methods for tied event times on the
(optionally stratified) partial likelihood, matching R's survival::coxph().

Algorithm:
    Initialize β = 0
    Repeat:
        Compute: partial log-likelihood L(β), score U(β), information I(β)
        Check I(β) is positive definite (Cholesky + condition threshold)
        Stop when sqrt(U' I^{-1} U) < tol
        β_new = β + I(β)^{-1} @ U(β), capped and halved while L decreases

Efron's partial likelihood (R default), per stratum:
    L(β) = Σ_{j: event times} [ Σ_{i ∈ D_j} x_i @ β
            - Σ_{s=0}^{d_j-1} log(Σ_{l ∈ R_j} exp(x_l @ β)
                - (s/d_j) * Σ_{i ∈ D_j} exp(x_i @ β)) ]

    where D_j = set of events at time t_j, d_j = |D_j|,
          R_j = risk set at time t_j (same stratum, time >= t_j).

Breslow is the same sum with s/d_j replaced by 0, so the two coincide
exactly when no event times are tied.

Risk-set sums S0, S1, S2 come from reverse cumulative sums over each
stratum sorted by time; every tied death contributes one "slot" with
its Efron fraction, so one iteration is a handful of array reductions.

References:
    Cox, D. R. (1972). Regression models and life-tables. JRSS-B, 34(2), 187-220.
    Efron, B. (1977). The efficiency of Cox's likelihood function for
        censored data. JASA, 72(359), 557-565.
    Therneau, T. M. & Grambsch, P. M. (2000). Modeling Survival Data.
    R Core Team. survival::coxph, coxfit6
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import linalg, stats

from pysurvreg.core.compute.tolerances import (
    COX_MAX_HALVINGS,
    COX_MAX_ITER,
    COX_MAX_STEP,
    COX_TOL,
    SINGULARITY_THRESHOLD,
)
from pysurvreg.core.exceptions import (
    FitCancelledError,
    NonConvergenceError,
    SingularInformationError,
)
from pysurvreg.cox._common import CoxParams

# Log-likelihood decreases smaller than this (relative) are rounding noise
_LL_SLACK = np.sqrt(np.finfo(np.float64).eps)


class _Stratum:
    """Risk-set layout of one stratum, fixed across iterations."""

    __slots__ = ('rows', 'start', 'deaths', 'death_group', 'slot_group',
                 'slot_frac', 'n_groups', 'event_times')

    def __init__(self, rows: NDArray, time: NDArray, event: NDArray, ties: str):
        rows = rows[np.argsort(time[rows], kind='stable')]
        t = time[rows]
        dead = event[rows] > 0

        event_times, counts = np.unique(t[dead], return_counts=True)

        self.rows = rows
        self.event_times = event_times
        self.n_groups = len(event_times)
        # First row at risk at each event time (sorted ascending)
        self.start = np.searchsorted(t, event_times, side='left')
        self.deaths = np.flatnonzero(dead)
        self.death_group = np.searchsorted(event_times, t[dead])
        self.slot_group = np.repeat(np.arange(self.n_groups), counts)
        if ties == "efron":
            self.slot_frac = np.concatenate(
                [np.arange(d, dtype=np.float64) / d for d in counts]
            ) if len(counts) else np.zeros(0)
        else:
            self.slot_frac = np.zeros(len(self.slot_group))


class PartialLikelihood:
    """Stratified Cox partial likelihood for fixed data.

    Parameters
    ----------
    time : NDArray
        (n,) times.
    event : NDArray
        (n,) 0/1 event indicator.
    X : NDArray
        (n, p) covariates.
    strata : NDArray or None
        (n,) integer stratum ids.
    ties : str
        "efron" or "breslow".
    """

    def __init__(
        self,
        time: NDArray,
        event: NDArray,
        X: NDArray,
        strata: NDArray | None = None,
        ties: str = "efron",
    ):
        self.time = time
        self.event = event
        self.X = X
        self.ties = ties
        if strata is None:
            groups = [np.arange(len(time))]
        else:
            groups = [np.flatnonzero(strata == s) for s in np.unique(strata)]
        self.strata = [_Stratum(rows, time, event, ties) for rows in groups]

    @property
    def p(self) -> int:
        return self.X.shape[1]

    def _slots(self, st: _Stratum, beta: NDArray):
        """Per-slot risk-set moments of one stratum.

        Returns (x_sorted, eta_c, mean, second, denom) where ``mean`` and
        ``second`` are the Efron-adjusted first and second moments of the
        risk set for every death slot.
        """
        x = self.X[st.rows]
        eta = x @ beta
        # Centering cancels in the partial likelihood
        eta_c = eta - np.max(eta)
        w = np.exp(eta_c)

        wx = w[:, None] * x
        wxx = wx[:, :, None] * x[:, None, :]
        rc0 = np.cumsum(w[::-1])[::-1]
        rc1 = np.cumsum(wx[::-1], axis=0)[::-1]
        rc2 = np.cumsum(wxx[::-1], axis=0)[::-1]

        S0 = rc0[st.start]
        S1 = rc1[st.start]
        S2 = rc2[st.start]

        J, p = st.n_groups, x.shape[1]
        d = st.deaths
        D0 = np.bincount(st.death_group, weights=w[d], minlength=J)
        D1 = np.zeros((J, p))
        np.add.at(D1, st.death_group, wx[d])
        D2 = np.zeros((J, p, p))
        np.add.at(D2, st.death_group, wxx[d])

        g = st.slot_group
        f = st.slot_frac
        denom = S0[g] - f * D0[g]
        mean = (S1[g] - f[:, None] * D1[g]) / denom[:, None]
        second = (S2[g] - f[:, None, None] * D2[g]) / denom[:, None, None]
        return x, eta_c, mean, second, denom

    def evaluate(self, beta: NDArray) -> tuple[float, NDArray, NDArray, NDArray]:
        """Log-likelihood, score, information and uncentered scale.

        Returns
        -------
        (loglik, score, info, scale)
            loglik : float
            score : (p,) gradient of the log partial likelihood
            info : (p, p) observed information (negative Hessian)
            scale : (p,) diagonal of the uncentered second moment, the
                yardstick for judging information near zero
        """
        p = self.p
        loglik = 0.0
        score = np.zeros(p)
        info = np.zeros((p, p))
        scale = np.zeros(p)

        for st in self.strata:
            if st.n_groups == 0:
                continue
            x, eta_c, mean, second, denom = self._slots(st, beta)
            loglik += float(np.sum(eta_c[st.deaths]) - np.sum(np.log(denom)))
            score += x[st.deaths].sum(axis=0) - mean.sum(axis=0)
            second_sum = second.sum(axis=0)
            info += second_sum - mean.T @ mean
            scale += np.diag(second_sum)

        return loglik, score, info, scale

    def loglik(self, beta: NDArray) -> float:
        return self.evaluate(beta)[0]

    def schoenfeld(self, beta: NDArray) -> tuple[NDArray, NDArray]:
        """Schoenfeld residuals, one row per event.

        Tied deaths share the average of their Efron risk-set means.

        Returns
        -------
        (event_times, residuals)
            Sorted ascending by event time; (d,) and (d, p).
        """
        times = []
        resid = []
        for st in self.strata:
            if st.n_groups == 0:
                continue
            x, _, mean, _, _ = self._slots(st, beta)
            counts = np.bincount(st.slot_group, minlength=st.n_groups)
            group_mean = np.zeros((st.n_groups, self.p))
            np.add.at(group_mean, st.slot_group, mean)
            group_mean /= counts[:, None]
            resid.append(x[st.deaths] - group_mean[st.death_group])
            times.append(st.event_times[st.death_group])

        times = np.concatenate(times)
        resid = np.vstack(resid)
        order = np.argsort(times, kind='stable')
        return times[order], resid[order]


def check_information(
    info: NDArray,
    scale: NDArray,
    iteration: int,
    column_names: tuple[str, ...] | None = None,
    threshold: float = SINGULARITY_THRESHOLD,
):
    """Cholesky factor of the information matrix, or SingularInformationError.

    The matrix is judged after scaling by the uncentered second moments,
    so a column with no variation within its risk sets is caught even
    when it is the only column.
    """
    p = info.shape[0]
    names = column_names

    dead = np.flatnonzero(scale <= 0)
    if len(dead):
        cols = [names[j] for j in dead] if names else list(dead)
        raise SingularInformationError(
            f"information matrix is singular at iteration {iteration}: "
            f"column(s) {cols} are identically zero in every risk set",
            iteration=iteration,
            min_eigenvalue=0.0,
            condition_number=np.inf,
            column_names=names,
        )

    d = 1.0 / np.sqrt(scale)
    scaled = info * np.outer(d, d)
    eig = np.linalg.eigvalsh(scaled)
    min_eig = float(eig[0])
    max_eig = float(eig[-1])
    if max_eig <= 0 or min_eig <= threshold * max(max_eig, 1.0):
        weakest = np.linalg.eigh(scaled)[1][:, 0]
        involved = np.flatnonzero(np.abs(weakest) > 0.1)
        cols = [names[j] for j in involved] if names else list(involved)
        cond = max_eig / min_eig if min_eig > 0 else np.inf
        raise SingularInformationError(
            f"information matrix is not positive definite at iteration "
            f"{iteration} (smallest scaled eigenvalue {min_eig:.3e}); "
            f"collinear or constant column(s): {cols}",
            iteration=iteration,
            min_eigenvalue=min_eig,
            condition_number=cond,
            column_names=names,
        )
    try:
        return linalg.cho_factor(info)
    except linalg.LinAlgError as e:
        raise SingularInformationError(
            f"Cholesky factorisation of the information matrix failed at "
            f"iteration {iteration}: {e}",
            iteration=iteration,
            min_eigenvalue=min_eig,
            condition_number=max_eig / min_eig,
            column_names=names,
        ) from e


def cox_fit(
    time: NDArray,
    event: NDArray,
    X: NDArray,
    strata: NDArray | None = None,
    ties: str = "efron",
    tol: float = COX_TOL,
    max_iter: int = COX_MAX_ITER,
    max_step: float = COX_MAX_STEP,
    cancel=None,
    column_names: tuple[str, ...] | None = None,
) -> CoxParams:
    """Fit Cox proportional hazards model.

    Parameters
    ----------
    time : NDArray
        (n,) time to event or censoring.
    event : NDArray
        (n,) event indicator (1=event, 0=censored).
    X : NDArray
        (n, p) covariate matrix (NO intercept).
    strata : NDArray or None
        (n,) integer stratum ids; risk sets never cross strata.
    ties : str
        Method for handling tied event times: "efron" (default) or "breslow".
    tol : float
        Convergence tolerance on sqrt(U' I^-1 U).
    max_iter : int
        Maximum Newton-Raphson steps.
    max_step : float
        Largest absolute coordinate of one Newton step.
    cancel : object with is_set() or None
        Checked before every iteration.
    column_names : tuple of str or None
        For error messages and the result.

    Returns
    -------
    CoxParams

    Raises
    ------
    SingularInformationError
        If the information matrix is not positive definite.
    NonConvergenceError
        If the iteration cap is reached.
    FitCancelledError
        If ``cancel`` is set at an iteration boundary.
    """
    n, p = X.shape
    if column_names is None:
        column_names = tuple(f"x{j}" for j in range(p))
    model = PartialLikelihood(time, event, X, strata, ties)

    beta = np.zeros(p, dtype=np.float64)
    loglik, score, info, scale = model.evaluate(beta)
    null_loglik = loglik
    score_test = None

    n_iter = 0
    while True:
        if cancel is not None and cancel.is_set():
            raise FitCancelledError(
                f"Cox fit cancelled after {n_iter} iterations", iterations=n_iter,
            )

        chol = check_information(info, scale, n_iter, column_names)
        step = linalg.cho_solve(chol, score)
        norm = float(np.sqrt(max(score @ step, 0.0)))
        if score_test is None:
            score_test = norm ** 2

        if norm < tol:
            break
        if n_iter >= max_iter:
            raise NonConvergenceError(
                f"Newton-Raphson did not converge in {max_iter} iterations "
                f"(score norm {norm:.3e} > tol {tol:.1e}); possible "
                f"monotone likelihood (separation) or too low an iteration cap",
                iterations=n_iter,
                last_iterate=beta.copy(),
                final_change=norm,
                threshold=tol,
                loglik=loglik,
            )

        # Cap the step so exp(X @ beta) cannot overflow
        biggest = np.max(np.abs(step))
        if biggest > max_step:
            step = step * (max_step / biggest)

        beta_new = beta + step
        new = model.evaluate(beta_new)
        for _ in range(COX_MAX_HALVINGS):
            if np.isfinite(new[0]) and new[0] >= loglik - _LL_SLACK * (1.0 + abs(loglik)):
                break
            step = step / 2.0
            beta_new = beta + step
            new = model.evaluate(beta_new)

        beta = beta_new
        loglik, score, info, scale = new
        n_iter += 1

    covariance = linalg.cho_solve(chol, np.eye(p))
    covariance = (covariance + covariance.T) / 2.0
    se = np.sqrt(np.maximum(np.diag(covariance), 0.0))
    z = np.where(se > 0, beta / np.where(se > 0, se, 1.0), 0.0)
    p_values = 2.0 * stats.norm.sf(np.abs(z))

    return CoxParams(
        coefficients=beta,
        covariance=covariance,
        standard_errors=se,
        z_statistics=z,
        p_values=p_values,
        hazard_ratios=np.exp(beta),
        loglik=(float(null_loglik), float(loglik)),
        score_test=float(score_test),
        wald_test=float(beta @ info @ beta),
        concordance=concordance(beta, time, event, X, strata),
        n_events=int(np.sum(event)),
        n_observations=n,
        n_strata=1 if strata is None else len(np.unique(strata)),
        n_iter=n_iter,
        score_norm=norm,
        ties=ties,
        column_names=tuple(column_names),
    )


def null_loglik(time: NDArray, event: NDArray, strata: NDArray | None, ties: str) -> float:
    """Partial log-likelihood of the model with no covariates."""
    X = np.zeros((len(time), 1))
    return PartialLikelihood(time, event, X, strata, ties).loglik(np.zeros(1))


def concordance(
    beta: NDArray,
    time: NDArray,
    event: NDArray,
    X: NDArray,
    strata: NDArray | None = None,
) -> float:
    """Harrell's concordance statistic (C-statistic), pairs within strata.

    C = P(risk_i > risk_j | T_i < T_j, event_i = 1)
    """
    eta = X @ beta
    if strata is None:
        strata = np.zeros(len(time), dtype=np.int64)

    concordant = 0.0
    discordant = 0.0
    tied_risk = 0.0

    for i in np.flatnonzero(event == 1):
        later = (time > time[i]) & (strata == strata[i])
        if not np.any(later):
            continue
        other = eta[later]
        concordant += np.sum(eta[i] > other)
        discordant += np.sum(eta[i] < other)
        tied_risk += np.sum(eta[i] == other)

    total = concordant + discordant + tied_risk
    if total == 0:
        return 0.5

    return float((concordant + 0.5 * tied_risk) / total)
