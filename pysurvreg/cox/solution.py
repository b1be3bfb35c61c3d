"""
Solution wrappers for Cox regression results.

Each Solution wraps a Result[Params] and exposes user-friendly properties
with R-style summary() methods.
"""

from __future__ import annotations

from typing import Literal

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pysurvreg.core.compute.tolerances import COX_MAX_ITER, COX_MAX_STEP, COX_TOL
from pysurvreg.core.exceptions import FormulaError, ValidationError
from pysurvreg.core.result import Result
from pysurvreg.cox._common import ChunkTest, CoxParams, ZPHParams
from pysurvreg.cox._cox import null_loglik
from pysurvreg.cox.backends.cpu import CPUCoxBackend
from pysurvreg.cox.design import CoxDesign


class CoxSolution:
    """Cox proportional hazards solution.

    Properties mirror R's coxph() output. The solution keeps the
    CoxDesign it was fitted on, so block tests can refit and prediction
    can reuse the formula encodings.
    """

    __slots__ = ('_result', '_design')

    def __init__(self, _result: Result[CoxParams], _design: CoxDesign) -> None:
        self._result = _result
        self._design = _design

    @property
    def coefficients(self):
        return self._result.params.coefficients

    @property
    def covariance(self):
        return self._result.params.covariance

    @property
    def standard_errors(self):
        return self._result.params.standard_errors

    @property
    def z_statistics(self):
        return self._result.params.z_statistics

    @property
    def p_values(self):
        return self._result.params.p_values

    @property
    def hazard_ratios(self):
        return self._result.params.hazard_ratios

    @property
    def loglik(self) -> tuple[float, float]:
        """(null, final) log partial likelihood."""
        return self._result.params.loglik

    @property
    def concordance(self) -> float:
        return self._result.params.concordance

    @property
    def n_events(self) -> int:
        return self._result.params.n_events

    @property
    def n_observations(self) -> int:
        return self._result.params.n_observations

    @property
    def n_strata(self) -> int:
        return self._result.params.n_strata

    @property
    def n_iter(self) -> int:
        return self._result.params.n_iter

    @property
    def converged(self) -> bool:
        # Non-converged fits raise NonConvergenceError instead
        return True

    @property
    def ties(self) -> str:
        return self._result.params.ties

    @property
    def column_names(self) -> tuple[str, ...]:
        return self._result.params.column_names

    @property
    def params(self) -> CoxParams:
        return self._result.params

    @property
    def design(self) -> CoxDesign:
        return self._design

    @property
    def info(self) -> dict:
        return self._result.info

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    # -- Inference --

    def confint(self, level: float = 0.95) -> NDArray:
        """(p, 2) Wald confidence limits for the coefficients."""
        _check_level(level)
        q = stats.norm.ppf(0.5 + level / 2.0)
        half = q * self.standard_errors
        return np.column_stack([self.coefficients - half, self.coefficients + half])

    def hazard_ratio_confint(self, level: float = 0.95) -> NDArray:
        """(p, 2) confidence limits for exp(coef)."""
        return np.exp(self.confint(level))

    @property
    def likelihood_ratio_test(self) -> ChunkTest:
        stat = 2.0 * (self.loglik[1] - self.loglik[0])
        return _chi2("likelihood ratio", stat, len(self.coefficients), "lr")

    @property
    def wald_global_test(self) -> ChunkTest:
        return _chi2("wald", self._result.params.wald_test, len(self.coefficients), "wald")

    @property
    def score_test(self) -> ChunkTest:
        return _chi2("score", self._result.params.score_test, len(self.coefficients), "score")

    def columns(self, key) -> tuple[int, ...]:
        """Column indices for a term label, a column name, or indices."""
        if isinstance(key, str):
            source = self._design.source
            if source is not None and key in source.term_slices:
                return source.term_slices[key]
            if key in self.column_names:
                return (self.column_names.index(key),)
            raise FormulaError(
                f"{key!r} is neither a term nor a column of this fit; "
                f"columns are {self.column_names}",
                term=key,
            )
        cols = []
        for k in key:
            if isinstance(k, str):
                cols.extend(self.columns(k))
            else:
                cols.append(int(k))
        p = len(self.coefficients)
        if not cols or any(c < 0 or c >= p for c in cols):
            raise ValidationError(f"columns must be indices in [0, {p}), got {cols}")
        return tuple(dict.fromkeys(cols))

    def wald_test(self, columns, label: str | None = None) -> ChunkTest:
        """Joint Wald chi-square test that a block of coefficients is zero.

        Parameters
        ----------
        columns : str or sequence
            Term label, column name, or column indices/names.
        label : str or None
            Label of the returned test.
        """
        cols = list(self.columns(columns))
        b = self.coefficients[cols]
        V = self.covariance[np.ix_(cols, cols)]
        stat = float(b @ np.linalg.solve(V, b))
        if label is None:
            label = columns if isinstance(columns, str) else ", ".join(
                self.column_names[c] for c in cols
            )
        return _chi2(label, stat, len(cols), "wald")

    def lr_test(self, columns, label: str | None = None) -> ChunkTest:
        """Likelihood-ratio test of a block: refits without those columns."""
        cols = list(self.columns(columns))
        if label is None:
            label = columns if isinstance(columns, str) else ", ".join(
                self.column_names[c] for c in cols
            )
        reduced = self._design.drop(cols)
        if reduced.p == 0:
            ll_reduced = null_loglik(
                reduced.time, reduced.event, reduced.strata, self.ties,
            )
        else:
            backend = CPUCoxBackend(
                ties=self.ties,
                tol=self.info.get('tol', COX_TOL),
                max_iter=self.info.get('max_iter', COX_MAX_ITER),
                max_step=self.info.get('max_step', COX_MAX_STEP),
            )
            ll_reduced = backend.solve(reduced).params.loglik[1]
        stat = 2.0 * (self.loglik[1] - ll_reduced)
        return _chi2(label, max(stat, 0.0), len(cols), "lr")

    def term_tests(self, method: Literal["wald", "lr"] = "wald") -> tuple[ChunkTest, ...]:
        """Chunk test per formula term, plus "nonlinear" tests for splines.

        Without a formula source every column is its own term.
        """
        if method not in ("wald", "lr"):
            raise ValidationError(f"method must be 'wald' or 'lr', got {method!r}")
        test = self.wald_test if method == "wald" else self.lr_test

        source = self._design.source
        if source is None:
            return tuple(test((j,), label=name) for j, name in enumerate(self.column_names))

        out = []
        for label, cols in source.term_slices.items():
            out.append(test(cols, label=label))
            nonlinear = source.nonlinear_slices.get(label)
            if nonlinear:
                out.append(test(nonlinear, label=f"{label} nonlinear"))
        return tuple(out)

    def linear_predictor(self, X: NDArray | None = None) -> NDArray:
        """X @ beta, for the fitted rows by default."""
        if X is None:
            X = self._design.X
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        if X.shape[1] != len(self.coefficients):
            raise ValidationError(
                f"X: expected {len(self.coefficients)} columns, got {X.shape[1]}"
            )
        return X @ self.coefficients

    def summary(self, level: float = 0.95) -> str:
        """R-style summary of Cox PH fit."""
        lines = []
        lines.append("Call: coxph()")
        lines.append("")
        lines.append(
            f"  n= {self.n_observations}, "
            f"number of events= {self.n_events}"
            + (f", strata= {self.n_strata}" if self.n_strata > 1 else "")
        )
        lines.append("")

        width = max(10, max(len(c) for c in self.column_names))
        lines.append(
            f"  {'':>{width}s}  {'coef':>10s}  {'exp(coef)':>10s}  "
            f"{'se(coef)':>10s}  {'z':>10s}  {'Pr(>|z|)':>12s}"
        )
        for i, name in enumerate(self.column_names):
            lines.append(
                f"  {name:>{width}s}  {self.coefficients[i]:10.6f}  "
                f"{self.hazard_ratios[i]:10.6f}  "
                f"{self.standard_errors[i]:10.6f}  "
                f"{self.z_statistics[i]:10.4f}  "
                f"{self.p_values[i]:12.4g}"
            )

        lines.append("")
        pct = f"{level * 100:g}%"
        ci = self.hazard_ratio_confint(level)
        lines.append(
            f"  {'':>{width}s}  {'exp(coef)':>10s}  {'lower ' + pct:>10s}  "
            f"{'upper ' + pct:>10s}"
        )
        for i, name in enumerate(self.column_names):
            lines.append(
                f"  {name:>{width}s}  {self.hazard_ratios[i]:10.4f}  "
                f"{ci[i, 0]:10.4f}  {ci[i, 1]:10.4f}"
            )

        lines.append("")
        lines.append(f"  Concordance= {self.concordance:.4f}")
        for test in (self.likelihood_ratio_test, self.wald_global_test, self.score_test):
            lines.append(
                f"  {test.label.capitalize() + ' test':<24s}= {test.statistic:.4f} "
                f"on {test.df} df,   p={test.p_value:.4g}"
            )
        for w in self.warnings:
            lines.append(f"  Note: {w}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CoxSolution(n={self.n_observations}, "
            f"events={self.n_events}, "
            f"concordance={self.concordance:.4f})"
        )


class ZPHSolution:
    """Proportional-hazards test solution.

    Properties mirror R's cox.zph() output.
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[ZPHParams]) -> None:
        self._result = _result

    @property
    def column_names(self) -> tuple[str, ...]:
        return self._result.params.column_names

    @property
    def correlation(self):
        return self._result.params.correlation

    @property
    def statistic(self):
        return self._result.params.statistic

    @property
    def p_values(self):
        return self._result.params.p_values

    @property
    def per_covariate(self) -> dict[str, tuple[float, float]]:
        """Column name -> (correlation with g(t), p-value)."""
        return {
            name: (float(self.correlation[k]), float(self.p_values[k]))
            for k, name in enumerate(self.column_names)
        }

    @property
    def terms(self) -> tuple[ChunkTest, ...]:
        return self._result.params.terms

    @property
    def global_statistic(self) -> float:
        return self._result.params.global_statistic

    @property
    def global_df(self) -> int:
        return self._result.params.global_df

    @property
    def global_p_value(self) -> float:
        return self._result.params.global_p_value

    @property
    def transform(self) -> str:
        return self._result.params.transform

    @property
    def event_times(self):
        return self._result.params.event_times

    @property
    def transformed_times(self):
        return self._result.params.transformed_times

    @property
    def scaled_residuals(self):
        """(d, p) beta + scaled Schoenfeld residuals, for plotting."""
        return self._result.params.scaled_residuals

    @property
    def n_events(self) -> int:
        return self._result.params.n_events

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    def summary(self) -> str:
        """R-style cox.zph table."""
        lines = []
        lines.append(f"Call: cox.zph(transform = \"{self.transform}\")")
        lines.append("")
        width = max(10, max(len(c) for c in self.column_names))
        lines.append(
            f"  {'':>{width}s}  {'rho':>10s}  {'chisq':>10s}  {'p':>10s}"
        )
        for k, name in enumerate(self.column_names):
            lines.append(
                f"  {name:>{width}s}  {self.correlation[k]:10.4f}  "
                f"{self.statistic[k]:10.4f}  {self.p_values[k]:10.4g}"
            )
        lines.append(
            f"  {'GLOBAL':>{width}s}  {'NA':>10s}  "
            f"{self.global_statistic:10.4f}  {self.global_p_value:10.4g}"
        )
        if len(self.terms) != len(self.column_names):
            lines.append("")
            lines.append(f"  {'term':>{width}s}  {'chisq':>10s}  {'df':>4s}  {'p':>10s}")
            for t in self.terms:
                lines.append(
                    f"  {t.label:>{width}s}  {t.statistic:10.4f}  {t.df:4d}  "
                    f"{t.p_value:10.4g}"
                )
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"ZPHSolution(global chisq={self.global_statistic:.4f}, "
            f"df={self.global_df}, p={self.global_p_value:.4g})"
        )


def _chi2(label: str, statistic: float, df: int, method: str) -> ChunkTest:
    return ChunkTest(
        label=label,
        statistic=float(statistic),
        df=int(df),
        p_value=float(stats.chi2.sf(statistic, df)),
        method=method,
    )


def _check_level(level: float) -> None:
    if not 0 < level < 1:
        raise ValidationError(f"level must be in (0, 1), got {level}")
