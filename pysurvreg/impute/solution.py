"""
Solution wrappers for imputation and pooling results.

Each Solution wraps a Result[Params] and exposes user-friendly properties
with R-style summary() methods.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pysurvreg.core.exceptions import FormulaError, ValidationError
from pysurvreg.core.result import Result
from pysurvreg.cox._common import ChunkTest
from pysurvreg.dataset.design import Dataset
from pysurvreg.formula.design import DesignMatrix
from pysurvreg.impute._common import ImputationParams, PooledParams


class ImputedDatasetSet:
    """Ordered set of m completed Datasets.

    Behaves as a read-only sequence of Datasets; convergence diagnostics
    mirror R's mice object (chain-mean traces, Gelman-Rubin R-hat).
    """

    __slots__ = ('_result',)

    def __init__(self, _result: Result[ImputationParams]) -> None:
        self._result = _result

    @property
    def datasets(self) -> tuple[Dataset, ...]:
        return self._result.params.datasets

    def __len__(self) -> int:
        return len(self.datasets)

    def __iter__(self):
        return iter(self.datasets)

    def __getitem__(self, i: int) -> Dataset:
        return self.datasets[i]

    @property
    def m(self) -> int:
        return self._result.params.m

    @property
    def visit(self) -> tuple[str, ...]:
        return self._result.params.visit

    @property
    def n_imputed(self) -> dict[str, int]:
        return self._result.params.n_imputed

    @property
    def traces(self) -> dict[str, NDArray]:
        """Variable -> (m, cycles) mean of the imputed values per cycle."""
        return self._result.params.traces

    @property
    def rhat(self) -> dict[str, float]:
        return self._result.params.rhat

    @property
    def converged(self) -> bool:
        return self._result.params.converged

    @property
    def method(self) -> str:
        return self._result.params.method

    @property
    def cycles(self) -> int:
        return self._result.params.cycles

    @property
    def predictors(self) -> dict[str, tuple[str, ...]]:
        return self._result.params.predictors

    @property
    def seed(self) -> int | None:
        return self._result.params.seed

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    def summary(self) -> str:
        """mice-style description of the imputation."""
        lines = []
        lines.append(
            f"Multiply imputed data set: m = {self.m}, method = {self.method}, "
            f"cycles = {self.cycles}"
        )
        if not self.visit:
            lines.append("  No missing values; the source Dataset is returned as is.")
            return "\n".join(lines)
        lines.append("")
        lines.append(f"  {'variable':>16s}  {'imputed':>8s}  {'R-hat':>8s}  predictors")
        for name in self.visit:
            rhat = self.rhat.get(name, float('nan'))
            rhat_str = "NA" if np.isnan(rhat) else f"{rhat:.3f}"
            lines.append(
                f"  {name:>16s}  {self.n_imputed[name]:8d}  {rhat_str:>8s}  "
                f"{', '.join(self.predictors[name])}"
            )
        for w in self.warnings:
            lines.append(f"  Warning: {w}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"ImputedDatasetSet(m={self.m}, variables={len(self.visit)}, "
            f"converged={self.converged})"
        )


class PooledSolution:
    """Pooled Cox estimate over multiply imputed data.

    Properties mirror R's summary(mice::pool(fit)).
    """

    __slots__ = ('_result', '_source')

    def __init__(
        self,
        _result: Result[PooledParams],
        _source: DesignMatrix | None = None,
    ) -> None:
        self._result = _result
        self._source = _source

    @property
    def coefficients(self):
        return self._result.params.coefficients

    @property
    def hazard_ratios(self):
        return np.exp(self.coefficients)

    @property
    def within(self):
        """Ubar: mean within-imputation covariance."""
        return self._result.params.within

    @property
    def between(self):
        """B: between-imputation covariance."""
        return self._result.params.between

    @property
    def total(self):
        """T = Ubar + (1 + 1/m) B."""
        return self._result.params.total

    @property
    def covariance(self):
        return self._result.params.total

    @property
    def standard_errors(self):
        return self._result.params.standard_errors

    @property
    def t_statistics(self):
        se = self.standard_errors
        return np.where(se > 0, self.coefficients / np.where(se > 0, se, 1.0), 0.0)

    @property
    def df(self):
        return self._result.params.df

    @property
    def p_values(self):
        return 2.0 * _t_sf(np.abs(self.t_statistics), self.df)

    @property
    def riv(self):
        return self._result.params.riv

    @property
    def lambda_(self):
        return self._result.params.lambda_

    @property
    def fmi(self):
        return self._result.params.fmi

    @property
    def df_complete(self) -> float:
        return self._result.params.df_complete

    @property
    def m(self) -> int:
        return self._result.params.m

    @property
    def column_names(self) -> tuple[str, ...]:
        return self._result.params.column_names

    @property
    def n_events(self) -> int:
        return self._result.params.n_events

    @property
    def n_observations(self) -> int:
        return self._result.params.n_observations

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def timing(self):
        return self._result.timing

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    def confint(self, level: float = 0.95) -> NDArray:
        """(p, 2) t-based confidence limits with per-coefficient df."""
        if not 0 < level < 1:
            raise ValidationError(f"level must be in (0, 1), got {level}")
        q = _t_ppf(0.5 + level / 2.0, self.df)
        half = q * self.standard_errors
        return np.column_stack([self.coefficients - half, self.coefficients + half])

    def hazard_ratio_confint(self, level: float = 0.95) -> NDArray:
        return np.exp(self.confint(level))

    def wald_test(self, columns, label: str | None = None) -> ChunkTest:
        """Joint chi-square test of a block using the total covariance T."""
        cols = list(self._columns(columns))
        b = self.coefficients[cols]
        T = self.total[np.ix_(cols, cols)]
        stat = float(b @ np.linalg.solve(T, b))
        if label is None:
            label = columns if isinstance(columns, str) else ", ".join(
                self.column_names[c] for c in cols
            )
        return ChunkTest(
            label=label,
            statistic=stat,
            df=len(cols),
            p_value=float(stats.chi2.sf(stat, len(cols))),
            method="wald",
        )

    def term_tests(self) -> tuple[ChunkTest, ...]:
        """Pooled Wald test per formula term, plus spline nonlinearity."""
        if self._source is None:
            return tuple(
                self.wald_test((j,), label=name) for j, name in enumerate(self.column_names)
            )
        out = []
        for label, cols in self._source.term_slices.items():
            out.append(self.wald_test(cols, label=label))
            nonlinear = self._source.nonlinear_slices.get(label)
            if nonlinear:
                out.append(self.wald_test(nonlinear, label=f"{label} nonlinear"))
        return tuple(out)

    def _columns(self, key) -> tuple[int, ...]:
        if isinstance(key, str):
            if self._source is not None and key in self._source.term_slices:
                return self._source.term_slices[key]
            if key in self.column_names:
                return (self.column_names.index(key),)
            raise FormulaError(
                f"{key!r} is neither a term nor a column of the pooled fit",
                term=key,
            )
        cols = [self.column_names.index(k) if isinstance(k, str) else int(k) for k in key]
        p = len(self.coefficients)
        if not cols or any(c < 0 or c >= p for c in cols):
            raise ValidationError(f"columns must be indices in [0, {p}), got {cols}")
        return tuple(dict.fromkeys(cols))

    def summary(self, level: float = 0.95) -> str:
        """R-style summary of the pooled fit."""
        lines = []
        lines.append(f"Call: pool(m = {self.m})")
        lines.append("")
        lines.append(
            f"  n= {self.n_observations}, number of events= {self.n_events}, "
            f"complete-data df= {self.df_complete:g}"
        )
        lines.append("")

        width = max(10, max(len(c) for c in self.column_names))
        ci = self.hazard_ratio_confint(level)
        pct = f"{level * 100:g}%"
        lines.append(
            f"  {'':>{width}s}  {'coef':>10s}  {'exp(coef)':>10s}  {'se':>10s}  "
            f"{'t':>8s}  {'df':>8s}  {'Pr(>|t|)':>10s}  {'fmi':>6s}  "
            f"{'lower ' + pct:>10s}  {'upper ' + pct:>10s}"
        )
        p_values = self.p_values
        t = self.t_statistics
        for i, name in enumerate(self.column_names):
            lines.append(
                f"  {name:>{width}s}  {self.coefficients[i]:10.6f}  "
                f"{self.hazard_ratios[i]:10.6f}  {self.standard_errors[i]:10.6f}  "
                f"{t[i]:8.4f}  {self.df[i]:8.2f}  {p_values[i]:10.4g}  "
                f"{self.fmi[i]:6.3f}  {ci[i, 0]:10.4f}  {ci[i, 1]:10.4f}"
            )
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"PooledSolution(m={self.m}, p={len(self.coefficients)}, "
            f"events={self.n_events})"
        )


def _t_sf(x: NDArray, df: NDArray) -> NDArray:
    """Student t survival function; the normal where df is infinite."""
    df = np.asarray(df, dtype=np.float64)
    finite = np.isfinite(df)
    return np.where(
        finite,
        stats.t.sf(x, np.where(finite, df, 1.0)),
        stats.norm.sf(x),
    )


def _t_ppf(q: float, df: NDArray) -> NDArray:
    df = np.asarray(df, dtype=np.float64)
    finite = np.isfinite(df)
    return np.where(
        finite,
        stats.t.ppf(q, np.where(finite, df, 1.0)),
        stats.norm.ppf(q),
    )
