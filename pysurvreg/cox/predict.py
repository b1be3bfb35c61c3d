"""
Covariate effects from a fitted formula model.

Effects are computed against an explicit DataDistribution: per variable
an adjust-to value, effect limits and a plotting range. It is passed to
every call; there is no process-wide "current" distribution.

    dd = datadist(dataset)
    curve = partial_effect(fit, "age", dd)
    table = effect_summary(fit, dd)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Hashable

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pysurvreg.core.exceptions import ValidationError
from pysurvreg.cox.solution import CoxSolution
from pysurvreg.dataset.design import Dataset
from pysurvreg.formula.design import (
    DesignMatrix,
    Encoding,
    FactorEncoding,
    InteractionEncoding,
)


@dataclass(frozen=True)
class VariableSummary:
    """Reference values of one covariate.

    Continuous: adjust_to is the median, (low, high) the quartiles and
    (range_low, range_high) the 5th and 95th percentiles. Factors:
    adjust_to is the reference level and levels the declared levels.
    """

    name: str
    kind: str
    adjust_to: Any
    low: Any = None
    high: Any = None
    range_low: float | None = None
    range_high: float | None = None
    levels: tuple[Hashable, ...] | None = None


@dataclass(frozen=True)
class DataDistribution:
    """Per-variable reference values used by every prediction call."""

    variables: dict[str, VariableSummary]

    def __getitem__(self, name: str) -> VariableSummary:
        try:
            return self.variables[name]
        except KeyError:
            raise ValidationError(
                f"data distribution has no variable {name!r}; "
                f"known: {tuple(self.variables)}"
            ) from None

    def with_adjust_to(self, name: str, value) -> DataDistribution:
        """Copy with a different adjust-to value for one variable."""
        var = self[name]
        if var.levels is not None and value not in var.levels:
            raise ValidationError(
                f"{name}: {value!r} is not one of the levels {var.levels}"
            )
        variables = dict(self.variables)
        variables[name] = replace(var, adjust_to=value)
        return DataDistribution(variables=variables)

    def with_limits(self, name: str, low, high) -> DataDistribution:
        """Copy with different effect limits for one variable."""
        variables = dict(self.variables)
        variables[name] = replace(self[name], low=low, high=high)
        return DataDistribution(variables=variables)


def datadist(dataset: Dataset) -> DataDistribution:
    """Summarise every covariate of a Dataset from its observed values."""
    variables = {}
    for spec in dataset.specs:
        observed = ~dataset.missing(spec.name)
        if spec.is_factor:
            variables[spec.name] = VariableSummary(
                name=spec.name,
                kind=spec.kind,
                adjust_to=spec.reference,
                low=spec.reference,
                high=spec.levels[-1],
                levels=spec.levels,
            )
            continue
        x = dataset.values(spec.name)[observed]
        if len(x) == 0:
            raise ValidationError(f"{spec.name}: no observed values to summarise")
        q05, q25, q50, q75, q95 = np.quantile(x, [0.05, 0.25, 0.5, 0.75, 0.95])
        variables[spec.name] = VariableSummary(
            name=spec.name,
            kind=spec.kind,
            adjust_to=float(q50),
            low=float(q25),
            high=float(q75),
            range_low=float(q05),
            range_high=float(q95),
        )
    return DataDistribution(variables=variables)


@dataclass(frozen=True)
class PartialEffect:
    """Log relative hazard along one variable, others at adjust-to values."""

    variable: str
    values: NDArray              # grid (continuous) or levels (factor)
    log_hazard: NDArray          # relative to the adjust-to profile
    standard_errors: NDArray
    lower: NDArray
    upper: NDArray
    level: float

    @property
    def hazard_ratio(self) -> NDArray:
        return np.exp(self.log_hazard)


@dataclass(frozen=True)
class Effect:
    """Effect of moving one variable from low to high."""

    variable: str
    low: Any
    high: Any
    effect: float                # log hazard ratio
    standard_error: float
    lower: float
    upper: float

    @property
    def hazard_ratio(self) -> float:
        return float(np.exp(self.effect))

    @property
    def hazard_ratio_limits(self) -> tuple[float, float]:
        return float(np.exp(self.lower)), float(np.exp(self.upper))


@dataclass(frozen=True)
class EffectSummary:
    effects: tuple[Effect, ...]
    level: float

    def __iter__(self):
        return iter(self.effects)

    def __len__(self) -> int:
        return len(self.effects)

    def summary(self) -> str:
        """R-style summary(fit) effect table."""
        pct = f"{self.level * 100:g}%"
        lines = [
            f"  {'':>16s}  {'low':>10s}  {'high':>10s}  {'effect':>10s}  "
            f"{'se':>8s}  {'hr':>8s}  {'lower ' + pct:>10s}  {'upper ' + pct:>10s}"
        ]
        for e in self.effects:
            lo, hi = e.hazard_ratio_limits
            lines.append(
                f"  {e.variable:>16s}  {str(e.low):>10s}  {str(e.high):>10s}  "
                f"{e.effect:10.4f}  {e.standard_error:8.4f}  "
                f"{e.hazard_ratio:8.4f}  {lo:10.4f}  {hi:10.4f}"
            )
        return "\n".join(lines)


def partial_effect(
    fit: CoxSolution,
    variable: str,
    config: DataDistribution,
    n_points: int = 50,
    level: float = 0.95,
) -> PartialEffect:
    """Log relative hazard as ``variable`` varies.

    Continuous variables run over ``n_points`` values between the 5th
    and 95th percentiles; factors over their levels. Every other
    variable is held at its adjust-to value, and the curve is relative
    to the full adjust-to profile, so it passes through 0 there.
    """
    design = _formula_design(fit)
    if variable not in design.variables:
        raise ValidationError(
            f"{variable!r} is not a covariate of the fitted model; "
            f"covariates are {design.variables}"
        )
    if n_points < 2:
        raise ValidationError(f"n_points must be >= 2, got {n_points}")

    var = config[variable]
    levels = _levels(design, variable)
    if levels is not None:
        values = np.array(levels, dtype=object)
        raw = np.arange(len(levels))
    else:
        values = np.linspace(var.range_low, var.range_high, n_points)
        raw = values

    base = _profile(design, config, len(raw))
    base[variable] = raw
    est, se = _contrast(fit, design, base, _profile(design, config, 1))
    lower, upper = _limits(est, se, level)

    return PartialEffect(
        variable=variable,
        values=values,
        log_hazard=est,
        standard_errors=se,
        lower=lower,
        upper=upper,
        level=level,
    )


def effect_summary(
    fit: CoxSolution,
    config: DataDistribution,
    level: float = 0.95,
) -> EffectSummary:
    """Hazard ratios for each covariate of the fitted model.

    Continuous: the low -> high change of the effect limits
    (quartiles by default). Factors: each level against the reference.
    Stratification factors have no effect of their own and are skipped.
    """
    design = _formula_design(fit)
    effects = []
    for name in design.variables:
        var = config[name]
        if var.kind == "stratum":
            continue
        levels = _levels(design, name)
        if levels is None:
            contrasts = [(var.low, var.high, float(var.low), float(var.high))]
        else:
            ref = levels[0]
            contrasts = [(ref, lv, 0, k) for k, lv in enumerate(levels) if k > 0]

        for low, high, raw_low, raw_high in contrasts:
            at_high = _profile(design, config, 1)
            at_low = _profile(design, config, 1)
            at_high[name] = np.array([raw_high])
            at_low[name] = np.array([raw_low])
            est, se = _contrast(fit, design, at_high, at_low)
            lo, hi = _limits(est, se, level)
            effects.append(Effect(
                variable=name,
                low=low,
                high=high,
                effect=float(est[0]),
                standard_error=float(se[0]),
                lower=float(lo[0]),
                upper=float(hi[0]),
            ))
    return EffectSummary(effects=tuple(effects), level=level)


# ── Helpers ──────────────────────────────────────────────────────────


def _formula_design(fit: CoxSolution) -> DesignMatrix:
    if not isinstance(fit, CoxSolution):
        raise ValidationError(f"fit: expected a CoxSolution, got {type(fit).__name__}")
    source = fit.design.source
    if source is None:
        raise ValidationError(
            "prediction needs a fit made from a formula design "
            "(fit(build(dataset, formula))), not from raw arrays"
        )
    return source


def _levels(design: DesignMatrix, name: str) -> tuple | None:
    """Levels a factor was encoded with, None for continuous variables."""
    for enc in design.encodings:
        found = _find_factor(enc, name)
        if found is not None:
            return found.levels
    return None


def _find_factor(enc: Encoding, name: str) -> FactorEncoding | None:
    if isinstance(enc, FactorEncoding) and enc.name == name:
        return enc
    if isinstance(enc, InteractionEncoding):
        return _find_factor(enc.left, name) or _find_factor(enc.right, name)
    return None


def _profile(design: DesignMatrix, config: DataDistribution, n: int) -> dict[str, NDArray]:
    """Every design variable at its adjust-to value, as raw encoder input."""
    columns = {}
    for name in design.variables:
        adjust = config[name].adjust_to
        levels = _levels(design, name)
        if levels is None:
            columns[name] = np.full(n, float(adjust))
        else:
            if adjust not in levels:
                raise ValidationError(
                    f"{name}: adjust-to value {adjust!r} is not one of the "
                    f"levels the model was fitted with {levels}"
                )
            columns[name] = np.full(n, levels.index(adjust), dtype=np.int64)
    return columns


def _contrast(
    fit: CoxSolution,
    design: DesignMatrix,
    columns: dict[str, NDArray],
    reference: dict[str, NDArray],
) -> tuple[NDArray, NDArray]:
    D = design.encode(columns) - design.encode(reference)
    est = D @ fit.coefficients
    se = np.sqrt(np.maximum(np.einsum('ij,jk,ik->i', D, fit.covariance, D), 0.0))
    return est, se


def _limits(est: NDArray, se: NDArray, level: float) -> tuple[NDArray, NDArray]:
    if not 0 < level < 1:
        raise ValidationError(f"level must be in (0, 1), got {level}")
    q = stats.norm.ppf(0.5 + level / 2.0)
    return est - q * se, est + q * se
