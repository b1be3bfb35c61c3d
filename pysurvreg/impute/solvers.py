"""
Public API for multiple imputation.

    impute(dataset, m, method, max_iterations) → ImputedDatasetSet
    pool(fits) → PooledSolution
    fit_imputed(imputed, formula) → PooledSolution

impute() validates its inputs and the predictor plan, runs m independent
chains (in parallel with joblib when n_jobs > 1) and reports convergence
as part of the result. pool() combines per-imputation Cox fits by
Rubin's rules and never drops a member.
"""

from __future__ import annotations

import warnings
from typing import Literal, Mapping, Sequence

import numpy as np
from joblib import Parallel, delayed

from pysurvreg.core.compute.timing import Timer
from pysurvreg.core.compute.tolerances import (
    IMPUTE_CYCLES,
    IMPUTE_M,
    MAX_PREDICTORS,
    PMM_DONORS,
    PMM_RIDGE,
    RHAT_THRESHOLD,
)
from pysurvreg.core.exceptions import (
    ConvergenceWarning,
    DegenerateFitError,
    InsufficientDataError,
    TooManyPredictorsError,
    ValidationError,
)
from pysurvreg.core.result import Result
from pysurvreg.cox.solution import CoxSolution
from pysurvreg.cox.solvers import fit as cox_fit
from pysurvreg.dataset.design import Dataset
from pysurvreg.formula.builder import build
from pysurvreg.formula.design import DesignMatrix, Encoding, InteractionEncoding, SplineEncoding
from pysurvreg.formula.terms import Formula, Interaction, Spline, Term
from pysurvreg.impute._chained import ChainPlan, gelman_rubin, n_encoded, run_chain
from pysurvreg.impute._common import ImputationParams
from pysurvreg.impute._pool import rubin_pool
from pysurvreg.impute.solution import ImputedDatasetSet, PooledSolution


def impute(
    dataset: Dataset,
    m: int = IMPUTE_M,
    method: Literal["pmm"] = "pmm",
    max_iterations: int = IMPUTE_CYCLES,
    *,
    donors: int = PMM_DONORS,
    predictors: Mapping[str, Sequence[str]] | None = None,
    max_predictors: int = MAX_PREDICTORS,
    include_outcome: bool = True,
    visit: Sequence[str] | None = None,
    seed: int | None = None,
    n_jobs: int = 1,
    ridge: float = PMM_RIDGE,
    verbose: bool = False,
) -> ImputedDatasetSet:
    """Multiple imputation by chained equations with predictive mean matching.

    Matches R's mice::mice(data, m, method = "pmm", maxit).

    Parameters
    ----------
    dataset : Dataset
        Incomplete source data; never modified.
    m : int
        Number of completed datasets (independent chains).
    method : str
        Only "pmm" is supported.
    max_iterations : int
        Cycles over the incomplete variables per chain.
    donors : int
        PMM donor pool size.
    predictors : mapping or None
        Target -> predictor variable names; defaults to every other
        covariate. Use it to get under ``max_predictors``.
    max_predictors : int
        Ceiling on encoded predictor columns per target (outcome columns
        included, intercept excluded).
    include_outcome : bool
        Add the event indicator and the Nelson-Aalen cumulative hazard
        to every imputation model.
    visit : sequence of str or None
        Visiting order; defaults to declaration order. Must cover every
        incomplete variable.
    seed : int or None
        Seed of the numpy SeedSequence; chains use its spawned children.
    n_jobs : int
        Parallel chains via joblib (threads); 1 runs inline.
    ridge : float
        Ridge factor of the imputation regressions.
    verbose : bool
        Print progress.

    Returns
    -------
    ImputedDatasetSet

    Raises
    ------
    TooManyPredictorsError
        A target's predictor columns exceed ``max_predictors``.
    InsufficientDataError
        A variable has no observed values.
    ValidationError
        Invalid arguments.

    Warns
    -----
    ConvergenceWarning
        If a variable's R-hat exceeds the threshold; ``converged`` is
        then False and the result carries the same message.
    """
    if not isinstance(dataset, Dataset):
        raise ValidationError(f"dataset: expected a Dataset, got {type(dataset).__name__}")
    if method != "pmm":
        raise ValidationError(f"method must be 'pmm', got {method!r}")
    if m < 1:
        raise ValidationError(f"m must be >= 1, got {m}")
    if max_iterations < 1:
        raise ValidationError(f"max_iterations must be >= 1, got {max_iterations}")
    if donors < 1:
        raise ValidationError(f"donors must be >= 1, got {donors}")
    if max_predictors < 1:
        raise ValidationError(f"max_predictors must be >= 1, got {max_predictors}")

    timer = Timer()
    timer.start()

    incomplete = [name for name in dataset.names if np.any(dataset.missing(name))]
    order = _visit_order(dataset, incomplete, visit)
    plan_predictors = _predictor_sets(
        dataset, order, predictors, include_outcome, max_predictors,
    )

    if not order:
        timer.stop()
        if verbose:
            print("impute: no missing values, returning the source dataset")
        params = ImputationParams(
            datasets=(dataset,) * m,
            visit=(),
            n_imputed={},
            traces={},
            rhat={},
            converged=True,
            method=method,
            m=m,
            cycles=max_iterations,
            donors=donors,
            predictors={},
            seed=seed,
        )
        return ImputedDatasetSet(_result=Result(
            params=params,
            info={"method": "MICE", "chains_run": 0},
            timing=timer.result(),
            backend_name="cpu_mice",
            warnings=(),
        ))

    for name in order:
        if not np.any(~dataset.missing(name)):
            raise InsufficientDataError(
                f"{name}: every value is missing, nothing to impute from",
                required=1,
                available=0,
            )

    plan = ChainPlan(
        visit=order,
        predictors=plan_predictors,
        cycles=max_iterations,
        donors=donors,
        ridge=ridge,
        include_outcome=include_outcome,
    )

    if verbose:
        print(f"MICE: {dataset.n} records, {len(order)} incomplete variables, "
              f"m={m}, cycles={max_iterations}, n_jobs={n_jobs}")

    children = np.random.SeedSequence(seed).spawn(m)
    with timer.section('chains'):
        if n_jobs == 1:
            chains = [run_chain(dataset, plan, np.random.default_rng(c)) for c in children]
        else:
            chains = Parallel(n_jobs=n_jobs, prefer="threads")(
                delayed(run_chain)(dataset, plan, np.random.default_rng(c))
                for c in children
            )

    traces = {
        name: np.vstack([chain_traces[name] for _, chain_traces in chains])
        for name in order
    }
    rhat = {name: gelman_rubin(traces[name]) for name in order}
    unconverged = [
        name for name, r in rhat.items() if not np.isnan(r) and r > RHAT_THRESHOLD
    ]

    warnings_list = []
    if unconverged:
        detail = ", ".join(f"{name} (R-hat {rhat[name]:.3f})" for name in unconverged)
        warnings_list.append(
            f"imputation chains have not mixed after {max_iterations} cycles: "
            f"{detail}; consider more iterations"
        )
        warnings.warn(warnings_list[-1], ConvergenceWarning, stacklevel=2)

    timer.stop()

    if verbose:
        print(f"Completed {m} chains in {timer.result()['total_seconds']:.3f}s; "
              f"converged: {not unconverged}")

    params = ImputationParams(
        datasets=tuple(ds for ds, _ in chains),
        visit=order,
        n_imputed={name: int(np.sum(dataset.missing(name))) for name in order},
        traces=traces,
        rhat=rhat,
        converged=not unconverged,
        method=method,
        m=m,
        cycles=max_iterations,
        donors=donors,
        predictors=plan_predictors,
        seed=seed,
    )
    return ImputedDatasetSet(_result=Result(
        params=params,
        info={"method": "MICE", "chains_run": m, "n_jobs": n_jobs},
        timing=timer.result(),
        backend_name="cpu_mice",
        warnings=tuple(warnings_list),
    ))


def _visit_order(
    dataset: Dataset,
    incomplete: list[str],
    visit: Sequence[str] | None,
) -> tuple[str, ...]:
    if visit is None:
        return tuple(incomplete)
    visit = tuple(visit)
    for name in visit:
        dataset.spec(name)
    if len(set(visit)) != len(visit):
        raise ValidationError(f"visit: duplicate variables in {visit}")
    unvisited = [name for name in incomplete if name not in visit]
    if unvisited:
        raise ValidationError(
            f"visit: incomplete variables {unvisited} are never visited"
        )
    # Complete variables in the order are no-ops
    return tuple(name for name in visit if name in incomplete)


def _predictor_sets(
    dataset: Dataset,
    order: tuple[str, ...],
    predictors: Mapping[str, Sequence[str]] | None,
    include_outcome: bool,
    max_predictors: int,
) -> dict[str, tuple[str, ...]]:
    predictors = dict(predictors or {})
    for target in predictors:
        dataset.spec(target)

    out = {}
    for target in order:
        if target in predictors:
            names = tuple(predictors[target])
            for name in names:
                dataset.spec(name)
            if target in names:
                raise ValidationError(f"predictors[{target!r}]: a variable cannot predict itself")
        else:
            names = tuple(n for n in dataset.names if n != target)

        count = n_encoded(dataset, names, include_outcome)
        if count > max_predictors:
            raise TooManyPredictorsError(
                f"{target}: {count} predictor columns exceed the ceiling of "
                f"{max_predictors}; pass predictors={{{target!r}: [...]}} to "
                f"narrow the set, or raise max_predictors",
                target=target,
                n_predictors=count,
                max_predictors=max_predictors,
            )
        out[target] = names
    return out


def pool(fits: Sequence[CoxSolution], *, df_complete: float | None = None) -> PooledSolution:
    """Combine per-imputation Cox fits by Rubin's rules.

    Matches R's mice::pool().

    Parameters
    ----------
    fits : sequence of CoxSolution
        One fit per completed dataset, same columns in the same order.
    df_complete : float or None
        Complete-data degrees of freedom; defaults to events - p.
        ``numpy.inf`` gives the large-sample df.

    Returns
    -------
    PooledSolution

    Raises
    ------
    DegenerateFitError
        Empty input, a missing (None) or non-fit member, or members with
        different columns.
    """
    if fits is None:
        raise DegenerateFitError("fits: got None, expected a sequence of fits")
    fits = list(fits)
    if len(fits) == 0:
        raise DegenerateFitError("fits: need at least one fit, got none")
    for i, f in enumerate(fits):
        if f is None:
            raise DegenerateFitError(
                f"fits[{i}] is missing; a failed imputation fails the pooled estimate",
                index=i,
            )
        if not isinstance(f, CoxSolution):
            raise DegenerateFitError(
                f"fits[{i}]: expected a CoxSolution, got {type(f).__name__}",
                index=i,
            )
    names = fits[0].column_names
    for i, f in enumerate(fits[1:], start=1):
        if f.column_names != names:
            raise DegenerateFitError(
                f"fits[{i}] has columns {f.column_names}, fits[0] has {names}",
                index=i,
            )

    p = len(names)
    n_events = min(f.n_events for f in fits)
    if df_complete is None:
        df_complete = float(max(n_events - p, 1))
    elif not df_complete > 0:
        raise ValidationError(f"df_complete must be > 0, got {df_complete}")

    timer = Timer()
    timer.start()

    with timer.section('rubin'):
        params = rubin_pool(
            np.vstack([f.coefficients for f in fits]),
            np.stack([f.covariance for f in fits]),
            df_complete=df_complete,
            column_names=names,
            n_events=n_events,
            n_observations=fits[0].n_observations,
        )

    timer.stop()

    warnings_list = []
    if params.m == 1:
        warnings_list.append(
            "pooling a single fit: between-imputation variance is zero"
        )

    result = Result(
        params=params,
        info={"method": "Rubin's rules", "m": params.m},
        timing=timer.result(),
        backend_name="cpu_pool",
        warnings=tuple(warnings_list),
    )
    return PooledSolution(_result=result, _source=fits[0].design.source)


def fit_imputed(
    imputed,
    formula: Formula,
    *,
    n_jobs: int = 1,
    center: bool = False,
    df_complete: float | None = None,
    **fit_kw,
) -> PooledSolution:
    """Build, fit and pool a Cox model over every completed dataset.

    Matches rms::fit.mult.impute(..., cph, ...). Spline knots are placed
    once, on the first completed dataset, and shared by every fit. The fits are
    independent and run in parallel with joblib when ``n_jobs > 1``;
    the first failure propagates and no pooled estimate is returned.

    Parameters
    ----------
    imputed : ImputedDatasetSet or sequence of Dataset
    formula : Formula
    n_jobs : int
        Parallel fits via joblib (threads); 1 runs inline.
    center : bool
        Passed to :func:`pysurvreg.formula.build`.
    df_complete : float or None
        Passed to :func:`pool`.
    **fit_kw
        Passed to :func:`pysurvreg.cox.fit` (ties, tol, max_iter, ...).

    Returns
    -------
    PooledSolution
    """
    datasets = list(imputed)
    if not datasets:
        raise DegenerateFitError("imputed: no datasets to fit")
    for i, ds in enumerate(datasets):
        if not isinstance(ds, Dataset):
            raise DegenerateFitError(
                f"imputed[{i}]: expected a Dataset, got {type(ds).__name__}", index=i,
            )

    formula = _fix_knots(formula, build(datasets[0], formula, center=center))

    if n_jobs == 1:
        fits = [_fit_one(ds, formula, center, fit_kw) for ds in datasets]
    else:
        fits = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_fit_one)(ds, formula, center, fit_kw) for ds in datasets
        )
    return pool(fits, df_complete=df_complete)


def _fit_one(dataset: Dataset, formula: Formula, center: bool, fit_kw: dict) -> CoxSolution:
    return cox_fit(build(dataset, formula, center=center), **fit_kw)


def _fix_knots(formula: Formula, design: DesignMatrix) -> Formula:
    """Pin every spline to the knots placed on the first completed dataset."""
    knots: dict[str, tuple[float, ...]] = {}
    for enc in design.encodings:
        _collect_knots(enc, knots)
    return Formula.of(*(_pin(term, knots) for term in formula.terms))


def _collect_knots(enc: Encoding, out: dict[str, tuple[float, ...]]) -> None:
    if isinstance(enc, SplineEncoding):
        out.setdefault(enc.name, tuple(enc.knots))
    elif isinstance(enc, InteractionEncoding):
        _collect_knots(enc.left, out)
        _collect_knots(enc.right, out)


def _pin(term: Term, knots: dict[str, tuple[float, ...]]) -> Term:
    if isinstance(term, Spline) and term.positions is None:
        return Spline(term.name, positions=knots[term.name])
    if isinstance(term, Interaction):
        return Interaction(_pin(term.left, knots), _pin(term.right, knots))
    return term
