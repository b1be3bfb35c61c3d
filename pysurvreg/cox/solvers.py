"""
Public API for Cox regression.

    fit(design, time?, event?, strata?) → CoxSolution
    coxph(time, event, X) → CoxSolution
    check_proportional_hazards(fit, ...) → ZPHSolution

Each function validates inputs, creates a CoxDesign, dispatches to the
backend, and wraps the Result in a Solution.
"""

from __future__ import annotations

from typing import Literal

from pysurvreg.core.compute.timing import Timer
from pysurvreg.core.compute.tolerances import COX_MAX_ITER, COX_MAX_STEP, COX_TOL
from pysurvreg.core.exceptions import DimensionError, ValidationError
from pysurvreg.core.result import Result
from pysurvreg.cox._zph import TRANSFORMS, zph_test
from pysurvreg.cox.backends.cpu import CPUCoxBackend
from pysurvreg.cox.design import CoxDesign
from pysurvreg.cox.solution import CoxSolution, ZPHSolution
from pysurvreg.formula.design import DesignMatrix


def fit(
    design: DesignMatrix,
    time=None,
    event=None,
    *,
    strata=None,
    ties: Literal["efron", "breslow"] = "efron",
    tol: float = COX_TOL,
    max_iter: int = COX_MAX_ITER,
    max_step: float = COX_MAX_STEP,
    cancel=None,
) -> CoxSolution:
    """Fit a Cox proportional hazards model to a formula design.

    Matches R's survival::coxph(Surv(time, status) ~ formula).

    Parameters
    ----------
    design : DesignMatrix
        Output of :func:`pysurvreg.formula.build`.
    time, event : array-like or None
        Outcome aligned with the design rows; default to the outcome the
        design carries.
    strata : array-like or None
        Stratum labels aligned with the design rows; default to the
        design's Strata terms.
    ties : str
        Method for handling tied event times: "efron" (default) or "breslow".
    tol : float
        Convergence tolerance on the score norm sqrt(U' I^-1 U).
    max_iter : int
        Maximum Newton-Raphson iterations.
    max_step : float
        Largest absolute coordinate of one Newton step.
    cancel : threading.Event or None
        Any object with ``is_set()``; checked between iterations.

    Returns
    -------
    CoxSolution

    Raises
    ------
    SingularInformationError
        Information matrix not positive definite (collinear or
        constant columns, no within-stratum variation).
    NonConvergenceError
        Iteration cap reached; the last iterate is attached.
    InsufficientDataError
        No events.
    FitCancelledError
        ``cancel`` was set.
    """
    cox_design = CoxDesign.from_matrix(design, time, event, strata)
    return _solve(cox_design, ties, tol, max_iter, max_step, cancel)


def coxph(
    time,
    event,
    X,
    *,
    strata=None,
    column_names=None,
    ties: Literal["efron", "breslow"] = "efron",
    tol: float = COX_TOL,
    max_iter: int = COX_MAX_ITER,
    max_step: float = COX_MAX_STEP,
    cancel=None,
) -> CoxSolution:
    """Cox proportional hazards model on raw arrays.

    Parameters
    ----------
    time : array-like
        Time to event or censoring, all > 0.
    event : array-like
        Event indicator (1=event, 0=censored).
    X : array-like
        Covariate matrix (n, p). No intercept column.
    strata : array-like or None
        Stratum labels; risk sets never cross strata.
    column_names : sequence of str or None

    See :func:`fit` for the remaining parameters.

    Returns
    -------
    CoxSolution
    """
    cox_design = CoxDesign.for_arrays(
        time, event, X, strata=strata, column_names=column_names,
    )
    return _solve(cox_design, ties, tol, max_iter, max_step, cancel)


def _solve(
    design: CoxDesign,
    ties: str,
    tol: float,
    max_iter: int,
    max_step: float,
    cancel,
) -> CoxSolution:
    if ties not in ("efron", "breslow"):
        raise ValidationError(
            f"ties must be 'efron' or 'breslow', got '{ties}'"
        )
    if tol <= 0:
        raise ValidationError(f"tol must be > 0, got {tol}")
    if max_iter < 1:
        raise ValidationError(f"max_iter must be >= 1, got {max_iter}")
    if max_step <= 0:
        raise ValidationError(f"max_step must be > 0, got {max_step}")

    backend = CPUCoxBackend(
        ties=ties, tol=tol, max_iter=max_iter, max_step=max_step, cancel=cancel,
    )
    result = backend.solve(design)
    return CoxSolution(_result=result, _design=design)


def check_proportional_hazards(
    fit: CoxSolution,
    design=None,
    time=None,
    event=None,
    *,
    transform: Literal["rank", "identity", "log", "km"] = "rank",
) -> ZPHSolution:
    """Test the proportional-hazards assumption of a fitted model.

    Matches R's survival::cox.zph(). The model is never modified;
    correcting a violation (spline terms, stratification) is up to the
    caller.

    Parameters
    ----------
    fit : CoxSolution
    design : DesignMatrix, array-like or None
        The covariates the model was fitted on. Defaults to the fit's own
        design.
    time, event : array-like or None
        Outcome aligned with ``design``; default to the fit's outcome.
    transform : str
        Time transform: "rank" (default), "identity", "log" or "km".

    Returns
    -------
    ZPHSolution
    """
    if not isinstance(fit, CoxSolution):
        raise ValidationError(
            f"fit: expected a CoxSolution, got {type(fit).__name__}"
        )
    if transform not in TRANSFORMS:
        raise ValidationError(
            f"transform must be one of {TRANSFORMS}, got {transform!r}"
        )

    own = fit.design
    if design is None and time is None and event is None:
        data = own
    elif isinstance(design, DesignMatrix):
        data = CoxDesign.from_matrix(design, time, event)
    else:
        X = own.X if design is None else design
        data = CoxDesign.for_arrays(
            own.time if time is None else time,
            own.event if event is None else event,
            X,
            strata=own.strata,
        )

    if data.p != len(fit.coefficients):
        raise DimensionError(
            f"design has {data.p} columns, the fit has {len(fit.coefficients)}"
        )
    if data.n != own.n:
        raise DimensionError(
            f"design has {data.n} rows, the fit was made on {own.n}"
        )

    source = data.source if data.source is not None else own.source
    term_slices = None if source is None else source.term_slices

    timer = Timer()
    timer.start()

    with timer.section('schoenfeld'):
        params = zph_test(
            fit.params,
            data.time, data.event, data.X,
            data.strata,
            term_slices,
            transform=transform,
        )

    timer.stop()

    result = Result(
        params=params,
        info={
            "method": "Grambsch-Therneau scaled Schoenfeld test",
            "transform": transform,
        },
        timing=timer.result(),
        backend_name="cpu_zph",
        warnings=(),
    )

    return ZPHSolution(_result=result)
