"""
Exception hierarchy for pysurvreg.

All exceptions inherit from PySurvRegError to allow catching any
library-specific error. Domain-specific exceptions inherit from the
appropriate base class here.

Design principles:
    - Exceptions carry diagnostic information as attributes
    - Error messages are actionable with actual vs expected values
    - Never catch and re-raise with less information
"""

from __future__ import annotations

from typing import Any


class PySurvRegError(Exception):
    """Base exception for all pysurvreg errors."""
    pass


class ValidationError(PySurvRegError):
    """
    Input validation failed.

    Raised when user-provided inputs fail validation checks.
    """
    pass


class DimensionError(ValidationError):
    """
    Array dimensions are incorrect or inconsistent.
    """
    pass


class SchemaError(ValidationError):
    """
    Raw records do not conform to the declared covariate schema.

    Raised for out-of-domain categorical values, status values outside the
    declared two-value domain, non-positive times, and similar defects of
    the input data. Fatal: there is no recovery path.

    Attributes:
        column: Name of the offending column, if known
        row: Index of the offending record, if known
    """

    def __init__(
        self,
        message: str,
        column: str | None = None,
        row: int | None = None,
    ):
        super().__init__(message)
        self.column = column
        self.row = row


class FormulaError(ValidationError):
    """
    A model formula cannot be expanded into a design matrix.

    Attributes:
        term: Label of the offending term, if known
    """

    def __init__(self, message: str, term: str | None = None):
        super().__init__(message)
        self.term = term


class InsufficientDataError(ValidationError):
    """
    Too little data for the requested computation.

    Raised when a spline asks for more knots than the covariate has
    distinct values, when no complete rows remain, or when there are no
    events to fit. The caller may retry with a smaller request.

    Attributes:
        required: What was needed (e.g. number of knots)
        available: What the data provided (e.g. distinct values)
    """

    def __init__(
        self,
        message: str,
        required: int | None = None,
        available: int | None = None,
    ):
        super().__init__(message)
        self.required = required
        self.available = available


class TooManyPredictorsError(ValidationError):
    """
    An imputation model has more predictors than the configured ceiling.

    Attributes:
        target: Variable being imputed
        n_predictors: Number of encoded predictor columns
        max_predictors: The ceiling that was exceeded
    """

    def __init__(
        self,
        message: str,
        target: str | None = None,
        n_predictors: int | None = None,
        max_predictors: int | None = None,
    ):
        super().__init__(message)
        self.target = target
        self.n_predictors = n_predictors
        self.max_predictors = max_predictors


class NumericalError(PySurvRegError):
    """
    Numerical computation failed.

    Base class for errors arising from numerical issues during computation.
    """
    pass


class SingularMatrixError(NumericalError):
    """
    Matrix is singular or nearly singular.

    Attributes:
        matrix_name: Name/description of the problematic matrix
        condition_number: Estimated condition number, if available
        rank: Numerical rank, if computed
        expected_rank: Expected rank (typically min(n, p))
    """

    def __init__(
        self,
        message: str,
        matrix_name: str | None = None,
        condition_number: float | None = None,
        rank: int | None = None,
        expected_rank: int | None = None
    ):
        super().__init__(message)
        self.matrix_name = matrix_name
        self.condition_number = condition_number
        self.rank = rank
        self.expected_rank = expected_rank


class SingularInformationError(SingularMatrixError):
    """
    The Cox observed-information matrix is not positive definite.

    Signals a modeling problem: a constant column, perfect collinearity,
    or a term with no variation within strata. Columns are never dropped
    automatically.

    Attributes:
        iteration: Newton-Raphson iteration at which the check failed
        min_eigenvalue: Smallest eigenvalue of the information matrix
        column_names: Design column names, for diagnosis
    """

    def __init__(
        self,
        message: str,
        iteration: int | None = None,
        min_eigenvalue: float | None = None,
        condition_number: float | None = None,
        column_names: tuple[str, ...] | None = None,
    ):
        super().__init__(
            message,
            matrix_name='information',
            condition_number=condition_number,
        )
        self.iteration = iteration
        self.min_eigenvalue = min_eigenvalue
        self.column_names = column_names


class ConvergenceError(PySurvRegError):
    """
    Iterative algorithm failed to converge.

    Attributes:
        iterations: Number of iterations completed
        final_change: Final parameter or objective change
        reason: Why convergence failed (e.g., 'max_iterations')
        threshold: The convergence threshold that was not met
    """

    def __init__(
        self,
        message: str,
        iterations: int,
        final_change: float | None = None,
        reason: str | None = None,
        threshold: float | None = None
    ):
        super().__init__(message)
        self.iterations = iterations
        self.final_change = final_change
        self.reason = reason
        self.threshold = threshold


class NonConvergenceError(ConvergenceError):
    """
    Newton-Raphson hit its iteration cap before the score norm fell
    below tolerance.

    The last iterate is attached for inspection; it is never returned as
    a converged fit.

    Attributes:
        last_iterate: Coefficient vector after the final iteration
        loglik: Partial log-likelihood at the last iterate
    """

    def __init__(
        self,
        message: str,
        iterations: int,
        last_iterate: Any = None,
        final_change: float | None = None,
        threshold: float | None = None,
        loglik: float | None = None,
    ):
        super().__init__(
            message,
            iterations=iterations,
            final_change=final_change,
            reason='max_iterations',
            threshold=threshold,
        )
        self.last_iterate = last_iterate
        self.loglik = loglik


class DegenerateFitError(PySurvRegError):
    """
    Pooling input is incomplete or inconsistent.

    Attributes:
        index: Position of the offending fit, if known
    """

    def __init__(self, message: str, index: int | None = None):
        super().__init__(message)
        self.index = index


class FitCancelledError(PySurvRegError):
    """
    A solve was cancelled at an iteration boundary.

    Attributes:
        iterations: Iterations completed before cancellation
    """

    def __init__(self, message: str, iterations: int):
        super().__init__(message)
        self.iterations = iterations


class ConvergenceWarning(UserWarning):
    """Non-fatal convergence concern reported alongside a result."""
    pass
