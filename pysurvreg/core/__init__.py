"""
Core infrastructure for pysurvreg.

Shared abstractions used by all domain subpackages (dataset, formula,
cox, impute).

Key components:
    protocols: Backend protocol
    result: Generic Result[P] envelope
    exceptions: Exception hierarchy
    validation: Input validators
    compute: Timing, numerical defaults, linear algebra
"""

from pysurvreg.core.protocols import Backend
from pysurvreg.core.result import Result
from pysurvreg.core.exceptions import (
    PySurvRegError,
    ValidationError,
    DimensionError,
    SchemaError,
    FormulaError,
    InsufficientDataError,
    TooManyPredictorsError,
    NumericalError,
    SingularMatrixError,
    SingularInformationError,
    ConvergenceError,
    NonConvergenceError,
    DegenerateFitError,
    FitCancelledError,
    ConvergenceWarning,
)

__all__ = [
    # Protocols
    "Backend",
    # Result
    "Result",
    # Exceptions
    "PySurvRegError",
    "ValidationError",
    "DimensionError",
    "SchemaError",
    "FormulaError",
    "InsufficientDataError",
    "TooManyPredictorsError",
    "NumericalError",
    "SingularMatrixError",
    "SingularInformationError",
    "ConvergenceError",
    "NonConvergenceError",
    "DegenerateFitError",
    "FitCancelledError",
    "ConvergenceWarning",
]
