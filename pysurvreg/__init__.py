"""
pysurvreg: survival regression with multiple imputation.

Cox proportional hazards regression with restricted cubic splines,
interactions and stratification, chained-equation multiple imputation
with predictive mean matching, Rubin's-rules pooling, and
proportional-hazards diagnostics.

Submodules:
    dataset: Record validation into immutable Datasets
    formula: Term trees and design matrices
    cox: Cox PH solver, PH diagnostics, covariate effects
    impute: Chained-equation imputation and pooling
    parse: Textual formula front end

Example:
    >>> import pysurvreg as sr
    >>> ds = sr.validate(records, specs, event_value=1, censored_value=0)
    >>> imputed = sr.impute(ds, m=10, seed=1)
    >>> pooled = sr.fit_imputed(imputed, sr.parse_formula("age + rcs(chol, 4) + strata(site)"))
    >>> print(pooled.summary())
"""

__version__ = "0.1.0"

from pysurvreg import cox, dataset, formula, impute
from pysurvreg.core.exceptions import (
    PySurvRegError,
    ValidationError,
    SchemaError,
    FormulaError,
    InsufficientDataError,
    TooManyPredictorsError,
    SingularInformationError,
    NonConvergenceError,
    DegenerateFitError,
    FitCancelledError,
    ConvergenceWarning,
)
from pysurvreg.dataset import MISSING, CovariateSpec, Dataset, validate
from pysurvreg.formula import DesignMatrix, Formula, Interaction, Main, Spline, Strata, build
from pysurvreg.cox import (
    CoxSolution,
    ZPHSolution,
    check_proportional_hazards,
    coxph,
    datadist,
    effect_summary,
    fit,
    partial_effect,
)
from pysurvreg.impute import ImputedDatasetSet, PooledSolution, fit_imputed, impute, pool
from pysurvreg.parse import parse_formula

__all__ = [
    "__version__",
    # Pipeline
    "validate",
    "impute",
    "build",
    "fit",
    "pool",
    "check_proportional_hazards",
    "coxph",
    "fit_imputed",
    "datadist",
    "partial_effect",
    "effect_summary",
    "parse_formula",
    # Types
    "MISSING",
    "CovariateSpec",
    "Dataset",
    "Formula",
    "Main",
    "Spline",
    "Interaction",
    "Strata",
    "DesignMatrix",
    "CoxSolution",
    "ZPHSolution",
    "ImputedDatasetSet",
    "PooledSolution",
    # Errors
    "PySurvRegError",
    "ValidationError",
    "SchemaError",
    "FormulaError",
    "InsufficientDataError",
    "TooManyPredictorsError",
    "SingularInformationError",
    "NonConvergenceError",
    "DegenerateFitError",
    "FitCancelledError",
    "ConvergenceWarning",
    # Subpackages
    "cox",
    "dataset",
    "formula",
    "impute",
]
