"""
Survival records and their validation.

Public API:
    validate(records, specs, ...) -> Dataset
    CovariateSpec(name, kind, levels, unseen)
    MISSING
"""

from pysurvreg.dataset._common import MISSING, CovariateSpec, is_missing
from pysurvreg.dataset.design import Dataset, validate

__all__ = [
    "validate",
    "Dataset",
    "CovariateSpec",
    "MISSING",
    "is_missing",
]
