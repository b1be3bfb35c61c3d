"""
Cox proportional hazards regression.

Public API:
    fit(design, time?, event?, strata?) -> CoxSolution
    coxph(time, event, X, ...) -> CoxSolution
    check_proportional_hazards(fit, ...) -> ZPHSolution
    datadist(dataset) -> DataDistribution
    partial_effect(fit, variable, config) -> PartialEffect
    effect_summary(fit, config) -> EffectSummary

Example:
    >>> from pysurvreg.cox import fit, check_proportional_hazards
    >>> result = fit(design)
    >>> print(result.summary())
    >>> print(check_proportional_hazards(result).summary())
"""

from pysurvreg.cox._common import ChunkTest, CoxParams, ZPHParams
from pysurvreg.cox.backends.cpu import CPUCoxBackend
from pysurvreg.cox.design import CoxDesign
from pysurvreg.cox.predict import (
    DataDistribution,
    EffectSummary,
    PartialEffect,
    datadist,
    effect_summary,
    partial_effect,
)
from pysurvreg.cox.solution import CoxSolution, ZPHSolution
from pysurvreg.cox.solvers import check_proportional_hazards, coxph, fit

__all__ = [
    "fit",
    "coxph",
    "check_proportional_hazards",
    "datadist",
    "partial_effect",
    "effect_summary",
    "CoxDesign",
    "CoxSolution",
    "CoxParams",
    "ZPHSolution",
    "ZPHParams",
    "ChunkTest",
    "CPUCoxBackend",
    "DataDistribution",
    "PartialEffect",
    "EffectSummary",
]
