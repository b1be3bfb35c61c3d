"""
Model formulas and design matrices.

Public API:
    Formula.of(*terms)
    Main(name), Spline(name, knots), Interaction(left, right), Strata(name)
    build(dataset, formula, ...) -> DesignMatrix

Example:
    >>> from pysurvreg.formula import Formula, Main, Spline, Strata, build
    >>> f = Formula.of(Main("age"), Spline("chol", 4), Strata("site"))
    >>> design = build(dataset, f)
    >>> design.column_names
    ('age', 'chol', "chol'", "chol''")
"""

from pysurvreg.formula.terms import Formula, Interaction, Main, Spline, Strata, Term
from pysurvreg.formula.design import DesignMatrix
from pysurvreg.formula.builder import build, expand_terms

__all__ = [
    "build",
    "expand_terms",
    "Formula",
    "Term",
    "Main",
    "Spline",
    "Interaction",
    "Strata",
    "DesignMatrix",
]
