"""
Model formulas as explicit term trees.

A Formula is an ordered tuple of Terms. Terms are frozen and hashable,
so the builder can deduplicate implied main effects by equality.

    Formula.of(Main("age"), Spline("chol", 4),
               Interaction(Main("sex"), Main("treat")),
               Strata("site"))

is the tree for ``age + rcs(chol, 4) + sex * treat + strata(site)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, TYPE_CHECKING

from pysurvreg.core.exceptions import FormulaError

if TYPE_CHECKING:
    from pysurvreg.dataset.design import Dataset


class Term:
    """Base class of formula terms."""

    @property
    def label(self) -> str:
        raise NotImplementedError

    @property
    def variables(self) -> tuple[str, ...]:
        """Covariates the term reads, in order of first appearance."""
        raise NotImplementedError

    def n_columns(self, dataset: Dataset) -> int:
        """Number of design columns the term resolves to."""
        raise NotImplementedError

    def __str__(self) -> str:
        return self.label


def _spec(dataset: Dataset, name: str, term: Term):
    try:
        return dataset.spec(name)
    except KeyError:
        raise FormulaError(
            f"{term.label}: unknown covariate {name!r}; available: {dataset.names}",
            term=term.label,
        ) from None


def _n_indicators(spec, term: Term) -> int:
    n_levels = len(spec.levels)
    if n_levels < 2:
        raise FormulaError(
            f"{term.label}: factor {spec.name} needs at least two levels to "
            f"form indicator columns, got {n_levels} ({', '.join(map(str, spec.levels))})",
            term=term.label,
        )
    return n_levels - 1


@dataclass(frozen=True)
class Main(Term):
    """Main effect: one column (continuous) or level-1 indicators (categorical)."""

    name: str

    @property
    def label(self) -> str:
        return self.name

    @property
    def variables(self) -> tuple[str, ...]:
        return (self.name,)

    def n_columns(self, dataset: Dataset) -> int:
        spec = _spec(dataset, self.name, self)
        if spec.kind == "stratum":
            raise FormulaError(
                f"{self.name} is a stratum covariate; use Strata({self.name!r})",
                term=self.label,
            )
        if spec.kind == "categorical":
            return _n_indicators(spec, self)
        return 1


@dataclass(frozen=True)
class Spline(Term):
    """Restricted cubic spline main effect with ``knots`` knots.

    ``positions`` fixes the knot locations; otherwise they are placed at
    quantiles of the observed values when the design is built.
    """

    name: str
    knots: int = 4
    positions: tuple[float, ...] | None = None

    def __post_init__(self) -> None:
        if self.positions is not None:
            positions = tuple(float(p) for p in self.positions)
            object.__setattr__(self, "positions", positions)
            object.__setattr__(self, "knots", len(positions))
        if self.knots < 3:
            raise FormulaError(
                f"{self.label}: a restricted cubic spline needs at least 3 knots, "
                f"got {self.knots}",
                term=self.label,
            )

    @property
    def label(self) -> str:
        return f"rcs({self.name}, {self.knots})"

    @property
    def variables(self) -> tuple[str, ...]:
        return (self.name,)

    def n_columns(self, dataset: Dataset) -> int:
        spec = _spec(dataset, self.name, self)
        if spec.is_factor:
            raise FormulaError(
                f"{self.label}: splines require a continuous covariate, "
                f"{self.name} is {spec.kind}",
                term=self.label,
            )
        return self.knots - 1


@dataclass(frozen=True)
class Strata(Term):
    """Stratification factor: no columns, partitions the risk sets."""

    name: str

    @property
    def label(self) -> str:
        return f"strata({self.name})"

    @property
    def variables(self) -> tuple[str, ...]:
        return (self.name,)

    def n_columns(self, dataset: Dataset) -> int:
        spec = _spec(dataset, self.name, self)
        if not spec.is_factor:
            raise FormulaError(
                f"{self.label}: stratification requires a categorical or stratum "
                f"covariate, {self.name} is continuous",
                term=self.label,
            )
        return 0

    def n_indicator_columns(self, dataset: Dataset) -> int:
        """Columns the factor contributes inside an interaction."""
        self.n_columns(dataset)
        return _n_indicators(dataset.spec(self.name), self)


@dataclass(frozen=True)
class Interaction(Term):
    """Product of every column pair of two terms.

    Implies the main terms of both sides; a Strata side contributes its
    level indicators to the product and stratifies instead of adding a
    main column.
    """

    left: Term
    right: Term

    def __post_init__(self) -> None:
        for side in (self.left, self.right):
            if not isinstance(side, Term):
                raise FormulaError(
                    f"interaction sides must be Terms, got {type(side).__name__}"
                )
        if isinstance(self.left, Strata) and isinstance(self.right, Strata):
            raise FormulaError(
                f"{self.label}: two stratification factors cannot interact; "
                f"list both as Strata terms instead",
                term=self.label,
            )
        shared = set(self.left.variables) & set(self.right.variables)
        if shared:
            raise FormulaError(
                f"{self.label}: a variable cannot interact with itself "
                f"({', '.join(sorted(shared))})",
                term=self.label,
            )

    @property
    def label(self) -> str:
        return f"{self.left.label}:{self.right.label}"

    @property
    def variables(self) -> tuple[str, ...]:
        seen = dict.fromkeys(self.left.variables + self.right.variables)
        return tuple(seen)

    def n_columns(self, dataset: Dataset) -> int:
        return _side_columns(self.left, dataset) * _side_columns(self.right, dataset)

    def implied(self) -> Iterator[Term]:
        """Main terms implied by the interaction, innermost first."""
        for side in (self.left, self.right):
            if isinstance(side, Interaction):
                yield from side.implied()
            yield side


def _side_columns(term: Term, dataset: Dataset) -> int:
    if isinstance(term, Strata):
        return term.n_indicator_columns(dataset)
    return term.n_columns(dataset)


@dataclass(frozen=True)
class Formula:
    """Ordered collection of terms: the right-hand side of
    ``Surv(time, status) ~ ...``."""

    terms: tuple[Term, ...]

    def __post_init__(self) -> None:
        terms = tuple(self.terms)
        if len(terms) == 0:
            raise FormulaError("formula must contain at least one term")
        for term in terms:
            if not isinstance(term, Term):
                raise FormulaError(
                    f"formula terms must be Term instances, got {type(term).__name__}"
                )
        object.__setattr__(self, "terms", terms)

    @classmethod
    def of(cls, *terms: Term) -> Formula:
        return cls(terms=terms)

    @property
    def variables(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for term in self.terms:
            seen.update(dict.fromkeys(term.variables))
        return tuple(seen)

    def without(self, *labels: str) -> Formula:
        """Formula with the named terms removed."""
        kept = tuple(t for t in self.terms if t.label not in labels)
        return Formula(terms=kept)

    def __str__(self) -> str:
        return " + ".join(t.label for t in self.terms)
