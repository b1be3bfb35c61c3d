"""
DesignMatrix: numeric expansion of a Formula over a Dataset.

Each resolved term keeps an encoding (levels, knots, centering) learned
from the data it was built on, so new covariate values can be encoded
identically later (prediction, partial effects).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

import numpy as np
from numpy.typing import NDArray

from pysurvreg.core.exceptions import FormulaError
from pysurvreg.formula._rcs import rcs_basis
from pysurvreg.formula.terms import Formula, Term


# ── Term encodings ───────────────────────────────────────────────────


@dataclass(frozen=True)
class Encoding:
    """Maps raw covariate columns to a term's design columns."""

    label: str
    column_names: tuple[str, ...]

    @property
    def n_columns(self) -> int:
        return len(self.column_names)

    def encode(self, columns: Mapping[str, NDArray]) -> NDArray:
        raise NotImplementedError


@dataclass(frozen=True)
class ContinuousEncoding(Encoding):
    name: str
    center: float

    def encode(self, columns: Mapping[str, NDArray]) -> NDArray:
        x = np.asarray(_column(columns, self.name), dtype=np.float64)
        return (x - self.center).reshape(-1, 1)


@dataclass(frozen=True)
class FactorEncoding(Encoding):
    """Treatment contrasts: one indicator per non-reference level."""

    name: str
    levels: tuple[Any, ...]

    def encode(self, columns: Mapping[str, NDArray]) -> NDArray:
        codes = np.asarray(_column(columns, self.name), dtype=np.int64)
        out = np.zeros((len(codes), len(self.levels) - 1), dtype=np.float64)
        for j in range(1, len(self.levels)):
            out[:, j - 1] = codes == j
        return out


@dataclass(frozen=True)
class SplineEncoding(Encoding):
    name: str
    knots: tuple[float, ...]
    center: tuple[float, ...]

    def encode(self, columns: Mapping[str, NDArray]) -> NDArray:
        x = np.asarray(_column(columns, self.name), dtype=np.float64)
        return rcs_basis(x, np.asarray(self.knots)) - np.asarray(self.center)


@dataclass(frozen=True)
class InteractionEncoding(Encoding):
    left: Encoding
    right: Encoding

    def encode(self, columns: Mapping[str, NDArray]) -> NDArray:
        a = self.left.encode(columns)
        b = self.right.encode(columns)
        n = a.shape[0]
        return np.einsum('ni,nj->nij', a, b).reshape(n, a.shape[1] * b.shape[1])


def _column(columns: Mapping[str, NDArray], name: str) -> NDArray:
    try:
        return columns[name]
    except KeyError:
        raise FormulaError(f"encode: no values supplied for {name!r}") from None


# ── Design matrix ────────────────────────────────────────────────────


@dataclass(frozen=True, eq=False)
class DesignMatrix:
    """Validated design for a Cox fit.

    Attributes
    ----------
    X : NDArray
        (n, p) design columns, no intercept.
    column_names : tuple of str
    column_terms : tuple of str
        Label of the owning term for each column.
    term_slices : dict
        Term label -> tuple of column indices.
    nonlinear_slices : dict
        Spline term label -> indices of its nonlinear columns.
    terms : tuple of Term
        Expanded terms (implied main effects included) in column order.
    encodings : tuple of Encoding
        Encodings of the column-bearing terms, aligned with ``terms``
        minus the Strata terms.
    time, event : NDArray
        (n,) outcome aligned with X; event is 0/1 float.
    strata : NDArray or None
        (n,) integer stratum ids, None when unstratified.
    strata_labels : tuple of str
        Label of each stratum id.
    rows : NDArray
        Indices of the source Dataset rows used.
    n_excluded : int
        Source rows dropped for missing values.
    formula : Formula
        The formula as given.
    """

    X: NDArray
    column_names: tuple[str, ...]
    column_terms: tuple[str, ...]
    term_slices: dict[str, tuple[int, ...]]
    nonlinear_slices: dict[str, tuple[int, ...]]
    terms: tuple[Term, ...]
    encodings: tuple[Encoding, ...]
    time: NDArray
    event: NDArray
    strata: NDArray | None
    strata_labels: tuple[str, ...]
    rows: NDArray
    n_excluded: int
    formula: Formula
    centered: bool

    @property
    def n(self) -> int:
        return self.X.shape[0]

    @property
    def p(self) -> int:
        return self.X.shape[1]

    @property
    def n_events(self) -> int:
        return int(np.sum(self.event))

    @property
    def term_labels(self) -> tuple[str, ...]:
        return tuple(self.term_slices)

    @property
    def variables(self) -> tuple[str, ...]:
        """Covariates that feed design columns."""
        seen: dict[str, None] = {}
        for enc in self.encodings:
            seen.update(dict.fromkeys(_encoding_variables(enc)))
        return tuple(seen)

    def columns_of(self, label: str) -> tuple[int, ...]:
        """Column indices of a term."""
        try:
            return self.term_slices[label]
        except KeyError:
            raise FormulaError(
                f"no term {label!r}; terms are {self.term_labels}", term=label,
            ) from None

    def encode(self, columns: Mapping[str, NDArray]) -> NDArray:
        """Encode raw covariate values with this design's encodings.

        Parameters
        ----------
        columns : mapping
            Covariate name -> (n,) values: floats for continuous
            covariates, level codes for factors. Must cover
            :attr:`variables`.

        Returns
        -------
        NDArray
            (n, p) rows in this design's column order.
        """
        blocks = [enc.encode(columns) for enc in self.encodings]
        if not blocks:
            return np.zeros((0, 0))
        return np.hstack(blocks)

    def __repr__(self) -> str:
        strata = 0 if self.strata is None else len(self.strata_labels)
        return (
            f"DesignMatrix(n={self.n}, p={self.p}, terms={len(self.terms)}, "
            f"strata={strata}, excluded={self.n_excluded})"
        )


def _encoding_variables(enc: Encoding) -> tuple[str, ...]:
    if isinstance(enc, InteractionEncoding):
        return _encoding_variables(enc.left) + _encoding_variables(enc.right)
    return (enc.name,)
