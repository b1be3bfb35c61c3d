"""
Design builder: Formula x Dataset -> DesignMatrix.

Expansion rules:
    Main (continuous)      -> 1 column, raw unless center=True
    Main (categorical)     -> levels-1 indicators against the reference
    Spline(x, k)           -> k-1 restricted cubic spline columns
    Interaction(A, B)      -> p*q products, A's and B's main terms implied
    Strata(g)              -> no column, per-row stratum id

Column order follows the formula; implied main terms are inserted just
before the interaction that implies them.
"""

from __future__ import annotations

from typing import Literal

import numpy as np
from numpy.typing import NDArray

from pysurvreg.core.exceptions import FormulaError, InsufficientDataError, SchemaError
from pysurvreg.dataset.design import Dataset
from pysurvreg.formula._rcs import check_knots, place_knots, rcs_basis
from pysurvreg.formula.design import (
    ContinuousEncoding,
    DesignMatrix,
    Encoding,
    FactorEncoding,
    InteractionEncoding,
    SplineEncoding,
)
from pysurvreg.formula.terms import Formula, Interaction, Spline, Strata, Term


def build(
    dataset: Dataset,
    formula: Formula,
    *,
    center: bool = False,
    na_action: Literal["omit", "fail"] = "omit",
) -> DesignMatrix:
    """Expand a formula into a design matrix.

    Parameters
    ----------
    dataset : Dataset
        Validated data.
    formula : Formula
        Term tree.
    center : bool
        Subtract column means from continuous and spline columns. The
        default keeps raw values.
    na_action : str
        "omit" (default) drops rows missing any formula variable;
        "fail" raises SchemaError instead.

    Returns
    -------
    DesignMatrix

    Raises
    ------
    FormulaError
        Ill-formed expansion (unknown variable, duplicate or conflicting
        terms, spline on a factor, single-level factor, only strata terms).
    InsufficientDataError
        Too few distinct values for the requested knots, or no rows left.
    """
    if not isinstance(formula, Formula):
        raise FormulaError(
            f"formula must be a Formula, got {type(formula).__name__}"
        )
    if na_action not in ("omit", "fail"):
        raise FormulaError(f"na_action must be 'omit' or 'fail', got {na_action!r}")

    terms = expand_terms(formula)
    # validates variables and kinds
    if sum(term.n_columns(dataset) for term in terms) == 0:
        raise FormulaError(
            f"formula has no column-bearing terms: {formula}; strata alone "
            f"give no coefficients to estimate, add at least one covariate"
        )

    rows = _usable_rows(dataset, formula.variables, na_action)
    columns = {
        name: np.asarray(dataset.values(name))[rows] for name in formula.variables
    }

    encodings: dict[Term, Encoding] = {}
    blocks: list[NDArray] = []
    column_names: list[str] = []
    column_terms: list[str] = []
    term_slices: dict[str, tuple[int, ...]] = {}
    nonlinear_slices: dict[str, tuple[int, ...]] = {}
    strata_terms: list[Strata] = []

    for term in terms:
        if isinstance(term, Strata):
            strata_terms.append(term)
            continue
        enc = _make_encoding(term, dataset, columns, encodings, center)
        encodings[term] = enc
        block = enc.encode(columns)
        start = len(column_names)
        idx = tuple(range(start, start + enc.n_columns))
        term_slices[term.label] = idx
        if isinstance(term, Spline):
            nonlinear_slices[term.label] = idx[1:]
        blocks.append(block)
        column_names.extend(enc.column_names)
        column_terms.extend([term.label] * enc.n_columns)

    if len(set(column_names)) != len(column_names):
        dupes = sorted({c for c in column_names if column_names.count(c) > 1})
        raise FormulaError(f"duplicate design columns: {dupes}")

    n = len(rows)
    X = np.hstack(blocks)
    strata, strata_labels = _strata_ids(strata_terms, dataset, columns)

    for arr in (X, rows):
        arr.setflags(write=False)

    return DesignMatrix(
        X=X,
        column_names=tuple(column_names),
        column_terms=tuple(column_terms),
        term_slices=term_slices,
        nonlinear_slices=nonlinear_slices,
        terms=tuple(terms),
        encodings=tuple(encodings[t] for t in terms if not isinstance(t, Strata)),
        time=dataset.time[rows].copy(),
        event=dataset.event[rows].astype(np.float64),
        strata=strata,
        strata_labels=strata_labels,
        rows=rows,
        n_excluded=dataset.n - n,
        formula=formula,
        centered=center,
    )


def expand_terms(formula: Formula) -> list[Term]:
    """Formula terms with implied main terms inserted, duplicates checked."""
    expanded: list[Term] = []
    explicit: set[Term] = set()

    for term in formula.terms:
        if term in explicit:
            raise FormulaError(f"term {term.label!r} appears twice", term=term.label)
        explicit.add(term)
        if isinstance(term, Interaction):
            for implied in term.implied():
                if implied not in expanded:
                    expanded.append(implied)
        if term not in expanded:
            expanded.append(term)

    _check_conflicts(expanded)
    return expanded


def _check_conflicts(terms: list[Term]) -> None:
    """A variable may enter through only one kind of main term."""
    forms: dict[str, Term] = {}
    for term in terms:
        if isinstance(term, Interaction):
            continue
        prior = forms.get(term.variables[0])
        if prior is not None and prior != term:
            raise FormulaError(
                f"{term.variables[0]} enters the model as both {prior.label!r} "
                f"and {term.label!r}; use one form (interactions must use the "
                f"same form as the main effect)",
                term=term.label,
            )
        forms[term.variables[0]] = term


def _usable_rows(dataset: Dataset, variables: tuple[str, ...], na_action: str) -> NDArray:
    ok = np.ones(dataset.n, dtype=bool)
    for name in variables:
        ok &= ~dataset.missing(name)
    if na_action == "fail" and not np.all(ok):
        bad = [name for name in variables if np.any(dataset.missing(name))]
        raise SchemaError(
            f"missing values in formula variables {bad} with na_action='fail'",
            column=bad[0],
        )
    rows = np.flatnonzero(ok)
    if len(rows) == 0:
        raise InsufficientDataError(
            "no complete rows for the formula variables",
            required=1,
            available=0,
        )
    return rows


def _make_encoding(
    term: Term,
    dataset: Dataset,
    columns: dict[str, NDArray],
    done: dict[Term, Encoding],
    center: bool,
) -> Encoding:
    if isinstance(term, Interaction):
        left = _side_encoding(term.left, dataset, columns, done, center)
        right = _side_encoding(term.right, dataset, columns, done, center)
        names = tuple(f"{a}:{b}" for a in left.column_names for b in right.column_names)
        return InteractionEncoding(
            label=term.label, column_names=names, left=left, right=right,
        )

    if isinstance(term, Spline):
        x = columns[term.name]
        if term.positions is not None:
            knots = check_knots(np.asarray(term.positions), term.name)
        else:
            knots = place_knots(x, term.knots, term.name)
        offsets = rcs_basis(x, knots).mean(axis=0) if center else np.zeros(len(knots) - 1)
        names = (term.name,) + tuple(
            term.name + "'" * j for j in range(1, len(knots) - 1)
        )
        return SplineEncoding(
            label=term.label,
            column_names=names,
            name=term.name,
            knots=tuple(float(k) for k in knots),
            center=tuple(float(c) for c in offsets),
        )

    spec = dataset.spec(term.name)
    if spec.is_factor:
        return _factor_encoding(term, spec)
    offset = float(np.mean(columns[term.name])) if center else 0.0
    return ContinuousEncoding(
        label=term.label, column_names=(term.name,), name=term.name, center=offset,
    )


def _side_encoding(
    side: Term,
    dataset: Dataset,
    columns: dict[str, NDArray],
    done: dict[Term, Encoding],
    center: bool,
) -> Encoding:
    if isinstance(side, Strata):
        return _factor_encoding(side, dataset.spec(side.name))
    if side in done:
        return done[side]
    return _make_encoding(side, dataset, columns, done, center)


def _factor_encoding(term: Term, spec) -> FactorEncoding:
    names = tuple(f"{spec.name}={level}" for level in spec.levels[1:])
    return FactorEncoding(
        label=term.label, column_names=names, name=spec.name, levels=spec.levels,
    )


def _strata_ids(
    strata_terms: list[Strata],
    dataset: Dataset,
    columns: dict[str, NDArray],
) -> tuple[NDArray | None, tuple[str, ...]]:
    if not strata_terms:
        return None, ()
    names = [t.name for t in strata_terms]
    codes = np.column_stack([columns[name] for name in names])
    combos, ids = np.unique(codes, axis=0, return_inverse=True)
    labels = tuple(
        ", ".join(
            f"{name}={dataset.spec(name).levels[code]}" for name, code in zip(names, combo)
        )
        for combo in combos
    )
    ids = np.asarray(ids, dtype=np.int64).ravel()
    ids.setflags(write=False)
    return ids, labels
