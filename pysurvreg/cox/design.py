"""
CoxDesign: immutable container for a Cox regression problem.

Wraps time, event indicator, covariates and optional strata. Validates
inputs at construction time: all downstream code trusts clean data.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from pysurvreg.core.exceptions import InsufficientDataError, ValidationError
from pysurvreg.core.validation import (
    check_1d,
    check_2d,
    check_array,
    check_consistent_length,
    check_event_indicator,
    check_finite,
    check_positive,
)
from pysurvreg.formula.design import DesignMatrix


@dataclass(frozen=True, eq=False)
class CoxDesign:
    """Immutable Cox regression data.

    Parameters
    ----------
    time : NDArray
        (n,) time to event or censoring, all > 0.
    event : NDArray
        (n,) event indicator: 1 = event observed, 0 = censored.
    X : NDArray
        (n, p) covariate matrix, no intercept.
    strata : NDArray or None
        (n,) integer stratum ids 0..k-1, None when unstratified.
    strata_labels : tuple of str
        Label of each stratum id.
    column_names : tuple of str
    source : DesignMatrix or None
        The formula design the columns came from, if any.
    """

    time: NDArray
    event: NDArray
    X: NDArray
    strata: NDArray | None
    strata_labels: tuple[str, ...]
    column_names: tuple[str, ...]
    source: DesignMatrix | None = None

    @classmethod
    def for_arrays(
        cls,
        time,
        event,
        X,
        *,
        strata=None,
        column_names=None,
    ) -> CoxDesign:
        """Create and validate a Cox problem from raw arrays.

        Parameters
        ----------
        time : array-like
            Time to event or censoring.
        event : array-like
            Event indicator (0/1 or bool).
        X : array-like
            Covariate matrix (n, p); a 1-D array is one column.
        strata : array-like or None
            Stratum labels of any hashable, sortable type.
        column_names : sequence of str or None
            Defaults to x0, x1, ...

        Raises
        ------
        ValidationError
            If inputs are invalid.
        InsufficientDataError
            If there are no events.
        """
        time = check_array(time, "time").ravel()
        event = check_array(event, "event").ravel()
        X = check_array(X, "X")
        if X.ndim == 1:
            X = X.reshape(-1, 1)

        check_1d(time, "time")
        check_2d(X, "X")
        check_consistent_length(time, event, X, names=("time", "event", "X"))
        check_finite(time, "time")
        check_finite(X, "X")
        check_positive(time, "time")
        check_event_indicator(event, "event")

        if X.shape[1] == 0:
            raise ValidationError("X: needs at least one column, got 0")

        if column_names is None:
            column_names = tuple(f"x{j}" for j in range(X.shape[1]))
        else:
            column_names = tuple(str(c) for c in column_names)
            if len(column_names) != X.shape[1]:
                raise ValidationError(
                    f"column_names: expected {X.shape[1]} names, got {len(column_names)}"
                )

        strata_ids, strata_labels = _strata_ids(strata, len(time))

        if not np.any(event == 1):
            raise InsufficientDataError(
                "Cox model needs at least one event, got 0",
                required=1,
                available=0,
            )

        return cls(
            time=time,
            event=event,
            X=X,
            strata=strata_ids,
            strata_labels=strata_labels,
            column_names=column_names,
        )

    @classmethod
    def from_matrix(
        cls,
        design: DesignMatrix,
        time=None,
        event=None,
        strata=None,
    ) -> CoxDesign:
        """Cox problem from a formula design.

        ``time``, ``event`` and ``strata`` default to the outcome and
        stratum ids carried by the design; when given they must be
        aligned with its rows.
        """
        if not isinstance(design, DesignMatrix):
            raise ValidationError(
                f"design: expected a DesignMatrix, got {type(design).__name__}"
            )
        time = design.time if time is None else time
        event = design.event if event is None else event
        if strata is None and design.strata is not None:
            strata = np.asarray(design.strata_labels, dtype=object)[design.strata]

        cox = cls.for_arrays(
            time, event, design.X, strata=strata, column_names=design.column_names,
        )
        return cls(
            time=cox.time,
            event=cox.event,
            X=cox.X,
            strata=cox.strata,
            strata_labels=cox.strata_labels,
            column_names=cox.column_names,
            source=design,
        )

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
    def n_strata(self) -> int:
        return max(len(self.strata_labels), 1)

    def drop(self, columns) -> CoxDesign:
        """Same problem without the given column indices.

        The formula source is not carried over.
        """
        columns = set(int(c) for c in columns)
        keep = [j for j in range(self.p) if j not in columns]
        return CoxDesign(
            time=self.time,
            event=self.event,
            X=self.X[:, keep],
            strata=self.strata,
            strata_labels=self.strata_labels,
            column_names=tuple(self.column_names[j] for j in keep),
        )


def _strata_ids(strata, n: int) -> tuple[NDArray | None, tuple[str, ...]]:
    if strata is None:
        return None, ()
    labels = np.asarray(strata).ravel()
    if len(labels) != n:
        raise ValidationError(
            f"strata: expected {n} labels to match time, got {len(labels)}"
        )
    try:
        unique, ids = np.unique(labels, return_inverse=True)
    except TypeError as e:
        raise ValidationError(f"strata: labels must be sortable ({e})") from e
    return ids.ravel().astype(np.int64), tuple(str(u) for u in unique)
