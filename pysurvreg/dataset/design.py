"""
Dataset: immutable container for validated survival records.

Covariates are stored column-wise. Continuous columns are float arrays,
categorical and stratum columns are integer level codes; every column
carries an explicit boolean missing mask, so no valid value ever doubles
as a missing marker. Validates at construction time: all downstream code
trusts clean data.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Hashable, Iterable, Mapping, Sequence, TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from pysurvreg.core.exceptions import SchemaError, ValidationError
from pysurvreg.dataset._common import MISSING, CovariateSpec, is_missing

if TYPE_CHECKING:
    import pandas as pd


def _readonly(array: NDArray) -> NDArray:
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class Dataset:
    """Immutable, validated survival dataset.

    Construct with :func:`validate` (or :meth:`Dataset.from_records`),
    never directly.

    Attributes
    ----------
    specs : tuple of CovariateSpec
        Covariate declarations, with categorical levels frozen.
    time : NDArray
        (n,) event or censoring times, all > 0.
    event : NDArray
        (n,) boolean, True where the event occurred.
    """

    specs: tuple[CovariateSpec, ...]
    time: NDArray
    event: NDArray
    _values: dict[str, NDArray]
    _missing: dict[str, NDArray]

    # === Construction ===

    @classmethod
    def from_records(
        cls,
        records: Sequence[Mapping[str, Any]],
        specs: Sequence[CovariateSpec],
        *,
        time: str = "time",
        status: str = "status",
        event_value: Any,
        censored_value: Any,
    ) -> Dataset:
        """Validate raw records against covariate declarations.

        Parameters
        ----------
        records : sequence of mappings
            One mapping per subject holding every declared covariate plus
            the time and status keys.
        specs : sequence of CovariateSpec
            Covariate declarations.
        time, status : str
            Keys of the time and status entries.
        event_value, censored_value
            The two admissible status values. The event value is always
            explicit, never inferred.

        Raises
        ------
        SchemaError
            If any record violates the schema.
        """
        records = list(records)
        specs = tuple(specs)

        if len(records) == 0:
            raise SchemaError("records: need at least one record")
        _check_specs(specs, time, status)
        if event_value == censored_value:
            raise SchemaError(
                f"status: event_value and censored_value must differ, "
                f"both are {event_value!r}"
            )

        for i, rec in enumerate(records):
            if not isinstance(rec, Mapping):
                raise SchemaError(
                    f"record {i}: expected a mapping, got {type(rec).__name__}",
                    row=i,
                )

        time_arr = _parse_time(records, time)
        event_arr = _parse_status(records, status, event_value, censored_value)

        values: dict[str, NDArray] = {}
        missing: dict[str, NDArray] = {}
        frozen_specs = []
        for spec in specs:
            raw = [_get(rec, spec.name, i) for i, rec in enumerate(records)]
            if spec.is_factor:
                spec, codes, mask = _parse_factor(spec, raw)
                values[spec.name] = _readonly(codes)
            else:
                vals, mask = _parse_continuous(spec, raw)
                values[spec.name] = _readonly(vals)
            missing[spec.name] = _readonly(mask)
            frozen_specs.append(spec)

        return cls(
            specs=tuple(frozen_specs),
            time=_readonly(time_arr),
            event=_readonly(event_arr),
            _values=values,
            _missing=missing,
        )

    @classmethod
    def from_dataframe(
        cls,
        df: 'pd.DataFrame',
        specs: Sequence[CovariateSpec],
        *,
        time: str = "time",
        status: str = "status",
        event_value: Any,
        censored_value: Any,
    ) -> Dataset:
        """Validate the rows of a pandas DataFrame.

        Missing cells (NaN, None, pd.NA, NaT) become MISSING.
        """
        import pandas as pd

        clean = df.astype(object).where(pd.notna(df), None)
        return cls.from_records(
            clean.to_dict(orient="records"),
            specs,
            time=time,
            status=status,
            event_value=event_value,
            censored_value=censored_value,
        )

    # === Read access ===

    @property
    def n(self) -> int:
        """Number of records."""
        return len(self.time)

    @property
    def names(self) -> tuple[str, ...]:
        """Covariate names in declaration order."""
        return tuple(s.name for s in self.specs)

    @property
    def n_events(self) -> int:
        return int(np.sum(self.event))

    def spec(self, name: str) -> CovariateSpec:
        for s in self.specs:
            if s.name == name:
                return s
        raise KeyError(
            f"Dataset has no covariate '{name}'. Available: {self.names}"
        )

    def values(self, name: str) -> NDArray:
        """Stored column: floats (continuous) or level codes (factors).

        Entries flagged by :meth:`missing` hold NaN or -1 and carry no
        information.
        """
        self.spec(name)
        return self._values[name]

    def missing(self, name: str) -> NDArray:
        """Boolean missing mask of a covariate."""
        self.spec(name)
        return self._missing[name]

    def labels(self, name: str) -> NDArray:
        """Object array of level labels, MISSING where missing."""
        spec = self.spec(name)
        if not spec.is_factor:
            raise ValidationError(f"{name}: labels() requires a categorical covariate")
        out = np.empty(self.n, dtype=object)
        codes = self._values[name]
        mask = self._missing[name]
        for i in range(self.n):
            out[i] = MISSING if mask[i] else spec.levels[codes[i]]
        return out

    @property
    def n_missing(self) -> dict[str, int]:
        """Missing count per covariate."""
        return {name: int(np.sum(self._missing[name])) for name in self.names}

    @property
    def has_missing(self) -> bool:
        return any(np.any(self._missing[name]) for name in self.names)

    @property
    def complete_rows(self) -> NDArray:
        """Boolean mask of records with no missing covariate."""
        ok = np.ones(self.n, dtype=bool)
        for name in self.names:
            ok &= ~self._missing[name]
        return ok

    def record(self, i: int) -> dict[str, Any]:
        """One subject as a mapping, MISSING for missing covariates."""
        out: dict[str, Any] = {}
        for spec in self.specs:
            if self._missing[spec.name][i]:
                out[spec.name] = MISSING
            elif spec.is_factor:
                out[spec.name] = spec.levels[self._values[spec.name][i]]
            else:
                out[spec.name] = float(self._values[spec.name][i])
        out["time"] = float(self.time[i])
        out["event"] = bool(self.event[i])
        return out

    def records(self) -> Iterable[dict[str, Any]]:
        for i in range(self.n):
            yield self.record(i)

    # === Derivation (always returns a new Dataset) ===

    def with_values(self, name: str, values: NDArray) -> Dataset:
        """Replace one column.

        ``values`` are floats (NaN = missing) for continuous covariates or
        level codes (-1 = missing) for factors.
        """
        spec = self.spec(name)
        values = np.array(values, copy=True)
        if values.shape != (self.n,):
            raise ValidationError(
                f"{name}: expected {self.n} values, got shape {values.shape}"
            )
        if spec.is_factor:
            if not np.issubdtype(values.dtype, np.integer):
                raise ValidationError(
                    f"{name}: factor columns take integer level codes, got {values.dtype}"
                )
            codes = values.astype(np.int64)
            if np.any(codes >= len(spec.levels)):
                raise ValidationError(
                    f"{name}: codes must be integers in [-1, {len(spec.levels) - 1}]"
                )
            mask = codes < 0
            codes[mask] = -1
            new_values = codes
        else:
            new_values = values.astype(np.float64)
            if np.any(np.isinf(new_values)):
                raise ValidationError(f"{name}: values must be finite or NaN")
            mask = np.isnan(new_values)
        return self._replace(name, spec, new_values, mask)

    def relevel(self, name: str, reference: Hashable) -> Dataset:
        """Return a Dataset whose ``name`` has ``reference`` as first level.

        Design matrices built from this Dataset are unaffected.
        """
        spec = self.spec(name)
        new_spec = spec.with_reference(reference)
        remap = np.array([new_spec.levels.index(lv) for lv in spec.levels], dtype=np.int64)
        codes = self._values[name]
        mask = self._missing[name]
        new_codes = np.where(mask, -1, remap[np.where(mask, 0, codes)])
        return self._replace(name, new_spec, new_codes, mask.copy())

    def subset(self, rows: NDArray | Sequence[int]) -> Dataset:
        """Records at ``rows`` (indices or boolean mask), in that order."""
        rows = np.asarray(rows)
        if rows.dtype == np.bool_:
            if rows.shape != (self.n,):
                raise ValidationError(
                    f"rows: boolean mask must have length {self.n}, got {rows.shape}"
                )
            rows = np.flatnonzero(rows)
        return Dataset(
            specs=self.specs,
            time=_readonly(self.time[rows].copy()),
            event=_readonly(self.event[rows].copy()),
            _values={k: _readonly(v[rows].copy()) for k, v in self._values.items()},
            _missing={k: _readonly(v[rows].copy()) for k, v in self._missing.items()},
        )

    def _replace(
        self, name: str, spec: CovariateSpec, values: NDArray, mask: NDArray,
    ) -> Dataset:
        new_values = dict(self._values)
        new_missing = dict(self._missing)
        new_values[name] = _readonly(values)
        new_missing[name] = _readonly(mask)
        specs = tuple(spec if s.name == name else s for s in self.specs)
        return Dataset(
            specs=specs,
            time=self.time,
            event=self.event,
            _values=new_values,
            _missing=new_missing,
        )

    def __repr__(self) -> str:
        n_miss = sum(self.n_missing.values())
        return (
            f"Dataset(n={self.n}, events={self.n_events}, "
            f"covariates={len(self.specs)}, missing={n_miss})"
        )


def validate(
    records: Sequence[Mapping[str, Any]],
    specs: Sequence[CovariateSpec],
    *,
    time: str = "time",
    status: str = "status",
    event_value: Any,
    censored_value: Any,
) -> Dataset:
    """Validate raw records into an immutable Dataset.

    See :meth:`Dataset.from_records`.
    """
    return Dataset.from_records(
        records,
        specs,
        time=time,
        status=status,
        event_value=event_value,
        censored_value=censored_value,
    )


# ── Parsing helpers ──────────────────────────────────────────────────


def _check_specs(specs: tuple[CovariateSpec, ...], time: str, status: str) -> None:
    if time == status:
        raise SchemaError(f"time and status keys must differ, both are {time!r}")
    seen: set[str] = set()
    for spec in specs:
        if not isinstance(spec, CovariateSpec):
            raise SchemaError(
                f"specs: expected CovariateSpec, got {type(spec).__name__}"
            )
        if spec.name in seen:
            raise SchemaError(f"specs: duplicate covariate {spec.name!r}", column=spec.name)
        if spec.name in (time, status):
            raise SchemaError(
                f"specs: covariate {spec.name!r} collides with the time/status keys",
                column=spec.name,
            )
        seen.add(spec.name)


def _get(record: Mapping[str, Any], key: str, i: int) -> Any:
    try:
        return record[key]
    except KeyError:
        raise SchemaError(f"record {i}: missing key {key!r}", column=key, row=i) from None


def _as_real(value: Any) -> float | None:
    """Finite float for a real number, None for anything else."""
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, Real):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def _parse_time(records: list[Mapping[str, Any]], key: str) -> NDArray:
    out = np.empty(len(records), dtype=np.float64)
    for i, rec in enumerate(records):
        raw = _get(rec, key, i)
        if is_missing(raw):
            raise SchemaError(f"record {i}: {key} is missing", column=key, row=i)
        value = _as_real(raw)
        if value is None:
            raise SchemaError(
                f"record {i}: {key} must be a finite number, got {raw!r}",
                column=key, row=i,
            )
        if value <= 0:
            raise SchemaError(
                f"record {i}: {key} must be > 0, got {value}", column=key, row=i,
            )
        out[i] = value
    return out


def _parse_status(
    records: list[Mapping[str, Any]], key: str, event_value: Any, censored_value: Any,
) -> NDArray:
    out = np.empty(len(records), dtype=bool)
    for i, rec in enumerate(records):
        raw = _get(rec, key, i)
        if is_missing(raw):
            raise SchemaError(f"record {i}: {key} is missing", column=key, row=i)
        if raw == event_value:
            out[i] = True
        elif raw == censored_value:
            out[i] = False
        else:
            raise SchemaError(
                f"record {i}: {key}={raw!r} is neither the event value "
                f"{event_value!r} nor the censored value {censored_value!r}",
                column=key, row=i,
            )
    return out


def _parse_continuous(spec: CovariateSpec, raw: list[Any]) -> tuple[NDArray, NDArray]:
    vals = np.full(len(raw), np.nan, dtype=np.float64)
    mask = np.zeros(len(raw), dtype=bool)
    for i, value in enumerate(raw):
        if is_missing(value):
            mask[i] = True
            continue
        real = _as_real(value)
        if real is None:
            raise SchemaError(
                f"record {i}: {spec.name} must be a finite number, got {value!r}",
                column=spec.name, row=i,
            )
        vals[i] = real
    return vals, mask


def _parse_factor(
    spec: CovariateSpec, raw: list[Any],
) -> tuple[CovariateSpec, NDArray, NDArray]:
    if spec.levels is None:
        observed = {v for v in raw if not is_missing(v)}
        if not observed:
            raise SchemaError(
                f"{spec.name}: cannot infer levels, every value is missing",
                column=spec.name,
            )
        try:
            levels = tuple(sorted(observed))
        except TypeError as e:
            raise SchemaError(
                f"{spec.name}: values of mixed types; declare levels explicitly ({e})",
                column=spec.name,
            ) from e
        spec = spec.with_levels(levels)

    index = {level: k for k, level in enumerate(spec.levels)}
    codes = np.full(len(raw), -1, dtype=np.int64)
    mask = np.zeros(len(raw), dtype=bool)
    for i, value in enumerate(raw):
        if is_missing(value):
            mask[i] = True
            continue
        try:
            code = index.get(value)
        except TypeError:
            code = None
        if code is None:
            if spec.unseen == "missing":
                mask[i] = True
                continue
            raise SchemaError(
                f"record {i}: {spec.name}={value!r} is not one of the levels "
                f"{spec.levels}",
                column=spec.name, row=i,
            )
        codes[i] = code
    return spec, codes, mask
