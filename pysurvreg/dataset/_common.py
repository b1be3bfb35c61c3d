"""
Covariate declarations and the missing-value sentinel.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Hashable, Literal

import numpy as np

from pysurvreg.core.exceptions import ValidationError


CovariateKind = Literal["continuous", "categorical", "stratum"]
UnseenPolicy = Literal["error", "missing"]

_KINDS = ("continuous", "categorical", "stratum")
_UNSEEN = ("error", "missing")


class _MissingType:
    """Type of the MISSING sentinel. There is exactly one instance."""

    _instance: _MissingType | None = None

    def __new__(cls) -> _MissingType:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __reduce__(self):
        return (_MissingType, ())


MISSING = _MissingType()


def is_missing(value: Any) -> bool:
    """True for MISSING, None and float NaN; False for every valid value.

    Zero and the empty string are values, not missing markers.
    """
    if value is MISSING or value is None:
        return True
    if isinstance(value, (float, np.floating)):
        return math.isnan(value)
    return False


@dataclass(frozen=True)
class CovariateSpec:
    """Declaration of one covariate.

    Parameters
    ----------
    name : str
        Column name in the raw records.
    kind : str
        "continuous", "categorical" or "stratum".
    levels : tuple or None
        Ordered levels for categorical/stratum kinds. The first level is
        the reference. None means "infer once at validation".
    unseen : str
        What to do with a categorical value outside ``levels``:
        "error" (default) raises SchemaError, "missing" records it as
        MISSING.
    """

    name: str
    kind: CovariateKind = "continuous"
    levels: tuple[Hashable, ...] | None = None
    unseen: UnseenPolicy = "error"

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValidationError(
                f"covariate name must be a non-empty string, got {self.name!r}"
            )
        if self.kind not in _KINDS:
            raise ValidationError(
                f"{self.name}: kind must be one of {_KINDS}, got {self.kind!r}"
            )
        if self.unseen not in _UNSEEN:
            raise ValidationError(
                f"{self.name}: unseen must be one of {_UNSEEN}, got {self.unseen!r}"
            )
        if self.levels is None:
            return
        if self.kind == "continuous":
            raise ValidationError(
                f"{self.name}: continuous covariates take no levels"
            )
        levels = tuple(self.levels)
        if len(levels) == 0:
            raise ValidationError(f"{self.name}: levels must not be empty")
        if any(is_missing(level) for level in levels):
            raise ValidationError(
                f"{self.name}: levels must not contain a missing marker"
            )
        if len(set(levels)) != len(levels):
            raise ValidationError(f"{self.name}: levels must be unique, got {levels}")
        object.__setattr__(self, "levels", levels)

    @property
    def is_factor(self) -> bool:
        """True for categorical and stratum kinds."""
        return self.kind != "continuous"

    @property
    def reference(self) -> Hashable | None:
        """Reference level (first level), or None for continuous."""
        if self.levels is None:
            return None
        return self.levels[0]

    def with_levels(self, levels: tuple[Hashable, ...]) -> CovariateSpec:
        return replace(self, levels=tuple(levels))

    def with_reference(self, level: Hashable) -> CovariateSpec:
        """Return a copy whose reference level is ``level``.

        The remaining levels keep their relative order.
        """
        if self.levels is None:
            raise ValidationError(
                f"{self.name}: cannot set a reference level without declared levels"
            )
        if level not in self.levels:
            raise ValidationError(
                f"{self.name}: {level!r} is not one of the levels {self.levels}"
            )
        rest = tuple(lv for lv in self.levels if lv != level)
        return replace(self, levels=(level,) + rest)
