"""
Tests for record validation and the immutable Dataset.

Validates:
    - Schema enforcement (status domain, time > 0, levels, types)
    - Explicit missing-value handling (MISSING, None, NaN; never 0 or "")
    - Derivations (with_values, relevel, subset) return new Datasets
"""

import pickle

import numpy as np
import pytest
from numpy.testing import assert_array_equal

from pysurvreg.core.exceptions import SchemaError, ValidationError
from pysurvreg.dataset import MISSING, CovariateSpec, Dataset, is_missing, validate


SPECS = (
    CovariateSpec("age"),
    CovariateSpec("sex", "categorical", ("F", "M")),
)


def _rec(age=50.0, sex="F", time=1.0, status=1):
    return {"age": age, "sex": sex, "time": time, "status": status}


def _validate(records, specs=SPECS, **kw):
    kw.setdefault("event_value", 1)
    kw.setdefault("censored_value", 0)
    return validate(records, specs, **kw)


# ═══════════════════════════════════════════════════════════════════════
# Missing sentinel and covariate declarations
# ═══════════════════════════════════════════════════════════════════════


class TestMissing:

    def test_singleton(self):
        assert repr(MISSING) == "MISSING"
        assert pickle.loads(pickle.dumps(MISSING)) is MISSING

    @pytest.mark.parametrize("value", [MISSING, None, float("nan"), np.float64("nan")])
    def test_missing_markers(self, value):
        assert is_missing(value)

    @pytest.mark.parametrize("value", [0, 0.0, "", False, "NA"])
    def test_valid_values_are_not_missing(self, value):
        assert not is_missing(value)


class TestCovariateSpec:

    def test_defaults(self):
        spec = CovariateSpec("age")
        assert spec.kind == "continuous"
        assert not spec.is_factor
        assert spec.reference is None

    def test_reference_is_first_level(self):
        spec = CovariateSpec("sex", "categorical", ["F", "M"])
        assert spec.levels == ("F", "M")
        assert spec.reference == "F"

    def test_with_reference_keeps_order(self):
        spec = CovariateSpec("grade", "categorical", ("I", "II", "III"))
        assert spec.with_reference("II").levels == ("II", "I", "III")

    @pytest.mark.parametrize("kwargs", [
        dict(name=""),
        dict(name="x", kind="ordinal"),
        dict(name="x", kind="continuous", levels=("a",)),
        dict(name="x", kind="categorical", levels=()),
        dict(name="x", kind="categorical", levels=("a", "a")),
        dict(name="x", kind="categorical", levels=("a", None)),
        dict(name="x", kind="categorical", unseen="drop"),
    ])
    def test_invalid_declarations(self, kwargs):
        with pytest.raises(ValidationError):
            CovariateSpec(**kwargs)


# ═══════════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════════


class TestValidate:

    def test_basic(self):
        ds = _validate([_rec(), _rec(age=60.0, sex="M", time=2.0, status=0)])
        assert isinstance(ds, Dataset)
        assert ds.n == 2
        assert ds.n_events == 1
        assert ds.names == ("age", "sex")
        assert_array_equal(ds.event, [True, False])
        assert_array_equal(ds.values("sex"), [0, 1])
        assert not ds.has_missing

    def test_fixture_dataset(self, survival_dataset):
        assert survival_dataset.n == 300
        assert 0 < survival_dataset.n_events < 300
        assert survival_dataset.spec("site").kind == "stratum"

    def test_explicit_event_value(self):
        records = [_rec(status="dead"), _rec(status="alive")]
        ds = _validate(records, event_value="dead", censored_value="alive")
        assert_array_equal(ds.event, [True, False])

    def test_status_outside_domain(self):
        with pytest.raises(SchemaError) as exc_info:
            _validate([_rec(), _rec(status=2)])
        assert exc_info.value.column == "status"
        assert exc_info.value.row == 1

    def test_event_and_censored_values_differ(self):
        with pytest.raises(SchemaError, match="must differ"):
            _validate([_rec()], event_value=1, censored_value=1)

    @pytest.mark.parametrize("time", [0.0, -1.0, float("inf"), "3", MISSING, True])
    def test_invalid_time(self, time):
        with pytest.raises(SchemaError) as exc_info:
            _validate([_rec(time=time)])
        assert exc_info.value.column == "time"

    def test_unseen_level_is_error(self):
        with pytest.raises(SchemaError) as exc_info:
            _validate([_rec(sex="X")])
        assert exc_info.value.column == "sex"

    def test_unseen_level_as_missing(self):
        specs = (CovariateSpec("sex", "categorical", ("F", "M"), unseen="missing"),)
        ds = _validate([_rec(sex="X"), _rec(sex="M")], specs)
        assert_array_equal(ds.missing("sex"), [True, False])
        assert ds.values("sex")[0] == -1

    def test_empty_string_is_a_value_not_missing(self):
        with pytest.raises(SchemaError):
            _validate([_rec(sex="")])

    def test_non_numeric_continuous(self):
        with pytest.raises(SchemaError, match="finite number"):
            _validate([_rec(age="old")])

    def test_bool_is_not_numeric(self):
        with pytest.raises(SchemaError):
            _validate([_rec(age=True)])

    def test_missing_key(self):
        with pytest.raises(SchemaError, match="missing key 'sex'"):
            _validate([{"age": 1.0, "time": 1.0, "status": 1}])

    def test_no_records(self):
        with pytest.raises(SchemaError):
            _validate([])

    def test_duplicate_specs(self):
        with pytest.raises(SchemaError, match="duplicate"):
            _validate([_rec()], (CovariateSpec("age"), CovariateSpec("age")))

    def test_spec_colliding_with_outcome(self):
        with pytest.raises(SchemaError, match="collides"):
            _validate([_rec()], (CovariateSpec("time"),))

    def test_levels_inferred_sorted(self):
        specs = (CovariateSpec("grade", "categorical"),)
        records = [
            {"grade": g, "time": 1.0, "status": 1} for g in ("III", "I", "II", "I")
        ]
        ds = _validate(records, specs)
        assert ds.spec("grade").levels == ("I", "II", "III")
        assert_array_equal(ds.values("grade"), [2, 0, 1, 0])

    def test_missing_markers_recorded(self):
        records = [_rec(age=MISSING), _rec(age=None), _rec(age=float("nan")), _rec(age=0)]
        ds = _validate(records)
        assert_array_equal(ds.missing("age"), [True, True, True, False])
        assert ds.n_missing == {"age": 3, "sex": 0}
        assert ds.values("age")[3] == 0.0
        assert_array_equal(ds.complete_rows, [False, False, False, True])


class TestFromDataFrame:

    def test_nan_cells_are_missing(self):
        pd = pytest.importorskip("pandas")
        df = pd.DataFrame({
            "age": [50.0, np.nan, 70.0],
            "sex": ["F", None, "M"],
            "time": [1.0, 2.0, 3.0],
            "status": [1, 0, 1],
        })
        ds = Dataset.from_dataframe(df, SPECS, event_value=1, censored_value=0)
        assert_array_equal(ds.missing("age"), [False, True, False])
        assert_array_equal(ds.missing("sex"), [False, True, False])
        assert ds.n_events == 2


# ═══════════════════════════════════════════════════════════════════════
# Read access and derivation
# ═══════════════════════════════════════════════════════════════════════


class TestDataset:

    @pytest.fixture
    def ds(self):
        return _validate([
            _rec(age=50.0, sex="F", time=1.0),
            _rec(age=MISSING, sex="M", time=2.0, status=0),
            _rec(age=70.0, sex=MISSING, time=3.0),
        ])

    def test_arrays_are_read_only(self, ds):
        with pytest.raises(ValueError):
            ds.values("age")[0] = 1.0
        with pytest.raises(ValueError):
            ds.time[0] = 5.0

    def test_unknown_covariate(self, ds):
        with pytest.raises(KeyError, match="chol"):
            ds.values("chol")

    def test_labels(self, ds):
        labels = ds.labels("sex")
        assert labels[0] == "F"
        assert labels[2] is MISSING
        with pytest.raises(ValidationError):
            ds.labels("age")

    def test_record(self, ds):
        rec = ds.record(1)
        assert rec["age"] is MISSING
        assert rec["sex"] == "M"
        assert rec["event"] is False
        assert len(list(ds.records())) == 3

    def test_with_values_returns_new_dataset(self, ds):
        filled = ds.with_values("age", np.array([50.0, 55.0, 70.0]))
        assert not filled.missing("age").any()
        assert ds.missing("age")[1]
        assert filled.values("sex") is ds.values("sex")

    def test_with_values_factor_codes(self, ds):
        filled = ds.with_values("sex", np.array([0, 1, 1]))
        assert filled.labels("sex")[2] == "M"

    def test_with_values_rejects_floats_for_factor(self, ds):
        with pytest.raises(ValidationError, match="integer level codes"):
            ds.with_values("sex", np.array([0.0, 1.0, 1.0]))

    def test_with_values_rejects_bad_code(self, ds):
        with pytest.raises(ValidationError):
            ds.with_values("sex", np.array([0, 1, 2]))

    def test_with_values_rejects_wrong_length(self, ds):
        with pytest.raises(ValidationError, match="expected 3 values"):
            ds.with_values("age", np.array([1.0]))

    def test_relevel(self, ds):
        re = ds.relevel("sex", "M")
        assert re.spec("sex").levels == ("M", "F")
        assert_array_equal(re.values("sex")[:2], [1, 0])
        assert list(re.labels("sex")[:2]) == list(ds.labels("sex")[:2])
        assert re.missing("sex")[2]
        assert ds.spec("sex").levels == ("F", "M")

    def test_subset_by_mask(self, ds):
        sub = ds.subset(ds.complete_rows)
        assert sub.n == 1
        assert sub.time[0] == 1.0

    def test_subset_by_index_order(self, ds):
        sub = ds.subset([2, 0])
        assert_array_equal(sub.time, [3.0, 1.0])

    def test_subset_bad_mask(self, ds):
        with pytest.raises(ValidationError):
            ds.subset(np.array([True, False]))

    def test_repr(self, ds):
        assert "missing=2" in repr(ds)
