"""
Tests for chained-equation imputation with predictive mean matching.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal

from pysurvreg.core.exceptions import (
    InsufficientDataError,
    TooManyPredictorsError,
    ValidationError,
)
from pysurvreg.dataset import MISSING, CovariateSpec, validate
from pysurvreg.impute import ImputedDatasetSet, impute
from pysurvreg.impute._chained import gelman_rubin, n_encoded, nelson_aalen
from pysurvreg.impute._pmm import pmm_donors


# ═══════════════════════════════════════════════════════════════════════
# impute()
# ═══════════════════════════════════════════════════════════════════════


class TestImpute:

    def test_complete_dataset_returned_unchanged(self, survival_dataset):
        imputed = impute(survival_dataset, m=3, seed=1)
        assert isinstance(imputed, ImputedDatasetSet)
        assert len(imputed) == 3
        assert all(ds is survival_dataset for ds in imputed)
        assert imputed.visit == ()
        assert imputed.converged
        assert "No missing values" in imputed.summary()

    def test_no_missing_values_remain(self, incomplete_dataset):
        imputed = impute(incomplete_dataset, m=2, seed=7)
        assert imputed.visit == ("age", "sex")
        for ds in imputed:
            assert not ds.has_missing
            assert ds.n == incomplete_dataset.n

    def test_observed_values_untouched(self, incomplete_dataset):
        imputed = impute(incomplete_dataset, m=2, seed=7)
        observed = ~incomplete_dataset.missing("age")
        for ds in imputed:
            assert_array_equal(ds.values("age")[observed],
                               incomplete_dataset.values("age")[observed])
            assert_array_equal(ds.time, incomplete_dataset.time)
            assert_array_equal(ds.event, incomplete_dataset.event)

    def test_imputed_values_are_observed_values(self, incomplete_dataset):
        imputed = impute(incomplete_dataset, m=2, seed=3)
        pool = set(incomplete_dataset.values("age")[~incomplete_dataset.missing("age")])
        mis = incomplete_dataset.missing("age")
        for ds in imputed:
            assert set(ds.values("age")[mis]) <= pool
            codes = ds.values("sex")
            assert np.all((codes >= 0) & (codes < 2))

    def test_source_not_modified(self, incomplete_dataset):
        before = incomplete_dataset.n_missing
        impute(incomplete_dataset, m=2, seed=3)
        assert incomplete_dataset.n_missing == before

    def test_seed_reproducible(self, incomplete_dataset):
        a = impute(incomplete_dataset, m=3, seed=11)
        b = impute(incomplete_dataset, m=3, seed=11)
        for x, y in zip(a, b):
            assert_array_equal(x.values("age"), y.values("age"))
            assert_array_equal(x.values("sex"), y.values("sex"))

    def test_chains_differ(self, incomplete_dataset):
        imputed = impute(incomplete_dataset, m=2, seed=11)
        assert not np.array_equal(imputed[0].values("age"), imputed[1].values("age"))

    def test_parallel_matches_serial(self, incomplete_dataset):
        serial = impute(incomplete_dataset, m=3, seed=5, n_jobs=1)
        parallel = impute(incomplete_dataset, m=3, seed=5, n_jobs=2)
        for x, y in zip(serial, parallel):
            assert_array_equal(x.values("age"), y.values("age"))
            assert_array_equal(x.values("sex"), y.values("sex"))

    def test_traces_and_diagnostics(self, incomplete_dataset):
        imputed = impute(incomplete_dataset, m=3, max_iterations=6, seed=2)
        assert imputed.traces["age"].shape == (3, 6)
        assert set(imputed.rhat) == {"age", "sex"}
        assert imputed.n_imputed["age"] == int(incomplete_dataset.missing("age").sum())
        assert imputed.predictors["age"] == ("chol", "sex", "site")
        assert imputed.backend_name == "cpu_mice"
        assert "R-hat" in imputed.summary()
        assert "ImputedDatasetSet(m=3" in repr(imputed)

    def test_visit_order(self, incomplete_dataset):
        imputed = impute(incomplete_dataset, m=1, seed=2, visit=["sex", "chol", "age"])
        assert imputed.visit == ("sex", "age")
        with pytest.raises(ValidationError, match="never visited"):
            impute(incomplete_dataset, m=1, visit=["age"])

    def test_every_value_missing(self):
        specs = (CovariateSpec("age"), CovariateSpec("chol"))
        records = [
            {"age": MISSING, "chol": float(i), "time": float(i + 1), "status": 1}
            for i in range(10)
        ]
        ds = validate(records, specs, event_value=1, censored_value=0)
        with pytest.raises(InsufficientDataError):
            impute(ds, m=1)

    def test_invalid_arguments(self, incomplete_dataset):
        with pytest.raises(ValidationError):
            impute(incomplete_dataset, m=0)
        with pytest.raises(ValidationError):
            impute(incomplete_dataset, method="norm")
        with pytest.raises(ValidationError):
            impute(incomplete_dataset, max_iterations=0)
        with pytest.raises(ValidationError):
            impute(incomplete_dataset, predictors={"age": ["age", "chol"]})


class TestPredictorCeiling:

    def test_too_many_predictors(self, incomplete_dataset):
        # age: chol + sex + site (2) + outcome (2) = 6 columns
        with pytest.raises(TooManyPredictorsError) as exc_info:
            impute(incomplete_dataset, m=1, max_predictors=5)
        err = exc_info.value
        assert err.target == "age"
        assert err.n_predictors == 6
        assert err.max_predictors == 5

    def test_narrowed_predictors_pass(self, incomplete_dataset):
        imputed = impute(
            incomplete_dataset, m=1, seed=1, max_predictors=3,
            predictors={"age": ["chol"], "sex": ["age"]},
        )
        assert imputed.predictors == {"age": ("chol",), "sex": ("age",)}

    def test_outcome_counts_toward_ceiling(self, incomplete_dataset):
        with pytest.raises(TooManyPredictorsError):
            impute(incomplete_dataset, m=1, max_predictors=2,
                   predictors={"age": ["chol"], "sex": ["chol"]})
        imputed = impute(incomplete_dataset, m=1, seed=1, max_predictors=2,
                         include_outcome=False,
                         predictors={"age": ["chol"], "sex": ["chol"]})
        assert len(imputed) == 1

    def test_n_encoded(self, survival_dataset):
        assert n_encoded(survival_dataset, ("age", "sex", "site"), True) == 6
        assert n_encoded(survival_dataset, ("age",), False) == 1


# ═══════════════════════════════════════════════════════════════════════
# Building blocks
# ═══════════════════════════════════════════════════════════════════════


class TestPMM:

    def test_donors_are_nearest(self, rng):
        X = np.column_stack([np.ones(100), np.linspace(0, 10, 100)])
        y = 2.0 * X[:, 1]
        X_mis = np.array([[1.0, 5.0]])
        chosen = pmm_donors(X, y, X_mis, rng, donors=3, ridge=1e-5)
        # Predicted 10.0: nearest observed predictions sit around x = 5
        assert abs(X[chosen[0], 1] - 5.0) < 0.2

    def test_returns_observed_indices(self, rng):
        X = np.column_stack([np.ones(50), np.arange(50.0)])
        y = X[:, 1].copy()
        chosen = pmm_donors(X, y, X[[10, 20]], rng, donors=1, ridge=1e-8)
        assert len(chosen) == 2
        assert np.all((chosen >= 0) & (chosen < 50))


class TestHelpers:

    def test_nelson_aalen(self):
        time = np.array([1.0, 2.0, 2.0, 3.0])
        event = np.array([1, 1, 0, 1])
        # 1/4, 1/4 + 1/3, 1/4 + 1/3 + 1/1
        assert_allclose(nelson_aalen(time, event),
                        [0.25, 0.25 + 1 / 3, 0.25 + 1 / 3, 0.25 + 1 / 3 + 1.0])

    def test_gelman_rubin_identical_chains(self):
        trace = np.tile(np.array([1.0, 2.0, 1.5, 1.7, 1.6, 1.65]), (3, 1))
        assert_allclose(gelman_rubin(trace), np.sqrt(2.0 / 3.0), rtol=1e-12)

    def test_gelman_rubin_separated_chains(self):
        trace = np.array([[0.0, 0.1, 0.0, 0.1], [5.0, 5.1, 5.0, 5.1]])
        assert gelman_rubin(trace) > 1.1

    def test_gelman_rubin_single_chain(self):
        assert np.isnan(gelman_rubin(np.ones((1, 5))))
