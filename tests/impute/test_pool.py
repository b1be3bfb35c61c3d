"""
Tests for Rubin's-rules pooling and fit_imputed().
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal
from scipy import stats

from pysurvreg.core.exceptions import DegenerateFitError, ValidationError
from pysurvreg.cox import fit
from pysurvreg.formula import Formula, Main, Spline, Strata, build
from pysurvreg.impute import PooledSolution, fit_imputed, impute, pool
from pysurvreg.impute._pool import barnard_rubin_df, rubin_pool


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def formula():
    return Formula.of(Main("age"), Main("sex"), Strata("site"))


@pytest.fixture
def single_fit(survival_dataset, formula):
    return fit(build(survival_dataset, formula))


@pytest.fixture
def imputed(incomplete_dataset):
    return impute(incomplete_dataset, m=4, seed=3)


# ── Tests ────────────────────────────────────────────────────────────


class TestRubinRules:

    def test_identical_fits_have_no_between_variance(self, single_fit):
        pooled = pool([single_fit] * 3)
        assert isinstance(pooled, PooledSolution)
        assert_array_equal(pooled.coefficients, single_fit.coefficients)
        assert_array_equal(pooled.between, 0.0)
        assert_array_equal(pooled.total, pooled.within)
        assert_array_equal(pooled.within, single_fit.covariance)
        assert_array_equal(pooled.riv, 0.0)

    def test_infinite_complete_df_reproduces_single_fit(self, single_fit):
        pooled = pool([single_fit] * 2, df_complete=np.inf)
        assert np.all(np.isinf(pooled.df))
        assert_allclose(pooled.standard_errors, single_fit.standard_errors, rtol=1e-12)
        assert_allclose(pooled.p_values, single_fit.p_values, rtol=1e-10)
        assert_allclose(pooled.confint(), single_fit.confint(), rtol=1e-10)

    def test_hand_computed_two_fits(self):
        coef = np.array([[1.0, 0.0], [3.0, 2.0]])
        cov = np.stack([np.eye(2), 3.0 * np.eye(2)])
        params = rubin_pool(coef, cov, np.inf, ("a", "b"), n_events=50, n_observations=100)
        assert_allclose(params.coefficients, [2.0, 1.0])
        assert_allclose(params.within, 2.0 * np.eye(2))
        # B = [[2, 2], [2, 2]], T = Ubar + 1.5 B
        assert_allclose(params.between, [[2.0, 2.0], [2.0, 2.0]])
        assert_allclose(params.total, [[5.0, 3.0], [3.0, 5.0]])
        assert_allclose(params.riv, [1.5, 1.5])
        assert_allclose(params.lambda_, [0.6, 0.6])
        assert_allclose(params.df, 1.0 / 0.36)

    def test_barnard_rubin_df(self):
        lam = np.array([0.0, 0.2])
        df = barnard_rubin_df(lam, m=5, df_complete=100.0)
        df_obs = 101.0 / 103.0 * 100.0 * (1.0 - lam)
        df_old = 4.0 / 0.04
        assert_allclose(df[0], df_obs[0])
        assert_allclose(df[1], df_old * df_obs[1] / (df_old + df_obs[1]))
        assert np.all(df <= df_obs)

    def test_default_complete_df(self, single_fit):
        pooled = pool([single_fit, single_fit])
        assert pooled.df_complete == single_fit.n_events - 2
        with pytest.raises(ValidationError):
            pool([single_fit], df_complete=0.0)

    def test_single_fit_warns(self, single_fit):
        pooled = pool([single_fit])
        assert pooled.m == 1
        assert any("single fit" in w for w in pooled.warnings)


class TestDegenerateInput:

    def test_none(self):
        with pytest.raises(DegenerateFitError):
            pool(None)

    def test_empty(self):
        with pytest.raises(DegenerateFitError):
            pool([])

    def test_missing_member(self, single_fit):
        with pytest.raises(DegenerateFitError) as exc_info:
            pool([single_fit, None, single_fit])
        assert exc_info.value.index == 1

    def test_not_a_fit(self, single_fit):
        with pytest.raises(DegenerateFitError):
            pool([single_fit, "fit"])

    def test_mismatched_columns(self, survival_dataset, single_fit):
        other = fit(build(survival_dataset, Formula.of(Main("age"))))
        with pytest.raises(DegenerateFitError) as exc_info:
            pool([single_fit, other])
        assert exc_info.value.index == 1


class TestFitImputed:

    def test_pooled_fit(self, imputed, formula):
        pooled = fit_imputed(imputed, formula)
        assert pooled.m == 4
        assert pooled.column_names == ("age", "sex=M")
        assert pooled.n_observations == imputed[0].n
        assert np.all(np.diag(pooled.between) > 0)
        assert np.all(np.isfinite(pooled.df))
        assert np.all((pooled.fmi >= 0) & (pooled.fmi <= 1))

    def test_matches_manual_pool(self, imputed, formula):
        fits = [fit(build(ds, formula)) for ds in imputed]
        assert_allclose(fit_imputed(imputed, formula).coefficients,
                        pool(fits).coefficients, rtol=1e-12)

    def test_parallel_matches_serial(self, imputed, formula):
        a = fit_imputed(imputed, formula, n_jobs=1)
        b = fit_imputed(imputed, formula, n_jobs=2)
        assert_allclose(a.coefficients, b.coefficients, rtol=1e-12)
        assert_allclose(a.total, b.total, rtol=1e-12)

    def test_t_based_intervals(self, imputed, formula):
        pooled = fit_imputed(imputed, formula)
        ci = pooled.confint(0.95)
        q = stats.t.ppf(0.975, pooled.df)
        assert_allclose(ci[:, 1] - ci[:, 0], 2.0 * q * pooled.standard_errors)
        assert np.all(q > stats.norm.ppf(0.975))
        assert_allclose(pooled.hazard_ratio_confint(), np.exp(ci))

    def test_term_tests_use_total_covariance(self, imputed):
        f = Formula.of(Spline("age", 4), Main("sex"))
        pooled = fit_imputed(imputed, f)
        tests = {t.label: t for t in pooled.term_tests()}
        assert set(tests) == {"rcs(age, 4)", "rcs(age, 4) nonlinear", "sex"}
        b = pooled.coefficients[3]
        assert_allclose(tests["sex"].statistic, b * b / pooled.total[3, 3])
        assert tests["rcs(age, 4)"].df == 3

    def test_summary(self, imputed, formula):
        pooled = fit_imputed(imputed, formula)
        text = pooled.summary()
        assert "pool(m = 4)" in text
        assert "sex=M" in text
        assert "PooledSolution(m=4" in repr(pooled)

    def test_failing_member_propagates(self, imputed, formula):
        with pytest.raises(DegenerateFitError):
            fit_imputed([imputed[0], None], formula)

    def test_plain_dataset_sequence(self, survival_dataset, formula):
        pooled = fit_imputed([survival_dataset, survival_dataset], formula)
        assert_array_equal(pooled.between, 0.0)

    def test_spline_knots_shared_across_imputations(self, imputed):
        f = Formula.of(Spline("age", 4))
        knots = build(imputed[0], f).encodings[0].knots
        placed = fit_imputed(imputed, f)
        pinned = fit_imputed(imputed, Formula.of(Spline("age", positions=knots)))
        assert_allclose(placed.coefficients, pinned.coefficients, rtol=1e-12)
