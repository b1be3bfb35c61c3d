"""
Tests for fit() on formula designs: term labels, chunk tests, strata
terms and excluded rows.
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from pysurvreg.core.exceptions import FormulaError, ValidationError
from pysurvreg.cox import coxph, fit
from pysurvreg.formula import Formula, Interaction, Main, Spline, Strata, build


@pytest.fixture
def design(survival_dataset):
    f = Formula.of(Spline("age", 4), Main("sex"), Main("chol"), Strata("site"))
    return build(survival_dataset, f)


class TestFitFormula:

    def test_column_names_from_design(self, design):
        result = fit(design)
        assert result.column_names == ("age", "age'", "age''", "sex=M", "chol")
        assert result.design.source is design
        assert result.n_strata == 3

    def test_matches_raw_arrays(self, design):
        a = fit(design)
        site = np.asarray(design.strata_labels, dtype=object)[design.strata]
        b = coxph(design.time, design.event, design.X, strata=site)
        assert_allclose(a.coefficients, b.coefficients, rtol=1e-6)

    def test_recovers_simulated_effects(self, survival_dataset):
        design = build(survival_dataset, Formula.of(Main("age"), Main("sex"), Strata("site")))
        result = fit(design)
        ci = result.confint(0.999)
        assert ci[0, 0] < 0.04 < ci[0, 1]
        assert ci[1, 0] < 0.6 < ci[1, 1]
        assert result.p_values[1] < 0.05

    def test_noise_variable_not_significant(self, survival_dataset):
        design = build(survival_dataset, Formula.of(Main("age"), Main("chol")))
        result = fit(design)
        assert abs(result.z_statistics[1]) < 3.5

    def test_outcome_override(self, design):
        reversed_time = design.time.max() + 1.0 - design.time
        result = fit(design, time=reversed_time)
        assert result.n_observations == design.n

    def test_strata_override(self, survival_dataset):
        design = build(survival_dataset, Formula.of(Main("age")))
        site = survival_dataset.labels("site")
        a = fit(design, strata=site.astype(str))
        b = fit(build(survival_dataset, Formula.of(Main("age"), Strata("site"))))
        assert_allclose(a.coefficients, b.coefficients, rtol=1e-6)

    def test_requires_design_matrix(self, survival_dataset):
        with pytest.raises(ValidationError):
            fit(survival_dataset)

    def test_excluded_rows_reported(self, incomplete_dataset):
        design = build(incomplete_dataset, Formula.of(Main("age"), Main("sex")))
        result = fit(design)
        assert design.n_excluded > 0
        assert result.n_observations == design.n
        assert any("excluded" in w for w in result.warnings)
        assert "Note:" in result.summary()


class TestTermTests:

    def test_wald_term_tests(self, design):
        result = fit(design)
        tests = result.term_tests()
        labels = [t.label for t in tests]
        assert labels == ["rcs(age, 4)", "rcs(age, 4) nonlinear", "sex", "chol"]
        by_label = {t.label: t for t in tests}
        assert by_label["rcs(age, 4)"].df == 3
        assert by_label["rcs(age, 4) nonlinear"].df == 2
        assert_allclose(by_label["sex"].statistic, result.z_statistics[3] ** 2, rtol=1e-10)

    def test_lr_term_tests(self, design):
        result = fit(design)
        tests = {t.label: t for t in result.term_tests(method="lr")}
        assert tests["sex"].method == "lr"
        assert tests["sex"].statistic >= 0.0
        assert 0.0 <= tests["rcs(age, 4) nonlinear"].p_value <= 1.0

    def test_wald_and_lr_close(self, design):
        result = fit(design)
        wald = result.wald_test("sex")
        lr = result.lr_test("sex")
        assert_allclose(wald.statistic, lr.statistic, rtol=0.2)

    def test_term_label_resolves_columns(self, design):
        result = fit(design)
        assert result.columns("rcs(age, 4)") == (0, 1, 2)
        assert result.columns("sex=M") == (3,)
        assert result.columns(["chol", "sex"]) == (4, 3)
        with pytest.raises(FormulaError):
            result.columns("bmi")

    def test_single_term_lr_is_global_lr(self, survival_dataset):
        result = fit(build(survival_dataset, Formula.of(Main("age"))))
        assert_allclose(
            result.lr_test("age").statistic,
            result.likelihood_ratio_test.statistic,
            rtol=1e-8,
        )

    def test_interaction_term_test(self, survival_dataset):
        f = Formula.of(Interaction(Main("age"), Main("sex")))
        result = fit(build(survival_dataset, f))
        tests = {t.label: t for t in result.term_tests()}
        assert set(tests) == {"age", "sex", "age:sex"}
        assert tests["age:sex"].df == 1

    def test_stratum_interaction(self, survival_dataset):
        f = Formula.of(Interaction(Main("age"), Strata("site")))
        result = fit(build(survival_dataset, f))
        assert result.n_strata == 3
        assert result.column_names == ("age", "age:site=B", "age:site=C")
        assert result.wald_test("age:strata(site)").df == 2
