"""
pytest configuration and shared fixtures.
"""

import pytest
import numpy as np

from pysurvreg.dataset import MISSING, CovariateSpec, validate


SPECS = (
    CovariateSpec("age"),
    CovariateSpec("chol"),
    CovariateSpec("sex", "categorical", ("F", "M")),
    CovariateSpec("site", "stratum", ("A", "B", "C")),
)


def _simulate_records(rng, n=300, beta_age=0.04, beta_male=0.6,
                      miss_age=0.0, miss_sex=0.0):
    """Exponential survival times with uniform censoring.

    Log hazard: beta_age * (age - 60) + beta_male * [sex == M] plus a
    site-specific baseline.
    """
    age = rng.normal(60.0, 10.0, n)
    chol = rng.normal(200.0, 30.0, n)
    male = rng.random(n) < 0.5
    site = rng.integers(0, 3, n)
    baseline = np.array([0.10, 0.15, 0.08])[site]
    rate = baseline * np.exp(beta_age * (age - 60.0) + beta_male * male)
    t_event = rng.exponential(1.0 / rate)
    t_censor = rng.uniform(1.0, 30.0, n)

    records = []
    for i in range(n):
        records.append({
            "age": MISSING if rng.random() < miss_age else float(age[i]),
            "chol": float(chol[i]),
            "sex": MISSING if rng.random() < miss_sex else ("M" if male[i] else "F"),
            "site": "ABC"[site[i]],
            "time": float(min(t_event[i], t_censor[i])),
            "status": 1 if t_event[i] <= t_censor[i] else 0,
        })
    return records


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)


@pytest.fixture
def specs():
    return SPECS


@pytest.fixture
def survival_records(rng):
    """300 complete records with a known age and sex effect."""
    return _simulate_records(rng)


@pytest.fixture
def survival_dataset(survival_records):
    """Validated complete Dataset."""
    return validate(survival_records, SPECS, event_value=1, censored_value=0)


@pytest.fixture
def incomplete_dataset(rng):
    """Dataset with ~15% of age and ~10% of sex missing."""
    records = _simulate_records(rng, miss_age=0.15, miss_sex=0.10)
    return validate(records, SPECS, event_value=1, censored_value=0)


@pytest.fixture
def simulate():
    """Factory: simulate(rng, n=..., ...) -> list of raw records."""
    return _simulate_records
