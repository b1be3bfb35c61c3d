"""
Numerical defaults for every iterative or thresholded computation.

The library has no configuration files and no global state: each entry
point takes these as keyword-argument defaults, so a caller overrides
them per call. Keeping them in one module keeps tests, docs and solvers
agreeing on the same numbers.
"""

# --- Cox partial likelihood ---

# Convergence: information-weighted score norm sqrt(U' I^-1 U)
COX_TOL = 1e-8

# Newton-Raphson iteration cap
COX_MAX_ITER = 25

# Largest absolute coordinate of a single Newton step
COX_MAX_STEP = 5.0

# Step-halving attempts when the log-likelihood decreases
COX_MAX_HALVINGS = 10

# Reciprocal condition number below which the information matrix
# is treated as singular
SINGULARITY_THRESHOLD = 1e-12

# --- Chained-equation imputation ---

# Donor pool size for predictive mean matching
PMM_DONORS = 5

# Full passes over the incomplete variables per imputation
IMPUTE_CYCLES = 5

# Default number of imputations
IMPUTE_M = 5

# Predictor ceiling (encoded columns) per imputation model
MAX_PREDICTORS = 25

# Ridge factor stabilising the imputation regressions
PMM_RIDGE = 1e-5

# Gelman-Rubin statistic above which chains are reported unconverged
RHAT_THRESHOLD = 1.1
