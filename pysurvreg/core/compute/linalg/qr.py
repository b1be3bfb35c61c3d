"""
QR-based least squares.

Used by the imputation engine's predictive-mean-matching regressions.
"""

from dataclasses import dataclass
from typing import Literal, Any
import numpy as np
from numpy.typing import NDArray
from scipy.linalg import solve_triangular

from pysurvreg.core.exceptions import SingularMatrixError


@dataclass(frozen=True)
class QRResult:
    """
    Result of QR decomposition.

    Attributes:
        Q: Orthogonal matrix (n x k where k = min(n, p) for reduced mode)
        R: Upper triangular matrix (k x p)
        rank: Numerical rank determined from R diagonal
    """
    Q: NDArray[np.floating[Any]]
    R: NDArray[np.floating[Any]]
    rank: int


def qr_cpu(
    X: NDArray[np.floating[Any]],
    mode: Literal['reduced', 'complete'] = 'reduced'
) -> QRResult:
    """
    QR decomposition using LAPACK (via NumPy).

    Args:
        X: Matrix to decompose (n x p)
        mode: 'reduced' for economy QR, 'complete' for full QR

    Returns:
        QRResult with Q, R, and numerical rank
    """
    Q, R = np.linalg.qr(X, mode=mode)

    diag_R = np.abs(np.diag(R))
    if len(diag_R) > 0 and np.max(diag_R) > 0:
        tol = max(X.shape) * np.finfo(X.dtype).eps * np.max(diag_R)
        rank = int(np.sum(diag_R > tol))
    else:
        rank = 0

    return QRResult(Q=Q, R=R, rank=rank)


def qr_solve_cpu(
    X: NDArray[np.floating[Any]],
    y: NDArray[np.floating[Any]],
    check_rank: bool
) -> NDArray[np.floating[Any]]:
    """
    Solve least squares via QR decomposition.

    Solves min_β ||y - Xβ||² as β = R⁻¹ Q'y. y may be a vector or a
    matrix of several responses sharing X.

    Args:
        X: Design matrix (n x p), must have n >= p
        y: Response (n,) or (n, k)
        check_rank: If True, raise SingularMatrixError on rank-deficient X

    Returns:
        Coefficients (p,) or (p, k)

    Raises:
        SingularMatrixError: If X is rank-deficient and check_rank=True
    """
    n, p = X.shape
    qr_result = qr_cpu(X, mode='reduced')

    if check_rank and qr_result.rank < p:
        raise SingularMatrixError(
            f"Design matrix is rank-deficient: rank={qr_result.rank}, expected={p}. "
            f"This indicates perfect multicollinearity.",
            matrix_name='X',
            rank=qr_result.rank,
            expected_rank=p
        )

    Qty = qr_result.Q.T @ y
    return solve_triangular(qr_result.R[:p, :p], Qty[:p], lower=False)


def ridge_solve_cpu(
    X: NDArray[np.floating[Any]],
    y: NDArray[np.floating[Any]],
    ridge: float,
) -> NDArray[np.floating[Any]]:
    """
    Ridge-stabilised least squares via an augmented QR solve.

    Appends sqrt(ridge * max(diag(X'X), 1)) rows to X so the system is
    always full rank; with a small ridge the estimate is practically the
    ordinary least-squares one.

    Args:
        X: Design matrix (n x p)
        y: Response (n,) or (n, k)
        ridge: Ridge factor relative to the column sums of squares

    Returns:
        Coefficients (p,) or (p, k)
    """
    p = X.shape[1]
    scale = np.maximum(np.sum(X * X, axis=0), 1.0)
    X_aug = np.vstack([X, np.diag(np.sqrt(ridge * scale))])
    if y.ndim == 1:
        y_aug = np.concatenate([y, np.zeros(p)])
    else:
        y_aug = np.vstack([y, np.zeros((p, y.shape[1]))])
    return qr_solve_cpu(X_aug, y_aug, check_rank=True)
