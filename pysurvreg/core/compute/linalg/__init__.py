"""
Linear algebra kernels for pysurvreg.

All functions use NumPy/SciPy (LAPACK under the hood), return NumPy
arrays and raise immediately with clear messages.
"""

from pysurvreg.core.compute.linalg.qr import (
    QRResult,
    qr_cpu,
    qr_solve_cpu,
    ridge_solve_cpu,
)

__all__ = [
    "QRResult",
    "qr_cpu",
    "qr_solve_cpu",
    "ridge_solve_cpu",
]
