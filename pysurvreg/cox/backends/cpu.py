"""
CPU Cox backend.

The only implementation of the Backend protocol. A parametric (AFT)
solver would be a sibling class with the same name/solve contract.
"""

from __future__ import annotations

from typing import Literal

from pysurvreg.core.compute.timing import Timer
from pysurvreg.core.compute.tolerances import COX_MAX_ITER, COX_MAX_STEP, COX_TOL
from pysurvreg.core.result import Result
from pysurvreg.cox._common import CoxParams
from pysurvreg.cox._cox import cox_fit
from pysurvreg.cox.design import CoxDesign


class CPUCoxBackend:
    """Newton-Raphson on the partial likelihood, double precision.

    Stateless: the settings given at construction are applied to every
    design passed to :meth:`solve`.
    """

    def __init__(
        self,
        ties: Literal["efron", "breslow"] = "efron",
        tol: float = COX_TOL,
        max_iter: int = COX_MAX_ITER,
        max_step: float = COX_MAX_STEP,
        cancel=None,
    ):
        self.ties = ties
        self.tol = tol
        self.max_iter = max_iter
        self.max_step = max_step
        self.cancel = cancel

    @property
    def name(self) -> str:
        return 'cpu_cox'

    def solve(self, design: CoxDesign) -> Result[CoxParams]:
        timer = Timer()
        timer.start()

        with timer.section('newton_raphson'):
            params = cox_fit(
                design.time, design.event, design.X,
                strata=design.strata,
                ties=self.ties,
                tol=self.tol,
                max_iter=self.max_iter,
                max_step=self.max_step,
                cancel=self.cancel,
                column_names=design.column_names,
            )

        timer.stop()

        warnings_list = []
        if design.source is not None and design.source.n_excluded:
            warnings_list.append(
                f"{design.source.n_excluded} records with missing covariates "
                f"were excluded"
            )

        return Result(
            params=params,
            info={
                'method': 'Cox PH',
                'ties': self.ties,
                'tol': self.tol,
                'max_iter': self.max_iter,
                'max_step': self.max_step,
                'n_iter': params.n_iter,
                'n_strata': params.n_strata,
            },
            timing=timer.result(),
            backend_name=self.name,
            warnings=tuple(warnings_list),
        )

    def __repr__(self) -> str:
        return f"CPUCoxBackend(ties={self.ties!r}, tol={self.tol}, max_iter={self.max_iter})"
