"""
Core protocols for pysurvreg.

We use Protocol (structural typing) rather than ABC (nominal typing) so a
new regression variant only has to provide the same two members.

Design Principles:
    - Minimal contracts: prescribe only what's truly universal
    - Type-safe: use generics to preserve type information through pipelines
"""

from typing import Protocol, TypeVar, runtime_checkable

from pysurvreg.core.result import Result

# Type variables for generic payloads
P = TypeVar('P', covariant=True)  # Parameter payload type
D = TypeVar('D', contravariant=True)  # Design type


@runtime_checkable
class Backend(Protocol[D, P]):
    """
    Protocol for survival-regression backends.

    Each backend knows how to take a validated design and produce a
    parameter payload. The Cox partial-likelihood solver is the only
    variant implemented; parametric (AFT) solvers would plug in behind
    the same contract.

    Backends are stateless: all configuration is passed at construction
    time or as keyword arguments to solve().

    Type Parameters:
        D: The design type this backend accepts
        P: The parameter payload type this backend produces
    """

    @property
    def name(self) -> str:
        """
        Backend identifier.

        Convention: '{device}_{algorithm}', e.g. 'cpu_cox'.
        """
        ...

    def solve(self, design: D) -> Result[P]:
        """
        Execute the statistical computation.

        Raises:
            ConvergenceError: If the iterative method fails to converge
            NumericalError: If numerical issues prevent a solution
            ValidationError: If the design is invalid for this backend
        """
        ...
