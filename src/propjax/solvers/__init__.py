"""Bracketing root solvers used by event detection.

- :class:`BracketingNthOrderBrentSolver` -- inverse polynomial root solver
  that always keeps a bracket around the root
- :class:`AllowedSolution` -- side of the root the solver may return
"""

from propjax.solvers._types import AllowedSolution
from propjax.solvers.brent import BracketingNthOrderBrentSolver

__all__ = [
    "AllowedSolution",
    "BracketingNthOrderBrentSolver",
]
