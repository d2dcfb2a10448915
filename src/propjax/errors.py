"""Error taxonomy for integration, event detection and root solving.

All errors derive from the builtin ``ValueError`` or ``RuntimeError`` so
that callers catching those keep working.

Fatal errors (abort ``integrate()``):

- :class:`ConfigurationError`: invalid step bounds, tolerances, method
  order or sampling parameters, raised at construction.
- :class:`DimensionMismatchError`: state, tolerance, derivative or reset
  vectors disagree in length, raised at first use.
- :class:`NumericalDivergenceError`: the step would have to drop below
  the minimum step to meet the tolerance.
- :class:`EvaluationBudgetExceeded`: the derivative evaluation budget is
  exhausted.

Recoverable errors (absorbed inside the integration loop):

- :class:`BracketingError`: the root solver cannot establish a bracket.
- :class:`TooManyEvaluationsError`: the root solver exhausted its
  iteration budget for one call.
"""

from __future__ import annotations

from typing import Any


class ConfigurationError(ValueError):
    """Invalid configuration detected at construction time."""


class DimensionMismatchError(ValueError):
    """Two vectors that must share a dimension do not.

    Args:
        actual: Dimension that was received.
        expected: Dimension that was required.
        what: Short description of the offending vector.
    """

    def __init__(self, actual: int, expected: int, what: str = "vector") -> None:
        self.actual = actual
        self.expected = expected
        super().__init__(f"{what} has dimension {actual}, expected {expected}")


class PropagationError(RuntimeError):
    """Fatal failure during an integration.

    Carries the last consistent point reached so that callers can inspect
    where the integration stopped.

    Args:
        message: Human-readable description.
        t: Last time reached by the integrator.
        state: State vector at ``t``.
    """

    def __init__(self, message: str, t: float, state: Any = None) -> None:
        self.t = t
        self.state = state
        super().__init__(f"{message} (t = {t!r})")


class NumericalDivergenceError(PropagationError):
    """Step underflow: the tolerance cannot be met above the minimum step."""

    def __init__(self, t: float, state: Any, min_step: float, step: float) -> None:
        self.min_step = min_step
        self.step = step
        super().__init__(
            f"minimal step size ({min_step:.3e}) reached, "
            f"integration needs {abs(step):.3e}",
            t,
            state,
        )


class EvaluationBudgetExceeded(PropagationError):
    """The maximal number of evaluations has been reached."""

    def __init__(self, max_evaluations: int, t: float, state: Any = None) -> None:
        self.max_evaluations = max_evaluations
        super().__init__(
            f"maximal count ({max_evaluations}) of evaluations exceeded",
            t,
            state,
        )


class BracketingError(ValueError):
    """The function values at the interval ends do not bracket a root."""

    def __init__(self, lower: float, upper: float, f_lower: float, f_upper: float) -> None:
        self.lower = lower
        self.upper = upper
        self.f_lower = f_lower
        self.f_upper = f_upper
        super().__init__(
            f"function values at endpoints do not have different signs: "
            f"f({lower!r}) = {f_lower!r}, f({upper!r}) = {f_upper!r}"
        )


class TooManyEvaluationsError(RuntimeError):
    """A root solver call exhausted its evaluation budget."""

    def __init__(self, max_evaluations: int) -> None:
        self.max_evaluations = max_evaluations
        super().__init__(f"root solver exceeded {max_evaluations} evaluations")
