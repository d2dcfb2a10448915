"""Step method interface shared by all integration schemes.

A step method only knows how to attempt one step, how to measure its local
error and how to build dense output for it. Step acceptance, step-size
control, event handling and evaluation accounting live once, in
:class:`~propjax.integrators.integrator.AdaptiveStepIntegrator`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable

from jax import Array

from propjax.integrators._adaptive import compute_error_norm
from propjax.integrators._types import TrialStep
from propjax.sampling.interpolators import HermiteInterpolator, StepInterpolator


class StepMethod(ABC):
    """Strategy for one integration scheme.

    Attributes:
        name: Short identifier, e.g. ``"dp54"``.
        order: Order of the propagated solution.
        error_order: Order of the embedded error estimator, used by the
            step-size controller.
        adaptive: ``False`` for fixed-step schemes, which are only
            rejected on a non-finite state and keep their step size.
    """

    name: str = ""
    order: int = 0
    error_order: int = 0
    adaptive: bool = True

    @abstractmethod
    def propose_step(
        self,
        dynamics: Callable[[float, Array], Array],
        t: float,
        y: Array,
        y_dot: Array,
        h: float,
    ) -> TrialStep:
        """Attempt one step of signed size *h* from ``(t, y)``.

        Args:
            dynamics: ODE right-hand side ``f(t, y) -> dy/dt``.
            t: Start time.
            y: State at *t*.
            y_dot: Derivative at *t*, already evaluated.
            h: Signed step size.

        Returns:
            TrialStep: The trial, including the derivative at its end.
        """

    def estimate_error(self, step: TrialStep, abs_tol: Array, rel_tol: Array) -> float:
        """Normalized RMS error of a trial. Accepted when <= 1.0."""
        return compute_error_norm(
            step.error_vector, step.state_end, step.state_start, abs_tol, rel_tol
        )

    def interpolator(self, step: TrialStep, forward: bool) -> StepInterpolator:
        """Dense output over an accepted trial. Cubic Hermite by default."""
        return HermiteInterpolator(
            t_start=step.t_start,
            t_end=step.t_end,
            state_start=step.state_start,
            state_end=step.state_end,
            derivative_start=step.derivative_start,
            derivative_end=step.derivative_end,
            forward=forward,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
