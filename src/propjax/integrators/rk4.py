"""Classic 4th-order Runge-Kutta integrator (RK4).

Implements the standard four-stage, 4th-order explicit Runge-Kutta method
for numerical integration of ordinary differential equations. This is a
fixed-step method with no adaptive step-size control: every finite trial is
accepted and the step size stays at ``initial_step`` (or ``max_step``).

The Butcher tableau for RK4 is:

.. math::

    \\begin{array}{c|cccc}
    0   &     &     &     &   \\\\
    1/2 & 1/2 &     &     &   \\\\
    1/2 &  0  & 1/2 &     &   \\\\
    1   &  0  &  0  &  1  &   \\\\
    \\hline
        & 1/6 & 1/3 & 1/3 & 1/6
    \\end{array}

The method achieves 4th-order accuracy, meaning the local truncation error
is :math:`O(h^5)` and the global error is :math:`O(h^4)`.
"""

from __future__ import annotations

from collections.abc import Callable

import jax.numpy as jnp
from jax import Array

from propjax.integrators._method import StepMethod
from propjax.integrators._types import TrialStep


class ClassicalRungeKutta(StepMethod):
    """Fixed-step RK4 with cubic Hermite dense output.

    Each step costs four derivative evaluations plus one at the step end,
    which is reused as the first stage of the next step.

    Examples:
        ```python
        import jax.numpy as jnp
        from propjax.integrators import AdaptiveConfig, ClassicalRungeKutta, integrate
        def harmonic(t, x):
            return jnp.array([x[1], -x[0]])
        result = integrate(harmonic, 0.0, jnp.array([1.0, 0.0]), 1.0,
                           method=ClassicalRungeKutta(),
                           config=AdaptiveConfig(initial_step=0.01))
        ```
    """

    name = "rk4"
    order = 4
    error_order = 4
    adaptive = False

    def propose_step(
        self,
        dynamics: Callable[[float, Array], Array],
        t: float,
        y: Array,
        y_dot: Array,
        h: float,
    ) -> TrialStep:
        k1 = y_dot
        k2 = dynamics(t + 0.5 * h, y + 0.5 * h * k1)
        k3 = dynamics(t + 0.5 * h, y + 0.5 * h * k2)
        k4 = dynamics(t + h, y + h * k3)

        y_new = y + (h / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)
        t_new = t + h

        return TrialStep(
            t_start=t,
            t_end=t_new,
            state_start=y,
            state_end=y_new,
            derivative_start=y_dot,
            derivative_end=dynamics(t_new, y_new),
            error_vector=jnp.zeros_like(y),
            order=self.error_order,
        )

    def estimate_error(self, step: TrialStep, abs_tol: Array, rel_tol: Array) -> float:
        return 0.0
