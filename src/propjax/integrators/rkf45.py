"""Runge-Kutta-Fehlberg 4(5) adaptive integrator (RKF45).

Implements the Fehlberg embedded Runge-Kutta method with a 5th-order solution
for propagation and a 4th-order solution for error estimation. The method uses
6 stages per step, plus one derivative evaluation at the accepted end point
that doubles as the first stage of the next step and feeds the cubic Hermite
dense output.

The Butcher tableau coefficients are taken from the standard Fehlberg
formulation:

- Nodes (c): [0, 1/4, 3/8, 12/13, 1, 1/2]
- 5th-order weights (b_high): [16/135, 0, 6656/12825, 28561/56430, -9/50, 2/55]
- 4th-order weights (b_low): [25/216, 0, 1408/2565, 2197/4104, -1/5, 0]
"""

from __future__ import annotations

from collections.abc import Callable

from jax import Array

from propjax.integrators._method import StepMethod
from propjax.integrators._types import TrialStep

# Butcher tableau coefficients as Python tuples.
# Nodes
_C = (0.0, 1.0 / 4.0, 3.0 / 8.0, 12.0 / 13.0, 1.0, 1.0 / 2.0)

# Coupling coefficients (lower-triangular rows)
_A1 = (1.0 / 4.0,)
_A2 = (3.0 / 32.0, 9.0 / 32.0)
_A3 = (1932.0 / 2197.0, -7200.0 / 2197.0, 7296.0 / 2197.0)
_A4 = (439.0 / 216.0, -8.0, 3680.0 / 513.0, -845.0 / 4104.0)
_A5 = (-8.0 / 27.0, 2.0, -3544.0 / 2565.0, 1859.0 / 4104.0, -11.0 / 40.0)

# 5th-order weights (primary solution)
_B_HIGH = (16.0 / 135.0, 0.0, 6656.0 / 12825.0, 28561.0 / 56430.0, -9.0 / 50.0, 2.0 / 55.0)

# 4th-order weights (error estimation)
_B_LOW = (25.0 / 216.0, 0.0, 1408.0 / 2565.0, 2197.0 / 4104.0, -1.0 / 5.0, 0.0)


class RungeKuttaFehlberg45(StepMethod):
    """Adaptive RKF45 with cubic Hermite dense output.

    Examples:
        ```python
        import jax.numpy as jnp
        from propjax.integrators import integrate
        def harmonic(t, x):
            return jnp.array([x[1], -x[0]])
        result = integrate(harmonic, 0.0, jnp.array([1.0, 0.0]), 1.0, method="rkf45")
        result.state  # ~[cos(1), -sin(1)]
        ```
    """

    name = "rkf45"
    order = 5
    error_order = 4

    def propose_step(
        self,
        dynamics: Callable[[float, Array], Array],
        t: float,
        y: Array,
        y_dot: Array,
        h: float,
    ) -> TrialStep:
        k0 = y_dot
        k1 = dynamics(t + _C[1] * h, y + h * _A1[0] * k0)
        k2 = dynamics(t + _C[2] * h, y + h * (_A2[0] * k0 + _A2[1] * k1))
        k3 = dynamics(t + _C[3] * h, y + h * (_A3[0] * k0 + _A3[1] * k1 + _A3[2] * k2))
        k4 = dynamics(
            t + _C[4] * h,
            y + h * (_A4[0] * k0 + _A4[1] * k1 + _A4[2] * k2 + _A4[3] * k3),
        )
        k5 = dynamics(
            t + _C[5] * h,
            y + h * (_A5[0] * k0 + _A5[1] * k1 + _A5[2] * k2 + _A5[3] * k3 + _A5[4] * k4),
        )

        # 5th-order solution (primary)
        y_high = y + h * (
            _B_HIGH[0] * k0 + _B_HIGH[2] * k2 + _B_HIGH[3] * k3 + _B_HIGH[4] * k4 + _B_HIGH[5] * k5
        )

        # 4th-order solution (for error estimation)
        y_low = y + h * (_B_LOW[0] * k0 + _B_LOW[2] * k2 + _B_LOW[3] * k3 + _B_LOW[4] * k4)

        t_new = t + h
        return TrialStep(
            t_start=t,
            t_end=t_new,
            state_start=y,
            state_end=y_high,
            derivative_start=y_dot,
            derivative_end=dynamics(t_new, y_high),
            error_vector=y_high - y_low,
            order=self.error_order,
        )
