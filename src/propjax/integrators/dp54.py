"""Dormand-Prince 5(4) adaptive integrator (DP54).

Implements the Dormand-Prince embedded Runge-Kutta method with a 5th-order
solution for propagation and a 4th-order solution for error estimation. The
method uses 7 stages per step.

The Dormand-Prince method has the First-Same-As-Last (FSAL) property: the
7th stage of step *n* is identical to the 1st stage of step *n+1* when the
step is accepted. The integration loop passes it back in as ``y_dot``, so an
accepted step costs six new derivative evaluations.

The seven stages also feed Shampine's 4th-order continuous extension, see
:class:`~propjax.sampling.interpolators.DormandPrinceInterpolator`.

The Butcher tableau coefficients are the standard Dormand-Prince values:

- Nodes (c): [0, 1/5, 3/10, 4/5, 8/9, 1, 1]
- 5th-order weights (b_high): [35/384, 0, 500/1113, 125/192, -2187/6784, 11/84, 0]
- 4th-order weights (b_low): [5179/57600, 0, 7571/16695, 393/640, -92097/339200,
  187/2100, 1/40]
"""

from __future__ import annotations

from collections.abc import Callable

import jax.numpy as jnp
from jax import Array

from propjax.integrators._method import StepMethod
from propjax.integrators._types import TrialStep
from propjax.sampling.interpolators import DormandPrinceInterpolator, StepInterpolator

# Nodes
_C = (0.0, 1.0 / 5.0, 3.0 / 10.0, 4.0 / 5.0, 8.0 / 9.0, 1.0, 1.0)

# Coupling coefficients (lower-triangular rows)
_A1 = (1.0 / 5.0,)
_A2 = (3.0 / 40.0, 9.0 / 40.0)
_A3 = (44.0 / 45.0, -56.0 / 15.0, 32.0 / 9.0)
_A4 = (19372.0 / 6561.0, -25360.0 / 2187.0, 64448.0 / 6561.0, -212.0 / 729.0)
_A5 = (9017.0 / 3168.0, -355.0 / 33.0, 46732.0 / 5247.0, 49.0 / 176.0, -5103.0 / 18656.0)

# 5th-order weights, also the coupling row of the FSAL stage
_B_HIGH = (35.0 / 384.0, 0.0, 500.0 / 1113.0, 125.0 / 192.0, -2187.0 / 6784.0, 11.0 / 84.0, 0.0)

# Error weights b_high - b_low
_E = (
    35.0 / 384.0 - 5179.0 / 57600.0,
    0.0,
    500.0 / 1113.0 - 7571.0 / 16695.0,
    125.0 / 192.0 - 393.0 / 640.0,
    -2187.0 / 6784.0 + 92097.0 / 339200.0,
    11.0 / 84.0 - 187.0 / 2100.0,
    -1.0 / 40.0,
)


class DormandPrince54(StepMethod):
    """Adaptive DP54 with FSAL and native 4th-order dense output.

    Examples:
        ```python
        import jax.numpy as jnp
        from propjax.integrators import AdaptiveStepIntegrator, AdaptiveConfig, DormandPrince54
        def harmonic(t, x):
            return jnp.array([x[1], -x[0]])
        integrator = AdaptiveStepIntegrator(DormandPrince54(), AdaptiveConfig(abs_tol=1e-10))
        result = integrator.integrate(harmonic, 0.0, jnp.array([1.0, 0.0]), 0.1)
        result.state  # ~[cos(0.1), -sin(0.1)]
        ```
    """

    name = "dp54"
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

        # 5th-order solution (primary), _B_HIGH[1] = _B_HIGH[6] = 0
        y_high = y + h * (
            _B_HIGH[0] * k0
            + _B_HIGH[2] * k2
            + _B_HIGH[3] * k3
            + _B_HIGH[4] * k4
            + _B_HIGH[5] * k5
        )

        # FSAL stage
        t_new = t + h
        k6 = dynamics(t_new, y_high)

        error_vec = h * (
            _E[0] * k0 + _E[2] * k2 + _E[3] * k3 + _E[4] * k4 + _E[5] * k5 + _E[6] * k6
        )

        return TrialStep(
            t_start=t,
            t_end=t_new,
            state_start=y,
            state_end=y_high,
            derivative_start=y_dot,
            derivative_end=k6,
            error_vector=error_vec,
            order=self.error_order,
            stages=jnp.stack([k0, k1, k2, k3, k4, k5, k6]),
        )

    def interpolator(self, step: TrialStep, forward: bool) -> StepInterpolator:
        return DormandPrinceInterpolator(
            stages=step.stages,
            t_start=step.t_start,
            t_end=step.t_end,
            state_start=step.state_start,
            state_end=step.state_end,
            derivative_start=step.derivative_start,
            derivative_end=step.derivative_end,
            forward=forward,
        )
