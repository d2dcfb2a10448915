"""Numerical ODE integrators with adaptive step-size control.

One control loop, :class:`AdaptiveStepIntegrator`, drives interchangeable
step methods:

- :class:`ClassicalRungeKutta` -- classic 4th-order Runge-Kutta (fixed step)
- :class:`RungeKuttaFehlberg45` -- Runge-Kutta-Fehlberg 4(5) (adaptive step)
- :class:`DormandPrince54` -- Dormand-Prince 5(4) with FSAL (adaptive step)
- :class:`GraggBulirschStoer` -- modified midpoint extrapolation (adaptive step)

The functional entry point mirrors the integrator::

    result = integrate(dynamics, t0, y0, t_target, method="dp54")

where ``dynamics(t, y) -> dy`` defines the ODE right-hand side, and the
result is an :class:`IntegrationResult` named tuple.
"""

from propjax.integrators._method import StepMethod
from propjax.integrators._types import AdaptiveConfig, IntegrationResult, TrialStep
from propjax.integrators.dp54 import DormandPrince54
from propjax.integrators.gbs import GraggBulirschStoer
from propjax.integrators.integrator import AdaptiveStepIntegrator, get_method, integrate
from propjax.integrators.rk4 import ClassicalRungeKutta
from propjax.integrators.rkf45 import RungeKuttaFehlberg45

__all__ = [
    "AdaptiveConfig",
    "AdaptiveStepIntegrator",
    "ClassicalRungeKutta",
    "DormandPrince54",
    "GraggBulirschStoer",
    "IntegrationResult",
    "RungeKuttaFehlberg45",
    "StepMethod",
    "TrialStep",
    "get_method",
    "integrate",
]
