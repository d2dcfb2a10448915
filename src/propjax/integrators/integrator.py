"""Adaptive step-size integration loop with event handling.

:class:`AdaptiveStepIntegrator` owns the control loop shared by every step
method:

1. Estimate the first step (or take ``initial_step``).
2. Clip the trial to the target time, attempt it, and measure its
   normalized error. Trials with an error above one or a non-finite end
   state are rejected and retried with a smaller step; a step that would
   have to fall below ``min_step`` is a fatal error.
3. Hand the accepted step to the events scheduler, which may truncate it
   at an event and which feeds the step handlers.
4. After a reset, re-evaluate the derivative and re-estimate the step from
   scratch. Otherwise grow the next step from the error estimate.

The loop runs eagerly so that derivative evaluations can be counted and
events located with Python control flow. The derivative function itself
may be a jitted JAX function.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from propjax.config import get_dtype
from propjax.errors import (
    ConfigurationError,
    DimensionMismatchError,
    EvaluationBudgetExceeded,
    NumericalDivergenceError,
    TooManyEvaluationsError,
)
from propjax.events.detectors import EventDetector
from propjax.events.scheduler import EventsScheduler
from propjax.integrators._adaptive import (
    compute_next_step_size,
    estimate_initial_step,
    resolve_tolerance,
)
from propjax.integrators._method import StepMethod
from propjax.integrators._types import AdaptiveConfig, IntegrationResult, TrialStep
from propjax.integrators.dp54 import DormandPrince54
from propjax.integrators.gbs import GraggBulirschStoer
from propjax.integrators.rk4 import ClassicalRungeKutta
from propjax.integrators.rkf45 import RungeKuttaFehlberg45
from propjax.sampling.handlers import StepHandler
from propjax.sampling.interpolators import StepInterpolator

logger = logging.getLogger(__name__)

_METHODS: dict[str, Callable[[], StepMethod]] = {
    "rk4": ClassicalRungeKutta,
    "rkf45": RungeKuttaFehlberg45,
    "dp54": DormandPrince54,
    "gbs": GraggBulirschStoer,
}


def get_method(method: StepMethod | str) -> StepMethod:
    """Resolve a step method instance from an instance or a name.

    Args:
        method: A :class:`StepMethod`, or one of ``"rk4"``, ``"rkf45"``,
            ``"dp54"``, ``"gbs"``.

    Returns:
        StepMethod: The step method.

    Raises:
        ConfigurationError: If the name is unknown.
    """
    if isinstance(method, StepMethod):
        return method
    try:
        return _METHODS[method]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown step method {method!r}. Must be one of: {', '.join(_METHODS)}"
        ) from None


def _is_finite(step: TrialStep) -> bool:
    return bool(jnp.all(jnp.isfinite(step.state_end)) & jnp.all(jnp.isfinite(step.derivative_end)))


class _CountedDynamics:
    """Derivative function wrapper that counts calls and checks shapes.

    ``t`` and ``state`` track the last consistent point of the integration
    and are reported when the budget runs out.
    """

    def __init__(
        self,
        dynamics: Callable[[float, Array], Array],
        dim: int,
        max_evaluations: int | None,
    ) -> None:
        self.dynamics = dynamics
        self.dim = dim
        self.max_evaluations = max_evaluations
        self.evaluations = 0
        self.t = math.nan
        self.state: Array | None = None

    def __call__(self, t: float, y: Array) -> Array:
        self.evaluations += 1
        if self.max_evaluations is not None and self.evaluations > self.max_evaluations:
            raise EvaluationBudgetExceeded(self.max_evaluations, self.t, self.state)
        y_dot = jnp.asarray(self.dynamics(t, y), dtype=get_dtype())
        if y_dot.shape != (self.dim,):
            raise DimensionMismatchError(
                y_dot.shape[0] if y_dot.ndim else 0, self.dim, "derivative"
            )
        return y_dot


class AdaptiveStepIntegrator:
    """Integrator with adaptive step-size control and event handling.

    Args:
        method: Step method instance or name (``"rk4"``, ``"rkf45"``,
            ``"dp54"``, ``"gbs"``).
        config: Step-size control configuration. Uses default
            :class:`AdaptiveConfig` if ``None``.

    Examples:
        ```python
        import jax.numpy as jnp
        from propjax.events import Action, FunctionDetector
        from propjax.integrators import AdaptiveConfig, AdaptiveStepIntegrator
        def falling(t, x):
            return jnp.array([x[1], -9.81])
        ground = FunctionDetector(lambda t, x: x[0], action=Action.STOP)
        integrator = AdaptiveStepIntegrator("dp54", AdaptiveConfig(abs_tol=1e-9))
        result = integrator.integrate(falling, 0.0, jnp.array([10.0, 0.0]), 5.0,
                                      detectors=[ground])
        result.t  # ~1.4278
        ```
    """

    def __init__(
        self,
        method: StepMethod | str = "dp54",
        config: AdaptiveConfig | None = None,
    ) -> None:
        self.method = get_method(method)
        self.config = config if config is not None else AdaptiveConfig()

    def _first_step(
        self,
        f: _CountedDynamics,
        t: float,
        y: Array,
        y_dot: Array,
        forward: bool,
        abs_tol: Array,
        rel_tol: Array,
    ) -> float:
        config = self.config
        if config.initial_step is not None:
            h = min(max(config.initial_step, config.min_step), config.max_step)
        elif not self.method.adaptive:
            h = config.max_step
        else:
            h = estimate_initial_step(
                f, t, y, y_dot, forward, self.method.order,
                abs_tol, rel_tol, config.min_step, config.max_step,
            )
        return h if forward else -h

    def _shrink(self, error: float, h: float, t: float, y: Array) -> float:
        config = self.config
        h_new = compute_next_step_size(
            error, h, self.method.error_order, config.safety_factor,
            config.min_scale_factor, config.max_scale_factor, 0.0, config.max_step,
        )
        if abs(h_new) < config.min_step:
            if abs(h) > config.min_step:
                return math.copysign(config.min_step, h)
            raise NumericalDivergenceError(t, y, config.min_step, h_new)
        return h_new

    def integrate(
        self,
        dynamics: Callable[[float, Array], Array],
        t0: float,
        y0: ArrayLike,
        t_target: float,
        detectors: Sequence[EventDetector] = (),
        step_handlers: Sequence[StepHandler] = (),
    ) -> IntegrationResult:
        """Integrate ``dy/dt = dynamics(t, y)`` from ``(t0, y0)`` to *t_target*.

        Args:
            dynamics: ODE right-hand side ``f(t, y) -> dy/dt``.
            t0: Start time.
            y0: Initial state, a 1-D vector.
            t_target: Target time. May be before *t0* for backward
                integration.
            detectors: Event detectors, in registration order.
            step_handlers: Observers of the accepted steps.

        Returns:
            IntegrationResult: Final time and state, evaluation count, and
            whether an event stopped the integration.

        Raises:
            ConfigurationError: If ``t_target == t0`` or *y0* is not a vector.
            DimensionMismatchError: If tolerances, derivative or reset
                outputs disagree with the state dimension.
            NumericalDivergenceError: If the step underflows ``min_step``.
            EvaluationBudgetExceeded: If ``max_evaluations`` is exhausted.
        """
        config = self.config
        method = self.method
        t0 = float(t0)
        t_target = float(t_target)
        if t_target == t0:
            raise ConfigurationError(f"empty integration interval: t0 = t_target = {t0!r}")

        y = jnp.asarray(y0, dtype=get_dtype())
        if y.ndim != 1:
            raise ConfigurationError(f"y0 must be a 1-D vector, got shape {y.shape}")
        dim = y.shape[0]
        abs_tol = resolve_tolerance(config.abs_tol, dim, "abs_tol")
        rel_tol = resolve_tolerance(config.rel_tol, dim, "rel_tol")
        forward = t_target > t0

        f = _CountedDynamics(dynamics, dim, config.max_evaluations)
        f.t, f.state = t0, y

        scheduler = EventsScheduler(detectors)
        scheduler.init(t0, y, t_target)
        for handler in step_handlers:
            handler.init(t0, y, t_target)

        def handle_step(interpolator: StepInterpolator, is_last: bool) -> None:
            for handler in step_handlers:
                handler.handle_step(interpolator, is_last)

        logger.info(
            "Integrating with %s from t = %r to t = %r (%d detectors)",
            method.name, t0, t_target, len(detectors),
        )

        t = t0
        y_dot = f(t, y)
        h = self._first_step(f, t, y, y_dot, forward, abs_tol, rel_tol)
        h_fixed = h
        is_last = False

        while not is_last:
            while True:
                clipped = (t + h >= t_target) if forward else (t + h <= t_target)
                if clipped:
                    h = t_target - t
                step = method.propose_step(f, t, y, y_dot, h)
                if clipped:
                    step = step._replace(t_end=t_target)
                error = method.estimate_error(step, abs_tol, rel_tol) if method.adaptive else 0.0
                if not _is_finite(step):
                    error = math.nan

                if not error <= 1.0:
                    logger.debug("Rejected step h = %r at t = %r (error %.3g)", h, t, error)
                    h = self._shrink(error, h, t, y)
                    continue

                interpolator = method.interpolator(step, forward)
                try:
                    scheduler.find_events(interpolator)
                except TooManyEvaluationsError as exc:
                    if abs(h) / 2.0 < config.min_step:
                        raise EvaluationBudgetExceeded(exc.max_evaluations, t, y) from exc
                    logger.debug("Event search budget exhausted, halving step at t = %r", t)
                    h = h / 2.0
                    continue
                break

            try:
                outcome = scheduler.process_step(interpolator, t_target, handle_step)
            except TooManyEvaluationsError as exc:
                raise EvaluationBudgetExceeded(exc.max_evaluations, t, y) from exc

            t, y, is_last = outcome.t, outcome.state, outcome.is_last
            f.t, f.state = t, y
            if is_last:
                break

            if outcome.reset:
                logger.debug("Restarting step-size control after reset at t = %r", t)
                y_dot = f(t, y)
                h = self._first_step(f, t, y, y_dot, forward, abs_tol, rel_tol)
                h_fixed = h
                continue

            y_dot = step.derivative_end if t == step.t_end else f(t, y)
            if method.adaptive:
                h = compute_next_step_size(
                    error, h, method.error_order, config.safety_factor,
                    config.min_scale_factor, config.max_scale_factor,
                    config.min_step, config.max_step,
                )
            else:
                h = h_fixed

        stopped = t != t_target
        logger.info(
            "Integration %s at t = %r after %d evaluations",
            "stopped" if stopped else "finished", t, f.evaluations,
        )
        return IntegrationResult(t=t, state=y, evaluations=f.evaluations, stopped=stopped)


def integrate(
    dynamics: Callable[[float, Array], Array],
    t0: float,
    y0: ArrayLike,
    t_target: float,
    method: StepMethod | str = "dp54",
    config: AdaptiveConfig | None = None,
    detectors: Sequence[EventDetector] = (),
    step_handlers: Sequence[StepHandler] = (),
) -> IntegrationResult:
    """Integrate an ODE from ``(t0, y0)`` to *t_target*.

    Convenience wrapper around :class:`AdaptiveStepIntegrator`.

    Args:
        dynamics: ODE right-hand side ``f(t, y) -> dy/dt``.
        t0: Start time.
        y0: Initial state vector.
        t_target: Target time.
        method: Step method instance or name.
        config: Step-size control configuration.
        detectors: Event detectors, in registration order.
        step_handlers: Observers of the accepted steps.

    Returns:
        IntegrationResult: Final time, state, evaluation count and stop flag.

    Examples:
        ```python
        import jax.numpy as jnp
        from propjax.integrators import AdaptiveConfig, integrate
        def harmonic(t, x):
            return jnp.array([x[1], -x[0]])
        result = integrate(harmonic, 0.0, jnp.array([1.0, 0.0]), jnp.pi,
                           config=AdaptiveConfig(abs_tol=1e-10, rel_tol=1e-10))
        result.state  # ~[-1, 0]
        ```
    """
    return AdaptiveStepIntegrator(method, config).integrate(
        dynamics, t0, y0, t_target, detectors=detectors, step_handlers=step_handlers
    )
