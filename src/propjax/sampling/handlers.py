"""Step handlers: observers of the accepted steps of an integration.

- :class:`StepHandler` -- protocol for handlers that receive each accepted
  step (or part of a step, when events split it) as an interpolator
- :class:`FixedStepHandler` -- protocol for handlers that receive samples
  on a regular time grid
- :class:`StepNormalizer` -- adapts a fixed-step handler to the variable
  steps of an adaptive integrator
"""

from __future__ import annotations

import math
from collections.abc import Callable
from enum import Enum
from typing import Protocol, runtime_checkable

from jax import Array

from propjax.errors import ConfigurationError
from propjax.sampling.interpolators import StepInterpolator


@runtime_checkable
class StepHandler(Protocol):
    """Receives every accepted step of an integration."""

    def init(self, t0: float, y0: Array, t_target: float) -> None: ...

    def handle_step(self, interpolator: StepInterpolator, is_last: bool) -> None: ...


@runtime_checkable
class FixedStepHandler(Protocol):
    """Receives samples on a regular grid, see :class:`StepNormalizer`."""

    def init(self, t0: float, y0: Array, t_target: float) -> None: ...

    def handle_step(self, t: float, y: Array, y_dot: Array, is_last: bool) -> None: ...


class StepNormalizerMode(Enum):
    """Placement of the grid points.

    - ``INCREMENT``: ``t0 + k * step``.
    - ``MULTIPLES``: integer multiples of ``step``.
    """

    INCREMENT = "increment"
    MULTIPLES = "multiples"


class StepNormalizerBounds(Enum):
    """Whether the true start and end of the integration are also sampled."""

    NEITHER = "neither"
    FIRST = "first"
    LAST = "last"
    BOTH = "both"

    @property
    def first_included(self) -> bool:
        return self in (StepNormalizerBounds.FIRST, StepNormalizerBounds.BOTH)

    @property
    def last_included(self) -> bool:
        return self in (StepNormalizerBounds.LAST, StepNormalizerBounds.BOTH)


class StepNormalizer:
    """Sample an integration on a fixed time grid.

    Grid points are emitted in strictly monotonic order without duplicates,
    interpolated from the dense output of the accepted steps. A grid point
    that coincides with the final time counts as the end bound, so it is
    emitted only when *bounds* includes the last point. The last emitted
    sample carries ``is_last=True``, exactly once.

    Args:
        step: Grid spacing. Must be positive; the sign follows the
            integration direction.
        handler: A :class:`FixedStepHandler`, or a plain callable
            ``handler(t, y, y_dot, is_last)``.
        mode: Grid placement.
        bounds: Whether the true start and end are emitted.

    Raises:
        ConfigurationError: If *step* is not positive.

    Examples:
        ```python
        from propjax.sampling import StepNormalizer, StepNormalizerBounds
        times = []
        normalizer = StepNormalizer(
            3.0, lambda t, y, y_dot, is_last: times.append(t),
            bounds=StepNormalizerBounds.NEITHER,
        )
        # integrate(..., 0.0, y0, 30.0, step_handlers=[normalizer])
        # times == [3.0, 6.0, ..., 27.0]
        ```
    """

    def __init__(
        self,
        step: float,
        handler: FixedStepHandler | Callable[[float, Array, Array, bool], None],
        mode: StepNormalizerMode = StepNormalizerMode.INCREMENT,
        bounds: StepNormalizerBounds = StepNormalizerBounds.FIRST,
    ) -> None:
        if not step > 0.0:
            raise ConfigurationError(f"normalizer step must be positive, got {step}")
        self.step = float(step)
        self.handler = handler
        self.mode = mode
        self.bounds = bounds
        self._reset()

    def _reset(self) -> None:
        self._h = self.step
        self._first_time = math.nan
        self._last_time = math.nan
        self._last_state: Array | None = None
        self._last_derivative: Array | None = None
        self._forward = True
        self._count = 0

    def init(self, t0: float, y0: Array, t_target: float) -> None:
        self._reset()
        if isinstance(self.handler, FixedStepHandler):
            self.handler.init(t0, y0, t_target)

    def _emit(self, is_last: bool) -> None:
        if not self.bounds.first_included and self._first_time == self._last_time:
            return
        if isinstance(self.handler, FixedStepHandler):
            self.handler.handle_step(
                self._last_time, self._last_state, self._last_derivative, is_last
            )
        else:
            self.handler(self._last_time, self._last_state, self._last_derivative, is_last)

    def _store(self, interpolator: StepInterpolator, t: float) -> None:
        self._last_time = t
        self._last_state = interpolator.state(t)
        self._last_derivative = interpolator.derivative(t)

    def _next_time(self) -> float:
        if self.mode is StepNormalizerMode.INCREMENT:
            return self._first_time + (self._count + 1) * self._h
        next_time = (math.floor(self._last_time / self._h) + 1.0) * self._h
        if abs(next_time - self._last_time) <= math.ulp(self._last_time):
            next_time += self._h
        return next_time

    def _in_step(self, t: float, interpolator: StepInterpolator, is_last: bool) -> bool:
        current = interpolator.current_time
        if t == current:
            # on the final step the end point is the end bound, not a grid point
            return not is_last
        return t < current if self._forward else t > current

    def handle_step(self, interpolator: StepInterpolator, is_last: bool) -> None:
        """Emit the grid points covered by the step, one sample behind."""
        if self._last_state is None:
            self._first_time = interpolator.previous_time
            self._store(interpolator, self._first_time)
            self._forward = interpolator.current_time >= self._first_time
            if not self._forward:
                self._h = -self.step

        next_time = self._next_time()
        while self._in_step(next_time, interpolator, is_last):
            # samples lag by one so that the last one can carry is_last
            self._emit(False)
            self._store(interpolator, next_time)
            self._count += 1
            next_time = self._next_time()

        if is_last:
            add_last = (
                self.bounds.last_included and self._last_time != interpolator.current_time
            )
            self._emit(not add_last)
            if add_last:
                self._store(interpolator, interpolator.current_time)
                self._emit(True)
