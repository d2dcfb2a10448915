"""Event detectors: guard functions and the reactions attached to them.

An event occurs where the guard ``g(t, y)`` changes sign. Detectors are
plain Python objects; the integration loop tracks each one with an
:class:`~propjax.events.state.EventState` and calls back into it when its
event occurs.

- :class:`EventDetector` -- abstract base, subclasses implement :meth:`g`
- :class:`FunctionDetector` -- wraps a guard callable
- :class:`DateDetector` -- fires at a fixed time (maneuver start/stop)
- :class:`ApsideDetector` -- fires at periapsis and apoapsis passages
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

import jax.numpy as jnp
from jax import Array

from propjax.errors import ConfigurationError
from propjax.events._types import Action, SlopeSelection

logger = logging.getLogger(__name__)


class EventDetector(ABC):
    """Base class for event detectors.

    Args:
        threshold: Convergence threshold on the event time. Two events of
            the same detector closer than this are merged.
        max_iterations: Evaluation budget of the root solver per search.
        max_check_interval: Maximal time between two guard samples inside
            a step. Roots closer than this may be missed in pairs.
        slope_selection: Crossings reported as events.
        action: Reaction returned by the default :meth:`event_occurred`.
        remove_after_first: Drop the detector after its first occurrence.

    Raises:
        ConfigurationError: If a threshold, budget or interval is not
            positive.
    """

    def __init__(
        self,
        threshold: float = 1e-6,
        max_iterations: int = 100,
        max_check_interval: float = 60.0,
        slope_selection: SlopeSelection = SlopeSelection.BOTH,
        action: Action = Action.CONTINUE,
        remove_after_first: bool = False,
    ) -> None:
        if threshold <= 0.0:
            raise ConfigurationError(f"threshold must be positive, got {threshold}")
        if max_iterations <= 0:
            raise ConfigurationError(f"max_iterations must be positive, got {max_iterations}")
        if max_check_interval <= 0.0:
            raise ConfigurationError(
                f"max_check_interval must be positive, got {max_check_interval}"
            )
        self.threshold = threshold
        self.max_iterations = max_iterations
        self.max_check_interval = max_check_interval
        self.slope_selection = slope_selection
        self.action = action
        self.remove_after_first = remove_after_first

    def init(self, t0: float, y0: Array, t_target: float) -> None:
        """Called once at the start of each integration."""

    @abstractmethod
    def g(self, t: float, y: Array) -> float:
        """Guard function. Events occur at its sign changes."""

    def event_occurred(self, t: float, y: Array, increasing: bool, forward: bool) -> Action:
        """Called when the event occurs.

        Args:
            t: Event time.
            y: State at the event.
            increasing: ``True`` if the guard increases through zero in
                physical time.
            forward: Integration direction.

        Returns:
            Action: Reaction to apply. Defaults to :attr:`action`.
        """
        return self.action

    def reset_state(self, t: float, y: Array) -> Array:
        """New state after a ``RESET_STATE`` action. Must keep the dimension."""
        return y

    def should_be_removed(self) -> bool:
        """Whether the detector is dropped after the event that just occurred."""
        return self.remove_after_first

    def __repr__(self) -> str:
        return f"{type(self).__name__}(action={self.action.name})"


class FunctionDetector(EventDetector):
    """Detector built from a guard callable.

    Args:
        g: Guard ``g(t, y) -> float``.
        **kwargs: Forwarded to :class:`EventDetector`.

    Examples:
        ```python
        from propjax.events import Action, FunctionDetector
        ground = FunctionDetector(lambda t, y: y[0], action=Action.STOP)
        ```
    """

    def __init__(self, g: Callable[[float, Array], float], **kwargs) -> None:
        super().__init__(**kwargs)
        self._g = g

    def g(self, t: float, y: Array) -> float:
        return float(self._g(t, y))


class DateDetector(EventDetector):
    """Fires when the integration reaches *target_time*.

    Typical use is switching a maneuver on or off: the guard is
    ``t - target_time``, independent of the state.

    Args:
        target_time: Time of the event.
        **kwargs: Forwarded to :class:`EventDetector`.
    """

    def __init__(self, target_time: float, **kwargs) -> None:
        kwargs.setdefault("remove_after_first", True)
        super().__init__(**kwargs)
        self.target_time = float(target_time)

    def g(self, t: float, y: Array) -> float:
        return t - self.target_time

    def __repr__(self) -> str:
        return f"DateDetector(target_time={self.target_time!r})"


class ApsideDetector(EventDetector):
    """Fires at apsis passages of a Cartesian orbit state.

    The guard is ``r . v`` with ``r = y[:3]`` and ``v = y[3:6]``. It
    increases through zero at periapsis and decreases at apoapsis.

    Args:
        periapsis_action: Reaction at periapsis.
        apoapsis_action: Reaction at apoapsis.
        **kwargs: Forwarded to :class:`EventDetector`.
    """

    def __init__(
        self,
        periapsis_action: Action = Action.CONTINUE,
        apoapsis_action: Action = Action.CONTINUE,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.periapsis_action = periapsis_action
        self.apoapsis_action = apoapsis_action

    def g(self, t: float, y: Array) -> float:
        return float(jnp.dot(y[:3], y[3:6]))

    def event_occurred(self, t: float, y: Array, increasing: bool, forward: bool) -> Action:
        logger.debug("%s passage at t = %.6f", "Periapsis" if increasing else "Apoapsis", t)
        return self.periapsis_action if increasing else self.apoapsis_action
