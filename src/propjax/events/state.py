"""Tracking of one event detector across an integration.

:class:`EventState` keeps the sign of a detector's guard at the start of
the current step and searches each accepted step for sign changes. A
crossing is located by sampling the guard at sub-intervals no longer than
the detector's ``max_check_interval`` and refining the first bracketing
sub-interval with a bracketing root solver.

The root is always reported on the far side of the crossing along the
integration direction, so the guard has already changed sign at the
reported time. After an event, the stored guard sign is replaced by an
infinite sentinel of the new sign, which keeps round-off around the event
time from producing a second detection.
"""

from __future__ import annotations

import logging
import math

import jax.numpy as jnp
from jax import Array

from propjax.config import get_comparison_epsilon
from propjax.errors import BracketingError, DimensionMismatchError
from propjax.events._types import Action
from propjax.events.detectors import EventDetector
from propjax.sampling.interpolators import StepInterpolator
from propjax.solvers import AllowedSolution, BracketingNthOrderBrentSolver

logger = logging.getLogger(__name__)


def _sentinel(g: float) -> float:
    if g > 0.0:
        return math.inf
    if g < 0.0:
        return -math.inf
    return g


class EventState:
    """Event search state of one detector.

    Args:
        detector: The tracked detector.
        index: Registration index, used to order simultaneous events.
    """

    def __init__(self, detector: EventDetector, index: int = 0) -> None:
        self.detector = detector
        self.index = index
        self.solver = BracketingNthOrderBrentSolver(absolute_accuracy=detector.threshold)
        self.forward = True
        self.t0 = math.nan
        self.g0 = math.nan
        self.initial_time = math.nan
        self.step_convergence = detector.threshold
        self.pending_event = False
        self.pending_event_time = math.nan
        self.previous_event_time = math.nan
        # slope along the integration direction
        self.increasing = True
        self.next_action = Action.CONTINUE
        self._remove = False

    def _g(self, t: float, y: Array) -> float:
        return float(self.detector.g(t, y))

    @property
    def event_time(self) -> float:
        """Time of the pending event, or infinity along the direction if none."""
        if self.pending_event:
            return self.pending_event_time
        return math.inf if self.forward else -math.inf

    def reinitialize_begin(self, interpolator: StepInterpolator) -> None:
        """Initialize the guard sign at the start of the first step."""
        self.forward = interpolator.forward
        self.t0 = interpolator.previous_time
        self.initial_time = self.t0
        self.g0 = _sentinel(self._g(self.t0, interpolator.state(self.t0)))

    def _is_selected(self) -> bool:
        physically_increasing = self.increasing == self.forward
        return self.detector.slope_selection.accepts(physically_increasing)

    def _clear_pending(self) -> None:
        self.pending_event = False
        self.pending_event_time = math.nan

    def evaluate_step(self, interpolator: StepInterpolator) -> bool:
        """Search ``[t0, current_time]`` of *interpolator* for the next event.

        A step shorter than the comparison epsilon is too short for the
        root solver. Only the guard signs at its two ends are compared, and
        a sign change puts the event at ``current_time``, the far side of
        the crossing like every other reported root. A zero-length step
        never reports an event; the crossing is found at the start of the
        next step.

        Returns:
            bool: ``True`` if an event is pending in the step, its time is
            then available as :attr:`event_time`.

        Raises:
            TooManyEvaluationsError: If the root solver exhausts the
                detector's ``max_iterations``.
        """
        self.forward = interpolator.forward
        t1 = interpolator.current_time
        dt = t1 - self.t0
        abs_dt = abs(dt)
        self.step_convergence = min(abs_dt, self.detector.threshold)

        if abs_dt < get_comparison_epsilon():
            # degenerate step, compare the ends only
            gb = self._g(t1, interpolator.state(t1))
            sign_change = (self.g0 >= 0 and gb < 0) or (self.g0 <= 0 and gb > 0)
            if abs_dt > 0 and sign_change:
                self.increasing = gb >= self.g0
                if self._is_selected():
                    self.pending_event = True
                    self.pending_event_time = t1
                    return True
            self._clear_pending()
            return False

        def f(t: float) -> float:
            return self._g(t, interpolator.state(t))

        n = max(1, math.ceil(abs_dt / self.detector.max_check_interval))
        h = dt / n
        t_start = self.t0
        ta = self.t0
        ga = self.g0
        i = 0
        while i < n:
            tb = t1 if i == n - 1 else t_start + (i + 1) * h
            gb = f(tb)
            event_at_first_step = self.g0 == 0 and t_start == self.initial_time and ta == t_start

            if ((ga >= 0) != (gb >= 0)) or event_at_first_step:
                self.increasing = gb >= ga
                if not self._is_selected():
                    ta, ga = tb, gb
                    i += 1
                    continue

                root = ta
                if (f(ta) >= 0) != (gb >= 0):
                    try:
                        if self.forward:
                            root = self.solver.solve(
                                self.detector.max_iterations, f, ta, tb,
                                allowed=AllowedSolution.RIGHT_SIDE,
                            )
                        else:
                            root = self.solver.solve(
                                self.detector.max_iterations, f, tb, ta,
                                allowed=AllowedSolution.LEFT_SIDE,
                            )
                    except BracketingError as exc:
                        logger.warning(
                            "Root bracketing failed for %r on [%s, %s]: %s",
                            self.detector, ta, tb, exc,
                        )
                        ta, ga = tb, gb
                        i += 1
                        continue

                near_previous = (
                    not math.isnan(self.previous_event_time)
                    and abs(root - self.previous_event_time) <= self.step_convergence
                )
                if near_previous and abs(root - ta) <= self.step_convergence:
                    # same root as the last event, move past it and retry
                    ta = ta + self.step_convergence if self.forward else ta - self.step_convergence
                    if (ta >= tb) if self.forward else (ta <= tb):
                        ta, ga = tb, gb
                        i += 1
                    else:
                        ga = f(ta)
                elif not near_previous:
                    self.pending_event = True
                    self.pending_event_time = root
                    return True
                else:
                    ta, ga = tb, gb
                    i += 1
            else:
                ta, ga = tb, gb
                i += 1

        self._clear_pending()
        return False

    def evaluate_point(self, t: float, y: Array) -> bool:
        """Check for a sign change between ``t0`` and the single point ``(t, y)``.

        Used after a state reset, when the step interpolator no longer
        describes the trajectory.

        Returns:
            bool: ``True`` if an event is now pending at *t*.
        """
        if self.previous_event_time == t:
            return False
        gb = self._g(t, y)
        if (self.g0 >= 0) != (gb >= 0):
            self.increasing = gb >= self.g0
            if self._is_selected():
                self.pending_event = True
                self.pending_event_time = t
                self.step_convergence = self.detector.threshold
                return True
        self._clear_pending()
        return False

    def step_accepted(self, t: float, y: Array) -> None:
        """Commit the integration up to *t*, firing the pending event if it is at *t*."""
        self.t0 = t
        if self.pending_event and abs(self.pending_event_time - t) <= self.step_convergence:
            self.previous_event_time = t
            physically_increasing = self.increasing == self.forward
            logger.info(
                "Event %r at t = %r (%s)",
                self.detector, t, "increasing" if physically_increasing else "decreasing",
            )
            self.next_action = self.detector.event_occurred(t, y, physically_increasing, self.forward)
            self._remove = self.detector.should_be_removed()
            self.g0 = math.inf if self.increasing else -math.inf
        else:
            self.next_action = Action.CONTINUE
            self.g0 = _sentinel(self._g(t, y))

    def store_state(self, t: float, y: Array, force: bool = False) -> None:
        """Move the search start to *t*, re-evaluating the guard sign if *force*."""
        self.t0 = t
        if force:
            self.g0 = _sentinel(self._g(t, y))

    def reset(self, t: float, y: Array) -> tuple[bool, Array]:
        """Apply the reaction of an event that fired at *t*.

        Returns:
            tuple[bool, jax.Array]: Whether the state or derivatives must be
            reset, and the (possibly new) state.

        Raises:
            DimensionMismatchError: If ``reset_state`` changes the dimension.
        """
        if not (self.pending_event and abs(self.pending_event_time - t) <= self.step_convergence):
            return False, y

        new_y = y
        if self.next_action is Action.RESET_STATE:
            new_y = jnp.asarray(self.detector.reset_state(t, y), dtype=y.dtype)
            if new_y.shape != y.shape:
                raise DimensionMismatchError(new_y.shape[0], y.shape[0], "reset state")
            logger.debug("State reset by %r at t = %r", self.detector, t)
        self._clear_pending()
        return self.next_action in (Action.RESET_STATE, Action.RESET_DERIVATIVES), new_y

    def stop(self) -> bool:
        """Whether the last fired event requested the end of the integration."""
        return self.next_action is Action.STOP

    def should_remove(self) -> bool:
        """Whether the detector asked to be dropped after its last event."""
        return self._remove

    def __repr__(self) -> str:
        return f"EventState({self.detector!r}, index={self.index})"
