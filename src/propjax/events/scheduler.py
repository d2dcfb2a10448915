"""Ordering and processing of the events found in an accepted step.

The scheduler works in two phases per accepted step:

1. :meth:`EventsScheduler.find_events` asks every event state for the first
   event inside the step. Root-solver budget failures propagate from here,
   before anything has been committed, so the caller can shrink the step
   and try again.
2. :meth:`EventsScheduler.process_step` handles the candidates in
   chronological order along the integration. Step handlers see the step
   split at each event. A ``STOP`` or reset action truncates the step at
   the event; a ``CONTINUE`` action only splits it, and the fired detector
   is searched again over the rest of the step.

Simultaneous events are ordered by registration index. After a reset every
other detector is checked at the event point against the new state, and
those that changed sign there are fired at the same time.
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Callable, Sequence

from jax import Array

from propjax.events._types import EventOccurrence, StepOutcome
from propjax.events.detectors import EventDetector
from propjax.events.state import EventState
from propjax.sampling.interpolators import StepInterpolator

logger = logging.getLogger(__name__)


class EventsScheduler:
    """Event handling for one integration.

    Holds one :class:`EventState` per registered detector. Build a new
    scheduler for every ``integrate()`` call.

    Args:
        detectors: Detectors in registration order.
    """

    def __init__(self, detectors: Sequence[EventDetector]) -> None:
        self.states = [EventState(detector, index) for index, detector in enumerate(detectors)]
        self._initialized = False
        self._queue: list[EventOccurrence] = []

    def init(self, t0: float, y0: Array, t_target: float) -> None:
        """Initialize all detectors at the start of an integration."""
        for state in self.states:
            state.detector.init(t0, y0, t_target)
        self._initialized = False
        self._queue = []

    def _occurrence(self, state: EventState) -> EventOccurrence:
        sign = 1.0 if state.forward else -1.0
        return EventOccurrence(sign * state.event_time, state.index, state)

    def _remove(self, state: EventState, t: float) -> None:
        if state in self.states:
            logger.debug("Removing detector %r at t = %r", state.detector, t)
            self.states.remove(state)

    def find_events(self, interpolator: StepInterpolator) -> list[EventOccurrence]:
        """Find the first event of every detector inside the step.

        Args:
            interpolator: Dense output of the accepted step.

        Returns:
            list[EventOccurrence]: Candidates in processing order.

        Raises:
            TooManyEvaluationsError: If a root search exhausts its budget.
        """
        if not self._initialized:
            for state in self.states:
                state.reinitialize_begin(interpolator)
            self._initialized = True

        occurrences = []
        for state in self.states:
            if state.evaluate_step(interpolator):
                occurrences.append(self._occurrence(state))
        heapq.heapify(occurrences)
        self._queue = occurrences
        return sorted(occurrences)

    def process_step(
        self,
        interpolator: StepInterpolator,
        t_target: float,
        handle_step: Callable[[StepInterpolator, bool], None],
    ) -> StepOutcome:
        """Handle the candidates of the last :meth:`find_events` call.

        Args:
            interpolator: Dense output of the accepted step.
            t_target: Target time of the integration.
            handle_step: Callback invoked for every part of the step with
                the restricted interpolator and the last-step flag.

        Returns:
            StepOutcome: Where the step really ends and what happened there.

        Raises:
            TooManyEvaluationsError: If re-searching the rest of a step after
                an event exhausts the root solver budget.
            DimensionMismatchError: If a reset changes the state dimension.
        """
        queue = self._queue
        self._queue = []
        previous_t = interpolator.previous_time
        current_t = interpolator.current_time

        while queue:
            state = heapq.heappop(queue).state
            event_t = state.event_time

            interpolator.restrict(previous_t, event_t)
            event_y = interpolator.state(event_t)

            # an event exactly at the target ends the integration untreated
            is_last = event_t == t_target
            if not is_last:
                state.step_accepted(event_t, event_y)
                is_last = state.stop()
            remove = state.should_remove()

            handle_step(interpolator, is_last)

            if is_last:
                if remove:
                    self._remove(state, event_t)
                return StepOutcome(event_t, event_y, True, False)

            needs_reset, new_y = state.reset(event_t, event_y)
            if needs_reset:
                outcome = self._after_reset(state, event_t, new_y)
                if remove:
                    self._remove(state, event_t)
                return outcome

            previous_t = event_t
            interpolator.restrict(event_t, current_t)
            if remove:
                self._remove(state, event_t)
            elif state.evaluate_step(interpolator):
                heapq.heappush(queue, self._occurrence(state))

        if current_t == interpolator.global_current_time:
            current_y = interpolator.state_end
        else:
            current_y = interpolator.state(current_t)

        is_last = False
        for state in self.states:
            state.step_accepted(current_t, current_y)
            is_last = is_last or state.stop()
        is_last = is_last or current_t == t_target

        handle_step(interpolator, is_last)
        return StepOutcome(current_t, current_y, is_last, False)

    def _after_reset(self, fired: EventState, event_t: float, y: Array) -> StepOutcome:
        for state in list(self.states):
            if state is fired:
                continue
            if state.evaluate_point(event_t, y):
                # simultaneous with the reset
                state.step_accepted(event_t, y)
                _, y = state.reset(event_t, y)
                if state.should_remove():
                    self._remove(state, event_t)
                if state.stop():
                    return StepOutcome(event_t, y, True, True)
            else:
                state.store_state(event_t, y, force=True)

        fired.store_state(event_t, y)
        return StepOutcome(event_t, y, False, True)
