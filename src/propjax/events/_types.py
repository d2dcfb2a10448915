"""Type definitions for event detection.

- :class:`Action`: Reaction requested by a detector when its event occurs.
- :class:`SlopeSelection`: Which zero crossings of a guard are events.
- :class:`EventOccurrence`: Total order of candidate events within a step.
- :class:`StepOutcome`: Result of handing one accepted step to the
  events scheduler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple

from jax import Array


class Action(Enum):
    """Reaction to an event occurrence.

    - ``CONTINUE``: keep integrating, the state is unchanged.
    - ``STOP``: end the integration at the event.
    - ``RESET_STATE``: replace the state with
      :meth:`~propjax.events.EventDetector.reset_state` and restart the
      step-size control from the event.
    - ``RESET_DERIVATIVES``: keep the state but re-evaluate the derivative,
      e.g. because the dynamics switched.
    """

    CONTINUE = "continue"
    STOP = "stop"
    RESET_STATE = "reset_state"
    RESET_DERIVATIVES = "reset_derivatives"


class SlopeSelection(Enum):
    """Zero crossings reported as events, in physical (not integration) time."""

    INCREASING = "increasing"
    DECREASING = "decreasing"
    BOTH = "both"

    def accepts(self, increasing: bool) -> bool:
        """Whether a crossing with the given physical slope is an event."""
        if self is SlopeSelection.BOTH:
            return True
        return increasing == (self is SlopeSelection.INCREASING)


@dataclass(order=True, frozen=True)
class EventOccurrence:
    """Position of a candidate event in the processing order.

    Candidates are sorted by time multiplied by the integration direction,
    so the chronologically first event along the integration comes first
    in both directions. Ties are broken by registration index.

    Attributes:
        signed_time: Event time times ``+1`` (forward) or ``-1`` (backward).
        index: Registration index of the detector.
        state: The event state, excluded from ordering.
    """

    signed_time: float
    index: int
    state: Any = field(compare=False, default=None)


class StepOutcome(NamedTuple):
    """Result of processing one accepted step.

    Attributes:
        t: Time at which the step really ends, the event time when an event
            truncated it.
        state: State at ``t``, after any reset.
        is_last: ``True`` if the integration must end at ``t``.
        reset: ``True`` if the state or derivatives were reset at ``t``.
    """

    t: float
    state: Array
    is_last: bool
    reset: bool
