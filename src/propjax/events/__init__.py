"""Event detection during integration.

Detectors define a guard function whose sign changes are events, and a
reaction to apply when one occurs. Pass them to
:func:`~propjax.integrators.integrate` or
:meth:`~propjax.integrators.AdaptiveStepIntegrator.integrate`.

Available detectors:

- :class:`EventDetector` -- base class for custom guards
- :class:`FunctionDetector` -- guard from a callable
- :class:`DateDetector` -- event at a fixed time
- :class:`ApsideDetector` -- periapsis and apoapsis passages

:class:`EventsLogger` records the occurrences of the detectors it monitors.
"""

from propjax.events._types import Action, EventOccurrence, SlopeSelection, StepOutcome
from propjax.events.detectors import ApsideDetector, DateDetector, EventDetector, FunctionDetector
from propjax.events.logger import EventsLogger, LoggedEvent
from propjax.events.scheduler import EventsScheduler
from propjax.events.state import EventState

__all__ = [
    "Action",
    "ApsideDetector",
    "DateDetector",
    "EventDetector",
    "EventOccurrence",
    "EventState",
    "EventsLogger",
    "EventsScheduler",
    "FunctionDetector",
    "LoggedEvent",
    "SlopeSelection",
    "StepOutcome",
]
