"""Recording of event occurrences during an integration."""

from __future__ import annotations

from typing import Any, NamedTuple

from jax import Array

from propjax.events._types import Action
from propjax.events.detectors import EventDetector


class LoggedEvent(NamedTuple):
    """One recorded event occurrence.

    Attributes:
        t: Event time.
        state: State at the event, before any reset.
        increasing: Physical slope of the guard at the event.
        detector: The monitored detector that fired.
    """

    t: float
    state: Array
    increasing: bool
    detector: EventDetector


class _MonitoredDetector(EventDetector):
    """Detector wrapper that records occurrences into an :class:`EventsLogger`."""

    def __init__(self, events_logger: EventsLogger, detector: EventDetector) -> None:
        self.detector = detector
        self._events_logger = events_logger
        super().__init__(
            threshold=detector.threshold,
            max_iterations=detector.max_iterations,
            max_check_interval=detector.max_check_interval,
            slope_selection=detector.slope_selection,
            action=detector.action,
            remove_after_first=detector.remove_after_first,
        )

    def init(self, t0: float, y0: Array, t_target: float) -> None:
        self.detector.init(t0, y0, t_target)

    def g(self, t: float, y: Array) -> float:
        return self.detector.g(t, y)

    def event_occurred(self, t: float, y: Array, increasing: bool, forward: bool) -> Action:
        self._events_logger.logged_events.append(LoggedEvent(t, y, increasing, self.detector))
        return self.detector.event_occurred(t, y, increasing, forward)

    def reset_state(self, t: float, y: Array) -> Array:
        return self.detector.reset_state(t, y)

    def should_be_removed(self) -> bool:
        return self.detector.should_be_removed()

    def __getattr__(self, name: str) -> Any:
        # only reached for attributes missing on the wrapper
        if name == "detector":
            raise AttributeError(name)
        return getattr(self.detector, name)

    def __repr__(self) -> str:
        return f"Monitored({self.detector!r})"


class EventsLogger:
    """Collects the occurrences of monitored detectors.

    Register the wrapper returned by :meth:`monitor` instead of the
    detector itself. Occurrences are appended in the order they are
    processed, which is chronological along the integration.

    Examples:
        ```python
        from propjax.events import ApsideDetector, EventsLogger
        events_logger = EventsLogger()
        detector = events_logger.monitor(ApsideDetector())
        # integrate(..., detectors=[detector])
        [e.t for e in events_logger.logged_events]
        ```
    """

    def __init__(self) -> None:
        self.logged_events: list[LoggedEvent] = []

    def monitor(self, detector: EventDetector) -> EventDetector:
        """Wrap *detector* so that its occurrences are recorded."""
        return _MonitoredDetector(self, detector)

    def clear(self) -> None:
        """Forget all recorded occurrences."""
        self.logged_events.clear()

    def events_of(self, detector: EventDetector) -> list[LoggedEvent]:
        """Occurrences recorded for *detector* (the unwrapped instance)."""
        return [event for event in self.logged_events if event.detector is detector]
