"""Tests for event detection during integration.

Tests cover:
- STOP events in forward and backward integration
- Slope selection in physical time
- Built-in detectors (date, apsides)
- Simultaneous events with CONTINUE and reset actions
- State and derivative resets
- Detector removal and the events logger
- Root solver budget failures and step halving
- Search state: previous-event skip and degenerate steps
"""

import logging
import math

import jax.numpy as jnp
import pytest

from propjax.constants import GM_EARTH, R_EARTH
from propjax.errors import (
    ConfigurationError,
    DimensionMismatchError,
    EvaluationBudgetExceeded,
    TooManyEvaluationsError,
)
from propjax.events import (
    Action,
    ApsideDetector,
    DateDetector,
    EventDetector,
    EventOccurrence,
    EventState,
    EventsLogger,
    FunctionDetector,
    SlopeSelection,
)
from propjax.integrators import AdaptiveConfig, integrate
from propjax.sampling import HermiteInterpolator

_G = 9.81
_H0 = 10.0
_FALL_TIME = math.sqrt(2.0 * _H0 / _G)

_TIGHT = AdaptiveConfig(abs_tol=1e-10, rel_tol=1e-10)

# ──────────────────────────────────────────────
# Helper dynamics functions
# ──────────────────────────────────────────────


def _falling(t, x):
    """Free fall. State: [height, vertical velocity]."""
    return jnp.array([x[1], -_G])


def _exponential_decay(t, x):
    return -x


def _constant(t, x):
    return jnp.zeros_like(x)


def _harmonic_oscillator(t, x):
    return jnp.array([x[1], -x[0]])


def _two_body(t, state):
    r = state[:3]
    v = state[3:]
    r_norm = jnp.linalg.norm(r)
    a = -GM_EARTH * r / r_norm**3
    return jnp.concatenate([v, a])


def _sine_detector(**kwargs):
    return FunctionDetector(lambda t, x: math.sin(t), max_check_interval=1.0, **kwargs)


class _ExhaustedOnce(FunctionDetector):
    """Runs out of root search budget the first time the guard is sampled past *root*."""

    def __init__(self, g, root, **kwargs):
        super().__init__(g, **kwargs)
        self.root = root
        self.exhausted = False

    def g(self, t, y):
        if not self.exhausted and t > self.root:
            self.exhausted = True
            raise TooManyEvaluationsError(self.max_iterations)
        return super().g(t, y)


def _unit_line(t_start, t_end):
    """Dense output of x(t) = t over one step."""
    return HermiteInterpolator(
        t_start=t_start,
        t_end=t_end,
        state_start=jnp.array([t_start]),
        state_end=jnp.array([t_end]),
        derivative_start=jnp.array([1.0]),
        derivative_end=jnp.array([1.0]),
        forward=t_end > t_start,
    )


class _Doubler(FunctionDetector):
    """Doubles the state when the guard crosses zero."""

    def __init__(self, g, **kwargs):
        super().__init__(g, action=Action.RESET_STATE, **kwargs)

    def reset_state(self, t, y):
        return 2.0 * y


# ──────────────────────────────────────────────
# Types
# ──────────────────────────────────────────────


class TestTypes:
    def test_occurrence_order(self):
        early = EventOccurrence(1.0, 5)
        late_first = EventOccurrence(2.0, 0)
        late_second = EventOccurrence(2.0, 1)
        assert sorted([late_second, early, late_first]) == [early, late_first, late_second]

    def test_slope_selection(self):
        assert SlopeSelection.BOTH.accepts(True)
        assert SlopeSelection.BOTH.accepts(False)
        assert SlopeSelection.INCREASING.accepts(True)
        assert not SlopeSelection.INCREASING.accepts(False)
        assert SlopeSelection.DECREASING.accepts(False)

    @pytest.mark.parametrize(
        "kwargs",
        [{"threshold": 0.0}, {"max_iterations": 0}, {"max_check_interval": -1.0}],
    )
    def test_invalid_detector(self, kwargs):
        with pytest.raises(ConfigurationError):
            FunctionDetector(lambda t, x: t, **kwargs)

    def test_base_detector_is_abstract(self):
        with pytest.raises(TypeError):
            EventDetector()

    def test_subclass_without_guard_is_abstract(self):
        class _NoGuard(EventDetector):
            pass

        with pytest.raises(TypeError):
            _NoGuard(threshold=1e-8)


# ──────────────────────────────────────────────
# STOP
# ──────────────────────────────────────────────


class TestStop:
    def test_ground_impact(self):
        ground = FunctionDetector(lambda t, x: x[0], action=Action.STOP, threshold=1e-10)
        result = integrate(_falling, 0.0, jnp.array([_H0, 0.0]), 5.0, config=_TIGHT, detectors=[ground])
        assert result.stopped
        assert result.t == pytest.approx(_FALL_TIME, abs=1e-8)
        # reported past the root along the integration
        assert result.t >= _FALL_TIME - 1e-12
        assert float(result.state[0]) == pytest.approx(0.0, abs=1e-7)

    def test_ground_impact_backward(self):
        ground = FunctionDetector(lambda t, x: x[0], action=Action.STOP, threshold=1e-10)
        result = integrate(_falling, 0.0, jnp.array([_H0, 0.0]), -5.0, config=_TIGHT, detectors=[ground])
        assert result.stopped
        assert result.t == pytest.approx(-_FALL_TIME, abs=1e-8)
        assert result.t <= -_FALL_TIME + 1e-12

    def test_stop_date(self):
        result = integrate(
            _exponential_decay, 0.0, jnp.array([1.0]), 10.0, config=_TIGHT,
            detectors=[DateDetector(3.0, action=Action.STOP, threshold=1e-10)],
        )
        assert result.stopped
        assert result.t == pytest.approx(3.0, abs=1e-9)
        assert jnp.allclose(result.state, jnp.exp(-3.0), atol=1e-8)

    @pytest.mark.parametrize("method", ["dp54", "gbs"])
    def test_dense_output_locates_root(self, method):
        """x = cos(t) crosses zero at pi / 2, located through the dense output."""
        crossing = FunctionDetector(lambda t, x: x[0], action=Action.STOP, threshold=1e-12)
        config = AdaptiveConfig(abs_tol=1e-11, rel_tol=1e-11)
        result = integrate(
            _harmonic_oscillator, 0.0, jnp.array([1.0, 0.0]), 3.0,
            method=method, config=config, detectors=[crossing],
        )
        assert result.stopped
        assert result.t == pytest.approx(0.5 * math.pi, abs=1e-9)

    def test_no_event(self):
        ground = FunctionDetector(lambda t, x: x[0] + 1000.0, action=Action.STOP)
        result = integrate(_falling, 0.0, jnp.array([_H0, 0.0]), 5.0, detectors=[ground])
        assert not result.stopped
        assert result.t == 5.0


# ──────────────────────────────────────────────
# Slope selection
# ──────────────────────────────────────────────


class TestSlopeSelection:
    """sin(t) on [0.5, 10] crosses zero at pi (down), 2 pi (up) and 3 pi (down)."""

    _config = AdaptiveConfig(max_step=0.5)

    def _times(self, slope_selection, t0=0.5, t1=10.0):
        events_logger = EventsLogger()
        detector = events_logger.monitor(_sine_detector(slope_selection=slope_selection))
        integrate(_constant, t0, jnp.array([1.0]), t1, config=self._config, detectors=[detector])
        return events_logger.logged_events

    def test_both(self):
        events = self._times(SlopeSelection.BOTH)
        assert [e.t for e in events] == pytest.approx([math.pi, 2 * math.pi, 3 * math.pi], abs=2e-6)
        assert [e.increasing for e in events] == [False, True, False]

    def test_increasing(self):
        events = self._times(SlopeSelection.INCREASING)
        assert [e.t for e in events] == pytest.approx([2 * math.pi], abs=2e-6)

    def test_decreasing(self):
        events = self._times(SlopeSelection.DECREASING)
        assert [e.t for e in events] == pytest.approx([math.pi, 3 * math.pi], abs=2e-6)

    def test_backward_uses_physical_slope(self):
        events = self._times(SlopeSelection.INCREASING, t0=10.0, t1=0.5)
        assert [e.t for e in events] == pytest.approx([2 * math.pi], abs=2e-6)
        assert events[0].increasing

    def test_backward_order(self):
        events = self._times(SlopeSelection.BOTH, t0=10.0, t1=0.5)
        assert [e.t for e in events] == pytest.approx([3 * math.pi, 2 * math.pi, math.pi], abs=2e-6)


# ──────────────────────────────────────────────
# Built-in detectors
# ──────────────────────────────────────────────


class TestDetectors:
    def test_date_detector_removed_after_first(self):
        events_logger = EventsLogger()
        date = DateDetector(2.0)
        assert date.remove_after_first
        integrate(
            _exponential_decay, 0.0, jnp.array([1.0]), 5.0,
            detectors=[events_logger.monitor(date)],
        )
        assert [e.t for e in events_logger.events_of(date)] == pytest.approx([2.0], abs=2e-6)

    def test_remove_after_first(self):
        events_logger = EventsLogger()
        detector = events_logger.monitor(_sine_detector(remove_after_first=True))
        integrate(
            _constant, 0.5, jnp.array([1.0]), 10.0, config=AdaptiveConfig(max_step=0.5),
            detectors=[detector],
        )
        assert [e.t for e in events_logger.logged_events] == pytest.approx([math.pi], abs=2e-6)

    def test_apsides(self):
        rp = R_EARTH + 500e3
        ra = R_EARTH + 2000e3
        sma = 0.5 * (rp + ra)
        vp = math.sqrt(GM_EARTH * (2.0 / rp - 1.0 / sma))
        period = 2.0 * math.pi * math.sqrt(sma**3 / GM_EARTH)
        config = AdaptiveConfig(abs_tol=1e-6, rel_tol=1e-12)

        # start a quarter period past periapsis so that r . v != 0
        y0 = jnp.array([rp, 0.0, 0.0, 0.0, vp, 0.0])
        start = integrate(_two_body, 0.0, y0, 0.25 * period, config=config)

        events_logger = EventsLogger()
        detector = events_logger.monitor(ApsideDetector())
        integrate(
            _two_body, start.t, start.state, 1.25 * period,
            config=config, detectors=[detector],
        )
        events = events_logger.logged_events
        assert [e.t for e in events] == pytest.approx([0.5 * period, period], abs=1e-3)
        assert [e.increasing for e in events] == [False, True]
        assert float(jnp.linalg.norm(events[0].state[:3])) == pytest.approx(ra, rel=1e-8)
        assert float(jnp.linalg.norm(events[1].state[:3])) == pytest.approx(rp, rel=1e-8)

    def test_apoapsis_stop(self):
        rp = R_EARTH + 500e3
        ra = R_EARTH + 2000e3
        sma = 0.5 * (rp + ra)
        vp = math.sqrt(GM_EARTH * (2.0 / rp - 1.0 / sma))
        period = 2.0 * math.pi * math.sqrt(sma**3 / GM_EARTH)
        y0 = jnp.array([rp, 0.0, 0.0, 0.0, vp, 0.0])
        result = integrate(
            _two_body, 0.0, y0, period,
            config=AdaptiveConfig(abs_tol=1e-6, rel_tol=1e-12),
            detectors=[ApsideDetector(apoapsis_action=Action.STOP)],
        )
        assert result.stopped
        assert result.t == pytest.approx(0.5 * period, abs=1e-3)

    def test_logger_clear(self):
        events_logger = EventsLogger()
        detector = events_logger.monitor(DateDetector(1.0))
        integrate(_exponential_decay, 0.0, jnp.array([1.0]), 2.0, detectors=[detector])
        assert len(events_logger.logged_events) == 1
        events_logger.clear()
        assert events_logger.logged_events == []

    def test_monitored_detector_delegates(self):
        date = DateDetector(4.0)
        monitored = EventsLogger().monitor(date)
        assert monitored.target_time == 4.0
        assert monitored.threshold == date.threshold
        assert monitored.g(5.0, jnp.zeros(1)) == 1.0

    def test_monitored_detector_copies_settings(self):
        detector = _sine_detector(
            threshold=1e-9,
            max_iterations=7,
            slope_selection=SlopeSelection.DECREASING,
            action=Action.STOP,
            remove_after_first=True,
        )
        monitored = EventsLogger().monitor(detector)
        assert isinstance(monitored, EventDetector)
        assert monitored.threshold == 1e-9
        assert monitored.max_iterations == 7
        assert monitored.max_check_interval == 1.0
        assert monitored.slope_selection is SlopeSelection.DECREASING
        assert monitored.action is Action.STOP
        assert monitored.should_be_removed()
        assert monitored.detector is detector


# ──────────────────────────────────────────────
# Simultaneous events
# ──────────────────────────────────────────────


class TestSimultaneous:
    @pytest.mark.parametrize("reverse", [False, True])
    def test_continue_each_reported_once(self, reverse):
        events_logger = EventsLogger()
        first = FunctionDetector(lambda t, x: t - 2.0)
        second = FunctionDetector(lambda t, x: t - 2.0)
        detectors = [events_logger.monitor(first), events_logger.monitor(second)]
        if reverse:
            detectors.reverse()
        integrate(_exponential_decay, 0.0, jnp.array([1.0]), 5.0, detectors=detectors)

        events = events_logger.logged_events
        assert len(events) == 2
        assert [e.t for e in events] == pytest.approx([2.0, 2.0], abs=2e-6)
        # registration order breaks the tie
        expected = [second, first] if reverse else [first, second]
        assert [e.detector for e in events] == expected

    @pytest.mark.parametrize("reverse", [False, True])
    def test_reset_applied_once(self, reverse):
        events_logger = EventsLogger()
        doubler = _Doubler(lambda t, x: t - 2.0, threshold=1e-10)
        observer = FunctionDetector(lambda t, x: t - 2.0, threshold=1e-10)
        detectors = [events_logger.monitor(doubler), events_logger.monitor(observer)]
        if reverse:
            detectors.reverse()
        result = integrate(_exponential_decay, 0.0, jnp.array([1.0]), 5.0, config=_TIGHT, detectors=detectors)

        assert len(events_logger.events_of(doubler)) == 1
        assert len(events_logger.events_of(observer)) == 1
        assert jnp.allclose(result.state, 2.0 * jnp.exp(-5.0), rtol=1e-7)

    def test_stop_wins_over_later_event(self):
        events_logger = EventsLogger()
        stop = DateDetector(2.0, action=Action.STOP)
        later = DateDetector(2.5)
        integrate(
            _exponential_decay, 0.0, jnp.array([1.0]), 5.0,
            detectors=[events_logger.monitor(later), events_logger.monitor(stop)],
        )
        assert [e.detector for e in events_logger.logged_events] == [stop]


# ──────────────────────────────────────────────
# Resets
# ──────────────────────────────────────────────


class TestResets:
    def test_reset_state(self):
        doubler = _Doubler(lambda t, x: t - 1.0, threshold=1e-10)
        result = integrate(_exponential_decay, 0.0, jnp.array([1.0]), 3.0, config=_TIGHT, detectors=[doubler])
        assert not result.stopped
        assert jnp.allclose(result.state, 2.0 * jnp.exp(-3.0), rtol=1e-7)

    def test_reset_derivatives(self):
        """A detector switches the dynamics on at t = 1."""

        class _Ignition(DateDetector):
            def __init__(self):
                super().__init__(1.0, action=Action.RESET_DERIVATIVES, threshold=1e-10)
                self.burning = False

            def init(self, t0, y0, t_target):
                self.burning = False

            def event_occurred(self, t, y, increasing, forward):
                self.burning = True
                return super().event_occurred(t, y, increasing, forward)

        ignition = _Ignition()

        def thrust(t, x):
            return jnp.ones_like(x) if ignition.burning else jnp.zeros_like(x)

        result = integrate(thrust, 0.0, jnp.array([0.0]), 3.0, config=_TIGHT, detectors=[ignition])
        assert jnp.allclose(result.state, 2.0, atol=1e-8)

    def test_reset_dimension_mismatch(self):
        class _Grow(FunctionDetector):
            def reset_state(self, t, y):
                return jnp.concatenate([y, y])

        detector = _Grow(lambda t, x: t - 1.0, action=Action.RESET_STATE)
        with pytest.raises(DimensionMismatchError):
            integrate(_exponential_decay, 0.0, jnp.array([1.0]), 3.0, detectors=[detector])


# ──────────────────────────────────────────────
# Root solver budget
# ──────────────────────────────────────────────


class TestSolverBudget:
    def test_exhausted_search_is_fatal(self):
        detector = FunctionDetector(lambda t, x: t - 1.7, max_iterations=1)
        config = AdaptiveConfig(min_step=1e-6)
        with pytest.raises(EvaluationBudgetExceeded) as exc_info:
            integrate(_exponential_decay, 0.0, jnp.array([1.0]), 5.0, config=config, detectors=[detector])
        assert exc_info.value.max_evaluations == 1
        assert exc_info.value.t <= 1.7

    def test_exhausted_search_retried_on_half_step(self, caplog):
        detector = _ExhaustedOnce(lambda t, x: t - 1.7, 1.7, action=Action.STOP, threshold=1e-10)
        config = AdaptiveConfig(initial_step=4.0, max_step=4.0)
        with caplog.at_level(logging.DEBUG, logger="propjax.integrators.integrator"):
            result = integrate(
                _exponential_decay, 0.0, jnp.array([1.0]), 5.0, config=config, detectors=[detector]
            )
        assert detector.exhausted
        assert "Event search budget exhausted, halving step" in caplog.text
        assert result.stopped
        assert result.t == pytest.approx(1.7, abs=1e-9)
        assert jnp.allclose(result.state, jnp.exp(-1.7), rtol=1e-2)


# ──────────────────────────────────────────────
# Search state
# ──────────────────────────────────────────────


class TestEventState:
    def _state(self, g, interpolator, **kwargs):
        state = EventState(FunctionDetector(g, threshold=1e-10, **kwargs))
        state.reinitialize_begin(interpolator)
        return state

    def test_root_found(self):
        interpolator = _unit_line(0.0, 2.0)
        state = self._state(lambda t, x: x[0] - 1.0, interpolator)
        assert state.evaluate_step(interpolator)
        assert state.event_time == pytest.approx(1.0, abs=1e-10)
        assert state.increasing

    def test_previous_event_skipped(self):
        """A root at the time of the last event is not reported again."""
        interpolator = _unit_line(0.0, 2.0)
        state = self._state(lambda t, x: x[0] - 1.0, interpolator)
        state.previous_event_time = 1.0
        assert not state.evaluate_step(interpolator)
        assert not state.pending_event

    def test_search_moves_past_previous_event(self):
        """Starting on the last event, the search skips it and finds the next root."""
        interpolator = _unit_line(0.0, 2.0)
        state = self._state(
            lambda t, x: (x[0] - 1.0) * (x[0] - 1.5), interpolator, max_check_interval=0.25
        )
        state.previous_event_time = 1.0
        assert state.evaluate_step(interpolator)
        assert state.event_time == pytest.approx(1.5, abs=1e-10)
        assert state.increasing

    def test_degenerate_step_reports_end(self):
        """Below the comparison epsilon only the end signs are compared."""
        t_end = 1.0 + 4e-15
        interpolator = HermiteInterpolator(
            t_start=1.0,
            t_end=t_end,
            state_start=jnp.array([-1.0]),
            state_end=jnp.array([1.0]),
            derivative_start=jnp.array([0.0]),
            derivative_end=jnp.array([0.0]),
            forward=True,
        )
        state = self._state(lambda t, x: x[0], interpolator)
        assert state.evaluate_step(interpolator)
        assert state.event_time == t_end

    def test_degenerate_step_filtered_slope(self):
        t_end = 1.0 + 4e-15
        interpolator = HermiteInterpolator(
            t_start=1.0,
            t_end=t_end,
            state_start=jnp.array([-1.0]),
            state_end=jnp.array([1.0]),
            derivative_start=jnp.array([0.0]),
            derivative_end=jnp.array([0.0]),
            forward=True,
        )
        state = self._state(lambda t, x: x[0], interpolator, slope_selection=SlopeSelection.DECREASING)
        assert not state.evaluate_step(interpolator)

    def test_zero_length_step(self):
        interpolator = _unit_line(1.0, 1.0)
        state = self._state(lambda t, x: x[0] - 1.0, interpolator)
        assert not state.evaluate_step(interpolator)
