"""Tests for StepNormalizer, the fixed-grid adapter for step handlers."""

import jax.numpy as jnp
import pytest

from propjax.errors import ConfigurationError
from propjax.events import DateDetector
from propjax.integrators import AdaptiveConfig, integrate
from propjax.sampling import (
    FixedStepHandler,
    StepNormalizer,
    StepNormalizerBounds,
    StepNormalizerMode,
)

# dx/dt = 1 has zero local error, so every step is exactly max_step long and
# the grid points never coincide with step ends
_CONFIG = AdaptiveConfig(initial_step=7.0, max_step=7.0)


def _unit_rate(t, x):
    return jnp.ones_like(x)


class _Recorder:
    """Fixed-step handler recording every sample."""

    def __init__(self):
        self.samples = []
        self.init_calls = 0

    def init(self, t0, y0, t_target):
        self.init_calls += 1
        self.samples = []

    def handle_step(self, t, y, y_dot, is_last):
        self.samples.append((t, float(y[0]), float(y_dot[0]), is_last))

    @property
    def times(self):
        return [t for t, _, _, _ in self.samples]

    @property
    def last_flags(self):
        return [is_last for _, _, _, is_last in self.samples]


def _run(t0, t1, mode=StepNormalizerMode.INCREMENT, bounds=StepNormalizerBounds.FIRST, detectors=()):
    recorder = _Recorder()
    normalizer = StepNormalizer(3.0, recorder, mode=mode, bounds=bounds)
    integrate(
        _unit_rate, t0, jnp.array([0.0]), t1,
        config=_CONFIG, detectors=detectors, step_handlers=[normalizer],
    )
    return recorder


# ──────────────────────────────────────────────
# Bounds
# ──────────────────────────────────────────────


class TestBounds:
    @pytest.mark.parametrize(
        ("bounds", "expected"),
        [
            (StepNormalizerBounds.NEITHER, [3.0 * k for k in range(1, 10)]),
            (StepNormalizerBounds.FIRST, [3.0 * k for k in range(0, 10)]),
            (StepNormalizerBounds.LAST, [3.0 * k for k in range(1, 11)]),
            (StepNormalizerBounds.BOTH, [3.0 * k for k in range(0, 11)]),
        ],
    )
    def test_increment(self, bounds, expected):
        recorder = _run(0.0, 30.0, bounds=bounds)
        assert recorder.times == expected
        assert recorder.last_flags == [False] * (len(expected) - 1) + [True]

    def test_bound_flags(self):
        assert StepNormalizerBounds.BOTH.first_included
        assert StepNormalizerBounds.BOTH.last_included
        assert StepNormalizerBounds.FIRST.first_included
        assert not StepNormalizerBounds.FIRST.last_included
        assert not StepNormalizerBounds.NEITHER.first_included

    def test_end_off_grid(self):
        """The true end is emitted after the last grid point when requested."""
        recorder = _run(0.0, 10.0, bounds=StepNormalizerBounds.LAST)
        assert recorder.times == [3.0, 6.0, 9.0, 10.0]
        assert recorder.last_flags == [False, False, False, True]

    def test_end_off_grid_excluded(self):
        recorder = _run(0.0, 10.0, bounds=StepNormalizerBounds.NEITHER)
        assert recorder.times == [3.0, 6.0, 9.0]
        assert recorder.last_flags[-1]


# ──────────────────────────────────────────────
# Modes and directions
# ──────────────────────────────────────────────


class TestModes:
    def test_multiples(self):
        recorder = _run(1.0, 30.0, mode=StepNormalizerMode.MULTIPLES, bounds=StepNormalizerBounds.NEITHER)
        assert recorder.times == [3.0 * k for k in range(1, 10)]

    def test_multiples_both(self):
        recorder = _run(1.0, 30.0, mode=StepNormalizerMode.MULTIPLES, bounds=StepNormalizerBounds.BOTH)
        assert recorder.times == [1.0] + [3.0 * k for k in range(1, 11)]

    def test_increment_from_offset_start(self):
        recorder = _run(1.0, 30.0, bounds=StepNormalizerBounds.NEITHER)
        assert recorder.times == [1.0 + 3.0 * k for k in range(1, 10)]

    def test_backward(self):
        recorder = _run(30.0, 0.0, bounds=StepNormalizerBounds.NEITHER)
        assert recorder.times == [30.0 - 3.0 * k for k in range(1, 10)]
        assert recorder.last_flags[-1]

    def test_backward_multiples(self):
        recorder = _run(29.0, 0.0, mode=StepNormalizerMode.MULTIPLES, bounds=StepNormalizerBounds.BOTH)
        assert recorder.times == [29.0] + [27.0 - 3.0 * k for k in range(0, 10)]


# ──────────────────────────────────────────────
# Samples
# ──────────────────────────────────────────────


class TestSamples:
    def test_interpolated_values(self):
        recorder = _run(0.0, 30.0, bounds=StepNormalizerBounds.BOTH)
        for t, y, y_dot, _ in recorder.samples:
            assert y == pytest.approx(t, abs=1e-12)
            assert y_dot == pytest.approx(1.0, abs=1e-12)

    def test_split_steps_do_not_duplicate(self):
        """A CONTINUE event splitting a step leaves the grid unchanged."""
        recorder = _run(0.0, 30.0, bounds=StepNormalizerBounds.NEITHER, detectors=[DateDetector(4.5)])
        assert recorder.times == [3.0 * k for k in range(1, 10)]

    def test_handler_initialized(self):
        recorder = _run(0.0, 30.0)
        assert isinstance(recorder, FixedStepHandler)
        assert recorder.init_calls == 1

    def test_callable_handler(self):
        times = []
        normalizer = StepNormalizer(3.0, lambda t, y, y_dot, is_last: times.append(t))
        integrate(_unit_rate, 0.0, jnp.array([0.0]), 9.0, config=_CONFIG, step_handlers=[normalizer])
        assert times == [0.0, 3.0, 6.0]

    def test_reused_across_integrations(self):
        recorder = _Recorder()
        normalizer = StepNormalizer(3.0, recorder, bounds=StepNormalizerBounds.NEITHER)
        for _ in range(2):
            integrate(_unit_rate, 0.0, jnp.array([0.0]), 10.0, config=_CONFIG, step_handlers=[normalizer])
        assert recorder.init_calls == 2
        assert recorder.times == [3.0, 6.0, 9.0]

    @pytest.mark.parametrize("step", [0.0, -1.0])
    def test_invalid_step(self, step):
        with pytest.raises(ConfigurationError):
            StepNormalizer(step, _Recorder())
