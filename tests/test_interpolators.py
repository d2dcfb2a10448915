"""Tests for the dense-output interpolators."""

import math

import jax.numpy as jnp
import pytest

from propjax.integrators import DormandPrince54, GraggBulirschStoer, RungeKuttaFehlberg45
from propjax.sampling import (
    DormandPrinceInterpolator,
    GraggBulirschStoerInterpolator,
    HermiteInterpolator,
    StepInterpolator,
)


def _quartic_rhs(t, x):
    """dx/dt = 4t^3. Solution: x(t) = t^4."""
    return 4.0 * t**3 * jnp.ones_like(x)


def _harmonic_oscillator(t, x):
    return jnp.array([x[1], -x[0]])


def _interpolator_for(method, dynamics, x0, t0, h, forward=True):
    x0 = jnp.asarray(x0, dtype=jnp.float64)
    step = method.propose_step(dynamics, t0, x0, dynamics(t0, x0), h)
    return method.interpolator(step, forward)


def _cubic_hermite(t_start=0.0, t_end=1.0):
    """Hermite data for x(t) = t^3."""
    return HermiteInterpolator(
        t_start=t_start,
        t_end=t_end,
        state_start=jnp.array([t_start**3]),
        state_end=jnp.array([t_end**3]),
        derivative_start=jnp.array([3.0 * t_start**2]),
        derivative_end=jnp.array([3.0 * t_end**2]),
        forward=t_end > t_start,
    )


# ──────────────────────────────────────────────
# Hermite
# ──────────────────────────────────────────────


class TestHermite:
    @pytest.mark.parametrize("t", [0.0, 0.25, 0.5, 0.9, 1.0])
    def test_exact_for_cubic(self, t):
        interpolator = _cubic_hermite()
        assert jnp.allclose(interpolator.state(t), t**3, atol=1e-14)
        assert jnp.allclose(interpolator.derivative(t), 3.0 * t**2, atol=1e-13)

    def test_backward_step(self):
        interpolator = _cubic_hermite(t_start=2.0, t_end=1.0)
        assert not interpolator.forward
        assert jnp.allclose(interpolator.state(1.5), 1.5**3, atol=1e-13)
        assert jnp.allclose(interpolator.derivative(1.5), 3.0 * 1.5**2, atol=1e-12)

    def test_end_points(self):
        interpolator = _interpolator_for(
            RungeKuttaFehlberg45(), _harmonic_oscillator, [1.0, 0.0], 0.0, 0.1
        )
        assert isinstance(interpolator, HermiteInterpolator)
        assert jnp.array_equal(interpolator.state(0.0), interpolator.state_start)
        assert jnp.allclose(interpolator.state(0.1), interpolator.state_end, atol=1e-15)


# ──────────────────────────────────────────────
# Dormand-Prince
# ──────────────────────────────────────────────


class TestDormandPrince:
    @pytest.mark.parametrize("t", [0.1, 0.3, 0.5, 0.77])
    def test_exact_for_quartic(self, t):
        interpolator = _interpolator_for(DormandPrince54(), _quartic_rhs, [0.0], 0.0, 1.0)
        assert isinstance(interpolator, DormandPrinceInterpolator)
        assert jnp.allclose(interpolator.state(t), t**4, atol=1e-12)
        assert jnp.allclose(interpolator.derivative(t), 4.0 * t**3, atol=1e-12)

    def test_end_points(self):
        interpolator = _interpolator_for(
            DormandPrince54(), _harmonic_oscillator, [1.0, 0.0], 0.0, 0.5
        )
        assert jnp.allclose(interpolator.state(0.0), interpolator.state_start, atol=1e-15)
        assert jnp.allclose(interpolator.state(0.5), interpolator.state_end, atol=1e-14)
        assert jnp.allclose(interpolator.derivative(0.5), interpolator.derivative_end, atol=1e-13)

    def test_harmonic_oscillator_inside_step(self):
        interpolator = _interpolator_for(
            DormandPrince54(), _harmonic_oscillator, [1.0, 0.0], 0.0, 0.2
        )
        expected = jnp.array([jnp.cos(0.08), -jnp.sin(0.08)])
        assert jnp.allclose(interpolator.state(0.08), expected, atol=1e-6)

    def test_backward_step(self):
        interpolator = _interpolator_for(
            DormandPrince54(), _quartic_rhs, [1.0], 1.0, -1.0, forward=False
        )
        assert jnp.allclose(interpolator.state(0.5), 0.5**4, atol=1e-12)


# ──────────────────────────────────────────────
# Gragg-Bulirsch-Stoer
# ──────────────────────────────────────────────


def _power_gbs_interpolator(power, orders):
    """Interpolator data for x(t) = t^power on [0, 1] with midpoint derivatives up to *orders*."""
    mid = jnp.array(
        [[math.perm(power, p) * 0.5 ** (power - p)] for p in range(orders + 1)]
    )
    return GraggBulirschStoerInterpolator(
        mid_derivatives=mid,
        t_start=0.0,
        t_end=1.0,
        state_start=jnp.array([0.0]),
        state_end=jnp.array([1.0]),
        derivative_start=jnp.array([0.0]),
        derivative_end=jnp.array([float(power)]),
        forward=True,
    )


class TestGraggBulirschStoer:
    @pytest.mark.parametrize("t", [0.1, 0.3, 0.5, 0.77])
    def test_exact_for_degree_nine(self, t):
        interpolator = _power_gbs_interpolator(9, 5)
        assert jnp.allclose(interpolator.state(t), t**9, atol=1e-12)
        assert jnp.allclose(interpolator.derivative(t), 9.0 * t**8, atol=1e-11)

    @pytest.mark.parametrize("t", [0.2, 0.6, 0.9])
    def test_exact_for_quintic_with_midpoint_slope(self, t):
        """Two columns give the midpoint state and slope only."""
        interpolator = _power_gbs_interpolator(5, 1)
        assert jnp.allclose(interpolator.state(t), t**5, atol=1e-13)
        assert jnp.allclose(interpolator.derivative(t), 5.0 * t**4, atol=1e-12)

    def test_from_gbs_step(self):
        interpolator = _interpolator_for(
            GraggBulirschStoer(), _harmonic_oscillator, [1.0, 0.0], 0.0, 0.5
        )
        assert isinstance(interpolator, GraggBulirschStoerInterpolator)
        assert interpolator.mid_derivatives.shape == (6, 2)
        for t in (0.1, 0.3, 0.45):
            expected = jnp.array([jnp.cos(t), -jnp.sin(t)])
            assert jnp.allclose(interpolator.state(t), expected, atol=1e-9)
            assert jnp.allclose(interpolator.derivative(t), jnp.array([-jnp.sin(t), -jnp.cos(t)]), atol=1e-8)
        assert jnp.allclose(interpolator.state(0.5), interpolator.state_end, atol=1e-14)

    def test_midpoint_derivatives_from_gbs_step(self):
        """Row p approximates h^p d^p x / dt^p at the middle of the step."""
        h = 0.5
        interpolator = _interpolator_for(
            GraggBulirschStoer(), _harmonic_oscillator, [1.0, 0.0], 0.0, h
        )
        tm = 0.5 * h
        derivatives = [
            jnp.array([jnp.cos(tm), -jnp.sin(tm)]),
            jnp.array([-jnp.sin(tm), -jnp.cos(tm)]),
        ]
        for p in range(6):
            expected = derivatives[p % 2] * (-1.0) ** (p // 2) * h**p
            assert jnp.allclose(interpolator.mid_derivatives[p], expected, atol=1e-6)

    def test_backward_step(self):
        interpolator = _interpolator_for(
            GraggBulirschStoer(), _harmonic_oscillator, [1.0, 0.0], 0.0, -0.5, forward=False
        )
        expected = jnp.array([jnp.cos(-0.2), -jnp.sin(-0.2)])
        assert jnp.allclose(interpolator.state(-0.2), expected, atol=1e-9)


# ──────────────────────────────────────────────
# Step bounds
# ──────────────────────────────────────────────


class TestBounds:
    def test_small_extrapolation_allowed(self):
        interpolator = _cubic_hermite()
        assert jnp.allclose(interpolator.state(1.005), 1.005**3, atol=1e-12)
        assert jnp.allclose(interpolator.state(-0.005), (-0.005) ** 3, atol=1e-12)

    @pytest.mark.parametrize("t", [1.02, -0.02, 5.0])
    def test_far_extrapolation_rejected(self, t):
        interpolator = _cubic_hermite()
        with pytest.raises(ValueError):
            interpolator.state(t)
        with pytest.raises(ValueError):
            interpolator.derivative(t)

    def test_restrict(self):
        interpolator = _cubic_hermite()
        interpolator.restrict(0.25, 0.75)
        assert interpolator.previous_time == 0.25
        assert interpolator.current_time == 0.75
        assert interpolator.global_previous_time == 0.0
        assert interpolator.global_current_time == 1.0
        # the global step is still available
        assert jnp.allclose(interpolator.state(0.9), 0.9**3, atol=1e-14)

    def test_base_class_is_abstract(self):
        zeros = jnp.zeros(1)
        with pytest.raises(TypeError):
            StepInterpolator(0.0, 1.0, zeros, zeros, zeros, zeros, True)
