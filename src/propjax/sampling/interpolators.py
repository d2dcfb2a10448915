"""Dense-output interpolators bound to one committed integration step.

Every step method hands the integration loop an interpolator that can
evaluate the state and its time derivative anywhere inside the step
without extra derivative evaluations:

- :class:`HermiteInterpolator` -- cubic Hermite from the end states and
  derivatives (RK4, RKF45)
- :class:`DormandPrinceInterpolator` -- Shampine's 4th-order continuous
  extension over the seven DP54 stages
- :class:`GraggBulirschStoerInterpolator` -- Hermite-type polynomial through
  the end points and the extrapolated midpoint derivatives (GBS)

All interpolators are parameterized by ``theta = (t - t_start) / h`` with a
signed step ``h``, so forward and backward integration share one formula.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import jax.numpy as jnp
from jax import Array

from propjax.config import get_dtype

# Extrapolation allowed beyond the global step bounds, as a fraction of |h|
_EXTRAPOLATION_LIMIT = 0.01

# Shampine dense-output coefficients for Dormand-Prince 5(4). Row k gives the
# weight of stage k as a polynomial in theta (coefficients of theta..theta^4).
_DP54_P = (
    (1.0, -8048581381.0 / 2820520608.0, 8663915743.0 / 2820520608.0,
     -12715105075.0 / 11282082432.0),
    (0.0, 0.0, 0.0, 0.0),
    (0.0, 131558114200.0 / 32700410799.0, -68118460800.0 / 10900136933.0,
     87487479700.0 / 32700410799.0),
    (0.0, -1754552775.0 / 470086768.0, 14199869525.0 / 1410260304.0,
     -10690763975.0 / 1880347072.0),
    (0.0, 127303824393.0 / 49829197408.0, -318862633887.0 / 49829197408.0,
     701980252875.0 / 199316789632.0),
    (0.0, -282668133.0 / 205662961.0, 2019193451.0 / 616988883.0,
     -1453857185.0 / 822651844.0),
    (0.0, 40617522.0 / 29380423.0, -110615467.0 / 29380423.0,
     69997945.0 / 29380423.0),
)


class StepInterpolator(ABC):
    """Base class for dense output over one step.

    The global bounds are the committed step. The soft bounds are the
    sub-range currently visible to event handling and step handlers; they
    shrink when an event splits the step.

    Args:
        t_start: Time at the beginning of the step.
        t_end: Time at the end of the step.
        state_start: State at ``t_start``.
        state_end: State at ``t_end``.
        derivative_start: Derivative at ``t_start``.
        derivative_end: Derivative at ``t_end``.
        forward: Integration direction.
    """

    def __init__(
        self,
        t_start: float,
        t_end: float,
        state_start: Array,
        state_end: Array,
        derivative_start: Array,
        derivative_end: Array,
        forward: bool,
    ) -> None:
        self._t_start = float(t_start)
        self._t_end = float(t_end)
        self._h = self._t_end - self._t_start
        self.state_start = state_start
        self.state_end = state_end
        self.derivative_start = derivative_start
        self.derivative_end = derivative_end
        self.forward = forward
        self._soft_previous = self._t_start
        self._soft_current = self._t_end

    @property
    def global_previous_time(self) -> float:
        """Start of the committed step."""
        return self._t_start

    @property
    def global_current_time(self) -> float:
        """End of the committed step."""
        return self._t_end

    @property
    def previous_time(self) -> float:
        """Start of the visible sub-range."""
        return self._soft_previous

    @property
    def current_time(self) -> float:
        """End of the visible sub-range."""
        return self._soft_current

    def restrict(self, t_start: float, t_end: float) -> None:
        """Restrict the visible sub-range to ``[t_start, t_end]``.

        Args:
            t_start: New soft start time.
            t_end: New soft end time.
        """
        self._soft_previous = float(t_start)
        self._soft_current = float(t_end)

    def _theta(self, t: float) -> float:
        slack = _EXTRAPOLATION_LIMIT * abs(self._h)
        lo = min(self._t_start, self._t_end) - slack
        hi = max(self._t_start, self._t_end) + slack
        if not lo <= t <= hi:
            raise ValueError(
                f"time {t!r} is outside step [{self._t_start!r}, {self._t_end!r}] "
                f"beyond the allowed extrapolation"
            )
        if self._h == 0.0:
            return 0.0
        return (t - self._t_start) / self._h

    def state(self, t: float) -> Array:
        """Interpolated state at time *t*.

        Args:
            t: Time inside the step, or within 1% of the step length outside.

        Returns:
            jax.Array: State vector at *t*.

        Raises:
            ValueError: If *t* is too far outside the step.
        """
        return self._state(self._theta(float(t)))

    def derivative(self, t: float) -> Array:
        """Interpolated time derivative of the state at time *t*.

        Raises:
            ValueError: If *t* is too far outside the step.
        """
        return self._derivative(self._theta(float(t)))

    @abstractmethod
    def _state(self, theta: float) -> Array:
        """State at the normalized step position *theta*."""

    @abstractmethod
    def _derivative(self, theta: float) -> Array:
        """Time derivative at the normalized step position *theta*."""


class HermiteInterpolator(StepInterpolator):
    """Cubic Hermite interpolation from the step end points.

    Exact for cubic solutions.
    """

    def _state(self, theta: float) -> Array:
        h = self._h
        t2 = theta * theta
        t3 = t2 * theta
        h00 = 2.0 * t3 - 3.0 * t2 + 1.0
        h10 = t3 - 2.0 * t2 + theta
        h01 = -2.0 * t3 + 3.0 * t2
        h11 = t3 - t2
        return (
            h00 * self.state_start
            + h10 * h * self.derivative_start
            + h01 * self.state_end
            + h11 * h * self.derivative_end
        )

    def _derivative(self, theta: float) -> Array:
        h = self._h
        t2 = theta * theta
        d00 = 6.0 * t2 - 6.0 * theta
        d10 = 3.0 * t2 - 4.0 * theta + 1.0
        d01 = -6.0 * t2 + 6.0 * theta
        d11 = 3.0 * t2 - 2.0 * theta
        if h == 0.0:
            return self.derivative_start
        return (
            d00 * self.state_start / h
            + d10 * self.derivative_start
            + d01 * self.state_end / h
            + d11 * self.derivative_end
        )


class DormandPrinceInterpolator(StepInterpolator):
    """Shampine's continuous extension of Dormand-Prince 5(4).

    Fourth-order accurate inside the step and exact for quartic solutions.

    Args:
        stages: Array of shape ``(7, n)`` with the seven stage derivatives,
            the last one being the FSAL derivative at ``t_end``.
        **kwargs: Forwarded to :class:`StepInterpolator`.
    """

    def __init__(self, stages: Array, **kwargs) -> None:
        super().__init__(**kwargs)
        self.stages = stages
        self._p = jnp.asarray(_DP54_P, dtype=get_dtype())

    def _state(self, theta: float) -> Array:
        powers = jnp.asarray([theta, theta**2, theta**3, theta**4], dtype=get_dtype())
        weights = self._p @ powers
        return self.state_start + self._h * (weights @ self.stages)

    def _derivative(self, theta: float) -> Array:
        powers = jnp.asarray(
            [1.0, 2.0 * theta, 3.0 * theta**2, 4.0 * theta**3], dtype=get_dtype()
        )
        weights = self._p @ powers
        return weights @ self.stages


class GraggBulirschStoerInterpolator(StepInterpolator):
    """Dense output of the GBS method from extrapolated midpoint derivatives.

    The polynomial in ``theta`` matches the state and derivative at both
    ends and the derivatives of order ``0 .. mu`` at the middle of the
    step, so it has degree ``mu + 4``. It is written as the cubic Hermite
    through the ends plus ``theta^2 (1 - theta)^2`` times a polynomial in
    ``theta - 1/2``, whose Taylor coefficients follow from the midpoint
    conditions by Leibniz's rule.

    Args:
        mid_derivatives: Array of shape ``(mu + 1, n)``. Row ``p`` is
            ``d^p y / d theta^p`` at ``theta = 1/2``, i.e. ``h^p`` times the
            ``p``-th time derivative; row 0 is the midpoint state.
        **kwargs: Forwarded to :class:`StepInterpolator`.
    """

    def __init__(self, mid_derivatives: Array, **kwargs) -> None:
        super().__init__(**kwargs)
        self.mid_derivatives = mid_derivatives
        h = self._h
        yp0 = h * self.derivative_start
        yp1 = h * self.derivative_end
        ydiff = self.state_end - self.state_start
        aspl = ydiff - yp1
        bspl = yp0 - ydiff
        self._hermite = (ydiff, aspl, bspl)

        # midpoint derivatives of the cubic Hermite part
        hermite_mid = (
            0.5 * (self.state_start + self.state_end) + 0.125 * (aspl + bspl),
            ydiff + 0.25 * (aspl - bspl),
            yp1 - yp0,
            6.0 * (bspl - aspl),
        )
        coefficients = []
        for p in range(mid_derivatives.shape[0]):
            c = mid_derivatives[p] - hermite_mid[p] if p < 4 else mid_derivatives[p]
            if p >= 2:
                c = c + 0.5 * p * (p - 1) * coefficients[p - 2]
            if p >= 4:
                c = c - p * (p - 1) * (p - 2) * (p - 3) * coefficients[p - 4]
            coefficients.append(16.0 * c)
        self._coefficients = coefficients

    def _correction(self, theta: float) -> tuple[Array, Array]:
        """Sum of ``coefficients[p] (theta - 1/2)^p / p!`` and its theta derivative."""
        s = theta - 0.5
        value = self._coefficients[-1]
        slope = jnp.zeros_like(value)
        for p in range(len(self._coefficients) - 2, -1, -1):
            d = 1.0 / (p + 1)
            slope = d * (s * slope + value)
            value = self._coefficients[p] + d * s * value
        return value, slope

    def _state(self, theta: float) -> Array:
        ydiff, aspl, bspl = self._hermite
        one_minus = 1.0 - theta
        bubble = (theta * one_minus) ** 2
        value, _ = self._correction(theta)
        return (
            self.state_start
            + theta * (ydiff + one_minus * (aspl * theta + bspl * one_minus))
            + bubble * value
        )

    def _derivative(self, theta: float) -> Array:
        if self._h == 0.0:
            return self.derivative_start
        ydiff, aspl, bspl = self._hermite
        t_omt = theta * (1.0 - theta)
        value, slope = self._correction(theta)
        hermite = ydiff + theta * (2.0 - 3.0 * theta) * aspl + ((3.0 * theta - 4.0) * theta + 1.0) * bspl
        bubble = t_omt * t_omt * slope + 2.0 * t_omt * (1.0 - 2.0 * theta) * value
        return (hermite + bubble) / self._h
