"""Gragg-Bulirsch-Stoer extrapolation integrator (GBS).

Each step runs the modified midpoint rule on the substep sequence
``2, 6, 10, 14, ...`` (``n_j = 4j + 2``) and extrapolates the results to a
zero substep with the Aitken-Neville scheme. Gragg's modified midpoint
rule has an asymptotic error expansion in even powers of the substep, so
every extrapolation column gains two orders.

With ``k`` columns the propagated solution has order ``2k`` and the error
is estimated from the last two entries of the final row, which differ by a
term of order ``2k - 2``.

Because every ``n_j / 2`` is odd, the midpoint values of all columns share
the same expansion and are extrapolated with the same coefficients. So are
the centered differences of the substep derivatives around the midpoint,
which give the higher derivatives there at no extra cost. The extrapolated
midpoint derivatives feed the dense output, see
:class:`~propjax.sampling.interpolators.GraggBulirschStoerInterpolator`.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence

import jax.numpy as jnp
from jax import Array

from propjax.errors import ConfigurationError
from propjax.integrators._method import StepMethod
from propjax.integrators._types import TrialStep
from propjax.sampling.interpolators import GraggBulirschStoerInterpolator, StepInterpolator


def _extrapolate(values: Sequence[Array], sequence: Sequence[int]) -> list[Array]:
    """Last row of the Aitken-Neville tableau of *values* taken with *sequence* substeps."""
    row: list[Array] = []
    for j, (value, n) in enumerate(zip(values, sequence)):
        new_row = [value]
        for k in range(1, j + 1):
            ratio = (n / sequence[j - k]) ** 2 - 1.0
            new_row.append(new_row[k - 1] + (new_row[k - 1] - row[k - 1]) / ratio)
        row = new_row
    return row


class GraggBulirschStoer(StepMethod):
    """Adaptive extrapolation method with a fixed number of columns.

    Args:
        columns: Number of extrapolation columns. Must be at least 2.

    Raises:
        ConfigurationError: If *columns* is below 2.

    Examples:
        ```python
        import jax.numpy as jnp
        from propjax.integrators import GraggBulirschStoer, integrate
        def decay(t, x):
            return -x
        result = integrate(decay, 0.0, jnp.array([1.0]), 2.0,
                           method=GraggBulirschStoer(columns=5))
        ```
    """

    name = "gbs"

    def __init__(self, columns: int = 4) -> None:
        if columns < 2:
            raise ConfigurationError(f"GBS needs at least 2 columns, got {columns}")
        self.columns = columns
        self.sequence = tuple(4 * j + 2 for j in range(columns))
        self.order = 2 * columns
        self.error_order = 2 * columns - 2
        # midpoint derivatives used by the dense output, orders 1..mid_orders
        self.mid_orders = 2 * columns - 3

    def _midpoint(
        self,
        dynamics: Callable[[float, Array], Array],
        t: float,
        y: Array,
        y_dot: Array,
        h: float,
        n: int,
    ) -> tuple[Array, Array, list[Array]]:
        """Modified midpoint rule with *n* substeps.

        Returns the end state, the middle state and the derivatives at
        substeps ``0 .. n - 1``.
        """
        sub = h / n
        z_prev = y
        z = y + sub * y_dot
        middle = z if n == 2 else None
        derivatives = [y_dot]
        for m in range(1, n):
            derivatives.append(dynamics(t + m * sub, z))
            z_prev, z = z, z_prev + 2.0 * sub * derivatives[m]
            if m + 1 == n // 2:
                middle = z
        return z, middle, derivatives

    def _mid_derivatives(self, h: float, middles: list[Array], derivatives: list[list[Array]]) -> Array:
        """Extrapolated ``d^p y / d theta^p`` at the middle of the step, ``p = 0 .. mid_orders``."""
        rows = [_extrapolate(middles, self.sequence)[-1]]
        for p in range(self.mid_orders):
            # centered differences of stride 2 around the middle substep,
            # only columns whose substeps cover them
            first = (p + 1) // 2
            values = []
            for j in range(first, self.columns):
                n = self.sequence[j]
                c = n // 2
                diff = sum(
                    (-1) ** i * math.comb(p, i) * derivatives[j][c + p - 2 * i]
                    for i in range(p + 1)
                )
                values.append(h * (0.5 * n) ** p * diff)
            rows.append(_extrapolate(values, self.sequence[first:])[-1])
        return jnp.stack(rows)

    def propose_step(
        self,
        dynamics: Callable[[float, Array], Array],
        t: float,
        y: Array,
        y_dot: Array,
        h: float,
    ) -> TrialStep:
        ends: list[Array] = []
        middles: list[Array] = []
        derivatives: list[list[Array]] = []
        for n in self.sequence:
            end, middle, column_derivatives = self._midpoint(dynamics, t, y, y_dot, h, n)
            ends.append(end)
            middles.append(middle)
            derivatives.append(column_derivatives)

        row = _extrapolate(ends, self.sequence)
        y_new = row[-1]
        t_new = t + h
        return TrialStep(
            t_start=t,
            t_end=t_new,
            state_start=y,
            state_end=y_new,
            derivative_start=y_dot,
            derivative_end=dynamics(t_new, y_new),
            error_vector=y_new - row[-2],
            order=self.error_order,
            stages=self._mid_derivatives(h, middles, derivatives),
        )

    def interpolator(self, step: TrialStep, forward: bool) -> StepInterpolator:
        return GraggBulirschStoerInterpolator(
            mid_derivatives=step.stages,
            t_start=step.t_start,
            t_end=step.t_end,
            state_start=step.state_start,
            state_end=step.state_end,
            derivative_start=step.derivative_start,
            derivative_end=step.derivative_end,
            forward=forward,
        )

    def __repr__(self) -> str:
        return f"GraggBulirschStoer(columns={self.columns})"
