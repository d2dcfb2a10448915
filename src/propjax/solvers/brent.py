"""Bracketing N-th order Brent root solver.

Locates a sign-change root of a scalar function inside a bracketing
interval. Each iteration fits an inverse polynomial of order up to
``maximal_order`` through the sampling points that still bracket the root
and evaluates it at the target value. When the guess falls outside the
tightest bracket the interpolation order is lowered; when no usable guess
remains the method falls back to bisection. The tightest bracket is
therefore never lost.

Convergence stalls when the same bracket end keeps being replaced. After
``_MAXIMAL_AGING`` consecutive updates of one end, the interpolation target
is shifted away from zero to pull the other end in.

Because the solver always keeps a bracket, it can honor an
:class:`~propjax.solvers.AllowedSolution` policy and return a value on a
prescribed side of the root. Event detection relies on this to place each
event just past its root.
"""

from __future__ import annotations

import math
from collections.abc import Callable

from propjax.errors import BracketingError, ConfigurationError, TooManyEvaluationsError
from propjax.solvers._types import AllowedSolution

_MAXIMAL_AGING = 2
_REDUCTION_FACTOR = 1.0 / 16.0
_MINIMAL_ORDER = 2


class BracketingNthOrderBrentSolver:
    """Bracketing root solver with inverse polynomial interpolation.

    Args:
        absolute_accuracy: Absolute accuracy on the abscissa.
        relative_accuracy: Relative accuracy on the abscissa.
        function_value_accuracy: Stop as soon as ``|f|`` at both bracket
            ends falls below this value.
        maximal_order: Maximal order of the inverse polynomial. Must be
            at least 2.

    Raises:
        ConfigurationError: If *maximal_order* is below 2 or an accuracy
            is negative.

    Examples:
        ```python
        from propjax.solvers import AllowedSolution, BracketingNthOrderBrentSolver
        solver = BracketingNthOrderBrentSolver(absolute_accuracy=1e-10)
        root = solver.solve(100, lambda x: x * x - 2.0, 0.0, 2.0,
                            allowed=AllowedSolution.RIGHT_SIDE)
        ```
    """

    def __init__(
        self,
        absolute_accuracy: float = 1e-6,
        relative_accuracy: float = 1e-14,
        function_value_accuracy: float = 1e-15,
        maximal_order: int = 5,
    ) -> None:
        if maximal_order < _MINIMAL_ORDER:
            raise ConfigurationError(
                f"maximal_order must be >= {_MINIMAL_ORDER}, got {maximal_order}"
            )
        if absolute_accuracy < 0 or relative_accuracy < 0 or function_value_accuracy < 0:
            raise ConfigurationError("solver accuracies must be non-negative")
        self.absolute_accuracy = absolute_accuracy
        self.relative_accuracy = relative_accuracy
        self.function_value_accuracy = function_value_accuracy
        self.maximal_order = maximal_order
        self.evaluations = 0
        self._max_evaluations = 0
        self._function: Callable[[float], float] | None = None

    def _value(self, x: float) -> float:
        self.evaluations += 1
        if self.evaluations > self._max_evaluations:
            raise TooManyEvaluationsError(self._max_evaluations)
        return float(self._function(x))

    def solve(
        self,
        max_evaluations: int,
        f: Callable[[float], float],
        lower: float,
        upper: float,
        start: float | None = None,
        allowed: AllowedSolution = AllowedSolution.ANY_SIDE,
    ) -> float:
        """Find a root of *f* inside ``[lower, upper]``.

        Args:
            max_evaluations: Maximal number of evaluations of *f*.
            f: Scalar function. Must be continuous on the interval.
            lower: Lower bound of the search interval.
            upper: Upper bound of the search interval.
            start: Initial guess, strictly inside the interval. Defaults to
                the midpoint.
            allowed: Side of the root on which the result must lie.

        Returns:
            float: Abscissa of the root, on the side requested by *allowed*.

        Raises:
            ConfigurationError: If the interval is empty or *start* is not
                strictly inside it.
            BracketingError: If the function values do not change sign.
            TooManyEvaluationsError: If *max_evaluations* is exceeded.
        """
        if start is None:
            start = lower + 0.5 * (upper - lower)
        if not (lower < start < upper):
            raise ConfigurationError(
                f"invalid search interval: expected {lower!r} < {start!r} < {upper!r}"
            )

        self.evaluations = 0
        self._max_evaluations = max_evaluations
        self._function = f

        size = self.maximal_order + 1
        x = [0.0] * size
        y = [0.0] * size
        x[0], x[1], x[2] = lower, start, upper

        y[1] = self._value(x[1])
        if y[1] == 0.0:
            return x[1]

        y[0] = self._value(x[0])
        if y[0] == 0.0:
            return x[0]

        if y[0] * y[1] < 0:
            nb_points = 2
            sign_change_index = 1
        else:
            y[2] = self._value(x[2])
            if y[2] == 0.0:
                return x[2]
            if y[1] * y[2] < 0:
                nb_points = 3
                sign_change_index = 2
            else:
                raise BracketingError(x[0], x[2], y[0], y[2])

        # tightest bracket
        x_a = x[sign_change_index - 1]
        y_a = y[sign_change_index - 1]
        abs_y_a = abs(y_a)
        aging_a = 0
        x_b = x[sign_change_index]
        y_b = y[sign_change_index]
        abs_y_b = abs(y_b)
        aging_b = 0

        while True:
            x_tol = self.absolute_accuracy + self.relative_accuracy * max(abs(x_a), abs(x_b))
            if (x_b - x_a) <= x_tol or max(abs_y_a, abs_y_b) < self.function_value_accuracy:
                return allowed.select(x_a, y_a, x_b, y_b)

            if aging_a >= _MAXIMAL_AGING:
                # the high end keeps moving, pull the low end in
                p = aging_a - _MAXIMAL_AGING
                weight_a = (1 << p) - 1
                weight_b = p + 1
                target_y = (weight_a * y_a - weight_b * _REDUCTION_FACTOR * y_b) / (
                    weight_a + weight_b
                )
            elif aging_b >= _MAXIMAL_AGING:
                p = aging_b - _MAXIMAL_AGING
                weight_a = p + 1
                weight_b = (1 << p) - 1
                target_y = (weight_b * y_b - weight_a * _REDUCTION_FACTOR * y_a) / (
                    weight_a + weight_b
                )
            else:
                target_y = 0.0

            start_index = 0
            end_index = nb_points
            next_x = math.nan
            while True:
                next_x = _guess_x(target_y, x, y, start_index, end_index)
                if x_a < next_x < x_b:
                    break
                # outside the bracket or NaN: lower the interpolation order
                next_x = math.nan
                if sign_change_index - start_index >= end_index - sign_change_index:
                    start_index += 1
                else:
                    end_index -= 1
                if end_index - start_index <= 1:
                    break

            if math.isnan(next_x):
                next_x = x_a + 0.5 * (x_b - x_a)
                start_index = sign_change_index - 1
                end_index = sign_change_index

            next_y = self._value(next_x)
            if next_y == 0.0:
                return next_x

            if nb_points > 2 and end_index - start_index != nb_points:
                # points ignored to keep bracketing are dropped for good
                nb_points = end_index - start_index
                x[0:nb_points] = x[start_index:end_index]
                y[0:nb_points] = y[start_index:end_index]
                sign_change_index -= start_index
            elif nb_points == size:
                nb_points -= 1
                # keep the tightest bracket as centered as possible
                if sign_change_index >= (size + 1) // 2:
                    x[0:nb_points] = x[1:nb_points + 1]
                    y[0:nb_points] = y[1:nb_points + 1]
                    sign_change_index -= 1

            # insert the new point, it lies inside the tightest bracket
            x[sign_change_index + 1:nb_points + 1] = x[sign_change_index:nb_points]
            x[sign_change_index] = next_x
            y[sign_change_index + 1:nb_points + 1] = y[sign_change_index:nb_points]
            y[sign_change_index] = next_y
            nb_points += 1

            if next_y * y_a <= 0:
                x_b = next_x
                y_b = next_y
                abs_y_b = abs(y_b)
                aging_a += 1
                aging_b = 0
            else:
                x_a = next_x
                y_a = next_y
                abs_y_a = abs(y_a)
                aging_a = 0
                aging_b += 1
                sign_change_index += 1


def _guess_x(target_y: float, x: list[float], y: list[float], start: int, end: int) -> float:
    """Evaluate the inverse interpolating polynomial at *target_y*.

    Newton divided differences are computed on a copy of ``x[start:end]``.
    Returns NaN when two sampling points share the same ordinate.
    """
    q = list(x)
    for i in range(start, end - 1):
        delta = i + 1 - start
        for j in range(end - 1, i, -1):
            denominator = y[j] - y[j - delta]
            if denominator == 0.0:
                return math.nan
            q[j] = (q[j] - q[j - 1]) / denominator

    x0 = 0.0
    for j in range(end - 1, start - 1, -1):
        x0 = q[j] + x0 * (target_y - y[j])
    return x0
