"""Allowed-solution policies for bracketing root solvers."""

from enum import Enum


class AllowedSolution(Enum):
    """Side of the true root on which a bracketing solver may return.

    A bracketing solver converges to an interval ``[xA, xB]`` around the
    root. The policy picks which end is returned:

    - ``ANY_SIDE``: the end with the smallest ``|f|``.
    - ``LEFT_SIDE``: ``xA``, so ``x <= root``.
    - ``RIGHT_SIDE``: ``xB``, so ``x >= root``.
    - ``BELOW_SIDE``: the end where ``f(x) <= 0``.
    - ``ABOVE_SIDE``: the end where ``f(x) >= 0``.

    An exact zero satisfies every policy and is returned as is.
    """

    ANY_SIDE = "any"
    LEFT_SIDE = "left"
    RIGHT_SIDE = "right"
    BELOW_SIDE = "below"
    ABOVE_SIDE = "above"

    def select(self, x_a: float, y_a: float, x_b: float, y_b: float) -> float:
        """Return the bracket end satisfying this policy.

        Args:
            x_a: Lower end of the converged bracket.
            y_a: Function value at ``x_a``.
            x_b: Upper end of the converged bracket.
            y_b: Function value at ``x_b``.

        Returns:
            float: Either ``x_a`` or ``x_b``.
        """
        if self is AllowedSolution.ANY_SIDE:
            return x_a if abs(y_a) < abs(y_b) else x_b
        if self is AllowedSolution.LEFT_SIDE:
            return x_a
        if self is AllowedSolution.RIGHT_SIDE:
            return x_b
        if self is AllowedSolution.BELOW_SIDE:
            return x_a if y_a <= 0 else x_b
        return x_b if y_a < 0 else x_a
