"""Adaptive step-size control utilities for embedded methods.

Provides the error norm, step-size prediction and initial step estimate
shared by every step method. The algorithms follow the standard embedded
Runge-Kutta error control approach:

1. Compute a normalized RMS error using mixed absolute/relative tolerances.
2. Accept the step if the normalized error is <= 1.0.
3. Predict the next step size using the error and the estimator order.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from propjax.config import get_dtype
from propjax.errors import DimensionMismatchError


def resolve_tolerance(tol: float | Sequence[float], dim: int, name: str) -> Array:
    """Broadcast a scalar or per-component tolerance to the state dimension.

    Args:
        tol: Scalar tolerance or one value per state component.
        dim: State dimension.
        name: Tolerance name, used in the error message.

    Returns:
        jax.Array: Tolerance vector of length *dim*.

    Raises:
        DimensionMismatchError: If a sequence has the wrong length.
    """
    if isinstance(tol, Sequence):
        if len(tol) != dim:
            raise DimensionMismatchError(len(tol), dim, name)
        return jnp.asarray(tol, dtype=get_dtype())
    return jnp.full((dim,), tol, dtype=get_dtype())


def compute_error_norm(
    error_vec: ArrayLike,
    state_new: ArrayLike,
    state_old: ArrayLike,
    abs_tol: ArrayLike,
    rel_tol: ArrayLike,
) -> float:
    """Compute the normalized error norm for adaptive step-size control.

    Uses a mixed absolute/relative tolerance per component with the RMS
    norm. The step is accepted when the returned value is <= 1.0.

    The per-component tolerance is:

    .. math::

        \\text{tol}_i = \\text{abs\\_tol}_i + \\text{rel\\_tol}_i
            \\cdot \\max(|y^{\\text{new}}_i|, |y^{\\text{old}}_i|)

    A component with a zero tolerance (``abs_tol = 0`` and a zero state)
    contributes nothing when its error is zero and makes the norm infinite
    otherwise.

    Args:
        error_vec: Difference between high-order and low-order solutions.
        state_new: High-order solution (accepted state).
        state_old: State at the beginning of the step.
        abs_tol: Absolute error tolerance, scalar or per component.
        rel_tol: Relative error tolerance, scalar or per component.

    Returns:
        float: Normalized error. Step is accepted if <= 1.0. NaN if the
        error vector holds NaN.
    """
    error_vec = jnp.asarray(error_vec, dtype=get_dtype())
    state_new = jnp.asarray(state_new, dtype=get_dtype())
    state_old = jnp.asarray(state_old, dtype=get_dtype())

    scale = abs_tol + rel_tol * jnp.maximum(jnp.abs(state_new), jnp.abs(state_old))
    ratio = _scaled(error_vec, scale, jnp.where(error_vec == 0.0, 0.0, jnp.inf))
    return float(jnp.sqrt(jnp.mean(jnp.square(ratio))))


def _scaled(values: Array, scale: Array, fallback: ArrayLike) -> Array:
    """``values / scale`` with *fallback* wherever the scale is zero."""
    positive = scale > 0.0
    return jnp.where(positive, values / jnp.where(positive, scale, 1.0), fallback)


def compute_next_step_size(
    error: float,
    h: float,
    order: float,
    safety_factor: float,
    min_scale_factor: float,
    max_scale_factor: float,
    min_step: float,
    max_step: float,
) -> float:
    """Compute the next step size based on the current error estimate.

    Uses the standard optimal step-size formula:

    .. math::

        h_{\\text{next}} = |h| \\cdot S \\cdot
            \\left(\\frac{1}{\\text{error}}\\right)^{1/(p+1)}

    where *S* is the safety factor and *p* is the order of the error
    estimator. The result is clamped by scale-factor bounds and absolute
    step-size bounds, and the sign of ``h`` is preserved for backward
    integration.

    Args:
        error: Normalized error from :func:`compute_error_norm`.
        h: Current step size (may be negative for backward integration).
        order: Order of the error estimator (e.g. 4 for RKF45 and DP54).
        safety_factor: Multiplicative safety factor (typically 0.9).
        min_scale_factor: Minimum allowed ratio ``|h_next| / |h|``.
        max_scale_factor: Maximum allowed ratio ``|h_next| / |h|``.
        min_step: Absolute minimum step size.
        max_step: Absolute maximum step size.

    A non-finite error (NaN or infinite state) shrinks the step by
    *min_scale_factor*.

    Returns:
        float: Suggested next step size with same sign as ``h``.
    """
    if not math.isfinite(error):
        scale = min_scale_factor
    elif error > 0.0:
        scale = safety_factor * (1.0 / error) ** (1.0 / (order + 1.0))
    else:
        scale = max_scale_factor
    scale = min(max(scale, min_scale_factor), max_scale_factor)

    abs_h_next = min(max(abs(h) * scale, min_step), max_step)
    return math.copysign(abs_h_next, h)


def estimate_initial_step(
    dynamics: Callable[[float, Array], Array],
    t0: float,
    y0: Array,
    y_dot0: Array,
    forward: bool,
    order: int,
    abs_tol: Array,
    rel_tol: Array,
    min_step: float,
    max_step: float,
) -> float:
    """Estimate the magnitude of the first step.

    Hairer-Norsett-Wanner heuristic: a tentative explicit Euler step gives
    an estimate of the second derivative, and the step is chosen so that
    the local error of an order *order* method roughly matches the
    tolerance. Costs one derivative evaluation.

    Args:
        dynamics: ODE right-hand side ``f(t, y) -> dy/dt``.
        t0: Start time.
        y0: State at ``t0``.
        y_dot0: Derivative at ``t0``.
        forward: Integration direction.
        order: Order of the method.
        abs_tol: Absolute tolerance vector.
        rel_tol: Relative tolerance vector.
        min_step: Minimum step magnitude.
        max_step: Maximum step magnitude.

    Returns:
        float: Positive step magnitude within ``[min_step, max_step]``.
    """
    scale = abs_tol + rel_tol * jnp.abs(y0)
    # components without tolerance are left out of the estimate
    y_on_scale2 = float(jnp.sum(jnp.square(_scaled(y0, scale, 0.0))))
    y_dot_on_scale2 = float(jnp.sum(jnp.square(_scaled(y_dot0, scale, 0.0))))

    if y_on_scale2 < 1.0e-10 or y_dot_on_scale2 < 1.0e-10:
        h = 1.0e-6
    else:
        h = 0.01 * math.sqrt(y_on_scale2 / y_dot_on_scale2)
    h = min(h, max_step)
    if not forward:
        h = -h

    # one Euler step to estimate the second derivative
    y1 = y0 + h * y_dot0
    y_dot1 = dynamics(t0 + h, y1)
    y_ddot_on_scale = float(
        jnp.sqrt(jnp.sum(jnp.square(_scaled(y_dot1 - y_dot0, scale, 0.0))))
    ) / abs(h)

    max_inv2 = max(math.sqrt(y_dot_on_scale2), y_ddot_on_scale)
    if not math.isfinite(max_inv2) or max_inv2 < 1.0e-15:
        h1 = max(1.0e-6, 0.001 * abs(h))
    else:
        h1 = (0.01 / max_inv2) ** (1.0 / order)

    h = min(100.0 * abs(h), h1)
    h = max(h, 1.0e-12 * abs(t0))
    return min(max(h, min_step), max_step)
