"""Type definitions for numerical integrators.

Provides the core data types shared by the integration loop and the step
methods:

- :class:`TrialStep`: One attempted step of a step method, with the data
  needed for error control and dense output.
- :class:`AdaptiveConfig`: Configuration for adaptive step-size control.
- :class:`IntegrationResult`: Outcome of an ``integrate()`` call.

``TrialStep`` and ``IntegrationResult`` are :class:`~typing.NamedTuple`
instances, so JAX treats them as pytrees.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, NamedTuple

from jax import Array

from propjax.errors import ConfigurationError


class TrialStep(NamedTuple):
    """Result of a single trial step of a step method.

    A trial is created for every attempt, dropped when rejected, and
    committed when accepted.

    Attributes:
        t_start: Time at the beginning of the step.
        t_end: Time at the end of the step. ``t_end - t_start`` is the
            signed step size.
        state_start: State vector at ``t_start``.
        state_end: High-order solution at ``t_end``.
        derivative_start: Derivative at ``t_start``.
        derivative_end: Derivative at ``t_end``, reused as the start
            derivative of the next step.
        error_vector: Difference between the high and low order solutions.
            All zeros for methods without an error estimate.
        order: Order of the error estimator used by the step-size controller.
        stages: Method-specific data for dense output (stage derivatives
            for DP54, extrapolated midpoint derivatives for GBS, ``None``
            otherwise).
    """

    t_start: float
    t_end: float
    state_start: Array
    state_end: Array
    derivative_start: Array
    derivative_end: Array
    error_vector: Array
    order: int
    stages: Any = None


class IntegrationResult(NamedTuple):
    """Final point of an integration.

    Attributes:
        t: Time reached. Equals the target time unless an event stopped the
            integration.
        state: State vector at ``t``.
        evaluations: Number of derivative evaluations used.
        stopped: ``True`` if an event with a ``STOP`` action ended the
            integration before the target.
    """

    t: float
    state: Array
    evaluations: int
    stopped: bool


@dataclass(frozen=True)
class AdaptiveConfig:
    """Configuration for adaptive step-size control.

    Default values are a reasonable starting point for orbital mechanics
    problems in SI units.

    Args:
        abs_tol: Absolute error tolerance, scalar or one value per state
            component.
        rel_tol: Relative error tolerance, scalar or one value per state
            component.
        min_step: Minimum allowed step magnitude. A step that would have to
            shrink below it to meet the tolerance raises
            :class:`~propjax.errors.NumericalDivergenceError`.
        max_step: Maximum allowed step magnitude.
        safety_factor: Multiplicative safety factor applied to step-size
            predictions.
        min_scale_factor: Minimum allowed ratio ``|h_next| / |h|``.
        max_scale_factor: Maximum allowed ratio ``|h_next| / |h|``.
        initial_step: Magnitude of the first step. Estimated from the
            problem when ``None``.
        max_evaluations: Derivative evaluation budget of one ``integrate()``
            call. Unbounded when ``None``.

    Raises:
        ConfigurationError: If the bounds, factors or tolerances are
            inconsistent.

    Examples:
        ```python
        from propjax.integrators import AdaptiveConfig
        config = AdaptiveConfig(abs_tol=1e-9, rel_tol=1e-12, max_step=60.0)
        ```
    """

    abs_tol: float | Sequence[float] = 1e-6
    rel_tol: float | Sequence[float] = 1e-3
    min_step: float = 1e-12
    max_step: float = 900.0
    safety_factor: float = 0.9
    min_scale_factor: float = 0.2
    max_scale_factor: float = 10.0
    initial_step: float | None = None
    max_evaluations: int | None = None

    def __post_init__(self) -> None:
        if self.min_step < 0.0:
            raise ConfigurationError(f"min_step must be >= 0, got {self.min_step}")
        if self.max_step <= 0.0 or self.max_step < self.min_step:
            raise ConfigurationError(
                f"max_step must be positive and >= min_step, got "
                f"min_step={self.min_step}, max_step={self.max_step}"
            )
        if not 0.0 < self.safety_factor <= 1.0:
            raise ConfigurationError(
                f"safety_factor must be in (0, 1], got {self.safety_factor}"
            )
        if not 0.0 < self.min_scale_factor <= 1.0 <= self.max_scale_factor:
            raise ConfigurationError(
                f"scale factors must satisfy 0 < min <= 1 <= max, got "
                f"min_scale_factor={self.min_scale_factor}, "
                f"max_scale_factor={self.max_scale_factor}"
            )
        if self.initial_step is not None and self.initial_step <= 0.0:
            raise ConfigurationError(
                f"initial_step must be positive, got {self.initial_step}"
            )
        if self.max_evaluations is not None and self.max_evaluations <= 0:
            raise ConfigurationError(
                f"max_evaluations must be positive, got {self.max_evaluations}"
            )
        for name in ("abs_tol", "rel_tol"):
            value = getattr(self, name)
            values = value if isinstance(value, Sequence) else (value,)
            if any(v < 0.0 for v in values):
                raise ConfigurationError(f"{name} must be non-negative, got {value}")
