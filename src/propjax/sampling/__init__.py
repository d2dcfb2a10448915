"""Dense output and step handling.

Interpolators give the state anywhere inside an accepted step:

- :class:`HermiteInterpolator` -- cubic Hermite (RK4, RKF45)
- :class:`DormandPrinceInterpolator` -- native DP54 continuous extension
- :class:`GraggBulirschStoerInterpolator` -- extrapolated midpoint derivatives (GBS)

Step handlers observe the integration:

- :class:`StepHandler` -- receives each accepted step as an interpolator
- :class:`StepNormalizer` -- resamples the steps on a fixed grid for a
  :class:`FixedStepHandler`
"""

from propjax.sampling.handlers import (
    FixedStepHandler,
    StepHandler,
    StepNormalizer,
    StepNormalizerBounds,
    StepNormalizerMode,
)
from propjax.sampling.interpolators import (
    DormandPrinceInterpolator,
    GraggBulirschStoerInterpolator,
    HermiteInterpolator,
    StepInterpolator,
)

__all__ = [
    "DormandPrinceInterpolator",
    "FixedStepHandler",
    "GraggBulirschStoerInterpolator",
    "HermiteInterpolator",
    "StepHandler",
    "StepInterpolator",
    "StepNormalizer",
    "StepNormalizerBounds",
    "StepNormalizerMode",
]
