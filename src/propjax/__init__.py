"""
propjax is an adaptive-step ODE integration core with event detection, implemented on JAX.
"""

from .constants import (
    R_EARTH,
    GM_EARTH,
)

from .config import set_dtype, get_dtype, get_comparison_epsilon

from .errors import (
    ConfigurationError,
    DimensionMismatchError,
    PropagationError,
    NumericalDivergenceError,
    EvaluationBudgetExceeded,
    BracketingError,
    TooManyEvaluationsError,
)

from .integrators import (
    AdaptiveConfig,
    AdaptiveStepIntegrator,
    IntegrationResult,
    integrate,
)

from .events import (
    Action,
    SlopeSelection,
    EventDetector,
    FunctionDetector,
    DateDetector,
    ApsideDetector,
    EventsLogger,
)

from .sampling import (
    StepNormalizer,
    StepNormalizerMode,
    StepNormalizerBounds,
)
