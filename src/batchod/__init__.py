from importlib import metadata

try:
    __version__ = metadata.version("batchod")
except Exception:
    __version__ = "unknown"

from .observations import (
    ObservableType,
    LinkEndType,
    LinkEnds,
    ObservationSet,
    ObservationCollection,
)
from .estimation import (
    ConvergenceChecker,
    EstimatableParameter,
    ParameterSet,
    EstimationInput,
    Estimator,
    EstimationResult,
)
