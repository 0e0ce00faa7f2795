#########################################################################################
##
##                          BATCH ESTIMATION CORE PUBLIC API
##                            (estimation/__init__.py)
##
#########################################################################################

from .errors import (
    EstimationError,
    ConfigurationError,
    DegenerateColumnError,
    SingularSystemError,
)
from .convergence import ConvergenceChecker
from .weights import concatenate_weights, uniform_weights, weights_per_observable
from .residuals import ObservationResidualAssembler
from .normalization import normalize_columns, normalize_apriori, denormalize_correction
from .least_squares import rms, solve_normal_equations
from .parameters import EstimatableParameter, ParameterSet, ParameterStateResetter
from .result import IterationRecord, EstimationResult
from .estimator import EstimationInput, Estimator
