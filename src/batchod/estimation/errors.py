#########################################################################################
##
##                            ESTIMATION ERROR HIERARCHY
##                                  (errors.py)
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np


# EXCEPTIONS ============================================================================

class EstimationError(Exception):
    """Base class for all errors raised by the estimation core."""


class ConfigurationError(EstimationError, ValueError):
    """Inconsistent estimation setup.

    Raised for a missing observation manager, missing or malformed weights,
    and propagator / dynamical-parameter mismatches.
    """


class DegenerateColumnError(EstimationError, ArithmeticError):
    """A Jacobian column is identically zero and cannot be normalized.

    Parameters
    ----------
    column : int
        Index of the offending column.
    parameter_name : str, optional
        Label of the parameter entry the column belongs to.
    """

    def __init__(self, column: int, parameter_name: str | None = None):
        self.column = int(column)
        self.parameter_name = parameter_name

        label = f" ({parameter_name!r})" if parameter_name is not None else ""
        super().__init__(
            f"Jacobian column {self.column}{label} is identically zero; "
            "the observations carry no information on this parameter"
        )


class SingularSystemError(EstimationError, np.linalg.LinAlgError):
    """The (a priori regularized) normal-equations matrix is not invertible."""
