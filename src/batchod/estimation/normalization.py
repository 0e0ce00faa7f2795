#########################################################################################
##
##                         JACOBIAN COLUMN NORMALIZATION
##                              (normalization.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import warnings
from typing import Sequence

import numpy as np

from .errors import DegenerateColumnError


_DEGENERATE_OPTIONS = ("raise", "skip")


# FUNCTIONS =============================================================================

def normalize_columns(
    jacobian: np.ndarray,
    *,
    on_degenerate: str = "raise",
    parameter_names: Sequence[str] | None = None,
) -> np.ndarray:
    """Scale each Jacobian column into [-1, 1], in place.

    The scale of a column is whichever of its minimum and maximum has the
    larger magnitude, sign included, so the largest-magnitude entry maps to
    exactly +1.

    Parameters
    ----------
    jacobian : np.ndarray, shape (n_obs, n_params)
        Observation partials, floating point. Overwritten with the
        normalized matrix.
    on_degenerate : {"raise", "skip"}
        Handling of an all-zero column. ``"raise"`` raises
        :class:`DegenerateColumnError`; ``"skip"`` leaves the column as is
        with scale 1.0 and warns.
    parameter_names : sequence of str, optional
        Column labels used in error and warning messages.

    Returns
    -------
    np.ndarray, shape (n_params,)
        Scale factors; the original column *j* equals
        ``normalized[:, j] * scale[j]``.
    """
    if on_degenerate not in _DEGENERATE_OPTIONS:
        raise ValueError(
            f"on_degenerate must be one of {_DEGENERATE_OPTIONS}, got {on_degenerate!r}"
        )
    if jacobian.ndim != 2:
        raise ValueError(f"jacobian must be 2D, got shape {jacobian.shape}")
    if not np.issubdtype(jacobian.dtype, np.floating):
        raise TypeError(
            f"jacobian must have a floating-point dtype to be normalized in place, "
            f"got {jacobian.dtype}"
        )

    n_params = jacobian.shape[1]
    scale = np.ones(n_params)

    for j in range(n_params):
        column = jacobian[:, j]
        minimum = column.min() if column.size else 0.0
        maximum = column.max() if column.size else 0.0
        factor = minimum if abs(minimum) > maximum else maximum

        if factor == 0.0:
            name = parameter_names[j] if parameter_names is not None else None
            if on_degenerate == "raise":
                raise DegenerateColumnError(j, name)
            label = f" ({name!r})" if name is not None else ""
            warnings.warn(
                f"Jacobian column {j}{label} is identically zero; "
                "left unnormalized",
                UserWarning,
                stacklevel=2,
            )
            continue

        scale[j] = factor
        jacobian[:, j] = column / factor

    return scale


def normalize_apriori(inverse_covariance: np.ndarray, scale: np.ndarray) -> np.ndarray:
    """Express an a priori information matrix in normalized parameter units.

    Entry ``(i, j)`` is divided by ``scale[i] * scale[j]``.
    """
    scale = np.asarray(scale, dtype=float)
    return np.asarray(inverse_covariance, dtype=float) / np.outer(scale, scale)


def denormalize_correction(correction: np.ndarray, scale: np.ndarray) -> np.ndarray:
    """Map a correction solved in normalized units back to parameter units."""
    return np.asarray(correction, dtype=float) / np.asarray(scale, dtype=float)
