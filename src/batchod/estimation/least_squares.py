#########################################################################################
##
##                  WEIGHTED LEAST SQUARES WITH A PRIORI INFORMATION
##                              (least_squares.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import numpy as np
import scipy.linalg as sci_linalg

from .errors import SingularSystemError


# FUNCTIONS =============================================================================

def rms(vector: np.ndarray) -> float:
    """Root-mean-square of the entries of ``vector`` (0.0 when empty)."""
    v = np.asarray(vector, dtype=float).reshape(-1)
    if v.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(v * v)))


def solve_normal_equations(
    jacobian: np.ndarray,
    residuals: np.ndarray,
    weights: np.ndarray,
    apriori_inverse_covariance: np.ndarray | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Solve the weighted, a priori constrained normal equations.

    Solves

    .. math::

        (J^T W J + P_0^{-1}) \\, \\Delta x = J^T W r

    with :math:`W = \\mathrm{diag}(w)` by Cholesky factorization.

    Parameters
    ----------
    jacobian : np.ndarray, shape (n_obs, n_params)
        Observation partials, usually column-normalized.
    residuals : np.ndarray, shape (n_obs,)
        Observed-minus-computed residuals.
    weights : np.ndarray, shape (n_obs,)
        Diagonal of the weight matrix.
    apriori_inverse_covariance : np.ndarray, shape (n_params, n_params), optional
        A priori information, in the same units as ``jacobian`` columns.
        Zero when omitted.

    Returns
    -------
    correction : np.ndarray, shape (n_params,)
        Least-squares parameter correction.
    inverse_normalized_covariance : np.ndarray, shape (n_params, n_params)
        The normal-equations matrix :math:`J^T W J + P_0^{-1}`.

    Raises
    ------
    SingularSystemError
        If the normal-equations matrix is rank deficient or not positive
        definite.
    """
    J = np.asarray(jacobian, dtype=float)
    r = np.asarray(residuals, dtype=float).reshape(-1)
    w = np.asarray(weights, dtype=float).reshape(-1)

    if J.ndim != 2:
        raise ValueError(f"jacobian must be 2D, got shape {J.shape}")

    n_obs, n_params = J.shape
    if n_params == 0:
        raise ValueError("cannot solve for an empty parameter vector")
    if r.size != n_obs or w.size != n_obs:
        raise ValueError(
            f"jacobian has {n_obs} row(s) but got {r.size} residual(s) "
            f"and {w.size} weight(s)"
        )

    if apriori_inverse_covariance is None:
        apriori = np.zeros((n_params, n_params))
    else:
        apriori = np.asarray(apriori_inverse_covariance, dtype=float)
        if apriori.shape != (n_params, n_params):
            raise ValueError(
                f"a priori information must have shape {(n_params, n_params)}, "
                f"got {apriori.shape}"
            )

    weighted_J = J * w[:, None]
    normal_matrix = weighted_J.T @ J + apriori
    rhs = weighted_J.T @ r

    if not np.all(np.isfinite(normal_matrix)):
        raise SingularSystemError("normal-equations matrix contains non-finite entries")

    rank = np.linalg.matrix_rank(normal_matrix)
    if rank < n_params:
        raise SingularSystemError(
            f"normal-equations matrix is rank deficient (rank {rank} < {n_params}); "
            "add observations or a priori information"
        )

    try:
        factor = sci_linalg.cho_factor(normal_matrix)
    except np.linalg.LinAlgError as err:
        raise SingularSystemError(
            f"normal-equations matrix is not positive definite: {err}"
        ) from err

    correction = sci_linalg.cho_solve(factor, rhs)

    return correction, normal_matrix
