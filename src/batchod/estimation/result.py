#########################################################################################
##
##                          ESTIMATION RESULT CONTAINERS
##                                  (result.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np


# HELPERS ===============================================================================

def _frozen(array: np.ndarray | None) -> np.ndarray | None:
    """Read-only copy of *array* (``None`` passes through)."""
    if array is None:
        return None
    out = np.array(array, dtype=float)
    out.flags.writeable = False
    return out


def _correlation(covariance: np.ndarray) -> np.ndarray:
    """Normalised covariance; zero-variance entries get unit diagonal."""
    n_p = covariance.shape[0]
    std = np.sqrt(np.maximum(np.diag(covariance), 0.0))

    corr = np.zeros((n_p, n_p))
    for i in range(n_p):
        for j in range(n_p):
            denom = std[i] * std[j]
            if denom > 0.0:
                corr[i, j] = covariance[i, j] / denom
            elif i == j:
                corr[i, j] = 1.0
    return corr


# CLASS: IterationRecord ================================================================

@dataclass(frozen=True)
class IterationRecord:
    """Bookkeeping of one completed iteration.

    Attributes
    ----------
    iteration : int
        Zero-based iteration index.
    parameters : np.ndarray
        Estimate at which the residuals were computed.
    residuals : np.ndarray
        Observed-minus-computed residuals.
    rms : float
        RMS of ``residuals``.
    correction : np.ndarray
        Parameter correction computed in this iteration.
    """

    iteration: int
    parameters: np.ndarray
    residuals: np.ndarray
    rms: float
    correction: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", _frozen(self.parameters))
        object.__setattr__(self, "residuals", _frozen(self.residuals))
        object.__setattr__(self, "correction", _frozen(self.correction))

    @property
    def updated_parameters(self) -> np.ndarray:
        """Estimate after applying the correction."""
        return self.parameters + self.correction


# CLASS: EstimationResult ===============================================================

@dataclass(frozen=True)
class EstimationResult:
    """Snapshot of the best (lowest RMS) iteration of an estimation run.

    Attributes
    ----------
    parameter_estimate : np.ndarray, shape (n_params,)
        Estimate produced by the best iteration's correction.
    residuals : np.ndarray, shape (n_obs,)
        Residuals of the best iteration.
    information_matrix : np.ndarray or None, shape (n_obs, n_params)
        Column-normalized observation partials of the best iteration.
        ``None`` unless requested with ``save_information_matrix``.
    weights : np.ndarray, shape (n_obs,)
        Observation weights.
    normalization_terms : np.ndarray, shape (n_params,)
        Column scale factors of the best iteration.
    inverse_normalized_covariance : np.ndarray, shape (n_params, n_params)
        Normal-equations matrix in normalized units.
    rms_residual : float
        RMS residual of the best iteration.
    best_iteration : int
        Zero-based index of the best iteration.
    iterations : int
        Number of completed iterations.
    termination_reason : str
        Why the convergence checker stopped the loop.
    rms_history : list of float
        RMS residual of every iteration.
    parameter_names : list of str
        Label per parameter vector entry.
    iteration_records : list of IterationRecord
        Every iteration (when saved with
        ``save_residuals_and_parameters_per_iteration``).
    state_history_per_iteration : list
        Propagator state history per iteration (when saved).
    dependent_variable_history_per_iteration : list
        Propagator dependent variables per iteration (when saved).

    Notes
    -----
    The covariance follows from the normalized normal-equations matrix
    ``N``: ``P = pinv(N) / outer(scale, scale)``.
    """

    parameter_estimate: np.ndarray
    residuals: np.ndarray
    information_matrix: np.ndarray | None
    weights: np.ndarray
    normalization_terms: np.ndarray
    inverse_normalized_covariance: np.ndarray
    rms_residual: float
    best_iteration: int
    iterations: int
    termination_reason: str
    rms_history: list = field(default_factory=list)
    parameter_names: list = field(default_factory=list)
    iteration_records: list = field(default_factory=list)
    state_history_per_iteration: list = field(default_factory=list)
    dependent_variable_history_per_iteration: list = field(default_factory=list)

    def __post_init__(self) -> None:
        for name in (
            "parameter_estimate",
            "residuals",
            "information_matrix",
            "weights",
            "normalization_terms",
            "inverse_normalized_covariance",
        ):
            object.__setattr__(self, name, _frozen(getattr(self, name)))

        object.__setattr__(self, "rms_history", [float(v) for v in self.rms_history])
        object.__setattr__(self, "parameter_names", list(self.parameter_names))
        object.__setattr__(self, "iteration_records", list(self.iteration_records))


    # HISTORIES =========================================================================

    @property
    def residual_history(self) -> list[np.ndarray]:
        """Residuals of every saved iteration."""
        return [record.residuals for record in self.iteration_records]


    @property
    def parameter_history(self) -> list[np.ndarray]:
        """Initial estimate followed by the updated estimate of every saved iteration."""
        if not self.iteration_records:
            return []
        history = [self.iteration_records[0].parameters]
        history.extend(record.updated_parameters for record in self.iteration_records)
        return history


    # DERIVED STATISTICS ================================================================

    @property
    def normalized_covariance(self) -> np.ndarray:
        """Covariance in normalized parameter units, ``pinv(N)``."""
        return np.linalg.pinv(self.inverse_normalized_covariance)


    @property
    def covariance(self) -> np.ndarray:
        """Formal parameter covariance in parameter units."""
        scale = self.normalization_terms
        return self.normalized_covariance / np.outer(scale, scale)


    @property
    def formal_errors(self) -> np.ndarray:
        """Formal standard deviations, ``sqrt(diag(covariance))``."""
        return np.sqrt(np.maximum(np.diag(self.covariance), 0.0))


    @property
    def correlations(self) -> np.ndarray:
        """Parameter correlation matrix."""
        return _correlation(self.covariance)


    @property
    def unnormalized_information_matrix(self) -> np.ndarray | None:
        """Observation partials in parameter units (``None`` if not saved)."""
        if self.information_matrix is None:
            return None
        return self.information_matrix * self.normalization_terms[None, :]


    def __repr__(self) -> str:
        return (
            f"EstimationResult(rms={self.rms_residual:.4g}, "
            f"best_iteration={self.best_iteration}, iterations={self.iterations}, "
            f"x={self.parameter_estimate})"
        )


    # DISPLAY ===========================================================================

    def display(self) -> None:
        """Print the estimated parameters with formal errors."""
        W    = 72
        line = "=" * W
        dash = "-" * W

        print(line)
        print("  Batch Estimation Results")
        print(line)
        print(f"  {'Parameter':<24} {'Estimate':>14} {'Formal Error':>14} {'Rel Error':>10}")
        print(dash)

        names = self.parameter_names or [f"p{i}" for i in range(self.parameter_estimate.size)]
        errors = self.formal_errors
        for name, val, se in zip(names, self.parameter_estimate, errors):
            if abs(val) > 1e-15 and np.isfinite(se):
                rel_str = f"{se / abs(val) * 100:.2f}%"
            else:
                rel_str = "N/A"
            print(f"  {name:<24} {val:>14.6g} {se:>14.4g} {rel_str:>10}")

        print(dash)
        print(f"  Best RMS residual : {self.rms_residual:.6g}  "
              f"(iteration {self.best_iteration + 1} of {self.iterations})")
        print(f"  Termination       : {self.termination_reason}")
        print(line)


    # PLOT ==============================================================================

    def plot(self, *, figsize: tuple = (11, 4.5)) -> tuple[Any, Any]:
        """Plot the RMS residual history and the parameter correlation matrix.

        Returns
        -------
        fig : matplotlib.figure.Figure
        axes : np.ndarray of matplotlib.axes.Axes, shape (2,)
        """
        import matplotlib.pyplot as plt
        import matplotlib.colors as mcolors

        fig, axes = plt.subplots(1, 2, figsize=figsize)

        ax = axes[0]
        iterations = np.arange(1, len(self.rms_history) + 1)
        ax.semilogy(iterations, self.rms_history, marker="o")
        ax.semilogy([self.best_iteration + 1], [self.rms_residual],
                    marker="*", markersize=12, linestyle="none", label="best")
        ax.set_xlabel("Iteration")
        ax.set_ylabel("RMS residual")
        ax.set_title("Residual History")
        ax.grid(True, alpha=0.3)
        ax.legend()

        ax2 = axes[1]
        names = self.parameter_names or [f"p{i}" for i in range(self.parameter_estimate.size)]
        n_p = len(names)
        norm = mcolors.TwoSlopeNorm(vmin=-1.0, vcenter=0.0, vmax=1.0)
        im = ax2.imshow(self.correlations, cmap="RdBu_r", norm=norm, aspect="auto")
        fig.colorbar(im, ax=ax2, label="Correlation")
        ax2.set_xticks(range(n_p))
        ax2.set_yticks(range(n_p))
        ax2.set_xticklabels(names, rotation=45, ha="right", fontsize=9)
        ax2.set_yticklabels(names, fontsize=9)
        ax2.set_title("Parameter Correlation Matrix")

        fig.suptitle("Batch Estimation", fontweight="bold")
        plt.tight_layout()
        return fig, axes
