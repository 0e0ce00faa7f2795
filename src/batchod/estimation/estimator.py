#########################################################################################
##
##                       BATCH LEAST-SQUARES PARAMETER ESTIMATION
##                                 (estimator.py)
##
##          Iterative (Gauss-Newton) estimation of initial states and model
##          parameters from tracking observations, with best-iterate tracking.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

import numpy as np

from ..observations import ObservableType, ObservationCollection
from .convergence import ConvergenceChecker
from .least_squares import rms, solve_normal_equations
from .normalization import denormalize_correction, normalize_apriori, normalize_columns
from .parameters import ParameterSet, ParameterStateResetter
from .residuals import ObservationResidualAssembler
from .result import EstimationResult, IterationRecord
from .weights import concatenate_weights, uniform_weights, weights_per_observable


logger = logging.getLogger(__name__)


# ESTIMATION INPUT ======================================================================

@dataclass
class EstimationInput:
    """Observations, weights, a priori information and run flags of one run.

    Parameters
    ----------
    observations : ObservationCollection
        Measurement data.
    weights : mapping, optional
        ``{observable_type: {link_ends: weights}}``; unit weights when omitted.
    apriori_inverse_covariance : np.ndarray, optional
        Inverse a priori covariance, shape ``(n_params, n_params)``. Zero
        (no prior constraint) when omitted.
    initial_parameter_deviation : np.ndarray, optional
        Added to the nominal parameter values before the first iteration.
    reintegrate_on_first_iteration : bool
        Reset and re-propagate the model before the first iteration too.
    reintegrate_variational_equations : bool
        Re-integrate the variational equations on every reset.
    save_state_history_per_iteration : bool
        Keep the propagator's state and dependent-variable histories of
        every iteration.
    save_residuals_and_parameters_per_iteration : bool
        Keep an :class:`IterationRecord` of every iteration.
    save_information_matrix : bool
        Keep the (normalized) Jacobian of the best iteration.
    print_progress : bool
        Log per-iteration progress at INFO level instead of DEBUG.
    on_degenerate_column : {"raise", "skip"}
        Handling of all-zero Jacobian columns, see
        :func:`~batchod.estimation.normalization.normalize_columns`.
    """

    observations: ObservationCollection
    weights: Mapping | None = None
    apriori_inverse_covariance: np.ndarray | None = None
    initial_parameter_deviation: np.ndarray | None = None
    reintegrate_on_first_iteration: bool = True
    reintegrate_variational_equations: bool = True
    save_state_history_per_iteration: bool = False
    save_residuals_and_parameters_per_iteration: bool = True
    save_information_matrix: bool = True
    print_progress: bool = True
    on_degenerate_column: str = "raise"


    def __post_init__(self) -> None:
        if not isinstance(self.observations, ObservationCollection):
            raise TypeError(
                "observations must be an ObservationCollection, "
                f"got {type(self.observations).__name__}"
            )
        if self.weights is None:
            self.weights = uniform_weights(self.observations)


    def set_constant_weight(self, weight: float) -> "EstimationInput":
        """Use the same weight for every observation."""
        self.weights = uniform_weights(self.observations, weight)
        return self


    def set_constant_weight_per_observable(
        self, weights: Mapping[ObservableType, float]
    ) -> "EstimationInput":
        """Use one constant weight per observable type."""
        self.weights = weights_per_observable(self.observations, weights)
        return self


# ESTIMATOR =============================================================================

class Estimator:
    """Batch least-squares estimator of initial states and model parameters.

    Each iteration re-propagates the dynamics at the current estimate,
    assembles observed-minus-computed residuals and observation partials,
    normalizes the partials column-wise, solves the weighted normal equations
    (with a priori information) and applies the correction additively. The
    iteration with the lowest RMS residual is returned, so a run that
    diverges in later iterations still yields its best estimate.

    Parameters
    ----------
    parameter_set : ParameterSet
        Parameters to estimate; their current values are the nominal estimate.
    observation_managers : mapping
        ``{ObservableType: manager}``, each manager providing
        ``compute_observations_with_partials(times, link_ends, reference_link_end)``.
    propagator : object, optional
        Propagation engine providing
        ``reset_and_repropagate(parameters, reintegrate_variational)`` and
        ``get_state_transition_and_sensitivity_interface()``. Required when
        dynamical parameters are estimated, rejected otherwise.

    Notes
    -----
    Typical use:

    .. code-block:: python

        est = Estimator(parameter_set, {ObservableType.ONE_WAY_RANGE: ranges},
                        propagator=propagator)
        estimation_input = EstimationInput(observations,
                                           initial_parameter_deviation=dx0)
        estimation_input.set_constant_weight(1.0 / sigma_range**2)
        result = est.estimate_parameters(
            estimation_input, ConvergenceChecker(max_iterations=8)
        )
        result.display()
    """

    def __init__(
        self,
        parameter_set: ParameterSet,
        observation_managers: Mapping[ObservableType, Any],
        propagator: Any | None = None,
    ):
        self.parameter_set = parameter_set
        self._resetter = ParameterStateResetter(parameter_set, propagator)
        self._assembler = ObservationResidualAssembler(observation_managers)


    @property
    def propagator(self) -> Any | None:
        return self._resetter.propagator


    @property
    def observation_managers(self) -> dict[ObservableType, Any]:
        """Observation managers per observable type."""
        return self._assembler.observation_managers


    @property
    def current_parameter_estimate(self) -> np.ndarray:
        """Parameter vector most recently applied to the model."""
        return self._resetter.current_estimate


    @property
    def state_transition_interface(self) -> Any | None:
        """State transition / sensitivity matrix interface of the propagator."""
        return self._resetter.state_transition_interface


    def get_observation_manager(self, observable_type: ObservableType) -> Any:
        """Observation manager of one observable type (``ConfigurationError`` if absent)."""
        return self._assembler.get_observation_manager(observable_type)


    def reset_parameter_estimate(
        self, parameters: np.ndarray, reintegrate_variational: bool = True
    ) -> None:
        """Apply a parameter vector to the model, re-propagating dynamics if needed."""
        self._resetter.reset(parameters, reintegrate_variational)


    def compute_residuals_and_jacobian(
        self, observations: ObservationCollection
    ) -> tuple[np.ndarray, np.ndarray]:
        """Residuals and observation partials at the current model state."""
        return self._assembler.compute_residuals_and_jacobian(
            observations, self.parameter_set.size
        )


    # VALIDATION ------------------------------------------------------------------------

    def _validate_input(
        self, estimation_input: EstimationInput
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Check the input against the parameter set; return weights, prior, deviation."""
        n_params = self.parameter_set.size
        if n_params == 0:
            raise ValueError("No parameters to estimate.")
        if estimation_input.observations.total_observations == 0:
            raise ValueError("No observations given.")

        self._assembler.check_managers(estimation_input.observations)

        weights = concatenate_weights(estimation_input.weights, estimation_input.observations)

        if estimation_input.apriori_inverse_covariance is None:
            apriori = np.zeros((n_params, n_params))
        else:
            apriori = np.asarray(estimation_input.apriori_inverse_covariance, dtype=float)
            if apriori.shape != (n_params, n_params):
                raise ValueError(
                    f"a priori information must have shape {(n_params, n_params)}, "
                    f"got {apriori.shape}"
                )

        if estimation_input.initial_parameter_deviation is None:
            deviation = np.zeros(n_params)
        else:
            deviation = np.asarray(
                estimation_input.initial_parameter_deviation, dtype=float
            ).reshape(-1)
            if deviation.size != n_params:
                raise ValueError(
                    f"Expected initial deviation of length {n_params}, got {deviation.size}"
                )

        return weights, apriori, deviation


    def _record_propagation_history(self, state_histories: list, dependent_histories: list) -> None:
        propagator = self.propagator
        get_states = getattr(propagator, "get_state_history", None)
        get_dependent = getattr(propagator, "get_dependent_variable_history", None)
        state_histories.append(get_states() if get_states is not None else None)
        dependent_histories.append(get_dependent() if get_dependent is not None else None)


    # ESTIMATION ------------------------------------------------------------------------

    def estimate_parameters(
        self,
        estimation_input: EstimationInput,
        convergence_checker: ConvergenceChecker | None = None,
    ) -> EstimationResult:
        """Run the iterative estimation and return the best iteration.

        Parameters
        ----------
        estimation_input : EstimationInput
            Observations, weights, a priori information and run flags.
        convergence_checker : ConvergenceChecker, optional
            Stopping policy; defaults to ``ConvergenceChecker()``.

        Returns
        -------
        EstimationResult
            Snapshot of the iteration with the lowest RMS residual.

        Raises
        ------
        ConfigurationError
            If an observable type has no observation manager, or the
            weights do not match the observations.
        DegenerateColumnError
            If a Jacobian column is identically zero (and
            ``on_degenerate_column="raise"``).
        SingularSystemError
            If the normal equations cannot be solved.

        Notes
        -----
        At least one iteration is always performed, whatever the checker
        says; the checker is consulted after each completed iteration.
        """
        checker = convergence_checker if convergence_checker is not None else ConvergenceChecker()
        progress = logging.INFO if estimation_input.print_progress else logging.DEBUG

        observations = estimation_input.observations
        weights, apriori, deviation = self._validate_input(estimation_input)
        names = self.parameter_set.names

        # nominal values as they are now, not as they were at construction
        new_estimate = self._resetter.sync() + deviation

        best: dict | None = None
        rms_history: list[float] = []
        records: list[IterationRecord] = []
        state_histories: list = []
        dependent_histories: list = []

        iteration = 0
        while True:
            if iteration > 0 or estimation_input.reintegrate_on_first_iteration:
                self.reset_parameter_estimate(
                    new_estimate, estimation_input.reintegrate_variational_equations
                )

            if estimation_input.save_state_history_per_iteration:
                self._record_propagation_history(state_histories, dependent_histories)

            old_estimate = new_estimate

            logger.log(progress, "calculating residuals and partials (%d observations)",
                       observations.total_observations)
            residuals, jacobian = self.compute_residuals_and_jacobian(observations)

            scale = normalize_columns(
                jacobian,
                on_degenerate=estimation_input.on_degenerate_column,
                parameter_names=names,
            )
            normalized_apriori = normalize_apriori(apriori, scale)

            normalized_correction, normal_matrix = solve_normal_equations(
                jacobian, residuals, weights, normalized_apriori
            )
            correction = denormalize_correction(normalized_correction, scale)

            new_estimate = old_estimate + correction
            logger.log(progress, "parameter update: %s", correction)

            residual_rms = rms(residuals)
            rms_history.append(residual_rms)
            logger.log(progress, "iteration %d: RMS residual %.6g", iteration, residual_rms)

            if estimation_input.save_residuals_and_parameters_per_iteration:
                records.append(IterationRecord(
                    iteration=iteration,
                    parameters=old_estimate,
                    residuals=residuals,
                    rms=residual_rms,
                    correction=correction,
                ))

            if best is None or residual_rms < best["rms_residual"]:
                best = dict(
                    parameter_estimate=new_estimate.copy(),
                    residuals=residuals.copy(),
                    information_matrix=(
                        jacobian.copy() if estimation_input.save_information_matrix else None
                    ),
                    normalization_terms=scale.copy(),
                    inverse_normalized_covariance=normal_matrix.copy(),
                    rms_residual=residual_rms,
                    best_iteration=iteration,
                )

            iteration += 1

            reason = checker.stop_reason(iteration, rms_history)
            if reason is not None:
                break

        logger.info("estimation stopped after %d iteration(s): %s", iteration, reason)
        logger.info("final (best) RMS residual %.6g at iteration %d",
                    best["rms_residual"], best["best_iteration"])

        return EstimationResult(
            weights=weights,
            iterations=iteration,
            termination_reason=reason,
            rms_history=rms_history,
            parameter_names=names,
            iteration_records=records,
            state_history_per_iteration=state_histories,
            dependent_variable_history_per_iteration=dependent_histories,
            **best,
        )
