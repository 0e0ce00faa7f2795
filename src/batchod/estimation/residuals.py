#########################################################################################
##
##                      RESIDUAL AND OBSERVATION-PARTIALS ASSEMBLY
##                                 (residuals.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Any, Mapping

import numpy as np

from ..observations import ObservableType, ObservationCollection
from .errors import ConfigurationError


# CLASS =================================================================================

class ObservationResidualAssembler:
    """Stacks residuals and observation partials over heterogeneous observations.

    Dispatches each observation set to the observation manager registered for
    its observable type. Every manager must provide::

        compute_observations_with_partials(times, link_ends, reference_link_end)
            -> (values, partials)

    with ``values`` of shape ``(n,)`` and ``partials`` of shape
    ``(n, n_params)``, evaluated at the parameter state currently held by
    the (external) dynamical model.

    Parameters
    ----------
    observation_managers : mapping
        ``{ObservableType: manager}``.

    Notes
    -----
    Set *k* of the collection is written to rows ``row_slices()[k]``. The
    slices are disjoint and follow the same order as
    :func:`~batchod.estimation.weights.concatenate_weights`, so residual,
    Jacobian row and weight *i* all describe the same observation.
    """

    def __init__(self, observation_managers: Mapping[ObservableType, Any]):
        self._managers = dict(observation_managers)


    @property
    def observation_managers(self) -> dict[ObservableType, Any]:
        """Registered managers (shallow copy)."""
        return dict(self._managers)


    def get_observation_manager(self, observable_type: ObservableType) -> Any:
        """Return the manager for ``observable_type``.

        Raises
        ------
        ConfigurationError
            If no manager is registered for the type.
        """
        try:
            return self._managers[observable_type]
        except KeyError:
            name = getattr(observable_type, "name", observable_type)
            raise ConfigurationError(
                f"no observation manager registered for observable type {name}"
            ) from None


    def check_managers(self, observations: ObservationCollection) -> None:
        """Fail fast if any observable type in ``observations`` has no manager."""
        for observable_type in observations.observable_types:
            self.get_observation_manager(observable_type)


    def compute_residuals_and_jacobian(
        self,
        observations: ObservationCollection,
        parameter_size: int,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Compute observed-minus-computed residuals and the stacked partials.

        Parameters
        ----------
        observations : ObservationCollection
            Observed data; fixes the row order.
        parameter_size : int
            Length of the estimated parameter vector (Jacobian columns).

        Returns
        -------
        residuals : np.ndarray, shape (n_obs,)
        jacobian : np.ndarray, shape (n_obs, parameter_size)
        """
        self.check_managers(observations)

        n_obs = observations.total_observations
        residuals = np.zeros(n_obs)
        jacobian = np.zeros((n_obs, parameter_size))

        for obs, rows in zip(observations, observations.row_slices()):
            manager = self._managers[obs.observable_type]

            computed, partials = manager.compute_observations_with_partials(
                obs.times, obs.link_ends, obs.reference_link_end
            )
            computed = np.asarray(computed, dtype=float).reshape(-1)
            partials = np.asarray(partials, dtype=float)

            if computed.size != obs.size:
                raise ValueError(
                    f"observation manager for {obs.observable_type.name} returned "
                    f"{computed.size} value(s) for {obs.size} observation(s) "
                    f"with {obs.link_ends!r}"
                )
            if partials.shape != (obs.size, parameter_size):
                raise ValueError(
                    f"observation manager for {obs.observable_type.name} returned "
                    f"partials of shape {partials.shape}, expected "
                    f"{(obs.size, parameter_size)} for {obs.link_ends!r}"
                )

            residuals[rows] = obs.values - computed
            jacobian[rows, :] = partials

        return residuals, jacobian
