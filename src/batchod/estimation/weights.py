#########################################################################################
##
##                          OBSERVATION WEIGHT ASSEMBLY
##                                 (weights.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Mapping

import numpy as np

from ..observations import LinkEnds, ObservableType, ObservationCollection
from .errors import ConfigurationError


# TYPES =================================================================================

WeightsMap = Mapping[ObservableType, Mapping[LinkEnds, np.ndarray]]


# FUNCTIONS =============================================================================

def concatenate_weights(weights: WeightsMap, observations: ObservationCollection) -> np.ndarray:
    """Flatten per-group weights into one vector in observation row order.

    Parameters
    ----------
    weights : mapping
        ``{observable_type: {link_ends: weights}}`` with one weight per
        observation of the matching group.
    observations : ObservationCollection
        Observations that fix the row order.

    Returns
    -------
    np.ndarray
        Weight vector of length ``observations.total_observations``; entry
        *i* weighs residual *i*.

    Raises
    ------
    ConfigurationError
        If a group has no weights, the wrong number of weights, or weights
        that are negative or not finite.
    """
    segments = []

    for obs in observations:
        per_link = weights.get(obs.observable_type)
        if per_link is None or obs.link_ends not in per_link:
            raise ConfigurationError(
                f"no weights given for {obs.observable_type.name} "
                f"with {obs.link_ends!r}"
            )

        w = np.asarray(per_link[obs.link_ends], dtype=float).reshape(-1)
        if w.size != obs.size:
            raise ConfigurationError(
                f"{w.size} weight(s) given for {obs.size} observation(s) of "
                f"{obs.observable_type.name} with {obs.link_ends!r}"
            )
        if not np.all(np.isfinite(w)) or np.any(w < 0.0):
            raise ConfigurationError(
                f"weights of {obs.observable_type.name} with {obs.link_ends!r} "
                "must be finite and non-negative"
            )
        segments.append(w)

    if not segments:
        return np.array([], dtype=float)
    return np.concatenate(segments)


def uniform_weights(observations: ObservationCollection, weight: float = 1.0) -> dict:
    """Weights map assigning ``weight`` to every observation."""
    result: dict = {}
    for obs in observations:
        result.setdefault(obs.observable_type, {})[obs.link_ends] = np.full(obs.size, float(weight))
    return result


def weights_per_observable(
    observations: ObservationCollection,
    observable_weights: Mapping[ObservableType, float],
) -> dict:
    """Weights map with one constant weight per observable type.

    Raises
    ------
    ConfigurationError
        If an observable type present in ``observations`` has no weight.
    """
    result: dict = {}
    for obs in observations:
        if obs.observable_type not in observable_weights:
            raise ConfigurationError(
                f"no weight given for observable {obs.observable_type.name}"
            )
        result.setdefault(obs.observable_type, {})[obs.link_ends] = np.full(
            obs.size, float(observable_weights[obs.observable_type])
        )
    return result
