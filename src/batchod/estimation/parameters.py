#########################################################################################
##
##                      ESTIMATED PARAMETERS AND STATE RESETTING
##                                (parameters.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import logging
from typing import Any, Sequence

import numpy as np

from .errors import ConfigurationError


logger = logging.getLogger(__name__)


# PARAMETER DECLARATION =================================================================

class EstimatableParameter:
    """Single (scalar or vector) entry of the estimated parameter vector.

    A parameter is either dynamical (a propagated quantity such as a body's
    initial state, whose change requires re-integrating the equations of
    motion) or static (a model constant, a measurement bias, ...). It can
    optionally be bound to an attribute of a model object; ``set()`` then
    writes the new value straight into that attribute.

    Parameters
    ----------
    name : str
        Parameter identifier.
    value : float or array_like
        Nominal value.
    dynamical : bool
        True for propagated quantities.
    target : object, optional
        Model object that holds the parameter.
    attribute : str, optional
        Dotted attribute path on *target* (e.g. ``"drag.coefficient"``).

    Example
    -------
    .. code-block:: python

        state = EstimatableParameter("initial_state", x0, dynamical=True)
        bias = EstimatableParameter("range_bias", 0.0, target=station, attribute="bias")
        bias.set(1.5)    # also sets station.bias = 1.5
    """

    def __init__(
        self,
        name: str,
        value: float | np.ndarray = 0.0,
        dynamical: bool = False,
        target: Any | None = None,
        attribute: str | None = None,
    ):
        if target is not None and attribute is None:
            raise ValueError("attribute must be provided when target is specified")
        if attribute is not None and target is None:
            raise ValueError("target must be provided when attribute is specified")

        self.name = name
        self.dynamical = bool(dynamical)
        self.target = target
        self.attribute = attribute
        self._scalar = np.ndim(value) == 0

        initial = np.array(value, dtype=float).reshape(-1)
        if initial.size == 0:
            raise ValueError(f"Parameter '{name}': value must not be empty")
        self._value = initial

        self.set(initial)


    @property
    def size(self) -> int:
        """Number of entries this parameter contributes to the parameter vector."""
        return self._value.size


    @property
    def value(self) -> np.ndarray:
        """Current value as a 1D array (copy)."""
        return self._value.copy()


    def set(self, value: float | np.ndarray) -> None:
        """Set the value and push it to the bound attribute, if any."""
        new_value = np.array(value, dtype=float).reshape(-1)
        if new_value.size != self._value.size:
            raise ValueError(
                f"Parameter '{self.name}': expected {self._value.size} value(s), "
                f"got {new_value.size}"
            )
        # target first; a failed push leaves the stored value unchanged
        if self.target is not None:
            obj = self.target
            attrs = self.attribute.split(".")
            for attr in attrs[:-1]:
                obj = getattr(obj, attr)
            setattr(obj, attrs[-1], float(new_value[0]) if self._scalar else new_value.copy())

        self._value = new_value


    def labels(self) -> list[str]:
        """One label per vector entry."""
        if self._value.size == 1:
            return [self.name]
        return [f"{self.name}[{i}]" for i in range(self._value.size)]


    def __repr__(self) -> str:
        kind = "dynamical" if self.dynamical else "static"
        value = float(self._value[0]) if self._scalar else self._value
        return f"EstimatableParameter(name={self.name!r}, value={value}, {kind})"


# PARAMETER SET =========================================================================

class ParameterSet:
    """Ordered container defining the estimated parameter vector.

    The parameter vector is the concatenation of the parameter values in
    the given order.

    Parameters
    ----------
    parameters : sequence of EstimatableParameter
        Parameters to estimate, each name unique.
    """

    def __init__(self, parameters: Sequence[EstimatableParameter]):
        self._parameters = list(parameters)

        names = [p.name for p in self._parameters]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate parameter name(s): {duplicates}")

        offsets = np.cumsum([0] + [p.size for p in self._parameters])
        self._slices = [
            slice(int(start), int(stop)) for start, stop in zip(offsets[:-1], offsets[1:])
        ]


    @property
    def parameters(self) -> list[EstimatableParameter]:
        return list(self._parameters)


    @property
    def size(self) -> int:
        """Length of the parameter vector."""
        return sum(p.size for p in self._parameters)


    @property
    def names(self) -> list[str]:
        """One label per parameter vector entry."""
        return [label for p in self._parameters for label in p.labels()]


    @property
    def slices(self) -> dict[str, slice]:
        """Position of each parameter in the parameter vector."""
        return {p.name: s for p, s in zip(self._parameters, self._slices)}


    @property
    def has_dynamical_parameters(self) -> bool:
        return any(p.dynamical for p in self._parameters)


    def get_values(self) -> np.ndarray:
        """Current parameter vector."""
        if not self._parameters:
            return np.array([], dtype=float)
        return np.concatenate([p.value for p in self._parameters])


    def reset_values(self, vector: np.ndarray) -> None:
        """Distribute ``vector`` over the parameters."""
        v = np.asarray(vector, dtype=float).reshape(-1)
        if v.size != self.size:
            raise ValueError(f"Expected parameter vector of length {self.size}, got {v.size}")
        for p, s in zip(self._parameters, self._slices):
            p.set(v[s])


    def __len__(self) -> int:
        return len(self._parameters)


    def __repr__(self) -> str:
        return f"ParameterSet(size={self.size}, names={[p.name for p in self._parameters]})"


# STATE RESETTER ========================================================================

class ParameterStateResetter:
    """Applies new parameter vectors to the dynamical model.

    Static parameters are written to the parameter container. When any
    dynamical parameter is estimated, the propagator is additionally asked to
    re-integrate the equations of motion (and, optionally, the variational
    equations) so that the observation managers see the updated dynamics on
    their next evaluation.

    The propagator must provide::

        reset_and_repropagate(parameters, reintegrate_variational)
        get_state_transition_and_sensitivity_interface()

    Parameters
    ----------
    parameter_set : ParameterSet
        Container of the estimated parameters.
    propagator : object, optional
        Propagation engine. Required if and only if dynamical parameters are
        estimated.
    """

    def __init__(self, parameter_set: ParameterSet, propagator: Any | None = None):
        if propagator is not None and not parameter_set.has_dynamical_parameters:
            raise ConfigurationError(
                "propagator given but no dynamical parameter is estimated"
            )
        if propagator is None and parameter_set.has_dynamical_parameters:
            raise ConfigurationError(
                "dynamical parameters are estimated but no propagator is given"
            )

        self.parameter_set = parameter_set
        self.propagator = propagator
        self._current_estimate = parameter_set.get_values()


    @property
    def current_estimate(self) -> np.ndarray:
        """Most recently applied parameter vector (copy)."""
        return self._current_estimate.copy()


    @property
    def state_transition_interface(self) -> Any | None:
        """State transition / sensitivity matrix interface of the propagator."""
        if self.propagator is None:
            return None
        return self.propagator.get_state_transition_and_sensitivity_interface()


    def reset(self, parameters: np.ndarray, reintegrate_variational: bool = True) -> None:
        """Apply ``parameters`` to the model, re-propagating if needed."""
        vector = np.array(parameters, dtype=float).reshape(-1)
        if vector.size != self.parameter_set.size:
            raise ValueError(
                f"Expected parameter vector of length {self.parameter_set.size}, "
                f"got {vector.size}"
            )

        previous = self.parameter_set.get_values()
        self.parameter_set.reset_values(vector)

        if self.propagator is not None:
            logger.debug("re-propagating dynamics (variational equations: %s)",
                         reintegrate_variational)
            try:
                self.propagator.reset_and_repropagate(
                    vector.copy(), bool(reintegrate_variational)
                )
            except Exception:
                # container and cached estimate stay consistent with the old state
                self.parameter_set.reset_values(previous)
                raise

        self._current_estimate = vector


    def sync(self) -> np.ndarray:
        """Re-read the current parameter values into the cached estimate.

        Picks up values set directly on the parameters (e.g. with
        :meth:`EstimatableParameter.set`) after construction.
        """
        self._current_estimate = self.parameter_set.get_values()
        return self.current_estimate
