"""Shared toy collaborators for the estimation tests.

- ``LinearModelManager``: ``y = a * t`` driven by a static parameter ``a``.
- ``ConstantVelocityPropagator``: 1D point mass ``x(t) = x0 + v0 * t`` whose
  initial state is a dynamical parameter.
- ``RangeManager`` / ``PositionManager``: range from fixed stations (with a
  static range bias) and direct position fixes of that point mass.
"""

import numpy as np
import pytest

from batchod.observations import (
    LinkEnds,
    LinkEndType,
    ObservableType,
    ObservationCollection,
    ObservationSet,
)
from batchod.estimation import EstimatableParameter, ParameterSet


# ═══════════════════════════════════════════════════════════════════════════
# Linear model
# ═══════════════════════════════════════════════════════════════════════════

class LinearModelManager:
    """Observation manager for ``y = a * t``.

    ``partial_scale`` deliberately corrupts the reported partials, which
    makes Gauss-Newton overshoot and diverge.
    """

    def __init__(self, parameter, partial_scale=1.0):
        self.parameter = parameter
        self.partial_scale = partial_scale
        self.calls = 0

    def compute_observations_with_partials(self, times, link_ends, reference_link_end):
        self.calls += 1
        a = self.parameter.value[0]
        t = np.asarray(times, dtype=float)
        return a * t, self.partial_scale * t[:, None]


PROBE = LinkEnds({LinkEndType.OBSERVED_BODY: "probe"})


def scenario_a_observations():
    return ObservationCollection([
        ObservationSet(
            ObservableType.POSITION, PROBE,
            times=[1.0, 2.0, 3.0], values=[2.1, 3.9, 6.2],
            reference_link_end=LinkEndType.OBSERVED_BODY,
        )
    ])


@pytest.fixture
def linear_problem():
    """(parameter_set, managers, observations) for the 1-parameter linear fit."""
    a = EstimatableParameter("a", 0.0)
    parameter_set = ParameterSet([a])
    managers = {ObservableType.POSITION: LinearModelManager(a)}
    return parameter_set, managers, scenario_a_observations()


# ═══════════════════════════════════════════════════════════════════════════
# Constant-velocity point mass
# ═══════════════════════════════════════════════════════════════════════════

class ConstantVelocityPropagator:
    """Analytic 'propagator' of a 1D constant-velocity point mass."""

    def __init__(self, initial_state):
        self.initial_state = np.array(initial_state, dtype=float)
        self.reset_calls = []

    def reset_and_repropagate(self, parameters, reintegrate_variational):
        self.initial_state = np.array(parameters[:2], dtype=float)
        self.reset_calls.append(bool(reintegrate_variational))

    def get_state_transition_and_sensitivity_interface(self):
        return self

    def state_transition_matrix(self, t):
        return np.array([[1.0, t], [0.0, 1.0]])

    def position(self, t):
        return self.initial_state[0] + self.initial_state[1] * np.asarray(t, dtype=float)

    def get_state_history(self):
        t = np.linspace(0.0, 10.0, 3)
        return {float(ti): np.array([self.position(ti), self.initial_state[1]]) for ti in t}

    def get_dependent_variable_history(self):
        return {0.0: np.array([self.initial_state[1]])}


STATIONS = {"west": -50.0, "east": 30.0}


class RangeManager:
    """Range from a fixed station plus a constant bias; parameters [x0, v0, bias]."""

    def __init__(self, propagator, bias):
        self.propagator = propagator
        self.bias = bias

    def compute_observations_with_partials(self, times, link_ends, reference_link_end):
        station = STATIONS[link_ends[LinkEndType.TRANSMITTER][1]]
        t = np.asarray(times, dtype=float)
        offset = self.propagator.position(t) - station
        sign = np.sign(offset)
        stm = self.propagator.get_state_transition_and_sensitivity_interface()
        partials = np.column_stack([
            sign * np.array([stm.state_transition_matrix(ti)[0, 0] for ti in t]),
            sign * np.array([stm.state_transition_matrix(ti)[0, 1] for ti in t]),
            np.ones_like(t),
        ])
        return np.abs(offset) + self.bias.value[0], partials


class PositionManager:
    """Direct position fix; parameters [x0, v0, bias]."""

    def __init__(self, propagator):
        self.propagator = propagator

    def compute_observations_with_partials(self, times, link_ends, reference_link_end):
        t = np.asarray(times, dtype=float)
        partials = np.column_stack([np.ones_like(t), t, np.zeros_like(t)])
        return self.propagator.position(t), partials


def station_link(name):
    return LinkEnds({
        LinkEndType.TRANSMITTER: ("Earth", name),
        LinkEndType.RECEIVER: ("Earth", name),
        LinkEndType.REFLECTOR: "probe",
    })


TRUE_STATE = np.array([100.0, 2.0])
TRUE_BIAS = 0.5


def point_mass_observations():
    t = np.linspace(0.0, 10.0, 6)
    x = TRUE_STATE[0] + TRUE_STATE[1] * t
    sets = [
        ObservationSet(ObservableType.POSITION, PROBE, t, x, LinkEndType.OBSERVED_BODY),
    ]
    for name, station in STATIONS.items():
        sets.append(ObservationSet(
            ObservableType.N_WAY_RANGE, station_link(name), t,
            np.abs(x - station) + TRUE_BIAS, LinkEndType.RECEIVER,
        ))
    return ObservationCollection(sets)


@pytest.fixture
def point_mass_problem():
    """Dynamical problem: (parameter_set, managers, propagator, observations)."""
    nominal_state = np.array([90.0, 1.5])
    state = EstimatableParameter("initial_state", nominal_state, dynamical=True)
    bias = EstimatableParameter("range_bias", 0.0)
    parameter_set = ParameterSet([state, bias])

    propagator = ConstantVelocityPropagator(nominal_state)
    managers = {
        ObservableType.N_WAY_RANGE: RangeManager(propagator, bias),
        ObservableType.POSITION: PositionManager(propagator),
    }
    return parameter_set, managers, propagator, point_mass_observations()


@pytest.fixture
def point_mass_truth():
    """True parameter vector [x0, v0, bias] of the point-mass problem."""
    return np.concatenate([TRUE_STATE, [TRUE_BIAS]])


@pytest.fixture
def make_linear_manager():
    """Factory for ``LinearModelManager(parameter, partial_scale)``."""
    return LinearModelManager


@pytest.fixture
def probe_link():
    return PROBE
