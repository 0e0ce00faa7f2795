#########################################################################################
##
##          batchod example: orbit determination of a planar two-body orbit
##
##  Model:   r'' = -mu * r / |r|^3 in the plane, propagated with scipy together
##           with its 4x4 state transition matrix.
##  Data:    Two-way ranges from three fixed ground stations, with a common
##           range bias and Gaussian noise.
##  Fit:     initial state [x, y, vx, vy] (dynamical) and the range bias (static)
##
#########################################################################################

# IMPORTS ===============================================================================

import logging

import numpy as np
import matplotlib.pyplot as plt
from scipy.integrate import solve_ivp

from batchod import (
    ConvergenceChecker,
    EstimatableParameter,
    EstimationInput,
    Estimator,
    LinkEnds,
    LinkEndType,
    ObservableType,
    ObservationCollection,
    ObservationSet,
    ParameterSet,
)


# DYNAMICS ==============================================================================

MU = 1.0


def _two_body(t, y):
    x, yy, vx, vy = y[:4]
    r3 = (x * x + yy * yy) ** 1.5
    dstate = [vx, vy, -MU * x / r3, -MU * yy / r3]
    if y.size == 4:
        return dstate

    # variational equations, Phi' = A Phi
    r2 = x * x + yy * yy
    r5 = r2 ** 2.5
    G = MU * np.array([
        [3 * x * x - r2, 3 * x * yy],
        [3 * x * yy, 3 * yy * yy - r2],
    ]) / r5
    A = np.zeros((4, 4))
    A[0:2, 2:4] = np.eye(2)
    A[2:4, 0:2] = G
    Phi = y[4:].reshape(4, 4)
    return np.concatenate([dstate, (A @ Phi).ravel()])


class PlanarTwoBodyPropagator:
    """Propagates the state and (optionally) the state transition matrix."""

    def __init__(self, initial_state, t_final):
        self.t_final = t_final
        self._stm = None
        self.reset_and_repropagate(initial_state, True)

    def reset_and_repropagate(self, parameters, reintegrate_variational):
        x0 = np.asarray(parameters[:4], dtype=float)
        if reintegrate_variational or self._stm is None:
            y0 = np.concatenate([x0, np.eye(4).ravel()])
            sol = solve_ivp(_two_body, (0.0, self.t_final), y0,
                            rtol=1e-11, atol=1e-12, dense_output=True)
            self._stm = sol.sol
        else:
            sol = solve_ivp(_two_body, (0.0, self.t_final), x0,
                            rtol=1e-11, atol=1e-12, dense_output=True)
        self._state = sol.sol

    def get_state_transition_and_sensitivity_interface(self):
        return self

    def state(self, t):
        return self._state(t)[:4]

    def state_transition_matrix(self, t):
        return self._stm(t)[4:].reshape(4, 4)

    def get_state_history(self):
        return {float(t): self.state(t) for t in np.linspace(0.0, self.t_final, 50)}


# OBSERVATION MODEL =====================================================================

STATIONS = {
    "Alpha": np.array([2.0, 0.0]),
    "Bravo": np.array([-2.0, 0.5]),
    "Charlie": np.array([0.0, -2.5]),
}


def station_link(name):
    return LinkEnds({
        LinkEndType.TRANSMITTER: ("Earth", name),
        LinkEndType.REFLECTOR: "probe",
        LinkEndType.RECEIVER: ("Earth", name),
    })


class TwoWayRangeManager:
    """Range from a fixed station plus a bias; parameters [x, y, vx, vy, bias]."""

    def __init__(self, propagator, bias):
        self.propagator = propagator
        self.bias = bias

    def compute_observations_with_partials(self, times, link_ends, reference_link_end):
        station = STATIONS[link_ends[LinkEndType.TRANSMITTER][1]]
        stm = self.propagator.get_state_transition_and_sensitivity_interface()

        values = np.empty(len(times))
        partials = np.zeros((len(times), 5))
        for i, t in enumerate(times):
            rel = stm.state(t)[:2] - station
            rho = np.linalg.norm(rel)
            values[i] = rho + self.bias.value[0]
            partials[i, :4] = (rel / rho) @ stm.state_transition_matrix(t)[:2, :]
            partials[i, 4] = 1.0
        return values, partials


# SYNTHETIC DATA ========================================================================

true_state = np.array([1.0, 0.0, 0.0, 1.05])
true_bias = 2e-3
sigma = 1e-4
t_obs = np.linspace(0.0, 6.0, 40)

rng = np.random.default_rng(2024)
truth = PlanarTwoBodyPropagator(true_state, t_obs[-1])

sets = []
for name, station in STATIONS.items():
    rho = np.array([np.linalg.norm(truth.state(t)[:2] - station) for t in t_obs])
    sets.append(ObservationSet(
        ObservableType.N_WAY_RANGE, station_link(name), t_obs,
        rho + true_bias + rng.normal(0.0, sigma, t_obs.size),
        reference_link_end=LinkEndType.RECEIVER, name=name,
    ))
observations = ObservationCollection(sets)


# Run Example ===========================================================================

if __name__ == '__main__':

    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    nominal_state = true_state + np.array([0.01, -0.02, 0.005, -0.01])

    state = EstimatableParameter("initial_state", nominal_state, dynamical=True)
    bias = EstimatableParameter("range_bias", 0.0)
    parameters = ParameterSet([state, bias])

    propagator = PlanarTwoBodyPropagator(nominal_state, t_obs[-1])
    est = Estimator(
        parameters,
        {ObservableType.N_WAY_RANGE: TwoWayRangeManager(propagator, bias)},
        propagator=propagator,
    )

    estimation_input = EstimationInput(observations, save_state_history_per_iteration=True)
    estimation_input.set_constant_weight(1.0 / sigma**2)

    result = est.estimate_parameters(estimation_input, ConvergenceChecker(max_iterations=8))
    result.display()

    print("True values      :", np.append(true_state, true_bias))
    print("Estimation error :", result.parameter_estimate - np.append(true_state, true_bias))

    fig, axes = result.plot()

    # post-fit residuals per station
    fig2, ax = plt.subplots(figsize=(8, 4))
    for obs, rows in zip(observations, observations.row_slices()):
        ax.plot(obs.times, result.residuals[rows] / sigma, "o", label=obs.name)
    ax.set_xlabel("Time")
    ax.set_ylabel("Residual / sigma")
    ax.set_title("Post-fit range residuals")
    ax.grid(True)
    ax.legend()
    plt.show()
