"""
===============================================================================
ATTITUDE PROPAGATION - Propagation Scenario Test Suite
===============================================================================
End-to-end tests of SingleArcDynamicsSimulator:
  - Torque-free Phobos spin about each principal axis vs closed form
  - Axisymmetric free precession vs closed form
  - Constant body torque: spin-up law and dH/dt = R * tau
  - Coupled orbit + attitude with one-step-lagged gravity-gradient torque
  - Ephemeris handoff and derivative identities of the tabulated result
  - Termination, save frequency, DataFrame / CSV output, failures
===============================================================================
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose

from core.constants import (
    MARS_MU,
    PHOBOS_MASS,
    PHOBOS_MEAN_RADIUS,
    PHOBOS_NORMALIZED_INERTIA,
    PHOBOS_SMA,
)
from core.exceptions import NonFiniteStateError, PropagationError, StepSizeUnderflowError
from core.frames import (
    Rx,
    Ry,
    Rz,
    local_vertical_to_planetocentric_quaternion,
    vector_from_cross_product_matrix,
)
from core.quaternion import Quaternion, quaternion_to_rotation_matrix
from dynamics.body import Body
from dynamics.ephemeris import (
    ConstantEphemeris,
    TabulatedCartesianEphemeris,
    TabulatedRotationalEphemeris,
)
from dynamics.environment import (
    CentralGravityAcceleration,
    ConstantTorque,
    CustomTorque,
    GravityGradientTorque,
)
from propagation.dependent_variables import DependentVariableRequest
from propagation.integrator import IntegratorSettings
from propagation.propagator_settings import (
    MultiTypePropagatorSettings,
    RotationalPropagatorSettings,
    TranslationalPropagatorSettings,
)
from propagation.termination import (
    DependentVariableTermination,
    HybridTermination,
    TimeTermination,
)
from simulation.dynamics_simulator import SimulatorStatus, SingleArcDynamicsSimulator


# =============================================================================
# Fixtures
# =============================================================================

MEAN_MOTION = np.sqrt(MARS_MU / PHOBOS_SMA ** 3)
PHOBOS_INERTIA_SCALE = PHOBOS_MASS * PHOBOS_MEAN_RADIUS ** 2
PASSIVE_ROTATIONS = [Rx, Ry, Rz]


def phobos_integrator_settings(initial_step=10.0, maximum_step=30.0):
    return IntegratorSettings(initial_step=initial_step, coefficient_set="rkf78",
                              minimum_step=2.0, maximum_step=maximum_step,
                              relative_tolerance=1e-13, absolute_tolerance=1e-13)


def make_phobos(moments=PHOBOS_NORMALIZED_INERTIA):
    return Body("Phobos", mass=PHOBOS_MASS,
                inertia_tensor=np.diag(moments) * PHOBOS_INERTIA_SCALE)


def rotational_history(simulator):
    """Epochs and rotational states of a single-body rotational run."""
    times = np.array(list(simulator.state_history.keys()))
    states = np.array(list(simulator.state_history.values()))
    return times, states


@pytest.fixture
def mars():
    return Body("Mars", gravitational_parameter=MARS_MU,
                ephemeris=ConstantEphemeris(np.zeros(6)))


@pytest.fixture
def initial_orientation():
    """Body -> inertial quaternion of a local vertical frame at (lon 0.2, lat 0.7)."""
    return local_vertical_to_planetocentric_quaternion(0.2, 0.7)


def run_spin(axis_index, duration, initial_orientation, initial_step=10.0):
    omega = np.zeros(3)
    omega[axis_index] = MEAN_MOTION
    bodies = {"Phobos": make_phobos()}
    settings = RotationalPropagatorSettings(
        ["Phobos"], np.concatenate([initial_orientation.as_vector(), omega]),
        termination=TimeTermination(duration))
    return SingleArcDynamicsSimulator(bodies, phobos_integrator_settings(initial_step), settings)


def assert_uniform_spin(simulator, axis_index, initial_orientation, atol):
    initial_to_target = quaternion_to_rotation_matrix(initial_orientation.as_vector()).T
    rotation = PASSIVE_ROTATIONS[axis_index]
    times, states = rotational_history(simulator)
    for t, state in zip(times, states):
        expected = rotation(MEAN_MOTION * t) @ initial_to_target
        actual = quaternion_to_rotation_matrix(state[:4]).T
        assert_allclose(actual, expected, atol=atol)


def assert_finite_difference_derivative(ephemeris, t, h=0.1):
    """Analytic dR/dt against a central difference of the orientation."""
    numerical = (ephemeris.rotation_matrix_to_base_frame(t + h)
                 - ephemeris.rotation_matrix_to_base_frame(t - h)) / (2.0 * h)
    assert_allclose(ephemeris.derivative_of_rotation_to_base_frame(t), numerical, atol=1e-12)


@pytest.fixture
def spin_simulator(initial_orientation):
    """Two hours of torque-free spin about the body z-axis."""
    return run_spin(2, 7200.0, initial_orientation)


# =============================================================================
# Test: Torque-free rotation
# =============================================================================

class TestTorqueFreeSpin:

    @pytest.mark.parametrize("axis_index", [0, 1, 2])
    def test_spin_about_principal_axis(self, axis_index, initial_orientation):
        """R_to_target(t) = R_axis(n t) @ R_to_target(0) for a principal-axis spin."""
        simulator = run_spin(axis_index, 7200.0, initial_orientation)
        assert simulator.status == SimulatorStatus.TERMINATED
        assert_uniform_spin(simulator, axis_index, initial_orientation, atol=1e-10)

        _, states = rotational_history(simulator)
        expected_omega = np.zeros(3)
        expected_omega[axis_index] = MEAN_MOTION
        assert_allclose(states[:, 4:], np.tile(expected_omega, (len(states), 1)), atol=1e-18)
        assert_allclose(np.linalg.norm(states[:, :4], axis=1), 1.0, atol=1e-15)

    @pytest.mark.slow
    def test_ten_day_spin(self, initial_orientation):
        simulator = run_spin(2, 10.0 * 86400.0, initial_orientation)
        assert_uniform_spin(simulator, 2, initial_orientation, atol=1e-10)

        ephemeris = simulator.bodies["Phobos"].rotational_ephemeris
        for t in np.linspace(1000.0, 9.9 * 86400.0, 7):
            assert_finite_difference_derivative(ephemeris, t)

    @pytest.mark.parametrize("t", [1000.0, 3333.3, 6500.0])
    def test_rotational_ephemeris_derivatives(self, spin_simulator, t):
        ephemeris = spin_simulator.bodies["Phobos"].rotational_ephemeris
        assert isinstance(ephemeris, TabulatedRotationalEphemeris)
        assert_finite_difference_derivative(ephemeris, t)

        to_base = ephemeris.rotation_matrix_to_base_frame(t)
        extracted = vector_from_cross_product_matrix(
            ephemeris.derivative_of_rotation_to_base_frame(t) @ to_base.T)
        assert_allclose(extracted, ephemeris.rotational_velocity_in_base_frame(t), atol=1e-15)
        assert_allclose(ephemeris.rotational_velocity_in_target_frame(t),
                        [0.0, 0.0, MEAN_MOTION], atol=1e-15)
        assert ephemeris.rotation_to_target_frame(t) == \
            ephemeris.rotation_to_base_frame(t).conjugate()

    def test_backward_spin(self, initial_orientation):
        simulator = run_spin(2, -3600.0, initial_orientation, initial_step=-10.0)
        times, _ = rotational_history(simulator)
        assert times[0] == -3600.0
        assert times[-1] == 0.0
        assert np.all(np.diff(times) > 0.0)
        assert_uniform_spin(simulator, 2, initial_orientation, atol=1e-10)

    @pytest.mark.parametrize("duration", [
        6.0 * 3600.0,
        pytest.param(3.0 * 86400.0, marks=pytest.mark.slow),
    ])
    def test_free_precession(self, duration):
        """Axisymmetric body: transverse rate rotates at lambda = (I3 - I2) / I2 * n."""
        bodies = {"Phobos": make_phobos((0.4265, 0.4265, 0.5024))}
        q0 = Quaternion.from_axis_angle(np.array([1.0, 0.0, 0.0]), np.radians(-20.0))
        omega0 = np.array([0.1 * MEAN_MOTION, 0.0, MEAN_MOTION])
        settings = RotationalPropagatorSettings(
            ["Phobos"], np.concatenate([q0.as_vector(), omega0]),
            termination=TimeTermination(duration))
        simulator = SingleArcDynamicsSimulator(bodies, phobos_integrator_settings(), settings)

        rate = (0.5024 - 0.4265) / 0.4265 * MEAN_MOTION
        times, states = rotational_history(simulator)
        assert times[-1] == duration
        assert_allclose(states[:, 4], 0.1 * MEAN_MOTION * np.cos(rate * times), atol=1e-15)
        assert_allclose(states[:, 5], 0.1 * MEAN_MOTION * np.sin(rate * times), atol=1e-15)
        assert_allclose(states[:, 6], MEAN_MOTION, rtol=1e-14)

    def test_tumbling_conserves_momentum_and_energy(self):
        inertia = np.diag([100.0, 120.0, 150.0])
        bodies = {"Box": Body("Box", mass=10.0, inertia_tensor=inertia)}
        q0 = Quaternion.from_axis_angle(np.array([1.0, 2.0, -1.0]), 0.9)
        omega0 = np.array([0.01, 0.05, 0.02])
        settings = RotationalPropagatorSettings(
            ["Box"], np.concatenate([q0.as_vector(), omega0]),
            termination=TimeTermination(300.0),
            dependent_variables=[DependentVariableRequest("inertial_angular_momentum", "Box")])
        integrator_settings = IntegratorSettings(initial_step=1.0, maximum_step=10.0,
                                                 relative_tolerance=1e-12,
                                                 absolute_tolerance=1e-12)
        simulator = SingleArcDynamicsSimulator(bodies, integrator_settings, settings)

        momentum = np.array(list(simulator.dependent_variable_history.values()))
        assert_allclose(momentum, np.tile(momentum[0], (len(momentum), 1)), atol=1e-7)
        assert_allclose(momentum[0], quaternion_to_rotation_matrix(q0.as_vector())
                        @ inertia @ omega0, rtol=1e-12, atol=1e-12)

        _, states = rotational_history(simulator)
        energy = 0.5 * np.einsum('ij,jk,ik->i', states[:, 4:], inertia, states[:, 4:])
        assert_allclose(energy, energy[0], rtol=1e-8)


# =============================================================================
# Test: Torqued rotation
# =============================================================================

class TestTorquedRotation:

    INERTIA = np.diag([100.0, 120.0, 150.0])

    def test_spin_up_about_principal_axis(self):
        """omega_z = w0 + (tau / C) t  and  angle = w0 t + tau t^2 / (2 C)."""
        torque = ConstantTorque([0.0, 0.0, 0.005], name="spin_motor")
        bodies = {"Wheel": Body("Wheel", mass=10.0, inertia_tensor=self.INERTIA)}
        settings = RotationalPropagatorSettings(
            ["Wheel"], [1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.05],
            torque_models={"Wheel": [torque]},
            termination=TimeTermination(600.0),
            dependent_variables=[DependentVariableRequest("single_torque", "Wheel",
                                                          model_name="spin_motor")])
        integrator_settings = IntegratorSettings(initial_step=1.0, maximum_step=10.0,
                                                 relative_tolerance=1e-13,
                                                 absolute_tolerance=1e-13)
        simulator = SingleArcDynamicsSimulator(bodies, integrator_settings, settings)

        times, states = rotational_history(simulator)
        acceleration = 0.005 / 150.0
        assert_allclose(states[:, 6], 0.05 + acceleration * times, rtol=1e-12)
        for t, state in zip(times, states):
            angle = 0.05 * t + 0.5 * acceleration * t ** 2
            assert_allclose(quaternion_to_rotation_matrix(state[:4]).T, Rz(angle), atol=1e-9)

        torques = np.array(list(simulator.dependent_variable_history.values()))
        assert_allclose(torques, np.tile([0.0, 0.0, 0.005], (len(torques), 1)))

    def test_momentum_rate_equals_inertial_torque(self):
        """Central difference of H_inertial matches R_to_base @ tau."""
        tau = np.array([0.01, -0.02, 0.005])
        bodies = {"Box": Body("Box", mass=10.0, inertia_tensor=self.INERTIA)}
        settings = RotationalPropagatorSettings(
            ["Box"], [1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.05],
            torque_models={"Box": [ConstantTorque(tau)]},
            termination=TimeTermination(20.0),
            dependent_variables=[
                DependentVariableRequest("inertial_angular_momentum", "Box"),
                DependentVariableRequest("rotation_matrix_to_body_fixed", "Box"),
            ])
        integrator_settings = IntegratorSettings(initial_step=0.1, minimum_step=0.1,
                                                 maximum_step=0.1, relative_tolerance=1e-10,
                                                 absolute_tolerance=1e-10)
        simulator = SingleArcDynamicsSimulator(bodies, integrator_settings, settings)

        history = simulator.dependent_variable_history
        times = np.array(list(history.keys()))
        values = np.array(list(history.values()))
        momentum = values[:, :3]
        to_body = values[:, 3:].reshape(-1, 3, 3)

        for k in range(1, len(times) - 2):
            rate = (momentum[k + 1] - momentum[k - 1]) / (times[k + 1] - times[k - 1])
            assert_allclose(rate, to_body[k].T @ tau, atol=1e-6)


# =============================================================================
# Test: Coupled translational + rotational propagation
# =============================================================================

COUPLED_MAXIMUM_STEP = 30.0


def run_coupled(mars, maximum_step=COUPLED_MAXIMUM_STEP):
    """Phobos on a circular orbit, x-axis radial, spinning at the mean motion."""
    phobos = make_phobos()
    bodies = {"Mars": mars, "Phobos": phobos}
    speed = np.sqrt(MARS_MU / PHOBOS_SMA)

    translational = TranslationalPropagatorSettings(
        ["Mars"], ["Phobos"], [PHOBOS_SMA, 0.0, 0.0, 0.0, speed, 0.0],
        acceleration_models={"Phobos": [CentralGravityAcceleration(phobos, mars)]})
    rotational = RotationalPropagatorSettings(
        ["Phobos"], [1.0, 0.0, 0.0, 0.0, 0.0, 0.0, MEAN_MOTION],
        torque_models={"Phobos": [GravityGradientTorque(phobos, mars)]})
    settings = MultiTypePropagatorSettings(
        [translational, rotational], TimeTermination(7200.0),
        dependent_variables=[
            DependentVariableRequest("relative_distance", "Phobos", "Mars"),
            DependentVariableRequest("latitude", "Phobos", "Mars"),
            DependentVariableRequest("total_torque", "Phobos"),
        ])
    integrator_settings = phobos_integrator_settings(maximum_step=maximum_step)
    return SingleArcDynamicsSimulator(bodies, integrator_settings, settings)


def gravity_gradient_scale(simulator):
    """3 n^2 (B - A): torque per radian of in-plane misalignment."""
    moments = np.diag(simulator.bodies["Phobos"].inertia_tensor)
    return 3.0 * MEAN_MOTION ** 2 * (moments[1] - moments[0])


def max_torque(simulator):
    values = np.array(list(simulator.dependent_variable_history.values()))
    return np.max(np.abs(values[:, 2:]))


@pytest.fixture
def coupled_simulator(mars):
    return run_coupled(mars)


class TestCoupledPropagation:

    def test_history_bounds_and_layout(self, coupled_simulator):
        history = coupled_simulator.state_history
        epochs = list(history.keys())
        assert epochs[0] == 0.0
        assert epochs[-1] == 7200.0
        assert all(len(state) == 13 for state in history.values())
        assert coupled_simulator.termination_details.time == 7200.0
        assert coupled_simulator.termination_details.reached_final_condition
        assert coupled_simulator.function_evaluations > 0

    def test_circular_orbit_and_lagged_lock(self, coupled_simulator):
        values = np.array(list(coupled_simulator.dependent_variable_history.values()))
        assert_allclose(values[:, 0], PHOBOS_SMA, rtol=1e-9)
        assert_allclose(values[:, 1], 0.0, atol=1e-12)

        # The torque sees the position of the last accepted step, so the
        # attitude trails radial by at most one step of orbital motion
        lag_angle = MEAN_MOTION * COUPLED_MAXIMUM_STEP
        assert max_torque(coupled_simulator) < lag_angle * gravity_gradient_scale(coupled_simulator)

        for epoch, state in coupled_simulator.state_history.items():
            radial = state[:3] / np.linalg.norm(state[:3])
            body_x = quaternion_to_rotation_matrix(state[6:10])[:, 0]
            assert_allclose(body_x, radial, atol=lag_angle)

    def test_lag_torque_scales_with_maximum_step(self, mars, coupled_simulator):
        coarse = run_coupled(mars, maximum_step=10.0 * COUPLED_MAXIMUM_STEP)
        ratio = max_torque(coarse) / max_torque(coupled_simulator)
        assert 4.0 < ratio < 16.0
        assert max_torque(coarse) < (10.0 * MEAN_MOTION * COUPLED_MAXIMUM_STEP
                                     * gravity_gradient_scale(coarse))

    def test_translational_ephemeris_handoff(self, coupled_simulator):
        phobos = coupled_simulator.bodies["Phobos"]
        assert isinstance(phobos.ephemeris, TabulatedCartesianEphemeris)
        assert phobos.ephemeris.frame_origin == "Mars"
        for epoch, state in coupled_simulator.state_history.items():
            assert_allclose(phobos.ephemeris.cartesian_state(epoch), state[:6], rtol=1e-14)

    def test_rotational_ephemeris_handoff(self, coupled_simulator):
        phobos = coupled_simulator.bodies["Phobos"]
        ephemeris = phobos.rotational_ephemeris
        assert isinstance(ephemeris, TabulatedRotationalEphemeris)
        assert ephemeris.base_frame == "ECLIPJ2000"
        assert ephemeris.target_frame == "Phobos_Fixed"
        for epoch, state in coupled_simulator.state_history.items():
            assert ephemeris.rotation_to_base_frame(epoch) == Quaternion.from_vector(state[6:10])
            assert ephemeris.rotation_to_target_frame(epoch) == \
                ephemeris.rotation_to_base_frame(epoch).conjugate()

    def test_dataframe_and_csv(self, coupled_simulator, tmp_path):
        df = coupled_simulator.get_state_history()
        assert df.index.name == 'time'
        assert list(df.columns[:3]) == ["Phobos_x", "Phobos_y", "Phobos_z"]
        assert list(df.columns[6:]) == ["Phobos_qw", "Phobos_qx", "Phobos_qy", "Phobos_qz",
                                        "Phobos_wx", "Phobos_wy", "Phobos_wz"]
        assert len(df) == len(coupled_simulator.state_history)

        dependent = coupled_simulator.get_dependent_variable_history()
        assert list(dependent.columns) == [
            "relative_distance_Phobos_Mars", "latitude_Phobos_Mars",
            "total_torque_Phobos_0", "total_torque_Phobos_1", "total_torque_Phobos_2",
        ]

        path = tmp_path / "history.csv"
        coupled_simulator.save_state_history(str(path))
        loaded = pd.read_csv(path, index_col='time')
        assert list(loaded.columns) == list(df.columns) + list(dependent.columns)
        assert_allclose(loaded.index.values, df.index.values)
        assert_allclose(loaded["Phobos_x"].values, df["Phobos_x"].values, rtol=1e-12)


# =============================================================================
# Test: Termination and saving
# =============================================================================

class TestTerminationAndSaving:

    def test_dependent_variable_termination(self, mars):
        """Radial fall stops at the first step below the distance limit."""
        bodies = {"Mars": mars, "Lander": Body("Lander", mass=1.0)}
        distance = DependentVariableRequest("relative_distance", "Lander", "Mars")
        termination = HybridTermination([
            TimeTermination(1.0e6),
            DependentVariableTermination(distance, 9.0e6, use_as_lower_limit=True),
        ])
        settings = TranslationalPropagatorSettings(
            ["Mars"], ["Lander"], [1.0e7, 0.0, 0.0, 0.0, 0.0, 0.0],
            acceleration_models={"Lander": [CentralGravityAcceleration(bodies["Lander"], mars)]},
            termination=termination)
        integrator_settings = IntegratorSettings(initial_step=10.0, maximum_step=60.0,
                                                 relative_tolerance=1e-10,
                                                 absolute_tolerance=1e-10)
        simulator = SingleArcDynamicsSimulator(bodies, integrator_settings, settings)

        history = simulator.state_history
        radii = np.array([np.linalg.norm(state[:3]) for state in history.values()])
        assert radii[-1] < 9.0e6
        assert np.all(radii[:-1] >= 9.0e6)
        assert simulator.termination_details.time == list(history.keys())[-1]
        assert simulator.termination_details.time < 1.0e6
        assert simulator.dependent_variable_history == {}

    def test_save_frequency(self, initial_orientation):
        bodies = {"Phobos": make_phobos()}
        settings = RotationalPropagatorSettings(
            ["Phobos"], np.concatenate([initial_orientation.as_vector(), [0.0, 0.0, MEAN_MOTION]]),
            termination=TimeTermination(7200.0), save_frequency=5)
        simulator = SingleArcDynamicsSimulator(bodies, phobos_integrator_settings(), settings)

        accepted = simulator.integrator.accepted_steps
        expected = 1 + accepted // 5 + (1 if accepted % 5 else 0)
        assert len(simulator.state_history) == expected
        assert list(simulator.state_history.keys())[-1] == 7200.0

    def test_set_integrated_result_disabled(self, initial_orientation):
        bodies = {"Phobos": make_phobos()}
        settings = RotationalPropagatorSettings(
            ["Phobos"], np.concatenate([initial_orientation.as_vector(), [0.0, 0.0, MEAN_MOTION]]),
            termination=TimeTermination(600.0))
        SingleArcDynamicsSimulator(bodies, phobos_integrator_settings(), settings,
                                   set_integrated_result=False)
        assert bodies["Phobos"].rotational_ephemeris is None

    def test_non_finite_torque_fails(self):
        bodies = {"Box": Body("Box", mass=1.0, inertia_tensor=np.eye(3))}
        settings = RotationalPropagatorSettings(
            ["Box"], [1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.1],
            torque_models={"Box": [CustomTorque(lambda t: np.full(3, np.nan))]},
            termination=TimeTermination(10.0))
        simulator = SingleArcDynamicsSimulator(bodies, IntegratorSettings(initial_step=1.0),
                                               settings, run_immediately=False)
        assert simulator.status == SimulatorStatus.INITIALIZED
        with pytest.raises(NonFiniteStateError):
            simulator.integrate_equations_of_motion()
        assert simulator.status == SimulatorStatus.FAILED
        assert bodies["Box"].rotational_ephemeris is None

    def test_step_size_underflow_fails(self):
        bodies = {"Box": Body("Box", mass=1.0, inertia_tensor=np.diag([1.0, 2.0, 3.0]))}
        settings = RotationalPropagatorSettings(
            ["Box"], [1.0, 0.0, 0.0, 0.0, 1.0, 2.0, 0.5],
            termination=TimeTermination(100.0))
        integrator_settings = IntegratorSettings(initial_step=10.0, minimum_step=10.0,
                                                 maximum_step=10.0, relative_tolerance=1e-14,
                                                 absolute_tolerance=1e-14)
        simulator = SingleArcDynamicsSimulator(bodies, integrator_settings, settings,
                                               run_immediately=False)
        with pytest.raises(PropagationError) as info:
            simulator.integrate_equations_of_motion()
        assert isinstance(info.value, StepSizeUnderflowError)
        assert info.value.time == 0.0
        assert simulator.status == SimulatorStatus.FAILED
