"""
===============================================================================
ATTITUDE PROPAGATION - Termination, Dependent Variable and Settings Tests
===============================================================================
Tests for the declarative side of a propagation:
  - Termination variants, hybrid any/all logic, exact final-time step limit
  - Dependent variable requests, sizes, labels and calculators
  - Propagator settings validation and quaternion normalization
  - StateHistory storage
===============================================================================
"""

import sys
import os
import logging

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pytest
from numpy.testing import assert_allclose

from core.constants import MARS_MU
from core.data_structures import StateHistory
from core.exceptions import ConfigurationError
from dynamics.body import Body
from dynamics.environment import CentralGravityAcceleration, ConstantTorque
from propagation.dependent_variables import (
    DependentVariableRequest,
    DependentVariableSet,
    DependentVariableType,
)
from propagation.propagator_settings import (
    MultiTypePropagatorSettings,
    RotationalPropagatorSettings,
    TranslationalPropagatorSettings,
    as_multi_type,
)
from propagation.termination import (
    CustomTermination,
    DependentVariableTermination,
    HybridTermination,
    TerminationDetails,
    TimeTermination,
    dependent_variable_requests,
    describe,
    evaluate_termination,
    time_step_limit,
)


# =============================================================================
# Fixtures
# =============================================================================

DISTANCE = DependentVariableRequest("relative_distance", "Phobos", "Mars")
POSITION = DependentVariableRequest("relative_position", "Phobos", "Mars")


@pytest.fixture
def mars_phobos():
    """Mars at the origin and Phobos at 9376 km with a set attitude."""
    mars = Body("Mars", gravitational_parameter=MARS_MU)
    phobos = Body("Phobos", mass=1.0659e16, inertia_tensor=np.diag([1.0, 2.0, 3.0]))
    latitude = 0.3
    radius = 9376.0e3
    phobos.set_state(np.array([radius * np.cos(latitude), 0.0, radius * np.sin(latitude),
                               0.0, 2137.0, 0.0]))
    phobos.set_rotational_state(np.array([1.0, 0.0, 0.0, 0.0, 0.1, -0.2, 0.3]))
    return {"Mars": mars, "Phobos": phobos}


# =============================================================================
# Test: Termination
# =============================================================================

class TestTermination:

    def test_time_forward(self):
        settings = TimeTermination(100.0)
        assert not evaluate_termination(settings, 99.9, None)
        assert evaluate_termination(settings, 100.0, None)
        assert evaluate_termination(settings, 100.0 - 1e-12, None)
        assert evaluate_termination(settings, 150.0, None)

    def test_time_backward(self):
        settings = TimeTermination(-50.0)
        assert not evaluate_termination(settings, -49.0, None, direction=-1.0)
        assert evaluate_termination(settings, -50.0, None, direction=-1.0)

    def test_custom(self):
        settings = CustomTermination(lambda t, y: y[0] < 0.0)
        assert not evaluate_termination(settings, 0.0, np.array([1.0]))
        assert evaluate_termination(settings, 0.0, np.array([-1.0]))

    def test_dependent_variable_lower_limit(self):
        settings = DependentVariableTermination(DISTANCE, 3.4e6, use_as_lower_limit=True)
        assert evaluate_termination(settings, 0.0, None, lambda request: np.array([3.0e6]))
        assert not evaluate_termination(settings, 0.0, None, lambda request: np.array([4.0e6]))

    def test_dependent_variable_upper_limit_component(self):
        settings = DependentVariableTermination(POSITION, 10.0, use_as_lower_limit=False,
                                                component=2)
        assert evaluate_termination(settings, 0.0, None, lambda request: np.array([0.0, 0.0, 11.0]))
        assert not evaluate_termination(settings, 0.0, None,
                                        lambda request: np.array([20.0, 20.0, 9.0]))

    def test_vector_variable_needs_component(self):
        settings = DependentVariableTermination(POSITION, 10.0, use_as_lower_limit=False)
        with pytest.raises(ConfigurationError, match="component"):
            evaluate_termination(settings, 0.0, None, lambda request: np.zeros(3))

    def test_dependent_variable_needs_evaluator(self):
        settings = DependentVariableTermination(DISTANCE, 1.0, use_as_lower_limit=True)
        with pytest.raises(ConfigurationError):
            evaluate_termination(settings, 0.0, None)

    def test_hybrid_any_and_all(self):
        conditions = [TimeTermination(100.0), CustomTermination(lambda t, y: y[0] > 5.0)]
        any_true = HybridTermination(conditions, fulfill_single_condition=True)
        all_true = HybridTermination(conditions, fulfill_single_condition=False)
        state = np.array([6.0])
        assert evaluate_termination(any_true, 10.0, state)
        assert not evaluate_termination(all_true, 10.0, state)
        assert evaluate_termination(all_true, 100.0, state)

    def test_hybrid_requires_conditions(self):
        with pytest.raises(ConfigurationError):
            HybridTermination([])

    def test_unsupported_settings(self):
        with pytest.raises(TypeError):
            evaluate_termination("tomorrow", 0.0, None)


class TestTimeStepLimit:

    def test_exact_final_time(self):
        assert time_step_limit(TimeTermination(100.0), 40.0) == 60.0
        assert time_step_limit(TimeTermination(-100.0), -40.0, direction=-1.0) == -60.0

    def test_not_exact(self):
        assert time_step_limit(TimeTermination(100.0, terminate_exactly=False), 40.0) is None

    def test_final_time_passed(self):
        assert time_step_limit(TimeTermination(100.0), 100.0) is None

    def test_hybrid(self):
        settings = HybridTermination([
            DependentVariableTermination(DISTANCE, 3.4e6, True),
            TimeTermination(500.0),
            TimeTermination(200.0),
        ])
        assert time_step_limit(settings, 50.0) == 150.0
        all_true = HybridTermination([TimeTermination(200.0)], fulfill_single_condition=False)
        assert time_step_limit(all_true, 50.0) is None

    def test_requests_and_description(self):
        settings = HybridTermination([
            TimeTermination(86400.0),
            HybridTermination([DependentVariableTermination(DISTANCE, 3.4e6, True),
                               DependentVariableTermination(POSITION, 1.0, False, 0)],
                              fulfill_single_condition=False),
        ])
        assert list(dependent_variable_requests(settings)) == [DISTANCE, POSITION]
        assert describe(settings) == ("(time >= 86400.0 or (relative_distance < 3400000.0 "
                                      "and relative_position > 1.0))")
        details = TerminationDetails(settings.conditions[0], 86400.0, True)
        assert details.description == "time >= 86400.0"


# =============================================================================
# Test: Dependent variables
# =============================================================================

class TestDependentVariableRequest:

    def test_string_kind_converted(self):
        request = DependentVariableRequest("total_torque", "Phobos")
        assert request.kind is DependentVariableType.TOTAL_TORQUE
        assert request.size == 3
        assert request.column_names() == ["total_torque_Phobos_0", "total_torque_Phobos_1",
                                          "total_torque_Phobos_2"]

    def test_scalar_label(self):
        assert DISTANCE.size == 1
        assert DISTANCE.column_names() == ["relative_distance_Phobos_Mars"]

    def test_rotation_matrix_size(self):
        assert DependentVariableRequest("rotation_matrix_to_body_fixed", "Phobos").size == 9

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError, match="Unknown dependent variable"):
            DependentVariableRequest("dynamic_pressure", "Phobos")

    def test_angle_needs_central_body(self):
        with pytest.raises(ConfigurationError, match="secondary body"):
            DependentVariableRequest("latitude", "Phobos")

    def test_single_model_needs_name(self):
        with pytest.raises(ConfigurationError, match="model name"):
            DependentVariableRequest("single_acceleration", "Phobos")

    def test_hashable(self):
        assert DependentVariableRequest("relative_distance", "Phobos", "Mars") == DISTANCE
        assert len({DISTANCE, DependentVariableRequest("relative_distance", "Phobos", "Mars")}) == 1


class TestDependentVariableSet:

    def test_evaluate_geometry(self, mars_phobos):
        requests = [
            DISTANCE,
            DependentVariableRequest("latitude", "Phobos", "Mars"),
            DependentVariableRequest("longitude", "Phobos", "Mars"),
            DependentVariableRequest("body_fixed_angular_velocity", "Phobos"),
        ]
        variables = DependentVariableSet(requests, mars_phobos)
        values = variables.evaluate(0.0)
        assert variables.size == 6
        assert len(variables) == 4
        assert_allclose(values[0], 9376.0e3, rtol=1e-14)
        assert_allclose(values[1], 0.3, atol=1e-14)
        assert_allclose(values[2], 0.0, atol=1e-14)
        assert_allclose(values[3:], [0.1, -0.2, 0.3])
        assert variables.column_names()[:2] == ["relative_distance_Phobos_Mars",
                                                "latitude_Phobos_Mars"]

    def test_model_variables(self, mars_phobos):
        phobos, mars = mars_phobos["Phobos"], mars_phobos["Mars"]
        gravity = CentralGravityAcceleration(phobos, mars)
        torque = ConstantTorque([1.0, 2.0, 3.0], name="thruster")
        requests = [
            DependentVariableRequest("single_acceleration", "Phobos", model_name=gravity.name),
            DependentVariableRequest("total_acceleration", "Phobos"),
            DependentVariableRequest("single_torque", "Phobos", model_name="thruster"),
            DependentVariableRequest("total_torque", "Phobos"),
        ]
        variables = DependentVariableSet(requests, mars_phobos,
                                         {"Phobos": [gravity]}, {"Phobos": [torque]})
        values = variables.evaluate(0.0)
        assert_allclose(values[:3], values[3:6])
        assert_allclose(np.linalg.norm(values[:3]), MARS_MU / 9376.0e3 ** 2, rtol=1e-12)
        assert_allclose(values[6:9], [1.0, 2.0, 3.0])
        assert_allclose(values[9:], [1.0, 2.0, 3.0])

    def test_angular_momentum_and_rotation_matrix(self, mars_phobos):
        requests = [
            DependentVariableRequest("inertial_angular_momentum", "Phobos"),
            DependentVariableRequest("rotation_matrix_to_body_fixed", "Phobos"),
        ]
        values = DependentVariableSet(requests, mars_phobos).evaluate(0.0)
        assert_allclose(values[:3], [0.1, -0.4, 0.9])
        assert_allclose(values[3:], np.eye(3).reshape(-1))

    def test_unknown_model(self, mars_phobos):
        request = DependentVariableRequest("single_torque", "Phobos", model_name="missing")
        with pytest.raises(ConfigurationError, match="No model named"):
            DependentVariableSet([request], mars_phobos)

    def test_unknown_body(self, mars_phobos):
        with pytest.raises(ConfigurationError, match="unknown body"):
            DependentVariableSet([DependentVariableRequest("total_torque", "Deimos")], mars_phobos)

    def test_angular_momentum_needs_inertia(self, mars_phobos):
        request = DependentVariableRequest("inertial_angular_momentum", "Mars")
        with pytest.raises(ConfigurationError, match="inertia"):
            DependentVariableSet([request], mars_phobos)

    def test_empty_set(self, mars_phobos):
        variables = DependentVariableSet([], mars_phobos)
        assert variables.size == 0
        assert variables.evaluate(0.0).shape == (0,)


# =============================================================================
# Test: Propagator settings
# =============================================================================

class TestPropagatorSettings:

    def test_rotational_quaternion_normalized(self, caplog):
        with caplog.at_level(logging.WARNING):
            settings = RotationalPropagatorSettings(["Phobos"], [2.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1e-4])
        assert_allclose(settings.initial_states, [1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1e-4])
        assert "normalizing" in caplog.text

    def test_rotational_zero_quaternion(self):
        with pytest.raises(ConfigurationError, match="zero norm"):
            RotationalPropagatorSettings(["Phobos"], np.zeros(7))

    def test_rotational_wrong_size(self):
        with pytest.raises(ConfigurationError, match="expected 14"):
            RotationalPropagatorSettings(["Phobos", "Deimos"], np.zeros(7))

    def test_translational_non_finite(self):
        with pytest.raises(ConfigurationError, match="not finite"):
            TranslationalPropagatorSettings(["Mars"], ["Phobos"], [np.nan, 0, 0, 0, 0, 0])

    def test_translational_central_body_count(self):
        with pytest.raises(ConfigurationError):
            TranslationalPropagatorSettings(["Mars", "Mars"], ["Phobos"], np.zeros(6))

    def test_multi_type_concatenation(self, mars_phobos):
        torque = ConstantTorque([0.0, 0.0, 1.0])
        translational = TranslationalPropagatorSettings(["Mars"], ["Phobos"], np.arange(6.0))
        rotational = RotationalPropagatorSettings(["Phobos"], [1.0, 0, 0, 0, 0, 0, 0],
                                                  torque_models={"Phobos": [torque]})
        settings = MultiTypePropagatorSettings([translational, rotational], TimeTermination(10.0))
        assert settings.state_size == 13
        assert_allclose(settings.initial_states[:6], np.arange(6.0))
        assert settings.torque_models == {"Phobos": [torque]}
        assert settings.acceleration_models == {}
        blocks = settings.create_state_derivatives(mars_phobos)
        assert [block.state_type for block in blocks] == ["translational", "rotational"]

    def test_multi_type_validation(self):
        block = RotationalPropagatorSettings(["Phobos"], [1.0, 0, 0, 0, 0, 0, 0])
        with pytest.raises(ConfigurationError):
            MultiTypePropagatorSettings([], TimeTermination(1.0))
        with pytest.raises(ConfigurationError):
            MultiTypePropagatorSettings([block], None)
        with pytest.raises(ConfigurationError):
            MultiTypePropagatorSettings([block], TimeTermination(1.0), save_frequency=0)

    def test_as_multi_type(self):
        block = RotationalPropagatorSettings(["Phobos"], [1.0, 0, 0, 0, 0, 0, 0],
                                             termination=TimeTermination(5.0), save_frequency=3)
        wrapped = as_multi_type(block)
        assert wrapped.propagator_settings == [block]
        assert wrapped.save_frequency == 3
        assert as_multi_type(wrapped) is wrapped
        with pytest.raises(ConfigurationError):
            as_multi_type(object())


# =============================================================================
# Test: StateHistory
# =============================================================================

class TestStateHistory:

    def test_append_and_read(self):
        history = StateHistory(2, initial_capacity=2)
        for i in range(5):
            history.append(float(i), np.array([i, 2.0 * i]))
        times, states = history.to_array()
        assert len(history) == 5
        assert_allclose(times, np.arange(5.0))
        assert_allclose(states[:, 1], 2.0 * np.arange(5.0))
        epoch, state = history.latest()
        assert epoch == 4.0
        assert_allclose(state, [4.0, 8.0])

    def test_backward_history_reads_ascending(self):
        history = StateHistory(1)
        for t in [0.0, -1.0, -2.0]:
            history.append(t, np.array([t]))
        times, states = history.to_array()
        assert_allclose(times, [-2.0, -1.0, 0.0])
        assert list(history.as_dict()) == [-2.0, -1.0, 0.0]
        range_times, _ = history.get_range(-1.5, 0.0)
        assert_allclose(range_times, [-1.0, 0.0])

    def test_rejects_bad_epochs(self):
        history = StateHistory(1)
        history.append(0.0, np.array([0.0]))
        history.append(1.0, np.array([0.0]))
        with pytest.raises(ValueError, match="Duplicate"):
            history.append(1.0, np.array([0.0]))
        with pytest.raises(ValueError, match="monotonic"):
            history.append(0.5, np.array([0.0]))

    def test_rejects_bad_shape(self):
        with pytest.raises(ValueError):
            StateHistory(3).append(0.0, np.zeros(2))

    def test_latest_on_empty(self):
        with pytest.raises(IndexError):
            StateHistory(3).latest()
