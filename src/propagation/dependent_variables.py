"""
===============================================================================
ATTITUDE PROPAGATION - Dependent Variables
===============================================================================
Quantities derived from the propagated state for output and termination.

A ``DependentVariableRequest`` names what to compute (kind, body, optional
secondary body or model name). Requests are resolved once at setup into
closures over the body map and model lists, then evaluated after every
saved step from the committed body states. They never feed back into the
integration.

Kinds and sizes
---------------
    latitude, longitude, heading_angle, flight_path_angle,
    angle_of_attack, sideslip_angle, bank_angle            1  (secondary = central body)
    total_acceleration, single_acceleration               3  (inertial)
    total_torque, single_torque                           3  (body-fixed)
    rotation_matrix_to_body_fixed                         9  (inertial -> body, row-major)
    body_fixed_angular_velocity                           3
    inertial_angular_momentum                             3  (R_to_base @ I @ omega)
    relative_position, relative_velocity                  3  (secondary -> body)
    relative_distance                                     1
===============================================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from core.exceptions import ConfigurationError
from core.frames import AerodynamicAngles, compute_aerodynamic_angles, cross_product_matrix
from core.quaternion import quaternion_to_rotation_matrix
from dynamics.body import Body
from dynamics.environment import AccelerationModel, TorqueModel


class DependentVariableType(Enum):
    LATITUDE = "latitude"
    LONGITUDE = "longitude"
    HEADING_ANGLE = "heading_angle"
    FLIGHT_PATH_ANGLE = "flight_path_angle"
    ANGLE_OF_ATTACK = "angle_of_attack"
    SIDESLIP_ANGLE = "sideslip_angle"
    BANK_ANGLE = "bank_angle"
    TOTAL_ACCELERATION = "total_acceleration"
    SINGLE_ACCELERATION = "single_acceleration"
    TOTAL_TORQUE = "total_torque"
    SINGLE_TORQUE = "single_torque"
    ROTATION_MATRIX_TO_BODY_FIXED = "rotation_matrix_to_body_fixed"
    BODY_FIXED_ANGULAR_VELOCITY = "body_fixed_angular_velocity"
    INERTIAL_ANGULAR_MOMENTUM = "inertial_angular_momentum"
    RELATIVE_POSITION = "relative_position"
    RELATIVE_VELOCITY = "relative_velocity"
    RELATIVE_DISTANCE = "relative_distance"


_ANGLE_TYPES = {
    DependentVariableType.LATITUDE: "latitude",
    DependentVariableType.LONGITUDE: "longitude",
    DependentVariableType.HEADING_ANGLE: "heading_angle",
    DependentVariableType.FLIGHT_PATH_ANGLE: "flight_path_angle",
    DependentVariableType.ANGLE_OF_ATTACK: "angle_of_attack",
    DependentVariableType.SIDESLIP_ANGLE: "sideslip_angle",
    DependentVariableType.BANK_ANGLE: "bank_angle",
}

_SIZES = {
    DependentVariableType.TOTAL_ACCELERATION: 3,
    DependentVariableType.SINGLE_ACCELERATION: 3,
    DependentVariableType.TOTAL_TORQUE: 3,
    DependentVariableType.SINGLE_TORQUE: 3,
    DependentVariableType.ROTATION_MATRIX_TO_BODY_FIXED: 9,
    DependentVariableType.BODY_FIXED_ANGULAR_VELOCITY: 3,
    DependentVariableType.INERTIAL_ANGULAR_MOMENTUM: 3,
    DependentVariableType.RELATIVE_POSITION: 3,
    DependentVariableType.RELATIVE_VELOCITY: 3,
    DependentVariableType.RELATIVE_DISTANCE: 1,
}

_NEEDS_SECONDARY = set(_ANGLE_TYPES) | {
    DependentVariableType.RELATIVE_POSITION,
    DependentVariableType.RELATIVE_VELOCITY,
    DependentVariableType.RELATIVE_DISTANCE,
}

_NEEDS_MODEL = {
    DependentVariableType.SINGLE_ACCELERATION,
    DependentVariableType.SINGLE_TORQUE,
}


@dataclass(frozen=True)
class DependentVariableRequest:
    """
    Descriptor of one dependent variable.

    Attributes
    ----------
    kind : DependentVariableType
        Quantity to compute.
    body : str
        Body the quantity refers to.
    secondary_body : str, optional
        Central body for angles, reference body for relative quantities.
    model_name : str, optional
        Acceleration/torque model name for the single-model kinds.
    """
    kind: DependentVariableType
    body: str
    secondary_body: Optional[str] = None
    model_name: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.kind, DependentVariableType):
            try:
                object.__setattr__(self, "kind", DependentVariableType(self.kind))
            except ValueError:
                raise ConfigurationError(f"Unknown dependent variable kind: {self.kind!r}") from None
        if self.kind in _NEEDS_SECONDARY and self.secondary_body is None:
            raise ConfigurationError(f"Dependent variable '{self.kind.value}' needs a secondary body")
        if self.kind in _NEEDS_MODEL and self.model_name is None:
            raise ConfigurationError(f"Dependent variable '{self.kind.value}' needs a model name")

    @property
    def size(self) -> int:
        return _SIZES.get(self.kind, 1)

    @property
    def label(self) -> str:
        parts = [self.kind.value, self.body]
        if self.secondary_body is not None:
            parts.append(self.secondary_body)
        if self.model_name is not None:
            parts.append(self.model_name)
        return "_".join(parts)

    def column_names(self) -> List[str]:
        if self.size == 1:
            return [self.label]
        return [f"{self.label}_{i}" for i in range(self.size)]


Calculator = Callable[[float], np.ndarray]


def _aerodynamic_angles(body: Body, central_body: Body) -> AerodynamicAngles:
    central_rotation = central_body.rotational_state
    to_base = quaternion_to_rotation_matrix(central_rotation[:4])
    derivative_to_target = (to_base @ cross_product_matrix(central_rotation[4:])).T
    return compute_aerodynamic_angles(
        body.position - central_body.position,
        body.velocity - central_body.velocity,
        to_base.T,
        derivative_to_target,
        body.rotation_matrix_to_target_frame,
    )


def _find_model(models: Sequence, name: str, body: str):
    for model in models:
        if model.name == name:
            return model
    raise ConfigurationError(
        f"No model named '{name}' acts on '{body}'. "
        f"Available: {[m.name for m in models]}"
    )


def create_dependent_variable_calculator(
        request: DependentVariableRequest,
        bodies: Dict[str, Body],
        acceleration_models: Optional[Dict[str, List[AccelerationModel]]] = None,
        torque_models: Optional[Dict[str, List[TorqueModel]]] = None) -> Calculator:
    """
    Resolve a request into a function of time returning a 1-D array.

    Raises
    ------
    ConfigurationError
        Unknown body or model, or a body lacking what the quantity needs.
    """
    acceleration_models = acceleration_models or {}
    torque_models = torque_models or {}
    kind = request.kind

    if request.body not in bodies:
        raise ConfigurationError(f"Dependent variable {request.label}: unknown body '{request.body}'")
    body = bodies[request.body]

    secondary = None
    if request.secondary_body is not None:
        if request.secondary_body not in bodies:
            raise ConfigurationError(
                f"Dependent variable {request.label}: unknown body '{request.secondary_body}'")
        secondary = bodies[request.secondary_body]

    if kind in _ANGLE_TYPES:
        attribute = _ANGLE_TYPES[kind]
        return lambda time: np.array([getattr(_aerodynamic_angles(body, secondary), attribute)])

    if kind == DependentVariableType.TOTAL_ACCELERATION:
        models = acceleration_models.get(request.body, [])
        return lambda time: sum((m.update(time) for m in models), np.zeros(3))

    if kind == DependentVariableType.SINGLE_ACCELERATION:
        model = _find_model(acceleration_models.get(request.body, []), request.model_name, request.body)
        return lambda time: np.asarray(model.update(time), dtype=np.float64)

    if kind == DependentVariableType.TOTAL_TORQUE:
        models = torque_models.get(request.body, [])
        return lambda time: sum((m.update(time) for m in models), np.zeros(3))

    if kind == DependentVariableType.SINGLE_TORQUE:
        model = _find_model(torque_models.get(request.body, []), request.model_name, request.body)
        return lambda time: np.asarray(model.update(time), dtype=np.float64)

    if kind == DependentVariableType.ROTATION_MATRIX_TO_BODY_FIXED:
        return lambda time: body.rotation_matrix_to_target_frame.reshape(-1)

    if kind == DependentVariableType.BODY_FIXED_ANGULAR_VELOCITY:
        return lambda time: body.angular_velocity.copy()

    if kind == DependentVariableType.INERTIAL_ANGULAR_MOMENTUM:
        if body.inertia_tensor is None:
            raise ConfigurationError(f"Body '{body.name}' has no inertia tensor")
        return lambda time: body.rotation_matrix_to_base_frame @ (body.inertia_tensor
                                                                  @ body.angular_velocity)

    if kind == DependentVariableType.RELATIVE_POSITION:
        return lambda time: body.position - secondary.position

    if kind == DependentVariableType.RELATIVE_VELOCITY:
        return lambda time: body.velocity - secondary.velocity

    if kind == DependentVariableType.RELATIVE_DISTANCE:
        return lambda time: np.array([np.linalg.norm(body.position - secondary.position)])

    raise ConfigurationError(f"Unsupported dependent variable kind: {kind}")


class DependentVariableSet:
    """
    Ordered set of requests evaluated together into one output row.

    Parameters
    ----------
    requests : sequence of DependentVariableRequest
        Output order of the variables.
    bodies, acceleration_models, torque_models
        Environment the calculators are resolved against.
    """

    def __init__(self, requests: Sequence[DependentVariableRequest], bodies: Dict[str, Body],
                 acceleration_models: Optional[Dict[str, List[AccelerationModel]]] = None,
                 torque_models: Optional[Dict[str, List[TorqueModel]]] = None):
        self.requests = list(requests)
        self._calculators: Dict[DependentVariableRequest, Calculator] = {}
        for request in self.requests:
            self.add(request, bodies, acceleration_models, torque_models)
        self.size = sum(request.size for request in self.requests)

    def add(self, request, bodies, acceleration_models=None, torque_models=None) -> None:
        """Resolve ``request`` if it is not known yet (output order is unaffected)."""
        if request not in self._calculators:
            self._calculators[request] = create_dependent_variable_calculator(
                request, bodies, acceleration_models, torque_models)

    def evaluate_single(self, request: DependentVariableRequest, time: float) -> np.ndarray:
        return np.atleast_1d(np.asarray(self._calculators[request](time), dtype=np.float64))

    def evaluate(self, time: float) -> np.ndarray:
        """Concatenated values of all output requests, in request order."""
        if not self.requests:
            return np.zeros(0)
        return np.concatenate([self.evaluate_single(request, time) for request in self.requests])

    def column_names(self) -> List[str]:
        names: List[str] = []
        for request in self.requests:
            names.extend(request.column_names())
        return names

    def __len__(self) -> int:
        return len(self.requests)
