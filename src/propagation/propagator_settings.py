"""
===============================================================================
ATTITUDE PROPAGATION - Propagator Settings
===============================================================================
What to propagate: one settings object per state block, combined by
``MultiTypePropagatorSettings`` into a single concatenated state that
shares one integrator and one step-size decision.

    TranslationalPropagatorSettings  Cowell states relative to central bodies
    RotationalPropagatorSettings     Quaternion + body-frame angular velocity
    MultiTypePropagatorSettings      Ordered list of the above

Block states are concatenated in list order; within a block, bodies are
concatenated in ``bodies_to_propagate`` order.
===============================================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from core.exceptions import ConfigurationError
from dynamics.body import Body
from dynamics.environment import AccelerationModel, TorqueModel
from dynamics.state_derivative import (
    ROTATIONAL_STATE_SIZE,
    TRANSLATIONAL_STATE_SIZE,
    RotationalStateDerivative,
    SingleStateTypeDerivative,
    TranslationalStateDerivative,
)
from propagation.dependent_variables import DependentVariableRequest
from propagation.termination import TerminationSettings

logger = logging.getLogger(__name__)

_QUATERNION_NORM_TOLERANCE = 1.0e-10


def _validate_initial_states(initial_states, size_per_body: int, bodies: Sequence[str],
                             state_type: str) -> np.ndarray:
    states = np.asarray(initial_states, dtype=np.float64).reshape(-1)
    expected = size_per_body * len(bodies)
    if states.shape[0] != expected:
        raise ConfigurationError(
            f"{state_type.capitalize()} initial state has {states.shape[0]} elements, "
            f"expected {expected} for bodies {list(bodies)}"
        )
    if not np.all(np.isfinite(states)):
        raise ConfigurationError(f"{state_type.capitalize()} initial state is not finite")
    return states


@dataclass
class TranslationalPropagatorSettings:
    """
    Translational (Cowell) propagation of one or more bodies.

    Attributes
    ----------
    central_bodies : list of str
        Central body of each propagated body; the state is relative to it.
    bodies_to_propagate : list of str
        Propagated bodies.
    initial_states : np.ndarray
        Concatenated initial Cartesian states (6 per body).
    acceleration_models : dict
        Acceleration providers per propagated body.
    termination : TerminationSettings, optional
        Used when this block is propagated on its own.
    dependent_variables : list of DependentVariableRequest
        Saved with every recorded step.
    save_frequency : int
        Record every n-th accepted step (the final step is always recorded).
    """
    central_bodies: List[str]
    bodies_to_propagate: List[str]
    initial_states: np.ndarray
    acceleration_models: Dict[str, List[AccelerationModel]] = field(default_factory=dict)
    termination: Optional[TerminationSettings] = None
    dependent_variables: List[DependentVariableRequest] = field(default_factory=list)
    save_frequency: int = 1

    state_type = "translational"

    def __post_init__(self):
        self.bodies_to_propagate = list(self.bodies_to_propagate)
        self.central_bodies = list(self.central_bodies)
        if len(self.central_bodies) != len(self.bodies_to_propagate):
            raise ConfigurationError(
                f"Got {len(self.central_bodies)} central bodies for "
                f"{len(self.bodies_to_propagate)} propagated bodies"
            )
        self.initial_states = _validate_initial_states(
            self.initial_states, TRANSLATIONAL_STATE_SIZE, self.bodies_to_propagate,
            self.state_type)

    @property
    def state_size(self) -> int:
        return TRANSLATIONAL_STATE_SIZE * len(self.bodies_to_propagate)

    def create_state_derivative(self, bodies: Dict[str, Body]) -> TranslationalStateDerivative:
        return TranslationalStateDerivative(bodies, self.bodies_to_propagate,
                                            self.central_bodies, self.acceleration_models)


@dataclass
class RotationalPropagatorSettings:
    """
    Rotational propagation of one or more bodies.

    Attributes
    ----------
    bodies_to_propagate : list of str
        Propagated bodies; each needs an inertia tensor.
    initial_states : np.ndarray
        Concatenated initial rotational states (7 per body): quaternion
        body -> inertial (w, x, y, z) and body-frame angular velocity.
        Quaternions are normalized on input.
    torque_models : dict
        Torque providers per propagated body.
    termination, dependent_variables, save_frequency
        As for ``TranslationalPropagatorSettings``.
    """
    bodies_to_propagate: List[str]
    initial_states: np.ndarray
    torque_models: Dict[str, List[TorqueModel]] = field(default_factory=dict)
    termination: Optional[TerminationSettings] = None
    dependent_variables: List[DependentVariableRequest] = field(default_factory=list)
    save_frequency: int = 1

    state_type = "rotational"

    def __post_init__(self):
        self.bodies_to_propagate = list(self.bodies_to_propagate)
        states = _validate_initial_states(
            self.initial_states, ROTATIONAL_STATE_SIZE, self.bodies_to_propagate, self.state_type)

        for index, name in enumerate(self.bodies_to_propagate):
            start = index * ROTATIONAL_STATE_SIZE
            norm = np.linalg.norm(states[start:start + 4])
            if norm < 1.0e-10:
                raise ConfigurationError(f"Initial quaternion of '{name}' has zero norm")
            if abs(norm - 1.0) > _QUATERNION_NORM_TOLERANCE:
                logger.warning("Initial quaternion of '%s' has norm %.12f; normalizing",
                               name, norm)
            states[start:start + 4] /= norm
        self.initial_states = states

    @property
    def state_size(self) -> int:
        return ROTATIONAL_STATE_SIZE * len(self.bodies_to_propagate)

    def create_state_derivative(self, bodies: Dict[str, Body]) -> RotationalStateDerivative:
        return RotationalStateDerivative(bodies, self.bodies_to_propagate, self.torque_models)


SingleTypePropagatorSettings = Union[TranslationalPropagatorSettings, RotationalPropagatorSettings]


@dataclass
class MultiTypePropagatorSettings:
    """
    Simultaneous propagation of several state blocks.

    The termination, dependent variables and save frequency of the blocks
    themselves are ignored; the combined settings define them.
    """
    propagator_settings: List[SingleTypePropagatorSettings]
    termination: TerminationSettings
    dependent_variables: List[DependentVariableRequest] = field(default_factory=list)
    save_frequency: int = 1

    def __post_init__(self):
        if not self.propagator_settings:
            raise ConfigurationError("Multi-type propagation needs at least one block")
        if self.termination is None:
            raise ConfigurationError("Propagation needs termination settings")
        if int(self.save_frequency) < 1:
            raise ConfigurationError(f"Save frequency must be >= 1, got {self.save_frequency}")
        self.save_frequency = int(self.save_frequency)

    @property
    def state_size(self) -> int:
        return sum(settings.state_size for settings in self.propagator_settings)

    @property
    def initial_states(self) -> np.ndarray:
        return np.concatenate([settings.initial_states for settings in self.propagator_settings])

    @property
    def acceleration_models(self) -> Dict[str, List[AccelerationModel]]:
        models: Dict[str, List[AccelerationModel]] = {}
        for settings in self.propagator_settings:
            for name, body_models in getattr(settings, "acceleration_models", {}).items():
                models.setdefault(name, []).extend(body_models)
        return models

    @property
    def torque_models(self) -> Dict[str, List[TorqueModel]]:
        models: Dict[str, List[TorqueModel]] = {}
        for settings in self.propagator_settings:
            for name, body_models in getattr(settings, "torque_models", {}).items():
                models.setdefault(name, []).extend(body_models)
        return models

    def create_state_derivatives(self, bodies: Dict[str, Body]) -> List[SingleStateTypeDerivative]:
        return [settings.create_state_derivative(bodies) for settings in self.propagator_settings]


PropagatorSettings = Union[SingleTypePropagatorSettings, MultiTypePropagatorSettings]


def as_multi_type(settings: PropagatorSettings) -> MultiTypePropagatorSettings:
    """Wrap single-block settings so the simulator handles one shape only."""
    if isinstance(settings, MultiTypePropagatorSettings):
        return settings
    if isinstance(settings, (TranslationalPropagatorSettings, RotationalPropagatorSettings)):
        return MultiTypePropagatorSettings(
            propagator_settings=[settings],
            termination=settings.termination,
            dependent_variables=list(settings.dependent_variables),
            save_frequency=settings.save_frequency,
        )
    raise ConfigurationError(f"Unsupported propagator settings: {type(settings).__name__}")
