"""
===============================================================================
ATTITUDE PROPAGATION - State Derivative Model
===============================================================================
Right-hand side of the equations of motion for one or more state blocks.

Translational block (6 values per body, relative to its central body):

    d/dt [r, v] = [v, sum(a_i)]

Rotational block (7 values per body):

    Euler's equation:
        I * omega_dot = tau - omega x (I * omega)

    Quaternion kinematics (scalar-first, q maps body -> inertial):
        q_dot = 0.5 * q (*) [0, omega]

The inertia tensor is Cholesky-factored once at setup; every evaluation
then solves I * omega_dot = rhs by two triangular solves.

Coupling between blocks
-----------------------
A combined state concatenates the blocks in a caller-defined order. While
one block is evaluated only that block's stage state is written into the
bodies; every other propagated block is seen at its last accepted value.
Rotation-dependent forces therefore see the orientation of the previous
accepted step (one-step-lagged coupling). Bodies that are not propagated
are updated from their ephemerides at the evaluation epoch.

State layout (one body, translational + rotational):
    [x, y, z, vx, vy, vz, qw, qx, qy, qz, wx, wy, wz]
===============================================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Set

import numpy as np
from scipy.linalg import cho_factor, cho_solve

from core.exceptions import ConfigurationError
from core.quaternion import quaternion_derivative
from dynamics.body import Body
from dynamics.environment import AccelerationModel, TorqueModel

logger = logging.getLogger(__name__)

TRANSLATIONAL_STATE_SIZE = 6
ROTATIONAL_STATE_SIZE = 7


def _resolve_bodies(bodies: Dict[str, Body], names: Sequence[str]) -> List[Body]:
    missing = [name for name in names if name not in bodies]
    if missing:
        raise ConfigurationError(f"Unknown bodies to propagate: {missing}")
    if len(set(names)) != len(names):
        raise ConfigurationError(f"Duplicate bodies to propagate: {list(names)}")
    return [bodies[name] for name in names]


# =============================================================================
# SINGLE-BLOCK DERIVATIVES
# =============================================================================

class SingleStateTypeDerivative(ABC):
    """
    Derivative of one state block (one state type, one or more bodies).

    Subclasses define how a block state is written into the bodies
    (``stage``) and how its derivative is computed (``compute``).
    """

    state_type = ""
    state_size_per_body = 0

    def __init__(self, bodies: Dict[str, Body], bodies_to_propagate: Sequence[str]):
        if not bodies_to_propagate:
            raise ConfigurationError(f"No bodies given for {self.state_type} propagation")
        self.bodies_to_propagate = list(bodies_to_propagate)
        self.propagated_bodies = _resolve_bodies(bodies, self.bodies_to_propagate)

    @property
    def state_size(self) -> int:
        return self.state_size_per_body * len(self.propagated_bodies)

    def _body_slice(self, index: int) -> slice:
        start = index * self.state_size_per_body
        return slice(start, start + self.state_size_per_body)

    @abstractmethod
    def stage(self, state: np.ndarray) -> None:
        """Write the block state into the current state of its bodies."""

    @abstractmethod
    def compute(self, time: float, state: np.ndarray) -> np.ndarray:
        """Block derivative, assuming ``stage(state)`` has been called."""

    def postprocess(self, state: np.ndarray) -> np.ndarray:
        """Adjust an accepted block state (e.g. renormalization)."""
        return state


class TranslationalStateDerivative(SingleStateTypeDerivative):
    """
    Cowell translational dynamics relative to central bodies.

    Args:
        bodies: Body map.
        bodies_to_propagate: Names of the propagated bodies.
        central_bodies: Name of the central body of each propagated body.
                        A name that is not in the body map denotes the
                        global origin.
        acceleration_models: Acceleration providers per propagated body.
    """

    state_type = "translational"
    state_size_per_body = TRANSLATIONAL_STATE_SIZE

    def __init__(self, bodies: Dict[str, Body], bodies_to_propagate: Sequence[str],
                 central_bodies: Sequence[str],
                 acceleration_models: Dict[str, List[AccelerationModel]]):
        super().__init__(bodies, bodies_to_propagate)
        if len(central_bodies) != len(self.bodies_to_propagate):
            raise ConfigurationError(
                f"Got {len(central_bodies)} central bodies for "
                f"{len(self.bodies_to_propagate)} propagated bodies"
            )
        self.central_bodies = list(central_bodies)
        self._central_body_objects: List[Optional[Body]] = [
            bodies.get(name) for name in self.central_bodies
        ]

        unknown = set(acceleration_models) - set(self.bodies_to_propagate)
        if unknown:
            raise ConfigurationError(
                f"Acceleration models given for non-propagated bodies: {sorted(unknown)}"
            )
        self.acceleration_models = {
            name: list(acceleration_models.get(name, [])) for name in self.bodies_to_propagate
        }

    def central_body_state(self, index: int) -> np.ndarray:
        central = self._central_body_objects[index]
        if central is None:
            return np.zeros(6)
        return central.state

    def stage(self, state: np.ndarray) -> None:
        for index, body in enumerate(self.propagated_bodies):
            body.set_state(state[self._body_slice(index)] + self.central_body_state(index))

    def total_acceleration(self, body_name: str, time: float) -> np.ndarray:
        acceleration = np.zeros(3)
        for model in self.acceleration_models[body_name]:
            acceleration += model.update(time)
        return acceleration

    def compute(self, time: float, state: np.ndarray) -> np.ndarray:
        derivative = np.zeros_like(state)
        for index, name in enumerate(self.bodies_to_propagate):
            block = self._body_slice(index)
            body_state = state[block]
            derivative[block] = np.concatenate(
                [body_state[3:], self.total_acceleration(name, time)]
            )
        return derivative


class RotationalStateDerivative(SingleStateTypeDerivative):
    """
    Rigid-body rotational dynamics with quaternion kinematics.

    Args:
        bodies: Body map.
        bodies_to_propagate: Names of the propagated bodies; each must have
                             an inertia tensor.
        torque_models: Torque providers per propagated body. A body with no
                       entry is torque-free.
    """

    state_type = "rotational"
    state_size_per_body = ROTATIONAL_STATE_SIZE

    def __init__(self, bodies: Dict[str, Body], bodies_to_propagate: Sequence[str],
                 torque_models: Optional[Dict[str, List[TorqueModel]]] = None):
        super().__init__(bodies, bodies_to_propagate)
        torque_models = torque_models or {}

        unknown = set(torque_models) - set(self.bodies_to_propagate)
        if unknown:
            raise ConfigurationError(
                f"Torque models given for non-propagated bodies: {sorted(unknown)}"
            )
        self.torque_models = {
            name: list(torque_models.get(name, [])) for name in self.bodies_to_propagate
        }

        # Factor each inertia tensor once; inertia is constant during a run
        self._inertia_factors = []
        for body in self.propagated_bodies:
            if body.inertia_tensor is None:
                raise ConfigurationError(f"Body '{body.name}' has no inertia tensor")
            self._inertia_factors.append(cho_factor(body.inertia_tensor))

    def stage(self, state: np.ndarray) -> None:
        for index, body in enumerate(self.propagated_bodies):
            body.set_rotational_state(state[self._body_slice(index)])

    def total_torque(self, body_name: str, time: float) -> np.ndarray:
        torque = np.zeros(3)
        for model in self.torque_models[body_name]:
            torque += model.update(time)
        return torque

    def compute(self, time: float, state: np.ndarray) -> np.ndarray:
        derivative = np.zeros_like(state)
        for index, body in enumerate(self.propagated_bodies):
            block = self._body_slice(index)
            q = state[block][:4]
            omega = state[block][4:]

            torque = self.total_torque(body.name, time)
            gyroscopic = np.cross(omega, body.inertia_tensor @ omega)
            omega_dot = cho_solve(self._inertia_factors[index], torque - gyroscopic,
                                  check_finite=False)

            derivative[block] = np.concatenate([quaternion_derivative(q, omega), omega_dot])
        return derivative

    def postprocess(self, state: np.ndarray) -> np.ndarray:
        state = state.copy()
        for index in range(len(self.propagated_bodies)):
            start = index * ROTATIONAL_STATE_SIZE
            q = state[start:start + 4]
            state[start:start + 4] = q / np.linalg.norm(q)
        return state


# =============================================================================
# MULTI-BLOCK MODEL
# =============================================================================

class StateDerivativeModel:
    """
    Combined derivative of a concatenation of state blocks.

    Args:
        bodies: Body map shared with the environment models.
        blocks: State blocks in the order of the concatenated state.
    """

    def __init__(self, bodies: Dict[str, Body], blocks: Sequence[SingleStateTypeDerivative]):
        if not blocks:
            raise ConfigurationError("At least one state block is required")
        self.bodies = bodies
        self.blocks = list(blocks)

        self.block_slices: List[slice] = []
        start = 0
        for block in self.blocks:
            self.block_slices.append(slice(start, start + block.state_size))
            start += block.state_size
        self.state_size = start

        translational: Set[str] = set()
        rotational: Set[str] = set()
        for block in self.blocks:
            target = translational if block.state_type == "translational" else rotational
            overlap = target.intersection(block.bodies_to_propagate)
            if overlap:
                raise ConfigurationError(
                    f"Bodies propagated twice in {block.state_type} blocks: {sorted(overlap)}"
                )
            target.update(block.bodies_to_propagate)
        self.translationally_propagated = translational
        self.rotationally_propagated = rotational

        logger.debug("State derivative model: %d block(s), state size %d",
                     len(self.blocks), self.state_size)

    def split(self, state: np.ndarray) -> List[np.ndarray]:
        return [state[block_slice] for block_slice in self.block_slices]

    # -------------------------------------------------------------------------
    # ENVIRONMENT
    # -------------------------------------------------------------------------

    def _ephemeris_origin_state(self, body: Body, time: float, depth: int = 0) -> Optional[np.ndarray]:
        # Inertial state of the origin of ``body``'s ephemeris at ``time``
        origin = self.bodies.get(body.ephemeris.frame_origin)
        if origin is None or origin is body:
            return None
        if origin.name in self.translationally_propagated or origin.ephemeris is None:
            return origin.state
        if depth > len(self.bodies):
            raise ConfigurationError(f"Circular ephemeris origins involving '{body.name}'")
        state = origin.ephemeris.cartesian_state(time)
        origin_of_origin = self._ephemeris_origin_state(origin, time, depth + 1)
        return state if origin_of_origin is None else state + origin_of_origin

    def update_environment(self, time: float) -> None:
        """Set non-propagated body states from their ephemerides at ``time``."""
        for name, body in self.bodies.items():
            translational = name not in self.translationally_propagated
            rotational = name not in self.rotationally_propagated
            if not (translational or rotational):
                continue
            origin_state = None
            if translational and body.ephemeris is not None:
                origin_state = self._ephemeris_origin_state(body, time)
            body.update_from_ephemerides(time, translational, rotational, origin_state)

    # -------------------------------------------------------------------------
    # EVALUATION
    # -------------------------------------------------------------------------

    def compute(self, time: float, state: np.ndarray) -> np.ndarray:
        """
        Derivative of the concatenated state at ``time``.

        Args:
            time: Evaluation epoch [s].
            state: Concatenated stage state (state_size,).

        Returns:
            Concatenated derivative (state_size,).
        """
        self.update_environment(time)

        derivative = np.zeros(self.state_size)
        for block, block_slice in zip(self.blocks, self.block_slices):
            block_state = state[block_slice]
            block.stage(block_state)
            try:
                derivative[block_slice] = block.compute(time, block_state)
            finally:
                for body in block.propagated_bodies:
                    body.restore_committed_states()
        return derivative

    def __call__(self, time: float, state: np.ndarray) -> np.ndarray:
        return self.compute(time, state)

    def postprocess_state(self, state: np.ndarray) -> np.ndarray:
        """Apply each block's post-processing to an accepted state."""
        processed = np.array(state, dtype=np.float64)
        for block, block_slice in zip(self.blocks, self.block_slices):
            processed[block_slice] = block.postprocess(processed[block_slice])
        return processed

    def commit(self, time: float, state: np.ndarray) -> None:
        """
        Make an accepted state the environment state of all bodies.

        Non-propagated bodies are moved to ``time`` first so that relative
        states are converted with the central-body state of the same epoch.
        """
        self.update_environment(time)
        for block, block_slice in zip(self.blocks, self.block_slices):
            block.stage(state[block_slice])
        for block in self.blocks:
            for body in block.propagated_bodies:
                body.commit_states()

    def __repr__(self) -> str:
        blocks = ", ".join(f"{b.state_type}{b.bodies_to_propagate}" for b in self.blocks)
        return f"StateDerivativeModel([{blocks}], size={self.state_size})"
