"""
===============================================================================
ATTITUDE PROPAGATION - Body Model
===============================================================================
Physical properties and current environment state of a body taking part in
a propagation (propagated body, central body or perturbing body).

A body owns:
    - mass and 3x3 inertia tensor (body-fixed axes), validated on assignment
    - a translational ephemeris and a rotational ephemeris (either may be
      absent, e.g. for a body whose orientation is never needed)
    - an optional gravitational parameter
    - its *current* state: the inertial Cartesian state and the rotational
      state that acceleration and torque models read during a derivative
      evaluation

The current state has two layers. ``set_state`` / ``set_rotational_state``
write the working value seen by the models; ``commit_states`` records it as
the state of the last accepted integration step and
``restore_committed_states`` returns to that value. The derivative model
uses the pair to stage one equation block at a time while every other block
is seen at its last accepted value.
===============================================================================
"""

import logging
from typing import Optional

import numpy as np

from core.exceptions import ConfigurationError
from core.quaternion import quaternion_to_rotation_matrix
from dynamics.ephemeris import Ephemeris, RotationalEphemeris

logger = logging.getLogger(__name__)

_SYMMETRY_TOLERANCE = 1e-9


def validate_inertia_tensor(inertia_tensor) -> np.ndarray:
    """
    Check that an inertia tensor is 3x3, symmetric and positive-definite.

    Returns
    -------
    np.ndarray
        The tensor as a float64 array.

    Raises
    ------
    ConfigurationError
        If any of the three conditions is violated.
    """
    inertia = np.asarray(inertia_tensor, dtype=np.float64)

    if inertia.shape != (3, 3):
        raise ConfigurationError(f"Inertia tensor must be 3x3, got shape {inertia.shape}")

    scale = max(float(np.max(np.abs(inertia))), 1.0e-300)
    if np.max(np.abs(inertia - inertia.T)) > _SYMMETRY_TOLERANCE * scale:
        raise ConfigurationError("Inertia tensor is not symmetric")

    try:
        np.linalg.cholesky(inertia)
    except np.linalg.LinAlgError as exc:
        raise ConfigurationError("Inertia tensor is not positive-definite") from exc

    return inertia


class Body:
    """
    A body in the propagation environment.

    Parameters
    ----------
    name : str
        Unique body name; key of the body map.
    mass : float, optional
        Mass [kg], strictly positive when given.
    inertia_tensor : array_like, optional
        3x3 inertia tensor [kg m^2] in body-fixed axes.
    ephemeris : Ephemeris, optional
        Translational ephemeris.
    rotational_ephemeris : RotationalEphemeris, optional
        Rotational ephemeris (base -> body-fixed).
    gravitational_parameter : float, optional
        GM [m^3/s^2], used by point-mass gravity and gravity-gradient models.
    """

    def __init__(self, name: str, mass: Optional[float] = None, inertia_tensor=None,
                 ephemeris: Optional[Ephemeris] = None,
                 rotational_ephemeris: Optional[RotationalEphemeris] = None,
                 gravitational_parameter: Optional[float] = None):
        self.name = name
        self._mass: Optional[float] = None
        self._inertia_tensor: Optional[np.ndarray] = None

        if mass is not None:
            self.mass = mass
        if inertia_tensor is not None:
            self.inertia_tensor = inertia_tensor

        self.ephemeris = ephemeris
        self.rotational_ephemeris = rotational_ephemeris
        self.gravitational_parameter = gravitational_parameter

        self._state = np.zeros(6)
        self._rotational_state = np.array([1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0])
        self._committed_state = self._state.copy()
        self._committed_rotational_state = self._rotational_state.copy()

    # =========================================================================
    # PHYSICAL PROPERTIES
    # =========================================================================

    @property
    def mass(self) -> Optional[float]:
        return self._mass

    @mass.setter
    def mass(self, value: float) -> None:
        value = float(value)
        if not np.isfinite(value) or value <= 0.0:
            raise ConfigurationError(f"Mass of body '{self.name}' must be positive, got {value}")
        self._mass = value

    @property
    def inertia_tensor(self) -> Optional[np.ndarray]:
        return self._inertia_tensor

    @inertia_tensor.setter
    def inertia_tensor(self, value) -> None:
        try:
            self._inertia_tensor = validate_inertia_tensor(value)
        except ConfigurationError as exc:
            raise ConfigurationError(f"Body '{self.name}': {exc}") from exc

    # =========================================================================
    # CURRENT STATE
    # =========================================================================

    @property
    def state(self) -> np.ndarray:
        """Current inertial Cartesian state (6,)."""
        return self._state

    @property
    def position(self) -> np.ndarray:
        return self._state[:3]

    @property
    def velocity(self) -> np.ndarray:
        return self._state[3:]

    @property
    def rotational_state(self) -> np.ndarray:
        """Current rotational state (7,): quaternion to base, body-frame omega."""
        return self._rotational_state

    @property
    def rotation_matrix_to_base_frame(self) -> np.ndarray:
        return quaternion_to_rotation_matrix(self._rotational_state[:4])

    @property
    def rotation_matrix_to_target_frame(self) -> np.ndarray:
        return self.rotation_matrix_to_base_frame.T

    @property
    def angular_velocity(self) -> np.ndarray:
        """Angular velocity in body-fixed components [rad/s]."""
        return self._rotational_state[4:]

    def set_state(self, state: np.ndarray) -> None:
        self._state = np.asarray(state, dtype=np.float64).copy()

    def set_rotational_state(self, state: np.ndarray) -> None:
        self._rotational_state = np.asarray(state, dtype=np.float64).copy()

    def commit_states(self) -> None:
        """Record the current states as those of the last accepted step."""
        self._committed_state = self._state.copy()
        self._committed_rotational_state = self._rotational_state.copy()

    def restore_committed_states(self) -> None:
        self._state = self._committed_state.copy()
        self._rotational_state = self._committed_rotational_state.copy()

    def update_from_ephemerides(self, time: float, translational: bool = True,
                                rotational: bool = True,
                                origin_state: Optional[np.ndarray] = None) -> None:
        """
        Set (and commit) the current state from the body's ephemerides.

        Only the parts that have an ephemeris are updated.

        Parameters
        ----------
        time : float
            Epoch [s].
        translational, rotational : bool
            Which parts to update.
        origin_state : np.ndarray, optional
            Inertial state of the ephemeris' frame origin, added to the
            ephemeris state. None when the origin is the global origin.
        """
        if translational and self.ephemeris is not None:
            self._state = self.ephemeris.cartesian_state(time)
            if origin_state is not None:
                self._state = self._state + origin_state
        if rotational and self.rotational_ephemeris is not None:
            self._rotational_state = self.rotational_ephemeris.rotational_state(time)
        self.commit_states()

    def __repr__(self) -> str:
        return (f"Body(name={self.name!r}, mass={self._mass}, "
                f"ephemeris={type(self.ephemeris).__name__ if self.ephemeris else None}, "
                f"rotational_ephemeris="
                f"{type(self.rotational_ephemeris).__name__ if self.rotational_ephemeris else None})")
