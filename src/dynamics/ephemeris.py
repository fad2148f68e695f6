"""
===============================================================================
ATTITUDE PROPAGATION - Translational and Rotational Ephemerides
===============================================================================
Query surface for where a body is and how it is oriented at an arbitrary
epoch.

Translational ephemerides return a Cartesian state [x, y, z, vx, vy, vz]
relative to ``frame_origin`` in ``frame_orientation`` axes.

Rotational ephemerides relate a base frame (usually inertial) and a target
frame (usually body-fixed). Internally every rotational ephemeris produces
the same 7-element rotational state used by the propagator:

    [q_w, q_x, q_y, q_z, omega_x, omega_y, omega_z]

where q maps target-frame vectors into the base frame and omega is the
angular velocity of the target frame in target-frame components. All other
queries are derived from that state analytically:

    R_to_base        = R(q)
    R_to_target      = R(q)^T
    dR_to_base/dt    = R_to_base @ [omega]x
    dR_to_target/dt  = (dR_to_base/dt)^T
    omega_base       = R_to_base @ omega

Implementations
---------------
    ConstantEphemeris             Fixed Cartesian state.
    TabulatedCartesianEphemeris   Lagrange-interpolated state table.
    ConstantRotationalEphemeris   Fixed orientation, no rotation.
    SimpleRotationalEphemeris     Uniform rotation about the target z-axis.
    TabulatedRotationalEphemeris  Lagrange-interpolated rotational states.
===============================================================================
"""

from abc import ABC, abstractmethod

import numpy as np

from core.frames import cross_product_matrix, inertial_to_planetocentric_quaternion
from core.interpolation import LagrangeInterpolator
from core.quaternion import Quaternion, quaternion_to_rotation_matrix

DEFAULT_INTERPOLATION_ORDER = 8


# =============================================================================
# TRANSLATIONAL EPHEMERIDES
# =============================================================================

class Ephemeris(ABC):
    """
    Base class for translational ephemerides.

    Parameters
    ----------
    frame_origin : str
        Name of the body the states are relative to.
    frame_orientation : str
        Name of the frame the components are expressed in.
    """

    def __init__(self, frame_origin: str = "SSB", frame_orientation: str = "ECLIPJ2000"):
        self.frame_origin = frame_origin
        self.frame_orientation = frame_orientation

    @abstractmethod
    def cartesian_state(self, time: float) -> np.ndarray:
        """Cartesian state (6,) at ``time``."""

    def position(self, time: float) -> np.ndarray:
        return self.cartesian_state(time)[:3]

    def velocity(self, time: float) -> np.ndarray:
        return self.cartesian_state(time)[3:]


class ConstantEphemeris(Ephemeris):
    """Body at rest (or moving along a frozen state) for all epochs."""

    def __init__(self, state: np.ndarray, frame_origin: str = "SSB",
                 frame_orientation: str = "ECLIPJ2000"):
        super().__init__(frame_origin, frame_orientation)
        state = np.asarray(state, dtype=np.float64)
        if state.shape != (6,):
            raise ValueError(f"Cartesian state must have 6 elements, got shape {state.shape}")
        self._state = state

    def cartesian_state(self, time: float) -> np.ndarray:
        return self._state.copy()

    def __repr__(self) -> str:
        return f"ConstantEphemeris(origin={self.frame_origin!r}, state={self._state})"


class TabulatedCartesianEphemeris(Ephemeris):
    """
    Cartesian states interpolated from a time-ordered table.

    Parameters
    ----------
    times : np.ndarray
        Strictly increasing epochs (N,).
    states : np.ndarray
        Cartesian states (N, 6).
    interpolation_order : int
        Nodes per Lagrange polynomial.
    """

    def __init__(self, times: np.ndarray, states: np.ndarray,
                 frame_origin: str = "SSB", frame_orientation: str = "ECLIPJ2000",
                 interpolation_order: int = DEFAULT_INTERPOLATION_ORDER):
        super().__init__(frame_origin, frame_orientation)
        states = np.asarray(states, dtype=np.float64)
        if states.ndim != 2 or states.shape[1] != 6:
            raise ValueError(f"Cartesian state table must be (N, 6), got shape {states.shape}")
        self._interpolator = LagrangeInterpolator(times, states, interpolation_order)

    @property
    def interpolator(self) -> LagrangeInterpolator:
        return self._interpolator

    def cartesian_state(self, time: float) -> np.ndarray:
        return self._interpolator.interpolate(time)

    def __repr__(self) -> str:
        return (f"TabulatedCartesianEphemeris(origin={self.frame_origin!r}, "
                f"span=[{self._interpolator.lower_bound:.1f}, "
                f"{self._interpolator.upper_bound:.1f}] s)")


# =============================================================================
# ROTATIONAL EPHEMERIDES
# =============================================================================

class RotationalEphemeris(ABC):
    """
    Base class for rotational ephemerides.

    Subclasses implement ``rotational_state``; every other query is derived
    from it here.

    Parameters
    ----------
    base_frame : str
        Name of the base (inertial) frame.
    target_frame : str
        Name of the target (body-fixed) frame.
    """

    def __init__(self, base_frame: str = "ECLIPJ2000", target_frame: str = ""):
        self.base_frame = base_frame
        self.target_frame = target_frame

    @abstractmethod
    def rotational_state(self, time: float) -> np.ndarray:
        """
        Rotational state (7,) at ``time``.

        Returns
        -------
        np.ndarray
            Unit quaternion target -> base (w, x, y, z) followed by the
            angular velocity in target-frame components [rad/s].
        """

    # -- orientation ----------------------------------------------------------

    def rotation_to_base_frame(self, time: float) -> Quaternion:
        """Quaternion mapping target-frame vectors into the base frame."""
        return Quaternion.from_vector(self.rotational_state(time)[:4])

    def rotation_to_target_frame(self, time: float) -> Quaternion:
        """Quaternion q with target_vector = q * base_vector * q*."""
        return self.rotation_to_base_frame(time).conjugate()

    def rotation_matrix_to_base_frame(self, time: float) -> np.ndarray:
        return quaternion_to_rotation_matrix(self.rotational_state(time)[:4])

    def rotation_matrix_to_target_frame(self, time: float) -> np.ndarray:
        return self.rotation_matrix_to_base_frame(time).T

    # -- rates ---------------------------------------------------------------

    def rotational_velocity_in_target_frame(self, time: float) -> np.ndarray:
        return self.rotational_state(time)[4:].copy()

    def rotational_velocity_in_base_frame(self, time: float) -> np.ndarray:
        state = self.rotational_state(time)
        return quaternion_to_rotation_matrix(state[:4]) @ state[4:]

    def derivative_of_rotation_to_base_frame(self, time: float) -> np.ndarray:
        """dR_to_base/dt = R_to_base @ [omega]x, from the angular velocity."""
        state = self.rotational_state(time)
        return quaternion_to_rotation_matrix(state[:4]) @ cross_product_matrix(state[4:])

    def derivative_of_rotation_to_target_frame(self, time: float) -> np.ndarray:
        return self.derivative_of_rotation_to_base_frame(time).T


class ConstantRotationalEphemeris(RotationalEphemeris):
    """Fixed orientation with zero angular velocity."""

    def __init__(self, rotation_to_base_frame: Quaternion,
                 base_frame: str = "ECLIPJ2000", target_frame: str = ""):
        super().__init__(base_frame, target_frame)
        self._state = np.concatenate([rotation_to_base_frame.normalize().as_vector(),
                                      np.zeros(3)])

    def rotational_state(self, time: float) -> np.ndarray:
        return self._state.copy()


class SimpleRotationalEphemeris(RotationalEphemeris):
    """
    Uniform rotation about the target-frame z-axis.

    The orientation at ``time`` is

        R_to_target(t) = Rz(rate * (t - reference_epoch)) @ R_to_target(t0)

    with Rz the frame rotation about the polar axis, so the target frame
    spins at ``[0, 0, rate]`` in its own components.

    Parameters
    ----------
    initial_rotation_to_target_frame : Quaternion
        Base -> target rotation at ``reference_epoch``.
    rotation_rate : float
        Spin rate about the target z-axis [rad/s].
    reference_epoch : float
        Epoch of the initial orientation [s].
    """

    def __init__(self, initial_rotation_to_target_frame: Quaternion, rotation_rate: float,
                 reference_epoch: float = 0.0, base_frame: str = "ECLIPJ2000",
                 target_frame: str = ""):
        super().__init__(base_frame, target_frame)
        self.initial_rotation_to_target_frame = initial_rotation_to_target_frame.normalize()
        self.rotation_rate = float(rotation_rate)
        self.reference_epoch = float(reference_epoch)

    def rotation_angle(self, time: float) -> float:
        return self.rotation_rate * (time - self.reference_epoch)

    def rotational_state(self, time: float) -> np.ndarray:
        to_target = (inertial_to_planetocentric_quaternion(self.rotation_angle(time))
                     * self.initial_rotation_to_target_frame)
        return np.concatenate([to_target.conjugate().as_vector(),
                               [0.0, 0.0, self.rotation_rate]])

    def __repr__(self) -> str:
        return (f"SimpleRotationalEphemeris({self.base_frame!r} -> {self.target_frame!r}, "
                f"rate={self.rotation_rate:.6e} rad/s, epoch={self.reference_epoch})")


class TabulatedRotationalEphemeris(RotationalEphemeris):
    """
    Rotational states interpolated from a propagated history.

    All seven components are interpolated with the same Lagrange polynomial
    window and the quaternion is renormalized afterwards. Angular velocity
    comes from the interpolated table, so the matrix derivatives stay
    consistent with the propagated dynamics instead of a numerical
    derivative of the orientation.

    Parameters
    ----------
    times : np.ndarray
        Strictly increasing epochs (N,).
    states : np.ndarray
        Rotational states (N, 7), quaternions without sign flips between
        consecutive rows.
    interpolation_order : int
        Nodes per Lagrange polynomial.
    """

    def __init__(self, times: np.ndarray, states: np.ndarray,
                 base_frame: str = "ECLIPJ2000", target_frame: str = "",
                 interpolation_order: int = DEFAULT_INTERPOLATION_ORDER):
        super().__init__(base_frame, target_frame)
        states = np.asarray(states, dtype=np.float64)
        if states.ndim != 2 or states.shape[1] != 7:
            raise ValueError(f"Rotational state table must be (N, 7), got shape {states.shape}")
        self._interpolator = LagrangeInterpolator(times, states, interpolation_order)

    @property
    def interpolator(self) -> LagrangeInterpolator:
        return self._interpolator

    def rotational_state(self, time: float) -> np.ndarray:
        state = self._interpolator.interpolate(time)
        state[:4] /= np.linalg.norm(state[:4])
        return state

    def __repr__(self) -> str:
        return (f"TabulatedRotationalEphemeris({self.base_frame!r} -> {self.target_frame!r}, "
                f"span=[{self._interpolator.lower_bound:.1f}, "
                f"{self._interpolator.upper_bound:.1f}] s)")
