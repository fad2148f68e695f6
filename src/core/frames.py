"""
===============================================================================
ATTITUDE PROPAGATION - Reference Frame Transformations
===============================================================================
Supports the aerodynamic frame chain of a body moving relative to a rotating
central body:

    inertial -> planetocentric -> local vertical -> trajectory
             -> aerodynamic -> body-fixed

    inertial        Non-rotating frame centred on the central body.
    planetocentric  Rotates with the central body; z along the polar axis.
    local vertical  North-East-Down at the body's sub-point.
    trajectory      x along the airspeed vector, z in the local vertical
                    plane (flight-path angle, heading angle).
    aerodynamic     Trajectory frame banked about the airspeed vector.
    body-fixed      Aerodynamic frame rotated by sideslip and angle of attack.

Every transformation is available as a rotation matrix and as a unit
quaternion (scalar first). Each "A_to_B" function has an exact inverse
"B_to_A" (transpose / conjugate). A matrix named ``*_to_B_matrix`` maps
components expressed in the source frame into frame B:

    v_B = C_B_from_A @ v_A

so the chain composes right-to-left by plain multiplication.

All functions operate on NumPy arrays and return NumPy arrays (or
``Quaternion`` objects for the quaternion variants). Angles are in radians.

References
----------
    [1] Mooij, "The Motion of a Vehicle in a Planetary Atmosphere",
        Delft University Press, 1997.
    [2] Markley & Crassidis, "Fundamentals of Spacecraft Attitude
        Determination and Control", Springer, 2014.

===============================================================================
"""

from dataclasses import dataclass

import numpy as np

from core.constants import PI
from core.quaternion import Quaternion


_X_AXIS = np.array([1.0, 0.0, 0.0])
_Y_AXIS = np.array([0.0, 1.0, 0.0])
_Z_AXIS = np.array([0.0, 0.0, 1.0])


# =============================================================================
# ELEMENTARY ROTATION MATRICES
# =============================================================================

def Rx(angle: float) -> np.ndarray:
    """
    Elementary frame rotation about the X-axis.

    Gives the components of a fixed vector in a frame rotated by *angle*
    radians about X (right-hand rule):

        Rx(a) = | 1    0       0     |
                | 0   cos(a)  sin(a)  |
                | 0  -sin(a)  cos(a)  |

    Parameters
    ----------
    angle : float
        Rotation angle in radians.

    Returns
    -------
    np.ndarray
        3x3 rotation matrix.
    """
    c = np.cos(angle)
    s = np.sin(angle)
    return np.array([
        [1.0,  0.0,  0.0],
        [0.0,    c,    s],
        [0.0,   -s,    c],
    ], dtype=np.float64)


def Ry(angle: float) -> np.ndarray:
    """
    Elementary frame rotation about the Y-axis.

        Ry(a) = | cos(a)  0  -sin(a) |
                |   0     1     0     |
                | sin(a)  0   cos(a)  |
    """
    c = np.cos(angle)
    s = np.sin(angle)
    return np.array([
        [  c,  0.0,   -s],
        [0.0,  1.0,  0.0],
        [  s,  0.0,    c],
    ], dtype=np.float64)


def Rz(angle: float) -> np.ndarray:
    """
    Elementary frame rotation about the Z-axis.

        Rz(a) = |  cos(a)  sin(a)  0 |
                | -sin(a)  cos(a)  0 |
                |    0       0     1 |
    """
    c = np.cos(angle)
    s = np.sin(angle)
    return np.array([
        [  c,    s,  0.0],
        [ -s,    c,  0.0],
        [0.0,  0.0,  1.0],
    ], dtype=np.float64)


def _frame_rotation_quaternion(axis: np.ndarray, angle: float) -> Quaternion:
    # Quaternion of the frame rotation Rx/Ry/Rz(angle): conjugate of the
    # vector rotation by the same angle.
    return Quaternion.from_axis_angle(axis, -angle)


# =============================================================================
# CROSS-PRODUCT MATRIX HELPERS
# =============================================================================

def cross_product_matrix(vector: np.ndarray) -> np.ndarray:
    """
    Skew-symmetric matrix [v]x such that [v]x @ u == v x u.

        [v]x = |  0   -v3   v2 |
               |  v3   0   -v1 |
               | -v2   v1   0  |
    """
    v1, v2, v3 = vector
    return np.array([
        [0.0, -v3,  v2],
        [ v3, 0.0, -v1],
        [-v2,  v1, 0.0],
    ], dtype=np.float64)


def vector_from_cross_product_matrix(matrix: np.ndarray) -> np.ndarray:
    """
    Inverse of ``cross_product_matrix`` (the vee map).

    Only the skew-symmetric part of the input is used, so a nearly
    skew-symmetric product of floating-point matrices maps onto the closest
    vector.
    """
    return 0.5 * np.array([
        matrix[2, 1] - matrix[1, 2],
        matrix[0, 2] - matrix[2, 0],
        matrix[1, 0] - matrix[0, 1],
    ], dtype=np.float64)


def rotational_velocity_in_base_frame_from_matrices(
        rotation_to_target_frame: np.ndarray,
        derivative_of_rotation_to_base_frame: np.ndarray) -> np.ndarray:
    """
    Angular velocity of the target frame, in base-frame components.

    With R = R_to_base and dR/dt = R [w_target]x:

        dR/dt @ R^T = R [w_target]x R^T = [R w_target]x = [w_base]x

    Parameters
    ----------
    rotation_to_target_frame : np.ndarray
        3x3 matrix R_to_target = R^T.
    derivative_of_rotation_to_base_frame : np.ndarray
        3x3 matrix dR_to_base/dt.
    """
    return vector_from_cross_product_matrix(
        derivative_of_rotation_to_base_frame @ rotation_to_target_frame)


def rotational_velocity_in_target_frame_from_matrices(
        rotation_to_target_frame: np.ndarray,
        derivative_of_rotation_to_base_frame: np.ndarray) -> np.ndarray:
    """Angular velocity of the target frame, in target-frame components."""
    return vector_from_cross_product_matrix(
        rotation_to_target_frame @ derivative_of_rotation_to_base_frame)


# =============================================================================
# INERTIAL <-> PLANETOCENTRIC
# =============================================================================

def inertial_to_planetocentric_matrix(rotation_angle: float) -> np.ndarray:
    """
    Inertial -> rotating planetocentric frame.

    Parameters
    ----------
    rotation_angle : float
        Angle of the central body's prime meridian from the inertial x-axis,
        measured about the common polar (z) axis.
    """
    return Rz(rotation_angle)


def planetocentric_to_inertial_matrix(rotation_angle: float) -> np.ndarray:
    return inertial_to_planetocentric_matrix(rotation_angle).T


def inertial_to_planetocentric_quaternion(rotation_angle: float) -> Quaternion:
    return _frame_rotation_quaternion(_Z_AXIS, rotation_angle)


def planetocentric_to_inertial_quaternion(rotation_angle: float) -> Quaternion:
    return inertial_to_planetocentric_quaternion(rotation_angle).conjugate()


# =============================================================================
# PLANETOCENTRIC <-> LOCAL VERTICAL (NED)
# =============================================================================

def planetocentric_to_local_vertical_matrix(longitude: float,
                                            latitude: float) -> np.ndarray:
    """
    Planetocentric -> local vertical (North-East-Down) frame.

    A rotation about z by the longitude brings x onto the local meridian,
    after which a rotation about the new y by -(latitude + pi/2) points x
    north and z down:

        C_LV_from_PC = Ry(-(lat + pi/2)) @ Rz(lon)

    Parameters
    ----------
    longitude : float
        Planetocentric longitude [rad].
    latitude : float
        Planetocentric (geocentric) latitude [rad].
    """
    return Ry(-(latitude + PI / 2.0)) @ Rz(longitude)


def local_vertical_to_planetocentric_matrix(longitude: float,
                                            latitude: float) -> np.ndarray:
    return planetocentric_to_local_vertical_matrix(longitude, latitude).T


def planetocentric_to_local_vertical_quaternion(longitude: float,
                                                latitude: float) -> Quaternion:
    return (_frame_rotation_quaternion(_Y_AXIS, -(latitude + PI / 2.0))
            * _frame_rotation_quaternion(_Z_AXIS, longitude))


def local_vertical_to_planetocentric_quaternion(longitude: float,
                                                latitude: float) -> Quaternion:
    return planetocentric_to_local_vertical_quaternion(longitude, latitude).conjugate()


# =============================================================================
# LOCAL VERTICAL <-> TRAJECTORY
# =============================================================================

def trajectory_to_local_vertical_matrix(flight_path_angle: float,
                                        heading_angle: float) -> np.ndarray:
    """
    Trajectory -> local vertical frame.

    The trajectory x-axis expressed in the local vertical frame is

        [cos(chi) cos(gamma), sin(chi) cos(gamma), -sin(gamma)]

    with gamma the flight-path angle (positive above the horizon) and chi
    the heading angle (from north towards east).
    """
    return Rz(-heading_angle) @ Ry(-flight_path_angle)


def local_vertical_to_trajectory_matrix(flight_path_angle: float,
                                        heading_angle: float) -> np.ndarray:
    return trajectory_to_local_vertical_matrix(flight_path_angle, heading_angle).T


def trajectory_to_local_vertical_quaternion(flight_path_angle: float,
                                            heading_angle: float) -> Quaternion:
    return (_frame_rotation_quaternion(_Z_AXIS, -heading_angle)
            * _frame_rotation_quaternion(_Y_AXIS, -flight_path_angle))


def local_vertical_to_trajectory_quaternion(flight_path_angle: float,
                                            heading_angle: float) -> Quaternion:
    return trajectory_to_local_vertical_quaternion(flight_path_angle, heading_angle).conjugate()


# =============================================================================
# TRAJECTORY <-> AERODYNAMIC
# =============================================================================

def trajectory_to_aerodynamic_matrix(bank_angle: float) -> np.ndarray:
    """Trajectory -> aerodynamic frame (bank about the airspeed vector)."""
    return Rx(bank_angle)


def aerodynamic_to_trajectory_matrix(bank_angle: float) -> np.ndarray:
    return trajectory_to_aerodynamic_matrix(bank_angle).T


def trajectory_to_aerodynamic_quaternion(bank_angle: float) -> Quaternion:
    return _frame_rotation_quaternion(_X_AXIS, bank_angle)


def aerodynamic_to_trajectory_quaternion(bank_angle: float) -> Quaternion:
    return trajectory_to_aerodynamic_quaternion(bank_angle).conjugate()


# =============================================================================
# AERODYNAMIC <-> BODY-FIXED
# =============================================================================

def aerodynamic_to_body_matrix(angle_of_attack: float,
                               sideslip_angle: float) -> np.ndarray:
    """
    Aerodynamic -> body-fixed frame.

    The airspeed direction (aerodynamic x-axis) in body components becomes

        [cos(alpha) cos(beta), sin(beta), sin(alpha) cos(beta)]
    """
    return Ry(angle_of_attack) @ Rz(-sideslip_angle)


def body_to_aerodynamic_matrix(angle_of_attack: float,
                               sideslip_angle: float) -> np.ndarray:
    return aerodynamic_to_body_matrix(angle_of_attack, sideslip_angle).T


def aerodynamic_to_body_quaternion(angle_of_attack: float,
                                   sideslip_angle: float) -> Quaternion:
    return (_frame_rotation_quaternion(_Y_AXIS, angle_of_attack)
            * _frame_rotation_quaternion(_Z_AXIS, -sideslip_angle))


def body_to_aerodynamic_quaternion(angle_of_attack: float,
                                   sideslip_angle: float) -> Quaternion:
    return aerodynamic_to_body_quaternion(angle_of_attack, sideslip_angle).conjugate()


# =============================================================================
# AERODYNAMIC ANGLE SET
# =============================================================================

@dataclass
class AerodynamicAngles:
    """Geometric and aerodynamic angles of a body relative to a rotating central body."""
    latitude: float
    longitude: float
    heading_angle: float
    flight_path_angle: float
    angle_of_attack: float
    sideslip_angle: float
    bank_angle: float


def compute_aerodynamic_angles(inertial_position: np.ndarray,
                               inertial_velocity: np.ndarray,
                               rotation_to_planetocentric: np.ndarray,
                               derivative_of_rotation_to_planetocentric: np.ndarray,
                               rotation_to_body: np.ndarray) -> AerodynamicAngles:
    """
    Compute the full angle set from a state relative to the central body.

    Parameters
    ----------
    inertial_position, inertial_velocity : np.ndarray
        Body position and velocity relative to the central body, in
        inertial components [m, m/s].
    rotation_to_planetocentric : np.ndarray
        3x3 inertial -> planetocentric matrix of the central body.
    derivative_of_rotation_to_planetocentric : np.ndarray
        Time derivative of ``rotation_to_planetocentric`` [1/s].
    rotation_to_body : np.ndarray
        3x3 inertial -> body-fixed matrix of the body.

    Returns
    -------
    AerodynamicAngles
        Angles in radians. Airspeed is the velocity relative to the
        co-rotating planetocentric frame (no wind).
    """
    r_pc = rotation_to_planetocentric @ inertial_position
    v_pc = (rotation_to_planetocentric @ inertial_velocity
            + derivative_of_rotation_to_planetocentric @ inertial_position)

    radius = np.linalg.norm(r_pc)
    airspeed = np.linalg.norm(v_pc)

    latitude = float(np.arcsin(r_pc[2] / radius))
    longitude = float(np.arctan2(r_pc[1], r_pc[0]))

    pc_to_lv = planetocentric_to_local_vertical_matrix(longitude, latitude)
    v_lv = pc_to_lv @ v_pc
    flight_path_angle = float(-np.arcsin(np.clip(v_lv[2] / airspeed, -1.0, 1.0)))
    heading_angle = float(np.arctan2(v_lv[1], v_lv[0]))

    trajectory_to_body = (rotation_to_body
                          @ rotation_to_planetocentric.T
                          @ pc_to_lv.T
                          @ trajectory_to_local_vertical_matrix(flight_path_angle,
                                                                heading_angle))

    # Airspeed direction in body components
    v_body = trajectory_to_body[:, 0]
    angle_of_attack = float(np.arctan2(v_body[2], v_body[0]))
    sideslip_angle = float(np.arcsin(np.clip(v_body[1], -1.0, 1.0)))

    trajectory_to_aero = (body_to_aerodynamic_matrix(angle_of_attack, sideslip_angle)
                          @ trajectory_to_body)
    bank_angle = float(np.arctan2(trajectory_to_aero[1, 2], trajectory_to_aero[1, 1]))

    return AerodynamicAngles(
        latitude=latitude,
        longitude=longitude,
        heading_angle=heading_angle,
        flight_path_angle=flight_path_angle,
        angle_of_attack=angle_of_attack,
        sideslip_angle=sideslip_angle,
        bank_angle=bank_angle,
    )


def inertial_to_body_fixed_from_angles(angles: AerodynamicAngles,
                                       rotation_to_planetocentric: np.ndarray) -> np.ndarray:
    """
    Recompose the inertial -> body-fixed matrix from an angle set.

        C_B_from_I = C_B_from_A @ C_A_from_TR @ C_TR_from_LV
                     @ C_LV_from_PC @ C_PC_from_I
    """
    return (aerodynamic_to_body_matrix(angles.angle_of_attack, angles.sideslip_angle)
            @ trajectory_to_aerodynamic_matrix(angles.bank_angle)
            @ local_vertical_to_trajectory_matrix(angles.flight_path_angle,
                                                  angles.heading_angle)
            @ planetocentric_to_local_vertical_matrix(angles.longitude, angles.latitude)
            @ rotation_to_planetocentric)


def inertial_to_body_fixed_quaternion_from_angles(angles: AerodynamicAngles,
                                                  rotation_angle: float) -> Quaternion:
    """Quaternion form of the chain for a uniformly rotating central body."""
    return (aerodynamic_to_body_quaternion(angles.angle_of_attack, angles.sideslip_angle)
            * trajectory_to_aerodynamic_quaternion(angles.bank_angle)
            * local_vertical_to_trajectory_quaternion(angles.flight_path_angle,
                                                      angles.heading_angle)
            * planetocentric_to_local_vertical_quaternion(angles.longitude,
                                                          angles.latitude)
            * inertial_to_planetocentric_quaternion(rotation_angle))
