"""
===============================================================================
ATTITUDE PROPAGATION - Quaternion Mathematics Library
===============================================================================

Attitude in a rotational state is carried as a quaternion: four numbers, no
singularities, and one unit-norm constraint that the propagator restores
after each accepted step.

Ordering
--------
Every quaternion that crosses a module boundary is ordered (w, x, y, z),
real part first. SciPy's ``Rotation`` stores (x, y, z, w); the reordering is
confined to ``_from_scipy_order``.

Meaning
-------
A rotational state quaternion maps body-fixed vectors into the base frame:

    v_base = q (*) [0, v_body] (*) conj(q)   ==   R(q) @ v_body

Normalization here never flips the sign. A propagated history has to be
continuous, so ``canonical()`` is a separate, explicit step.

References
----------
    [1] Markley & Crassidis, "Fundamentals of Spacecraft Attitude
        Determination and Control", Springer, 2014.
    [2] Shepperd, "Quaternion from Rotation Matrix", JGCD, 1978.
===============================================================================
"""

import numpy as np
from scipy.spatial.transform import Rotation
from typing import Tuple, Union


# =============================================================================
# ARRAY-LEVEL KERNELS
# =============================================================================
# State derivative and ephemeris code call these on plain arrays.

def _from_scipy_order(q_xyzw: np.ndarray) -> np.ndarray:
    return np.array([q_xyzw[3], q_xyzw[0], q_xyzw[1], q_xyzw[2]], dtype=np.float64)


def quaternion_multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Hamilton product ``a (*) b`` of two real-first 4-vectors."""
    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return np.array([
        aw * bw - ax * bx - ay * by - az * bz,
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
    ], dtype=np.float64)


def quaternion_to_rotation_matrix(q: np.ndarray) -> np.ndarray:
    """
    Direction cosine matrix R(q) of a real-first quaternion.

    The argument is scaled to unit length before use; interpolated
    quaternions are usually a little off the unit sphere.

    Parameters
    ----------
    q : np.ndarray
        Quaternion (w, x, y, z).

    Returns
    -------
    np.ndarray
        3x3 matrix with ``R @ v`` equal to the sandwich product of v.
    """
    q = np.asarray(q, dtype=np.float64)
    w, x, y, z = q / np.linalg.norm(q)

    wx, wy, wz = w * x, w * y, w * z
    xx, xy, xz = x * x, x * y, x * z
    yy, yz, zz = y * y, y * z, z * z

    return np.array([
        [1.0 - 2.0 * (yy + zz), 2.0 * (xy - wz), 2.0 * (xz + wy)],
        [2.0 * (xy + wz), 1.0 - 2.0 * (xx + zz), 2.0 * (yz - wx)],
        [2.0 * (xz - wy), 2.0 * (yz + wx), 1.0 - 2.0 * (xx + yy)],
    ], dtype=np.float64)


def rotation_matrix_to_quaternion(matrix: np.ndarray) -> np.ndarray:
    """
    Real-first quaternion of a rotation matrix.

    Extraction is delegated to SciPy, which branches on the largest of the
    four candidate pivots and so remains well conditioned at half turns.

    Raises
    ------
    ValueError
        Wrong shape, or ``R^T R`` farther than 1e-6 from identity.
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.shape != (3, 3):
        raise ValueError(f"Rotation matrix must be 3x3, got shape {matrix.shape}")

    residual = np.linalg.norm(matrix.T @ matrix - np.eye(3))
    if residual > 1e-6:
        raise ValueError(f"Rotation matrix is not orthogonal (|R^T R - I| = {residual:.2e})")

    return _from_scipy_order(Rotation.from_matrix(matrix).as_quat())


def quaternion_derivative(q: np.ndarray, omega: np.ndarray) -> np.ndarray:
    """
    Attitude kinematics, dq/dt = 1/2 q (*) [0, omega].

    ``omega`` is the body angular velocity in body axes. ``q`` is taken as
    given (no normalization) because this is the derivative of the
    integrated variable.

        dw/dt = -(x wx + y wy + z wz) / 2
        dx/dt =  (w wx - z wy + y wz) / 2
        dy/dt =  (z wx + w wy - x wz) / 2
        dz/dt = (-y wx + x wy + w wz) / 2
    """
    w, x, y, z = q
    p, r, s = omega
    return 0.5 * np.array([
        -x * p - y * r - z * s,
        w * p - z * r + y * s,
        z * p + w * r - x * s,
        -y * p + x * r + w * s,
    ], dtype=np.float64)


# =============================================================================
# QUATERNION CLASS
# =============================================================================

class Quaternion:
    """
    Real-first quaternion used for orientation queries and frame algebra.

    For a turn of ``theta`` about unit axis ``n``::

        q = (cos(theta/2), n sin(theta/2))

    Products compose rotations right to left, like matrices.

    Examples
    --------
    >>> q = Quaternion.from_axis_angle(np.array([0.0, 0.0, 1.0]), np.pi / 2)
    >>> q.rotate_vector(np.array([1.0, 0.0, 0.0]))
    array([0., 1., 0.])
    """

    _ZERO_NORM = 1e-10
    _EQUALITY_TOLERANCE = 1e-9

    def __init__(self, w: float, x: float, y: float, z: float,
                 normalize: bool = True) -> None:
        """
        Parameters
        ----------
        w, x, y, z : float
            Real part, then the three imaginary parts.
        normalize : bool, optional
            Scale to unit length (default). Signs are kept as given.
        """
        self._q = np.array([w, x, y, z], dtype=np.float64)
        if normalize:
            self._scale_to_unit()

    def _scale_to_unit(self) -> None:
        length = np.linalg.norm(self._q)
        if length < self._ZERO_NORM:
            raise ValueError(f"Quaternion has zero norm ({length:.2e}); no rotation is defined")
        self._q /= length

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def w(self) -> float:
        return float(self._q[0])

    @property
    def x(self) -> float:
        return float(self._q[1])

    @property
    def y(self) -> float:
        return float(self._q[2])

    @property
    def z(self) -> float:
        return float(self._q[3])

    @property
    def components(self) -> np.ndarray:
        """Copy of (w, x, y, z)."""
        return self._q.copy()

    @property
    def norm(self) -> float:
        return float(np.linalg.norm(self._q))

    @property
    def rotation_angle(self) -> float:
        """Turn angle in [0, pi], from 2 arccos|w|."""
        return 2.0 * np.arccos(min(abs(self.w), 1.0))

    @property
    def rotation_axis(self) -> np.ndarray:
        """
        Unit turn axis, signed so that it pairs with ``rotation_angle``.

        The identity has no axis; +z is reported.
        """
        imaginary = self._q[1:]
        length = np.linalg.norm(imaginary)
        if length < self._ZERO_NORM:
            return np.array([0.0, 0.0, 1.0])
        return np.sign(self.w or 1.0) * imaginary / length

    # =========================================================================
    # CONSTRUCTORS
    # =========================================================================

    @staticmethod
    def identity() -> 'Quaternion':
        return Quaternion(1.0, 0.0, 0.0, 0.0, normalize=False)

    @staticmethod
    def from_vector(vector: np.ndarray, normalize: bool = True) -> 'Quaternion':
        """Wrap the (w, x, y, z) slice of a rotational state."""
        vector = np.asarray(vector, dtype=np.float64)
        if vector.shape != (4,):
            raise ValueError(f"Quaternion vector must have 4 elements, got shape {vector.shape}")
        return Quaternion(*vector, normalize=normalize)

    @staticmethod
    def from_rotation_matrix(matrix: np.ndarray) -> 'Quaternion':
        """
        Quaternion with ``R(q) == matrix``.

        Either sign may come back; q and -q are the same rotation.
        """
        return Quaternion.from_vector(rotation_matrix_to_quaternion(matrix))

    @staticmethod
    def from_axis_angle(axis: np.ndarray, angle: float) -> 'Quaternion':
        """
        Right-handed turn of ``angle`` radians about ``axis``.

        ``axis`` need not be unit length but must not be zero.
        """
        axis = np.asarray(axis, dtype=np.float64)
        length = np.linalg.norm(axis)
        if length < 1e-12:
            raise ValueError("Cannot build a rotation about a zero-length axis")

        s = np.sin(0.5 * angle) / length
        return Quaternion(np.cos(0.5 * angle), s * axis[0], s * axis[1], s * axis[2])

    # =========================================================================
    # ALGEBRA
    # =========================================================================

    def conjugate(self) -> 'Quaternion':
        """
        (w, -x, -y, -z). For unit q this is the reverse transformation.
        """
        return Quaternion(self.w, -self.x, -self.y, -self.z, normalize=False)

    def inverse(self) -> 'Quaternion':
        """conj(q) / |q|^2, valid for non-unit q too."""
        conj = self.conjugate()._q / float(np.dot(self._q, self._q))
        return Quaternion(*conj, normalize=False)

    def normalize(self) -> 'Quaternion':
        return Quaternion(*self._q, normalize=True)

    def canonical(self) -> 'Quaternion':
        """Same rotation, sign chosen so that w >= 0."""
        if self._q[0] < 0.0:
            return -self
        return self.copy()

    def multiply(self, other: 'Quaternion') -> 'Quaternion':
        """
        ``self (*) other``: apply ``other`` first, then ``self``.

        Frame quaternions chain as q_C_from_A = q_C_from_B (*) q_B_from_A.
        """
        return Quaternion(*quaternion_multiply(self._q, other._q), normalize=False)

    def rotate_vector(self, v: np.ndarray) -> np.ndarray:
        """
        Sandwich product ``q v conj(q)`` without forming a matrix.

        With u the imaginary part and t = 2 u x v, the result is
        v + w t + u x t (Markley & Crassidis, 2014).
        """
        v = np.asarray(v, dtype=np.float64)
        u = self._q[1:]
        t = 2.0 * np.cross(u, v)
        return v + self._q[0] * t + np.cross(u, t)

    # =========================================================================
    # CONVERSIONS
    # =========================================================================

    def as_vector(self) -> np.ndarray:
        """(w, x, y, z) as stored in rotational state vectors."""
        return self._q.copy()

    def to_rotation_matrix(self) -> np.ndarray:
        return quaternion_to_rotation_matrix(self._q)

    def to_axis_angle(self) -> Tuple[np.ndarray, float]:
        return self.rotation_axis, self.rotation_angle

    def derivative(self, omega: np.ndarray) -> np.ndarray:
        """dq/dt for body-axis angular velocity ``omega``."""
        return quaternion_derivative(self._q, np.asarray(omega, dtype=np.float64))

    def is_unit(self, tolerance: float = 1e-8) -> bool:
        return abs(self.norm - 1.0) < tolerance

    def copy(self) -> 'Quaternion':
        return Quaternion(*self._q, normalize=False)

    # =========================================================================
    # OPERATORS
    # =========================================================================

    def __mul__(self, other: Union['Quaternion', np.ndarray, float, int]
                ) -> Union['Quaternion', np.ndarray]:
        """
        ``q * p`` composes, ``q * v`` rotates a 3-vector, ``q * s`` scales.

        With q from ``rotation_to_target_frame``, ``q * base_vector`` is the
        same vector in target-frame components.
        """
        if isinstance(other, Quaternion):
            return self.multiply(other)
        if isinstance(other, np.ndarray):
            if other.shape != (3,):
                raise ValueError(f"Quaternion can only rotate a 3-vector, got shape {other.shape}")
            return self.rotate_vector(other)
        if isinstance(other, (int, float)):
            return Quaternion(*(self._q * float(other)), normalize=False)
        return NotImplemented

    def __neg__(self) -> 'Quaternion':
        return Quaternion(*(-self._q), normalize=False)

    def __eq__(self, other: object) -> bool:
        """Equal as rotations: q and -q compare equal."""
        if not isinstance(other, Quaternion):
            return NotImplemented
        gap = min(np.linalg.norm(self._q - other._q), np.linalg.norm(self._q + other._q))
        return gap < self._EQUALITY_TOLERANCE

    def __repr__(self) -> str:
        w, x, y, z = self._q
        return f"Quaternion(w={w:+.8f}, x={x:+.8f}, y={y:+.8f}, z={z:+.8f})"
