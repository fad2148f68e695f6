"""
===============================================================================
ATTITUDE PROPAGATION - Acceleration and Torque Providers
===============================================================================
Environment models consumed by the state derivative model. Each provider
exposes a single call:

    update(time) -> 3-vector

evaluated once per derivative evaluation, after the current states of all
bodies have been set for that evaluation. Accelerations are in inertial
axes [m/s^2]; torques act on the body and are in body-fixed axes [N m].

    - CentralGravityAcceleration : Point-mass attraction of one body on another
    - CustomAcceleration         : User function of time
    - ConstantTorque             : Fixed body-fixed torque
    - GravityGradientTorque      : Point-mass gravity-gradient torque
    - CustomTorque               : User function of time

Models read states from the ``Body`` objects they were built with, so the
same instance sees whatever the propagator staged into those bodies.
===============================================================================
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np
from numpy.typing import NDArray

from core.exceptions import ConfigurationError
from dynamics.body import Body


# ============================================================================
#  PROVIDER INTERFACES
# ============================================================================

class AccelerationModel(ABC):
    """
    Acceleration acting on ``body_undergoing``.

    Parameters
    ----------
    name : str
        Label used to select this model in dependent-variable requests.
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def update(self, time: float) -> NDArray:
        """Inertial acceleration at ``time`` [m/s^2]."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class TorqueModel(ABC):
    """Torque acting on a body, in that body's fixed axes."""

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def update(self, time: float) -> NDArray:
        """Body-fixed torque at ``time`` [N m]."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


# ============================================================================
#  ACCELERATIONS
# ============================================================================

class CentralGravityAcceleration(AccelerationModel):
    """
    Point-mass gravitational acceleration.

        a = -mu * r / |r|^3,   r = r_undergoing - r_exerting

    Parameters
    ----------
    body_undergoing : Body
        Body being accelerated.
    body_exerting : Body
        Attracting body.
    gravitational_parameter : float, optional
        GM of the attracting body; defaults to
        ``body_exerting.gravitational_parameter``.
    """

    def __init__(self, body_undergoing: Body, body_exerting: Body,
                 gravitational_parameter: Optional[float] = None,
                 name: Optional[str] = None):
        super().__init__(name or f"point_mass_gravity_{body_exerting.name}")
        mu = (gravitational_parameter if gravitational_parameter is not None
              else body_exerting.gravitational_parameter)
        if mu is None or mu <= 0.0:
            raise ConfigurationError(
                f"Central gravity of '{body_exerting.name}' needs a positive "
                f"gravitational parameter, got {mu}"
            )
        self.body_undergoing = body_undergoing
        self.body_exerting = body_exerting
        self.mu = float(mu)

    def update(self, time: float) -> NDArray:
        r = self.body_undergoing.position - self.body_exerting.position
        r_mag = np.linalg.norm(r)
        return -self.mu * r / r_mag ** 3


class CustomAcceleration(AccelerationModel):
    """Acceleration given by ``function(time) -> 3-vector``."""

    def __init__(self, function: Callable[[float], NDArray], name: str = "custom_acceleration"):
        super().__init__(name)
        self.function = function

    def update(self, time: float) -> NDArray:
        return np.asarray(self.function(time), dtype=np.float64)


# ============================================================================
#  TORQUES
# ============================================================================

class ConstantTorque(TorqueModel):
    """Fixed torque in body-fixed axes."""

    def __init__(self, torque: NDArray, name: str = "constant_torque"):
        super().__init__(name)
        torque = np.asarray(torque, dtype=np.float64)
        if torque.shape != (3,):
            raise ConfigurationError(f"Torque must be a 3-vector, got shape {torque.shape}")
        self.torque = torque

    def update(self, time: float) -> NDArray:
        return self.torque.copy()


class GravityGradientTorque(TorqueModel):
    """
    Gravity-gradient torque of a point-mass central body.

        T_gg = (3 * mu / r^3) * (r_hat x (I * r_hat))

    where r_hat is the unit vector from the central body to the body,
    resolved in the body frame, and I is the body's inertia tensor. The
    torque drives the minimum-inertia axis towards the local vertical.
    """

    def __init__(self, body: Body, central_body: Body,
                 gravitational_parameter: Optional[float] = None,
                 name: Optional[str] = None):
        super().__init__(name or f"gravity_gradient_{central_body.name}")
        mu = (gravitational_parameter if gravitational_parameter is not None
              else central_body.gravitational_parameter)
        if mu is None or mu <= 0.0:
            raise ConfigurationError(
                f"Gravity-gradient torque of '{central_body.name}' needs a positive "
                f"gravitational parameter, got {mu}"
            )
        if body.inertia_tensor is None:
            raise ConfigurationError(f"Body '{body.name}' has no inertia tensor")
        self.body = body
        self.central_body = central_body
        self.mu = float(mu)

    def update(self, time: float) -> NDArray:
        r_inertial = self.body.position - self.central_body.position
        r_body = self.body.rotation_matrix_to_target_frame @ r_inertial
        r_mag = np.linalg.norm(r_body)
        r_hat = r_body / r_mag
        return (3.0 * self.mu / r_mag ** 3) * np.cross(r_hat, self.body.inertia_tensor @ r_hat)


class CustomTorque(TorqueModel):
    """Torque given by ``function(time) -> 3-vector`` in body-fixed axes."""

    def __init__(self, function: Callable[[float], NDArray], name: str = "custom_torque"):
        super().__init__(name)
        self.function = function

    def update(self, time: float) -> NDArray:
        return np.asarray(self.function(time), dtype=np.float64)
