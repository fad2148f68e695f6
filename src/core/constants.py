"""
===============================================================================
ATTITUDE PROPAGATION - Physical and Astronomical Constants
===============================================================================
Physical constants of the bundled Mars/Phobos scenario and the reference
environment models. SI units throughout (meters, seconds, kilograms,
radians).

Planetary values follow the IAU 2015 / JPL DE430 sets where applicable.
===============================================================================
"""

import numpy as np


# =============================================================================
# MATHEMATICAL CONSTANTS
# =============================================================================
PI = np.pi
RAD2DEG = 180.0 / PI

# =============================================================================
# EARTH PARAMETERS
# =============================================================================
EARTH_MU = 3.986004418e14              # Gravitational parameter (m^3/s^2)

# =============================================================================
# MARS / PHOBOS PARAMETERS
# =============================================================================
MARS_MU = 4.282837e13                  # m^3/s^2
MARS_ROTATION_RATE = 7.088218e-5       # rad/s (sidereal)

PHOBOS_SMA = 9376.0e3                  # Semi-major axis of Phobos orbit (m)
PHOBOS_MASS = 1.0659e16                # kg
PHOBOS_MEAN_RADIUS = 11.27e3           # m

# Normalized principal moments of Phobos (I / (M R^2))
PHOBOS_NORMALIZED_INERTIA = (0.3615, 0.4265, 0.5024)
