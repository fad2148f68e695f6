"""
===============================================================================
ATTITUDE PROPAGATION - Dynamics Module
===============================================================================
Bodies, their ephemerides and the equations of motion.

Submodules:
    ephemeris         -- Translational and rotational ephemeris query surface
    body              -- Body properties and current environment state
    environment       -- Acceleration and torque providers
    state_derivative  -- Translational/rotational derivatives and block coupling
===============================================================================
"""
