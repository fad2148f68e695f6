"""
===============================================================================
ATTITUDE PROPAGATION - Propagation Module
===============================================================================
Numerical integration and the settings that describe a propagation.

Submodules:
    integrator            -- Embedded Runge-Kutta pairs with PI step control
    termination           -- Time, custom, dependent-variable and hybrid stops
    dependent_variables   -- Derived output quantities
    propagator_settings   -- Translational, rotational and multi-type blocks
===============================================================================
"""
