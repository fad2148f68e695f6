"""
===============================================================================
ATTITUDE PROPAGATION - Core Module
===============================================================================
Mathematical building blocks shared by every other package.

Submodules:
    quaternion       -- Scalar-first quaternions and rotation-matrix conversion
    frames           -- Aerodynamic frame chain, skew/vee helpers, angle sets
    interpolation    -- Sliding-window Lagrange interpolation of tables
    data_structures  -- Growable time-keyed state history
    exceptions       -- Configuration and propagation error taxonomy
    constants        -- Physical and astronomical constants
===============================================================================
"""
