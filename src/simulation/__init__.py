"""
===============================================================================
ATTITUDE PROPAGATION - Simulation Module
===============================================================================
Drivers that run propagations end to end.

Submodules:
    dynamics_simulator  -- Single-arc propagation loop and ephemeris handoff
    config              -- YAML scenario loading
===============================================================================
"""
