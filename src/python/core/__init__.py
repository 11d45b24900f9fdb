"""
===============================================================================
ORBIT SIM - Core Package
===============================================================================
Shared building blocks used by every other package.

Submodules:
    constants   -- Units, epochs, standard gravity, solver tolerances
    quaternion  -- Scalar-first unit quaternion (frame transforms, attitude)
    exceptions  -- Configuration and simulation-step error types
    config      -- YAML scenario loading and unit scaling
===============================================================================
"""
