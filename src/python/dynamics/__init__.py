"""
===============================================================================
ORBIT SIM - Dynamics Package
===============================================================================
Two-body orbital dynamics and the body data model.

Submodules:
    orbital_elements -- Kepler solvers, element tables, frame transforms, SOI
    orbits           -- Elliptical / parabolic / hyperbolic / stationary orbits
    bodies           -- Bodies, ships, propulsion stages and the body graph
===============================================================================
"""
