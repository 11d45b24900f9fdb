"""
===============================================================================
ORBIT SIM - Guidance Package
===============================================================================
Maneuver planning for ships.

Modules:
    maneuver : Maneuver value object, node projection, rocket equation
===============================================================================
"""
