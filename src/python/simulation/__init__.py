"""
===============================================================================
ORBIT SIM - Simulation Package
===============================================================================
Time-stepped orchestration of the body graph.

Modules:
    solar_system : Per-tick update, SOI re-parenting, attitude and thrust
    telemetry    : Per-tick snapshots collected into a pandas DataFrame
===============================================================================
"""
