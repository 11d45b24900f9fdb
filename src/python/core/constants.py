"""
===============================================================================
ORBIT SIM - Physical, Astronomical and Numerical Constants
===============================================================================
Central repository for the constants used throughout the two-body simulation.

Unit conventions
----------------
    - Distances are expressed in a single simulation length unit chosen by
      the caller (the astronomical unit for the default body table).  SI
      values in this module are scaled by the configuration loader before
      they reach the dynamics code.
    - Simulation time is carried in milliseconds at the public boundary
      (epochs and tick sizes) and converted to seconds for mean motion.
    - Angles are radians everywhere except the Kepler element tables, which
      follow the JPL convention of degrees and degrees per Julian century.
===============================================================================
"""

import numpy as np


# =============================================================================
# MATHEMATICAL CONSTANTS
# =============================================================================
PI = np.pi
TWO_PI = 2.0 * np.pi
DEG2RAD = PI / 180.0
RAD2DEG = 180.0 / PI

# =============================================================================
# TIME
# =============================================================================
MS_PER_SECOND = 1000.0
MS_PER_DAY = 86_400_000.0
DAYS_PER_JULIAN_CENTURY = 36525.0

# J2000.0 epoch: 2000-01-01T12:00:00Z
J2000_EPOCH_MS = 946_728_000_000.0     # Unix milliseconds at J2000.0

# =============================================================================
# PHYSICAL CONSTANTS
# =============================================================================
AU = 1.495978707e11                    # Astronomical Unit (m)
STANDARD_GRAVITY = 9.80665             # g0 used in the rocket equation (m/s^2)

# =============================================================================
# NUMERICAL TOLERANCES
# =============================================================================
# Kepler equation solvers
KEPLER_TOLERANCE = 1e-12
KEPLER_TOLERANCE_FLOOR = 1e-15
KEPLER_MAX_ITERATIONS = 30
HYPERBOLIC_MAX_ITERATIONS = 50
NEAR_PARABOLIC_ECCENTRICITY = 0.99999

# Half-width of the parabolic eccentricity band around e = 1
PARABOLIC_TOLERANCE = 1e-9

# Below these magnitudes an orbit is treated as circular / equatorial
CIRCULAR_TOLERANCE = 1e-11
EQUATORIAL_TOLERANCE = 1e-11

# =============================================================================
# SHIP MOTION
# =============================================================================
STABILITY_DAMPING_STEP = PI / 8.0      # rad/s^2 removed per second of SAS
ANGULAR_RATE_SNAP = 1e-9               # rad/s; smaller rates snap to zero
DEFAULT_HEADING = (1.0, 0.0, 0.0)      # ship body-frame thrust axis
