"""
===============================================================================
ORBIT SIM - Maneuvers
===============================================================================
A maneuver is a planned impulsive burn attached to a ship: the node where
it happens (projected onto the current orbit), the delta-V vector and the
orbit the ship would be on afterwards.

Maneuvers are never executed automatically.  Flying one means commanding
throttle through the normal thrust path when the node comes up.

Rocket-equation helpers live here as well; the simulation's thrust
integration uses the same formulas.

Units:
    - delta-V vectors on Maneuver are in simulation length units per second
    - rocket-equation helpers are SI (m/s, kg, s, N)
    - g0 = 9.80665 m/s^2
===============================================================================
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from core.constants import STANDARD_GRAVITY
from dynamics.orbits import Orbit, OrbitProjection, orbit_from_cartesian

logger = logging.getLogger(__name__)

# Process-wide maneuver ids, never reused within a run
_maneuver_ids = itertools.count()


def next_maneuver_id() -> int:
    return next(_maneuver_ids)


@dataclass(frozen=True, eq=False)
class Maneuver:
    """
    Attributes
    ----------
    target_orbit : Orbit
        Orbit after the burn, with its mean anomaly at the node.
    delta_v : np.ndarray
        Burn vector (length unit / s), ecliptic frame.
    node : OrbitProjection or None
        Where and when on the pre-burn orbit the burn happens.
    id : int
        Monotonically increasing identifier.
    """
    target_orbit: Orbit
    delta_v: np.ndarray
    node: Optional[OrbitProjection] = None
    id: int = field(default_factory=next_maneuver_id)

    @property
    def magnitude(self) -> float:
        return float(np.linalg.norm(self.delta_v))


@dataclass(frozen=True)
class BurnEstimate:
    """Propellant and burn time for a maneuver on a given stage."""
    delta_v_ms: float
    propellant: float
    duration_s: float
    feasible: bool


def plan_maneuver(
    orbit: Orbit,
    world_position: np.ndarray,
    origin: np.ndarray,
    delta_v: np.ndarray,
    body_mu: float = 0.0,
) -> Maneuver:
    """
    Place a burn on ``orbit`` at the point nearest ``world_position``.

    The node is found with ``orbit.project``; the state at the node comes
    from ``orbit.stats(time_delta)`` and the target orbit from that state
    with ``delta_v`` added to the velocity.

    Parameters
    ----------
    orbit : Orbit
        The ship's current orbit.
    world_position : np.ndarray
        Target point (world frame), usually picked on a map.
    origin : np.ndarray
        World position of the orbit's primary.
    delta_v : np.ndarray
        Burn vector (length unit / s).
    body_mu : float
        The ship's own gravitational parameter, copied onto the target orbit.

    Raises
    ------
    ValueError
        If ``orbit`` cannot be projected onto (a stationary orbit).
    UnsupportedEccentricityError
        If the post-burn state has no valid orbit.
    """
    delta_v = np.asarray(delta_v, dtype=np.float64)
    node = orbit.project(world_position, origin)
    state = orbit.stats(node.time_delta_ms, origin)

    target = orbit_from_cartesian(
        state.position, state.velocity + delta_v, origin, orbit.mu, body_mu,
    )
    maneuver = Maneuver(target_orbit=target, delta_v=delta_v, node=node)

    logger.info(
        "Maneuver %d planned: |dv|=%.3e, node in %.1f s, %s -> %s",
        maneuver.id, maneuver.magnitude, node.time_delta_ms / 1000.0,
        orbit.regime.value, target.regime.value,
    )
    return maneuver


# =============================================================================
# ROCKET EQUATION
# =============================================================================

def tsiolkovsky_delta_v(isp: float, initial_mass: float, final_mass: float) -> float:
    """
    dv = Isp * g0 * ln(m0 / m1)   (m/s)
    """
    if initial_mass <= 0.0 or final_mass <= 0.0:
        raise ValueError(
            f"Masses must be positive, got m0={initial_mass}, m1={final_mass}"
        )
    return isp * STANDARD_GRAVITY * np.log(initial_mass / final_mass)


def propellant_mass(dv: float, isp: float, final_mass: float) -> float:
    """
    Propellant needed for ``dv`` (m/s):

        m_prop = m1 * (exp(dv / (Isp g0)) - 1)
    """
    if isp <= 0.0:
        raise ValueError(f"Isp must be positive, got {isp}")
    if final_mass <= 0.0:
        raise ValueError(f"Final mass must be positive, got {final_mass}")
    return final_mass * (np.exp(dv / (isp * STANDARD_GRAVITY)) - 1.0)


def mass_flow_rate(thrust: float, isp: float) -> float:
    """mdot = F / (g0 Isp)   (kg/s)"""
    return thrust / (STANDARD_GRAVITY * isp)


def estimate_burn(maneuver: Maneuver, ship, length_unit_m: float) -> BurnEstimate:
    """
    Propellant and full-throttle burn time for ``maneuver`` on the ship's
    active stage.  A maneuver is feasible when the stage holds enough
    propellant.
    """
    dv_ms = maneuver.magnitude * length_unit_m
    stage = ship.active_stage
    if stage is None:
        return BurnEstimate(delta_v_ms=dv_ms, propellant=float('inf'),
                            duration_s=float('inf'), feasible=False)

    final_mass = ship.mass / np.exp(dv_ms / (stage.isp * STANDARD_GRAVITY))
    needed = propellant_mass(dv_ms, stage.isp, final_mass)
    duration = needed / mass_flow_rate(stage.thrust, stage.isp)
    return BurnEstimate(
        delta_v_ms=dv_ms,
        propellant=float(needed),
        duration_s=float(duration),
        feasible=bool(needed <= stage.propellant),
    )
