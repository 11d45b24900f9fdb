"""
===============================================================================
ORBIT SIM - Solar System Orchestrator
===============================================================================
Drives the two-body simulation one tick at a time.  Every call to
``update(sim_time_ms, dt_ms)`` runs:

    1. LAZY INIT  -- on the first call only: seed every body's orbit from
                     its Kepler table at ``sim_time_ms`` and compute each
                     planet's sphere of influence.
    2. PLANETS    -- advance each orbit by dt (primary before secondaries)
                     and spin the body about its axis.
    3. SHIPS      -- for each ship:
                        a. advance the orbit
                        b. sphere-of-influence check, re-parenting if the
                           dominant body changed
                        c. attitude integration + stability assist
                        d. thrust integration (rocket equation), replacing
                           the orbit variant if the regime changed

A ship's step is computed on copies and committed at the end, so a body
whose step fails keeps its previous state.  Failures are collected and
raised together as SimulationStepError once every other body has moved.

The simulation is deterministic: identical tick sequences on identical
body tables give bit-identical states.

Commands (throttle, angular rates, stability assist, maneuvers) are
applied between ticks through the methods in the COMMANDS section.
===============================================================================
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from core.config import SimulationSettings
from core.constants import (
    TWO_PI,
    MS_PER_SECOND,
    MS_PER_DAY,
    ANGULAR_RATE_SNAP,
)
from core.exceptions import SimulationStepError, UnsupportedEccentricityError
from core.quaternion import Quaternion
from dynamics.bodies import Body, BodyGraph, BodyRef, Ship, ShipMotion
from dynamics.orbital_elements import (
    eccentricity_from_state_vectors,
    sphere_of_influence,
)
from dynamics.orbits import (
    orbit_from_cartesian,
    orbit_from_kepler_elements,
    select_orbit_variant,
)
from guidance.maneuver import (
    Maneuver,
    mass_flow_rate,
    plan_maneuver,
    tsiolkovsky_delta_v,
)

logger = logging.getLogger(__name__)

_AXIS_X = np.array([1.0, 0.0, 0.0])
_AXIS_Y = np.array([0.0, 1.0, 0.0])
_AXIS_Z = np.array([0.0, 0.0, 1.0])

# (world position, world velocity) of a body within one tick
_State = Tuple[np.ndarray, np.ndarray]


class SolarSystem:
    """
    Orchestrates the per-tick update of a BodyGraph.

    Parameters
    ----------
    graph : BodyGraph
        Validated body graph.  The orchestrator owns it from here on;
        readers may only inspect it between ``update`` calls.
    settings : SimulationSettings, optional
        Length unit and stability-assist damping; defaults to AU and pi/8.

    Usage
    -----
        system = SolarSystem(BodyGraph.from_table(table), settings)
        t = settings.epoch_ms
        for _ in range(settings.steps):
            system.update(t, settings.dt_ms)
            t += settings.dt_ms
    """

    def __init__(self, graph: BodyGraph, settings: Optional[SimulationSettings] = None) -> None:
        self.graph = graph
        self.settings = settings or SimulationSettings()
        self.initialized = False
        self.time_ms: Optional[float] = None

        # Launch state, restored by reset()
        self._initial_primaries = {b.handle: b.primary for b in graph}
        self._initial_ships = {
            s.handle: ([st.propellant for st in s.stages], s.motion.copy())
            for s in graph.ships()
        }

    # =========================================================================
    # UPDATE
    # =========================================================================

    def update(self, sim_time_ms: float, dt_ms: float) -> None:
        """
        Advance the whole system from ``sim_time_ms`` by ``dt_ms``.

        Raises
        ------
        SimulationStepError
            If one or more ship steps hit an unsupported eccentricity.
            Every other body has completed the tick.
        UnsupportedEccentricityError
            If a body's Kepler table yields an unsupported eccentricity
            during initialization.
        """
        if not self.initialized:
            self._initialize(sim_time_ms)

        order = self.graph.traversal_order()
        states: Dict[int, _State] = {}

        for handle in order:
            body = self.graph[handle]
            if not body.is_ship:
                states[handle] = self._step_planet(body, dt_ms, states)

        failures: List[UnsupportedEccentricityError] = []
        for handle in order:
            body = self.graph[handle]
            if not body.is_ship:
                continue
            try:
                self._step_ship(body, dt_ms, states)
            except UnsupportedEccentricityError as exc:
                logger.error("Step aborted for '%s': %s", body.name, exc)
                failures.append(UnsupportedEccentricityError(exc.eccentricity, body=body.name))

        self.time_ms = sim_time_ms + dt_ms

        if failures:
            raise SimulationStepError(failures)

    def run(self, start_ms: float, dt_ms: float, steps: int, recorder=None) -> None:
        """Run ``steps`` ticks, recording after each one when a recorder is given."""
        t = start_ms
        for _ in range(steps):
            self.update(t, dt_ms)
            t += dt_ms
            if recorder is not None:
                recorder.record()

    def _initialize(self, sim_time_ms: float) -> None:
        for handle in self.graph.traversal_order():
            body = self.graph[handle]
            primary = self.graph.primary_of(handle)
            mu = 0.0 if primary is None else primary.constants.u
            try:
                body.orbit = orbit_from_kepler_elements(
                    body.kepler_elements, sim_time_ms, mu,
                    body_mu=body.constants.u, root=body.is_root,
                )
            except UnsupportedEccentricityError as exc:
                logger.error("Cannot seed '%s': %s", body.name, exc)
                raise UnsupportedEccentricityError(exc.eccentricity, body=body.name) from exc

        for body in self.graph.planets():
            if body.is_root:
                continue
            primary = self.graph.primary_of(body.handle)
            elements = body.orbit.elements()
            body.soi_radius = float(sphere_of_influence(
                elements.a, elements.e, body.constants.u, primary.constants.u,
            ))

        self.initialized = True
        self.time_ms = sim_time_ms
        logger.info(
            "Solar system initialized at t=%.0f ms: %d bodies (%d ships)",
            sim_time_ms, len(self.graph), len(self.graph.ships()),
        )

    # =========================================================================
    # PLANETS
    # =========================================================================

    def _step_planet(self, body: Body, dt_ms: float, states: Dict[int, _State]) -> _State:
        body.orbit.advance(dt_ms)

        period = body.constants.rotation_period
        if period:
            body.rotation = (body.rotation + TWO_PI * dt_ms / (period * MS_PER_DAY)) % TWO_PI

        if body.primary is None:
            return body.orbit.stats().position, np.zeros(3)

        origin, primary_velocity = states[body.primary]
        stats = body.orbit.stats(0.0, origin)
        return stats.position, primary_velocity + stats.velocity

    # =========================================================================
    # SHIPS
    # =========================================================================

    def _step_ship(self, ship: Ship, dt_ms: float, states: Dict[int, _State]) -> None:
        dt_s = dt_ms / MS_PER_SECOND

        orbit = ship.orbit.copy()
        orbit.advance(dt_ms)

        primary = ship.primary
        origin, primary_velocity = states[primary]
        stats = orbit.stats(0.0, origin)
        position, velocity = stats.position, stats.velocity

        # --- Sphere of influence ---
        target = self._soi_target(ship, position, states)
        if target != primary:
            world_velocity = velocity + primary_velocity
            origin, primary_velocity = states[target]
            velocity = world_velocity - primary_velocity
            orbit = orbit_from_cartesian(
                position, velocity, origin,
                self.graph[target].constants.u, ship.constants.u,
            )
            logger.info(
                "'%s' left the SOI of '%s' for '%s' (%s orbit)",
                ship.name, self.graph[primary].name, self.graph[target].name,
                orbit.regime.value,
            )
            primary = target

        # --- Attitude ---
        motion = self._integrate_rotation(ship.motion, dt_s)

        # --- Thrust ---
        burn = self._integrate_thrust(ship, motion, dt_s)
        if burn is not None:
            dv_vector, dv_ms, new_propellant = burn
            velocity = velocity + dv_vector
            mu = self.graph[primary].constants.u
            e = eccentricity_from_state_vectors(position, velocity, origin, mu)
            variant = select_orbit_variant(e)
            if not isinstance(orbit, variant):
                logger.info(
                    "'%s' orbit regime %s -> %s (e=%.9f)",
                    ship.name, orbit.regime.value, variant.regime.value, e,
                )
                orbit = variant(mu=mu, body_mu=ship.constants.u)
            orbit.set_from_cartesian(position, velocity, origin)

        # --- Commit ---
        if primary != ship.primary:
            self.graph.reparent(ship.handle, primary)
        ship.orbit = orbit
        ship.motion = motion
        if burn is not None:
            stage = ship.active_stage
            stage.propellant = new_propellant
            ship.delta_v_expended += dv_ms
            if new_propellant <= 0.0:
                logger.warning("'%s' stage propellant exhausted", ship.name)

    def _soi_target(self, ship: Ship, position: np.ndarray, states: Dict[int, _State]) -> int:
        """
        Handle of the body whose sphere of influence should hold the ship.

        Candidates are non-root planets whose SOI contains ``position``;
        the nearest one wins.  With no candidate the root takes over.
        """
        best = self.graph.root.handle
        best_distance = np.inf
        for body in self.graph.planets():
            if body.is_root or body.soi_radius is None:
                continue
            distance = float(np.linalg.norm(position - states[body.handle][0]))
            if distance < body.soi_radius and distance < best_distance:
                best, best_distance = body.handle, distance
        return best

    def _integrate_rotation(self, motion: ShipMotion, dt_s: float) -> ShipMotion:
        """
        Body-frame rate integration:

            q <- q * q_x(pitch dt) * q_y(roll dt) * q_z(yaw dt)

        With stability assist on, each rate then moves toward zero by
        ``stability_damping_step * dt``, stopping at zero.
        """
        out = motion.copy()
        out.orientation = (
            motion.orientation
            * Quaternion.from_axis_angle(_AXIS_X, motion.pitch * dt_s)
            * Quaternion.from_axis_angle(_AXIS_Y, motion.roll * dt_s)
            * Quaternion.from_axis_angle(_AXIS_Z, motion.yaw * dt_s)
        ).normalize()

        if motion.stability_assist:
            step = self.settings.stability_damping_step * dt_s
            out.pitch = _dampen(motion.pitch, step)
            out.roll = _dampen(motion.roll, step)
            out.yaw = _dampen(motion.yaw, step)
        return out

    def _integrate_thrust(self, ship: Ship, motion: ShipMotion,
                          dt_s: float) -> Optional[Tuple[np.ndarray, float, float]]:
        """
        Impulsive burn for one tick, or None when nothing fires.

            mdot   = F * throttle / (g0 Isp)
            burned = min(mdot dt, propellant)
            dv     = Isp g0 ln(m0 / (m0 - burned))

        Returns the delta-V vector (length unit / s), its magnitude in m/s
        and the stage's remaining propellant.
        """
        if motion.throttle <= 0.0:
            return None
        stage = ship.active_stage
        if stage is None:
            logger.debug("'%s' throttle %.2f but no propellant left", ship.name, motion.throttle)
            return None

        mdot = mass_flow_rate(stage.thrust * motion.throttle, stage.isp)
        burned = min(mdot * dt_s, stage.propellant)
        m0 = ship.mass
        dv_ms = tsiolkovsky_delta_v(stage.isp, m0, m0 - burned)

        direction = motion.thrust_direction()
        dv_vector = direction * (dv_ms / self.settings.length_unit_m)
        return dv_vector, float(dv_ms), stage.propellant - burned

    # =========================================================================
    # COMMANDS
    # =========================================================================

    def _ship(self, ref: BodyRef) -> Ship:
        body = self.graph[ref]
        if not body.is_ship:
            raise ValueError(f"'{body.name}' is not a ship")
        return body

    def set_throttle(self, ref: BodyRef, throttle: float) -> float:
        """Set throttle, clamped to [0, 1]; returns the applied value."""
        if not np.isfinite(throttle):
            raise ValueError(f"Throttle must be finite, got {throttle}")
        ship = self._ship(ref)
        ship.motion.throttle = float(np.clip(throttle, 0.0, 1.0))
        return ship.motion.throttle

    def set_angular_rates(self, ref: BodyRef, pitch: Optional[float] = None,
                          yaw: Optional[float] = None, roll: Optional[float] = None) -> None:
        _check_rates(pitch=pitch, yaw=yaw, roll=roll)
        motion = self._ship(ref).motion
        if pitch is not None:
            motion.pitch = float(pitch)
        if yaw is not None:
            motion.yaw = float(yaw)
        if roll is not None:
            motion.roll = float(roll)

    def adjust_angular_rates(self, ref: BodyRef, pitch: float = 0.0,
                             yaw: float = 0.0, roll: float = 0.0) -> None:
        _check_rates(pitch=pitch, yaw=yaw, roll=roll)
        motion = self._ship(ref).motion
        motion.pitch += pitch
        motion.yaw += yaw
        motion.roll += roll

    def set_stability_assist(self, ref: BodyRef, enabled: bool) -> None:
        self._ship(ref).motion.stability_assist = bool(enabled)

    def toggle_stability_assist(self, ref: BodyRef) -> bool:
        motion = self._ship(ref).motion
        motion.stability_assist = not motion.stability_assist
        return motion.stability_assist

    def plan_maneuver(self, ref: BodyRef, world_position: np.ndarray,
                      delta_v: np.ndarray) -> Maneuver:
        """Project a node onto the ship's orbit and attach the maneuver to the ship."""
        ship = self._ship(ref)
        if ship.orbit is None:
            raise RuntimeError("Maneuvers can only be planned after the first update")
        origin = self.graph.world_position(ship.primary)
        maneuver = plan_maneuver(ship.orbit, world_position, origin, delta_v,
                                 body_mu=ship.constants.u)
        ship.maneuvers.append(maneuver)
        return maneuver

    def remove_maneuver(self, ref: BodyRef, maneuver_id: int) -> Maneuver:
        ship = self._ship(ref)
        for i, maneuver in enumerate(ship.maneuvers):
            if maneuver.id == maneuver_id:
                return ship.maneuvers.pop(i)
        raise KeyError(f"Ship '{ship.name}' has no maneuver {maneuver_id}")

    # =========================================================================
    # OUTPUTS
    # =========================================================================

    def world_states(self) -> Dict[int, _State]:
        """World position and velocity of every body from the current orbits."""
        states: Dict[int, _State] = {}
        for handle in self.graph.traversal_order():
            body = self.graph[handle]
            if body.primary is None:
                states[handle] = (body.orbit.stats().position, np.zeros(3))
                continue
            origin, primary_velocity = states[body.primary]
            stats = body.orbit.stats(0.0, origin)
            states[handle] = (stats.position, primary_velocity + stats.velocity)
        return states

    def snapshot(self) -> List[Dict[str, Any]]:
        """
        Read-only per-body view of the current tick.

        Returns
        -------
        list of dict
            One entry per body in traversal order with keys name, primary,
            kind, regime, position, velocity (world), relative_velocity,
            a, e, I, omega, argument_perihelion, M, orbital_period,
            periapsis, apoapsis, rotation, soi_radius and, for ships,
            mass, propellant, throttle, delta_v_expended and the attitude
            as 3-2-1 Euler angles about x, y, z (attitude_x, attitude_y, attitude_z).
        """
        if not self.initialized:
            return []

        states = self.world_states()
        rows = []
        for handle in self.graph.traversal_order():
            body = self.graph[handle]
            primary = self.graph.primary_of(handle)
            origin = None if primary is None else states[primary.handle][0]
            stats = body.orbit.stats(0.0, origin)
            elements = body.orbit.elements()
            position, velocity = states[handle]

            row = {
                'name': body.name,
                'primary': None if primary is None else primary.name,
                'kind': body.kind.value,
                'regime': body.orbit.regime.value,
                'position': position,
                'velocity': velocity,
                'relative_velocity': stats.velocity,
                'a': elements.a,
                'e': elements.e,
                'I': elements.I,
                'omega': elements.omega,
                'argument_perihelion': elements.argument_perihelion,
                'M': elements.M,
                'orbital_period': stats.orbital_period,
                'periapsis': stats.periapsis,
                'apoapsis': stats.apoapsis,
                'rotation': body.rotation,
                'soi_radius': body.soi_radius,
            }
            if body.is_ship:
                euler_x, euler_y, euler_z = body.motion.orientation.to_euler()
                row.update(
                    mass=body.mass,
                    propellant=body.propellant,
                    throttle=body.motion.throttle,
                    delta_v_expended=body.delta_v_expended,
                    attitude_x=euler_x,
                    attitude_y=euler_y,
                    attitude_z=euler_z,
                )
            rows.append(row)
        return rows

    def reset(self) -> None:
        """
        Drop every orbit and restore launch state so the next ``update``
        re-seeds from the Kepler tables at its own start time.
        """
        for handle, primary in self._initial_primaries.items():
            body = self.graph[handle]
            if primary is not None and body.primary != primary:
                self.graph.reparent(handle, primary)
            body.orbit = None
            body.rotation = 0.0
            body.soi_radius = None

        for handle, (propellant, motion) in self._initial_ships.items():
            ship = self.graph[handle]
            for stage, amount in zip(ship.stages, propellant):
                stage.propellant = amount
            ship.motion = motion.copy()
            ship.maneuvers.clear()
            ship.delta_v_expended = 0.0

        self.initialized = False
        self.time_ms = None
        logger.info("Solar system reset")

    def __repr__(self) -> str:
        return (f"SolarSystem(bodies={len(self.graph)}, "
                f"initialized={self.initialized}, t={self.time_ms})")


def _dampen(rate: float, step: float) -> float:
    """Move ``rate`` toward zero by ``step``, clamping at zero."""
    if abs(rate) <= step:
        return 0.0
    rate = rate - np.sign(rate) * step
    if abs(rate) < ANGULAR_RATE_SNAP:
        return 0.0
    return float(rate)


def _check_rates(**rates: Optional[float]) -> None:
    for axis, rate in rates.items():
        if rate is not None and not np.isfinite(rate):
            raise ValueError(f"{axis} rate must be finite, got {rate}")
