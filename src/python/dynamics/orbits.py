"""
===============================================================================
ORBIT SIM - Orbit Variants
===============================================================================
Two-body orbit state holders, one per conic regime:

    EllipticalOrbit   0 <= e < 1      M wraps into [0, 2*pi)
    ParabolicOrbit    e ~ 1           Barker's equation, M unbounded
    HyperbolicOrbit   e > 1           hyperbolic Kepler equation, M unbounded
    StationaryOrbit   root body only  never moves

The variants form a closed set rather than a class hierarchy: each one
exposes the same operations (``supports``, ``set_from_kepler_elements``,
``set_from_cartesian``, ``advance``, ``stats``, ``project``, ``elements``)
and :func:`select_orbit_variant` picks one from the eccentricity alone.
The ``Orbit`` alias is the union of the four.

State conventions
-----------------
    - ``mu`` is the primary's gravitational parameter.
    - World positions are passed together with ``origin``, the primary's
      world position; velocities are always relative to the primary.
    - ``stats()`` returns a fresh, immutable OrbitStats snapshot; nothing
      is cached on the orbit.

References
----------
    [1] Vallado, "Fundamentals of Astrodynamics and Applications", 4th ed.,
        Algorithms 9 (RV2COE) and 10 (COE2RV).
    [2] Curtis, "Orbital Mechanics for Engineering Students", 4th ed.,
        Ch. 3 (time since periapsis for all three conics).
===============================================================================
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional, Type, Union

import numpy as np

from core.constants import (
    TWO_PI,
    PI,
    DEG2RAD,
    MS_PER_SECOND,
    PARABOLIC_TOLERANCE,
    CIRCULAR_TOLERANCE,
    EQUATORIAL_TOLERANCE,
)
from core.exceptions import UnsupportedEccentricityError
from dynamics.orbital_elements import (
    KeplerElementTable,
    julian_centuries_since_j2000,
    solve_kepler_equation,
    solve_hyperbolic_kepler_equation,
    solve_barker_equation,
    eccentricity_from_state_vectors,
    transform_to_ecliptic,
    transform_from_ecliptic,
)

logger = logging.getLogger(__name__)

_AXIS_X = np.array([1.0, 0.0, 0.0])
_AXIS_Z = np.array([0.0, 0.0, 1.0])
_ZERO = np.zeros(3)

# Margin kept from the asymptote of an open orbit when projecting onto it
_ASYMPTOTE_MARGIN = 1e-9


class OrbitRegime(Enum):
    """Tag of an orbit variant."""
    ELLIPTICAL = 'elliptical'
    PARABOLIC = 'parabolic'
    HYPERBOLIC = 'hyperbolic'
    STATIONARY = 'stationary'


# =============================================================================
# SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class OrbitStats:
    """
    Derived state of an orbit at one instant.

    Attributes
    ----------
    position : np.ndarray
        World position (primary position + orbital offset).
    velocity : np.ndarray
        Velocity relative to the primary.
    semi_major_axis, semi_minor_axis : float
        Conic axes; infinite for a parabola, a < 0 for a hyperbola.
    orbital_period : float
        Seconds; infinite for open orbits.
    center, periapsis : np.ndarray
        World positions of the conic centre and periapsis.
    apoapsis : np.ndarray or None
        World position of apoapsis; None for open orbits.
    mean_anomaly : float
        Mean anomaly the snapshot was computed at (rad).
    anomaly : float
        Eccentric (E), hyperbolic (H) or parabolic (D = tan(nu/2)) anomaly.
    true_anomaly : float
        True anomaly (rad); the argument of latitude for circular orbits.
    """
    position: np.ndarray
    velocity: np.ndarray
    semi_major_axis: float
    semi_minor_axis: float
    orbital_period: float
    center: np.ndarray
    periapsis: np.ndarray
    apoapsis: Optional[np.ndarray]
    mean_anomaly: float = 0.0
    anomaly: float = 0.0
    true_anomaly: float = 0.0


@dataclass(frozen=True)
class OrbitalElements:
    """Classical elements (radians).  ``a`` is infinite for a parabola."""
    a: float
    p: float
    e: float
    I: float
    omega: float
    argument_perihelion: float
    M: float


@dataclass(frozen=True)
class OrbitProjection:
    """
    Where and when an orbit passes a target point.

    Attributes
    ----------
    mean_anomaly : float
        Mean anomaly at the projected point (rad).
    time_delta_ms : float
        Milliseconds from the current mean anomaly to the projected one.
        Closed orbits report the next forward passage, in [0, period);
        open orbits a signed value (negative = already passed).
    true_anomaly : float
        True anomaly of the projected point (rad).
    """
    mean_anomaly: float
    time_delta_ms: float
    true_anomaly: float


# =============================================================================
# SHARED GEOMETRY
# =============================================================================

@dataclass(frozen=True)
class _StateGeometry:
    """Orientation of the conic through a state vector."""
    r_mag: float
    h_mag: float
    e: float
    energy: float
    I: float
    omega: float
    argument_perihelion: float
    true_anomaly: float


def _state_geometry(
    position: np.ndarray,
    velocity: np.ndarray,
    origin: Optional[np.ndarray],
    mu: float,
) -> _StateGeometry:
    """
    Decompose a state vector into conic orientation angles.

    The in-plane reference direction is the ascending node n_hat (or +X for
    an equatorial orbit) and m_hat = h_hat x n_hat completes the plane
    basis, so every angle comes from an atan2 of two projections:

        omega  = atan2(n_hat_y, n_hat_x)
        w      = atan2(e . m_hat, e . n_hat)
        nu     = atan2((e_hat x r) . h_hat, e_hat . r)

    Degenerate cases:
        - equatorial (sin I ~ 0): omega = 0, node direction = +X
        - circular (e ~ 0): w = 0 and nu is the argument of latitude
          (true longitude when also equatorial)
        - zero angular momentum: the plane normal defaults to +Z
    """
    r = np.asarray(position, dtype=np.float64)
    if origin is not None:
        r = r - np.asarray(origin, dtype=np.float64)
    v = np.asarray(velocity, dtype=np.float64)

    r_mag = float(np.linalg.norm(r))
    h = np.cross(r, v)
    h_mag = float(np.linalg.norm(h))

    if h_mag > 0.0:
        h_hat = h / h_mag
    else:
        logger.warning("Zero angular momentum state; orbit plane normal set to +Z")
        h_hat = _AXIS_Z

    e_vec = np.cross(v, h) / mu - r / r_mag
    e = float(np.linalg.norm(e_vec))
    energy = 0.5 * float(np.dot(v, v)) - mu / r_mag

    I = float(np.arccos(np.clip(h_hat[2], -1.0, 1.0)))

    n = np.cross(_AXIS_Z, h_hat)
    n_mag = float(np.linalg.norm(n))
    if n_mag < EQUATORIAL_TOLERANCE:
        n_hat = _AXIS_X
        omega = 0.0
    else:
        n_hat = n / n_mag
        omega = float(np.arctan2(n_hat[1], n_hat[0]) % TWO_PI)

    m_hat = np.cross(h_hat, n_hat)

    if e < CIRCULAR_TOLERANCE:
        argument_perihelion = 0.0
        true_anomaly = float(np.arctan2(np.dot(r, m_hat), np.dot(r, n_hat)))
    else:
        argument_perihelion = float(
            np.arctan2(np.dot(e_vec, m_hat), np.dot(e_vec, n_hat)) % TWO_PI
        )
        e_hat = e_vec / e
        true_anomaly = float(
            np.arctan2(np.dot(np.cross(e_hat, r), h_hat), np.dot(e_hat, r))
        )

    return _StateGeometry(
        r_mag=r_mag,
        h_mag=h_mag,
        e=e,
        energy=energy,
        I=I,
        omega=omega,
        argument_perihelion=argument_perihelion,
        true_anomaly=true_anomaly,
    )


def _perifocal_true_anomaly(orbit, world_position, origin) -> float:
    """True anomaly (-pi, pi] of a world point rotated into the orbit plane."""
    perifocal = transform_from_ecliptic(
        origin, world_position, orbit.argument_perihelion, orbit.omega, orbit.I,
    )
    return float(np.arctan2(perifocal[1], perifocal[0]))


def _to_world(orbit, origin, vec):
    return transform_to_ecliptic(origin, vec, orbit.argument_perihelion, orbit.omega, orbit.I)


def _from_table(table: KeplerElementTable, epoch_ms: float):
    at = table.at(julian_centuries_since_j2000(epoch_ms))
    return (
        at,
        at.I * DEG2RAD,
        at.omega * DEG2RAD,
        at.argument_perihelion * DEG2RAD,
        at.mean_anomaly * DEG2RAD,
    )


# =============================================================================
# ELLIPTICAL
# =============================================================================

@dataclass(eq=False)
class EllipticalOrbit:
    """
    Closed orbit, 0 <= e < 1.

    Attributes
    ----------
    mu : float
        Primary gravitational parameter (length^3/s^2).
    body_mu : float
        The orbiting body's own gravitational parameter (informational).
    a : float
        Semi-major axis.
    e : float
        Eccentricity.
    I, omega, argument_perihelion : float
        Inclination, ascending node, argument of periapsis (rad).
    M : float
        Mean anomaly, always wrapped into [0, 2*pi).
    """
    mu: float
    body_mu: float = 0.0
    a: float = 1.0
    e: float = 0.0
    I: float = 0.0
    omega: float = 0.0
    argument_perihelion: float = 0.0
    M: float = 0.0

    regime: ClassVar[OrbitRegime] = OrbitRegime.ELLIPTICAL

    @staticmethod
    def supports(e: float) -> bool:
        return 0.0 <= e < 1.0 - PARABOLIC_TOLERANCE

    @property
    def mean_motion(self) -> float:
        """n = sqrt(mu / a^3) (rad/s)."""
        return float(np.sqrt(self.mu / self.a ** 3))

    @property
    def orbital_period(self) -> float:
        return TWO_PI / self.mean_motion

    def set_from_kepler_elements(self, table: KeplerElementTable, epoch_ms: float) -> 'EllipticalOrbit':
        """Seed from a secular element table evaluated at ``epoch_ms``."""
        at, I, omega, argument_perihelion, M = _from_table(table, epoch_ms)

        self.a = at.a
        self.e = at.e
        self.I = I
        self.omega = omega
        self.argument_perihelion = argument_perihelion
        self.M = M % TWO_PI
        return self

    def set_from_cartesian(self, position, velocity, origin=None) -> 'EllipticalOrbit':
        """
        Recover elements from a world position and primary-relative velocity.

            a = -mu / (2 * energy)
            E = 2 atan2(sqrt(1-e) sin(nu/2), sqrt(1+e) cos(nu/2))
            M = E - e sin E

        Circular orbits use the argument of latitude in place of the true
        anomaly and fix the argument of periapsis at zero.

        Raises
        ------
        UnsupportedEccentricityError
            If the state is not elliptical.
        """
        geo = _state_geometry(position, velocity, origin, self.mu)
        if not self.supports(geo.e):
            raise UnsupportedEccentricityError(geo.e)

        e = geo.e
        nu = geo.true_anomaly
        if e < CIRCULAR_TOLERANCE:
            E = nu
        else:
            E = 2.0 * np.arctan2(np.sqrt(1.0 - e) * np.sin(nu / 2.0),
                                 np.sqrt(1.0 + e) * np.cos(nu / 2.0))

        self.a = -self.mu / (2.0 * geo.energy)
        self.e = e
        self.I = geo.I
        self.omega = geo.omega
        self.argument_perihelion = geo.argument_perihelion
        self.M = float((E - e * np.sin(E)) % TWO_PI)
        return self

    def advance(self, dt_ms: float) -> None:
        """M <- (M + n dt) mod 2*pi."""
        self.M = self._mean_anomaly_after(dt_ms)

    def _mean_anomaly_after(self, dt_ms: float) -> float:
        return float((self.M + self.mean_motion * (dt_ms / MS_PER_SECOND)) % TWO_PI)

    def stats(self, dt_ms: float = 0.0, origin=None) -> OrbitStats:
        """
        Snapshot ``dt_ms`` after the current mean anomaly.

        Perifocal state from the eccentric anomaly:

            r_pqw = [a (cos E - e), b sin E, 0]
            v_pqw = sqrt(mu / p) [-sin nu, e + cos nu, 0]
        """
        origin = _ZERO if origin is None else origin
        a, e = self.a, self.e
        M = self._mean_anomaly_after(dt_ms) if dt_ms else self.M

        E = solve_kepler_equation(e, M).anomaly
        nu = 2.0 * np.arctan2(np.sqrt(1.0 + e) * np.sin(E / 2.0),
                              np.sqrt(1.0 - e) * np.cos(E / 2.0))

        b = a * np.sqrt(1.0 - e * e)
        p = a * (1.0 - e * e)

        perifocal_position = np.array([a * (np.cos(E) - e), b * np.sin(E), 0.0])
        perifocal_velocity = np.sqrt(self.mu / p) * np.array(
            [-np.sin(nu), e + np.cos(nu), 0.0])

        periapsis = np.array([a * (1.0 - e), 0.0, 0.0])
        apoapsis = np.array([-a * (1.0 + e), 0.0, 0.0])
        center = np.array([-a * e, 0.0, 0.0])

        return OrbitStats(
            position=_to_world(self, origin, perifocal_position),
            velocity=_to_world(self, None, perifocal_velocity),
            semi_major_axis=a,
            semi_minor_axis=float(b),
            orbital_period=self.orbital_period,
            center=_to_world(self, origin, center),
            periapsis=_to_world(self, origin, periapsis),
            apoapsis=_to_world(self, origin, apoapsis),
            mean_anomaly=M,
            anomaly=float(E),
            true_anomaly=float(nu),
        )

    def project(self, world_position, origin=None) -> OrbitProjection:
        """Mean anomaly and time of the next passage through a target's direction."""
        e = self.e
        nu = _perifocal_true_anomaly(self, world_position, origin)
        E = 2.0 * np.arctan2(np.sqrt(1.0 - e) * np.sin(nu / 2.0),
                             np.sqrt(1.0 + e) * np.cos(nu / 2.0))
        M_target = float((E - e * np.sin(E)) % TWO_PI)
        dM = (M_target - self.M) % TWO_PI
        return OrbitProjection(
            mean_anomaly=M_target,
            time_delta_ms=float(dM / self.mean_motion * MS_PER_SECOND),
            true_anomaly=float(nu % TWO_PI),
        )

    def elements(self) -> OrbitalElements:
        return OrbitalElements(
            a=self.a, p=self.a * (1.0 - self.e ** 2), e=self.e, I=self.I,
            omega=self.omega, argument_perihelion=self.argument_perihelion, M=self.M,
        )

    def copy(self) -> 'EllipticalOrbit':
        return dataclasses.replace(self)


# =============================================================================
# PARABOLIC
# =============================================================================

@dataclass(eq=False)
class ParabolicOrbit:
    """
    Escape orbit at exactly the escape speed, e ~ 1.

    Parameterized by the semi-latus rectum ``p`` (the semi-major axis is
    infinite).  Time of flight follows Barker's equation with the
    parabolic mean anomaly M = sqrt(mu / p^3) (t - t_periapsis):

        tan(nu/2) + tan^3(nu/2) / 3 = 2M
    """
    mu: float
    body_mu: float = 0.0
    p: float = 1.0
    e: float = 1.0
    I: float = 0.0
    omega: float = 0.0
    argument_perihelion: float = 0.0
    M: float = 0.0

    regime: ClassVar[OrbitRegime] = OrbitRegime.PARABOLIC

    @staticmethod
    def supports(e: float) -> bool:
        return 1.0 - PARABOLIC_TOLERANCE <= e <= 1.0 + PARABOLIC_TOLERANCE

    @property
    def a(self) -> float:
        return float('inf')

    @property
    def mean_motion(self) -> float:
        """n = sqrt(mu / p^3) (rad/s)."""
        return float(np.sqrt(self.mu / self.p ** 3))

    def set_from_kepler_elements(self, table: KeplerElementTable, epoch_ms: float) -> 'ParabolicOrbit':
        """Seed from a table whose ``a`` entry holds the semi-latus rectum."""
        at, I, omega, argument_perihelion, M = _from_table(table, epoch_ms)

        self.p = at.a
        self.e = at.e
        self.I = I
        self.omega = omega
        self.argument_perihelion = argument_perihelion
        self.M = M
        return self

    def set_from_cartesian(self, position, velocity, origin=None) -> 'ParabolicOrbit':
        """p = h^2 / mu; M from Barker's equation at the current true anomaly."""
        geo = _state_geometry(position, velocity, origin, self.mu)
        if not self.supports(geo.e):
            raise UnsupportedEccentricityError(geo.e)

        D = np.tan(geo.true_anomaly / 2.0)

        self.p = geo.h_mag ** 2 / self.mu
        self.e = geo.e
        self.I = geo.I
        self.omega = geo.omega
        self.argument_perihelion = geo.argument_perihelion
        self.M = float(0.5 * (D + D ** 3 / 3.0))
        return self

    def advance(self, dt_ms: float) -> None:
        self.M = self.M + self.mean_motion * (dt_ms / MS_PER_SECOND)

    def stats(self, dt_ms: float = 0.0, origin=None) -> OrbitStats:
        origin = _ZERO if origin is None else origin
        p, e = self.p, self.e
        M = self.M + self.mean_motion * (dt_ms / MS_PER_SECOND) if dt_ms else self.M

        D = solve_barker_equation(M).anomaly
        nu = 2.0 * np.arctan(D)
        r = p / (1.0 + e * np.cos(nu))

        perifocal_position = np.array([r * np.cos(nu), r * np.sin(nu), 0.0])
        perifocal_velocity = np.sqrt(self.mu / p) * np.array(
            [-np.sin(nu), e + np.cos(nu), 0.0])
        periapsis = np.array([p / (1.0 + e), 0.0, 0.0])

        return OrbitStats(
            position=_to_world(self, origin, perifocal_position),
            velocity=_to_world(self, None, perifocal_velocity),
            semi_major_axis=float('inf'),
            semi_minor_axis=float('inf'),
            orbital_period=float('inf'),
            center=_to_world(self, origin, np.zeros(3)),
            periapsis=_to_world(self, origin, periapsis),
            apoapsis=None,
            mean_anomaly=M,
            anomaly=float(D),
            true_anomaly=float(nu),
        )

    def project(self, world_position, origin=None) -> OrbitProjection:
        limit = PI - _ASYMPTOTE_MARGIN
        nu = float(np.clip(_perifocal_true_anomaly(self, world_position, origin), -limit, limit))
        D = np.tan(nu / 2.0)
        M_target = float(0.5 * (D + D ** 3 / 3.0))
        return OrbitProjection(
            mean_anomaly=M_target,
            time_delta_ms=float((M_target - self.M) / self.mean_motion * MS_PER_SECOND),
            true_anomaly=nu,
        )

    def elements(self) -> OrbitalElements:
        return OrbitalElements(
            a=float('inf'), p=self.p, e=self.e, I=self.I,
            omega=self.omega, argument_perihelion=self.argument_perihelion, M=self.M,
        )

    def copy(self) -> 'ParabolicOrbit':
        return dataclasses.replace(self)


# =============================================================================
# HYPERBOLIC
# =============================================================================

@dataclass(eq=False)
class HyperbolicOrbit:
    """
    Escape orbit with e > 1.

    The semi-major axis is negative (a = -mu / (2 * energy) with positive
    energy) and the hyperbolic mean anomaly advances without bound at
    n = sqrt(mu / (-a)^3).
    """
    mu: float
    body_mu: float = 0.0
    a: float = -1.0
    e: float = 2.0
    I: float = 0.0
    omega: float = 0.0
    argument_perihelion: float = 0.0
    M: float = 0.0

    regime: ClassVar[OrbitRegime] = OrbitRegime.HYPERBOLIC

    @staticmethod
    def supports(e: float) -> bool:
        return bool(np.isfinite(e)) and e > 1.0 + PARABOLIC_TOLERANCE

    @property
    def mean_motion(self) -> float:
        return float(np.sqrt(self.mu / (-self.a) ** 3))

    @property
    def asymptote_true_anomaly(self) -> float:
        """Limiting true anomaly acos(-1/e) of the asymptotes."""
        return float(np.arccos(-1.0 / self.e))

    def set_from_kepler_elements(self, table: KeplerElementTable, epoch_ms: float) -> 'HyperbolicOrbit':
        """Seed from a table; a positive ``a`` is read as its magnitude."""
        at, I, omega, argument_perihelion, M = _from_table(table, epoch_ms)

        self.a = -abs(at.a)
        self.e = at.e
        self.I = I
        self.omega = omega
        self.argument_perihelion = argument_perihelion
        self.M = M
        return self

    def set_from_cartesian(self, position, velocity, origin=None) -> 'HyperbolicOrbit':
        """
        Recover elements from a state vector.

            H = 2 atanh( sqrt((e-1)/(e+1)) tan(nu/2) )
            M = e sinh H - H
        """
        geo = _state_geometry(position, velocity, origin, self.mu)
        if not self.supports(geo.e):
            raise UnsupportedEccentricityError(geo.e)

        e = geo.e
        x = np.sqrt((e - 1.0) / (e + 1.0)) * np.tan(geo.true_anomaly / 2.0)
        x = float(np.clip(x, -1.0 + 1e-16, 1.0 - 1e-16))
        H = 2.0 * np.arctanh(x)

        self.a = -self.mu / (2.0 * geo.energy)
        self.e = e
        self.I = geo.I
        self.omega = geo.omega
        self.argument_perihelion = geo.argument_perihelion
        self.M = float(e * np.sinh(H) - H)
        return self

    def advance(self, dt_ms: float) -> None:
        self.M = self.M + self.mean_motion * (dt_ms / MS_PER_SECOND)

    def stats(self, dt_ms: float = 0.0, origin=None) -> OrbitStats:
        """
        Snapshot ``dt_ms`` after the current mean anomaly.

            nu = 2 atan( sqrt((e+1)/(e-1)) tanh(H/2) )
            r  = a (1 - e^2) / (1 + e cos nu)
        """
        origin = _ZERO if origin is None else origin
        a, e = self.a, self.e
        M = self.M + self.mean_motion * (dt_ms / MS_PER_SECOND) if dt_ms else self.M

        H = solve_hyperbolic_kepler_equation(e, M).anomaly
        nu = 2.0 * np.arctan(np.sqrt((e + 1.0) / (e - 1.0)) * np.tanh(H / 2.0))

        p = a * (1.0 - e * e)
        r = p / (1.0 + e * np.cos(nu))

        perifocal_position = np.array([r * np.cos(nu), r * np.sin(nu), 0.0])
        perifocal_velocity = np.sqrt(self.mu / p) * np.array(
            [-np.sin(nu), e + np.cos(nu), 0.0])

        periapsis = np.array([a * (1.0 - e), 0.0, 0.0])
        center = np.array([-a * e, 0.0, 0.0])

        return OrbitStats(
            position=_to_world(self, origin, perifocal_position),
            velocity=_to_world(self, None, perifocal_velocity),
            semi_major_axis=a,
            semi_minor_axis=float(-a * np.sqrt(e * e - 1.0)),
            orbital_period=float('inf'),
            center=_to_world(self, origin, center),
            periapsis=_to_world(self, origin, periapsis),
            apoapsis=None,
            mean_anomaly=M,
            anomaly=float(H),
            true_anomaly=float(nu),
        )

    def project(self, world_position, origin=None) -> OrbitProjection:
        """
        Project onto the hyperbola.  Directions beyond the asymptotes are
        clamped to the nearest reachable true anomaly.
        """
        e = self.e
        limit = self.asymptote_true_anomaly - _ASYMPTOTE_MARGIN
        nu = float(np.clip(_perifocal_true_anomaly(self, world_position, origin), -limit, limit))
        H = 2.0 * np.arctanh(np.sqrt((e - 1.0) / (e + 1.0)) * np.tan(nu / 2.0))
        M_target = float(e * np.sinh(H) - H)
        return OrbitProjection(
            mean_anomaly=M_target,
            time_delta_ms=float((M_target - self.M) / self.mean_motion * MS_PER_SECOND),
            true_anomaly=nu,
        )

    def elements(self) -> OrbitalElements:
        return OrbitalElements(
            a=self.a, p=self.a * (1.0 - self.e ** 2), e=self.e, I=self.I,
            omega=self.omega, argument_perihelion=self.argument_perihelion, M=self.M,
        )

    def copy(self) -> 'HyperbolicOrbit':
        return dataclasses.replace(self)


# =============================================================================
# STATIONARY
# =============================================================================

@dataclass(eq=False)
class StationaryOrbit:
    """
    The root body's "orbit": a fixed world position.

    Supports any eccentricity but is only ever selected for the root of
    the body graph.  ``advance`` is a no-op.
    """
    mu: float = 0.0
    body_mu: float = 0.0
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))

    regime: ClassVar[OrbitRegime] = OrbitRegime.STATIONARY

    @staticmethod
    def supports(e: float) -> bool:
        return True

    def set_from_kepler_elements(self, table, epoch_ms) -> 'StationaryOrbit':
        return self

    def set_from_cartesian(self, position, velocity=None, origin=None) -> 'StationaryOrbit':
        self.position = np.array(position, dtype=np.float64)
        return self

    def advance(self, dt_ms: float) -> None:
        pass

    def stats(self, dt_ms: float = 0.0, origin=None) -> OrbitStats:
        return OrbitStats(
            position=self.position.copy(),
            velocity=np.zeros(3),
            semi_major_axis=0.0,
            semi_minor_axis=0.0,
            orbital_period=float('inf'),
            center=self.position.copy(),
            periapsis=self.position.copy(),
            apoapsis=self.position.copy(),
        )

    def project(self, world_position, origin=None) -> OrbitProjection:
        raise ValueError("A stationary orbit has no trajectory to project onto")

    def elements(self) -> OrbitalElements:
        return OrbitalElements(a=0.0, p=0.0, e=0.0, I=0.0, omega=0.0,
                               argument_perihelion=0.0, M=0.0)

    def copy(self) -> 'StationaryOrbit':
        return StationaryOrbit(mu=self.mu, body_mu=self.body_mu, position=self.position.copy())


Orbit = Union[EllipticalOrbit, ParabolicOrbit, HyperbolicOrbit, StationaryOrbit]

# Open-regime variants in selection order; exactly one supports a finite e >= 0.
ORBIT_VARIANTS = (EllipticalOrbit, ParabolicOrbit, HyperbolicOrbit)


# =============================================================================
# SELECTION AND CONSTRUCTION
# =============================================================================

def select_orbit_variant(e: float, root: bool = False) -> Type[Orbit]:
    """
    Pick the orbit variant for an eccentricity.

    Parameters
    ----------
    e : float
        Eccentricity.
    root : bool
        The root body always gets StationaryOrbit.

    Raises
    ------
    UnsupportedEccentricityError
        For NaN, infinite or negative eccentricity.
    """
    if root:
        return StationaryOrbit
    for variant in ORBIT_VARIANTS:
        if variant.supports(e):
            return variant
    raise UnsupportedEccentricityError(e)


def orbit_from_kepler_elements(
    table: Optional[KeplerElementTable],
    epoch_ms: float,
    mu: float,
    body_mu: float = 0.0,
    root: bool = False,
) -> Orbit:
    """Select the variant for the table's eccentricity at ``epoch_ms`` and seed it."""
    if root or table is None:
        return StationaryOrbit(mu=mu, body_mu=body_mu)

    e = table.eccentricity_at(epoch_ms)
    variant = select_orbit_variant(e)
    logger.debug("Kepler seed e=%.8f -> %s", e, variant.regime.value)
    return variant(mu=mu, body_mu=body_mu).set_from_kepler_elements(table, epoch_ms)


def orbit_from_cartesian(
    position: np.ndarray,
    velocity: np.ndarray,
    origin: np.ndarray,
    mu: float,
    body_mu: float = 0.0,
) -> Orbit:
    """Select the variant matching a state vector and set it from that state."""
    e = eccentricity_from_state_vectors(position, velocity, origin, mu)
    variant = select_orbit_variant(e)
    return variant(mu=mu, body_mu=body_mu).set_from_cartesian(position, velocity, origin)
