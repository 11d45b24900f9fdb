"""
===============================================================================
ORBIT SIM - Orbital Element Mathematics
===============================================================================
Leaf module of the dynamics package.  Everything here is a pure function of
its arguments (no module state), so identical inputs always give
bit-identical outputs.

Provides:

    1. **Epochs** -- Julian centuries since J2000.0 for evaluating the
       linear secular element models ``value = base + rate * T``.

    2. **Kepler equation solvers** -- elliptic (E - e sin E = M),
       hyperbolic (e sinh H - H = M) and parabolic (Barker's equation).
       The iterative solvers never raise: they return a KeplerSolution
       with a convergence flag and log a warning when the iteration cap
       is hit.

    3. **Element helpers** -- mean anomaly from mean longitude (with the
       JPL perturbation terms for the outer planets), eccentricity from
       state vectors, sphere-of-influence radius.

    4. **Frame transform** -- perifocal -> ecliptic rotation shared by every
       orbit variant, and its inverse.

Units: angles in the element tables are degrees (JPL convention); all other
angles are radians.  Lengths are in the caller's simulation unit.

References
----------
    [1] Standish & Williams, "Keplerian Elements for Approximate Positions
        of the Major Planets", JPL Solar System Dynamics.
    [2] Vallado, "Fundamentals of Astrodynamics and Applications", 4th ed.,
        Algorithms 2 (Kepler), 4 (hyperbolic) and 3 (Barker).
    [3] Danby, "Fundamentals of Celestial Mechanics", 2nd ed., Sec. 6.6.

===============================================================================
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import brentq

from core.constants import (
    TWO_PI,
    PI,
    DEG2RAD,
    MS_PER_DAY,
    DAYS_PER_JULIAN_CENTURY,
    J2000_EPOCH_MS,
    KEPLER_TOLERANCE,
    KEPLER_TOLERANCE_FLOOR,
    KEPLER_MAX_ITERATIONS,
    HYPERBOLIC_MAX_ITERATIONS,
    NEAR_PARABOLIC_ECCENTRICITY,
)
from core.exceptions import ConfigurationError
from core.quaternion import Quaternion

logger = logging.getLogger(__name__)

_AXIS_X = np.array([1.0, 0.0, 0.0])
_AXIS_Z = np.array([0.0, 0.0, 1.0])


# =============================================================================
# KEPLER ELEMENT TABLES
# =============================================================================

@dataclass(frozen=True)
class Perturbations:
    """
    Additional mean-anomaly terms for Jupiter through Pluto (degrees).

        M += b*T^2 + c*cos(f*T) + s*sin(f*T)
    """
    b: float = 0.0
    c: float = 0.0
    s: float = 0.0
    f: float = 0.0


@dataclass(frozen=True)
class KeplerElementsAt:
    """Kepler table evaluated at one epoch (angles in degrees)."""
    a: float
    e: float
    I: float
    L: float
    w: float
    omega: float
    mean_anomaly: float

    @property
    def argument_perihelion(self) -> float:
        """Argument of periapsis = longitude of periapsis - node (deg)."""
        return self.w - self.omega


@dataclass(frozen=True)
class KeplerElementTable:
    """
    Secular Kepler element model for one body.

    Each element is a ``(base, rate)`` pair evaluated as
    ``base + rate * T`` with T in Julian centuries since J2000.0.

    Attributes
    ----------
    a : (float, float)
        Semi-major axis (simulation length unit).  Parabolic bodies store
        the semi-latus rectum here.
    e : (float, float)
        Eccentricity.
    I : (float, float)
        Inclination (deg).
    L : (float, float)
        Mean longitude (deg).
    w : (float, float)
        Longitude of periapsis (deg).
    omega : (float, float)
        Longitude of the ascending node (deg).
    perturbations : Perturbations, optional
        Extra mean-anomaly terms.
    """
    a: Tuple[float, float]
    e: Tuple[float, float]
    I: Tuple[float, float]
    L: Tuple[float, float]
    w: Tuple[float, float]
    omega: Tuple[float, float]
    perturbations: Optional[Perturbations] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'KeplerElementTable':
        """
        Build a table from a mapping with keys a, e, I, L, w, omega
        (each ``[base, rate]``) and an optional ``perturbations`` mapping.

        Raises
        ------
        ConfigurationError
            If a key is missing or an entry is not a two-element sequence.
        """
        pairs = {}
        for key in ('a', 'e', 'I', 'L', 'w', 'omega'):
            if key not in data:
                raise ConfigurationError(f"Kepler elements missing '{key}'")
            pairs[key] = _as_pair(key, data[key])

        perturbations = None
        if data.get('perturbations'):
            p = data['perturbations']
            perturbations = Perturbations(
                b=float(p.get('b', 0.0)),
                c=float(p.get('c', 0.0)),
                s=float(p.get('s', 0.0)),
                f=float(p.get('f', 0.0)),
            )

        return cls(perturbations=perturbations, **pairs)

    def at(self, T: float) -> KeplerElementsAt:
        """Evaluate every element at T Julian centuries past J2000.0."""
        L = self.L[0] + self.L[1] * T
        w = self.w[0] + self.w[1] * T
        return KeplerElementsAt(
            a=self.a[0] + self.a[1] * T,
            e=self.e[0] + self.e[1] * T,
            I=self.I[0] + self.I[1] * T,
            L=L,
            w=w,
            omega=self.omega[0] + self.omega[1] * T,
            mean_anomaly=mean_anomaly_from_elements(L, w, self.perturbations, T),
        )

    def eccentricity_at(self, epoch_ms: float) -> float:
        """Eccentricity at a Unix-millisecond epoch."""
        T = julian_centuries_since_j2000(epoch_ms)
        return self.e[0] + self.e[1] * T


def _as_pair(key: str, value: Any) -> Tuple[float, float]:
    if isinstance(value, (int, float)):
        return (float(value), 0.0)
    if not isinstance(value, Sequence) or len(value) != 2:
        raise ConfigurationError(
            f"Kepler element '{key}' must be [base, rate], got {value!r}"
        )
    return (float(value[0]), float(value[1]))


# =============================================================================
# EPOCHS
# =============================================================================

def julian_centuries_since_j2000(epoch_ms: float) -> float:
    """
    Julian centuries elapsed between J2000.0 and a Unix-millisecond epoch.

        JD = 2451545.0 + (t - t_J2000) / 86400000
        T  = (JD - 2451545.0) / 36525

    Parameters
    ----------
    epoch_ms : float
        Milliseconds since 1970-01-01T00:00:00Z.

    Returns
    -------
    float
        T, negative before J2000.0.
    """
    return (epoch_ms - J2000_EPOCH_MS) / MS_PER_DAY / DAYS_PER_JULIAN_CENTURY


# =============================================================================
# KEPLER EQUATION SOLVERS
# =============================================================================

@dataclass(frozen=True)
class KeplerSolution:
    """
    Result of a Kepler-equation solve.

    Attributes
    ----------
    anomaly : float
        Eccentric anomaly E, hyperbolic anomaly H, or parabolic anomaly
        D = tan(nu/2), depending on the solver.
    iterations : int
        Newton iterations spent (0 for closed-form solutions).
    converged : bool
        False when the iteration cap was hit; ``anomaly`` is then the best
        estimate available.
    residual : float
        Equation residual at ``anomaly``.
    """
    anomaly: float
    iterations: int
    converged: bool
    residual: float


def solve_kepler_equation(
    e: float,
    M: float,
    tol: float = KEPLER_TOLERANCE,
    max_iter: int = KEPLER_MAX_ITERATIONS,
) -> KeplerSolution:
    """
    Solve Kepler's equation E - e*sin(E) = M for 0 <= e < 1.

    M is reduced to [-pi, pi) and, since the equation is odd in E and M,
    solved for |M| on the bracket [|M|, min(|M| + e, pi)].  Newton-Raphson
    steps that leave the bracket are replaced by bisection.

    Initial guess:
        e <  0.99999 : E0 = atan2(sin M, cos M - e)
        e >= 0.99999 : E0 = (6M)^(1/3), the e -> 1 limit of the cubic
                       expansion, clipped into the bracket

    If the iteration cap is reached for a near-parabolic orbit, the
    truncated series (1-e)E + e(E^3/6 - E^5/120) = M is solved as well
    and whichever estimate has the smaller residual is returned.

    Parameters
    ----------
    e : float
        Eccentricity in [0, 1).
    M : float
        Mean anomaly (rad), any value.
    tol : float
        Step tolerance (rad); never tighter than 1e-15.
    max_iter : int
        Iteration cap.

    Returns
    -------
    KeplerSolution
        E on the same branch as M (E - e sin E = M, not reduced).
    """
    tol = max(tol, KEPLER_TOLERANCE_FLOOR)

    turns = np.floor((M + PI) / TWO_PI)
    m = M - turns * TWO_PI
    sign = -1.0 if m < 0.0 else 1.0
    m = abs(m)

    lo = m
    hi = min(m + e, PI)

    if e < NEAR_PARABOLIC_ECCENTRICITY:
        E = np.arctan2(np.sin(m), np.cos(m) - e)
    else:
        E = np.cbrt(6.0 * m)
    E = min(max(E, lo), hi)

    converged = False
    iterations = 0
    for iterations in range(1, max_iter + 1):
        f = E - e * np.sin(E) - m
        if f > 0.0:
            hi = E
        else:
            lo = E

        fp = 1.0 - e * np.cos(E)
        E_new = E - f / fp if fp > 0.0 else 0.5 * (lo + hi)
        if not lo <= E_new <= hi:
            E_new = 0.5 * (lo + hi)

        step = abs(E_new - E)
        E = E_new
        if step <= tol:
            converged = True
            break

    residual = E - e * np.sin(E) - m

    if not converged:
        if e >= NEAR_PARABOLIC_ECCENTRICITY:
            E_series = _near_parabolic_series(e, m)
            residual_series = E_series - e * np.sin(E_series) - m
            if abs(residual_series) < abs(residual):
                E, residual = E_series, residual_series
        logger.warning(
            "Kepler solver hit %d iterations (e=%.12f, M=%.6e); "
            "using best estimate E=%.15f, residual=%.3e",
            max_iter, e, M, sign * E, residual,
        )
    else:
        logger.debug("Kepler solver: e=%.6f converged in %d iterations", e, iterations)

    return KeplerSolution(
        anomaly=float(sign * E + turns * TWO_PI),
        iterations=iterations,
        converged=converged,
        residual=float(sign * residual),
    )


def _near_parabolic_series(e: float, m: float) -> float:
    """
    Series solution of Kepler's equation for e -> 1 and small E.

    The cubic (1-e)E + e E^3/6 = m is solved in closed form (Cardano) and
    then refined with two Newton steps on the quintic expansion
    (1-e)E + e(E^3/6 - E^5/120) = m, which avoids the cancellation in
    E - e sin E when both e and E are close to their limits.
    """
    p = 6.0 * (1.0 - e) / e
    q = 6.0 * m / e
    disc = np.sqrt(0.25 * q * q + p * p * p / 27.0)
    E = np.cbrt(0.5 * q + disc) + np.cbrt(0.5 * q - disc)

    for _ in range(2):
        E2 = E * E
        f = (1.0 - e) * E + e * E * E2 * (1.0 / 6.0 - E2 / 120.0) - m
        fp = (1.0 - e) + e * E2 * (0.5 - E2 / 24.0)
        if fp <= 0.0:
            break
        E -= f / fp

    return float(min(max(E, 0.0), PI))


def solve_hyperbolic_kepler_equation(
    e: float,
    M: float,
    tol: float = KEPLER_TOLERANCE,
    max_iter: int = HYPERBOLIC_MAX_ITERATIONS,
) -> KeplerSolution:
    """
    Solve the hyperbolic Kepler equation e*sinh(H) - H = M for e > 1.

    The equation is odd, so it is solved for |M| on the bracket

        0 <= H <= asinh(|M| / (e - 1))

    (from e sinh H - H >= (e - 1) sinh H for H >= 0), starting from
    H0 = ln(2|M|/e + 1.8).  Newton steps leaving the bracket fall back to
    bisection.  Should the cap still be reached, Brent's method on the
    same bracket produces the final estimate.

    Parameters
    ----------
    e : float
        Eccentricity, > 1.
    M : float
        Hyperbolic mean anomaly (rad), unbounded.
    tol : float
        Relative step tolerance; never tighter than 1e-15.
    max_iter : int
        Newton iteration cap.

    Returns
    -------
    KeplerSolution
    """
    tol = max(tol, KEPLER_TOLERANCE_FLOOR)

    sign = -1.0 if M < 0.0 else 1.0
    m = abs(M)

    if m == 0.0:
        return KeplerSolution(anomaly=0.0, iterations=0, converged=True, residual=0.0)

    lo = 0.0
    hi = float(np.arcsinh(m / (e - 1.0)))
    H = min(max(np.log(2.0 * m / e + 1.8), lo), hi)

    converged = False
    iterations = 0
    for iterations in range(1, max_iter + 1):
        f = e * np.sinh(H) - H - m
        if f > 0.0:
            hi = H
        else:
            lo = H

        fp = e * np.cosh(H) - 1.0
        H_new = H - f / fp
        if not lo <= H_new <= hi:
            H_new = 0.5 * (lo + hi)

        step = abs(H_new - H)
        H = H_new
        if step <= tol * max(1.0, abs(H)):
            converged = True
            break

    if not converged:
        def kepler_h(h):
            return e * np.sinh(h) - h - m

        f_lo, f_hi = kepler_h(lo), kepler_h(hi)
        if f_lo * f_hi < 0.0:
            H, info = brentq(kepler_h, lo, hi, xtol=tol, full_output=True, disp=False)
            converged = bool(info.converged)
            iterations += info.iterations
        logger.warning(
            "Hyperbolic Kepler solver hit %d Newton iterations (e=%.9f, M=%.6e); "
            "bracketed fallback converged=%s",
            max_iter, e, M, converged,
        )

    residual = e * np.sinh(H) - H - m

    return KeplerSolution(
        anomaly=float(sign * H),
        iterations=iterations,
        converged=converged,
        residual=float(sign * residual),
    )


def solve_barker_equation(M: float) -> KeplerSolution:
    """
    Solve Barker's equation for a parabolic orbit.

    With D = tan(nu/2) and parabolic mean anomaly M = sqrt(mu/p^3) (t - tp):

        D + D^3/3 = 2M

    The depressed cubic D^3 + 3D - 6M = 0 has the single real root

        Y = cbrt(3|M| + sqrt(9M^2 + 1)),    D = sign(M) (Y - 1/Y)

    Solving for |M| avoids the cancellation of the negative branch.
    """
    m = abs(M)
    Y = np.cbrt(3.0 * m + np.sqrt(9.0 * m * m + 1.0))
    D = Y - 1.0 / Y
    if M < 0.0:
        D = -D
    residual = D + D ** 3 / 3.0 - 2.0 * M
    return KeplerSolution(anomaly=float(D), iterations=0, converged=True,
                          residual=float(residual))


# =============================================================================
# ELEMENT HELPERS
# =============================================================================

def mean_anomaly_from_elements(
    L: float,
    w: float,
    perturbations: Optional[Perturbations] = None,
    T: float = 0.0,
) -> float:
    """
    Mean anomaly from mean longitude and longitude of periapsis.

        M = L - w + b*T^2 + c*cos(f*T) + s*sin(f*T)

    normalized to (-180, 180].

    Parameters
    ----------
    L : float
        Mean longitude (deg).
    w : float
        Longitude of periapsis (deg).
    perturbations : Perturbations, optional
        Outer-planet correction terms.
    T : float
        Julian centuries since J2000.0.

    Returns
    -------
    float
        Mean anomaly (deg).
    """
    M = L - w
    if perturbations is not None:
        M += (perturbations.b * T * T
              + perturbations.c * np.cos(perturbations.f * T * DEG2RAD)
              + perturbations.s * np.sin(perturbations.f * T * DEG2RAD))

    M = M % 360.0
    if M > 180.0:
        M -= 360.0
    return float(M)


def eccentricity_vector(
    position: np.ndarray,
    velocity: np.ndarray,
    primary_position: np.ndarray,
    mu: float,
) -> np.ndarray:
    """
    Eccentricity vector of a state relative to its primary.

        r = position - primary_position
        h = r x v
        e_vec = (v x h) / mu - r / |r|

    It points at periapsis; its magnitude is the eccentricity.
    """
    r = np.asarray(position, dtype=np.float64) - np.asarray(primary_position, dtype=np.float64)
    v = np.asarray(velocity, dtype=np.float64)
    h = np.cross(r, v)
    return np.cross(v, h) / mu - r / np.linalg.norm(r)


def eccentricity_from_state_vectors(
    position: np.ndarray,
    velocity: np.ndarray,
    primary_position: np.ndarray,
    mu: float,
) -> float:
    """
    Scalar eccentricity |e_vec| from a world position, a velocity relative
    to the primary, the primary's world position and its mu.

    A zero radius yields NaN, which no orbit variant supports.
    """
    with np.errstate(invalid='ignore', divide='ignore'):
        return float(np.linalg.norm(
            eccentricity_vector(position, velocity, primary_position, mu)
        ))


def sphere_of_influence(
    semi_major_axis: float,
    eccentricity: float,
    mu_body: float,
    mu_primary: float,
) -> float:
    """
    Sphere-of-influence radius of a body about its primary.

        r_SOI = a (1 - e) (m / (3 M))^(1/3)

    i.e. the Hill radius evaluated at periapsis.  Mass ratios are taken
    from gravitational parameters (m/M = mu_body/mu_primary).

    Parameters
    ----------
    semi_major_axis : float
        Orbit semi-major axis (simulation length unit).
    eccentricity : float
        Orbit eccentricity.
    mu_body : float
        Gravitational parameter of the body.
    mu_primary : float
        Gravitational parameter of its primary.

    Returns
    -------
    float
        SOI radius in the simulation length unit.
    """
    return semi_major_axis * (1.0 - eccentricity) * np.cbrt(mu_body / (3.0 * mu_primary))


# =============================================================================
# FRAME TRANSFORMS
# =============================================================================

def transform_to_ecliptic(
    offset: Optional[np.ndarray],
    vec: Optional[np.ndarray],
    argument_perihelion: float,
    omega: float,
    I: float,
) -> Optional[np.ndarray]:
    """
    Map a perifocal vector into the ecliptic frame.

    Three chained axis-angle rotations are applied in order:

        1. about Z by the argument of periapsis
        2. about X by the inclination
        3. about Z by the longitude of the ascending node

    followed by a translation by ``offset`` (the primary's world position
    for positions; None for velocities).

    Parameters
    ----------
    offset : np.ndarray or None
        Translation applied after rotation.
    vec : np.ndarray or None
        Perifocal vector.  None is passed through (an open orbit's
        apoapsis).
    argument_perihelion, omega, I : float
        Orientation angles (rad).

    Returns
    -------
    np.ndarray or None
    """
    if vec is None:
        return None

    q1 = Quaternion.from_axis_angle(_AXIS_Z, argument_perihelion)
    q2 = Quaternion.from_axis_angle(_AXIS_X, I)
    q3 = Quaternion.from_axis_angle(_AXIS_Z, omega)

    rotated = q3.rotate_vector(q2.rotate_vector(q1.rotate_vector(vec)))

    if offset is not None:
        rotated = rotated + np.asarray(offset, dtype=np.float64)

    return rotated


def transform_from_ecliptic(
    offset: Optional[np.ndarray],
    vec: np.ndarray,
    argument_perihelion: float,
    omega: float,
    I: float,
) -> np.ndarray:
    """
    Inverse of :func:`transform_to_ecliptic`: remove ``offset`` and rotate
    about Z by -omega, X by -I, Z by -argument_perihelion.
    """
    v = np.asarray(vec, dtype=np.float64)
    if offset is not None:
        v = v - np.asarray(offset, dtype=np.float64)

    q1 = Quaternion.from_axis_angle(_AXIS_Z, -omega)
    q2 = Quaternion.from_axis_angle(_AXIS_X, -I)
    q3 = Quaternion.from_axis_angle(_AXIS_Z, -argument_perihelion)

    return q3.rotate_vector(q2.rotate_vector(q1.rotate_vector(v)))
