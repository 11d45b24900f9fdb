"""
===============================================================================
ORBIT SIM - Quaternion Rotations
===============================================================================

Unit quaternion used for two jobs in the simulation:

    1. The perifocal -> ecliptic frame transform applied by every orbit
       variant (three chained axis-angle rotations).
    2. Ship attitude, integrated each tick from the pitch/yaw/roll rates.

Convention
----------
Scalar-first, Hamilton product:

    q = [q_w, q_x, q_y, q_z] = q_w + q_x*i + q_y*j + q_z*k

A vector v is rotated with the sandwich product

    v' = q * v * q_conjugate

and ``a * b`` rotates first by ``b`` and then by ``a``.  Composing body-frame
increments onto an attitude is therefore ``attitude * increment``.

References
----------
    [1] Markley & Crassidis, "Fundamentals of Spacecraft Attitude
        Determination and Control", Springer, 2014.
    [2] Kuipers, "Quaternions and Rotation Sequences", Princeton, 1999.

===============================================================================
"""

import numpy as np
from typing import Tuple, Union


class Quaternion:
    """
    Unit quaternion for 3D rotations.

    A rotation by angle theta about unit axis n is encoded as

        q = [cos(theta/2), sin(theta/2) * n]

    The constructor normalizes by default and enforces w >= 0; q and -q
    describe the same rotation, so this only picks a canonical sign.

    Examples
    --------
    >>> q = Quaternion.from_axis_angle(np.array([0.0, 0.0, 1.0]), np.pi / 2)
    >>> q.rotate_vector(np.array([1.0, 0.0, 0.0]))   # ~[0, 1, 0]
    """

    _NORM_TOLERANCE = 1e-10
    _COMPARISON_TOLERANCE = 1e-9

    def __init__(self, w: float, x: float, y: float, z: float,
                 normalize: bool = True) -> None:
        """
        Parameters
        ----------
        w, x, y, z : float
            Scalar and vector components.
        normalize : bool, optional
            Normalize to unit length (default).  Internal factories that
            already produce unit quaternions pass False.
        """
        self._q = np.array([w, x, y, z], dtype=np.float64)

        if normalize:
            self._normalize_in_place()

    # =========================================================================
    # COMPONENTS
    # =========================================================================

    @property
    def w(self) -> float:
        return float(self._q[0])

    @property
    def x(self) -> float:
        return float(self._q[1])

    @property
    def y(self) -> float:
        return float(self._q[2])

    @property
    def z(self) -> float:
        return float(self._q[3])

    @property
    def vector(self) -> np.ndarray:
        """Vector part [x, y, z] (copy)."""
        return self._q[1:4].copy()

    @property
    def components(self) -> np.ndarray:
        """All four components [w, x, y, z] (copy)."""
        return self._q.copy()

    @property
    def norm(self) -> float:
        return float(np.linalg.norm(self._q))

    def _normalize_in_place(self) -> None:
        n = np.linalg.norm(self._q)

        if n < self._NORM_TOLERANCE:
            raise ValueError(
                f"Cannot normalize near-zero quaternion (norm = {n:.2e})."
            )

        self._q /= n

        if self._q[0] < 0.0:
            self._q = -self._q

    # =========================================================================
    # FACTORIES
    # =========================================================================

    @staticmethod
    def identity() -> 'Quaternion':
        """The zero rotation [1, 0, 0, 0]."""
        return Quaternion(1.0, 0.0, 0.0, 0.0, normalize=False)

    @staticmethod
    def from_axis_angle(axis: np.ndarray, angle: float) -> 'Quaternion':
        """
        Rotation by ``angle`` radians about ``axis``.

        Parameters
        ----------
        axis : np.ndarray
            3-element axis; normalized internally.
        angle : float
            Rotation angle in radians (right-hand rule).

        Returns
        -------
        Quaternion

        Raises
        ------
        ValueError
            If the axis has near-zero magnitude.
        """
        axis = np.asarray(axis, dtype=np.float64)
        axis_norm = np.linalg.norm(axis)

        if axis_norm < 1e-12:
            raise ValueError("Rotation axis has near-zero magnitude.")

        n = axis / axis_norm
        half_angle = angle / 2.0
        sin_half = np.sin(half_angle)

        return Quaternion(np.cos(half_angle),
                          sin_half * n[0], sin_half * n[1], sin_half * n[2])

    # =========================================================================
    # ARITHMETIC
    # =========================================================================

    def conjugate(self) -> 'Quaternion':
        """Inverse rotation (equal to the inverse for unit quaternions)."""
        return Quaternion(self.w, -self.x, -self.y, -self.z, normalize=False)

    def normalize(self) -> 'Quaternion':
        """
        Return a unit-length copy.

        Repeated composition of small increments drifts the norm away
        from one; the attitude integrator renormalizes through this after
        every tick.
        """
        return Quaternion(self.w, self.x, self.y, self.z, normalize=True)

    def multiply(self, other: 'Quaternion') -> 'Quaternion':
        """
        Hamilton product ``self * other``.

        The product rotates first by ``other`` and then by ``self``:

            (a1 + b1 i + c1 j + d1 k)(a2 + b2 i + c2 j + d2 k) =
                (a1 a2 - b1 b2 - c1 c2 - d1 d2)
              + (a1 b2 + b1 a2 + c1 d2 - d1 c2) i
              + (a1 c2 - b1 d2 + c1 a2 + d1 b2) j
              + (a1 d2 + b1 c2 - c1 b2 + d1 a2) k
        """
        a1, b1, c1, d1 = self.w, self.x, self.y, self.z
        a2, b2, c2, d2 = other.w, other.x, other.y, other.z

        w = a1 * a2 - b1 * b2 - c1 * c2 - d1 * d2
        x = a1 * b2 + b1 * a2 + c1 * d2 - d1 * c2
        y = a1 * c2 - b1 * d2 + c1 * a2 + d1 * b2
        z = a1 * d2 + b1 * c2 - c1 * b2 + d1 * a2

        return Quaternion(w, x, y, z)

    def rotate_vector(self, v: np.ndarray) -> np.ndarray:
        """
        Rotate a 3-vector by this quaternion.

        Uses the expanded form of ``q * v * q*``:

            t  = 2 (u x v)
            v' = v + w t + u x t

        with u the vector part of q.

        Parameters
        ----------
        v : np.ndarray
            3-element vector.

        Returns
        -------
        np.ndarray
            Rotated vector (new array).
        """
        v = np.asarray(v, dtype=np.float64)
        u = self._q[1:4]

        t = 2.0 * np.cross(u, v)
        return v + self._q[0] * t + np.cross(u, t)

    # =========================================================================
    # CONVERSIONS
    # =========================================================================

    def to_euler(self) -> Tuple[float, float, float]:
        """
        3-2-1 Euler angles (roll, pitch, yaw) in radians.

        Only used for reporting ship attitude; the simulation itself never
        goes through Euler angles.
        """
        w, x, y, z = self.w, self.x, self.y, self.z

        roll = np.arctan2(2.0 * (w * x + y * z), 1.0 - 2.0 * (x * x + y * y))
        pitch = np.arcsin(np.clip(2.0 * (w * y - z * x), -1.0, 1.0))
        yaw = np.arctan2(2.0 * (w * z + x * y), 1.0 - 2.0 * (y * y + z * z))

        return (float(roll), float(pitch), float(yaw))

    # =========================================================================
    # OPERATORS
    # =========================================================================

    def __mul__(self, other: Union['Quaternion', float, int]) -> 'Quaternion':
        if isinstance(other, Quaternion):
            return self.multiply(other)
        if isinstance(other, (int, float)):
            q = self._q * float(other)
            return Quaternion(q[0], q[1], q[2], q[3], normalize=False)
        return NotImplemented

    def __eq__(self, other: object) -> bool:
        """Rotation equality: q and -q compare equal."""
        if not isinstance(other, Quaternion):
            return NotImplemented
        tol = self._COMPARISON_TOLERANCE
        return bool(np.allclose(self._q, other._q, atol=tol)
                    or np.allclose(self._q, -other._q, atol=tol))

    def __hash__(self) -> int:
        return hash(tuple(np.round(self._q, 9)))

    def __repr__(self) -> str:
        return (f"Quaternion(w={self.w:.10f}, x={self.x:.10f}, "
                f"y={self.y:.10f}, z={self.z:.10f})")

    def is_unit(self, tolerance: float = 1e-8) -> bool:
        return abs(self.norm - 1.0) < tolerance

    def copy(self) -> 'Quaternion':
        return Quaternion(self.w, self.x, self.y, self.z, normalize=False)
