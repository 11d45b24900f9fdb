"""
===============================================================================
ORBIT SIM - Bodies and the Body Graph
===============================================================================
Data model for everything the simulation moves:

    - Body            planet (or the root star) with physical constants,
                      a Kepler element table and its current orbit
    - Ship            body with propulsion stages, attitude/rate state and
                      planned maneuvers; ships never have secondaries
    - BodyGraph       arena owning every Body; ``primary`` and
                      ``secondaries`` are integer handles into the arena

The graph is a tree rooted at the single body without a primary.  It is
validated once at construction (``BodyGraph.from_table``) so structural
problems surface before the first simulation step.

Conventions
-----------
    - Physical constants arrive pre-scaled into the simulation length
      unit (see core.config.build_body_table).
    - Propulsion figures stay in SI: kg, s (Isp), N.
===============================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

import numpy as np

from core.constants import DEFAULT_HEADING
from core.exceptions import BodyGraphError, ConfigurationError
from core.quaternion import Quaternion
from dynamics.orbital_elements import KeplerElementTable
from dynamics.orbits import Orbit

logger = logging.getLogger(__name__)


class BodyKind(Enum):
    PLANET = 'planet'
    SHIP = 'ship'


# ============================================================================
#  CONSTANTS / PROPULSION / MOTION
# ============================================================================

@dataclass(frozen=True)
class PhysicalConstants:
    """
    Parameters
    ----------
    u : float
        Gravitational parameter (length_unit^3 / s^2).
    radius : float
        Mean radius (length unit).
    rotation_period : float
        Sidereal rotation period (days); negative means retrograde, zero
        means the body does not spin.
    axial_tilt : float
        Obliquity relative to the orbit plane (deg).
    """
    u: float = 0.0
    radius: float = 0.0
    rotation_period: float = 0.0
    axial_tilt: float = 0.0


@dataclass
class PropulsionStage:
    """
    A single rocket stage.

    Parameters
    ----------
    mass : float
        Dry mass (kg).
    isp : float
        Specific impulse (s).
    thrust : float
        Full-throttle thrust (N).
    propellant : float
        Remaining propellant (kg).
    """
    mass: float
    isp: float
    thrust: float
    propellant: float = 0.0

    @property
    def total_mass(self) -> float:
        return self.mass + self.propellant


@dataclass
class ShipMotion:
    """
    Attitude and rotational state of a ship.

    Angular rates are rad/s about the body X (pitch), Y (roll) and Z (yaw)
    axes.  ``heading`` is the body-frame thrust axis.
    """
    orientation: Quaternion = field(default_factory=Quaternion.identity)
    pitch: float = 0.0
    yaw: float = 0.0
    roll: float = 0.0
    throttle: float = 0.0
    stability_assist: bool = False
    heading: np.ndarray = field(default_factory=lambda: np.array(DEFAULT_HEADING, dtype=np.float64))

    def thrust_direction(self) -> np.ndarray:
        """Unit thrust direction in the ecliptic frame."""
        direction = self.orientation.rotate_vector(self.heading)
        return direction / np.linalg.norm(direction)

    def copy(self) -> 'ShipMotion':
        return ShipMotion(
            orientation=self.orientation.copy(),
            pitch=self.pitch,
            yaw=self.yaw,
            roll=self.roll,
            throttle=self.throttle,
            stability_assist=self.stability_assist,
            heading=self.heading.copy(),
        )


# ============================================================================
#  BODIES
# ============================================================================

@dataclass(eq=False)
class Body:
    """
    A planet, moon or star.

    ``primary`` and ``secondaries`` are handles into the owning BodyGraph;
    ``handle`` is this body's own slot.  ``orbit`` is None until the
    simulation seeds it.
    """
    name: str
    constants: PhysicalConstants
    kind: BodyKind = BodyKind.PLANET
    kepler_elements: Optional[KeplerElementTable] = None
    handle: int = -1
    primary: Optional[int] = None
    secondaries: List[int] = field(default_factory=list)
    orbit: Optional[Orbit] = None
    rotation: float = 0.0
    soi_radius: Optional[float] = None

    @property
    def is_root(self) -> bool:
        return self.primary is None

    @property
    def is_ship(self) -> bool:
        return self.kind is BodyKind.SHIP

    @property
    def is_planet(self) -> bool:
        return self.kind is BodyKind.PLANET


@dataclass(eq=False)
class Ship(Body):
    """Spacecraft.  Mass is the sum of every stage's dry mass and propellant."""
    kind: BodyKind = BodyKind.SHIP
    stages: List[PropulsionStage] = field(default_factory=list)
    motion: ShipMotion = field(default_factory=ShipMotion)
    maneuvers: List[Any] = field(default_factory=list)
    delta_v_expended: float = 0.0      # m/s, accumulated over all burns

    @property
    def mass(self) -> float:
        return sum(stage.total_mass for stage in self.stages)

    @property
    def active_stage(self) -> Optional[PropulsionStage]:
        """First stage that still has propellant, or None."""
        for stage in self.stages:
            if stage.propellant > 0.0:
                return stage
        return None

    @property
    def propellant(self) -> float:
        return sum(stage.propellant for stage in self.stages)


# ============================================================================
#  BODY GRAPH
# ============================================================================

BodyRef = Union[int, str]


class BodyGraph:
    """
    Arena of bodies arranged in a primary -> secondaries tree.

    Bodies are stored in a flat list and addressed by integer handle (or
    by name through ``handle()``).  Handles are assigned in depth-first
    order when built with :meth:`from_table`.

    Usage
    -----
        graph = BodyGraph.from_table(build_body_table(config))
        for h in graph.traversal_order():
            body = graph[h]
    """

    def __init__(self) -> None:
        self._bodies: List[Body] = []
        self._index: Dict[str, int] = {}

    # ------------------------------------------------------------------ #
    #  Construction
    # ------------------------------------------------------------------ #
    @classmethod
    def from_table(cls, table: Union[Mapping[str, Mapping[str, Any]],
                                     Sequence[Mapping[str, Any]]]) -> 'BodyGraph':
        """
        Build and validate a graph from a static body table.

        Parameters
        ----------
        table : mapping or sequence
            Either ``{name: entry}`` or a list of entries carrying a
            ``name`` key.  Each entry may hold ``type`` (planet|ship),
            ``primary``, ``constants``, ``kepler_elements`` and, for ships,
            ``stages``, ``motion``.

        Raises
        ------
        BodyGraphError
            Duplicate names, zero or several roots, unknown primaries,
            cycles, or a ship used as a primary.
        ConfigurationError
            Malformed entries (missing Kepler elements on a non-root body,
            unknown type).
        """
        entries = _normalize_entries(table)

        roots = [name for name, entry in entries.items() if entry.get('primary') is None]
        if len(roots) != 1:
            raise BodyGraphError(f"Body table needs exactly one root body, found {roots}")
        root = roots[0]

        children: Dict[str, List[str]] = {name: [] for name in entries}
        for name, entry in entries.items():
            primary = entry.get('primary')
            if primary is None:
                continue
            if primary not in entries:
                raise BodyGraphError(f"Body '{name}' has unknown primary '{primary}'")
            if primary == name:
                raise BodyGraphError(f"Body '{name}' cannot be its own primary")
            if _entry_kind(primary, entries[primary]) is BodyKind.SHIP:
                raise BodyGraphError(
                    f"Ship '{primary}' cannot have secondaries (found '{name}')"
                )
            children[primary].append(name)

        graph = cls()
        stack = [(root, None)]
        while stack:
            name, primary_handle = stack.pop()
            handle = graph.add(_build_body(name, entries[name]), primary_handle)
            for child in reversed(children[name]):
                stack.append((child, handle))

        if len(graph) != len(entries):
            unreachable = sorted(set(entries) - set(graph._index))
            raise BodyGraphError(f"Primary cycle detected among {unreachable}")

        logger.debug("Body graph built: %d bodies rooted at '%s'", len(graph), root)
        return graph

    def add(self, body: Body, primary: Optional[BodyRef] = None) -> int:
        """Append a body under ``primary`` and return its handle."""
        if body.name in self._index:
            raise BodyGraphError(f"Duplicate body name '{body.name}'")

        primary_handle = None if primary is None else self.handle(primary)
        if primary_handle is None and self._bodies:
            raise BodyGraphError(f"Body '{body.name}' needs a primary; root already set")
        if primary_handle is not None and self._bodies[primary_handle].is_ship:
            raise BodyGraphError(f"Ship '{self._bodies[primary_handle].name}' cannot have secondaries")

        handle = len(self._bodies)
        body.handle = handle
        body.primary = primary_handle
        body.secondaries = []
        self._bodies.append(body)
        self._index[body.name] = handle

        if primary_handle is not None:
            self._bodies[primary_handle].secondaries.append(handle)
        return handle

    # ------------------------------------------------------------------ #
    #  Lookup
    # ------------------------------------------------------------------ #
    def handle(self, ref: BodyRef) -> int:
        if isinstance(ref, str):
            try:
                return self._index[ref]
            except KeyError:
                raise KeyError(f"Unknown body '{ref}'") from None
        if not 0 <= ref < len(self._bodies):
            raise KeyError(f"Unknown body handle {ref}")
        return ref

    def __getitem__(self, ref: BodyRef) -> Body:
        return self._bodies[self.handle(ref)]

    def __contains__(self, ref: object) -> bool:
        if isinstance(ref, str):
            return ref in self._index
        return isinstance(ref, int) and 0 <= ref < len(self._bodies)

    def __len__(self) -> int:
        return len(self._bodies)

    def __iter__(self) -> Iterator[Body]:
        return iter(self._bodies)

    @property
    def root(self) -> Body:
        return self._bodies[0]

    def primary_of(self, ref: BodyRef) -> Optional[Body]:
        body = self[ref]
        return None if body.primary is None else self._bodies[body.primary]

    def ships(self) -> List[Ship]:
        return [b for b in self._bodies if b.is_ship]

    def planets(self) -> List[Body]:
        return [b for b in self._bodies if b.is_planet]

    # ------------------------------------------------------------------ #
    #  Traversal / mutation
    # ------------------------------------------------------------------ #
    def traversal_order(self) -> List[int]:
        """
        Depth-first order from the root: every primary strictly before
        its secondaries, siblings in insertion order.  Recomputed on every
        call so re-parenting is reflected immediately.
        """
        order: List[int] = []
        stack = [0] if self._bodies else []
        while stack:
            handle = stack.pop()
            order.append(handle)
            stack.extend(reversed(self._bodies[handle].secondaries))
        return order

    def reparent(self, ref: BodyRef, new_primary: BodyRef) -> None:
        """Move a body (and nothing else) under a different primary."""
        handle = self.handle(ref)
        target = self.handle(new_primary)
        body = self._bodies[handle]

        if body.is_root:
            raise BodyGraphError("The root body cannot be re-parented")
        if self._bodies[target].is_ship:
            raise BodyGraphError(f"Ship '{self._bodies[target].name}' cannot have secondaries")
        if target == handle or target in self.descendants(handle):
            raise BodyGraphError(
                f"Re-parenting '{body.name}' under '{self._bodies[target].name}' would create a cycle"
            )
        if body.primary == target:
            return

        self._bodies[body.primary].secondaries.remove(handle)
        self._bodies[target].secondaries.append(handle)
        body.primary = target

    def descendants(self, ref: BodyRef) -> List[int]:
        out: List[int] = []
        stack = list(self[ref].secondaries)
        while stack:
            h = stack.pop()
            out.append(h)
            stack.extend(self._bodies[h].secondaries)
        return out

    # ------------------------------------------------------------------ #
    #  Kinematics
    # ------------------------------------------------------------------ #
    def world_position(self, ref: BodyRef) -> np.ndarray:
        """World position of a body from the current orbits of its chain."""
        body = self[ref]
        if body.orbit is None:
            raise ValueError(f"Body '{body.name}' has no orbit yet")
        origin = None if body.primary is None else self.world_position(body.primary)
        return body.orbit.stats(0.0, origin).position

    def relative_position(self, ref: BodyRef) -> np.ndarray:
        """Position relative to the primary (world position for the root)."""
        body = self[ref]
        if body.primary is None:
            return self.world_position(body.handle)
        return self.world_position(body.handle) - self.world_position(body.primary)

    def world_velocity(self, ref: BodyRef) -> np.ndarray:
        """Velocity in the root's frame: relative velocities summed up the chain."""
        body = self[ref]
        velocity = np.zeros(3)
        while body is not None:
            if body.orbit is None:
                raise ValueError(f"Body '{body.name}' has no orbit yet")
            velocity = velocity + body.orbit.stats().velocity
            body = None if body.primary is None else self._bodies[body.primary]
        return velocity


# ============================================================================
#  TABLE HELPERS
# ============================================================================

def _normalize_entries(table) -> Dict[str, Mapping[str, Any]]:
    entries: Dict[str, Mapping[str, Any]] = {}
    if isinstance(table, Mapping):
        for name, entry in table.items():
            entries[str(name)] = entry or {}
        return entries

    for entry in table:
        name = entry.get('name')
        if not name:
            raise ConfigurationError(f"Body entry without a name: {entry!r}")
        if name in entries:
            raise BodyGraphError(f"Duplicate body name '{name}'")
        entries[name] = entry
    return entries


def _entry_kind(name: str, entry: Mapping[str, Any]) -> BodyKind:
    kind = entry.get('type', 'planet')
    try:
        return BodyKind(kind)
    except ValueError:
        raise ConfigurationError(f"Body '{name}' has unknown type '{kind}'") from None


def _build_body(name: str, entry: Mapping[str, Any]) -> Body:
    kind = _entry_kind(name, entry)
    c = entry.get('constants') or {}
    constants = PhysicalConstants(
        u=float(c.get('u', 0.0)),
        radius=float(c.get('radius', 0.0)),
        rotation_period=float(c.get('rotation_period', 0.0)),
        axial_tilt=float(c.get('axial_tilt', 0.0)),
    )

    elements = entry.get('kepler_elements')
    if elements is None and entry.get('primary') is not None:
        raise ConfigurationError(f"Body '{name}' has a primary but no kepler_elements")
    table = None if elements is None else KeplerElementTable.from_dict(elements)

    if kind is BodyKind.PLANET:
        return Body(name=name, constants=constants, kepler_elements=table)

    stages = [_build_stage(name, s) for s in entry.get('stages') or []]
    if stages and sum(s.mass for s in stages) == 0.0 and any(s.propellant > 0.0 for s in stages):
        raise ConfigurationError(f"Ship '{name}' carries propellant but has no dry mass")
    m = entry.get('motion') or {}
    motion = ShipMotion(
        pitch=float(m.get('pitch', 0.0)),
        yaw=float(m.get('yaw', 0.0)),
        roll=float(m.get('roll', 0.0)),
        throttle=float(m.get('throttle', 0.0)),
        stability_assist=bool(m.get('stability_assist', False)),
        heading=np.array(m.get('heading', DEFAULT_HEADING), dtype=np.float64),
    )
    return Ship(name=name, constants=constants, kepler_elements=table,
                stages=stages, motion=motion)


def _build_stage(ship: str, s: Mapping[str, Any]) -> PropulsionStage:
    try:
        stage = PropulsionStage(
            mass=float(s['mass']),
            isp=float(s['isp']),
            thrust=float(s['thrust']),
            propellant=float(s.get('propellant', 0.0)),
        )
    except KeyError as exc:
        raise ConfigurationError(f"Stage of ship '{ship}' is missing {exc}") from None
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Stage of ship '{ship}' is invalid: {exc}") from None

    if not (np.isfinite(stage.isp) and stage.isp > 0.0):
        raise ConfigurationError(f"Stage of ship '{ship}' needs a finite isp > 0, got {stage.isp}")
    for key in ('mass', 'thrust', 'propellant'):
        value = getattr(stage, key)
        if not (np.isfinite(value) and value >= 0.0):
            raise ConfigurationError(
                f"Stage of ship '{ship}' needs a finite {key} >= 0, got {value}")
    return stage
