"""
===============================================================================
ORBIT SIM - Configuration Loading
===============================================================================
Reads the YAML scenario file and turns it into:

    - SimulationSettings   typed run settings (length unit, epoch, tick)
    - a body table         constants scaled into the simulation length unit,
                           ready for BodyGraph.from_table

Expected layout::

    simulation:
        length_unit_m: 1.495978707e11    # metres per length unit (AU)
        epoch: "2000-01-01T12:00:00Z"
        dt_ms: 60000
        steps: 1440
        stability_damping_step: 0.39269908
        heading: [1.0, 0.0, 0.0]
    bodies:
        sun:
            constants: {u: 1.32712438e20, radius: 696.0e6}
        earth:
            primary: sun
            constants: {u: 0.3986e15, radius: 6.3781e6,
                        rotation_period: 0.99726968, axial_tilt: 23.4392811}
            kepler_elements: {a: [1.00000018, -0.00000003], ...}

Constants in the file are SI (m^3/s^2, m, days, deg).  Kepler ``a`` entries
are already in the simulation length unit.  Missing keys fall back to
defaults.
===============================================================================
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Tuple, Union

import yaml

from core.constants import (
    AU,
    J2000_EPOCH_MS,
    STABILITY_DAMPING_STEP,
    DEFAULT_HEADING,
)
from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[3] / 'config' / 'solar_system.yaml'


@dataclass(frozen=True)
class SimulationSettings:
    """
    Parameters
    ----------
    length_unit_m : float
        Metres per simulation length unit.
    epoch_ms : float
        Start time (Unix milliseconds).
    dt_ms : float
        Default tick (ms).
    steps : int
        Default number of ticks for a CLI run.
    stability_damping_step : float
        Angular rate removed per second of stability assist (rad/s^2).
    heading : tuple
        Body-frame thrust axis of every ship without its own heading.
    """
    length_unit_m: float = AU
    epoch_ms: float = J2000_EPOCH_MS
    dt_ms: float = 60_000.0
    steps: int = 1440
    stability_damping_step: float = STABILITY_DAMPING_STEP
    heading: Tuple[float, float, float] = field(default=DEFAULT_HEADING)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'SimulationSettings':
        sim = config.get('simulation') or {}

        try:
            length_unit_m = float(sim.get('length_unit_m', AU))
            dt_ms = float(sim.get('dt_ms', 60_000.0))
            steps = int(sim.get('steps', 1440))
            damping = float(sim.get('stability_damping_step', STABILITY_DAMPING_STEP))
            heading = tuple(float(x) for x in sim.get('heading', DEFAULT_HEADING))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid simulation settings: {exc}") from exc

        if length_unit_m <= 0.0:
            raise ConfigurationError(f"length_unit_m must be positive, got {length_unit_m}")
        if len(heading) != 3:
            raise ConfigurationError(f"heading must have 3 components, got {heading}")

        epoch = sim.get('epoch')
        epoch_ms = J2000_EPOCH_MS if epoch is None else parse_epoch(epoch)

        return cls(
            length_unit_m=length_unit_m,
            epoch_ms=epoch_ms,
            dt_ms=dt_ms,
            steps=steps,
            stability_damping_step=damping,
            heading=heading,
        )


def parse_epoch(value: Union[str, datetime, float, int]) -> float:
    """
    Unix milliseconds from an ISO-8601 string, a datetime or a number
    (already milliseconds).  Naive datetimes are taken as UTC.
    """
    if isinstance(value, (int, float)):
        return float(value)

    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            value = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid epoch '{value}'") from exc

    if not isinstance(value, datetime):
        raise ConfigurationError(f"Invalid epoch {value!r}")

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp() * 1000.0


def load_config(path: Union[str, Path, None] = None) -> Dict[str, Any]:
    """Load a YAML scenario file (defaults to config/solar_system.yaml)."""
    path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    try:
        with open(path, 'r') as fh:
            config = yaml.safe_load(fh)
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {path}") from None
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Could not parse {path}: {exc}") from exc

    if not isinstance(config, dict):
        raise ConfigurationError(f"{path} does not contain a mapping")

    logger.debug("Loaded configuration from %s", path)
    return config


def build_body_table(config: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """
    Body table with SI constants scaled into the simulation length unit.

        u      -> u / L^3
        radius -> radius / L

    rotation_period (days) and axial_tilt (deg) pass through unchanged.
    The input config is not modified.
    """
    settings = SimulationSettings.from_config(config)
    bodies = config.get('bodies')
    if not isinstance(bodies, dict) or not bodies:
        raise ConfigurationError("Config has no 'bodies' mapping")

    L = settings.length_unit_m
    table: Dict[str, Dict[str, Any]] = {}
    for name, entry in bodies.items():
        entry = copy.deepcopy(entry) if entry else {}
        constants = entry.get('constants') or {}
        try:
            if 'u' in constants:
                constants['u'] = float(constants['u']) / L ** 3
            if 'radius' in constants:
                constants['radius'] = float(constants['radius']) / L
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid constants for body '{name}': {exc}") from exc
        entry['constants'] = constants

        if entry.get('type') == 'ship':
            motion = entry.setdefault('motion', {}) or {}
            motion.setdefault('heading', list(settings.heading))
            entry['motion'] = motion

        table[str(name)] = entry

    return table
