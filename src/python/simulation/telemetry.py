"""
===============================================================================
ORBIT SIM - Telemetry Recorder
===============================================================================
Collects one row per body per tick from ``SolarSystem.snapshot()`` and
exposes the run as a pandas DataFrame indexed by (time_ms, name).

Vector fields are flattened into _x/_y/_z columns; an open orbit's missing
apoapsis becomes NaN.
===============================================================================
"""

import logging
from typing import Any, Dict, List

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

_VECTOR_FIELDS = ('position', 'velocity', 'periapsis', 'apoapsis')
_SCALAR_FIELDS = (
    'a', 'e', 'I', 'omega', 'argument_perihelion', 'M',
    'orbital_period', 'rotation', 'soi_radius',
    'mass', 'propellant', 'throttle', 'delta_v_expended',
    'attitude_x', 'attitude_y', 'attitude_z',
)


class TelemetryRecorder:
    """
    Parameters
    ----------
    system : SolarSystem
        The simulation to sample.
    bodies : iterable of str, optional
        Restrict recording to these body names.
    """

    def __init__(self, system, bodies=None) -> None:
        self.system = system
        self.bodies = None if bodies is None else set(bodies)
        self.records: List[Dict[str, Any]] = []

    def record(self) -> int:
        """Append the current snapshot; returns the number of rows added."""
        added = 0
        for row in self.system.snapshot():
            if self.bodies is not None and row['name'] not in self.bodies:
                continue
            self.records.append(_flatten(self.system.time_ms, row))
            added += 1
        return added

    def to_frame(self) -> pd.DataFrame:
        """
        Returns
        -------
        pd.DataFrame
            Index (time_ms, name); columns primary, kind, regime, the
            flattened vectors and the scalar elements.
        """
        if not self.records:
            logger.warning("No telemetry recorded.")
            return pd.DataFrame()

        df = pd.DataFrame(self.records)
        df.set_index(['time_ms', 'name'], inplace=True)
        return df

    def to_csv(self, filepath: str) -> None:
        df = self.to_frame()
        df.to_csv(filepath)
        logger.info("Telemetry saved to %s  (%d records)", filepath, len(df))

    def clear(self) -> None:
        self.records.clear()

    def __len__(self) -> int:
        return len(self.records)


def _flatten(time_ms: float, row: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        'time_ms': time_ms,
        'name': row['name'],
        'primary': row['primary'],
        'kind': row['kind'],
        'regime': row['regime'],
    }
    for key in _VECTOR_FIELDS:
        vec = row.get(key)
        if vec is None:
            vec = (np.nan, np.nan, np.nan)
        out[f'{key}_x'], out[f'{key}_y'], out[f'{key}_z'] = (float(v) for v in vec)
    for key in _SCALAR_FIELDS:
        value = row.get(key)
        out[key] = np.nan if value is None else float(value)
    return out
