"""
===============================================================================
ORBIT SIM - Error Types
===============================================================================
Structural and configuration failures that must reach the caller.

Numerical tolerance problems (a Kepler solve that hits its iteration cap)
are never raised: the solvers return their best estimate and log a warning.
Everything in this module, by contrast, means the simulation cannot
continue for the affected body or cannot start at all.
===============================================================================
"""

from typing import List, Optional


class ConfigurationError(ValueError):
    """Malformed configuration or body table."""


class BodyGraphError(ConfigurationError):
    """
    The primary -> secondaries graph is invalid.

    Raised while the graph is being built (missing primary, duplicate
    name, cycle, zero or several roots, ship given secondaries), always
    before the first simulation step.
    """


class UnsupportedEccentricityError(ValueError):
    """
    No orbit variant supports the computed eccentricity.

    Typically caused by NaN or negative eccentricity coming from corrupted
    input or a degenerate state vector.

    Attributes
    ----------
    code : str
        Stable machine-readable code, ``UNSUPPORTED_ECCENTRICITY``.
    eccentricity : float
        The offending value.
    body : str or None
        Name of the body whose step was aborted, when known.
    """

    code = "UNSUPPORTED_ECCENTRICITY"

    def __init__(self, eccentricity: float, body: Optional[str] = None) -> None:
        self.eccentricity = eccentricity
        self.body = body
        where = f" for body '{body}'" if body is not None else ""
        super().__init__(
            f"{self.code}: no orbit variant supports e = {eccentricity!r}{where}"
        )


class SimulationStepError(RuntimeError):
    """
    One or more bodies failed their step during ``SolarSystem.update``.

    The remaining bodies completed the tick; each failing body kept its
    last valid orbit.
    """

    def __init__(self, failures: List[UnsupportedEccentricityError]) -> None:
        self.failures = list(failures)
        names = ", ".join(str(f.body) for f in self.failures)
        super().__init__(
            f"{len(self.failures)} body step(s) aborted ({names}): "
            + "; ".join(str(f) for f in self.failures)
        )
