"""Epoch conversions and arc sampling.

Handles:
- Seconds past J2000 <-> ISO datetime conversion
- Sampling positions along a trajectory step for plotting
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import numpy as np

from ephemeris.bodies import CelestialBody
from mechanics.kepler import elements_to_state

# --------------------------------------------------------------------------- #
#  Epoch conversions  (seconds past J2000 <-> Python datetime)
# --------------------------------------------------------------------------- #
_J2000_EPOCH = datetime(2000, 1, 1, 12, 0, 0)
DAY = 86400.0


def datetime_to_seconds(dt: datetime) -> float:
    """Seconds past J2000 of a datetime (naive datetimes are taken as UTC)."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return (dt - _J2000_EPOCH).total_seconds()


def seconds_to_datetime(seconds: float) -> datetime:
    return _J2000_EPOCH + timedelta(seconds=seconds)


def iso_to_seconds(iso_str: str) -> float:
    """Convert an ISO date string to seconds past J2000."""
    return datetime_to_seconds(datetime.fromisoformat(iso_str))


def seconds_to_iso(seconds: float) -> str:
    """Convert seconds past J2000 to an ISO date string."""
    return seconds_to_datetime(seconds).isoformat()


# --------------------------------------------------------------------------- #
#  Arc sampling
# --------------------------------------------------------------------------- #
def sample_step_positions(step, attractor: CelestialBody, n_points: int = 32) -> np.ndarray:
    """Positions (n_points, 3) along a step's arc, relative to its attractor.

    Elliptic arcs run forward from the begin to the end anomaly, wrapping
    through periapsis when needed.
    """
    begin, end = step.begin_angle, step.end_angle
    if step.orbit.eccentricity < 1.0 and end < begin:
        end += 2.0 * math.pi
    anomalies = np.linspace(begin, end, n_points)
    return np.array([elements_to_state(step.orbit, attractor, float(nu)).pos for nu in anomalies])
