"""JSON encoder: converts trajectory results to JSON-safe dicts.

numpy arrays become lists; non-finite floats become None so that the
payloads survive `json.dumps` and Redis round-trips unchanged.
"""

from __future__ import annotations

import math
from typing import Any

import numpy as np

from ephemeris.bodies import BodyCatalog, CelestialBody
from mechanics.trajectory import FlybyInfo, Maneuver, TrajectoryStep
from mechanics.transforms import sample_step_positions, seconds_to_iso
from optimizer.solver import GenerationSample, SearchResult


def safe_float(v: float | None) -> float | None:
    """Finite float or None."""
    if v is None:
        return None
    v = float(v)
    return v if math.isfinite(v) else None


def encode_vector(v: np.ndarray) -> list[float | None]:
    return [safe_float(x) for x in np.asarray(v, dtype=np.float64).ravel()]


# --------------------------------------------------------------------------- #
#  Bodies
# --------------------------------------------------------------------------- #

def encode_body(body: CelestialBody) -> dict:
    out = {
        "id": body.id,
        "name": body.name,
        "radius": body.radius,
        "gm": body.gm,
        "soi": safe_float(body.soi),
        "color": body.color,
        "orbiting": body.orbiting,
    }
    if body.orbit is not None:
        out["orbit"] = {
            "semi_major_axis": body.orbit.semi_major_axis,
            "eccentricity": body.orbit.eccentricity,
            "inclination": body.orbit.inclination,
            "arg_periapsis": body.orbit.arg_periapsis,
            "asc_node_longitude": body.orbit.asc_node_longitude,
        }
    return out


# --------------------------------------------------------------------------- #
#  Trajectory steps
# --------------------------------------------------------------------------- #

def encode_maneuver(m: Maneuver) -> dict:
    return {
        "kind": m.context.kind,
        "origin_id": m.context.origin_id,
        "target_id": m.context.target_id,
        "delta_v": encode_vector(m.delta_v),
        "magnitude": safe_float(m.magnitude),
        "prograde_dir": encode_vector(m.prograde_dir),
        "position": encode_vector(m.position),
    }


def encode_flyby(f: FlybyInfo) -> dict:
    return {
        "body_id": f.body_id,
        "soi_enter_date": safe_float(f.soi_enter_date),
        "soi_exit_date": safe_float(f.soi_exit_date),
        "periapsis_radius": safe_float(f.periapsis_radius),
        "inclination": safe_float(f.inclination),
    }


def encode_step(
    step: TrajectoryStep,
    catalog: BodyCatalog | None = None,
    n_points: int = 0,
) -> dict:
    """Encode one step; with a catalog and `n_points` > 0 the arc is sampled."""
    orbit = step.orbit
    out: dict[str, Any] = {
        "attractor_id": step.attractor_id,
        "date_of_start": safe_float(step.date_of_start),
        "date_of_start_iso": seconds_to_iso(step.date_of_start),
        "duration": safe_float(step.duration),
        "begin_angle": safe_float(step.begin_angle),
        "end_angle": safe_float(step.end_angle),
        "orbit": {
            "semi_major_axis": safe_float(orbit.semi_major_axis),
            "eccentricity": safe_float(orbit.eccentricity),
            "inclination": safe_float(orbit.inclination),
            "arg_periapsis": safe_float(orbit.arg_periapsis),
            "asc_node_longitude": safe_float(orbit.asc_node_longitude),
        },
        "maneuver": encode_maneuver(step.maneuver) if step.maneuver is not None else None,
        "flyby": encode_flyby(step.flyby) if step.flyby is not None else None,
    }
    if catalog is not None and n_points > 0:
        points = sample_step_positions(step, catalog[step.attractor_id], n_points)
        out["points"] = [encode_vector(p) for p in points]
    return out


def encode_steps(
    steps: list[TrajectoryStep],
    catalog: BodyCatalog | None = None,
    n_points: int = 0,
) -> list[dict]:
    return [encode_step(s, catalog, n_points) for s in steps]


# --------------------------------------------------------------------------- #
#  Search results
# --------------------------------------------------------------------------- #

def encode_sample(sample: GenerationSample) -> dict:
    return {
        "generation": sample.generation,
        "mean": safe_float(sample.mean),
        "best": safe_float(sample.best),
    }


def encode_search_result(
    result: SearchResult,
    catalog: BodyCatalog | None = None,
    n_points: int = 0,
) -> dict:
    steps = result.steps
    departure = steps[0].date_of_start if steps else None
    arrival = steps[-1].date_of_start + steps[-1].duration if steps else None
    return {
        "sequence": list(result.sequence),
        "total_delta_v": safe_float(result.total_delta_v),
        "departure_date": safe_float(departure),
        "arrival_date": safe_float(arrival),
        "steps": encode_steps(steps, catalog, n_points),
        "samples": [encode_sample(s) for s in result.samples],
    }
