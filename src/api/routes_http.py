"""HTTP REST endpoints for the Swingby API.

- /health                      Health check
- /bodies                      List the celestial bodies of the catalog
- /trajectory                  Compute the trajectory of one agent
- /search                      Submit a trajectory search job
- /search/{id}/status          Poll job status
- /search/{id}/cancel          Request cancellation of a running search
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

import numpy as np
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field, field_validator

from config import settings
from ephemeris.bodies import SOLAR_SYSTEM, CelestialBody
from mechanics.trajectory import Agent
from mechanics.transforms import iso_to_seconds
from optimizer.dispatcher import get_job_status, request_cancel, submit_search
from optimizer.objective import TrajectoryComputationError, TrajectoryObjective, shaped_fitness
from serialization.encoder import encode_body, encode_steps, safe_float

logger = logging.getLogger("swingby.api")
router = APIRouter()


# --------------------------------------------------------------------------- #
#  Shared validators
# --------------------------------------------------------------------------- #

def _validate_iso_date(v: str) -> str:
    """Validate that a string is a parseable ISO date."""
    try:
        datetime.fromisoformat(v)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid ISO date: '{v}'. Expected format: YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS")
    return v


# --------------------------------------------------------------------------- #
#  Pydantic models for request/response
# --------------------------------------------------------------------------- #

class BodyOut(BaseModel):
    id: int
    name: str
    gm: float
    radius: float
    soi: float | None = None
    color: str
    orbiting: int | None = None


class SearchWindow(BaseModel):
    sequence: list[str] = Field(
        description="Ordered body names or ids, e.g. ['earth', 'venus', 'earth', 'jupiter']",
        min_length=2,
    )
    dep_start: str = Field(description="Departure window start, ISO date")
    dep_end: str = Field(description="Departure window end, ISO date")
    departure_altitude: float = Field(default=200.0, ge=0, description="Parking orbit altitude (km)")
    n_points: int = Field(default=0, ge=0, le=500, description="Sampled positions per step (0 = none)")

    @field_validator("dep_start", "dep_end")
    @classmethod
    def check_iso_date(cls, v: str) -> str:
        return _validate_iso_date(v)


class TrajectoryRequest(SearchWindow):
    agent: list[float] | None = Field(
        default=None,
        description="Normalized agent vector (random when omitted)",
    )


class SearchRequest(SearchWindow):
    pass


# --------------------------------------------------------------------------- #
#  Helpers
# --------------------------------------------------------------------------- #

def _resolve_body(identifier: str) -> CelestialBody:
    """Resolve a body by name or id string."""
    try:
        return SOLAR_SYSTEM.resolve(identifier.strip())
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown body: {identifier}")


def _resolve_window(req: SearchWindow) -> tuple[list[int], float, float]:
    """Body ids and departure window (s past J2000) of a request."""
    bodies = [_resolve_body(name) for name in req.sequence]
    attractors = {b.orbiting for b in bodies}
    if None in attractors or len(attractors) != 1:
        raise HTTPException(status_code=422, detail="All bodies of a sequence must orbit the same attractor")

    date_min = iso_to_seconds(req.dep_start)
    date_max = iso_to_seconds(req.dep_end)
    if date_min >= date_max:
        raise HTTPException(status_code=422, detail="dep_start must be before dep_end")
    return [b.id for b in bodies], date_min, date_max


def _compute_trajectory(req: TrajectoryRequest, sequence: list[int], date_min: float, date_max: float) -> dict:
    objective = TrajectoryObjective(
        SOLAR_SYSTEM, settings.search, sequence, req.departure_altitude, date_min, date_max,
    )
    if req.agent is None:
        x = Agent.random(objective.calculator.n_legs, objective.rng).to_vector()
    else:
        x = np.array(req.agent, dtype=np.float64)
    agent_dim = objective.agent_dim
    if x.shape != (agent_dim,):
        raise ValueError(f"agent must have {agent_dim} values for {len(sequence)} bodies, got {x.shape[0]}")

    calc = objective.compute_trajectory(x)
    extra = 0.0 if settings.search.insertion_burn else calc.arrival_circularization_dv
    return {
        "sequence": sequence,
        "agent": x.tolist(),
        "total_delta_v": safe_float(calc.total_delta_v),
        "fitness": safe_float(shaped_fitness(calc.total_delta_v, calc.final_inclination, extra)),
        "arrival_circularization_dv": safe_float(calc.arrival_circularization_dv),
        "re_randomized": objective.randomized,
        "steps": encode_steps(calc.steps, SOLAR_SYSTEM, req.n_points),
    }


# --------------------------------------------------------------------------- #
#  Endpoints
# --------------------------------------------------------------------------- #

@router.get("/health")
async def health():
    return {"status": "ok", "service": "swingby"}


@router.get("/bodies", response_model=list[BodyOut])
async def list_bodies():
    """List all celestial bodies of the catalog."""
    return [BodyOut(**encode_body(b)) for b in SOLAR_SYSTEM]


@router.post("/trajectory")
async def compute_trajectory(req: TrajectoryRequest):
    """Compute the trajectory of a single agent along a body sequence.

    Infeasible agents are re-randomized like during a search; the agent
    actually used is returned with the steps.
    """
    sequence, date_min, date_max = _resolve_window(req)
    try:
        return await asyncio.to_thread(_compute_trajectory, req, sequence, date_min, date_max)
    except (ValueError, TrajectoryComputationError) as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/search")
async def start_search(req: SearchRequest):
    """Submit a trajectory search job.  Returns a job_id for tracking."""
    sequence, date_min, date_max = _resolve_window(req)

    job_id = await submit_search({
        "sequence": sequence,
        "date_min": date_min,
        "date_max": date_max,
        "departure_altitude": req.departure_altitude,
        "n_points": req.n_points,
    })

    return {
        "job_id": job_id,
        "status": "queued",
        "sequence": [SOLAR_SYSTEM[i].name for i in sequence],
        "message": f"Search job submitted. Connect to WS /ws/search/{job_id} for live updates.",
    }


@router.get("/search/{job_id}/status")
async def search_status(job_id: str):
    """Poll the current status of a search job."""
    result = await get_job_status(job_id)
    if result["status"] == "not_found":
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return result


@router.post("/search/{job_id}/cancel")
async def cancel_search(job_id: str):
    """Request cancellation; honoured after the current generation."""
    if not await request_cancel(job_id):
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found or already finished")
    return {"job_id": job_id, "status": "cancelling"}
