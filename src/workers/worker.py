"""ARQ worker: runs trajectory searches in the background.

This worker process is started separately (via `arq workers.worker.WorkerSettings`)
and picks up jobs from the Redis queue.  It owns one compute `WorkerPool`
for its lifetime, so `max_jobs` is 1: searches share the pool and run one
after the other.
"""

from __future__ import annotations

import json
import logging

from config import settings
from ephemeris.bodies import SOLAR_SYSTEM
from optimizer.dispatcher import (
    CANCELLED,
    CHANNEL_PREFIX,
    COMPLETE,
    FAILED,
    RUNNING,
    _redis_settings,
    is_cancel_requested,
    publish_progress,
    redis_client,
    set_job_status,
)
from optimizer.solver import GenerationSample, TrajectorySolver
from serialization.encoder import encode_sample, encode_search_result, safe_float
from workers.pool import WorkerPool
from workers.protocol import SearchCancelled

logger = logging.getLogger("swingby.arq")


async def startup(ctx: dict) -> None:
    """Called once when the worker starts.  Spawns the compute pool."""
    logger.info("Worker starting: spawning compute pool ...")
    pool = WorkerPool()
    await pool.start(settings.search, SOLAR_SYSTEM)
    ctx["pool"] = pool


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""
    logger.info("Worker shutting down")
    pool: WorkerPool | None = ctx.get("pool")
    if pool is not None:
        pool.close()


async def _report_failure(r, job_id: str, error: str) -> None:
    await set_job_status(r, job_id, FAILED, error=error)
    await r.publish(
        f"{CHANNEL_PREFIX}{job_id}",
        json.dumps({"status": FAILED, "job_id": job_id, "error": error}),
    )


async def run_search(ctx: dict, job_id: str, request_data: dict) -> dict:
    """Execute a trajectory search and stream progress via Redis pub/sub.

    This is the ARQ task function registered with the worker.
    """
    solver = TrajectorySolver(ctx["pool"], settings.search)
    sequence = [int(i) for i in request_data["sequence"]]
    n_points = int(request_data.get("n_points", 0))
    logger.info("Starting search job %s: %s", job_id, sequence)

    async with redis_client() as r:
        await set_job_status(r, job_id, RUNNING)

        async def on_generation(sample: GenerationSample, best_delta_v: float) -> None:
            await publish_progress(r, job_id, {
                **encode_sample(sample),
                "max_generations": settings.search.max_generations,
                "best_delta_v": safe_float(best_delta_v),
            })
            if await is_cancel_requested(r, job_id):
                solver.cancel()

        try:
            result = await solver.search_optimal_trajectory(
                sequence,
                float(request_data["date_min"]),
                float(request_data["date_max"]),
                float(request_data["departure_altitude"]),
                on_generation=on_generation,
            )
        except SearchCancelled:
            logger.info("Search job %s cancelled", job_id)
            await publish_progress(r, job_id, {}, status=CANCELLED)
            return {"status": CANCELLED, "job_id": job_id}
        except Exception as e:
            logger.error("Search job %s failed: %s", job_id, e)
            await _report_failure(r, job_id, str(e))
            return {"status": FAILED, "job_id": job_id, "error": str(e)}

        await publish_progress(
            r, job_id, encode_search_result(result, SOLAR_SYSTEM, n_points), status=COMPLETE,
        )

    logger.info("Search job %s complete: best dv %.3f km/s", job_id, result.total_delta_v)
    return {"status": COMPLETE, "job_id": job_id}


class WorkerSettings:
    """ARQ worker settings class."""
    functions = [run_search]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    max_jobs = 1
    job_timeout = settings.job_timeout
