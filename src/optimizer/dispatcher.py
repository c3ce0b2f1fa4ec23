"""Search job dispatcher: submits searches to ARQ and streams progress.

Bridges the API layer with the background search worker.
Job state lives in a Redis hash; intermediate results are published on a
per-job pub/sub channel for WebSocket clients.  Cancellation is a flag in
the job hash that the worker polls between generations.
"""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

import redis.asyncio as aioredis
from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from config import settings

logger = logging.getLogger("swingby.dispatcher")

# Redis key prefixes
JOB_PREFIX = "swingby:job:"
CHANNEL_PREFIX = "swingby:progress:"

QUEUED = "queued"
RUNNING = "running"
COMPLETE = "complete"
FAILED = "failed"
CANCELLED = "cancelled"
TERMINAL_STATUSES = frozenset({COMPLETE, FAILED, CANCELLED})


def _redis_settings() -> RedisSettings:
    """Parse REDIS_URL into ARQ RedisSettings."""
    return RedisSettings.from_dsn(settings.redis_url)


async def get_arq_pool() -> ArqRedis:
    """Create and return an ARQ Redis connection pool."""
    return await create_pool(_redis_settings())


async def get_redis() -> aioredis.Redis:
    """Create a raw async Redis client."""
    return aioredis.from_url(settings.redis_url, decode_responses=True)


@asynccontextmanager
async def redis_client() -> AsyncIterator[aioredis.Redis]:
    r = await get_redis()
    try:
        yield r
    finally:
        await r.close()


def _job_key(job_id: str) -> str:
    return f"{JOB_PREFIX}{job_id}"


async def submit_search(request_data: dict) -> str:
    """Submit a trajectory search to the ARQ worker.

    `request_data` is the JSON-safe search request (sequence ids, departure
    window in s past J2000, departure altitude in km, sampled points per step).
    Returns a job_id that clients can use to subscribe to progress.
    """
    job_id = uuid.uuid4().hex

    async with redis_client() as r:
        await r.hset(_job_key(job_id), mapping={
            "status": QUEUED,
            "request": json.dumps(request_data),
            "result": "",
            "cancel": "0",
        })

    arq = await get_arq_pool()
    try:
        await arq.enqueue_job("run_search", job_id=job_id, request_data=request_data, _job_id=job_id)
    finally:
        await arq.close()

    logger.info("Queued search %s for sequence %s", job_id, request_data.get("sequence"))
    return job_id


async def get_job_status(job_id: str) -> dict:
    """Status, error and latest published payload of a search job."""
    async with redis_client() as r:
        job = await r.hgetall(_job_key(job_id))

    if not job:
        return {"status": "not_found", "job_id": job_id}

    status = {"job_id": job_id, "status": job.get("status", "unknown")}
    if job.get("error"):
        status["error"] = job["error"]
    if job.get("result"):
        try:
            status["result"] = json.loads(job["result"])
        except json.JSONDecodeError:
            logger.warning("Job %s has an unreadable result", job_id)
    return status


async def request_cancel(job_id: str) -> bool:
    """Flag a job for cancellation.  Returns False if the job is unknown
    or already finished."""
    async with redis_client() as r:
        status = await r.hget(_job_key(job_id), "status")
        if status is None or status in TERMINAL_STATUSES:
            return False
        await r.hset(_job_key(job_id), "cancel", "1")

    logger.info("Cancellation requested for job %s", job_id)
    return True


async def is_cancel_requested(r: aioredis.Redis, job_id: str) -> bool:
    return await r.hget(_job_key(job_id), "cancel") == "1"


async def set_job_status(r: aioredis.Redis, job_id: str, status: str, **fields: str) -> None:
    await r.hset(_job_key(job_id), mapping={"status": status, **fields})


async def stream_progress(job_id: str) -> AsyncGenerator[dict, None]:
    """Subscribe to search progress via Redis pub/sub.

    Yields progress dicts as they arrive.  Terminates when the job
    publishes a terminal status (complete, failed or cancelled).
    """
    r = await get_redis()
    pubsub = r.pubsub()
    channel = f"{CHANNEL_PREFIX}{job_id}"

    await pubsub.subscribe(channel)
    logger.info("Subscribed to progress channel: %s", channel)

    try:
        async for message in pubsub.listen():
            if message["type"] != "message":
                continue

            try:
                data = json.loads(message["data"])
            except (json.JSONDecodeError, TypeError):
                continue

            yield data

            if data.get("status", "") in TERMINAL_STATUSES:
                break
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.close()
        await r.close()


async def publish_progress(r: aioredis.Redis, job_id: str, payload: dict, status: str = RUNNING) -> None:
    """Publish a progress payload to the job channel and store it as the
    job's latest result.  Called by the worker during a search."""
    body = {"status": status, "job_id": job_id, **payload}
    await r.publish(f"{CHANNEL_PREFIX}{job_id}", json.dumps(body))
    await set_job_status(r, job_id, status, result=json.dumps(payload))
