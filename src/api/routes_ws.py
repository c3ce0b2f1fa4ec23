"""WebSocket endpoints for real-time streaming.

- /ws/search/{job_id}    Stream search progress updates
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from optimizer.dispatcher import TERMINAL_STATUSES, stream_progress

logger = logging.getLogger("swingby.ws")
router = APIRouter()


@router.websocket("/ws/search/{job_id}")
async def ws_search_stream(websocket: WebSocket, job_id: str):
    """Stream search progress for a job.

    The client connects after submitting a POST /search request.
    Messages are JSON dicts with one generation sample each (generation,
    mean and best fitness, best delta-v so far).

    When the job ends, a final message with status "complete" (carrying the
    encoded trajectory), "failed" or "cancelled" is sent and the connection
    is closed.
    """
    await websocket.accept()
    logger.info("WebSocket connected for job %s", job_id)

    try:
        async for progress in stream_progress(job_id):
            await websocket.send_json(progress)

            if progress.get("status") in TERMINAL_STATUSES:
                break

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected for job %s", job_id)
    except Exception as e:
        logger.error("WebSocket error for job %s: %s", job_id, e)
        try:
            await websocket.send_json({"status": "error", "message": str(e)})
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("Could not report the error to job %s client", job_id)
    finally:
        try:
            await websocket.close()
        except RuntimeError:
            # already closed by the client
            pass
