"""Pool of compute worker processes, driven from asyncio.

Each `ComputeWorker` owns one process and the coordinator end of its Pipe.
Blocking receives run in the default executor so that all workers of a
round can be awaited together.
"""

from __future__ import annotations

import asyncio
import logging
import multiprocessing
import os
from typing import Callable

from config import TrajectorySearchSettings, settings
from ephemeris.bodies import BodyCatalog
from optimizer.objective import TrajectoryComputationError
from workers.compute import serve
from workers.protocol import (
    COMPLETE,
    CONTINUE,
    DEBUG,
    ERROR,
    INITIALIZE,
    INITIALIZED,
    PASS,
    PROGRESS,
    RECEIVED,
    RUN,
    STOP,
    STOPPED,
    ProtocolError,
    SearchCancelled,
    WorkerError,
    expect_label,
    message,
)

logger = logging.getLogger("swingby.pool")


async def _gather_replies(requests) -> list:
    """Await every worker request, then raise the first failure.

    Each pipe has exactly one outstanding request, so a round only ends
    once all workers have answered.
    """
    results = await asyncio.gather(*requests, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


def optimize_used_workers_count(population_size: int, split_limit: int, max_workers: int) -> int:
    """Smallest worker count whose chunks are no larger than `split_limit`
    (bounded by `max_workers`)."""
    used = 1
    while population_size // used > split_limit and used < max_workers:
        used += 1
    return used


class ComputeWorker:
    """Coordinator-side handle of one worker process."""

    def __init__(self, index: int, ctx: multiprocessing.context.BaseContext) -> None:
        self.index = index
        parent_conn, child_conn = ctx.Pipe()
        self._process = ctx.Process(
            target=serve, args=(child_conn,), name=f"swingby-compute-{index}", daemon=True,
        )
        self._process.start()
        child_conn.close()
        self._conn = parent_conn

    @property
    def alive(self) -> bool:
        return self._process.is_alive()

    async def _receive(self) -> dict:
        """Next non-debug reply; worker errors are raised here."""
        loop = asyncio.get_running_loop()
        while True:
            try:
                reply = await loop.run_in_executor(None, self._conn.recv)
            except EOFError:
                raise ProtocolError(f"Worker {self.index} closed its channel") from None

            label = expect_label(reply, INITIALIZED, RECEIVED, PROGRESS, COMPLETE, STOPPED, DEBUG, ERROR)
            if label == DEBUG:
                logger.debug("worker %d: %s", self.index, reply.get("data"))
                continue
            if label == ERROR:
                if reply.get("kind") == TrajectoryComputationError.__name__:
                    raise TrajectoryComputationError(reply.get("message", ""))
                raise WorkerError(reply.get("kind", "Exception"), reply.get("message", ""), self.index)
            return reply

    async def request(self, msg: dict, *expected: str) -> dict:
        self._conn.send(msg)
        reply = await self._receive()
        expect_label(reply, *expected)
        return reply

    async def initialize(self, config: dict, catalog: BodyCatalog, progress_step: int, seed: int | None) -> None:
        await self.request(
            message(INITIALIZE, config=config, catalog=catalog, progress_step=progress_step, seed=seed),
            INITIALIZED,
        )

    async def pass_data(self, data: dict) -> None:
        await self.request(message(PASS, data=data), RECEIVED)

    async def run(self, input: dict) -> dict:
        reply = await self.request(message(RUN, input=input), COMPLETE)
        return reply["result"]

    async def run_chunked(
        self,
        input: dict,
        on_progress: Callable[[int, int], None] | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> dict:
        """Run a request that reports progress, answering each `progress`
        with `continue` (or `stop` once `should_stop()` is true)."""
        reply = await self.request(message(RUN, input=input), PROGRESS, COMPLETE)
        while reply["label"] == PROGRESS:
            if on_progress is not None:
                on_progress(self.index, reply["progress"])
            if should_stop is not None and should_stop():
                await self.stop()
                raise SearchCancelled(f"Worker {self.index} stopped")
            reply = await self.request(message(CONTINUE), PROGRESS, COMPLETE)
        return reply["result"]

    async def stop(self) -> None:
        await self.request(message(STOP), STOPPED)

    def close(self, timeout: float = 5.0) -> None:
        self._conn.close()
        self._process.join(timeout)
        if self._process.is_alive():
            logger.warning("Worker %d did not exit, terminating", self.index)
            self._process.terminate()
            self._process.join()


class WorkerPool:
    """Fixed pool of compute workers.

    Only the first `used` workers take part in a round; `used` is set per
    search from the population size.
    """

    def __init__(
        self,
        size: int | None = None,
        start_method: str | None = None,
        progress_step: int | None = None,
        seed: int | None = None,
    ) -> None:
        requested = size if size is not None else settings.worker_count
        self.size = max(1, min(requested, os.cpu_count() or 1))
        self.used = self.size
        self._ctx = multiprocessing.get_context(start_method or settings.worker_start_method)
        self._progress_step = progress_step if progress_step is not None else settings.progress_step
        self._seed = seed
        self._workers: list[ComputeWorker] = []

    async def __aenter__(self) -> "WorkerPool":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()

    @property
    def workers(self) -> list[ComputeWorker]:
        return self._workers[:self.used]

    async def start(self, search: TrajectorySearchSettings, catalog: BodyCatalog) -> None:
        """Spawn the workers and initialize them with the config and catalog."""
        self._workers = [ComputeWorker(i, self._ctx) for i in range(self.size)]
        config = search.model_dump()
        await _gather_replies(
            w.initialize(
                config, catalog, self._progress_step,
                None if self._seed is None else self._seed + w.index,
            )
            for w in self._workers
        )
        logger.info("Worker pool ready: %d processes", self.size)

    def optimize_used_workers_count(self, population_size: int, split_limit: int) -> int:
        self.used = optimize_used_workers_count(population_size, split_limit, self.size)
        return self.used

    async def pass_data(self, data: dict) -> None:
        await _gather_replies(w.pass_data(data) for w in self.workers)

    async def run_pool(self, inputs: list[dict]) -> list[dict]:
        """One round: input i goes to worker i; results come back in input order."""
        if len(inputs) != self.used:
            raise ValueError(f"{len(inputs)} inputs for {self.used} used workers")
        return await _gather_replies(w.run(inp) for w, inp in zip(self.workers, inputs))

    async def run_pool_chunked(
        self,
        inputs: list[dict],
        on_progress: Callable[[int, int], None] | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> list[dict]:
        if len(inputs) != self.used:
            raise ValueError(f"{len(inputs)} inputs for {self.used} used workers")
        return await _gather_replies(
            w.run_chunked(inp, on_progress, should_stop) for w, inp in zip(self.workers, inputs)
        )

    async def stop(self) -> None:
        await _gather_replies(w.stop() for w in self.workers)

    def close(self) -> None:
        for w in self._workers:
            w.close()
        self._workers = []
