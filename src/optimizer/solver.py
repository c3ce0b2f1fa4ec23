"""Trajectory search coordinator.

Shards the population over the used workers of a `WorkerPool`, runs one
generation per round-trip and merges the chunk results back into the
global population.  Generations are strictly sequential: generation g+1 is
sent only once every chunk of generation g has returned.

Cancellation is latched by `cancel()` and honoured after the current round
trip completes, never in the middle of one.
"""

from __future__ import annotations

import inspect
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable

import numpy as np

from config import TrajectorySearchSettings
from mechanics.trajectory import Agent, TrajectoryStep
from workers.protocol import SearchCancelled

logger = logging.getLogger("swingby.solver")


# --------------------------------------------------------------------------- #
#  Chunking
# --------------------------------------------------------------------------- #

def chunk_indices(size: int, n_chunks: int) -> list[tuple[int, int]]:
    """Inclusive index ranges of `n_chunks` contiguous chunks of [0, size).

    All chunks hold size // n_chunks items except the last one, which also
    takes the remainder.
    """
    if not 1 <= n_chunks <= size:
        raise ValueError(f"Cannot split {size} items into {n_chunks} chunks")
    base = size // n_chunks
    ranges = [(i * base, (i + 1) * base - 1) for i in range(n_chunks)]
    ranges[-1] = (ranges[-1][0], size - 1)
    return ranges


def split_into_chunks(items: np.ndarray, n_chunks: int) -> list[np.ndarray]:
    return [items[start:end + 1] for start, end in chunk_indices(len(items), n_chunks)]


@dataclass
class MergedChunks:
    population: np.ndarray
    fitnesses: np.ndarray
    delta_vs: np.ndarray
    best_delta_v: float
    best_steps: list[TrajectoryStep]


def merge_results_chunks(results: list[dict]) -> MergedChunks:
    """Concatenate worker results in chunk order and keep the overall best."""
    best_delta_v = math.inf
    best_steps: list[TrajectoryStep] = []
    for res in results:
        if res["best_delta_v"] < best_delta_v:
            best_delta_v = res["best_delta_v"]
            best_steps = res["best_steps"]

    return MergedChunks(
        population=np.vstack([res["pop_chunk"] for res in results]),
        fitnesses=np.concatenate([res["fit_chunk"] for res in results]),
        delta_vs=np.concatenate([res["dvs_chunk"] for res in results]),
        best_delta_v=best_delta_v,
        best_steps=best_steps,
    )


# --------------------------------------------------------------------------- #
#  Results
# --------------------------------------------------------------------------- #

@dataclass
class GenerationSample:
    generation: int
    mean: float
    best: float


@dataclass
class SearchResult:
    sequence: list[int]
    steps: list[TrajectoryStep]
    total_delta_v: float
    samples: list[GenerationSample] = field(default_factory=list)


# --------------------------------------------------------------------------- #
#  Solver
# --------------------------------------------------------------------------- #

class TrajectorySolver:
    """Runs trajectory searches on an already started worker pool.

    `pool` needs `optimize_used_workers_count`, `pass_data`, `run_pool`,
    `run_pool_chunked` and `stop` (see `workers.pool.WorkerPool`).
    """

    def __init__(self, pool: Any, search: TrajectorySearchSettings) -> None:
        self._pool = pool
        self._search = search
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    async def _check_cancellation(self) -> None:
        if self._cancelled:
            await self._pool.stop()
            logger.info("Search cancelled")
            raise SearchCancelled("Trajectory search cancelled")

    async def _pass_context(
        self, sequence: list[int], date_min: float, date_max: float, departure_altitude: float
    ) -> None:
        await self._pool.pass_data({
            "sequence": list(sequence),
            "departure_altitude": departure_altitude,
            "date_min": date_min,
            "date_max": date_max,
        })

    async def search_optimal_trajectory(
        self,
        sequence: list[int],
        date_min: float,
        date_max: float,
        departure_altitude: float,
        on_generation: Callable[[GenerationSample, float], Any] | None = None,
    ) -> SearchResult:
        """Search the lowest delta-v trajectory along `sequence`.

        Parameters
        ----------
        sequence : body ids, departure first, destination last
        date_min, date_max : departure window (s past J2000)
        departure_altitude : parking orbit altitude (km)
        on_generation : called (sync or async) after each generation with
            its fitness sample and the best delta-v so far

        Raises
        ------
        SearchCancelled
            if `cancel()` was called; checked after every generation.
        """
        self._cancelled = False
        search = self._search

        agent_dim = Agent.dimension(len(sequence) - 1)
        pop_size = max(4, search.pop_size_dim_scale * agent_dim)
        used = self._pool.optimize_used_workers_count(pop_size, search.split_limit)
        chunks = chunk_indices(pop_size, used)
        logger.info(
            "Searching %s: population %d x %d, %d workers, %d generations",
            sequence, pop_size, agent_dim, used, search.max_generations,
        )

        await self._pass_context(sequence, date_min, date_max, departure_altitude)

        samples: list[GenerationSample] = []
        best_delta_v = math.inf
        best_steps: list[TrajectoryStep] = []

        merged: MergedChunks | None = None
        for generation in range(search.max_generations + 1):
            if generation == 0:
                inputs = [{"start": True, "chunk_start": s, "chunk_end": e} for s, e in chunks]
            else:
                inputs = [{"population": merged.population, "fitnesses": merged.fitnesses}] * used

            merged = merge_results_chunks(await self._pool.run_pool(inputs))
            if merged.best_delta_v < best_delta_v:
                best_delta_v = merged.best_delta_v
                best_steps = merged.best_steps

            sample = GenerationSample(
                generation=generation,
                mean=float(np.mean(merged.fitnesses)),
                best=float(np.min(merged.fitnesses)),
            )
            samples.append(sample)
            logger.info("Generation %d: best %.4f, mean %.4f, best dv %.4f km/s",
                        generation, sample.best, sample.mean, best_delta_v)

            if on_generation is not None:
                ret = on_generation(sample, best_delta_v)
                if inspect.isawaitable(ret):
                    await ret

            await self._check_cancellation()

        return SearchResult(
            sequence=list(sequence),
            steps=best_steps,
            total_delta_v=best_delta_v,
            samples=samples,
        )

    async def evaluate_agents(
        self,
        sequence: list[int],
        date_min: float,
        date_max: float,
        departure_altitude: float,
        agents: np.ndarray,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> dict:
        """Evaluate a batch of agent vectors on the workers.

        Workers report progress every `progress_step` agents;
        `on_progress(done, total)` receives the running total.

        Returns a dict with the agents actually used (re-randomized where
        infeasible), their fitnesses and total delta-v, in input order.
        """
        self._cancelled = False
        agents = np.array(agents, dtype=np.float64, ndmin=2)
        used = self._pool.optimize_used_workers_count(len(agents), self._search.split_limit)
        chunks = split_into_chunks(agents, used)
        done = [0] * used

        def report(worker: int, progress: int) -> None:
            done[worker] = progress
            if on_progress is not None:
                on_progress(sum(done), len(agents))

        await self._pass_context(sequence, date_min, date_max, departure_altitude)
        results = await self._pool.run_pool_chunked(
            [{"evaluate": chunk} for chunk in chunks],
            on_progress=report,
            should_stop=lambda: self._cancelled,
        )
        await self._check_cancellation()

        return {
            "agents": np.vstack([r["agents"] for r in results]),
            "fitnesses": np.concatenate([r["fitnesses"] for r in results]),
            "delta_vs": np.concatenate([r["delta_vs"] for r in results]),
        }
