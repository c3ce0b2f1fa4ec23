"""Differential evolution (rand/1/bin) over one chunk of a population.

Each worker owns a `ChunkedEvolver` for the contiguous index range
[chunk_start, chunk_end] of the global population.  A generation step
reads the whole population and fitness arrays (read-only) and returns the
next generation of its own chunk.  Lower fitness is better.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import numpy as np

from mechanics.vectors import clamp, randint

logger = logging.getLogger("swingby.evolution")


def crossover_probability(
    generation: int, max_generations: int, cr_min: float, cr_max: float, exponent: float
) -> float:
    """Crossover rate annealed from cr_max down to cr_min as (g/G)^exponent."""
    t = clamp(generation / max_generations, 0.0, 1.0)
    return cr_max - (cr_max - cr_min) * t ** exponent


@dataclass(frozen=True)
class EvolutionSettings:
    max_generations: int
    cr_min: float
    cr_max: float
    cr_exponent: float
    f: float  # differential weight


class ChunkedEvolver:
    """Chunk-local DE state and operators.

    `fitness` receives a 1-D agent vector and may modify it in place (the
    trajectory objective re-randomizes agents it cannot evaluate); the
    modified vector is the one kept.
    """

    def __init__(
        self,
        chunk_start: int,
        chunk_end: int,
        agent_dim: int,
        fitness: Callable[[np.ndarray], float],
        settings: EvolutionSettings,
        rng: np.random.Generator | None = None,
    ) -> None:
        if chunk_end < chunk_start:
            raise ValueError(f"Empty chunk [{chunk_start}, {chunk_end}]")
        self.chunk_start = chunk_start
        self.chunk_end = chunk_end
        self.agent_dim = agent_dim
        self.fitness = fitness
        self.settings = settings
        self.rng = rng if rng is not None else np.random.default_rng()

        self.generation = 0
        self.pop_chunk = np.empty((0, agent_dim))
        self.fit_chunk = np.empty(0)
        self._indices: list[int] = []

    @property
    def chunk_size(self) -> int:
        return self.chunk_end - self.chunk_start + 1

    @property
    def cr(self) -> float:
        s = self.settings
        return crossover_probability(self.generation, s.max_generations, s.cr_min, s.cr_max, s.cr_exponent)

    def randomize_agent(self, agent: np.ndarray) -> None:
        agent[:] = self.rng.random(agent.shape[0])

    def create_random_population_chunk(self) -> np.ndarray:
        self.pop_chunk = self.rng.random((self.chunk_size, self.agent_dim))
        return self.pop_chunk

    def evaluate_chunk_fitness(self) -> np.ndarray:
        self.fit_chunk = np.array([self.fitness(agent) for agent in self.pop_chunk], dtype=np.float64)
        return self.fit_chunk

    def _pick3(self, n: int, parent: int) -> tuple[int, int, int]:
        """Three distinct indices, all different from `parent`.

        Partial Fisher-Yates on an index permutation: the parent is parked at
        slot 0, picks are swapped into slots 1..3, then every swap is undone
        so the permutation is the identity again.
        """
        if len(self._indices) != n:
            self._indices = list(range(n))
        idx = self._indices

        idx[parent], idx[0] = idx[0], idx[parent]
        picked = [0, 0, 0]
        positions = [0, 0, 0]
        for i in range(3):
            ri = randint(self.rng, 1 + i, n - 1)
            picked[i] = idx[ri]
            positions[i] = ri
            idx[ri], idx[1 + i] = idx[1 + i], idx[ri]

        for i in (2, 1, 0):
            ri = positions[i]
            idx[ri], idx[1 + i] = idx[1 + i], idx[ri]
        idx[parent], idx[0] = idx[0], idx[parent]

        return picked[0], picked[1], picked[2]

    def evolve_population_chunk(
        self, population: np.ndarray, fitnesses: np.ndarray
    ) -> list[int]:
        """Advance the chunk by one generation.

        Parameters
        ----------
        population : (N, dim) current global population (not modified)
        fitnesses : (N,) fitness of each agent of `population`

        Returns
        -------
        Chunk-relative indices of the agents replaced by their trial vector.
        """
        n, dim = population.shape
        if n < 4:
            raise ValueError(f"Differential evolution needs at least 4 agents, got {n}")

        cr = self.cr
        f = self.settings.f
        next_pop = np.empty((self.chunk_size, dim))
        next_fit = np.empty(self.chunk_size)
        updated: list[int] = []

        for j in range(self.chunk_start, self.chunk_end + 1):
            x = population[j]
            fx = fitnesses[j]
            a, b, c = self._pick3(n, j)

            ri = randint(self.rng, 0, dim - 1)
            cross = self.rng.random(dim) < cr
            cross[ri] = True
            y = np.where(cross, population[a] + f * (population[b] - population[c]), x)
            np.clip(y, 0.0, 1.0, out=y)

            fy = self.fitness(y)
            k = j - self.chunk_start
            if fy < fx:
                next_pop[k] = y
                next_fit[k] = fy
                updated.append(k)
            else:
                next_pop[k] = x
                next_fit[k] = fx

        self.pop_chunk = next_pop
        self.fit_chunk = next_fit
        self.generation += 1
        return updated
