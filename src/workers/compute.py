"""Compute worker: the process side of the worker protocol.

Each worker process runs `serve()` on its end of a Pipe.  All of its state
lives in one `OptimizerWorker` built by the `initialize` request; every
later request is dispatched to that object.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from config import TrajectorySearchSettings
from ephemeris.bodies import BodyCatalog
from mechanics.kepler import OrbitalElements, orbital_elements_from_orbit_data
from optimizer.evolution import ChunkedEvolver, EvolutionSettings
from optimizer.objective import TrajectoryObjective
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
    message,
)

logger = logging.getLogger("swingby.worker")


@dataclass(frozen=True)
class SearchContext:
    sequence: list[int]
    departure_altitude: float  # km
    date_min: float  # s past J2000
    date_max: float


class AgentSweep:
    """Resumable evaluation of a batch of agents.

    `step()` evaluates up to `progress_step` agents and returns
    (more_work, progress) where progress is the number of agents done.
    """

    def __init__(self, objective: TrajectoryObjective, agents: np.ndarray, progress_step: int) -> None:
        self.objective = objective
        self.agents = np.array(agents, dtype=np.float64, ndmin=2)
        self.progress_step = progress_step
        self.index = 0
        self.fitnesses = np.empty(len(self.agents))
        self.delta_vs = np.empty(len(self.agents))

    @property
    def done(self) -> bool:
        return self.index >= len(self.agents)

    def step(self) -> tuple[bool, int]:
        end = min(self.index + self.progress_step, len(self.agents))
        for k in range(self.index, end):
            self.fitnesses[k] = self.objective(self.agents[k])
            self.delta_vs[k] = self.objective.delta_vs[-1]
        self.index = end
        return not self.done, self.index

    def result(self) -> dict:
        return {
            "agents": self.agents,
            "fitnesses": self.fitnesses,
            "delta_vs": self.delta_vs,
        }


class OptimizerWorker:
    """State of one compute worker, created on `initialize`."""

    def __init__(
        self,
        config: dict,
        catalog: BodyCatalog,
        progress_step: int = 100,
        seed: int | None = None,
    ) -> None:
        self.search = TrajectorySearchSettings.model_validate(config)
        self.catalog = catalog
        self.progress_step = progress_step
        self.rng = np.random.default_rng(seed)
        self.body_orbits: dict[int, OrbitalElements] = {
            b.id: orbital_elements_from_orbit_data(b.orbit) for b in catalog if b.orbit is not None
        }

        self.context: SearchContext | None = None
        self.objective: TrajectoryObjective | None = None
        self.evolver: ChunkedEvolver | None = None
        self.delta_vs = np.empty(0)
        self.sweep: AgentSweep | None = None

    def handle(self, msg: dict) -> list[dict]:
        label = msg.get("label")
        if label == PASS:
            return self._on_pass(msg["data"])
        if label == RUN:
            return self._on_run(msg.get("input") or {})
        if label == CONTINUE:
            return self._on_continue()
        if label == STOP:
            self.sweep = None
            return [message(STOPPED)]
        raise ProtocolError(f"Unexpected request label {label!r}")

    # ------------------------------------------------------------------ #

    def _on_pass(self, data: dict) -> list[dict]:
        self.context = SearchContext(
            sequence=[int(i) for i in data["sequence"]],
            departure_altitude=float(data["departure_altitude"]),
            date_min=float(data["date_min"]),
            date_max=float(data["date_max"]),
        )
        self.objective = TrajectoryObjective(
            self.catalog,
            self.search,
            self.context.sequence,
            self.context.departure_altitude,
            self.context.date_min,
            self.context.date_max,
            body_orbits=self.body_orbits,
            rng=self.rng,
        )
        self.evolver = None
        self.sweep = None
        return [message(RECEIVED)]

    def _on_run(self, data: dict) -> list[dict]:
        if self.objective is None:
            raise ProtocolError("run received before the search context was passed")

        self.objective.reset_counters()
        if "evaluate" in data:
            self.sweep = AgentSweep(self.objective, data["evaluate"], self.progress_step)
            return self._advance_sweep()

        if data.get("start"):
            search = self.search
            self.evolver = ChunkedEvolver(
                int(data["chunk_start"]),
                int(data["chunk_end"]),
                self.objective.agent_dim,
                self.objective,
                EvolutionSettings(
                    max_generations=search.max_generations,
                    cr_min=search.min_cross_proba,
                    cr_max=search.max_cross_proba,
                    cr_exponent=search.cross_proba_incr,
                    f=search.diff_weight,
                ),
                rng=self.rng,
            )
            self.objective.best_delta_v = math.inf
            self.objective.best_steps = []
            self.evolver.create_random_population_chunk()
            self.evolver.evaluate_chunk_fitness()
            self.delta_vs = np.array(self.objective.delta_vs)
        else:
            if self.evolver is None:
                raise ProtocolError("Population received before the generation 0 run")
            updated = self.evolver.evolve_population_chunk(
                np.asarray(data["population"]), np.asarray(data["fitnesses"])
            )
            new_dvs = self.objective.delta_vs
            for k in updated:
                self.delta_vs[k] = new_dvs[k]

        return self._debug_replies() + [message(COMPLETE, result={
            "pop_chunk": self.evolver.pop_chunk,
            "fit_chunk": self.evolver.fit_chunk,
            "dvs_chunk": self.delta_vs.copy(),
            "best_steps": self.objective.best_steps,
            "best_delta_v": self.objective.best_delta_v,
        })]

    def _on_continue(self) -> list[dict]:
        if self.sweep is None:
            raise ProtocolError("continue received without chunked work in progress")
        return self._advance_sweep()

    def _advance_sweep(self) -> list[dict]:
        more, progress = self.sweep.step()
        if more:
            return [message(PROGRESS, progress=progress)]
        result = self.sweep.result()
        self.sweep = None
        return self._debug_replies() + [message(COMPLETE, result=result)]

    def _debug_replies(self) -> list[dict]:
        if self.objective.randomized:
            return [message(DEBUG, data=f"{self.objective.randomized} agents re-randomized")]
        return []


def serve(conn) -> None:
    """Request loop of a worker process; returns when the pipe closes."""
    worker: OptimizerWorker | None = None
    while True:
        try:
            msg = conn.recv()
        except EOFError:
            break

        label = msg.get("label") if isinstance(msg, dict) else None
        try:
            if label == INITIALIZE:
                worker = OptimizerWorker(
                    msg["config"],
                    msg["catalog"],
                    progress_step=msg.get("progress_step", 100),
                    seed=msg.get("seed"),
                )
                replies = [message(INITIALIZED)]
            elif worker is None:
                raise ProtocolError(f"{label!r} received before initialize")
            else:
                replies = worker.handle(msg)
        except Exception as e:
            # Reported to the coordinator, which raises it on its side
            logger.exception("Worker failed on %r", label)
            replies = [message(ERROR, kind=type(e).__name__, message=str(e))]

        for reply in replies:
            conn.send(reply)

    conn.close()
