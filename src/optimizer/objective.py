"""Objective function of the trajectory search.

Wraps the trajectory calculator: maps an agent vector to a scalar fitness,
keeps the best trajectory seen so far and records the total delta-v of
every evaluation.  Agents the calculator rejects are re-randomized and
retried up to a fixed number of attempts.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from config import TrajectorySearchSettings
from ephemeris.bodies import BodyCatalog
from mechanics.kepler import OrbitalElements
from mechanics.trajectory import Agent, TrajectoryCalculator, TrajectoryStep

logger = logging.getLogger("swingby.objective")

INCLINATION_PENALTY = 0.1


class TrajectoryComputationError(RuntimeError):
    """No feasible trajectory could be found for an agent within the attempt cap."""


def shaped_fitness(total_delta_v: float, final_inclination: float, extra_delta_v: float = 0.0) -> float:
    """Total delta-v, penalized by the inclination of the final orbit."""
    return total_delta_v + total_delta_v * abs(final_inclination) * INCLINATION_PENALTY + extra_delta_v


class TrajectoryObjective:
    """Fitness function for one search (fixed sequence, dates and altitude).

    Parameters
    ----------
    catalog : body catalog
    search : search settings (bounds, retry cap, insertion burn switch)
    sequence : body ids, departure first
    departure_altitude : parking orbit altitude above the departure body (km)
    date_min, date_max : departure window (s past J2000)
    body_orbits : precomputed orbital elements of the sequence bodies
    """

    def __init__(
        self,
        catalog: BodyCatalog,
        search: TrajectorySearchSettings,
        sequence: list[int],
        departure_altitude: float,
        date_min: float,
        date_max: float,
        body_orbits: dict[int, OrbitalElements] | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.search = search
        self.sequence = list(sequence)
        self.departure_altitude = departure_altitude
        self.date_min = date_min
        self.date_max = date_max
        self.rng = rng if rng is not None else np.random.default_rng()
        self.calculator = TrajectoryCalculator(catalog, search, sequence, body_orbits, self.rng)

        self.best_delta_v = math.inf
        self.best_steps: list[TrajectoryStep] = []
        self.delta_vs: list[float] = []
        self.randomized = 0  # agents re-randomized since the last reset_counters()

    @property
    def agent_dim(self) -> int:
        return Agent.dimension(self.calculator.n_legs)

    def reset_counters(self) -> None:
        self.delta_vs = []
        self.randomized = 0

    def compute_trajectory(self, x: np.ndarray) -> TrajectoryCalculator:
        """Compute the trajectory of agent vector `x`, retrying on failure.

        `x` is updated in place with the parameters actually used (clamped,
        resampled or re-randomized).

        Raises
        ------
        TrajectoryComputationError
            if every attempt fails.
        """
        calc = self.calculator
        last_reason = None
        for attempt in range(self.search.max_attempts):
            agent = Agent.from_vector(x)
            calc.set_parameters(self.departure_altitude, self.date_min, self.date_max, agent)
            calc.compute()
            if calc.success:
                x[:] = agent.to_vector()
                if attempt:
                    logger.debug("Agent feasible after %d re-randomizations", attempt)
                return calc

            last_reason = calc.failure_reason
            x[:] = self.rng.random(x.shape[0])
            self.randomized += 1

        raise TrajectoryComputationError(
            f"Impossible to compute the trajectory after {self.search.max_attempts} attempts "
            f"(last failure: {last_reason})"
        )

    def __call__(self, x: np.ndarray) -> float:
        calc = self.compute_trajectory(x)
        dv = calc.total_delta_v
        self.delta_vs.append(dv)
        if dv < self.best_delta_v:
            self.best_delta_v = dv
            self.best_steps = calc.steps

        extra = 0.0 if self.search.insertion_burn else calc.arrival_circularization_dv
        return shaped_fitness(dv, calc.final_inclination, extra)
