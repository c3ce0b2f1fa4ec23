"""Multi-leg trajectory assembly with deep-space maneuvers and flybys.

A trajectory is built from an agent (a vector of normalized free parameters)
as an ordered list of steps:

    parking orbit -> ejection hyperbola
    -> per leg: coast to the DSM point -> Lambert arc to the target SOI
       -> symmetric flyby (intermediate bodies) / approach + insertion (last body)

Every step is a conic arc relative to one attractor.  Delta-v is
accumulated over the impulsive maneuvers (ejection, DSMs, circularization).

All units: km, km/s, seconds (dates are seconds past J2000).
"""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass

import numpy as np

from config import TrajectorySearchSettings
from ephemeris.bodies import BodyCatalog, CelestialBody
from mechanics.kepler import (
    OrbitalElements,
    OrbitalState,
    body_state_at_date,
    circular_velocity,
    elements_to_state,
    equatorial_circular_orbit,
    escape_velocity,
    hohmann_period,
    hyperbolic_ejection_offset_angle,
    ideal_ejection_direction,
    orbit_period,
    orbital_elements_from_orbit_data,
    periapsis_radius,
    state_to_elements,
    tof_between_anomalies,
    true_anomaly_after,
    true_anomaly_at_radius,
    true_anomaly_from_state,
)
from mechanics.lambert import solve_lambert
from mechanics.vectors import (
    clamp,
    lerp,
    mag,
    min_max_ring_angle,
    normalize,
    point_on_sphere_ring,
    random_point_on_sphere_ring,
)

logger = logging.getLogger("swingby.trajectory")

TWO_PI = 2.0 * math.pi

# Maneuver kinds
EJECTION = "ejection"
DSM = "dsm"
CIRCULARIZATION = "circularization"


class InfeasibleTrajectoryError(ValueError):
    """The agent does not describe a physically valid trajectory."""


# --------------------------------------------------------------------------- #
#  Agent records
# --------------------------------------------------------------------------- #

@dataclass
class DepartureParams:
    date: float  # [0, 1] across the departure window
    ejection_dv_scale: float  # [0, 1] across the ejection dv scale bounds


@dataclass
class LegParams:
    duration: float  # [0, 1] across the leg duration bounds
    dsm_offset: float  # [0, 1] across the DSM offset bounds
    theta: float  # [0, 1] across the SOI entry ring
    phi: float  # [0, 1] around the SOI entry ring


@dataclass
class Agent:
    """Free parameters of one trajectory.

    The flat form used by the optimizer is
    [date, ejection dv scale, (duration, dsm offset, theta, phi) per leg].
    """

    departure: DepartureParams
    legs: list[LegParams]

    @staticmethod
    def dimension(n_legs: int) -> int:
        return 2 + 4 * n_legs

    @classmethod
    def from_vector(cls, x: np.ndarray | list[float]) -> "Agent":
        x = [float(v) for v in x]
        if len(x) < 2 or (len(x) - 2) % 4 != 0:
            raise ValueError(f"Agent vector length {len(x)} is not 2 + 4 * legs")
        legs = [LegParams(*x[k:k + 4]) for k in range(2, len(x), 4)]
        return cls(DepartureParams(x[0], x[1]), legs)

    @classmethod
    def random(cls, n_legs: int, rng: np.random.Generator) -> "Agent":
        return cls.from_vector(rng.random(cls.dimension(n_legs)))

    def to_vector(self) -> np.ndarray:
        values = [self.departure.date, self.departure.ejection_dv_scale]
        for leg in self.legs:
            values.extend((leg.duration, leg.dsm_offset, leg.theta, leg.phi))
        return np.array(values, dtype=np.float64)


# --------------------------------------------------------------------------- #
#  Steps
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class ManeuverContext:
    kind: str  # EJECTION | DSM | CIRCULARIZATION
    origin_id: int
    target_id: int


@dataclass
class Maneuver:
    delta_v: np.ndarray  # km/s
    prograde_dir: np.ndarray
    position: np.ndarray  # km, relative to the step's attractor
    context: ManeuverContext

    @property
    def magnitude(self) -> float:
        return mag(self.delta_v)


@dataclass
class FlybyInfo:
    body_id: int
    soi_enter_date: float
    soi_exit_date: float | None  # None once captured
    periapsis_radius: float  # km
    inclination: float  # rad


@dataclass
class TrajectoryStep:
    orbit: OrbitalElements
    attractor_id: int
    begin_angle: float  # true anomaly, rad
    end_angle: float
    date_of_start: float
    duration: float
    maneuver: Maneuver | None = None
    flyby: FlybyInfo | None = None


def has_nan(obj) -> bool:
    """True if any float or array reachable from `obj` holds a NaN."""
    if obj is None or isinstance(obj, (bool, int, str)):
        return False
    if isinstance(obj, float):
        return math.isnan(obj)
    if isinstance(obj, np.ndarray):
        return bool(np.isnan(obj).any())
    if dataclasses.is_dataclass(obj):
        return any(has_nan(getattr(obj, f.name)) for f in dataclasses.fields(obj))
    if isinstance(obj, (list, tuple)):
        return any(has_nan(item) for item in obj)
    return False


# --------------------------------------------------------------------------- #
#  Calculator
# --------------------------------------------------------------------------- #

class TrajectoryCalculator:
    """Builds the trajectory described by an agent along a fixed body sequence.

    Usage::

        calc = TrajectoryCalculator(catalog, search_settings, [3, 2, 3, 5])
        calc.set_parameters(altitude, date_min, date_max, agent)
        calc.compute()
        if calc.success:
            calc.steps, calc.total_delta_v

    `compute` never retries: an infeasible agent leaves `success` False and
    the reason in `failure_reason`.
    """

    def __init__(
        self,
        catalog: BodyCatalog,
        search: TrajectorySearchSettings,
        sequence: list[int],
        body_orbits: dict[int, OrbitalElements] | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        if len(sequence) < 2:
            raise ValueError("A body sequence needs at least a departure and a destination")

        self._catalog = catalog
        self._search = search
        self._bodies: list[CelestialBody] = [catalog[i] for i in sequence]
        self._main = catalog.attractor_of(self._bodies[0])
        for body in self._bodies:
            if body.orbiting != self._main.id:
                raise ValueError(
                    f"{body.name} does not orbit {self._main.name}; "
                    "all bodies of a sequence must share one attractor"
                )

        if body_orbits is None:
            body_orbits = {b.id: orbital_elements_from_orbit_data(b.orbit) for b in self._bodies}
        self._body_orbits = body_orbits
        self._rng = rng if rng is not None else np.random.default_rng()

        self._altitude = 0.0
        self._date_min = 0.0
        self._date_max = 0.0
        self._agent: Agent | None = None

        self._reset()

    @property
    def n_legs(self) -> int:
        return len(self._bodies) - 1

    @property
    def main_attractor(self) -> CelestialBody:
        return self._main

    @property
    def final_inclination(self) -> float:
        return self.steps[-1].orbit.inclination

    def _reset(self) -> None:
        self.steps: list[TrajectoryStep] = []
        self.total_delta_v = 0.0
        self.arrival_circularization_dv = 0.0
        self.success = False
        self.failure_reason: str | None = None
        self._date = 0.0
        self._vessel_state: OrbitalState | None = None

    # ------------------------------------------------------------------ #
    #  Inputs
    # ------------------------------------------------------------------ #

    def set_parameters(
        self, departure_altitude: float, date_min: float, date_max: float, agent: Agent
    ) -> None:
        """Store the inputs of the next `compute` call.

        The agent's scalar parameters are clamped to [0, 1] in place.  Ring
        angles are left alone: out-of-range values are resampled by `compute`.
        """
        if len(agent.legs) != self.n_legs:
            raise ValueError(f"Agent has {len(agent.legs)} legs, sequence has {self.n_legs}")

        dep = agent.departure
        dep.date = clamp(dep.date, 0.0, 1.0)
        dep.ejection_dv_scale = clamp(dep.ejection_dv_scale, 0.0, 1.0)
        for leg in agent.legs:
            leg.duration = clamp(leg.duration, 0.0, 1.0)
            leg.dsm_offset = clamp(leg.dsm_offset, 0.0, 1.0)

        self._altitude = departure_altitude
        self._date_min = date_min
        self._date_max = date_max
        self._agent = agent

    # ------------------------------------------------------------------ #
    #  Pipeline
    # ------------------------------------------------------------------ #

    def compute(self) -> None:
        if self._agent is None:
            raise RuntimeError("set_parameters() must be called before compute()")

        self._reset()
        try:
            self._compute_departure()
            for i in range(self.n_legs):
                self._compute_leg(i)
        except (ValueError, ArithmeticError) as e:
            # Math domain errors and overflows from the kernel count as infeasible
            self.failure_reason = str(e) or type(e).__name__
            logger.debug("Infeasible agent: %s", self.failure_reason)
            return

        if has_nan(self.steps):
            self.failure_reason = "NaN in trajectory steps"
            logger.debug("Infeasible agent: %s", self.failure_reason)
            return

        self.total_delta_v = sum(s.maneuver.magnitude for s in self.steps if s.maneuver is not None)
        self.success = True

    def _body_state(self, body: CelestialBody, date: float) -> OrbitalState:
        return body_state_at_date(body, self._main, date, self._body_orbits[body.id])

    def _compute_departure(self) -> None:
        """Parking orbit and ejection hyperbola up to the departure body's SOI."""
        search = self._search
        body = self._bodies[0]
        next_body = self._bodies[1]
        agent = self._agent

        date = lerp(self._date_min, self._date_max, agent.departure.date)
        r0 = body.radius + self._altitude
        body_state = self._body_state(body, date)

        retrograde = next_body.orbit.semi_major_axis < body.orbit.semi_major_axis
        _, excess_longitude = ideal_ejection_direction(body_state.pos, retrograde)

        v_circ = circular_velocity(body, r0)
        scale = lerp(search.dep_dv_scale_min, search.dep_dv_scale_max, agent.departure.ejection_dv_scale)
        vp = scale * escape_velocity(body, r0)
        offset = hyperbolic_ejection_offset_angle(vp, r0, body)

        # Periapsis placed so the outbound asymptote points along the ideal direction
        peri_longitude = excess_longitude - math.pi + offset
        peri_dir = np.array([math.cos(peri_longitude), math.sin(peri_longitude), 0.0])
        prograde = np.array([-math.sin(peri_longitude), math.cos(peri_longitude), 0.0])

        self.steps.append(TrajectoryStep(
            orbit=equatorial_circular_orbit(r0),
            attractor_id=body.id,
            begin_angle=peri_longitude % TWO_PI,
            end_angle=peri_longitude % TWO_PI,
            date_of_start=date,
            duration=0.0,
        ))

        peri_state = OrbitalState(pos=r0 * peri_dir, vel=vp * prograde)
        orbit = state_to_elements(peri_state, body)
        exit_angle = true_anomaly_at_radius(orbit, body.soi)
        if math.isnan(exit_angle):
            raise InfeasibleTrajectoryError(f"Ejection orbit never leaves the SOI of {body.name}")
        duration = tof_between_anomalies(orbit, body, 0.0, exit_angle)

        self.steps.append(TrajectoryStep(
            orbit=orbit,
            attractor_id=body.id,
            begin_angle=0.0,
            end_angle=exit_angle,
            date_of_start=date,
            duration=duration,
            maneuver=Maneuver(
                delta_v=(vp - v_circ) * prograde,
                prograde_dir=prograde,
                position=peri_state.pos,
                context=ManeuverContext(EJECTION, body.id, next_body.id),
            ),
        ))

        self._date = date + duration
        local_exit = elements_to_state(orbit, body, exit_angle)
        exit_body_state = self._body_state(body, self._date)
        self._vessel_state = OrbitalState(
            pos=exit_body_state.pos + local_exit.pos,
            vel=exit_body_state.vel + local_exit.vel,
        )

    def _leg_duration_and_dsm(self, i: int) -> tuple[float, float]:
        """Physical leg duration (s) and DSM offset fraction of leg i."""
        search = self._search
        origin, target = self._bodies[i], self._bodies[i + 1]
        params = self._agent.legs[i]

        if origin.id == target.id:
            revs = lerp(search.resonant_revolutions_min, search.resonant_revolutions_max, params.duration)
            duration = revs * orbit_period(self._main, origin.orbit.semi_major_axis)
            dsm_min = clamp((revs - 1.0) / revs, search.dsm_offset_min, search.dsm_offset_max)
        else:
            period = hohmann_period(
                self._main, origin.orbit.semi_major_axis, target.orbit.semi_major_axis
            )
            duration = lerp(search.transfer_duration_min, search.transfer_duration_max, params.duration) * period
            dsm_min = search.dsm_offset_min

        dsm_offset = lerp(dsm_min, search.dsm_offset_max, params.dsm_offset)
        return max(duration, search.min_leg_duration), dsm_offset

    def _soi_entry_offset(self, i: int, target: CelestialBody, direction: np.ndarray) -> np.ndarray:
        """Offset from `target` of the SOI entry point of leg i.

        The entry point lies on a ring of the SOI sphere around `direction`,
        between the body radius and the outer flyby radius.
        """
        leg = self._agent.legs[i]
        r_max = min(target.soi, self._search.flyby_periapsis_scale_max * target.radius)
        theta_min, theta_max = min_max_ring_angle(target.soi, target.radius, r_max)

        if not (0.0 <= leg.theta <= 1.0 and 0.0 <= leg.phi <= 1.0):
            theta, phi = random_point_on_sphere_ring(self._rng, theta_min, theta_max)
            leg.theta = (theta - theta_min) / (theta_max - theta_min) if theta_max > theta_min else 0.0
            leg.phi = phi / TWO_PI

        theta = lerp(theta_min, theta_max, leg.theta)
        phi = leg.phi * TWO_PI
        return target.soi * point_on_sphere_ring(direction, theta, phi)

    def _compute_leg(self, i: int) -> None:
        main = self._main
        origin, target = self._bodies[i], self._bodies[i + 1]
        duration, dsm_offset = self._leg_duration_and_dsm(i)
        leg_start = self._date

        # Coast from the previous arc to the DSM point
        state = self._vessel_state
        coast = state_to_elements(state, main)
        if coast.semi_major_axis > main.soi:
            raise InfeasibleTrajectoryError(f"Leg {i} coast orbit leaves the SOI of {main.name}")
        nu0 = true_anomaly_from_state(coast, state)
        coast_duration = dsm_offset * duration
        nu1 = true_anomaly_after(coast, main, nu0, coast_duration)
        if math.isnan(nu0) or math.isnan(nu1):
            raise InfeasibleTrajectoryError(f"Leg {i} coast anomaly is NaN")
        pre_dsm = elements_to_state(coast, main, nu1)

        self.steps.append(TrajectoryStep(
            orbit=coast,
            attractor_id=main.id,
            begin_angle=nu0,
            end_angle=nu1,
            date_of_start=leg_start,
            duration=coast_duration,
        ))

        # Lambert arc from the DSM point to the target's SOI
        arrival_date = leg_start + duration
        target_state = self._body_state(target, arrival_date)
        entry_pos = target_state.pos + self._soi_entry_offset(i, target, pre_dsm.pos - target_state.pos)
        transfer_duration = duration - coast_duration
        v1, v2 = solve_lambert(pre_dsm.pos, entry_pos, transfer_duration, main)

        departure = OrbitalState(pos=pre_dsm.pos, vel=v1)
        arrival = OrbitalState(pos=entry_pos, vel=v2)
        transfer = state_to_elements(departure, main)

        self.steps.append(TrajectoryStep(
            orbit=transfer,
            attractor_id=main.id,
            begin_angle=true_anomaly_from_state(transfer, departure),
            end_angle=true_anomaly_from_state(transfer, arrival),
            date_of_start=leg_start + coast_duration,
            duration=transfer_duration,
            maneuver=Maneuver(
                delta_v=v1 - pre_dsm.vel,
                prograde_dir=normalize(pre_dsm.vel),
                position=pre_dsm.pos,
                context=ManeuverContext(DSM, origin.id, target.id),
            ),
        ))
        self._date = arrival_date

        local = OrbitalState(pos=entry_pos - target_state.pos, vel=v2 - target_state.vel)
        if i == self.n_legs - 1:
            self._compute_arrival(target, local)
        else:
            self._compute_flyby(target, local)

    def _compute_flyby(self, body: CelestialBody, local: OrbitalState) -> None:
        """Symmetric swing-by: the exit anomaly mirrors the entry anomaly."""
        if float(np.dot(local.pos, local.vel)) >= 0.0:
            raise InfeasibleTrajectoryError(f"Vessel does not approach {body.name} at SOI entry")
        orbit = state_to_elements(local, body)
        if orbit.eccentricity < 1.0:
            raise InfeasibleTrajectoryError(f"Flyby of {body.name} is not hyperbolic (e={orbit.eccentricity:.4f})")
        rp = periapsis_radius(orbit)
        if rp < body.radius:
            raise InfeasibleTrajectoryError(f"Flyby periapsis below the surface of {body.name}")

        nu_in = true_anomaly_from_state(orbit, local)
        nu_out = -nu_in
        duration = tof_between_anomalies(orbit, body, nu_in, nu_out)
        enter_date = self._date

        self.steps.append(TrajectoryStep(
            orbit=orbit,
            attractor_id=body.id,
            begin_angle=nu_in,
            end_angle=nu_out,
            date_of_start=enter_date,
            duration=duration,
            flyby=FlybyInfo(
                body_id=body.id,
                soi_enter_date=enter_date,
                soi_exit_date=enter_date + duration,
                periapsis_radius=rp,
                inclination=orbit.inclination,
            ),
        ))

        self._date = enter_date + duration
        local_exit = elements_to_state(orbit, body, nu_out)
        body_state = self._body_state(body, self._date)
        self._vessel_state = OrbitalState(
            pos=body_state.pos + local_exit.pos,
            vel=body_state.vel + local_exit.vel,
        )

    def _compute_arrival(self, body: CelestialBody, local: OrbitalState) -> None:
        """Approach arc to periapsis, then (optionally) circularization there."""
        if float(np.dot(local.pos, local.vel)) >= 0.0:
            raise InfeasibleTrajectoryError(f"Vessel does not approach {body.name} at SOI entry")
        orbit = state_to_elements(local, body)
        rp = periapsis_radius(orbit)
        if rp < body.radius:
            raise InfeasibleTrajectoryError(f"Arrival periapsis below the surface of {body.name}")

        nu_in = true_anomaly_from_state(orbit, local)
        duration = tof_between_anomalies(orbit, body, nu_in, 0.0)
        enter_date = self._date

        self.steps.append(TrajectoryStep(
            orbit=orbit,
            attractor_id=body.id,
            begin_angle=nu_in,
            end_angle=0.0,
            date_of_start=enter_date,
            duration=duration,
            flyby=FlybyInfo(
                body_id=body.id,
                soi_enter_date=enter_date,
                soi_exit_date=None,
                periapsis_radius=rp,
                inclination=orbit.inclination,
            ),
        ))
        self._date = enter_date + duration

        peri = elements_to_state(orbit, body, 0.0)
        vp = mag(peri.vel)
        v_circ = circular_velocity(body, rp)
        self.arrival_circularization_dv = abs(vp - v_circ)

        if not self._search.insertion_burn:
            return

        prograde = peri.vel / vp
        circular = OrbitalState(pos=peri.pos, vel=v_circ * prograde)
        capture = state_to_elements(circular, body)
        nu = true_anomaly_from_state(capture, circular)
        self.steps.append(TrajectoryStep(
            orbit=capture,
            attractor_id=body.id,
            begin_angle=nu,
            end_angle=nu,
            date_of_start=self._date,
            duration=0.0,
            maneuver=Maneuver(
                delta_v=(v_circ - vp) * prograde,
                prograde_dir=prograde,
                position=peri.pos,
                context=ManeuverContext(CIRCULARIZATION, body.id, body.id),
            ),
        ))
