"""Celestial body records and the body catalog.

Bodies form a tree rooted at the central star (id 0).  A body refers to its
attractor by id only; the catalog resolves the reference.

GM values (gravitational parameter, km^3/s^2) from JPL DE440/441.
Radii in km.  Orbits are J2000 mean ecliptic elements (Standish), angles
stored in radians, epoch = 0 s past J2000.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator

G_KM = 6.6743e-20  # km^3 / (kg s^2)
AU_KM: float = 1.495978707e8


@dataclass(frozen=True, slots=True)
class OrbitData:
    semi_major_axis: float  # km
    eccentricity: float
    inclination: float  # rad
    arg_periapsis: float  # rad
    asc_node_longitude: float  # rad

    @property
    def orbital_param(self) -> float:
        return self.semi_major_axis * (1.0 - self.eccentricity ** 2)


@dataclass(frozen=True, slots=True)
class CelestialBody:
    id: int
    name: str
    radius: float  # km
    gm: float  # km^3 / s^2
    soi: float = math.inf  # km, sphere-of-influence radius
    color: str = "#FFFFFF"  # hex hint for frontend
    orbiting: int | None = None  # attractor id (None = central star)
    orbit: OrbitData | None = None
    epoch: float = 0.0  # s past J2000
    mean_anomaly0: float = 0.0  # rad, at epoch

    @property
    def mass(self) -> float:
        return self.gm / G_KM


def laplace_soi(semi_major_axis: float, gm: float, parent_gm: float) -> float:
    return semi_major_axis * (gm / parent_gm) ** 0.4


class BodyCatalog:
    """Read-only ordered collection of bodies, indexed by id."""

    def __init__(self, bodies: list[CelestialBody]) -> None:
        self._bodies = list(bodies)
        self._by_id: dict[int, CelestialBody] = {}
        for body in self._bodies:
            if body.id in self._by_id:
                raise ValueError(f"Duplicate body id {body.id}")
            self._by_id[body.id] = body
        self._validate()

    def _validate(self) -> None:
        roots = [b for b in self._bodies if b.orbiting is None]
        if len(roots) != 1 or roots[0].id != 0:
            raise ValueError("Catalog must have exactly one central body, with id 0")

        for body in self._bodies:
            if body.orbiting is None:
                continue
            if body.orbiting not in self._by_id:
                raise ValueError(f"{body.name}: unknown attractor id {body.orbiting}")
            if body.orbit is None:
                raise ValueError(f"{body.name}: orbiting body without orbit data")

        for body in self._bodies:
            children = self.children(body.id)
            for a, b in zip(children, children[1:]):
                if b.orbit.semi_major_axis <= a.orbit.semi_major_axis:
                    raise ValueError(
                        f"Body ids around {body.name} must increase with orbital radius "
                        f"({a.name} #{a.id}, {b.name} #{b.id})"
                    )

    def __len__(self) -> int:
        return len(self._bodies)

    def __iter__(self) -> Iterator[CelestialBody]:
        return iter(self._bodies)

    def __contains__(self, body_id: int) -> bool:
        return body_id in self._by_id

    def __getitem__(self, body_id: int) -> CelestialBody:
        try:
            return self._by_id[body_id]
        except KeyError:
            raise KeyError(f"Unknown body id {body_id}") from None

    @property
    def root(self) -> CelestialBody:
        return self._by_id[0]

    def attractor_of(self, body: CelestialBody) -> CelestialBody:
        if body.orbiting is None:
            raise ValueError(f"{body.name} has no attractor")
        return self._by_id[body.orbiting]

    def children(self, body_id: int) -> list[CelestialBody]:
        """Bodies orbiting `body_id`, sorted by id."""
        return sorted((b for b in self._bodies if b.orbiting == body_id), key=lambda b: b.id)

    def by_name(self, name: str) -> CelestialBody:
        for body in self._bodies:
            if body.name.lower() == name.lower():
                return body
        raise KeyError(f"Unknown body: {name}")

    def resolve(self, identifier: str | int) -> CelestialBody:
        """Look a body up by id (int or numeric string) or case-insensitive name."""
        if isinstance(identifier, int):
            return self[identifier]
        if identifier.isdigit():
            return self[int(identifier)]
        return self.by_name(identifier)


# --------------------------------------------------------------------------- #
#  Built-in solar system
# --------------------------------------------------------------------------- #
SUN = CelestialBody(
    id=0, name="Sun", radius=695_700.0, gm=1.32712440018e11, color="#FDB813",
)


def _planet(
    id: int, name: str, gm: float, radius: float, color: str,
    a_au: float, e: float, i_deg: float, lan_deg: float, argp_deg: float, m0_deg: float,
) -> CelestialBody:
    a = a_au * AU_KM
    return CelestialBody(
        id=id, name=name, radius=radius, gm=gm,
        soi=laplace_soi(a, gm, SUN.gm), color=color, orbiting=SUN.id,
        orbit=OrbitData(
            semi_major_axis=a,
            eccentricity=e,
            inclination=math.radians(i_deg),
            arg_periapsis=math.radians(argp_deg % 360.0),
            asc_node_longitude=math.radians(lan_deg),
        ),
        mean_anomaly0=math.radians(m0_deg % 360.0),
    )


MERCURY = _planet(1, "Mercury", 2.2032e4, 2_439.7, "#B5B5B5",
                  0.38709927, 0.20563593, 7.00497902, 48.33076593, 29.12703035, 174.79252722)
VENUS = _planet(2, "Venus", 3.24859e5, 6_051.8, "#E8CDA0",
                0.72333566, 0.00677672, 3.39467605, 76.67984255, 54.92262463, 50.37663232)
EARTH = _planet(3, "Earth", 3.986004418e5, 6_371.0, "#6B93D6",
                1.00000261, 0.01671123, 0.0, 0.0, 102.93768193, -2.47311027)
MARS = _planet(4, "Mars", 4.282837e4, 3_389.5, "#C1440E",
               1.52371034, 0.09339410, 1.84969142, 49.55953891, -73.50316850, 19.39019754)
JUPITER = _planet(5, "Jupiter", 1.26686534e8, 69_911.0, "#C88B3A",
                  5.20288700, 0.04838624, 1.30439695, 100.47390909, -85.74542926, 19.66796068)
SATURN = _planet(6, "Saturn", 3.7931187e7, 58_232.0, "#E8D191",
                 9.53667594, 0.05386179, 2.48599187, 113.66242448, -21.06354617, -42.64463408)
URANUS = _planet(7, "Uranus", 5.793939e6, 25_362.0, "#D1E7E7",
                 19.18916464, 0.04725744, 0.77263783, 74.01692503, 96.93735127, 142.28382821)
NEPTUNE = _planet(8, "Neptune", 6.836529e6, 24_622.0, "#5B5DDF",
                  30.06992276, 0.00859048, 1.77004347, 131.78422574, -86.81946347, -100.08479196)

SOLAR_SYSTEM = BodyCatalog([
    SUN, MERCURY, VENUS, EARTH, MARS, JUPITER, SATURN, URANUS, NEPTUNE,
])
