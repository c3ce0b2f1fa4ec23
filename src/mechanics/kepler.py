"""Keplerian orbital mechanics: state/element conversion, anomalies, propagation.

All functions operate in km / km/s / seconds unless noted.  The reference
plane is the x-y plane of the attractor frame; z is "up" and x is the
reference direction for node and periapsis longitudes.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from ephemeris.bodies import CelestialBody, OrbitData
from mechanics.vectors import (
    X_AXIS,
    Z_AXIS,
    mag,
    newton_root_solve,
    normalize,
    rotate3,
    safe_acos,
)


# --------------------------------------------------------------------------- #
#  Constants
# --------------------------------------------------------------------------- #
TWO_PI = 2.0 * math.pi
ANGLE_SNAP = 1e-10  # inclination snapped to 0 / pi below this distance
ECC_SNAP = 1e-10  # eccentricity snapped to 0 at or below this value
KEPLER_TOL = 1e-15


class NegativeTimeOfFlightError(ValueError):
    """Raised when two anomalies give a negative elapsed time."""


@dataclass(frozen=True)
class OrbitalState:
    pos: np.ndarray  # km, relative to the attractor
    vel: np.ndarray  # km/s


@dataclass(frozen=True)
class OrbitalElements:
    semi_major_axis: float  # km (negative for hyperbolas)
    eccentricity: float
    inclination: float  # rad
    arg_periapsis: float  # rad
    asc_node_longitude: float  # rad
    orbital_param: float  # km, semi-latus rectum
    periapsis_dir: np.ndarray
    asc_node_dir: np.ndarray
    in_plane: bool = False  # inclination snapped to exactly 0 or pi

    @property
    def normal(self) -> np.ndarray:
        return rotate3(Z_AXIS, self.asc_node_dir, self.inclination)

    @property
    def is_hyperbolic(self) -> bool:
        return self.eccentricity >= 1.0


# --------------------------------------------------------------------------- #
#  State vector <-> orbital elements
# --------------------------------------------------------------------------- #

def state_to_elements(state: OrbitalState, attractor: CelestialBody) -> OrbitalElements:
    """Convert a Cartesian state into orbital elements.

    Degenerate orbits are remapped:

    - inclination within 1e-10 of 0 or pi is snapped and `in_plane` is set;
      the argument of periapsis then holds the longitude of periapsis and
      the node longitude is 0 (node direction = x axis);
    - eccentricity <= 1e-10 is snapped to 0; the argument of periapsis is 0
      and the periapsis direction is the node direction;
    - when both apply every angle is 0 and both directions are the x axis.
    """
    mu = attractor.gm
    pos, vel = state.pos, state.vel

    r = mag(pos)
    v2 = float(np.dot(vel, vel))

    h = np.cross(pos, vel)
    h_mag = mag(h)
    evec = np.cross(vel, h) / mu - pos / r
    ecc = mag(evec)
    nvec = np.cross(Z_AXIS, h)
    n_mag = mag(nvec)

    inc = safe_acos(h[2] / h_mag)
    in_plane = False
    if abs(inc) < ANGLE_SNAP:
        inc, in_plane = 0.0, True
    elif abs(inc - math.pi) < ANGLE_SNAP:
        inc, in_plane = math.pi, True

    if ecc <= ECC_SNAP:
        ecc = 0.0

    a = 1.0 / (2.0 / r - v2 / mu)
    p = a * (1.0 - ecc * ecc)

    if not in_plane and ecc > 0.0:
        lan = safe_acos(nvec[0] / n_mag)
        if nvec[1] < 0.0:
            lan = TWO_PI - lan
        arg = safe_acos(float(np.dot(nvec, evec)) / (n_mag * ecc))
        if evec[2] < 0.0:
            arg = TWO_PI - arg
        node_dir = nvec / n_mag
        peri_dir = evec / ecc

    elif in_plane and ecc > 0.0:
        lon = safe_acos(evec[0] / ecc)
        if evec[1] < 0.0:
            lon = TWO_PI - lon
        # Retrograde planar orbits see the x-y plane flipped by the pi rotation
        arg = lon if inc == 0.0 else (TWO_PI - lon) % TWO_PI
        lan = 0.0
        node_dir = X_AXIS.copy()
        peri_dir = evec / ecc

    elif not in_plane:
        lan = safe_acos(nvec[0] / n_mag)
        if nvec[1] < 0.0:
            lan = TWO_PI - lan
        arg = 0.0
        node_dir = nvec / n_mag
        peri_dir = node_dir.copy()

    else:
        lan = arg = 0.0
        node_dir = X_AXIS.copy()
        peri_dir = X_AXIS.copy()

    return OrbitalElements(
        semi_major_axis=a,
        eccentricity=ecc,
        inclination=inc,
        arg_periapsis=arg,
        asc_node_longitude=lan,
        orbital_param=p,
        periapsis_dir=peri_dir,
        asc_node_dir=node_dir,
        in_plane=in_plane,
    )


def elements_to_state(orbit: OrbitalElements, attractor: CelestialBody, nu: float) -> OrbitalState:
    """State on `orbit` at true anomaly `nu`.

    The perifocal state is rotated about z by the node longitude, then about
    z by the argument of periapsis, then about the node line by the inclination.
    """
    mu = attractor.gm
    a, ecc, p = orbit.semi_major_axis, orbit.eccentricity, orbit.orbital_param

    r = p / (1.0 + ecc * math.cos(nu))
    pos = np.array([r * math.cos(nu), r * math.sin(nu), 0.0])

    if ecc < 1.0:
        E = eccentric_from_true(nu, ecc)
        v = math.sqrt(mu * a) / r
        vel = np.array([-v * math.sin(E), v * math.sqrt(1.0 - ecc * ecc) * math.cos(E), 0.0])
    else:
        H = hyperbolic_from_true(nu, ecc)
        v = math.sqrt(-mu * a) / r
        vel = np.array([-v * math.sinh(H), v * math.sqrt(ecc * ecc - 1.0) * math.cosh(H), 0.0])

    node_axis = rotate3(X_AXIS, Z_AXIS, orbit.asc_node_longitude)
    for angle in (orbit.asc_node_longitude, orbit.arg_periapsis):
        pos = rotate3(pos, Z_AXIS, angle)
        vel = rotate3(vel, Z_AXIS, angle)
    pos = rotate3(pos, node_axis, orbit.inclination)
    vel = rotate3(vel, node_axis, orbit.inclination)

    return OrbitalState(pos=pos, vel=vel)


def true_anomaly_from_state(orbit: OrbitalElements, state: OrbitalState) -> float:
    """True anomaly of `state` on `orbit`.

    Measured from the periapsis direction (node line for circular orbits,
    x axis for circular planar ones).  Elliptic results lie in [0, 2pi);
    hyperbolic ones are signed, negative before periapsis.
    """
    p_dir = orbit.periapsis_dir
    q_dir = np.cross(orbit.normal, p_dir)
    nu = math.atan2(float(np.dot(state.pos, q_dir)), float(np.dot(state.pos, p_dir)))
    if orbit.eccentricity < 1.0 and nu < 0.0:
        nu += TWO_PI
    return nu


def orbital_elements_from_orbit_data(orbit: OrbitData) -> OrbitalElements:
    node_dir = rotate3(X_AXIS, Z_AXIS, orbit.asc_node_longitude)
    normal = rotate3(Z_AXIS, node_dir, orbit.inclination)
    peri_dir = rotate3(node_dir, normal, orbit.arg_periapsis)
    in_plane = orbit.inclination == 0.0 or orbit.inclination == math.pi
    return OrbitalElements(
        semi_major_axis=orbit.semi_major_axis,
        eccentricity=orbit.eccentricity,
        inclination=orbit.inclination,
        arg_periapsis=orbit.arg_periapsis,
        asc_node_longitude=orbit.asc_node_longitude,
        orbital_param=orbit.orbital_param,
        periapsis_dir=peri_dir,
        asc_node_dir=node_dir,
        in_plane=in_plane,
    )


def equatorial_circular_orbit(radius: float) -> OrbitalElements:
    return OrbitalElements(
        semi_major_axis=radius,
        eccentricity=0.0,
        inclination=0.0,
        arg_periapsis=0.0,
        asc_node_longitude=0.0,
        orbital_param=radius,
        periapsis_dir=X_AXIS.copy(),
        asc_node_dir=X_AXIS.copy(),
        in_plane=True,
    )


# --------------------------------------------------------------------------- #
#  Anomalies
# --------------------------------------------------------------------------- #

def eccentric_from_true(nu: float, ecc: float) -> float:
    return 2.0 * math.atan2(math.sqrt(1.0 - ecc) * math.sin(0.5 * nu),
                            math.sqrt(1.0 + ecc) * math.cos(0.5 * nu))


def hyperbolic_from_true(nu: float, ecc: float) -> float:
    return 2.0 * math.atanh(math.sqrt((ecc - 1.0) / (ecc + 1.0)) * math.tan(0.5 * nu))


def mean_from_eccentric(E: float, ecc: float) -> float:
    return E - ecc * math.sin(E)


def mean_from_hyperbolic(H: float, ecc: float) -> float:
    return ecc * math.sinh(H) - H


def mean_anomaly_from_true(nu: float, ecc: float) -> float:
    if ecc < 1.0:
        return mean_from_eccentric(eccentric_from_true(nu, ecc), ecc)
    return mean_from_hyperbolic(hyperbolic_from_true(nu, ecc), ecc)


def true_anomaly_from_mean(M: float, ecc: float) -> float:
    """Solve Kepler's equation (or its hyperbolic form) for the true anomaly.

    Elliptic results are wrapped to [0, 2pi).
    """
    if ecc < 1.0:
        Mr = (M + math.pi) % TWO_PI - math.pi
        E0 = Mr - ecc if Mr < 0.0 else Mr + ecc
        E = newton_root_solve(
            lambda x: x - ecc * math.sin(x) - Mr,
            lambda x: 1.0 - ecc * math.cos(x),
            E0,
            KEPLER_TOL,
        )
        nu = 2.0 * math.atan2(math.sqrt(1.0 + ecc) * math.sin(0.5 * E),
                              math.sqrt(1.0 - ecc) * math.cos(0.5 * E))
        return nu % TWO_PI

    H = newton_root_solve(
        lambda x: ecc * math.sinh(x) - x - M,
        lambda x: ecc * math.cosh(x) - 1.0,
        math.asinh(M / ecc),
        KEPLER_TOL,
    )
    return 2.0 * math.atan(math.sqrt((ecc + 1.0) / (ecc - 1.0)) * math.tanh(0.5 * H))


def mean_motion(orbit: OrbitalElements | OrbitData, attractor: CelestialBody) -> float:
    return math.sqrt(attractor.gm / abs(orbit.semi_major_axis) ** 3)


# --------------------------------------------------------------------------- #
#  Time of flight and propagation
# --------------------------------------------------------------------------- #

def tof_between_anomalies(
    orbit: OrbitalElements, attractor: CelestialBody, nu1: float, nu2: float
) -> float:
    """Time to travel from true anomaly nu1 to nu2 (seconds).

    Elliptic arcs always run forward, wrapping through periapsis if needed.
    Hyperbolic anomalies are put in increasing order.
    """
    mu = attractor.gm
    a, ecc = orbit.semi_major_axis, orbit.eccentricity

    if ecc < 1.0:
        E1 = eccentric_from_true(nu1, ecc) % TWO_PI
        E2 = eccentric_from_true(nu2, ecc) % TWO_PI
        if E2 < E1:
            E2 += TWO_PI
        tof = math.sqrt(a ** 3 / mu) * (E2 - E1 + ecc * (math.sin(E1) - math.sin(E2)))
    else:
        H1 = hyperbolic_from_true(nu1, ecc)
        H2 = hyperbolic_from_true(nu2, ecc)
        if H2 < H1:
            H1, H2 = H2, H1
        tof = -math.sqrt(-(a ** 3) / mu) * (H2 - H1 + ecc * (math.sinh(H1) - math.sinh(H2)))

    if tof < 0.0:
        raise NegativeTimeOfFlightError(
            f"Negative time of flight ({tof:.6g} s) between anomalies {nu1:.6g} and {nu2:.6g}"
        )
    return tof


def true_anomaly_after(
    orbit: OrbitalElements, attractor: CelestialBody, nu0: float, dt: float
) -> float:
    M = mean_anomaly_from_true(nu0, orbit.eccentricity) + mean_motion(orbit, attractor) * dt
    return true_anomaly_from_mean(M, orbit.eccentricity)


def propagate_state_from_true_anomaly(
    orbit: OrbitalElements, attractor: CelestialBody, nu0: float, dt: float
) -> OrbitalState:
    return elements_to_state(orbit, attractor, true_anomaly_after(orbit, attractor, nu0, dt))


def body_state_at_date(
    body: CelestialBody,
    attractor: CelestialBody,
    date: float,
    orbit: OrbitalElements | None = None,
) -> OrbitalState:
    """State of `body` relative to its attractor at `date` (s past J2000).

    `orbit` may be passed to reuse precomputed elements of the body's orbit.
    """
    if orbit is None:
        orbit = orbital_elements_from_orbit_data(body.orbit)
    M = body.mean_anomaly0 + mean_motion(orbit, attractor) * (date - body.epoch)
    return elements_to_state(orbit, attractor, true_anomaly_from_mean(M, orbit.eccentricity))


# --------------------------------------------------------------------------- #
#  Orbit geometry and speeds
# --------------------------------------------------------------------------- #

def orbit_period(attractor: CelestialBody, a: float) -> float:
    return TWO_PI * math.sqrt(a ** 3 / attractor.gm)


def circular_velocity(attractor: CelestialBody, r: float) -> float:
    return math.sqrt(attractor.gm / r)


def escape_velocity(attractor: CelestialBody, r: float) -> float:
    return math.sqrt(2.0) * circular_velocity(attractor, r)


def vis_viva_speed(attractor: CelestialBody, a: float, r: float) -> float:
    return math.sqrt(attractor.gm * (2.0 / r - 1.0 / a))


def velocity_to_reach_altitude(attractor: CelestialBody, r0: float, r1: float) -> float:
    """Periapsis speed at r0 of the ellipse whose apoapsis is r1."""
    return math.sqrt(2.0 * attractor.gm * r1 / (r0 * (r0 + r1)))


def deduce_velocity_at_radius(attractor: CelestialBody, r0: float, v0: float, r1: float) -> float:
    """Speed at r1 of an orbit moving at v0 at r0 (energy conservation)."""
    return math.sqrt(v0 * v0 + 2.0 * attractor.gm * (1.0 / r1 - 1.0 / r0))


def true_anomaly_at_radius(orbit: OrbitalElements, r: float) -> float:
    """Outbound true anomaly at which the orbit crosses radius r (NaN if never)."""
    return safe_acos((orbit.orbital_param / r - 1.0) / orbit.eccentricity)


def periapsis_radius(orbit: OrbitalElements) -> float:
    return orbit.semi_major_axis * (1.0 - orbit.eccentricity)


def ideal_ejection_direction(body_pos: np.ndarray, retrograde: bool = False) -> tuple[np.ndarray, float]:
    """Direction of the hyperbolic excess velocity that best adds to (or,
    for retrograde, subtracts from) a circular body velocity at `body_pos`.

    Returns the unit direction and its longitude in the reference plane.
    """
    tangent = normalize(np.array([-body_pos[1], body_pos[0], 0.0]))
    if retrograde:
        tangent = -tangent
    return tangent, math.atan2(tangent[1], tangent[0]) % TWO_PI


def hyperbolic_ejection_offset_angle(vp: float, rp: float, attractor: CelestialBody) -> float:
    """Angle between the periapsis direction of an ejection hyperbola
    (periapsis speed vp at radius rp) and the opposite of its outbound asymptote."""
    ecc = rp * vp * vp / attractor.gm - 1.0
    return math.pi - math.acos(-1.0 / ecc)


# --------------------------------------------------------------------------- #
#  Hohmann transfer reference values
# --------------------------------------------------------------------------- #

def hohmann_transfer_delta_v(attractor: CelestialBody, r1: float, r2: float) -> float:
    """Departure burn of a Hohmann transfer between circular orbits r1 -> r2."""
    v1 = circular_velocity(attractor, r1)
    return v1 * (math.sqrt(2.0 * r2 / (r1 + r2)) - 1.0)


def hohmann_injection_delta_v(attractor: CelestialBody, r1: float, r2: float) -> float:
    """Arrival burn of a Hohmann transfer between circular orbits r1 -> r2."""
    v2 = circular_velocity(attractor, r2)
    return v2 * (1.0 - math.sqrt(2.0 * r1 / (r1 + r2)))


def hohmann_period(attractor: CelestialBody, a1: float, a2: float) -> float:
    return orbit_period(attractor, 0.5 * (a1 + a2))
