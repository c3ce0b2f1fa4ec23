"""Tests for the Kepler kernel: anomalies, element conversion, propagation
and the closed-form orbit helpers."""

import math

import numpy as np
import pytest
from numpy.testing import assert_allclose

from ephemeris.bodies import AU_KM, EARTH, MARS, SUN, OrbitData
from mechanics.kepler import (
    OrbitalState,
    body_state_at_date,
    circular_velocity,
    deduce_velocity_at_radius,
    elements_to_state,
    escape_velocity,
    hohmann_injection_delta_v,
    hohmann_period,
    hohmann_transfer_delta_v,
    hyperbolic_ejection_offset_angle,
    ideal_ejection_direction,
    mean_anomaly_from_true,
    orbit_period,
    orbital_elements_from_orbit_data,
    periapsis_radius,
    propagate_state_from_true_anomaly,
    state_to_elements,
    tof_between_anomalies,
    true_anomaly_at_radius,
    true_anomaly_from_mean,
    true_anomaly_from_state,
    velocity_to_reach_altitude,
    vis_viva_speed,
)
from mechanics.vectors import mag

TWO_PI = 2.0 * math.pi


def _orbit(a, e, i_deg, argp_deg, lan_deg):
    return orbital_elements_from_orbit_data(OrbitData(
        semi_major_axis=a,
        eccentricity=e,
        inclination=math.radians(i_deg),
        arg_periapsis=math.radians(argp_deg),
        asc_node_longitude=math.radians(lan_deg),
    ))


def _angle_diff(a, b):
    return abs((a - b + math.pi) % TWO_PI - math.pi)


# --------------------------------------------------------------------------- #
#  Anomalies
# --------------------------------------------------------------------------- #

class TestAnomalies:

    @pytest.mark.parametrize("ecc", [0.0, 0.1, 0.5, 0.9, 0.99])
    @pytest.mark.parametrize("nu", [0.0, 0.5, 2.0, math.pi, 4.0, 6.0])
    def test_elliptic_round_trip(self, ecc, nu):
        M = mean_anomaly_from_true(nu, ecc)
        assert _angle_diff(true_anomaly_from_mean(M, ecc), nu) < 1e-9

    def test_elliptic_result_is_wrapped(self):
        nu = true_anomaly_from_mean(-0.5, 0.3)
        assert 0.0 <= nu < TWO_PI

    @pytest.mark.parametrize("ecc", [1.001, 1.2, 2.0, 5.0])
    @pytest.mark.parametrize("nu", [-1.5, -0.3, 0.0, 0.7, 1.5])
    def test_hyperbolic_round_trip(self, ecc, nu):
        M = mean_anomaly_from_true(nu, ecc)
        assert true_anomaly_from_mean(M, ecc) == pytest.approx(nu, abs=1e-9)

    def test_large_hyperbolic_mean_anomaly_converges(self):
        nu = true_anomaly_from_mean(1e4, 1.5)
        assert math.isfinite(nu)
        assert nu < math.acos(-1.0 / 1.5)


# --------------------------------------------------------------------------- #
#  State <-> elements
# --------------------------------------------------------------------------- #

class TestElementConversion:

    @pytest.mark.parametrize("a, e, i, argp, lan", [
        (1.5e8, 0.1, 10.0, 30.0, 45.0),
        (7000.0, 0.6, 97.0, 270.0, 300.0),
        (-20000.0, 1.8, 35.0, 120.0, 10.0),
    ])
    def test_round_trip(self, sun, a, e, i, argp, lan):
        orbit = _orbit(a, e, i, argp, lan)
        for nu in (0.0, 0.8, -0.8 if e > 1.0 else 4.0):
            state = elements_to_state(orbit, sun, nu)
            back = state_to_elements(state, sun)
            assert back.semi_major_axis == pytest.approx(a, rel=1e-9)
            assert back.eccentricity == pytest.approx(e, rel=1e-9)
            assert back.inclination == pytest.approx(math.radians(i), abs=1e-9)
            assert _angle_diff(back.arg_periapsis, math.radians(argp)) < 1e-8
            assert _angle_diff(back.asc_node_longitude, math.radians(lan)) < 1e-8
            assert _angle_diff(true_anomaly_from_state(back, state), nu) < 1e-8

    def test_angular_momentum_along_normal(self, sun):
        orbit = _orbit(1.2e8, 0.2, 25.0, 40.0, 60.0)
        state = elements_to_state(orbit, sun, 1.0)
        h = np.cross(state.pos, state.vel)
        assert_allclose(h / mag(h), orbit.normal, atol=1e-12)

    def test_circular_equatorial_is_fully_degenerate(self, earth):
        r = 7000.0
        state = OrbitalState(pos=np.array([r, 0.0, 0.0]), vel=np.array([0.0, circular_velocity(earth, r), 0.0]))
        orbit = state_to_elements(state, earth)
        assert orbit.in_plane
        assert orbit.eccentricity == 0.0
        assert orbit.inclination == 0.0
        assert orbit.arg_periapsis == 0.0
        assert orbit.asc_node_longitude == 0.0
        assert_allclose(orbit.periapsis_dir, [1.0, 0.0, 0.0])
        assert orbit.semi_major_axis == pytest.approx(r)

    def test_circular_inclined_uses_node_line(self, earth):
        r = 7000.0
        v = circular_velocity(earth, r)
        state = OrbitalState(pos=np.array([0.0, r, 0.0]), vel=np.array([-v * 0.5, 0.0, v * math.sqrt(3) / 2]))
        orbit = state_to_elements(state, earth)
        assert orbit.eccentricity == 0.0
        assert orbit.arg_periapsis == 0.0
        assert_allclose(orbit.periapsis_dir, orbit.asc_node_dir)
        assert true_anomaly_from_state(orbit, state) == pytest.approx(0.0, abs=1e-12)

    def test_planar_eccentric_longitude_of_periapsis(self, sun):
        r = 1.0e8
        lon = math.radians(60.0)
        peri = np.array([math.cos(lon), math.sin(lon), 0.0])
        prograde = np.array([-math.sin(lon), math.cos(lon), 0.0])
        state = OrbitalState(pos=r * peri, vel=1.2 * circular_velocity(sun, r) * prograde)
        orbit = state_to_elements(state, sun)
        assert orbit.in_plane
        assert orbit.asc_node_longitude == 0.0
        assert orbit.arg_periapsis == pytest.approx(lon)

    def test_retrograde_planar_round_trip(self, sun):
        r = 1.0e8
        lon = math.radians(60.0)
        peri = np.array([math.cos(lon), math.sin(lon), 0.0])
        retro = -np.array([-math.sin(lon), math.cos(lon), 0.0])
        state = OrbitalState(pos=r * peri, vel=1.2 * circular_velocity(sun, r) * retro)
        orbit = state_to_elements(state, sun)
        assert orbit.inclination == math.pi
        assert orbit.arg_periapsis == pytest.approx(TWO_PI - lon)

        later = propagate_state_from_true_anomaly(orbit, sun, 0.0, 1e6)
        nu = true_anomaly_from_state(orbit, later)
        again = elements_to_state(orbit, sun, nu)
        assert_allclose(again.pos, later.pos, rtol=1e-9, atol=1e-6)
        assert_allclose(elements_to_state(orbit, sun, 0.0).pos, state.pos, rtol=1e-9, atol=1e-6)


# --------------------------------------------------------------------------- #
#  Time of flight and propagation
# --------------------------------------------------------------------------- #

class TestPropagation:

    def test_half_orbit(self, sun):
        orbit = _orbit(AU_KM, 0.3, 5.0, 10.0, 20.0)
        assert tof_between_anomalies(orbit, sun, 0.0, math.pi) == pytest.approx(
            0.5 * orbit_period(sun, AU_KM), rel=1e-12
        )

    def test_elliptic_arc_wraps_through_periapsis(self, sun):
        orbit = _orbit(AU_KM, 0.0, 0.0, 0.0, 0.0)
        tof = tof_between_anomalies(orbit, sun, 1.5 * math.pi, 0.5 * math.pi)
        assert tof == pytest.approx(0.5 * orbit_period(sun, AU_KM), rel=1e-12)

    def test_hyperbolic_order_does_not_matter(self, earth):
        orbit = _orbit(-30000.0, 1.5, 0.0, 0.0, 0.0)
        forward = tof_between_anomalies(orbit, earth, -1.0, 1.0)
        backward = tof_between_anomalies(orbit, earth, 1.0, -1.0)
        assert forward > 0.0
        assert forward == pytest.approx(backward)

    def test_propagation_matches_time_of_flight(self, sun):
        orbit = _orbit(1.3 * AU_KM, 0.2, 3.0, 50.0, 80.0)
        nu0, nu1 = 0.4, 2.1
        dt = tof_between_anomalies(orbit, sun, nu0, nu1)
        state = propagate_state_from_true_anomaly(orbit, sun, nu0, dt)
        assert_allclose(state.pos, elements_to_state(orbit, sun, nu1).pos, rtol=1e-8)

    def test_body_state_is_periodic(self):
        period = orbit_period(SUN, EARTH.orbit.semi_major_axis)
        s0 = body_state_at_date(EARTH, SUN, 1.0e8)
        s1 = body_state_at_date(EARTH, SUN, 1.0e8 + period)
        assert_allclose(s1.pos, s0.pos, rtol=1e-7)
        assert mag(s0.pos) == pytest.approx(AU_KM, rel=0.02)

    def test_body_state_reuses_precomputed_orbit(self):
        orbit = orbital_elements_from_orbit_data(MARS.orbit)
        a = body_state_at_date(MARS, SUN, 3.0e8)
        b = body_state_at_date(MARS, SUN, 3.0e8, orbit)
        assert_allclose(a.pos, b.pos)


# --------------------------------------------------------------------------- #
#  Closed-form helpers
# --------------------------------------------------------------------------- #

class TestOrbitHelpers:

    def test_escape_is_sqrt2_circular(self, earth):
        r = earth.radius + 200.0
        assert escape_velocity(earth, r) == pytest.approx(math.sqrt(2.0) * circular_velocity(earth, r))

    def test_vis_viva_circular(self, earth):
        r = 10000.0
        assert vis_viva_speed(earth, r, r) == pytest.approx(circular_velocity(earth, r))

    def test_velocity_to_reach_altitude(self, earth):
        r0, r1 = 7000.0, 42164.0
        vp = velocity_to_reach_altitude(earth, r0, r1)
        assert vp == pytest.approx(vis_viva_speed(earth, 0.5 * (r0 + r1), r0))
        assert deduce_velocity_at_radius(earth, r0, vp, r1) == pytest.approx(
            vis_viva_speed(earth, 0.5 * (r0 + r1), r1)
        )

    def test_hohmann_earth_mars(self, sun):
        r1 = EARTH.orbit.semi_major_axis
        r2 = MARS.orbit.semi_major_axis
        a = 0.5 * (r1 + r2)
        assert hohmann_transfer_delta_v(sun, r1, r2) == pytest.approx(
            vis_viva_speed(sun, a, r1) - circular_velocity(sun, r1)
        )
        assert hohmann_injection_delta_v(sun, r1, r2) == pytest.approx(
            circular_velocity(sun, r2) - vis_viva_speed(sun, a, r2)
        )
        v1 = circular_velocity(sun, r1)
        assert hohmann_transfer_delta_v(sun, r1, r2) == pytest.approx(
            v1 * (math.sqrt(2.0 * r2 / (r1 + r2)) - 1.0), rel=1e-9
        )
        assert hohmann_transfer_delta_v(sun, r1, r2) == pytest.approx(2.94, abs=0.05)
        assert hohmann_period(sun, r1, r2) / 86400.0 == pytest.approx(2 * 259.0, rel=0.01)

    def test_true_anomaly_at_radius(self, earth):
        orbit = _orbit(-20000.0, 1.5, 0.0, 0.0, 0.0)
        rp = periapsis_radius(orbit)
        assert rp == pytest.approx(10000.0)
        assert true_anomaly_at_radius(orbit, rp) == pytest.approx(0.0, abs=1e-6)
        nu = true_anomaly_at_radius(orbit, earth.soi)
        state = elements_to_state(orbit, earth, nu)
        assert mag(state.pos) == pytest.approx(earth.soi, rel=1e-9)

    def test_true_anomaly_at_unreachable_radius_is_nan(self):
        orbit = _orbit(10000.0, 0.1, 0.0, 0.0, 0.0)
        assert math.isnan(true_anomaly_at_radius(orbit, 1e6))

    def test_ideal_ejection_direction(self):
        d, lon = ideal_ejection_direction(np.array([AU_KM, 0.0, 0.0]))
        assert_allclose(d, [0.0, 1.0, 0.0], atol=1e-15)
        assert lon == pytest.approx(math.pi / 2)
        d, lon = ideal_ejection_direction(np.array([AU_KM, 0.0, 0.0]), retrograde=True)
        assert_allclose(d, [0.0, -1.0, 0.0], atol=1e-15)
        assert lon == pytest.approx(1.5 * math.pi)

    def test_ejection_offset_matches_asymptote(self, earth):
        rp = earth.radius + 200.0
        vp = 1.2 * escape_velocity(earth, rp)
        offset = hyperbolic_ejection_offset_angle(vp, rp, earth)
        ecc = rp * vp * vp / earth.gm - 1.0
        # asymptote true anomaly = acos(-1/e); offset measured from its opposite
        assert offset == pytest.approx(math.pi - math.acos(-1.0 / ecc))
        assert 0.0 < offset < math.pi / 2
