"""Tests for the vector helpers, the Newton solver and sphere-ring sampling."""

import math

import numpy as np
import pytest
from numpy.testing import assert_allclose

from mechanics.vectors import (
    X_AXIS,
    Y_AXIS,
    Z_AXIS,
    angle_between,
    clamp,
    det2,
    lerp,
    mag,
    min_max_ring_angle,
    newton_root_solve,
    normalize,
    point_on_sphere_ring,
    randint,
    random_point_on_sphere_ring,
    rotate2,
    rotate3,
    safe_acos,
    vec2,
    vec3,
)


class TestScalars:

    def test_clamp_and_lerp(self):
        assert clamp(1.5, 0.0, 1.0) == 1.0
        assert clamp(-0.5, 0.0, 1.0) == 0.0
        assert lerp(2.0, 4.0, 0.25) == 2.5

    def test_safe_acos_absorbs_small_overshoot(self):
        assert safe_acos(1.0 + 1e-7) == 0.0
        assert safe_acos(-1.0 - 1e-7) == pytest.approx(math.pi)

    def test_safe_acos_out_of_domain_is_nan(self):
        assert math.isnan(safe_acos(1.1))
        assert math.isnan(safe_acos(-2.0))

    def test_newton_sqrt2(self):
        root = newton_root_solve(lambda x: x * x - 2.0, lambda x: 2.0 * x, 1.0, 1e-14)
        assert root == pytest.approx(math.sqrt(2.0), abs=1e-12)

    def test_newton_returns_last_iterate_without_convergence(self):
        # x^2 + 1 has no real root; the solver must still return a float
        x = newton_root_solve(lambda x: x * x + 1.0, lambda x: 2.0 * x, 0.5, 1e-14, max_iters=20)
        assert isinstance(x, float)


class TestVectors:

    def test_mag_normalize(self):
        v = vec3(3.0, 4.0, 0.0)
        assert mag(v) == pytest.approx(5.0)
        assert_allclose(normalize(v), [0.6, 0.8, 0.0])

    def test_rotate3_quarter_turn(self):
        assert_allclose(rotate3(X_AXIS, Z_AXIS, math.pi / 2), Y_AXIS, atol=1e-15)

    def test_rotate3_preserves_norm_and_axis_component(self):
        v = vec3(1.0, -2.0, 0.5)
        axis = normalize(vec3(1.0, 1.0, 1.0))
        w = rotate3(v, axis, 1.234)
        assert mag(w) == pytest.approx(mag(v))
        assert np.dot(w, axis) == pytest.approx(np.dot(v, axis))

    def test_rotate3_does_not_mutate(self):
        v = vec3(1.0, 2.0, 3.0)
        rotate3(v, Z_AXIS, 0.3)
        assert_allclose(v, [1.0, 2.0, 3.0])

    def test_angle_between(self):
        assert angle_between(X_AXIS, Y_AXIS) == pytest.approx(math.pi / 2)
        assert angle_between(X_AXIS, X_AXIS * 2.0) == pytest.approx(0.0)

    def test_2d(self):
        assert det2(vec2(1.0, 0.0), vec2(0.0, 1.0)) == 1.0
        assert_allclose(rotate2(vec2(1.0, 0.0), math.pi), [-1.0, 0.0], atol=1e-15)


class TestSampling:

    def test_randint_is_inclusive(self, rng):
        draws = {randint(rng, 2, 4) for _ in range(500)}
        assert draws == {2, 3, 4}

    def test_ring_angles(self):
        tmin, tmax = min_max_ring_angle(100.0, 10.0, 50.0)
        assert tmin == pytest.approx(math.asin(0.1))
        assert tmax == pytest.approx(math.asin(0.5))

    def test_ring_angles_capped_at_right_angle(self):
        _, tmax = min_max_ring_angle(100.0, 10.0, 500.0)
        assert tmax == pytest.approx(math.pi / 2)

    def test_random_point_within_bounds(self, rng):
        for _ in range(100):
            theta, phi = random_point_on_sphere_ring(rng, 0.2, 0.4)
            assert 0.2 <= theta <= 0.4
            assert 0.0 <= phi < 2.0 * math.pi

    @pytest.mark.parametrize("direction", [X_AXIS, Y_AXIS, Z_AXIS, vec3(1.0, -2.0, 0.3)])
    def test_point_on_sphere_ring_polar_angle(self, direction):
        for phi in np.linspace(0.0, 2.0 * math.pi, 7):
            p = point_on_sphere_ring(direction, 0.3, phi)
            assert mag(p) == pytest.approx(1.0)
            assert angle_between(p, direction) == pytest.approx(0.3, abs=1e-9)

    def test_point_on_sphere_ring_azimuth_spreads(self):
        a = point_on_sphere_ring(Z_AXIS, 0.5, 0.0)
        b = point_on_sphere_ring(Z_AXIS, 0.5, math.pi)
        # opposite sides of the ring
        assert_allclose(a[:2], -b[:2], atol=1e-12)
