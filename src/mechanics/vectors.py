"""Vector helpers and the Newton root solver shared by the mechanics kernel.

Vectors are plain numpy float arrays of shape (2,) or (3,); every helper
returns a new array and never mutates its inputs.
"""

from __future__ import annotations

import math
from typing import Callable

import numpy as np
from numba import njit

X_AXIS = np.array([1.0, 0.0, 0.0])
Y_AXIS = np.array([0.0, 1.0, 0.0])
Z_AXIS = np.array([0.0, 0.0, 1.0])  # reference-plane normal


# --------------------------------------------------------------------------- #
#  Scalars
# --------------------------------------------------------------------------- #

def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def safe_acos(x: float, tol: float = 1e-5) -> float:
    """acos that absorbs floating-point overshoot of up to `tol` past +/-1.

    Arguments further out are left alone and produce NaN.
    """
    if 1.0 < x <= 1.0 + tol:
        x = 1.0
    elif -1.0 - tol <= x < -1.0:
        x = -1.0
    elif not -1.0 <= x <= 1.0:
        return math.nan
    return math.acos(x)


def newton_root_solve(
    f: Callable[[float], float],
    df: Callable[[float], float],
    x0: float,
    eps: float,
    max_iters: int = 1000,
) -> float:
    """Find a root of f by Newton iteration.

    Stops once two consecutive iterates differ by less than `eps` or after
    `max_iters` steps.  Non-convergence is not an error: the last iterate
    is returned as-is.
    """
    x = x0 - f(x0) / df(x0)
    prev = x0
    n = 1
    while abs(x - prev) > eps and n < max_iters:
        prev = x
        x = x - f(x) / df(x)
        n += 1
    return x


# --------------------------------------------------------------------------- #
#  3D
# --------------------------------------------------------------------------- #

def vec3(x: float, y: float, z: float) -> np.ndarray:
    return np.array([x, y, z], dtype=np.float64)


def mag(v: np.ndarray) -> float:
    return float(math.sqrt(float(np.dot(v, v))))


def normalize(v: np.ndarray) -> np.ndarray:
    return v / mag(v)


@njit(cache=True)
def rotate3(v: np.ndarray, axis: np.ndarray, angle: float) -> np.ndarray:
    """Rotate v about the unit vector `axis` by `angle` (Rodrigues' formula)."""
    c = math.cos(angle)
    s = math.sin(angle)
    cx = axis[1] * v[2] - axis[2] * v[1]
    cy = axis[2] * v[0] - axis[0] * v[2]
    cz = axis[0] * v[1] - axis[1] * v[0]
    k = (axis[0] * v[0] + axis[1] * v[1] + axis[2] * v[2]) * (1.0 - c)
    out = np.empty(3)
    out[0] = v[0] * c + cx * s + axis[0] * k
    out[1] = v[1] * c + cy * s + axis[1] * k
    out[2] = v[2] * c + cz * s + axis[2] * k
    return out


def angle_between(u: np.ndarray, v: np.ndarray) -> float:
    return safe_acos(float(np.dot(u, v)) / (mag(u) * mag(v)))


# --------------------------------------------------------------------------- #
#  2D
# --------------------------------------------------------------------------- #

def vec2(x: float, y: float) -> np.ndarray:
    return np.array([x, y], dtype=np.float64)


def det2(u: np.ndarray, v: np.ndarray) -> float:
    return float(u[0] * v[1] - u[1] * v[0])


def rotate2(v: np.ndarray, angle: float) -> np.ndarray:
    c = math.cos(angle)
    s = math.sin(angle)
    return vec2(v[0] * c - v[1] * s, v[0] * s + v[1] * c)


# --------------------------------------------------------------------------- #
#  Random sampling on spheres
# --------------------------------------------------------------------------- #

def randint(rng: np.random.Generator, a: int, b: int) -> int:
    """Uniform integer in [a, b], both ends included."""
    return int(rng.integers(a, b + 1))


def min_max_ring_angle(radius: float, r_min: float, r_max: float) -> tuple[float, float]:
    """Polar-angle band of a sphere of `radius` whose points sit at a
    perpendicular distance between r_min and r_max from the polar axis."""
    theta_min = math.asin(clamp(r_min / radius, 0.0, 1.0))
    theta_max = math.asin(clamp(r_max / radius, 0.0, 1.0))
    return theta_min, theta_max


def random_point_on_sphere_ring(
    rng: np.random.Generator, theta_min: float, theta_max: float
) -> tuple[float, float]:
    return float(rng.uniform(theta_min, theta_max)), float(rng.uniform(0.0, 2.0 * math.pi))


def point_on_sphere_ring(direction: np.ndarray, theta: float, phi: float) -> np.ndarray:
    """Unit vector at polar angle `theta` from `direction` and azimuth `phi` around it."""
    d = normalize(direction)
    ref = X_AXIS if abs(d[0]) < 0.9 else Y_AXIS
    axis = normalize(np.cross(d, ref))
    tilted = rotate3(d, axis, theta)
    return rotate3(tilted, d, phi)
