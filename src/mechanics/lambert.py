"""Lambert solver: Izzo's algorithm (2015) with Numba JIT.

Solves the Lambert boundary value problem: given two position vectors
r1, r2 and a time-of-flight tof, find the velocity vectors v1, v2
that connect them under two-body dynamics.

Only the zero-revolution, prograde (counter-clockwise about +z) branch is
solved.

Reference:
    Izzo, D. "Revisiting Lambert's problem."
    Celestial Mechanics and Dynamical Astronomy, 121(1), 1-15, 2015.

All units: km, seconds, km^3/s^2.
"""

from __future__ import annotations

import math

import numpy as np
from numba import njit

from ephemeris.bodies import CelestialBody

BATTIN_BAND = 0.01  # |x - 1| below this: hypergeometric series
LAGRANGE_BAND = 0.2  # |x - 1| below this (and above BATTIN_BAND): Lagrange form
HOUSEHOLDER_TOL = 1e-15
HOUSEHOLDER_MAX_ITER = 15


# --------------------------------------------------------------------------- #
#  Time of flight as a function of x
# --------------------------------------------------------------------------- #
@njit(cache=True)
def _hypergeometric_f(z: float, tol: float) -> float:
    """Gauss hypergeometric 2F1(3, 1, 5/2, z) by direct summation."""
    sj = 1.0
    cj = 1.0
    err = 1.0
    j = 0
    while err > tol and j < 1000:
        cj1 = cj * (3.0 + j) * (1.0 + j) / (2.5 + j) * z / (j + 1.0)
        sj += cj1
        err = abs(cj1)
        cj = cj1
        j += 1
    return sj


@njit(cache=True)
def _x2tof_lagrange(x: float, lam: float) -> float:
    a = 1.0 / (1.0 - x * x)
    if a > 0.0:
        alfa = 2.0 * math.acos(x)
        beta = 2.0 * math.asin(math.sqrt(lam * lam / a))
        if lam < 0.0:
            beta = -beta
        return a * math.sqrt(a) * ((alfa - math.sin(alfa)) - (beta - math.sin(beta))) / 2.0
    alfa = 2.0 * math.acosh(x)
    beta = 2.0 * math.asinh(math.sqrt(-lam * lam / a))
    if lam < 0.0:
        beta = -beta
    return -a * math.sqrt(-a) * ((beta - math.sinh(beta)) - (alfa - math.sinh(alfa))) / 2.0


@njit(cache=True)
def _x2tof(x: float, lam: float) -> float:
    """Non-dimensional time of flight for the free variable x.

    Three forms are used depending on the distance of x from 1 (the
    parabolic case), each numerically stable in its own band.
    """
    dist = abs(x - 1.0)
    if BATTIN_BAND < dist < LAGRANGE_BAND:
        return _x2tof_lagrange(x, lam)

    E = x * x - 1.0
    rho = abs(E)
    z = math.sqrt(1.0 + lam * lam * E)

    if dist < BATTIN_BAND:
        eta = z - lam * x
        s1 = 0.5 * (1.0 - lam - x * eta)
        q = 4.0 / 3.0 * _hypergeometric_f(s1, 1e-11)
        return (eta ** 3 * q + 4.0 * lam * eta) / 2.0

    y = math.sqrt(rho)
    g = x * z - lam * E
    if E < 0.0:
        d = math.acos(g)
    else:
        d = math.log(y * (z - lam * x) + g)
    return (x - lam * z - d / y) / E


@njit(cache=True)
def _dtdx(x: float, T: float, lam: float) -> tuple:
    l2 = lam * lam
    l3 = l2 * lam
    umx2 = 1.0 - x * x
    y = math.sqrt(1.0 - l2 * umx2)
    y2 = y * y
    y3 = y2 * y
    dt = (3.0 * T * x - 2.0 + 2.0 * l3 * x / y) / umx2
    ddt = (3.0 * T + 5.0 * x * dt + 2.0 * (1.0 - l2) * l3 / y3) / umx2
    dddt = (7.0 * x * ddt + 8.0 * dt - 6.0 * (1.0 - l2) * l2 * l3 * x / y3 / y2) / umx2
    return dt, ddt, dddt


@njit(cache=True)
def _householder(T: float, x0: float, lam: float, eps: float, iter_max: int) -> float:
    """Third-order Householder iterations on T(x) = T.

    Stops at the iteration cap without complaint; the last iterate is kept.
    """
    err = 1.0
    it = 0
    while err > eps and it < iter_max:
        tof = _x2tof(x0, lam)
        dt, ddt, dddt = _dtdx(x0, tof, lam)
        delta = tof - T
        dt2 = dt * dt
        xnew = x0 - delta * (dt2 - delta * ddt / 2.0) / (
            dt * (dt2 - delta * ddt) + dddt * delta * delta / 6.0
        )
        err = abs(x0 - xnew)
        x0 = xnew
        it += 1
    return x0


@njit(cache=True)
def _solve_x(lam: float, T: float) -> float:
    lam2 = lam * lam
    lam3 = lam * lam2
    T0 = math.acos(lam) + lam * math.sqrt(1.0 - lam2)
    T1 = 2.0 / 3.0 * (1.0 - lam3)

    if T >= T0:
        x0 = -(T - T0) / (T - T0 + 4.0)
    elif T <= T1:
        x0 = T1 * (T1 - T) / (2.0 / 5.0 * (1.0 - lam2 * lam3) * T) + 1.0
    else:
        x0 = (T / T0) ** (0.69314718055994529 / math.log(T1 / T0)) - 1.0

    return _householder(T, x0, lam, HOUSEHOLDER_TOL, HOUSEHOLDER_MAX_ITER)


# --------------------------------------------------------------------------- #
#  Public API
# --------------------------------------------------------------------------- #

def solve_lambert(
    r1: np.ndarray,
    r2: np.ndarray,
    tof: float,
    attractor: CelestialBody,
) -> tuple[np.ndarray, np.ndarray]:
    """Velocities at r1 and r2 of the conic arc joining them in `tof` seconds.

    Parameters
    ----------
    r1 : (3,) departure position in km
    r2 : (3,) arrival position in km
    tof : time of flight in seconds
    attractor : central body (its gm is used)

    Returns
    -------
    (v1, v2) departure and arrival velocities in km/s
    """
    mu = attractor.gm

    c = float(np.linalg.norm(r2 - r1))
    R1 = float(np.linalg.norm(r1))
    R2 = float(np.linalg.norm(r2))
    s = (c + R1 + R2) / 2.0

    ir1 = r1 / R1
    ir2 = r2 / R2
    ih = np.cross(ir1, ir2)
    ih = ih / np.linalg.norm(ih)

    lam2 = 1.0 - c / s
    lam = math.sqrt(lam2)

    # Transfer plane normal pointing down: take the prograde branch
    if ih[2] < 0.0:
        lam = -lam
        it1 = np.cross(ir1, ih)
        it2 = np.cross(ir2, ih)
    else:
        it1 = np.cross(ih, ir1)
        it2 = np.cross(ih, ir2)
    it1 = it1 / np.linalg.norm(it1)
    it2 = it2 / np.linalg.norm(it2)

    T = math.sqrt(2.0 * mu / s ** 3) * tof
    x = _solve_x(lam, T)

    gamma = math.sqrt(mu * s / 2.0)
    rho = (R1 - R2) / c
    sigma = math.sqrt(1.0 - rho * rho)
    y = math.sqrt(1.0 - lam2 + lam2 * x * x)

    vr1 = gamma * ((lam * y - x) - rho * (lam * y + x)) / R1
    vr2 = -gamma * ((lam * y - x) + rho * (lam * y + x)) / R2
    vt = gamma * sigma * (y + lam * x)

    v1 = vr1 * ir1 + (vt / R1) * it1
    v2 = vr2 * ir2 + (vt / R2) * it2
    return v1, v2
