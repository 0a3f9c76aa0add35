"""
Sampling Service: interpolated value and gradient at continuous voxel coordinates.

Implements trilinear (order 1) and cubic B-spline (order 3) interpolation of
3-D volumes together with the analytic gradient of the interpolant, in voxel
units. Coordinates are 0-based voxel indices along (x, y, z).

The service does not reject out-of-domain coordinates: trilinear sampling
clamps the interpolation cell to the volume and extrapolates linearly, cubic
sampling mirrors coefficient indices. Callers are expected to screen
coordinates before sampling (see the edge-skip check in the composer).

All Numba-accelerated functions are at module level.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
from numpy.typing import NDArray
from numba import njit, prange


# =============================================================================
# Module-level Numba-accelerated functions
# =============================================================================

@njit(cache=True, fastmath=True)
def _cubic_bspline(t: float) -> float:
    """
    Evaluate the centered cubic B-spline at t.

    Supported on [-2, 2]:
    - |t| < 1:  2/3 - t^2 + |t|^3 / 2
    - |t| < 2:  (2 - |t|)^3 / 6
    """
    at = abs(t)

    if at >= 2.0:
        return 0.0
    elif at >= 1.0:
        tmp = 2.0 - at
        return tmp * tmp * tmp / 6.0
    else:
        t2 = at * at
        return 2.0 / 3.0 - t2 + 0.5 * t2 * at


@njit(cache=True, fastmath=True)
def _cubic_bspline_derivative(t: float) -> float:
    """Evaluate the derivative of the centered cubic B-spline at t."""
    sign = 1.0 if t >= 0.0 else -1.0
    at = abs(t)

    if at >= 2.0:
        return 0.0
    elif at >= 1.0:
        tmp = 2.0 - at
        return -sign * 0.5 * tmp * tmp
    else:
        return sign * (-2.0 * at + 1.5 * at * at)


@njit(cache=True)
def _mirror_index(k: int, n: int) -> int:
    """Map an index onto [0, n) by mirroring about the edge voxels."""
    if n == 1:
        return 0
    period = 2 * (n - 1)
    k = abs(k) % period
    if k >= n:
        k = period - k
    return k


@njit(cache=True)
def _cell_origin(x: float, n: int) -> int:
    """Lower corner of the trilinear cell containing x, clamped to the volume."""
    i = int(np.floor(x))
    if i < 0:
        i = 0
    if i > n - 2:
        i = n - 2
    return i


@njit(cache=True, fastmath=True)
def trilinear_with_gradient(
    data: NDArray[np.float64], x: float, y: float, z: float
) -> tuple:
    """
    Trilinear interpolation with gradient at a single point.

    Args:
        data: Volume indexed [x, y, z]; every axis must have length >= 2
        x, y, z: Voxel coordinates

    Returns:
        Tuple of (value, dx, dy, dz)
    """
    nx, ny, nz = data.shape

    i = _cell_origin(x, nx)
    j = _cell_origin(y, ny)
    k = _cell_origin(z, nz)
    fx = x - i
    fy = y - j
    fz = z - k
    gx = 1.0 - fx
    gy = 1.0 - fy
    gz = 1.0 - fz

    d000 = data[i, j, k]
    d100 = data[i + 1, j, k]
    d010 = data[i, j + 1, k]
    d110 = data[i + 1, j + 1, k]
    d001 = data[i, j, k + 1]
    d101 = data[i + 1, j, k + 1]
    d011 = data[i, j + 1, k + 1]
    d111 = data[i + 1, j + 1, k + 1]

    # Interpolate along x first
    c00 = d000 * gx + d100 * fx
    c10 = d010 * gx + d110 * fx
    c01 = d001 * gx + d101 * fx
    c11 = d011 * gx + d111 * fx

    c0 = c00 * gy + c10 * fy
    c1 = c01 * gy + c11 * fy
    value = c0 * gz + c1 * fz

    dx = (gy * gz * (d100 - d000) + fy * gz * (d110 - d010) +
          gy * fz * (d101 - d001) + fy * fz * (d111 - d011))
    dy = (c10 - c00) * gz + (c11 - c01) * fz
    dz = c1 - c0

    return value, dx, dy, dz


@njit(cache=True, fastmath=True)
def tricubic_with_gradient(
    coef: NDArray[np.float64], x: float, y: float, z: float
) -> tuple:
    """
    Cubic B-spline interpolation with gradient at a single point.

    Args:
        coef: Prefiltered B-spline coefficients indexed [x, y, z]
        x, y, z: Voxel coordinates

    Returns:
        Tuple of (value, dx, dy, dz)
    """
    nx, ny, nz = coef.shape

    ix = int(np.floor(x))
    iy = int(np.floor(y))
    iz = int(np.floor(z))

    wx = np.empty(4)
    wy = np.empty(4)
    wz = np.empty(4)
    dwx = np.empty(4)
    dwy = np.empty(4)
    dwz = np.empty(4)
    for t in range(4):
        wx[t] = _cubic_bspline(x - (ix - 1 + t))
        wy[t] = _cubic_bspline(y - (iy - 1 + t))
        wz[t] = _cubic_bspline(z - (iz - 1 + t))
        dwx[t] = _cubic_bspline_derivative(x - (ix - 1 + t))
        dwy[t] = _cubic_bspline_derivative(y - (iy - 1 + t))
        dwz[t] = _cubic_bspline_derivative(z - (iz - 1 + t))

    value = 0.0
    dx = 0.0
    dy = 0.0
    dz = 0.0

    for c in range(4):
        kk = _mirror_index(iz - 1 + c, nz)
        for b in range(4):
            jj = _mirror_index(iy - 1 + b, ny)
            for a in range(4):
                ii = _mirror_index(ix - 1 + a, nx)
                cf = coef[ii, jj, kk]
                value += cf * wx[a] * wy[b] * wz[c]
                dx += cf * dwx[a] * wy[b] * wz[c]
                dy += cf * wx[a] * dwy[b] * wz[c]
                dz += cf * wx[a] * wy[b] * dwz[c]

    return value, dx, dy, dz


@njit(cache=True, parallel=True)
def sample_batch(
    coef: NDArray[np.float64],
    xs: NDArray[np.float64],
    ys: NDArray[np.float64],
    zs: NDArray[np.float64],
    order: int,
) -> Tuple[NDArray[np.float64], NDArray[np.float64],
           NDArray[np.float64], NDArray[np.float64]]:
    """
    Interpolate values and gradients at many points.

    Each point is written by exactly one iteration, so the output does not
    depend on the number of threads.

    Args:
        coef: Volume data (order 1) or B-spline coefficients (order 3)
        xs, ys, zs: Voxel coordinates, all of the same length
        order: Interpolation order (1 or 3)

    Returns:
        Tuple of (values, dx, dy, dz) arrays
    """
    n = xs.shape[0]
    values = np.empty(n, dtype=np.float64)
    dx = np.empty(n, dtype=np.float64)
    dy = np.empty(n, dtype=np.float64)
    dz = np.empty(n, dtype=np.float64)

    for idx in prange(n):
        if order == 3:
            v, gx, gy, gz = tricubic_with_gradient(coef, xs[idx], ys[idx], zs[idx])
        else:
            v, gx, gy, gz = trilinear_with_gradient(coef, xs[idx], ys[idx], zs[idx])
        values[idx] = v
        dx[idx] = gx
        dy[idx] = gy
        dz[idx] = gz

    return values, dx, dy, dz


# =============================================================================
# Service entry point
# =============================================================================

def sample(volume, x, y, z) -> Tuple[NDArray[np.float64], NDArray[np.float64],
                                     NDArray[np.float64], NDArray[np.float64]]:
    """
    Sample a volume at continuous voxel coordinates.

    Args:
        volume: Volume to sample (uses its interpolation order)
        x, y, z: Coordinates (scalars or arrays broadcastable to one shape)

    Returns:
        Tuple of (value, gradient_x, gradient_y, gradient_z), each shaped
        like the broadcast coordinates
    """
    x, y, z = np.broadcast_arrays(
        np.asarray(x, dtype=np.float64),
        np.asarray(y, dtype=np.float64),
        np.asarray(z, dtype=np.float64),
    )
    shape = x.shape

    values, dx, dy, dz = sample_batch(
        volume.get_coef(),
        np.ascontiguousarray(x.ravel()),
        np.ascontiguousarray(y.ravel()),
        np.ascontiguousarray(z.ravel()),
        volume.order,
    )

    return (values.reshape(shape), dx.reshape(shape),
            dy.reshape(shape), dz.reshape(shape))
