"""
Residual smoothness and variance estimation.

Converts the raw sums from one normal-equation pass into a residual variance
that accounts for spatial correlation, then rescales alpha and beta so they can
be used directly as a precision matrix and its right-hand side.

Residuals of smoothed, resampled images are correlated over roughly one FWHM,
so the number of sampled voxels overstates the independent information. The
degrees of freedom are shrunk by, per axis, the ratio of the sampling distance
to the resel width FWHM * sqrt(pi / (4 ln 2)), with that ratio capped at 1.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import FittingError


# FWHM of a Gaussian with unit standard deviation
FWHM_PER_SIGMA = np.sqrt(8.0 * np.log(2.0))

# Gaussian width sigma * sqrt(2*pi) expressed in FWHM units
RESEL_PER_FWHM = 1.0645


@dataclass
class VarianceEstimate:
    """
    Residual statistics for one iteration.

    Attributes:
        variance: Residual variance ss / dof
        fwhm: Smoothness estimated from the residual derivatives (mm)
        effective_fwhm: Smoothness used for the dof correction (mm)
        dof: Effective degrees of freedom
    """

    variance: float
    fwhm: float
    effective_fwhm: float
    dof: float


def edge_skip(fwhm: float, voxel_size: Sequence[float]) -> Tuple[int, int, int]:
    """
    Margin (voxels) to keep clear of the moving-volume boundary.

    ``rint(fwhm / voxel)`` per axis; margins below one voxel are dropped.
    """
    skip = np.rint(fwhm / np.asarray(voxel_size, dtype=np.float64)).astype(int)
    skip[skip < 1] = 0
    return tuple(int(s) for s in skip)


def sampling_stride(fwhm: float, voxel_size: Sequence[float]) -> Tuple[int, int, int]:
    """
    Template grid stride sampling about every fwhm / 2.

    ``rint(fwhm / 2 / voxel)`` per axis, at least 1.
    """
    stride = np.rint(fwhm / 2.0 / np.asarray(voxel_size, dtype=np.float64)).astype(int)
    stride[stride < 1] = 1
    return tuple(int(s) for s in stride)


def estimate_fwhm(
    ss: float,
    ss_deriv: NDArray[np.float64],
    voxel_size: Sequence[float],
) -> float:
    """
    Estimate the residual smoothness from residual derivatives.

    For a Gaussian-smoothed field, var(dr/dx) / var(r) = 1 / (2 sigma^2).
    The per-axis FWHM is averaged over the three axes. An axis whose
    derivatives vanish contributes an infinite width.

    Args:
        ss: Sum of squared residuals
        ss_deriv: Per-axis sums of squared residual derivatives (voxel units)
        voxel_size: Template voxel size (mm)

    Returns:
        FWHM in mm
    """
    ss_deriv = np.asarray(ss_deriv, dtype=np.float64)
    voxel_size = np.asarray(voxel_size, dtype=np.float64)

    with np.errstate(divide="ignore"):
        per_axis = voxel_size / np.sqrt(2.0 * ss_deriv / ss) * FWHM_PER_SIGMA

    return float(np.mean(per_axis))


def effective_fwhm(fwhm: float, residual_fwhm: float, estimated: float) -> float:
    """
    Smoothness used for the degrees-of-freedom correction.

    The estimate is capped at ``residual_fwhm`` and then floored at ``fwhm``.
    """
    return max(fwhm, min(residual_fwhm, estimated))


def degrees_of_freedom(
    nsamp: int,
    n_params: int,
    stride: Sequence[int],
    voxel_size: Sequence[float],
    fwhm: float,
) -> float:
    """
    Effective degrees of freedom of the residuals.

    ``prod_axes(min(voxel * stride / (fwhm * 1.0645), 1)) * (nsamp - n_params)``

    Args:
        nsamp: Number of sampled voxels
        n_params: Number of fitted parameters
        stride: Sampling stride per axis
        voxel_size: Template voxel size (mm)
        fwhm: Effective smoothness (mm)
    """
    spacing = np.asarray(voxel_size, dtype=np.float64) * np.asarray(stride, dtype=np.float64)
    factors = np.minimum(spacing / (fwhm * RESEL_PER_FWHM), 1.0)
    return float(np.prod(factors) * (nsamp - n_params))


def estimate_variance(
    ss: float,
    nsamp: int,
    ss_deriv: NDArray[np.float64],
    n_params: int,
    stride: Sequence[int],
    voxel_size: Sequence[float],
    fwhm: float,
    residual_fwhm: float,
) -> VarianceEstimate:
    """
    Residual variance corrected for spatial smoothness.

    Args:
        ss: Sum of squared residuals
        nsamp: Number of sampled voxels
        ss_deriv: Per-axis sums of squared residual derivatives
        n_params: Number of fitted parameters
        stride: Sampling stride per axis
        voxel_size: Template voxel size (mm)
        fwhm: Nominal image smoothness (mm)
        residual_fwhm: Upper bound on residual smoothness (mm)

    Returns:
        VarianceEstimate

    Raises:
        FittingError: If no voxel was sampled, the residual is exactly zero,
            or the degrees of freedom are not positive
    """
    if nsamp == 0:
        raise FittingError("No voxels were sampled; every position failed the edge check")

    if not ss > 0:
        raise FittingError(f"Residual sum of squares must be positive, got {ss}")

    estimated = estimate_fwhm(ss, ss_deriv, voxel_size)
    used = effective_fwhm(fwhm, residual_fwhm, estimated)
    dof = degrees_of_freedom(nsamp, n_params, stride, voxel_size, used)

    if not dof > 0:
        raise FittingError(
            f"Degrees of freedom must be positive, got {dof} "
            f"({nsamp} samples for {n_params} parameters)"
        )

    return VarianceEstimate(
        variance=ss / dof,
        fwhm=estimated,
        effective_fwhm=used,
        dof=dof,
    )


def to_precision(
    alpha: NDArray[np.float64],
    beta: NDArray[np.float64],
    variance: float,
    copy: bool = True,
) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Scale alpha and beta by 1 / variance.

    With ``copy=False`` the arrays are scaled in place and returned, which
    avoids a second P x P buffer.
    """
    scale = 1.0 / variance
    if copy:
        return alpha * scale, beta * scale
    np.multiply(alpha, scale, out=alpha)
    np.multiply(beta, scale, out=beta)
    return alpha, beta
