"""
Kronecker normal-equation accumulation.

Builds alpha = A'A and beta = A'b without ever forming a full design row. Each
voxel contributes its reduced row (x-basis spatial terms and intensity terms)
to an x-row system. At the end of a row the x-row system is lifted into an
xy-plane system with the y-basis weights of that row. At the end of a plane
the xy-plane system is lifted into the full system with the z-basis weights.

Only the lower triangle is written at every stage. Spatial blocks are
symmetric in their basis indices, so ``symmetrize`` rebuilds the rest with a
nested mirror pass once all planes are done.

All performance-critical functions are at module level with Numba acceleration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

import numpy as np
from numpy.typing import NDArray
from numba import njit, prange

from .composer import RowDesign
from ..core.layout import ParameterLayout


# =============================================================================
# Module-level Numba-accelerated functions
# =============================================================================

@njit(cache=True)
def fold_design_rows(
    design: NDArray[np.float64],
    residual: NDArray[np.float64],
    alpha: NDArray[np.float64],
    beta: NDArray[np.float64],
) -> None:
    """
    Add the outer products of design rows into the lower triangle of alpha.

    Rows are folded in order, one voxel at a time.

    Args:
        design: Shape (n, m)
        residual: Shape (n,)
        alpha: Shape (m, m), updated in place (lower triangle only)
        beta: Shape (m,), updated in place
    """
    n, m = design.shape
    for r in range(n):
        dv = residual[r]
        for p in range(m):
            dp = design[r, p]
            for q in range(p + 1):
                alpha[p, q] += dp * design[r, q]
            beta[p] += dp * dv


@njit(cache=True, parallel=True)
def lift_system(
    src_alpha: NDArray[np.float64],
    src_beta: NDArray[np.float64],
    dst_alpha: NDArray[np.float64],
    dst_beta: NDArray[np.float64],
    weights: NDArray[np.float64],
    k_src: int,
    n_intensity: int,
) -> None:
    """
    Lift a system into one more basis axis (Kronecker product with weights).

    With nb = len(weights) and k_dst = nb * k_src, the spatial block of
    components (i1, i2) gains ``weights[b1] * weights[b2] * S[i1, i2]`` at
    sub-block (b1, b2). The intensity-spatial blocks and the spatial part of
    beta gain single weights. The intensity-intensity block and the intensity
    part of beta are carried over unweighted.

    Lower triangles only: sub-blocks with b1 >= b2 and entries with p >= q
    inside them. Every destination element has a single writer, so the result
    does not depend on the number of threads.

    Args:
        src_alpha, src_beta: Source system with k_src coefficients per component
        dst_alpha, dst_beta: Destination system, updated in place
        weights: Basis values of the new axis at the current row/plane
        k_src: Spatial coefficients per component in the source system
        n_intensity: Number of intensity parameters
    """
    nb = weights.shape[0]
    k_dst = nb * k_src
    s_int = 3 * k_src
    d_int = 3 * k_dst

    for idx in prange(3 * nb):
        i1 = idx // nb
        b1 = idx % nb
        wt = weights[b1]

        # spatial-spatial covariances
        for i2 in range(i1 + 1):
            for b2 in range(b1 + 1):
                wt2 = wt * weights[b2]
                r0 = k_dst * i1 + k_src * b1
                c0 = k_dst * i2 + k_src * b2
                sr0 = k_src * i1
                sc0 = k_src * i2
                for p in range(k_src):
                    for q in range(p + 1):
                        dst_alpha[r0 + p, c0 + q] += wt2 * src_alpha[sr0 + p, sc0 + q]

        # spatial-intensity covariances
        c0 = k_dst * i1 + k_src * b1
        sc0 = k_src * i1
        for t in range(n_intensity):
            for p in range(k_src):
                dst_alpha[d_int + t, c0 + p] += wt * src_alpha[s_int + t, sc0 + p]

        # spatial component of beta
        for p in range(k_src):
            dst_beta[c0 + p] += wt * src_beta[sc0 + p]

    # intensity-intensity covariances and intensity component of beta
    for t in range(n_intensity):
        for u in range(t + 1):
            dst_alpha[d_int + t, d_int + u] += src_alpha[s_int + t, s_int + u]
        dst_beta[d_int + t] += src_beta[s_int + t]


@njit(cache=True)
def _mirror_square(a: NDArray[np.float64], r0: int, c0: int, n: int) -> None:
    """Copy the lower triangle of the n x n block at (r0, c0) to its upper triangle."""
    for p in range(n):
        for q in range(p):
            a[r0 + q, c0 + p] = a[r0 + p, c0 + q]


@njit(cache=True)
def symmetrize(alpha: NDArray[np.float64], nx: int, ny: int, nz: int) -> None:
    """
    Complete alpha from its accumulated lower triangle, in place.

    Mirrors, for every component pair (i1 >= i2): each x sub-block of every
    (y1 >= y2) pair, then each xy sub-block of every (z1 >= z2) pair, then the
    whole xyz block. Finally the full matrix is mirrored.
    """
    nxy = nx * ny
    k = nxy * nz

    for i1 in range(3):
        for i2 in range(i1 + 1):
            rb = k * i1
            cb = k * i2
            for z1 in range(nz):
                for z2 in range(z1 + 1):
                    rz = rb + nxy * z1
                    cz = cb + nxy * z2
                    for y1 in range(ny):
                        for y2 in range(y1 + 1):
                            _mirror_square(alpha, rz + nx * y1, cz + nx * y2, nx)
                    _mirror_square(alpha, rz, cz, nxy)
            _mirror_square(alpha, rb, cb, k)

    _mirror_square(alpha, 0, 0, alpha.shape[0])


# =============================================================================
# Stage buffers
# =============================================================================

@dataclass
class StageSystem:
    """
    Normal-equation buffers for one accumulation stage.

    Attributes:
        k: Spatial coefficients per displacement component at this stage
            (nx for a row, nx*ny for a plane, nx*ny*nz for the volume)
        n_intensity: Number of intensity parameters
        alpha: Shape (3k + n_intensity, 3k + n_intensity)
        beta: Shape (3k + n_intensity,)
    """

    k: int
    n_intensity: int
    alpha: NDArray[np.float64] = field(init=False, repr=False)
    beta: NDArray[np.float64] = field(init=False, repr=False)

    def __post_init__(self):
        self.alpha = np.zeros((self.size, self.size), dtype=np.float64)
        self.beta = np.zeros(self.size, dtype=np.float64)

    @property
    def size(self) -> int:
        return 3 * self.k + self.n_intensity

    def reset(self) -> None:
        """Zero the buffers for a new row or plane."""
        self.alpha.fill(0.0)
        self.beta.fill(0.0)

    def spatial_block(self, i1: int, i2: int) -> NDArray[np.float64]:
        """Covariances of displacement component i1 (rows) with i2 (columns)."""
        return self.alpha[self.k * i1:self.k * (i1 + 1), self.k * i2:self.k * (i2 + 1)]

    def cross_block(self, i: int) -> NDArray[np.float64]:
        """Intensity parameters (rows) against displacement component i (columns)."""
        return self.alpha[3 * self.k:, self.k * i:self.k * (i + 1)]

    def intensity_block(self) -> NDArray[np.float64]:
        """Intensity-intensity covariances."""
        return self.alpha[3 * self.k:, 3 * self.k:]

    def spatial_beta(self, i: int) -> NDArray[np.float64]:
        """Beta entries of displacement component i."""
        return self.beta[self.k * i:self.k * (i + 1)]

    def intensity_beta(self) -> NDArray[np.float64]:
        """Beta entries of the intensity parameters."""
        return self.beta[3 * self.k:]


class KroneckerAccumulator:
    """
    Accumulate alpha, beta and residual statistics over the sampled grid.

    Call order mirrors the sampling loops::

        for z in planes:
            acc.begin_plane()
            for y in rows:
                acc.begin_row()
                acc.add_row_design(row_design)
                acc.end_row(BY[y])
            acc.end_plane(BZ[z])
        alpha, beta = acc.finalize()
    """

    def __init__(self, layout: ParameterLayout):
        """
        Initialize the accumulator.

        Args:
            layout: Parameter layout
        """
        self.layout = layout
        n_int = layout.n_intensity

        self.row = StageSystem(layout.nx, n_int)
        self.plane = StageSystem(layout.nx * layout.ny, n_int)
        self.volume = StageSystem(layout.n_spatial, n_int)

        self.ss = 0.0
        self.nsamp = 0
        self.ss_deriv = np.zeros(3, dtype=np.float64)

    def begin_plane(self) -> None:
        self.plane.reset()

    def begin_row(self) -> None:
        self.row.reset()

    def add_row_design(self, row_design: RowDesign) -> None:
        """Fold the accepted voxels of a row into the x-row system."""
        if row_design.count == 0:
            return

        fold_design_rows(
            np.ascontiguousarray(row_design.design),
            np.ascontiguousarray(row_design.residual),
            self.row.alpha,
            self.row.beta,
        )

        self.ss += float(np.dot(row_design.residual, row_design.residual))
        self.ss_deriv += np.sum(row_design.gradient ** 2, axis=0)
        self.nsamp += row_design.count

    def end_row(self, by: NDArray[np.float64]) -> None:
        """Lift the x-row system into the plane with y-basis weights ``by`` (ny,)."""
        lift_system(
            self.row.alpha, self.row.beta,
            self.plane.alpha, self.plane.beta,
            np.ascontiguousarray(by, dtype=np.float64),
            self.row.k, self.layout.n_intensity,
        )

    def end_plane(self, bz: NDArray[np.float64]) -> None:
        """Lift the plane system into the volume with z-basis weights ``bz`` (nz,)."""
        lift_system(
            self.plane.alpha, self.plane.beta,
            self.volume.alpha, self.volume.beta,
            np.ascontiguousarray(bz, dtype=np.float64),
            self.plane.k, self.layout.n_intensity,
        )

    def finalize(self) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        """
        Mirror the volume system and return it.

        Returns:
            Tuple of (alpha, beta); alpha is exactly symmetric
        """
        symmetrize(self.volume.alpha, self.layout.nx, self.layout.ny, self.layout.nz)
        return self.volume.alpha, self.volume.beta
