"""
Voxel residual and design-row composition.

For the sampled voxels of one template row, applies the nonlinear warp and the
affine map, samples the moving and template volumes, and chain-rules the
moving-volume gradient back to the parameters. Only the reduced design row is
produced: x-basis spatial terms plus the intensity terms. The y and z basis
weights are applied later by the Kronecker lifts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
from numpy.typing import NDArray

from .field import RowField, SeparableField
from .interpolation import sample
from ..core.basis import SeparableBasis
from ..core.layout import ParameterLayout, INTENSITY_TERMS
from ..core.volume import Volume


@dataclass
class RowDesign:
    """
    Reduced design rows for the accepted voxels of one template row.

    Attributes:
        design: Shape (n, 3*nx + 4*N). Columns are the x-basis terms of the
            three displacement components followed by one intensity record
            per template.
        residual: Moving value minus scaled template prediction, shape (n,)
        gradient: Residual gradient in template space, shape (n, 3)
    """

    design: NDArray[np.float64]
    residual: NDArray[np.float64]
    gradient: NDArray[np.float64]

    @property
    def count(self) -> int:
        """Number of accepted voxels."""
        return self.residual.shape[0]


def intensity_records(
    values: NDArray[np.float64],
    positions: NDArray[np.float64],
) -> NDArray[np.float64]:
    """
    Build the per-template intensity records.

    Args:
        values: Template values, shape (n,)
        positions: Affine-mapped coordinates, shape (n, 3)

    Returns:
        Shape (n, 4): value, value*x, value*y, value*z
    """
    record = np.empty((values.shape[0], len(INTENSITY_TERMS)), dtype=np.float64)
    record[:, 0] = values
    record[:, 1:] = values[:, None] * positions
    return record


class VoxelComposer:
    """
    Compose residuals and reduced design rows for template rows.

    The affine matrix maps template voxel coordinates (after the nonlinear
    warp) to moving voxel coordinates.
    """

    def __init__(
        self,
        moving: Volume,
        templates: Sequence[Volume],
        affine: NDArray[np.float64],
        basis: SeparableBasis,
        layout: ParameterLayout,
        edgeskip: Sequence[int],
    ):
        """
        Initialize the composer.

        Args:
            moving: Volume being registered
            templates: Template volumes sharing the basis grid
            affine: 4x4 matrix, template voxels -> moving voxels
            basis: Separable basis on the template grid
            layout: Parameter layout
            edgeskip: Moving-volume margin per axis
        """
        self.moving = moving
        self.templates: List[Volume] = list(templates)
        self.rotation = np.ascontiguousarray(affine[:3, :3])
        self.translation = np.ascontiguousarray(affine[:3, 3])
        self.basis = basis
        self.layout = layout

        edgeskip = np.asarray(edgeskip, dtype=np.float64)
        self._lower = edgeskip
        self._upper = np.asarray(moving.shape, dtype=np.float64) - 1.0 - edgeskip

    def in_range(self, positions: NDArray[np.float64]) -> NDArray[np.bool_]:
        """True where a moving-space position clears the edge margin on every axis."""
        return np.all((positions >= self._lower) & (positions < self._upper), axis=1)

    def compose(
        self,
        field: SeparableField,
        row: RowField,
        xs: NDArray[np.intp],
        scales: NDArray[np.float64],
    ) -> RowDesign:
        """
        Compose the design rows of one template row.

        Args:
            field: Deformation field
            row: Row partials for (row.y, row.z)
            xs: Sampled x voxel indices
            scales: Intensity parameters, shape (N, 4)

        Returns:
            RowDesign for the voxels that passed the edge check
        """
        nx = self.layout.nx
        width = 3 * nx + self.layout.n_intensity

        displacement, jacobian = field.evaluate(row, xs)

        grid = np.empty((len(xs), 3), dtype=np.float64)
        grid[:, 0] = xs
        grid[:, 1] = row.y
        grid[:, 2] = row.z

        # Nonlinear warp followed by the affine map
        mapped = (grid + displacement) @ self.rotation.T + self.translation

        keep = self.in_range(mapped)
        if not np.any(keep):
            return RowDesign(
                design=np.empty((0, width)),
                residual=np.empty(0),
                gradient=np.empty((0, 3)),
            )

        xs = xs[keep]
        grid = grid[keep]
        mapped = mapped[keep]
        jacobian = jacobian[keep]
        n = len(xs)

        value, gx, gy, gz = sample(self.moving, mapped[:, 0], mapped[:, 1], mapped[:, 2])

        # Moving gradient w.r.t. the warped position, then into template space
        warped_gradient = np.column_stack([gx, gy, gz]) @ self.rotation
        gradient = np.einsum("nac,nc->na", jacobian, warped_gradient)

        design = np.empty((n, width), dtype=np.float64)
        bx = self.basis.BX[xs]
        design[:, :3 * nx] = (-warped_gradient[:, :, None] * bx[:, None, :]).reshape(n, 3 * nx)

        residual = value.copy()
        for k, template in enumerate(self.templates):
            t, tx, ty, tz = sample(template, grid[:, 0], grid[:, 1], grid[:, 2])
            record = intensity_records(t, mapped)

            start = 3 * nx + len(INTENSITY_TERMS) * k
            design[:, start:start + len(INTENSITY_TERMS)] = record

            residual -= record @ scales[k]

            coupling = scales[k, 0] + mapped @ scales[k, 1:]
            gradient -= np.column_stack([tx, ty, tz]) * coupling[:, None]

        return RowDesign(design=design, residual=residual, gradient=gradient)
