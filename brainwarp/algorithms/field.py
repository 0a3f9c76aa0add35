"""
Separable field evaluation.

Reconstructs the displacement field u(x, y, z) and the Jacobian of the
spatial map x + u(x) from per-axis basis coefficients. The contraction is done
one axis at a time, following the z -> y -> x sampling loops: once per plane
over the z basis, once per row over the y basis, then per voxel over the x
basis.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from numpy.typing import NDArray

from ..core.basis import SeparableBasis


@dataclass
class PlaneField:
    """
    Field coefficients contracted over the z basis for one plane.

    Attributes:
        z: Plane index
        Tz: Displacement partials, shape (3 components, ny, nx)
        Jz: Jacobian partials, shape (3 derivative axes, 3 components, ny, nx)
    """

    z: int
    Tz: NDArray[np.float64]
    Jz: NDArray[np.float64]


@dataclass
class RowField:
    """
    Field coefficients contracted over the z and y bases for one row.

    Attributes:
        z, y: Plane and row indices
        Ty: Displacement partials, shape (3 components, nx)
        Jy: Jacobian partials, shape (3 derivative axes, 3 components, nx)
    """

    z: int
    y: int
    Ty: NDArray[np.float64]
    Jy: NDArray[np.float64]


class SeparableField:
    """
    Deformation field expressed in a separable basis.

    Example:
        >>> field = SeparableField(layout.spatial(T), basis)
        >>> plane = field.plane(iz)
        >>> row = field.row(plane, iy)
        >>> disp, jac = field.evaluate(row, xs)
    """

    def __init__(self, coefficients: NDArray[np.float64], basis: SeparableBasis):
        """
        Initialize the field.

        Args:
            coefficients: Shape (3, nz, ny, nx), one block per displacement
                component
            basis: Separable basis the coefficients refer to
        """
        self.coefficients = coefficients
        self.basis = basis

        self._bz3 = basis.jacobian_factors(2)
        self._by3 = basis.jacobian_factors(1)
        self._bx3 = basis.jacobian_factors(0)

    def plane(self, z: int) -> PlaneField:
        """Contract over the z basis at plane z."""
        Tz = np.einsum("ckyx,k->cyx", self.coefficients, self.basis.BZ[z])
        Jz = np.stack([
            np.einsum("ckyx,k->cyx", self.coefficients, factor[z])
            for factor in self._bz3
        ])
        return PlaneField(z=z, Tz=Tz, Jz=Jz)

    def row(self, plane: PlaneField, y: int) -> RowField:
        """Contract a plane's partials over the y basis at row y."""
        Ty = np.einsum("cyx,y->cx", plane.Tz, self.basis.BY[y])
        Jy = np.stack([
            np.einsum("cyx,y->cx", plane.Jz[a], self._by3[a][y])
            for a in range(3)
        ])
        return RowField(z=plane.z, y=y, Ty=Ty, Jy=Jy)

    def evaluate(
        self,
        row: RowField,
        xs: NDArray[np.intp],
    ) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
        """
        Finish the contraction over the x basis for voxels of one row.

        Args:
            row: Row partials
            xs: X voxel indices

        Returns:
            Tuple of (displacement, jacobian):
            - displacement: shape (n, 3)
            - jacobian: shape (n, 3, 3), ``jacobian[n, a, c]`` is the
              derivative of mapped coordinate c along axis a, identity included
        """
        displacement = self.basis.BX[xs] @ row.Ty.T

        jacobian = np.empty((len(xs), 3, 3), dtype=np.float64)
        for a in range(3):
            jacobian[:, a, :] = self._bx3[a][xs] @ row.Jy[a].T
        jacobian += np.eye(3)

        return displacement, jacobian

    def displacement_at(self, x: int, y: int, z: int) -> Tuple[NDArray[np.float64],
                                                             NDArray[np.float64]]:
        """Displacement (3,) and Jacobian (3, 3) at a single voxel."""
        row = self.row(self.plane(z), y)
        displacement, jacobian = self.evaluate(row, np.array([x]))
        return displacement[0], jacobian[0]
