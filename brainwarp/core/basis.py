"""
Separable basis for the deformation field.

Holds the per-axis value and first-derivative matrices. A basis matrix has
one row per voxel along its axis and one column per basis function.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from .exceptions import ConfigurationError
from ..utils.validation import as_real_array, check_finite


_AXES = ("X", "Y", "Z")


def dct_matrix(n: int, k: int, derivative: bool = False) -> NDArray[np.float64]:
    """
    Orthonormal discrete cosine basis sampled at n voxels.

    Column j is sqrt(2/n) * cos(pi * (2i + 1) * j / (2n)) for voxel i, with
    the constant column scaled to 1/sqrt(n).

    Args:
        n: Number of voxels along the axis
        k: Number of basis functions (1 <= k <= n)
        derivative: Return the derivative with respect to the voxel index

    Returns:
        Matrix of shape (n, k)
    """
    if not (1 <= k <= n):
        raise ValueError(f"Number of basis functions must be in [1, {n}], got {k}")

    i = np.arange(n, dtype=np.float64)[:, None]
    j = np.arange(k, dtype=np.float64)[None, :]
    arg = np.pi * (2.0 * i + 1.0) * j / (2.0 * n)

    if derivative:
        mat = -np.sqrt(2.0 / n) * (np.pi * j / n) * np.sin(arg)
        mat[:, 0] = 0.0
    else:
        mat = np.sqrt(2.0 / n) * np.cos(arg)
        mat[:, 0] = 1.0 / np.sqrt(n)

    return mat


@dataclass
class SeparableBasis:
    """
    Tensor-product basis for a 3-D displacement field.

    Attributes:
        BX, dBX: X basis values and derivatives (dim_x x nx)
        BY, dBY: Y basis values and derivatives (dim_y x ny)
        BZ, dBZ: Z basis values and derivatives (dim_z x nz)
    """

    BX: NDArray[np.float64]
    BY: NDArray[np.float64]
    BZ: NDArray[np.float64]
    dBX: NDArray[np.float64]
    dBY: NDArray[np.float64]
    dBZ: NDArray[np.float64]

    def __post_init__(self):
        """Convert to float64 matrices and check value/derivative shapes match."""
        for axis in _AXES:
            value = as_real_array(getattr(self, f"B{axis}"), f"{axis} basis functions", ndim=2)
            deriv = as_real_array(getattr(self, f"dB{axis}"),
                                  f"{axis} basis function derivatives", ndim=2)
            check_finite(value, f"{axis} basis functions")
            check_finite(deriv, f"{axis} basis function derivatives")

            if deriv.shape != value.shape:
                raise ConfigurationError(
                    f"Wrong sized {axis} basis function derivatives: "
                    f"expected {value.shape}, got {deriv.shape}"
                )

            setattr(self, f"B{axis}", value)
            setattr(self, f"dB{axis}", deriv)

    @classmethod
    def dct(cls, shape: Sequence[int], counts: Sequence[int]) -> "SeparableBasis":
        """
        Build a cosine basis for a grid.

        Args:
            shape: Grid dimensions (dim_x, dim_y, dim_z)
            counts: Basis functions per axis (nx, ny, nz)

        Returns:
            SeparableBasis with analytic derivatives
        """
        (dx, dy, dz), (kx, ky, kz) = tuple(shape), tuple(counts)
        return cls(
            BX=dct_matrix(dx, kx), BY=dct_matrix(dy, ky), BZ=dct_matrix(dz, kz),
            dBX=dct_matrix(dx, kx, True),
            dBY=dct_matrix(dy, ky, True),
            dBZ=dct_matrix(dz, kz, True),
        )

    @property
    def nx(self) -> int:
        return self.BX.shape[1]

    @property
    def ny(self) -> int:
        return self.BY.shape[1]

    @property
    def nz(self) -> int:
        return self.BZ.shape[1]

    @property
    def counts(self) -> Tuple[int, int, int]:
        """Basis functions per axis (nx, ny, nz)."""
        return self.nx, self.ny, self.nz

    @property
    def grid_shape(self) -> Tuple[int, int, int]:
        """Voxel dimensions the basis was sampled on."""
        return self.BX.shape[0], self.BY.shape[0], self.BZ.shape[0]

    def check_grid(self, shape: Sequence[int]) -> None:
        """
        Check basis row counts against a grid.

        Raises:
            ConfigurationError: If any axis has the wrong number of rows
        """
        for axis, rows, dim in zip(_AXES, self.grid_shape, shape):
            if rows != dim:
                raise ConfigurationError(
                    f"Wrong sized {axis} basis functions: {rows} rows for {dim} voxels"
                )

    def jacobian_factors(self, axis: int) -> Tuple[NDArray[np.float64], ...]:
        """
        Basis matrices of one axis used for each Jacobian column.

        Column d of the Jacobian differentiates along axis d, so the derivative
        matrix is used for ``axis == d`` and the value matrix otherwise.

        Args:
            axis: 0 (x), 1 (y) or 2 (z)

        Returns:
            Tuple of three matrices, one per derivative direction
        """
        name = _AXES[axis]
        value = getattr(self, f"B{name}")
        deriv = getattr(self, f"dB{name}")
        return tuple(deriv if d == axis else value for d in range(3))
