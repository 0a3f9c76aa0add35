"""
Volume class for brainwarp.

A 3-D scalar image with voxel size and interpolation order, sampled through
the Sampling Service in ``brainwarp.algorithms.interpolation``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy import ndimage

from .exceptions import ConfigurationError
from ..utils.validation import as_real_array, check_finite


@dataclass
class Volume:
    """
    Volumetric image for registration.

    Data is indexed ``data[x, y, z]``. Coordinates handed to the Sampling
    Service are 0-based voxel indices along the same axes.

    Attributes:
        data: Image intensities (float64, shape: X x Y x Z)
        voxel_size: Voxel dimensions in mm along (x, y, z)
        order: Interpolation order, 1 (trilinear) or 3 (cubic B-spline)
        name: Optional label used in error messages
    """

    data: NDArray[np.float64]
    voxel_size: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    order: int = 1
    name: str = ""

    # Lazily computed B-spline coefficients
    _coef: Optional[NDArray[np.float64]] = field(default=None, repr=False)

    def __post_init__(self):
        """Validate and normalize the volume after dataclass creation."""
        label = self.name or "Volume"
        self.data = as_real_array(self.data, f"{label} data", ndim=3)
        check_finite(self.data, f"{label} data")

        if min(self.data.shape) < 2:
            raise ConfigurationError(
                f"{label} must have at least 2 voxels along every axis, "
                f"got shape {self.data.shape}"
            )

        voxel_size = tuple(float(v) for v in self.voxel_size)
        if len(voxel_size) != 3 or not all(v > 0 for v in voxel_size):
            raise ConfigurationError(
                f"{label} voxel size must be 3 positive values, got {self.voxel_size}"
            )
        self.voxel_size = voxel_size

        if self.order not in (1, 3):
            raise ConfigurationError(
                f"{label} interpolation order must be 1 or 3, got {self.order}"
            )

    @classmethod
    def from_array(
        cls,
        data,
        voxel_size: Sequence[float] = (1.0, 1.0, 1.0),
        order: int = 1,
        name: str = "",
    ) -> "Volume":
        """
        Create a volume from an array-like.

        Args:
            data: 3-D array indexed [x, y, z]
            voxel_size: Voxel dimensions in mm
            order: Interpolation order (1 or 3)
            name: Optional label

        Returns:
            Volume instance
        """
        return cls(data=data, voxel_size=tuple(voxel_size), order=order, name=name)

    @property
    def shape(self) -> Tuple[int, int, int]:
        """Voxel dimensions (X, Y, Z)."""
        return self.data.shape

    def with_order(self, order: int) -> "Volume":
        """Return a volume sharing this data but using another interpolation order."""
        if order == self.order:
            return self
        return Volume(self.data, self.voxel_size, order, self.name)

    def get_coef(self) -> NDArray[np.float64]:
        """
        Get the array the Sampling Service interpolates.

        For trilinear sampling this is the data itself. For cubic sampling the
        B-spline prefilter is applied once (mirror boundary) and cached.
        """
        if self.order == 1:
            return self.data

        if self._coef is None:
            self._coef = np.ascontiguousarray(
                ndimage.spline_filter(self.data, order=3, mode="mirror"),
                dtype=np.float64,
            )
        return self._coef
