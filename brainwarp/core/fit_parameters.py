"""
Fit parameters configuration.

Stores the settings for one normal-equation evaluation and derives the
sampling controls (stride and edge skip) from them.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from .exceptions import ConfigurationError
from ..utils.validation import check_triplet


@dataclass(frozen=True)
class SamplingControls:
    """
    Voxel sampling controls.

    Attributes:
        stride: Step between sampled template voxels along (x, y, z)
        edgeskip: Margin in moving-volume voxels kept clear of the boundary
    """

    stride: Tuple[int, int, int] = (1, 1, 1)
    edgeskip: Tuple[int, int, int] = (0, 0, 0)

    def __post_init__(self):
        object.__setattr__(self, "stride", check_triplet(self.stride, "stride", 1))
        object.__setattr__(self, "edgeskip", check_triplet(self.edgeskip, "edgeskip", 0))


@dataclass
class FitParameters:
    """
    Normal-equation evaluation parameters.

    Attributes:
        fwhm: Smoothness of the images in mm (typical: 8)
        residual_fwhm: Upper bound on the residual smoothness used for the
            degrees-of-freedom correction (defaults to fwhm)
        order: Interpolation order for the moving volume (1 or 3)
        total_threads: Number of threads for the parallel kernels
        show_progress: Display a progress bar over z planes
    """

    fwhm: float = 8.0
    residual_fwhm: Optional[float] = None
    order: int = 1
    total_threads: int = 1
    show_progress: bool = True

    @classmethod
    def from_fwhm(
        cls,
        fwhm: Union[float, Sequence[float]],
        **kwargs,
    ) -> "FitParameters":
        """
        Create parameters from one or two smoothness values.

        Args:
            fwhm: ``f`` or ``(f, f_residual)``
            **kwargs: Remaining FitParameters fields

        Raises:
            ConfigurationError: If fwhm does not hold one or two positive values
        """
        try:
            values = np.atleast_1d(np.asarray(fwhm, dtype=np.float64)).ravel()
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"FWHM must be numeric: {e}") from e

        if values.size not in (1, 2):
            raise ConfigurationError("FWHM should contain one or two values.")

        if not np.all(np.isfinite(values)) or not np.all(values > 0):
            raise ConfigurationError(f"FWHM values must be positive, got {values.tolist()}")

        residual = float(values[1]) if values.size == 2 else None
        return cls(fwhm=float(values[0]), residual_fwhm=residual, **kwargs)

    @property
    def effective_residual_fwhm(self) -> float:
        """Residual smoothness bound, falling back to fwhm."""
        return self.fwhm if self.residual_fwhm is None else self.residual_fwhm

    def validate(self) -> bool:
        """
        Validate parameters are within acceptable ranges.

        Returns:
            True if parameters are valid, raises ValueError otherwise
        """
        if not self.fwhm > 0:
            raise ValueError(f"fwhm must be positive, got {self.fwhm}")

        if self.residual_fwhm is not None and not self.residual_fwhm > 0:
            raise ValueError(f"residual_fwhm must be positive, got {self.residual_fwhm}")

        if self.order not in (1, 3):
            raise ValueError(f"order must be 1 or 3, got {self.order}")

        if self.total_threads < 1:
            raise ValueError(f"total_threads must be >= 1, got {self.total_threads}")

        return True

    def sampling(
        self,
        moving_voxel_size: Sequence[float],
        template_voxel_size: Sequence[float],
    ) -> SamplingControls:
        """
        Derive sampling controls from the smoothness.

        Voxels closer than about one FWHM to the moving-volume boundary are
        skipped (smoothing edge effects), and the template grid is sampled
        about every FWHM/2.

        Args:
            moving_voxel_size: Voxel size of the moving volume (mm)
            template_voxel_size: Voxel size of the template grid (mm)

        Returns:
            SamplingControls
        """
        from ..algorithms.smoothness import edge_skip, sampling_stride

        return SamplingControls(
            stride=sampling_stride(self.fwhm, template_voxel_size),
            edgeskip=edge_skip(self.fwhm, moving_voxel_size),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "fwhm": self.fwhm,
            "residual_fwhm": self.residual_fwhm,
            "order": self.order,
            "total_threads": self.total_threads,
            "show_progress": self.show_progress,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "FitParameters":
        """Create from dictionary."""
        return cls(
            fwhm=d.get("fwhm", 8.0),
            residual_fwhm=d.get("residual_fwhm"),
            order=d.get("order", 1),
            total_threads=d.get("total_threads", 1),
            show_progress=d.get("show_progress", True),
        )
