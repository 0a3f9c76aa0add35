"""
Parameter layout.

Named views over the flat parameter vector T and the matching rows/columns of
alpha and beta. The spatial coefficients come first as three blocks (one per
displacement component) flattened x fastest, then y, then z. They are followed
by one four-term intensity record per template: (value, value*x, value*y,
value*z) couplings, in that order.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from .exceptions import ConfigurationError
from ..utils.validation import as_real_array, check_finite


INTENSITY_TERMS = ("value", "x", "y", "z")


@dataclass(frozen=True)
class ParameterLayout:
    """
    Sizes and index arithmetic for the registration parameters.

    Attributes:
        nx, ny, nz: Basis functions per axis
        n_templates: Number of template volumes
    """

    nx: int
    ny: int
    nz: int
    n_templates: int

    @classmethod
    def from_basis(cls, basis, n_templates: int) -> "ParameterLayout":
        """Create the layout for a SeparableBasis and template count."""
        return cls(basis.nx, basis.ny, basis.nz, n_templates)

    @property
    def n_spatial(self) -> int:
        """Coefficients per displacement component (nx * ny * nz)."""
        return self.nx * self.ny * self.nz

    @property
    def n_intensity(self) -> int:
        """Number of intensity parameters (4 per template)."""
        return len(INTENSITY_TERMS) * self.n_templates

    @property
    def size(self) -> int:
        """Total parameter count P = 3*nx*ny*nz + 4*N."""
        return 3 * self.n_spatial + self.n_intensity

    def spatial_index(self, component: int, x: int, y: int, z: int) -> int:
        """Flat index of a deformation coefficient."""
        return (component * self.n_spatial
                + (z * self.ny + y) * self.nx + x)

    def intensity_index(self, template: int, term: int) -> int:
        """Flat index of an intensity parameter."""
        return 3 * self.n_spatial + len(INTENSITY_TERMS) * template + term

    def spatial(self, T: NDArray[np.float64]) -> NDArray[np.float64]:
        """View of the deformation coefficients, shape (3, nz, ny, nx)."""
        return T[:3 * self.n_spatial].reshape(3, self.nz, self.ny, self.nx)

    def intensity(self, T: NDArray[np.float64]) -> NDArray[np.float64]:
        """View of the intensity records, shape (N, 4)."""
        return T[3 * self.n_spatial:].reshape(self.n_templates, len(INTENSITY_TERMS))

    def check(self, T) -> NDArray[np.float64]:
        """
        Validate a parameter vector against this layout.

        Returns:
            T as a flat float64 array

        Raises:
            ConfigurationError: If T has the wrong number of elements
        """
        T = as_real_array(T, "Transform").ravel()
        if T.size != self.size:
            raise ConfigurationError(
                f"Transform is wrong size: expected {self.size} "
                f"(3*{self.nx}*{self.ny}*{self.nz} + 4*{self.n_templates}), got {T.size}"
            )
        check_finite(T, "Transform")
        return T

    def initial(self, scale: float = 1.0) -> NDArray[np.float64]:
        """
        Starting parameters: zero deformation, templates scaled by ``scale``.

        Returns:
            Parameter vector of length P
        """
        T = np.zeros(self.size, dtype=np.float64)
        self.intensity(T)[:, 0] = scale
        return T
