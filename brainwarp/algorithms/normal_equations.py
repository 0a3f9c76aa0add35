"""
Gauss-Newton normal equations for separable nonlinear registration.

Drives one pass over the sampled template grid: for each z plane and y row the
separable field is contracted, the voxels of the row are composed into reduced
design rows, and the Kronecker accumulator lifts row and plane systems into the
full parameter space.

The design rows are the negative derivatives of the residual
``moving(warp(x)) - sum_k scale_k . record_k(x)`` with respect to the
parameters, so the Gauss-Newton update is ``T += solve(alpha, beta)``
(plus whatever prior the caller adds to alpha).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import numba
import numpy as np
from numpy.typing import NDArray
from tqdm import tqdm

from .composer import VoxelComposer
from .field import SeparableField
from .kronecker import KroneckerAccumulator
from .smoothness import VarianceEstimate, estimate_variance, to_precision
from ..core.basis import SeparableBasis
from ..core.exceptions import ConfigurationError
from ..core.fit_parameters import FitParameters, SamplingControls
from ..core.layout import ParameterLayout
from ..core.volume import Volume
from ..utils.validation import check_affine


# =============================================================================
# Data classes
# =============================================================================

@dataclass
class NormalEquations:
    """
    Raw sums from one pass over the sampled grid.

    Attributes:
        alpha: A'A, shape (P, P), exactly symmetric
        beta: A'b, shape (P,)
        ss: Sum of squared residuals
        nsamp: Number of voxels that passed the edge check
        ss_deriv: Per-axis sums of squared residual derivatives
        layout: Parameter layout of alpha/beta
        sampling: Stride and edge skip used
    """

    alpha: NDArray[np.float64]
    beta: NDArray[np.float64]
    ss: float
    nsamp: int
    ss_deriv: NDArray[np.float64]
    layout: ParameterLayout
    sampling: SamplingControls


@dataclass
class FitResult:
    """
    Precision-scaled normal equations for one iteration.

    Attributes:
        alpha: A'A / variance
        beta: A'b / variance
        variance: Residual variance
        fwhm: Estimated residual smoothness (mm)
        estimate: Full variance estimate
        nsamp: Number of voxels that passed the edge check
        ss: Sum of squared residuals
        layout: Parameter layout of alpha/beta
        sampling: Stride and edge skip used
        normal_equations: Unscaled sums, kept only when requested
    """

    alpha: NDArray[np.float64]
    beta: NDArray[np.float64]
    variance: float
    fwhm: float
    estimate: VarianceEstimate
    nsamp: int
    ss: float
    layout: ParameterLayout
    sampling: SamplingControls
    normal_equations: Optional[NormalEquations] = None

    def summary(self) -> dict:
        """Scalar diagnostics of the iteration."""
        return {
            "n_params": self.layout.size,
            "nsamp": self.nsamp,
            "ss": self.ss,
            "variance": self.variance,
            "fwhm": self.fwhm,
            "effective_fwhm": self.estimate.effective_fwhm,
            "dof": self.estimate.dof,
            "stride": list(self.sampling.stride),
            "edgeskip": list(self.sampling.edgeskip),
        }


# =============================================================================
# Input checking
# =============================================================================

def _as_volume(source, name: str) -> Volume:
    """Accept a Volume or a 3-D array."""
    if isinstance(source, Volume):
        return source
    return Volume.from_array(source, name=name)


def check_inputs(
    moving,
    templates,
    affine,
    basis: SeparableBasis,
    T,
):
    """
    Validate all inputs before sampling starts.

    Returns:
        Tuple of (moving, templates, affine, layout, T) in canonical form

    Raises:
        ConfigurationError: On any inconsistency
    """
    moving = _as_volume(moving, "Moving volume")

    if isinstance(templates, (Volume, np.ndarray)):
        templates = [templates]
    templates = [_as_volume(t, f"Template {i}") for i, t in enumerate(templates)]
    if not templates:
        raise ConfigurationError("At least one template volume is required")

    shape = templates[0].shape
    for i, template in enumerate(templates[1:], start=1):
        if template.shape != shape:
            raise ConfigurationError(
                f"Volumes must have same dimensions: template {i} is "
                f"{template.shape}, template 0 is {shape}"
            )

    affine = check_affine(affine)

    if not isinstance(basis, SeparableBasis):
        raise ConfigurationError(f"basis must be a SeparableBasis, got {type(basis).__name__}")
    basis.check_grid(shape)

    layout = ParameterLayout.from_basis(basis, len(templates))
    T = layout.check(T)

    return moving, templates, affine, layout, T


# =============================================================================
# Kernel
# =============================================================================

class NormalEquationKernel:
    """
    Evaluate the Gauss-Newton system of one registration iteration.

    Example:
        >>> kernel = NormalEquationKernel(FitParameters(fwhm=8.0))
        >>> result = kernel.evaluate(moving, [template], M, basis, T)
        >>> T = T + np.linalg.solve(result.alpha + prior, result.beta)
    """

    def __init__(self, params: Optional[FitParameters] = None):
        """
        Initialize the kernel.

        Args:
            params: Fit parameters (defaults to FitParameters())
        """
        self.params = params if params is not None else FitParameters()
        self.params.validate()
        self._progress_callback: Optional[Callable[[float, str], None]] = None

    def set_progress_callback(self, callback: Callable[[float, str], None]) -> None:
        """Set callback for progress updates."""
        self._progress_callback = callback

    def _report_progress(self, progress: float, message: str = "") -> None:
        """Report progress to callback if set."""
        if self._progress_callback:
            self._progress_callback(progress, message)

    def _configure_threads(self) -> int:
        """Apply total_threads to numba and return the previous count."""
        previous = numba.get_num_threads()
        numba.set_num_threads(
            max(1, min(self.params.total_threads, numba.config.NUMBA_NUM_THREADS))
        )
        return previous

    def compute(
        self,
        moving,
        templates,
        affine,
        basis: SeparableBasis,
        T,
        sampling: Optional[SamplingControls] = None,
        reverse_planes: bool = False,
    ) -> NormalEquations:
        """
        Accumulate the normal equations over the sampled template grid.

        The numba thread count is set from total_threads for the duration of
        the pass and restored afterwards.

        Args:
            moving: Moving volume (Volume or 3-D array)
            templates: Template volumes (list of Volume or arrays)
            affine: 4x4 matrix, template voxels -> moving voxels
            basis: Separable basis on the template grid
            T: Parameter vector of length 3*nx*ny*nz + 4*N
            sampling: Stride and edge skip (derived from the fit parameters
                when None)
            reverse_planes: Visit z planes from last to first

        Returns:
            NormalEquations

        Raises:
            ConfigurationError: If inputs are inconsistent (before sampling)
        """
        moving, templates, affine, layout, T = check_inputs(
            moving, templates, affine, basis, T
        )
        moving = moving.with_order(self.params.order)

        if sampling is None:
            sampling = self.params.sampling(moving.voxel_size, templates[0].voxel_size)

        field = SeparableField(layout.spatial(T), basis)
        composer = VoxelComposer(moving, templates, affine, basis, layout, sampling.edgeskip)
        accumulator = KroneckerAccumulator(layout)
        scales = layout.intensity(T)

        dim_x, dim_y, dim_z = templates[0].shape
        sx, sy, sz = sampling.stride
        xs = np.arange(0, dim_x, sx)
        rows = range(0, dim_y, sy)
        planes: List[int] = list(range(0, dim_z, sz))
        if reverse_planes:
            planes.reverse()

        previous_threads = self._configure_threads()
        pbar = tqdm(planes, desc="Normal equations", unit="plane",
                    disable=not self.params.show_progress)

        try:
            for count, z in enumerate(pbar):
                plane = field.plane(z)
                accumulator.begin_plane()

                for y in rows:
                    row = field.row(plane, y)
                    accumulator.begin_row()
                    accumulator.add_row_design(composer.compose(field, row, xs, scales))
                    accumulator.end_row(basis.BY[y])

                accumulator.end_plane(basis.BZ[z])

                pbar.set_postfix(nsamp=accumulator.nsamp)
                self._report_progress((count + 1) / len(planes),
                                      f"Plane {count + 1}/{len(planes)}")

            alpha, beta = accumulator.finalize()
        finally:
            pbar.close()
            numba.set_num_threads(previous_threads)

        return NormalEquations(
            alpha=alpha,
            beta=beta,
            ss=accumulator.ss,
            nsamp=accumulator.nsamp,
            ss_deriv=accumulator.ss_deriv,
            layout=layout,
            sampling=sampling,
        )

    def estimate(
        self,
        normal_equations: NormalEquations,
        voxel_size: Sequence[float],
    ) -> VarianceEstimate:
        """
        Estimate residual variance and smoothness from raw sums.

        Args:
            normal_equations: Output of compute()
            voxel_size: Template voxel size (mm)

        Raises:
            FittingError: On degenerate statistics
        """
        return estimate_variance(
            ss=normal_equations.ss,
            nsamp=normal_equations.nsamp,
            ss_deriv=normal_equations.ss_deriv,
            n_params=normal_equations.layout.size,
            stride=normal_equations.sampling.stride,
            voxel_size=voxel_size,
            fwhm=self.params.fwhm,
            residual_fwhm=self.params.effective_residual_fwhm,
        )

    def evaluate(
        self,
        moving,
        templates,
        affine,
        basis: SeparableBasis,
        T,
        sampling: Optional[SamplingControls] = None,
        keep_unscaled: bool = False,
    ) -> FitResult:
        """
        Compute the normal equations and scale them to a precision system.

        Args:
            keep_unscaled: Scale copies and keep the raw sums on the result
                as ``normal_equations``. By default alpha and beta are scaled
                in place and the raw sums are dropped.

        Returns:
            FitResult

        Raises:
            ConfigurationError: If inputs are inconsistent (before sampling)
            FittingError: On degenerate residual statistics
        """
        if isinstance(templates, (Volume, np.ndarray)):
            templates = [templates]
        templates = [_as_volume(t, f"Template {i}") for i, t in enumerate(templates)]

        ne = self.compute(moving, templates, affine, basis, T, sampling)
        estimate = self.estimate(ne, templates[0].voxel_size)
        alpha, beta = to_precision(ne.alpha, ne.beta, estimate.variance, copy=keep_unscaled)

        return FitResult(
            alpha=alpha,
            beta=beta,
            variance=estimate.variance,
            fwhm=estimate.fwhm,
            estimate=estimate,
            nsamp=ne.nsamp,
            ss=ne.ss,
            layout=ne.layout,
            sampling=ne.sampling,
            normal_equations=ne if keep_unscaled else None,
        )


def compute_normal_equations(
    moving,
    templates,
    affine,
    basis: SeparableBasis,
    T,
    sampling: Optional[SamplingControls] = None,
    params: Optional[FitParameters] = None,
) -> NormalEquations:
    """Convenience wrapper around NormalEquationKernel.compute()."""
    if params is None:
        params = FitParameters(show_progress=False)
    return NormalEquationKernel(params).compute(moving, templates, affine, basis, T, sampling)
