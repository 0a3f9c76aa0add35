"""
Main brainwarp application module.

Provides the high-level API for evaluating one iteration of a nonlinear
registration fit.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from .core.basis import SeparableBasis
from .core.exceptions import ConfigurationError, FittingError
from .core.fit_parameters import FitParameters
from .core.layout import ParameterLayout
from .core.status import Status
from .core.volume import Volume
from .algorithms.normal_equations import FitResult, NormalEquationKernel
from .utils.validation import check_affine


def brainwarp(
    templates,
    moving,
    M,
    BX, BY, BZ,
    dBX, dBY, dBZ,
    T,
    fwhm: Union[float, Sequence[float]],
    order: int = 1,
    show_progress: bool = False,
) -> Tuple[NDArray[np.float64], NDArray[np.float64], float, float]:
    """
    Precision-scaled normal equations for one registration iteration.

    Args:
        templates: Template Volume(s) or 3-D array(s), all the same size
        moving: Moving Volume or 3-D array
        M: 4x4 matrix mapping template voxels to moving voxels
        BX, BY, BZ: Basis functions per axis (voxels x functions)
        dBX, dBY, dBZ: Basis function derivatives
        T: Parameter vector of length 3*nx*ny*nz + 4*N
        fwhm: Image smoothness, one value or (fwhm, residual_fwhm)
        order: Interpolation order for the moving volume
        show_progress: Display a progress bar

    Returns:
        Tuple of (alpha, beta, variance, fwhm)

    Raises:
        ConfigurationError: If inputs are inconsistent
        FittingError: On degenerate residual statistics
    """
    params = FitParameters.from_fwhm(fwhm, order=order, show_progress=show_progress)
    try:
        params.validate()
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    basis = SeparableBasis(BX=BX, BY=BY, BZ=BZ, dBX=dBX, dBY=dBY, dBZ=dBZ)

    result = NormalEquationKernel(params).evaluate(moving, templates, M, basis, T)
    return result.alpha, result.beta, result.variance, result.fwhm


class BrainWarp:
    """
    Main brainwarp application class.

    Provides a high-level API for one registration iteration:
    1. Set the moving volume and the template volumes
    2. Set the affine starting point and the separable basis
    3. Set the current parameters and the fit parameters
    4. Run to obtain the precision-scaled normal equations

    Example:
        >>> warp = BrainWarp()
        >>> warp.set_templates([template], voxel_size=(2, 2, 2))
        >>> warp.set_moving(moving, voxel_size=(2, 2, 2))
        >>> warp.set_basis((4, 4, 4))
        >>> warp.set_fit_parameters(FitParameters(fwhm=8.0))
        >>> if warp.run() == Status.SUCCESS:
        ...     update = np.linalg.solve(warp.results.alpha + prior, warp.results.beta)
    """

    def __init__(self):
        """Initialize the application."""
        self._moving: Optional[Volume] = None
        self._templates: List[Volume] = []
        self._affine: NDArray[np.float64] = np.eye(4)
        self._basis: Optional[SeparableBasis] = None
        self._transform: Optional[NDArray[np.float64]] = None
        self._params: FitParameters = FitParameters()
        self._results: Optional[FitResult] = None
        self._progress_callback: Optional[Callable[[float, str], None]] = None

    def set_progress_callback(self, callback: Callable[[float, str], None]) -> None:
        """
        Set callback for progress updates.

        Args:
            callback: Function(progress: float, message: str)
        """
        self._progress_callback = callback

    def _report_progress(self, progress: float, message: str = "") -> None:
        """Report progress to callback."""
        if self._progress_callback:
            self._progress_callback(progress, message)

    # Volume management

    def set_moving(
        self,
        source: Union[NDArray, Volume],
        voxel_size: Sequence[float] = (1.0, 1.0, 1.0),
    ) -> Status:
        """
        Set the volume being registered.

        Args:
            source: Volume or 3-D array
            voxel_size: Voxel size (ignored for Volume input)

        Returns:
            Status
        """
        try:
            if isinstance(source, Volume):
                self._moving = source
            else:
                self._moving = Volume.from_array(source, voxel_size, name="Moving volume")

            self._results = None
            return Status.SUCCESS

        except ConfigurationError as e:
            print(f"Error setting moving volume: {e}")
            return Status.FAILED

    def set_templates(
        self,
        sources: Union[NDArray, Volume, List[Union[NDArray, Volume]]],
        voxel_size: Sequence[float] = (1.0, 1.0, 1.0),
    ) -> Status:
        """
        Set the template volumes.

        Args:
            sources: Single or list of Volumes / 3-D arrays
            voxel_size: Voxel size (ignored for Volume input)

        Returns:
            Status
        """
        try:
            if isinstance(sources, (Volume, np.ndarray)):
                sources = [sources]

            templates = []
            for i, source in enumerate(sources):
                if isinstance(source, Volume):
                    templates.append(source)
                else:
                    templates.append(
                        Volume.from_array(source, voxel_size, name=f"Template {i}")
                    )

            if not templates:
                raise ConfigurationError("At least one template volume is required")

            for i, template in enumerate(templates[1:], start=1):
                if template.shape != templates[0].shape:
                    raise ConfigurationError(
                        f"Volumes must have same dimensions: template {i} is "
                        f"{template.shape}, template 0 is {templates[0].shape}"
                    )

            self._templates = templates
            self._transform = None
            self._results = None
            return Status.SUCCESS

        except ConfigurationError as e:
            print(f"Error setting templates: {e}")
            return Status.FAILED

    def set_affine(self, matrix) -> Status:
        """
        Set the 4x4 matrix mapping template voxels to moving voxels.

        Returns:
            Status
        """
        try:
            self._affine = check_affine(matrix)
            self._results = None
            return Status.SUCCESS

        except ConfigurationError as e:
            print(f"Error setting affine: {e}")
            return Status.FAILED

    def set_basis(self, basis: Union[SeparableBasis, Sequence[int]]) -> Status:
        """
        Set the separable basis.

        Args:
            basis: SeparableBasis, or basis counts (nx, ny, nz) to build a
                cosine basis on the template grid

        Returns:
            Status
        """
        try:
            if not isinstance(basis, SeparableBasis):
                if not self._templates:
                    print("Templates must be set before building a basis from counts")
                    return Status.FAILED
                basis = SeparableBasis.dct(self._templates[0].shape, basis)

            if self._templates:
                basis.check_grid(self._templates[0].shape)

            self._basis = basis
            self._transform = None
            self._results = None
            return Status.SUCCESS

        except (ConfigurationError, ValueError) as e:
            print(f"Error setting basis: {e}")
            return Status.FAILED

    def set_transform(self, T) -> Status:
        """
        Set the current parameter vector.

        Returns:
            Status
        """
        if self._basis is None or not self._templates:
            print("Basis and templates must be set before the transform")
            return Status.FAILED

        try:
            self._transform = self.layout.check(T).copy()
            self._results = None
            return Status.SUCCESS

        except ConfigurationError as e:
            print(f"Error setting transform: {e}")
            return Status.FAILED

    def set_fit_parameters(self, params: FitParameters) -> Status:
        """
        Set fit parameters.

        Returns:
            Status
        """
        try:
            params.validate()
            self._params = params
            self._results = None
            return Status.SUCCESS

        except ValueError as e:
            print(f"Invalid parameters: {e}")
            return Status.FAILED

    # Evaluation

    def run(self) -> Status:
        """
        Evaluate the normal equations for the current parameters.

        The transform defaults to zero deformation with unit template scale
        when none was set.

        Returns:
            Status.SUCCESS, Status.FAILED on configuration errors, or
            Status.DEGENERATE when the residual statistics are unusable

        Raises:
            RuntimeError: If volumes or basis are missing
        """
        if self._moving is None or not self._templates:
            raise RuntimeError("Moving and template volumes must be set")

        if self._basis is None:
            raise RuntimeError("Basis must be set")

        if self._transform is None:
            self._transform = self.layout.initial()

        self._report_progress(0, "Computing normal equations...")

        kernel = NormalEquationKernel(self._params)
        kernel.set_progress_callback(self._progress_callback)

        try:
            self._results = kernel.evaluate(
                self._moving, self._templates, self._affine, self._basis, self._transform
            )
        except ConfigurationError as e:
            print(f"Configuration error: {e}")
            return Status.FAILED
        except FittingError as e:
            print(f"Fitting error: {e}")
            return Status.DEGENERATE

        self._report_progress(1.0, "Normal equations complete")
        return Status.SUCCESS

    # Properties

    @property
    def moving_volume(self) -> Optional[Volume]:
        return self._moving

    @property
    def templates(self) -> List[Volume]:
        return self._templates

    @property
    def affine(self) -> NDArray[np.float64]:
        return self._affine

    @property
    def basis(self) -> Optional[SeparableBasis]:
        return self._basis

    @property
    def layout(self) -> ParameterLayout:
        """Parameter layout for the current basis and templates."""
        if self._basis is None:
            raise RuntimeError("Basis must be set")
        return ParameterLayout.from_basis(self._basis, len(self._templates))

    @property
    def transform(self) -> Optional[NDArray[np.float64]]:
        return self._transform

    @property
    def fit_parameters(self) -> FitParameters:
        return self._params

    @property
    def results(self) -> Optional[FitResult]:
        return self._results
