"""
brainwarp - Gauss-Newton normal equations for separable nonlinear registration.

Evaluates, for one iteration of a volumetric nonlinear registration, the
curvature matrix alpha = A'A / variance and the gradient vector
beta = A'b / variance of the least-squares cost, where the deformation is
expressed in a separable (tensor-product) basis and the template intensities
are modulated by linear spatial trends.

Reference:
    Nonlinear spatial normalization using basis functions
    J Ashburner, KJ Friston
    Human Brain Mapping 7 (4), 254-266
"""

from .core.status import Status
from .core.exceptions import ConfigurationError, FittingError
from .core.volume import Volume
from .core.basis import SeparableBasis, dct_matrix
from .core.layout import ParameterLayout
from .core.fit_parameters import FitParameters, SamplingControls
from .algorithms.interpolation import sample
from .algorithms.normal_equations import (
    NormalEquationKernel,
    NormalEquations,
    FitResult,
    compute_normal_equations,
)
from .main import BrainWarp, brainwarp

__version__ = "1.0.0"

__all__ = [
    "BrainWarp",
    "brainwarp",
    "Status",
    "ConfigurationError",
    "FittingError",
    "Volume",
    "SeparableBasis",
    "dct_matrix",
    "ParameterLayout",
    "FitParameters",
    "SamplingControls",
    "sample",
    "NormalEquationKernel",
    "NormalEquations",
    "FitResult",
    "compute_normal_equations",
]
