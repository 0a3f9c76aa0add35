"""Core data structures and classes for brainwarp."""

from .status import Status
from .exceptions import ConfigurationError, FittingError
from .volume import Volume
from .basis import SeparableBasis, dct_matrix
from .layout import ParameterLayout, INTENSITY_TERMS
from .fit_parameters import FitParameters, SamplingControls

__all__ = [
    "Status",
    "ConfigurationError",
    "FittingError",
    "Volume",
    "SeparableBasis",
    "dct_matrix",
    "ParameterLayout",
    "INTENSITY_TERMS",
    "FitParameters",
    "SamplingControls",
]
