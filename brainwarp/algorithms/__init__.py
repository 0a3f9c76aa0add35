"""Core algorithms for brainwarp."""

from .interpolation import sample
from .field import SeparableField, PlaneField, RowField
from .composer import VoxelComposer, RowDesign
from .kronecker import KroneckerAccumulator, StageSystem, symmetrize
from .smoothness import VarianceEstimate, estimate_variance
from .normal_equations import (
    NormalEquationKernel,
    NormalEquations,
    FitResult,
    compute_normal_equations,
)

__all__ = [
    "sample",
    "SeparableField",
    "PlaneField",
    "RowField",
    "VoxelComposer",
    "RowDesign",
    "KroneckerAccumulator",
    "StageSystem",
    "symmetrize",
    "VarianceEstimate",
    "estimate_variance",
    "NormalEquationKernel",
    "NormalEquations",
    "FitResult",
    "compute_normal_equations",
]
