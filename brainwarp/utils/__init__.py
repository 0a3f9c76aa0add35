"""Utility functions for brainwarp."""

from .validation import (
    is_real_bounded,
    is_int_bounded,
    as_real_array,
    check_affine,
    validate_fit_parameters,
)

__all__ = [
    "is_real_bounded",
    "is_int_bounded",
    "as_real_array",
    "check_affine",
    "validate_fit_parameters",
]
