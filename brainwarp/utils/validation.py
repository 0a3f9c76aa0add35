"""
Validation utilities.

Input checks shared by the kernel, the configuration dataclass and the
application facade. Array checks raise ConfigurationError; the bounded-number
helpers return a (valid, value, message) tuple for interactive callers.
"""

from typing import Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import ConfigurationError


def _bounds_message(
    value: float,
    lower: float,
    upper: float,
    include_lower: bool,
    include_upper: bool,
) -> str:
    """Return an error message if value violates the bounds, else ''."""
    if include_lower and value < lower:
        return f"Value {value} < {lower} (minimum)"
    if not include_lower and value <= lower:
        return f"Value {value} <= {lower} (must be greater)"
    if include_upper and value > upper:
        return f"Value {value} > {upper} (maximum)"
    if not include_upper and value >= upper:
        return f"Value {value} >= {upper} (must be less)"
    return ""


def is_real_bounded(
    value: Union[float, int, str],
    lower: float,
    upper: float,
    include_lower: bool = True,
    include_upper: bool = True,
) -> Tuple[bool, Optional[float], str]:
    """
    Check if value is a finite real number within bounds.

    Args:
        value: Value to check (strings are parsed)
        lower: Lower bound
        upper: Upper bound
        include_lower: Include lower bound (>=) vs (>)
        include_upper: Include upper bound (<=) vs (<)

    Returns:
        Tuple of (is_valid, parsed_value, error_message)
    """
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return False, None, f"'{value}' is not a valid number"

    if not np.isfinite(value):
        return False, None, f"Value must be finite, got {value}"

    msg = _bounds_message(value, lower, upper, include_lower, include_upper)
    if msg:
        return False, None, msg
    return True, float(value), ""


def is_int_bounded(
    value: Union[int, float, str],
    lower: int,
    upper: int,
    include_lower: bool = True,
    include_upper: bool = True,
) -> Tuple[bool, Optional[int], str]:
    """
    Check if value is an integer within bounds.

    Integral floats (e.g. 3.0) are accepted and converted.

    Returns:
        Tuple of (is_valid, parsed_value, error_message)
    """
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return False, None, f"'{value}' is not a valid integer"

    if isinstance(value, float):
        if not value.is_integer():
            return False, None, f"Value {value} is not an integer"
        value = int(value)

    msg = _bounds_message(value, lower, upper, include_lower, include_upper)
    if msg:
        return False, None, msg
    return True, int(value), ""


def as_real_array(
    value,
    name: str,
    ndim: Optional[int] = None,
) -> NDArray[np.float64]:
    """
    Convert input to a float64 array, rejecting non-numeric or complex data.

    Args:
        value: Array-like input
        name: Name used in error messages
        ndim: Required number of dimensions (None to skip the check)

    Returns:
        Contiguous float64 array

    Raises:
        ConfigurationError: If the input is not real numeric data
    """
    arr = np.asarray(value)

    if arr.dtype == np.bool_ or not np.issubdtype(arr.dtype, np.number):
        raise ConfigurationError(f"{name} must be numeric, got dtype {arr.dtype}")

    if np.iscomplexobj(arr):
        raise ConfigurationError(f"{name} must be real, not complex")

    if ndim is not None and arr.ndim != ndim:
        raise ConfigurationError(
            f"{name} must be {ndim}-dimensional, got shape {arr.shape}"
        )

    return np.ascontiguousarray(arr, dtype=np.float64)


def check_finite(arr: NDArray[np.float64], name: str) -> None:
    """Raise ConfigurationError if arr holds NaN or infinite values."""
    if not np.all(np.isfinite(arr)):
        raise ConfigurationError(f"{name} contains non-finite values")


def check_affine(matrix) -> NDArray[np.float64]:
    """
    Validate a 4x4 homogeneous transformation matrix.

    Returns:
        The matrix as float64

    Raises:
        ConfigurationError: If the matrix is not 4x4, not finite, or its
            bottom row is not [0, 0, 0, 1]
    """
    M = as_real_array(matrix, "Transformation matrix")

    if M.shape != (4, 4):
        raise ConfigurationError(
            f"Transformation matrix must be 4x4, got shape {M.shape}"
        )

    check_finite(M, "Transformation matrix")

    if not np.allclose(M[3], [0.0, 0.0, 0.0, 1.0]):
        raise ConfigurationError(
            f"Transformation matrix bottom row must be [0, 0, 0, 1], got {M[3]}"
        )

    return M


def check_triplet(
    values: Sequence[int],
    name: str,
    minimum: int,
) -> Tuple[int, int, int]:
    """
    Validate a per-axis integer triplet (stride, edge skip).

    Raises:
        ConfigurationError: If there are not exactly three integers >= minimum
    """
    values = tuple(values)
    if len(values) != 3:
        raise ConfigurationError(f"{name} must have 3 values, got {len(values)}")

    result = []
    for v in values:
        valid, parsed, msg = is_int_bounded(v, minimum, np.iinfo(np.int32).max)
        if not valid:
            raise ConfigurationError(f"Invalid {name}: {msg}")
        result.append(parsed)

    return tuple(result)


def validate_fit_parameters(params: dict) -> Tuple[bool, str]:
    """
    Validate a fit parameter dictionary.

    Args:
        params: Parameter dictionary (see FitParameters.to_dict)

    Returns:
        Tuple of (is_valid, error_message)
    """
    valid, fwhm, msg = is_real_bounded(
        params.get("fwhm", 8.0), 0, np.inf, include_lower=False
    )
    if not valid:
        return False, f"Invalid fwhm: {msg}"

    residual_fwhm = params.get("residual_fwhm")
    if residual_fwhm is not None:
        valid, _, msg = is_real_bounded(
            residual_fwhm, 0, np.inf, include_lower=False
        )
        if not valid:
            return False, f"Invalid residual_fwhm: {msg}"

    if params.get("order", 1) not in (1, 3):
        return False, f"Invalid order: {params.get('order')} (must be 1 or 3)"

    valid, _, msg = is_int_bounded(params.get("total_threads", 1), 1, 256)
    if not valid:
        return False, f"Invalid total_threads: {msg}"

    return True, ""
