"""Exceptions raised by the normal-equation kernel."""


class ConfigurationError(ValueError):
    """
    Inputs are inconsistent and no sampling was attempted.

    Raised for mismatched basis/volume dimensions, template volumes of
    differing size, a malformed affine matrix or a parameter vector of the
    wrong length.
    """


class FittingError(ArithmeticError):
    """
    Sampling finished but the residual statistics are unusable.

    Raised when no voxel survived the edge check, when the residual sum of
    squares is zero, or when the effective degrees of freedom are not
    positive.
    """
