"""
Status enumeration for application-level operations.

Returned by the BrainWarp facade so callers can branch without catching.
"""

from enum import IntEnum


class Status(IntEnum):
    """
    Enumeration for operation status results.

    DEGENERATE marks a run that finished sampling but whose residual
    statistics could not be turned into a variance estimate (too few
    samples for the parameter count, or a zero residual).

    Examples:
        >>> status = warp.run()
        >>> if status == Status.SUCCESS:
        ...     alpha = warp.results.alpha
        >>> elif status == Status.DEGENERATE:
        ...     print("Not enough samples, lower the sampling stride")
    """

    SUCCESS = 1
    FAILED = 0
    DEGENERATE = -1

    @classmethod
    def success(cls) -> "Status":
        """Return success status."""
        return cls.SUCCESS

    @classmethod
    def failed(cls) -> "Status":
        """Return failed status."""
        return cls.FAILED

    @classmethod
    def degenerate(cls) -> "Status":
        """Return degenerate status."""
        return cls.DEGENERATE
